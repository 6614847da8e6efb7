# ABOUTME: Concurrent streams API routes
# ABOUTME: Implements the collection and single-content GET endpoints and the SDP publish endpoint
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from streams_api.core.auth import Principal
from streams_api.core.streams_service import StreamsService
from streams_api.core.validation import decode_json_body, validate_content_id, validate_streams_data
from streams_api.dependencies import get_principal, get_streams_query, get_streams_service
from streams_api.models.requests import StreamsQuery

router = APIRouter()


@router.get("/concurrentstreams")
async def list_concurrent_streams(
    query: StreamsQuery = Depends(get_streams_query),
    principal: Principal = Depends(get_principal),
    service: StreamsService = Depends(get_streams_service),
):
    """
    List active live-event viewership snapshots.

    Filters (sdp, region) are applied before pagination, so ``total``
    counts matching events across all SDPs.
    """
    response = await service.list_streams(query, principal)
    return JSONResponse(content=response.to_content())


@router.get("/concurrentstreams/{contentId}")
async def get_concurrent_streams(
    contentId: str,
    query: StreamsQuery = Depends(get_streams_query),
    principal: Principal = Depends(get_principal),
    service: StreamsService = Depends(get_streams_service),
):
    """Viewership snapshot for one content id."""
    content_id = validate_content_id(contentId)
    response = await service.get_content(content_id, query, principal)
    return JSONResponse(content=response.to_content())


@router.put("/sdp/{sdp}/concurrentstreams", status_code=202)
async def publish_concurrent_streams(
    sdp: str,
    request: Request,
    principal: Principal = Depends(get_principal),
    service: StreamsService = Depends(get_streams_service),
):
    """
    Replace a Streams Data Provider's current report.

    The body is a single StreamsData object; numeric fields may be numbers
    or numeric strings.
    """
    service.authorize_publish(sdp, principal)
    payload = decode_json_body(await request.body())
    report = validate_streams_data(payload, service.valid_regions)
    ack = service.publish(sdp, report, principal)
    return JSONResponse(status_code=202, content=ack.model_dump())
