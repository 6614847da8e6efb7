# ABOUTME: Health check API routes
# ABOUTME: Implements /healthz and /readyz endpoints for service monitoring
from fastapi import APIRouter, Depends

from streams_api.dependencies import get_streams_service
from streams_api.core.streams_service import StreamsService
from streams_api.models.responses import HealthStatus, ReadinessStatus

router = APIRouter()

@router.get("/healthz", response_model=HealthStatus)
async def health_check():
    """
    Basic health check - service is running
    """
    return HealthStatus(status="ok")

@router.get("/readyz", response_model=ReadinessStatus)
async def readiness_check(
    service: StreamsService = Depends(get_streams_service)
):
    """
    Readiness check - the aggregation reader answered its last read
    """
    return ReadinessStatus(
        ready=service.ready(),
        reader=service.reader_name,
        cache_ttl_sec=service.cache_ttl_sec,
        last_error=service.last_error,
    )
