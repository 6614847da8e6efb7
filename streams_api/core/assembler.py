# ABOUTME: Response assembly for concurrent streams snapshots
# ABOUTME: Orders events stably, paginates across SDPs, regroups pages by SDP and builds the envelope

from itertools import groupby
from typing import List, Optional, Tuple

from streams_api.core.aggregation import Snapshot
from streams_api.models.responses import Pagination
from streams_api.models.streams import MediaStreams, StreamsData, StreamsResponse

EventRow = Tuple[Optional[str], MediaStreams]


def flatten(snapshot: Snapshot) -> List[EventRow]:
    """
    Flatten a snapshot into (sdp, event) rows in a stable order.

    Rows sort by SDP (unnamed reports first, kept apart from an empty name),
    then event start, then content id; ties keep the reader's order, so a
    fixed snapshot always pages the same way.
    """
    rows = [
        (report.sdp, media)
        for report in snapshot.reports
        for media in report.mediastreams
    ]
    rows.sort(key=lambda row: (row[0] is not None, row[0] or "", row[1].eventstart, row[1].content_id or ""))
    return rows


def group_by_sdp(rows: List[EventRow]) -> List[StreamsData]:
    """Regroup consecutive rows into one StreamsData per SDP."""
    return [
        StreamsData(sdp=sdp, mediastreams=[media for _, media in group])
        for sdp, group in groupby(rows, key=lambda row: row[0])
    ]


def paginate(rows: List[EventRow], limit: int, offset: int) -> Tuple[List[EventRow], Pagination]:
    total = len(rows)
    page = rows[offset:offset + limit]
    pagination = Pagination(
        limit=limit,
        offset=offset,
        total=total,
        has_more=offset + limit < total,
    )
    return page, pagination


def assemble_collection(snapshot: Snapshot, version: str, limit: int, offset: int) -> StreamsResponse:
    """Build a paginated collection response; ``total`` counts events, not SDPs."""
    page, pagination = paginate(flatten(snapshot), limit, offset)
    return StreamsResponse(
        version=version,
        timestamp=snapshot.captured_at,
        streamsdata=group_by_sdp(page),
        pagination=pagination,
    )


def assemble_single(snapshot: Snapshot, version: str) -> Optional[StreamsResponse]:
    """Build a single-content response, or None when no event matched."""
    rows = flatten(snapshot)
    if not rows:
        return None
    return StreamsResponse(
        version=version,
        timestamp=snapshot.captured_at,
        streamsdata=group_by_sdp(rows),
    )
