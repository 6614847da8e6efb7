# ABOUTME: Aggregation readers that supply per-event, per-region concurrent stream counts
# ABOUTME: Provides the reader protocol, an in-memory SDP store, an HTTP upstream reader and a TTL cache

from __future__ import annotations

import json
import logging
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Protocol

import httpx
from pydantic import ValidationError

from streams_api.models.errors import AggregationUnavailableError
from streams_api.models.streams import StreamsData, StreamsResponse
from streams_api.monitoring.metrics import PrometheusMetrics

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StreamFilter:
    """Filter set handed to a reader. Hashable so it can key the cache."""
    requestor: Optional[str] = None
    sdp: Optional[str] = None
    region: Optional[int] = None
    content_id: Optional[str] = None

    def as_params(self) -> Dict[str, str]:
        params = {
            "requestor": self.requestor,
            "sdp": self.sdp,
            "region": self.region,
            "contentId": self.content_id,
        }
        return {key: str(value) for key, value in params.items() if value is not None}


@dataclass
class Snapshot:
    """Aggregated counts as of ``captured_at`` (ms since epoch)."""
    captured_at: int
    reports: List[StreamsData] = field(default_factory=list)


class AggregationReader(Protocol):
    """Read-only facade over whatever produces current stream counts."""

    name: str

    async def read(self, stream_filter: StreamFilter) -> Snapshot:
        ...


def apply_filter(reports: Iterable[StreamsData], stream_filter: StreamFilter) -> List[StreamsData]:
    """
    Narrow reports to the filter without mutating the inputs.

    ``region`` keeps events that report counts for that region and trims
    their ``streamcount`` to it. ``requestor`` is not applied here; it scopes
    what an upstream is willing to return.
    """
    filtered = []
    for report in reports:
        if stream_filter.sdp is not None and report.sdp != stream_filter.sdp:
            continue

        kept = []
        for media in report.mediastreams:
            if stream_filter.content_id is not None and media.content_id != stream_filter.content_id:
                continue
            if stream_filter.region is not None:
                counts = [sc for sc in (media.streamcount or []) if sc.region == stream_filter.region]
                if not counts:
                    continue
                media = media.model_copy(update={"streamcount": counts})
            kept.append(media)

        filtered.append(report.model_copy(update={"mediastreams": kept}))
    return filtered


class InMemoryAggregationReader:
    """
    Holds the latest report published by each SDP.

    Each publish replaces that SDP's report wholesale. The snapshot capture
    time is the oldest capture time among the reports it returns, so it never
    overstates freshness.
    """

    name = "memory"

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._lock = threading.Lock()
        self._reports: Dict[Optional[str], StreamsData] = {}
        self._captured_at: Dict[Optional[str], int] = {}

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def publish(self, report: StreamsData, captured_at: Optional[int] = None) -> int:
        """Store ``report`` as its SDP's current report; returns the capture time."""
        captured_at = captured_at if captured_at is not None else self._now_ms()
        with self._lock:
            self._reports[report.sdp] = report
            self._captured_at[report.sdp] = captured_at
        logger.info(
            "Stored streams report",
            extra={"sdp": report.sdp, "events": len(report.mediastreams), "captured_at": captured_at},
        )
        return captured_at

    def load(self, document: StreamsResponse) -> None:
        """Seed from a full StreamsResponse document."""
        for report in document.streamsdata:
            self.publish(report, captured_at=document.timestamp)

    @classmethod
    def from_file(cls, path: str, valid_regions: Optional[Iterable[int]] = None) -> "InMemoryAggregationReader":
        """Build a reader seeded from a JSON StreamsResponse file."""
        payload = json.loads(Path(path).read_text())
        context = {"valid_regions": set(valid_regions)} if valid_regions is not None else None
        document = StreamsResponse.model_validate(payload, context=context)

        reader = cls()
        reader.load(document)
        logger.info(f"Seeded in-memory streams from {path}", extra={"reports": len(document.streamsdata)})
        return reader

    async def read(self, stream_filter: StreamFilter) -> Snapshot:
        with self._lock:
            reports = list(self._reports.values())
            captured = dict(self._captured_at)

        filtered = apply_filter(reports, stream_filter)
        times = [captured[report.sdp] for report in filtered if report.mediastreams]
        captured_at = min(times) if times else self._now_ms()
        return Snapshot(captured_at=captured_at, reports=filtered)


class HttpAggregationReader:
    """
    Reads the current snapshot from an upstream aggregation pipeline.

    The upstream answers ``GET {base_url}`` with a StreamsResponse document;
    numeric fields may arrive as numbers or numeric strings. Failures are
    reported as AggregationUnavailableError and never retried here.
    """

    name = "http"

    def __init__(
        self,
        base_url: str,
        timeout_seconds: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url
        self.timeout_seconds = timeout_seconds
        self._transport = transport

    async def read(self, stream_filter: StreamFilter) -> Snapshot:
        async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self._transport) as client:
            try:
                response = await client.get(self.base_url, params=stream_filter.as_params())
            except httpx.HTTPError as e:
                logger.error("Aggregation upstream request failed", extra={"error": str(e)})
                raise AggregationUnavailableError() from e

        if response.status_code >= 400:
            logger.error(
                "Aggregation upstream returned an error",
                extra={"status_code": response.status_code},
            )
            raise AggregationUnavailableError(retry_after=_parse_retry_after(response.headers.get("Retry-After")))

        try:
            document = StreamsResponse.model_validate(response.json())
        except ValueError as e:
            # json.JSONDecodeError and pydantic's ValidationError are both ValueErrors
            logger.error(
                "Aggregation upstream returned malformed data",
                extra={"error_type": type(e).__name__, "errors": _error_count(e)},
            )
            raise AggregationUnavailableError() from e

        return Snapshot(captured_at=document.timestamp, reports=apply_filter(document.streamsdata, stream_filter))


def _parse_retry_after(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    try:
        return max(0, int(value.strip()))
    except ValueError:
        return None


def _error_count(error: ValueError) -> int:
    return error.error_count() if isinstance(error, ValidationError) else 1


@dataclass
class _CacheEntry:
    snapshot: Snapshot
    stored_at: float


class CachingAggregationReader:
    """
    TTL cache in front of another reader, keyed by filter.

    Entries older than ``ttl_seconds`` are never served. The lock only guards
    the entry table; it is not held while the wrapped reader is awaited.
    A read that started before ``invalidate`` returns its snapshot but does
    not cache it.
    """

    def __init__(
        self,
        inner: AggregationReader,
        ttl_seconds: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.inner = inner
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: Dict[StreamFilter, _CacheEntry] = {}
        self._generation = 0
        self.metrics = PrometheusMetrics()

    @property
    def name(self) -> str:
        return f"{self.inner.name}+cache"

    async def read(self, stream_filter: StreamFilter) -> Snapshot:
        if self.ttl_seconds <= 0:
            return await self.inner.read(stream_filter)

        now = self._clock()
        with self._lock:
            entry = self._entries.get(stream_filter)
            generation = self._generation
            if entry is not None and now - entry.stored_at < self.ttl_seconds:
                self.metrics.record_cache_lookup(hit=True)
                return entry.snapshot

        self.metrics.record_cache_lookup(hit=False)
        snapshot = await self.inner.read(stream_filter)

        stored_at = self._clock()
        with self._lock:
            if self._generation != generation:
                return snapshot
            self._entries[stream_filter] = _CacheEntry(snapshot=snapshot, stored_at=stored_at)
            expired = [key for key, cached in self._entries.items() if stored_at - cached.stored_at >= self.ttl_seconds]
            for key in expired:
                del self._entries[key]

        return snapshot

    def invalidate(self) -> None:
        with self._lock:
            self._generation += 1
            self._entries.clear()
