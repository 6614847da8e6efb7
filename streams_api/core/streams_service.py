# ABOUTME: This file implements the StreamsService singleton tying readers, assembly and publishing together.
# ABOUTME: Reader failures surface as SERVICE_UNAVAILABLE; validation always happens before a reader is called.

from __future__ import annotations

import logging
import threading
import time
from typing import Iterable, Optional

from streams_api.config import API_VERSION, Settings, get_settings
from streams_api.core.aggregation import (
    AggregationReader,
    CachingAggregationReader,
    HttpAggregationReader,
    InMemoryAggregationReader,
    Snapshot,
    StreamFilter,
)
from streams_api.core.assembler import assemble_collection, assemble_single
from streams_api.core.auth import Capability, Principal
from streams_api.models.errors import (
    AggregationUnavailableError,
    InsufficientPermissionsError,
    ResourceNotFoundError,
    ValidationFailedError,
)
from streams_api.models.requests import StreamsQuery
from streams_api.models.responses import PublishAck
from streams_api.models.streams import StreamsData, StreamsResponse
from streams_api.monitoring.metrics import PrometheusMetrics

logger = logging.getLogger(__name__)


class StreamsService:
    """Serves concurrent streams snapshots and accepts SDP reports.

    Use ``instance()`` for the process-wide service built from settings.
    """

    _instance: Optional['StreamsService'] = None
    _lock = threading.Lock()

    def __init__(
        self,
        reader: AggregationReader,
        store: Optional[InMemoryAggregationReader] = None,
        valid_regions: Iterable[int] = (),
        version: str = API_VERSION,
    ):
        self.reader = reader
        self.store = store
        self.valid_regions = sorted(valid_regions)
        self.version = version
        self.metrics = PrometheusMetrics()
        self._last_error: Optional[str] = None

    @classmethod
    def instance(cls) -> 'StreamsService':
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = cls.from_settings(get_settings())
        return cls._instance

    @classmethod
    def configure(cls, service: 'StreamsService') -> None:
        """Install ``service`` as the process-wide instance."""
        with cls._lock:
            cls._instance = service

    @classmethod
    def _reset_instance(cls) -> None:
        """Reset singleton instance for testing purposes only."""
        with cls._lock:
            cls._instance = None

    @classmethod
    def from_settings(cls, settings: Settings) -> 'StreamsService':
        store: Optional[InMemoryAggregationReader] = None

        if settings.aggregation_url:
            upstream: AggregationReader = HttpAggregationReader(
                settings.aggregation_url,
                timeout_seconds=settings.aggregation_timeout_sec,
            )
            logger.info(f"Reading aggregates from {settings.aggregation_url}")
        else:
            if settings.snapshot_file:
                store = InMemoryAggregationReader.from_file(settings.snapshot_file, settings.valid_regions)
            else:
                store = InMemoryAggregationReader()
            upstream = store
            logger.info("Reading aggregates from in-memory SDP reports")

        reader: AggregationReader = upstream
        if settings.cache_ttl_sec > 0:
            reader = CachingAggregationReader(upstream, ttl_seconds=settings.cache_ttl_sec)

        return cls(
            reader=reader,
            store=store,
            valid_regions=settings.valid_regions,
            version=settings.api_version,
        )

    def ready(self) -> bool:
        return self._last_error is None

    @property
    def last_error(self) -> Optional[str]:
        return self._last_error

    @property
    def reader_name(self) -> str:
        return self.reader.name

    @property
    def cache_ttl_sec(self) -> float:
        return self.reader.ttl_seconds if isinstance(self.reader, CachingAggregationReader) else 0.0

    async def list_streams(self, query: StreamsQuery, principal: Principal) -> StreamsResponse:
        """Collection read: filter first, then paginate the filtered events."""
        principal.require(Capability.STREAMS_READ)
        snapshot = await self._read(self._filter_for(query, principal))
        return assemble_collection(snapshot, self.version, limit=query.limit, offset=query.offset)

    async def get_content(self, content_id: str, query: StreamsQuery, principal: Principal) -> StreamsResponse:
        principal.require(Capability.STREAMS_READ)
        snapshot = await self._read(self._filter_for(query, principal, content_id=content_id))

        response = assemble_single(snapshot, self.version)
        if response is None:
            raise ResourceNotFoundError(
                f"No live event found for content '{content_id}'.",
                details=[{"field": "contentId", "issue": "unknown content id"}],
            )
        return response

    def authorize_publish(self, sdp: str, principal: Principal) -> None:
        """Checked before the body is read, so 401/403 win over 400."""
        principal.require(Capability.STREAMS_PUBLISH)

        if principal.sdp != sdp:
            logger.warning(
                "Principal attempted to publish for another SDP",
                extra={"principal": principal.id, "sdp": sdp},
            )
            raise InsufficientPermissionsError(f"Principal may not publish for SDP '{sdp}'.")

    def publish(self, sdp: str, report: StreamsData, principal: Principal) -> PublishAck:
        """Replace ``sdp``'s report with ``report``."""
        self.authorize_publish(sdp, principal)

        if report.sdp is not None and report.sdp != sdp:
            raise ValidationFailedError(
                "One or more fields have invalid values.",
                details=[{"field": "sdp", "issue": f"must match the path SDP '{sdp}'"}],
            )

        if self.store is None:
            raise ResourceNotFoundError("Publishing is not enabled on this server.")

        captured_at = self.store.publish(report.model_copy(update={"sdp": sdp}))
        if isinstance(self.reader, CachingAggregationReader):
            self.reader.invalidate()

        return PublishAck(sdp=sdp, accepted=len(report.mediastreams), timestamp=captured_at)

    def _filter_for(
        self,
        query: StreamsQuery,
        principal: Principal,
        content_id: Optional[str] = None,
    ) -> StreamFilter:
        return StreamFilter(
            requestor=query.requestor or principal.id,
            sdp=query.sdp,
            region=query.region,
            content_id=content_id,
        )

    async def _read(self, stream_filter: StreamFilter) -> Snapshot:
        start_time = time.time()
        try:
            snapshot = await self.reader.read(stream_filter)
        except AggregationUnavailableError as e:
            self._record_failure(e)
            raise
        except Exception as e:
            logger.exception("Aggregation reader failed unexpectedly")
            self._record_failure(e)
            raise AggregationUnavailableError() from e
        finally:
            self.metrics.record_reader_duration(self.reader_name, time.time() - start_time)

        self._last_error = None
        return snapshot

    def _record_failure(self, error: Exception) -> None:
        self._last_error = type(error).__name__
        self.metrics.record_reader_error(self.reader_name, type(error).__name__)
        logger.warning(
            "Aggregation snapshot unavailable",
            extra={"reader": self.reader_name, "error_type": type(error).__name__},
        )
