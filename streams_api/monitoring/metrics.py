# ABOUTME: Prometheus metrics collection for the Concurrent Streams API
# ABOUTME: Defines counters and histograms for requests, throttling, aggregation reads and cache lookups
import logging
from typing import Optional
from threading import Lock

from prometheus_client import (
    Counter,
    Histogram,
    REGISTRY
)

logger = logging.getLogger(__name__)


class PrometheusMetrics:
    """
    Singleton class for managing Prometheus metrics for the Concurrent Streams API.

    Provides thread-safe access to all metrics and ensures consistent labeling
    across the application.
    """

    _instance: Optional['PrometheusMetrics'] = None
    _lock = Lock()

    def __new__(cls) -> 'PrometheusMetrics':
        """Ensure singleton pattern"""
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        """Initialize Prometheus metrics"""
        # Prevent re-initialization
        if hasattr(self, '_initialized'):
            return

        try:
            # Request metrics
            self.requests_total = Counter(
                'streams_requests_total',
                'Total number of requests processed by the Concurrent Streams API',
                ['route', 'status'],
                registry=REGISTRY
            )

            self.request_duration_seconds = Histogram(
                'streams_request_duration_seconds',
                'Request duration in seconds',
                ['route', 'status'],
                buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, float('inf')),
                registry=REGISTRY
            )

            self.rate_limited_total = Counter(
                'streams_rate_limited_total',
                'Requests rejected by the rate limiter',
                ['window'],
                registry=REGISTRY
            )

            # Aggregation reader metrics
            self.reader_duration_seconds = Histogram(
                'streams_reader_duration_seconds',
                'Time spent reading a snapshot from the aggregation reader',
                ['reader'],
                buckets=(0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 10.0, float('inf')),
                registry=REGISTRY
            )

            self.reader_errors_total = Counter(
                'streams_reader_errors_total',
                'Aggregation reader failures by type',
                ['reader', 'error_type'],
                registry=REGISTRY
            )

            self.cache_lookups_total = Counter(
                'streams_cache_lookups_total',
                'Snapshot cache lookups',
                ['result'],
                registry=REGISTRY
            )

            # Error metrics
            self.errors_total = Counter(
                'streams_errors_total',
                'Total number of errors by type',
                ['error_type', 'route'],
                registry=REGISTRY
            )

            self._initialized = True
            logger.info("Prometheus metrics initialized successfully")

        except Exception as e:
            logger.error(f"Failed to initialize Prometheus metrics: {e}")
            raise

    @classmethod
    def _reset_instance(cls) -> None:
        """Reset singleton instance for testing purposes only."""
        cls._instance = None

    def record_request(self, method: str, path: str, status_code: int) -> None:
        """Record a completed request"""
        try:
            self.requests_total.labels(route=f"{method} {path}", status=str(status_code)).inc()
        except Exception as e:
            logger.error(f"Error recording request metric: {e}")

    def record_request_duration(self, method: str, path: str, status_code: int, duration: float) -> None:
        """Record request duration manually"""
        try:
            self.request_duration_seconds.labels(
                route=f"{method} {path}",
                status=str(status_code)
            ).observe(duration)
        except Exception as e:
            logger.error(f"Error recording request duration: {e}")

    def record_rate_limited(self, window: str) -> None:
        try:
            self.rate_limited_total.labels(window=window).inc()
        except Exception as e:
            logger.error(f"Error recording rate limit metric: {e}")

    def record_reader_duration(self, reader: str, duration: float) -> None:
        try:
            self.reader_duration_seconds.labels(reader=reader).observe(duration)
        except Exception as e:
            logger.error(f"Error recording reader duration: {e}")

    def record_reader_error(self, reader: str, error_type: str) -> None:
        try:
            self.reader_errors_total.labels(reader=reader, error_type=error_type).inc()
        except Exception as e:
            logger.error(f"Error recording reader error metric: {e}")

    def record_cache_lookup(self, hit: bool) -> None:
        try:
            self.cache_lookups_total.labels(result="hit" if hit else "miss").inc()
        except Exception as e:
            logger.error(f"Error recording cache lookup metric: {e}")

    def record_error(self, error_type: str, route: str = "unknown") -> None:
        """Record an error occurrence"""
        try:
            self.errors_total.labels(
                error_type=error_type,
                route=route
            ).inc()
        except Exception as e:
            logger.error(f"Error recording error metric: {e}")
