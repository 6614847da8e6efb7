# ABOUTME: Monitoring middleware for request tracking and metrics collection
# ABOUTME: Instruments every request with route-level timing, status and error metrics
import time
import logging
from typing import Callable
from fastapi import FastAPI, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from .metrics import PrometheusMetrics

logger = logging.getLogger(__name__)


def route_label(request: Request) -> str:
    """Route template (e.g. /v1/concurrentstreams/{contentId}) to keep label cardinality bounded."""
    route = request.scope.get("route")
    path = getattr(route, "path", None)
    return path or "unmatched"


class MonitoringMiddleware(BaseHTTPMiddleware):
    """
    Middleware for automatic request monitoring and metrics collection.

    Tracks request duration, counts, and error rates automatically.
    """

    def __init__(self, app: ASGIApp):
        super().__init__(app)
        self.metrics = PrometheusMetrics()

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """Process request and collect metrics"""
        # Skip metrics collection for the metrics endpoint itself
        if request.url.path == "/metrics":
            return await call_next(request)

        start_time = time.time()
        method = request.method
        status_code = 500  # Default to error in case of exception

        try:
            response = await call_next(request)
            status_code = response.status_code

            duration = time.time() - start_time
            response.headers["X-Process-Time"] = str(round(duration, 4))

            return response

        except Exception as e:
            logger.error(f"Request failed: {e}")
            self.metrics.record_error(type(e).__name__, f"{method} {route_label(request)}")
            raise

        finally:
            duration = time.time() - start_time
            path = route_label(request)
            self.metrics.record_request(method, path, status_code)
            self.metrics.record_request_duration(method, path, status_code, duration)


def add_monitoring_middleware(app: FastAPI) -> None:
    """
    Add monitoring middleware to FastAPI app.

    Args:
        app: FastAPI application instance
    """
    app.add_middleware(MonitoringMiddleware)
    logger.info("Monitoring middleware added to FastAPI app")
