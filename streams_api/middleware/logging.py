# ABOUTME: Request/response logging middleware with correlation IDs and structured output
# ABOUTME: Assigns X-Request-ID, binds it into the structlog context and logs timing and status per request

import time
import uuid
from typing import Callable
import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from streams_api.logging_config import request_id_context
from streams_api.middleware.rate_limit import get_client_ip

logger = structlog.get_logger("streams_api.requests")


def get_log_level(status_code: int) -> str:
    """
    Determine appropriate log level based on HTTP status code.
    """
    if status_code < 400:
        return "info"
    elif status_code < 500:
        return "warning"
    else:
        return "error"


class LoggingMiddleware(BaseHTTPMiddleware):
    """
    Middleware for structured request/response logging.

    Every request gets a request ID (the caller's X-Request-ID when supplied)
    that is stored on ``request.state``, bound into the logging context and
    echoed on the response.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id

        start_time = time.time()
        client_ip = get_client_ip(request)

        with request_id_context(request_id):
            logger.info(
                "Request started",
                event_type="request_start",
                request_id=request_id,
                method=request.method,
                path=request.url.path,
                query_params=str(request.query_params) if request.query_params else None,
                client_ip=client_ip,
                user_agent=request.headers.get("User-Agent", "unknown"),
            )

            try:
                response = await call_next(request)
            except Exception as e:
                duration_ms = (time.time() - start_time) * 1000
                logger.error(
                    "Request failed with exception",
                    event_type="request_error",
                    request_id=request_id,
                    method=request.method,
                    path=request.url.path,
                    duration_ms=round(duration_ms, 2),
                    client_ip=client_ip,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                raise

            duration_ms = (time.time() - start_time) * 1000
            log_level = get_log_level(response.status_code)
            getattr(logger, log_level)(
                "Request completed",
                event_type="request_complete",
                request_id=request_id,
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=round(duration_ms, 2),
                client_ip=client_ip,
                response_size=response.headers.get("Content-Length"),
            )

        if "X-Request-ID" not in response.headers:
            response.headers["X-Request-ID"] = request_id

        return response
