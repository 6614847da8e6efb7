# ABOUTME: Request timeout middleware for FastAPI with configurable timeout duration
# ABOUTME: Cancels requests that outlive the timeout and answers SERVICE_UNAVAILABLE; health checks are exempt

import asyncio
import logging
from typing import Callable
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response, JSONResponse

from streams_api.models.responses import ErrorResponse

logger = logging.getLogger(__name__)


class TimeoutMiddleware(BaseHTTPMiddleware):
    """
    Middleware to enforce request timeout limits.

    A request still running after ``timeout_seconds`` is cancelled, which
    frees whatever it held, and the client receives a 503.
    """

    def __init__(self, app, timeout_seconds: float = 30.0):
        super().__init__(app)
        self.timeout_seconds = timeout_seconds
        self.exempt_paths = {"/healthz", "/readyz"}

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path in self.exempt_paths:
            logger.debug(f"Exempting {request.url.path} from timeout")
            return await call_next(request)

        request_id = (
            getattr(request.state, "request_id", None)
            or request.headers.get("X-Request-ID")
            or ""
        )

        try:
            return await asyncio.wait_for(
                call_next(request),
                timeout=self.timeout_seconds
            )

        except asyncio.TimeoutError:
            logger.warning(
                f"Request timeout after {self.timeout_seconds}s",
                extra={
                    "request_id": request_id,
                    "method": request.method,
                    "path": request.url.path,
                    "timeout_seconds": self.timeout_seconds
                }
            )

            error_response = ErrorResponse.build(
                code="SERVICE_UNAVAILABLE",
                message=f"Request did not complete within {self.timeout_seconds} seconds",
                request_id=request_id,
            )

            return JSONResponse(
                status_code=503,
                content=error_response.to_content(),
                headers={"X-Request-ID": request_id}
            )
