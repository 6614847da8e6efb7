# ABOUTME: FastAPI application instance with middleware and exception handlers
# ABOUTME: Main entry point wiring routing, rate limiting, logging, monitoring and the error envelope
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from streams_api.config import Settings, get_settings
from streams_api.core.streams_service import StreamsService
from streams_api.core.validation import build_validation_error
from streams_api.logging_config import configure_logging, get_logger
from streams_api.middleware import (
    EnhancedCORSMiddleware,
    LoggingMiddleware,
    RateLimitMiddleware,
    TimeoutMiddleware,
)
from streams_api.models.errors import ApiError
from streams_api.models.responses import ErrorResponse
from streams_api.monitoring import PrometheusMetrics, add_monitoring_middleware
from streams_api.routes import health, metrics, streams

logger = get_logger(__name__)


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or request.headers.get("X-Request-ID", "")


def error_response(
    request: Request,
    status_code: int,
    code: str,
    message: str,
    details=None,
    headers=None,
) -> JSONResponse:
    """Render the standard error envelope; every error carries X-Request-ID."""
    request_id = _request_id(request)
    response_headers = {"X-Request-ID": request_id}
    if status_code == 401:
        response_headers["WWW-Authenticate"] = "Bearer"
    response_headers.update(headers or {})

    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse.build(
            code=code,
            message=message,
            request_id=request_id,
            details=details,
        ).to_content(),
        headers=response_headers,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events"""
    logger.info("Starting Concurrent Streams API")

    try:
        PrometheusMetrics()
        service = StreamsService.instance()
        logger.info("Streams service initialized", reader=service.reader_name)
    except Exception as e:
        logger.error("Failed to start service components", error=str(e))
        # Continue anyway - requests will report SERVICE_UNAVAILABLE or INTERNAL_ERROR

    yield

    logger.info("Concurrent Streams API shutdown completed")


def register_exception_handlers(app: FastAPI) -> None:

    @app.exception_handler(ApiError)
    async def api_error_handler(request: Request, exc: ApiError):
        """Handle errors raised by dependencies and services"""
        return error_response(
            request,
            status_code=exc.status_code,
            code=exc.code,
            message=exc.message,
            details=exc.details,
            headers=exc.headers,
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        """Handle FastAPI parameter validation errors (400)"""
        error = build_validation_error(exc.errors())
        return error_response(
            request,
            status_code=error.status_code,
            code=error.code,
            message=error.message,
            details=error.details,
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        """Handle routing-level HTTP exceptions"""
        if exc.status_code == 404:
            code, message = "RESOURCE_NOT_FOUND", "The requested resource was not found."
        elif exc.status_code == 405:
            code, message = "METHOD_NOT_ALLOWED", "This resource is read-only."
        else:
            code, message = "HTTP_ERROR", str(exc.detail)

        return error_response(
            request,
            status_code=exc.status_code,
            code=code,
            message=message,
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        """Handle anything else as 500 without exposing internals"""
        logger.error(
            "Unhandled exception",
            request_id=_request_id(request),
            path=request.url.path,
            error_type=type(exc).__name__,
            exc_info=exc,
        )
        return error_response(
            request,
            status_code=500,
            code="INTERNAL_ERROR",
            message="An internal error occurred.",
        )


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.log_level, enable_json=settings.log_json)

    app = FastAPI(
        title="Concurrent Streams API",
        description="Near-real-time concurrent viewership counts per live event, region and ad insertion type",
        version=settings.api_version,
        lifespan=lifespan,
    )

    # Middleware stack - the last one added is the outermost
    # Order seen by a request: CORS -> Monitoring -> Logging -> Rate Limiting -> Timeout -> route
    app.add_middleware(TimeoutMiddleware, timeout_seconds=settings.timeout_sec)
    app.add_middleware(
        RateLimitMiddleware,
        requests_per_minute=settings.rate_limit_requests_per_minute,
        requests_per_hour=settings.rate_limit_requests_per_hour,
    )
    app.add_middleware(LoggingMiddleware)
    add_monitoring_middleware(app)
    app.add_middleware(EnhancedCORSMiddleware)

    register_exception_handlers(app)

    app.include_router(streams.router, prefix="/v1", tags=["concurrentstreams"])
    app.include_router(health.router, tags=["health"])
    app.include_router(metrics.router, tags=["monitoring"])

    return app


app = create_app()
