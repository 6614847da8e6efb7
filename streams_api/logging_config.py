# ABOUTME: Structured logging configuration for the Concurrent Streams API with request ID tracking
# ABOUTME: Renders structlog events and stdlib records (with their extra fields) through one JSON or console formatter

import logging
import sys
from contextlib import contextmanager
from typing import List, Optional

import structlog

# Request logging is done by LoggingMiddleware; uvicorn's access log would duplicate it
_QUIET_LOGGERS = ("uvicorn.access",)


def _shared_processors() -> List:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]


def configure_logging(
    log_level: str = "info",
    log_file: Optional[str] = None,
    enable_json: bool = True
) -> None:
    """
    Configure structured logging for the Concurrent Streams API.

    Core modules log through the standard library with ``extra=`` fields;
    the formatter folds those fields and the bound request id into the
    same output as structlog events.

    Args:
        log_level: Logging level (debug, info, warning, error, critical)
        log_file: Optional file path for log output (defaults to stdout)
        enable_json: Whether to use JSON formatting (default True)
    """
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    structlog.reset_defaults()
    logging.getLogger().handlers.clear()

    if enable_json:
        final_processors = [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        final_processors = [structlog.dev.ConsoleRenderer()]

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=[*_shared_processors(), structlog.stdlib.ExtraAdder()],
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, *final_processors],
    )

    handler = logging.FileHandler(log_file) if log_file else logging.StreamHandler(sys.stdout)
    handler.setLevel(numeric_level)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    root_logger.addHandler(handler)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *_shared_processors(),
            structlog.processors.UnicodeDecoder(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


@contextmanager
def request_id_context(request_id: str):
    """Bind ``request_id`` into every log line emitted inside the block."""
    tokens = structlog.contextvars.bind_contextvars(request_id=request_id)
    try:
        yield
    finally:
        structlog.contextvars.reset_contextvars(**tokens)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
