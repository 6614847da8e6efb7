"""Main entry point for the Concurrent Streams API server."""

import uvicorn

from streams_api.config import get_settings
from streams_api.logging_config import get_logger

logger = get_logger(__name__)


def main():
    """Start the FastAPI server."""
    settings = get_settings()
    logger.info("Starting Concurrent Streams API server", host=settings.host, port=settings.port)

    uvicorn.run(
        "streams_api.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level,
    )


if __name__ == "__main__":
    main()
