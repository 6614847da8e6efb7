# ABOUTME: Metrics endpoint for Prometheus scraping in proper text format
# ABOUTME: Provides /metrics endpoint that returns all metrics in Prometheus exposition format
import logging
from fastapi import APIRouter, Response
from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, generate_latest

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/metrics", response_class=Response)
async def get_metrics():
    """
    Prometheus metrics endpoint.

    Returns all registered metrics in Prometheus exposition format.
    """
    try:
        metrics_data = generate_latest(REGISTRY)

        return Response(
            content=metrics_data,
            media_type=CONTENT_TYPE_LATEST
        )

    except Exception as e:
        logger.error(f"Error generating metrics: {e}")

        return Response(
            content="# Error generating metrics\n",
            media_type=CONTENT_TYPE_LATEST,
            status_code=500
        )
