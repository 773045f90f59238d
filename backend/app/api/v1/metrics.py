"""
Metrics endpoint for Prometheus scraping.
"""
from fastapi import APIRouter, Response, status

from app.core.config import settings
from app.core.metrics import get_metrics, get_metrics_content_type

router = APIRouter(tags=["Metrics"])


@router.get("/metrics")
async def prometheus_metrics():
    """
    Expose pipeline and HTTP metrics in the Prometheus text format.
    """
    if not settings.ENABLE_METRICS:
        return Response(status_code=status.HTTP_404_NOT_FOUND)
    return Response(
        content=get_metrics(),
        media_type=get_metrics_content_type()
    )
