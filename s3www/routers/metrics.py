"""Prometheus metrics endpoint router.

Exposes the metrics endpoint for Prometheus scraping.
"""

from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from s3www.config import Settings
from s3www.dependencies import get_settings
from s3www.metrics import set_service_info

router = APIRouter(tags=["metrics"])


@router.get(
    "/metrics",
    response_class=PlainTextResponse,
    summary="Prometheus metrics endpoint",
    description="Returns metrics in Prometheus text format for scraping.",
)
async def get_metrics(settings: Settings = Depends(get_settings)):
    """
    Expose Prometheus metrics.

    This endpoint is intentionally not authenticated to allow
    Prometheus scraping without credentials.
    """
    set_service_info(
        version=settings.api_version,
        bucket=settings.bucket,
        root=settings.root,
    )

    return PlainTextResponse(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )
