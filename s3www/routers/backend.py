"""Service health endpoint."""

import structlog
from fastapi import APIRouter, Depends

from s3www.config import Settings
from s3www.dependencies import get_settings
from s3www.models.responses import HealthResponse

logger = structlog.get_logger()
router = APIRouter(tags=["backend"])


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Report service status and the bucket being served.",
)
async def health_check(settings: Settings = Depends(get_settings)) -> HealthResponse:
    """
    Perform health check.

    The object store is not contacted: a failing store shows up per request
    as 502 responses and in s3www_store_operations_total instead.
    """
    logger.debug("health_check", bucket=settings.bucket)
    return HealthResponse(
        status="healthy",
        version=settings.api_version,
        bucket=settings.bucket,
        root=settings.root,
        cache_enabled=settings.cache_enabled,
    )
