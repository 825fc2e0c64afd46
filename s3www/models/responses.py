"""Response models for the internal endpoints."""

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(description="Service status: 'healthy' or 'unhealthy'")
    version: str = Field(description="Service version")
    bucket: str = Field(description="Bucket being served")
    root: str = Field(description="Root prefix inside the bucket ('' for the whole bucket)")
    cache_enabled: bool = Field(description="Whether the response cache is active")


class ErrorResponse(BaseModel):
    """Standard error response."""

    error: str = Field(description="Error type")
    message: str = Field(description="Error message")
