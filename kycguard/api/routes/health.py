"""Health Endpoint."""

from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from kycguard.api.deps import get_app_settings
from kycguard.core.config import Settings

router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(description="Overall health status")
    version: str
    environment: str
    storage: str = Field(description="memory or sql")
    providers_configured: bool
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


@router.get("/health", response_model=HealthResponse, summary="Liveness check")
async def health(settings: Settings = Depends(get_app_settings)):
    return HealthResponse(
        status="healthy",
        version=settings.app_version,
        environment=settings.environment,
        storage="sql" if settings.uses_database else "memory",
        providers_configured=settings.provider_base_url is not None,
    )

