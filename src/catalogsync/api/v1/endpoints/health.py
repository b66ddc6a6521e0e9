"""Health check endpoints — Service and index health monitoring."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from catalogsync import __version__
from catalogsync.api.deps import get_engine
from catalogsync.core.engine import CatalogSyncEngine
from catalogsync.index.base import IndexHealth

logger = logging.getLogger(__name__)

router = APIRouter()


class HealthResponse(BaseModel):
    """Service health check response."""

    status: str = Field(description="Health status (e.g. 'healthy')")
    version: str = Field(description="catalogsync server version")
    service: str = Field(description="Service name ('catalogsync')")
    index_backend: str = Field(description="Name of the configured index backend")


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Service Health Check",
    description="Returns service liveness, server version, and the configured index backend.",
)
async def health_check(
    engine: CatalogSyncEngine = Depends(get_engine),
) -> HealthResponse:
    return HealthResponse(
        status="healthy",
        version=__version__,
        service="catalogsync",
        index_backend=engine.backend.name,
    )


@router.get(
    "/health/index",
    response_model=IndexHealth,
    summary="Index Health Check",
    description=(
        "Probe the search index and return its status, latency, document "
        "count, and a diagnostic message. The record store stays writable "
        "while the index reports unhealthy."
    ),
)
async def index_health(
    engine: CatalogSyncEngine = Depends(get_engine),
) -> IndexHealth:
    health = await engine.health()
    if health.status != "healthy":
        logger.warning("Index backend '%s' reports %s: %s", engine.backend.name, health.status, health.message)
    return health
