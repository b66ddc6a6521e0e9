"""FastAPI application factory and lifecycle management."""

from __future__ import annotations

import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from catalogsync import __version__
from catalogsync.api.deps import set_engine
from catalogsync.api.v1.router import router as v1_router
from catalogsync.config.settings import Settings
from catalogsync.core.engine import CatalogSyncEngine
from catalogsync.observability.logging import setup_logging

DEFAULT_CONFIG_FILE = "catalogsync-config.yaml"
CONFIG_FILE_ENV = "CATALOGSYNC_CONFIG_FILE"

logger = logging.getLogger(__name__)


def load_settings() -> Settings:
    """Load settings from the configured YAML file if present, else the environment."""
    yaml_path = Path(os.environ.get(CONFIG_FILE_ENV, DEFAULT_CONFIG_FILE))
    if yaml_path.exists():
        logger.info("Loading configuration from %s", yaml_path)
        return Settings.from_yaml(yaml_path)
    return Settings()


def create_app(settings: Settings | None = None, engine: CatalogSyncEngine | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Application settings. If None, loads from
            ``$CATALOGSYNC_CONFIG_FILE`` / ``catalogsync-config.yaml`` or the environment.
        engine: Pre-built engine to serve. If None, one is built from settings
            during startup.

    Returns:
        Configured FastAPI application.
    """
    if settings is None:
        settings = engine.settings if engine is not None else load_settings()

    setup_logging(settings.observability)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """Manage application lifecycle (startup/shutdown)."""
        logger.info("Starting catalogsync v%s", __version__)

        app_engine = engine or CatalogSyncEngine(settings)
        await app_engine.initialize()
        set_engine(app_engine)

        app.state.settings = settings
        app.state.engine = app_engine

        logger.info("catalogsync is ready to serve requests on port %d", settings.server.port)
        yield

        logger.info("Shutting down catalogsync...")
        await app_engine.shutdown()
        set_engine(None)
        logger.info("catalogsync shutdown complete")

    app = FastAPI(
        title="catalogsync",
        description=(
            "Product catalog service that keeps a search index in step with "
            "its record store and translates structured search intents into index queries."
        ),
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.server.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(v1_router, prefix="/v1")

    return app
