"""API dependencies — Dependency injection for FastAPI endpoints."""

from __future__ import annotations

from catalogsync.core.engine import CatalogSyncEngine

# Global engine instance (set during application lifespan)
_engine: CatalogSyncEngine | None = None


def set_engine(engine: CatalogSyncEngine | None) -> None:
    """Set the global engine instance (called during app lifespan)."""
    global _engine
    _engine = engine


def get_engine() -> CatalogSyncEngine:
    """Get the global catalogsync engine instance.

    Raises:
        RuntimeError: If the engine is not initialized.
    """
    if _engine is None:
        raise RuntimeError("catalogsync engine not initialized. Is the server running?")
    return _engine
