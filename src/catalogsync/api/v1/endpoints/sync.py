"""Synchronization endpoints — lane status, dead letters, and reconciliation."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from catalogsync.api.deps import get_engine
from catalogsync.api.errors import to_http_exception
from catalogsync.core.engine import CatalogSyncEngine
from catalogsync.errors import CatalogSyncError
from catalogsync.models.response import DeadLetterEntry, ReconcileReport, SyncStatus

router = APIRouter(prefix="/sync", tags=["sync"])


class RedriveResponse(BaseModel):
    resubmitted: int = Field(description="Number of dead-lettered events put back on their lanes")


@router.get("/status", response_model=SyncStatus, summary="Synchronizer Status")
async def sync_status(engine: CatalogSyncEngine = Depends(get_engine)) -> SyncStatus:
    return engine.sync_status()


@router.get("/dead-letters", response_model=list[DeadLetterEntry], summary="List Dead Letters")
async def dead_letters(engine: CatalogSyncEngine = Depends(get_engine)) -> list[DeadLetterEntry]:
    """Change events that exhausted their retries, oldest first."""
    return engine.synchronizer.dead_letters.entries()


@router.post("/dead-letters/redrive", response_model=RedriveResponse, summary="Redrive Dead Letters")
async def redrive(engine: CatalogSyncEngine = Depends(get_engine)) -> RedriveResponse:
    """Resubmit every parked event. Replays older than the indexed version are ignored."""
    return RedriveResponse(resubmitted=engine.synchronizer.redrive_dead_letters())


@router.post(
    "/reconcile",
    response_model=ReconcileReport,
    summary="Reconcile Index",
    responses={503: {"description": "Index or record store unavailable"}},
)
async def reconcile(engine: CatalogSyncEngine = Depends(get_engine)) -> ReconcileReport:
    """Rewrite every stored product into the index and remove orphan documents."""
    try:
        return await engine.reconcile()
    except CatalogSyncError as e:
        raise to_http_exception(e) from e
