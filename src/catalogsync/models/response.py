"""Response models returned by the engine and the HTTP API."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from catalogsync.models.record import ChangeEvent, Record


class SearchResult(BaseModel):
    """Ordered records produced by the query executor.

    Records are ordered by relevance score (descending), ties broken by
    record id (ascending).
    """

    records: list[Record] = Field(default_factory=list, description="Matching records in rank order")
    total: int = Field(default=0, description="Total number of matching documents in the index")
    took_ms: int = Field(default=0, description="Index round-trip time in ms")
    cancelled: bool = Field(default=False, description="True when the caller stopped consumption early")


class SearchResponse(BaseModel):
    """Search response surfaced to API callers."""

    status: Literal["completed", "cancelled", "index_unavailable"] = Field(
        description="Outcome of the search request",
    )
    index_available: bool = Field(default=True, description="False when the index could not be reached")
    total: int = Field(default=0, description="Total number of matching documents")
    limit: int = Field(description="Page size that was applied")
    offset: int = Field(default=0, description="Page offset that was applied")
    results: list[Record] = Field(default_factory=list, description="Matching records in rank order")
    processing_time_ms: int = Field(default=0, description="End-to-end processing time in ms")
    message: str | None = Field(default=None, description="Diagnostic message for degraded responses")


class DeadLetterEntry(BaseModel):
    """A change event parked after it could not be applied to the index."""

    event: ChangeEvent = Field(description="The event that failed")
    error: str = Field(description="Last error message")
    error_type: str = Field(description="Exception class name of the last error")
    attempts: int = Field(description="Number of attempts made")
    failed_at: datetime = Field(description="When the event was parked")


class SyncStatus(BaseModel):
    """Snapshot of the change synchronizer."""

    running: bool = Field(description="Whether lane workers are running")
    lanes: int = Field(description="Number of per-id ordering lanes")
    pending: int = Field(description="Events queued but not yet applied")
    processed: int = Field(description="Events applied successfully since start")
    retried: int = Field(description="Retry attempts made since start")
    dead_lettered: int = Field(description="Events currently parked in the dead-letter queue")


class ReconcileReport(BaseModel):
    """Outcome of a full store → index reconciliation pass."""

    upserted: int = Field(default=0, description="Documents rewritten from store records")
    removed: int = Field(default=0, description="Orphan documents removed from the index")
    failed: int = Field(default=0, description="Writes that failed and were dead-lettered")
