"""Base index backend — Abstract interface for search index connectors.

Every index backend must implement this interface. A backend is
responsible for:
  1. Creating the product index with the expected mapping
  2. Replacing and removing whole documents by id
  3. Executing a query tree and returning ranked raw hits
  4. Reporting health status
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel, Field

from catalogsync.query.tree import QueryNode


class IndexHealth(BaseModel):
    """Health status of an index backend."""

    status: str = Field(description="Health status: healthy, degraded, unhealthy")
    latency_ms: int = Field(default=0, description="Latency of last health check in ms")
    last_check: str | None = Field(default=None, description="ISO timestamp of last health check")
    document_count: int | None = Field(default=None, description="Documents in the product index")
    message: str | None = Field(default=None, description="Additional health message")


class RawHits(BaseModel):
    """Ranked hits from a backend before mapping to records."""

    total_hits: int = Field(default=0, description="Total number of matching documents")
    hits: list[dict[str, Any]] = Field(
        default_factory=list,
        description="Hits shaped like search-engine hits: _id, _score, _source",
    )
    took_ms: int = Field(default=0, description="Backend query execution time in ms")


class WriteOutcome(BaseModel):
    """Result of a single document write."""

    applied: bool = Field(description="False when the write was a no-op (stale version, missing document)")
    reason: str | None = Field(default=None, description="Why the write was a no-op")


class IndexBackend(ABC):
    """Abstract base class for search index backends.

    All backends must implement:
      - upsert(): Replace a whole document under external versioning
      - remove(): Delete a document by id
      - search(): Execute a query tree and return ranked raw hits
      - document_ids(): List every document id (for reconciliation)
      - health_check(): Report backend health status

    Failures are reported with the ``catalogsync.errors`` taxonomy:
    ``IndexUnavailableError`` when the backend cannot be reached,
    ``TransientIndexError`` for retryable rejections, ``IndexWriteError``
    for permanent write rejections and ``MalformedQueryError`` when the
    backend refuses a query.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique backend name (e.g., 'elasticsearch', 'memory')."""

    @abstractmethod
    async def initialize(self) -> None:
        """Connect to the backend and make sure the product index exists.

        Called once during application startup.
        """

    @abstractmethod
    async def shutdown(self) -> None:
        """Gracefully shut down the backend and release connections."""

    @abstractmethod
    async def upsert(self, doc_id: str, source: dict[str, Any], version: int) -> WriteOutcome:
        """Replace the document ``doc_id`` with ``source``.

        Writes with a version lower than the stored one are ignored so a
        replayed older event can never overwrite newer data.
        """

    @abstractmethod
    async def remove(self, doc_id: str, version: int | None = None) -> WriteOutcome:
        """Delete the document ``doc_id``. Deleting a missing document is a no-op.

        With ``version`` set the delete is versioned like a write: it is
        ignored when the stored document is newer, and later writes older
        than ``version`` are ignored too. Without it the delete is unconditional.
        """

    @abstractmethod
    async def search(self, tree: QueryNode, *, limit: int, offset: int = 0) -> RawHits:
        """Execute a query tree.

        Hits are ordered by score (descending), ties broken by document id
        (ascending).
        """

    @abstractmethod
    async def document_ids(self) -> set[str]:
        """Return the ids of every document in the product index."""

    @abstractmethod
    async def health_check(self) -> IndexHealth:
        """Check the health of the index backend."""
