"""catalogsync engine — Wires the record store, synchronizer, and search path.

Mutation flow:
    caller → RecordStore → ChangeEvent → ChangeSynchronizer lane → IndexWriter → index

Query flow:
    SearchIntent → translate() → QueryExecutor → index → Record projections

The store is the source of truth. Index outages never fail a write: the
synchronizer retries and dead-letters, and searches degrade to an empty
``index_unavailable`` response instead of raising.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING, Any, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from catalogsync.errors import IndexUnavailableError, TransientIndexError, ValidationError
from catalogsync.index.base import IndexBackend, IndexHealth
from catalogsync.index.registry import BackendRegistry
from catalogsync.index.writer import IndexWriter
from catalogsync.models.query import (
    ExactName,
    NameOrDescriptionContains,
    Paging,
    PrefixSuggest,
    SearchIntent,
)
from catalogsync.models.record import Record, RecordCreate, RecordUpdate
from catalogsync.models.response import ReconcileReport, SearchResponse, SyncStatus
from catalogsync.query.translator import translate
from catalogsync.search.executor import QueryExecutor
from catalogsync.store.repository import RecordStore
from catalogsync.sync.synchronizer import ChangeSynchronizer

if TYPE_CHECKING:
    from catalogsync.config.settings import Settings

logger = logging.getLogger(__name__)

_IntentT = TypeVar("_IntentT", bound=BaseModel)


def _build_intent(intent_cls: type[_IntentT], **fields: Any) -> _IntentT:
    try:
        return intent_cls(**fields)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid search: {e}") from e


class CatalogSyncEngine:
    """Core orchestrator for the product catalog.

    Attributes:
        settings: Application configuration.
        store: Primary record store.
        backend: Search index backend.
        synchronizer: Store → index change synchronizer.
        executor: Query executor over the index.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        store: RecordStore | None = None,
        backend: IndexBackend | None = None,
    ) -> None:
        self.settings = settings
        self.store = store or RecordStore.from_url(
            settings.database.url,
            echo=settings.database.echo,
            timeout=settings.database.timeout_seconds,
        )
        self.backend = backend or BackendRegistry().create_from_settings(settings.index)
        self.writer = IndexWriter(self.backend)
        self.synchronizer = ChangeSynchronizer(self.writer, settings.sync)
        self.executor = QueryExecutor(self.backend)
        self.store.add_listener(self.synchronizer.submit)

    async def initialize(self) -> None:
        """Initialize the store, the index backend, and the synchronizer.

        An unreachable index is logged, not fatal: the store keeps serving
        writes and the synchronizer catches up once the index returns.
        """
        await self.store.initialize()
        try:
            await self.backend.initialize()
        except TransientIndexError:
            logger.error(
                "Index backend '%s' unavailable at startup; writes will be synchronized once it returns",
                self.backend.name,
                exc_info=True,
            )
        await self.synchronizer.start()
        logger.info("catalogsync engine initialized (index backend: %s)", self.backend.name)

    async def shutdown(self) -> None:
        """Gracefully shut down all components."""
        await self.synchronizer.stop()
        await self.backend.shutdown()
        await self.store.shutdown()
        logger.info("catalogsync engine shut down")

    # ──────────────────────────────────────────────────────────────────────
    # Records
    # ──────────────────────────────────────────────────────────────────────

    async def add_record(self, dto: RecordCreate | dict[str, Any]) -> Record:
        """Persist a new record; its document is indexed asynchronously."""
        record = await self.store.create(dto)
        logger.info("Added record %s (%s)", record.id, record.name)
        return record

    async def list_all(self) -> list[Record]:
        """Return every record from the primary store."""
        return await self.store.list_all()

    async def get_record(self, record_id: str) -> Record:
        return await self.store.get(record_id)

    async def update_record(self, record_id: str, fields: RecordUpdate | dict[str, Any]) -> Record:
        record = await self.store.update(record_id, fields)
        logger.info("Updated record %s to version %d", record.id, record.version)
        return record

    async def delete_record(self, record_id: str) -> None:
        await self.store.delete(record_id)
        logger.info("Deleted record %s", record_id)

    # ──────────────────────────────────────────────────────────────────────
    # Search
    # ──────────────────────────────────────────────────────────────────────

    async def search(
        self,
        intent: SearchIntent,
        paging: Paging | None = None,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> SearchResponse:
        """Translate and execute a search intent.

        Returns:
            A SearchResponse. When the index is unreachable the response is
            empty with ``status="index_unavailable"``.

        Raises:
            MalformedQueryError: If the intent translates to an invalid tree.
        """
        start_time = time.monotonic()
        query = translate(intent, paging, self.settings.search)
        try:
            result = await self.executor.execute_query(query, cancel_event=cancel_event)
        except TransientIndexError as e:
            logger.warning("Search degraded, index unavailable: %s", e)
            return SearchResponse(
                status="index_unavailable",
                index_available=False,
                limit=query.limit,
                offset=query.offset,
                processing_time_ms=int((time.monotonic() - start_time) * 1000),
                message=str(e) if isinstance(e, IndexUnavailableError) else f"Index error: {e}",
            )

        return SearchResponse(
            status="cancelled" if result.cancelled else "completed",
            total=result.total,
            limit=query.limit,
            offset=query.offset,
            results=result.records,
            processing_time_ms=int((time.monotonic() - start_time) * 1000),
        )

    async def find_by_name_contains(self, query: str, paging: Paging | None = None) -> SearchResponse:
        """Records whose name or description contains every term of ``query``."""
        return await self.search(_build_intent(NameOrDescriptionContains, query=query), paging)

    async def find_exact_by_name(self, query: str, paging: Paging | None = None) -> SearchResponse:
        """Records whose name contains every term of ``query``."""
        return await self.search(_build_intent(ExactName, query=query), paging)

    async def suggest(self, prefix: str) -> SearchResponse:
        """Type-ahead suggestions: names starting with ``prefix``."""
        return await self.search(_build_intent(PrefixSuggest, prefix=prefix))

    # ──────────────────────────────────────────────────────────────────────
    # Synchronization
    # ──────────────────────────────────────────────────────────────────────

    async def wait_for_sync(self, timeout: float | None = None) -> None:
        """Wait until every emitted change event has been applied or dead-lettered."""
        await asyncio.wait_for(self.synchronizer.wait_idle(), timeout=timeout)

    async def reconcile(self) -> ReconcileReport:
        """Rebuild index state from the store (upsert all, drop orphans)."""
        return await self.synchronizer.reconcile(self.store)

    def sync_status(self) -> SyncStatus:
        return self.synchronizer.status()

    async def health(self) -> IndexHealth:
        """Probe the index backend."""
        return await self.backend.health_check()
