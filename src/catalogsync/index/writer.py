"""Index writer — turns records into index documents and writes them."""

from __future__ import annotations

import logging

from catalogsync.index.base import IndexBackend, WriteOutcome
from catalogsync.models.document import ProductDocument, record_to_document
from catalogsync.models.record import Record

logger = logging.getLogger(__name__)


class IndexWriter:
    """Writes whole product documents to an index backend.

    There are no partial writes: a document is either fully replaced or the
    call raises. Errors from the backend propagate unchanged so the
    synchronizer can tell retryable failures from permanent ones.
    """

    def __init__(self, backend: IndexBackend) -> None:
        self._backend = backend

    @property
    def backend(self) -> IndexBackend:
        return self._backend

    async def upsert(self, record: Record) -> WriteOutcome:
        """Build the document for ``record`` and write it."""
        return await self.upsert_document(record.id, record_to_document(record))

    async def upsert_document(self, doc_id: str, document: ProductDocument) -> WriteOutcome:
        """Replace the document stored under ``doc_id``."""
        outcome = await self._backend.upsert(doc_id, document.to_source(), document.version)
        if outcome.applied:
            logger.debug("Indexed %s at version %d", doc_id, document.version)
        else:
            logger.debug("Index write for %s was a no-op: %s", doc_id, outcome.reason)
        return outcome

    async def remove(self, doc_id: str, version: int | None = None) -> WriteOutcome:
        """Remove the document stored under ``doc_id``."""
        outcome = await self._backend.remove(doc_id, version)
        logger.debug("Removed %s from index (applied=%s)", doc_id, outcome.applied)
        return outcome
