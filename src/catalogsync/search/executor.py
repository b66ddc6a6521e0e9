"""Query executor — runs query trees against the index and maps hits to records."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator

from catalogsync.errors import MalformedQueryError
from catalogsync.index.base import IndexBackend
from catalogsync.models.document import document_to_record
from catalogsync.models.record import Record
from catalogsync.models.response import SearchResult
from catalogsync.query.translator import TranslatedQuery
from catalogsync.query.tree import QueryNode, validate_tree

logger = logging.getLogger(__name__)


class QueryExecutor:
    """Executes validated query trees on an index backend.

    Search is read-only, so cancellation is cooperative: a caller that sets
    its cancel event (or stops iterating ``stream``) simply stops consuming
    hits and nothing needs to be rolled back.
    """

    def __init__(self, backend: IndexBackend) -> None:
        self._backend = backend

    async def execute(
        self,
        tree: QueryNode,
        *,
        limit: int,
        offset: int = 0,
        cancel_event: asyncio.Event | None = None,
    ) -> SearchResult:
        """Run ``tree`` and return one page of records.

        Raises:
            MalformedQueryError: If the tree references unknown fields.
            IndexUnavailableError: If the index cannot be reached.
        """
        validate_tree(tree)
        if cancel_event is not None and cancel_event.is_set():
            return SearchResult(cancelled=True)

        raw = await self._backend.search(tree, limit=limit, offset=offset)

        records: list[Record] = []
        cancelled = False
        for hit in raw.hits:
            if cancel_event is not None and cancel_event.is_set():
                cancelled = True
                break
            records.append(self._map_hit(hit))

        return SearchResult(records=records, total=raw.total_hits, took_ms=raw.took_ms, cancelled=cancelled)

    async def execute_query(self, query: TranslatedQuery, cancel_event: asyncio.Event | None = None) -> SearchResult:
        """Run a translated query with its own paging."""
        return await self.execute(query.tree, limit=query.limit, offset=query.offset, cancel_event=cancel_event)

    async def stream(self, tree: QueryNode, *, page_size: int = 100, max_results: int | None = None) -> AsyncIterator[Record]:
        """Yield every matching record in rank order, one page at a time.

        The consumer may stop iterating at any point; no further pages are
        requested after that.
        """
        validate_tree(tree)
        offset = 0
        yielded = 0
        while True:
            raw = await self._backend.search(tree, limit=page_size, offset=offset)
            for hit in raw.hits:
                yield self._map_hit(hit)
                yielded += 1
                if max_results is not None and yielded >= max_results:
                    return
            offset += len(raw.hits)
            if len(raw.hits) < page_size or offset >= raw.total_hits:
                return

    @staticmethod
    def _map_hit(hit: dict) -> Record:
        source = hit.get("_source")
        if not isinstance(source, dict):
            raise MalformedQueryError(f"Hit {hit.get('_id')!r} has no stored source")
        return document_to_record(source, doc_id=hit.get("_id"))
