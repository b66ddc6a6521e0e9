"""Elasticsearch backend — product index on Elasticsearch (v8+).

Uses the official ``elasticsearch`` async client. Documents are written
with external versioning (``version_type=external_gte``) so the index
only ever moves forward in record version, whatever order retries and
replays arrive in.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable
from datetime import UTC, datetime
from typing import Any, TypeVar

from elasticsearch import ApiError, AsyncElasticsearch, TransportError
from elasticsearch.helpers import async_scan

from catalogsync.errors import (
    IndexUnavailableError,
    IndexWriteError,
    MalformedQueryError,
    TransientIndexError,
)
from catalogsync.index.base import IndexBackend, IndexHealth, RawHits, WriteOutcome
from catalogsync.models.document import INDEX_MAPPINGS
from catalogsync.query.compiler import compile_search
from catalogsync.query.tree import QueryNode

logger = logging.getLogger(__name__)

_T = TypeVar("_T")


class ElasticsearchBackend(IndexBackend):
    """Index backend for Elasticsearch (v8+).

    Args:
        hosts: List of Elasticsearch node URLs.
        index_name: Name of the product index.
        username: Optional HTTP basic-auth username.
        password: Optional HTTP basic-auth password.
        api_key: Optional API key.
        verify_certs: Whether to verify TLS certificates.
        request_timeout: Seconds before any single call is abandoned.
        refresh: Refresh policy for writes (``"false"``, ``"true"``, ``"wait_for"``).
        **kwargs: Additional keyword arguments forwarded to ``AsyncElasticsearch``.
    """

    def __init__(
        self,
        hosts: list[str] | None = None,
        index_name: str = "products",
        username: str | None = None,
        password: str | None = None,
        api_key: str | None = None,
        verify_certs: bool = True,
        request_timeout: float = 10.0,
        refresh: str = "false",
        **kwargs: Any,
    ) -> None:
        self._hosts = hosts or ["http://localhost:9200"]
        self._index_name = index_name
        self._username = username
        self._password = password
        self._api_key = api_key
        self._verify_certs = verify_certs
        self._request_timeout = request_timeout
        self._refresh = refresh
        self._extra_kwargs = kwargs
        self._client: AsyncElasticsearch | None = None
        self._index_ready = False

    @property
    def name(self) -> str:
        return "elasticsearch"

    async def initialize(self) -> None:
        """Create the ``AsyncElasticsearch`` client and ensure the product index exists."""
        client_kwargs: dict[str, Any] = {
            "hosts": self._hosts,
            "verify_certs": self._verify_certs,
            "request_timeout": self._request_timeout,
        }
        if self._api_key:
            client_kwargs["api_key"] = self._api_key
        elif self._username and self._password:
            client_kwargs["basic_auth"] = (self._username, self._password)

        client_kwargs.update(self._extra_kwargs)
        self._client = AsyncElasticsearch(**client_kwargs)

        info = await self._call(self._client.info())
        logger.info(
            "Connected to Elasticsearch cluster: %s (v%s)",
            info.get("cluster_name", "unknown"),
            info.get("version", {}).get("number", "unknown"),
        )
        await self._ensure_index()

    async def shutdown(self) -> None:
        """Close the Elasticsearch client."""
        if self._client:
            await self._client.close()
            self._client = None
            self._index_ready = False

    # ── Writes ───────────────────────────────────────────────────────────

    async def upsert(self, doc_id: str, source: dict[str, Any], version: int) -> WriteOutcome:
        """Replace a document, ignoring writes older than the stored version."""
        client = self._require_client()
        await self._ensure_index()
        try:
            await self._call(
                client.index(
                    index=self._index_name,
                    id=doc_id,
                    document=source,
                    version=version,
                    version_type="external_gte",
                    refresh=self._refresh,
                )
            )
        except ApiError as e:
            if e.meta.status == 409:
                logger.debug("Skipped stale write for %s (version %d)", doc_id, version)
                return WriteOutcome(applied=False, reason="stale_version")
            raise self._write_error(e, "index", doc_id) from e
        return WriteOutcome(applied=True)

    async def remove(self, doc_id: str, version: int | None = None) -> WriteOutcome:
        """Delete a document by id, versioned when ``version`` is given."""
        client = self._require_client()
        await self._ensure_index()
        versioning: dict[str, Any] = {}
        if version is not None:
            versioning = {"version": version, "version_type": "external_gte"}
        try:
            await self._call(client.delete(index=self._index_name, id=doc_id, refresh=self._refresh, **versioning))
        except ApiError as e:
            if e.meta.status == 404:
                return WriteOutcome(applied=False, reason="not_found")
            if e.meta.status == 409:
                logger.debug("Skipped stale delete for %s (version %s)", doc_id, version)
                return WriteOutcome(applied=False, reason="stale_version")
            raise self._write_error(e, "delete", doc_id) from e
        return WriteOutcome(applied=True)

    # ── Search ───────────────────────────────────────────────────────────

    async def search(self, tree: QueryNode, *, limit: int, offset: int = 0) -> RawHits:
        """Compile the tree to the query DSL and execute it."""
        client = self._require_client()
        request = compile_search(tree, limit=limit, offset=offset)
        try:
            start = time.monotonic()
            response = await self._call(
                client.search(
                    index=self._index_name,
                    query=request["query"],
                    from_=request["from"],
                    size=request["size"],
                    sort=request["sort"],
                    track_total_hits=request["track_total_hits"],
                )
            )
            took_ms = int((time.monotonic() - start) * 1000)
        except ApiError as e:
            if e.meta.status == 404:
                return RawHits()
            if e.meta.status == 400:
                raise MalformedQueryError(f"Elasticsearch rejected query: {e}") from e
            raise TransientIndexError(f"Elasticsearch query failed: {e}") from e

        hits = response.get("hits", {})
        return RawHits(
            total_hits=hits.get("total", {}).get("value", 0),
            hits=list(hits.get("hits", [])),
            took_ms=took_ms,
        )

    async def document_ids(self) -> set[str]:
        """Scroll through the whole index collecting document ids."""
        client = self._require_client()
        ids: set[str] = set()
        try:
            async for hit in async_scan(
                client,
                index=self._index_name,
                query={"query": {"match_all": {}}},
                _source=False,
            ):
                ids.add(hit["_id"])
        except TransportError as e:
            raise IndexUnavailableError(f"Elasticsearch scan failed: {e}") from e
        except ApiError as e:
            if e.meta.status == 404:
                return set()
            raise TransientIndexError(f"Elasticsearch scan failed: {e}") from e
        return ids

    # ── Health ───────────────────────────────────────────────────────────

    async def health_check(self) -> IndexHealth:
        """Check Elasticsearch cluster health and count indexed products."""
        if not self._client:
            return IndexHealth(status="unhealthy", message="Client not initialized")

        try:
            start = time.monotonic()
            health = await self._call(self._client.cluster.health(index=self._index_name))
            latency_ms = int((time.monotonic() - start) * 1000)
            count = await self._call(self._client.count(index=self._index_name))

            status_map = {"green": "healthy", "yellow": "degraded", "red": "unhealthy"}

            return IndexHealth(
                status=status_map.get(health.get("status", "red"), "unhealthy"),
                latency_ms=latency_ms,
                last_check=datetime.now(UTC).isoformat(),
                document_count=count.get("count"),
                message=f"Cluster: {health.get('cluster_name')}, Nodes: {health.get('number_of_nodes')}",
            )
        except Exception as e:
            return IndexHealth(status="unhealthy", message=str(e))

    # ── Helpers ──────────────────────────────────────────────────────────

    def _require_client(self) -> AsyncElasticsearch:
        if not self._client:
            raise IndexUnavailableError("Elasticsearch client not initialized.")
        return self._client

    async def _call(self, awaitable: Awaitable[_T]) -> _T:
        """Await a client call with a hard timeout, mapping transport failures."""
        try:
            return await asyncio.wait_for(awaitable, timeout=self._request_timeout)
        except TimeoutError as e:
            raise IndexUnavailableError(f"Elasticsearch call timed out after {self._request_timeout}s") from e
        except TransportError as e:
            raise IndexUnavailableError(f"Cannot reach Elasticsearch: {e}") from e

    async def _ensure_index(self) -> None:
        if self._index_ready:
            return
        client = self._require_client()
        exists = await self._call(client.indices.exists(index=self._index_name))
        if not exists:
            try:
                await self._call(client.indices.create(index=self._index_name, mappings=INDEX_MAPPINGS))
                logger.info("Created index '%s'", self._index_name)
            except ApiError as e:
                if "resource_already_exists" not in str(e):
                    raise IndexWriteError(f"Failed to create index '{self._index_name}': {e}") from e
        self._index_ready = True

    @staticmethod
    def _write_error(e: ApiError, op: str, doc_id: str) -> Exception:
        status = e.meta.status
        if status == 429 or status >= 500:
            return TransientIndexError(f"Elasticsearch {op} of '{doc_id}' failed with {status}: {e}")
        return IndexWriteError(f"Elasticsearch {op} of '{doc_id}' rejected with {status}: {e}")
