"""OpenSearch backend — product index on OpenSearch (v2+).

OpenSearch is an AWS-maintained fork of Elasticsearch with a compatible
query DSL, so this backend shares the query compiler and index mapping with
the Elasticsearch backend and only differs in the client library.

Install the optional dependency::

    pip install catalogsync[opensearch]
    # or: pip install "opensearch-py[async]"
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable
from datetime import UTC, datetime
from typing import Any, TypeVar

from catalogsync.errors import (
    ConfigurationError,
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

_SCAN_PAGE_SIZE = 1000


class OpenSearchBackend(IndexBackend):
    """Index backend for OpenSearch (v2+).

    Args:
        hosts: List of OpenSearch node URLs.
        index_name: Name of the product index.
        username: Optional HTTP basic-auth username.
        password: Optional HTTP basic-auth password.
        api_key: Unused by OpenSearch; accepted for settings compatibility.
        verify_certs: Whether to verify TLS certificates.
        request_timeout: Seconds before any single call is abandoned.
        refresh: Refresh policy for writes (``"false"``, ``"true"``, ``"wait_for"``).
        **kwargs: Additional keyword arguments forwarded to ``AsyncOpenSearch``.
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
        self._hosts = hosts or ["https://localhost:9200"]
        self._index_name = index_name
        self._username = username
        self._password = password
        self._verify_certs = verify_certs
        self._request_timeout = request_timeout
        self._refresh = refresh
        self._extra_kwargs = kwargs
        self._client: Any = None
        self._exc: Any = None
        self._index_ready = False

    @property
    def name(self) -> str:
        return "opensearch"

    async def initialize(self) -> None:
        """Create the ``AsyncOpenSearch`` client and ensure the product index exists."""
        try:
            from opensearchpy import AsyncOpenSearch
            from opensearchpy import exceptions as os_exceptions
        except ImportError as e:
            raise ConfigurationError(
                "opensearch-py package is required.  Install with: pip install catalogsync[opensearch]"
            ) from e

        client_kwargs: dict[str, Any] = {
            "hosts": self._hosts,
            "verify_certs": self._verify_certs,
            "ssl_show_warn": False,
            "timeout": self._request_timeout,
        }
        if self._username and self._password:
            client_kwargs["http_auth"] = (self._username, self._password)

        client_kwargs.update(self._extra_kwargs)

        self._exc = os_exceptions
        self._client = AsyncOpenSearch(**client_kwargs)
        info = await self._call(self._client.info())
        logger.info(
            "Connected to OpenSearch cluster: %s (v%s)",
            info.get("cluster_name", "unknown"),
            info.get("version", {}).get("number", "unknown"),
        )
        await self._ensure_index()

    async def shutdown(self) -> None:
        """Close the OpenSearch client."""
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
                    body=source,
                    version=version,
                    version_type="external_gte",
                    refresh=self._refresh,
                )
            )
        except self._exc.ConflictError:
            logger.debug("Skipped stale write for %s (version %d)", doc_id, version)
            return WriteOutcome(applied=False, reason="stale_version")
        except self._exc.TransportError as e:
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
        except self._exc.NotFoundError:
            return WriteOutcome(applied=False, reason="not_found")
        except self._exc.ConflictError:
            logger.debug("Skipped stale delete for %s (version %s)", doc_id, version)
            return WriteOutcome(applied=False, reason="stale_version")
        except self._exc.TransportError as e:
            raise self._write_error(e, "delete", doc_id) from e
        return WriteOutcome(applied=True)

    # ── Search ───────────────────────────────────────────────────────────

    async def search(self, tree: QueryNode, *, limit: int, offset: int = 0) -> RawHits:
        """Compile the tree to the query DSL and execute it."""
        client = self._require_client()
        body = compile_search(tree, limit=limit, offset=offset)
        try:
            start = time.monotonic()
            response = await self._call(client.search(index=self._index_name, body=body))
            took_ms = int((time.monotonic() - start) * 1000)
        except self._exc.NotFoundError:
            return RawHits()
        except self._exc.RequestError as e:
            raise MalformedQueryError(f"OpenSearch rejected query: {e}") from e
        except self._exc.TransportError as e:
            raise TransientIndexError(f"OpenSearch query failed: {e}") from e

        hits = response.get("hits", {})
        return RawHits(
            total_hits=hits.get("total", {}).get("value", 0),
            hits=list(hits.get("hits", [])),
            took_ms=took_ms,
        )

    async def document_ids(self) -> set[str]:
        """Page through the whole index with ``search_after`` collecting ids."""
        client = self._require_client()
        ids: set[str] = set()
        body: dict[str, Any] = {
            "query": {"match_all": {}},
            "size": _SCAN_PAGE_SIZE,
            "sort": [{"id": {"order": "asc"}}],
            "_source": False,
        }
        while True:
            try:
                response = await self._call(client.search(index=self._index_name, body=body))
            except self._exc.NotFoundError:
                return ids
            except self._exc.TransportError as e:
                raise TransientIndexError(f"OpenSearch scan failed: {e}") from e
            page = response.get("hits", {}).get("hits", [])
            ids.update(hit["_id"] for hit in page)
            if len(page) < _SCAN_PAGE_SIZE:
                return ids
            body["search_after"] = page[-1]["sort"]

    # ── Health ───────────────────────────────────────────────────────────

    async def health_check(self) -> IndexHealth:
        """Check OpenSearch cluster health."""
        if not self._client:
            return IndexHealth(status="unhealthy", message="Client not initialized")

        try:
            start = time.monotonic()
            health = await self._call(self._client.cluster.health())
            latency_ms = int((time.monotonic() - start) * 1000)

            status_map = {"green": "healthy", "yellow": "degraded", "red": "unhealthy"}

            return IndexHealth(
                status=status_map.get(health.get("status", "red"), "unhealthy"),
                latency_ms=latency_ms,
                last_check=datetime.now(UTC).isoformat(),
                message=f"Cluster: {health.get('cluster_name')}, Nodes: {health.get('number_of_nodes')}",
            )
        except Exception as e:
            return IndexHealth(status="unhealthy", message=str(e))

    # ── Helpers ──────────────────────────────────────────────────────────

    def _require_client(self) -> Any:
        if not self._client:
            raise IndexUnavailableError("OpenSearch client not initialized.")
        return self._client

    async def _call(self, awaitable: Awaitable[_T]) -> _T:
        """Await a client call with a hard timeout, mapping connection failures."""
        try:
            return await asyncio.wait_for(awaitable, timeout=self._request_timeout)
        except TimeoutError as e:
            raise IndexUnavailableError(f"OpenSearch call timed out after {self._request_timeout}s") from e
        except self._exc.ConnectionError as e:
            raise IndexUnavailableError(f"Cannot reach OpenSearch: {e}") from e

    async def _ensure_index(self) -> None:
        if self._index_ready:
            return
        client = self._require_client()
        if not await self._call(client.indices.exists(index=self._index_name)):
            try:
                await self._call(
                    client.indices.create(index=self._index_name, body={"mappings": INDEX_MAPPINGS})
                )
                logger.info("Created index '%s'", self._index_name)
            except self._exc.RequestError as e:
                if "resource_already_exists" not in str(e):
                    raise IndexWriteError(f"Failed to create index '{self._index_name}': {e}") from e
        self._index_ready = True

    @staticmethod
    def _write_error(e: Exception, op: str, doc_id: str) -> Exception:
        status = getattr(e, "status_code", None)
        if not isinstance(status, int) or status == 429 or status >= 500:
            return TransientIndexError(f"OpenSearch {op} of '{doc_id}' failed with {status}: {e}")
        return IndexWriteError(f"OpenSearch {op} of '{doc_id}' rejected with {status}: {e}")
