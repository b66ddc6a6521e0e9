"""Tests for the OpenSearch backend (client mocked)."""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest
from opensearchpy import exceptions as os_exceptions

from catalogsync.errors import (
    ConfigurationError,
    IndexUnavailableError,
    IndexWriteError,
    MalformedQueryError,
    TransientIndexError,
)
from catalogsync.index.opensearch import OpenSearchBackend
from catalogsync.query.compiler import compile_search
from catalogsync.query.tree import Wildcard

# ── Fixtures ──────────────────────────────────────────────────────────────────


@pytest.fixture
def backend() -> OpenSearchBackend:
    b = OpenSearchBackend(hosts=["https://os:9200"], index_name="products-test")
    b._exc = os_exceptions
    return b


@pytest.fixture
def client(backend: OpenSearchBackend) -> AsyncMock:
    mock_client = AsyncMock()
    backend._client = mock_client
    backend._index_ready = True
    return mock_client


# ── Initialization ───────────────────────────────────────────────────────────


class TestOpenSearchInitialization:
    def test_name(self) -> None:
        assert OpenSearchBackend().name == "opensearch"

    async def test_initialize_missing_package_raises(self) -> None:
        b = OpenSearchBackend()
        with patch.dict("sys.modules", {"opensearchpy": None}), pytest.raises(ConfigurationError):
            await b.initialize()

    async def test_initialize_creates_index(self) -> None:
        mock_client = AsyncMock()
        mock_client.info.return_value = {"cluster_name": "os", "version": {"number": "2.11.0"}}
        mock_client.indices.exists.return_value = False
        with patch("opensearchpy.AsyncOpenSearch", return_value=mock_client) as factory:
            b = OpenSearchBackend(username="admin", password="admin")
            await b.initialize()
        assert factory.call_args.kwargs["http_auth"] == ("admin", "admin")
        mock_client.indices.create.assert_awaited_once()
        assert "mappings" in mock_client.indices.create.call_args.kwargs["body"]


# ── Writes ───────────────────────────────────────────────────────────────────


class TestOpenSearchWrites:
    async def test_upsert(self, backend: OpenSearchBackend, client: AsyncMock) -> None:
        outcome = await backend.upsert("p1", {"id": "p1"}, 7)
        assert outcome.applied
        kwargs = client.index.call_args.kwargs
        assert kwargs["body"] == {"id": "p1"}
        assert kwargs["version"] == 7
        assert kwargs["version_type"] == "external_gte"

    async def test_conflict_is_noop(self, backend: OpenSearchBackend, client: AsyncMock) -> None:
        client.index.side_effect = os_exceptions.ConflictError(409, "version_conflict_engine_exception", {})
        assert (await backend.upsert("p1", {}, 1)).reason == "stale_version"

    async def test_server_error_is_transient(self, backend: OpenSearchBackend, client: AsyncMock) -> None:
        client.index.side_effect = os_exceptions.TransportError(503, "unavailable", {})
        with pytest.raises(TransientIndexError):
            await backend.upsert("p1", {}, 1)

    async def test_bad_request_is_permanent(self, backend: OpenSearchBackend, client: AsyncMock) -> None:
        client.index.side_effect = os_exceptions.RequestError(400, "mapper_parsing_exception", {})
        with pytest.raises(IndexWriteError):
            await backend.upsert("p1", {}, 1)

    async def test_connection_error_is_unavailable(self, backend: OpenSearchBackend, client: AsyncMock) -> None:
        client.index.side_effect = os_exceptions.ConnectionError("N/A", "connection refused", None)
        with pytest.raises(IndexUnavailableError):
            await backend.upsert("p1", {}, 1)

    async def test_remove_missing_is_noop(self, backend: OpenSearchBackend, client: AsyncMock) -> None:
        client.delete.side_effect = os_exceptions.NotFoundError(404, "not_found", {})
        assert (await backend.remove("p1", 2)).reason == "not_found"
        assert client.delete.call_args.kwargs["version"] == 2


# ── Search ───────────────────────────────────────────────────────────────────


class TestOpenSearchSearch:
    async def test_search_sends_compiled_body(self, backend: OpenSearchBackend, client: AsyncMock) -> None:
        client.search.return_value = {"hits": {"total": {"value": 0}, "hits": []}}
        tree = Wildcard(field="name", prefix="ap")
        await backend.search(tree, limit=5)
        client.search.assert_awaited_once_with(index="products-test", body=compile_search(tree, limit=5))

    async def test_rejected_query_is_malformed(self, backend: OpenSearchBackend, client: AsyncMock) -> None:
        client.search.side_effect = os_exceptions.RequestError(400, "parsing_exception", {})
        with pytest.raises(MalformedQueryError):
            await backend.search(Wildcard(field="name", prefix="x"), limit=5)

    async def test_document_ids_pages_with_search_after(self, backend: OpenSearchBackend, client: AsyncMock) -> None:
        with patch("catalogsync.index.opensearch._SCAN_PAGE_SIZE", 2):
            client.search.side_effect = [
                {"hits": {"hits": [{"_id": "a", "sort": ["a"]}, {"_id": "b", "sort": ["b"]}]}},
                {"hits": {"hits": [{"_id": "c", "sort": ["c"]}]}},
            ]
            ids = await backend.document_ids()
        assert ids == {"a", "b", "c"}
        assert client.search.await_count == 2
        assert client.search.call_args.kwargs["body"]["search_after"] == ["b"]
