"""Tests for the Elasticsearch backend (client mocked)."""

from __future__ import annotations

from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from elasticsearch import ApiError
from elasticsearch import ConnectionError as ESConnectionError

from catalogsync.errors import (
    IndexUnavailableError,
    IndexWriteError,
    MalformedQueryError,
    TransientIndexError,
)
from catalogsync.index.elasticsearch import ElasticsearchBackend
from catalogsync.models.document import INDEX_MAPPINGS
from catalogsync.query.compiler import SORT_ORDER, compile_node
from catalogsync.query.tree import Match

# ── Fixtures ──────────────────────────────────────────────────────────────────


def _api_error(status: int, message: str = "error") -> ApiError:
    return ApiError(message, meta=MagicMock(status=status), body={"error": message})


@pytest.fixture
def backend() -> ElasticsearchBackend:
    return ElasticsearchBackend(hosts=["http://es:9200"], index_name="products-test", refresh="wait_for")


@pytest.fixture
def client(backend: ElasticsearchBackend) -> AsyncMock:
    mock_client = AsyncMock()
    backend._client = mock_client
    backend._index_ready = True
    return mock_client


@pytest.fixture
def sample_hit() -> dict[str, Any]:
    return {
        "_index": "products-test",
        "_id": "p1",
        "_score": 3.2,
        "_source": {"id": "p1", "name": "Apple iPhone 13", "description": "Smartphone", "price": 999.99, "version": 2},
    }


# ── Initialization ───────────────────────────────────────────────────────────


class TestElasticsearchInitialization:
    def test_name_and_defaults(self) -> None:
        b = ElasticsearchBackend()
        assert b.name == "elasticsearch"
        assert b._hosts == ["http://localhost:9200"]
        assert b._index_name == "products"

    async def test_initialize_creates_index(self) -> None:
        mock_client = AsyncMock()
        mock_client.info.return_value = {"cluster_name": "test", "version": {"number": "8.13.0"}}
        mock_client.indices.exists.return_value = False
        with patch("catalogsync.index.elasticsearch.AsyncElasticsearch", return_value=mock_client) as factory:
            b = ElasticsearchBackend(hosts=["http://es:9200"], username="elastic", password="secret")
            await b.initialize()

        kwargs = factory.call_args.kwargs
        assert kwargs["hosts"] == ["http://es:9200"]
        assert kwargs["basic_auth"] == ("elastic", "secret")
        mock_client.indices.create.assert_awaited_once_with(index="products", mappings=INDEX_MAPPINGS)

    async def test_initialize_prefers_api_key(self) -> None:
        mock_client = AsyncMock()
        mock_client.info.return_value = {}
        mock_client.indices.exists.return_value = True
        with patch("catalogsync.index.elasticsearch.AsyncElasticsearch", return_value=mock_client) as factory:
            await ElasticsearchBackend(api_key="k", username="u", password="p").initialize()
        kwargs = factory.call_args.kwargs
        assert kwargs["api_key"] == "k"
        assert "basic_auth" not in kwargs
        mock_client.indices.create.assert_not_awaited()

    async def test_unreachable_cluster_is_unavailable(self) -> None:
        mock_client = AsyncMock()
        mock_client.info.side_effect = ESConnectionError("connection refused")
        with (
            patch("catalogsync.index.elasticsearch.AsyncElasticsearch", return_value=mock_client),
            pytest.raises(IndexUnavailableError, match="Cannot reach Elasticsearch"),
        ):
            await ElasticsearchBackend().initialize()

    async def test_calls_before_initialize_are_unavailable(self, backend: ElasticsearchBackend) -> None:
        with pytest.raises(IndexUnavailableError, match="not initialized"):
            await backend.search(Match(field="name", value="x"), limit=10)

    async def test_shutdown_closes_client(self, backend: ElasticsearchBackend, client: AsyncMock) -> None:
        await backend.shutdown()
        client.close.assert_awaited_once()
        assert backend._client is None


# ── Writes ───────────────────────────────────────────────────────────────────


class TestElasticsearchWrites:
    async def test_upsert_uses_external_versioning(self, backend: ElasticsearchBackend, client: AsyncMock) -> None:
        source = {"id": "p1", "name": "x", "description": "", "price": 1.0, "version": 4}
        outcome = await backend.upsert("p1", source, 4)
        assert outcome.applied
        client.index.assert_awaited_once_with(
            index="products-test",
            id="p1",
            document=source,
            version=4,
            version_type="external_gte",
            refresh="wait_for",
        )

    async def test_version_conflict_is_noop(self, backend: ElasticsearchBackend, client: AsyncMock) -> None:
        client.index.side_effect = _api_error(409, "version_conflict_engine_exception")
        outcome = await backend.upsert("p1", {}, 1)
        assert not outcome.applied
        assert outcome.reason == "stale_version"

    @pytest.mark.parametrize("status", [429, 500, 503])
    async def test_server_errors_are_transient(self, backend: ElasticsearchBackend, client: AsyncMock, status: int) -> None:
        client.index.side_effect = _api_error(status)
        with pytest.raises(TransientIndexError):
            await backend.upsert("p1", {}, 1)

    async def test_mapping_rejection_is_permanent(self, backend: ElasticsearchBackend, client: AsyncMock) -> None:
        client.index.side_effect = _api_error(400, "strict_dynamic_mapping_exception")
        with pytest.raises(IndexWriteError):
            await backend.upsert("p1", {"color": "red"}, 1)

    async def test_connection_error_is_unavailable(self, backend: ElasticsearchBackend, client: AsyncMock) -> None:
        client.index.side_effect = ESConnectionError("refused")
        with pytest.raises(IndexUnavailableError):
            await backend.upsert("p1", {}, 1)

    async def test_versioned_remove(self, backend: ElasticsearchBackend, client: AsyncMock) -> None:
        outcome = await backend.remove("p1", 3)
        assert outcome.applied
        client.delete.assert_awaited_once_with(
            index="products-test", id="p1", refresh="wait_for", version=3, version_type="external_gte"
        )

    async def test_remove_missing_is_noop(self, backend: ElasticsearchBackend, client: AsyncMock) -> None:
        client.delete.side_effect = _api_error(404, "not_found")
        outcome = await backend.remove("p1")
        assert outcome.reason == "not_found"
        client.delete.assert_awaited_once_with(index="products-test", id="p1", refresh="wait_for")


# ── Search ───────────────────────────────────────────────────────────────────


class TestElasticsearchSearch:
    async def test_search_compiles_tree(
        self, backend: ElasticsearchBackend, client: AsyncMock, sample_hit: dict
    ) -> None:
        client.search.return_value = {"hits": {"total": {"value": 1}, "hits": [sample_hit]}}
        tree = Match(field="name", value="iphone")
        raw = await backend.search(tree, limit=10, offset=20)

        assert raw.total_hits == 1
        assert raw.hits == [sample_hit]
        client.search.assert_awaited_once_with(
            index="products-test",
            query=compile_node(tree),
            from_=20,
            size=10,
            sort=SORT_ORDER,
            track_total_hits=True,
        )

    async def test_missing_index_is_empty(self, backend: ElasticsearchBackend, client: AsyncMock) -> None:
        client.search.side_effect = _api_error(404, "index_not_found_exception")
        raw = await backend.search(Match(field="name", value="x"), limit=10)
        assert raw.total_hits == 0

    async def test_rejected_query_is_malformed(self, backend: ElasticsearchBackend, client: AsyncMock) -> None:
        client.search.side_effect = _api_error(400, "parsing_exception")
        with pytest.raises(MalformedQueryError):
            await backend.search(Match(field="name", value="x"), limit=10)

    async def test_timeout_is_unavailable(self, backend: ElasticsearchBackend, client: AsyncMock) -> None:
        client.search.side_effect = TimeoutError()
        with pytest.raises(IndexUnavailableError, match="timed out"):
            await backend.search(Match(field="name", value="x"), limit=10)

    async def test_document_ids_scans_index(self, backend: ElasticsearchBackend, client: AsyncMock) -> None:
        async def fake_scan(*args: Any, **kwargs: Any):
            for doc_id in ("a", "b", "c"):
                yield {"_id": doc_id}

        with patch("catalogsync.index.elasticsearch.async_scan", fake_scan):
            assert await backend.document_ids() == {"a", "b", "c"}


# ── Health ───────────────────────────────────────────────────────────────────


class TestElasticsearchHealth:
    async def test_health_check(self, backend: ElasticsearchBackend, client: AsyncMock) -> None:
        client.cluster.health.return_value = {"status": "yellow", "cluster_name": "c1", "number_of_nodes": 1}
        client.count.return_value = {"count": 42}
        health = await backend.health_check()
        assert health.status == "degraded"
        assert health.document_count == 42
        assert "c1" in health.message

    async def test_health_check_failure(self, backend: ElasticsearchBackend, client: AsyncMock) -> None:
        client.cluster.health.side_effect = ESConnectionError("down")
        health = await backend.health_check()
        assert health.status == "unhealthy"

    async def test_health_without_client(self, backend: ElasticsearchBackend) -> None:
        assert (await backend.health_check()).status == "unhealthy"
