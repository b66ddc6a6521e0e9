"""catalogsync Python SDK — Async and sync clients for the catalogsync REST API.

Usage::

    # Async
    async with AsyncCatalogSyncClient("http://localhost:8080") as client:
        product = await client.add_product("Apple iPhone 13", price="999.99")
        response = await client.find_by_name("iPhone")

    # Sync (wraps async client internally)
    client = CatalogSyncClient("http://localhost:8080")
    response = client.suggest("ap")

Search calls return the response body even when the server answers 503
because the index is unavailable; check ``response["index_available"]``.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Coroutine
from decimal import Decimal
from typing import Any, TypeVar, cast
from urllib.parse import quote

import httpx

_T = TypeVar("_T")

logger = logging.getLogger(__name__)

# ═══════════════════════════════════════════════════════════════════════════════
# Response types (plain dicts mirroring the server JSON)
# ═══════════════════════════════════════════════════════════════════════════════

Product = dict[str, Any]
"""A product record dict (mirrors ``Record`` JSON)."""

SearchResult = dict[str, Any]
"""Search response dict (mirrors ``SearchResponse`` JSON)."""


def _price(value: Decimal | float | str | None) -> str | None:
    return None if value is None else str(value)


def _search_body(resp: httpx.Response) -> SearchResult:
    if resp.status_code == 503:
        body = resp.json()
        if isinstance(body, dict) and body.get("status") == "index_unavailable":
            logger.warning("catalogsync index unavailable: %s", body.get("message"))
            return body
    resp.raise_for_status()
    return cast(SearchResult, resp.json())


# ═══════════════════════════════════════════════════════════════════════════════
# Async client
# ═══════════════════════════════════════════════════════════════════════════════


class AsyncCatalogSyncClient:
    """Async Python client for the catalogsync API.

    Args:
        base_url: catalogsync server URL, e.g. ``"http://localhost:8080"``.
        timeout: Request timeout in seconds.
        **httpx_kwargs: Additional keyword arguments passed to ``httpx.AsyncClient``.
    """

    def __init__(
        self,
        base_url: str = "http://localhost:8080",
        *,
        timeout: float = 30.0,
        **httpx_kwargs: Any,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout),
            **httpx_kwargs,
        )

    async def __aenter__(self) -> AsyncCatalogSyncClient:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def _json(self, method: str, url: str, **kwargs: Any) -> Any:
        resp = await self._client.request(method, url, **kwargs)
        resp.raise_for_status()
        return resp.json()

    # ── Health ──

    async def health(self) -> dict[str, Any]:
        """Check server health."""
        return cast(dict[str, Any], await self._json("GET", "/v1/health"))

    async def index_health(self) -> dict[str, Any]:
        """Check search index health."""
        return cast(dict[str, Any], await self._json("GET", "/v1/health/index"))

    # ── Products ──

    async def add_product(
        self,
        name: str,
        *,
        price: Decimal | float | str,
        description: str = "",
    ) -> Product:
        """Create a product.

        Raises:
            httpx.HTTPStatusError: 422 when name or price is invalid.
        """
        payload = {"name": name, "description": description, "price": _price(price)}
        return cast(Product, await self._json("POST", "/v1/products", json=payload))

    async def list_products(self) -> list[Product]:
        return cast(list[Product], await self._json("GET", "/v1/products"))

    async def get_product(self, product_id: str) -> Product:
        return cast(Product, await self._json("GET", f"/v1/products/{quote(product_id, safe='')}"))

    async def update_product(self, product_id: str, **fields: Any) -> Product:
        """Partially update a product; only the given fields change."""
        if "price" in fields:
            fields["price"] = _price(fields["price"])
        return cast(
            Product,
            await self._json("PATCH", f"/v1/products/{quote(product_id, safe='')}", json=fields),
        )

    async def delete_product(self, product_id: str) -> None:
        resp = await self._client.delete(f"/v1/products/{quote(product_id, safe='')}")
        resp.raise_for_status()

    # ── Search ──

    async def find_like(self, name: str) -> SearchResult:
        """Products whose name or description contains every term of ``name``."""
        return _search_body(await self._client.get(f"/v1/products/like/{quote(name, safe='')}"))

    async def find_by_name(self, name: str) -> SearchResult:
        """Products whose name contains every term of ``name``."""
        return _search_body(await self._client.get(f"/v1/products/name/{quote(name, safe='')}"))

    async def search(
        self,
        intent: dict[str, Any],
        *,
        limit: int | None = None,
        offset: int = 0,
    ) -> SearchResult:
        """Run a structured search intent, e.g. ``{"kind": "price_range", "min_price": "500"}``."""
        payload = {"intent": intent, "paging": {"limit": limit, "offset": offset}}
        return _search_body(await self._client.post("/v1/search", json=payload))

    async def suggest(self, prefix: str) -> SearchResult:
        """Up to five products whose name starts with ``prefix``."""
        return _search_body(await self._client.get("/v1/search/suggest", params={"q": prefix}))

    # ── Synchronization ──

    async def sync_status(self) -> dict[str, Any]:
        return cast(dict[str, Any], await self._json("GET", "/v1/sync/status"))

    async def dead_letters(self) -> list[dict[str, Any]]:
        return cast(list[dict[str, Any]], await self._json("GET", "/v1/sync/dead-letters"))

    async def redrive(self) -> int:
        """Resubmit dead-lettered events; returns how many were resubmitted."""
        body = await self._json("POST", "/v1/sync/dead-letters/redrive")
        return int(body["resubmitted"])

    async def reconcile(self) -> dict[str, Any]:
        """Rebuild the index from the record store."""
        return cast(dict[str, Any], await self._json("POST", "/v1/sync/reconcile"))


# ═══════════════════════════════════════════════════════════════════════════════
# Sync client (wraps AsyncCatalogSyncClient)
# ═══════════════════════════════════════════════════════════════════════════════


class CatalogSyncClient:
    """Synchronous Python client for the catalogsync API.

    Wraps :class:`AsyncCatalogSyncClient` using ``asyncio.run``; every call
    opens and closes its own connection.

    Args:
        base_url: catalogsync server URL.
        timeout: Request timeout in seconds.
        **httpx_kwargs: Additional keyword arguments passed to ``httpx.AsyncClient``.
    """

    def __init__(
        self,
        base_url: str = "http://localhost:8080",
        *,
        timeout: float = 30.0,
        **httpx_kwargs: Any,
    ) -> None:
        self._base_url = base_url
        self._timeout = timeout
        self._httpx_kwargs = httpx_kwargs

    def _run(self, coro: Coroutine[Any, Any, _T]) -> _T:
        """Run an async coroutine synchronously."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        if loop and loop.is_running():
            import concurrent.futures

            with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
                return pool.submit(asyncio.run, coro).result()
        return asyncio.run(coro)

    def _make_client(self) -> AsyncCatalogSyncClient:
        return AsyncCatalogSyncClient(
            self._base_url,
            timeout=self._timeout,
            **self._httpx_kwargs,
        )

    def _call(self, method: str, *args: Any, **kwargs: Any) -> Any:
        async def _invoke() -> Any:
            async with self._make_client() as c:
                return await getattr(c, method)(*args, **kwargs)

        return self._run(_invoke())

    def health(self) -> dict[str, Any]:
        return cast(dict[str, Any], self._call("health"))

    def index_health(self) -> dict[str, Any]:
        return cast(dict[str, Any], self._call("index_health"))

    def add_product(self, name: str, *, price: Decimal | float | str, description: str = "") -> Product:
        return cast(Product, self._call("add_product", name, price=price, description=description))

    def list_products(self) -> list[Product]:
        return cast(list[Product], self._call("list_products"))

    def get_product(self, product_id: str) -> Product:
        return cast(Product, self._call("get_product", product_id))

    def update_product(self, product_id: str, **fields: Any) -> Product:
        return cast(Product, self._call("update_product", product_id, **fields))

    def delete_product(self, product_id: str) -> None:
        self._call("delete_product", product_id)

    def find_like(self, name: str) -> SearchResult:
        return cast(SearchResult, self._call("find_like", name))

    def find_by_name(self, name: str) -> SearchResult:
        return cast(SearchResult, self._call("find_by_name", name))

    def search(self, intent: dict[str, Any], *, limit: int | None = None, offset: int = 0) -> SearchResult:
        return cast(SearchResult, self._call("search", intent, limit=limit, offset=offset))

    def suggest(self, prefix: str) -> SearchResult:
        return cast(SearchResult, self._call("suggest", prefix))

    def sync_status(self) -> dict[str, Any]:
        return cast(dict[str, Any], self._call("sync_status"))

    def dead_letters(self) -> list[dict[str, Any]]:
        return cast(list[dict[str, Any]], self._call("dead_letters"))

    def redrive(self) -> int:
        return cast(int, self._call("redrive"))

    def reconcile(self) -> dict[str, Any]:
        return cast(dict[str, Any], self._call("reconcile"))
