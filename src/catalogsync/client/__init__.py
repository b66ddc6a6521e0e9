"""catalogsync Python SDK — Client library for the catalogsync API.

Quick start::

    from catalogsync.client import CatalogSyncClient

    client = CatalogSyncClient("http://localhost:8080")
    client.add_product("Apple iPhone 13", price="999.99", description="Smartphone")
    response = client.search({"kind": "fuzzy_match", "query": "Aple iPhone"})
"""

from catalogsync.client.client import AsyncCatalogSyncClient, CatalogSyncClient

__all__ = ["AsyncCatalogSyncClient", "CatalogSyncClient"]
