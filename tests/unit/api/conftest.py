"""Fixtures for API tests: the app served in-process over httpx."""

from __future__ import annotations

from collections.abc import AsyncIterator

import httpx
import pytest

from catalogsync.api.app import create_app
from catalogsync.api.deps import set_engine
from catalogsync.core.engine import CatalogSyncEngine


@pytest.fixture
async def client(engine: CatalogSyncEngine) -> AsyncIterator[httpx.AsyncClient]:
    """HTTP client bound to an app serving the test engine."""
    app = create_app(engine.settings, engine=engine)
    set_engine(engine)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    set_engine(None)
