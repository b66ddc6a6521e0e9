"""Shared test fixtures and configuration."""

from __future__ import annotations

from collections.abc import AsyncIterator
from decimal import Decimal

import pytest

from catalogsync.config.settings import Settings
from catalogsync.core.engine import CatalogSyncEngine
from catalogsync.index.memory import MemoryIndexBackend
from catalogsync.models.record import ChangeEvent, ChangeKind, Record
from catalogsync.store.repository import RecordStore

IN_MEMORY_DB = "sqlite+pysqlite:///:memory:"


@pytest.fixture
def settings() -> Settings:
    """Test settings: in-memory store and index, retries without delay."""
    return Settings(
        _env_file=None,  # type: ignore[call-arg]
        debug=True,
        database={"url": IN_MEMORY_DB, "timeout_seconds": 5.0},
        index={"backend": "memory", "index_name": "products-test"},
        sync={"workers": 4, "max_attempts": 5, "backoff_initial": 0, "backoff_max": 0},
        observability={"log_level": "debug", "log_format": "console"},
    )


@pytest.fixture
async def store() -> AsyncIterator[RecordStore]:
    s = RecordStore.from_url(IN_MEMORY_DB)
    await s.initialize()
    yield s
    await s.shutdown()


@pytest.fixture
def backend() -> MemoryIndexBackend:
    return MemoryIndexBackend(index_name="products-test")


@pytest.fixture
async def engine(settings: Settings) -> AsyncIterator[CatalogSyncEngine]:
    """A fully wired engine over SQLite and the memory index."""
    e = CatalogSyncEngine(settings)
    await e.initialize()
    yield e
    await e.shutdown()


@pytest.fixture
def sample_record() -> Record:
    return Record(
        id="a1b2c3",
        name="Apple iPhone 13",
        description="Smartphone",
        price=Decimal("999.99"),
        version=1,
    )


def _make_event(
    record: Record | None,
    *,
    sequence: int = 1,
    kind: ChangeKind = ChangeKind.CREATED,
    record_id: str | None = None,
    version: int | None = None,
) -> ChangeEvent:
    """Build a change event for ``record`` (or a tombstone when ``record`` is None)."""
    return ChangeEvent(
        sequence=sequence,
        record_id=record_id or (record.id if record else "missing"),
        kind=kind,
        record=record,
        version=version if version is not None else (record.version if record else 1),
    )


@pytest.fixture
def make_event():
    """Factory fixture building change events."""
    return _make_event

