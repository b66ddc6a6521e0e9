"""Tests for the change synchronizer: lanes, retries, dead letters, reconcile."""

from __future__ import annotations

import asyncio
import random
from decimal import Decimal
from typing import Any

import pytest

from catalogsync.config.settings import SyncSettings
from catalogsync.errors import IndexWriteError, TransientIndexError
from catalogsync.index.base import WriteOutcome
from catalogsync.index.memory import MemoryIndexBackend
from catalogsync.index.writer import IndexWriter
from catalogsync.models.record import ChangeKind, Record
from catalogsync.store.repository import RecordStore
from catalogsync.sync.synchronizer import RECONCILE_SEQUENCE, ChangeSynchronizer

FAST_RETRIES = SyncSettings(workers=4, max_attempts=5, backoff_initial=0, backoff_max=0)

# ── Test backends ────────────────────────────────────────────────────────────


class RecordingBackend(MemoryIndexBackend):
    """Memory backend that logs every write and yields to the loop mid-write."""

    def __init__(self) -> None:
        super().__init__()
        self.writes: list[tuple[str, str, int | None]] = []

    async def upsert(self, doc_id: str, source: dict[str, Any], version: int) -> WriteOutcome:
        await asyncio.sleep(random.random() / 1000)
        self.writes.append(("upsert", doc_id, version))
        return await super().upsert(doc_id, source, version)

    async def remove(self, doc_id: str, version: int | None = None) -> WriteOutcome:
        await asyncio.sleep(random.random() / 1000)
        self.writes.append(("remove", doc_id, version))
        return await super().remove(doc_id, version)


class FlakyBackend(MemoryIndexBackend):
    """Memory backend whose first ``failures`` writes raise ``error``."""

    def __init__(self, failures: int, error: Exception) -> None:
        super().__init__()
        self.failures = failures
        self.error = error
        self.calls = 0

    async def upsert(self, doc_id: str, source: dict[str, Any], version: int) -> WriteOutcome:
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return await super().upsert(doc_id, source, version)


def _record(record_id: str, version: int = 1, name: str = "Widget") -> Record:
    return Record(id=record_id, name=f"{name} v{version}", price=Decimal("1.00"), version=version)


# ── Lanes ────────────────────────────────────────────────────────────────────


class TestLanes:
    def test_lane_for_is_stable(self) -> None:
        sync = ChangeSynchronizer(IndexWriter(MemoryIndexBackend()), FAST_RETRIES)
        assert sync.lane_for("abc") == sync.lane_for("abc")
        assert 0 <= sync.lane_for("abc") < 4

    async def test_per_id_order_preserved(self, make_event) -> None:
        backend = RecordingBackend()
        sync = ChangeSynchronizer(IndexWriter(backend), FAST_RETRIES)
        await sync.start()

        ids = [f"id-{n}" for n in range(8)]
        sequence = 0
        for version in range(1, 6):
            for record_id in ids:
                sequence += 1
                sync.submit(make_event(_record(record_id, version), sequence=sequence, kind=ChangeKind.UPDATED))
        await sync.wait_idle()
        await sync.stop()

        for record_id in ids:
            versions = [v for _, doc_id, v in backend.writes if doc_id == record_id]
            assert versions == [1, 2, 3, 4, 5]
            assert backend.get_document(record_id)["version"] == 5

    async def test_create_then_delete_converges(self, make_event) -> None:
        backend = RecordingBackend()
        sync = ChangeSynchronizer(IndexWriter(backend), FAST_RETRIES)
        await sync.start()
        record = _record("gone")
        sync.submit(make_event(record, sequence=1))
        sync.submit(make_event(None, sequence=2, kind=ChangeKind.DELETED, record_id="gone", version=2))
        await sync.wait_idle()
        await sync.stop()

        assert [op for op, _, _ in backend.writes] == ["upsert", "remove"]
        assert backend.get_document("gone") is None

    async def test_stop_drains_queue(self, make_event) -> None:
        backend = MemoryIndexBackend()
        sync = ChangeSynchronizer(IndexWriter(backend), FAST_RETRIES)
        await sync.start()
        for n in range(20):
            sync.submit(make_event(_record(f"r{n}"), sequence=n + 1))
        await sync.stop()
        assert len(backend) == 20
        assert not sync.running


# ── Retries and dead letters ─────────────────────────────────────────────────


class TestRetries:
    async def test_transient_failure_retried(self, make_event) -> None:
        backend = FlakyBackend(failures=2, error=TransientIndexError("503"))
        sync = ChangeSynchronizer(IndexWriter(backend), FAST_RETRIES)

        assert await sync.apply(make_event(_record("r1")))
        assert backend.calls == 3
        assert sync.status().retried == 2
        assert len(sync.dead_letters) == 0

    async def test_exhausted_retries_dead_lettered(self, make_event) -> None:
        backend = FlakyBackend(failures=100, error=TransientIndexError("503"))
        sync = ChangeSynchronizer(IndexWriter(backend), FAST_RETRIES)
        event = make_event(_record("r1"))

        assert not await sync.apply(event)
        assert backend.calls == 5
        [entry] = sync.dead_letters.entries()
        assert entry.event == event
        assert entry.attempts == 5
        assert entry.error_type == "TransientIndexError"

    async def test_unavailable_index_is_retried(self, make_event) -> None:
        backend = MemoryIndexBackend()
        backend.set_available(False)
        sync = ChangeSynchronizer(IndexWriter(backend), FAST_RETRIES)
        assert not await sync.apply(make_event(_record("r1")))
        assert sync.dead_letters.entries()[0].error_type == "IndexUnavailableError"
        assert sync.status().retried == 4

    async def test_permanent_failure_not_retried(self, make_event) -> None:
        backend = FlakyBackend(failures=100, error=IndexWriteError("mapping rejected"))
        sync = ChangeSynchronizer(IndexWriter(backend), FAST_RETRIES)
        assert not await sync.apply(make_event(_record("r1")))
        assert backend.calls == 1
        assert sync.dead_letters.entries()[0].attempts == 1

    async def test_upsert_event_without_record_dead_lettered(self, make_event) -> None:
        sync = ChangeSynchronizer(IndexWriter(MemoryIndexBackend()), FAST_RETRIES)
        event = make_event(None, kind=ChangeKind.UPDATED, record_id="r1")
        assert not await sync.apply(event)
        assert sync.dead_letters.entries()[0].error_type == "IndexWriteError"

    async def test_redrive_replays_dead_letters(self, make_event) -> None:
        backend = MemoryIndexBackend()
        sync = ChangeSynchronizer(IndexWriter(backend), FAST_RETRIES)
        backend.set_available(False)
        await sync.apply(make_event(_record("r1")))
        assert len(sync.dead_letters) == 1

        backend.set_available(True)
        await sync.start()
        assert sync.redrive_dead_letters() == 1
        await sync.wait_idle()
        await sync.stop()
        assert backend.get_document("r1") is not None
        assert len(sync.dead_letters) == 0

    async def test_stale_replay_is_harmless(self, make_event) -> None:
        backend = MemoryIndexBackend()
        sync = ChangeSynchronizer(IndexWriter(backend), FAST_RETRIES)
        await sync.apply(make_event(_record("r1", 1), sequence=1))
        await sync.apply(make_event(_record("r1", 2), sequence=2, kind=ChangeKind.UPDATED))
        await sync.apply(make_event(_record("r1", 1), sequence=1))
        assert backend.get_document("r1")["name"] == "Widget v2"

    async def test_replayed_update_cannot_resurrect_deleted(self, make_event) -> None:
        backend = MemoryIndexBackend()
        sync = ChangeSynchronizer(IndexWriter(backend), FAST_RETRIES)
        await sync.apply(make_event(_record("r1", 1), sequence=1))
        await sync.apply(make_event(None, sequence=2, kind=ChangeKind.DELETED, record_id="r1", version=2))
        await sync.apply(make_event(_record("r1", 1), sequence=1))
        assert backend.get_document("r1") is None


# ── Reconcile ────────────────────────────────────────────────────────────────


class TestReconcile:
    async def test_reconcile_repairs_drift(self, store: RecordStore) -> None:
        backend = MemoryIndexBackend()
        sync = ChangeSynchronizer(IndexWriter(backend), FAST_RETRIES)
        kept = await store.create({"name": "Kept", "price": 10})
        missing = await store.create({"name": "Never indexed", "price": 20})
        await backend.upsert(kept.id, {"id": kept.id, "name": "Stale name", "description": "", "price": 10.0}, 1)
        await backend.upsert("ghost", {"id": "ghost", "name": "Orphan", "description": "", "price": 1.0}, 7)

        report = await sync.reconcile(store)
        await sync.stop()

        assert (report.upserted, report.removed, report.failed) == (2, 1, 0)
        assert await backend.document_ids() == {kept.id, missing.id}
        assert backend.get_document(kept.id)["name"] == "Kept"

    async def test_reconcile_reports_failures(self, store: RecordStore) -> None:
        backend = FlakyBackend(failures=100, error=IndexWriteError("rejected"))
        sync = ChangeSynchronizer(IndexWriter(backend), FAST_RETRIES)
        await store.create({"name": "A", "price": 1})
        report = await sync.reconcile(store)
        await sync.stop()
        assert report.failed == 1

    def test_reconcile_sequence_marker(self) -> None:
        assert RECONCILE_SEQUENCE == 0


# ── Status ───────────────────────────────────────────────────────────────────


class TestStatus:
    async def test_status_snapshot(self, make_event) -> None:
        sync = ChangeSynchronizer(IndexWriter(MemoryIndexBackend()), FAST_RETRIES)
        assert sync.status().running is False
        await sync.start()
        sync.submit(make_event(_record("r1")))
        await sync.wait_idle()
        status = sync.status()
        await sync.stop()
        assert status.running
        assert status.lanes == 4
        assert status.pending == 0
        assert status.processed == 1
        assert status.dead_lettered == 0
