"""Change synchronizer — applies record-store change events to the search index.

Events are partitioned into lanes by record id. Each lane is one asyncio
task draining its own queue, so:

  - events for the same record are applied strictly in emission order,
    with at most one in flight at a time;
  - records that hash to different lanes synchronize in parallel.

Transient index failures are retried with bounded exponential backoff.
An event that still fails (or fails permanently) is parked in the
dead-letter queue and reported; it is never dropped.
"""

from __future__ import annotations

import asyncio
import logging
import zlib
from typing import TYPE_CHECKING

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from catalogsync.config.settings import SyncSettings
from catalogsync.errors import IndexWriteError, NotFoundError, TransientIndexError
from catalogsync.index.writer import IndexWriter
from catalogsync.models.record import ChangeEvent, ChangeKind
from catalogsync.models.response import ReconcileReport, SyncStatus
from catalogsync.sync.dead_letter import DeadLetterQueue

if TYPE_CHECKING:
    from catalogsync.store.repository import RecordStore

logger = logging.getLogger(__name__)

# Sequence number carried by events the synchronizer makes up itself.
RECONCILE_SEQUENCE = 0


class ChangeSynchronizer:
    """Asynchronous worker pool keeping the index in step with the store.

    Args:
        writer: Index writer used to apply events.
        settings: Lane count and retry policy.
        dead_letters: Queue receiving events that could not be applied.
    """

    def __init__(
        self,
        writer: IndexWriter,
        settings: SyncSettings | None = None,
        dead_letters: DeadLetterQueue | None = None,
    ) -> None:
        self._writer = writer
        self._settings = settings or SyncSettings()
        self.dead_letters = dead_letters if dead_letters is not None else DeadLetterQueue()
        self._lanes: list[asyncio.Queue[ChangeEvent]] = [asyncio.Queue() for _ in range(self._settings.workers)]
        self._tasks: list[asyncio.Task[None]] = []
        self._processed = 0
        self._retried = 0

    @property
    def running(self) -> bool:
        return bool(self._tasks) and not all(task.done() for task in self._tasks)

    # ── Lifecycle ────────────────────────────────────────────────────────

    async def start(self) -> None:
        """Start one worker task per lane."""
        if self.running:
            return
        self._tasks = [
            asyncio.create_task(self._run_lane(index, queue), name=f"catalogsync-lane-{index}")
            for index, queue in enumerate(self._lanes)
        ]
        logger.info("Change synchronizer started with %d lanes", len(self._lanes))

    async def stop(self, *, drain: bool = True, timeout: float | None = 10.0) -> None:
        """Stop the lane workers.

        Args:
            drain: Wait for queued events to be applied first.
            timeout: Upper bound for draining, in seconds.
        """
        if drain and self.running:
            try:
                await asyncio.wait_for(self.wait_idle(), timeout=timeout)
            except TimeoutError:
                logger.warning("Stopping synchronizer with %d events still pending", self.pending)
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("Change synchronizer stopped")

    # ── Intake ───────────────────────────────────────────────────────────

    def lane_for(self, record_id: str) -> int:
        """Return the lane that owns ``record_id``."""
        return zlib.crc32(record_id.encode("utf-8")) % len(self._lanes)

    def submit(self, event: ChangeEvent) -> None:
        """Queue an event on its record's lane. Never blocks."""
        self._lanes[self.lane_for(event.record_id)].put_nowait(event)

    @property
    def pending(self) -> int:
        return sum(queue.qsize() for queue in self._lanes)

    async def wait_idle(self) -> None:
        """Wait until every queued event has been applied or dead-lettered."""
        await asyncio.gather(*(queue.join() for queue in self._lanes))

    # ── Application ──────────────────────────────────────────────────────

    async def apply(self, event: ChangeEvent) -> bool:
        """Apply one event, retrying transient failures.

        Returns:
            True when the event reached the index, False when it was dead-lettered.
        """
        attempts = 0
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._settings.max_attempts),
            wait=wait_exponential(multiplier=self._settings.backoff_initial, max=self._settings.backoff_max),
            retry=retry_if_exception_type(TransientIndexError),
            before_sleep=self._log_retry,
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    await self._apply_once(event)
        except Exception as e:
            self.dead_letters.put(event, e, attempts)
            logger.error(
                "Dead-lettered %s event %d for %s after %d attempt(s): %s",
                event.kind.value,
                event.sequence,
                event.record_id,
                attempts,
                e,
            )
            return False
        self._processed += 1
        return True

    async def _apply_once(self, event: ChangeEvent) -> None:
        if event.kind is ChangeKind.DELETED:
            # Reconcile tombstones are unconditional: the orphan's indexed version is unknown.
            version = None if event.sequence == RECONCILE_SEQUENCE else event.version
            await self._writer.remove(event.record_id, version)
            return
        if event.record is None:
            raise IndexWriteError(f"{event.kind.value} event for {event.record_id} carries no record")
        await self._writer.upsert(event.record)

    def _log_retry(self, retry_state: RetryCallState) -> None:
        self._retried += 1
        error = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            "Index write failed (attempt %d/%d), retrying in %.2fs: %s",
            retry_state.attempt_number,
            self._settings.max_attempts,
            retry_state.next_action.sleep if retry_state.next_action else 0.0,
            error,
        )

    async def _run_lane(self, index: int, queue: asyncio.Queue[ChangeEvent]) -> None:
        while True:
            event = await queue.get()
            try:
                await self.apply(event)
            finally:
                queue.task_done()

    # ── Recovery ─────────────────────────────────────────────────────────

    def redrive_dead_letters(self) -> int:
        """Resubmit every parked event to its lane.

        Replaying an old event is safe: the index ignores writes older than
        the version it already holds.

        Returns:
            Number of events resubmitted.
        """
        entries = self.dead_letters.drain()
        for entry in entries:
            self.submit(entry.event)
        if entries:
            logger.info("Redrove %d dead-lettered events", len(entries))
        return len(entries)

    async def reconcile(self, store: RecordStore) -> ReconcileReport:
        """Rewrite every store record into the index and remove orphan documents.

        Index ids are read before store records: a document that exists in
        the index but not in the store at the later read can only belong to
        a deleted record.
        """
        index_ids = await self._writer.backend.document_ids()
        records = await store.list_all()
        store_ids = {record.id for record in records}

        orphans: list[str] = []
        for doc_id in sorted(index_ids - store_ids):
            try:
                await store.get(doc_id)
            except NotFoundError:
                orphans.append(doc_id)

        dead_before = len(self.dead_letters)
        for record in records:
            self.submit(
                ChangeEvent(
                    sequence=RECONCILE_SEQUENCE,
                    record_id=record.id,
                    kind=ChangeKind.UPDATED,
                    record=record,
                    version=record.version,
                )
            )
        for doc_id in orphans:
            self.submit(
                ChangeEvent(
                    sequence=RECONCILE_SEQUENCE,
                    record_id=doc_id,
                    kind=ChangeKind.DELETED,
                    version=1,
                )
            )
        if not self.running:
            await self.start()
        await self.wait_idle()

        report = ReconcileReport(
            upserted=len(records),
            removed=len(orphans),
            failed=max(len(self.dead_letters) - dead_before, 0),
        )
        logger.info(
            "Reconciled index: %d upserted, %d orphans removed, %d failed",
            report.upserted,
            report.removed,
            report.failed,
        )
        return report

    def status(self) -> SyncStatus:
        return SyncStatus(
            running=self.running,
            lanes=len(self._lanes),
            pending=self.pending,
            processed=self._processed,
            retried=self._retried,
            dead_lettered=len(self.dead_letters),
        )
