"""Dead-letter queue for change events that could not be applied to the index."""

from __future__ import annotations

import logging
from collections import deque
from datetime import UTC, datetime

from catalogsync.models.record import ChangeEvent
from catalogsync.models.response import DeadLetterEntry

logger = logging.getLogger(__name__)


class DeadLetterQueue:
    """In-process parking lot for failed change events.

    Entries are kept in the order they failed. When ``max_size`` is reached
    the oldest entry is evicted and an error is logged, so an overflow is
    visible rather than silent.
    """

    def __init__(self, max_size: int = 10_000) -> None:
        self._entries: deque[DeadLetterEntry] = deque()
        self._max_size = max_size

    def put(self, event: ChangeEvent, error: BaseException, attempts: int) -> DeadLetterEntry:
        """Park ``event`` together with the error that exhausted it."""
        entry = DeadLetterEntry(
            event=event,
            error=str(error),
            error_type=type(error).__name__,
            attempts=attempts,
            failed_at=datetime.now(UTC),
        )
        if len(self._entries) >= self._max_size:
            evicted = self._entries.popleft()
            logger.error(
                "Dead-letter queue full (%d); evicted event %d for %s",
                self._max_size,
                evicted.event.sequence,
                evicted.event.record_id,
            )
        self._entries.append(entry)
        return entry

    def entries(self) -> list[DeadLetterEntry]:
        """Return a snapshot of the parked entries, oldest first."""
        return list(self._entries)

    def drain(self) -> list[DeadLetterEntry]:
        """Remove and return every parked entry, oldest first."""
        drained = list(self._entries)
        self._entries.clear()
        return drained

    def __len__(self) -> int:
        return len(self._entries)
