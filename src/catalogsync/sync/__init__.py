"""Store → index synchronization."""

from catalogsync.sync.dead_letter import DeadLetterQueue
from catalogsync.sync.synchronizer import ChangeSynchronizer

__all__ = ["ChangeSynchronizer", "DeadLetterQueue"]
