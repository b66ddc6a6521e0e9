"""Primary record store (SQLAlchemy)."""

from catalogsync.store.repository import RecordStore, create_store_engine

__all__ = ["RecordStore", "create_store_engine"]
