"""Core orchestration — wires the store, synchronizer, and search path together."""

from catalogsync.core.engine import CatalogSyncEngine

__all__ = ["CatalogSyncEngine"]
