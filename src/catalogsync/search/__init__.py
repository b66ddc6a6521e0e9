"""Search execution over the index."""

from catalogsync.search.executor import QueryExecutor

__all__ = ["QueryExecutor"]
