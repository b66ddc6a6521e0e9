"""Search index layer — Pluggable backends and the index writer.

Built-in backends:
  - elasticsearch: Elasticsearch v8+ (default)
  - opensearch: OpenSearch v2+ (AWS-compatible Elasticsearch fork)
  - memory: in-process index for development and tests

Implement ``IndexBackend`` and register it with ``BackendRegistry`` to plug
in another engine.
"""

from catalogsync.index.base import IndexBackend, IndexHealth, RawHits, WriteOutcome
from catalogsync.index.registry import BackendRegistry
from catalogsync.index.writer import IndexWriter

__all__ = ["BackendRegistry", "IndexBackend", "IndexHealth", "IndexWriter", "RawHits", "WriteOutcome"]
