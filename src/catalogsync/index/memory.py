"""In-memory index backend for development and tests.

Evaluates query trees directly against stored documents with a plain
token-overlap score. It honors the same contract as the search-engine
backends (external versioning, deterministic ordering, literal prefixes)
but is not a ranking engine.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

from catalogsync.errors import IndexUnavailableError
from catalogsync.index.base import IndexBackend, IndexHealth, RawHits, WriteOutcome
from catalogsync.query.tree import And, Fuzzy, Match, Or, QueryNode, Range, Wildcard

logger = logging.getLogger(__name__)

_TOKEN_RE = re.compile(r"\w+", re.UNICODE)


def tokenize(text: str) -> list[str]:
    """Lowercase word tokens, roughly what the standard analyzer produces."""
    return _TOKEN_RE.findall(text.lower())


def auto_fuzziness(term: str) -> int:
    """Edit distance allowed for ``term`` under ``AUTO`` fuzziness."""
    if len(term) <= 2:
        return 0
    if len(term) <= 5:
        return 1
    return 2


def edit_distance(a: str, b: str, limit: int) -> int:
    """Damerau-Levenshtein (optimal string alignment) distance, capped at ``limit + 1``."""
    if abs(len(a) - len(b)) > limit:
        return limit + 1
    prev_prev: list[int] = []
    prev = list(range(len(b) + 1))
    for i, ca in enumerate(a, 1):
        cur = [i] + [0] * len(b)
        for j, cb in enumerate(b, 1):
            cost = 0 if ca == cb else 1
            cur[j] = min(prev[j] + 1, cur[j - 1] + 1, prev[j - 1] + cost)
            if i > 1 and j > 1 and ca == b[j - 2] and a[i - 2] == cb:
                cur[j] = min(cur[j], prev_prev[j - 2] + 1)
        prev_prev, prev = prev, cur
    return min(prev[-1], limit + 1)


class MemoryIndexBackend(IndexBackend):
    """Index backend holding documents in a dict.

    Args:
        index_name: Name reported in health checks.
        **kwargs: Ignored; accepted so the backend can be built from the
            same settings as the network backends.
    """

    def __init__(self, index_name: str = "products", **kwargs: Any) -> None:
        self._index_name = index_name
        self._documents: dict[str, dict[str, Any]] = {}
        self._tombstones: dict[str, int] = {}
        self._lock = asyncio.Lock()
        self._available = True

    @property
    def name(self) -> str:
        return "memory"

    async def initialize(self) -> None:
        logger.info("Using in-memory index '%s'", self._index_name)

    async def shutdown(self) -> None:
        self._documents.clear()
        self._tombstones.clear()

    def set_available(self, available: bool) -> None:
        """Simulate the index going away (or coming back)."""
        self._available = available

    def get_document(self, doc_id: str) -> dict[str, Any] | None:
        """Return the stored source for ``doc_id`` (test helper)."""
        return self._documents.get(doc_id)

    def __len__(self) -> int:
        return len(self._documents)

    # ── Writes ───────────────────────────────────────────────────────────

    async def upsert(self, doc_id: str, source: dict[str, Any], version: int) -> WriteOutcome:
        self._check_available()
        async with self._lock:
            if self._stored_version(doc_id) > version:
                return WriteOutcome(applied=False, reason="stale_version")
            self._tombstones.pop(doc_id, None)
            self._documents[doc_id] = dict(source, version=version)
        return WriteOutcome(applied=True)

    async def remove(self, doc_id: str, version: int | None = None) -> WriteOutcome:
        self._check_available()
        async with self._lock:
            if version is not None:
                if self._stored_version(doc_id) > version:
                    return WriteOutcome(applied=False, reason="stale_version")
                self._tombstones[doc_id] = version
            if self._documents.pop(doc_id, None) is None:
                return WriteOutcome(applied=False, reason="not_found")
        return WriteOutcome(applied=True)

    def _stored_version(self, doc_id: str) -> int:
        current = self._documents.get(doc_id)
        if current is not None:
            return int(current["version"])
        return self._tombstones.get(doc_id, 0)

    # ── Search ───────────────────────────────────────────────────────────

    async def search(self, tree: QueryNode, *, limit: int, offset: int = 0) -> RawHits:
        self._check_available()
        start = time.monotonic()
        scored: list[tuple[float, str, dict[str, Any]]] = []
        for doc_id, source in self._documents.items():
            score = self._score(tree, source)
            if score is not None:
                scored.append((score, doc_id, source))
        scored.sort(key=lambda item: (-item[0], item[1]))
        page = scored[offset : offset + limit]
        return RawHits(
            total_hits=len(scored),
            hits=[
                {"_index": self._index_name, "_id": doc_id, "_score": score, "_source": dict(source)}
                for score, doc_id, source in page
            ],
            took_ms=int((time.monotonic() - start) * 1000),
        )

    async def document_ids(self) -> set[str]:
        self._check_available()
        return set(self._documents)

    async def health_check(self) -> IndexHealth:
        return IndexHealth(
            status="healthy" if self._available else "unhealthy",
            last_check=datetime.now(UTC).isoformat(),
            document_count=len(self._documents),
            message=f"In-memory index '{self._index_name}'",
        )

    # ── Evaluation ───────────────────────────────────────────────────────

    def _check_available(self) -> None:
        if not self._available:
            raise IndexUnavailableError(f"In-memory index '{self._index_name}' is marked unavailable")

    def _score(self, node: QueryNode, source: dict[str, Any]) -> float | None:
        """Score ``source`` against ``node``; ``None`` means no match."""
        if isinstance(node, Match):
            terms = tokenize(node.value)
            field_terms = tokenize(str(source.get(node.field, "")))
            if not terms or not all(term in field_terms for term in terms):
                return None
            return float(sum(field_terms.count(term) for term in terms))
        if isinstance(node, Wildcard):
            value = str(source.get(node.field, ""))
            return 1.0 if value.casefold().startswith(node.prefix.casefold()) else None
        if isinstance(node, Fuzzy):
            return self._fuzzy_score(node, source)
        if isinstance(node, Range):
            raw = source.get(node.field)
            if raw is None:
                return None
            value = Decimal(str(raw))
            if node.min is not None and value < node.min:
                return None
            if node.max is not None and value > node.max:
                return None
            return 1.0
        if isinstance(node, And):
            total = 0.0
            for child in node.children:
                score = self._score(child, source)
                if score is None:
                    return None
                total += score
            return total
        if isinstance(node, Or):
            scores = [s for s in (self._score(child, source) for child in node.children) if s is not None]
            return sum(scores) if scores else None
        raise TypeError(f"Cannot evaluate query node {type(node).__name__}")

    @staticmethod
    def _fuzzy_score(node: Fuzzy, source: dict[str, Any]) -> float | None:
        field_terms = [term for field in node.fields for term in tokenize(str(source.get(field, "")))]
        total = 0.0
        for term in tokenize(node.value):
            limit = auto_fuzziness(term) if node.tolerance == "AUTO" else int(node.tolerance)
            best = min((edit_distance(term, candidate, limit) for candidate in field_terms), default=limit + 1)
            if best <= limit:
                # Exact hits outrank corrected ones.
                total += 1.0 / (1 + best)
        return total or None
