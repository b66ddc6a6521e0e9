"""Compile a query tree into the Elasticsearch / OpenSearch query DSL.

The output is a plain dict handed to the client library, which serializes
it as JSON. Values are never spliced into query strings, so text such as
``"} } malicious`` stays a literal value.
"""

from __future__ import annotations

from typing import Any

from catalogsync.query.tree import And, Fuzzy, Match, Or, QueryNode, Range, Wildcard

_WILDCARD_SPECIALS = ("\\", "*", "?")

# Deterministic order: score first, then record id.
SORT_ORDER: list[dict[str, Any]] = [{"_score": {"order": "desc"}}, {"id": {"order": "asc"}}]


def escape_wildcard(text: str) -> str:
    """Escape wildcard metacharacters so ``text`` matches literally."""
    for ch in _WILDCARD_SPECIALS:
        text = text.replace(ch, "\\" + ch)
    return text


def compile_node(node: QueryNode) -> dict[str, Any]:
    """Compile one node (recursively) into a DSL clause."""
    if isinstance(node, Match):
        return {"match": {node.field: {"query": node.value, "operator": "and"}}}
    if isinstance(node, Wildcard):
        return {
            "wildcard": {
                f"{node.field}.keyword": {
                    "value": escape_wildcard(node.prefix) + "*",
                    "case_insensitive": True,
                }
            }
        }
    if isinstance(node, Fuzzy):
        return {
            "multi_match": {
                "query": node.value,
                "fields": list(node.fields),
                "fuzziness": str(node.tolerance),
            }
        }
    if isinstance(node, Range):
        bounds: dict[str, float] = {}
        if node.min is not None:
            bounds["gte"] = float(node.min)
        if node.max is not None:
            bounds["lte"] = float(node.max)
        if not bounds:
            return {"exists": {"field": node.field}}
        return {"range": {node.field: bounds}}
    if isinstance(node, And):
        return {"bool": {"must": [compile_node(child) for child in node.children]}}
    if isinstance(node, Or):
        return {
            "bool": {
                "should": [compile_node(child) for child in node.children],
                "minimum_should_match": 1,
            }
        }
    raise TypeError(f"Cannot compile query node {type(node).__name__}")


def compile_search(node: QueryNode, *, limit: int, offset: int = 0) -> dict[str, Any]:
    """Build the keyword arguments of a search request for ``node``."""
    return {
        "query": compile_node(node),
        "from": offset,
        "size": limit,
        "sort": SORT_ORDER,
        "track_total_hits": True,
    }
