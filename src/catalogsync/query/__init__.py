"""Query translation — search intents to engine-agnostic query trees."""

from catalogsync.query.translator import TranslatedQuery, translate
from catalogsync.query.tree import And, Fuzzy, Match, Or, QueryNode, Range, Wildcard, validate_tree

__all__ = [
    "And",
    "Fuzzy",
    "Match",
    "Or",
    "QueryNode",
    "Range",
    "TranslatedQuery",
    "Wildcard",
    "translate",
    "validate_tree",
]
