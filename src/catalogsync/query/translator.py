"""Query translator — maps a ``SearchIntent`` to a query tree plus paging.

| Intent                      | Tree                                                     |
|-----------------------------|----------------------------------------------------------|
| ExactName                   | Match(name)                                              |
| NameOrDescriptionContains   | Or(Match(name), Match(description))                      |
| FuzzyMatch                  | Fuzzy([name, description], AUTO)                         |
| PriceRange                  | Range(price)                                             |
| PrefixSuggest               | Wildcard(name), limited to the suggest page size         |
| MultiFieldPrefix            | And(Wildcard(name), Wildcard(description), Range(price)) |
|                             | (empty prefixes are left out)                            |
| AnyFieldPrefix              | Or(Wildcard(name), Wildcard(description))                |
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

from catalogsync.errors import MalformedQueryError, ValidationError
from catalogsync.models.query import (
    MAX_RESULT_WINDOW,
    AnyFieldPrefix,
    ExactName,
    FuzzyMatch,
    MultiFieldPrefix,
    NameOrDescriptionContains,
    Paging,
    PrefixSuggest,
    PriceRange,
    SearchIntent,
)
from catalogsync.query.tree import And, Fuzzy, Match, Or, QueryNode, Range, Wildcard, validate_tree

if TYPE_CHECKING:
    from catalogsync.config.settings import SearchSettings

DEFAULT_LIMIT = 10
SUGGEST_LIMIT = 5


class TranslatedQuery(BaseModel):
    """A validated query tree with the paging window to apply."""

    tree: QueryNode = Field(description="Engine-agnostic query tree")
    limit: int = Field(ge=1, description="Page size")
    offset: int = Field(default=0, ge=0, description="Page offset")


def build_tree(intent: SearchIntent) -> QueryNode:
    """Return the query tree for ``intent``."""
    if isinstance(intent, ExactName):
        return Match(field="name", value=intent.query)
    if isinstance(intent, NameOrDescriptionContains):
        return Or(
            children=(
                Match(field="name", value=intent.query),
                Match(field="description", value=intent.query),
            )
        )
    if isinstance(intent, FuzzyMatch):
        return Fuzzy(fields=("name", "description"), value=intent.query, tolerance="AUTO")
    if isinstance(intent, PriceRange):
        return Range(field="price", min=intent.min_price, max=intent.max_price)
    if isinstance(intent, PrefixSuggest):
        return Wildcard(field="name", prefix=intent.prefix)
    if isinstance(intent, MultiFieldPrefix):
        # "*" on a keyword sub-field misses values longer than its ignore_above.
        children: list[QueryNode] = [
            Wildcard(field=field, prefix=prefix)
            for field, prefix in (("name", intent.name_prefix), ("description", intent.description_prefix))
            if prefix
        ]
        children.append(Range(field="price", min=intent.min_price, max=intent.max_price))
        return children[0] if len(children) == 1 else And(children=tuple(children))
    if isinstance(intent, AnyFieldPrefix):
        return Or(
            children=(
                Wildcard(field="name", prefix=intent.prefix),
                Wildcard(field="description", prefix=intent.prefix),
            )
        )
    raise MalformedQueryError(f"Unsupported search intent: {type(intent).__name__}")


def translate(
    intent: SearchIntent,
    paging: Paging | None = None,
    settings: SearchSettings | None = None,
) -> TranslatedQuery:
    """Translate a search intent into a validated query with paging.

    Args:
        intent: The structured search intent.
        paging: Optional caller paging. A missing limit falls back to the
            intent default (the suggest page size for prefix suggestions).
        settings: Search settings supplying default and maximum page sizes.

    Returns:
        The translated query.

    Raises:
        MalformedQueryError: If the intent produces an invalid tree.
        ValidationError: If the page reaches past the result window.
    """
    paging = paging or Paging()
    default_limit = settings.default_limit if settings else DEFAULT_LIMIT
    suggest_limit = settings.suggest_limit if settings else SUGGEST_LIMIT
    max_limit = settings.max_limit if settings else None
    max_result_window = settings.max_result_window if settings else MAX_RESULT_WINDOW

    if isinstance(intent, PrefixSuggest):
        # Suggestions never exceed the suggest page size, whatever the caller asked for.
        limit = min(paging.limit or suggest_limit, suggest_limit)
    else:
        limit = paging.limit or default_limit
    if max_limit is not None:
        limit = min(limit, max_limit)
    if paging.offset + limit > max_result_window:
        raise ValidationError(f"offset + limit must not exceed {max_result_window}, got {paging.offset + limit}")

    tree = build_tree(intent)
    validate_tree(tree)
    return TranslatedQuery(tree=tree, limit=limit, offset=paging.offset)
