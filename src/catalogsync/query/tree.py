"""Engine-agnostic query tree.

A query is a small tree of primitive nodes. User text only ever appears as a
node *value*; backends turn the tree into their native representation
without string interpolation.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Annotated, Literal

from pydantic import BaseModel, Field

from catalogsync.errors import MalformedQueryError
from catalogsync.models.document import NUMERIC_FIELDS, TEXT_FIELDS


class Match(BaseModel):
    """All terms of ``value`` must occur in ``field``."""

    model_config = {"frozen": True}

    op: Literal["match"] = "match"
    field: str
    value: str


class Wildcard(BaseModel):
    """``field`` starts with the literal ``prefix`` (case-insensitive)."""

    model_config = {"frozen": True}

    op: Literal["wildcard"] = "wildcard"
    field: str
    prefix: str


class Fuzzy(BaseModel):
    """Any term of ``value`` matches a term in ``fields`` within edit distance ``tolerance``."""

    model_config = {"frozen": True}

    op: Literal["fuzzy"] = "fuzzy"
    fields: tuple[str, ...]
    value: str
    tolerance: Literal["AUTO", 0, 1, 2] = "AUTO"


class Range(BaseModel):
    """Inclusive numeric window on ``field``; ``None`` leaves a side open."""

    model_config = {"frozen": True}

    op: Literal["range"] = "range"
    field: str
    min: Decimal | None = None
    max: Decimal | None = None


class And(BaseModel):
    """Every child must match."""

    model_config = {"frozen": True}

    op: Literal["and"] = "and"
    children: tuple[QueryNode, ...]


class Or(BaseModel):
    """At least one child must match."""

    model_config = {"frozen": True}

    op: Literal["or"] = "or"
    children: tuple[QueryNode, ...]


QueryNode = Annotated[Match | Wildcard | Fuzzy | Range | And | Or, Field(discriminator="op")]

And.model_rebuild()
Or.model_rebuild()


def _require_text(field: str, op: str) -> None:
    if field in NUMERIC_FIELDS:
        raise MalformedQueryError(f"'{op}' cannot be applied to numeric field '{field}'")
    if field not in TEXT_FIELDS:
        raise MalformedQueryError(f"Unknown field '{field}' in '{op}' node")


def validate_tree(node: QueryNode) -> None:
    """Check that every node references a known field of the right type.

    Raises:
        MalformedQueryError: On unknown fields, type mismatches, empty boolean
            nodes, or an inverted range.
    """
    if isinstance(node, Match):
        _require_text(node.field, node.op)
    elif isinstance(node, Wildcard):
        _require_text(node.field, node.op)
    elif isinstance(node, Fuzzy):
        if not node.fields:
            raise MalformedQueryError("'fuzzy' node needs at least one field")
        for field in node.fields:
            _require_text(field, node.op)
    elif isinstance(node, Range):
        if node.field in TEXT_FIELDS:
            raise MalformedQueryError(f"'range' cannot be applied to text field '{node.field}'")
        if node.field not in NUMERIC_FIELDS:
            raise MalformedQueryError(f"Unknown field '{node.field}' in 'range' node")
        if node.min is not None and node.max is not None and node.min > node.max:
            raise MalformedQueryError(f"Inverted range on '{node.field}': {node.min} > {node.max}")
    elif isinstance(node, And | Or):
        if not node.children:
            raise MalformedQueryError(f"'{node.op}' node has no children")
        for child in node.children:
            validate_tree(child)
    else:
        raise MalformedQueryError(f"Unsupported query node: {type(node).__name__}")
