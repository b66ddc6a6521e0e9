"""Tests for query tree validation."""

from __future__ import annotations

from decimal import Decimal

import pytest

from catalogsync.errors import MalformedQueryError
from catalogsync.query import And, Fuzzy, Match, Or, Range, Wildcard, validate_tree


class TestValidateTree:
    @pytest.mark.parametrize(
        "node",
        [
            Match(field="name", value="x"),
            Wildcard(field="description", prefix="x"),
            Fuzzy(fields=("name", "description"), value="x"),
            Range(field="price", min=Decimal("1"), max=Decimal("1")),
            And(children=(Match(field="name", value="x"), Range(field="price"))),
            Or(children=(Wildcard(field="name", prefix="a"),)),
        ],
    )
    def test_valid_trees(self, node) -> None:
        validate_tree(node)

    def test_unknown_field(self) -> None:
        with pytest.raises(MalformedQueryError, match="Unknown field 'color'"):
            validate_tree(Match(field="color", value="red"))

    def test_text_op_on_numeric_field(self) -> None:
        with pytest.raises(MalformedQueryError, match="numeric field 'price'"):
            validate_tree(Wildcard(field="price", prefix="9"))

    def test_range_on_text_field(self) -> None:
        with pytest.raises(MalformedQueryError, match="text field 'name'"):
            validate_tree(Range(field="name", min=Decimal("1")))

    def test_inverted_range(self) -> None:
        with pytest.raises(MalformedQueryError, match="Inverted range"):
            validate_tree(Range(field="price", min=Decimal("10"), max=Decimal("1")))

    def test_empty_bool_node(self) -> None:
        with pytest.raises(MalformedQueryError, match="no children"):
            validate_tree(And(children=()))

    def test_empty_fuzzy_fields(self) -> None:
        with pytest.raises(MalformedQueryError):
            validate_tree(Fuzzy(fields=(), value="x"))

    def test_nested_invalid_child(self) -> None:
        tree = Or(children=(Match(field="name", value="a"), And(children=(Match(field="sku", value="1"),))))
        with pytest.raises(MalformedQueryError, match="sku"):
            validate_tree(tree)

    def test_tree_round_trips_through_discriminator(self) -> None:
        tree = And(children=(Match(field="name", value="a"), Range(field="price", max=Decimal("5"))))
        assert And.model_validate(tree.model_dump()) == tree
