"""Search intent and request models."""

from __future__ import annotations

from decimal import Decimal
from typing import Annotated, Literal

from pydantic import BaseModel, Field, model_validator

# Default deepest hit (offset + limit) Elasticsearch and OpenSearch will page to.
MAX_RESULT_WINDOW = 10_000


class Paging(BaseModel):
    """Page window over a ranked result list."""

    limit: int | None = Field(default=None, ge=1, le=100, description="Page size (None = intent default)")
    offset: int = Field(default=0, ge=0, description="Number of ranked hits to skip")

    @model_validator(mode="after")
    def _check_window(self) -> Paging:
        if self.offset + (self.limit or 0) > MAX_RESULT_WINDOW:
            raise ValueError(f"offset + limit must not exceed {MAX_RESULT_WINDOW}")
        return self


class ExactName(BaseModel):
    """Every term of ``query`` must appear in the product name."""

    kind: Literal["exact_name"] = "exact_name"
    query: str = Field(min_length=1, max_length=512)


class NameOrDescriptionContains(BaseModel):
    """Every term of ``query`` appears in the name or in the description."""

    kind: Literal["name_or_description_contains"] = "name_or_description_contains"
    query: str = Field(min_length=1, max_length=512)


class FuzzyMatch(BaseModel):
    """Typo-tolerant match over name and description."""

    kind: Literal["fuzzy_match"] = "fuzzy_match"
    query: str = Field(min_length=1, max_length=512)


class PriceRange(BaseModel):
    """Inclusive price window; either bound may be left open."""

    kind: Literal["price_range"] = "price_range"
    min_price: Decimal | None = Field(default=None, ge=0)
    max_price: Decimal | None = Field(default=None, ge=0)

    @model_validator(mode="after")
    def _check_bounds(self) -> PriceRange:
        if self.min_price is not None and self.max_price is not None and self.min_price > self.max_price:
            raise ValueError("min_price must not exceed max_price")
        return self


class PrefixSuggest(BaseModel):
    """Names starting with ``prefix`` (case-insensitive), for type-ahead."""

    kind: Literal["prefix_suggest"] = "prefix_suggest"
    prefix: str = Field(min_length=1, max_length=256)


class MultiFieldPrefix(BaseModel):
    """Name prefix AND description prefix AND price window."""

    kind: Literal["multi_field_prefix"] = "multi_field_prefix"
    name_prefix: str = Field(default="", max_length=256)
    description_prefix: str = Field(default="", max_length=256)
    min_price: Decimal | None = Field(default=None, ge=0)
    max_price: Decimal | None = Field(default=None, ge=0)

    @model_validator(mode="after")
    def _check_bounds(self) -> MultiFieldPrefix:
        if self.min_price is not None and self.max_price is not None and self.min_price > self.max_price:
            raise ValueError("min_price must not exceed max_price")
        return self


class AnyFieldPrefix(BaseModel):
    """Name OR description starting with ``prefix``."""

    kind: Literal["any_field_prefix"] = "any_field_prefix"
    prefix: str = Field(min_length=1, max_length=256)


SearchIntent = Annotated[
    ExactName
    | NameOrDescriptionContains
    | FuzzyMatch
    | PriceRange
    | PrefixSuggest
    | MultiFieldPrefix
    | AnyFieldPrefix,
    Field(discriminator="kind"),
]


class SearchRequest(BaseModel):
    """Incoming structured search request from the API."""

    intent: SearchIntent = Field(description="What to search for")
    paging: Paging = Field(default_factory=Paging, description="Result window")
