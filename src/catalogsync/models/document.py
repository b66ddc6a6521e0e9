"""Index document model — the search-side projection of a ``Record``.

Mapping between the two shapes is explicit in both directions; there is no
attribute-copying helper that could silently drop or invent a field.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any

from pydantic import BaseModel, Field

from catalogsync.errors import MalformedQueryError
from catalogsync.models.record import MAX_DESCRIPTION_LENGTH, MAX_NAME_LENGTH, Record

TEXT_FIELDS = frozenset({"name", "description"})
NUMERIC_FIELDS = frozenset({"price"})
DOCUMENT_FIELDS = frozenset({"id", "version"}) | TEXT_FIELDS | NUMERIC_FIELDS

# Index mapping shared by the Elasticsearch and OpenSearch backends.
INDEX_MAPPINGS: dict[str, Any] = {
    "dynamic": "strict",
    "properties": {
        "id": {"type": "keyword"},
        "name": {
            "type": "text",
            "fields": {"keyword": {"type": "keyword", "ignore_above": MAX_NAME_LENGTH}},
        },
        "description": {
            "type": "text",
            "fields": {"keyword": {"type": "keyword", "ignore_above": MAX_DESCRIPTION_LENGTH}},
        },
        "price": {"type": "scaled_float", "scaling_factor": 100},
        "version": {"type": "long"},
    },
}


class ProductDocument(BaseModel):
    """Document stored in the search index for one record."""

    id: str = Field(description="Record identifier (also the index document id)")
    name: str = Field(description="Tokenized product name")
    description: str = Field(default="", description="Tokenized product description")
    price: float = Field(description="Numeric price for range queries")
    version: int = Field(description="Record version the document was built from")

    def to_source(self) -> dict[str, Any]:
        """Return the JSON body written to the index."""
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "price": self.price,
            "version": self.version,
        }


def record_to_document(record: Record) -> ProductDocument:
    """Build the index document for a record."""
    return ProductDocument(
        id=record.id,
        name=record.name,
        description=record.description,
        price=float(record.price),
        version=record.version,
    )


def document_to_record(source: dict[str, Any], doc_id: str | None = None) -> Record:
    """Map stored document fields back to a ``Record`` projection.

    Args:
        source: The ``_source`` of a search hit.
        doc_id: The hit's document id, used when ``source`` lacks one.

    Raises:
        MalformedQueryError: If the stored document is missing required fields.
    """
    record_id = source.get("id") or doc_id
    if not record_id or "name" not in source or "price" not in source:
        raise MalformedQueryError(f"Index document {doc_id!r} is missing required fields")
    try:
        # Route through str() so 999.99 stays 999.99 rather than its binary expansion.
        price = Decimal(str(source["price"])).quantize(Decimal("0.01"))
    except (InvalidOperation, TypeError, ValueError) as e:
        raise MalformedQueryError(f"Index document {record_id!r} has a non-numeric price") from e
    return Record(
        id=str(record_id),
        name=str(source["name"]),
        description=str(source.get("description") or ""),
        price=price,
        version=int(source.get("version") or 1),
    )
