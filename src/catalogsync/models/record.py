"""Record models — the canonical product entity and its change events."""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal
from enum import StrEnum

from pydantic import BaseModel, Field

# Bounds shared by the store columns and the index keyword sub-fields.
MAX_NAME_LENGTH = 512
MAX_DESCRIPTION_LENGTH = 4096
MAX_PRICE = Decimal("9999999999.99")


class Record(BaseModel):
    """Canonical product record as persisted in the primary store."""

    model_config = {"frozen": True}

    id: str = Field(description="Stable opaque record identifier")
    name: str = Field(description="Product name")
    description: str = Field(default="", description="Product description")
    price: Decimal = Field(description="Product price (non-negative)")
    version: int = Field(default=1, ge=1, description="Incremented on every update")


class RecordCreate(BaseModel):
    """Incoming payload for creating a record.

    Fields are optional at the model level so that the store can report
    missing values through its own ``ValidationError``.
    """

    name: str | None = Field(default=None, description="Product name")
    description: str = Field(default="", description="Product description")
    price: Decimal | None = Field(default=None, description="Product price")


class RecordUpdate(BaseModel):
    """Partial update payload; only fields that are set are applied."""

    model_config = {"extra": "forbid"}

    name: str | None = Field(default=None, description="New product name")
    description: str | None = Field(default=None, description="New product description")
    price: Decimal | None = Field(default=None, description="New product price")


class ChangeKind(StrEnum):
    """Kind of mutation a change event describes."""

    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"


class ChangeEvent(BaseModel):
    """A committed mutation of one record.

    ``record`` holds the post-mutation snapshot for created/updated events
    and is ``None`` for a deletion tombstone.
    """

    model_config = {"frozen": True}

    sequence: int = Field(description="Monotonic emission sequence number")
    record_id: str = Field(description="Identifier of the mutated record")
    kind: ChangeKind = Field(description="Mutation kind")
    record: Record | None = Field(default=None, description="Record snapshot (None for deletions)")
    version: int = Field(description="Record version this event carries")
    emitted_at: datetime = Field(default_factory=lambda: datetime.now(UTC), description="Emission timestamp")
