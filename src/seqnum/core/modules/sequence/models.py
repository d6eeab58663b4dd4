"""Persisted records for sequential numbering."""

from datetime import datetime
from typing import Any, Self

from pydantic import BaseModel, ConfigDict, Field

from seqnum.utils import now

EMPTY_PREFIX_KEY = "(empty)"  # Store key names must not be empty


class StoreModel(BaseModel):
    """Base for records kept in the transactional store."""

    model_config = ConfigDict(populate_by_name=True)

    def to_store(self) -> dict[str, Any]:
        """Convert the model to the plain dictionary written to the store."""
        return self.model_dump(by_alias=True)

    @classmethod
    def from_store(cls, data: dict[str, Any]) -> Self:
        return cls.model_validate(data)


class SeriesCounter(StoreModel):
    """High-water mark of committed allocations for one prefix.

    Keyed by [<kind>Ancestor, prefix or "(empty)"]. Created lazily on first use.
    """

    prefix: str
    last_id: int = Field(alias="lastId")  # Next number will be last_id + 1
    created_at: datetime = Field(default_factory=now)
    updated_at: datetime | None = None


class IssuanceRecord(StoreModel):
    """Write-once witness that a designator was handed out.

    Keyed by [<kind>Ancestor, prefix or "(empty)", <kind>Item, designator].
    """

    id: int
    designator: str


def series_key_name(prefix: str) -> str:
    return prefix if prefix != "" else EMPTY_PREFIX_KEY


def make_designator(prefix: str, number: int) -> str:
    return f"{prefix}{number}"
