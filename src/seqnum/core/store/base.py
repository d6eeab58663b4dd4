"""Transactional key-value store interface used by the numbering service."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator


class Key(BaseModel):
    """Hierarchical entity key: (kind, name) pairs from the root down.

    Two keys are the same entity exactly when their paths are equal.
    """

    path: tuple[str, ...]

    model_config = ConfigDict(frozen=True)

    @field_validator("path")
    @classmethod
    def validate_path(cls, path: tuple[str, ...]) -> tuple[str, ...]:
        if not path or len(path) % 2:
            raise ValueError("Key path must consist of (kind, name) pairs")
        if any(not part for part in path):
            raise ValueError("Key path elements must be non-empty")
        return path

    @classmethod
    def of(cls, *path: str) -> Key:
        return cls(path=path)

    @property
    def kind(self) -> str:
        return self.path[-2]

    @property
    def name(self) -> str:
        return self.path[-1]

    @property
    def parent(self) -> Key | None:
        if len(self.path) == 2:
            return None
        return Key(path=self.path[:-2])

    def child(self, kind: str, name: str) -> Key:
        return Key(path=(*self.path, kind, name))

    def __str__(self) -> str:
        return "/".join(self.path)


class Transaction(ABC):
    """One all-or-nothing unit of work against the store.

    Reads see committed data. Writes become visible only after commit.
    A transaction that has been committed or rolled back cannot be reused.
    """

    @abstractmethod
    async def get(self, key: Key) -> dict[str, Any] | None:
        """Return the stored data for key, or None if absent."""

    @abstractmethod
    async def insert(self, key: Key, data: dict[str, Any]) -> None:
        """Create key; the transaction fails with ConflictError if it already exists."""

    @abstractmethod
    async def upsert(self, key: Key, data: dict[str, Any]) -> None:
        """Write key unconditionally."""

    @abstractmethod
    async def commit(self) -> None:
        """Apply all writes atomically or raise ConflictError / TransientStoreError."""

    @abstractmethod
    async def rollback(self) -> None:
        """Discard all writes. Safe to call more than once."""


class TransactionalStore(ABC):
    """Factory for transactions plus lifecycle hooks."""

    @abstractmethod
    async def begin(self) -> Transaction:
        """Open a new transaction."""

    async def on_start(self) -> None:
        """Prepare the store on application startup."""

    async def on_stop(self) -> None:
        """Release store resources on application shutdown."""
