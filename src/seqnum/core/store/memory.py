"""Dict-backed transactional store with optimistic conflict detection.

Behaves like a single-node Datastore: every committed write bumps a global
version, and a transaction fails on commit when any key it touched was
committed by someone else after the transaction began.
"""

import asyncio
import copy
from typing import Any

import structlog

from seqnum.core.store.base import Key, Transaction, TransactionalStore
from seqnum.errors import ConflictError

logger = structlog.get_logger(__name__)


class InMemoryTransaction(Transaction):
    def __init__(self, store: "InMemoryStore", snapshot: int) -> None:
        self._store = store
        self._snapshot = snapshot
        self._reads: set[Key] = set()
        self._inserts: dict[Key, dict[str, Any]] = {}
        self._upserts: dict[Key, dict[str, Any]] = {}
        self._closed = False

    @property
    def snapshot(self) -> int:
        return self._snapshot

    @property
    def closed(self) -> bool:
        return self._closed

    def _ensure_open(self) -> None:
        if self._closed:
            raise RuntimeError("Transaction already finished")

    async def get(self, key: Key) -> dict[str, Any] | None:
        self._ensure_open()
        await self._store.round_trip()
        self._reads.add(key)
        return self._store.peek(key)

    async def insert(self, key: Key, data: dict[str, Any]) -> None:
        self._ensure_open()
        self._inserts[key] = copy.deepcopy(data)

    async def upsert(self, key: Key, data: dict[str, Any]) -> None:
        self._ensure_open()
        self._upserts[key] = copy.deepcopy(data)

    async def commit(self) -> None:
        self._ensure_open()
        await self._store.round_trip()
        self._closed = True
        self._store.apply(self._snapshot, self._reads, self._inserts, self._upserts)

    async def rollback(self) -> None:
        self._closed = True


class InMemoryStore(TransactionalStore):
    """Process-local store; share one instance to simulate several processes on one database."""

    def __init__(self, latency: float = 0.0) -> None:
        self.latency = latency
        self._data: dict[Key, dict[str, Any]] = {}
        self._versions: dict[Key, int] = {}
        self._clock = 0
        self.commits = 0
        self.conflicts = 0

    async def round_trip(self) -> None:
        """Suspend like a network call would, letting other tasks interleave."""
        await asyncio.sleep(self.latency)

    async def begin(self) -> InMemoryTransaction:
        await self.round_trip()
        return InMemoryTransaction(self, self._clock)

    def apply(
        self,
        snapshot: int,
        reads: set[Key],
        inserts: dict[Key, dict[str, Any]],
        upserts: dict[Key, dict[str, Any]],
    ) -> None:
        """Validate and apply one transaction's writes. Runs without suspending, so it is atomic."""
        touched = reads.union(inserts, upserts)
        stale = [key for key in touched if self._versions.get(key, 0) > snapshot]
        if stale:
            self.conflicts += 1
            logger.debug("memory_store_write_conflict", keys=[str(key) for key in stale])
            raise ConflictError(f"Concurrent modification of {', '.join(str(key) for key in stale)}")
        existing = [key for key in inserts if key in self._data]
        if existing:
            self.conflicts += 1
            raise ConflictError(f"Entity already exists: {', '.join(str(key) for key in existing)}")

        self._clock += 1
        for key, data in (upserts | inserts).items():
            self._data[key] = data
            self._versions[key] = self._clock
        self.commits += 1

    def put(self, key: Key, data: dict[str, Any]) -> None:
        """Write outside any transaction (seeding and fault injection)."""
        self._clock += 1
        self._data[key] = copy.deepcopy(data)
        self._versions[key] = self._clock

    def peek(self, key: Key) -> dict[str, Any] | None:
        """Read committed data outside any transaction."""
        data = self._data.get(key)
        return copy.deepcopy(data) if data is not None else None

    def keys(self, kind: str | None = None) -> list[Key]:
        """Return stored keys, optionally only those of one kind."""
        return [key for key in self._data if kind is None or key.kind == kind]
