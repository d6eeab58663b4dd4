"""MongoDB adapter built on multi-document transactions.

Each key kind maps to a collection. Root keys use their name as ``_id``;
child keys use ``{"parent": [...parent path...], "name": name}`` so the full
path is the identity. MongoDB only supports transactions on replica sets and
sharded clusters.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any
from urllib.parse import urlparse

import structlog
from pymongo import AsyncMongoClient
from pymongo.asynchronous.client_session import AsyncClientSession
from pymongo.asynchronous.collection import AsyncCollection
from pymongo.asynchronous.database import AsyncDatabase
from pymongo.errors import ConfigurationError as MongoConfigurationError
from pymongo.errors import ConnectionFailure, DuplicateKeyError, InvalidName, PyMongoError

from seqnum.core.store.base import Key, Transaction, TransactionalStore
from seqnum.errors import ConfigurationError, ConflictError, TransientStoreError

logger = structlog.get_logger(__name__)

CONFLICT_LABELS = ("TransientTransactionError", "UnknownTransactionCommitResult")


def key_to_id(key: Key) -> str | dict[str, Any]:
    """Build the ``_id`` for key within its kind's collection."""
    parent = key.parent
    if parent is None:
        return key.name
    return {"parent": list(parent.path), "name": key.name}


def translate_error(exc: PyMongoError) -> ConflictError | TransientStoreError:
    """Map a driver exception onto the numbering error taxonomy."""
    if isinstance(exc, DuplicateKeyError):
        return ConflictError(f"Entity already exists: {exc}")
    if any(exc.has_error_label(label) for label in CONFLICT_LABELS):
        return ConflictError(f"Transaction conflict: {exc}")
    if isinstance(exc, ConnectionFailure):
        return TransientStoreError(f"MongoDB unreachable: {exc}")
    return TransientStoreError(f"MongoDB error: {exc}")


@contextmanager
def translate_errors() -> Iterator[None]:
    try:
        yield
    except PyMongoError as exc:
        raise translate_error(exc) from exc


class MongoTransaction(Transaction):
    def __init__(self, database: AsyncDatabase[dict[str, Any]], session: AsyncClientSession) -> None:
        self._database = database
        self._session = session

    def _collection(self, key: Key) -> AsyncCollection[dict[str, Any]]:
        return self._database.get_collection(key.kind)

    async def get(self, key: Key) -> dict[str, Any] | None:
        with translate_errors():
            doc = await self._collection(key).find_one({"_id": key_to_id(key)}, session=self._session)
        if doc is None:
            return None
        doc.pop("_id", None)
        return doc

    async def insert(self, key: Key, data: dict[str, Any]) -> None:
        with translate_errors():
            await self._collection(key).insert_one({**data, "_id": key_to_id(key)}, session=self._session)

    async def upsert(self, key: Key, data: dict[str, Any]) -> None:
        with translate_errors():
            await self._collection(key).replace_one(
                {"_id": key_to_id(key)}, dict(data), upsert=True, session=self._session
            )

    async def commit(self) -> None:
        try:
            with translate_errors():
                await self._session.commit_transaction()
        finally:
            await self._session.end_session()

    async def rollback(self) -> None:
        try:
            if self._session.in_transaction:
                with translate_errors():
                    await self._session.abort_transaction()
        finally:
            # No-op once ended, e.g. after commit
            with translate_errors():
                await self._session.end_session()


class MongoStore(TransactionalStore):
    """Transactional store backed by a MongoDB replica set."""

    def __init__(self, client: AsyncMongoClient[dict[str, Any]], database_name: str) -> None:
        self.client = client
        self.database = client.get_database(database_name)

    @classmethod
    def from_url(cls, database_url: str) -> MongoStore:
        """Create a store for the database named in the URL path."""
        try:
            client: AsyncMongoClient[dict[str, Any]] = AsyncMongoClient(database_url, tz_aware=True)
            return cls(client, urlparse(database_url).path[1:] or "seqnum")
        except (MongoConfigurationError, InvalidName) as exc:
            raise ConfigurationError(f"Invalid database URL {database_url!r}: {exc}") from exc

    async def begin(self) -> MongoTransaction:
        session = self.client.start_session()
        try:
            with translate_errors():
                await session.start_transaction()
        except BaseException:
            await session.end_session()
            raise
        return MongoTransaction(self.database, session)

    async def on_start(self) -> None:
        with translate_errors():
            await self.database.command("ping")
        logger.debug("mongo_store_started", database=self.database.name)

    async def on_stop(self) -> None:
        await self.client.aclose()
