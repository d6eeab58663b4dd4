"""Sequential numbering on top of a transactional store.

Common wisdom says not to number entities sequentially on stores like
Datastore or MongoDB, and usually that is right. Invoice numbers are the
exception. This service is slow but safe: an identifier is never produced
twice for a prefix, gaps are possible but rare, and each prefix is an
independent sequence.

    numbering = SequenceService(MongoStore.from_url(url))
    designator = await numbering.allocate_id("INV-", 10_000)
"""

from typing import Any

import structlog

from seqnum.core.core import Service
from seqnum.core.modules.sequence.limiter import ConcurrencyLimiter
from seqnum.core.modules.sequence.models import (
    EMPTY_PREFIX_KEY,
    IssuanceRecord,
    SeriesCounter,
    make_designator,
    series_key_name,
)
from seqnum.core.modules.sequence.retry import RetryPolicy
from seqnum.core.store.base import Key, Transaction, TransactionalStore
from seqnum.errors import ConfigurationError, ConflictError, SequenceError
from seqnum.utils import is_kind_name_prefix, now

logger = structlog.get_logger(__name__)


def validate_allocation_args(prefix: Any, initial_id: Any) -> None:
    if not isinstance(prefix, str):
        raise ConfigurationError(f"Prefix must be a string, got {type(prefix).__name__}")
    if prefix == EMPTY_PREFIX_KEY:
        # Reserved as the store key of the empty prefix
        raise ConfigurationError(f"Prefix {EMPTY_PREFIX_KEY!r} is reserved")
    if isinstance(initial_id, bool) or not isinstance(initial_id, int):
        raise ConfigurationError(f"Initial id must be an integer, got {type(initial_id).__name__}")
    if initial_id < 0:
        raise ConfigurationError(f"Initial id must not be negative, got {initial_id}")


class SequenceService(Service):
    """Allocates unique sequential designators per prefix.

    Storage uses the kinds ``<kind_name_prefix>Ancestor`` (one counter per
    prefix) and ``<kind_name_prefix>Item`` (one record per issued designator,
    stored below its counter).
    """

    def __init__(
        self,
        store: TransactionalStore,
        kind_name_prefix: str = "Numbering",
        retry_policy: RetryPolicy | None = None,
        limiter: ConcurrencyLimiter | None = None,
    ) -> None:
        super().__init__(store)
        if not isinstance(kind_name_prefix, str) or not is_kind_name_prefix(kind_name_prefix):
            raise ConfigurationError(f"Invalid kind name prefix: {kind_name_prefix!r}")
        self.kind_name_prefix = kind_name_prefix
        self.ancestor_kind_name = f"{kind_name_prefix}Ancestor"
        self.item_kind_name = f"{kind_name_prefix}Item"
        self.retry_policy = retry_policy or RetryPolicy()
        self.limiter = limiter or ConcurrencyLimiter()

    async def allocate_id(self, prefix: str = "", initial_id: int = 1) -> str:
        """Return a designator never handed out before for this prefix.

        Attempts are serialized within this instance and retried with
        randomized backoff for up to ``retry_policy.max_retry_time`` seconds.

        Args:
            prefix: Names the sequence and is prepended to the number
            initial_id: First number of a new sequence; ignored once the sequence exists

        Returns:
            The prefix followed by the decimal number, e.g. ``"INV-10000"``

        Raises:
            ConfigurationError: Arguments are invalid
            ExhaustedError: No attempt committed within the time budget
        """
        validate_allocation_args(prefix, initial_id)
        with structlog.contextvars.bound_contextvars(prefix=prefix):
            return await self.retry_policy.run(lambda: self.allocate_id_once(prefix, initial_id))

    async def allocate_id_once(self, prefix: str, initial_id: int) -> str:
        """Single serialized attempt without retry."""
        return await self.limiter.run(lambda: self._allocate_id_once_unlimited(prefix, initial_id))

    async def get_current_id(self, prefix: str = "") -> int | None:
        """Get the last committed number of a sequence, or None if it was never used.

        Store failures are retried like allocations and end in ExhaustedError.
        """
        validate_allocation_args(prefix, 0)
        data = await self.retry_policy.run(lambda: self._read(self.ancestor_key(prefix)))
        if data is None:
            return None
        return SeriesCounter.from_store(data).last_id

    async def get_issuance(self, prefix: str, designator: str) -> IssuanceRecord | None:
        """Look up the record written when designator was allocated."""
        validate_allocation_args(prefix, 0)
        if not designator:
            return None
        data = await self.retry_policy.run(lambda: self._read(self.item_key(prefix, designator)))
        if data is None:
            return None
        return IssuanceRecord.from_store(data)

    def ancestor_key(self, prefix: str) -> Key:
        return Key.of(self.ancestor_kind_name, series_key_name(prefix))

    def item_key(self, prefix: str, designator: str) -> Key:
        return self.ancestor_key(prefix).child(self.item_kind_name, designator)

    async def _read(self, key: Key) -> dict[str, Any] | None:
        transaction = await self.store.begin()
        try:
            return await transaction.get(key)
        finally:
            await self._rollback(transaction)

    async def _rollback(self, transaction: Transaction) -> None:
        # A failing rollback must not replace the error that caused it
        try:
            await transaction.rollback()
        except SequenceError as exc:
            logger.warning("rollback_failed", error=str(exc))

    async def _allocate_id_once_unlimited(self, prefix: str, initial_id: int) -> str:
        transaction = await self.store.begin()
        try:
            ancestor_key = self.ancestor_key(prefix)
            counter = await self._resolve_counter(transaction, ancestor_key, prefix, initial_id)
            new_id = counter.last_id + 1
            designator = make_designator(prefix, new_id)
            item_key = self.item_key(prefix, designator)

            # Dupes should never happen, but a reused designator would be far worse than a retry
            await self._prevent_dupe(transaction, item_key)

            counter.last_id = new_id
            counter.updated_at = now()
            await transaction.upsert(ancestor_key, counter.to_store())
            await transaction.insert(item_key, IssuanceRecord(id=new_id, designator=designator).to_store())
            await transaction.commit()
        except BaseException:
            await self._rollback(transaction)
            raise

        logger.debug("designator_allocated", designator=designator, id=new_id)
        return designator

    async def _resolve_counter(
        self, transaction: Transaction, ancestor_key: Key, prefix: str, initial_id: int
    ) -> SeriesCounter:
        data = await transaction.get(ancestor_key)
        if data is None:
            counter = SeriesCounter(prefix=prefix, last_id=initial_id - 1, created_at=now())
            logger.debug("series_counter_missing", prefix=prefix, last_id=counter.last_id)
            return counter
        counter = SeriesCounter.from_store(data)
        logger.debug("series_counter_loaded", prefix=prefix, last_id=counter.last_id)
        return counter

    async def _prevent_dupe(self, transaction: Transaction, item_key: Key) -> None:
        existing = await transaction.get(item_key)
        if existing is not None:
            logger.warning("duplicate_designator", key=str(item_key), existing=existing)
            raise ConflictError(f"Duplicate entity {item_key}")
