"""Tests for sequential designator allocation."""

import asyncio
import time

import pytest

from seqnum.core.modules.sequence.limiter import ConcurrencyLimiter
from seqnum.core.modules.sequence.retry import RetryPolicy
from seqnum.core.modules.sequence.service import SequenceService
from seqnum.core.store.base import Key
from seqnum.core.store.memory import InMemoryStore, InMemoryTransaction
from seqnum.errors import ConfigurationError, ConflictError, ExhaustedError, TransientStoreError


class FlakyStore(InMemoryStore):
    """Store whose first transactions fail to start."""

    def __init__(self, failures: int) -> None:
        super().__init__()
        self.failures = failures

    async def begin(self):
        if self.failures > 0:
            self.failures -= 1
            raise TransientStoreError("store restarting")
        return await super().begin()


class FailingRollbackTransaction(InMemoryTransaction):
    async def rollback(self) -> None:
        await super().rollback()
        raise TransientStoreError("connection dropped during abort")


class FailingRollbackStore(InMemoryStore):
    """Store whose transactions fail to roll back."""

    async def begin(self):
        await self.round_trip()
        return FailingRollbackTransaction(self, self._clock)


class TestSequential:
    """Tests for allocation without interference."""

    async def test_default_prefix(self, numbering):
        """Test that no arguments means empty prefix starting at 1."""
        assert await numbering.allocate_id() == "1"
        assert await numbering.allocate_id() == "2"

    async def test_prefix_and_initial_id(self, numbering):
        """Test that the designator is prefix plus the unpadded number."""
        assert await numbering.allocate_id("TST", 10_000) == "TST10000"
        assert await numbering.allocate_id("TEST") == "TEST1"

    async def test_continuity(self, numbering):
        """Test that sequential calls return consecutive numbers in order."""
        ids = [await numbering.allocate_id("TST2_", 10_000) for _ in range(4)]
        assert ids == ["TST2_10000", "TST2_10001", "TST2_10002", "TST2_10003"]

    async def test_initial_id_only_used_for_new_series(self, numbering):
        """Test that a different initial_id is ignored once the series exists."""
        assert await numbering.allocate_id("S", 10) == "S10"
        assert await numbering.allocate_id("S", 500) == "S11"
        assert await numbering.allocate_id("S") == "S12"

    async def test_initial_id_zero(self, numbering):
        """Test that a series may start at zero."""
        assert await numbering.allocate_id("Z", 0) == "Z0"
        assert await numbering.allocate_id("Z", 0) == "Z1"

    async def test_series_are_independent(self, numbering):
        """Test that allocations on one prefix leave others untouched."""
        for _ in range(3):
            await numbering.allocate_id("A", 100)
        assert await numbering.allocate_id("B") == "B1"
        assert await numbering.get_current_id("A") == 102
        assert await numbering.get_current_id("B") == 1
        assert await numbering.get_current_id("C") is None


class TestPersistence:
    """Tests for what is written to the store."""

    async def test_empty_prefix_uses_sentinel_key(self, numbering, store):
        """Test that the empty prefix is stored under "(empty)"."""
        await numbering.allocate_id()
        await numbering.allocate_id()
        counter = store.peek(Key.of("NumberingAncestor", "(empty)"))
        assert counter["prefix"] == ""
        assert counter["lastId"] == 2

    async def test_issuance_records_written(self, numbering, store):
        """Test that every designator gets a record below its counter."""
        await numbering.allocate_id("INV-", 7)
        await numbering.allocate_id("INV-")
        items = store.keys("NumberingItem")
        assert [key.name for key in items] == ["INV-7", "INV-8"]
        assert all(key.parent == Key.of("NumberingAncestor", "INV-") for key in items)

        record = await numbering.get_issuance("INV-", "INV-8")
        assert record is not None
        assert record.id == 8
        assert record.designator == "INV-8"
        assert await numbering.get_issuance("INV-", "INV-9") is None
        assert await numbering.get_issuance("INV-", "") is None

    async def test_counter_timestamps(self, numbering, store):
        """Test that created_at is kept and updated_at refreshed."""
        await numbering.allocate_id("T")
        first = store.peek(Key.of("NumberingAncestor", "T"))
        await numbering.allocate_id("T")
        second = store.peek(Key.of("NumberingAncestor", "T"))
        assert second["created_at"] == first["created_at"]
        assert second["updated_at"] >= first["updated_at"]
        assert first["updated_at"] is not None

    async def test_custom_kind_name_prefix(self, store, fast_retry):
        """Test that the kind names follow kind_name_prefix."""
        numbering = SequenceService(store, kind_name_prefix="Invoice", retry_policy=fast_retry)
        await numbering.allocate_id("X")
        assert store.peek(Key.of("InvoiceAncestor", "X"))["lastId"] == 1
        assert store.keys("InvoiceItem") == [Key.of("InvoiceAncestor", "X", "InvoiceItem", "X1")]

    async def test_stored_counter_continues(self, numbering, store):
        """Test that allocation continues from a counter written by someone else."""
        store.put(Key.of("NumberingAncestor", "P"), {"prefix": "P", "lastId": 41, "created_at": "2024-01-01T00:00:00Z"})
        assert await numbering.allocate_id("P") == "P42"


class TestConcurrency:
    """Tests for concurrent callers."""

    async def test_concurrent_mixed_series(self, numbering):
        """Test concurrent calls on two series from one allocator."""
        ids = await asyncio.gather(
            *[numbering.allocate_id("TST3_", 10_000) for _ in range(5)],
            numbering.allocate_id("TEST3_"),
            numbering.allocate_id("TEST3_"),
        )
        assert ids == ["TST3_10000", "TST3_10001", "TST3_10002", "TST3_10003", "TST3_10004", "TEST3_1", "TEST3_2"]

    async def test_same_process_calls_do_not_conflict(self, numbering, store):
        """Test that serialized attempts never conflict with each other."""
        ids = await asyncio.gather(*[numbering.allocate_id("N") for _ in range(20)])
        assert len(set(ids)) == 20
        assert store.conflicts == 0

    async def test_separate_allocators_never_duplicate(self, store, fast_retry):
        """Test uniqueness when two allocators, like two processes, share one store."""
        first = SequenceService(store, retry_policy=fast_retry)
        second = SequenceService(store, retry_policy=fast_retry)
        ids = await asyncio.gather(*[(first if i % 2 else second).allocate_id("M") for i in range(12)])
        assert sorted(ids, key=lambda d: int(d[1:])) == [f"M{i}" for i in range(1, 13)]
        assert len(store.keys("NumberingItem")) == 12

    async def test_shared_limiter_serializes_allocators(self, store, fast_retry):
        """Test that allocators sharing a limiter do not conflict."""
        limiter = ConcurrencyLimiter()
        first = SequenceService(store, retry_policy=fast_retry, limiter=limiter)
        second = SequenceService(store, retry_policy=fast_retry, limiter=limiter)
        ids = await asyncio.gather(*[(first if i % 2 else second).allocate_id("L") for i in range(6)])
        assert ids == [f"L{i}" for i in range(1, 7)]
        assert store.conflicts == 0


class TestFailures:
    """Tests for retry and failure behavior."""

    async def test_duplicate_record_exhausts(self, store):
        """Test that a pre-existing record for the next designator is never reused."""
        store.put(Key.of("NumberingAncestor", "D", "NumberingItem", "D1"), {"id": 1, "designator": "D1"})
        numbering = SequenceService(store, retry_policy=RetryPolicy(max_retry_time=0.2, min_delay=0.01, max_delay=0.05))

        started = time.monotonic()
        with pytest.raises(ExhaustedError) as exc_info:
            await numbering.allocate_id("D")
        elapsed = time.monotonic() - started

        assert isinstance(exc_info.value.last_error, ConflictError)
        assert exc_info.value.__cause__ is exc_info.value.last_error
        assert 0.2 <= elapsed < 2.0
        assert await numbering.get_current_id("D") is None

    async def test_transient_errors_heal(self, fast_retry):
        """Test that allocation succeeds once the store recovers."""
        store = FlakyStore(failures=3)
        numbering = SequenceService(store, retry_policy=fast_retry)
        assert await numbering.allocate_id("R") == "R1"
        assert store.failures == 0
        assert store.commits == 1

    async def test_allocate_once_does_not_retry(self, store):
        """Test that a single attempt surfaces the conflict directly."""
        store.put(Key.of("NumberingAncestor", "O", "NumberingItem", "O1"), {"id": 1, "designator": "O1"})
        numbering = SequenceService(store)
        with pytest.raises(ConflictError):
            await numbering.allocate_id_once("O", 1)

    @pytest.mark.parametrize(
        ("prefix", "initial_id"),
        [(None, 1), (5, 1), ("A", "1"), ("A", 1.5), ("A", True), ("A", -1), ("(empty)", 1)],
    )
    async def test_invalid_arguments(self, prefix, initial_id):
        """Test that invalid arguments fail immediately without touching the store."""
        store = FlakyStore(failures=0)
        numbering = SequenceService(store)
        with pytest.raises(ConfigurationError):
            await numbering.allocate_id(prefix, initial_id)
        assert store.keys() == []

    @pytest.mark.parametrize("kind_name_prefix", ["", "1abc", "with space", "a/b", None])
    def test_invalid_kind_name_prefix(self, store, kind_name_prefix):
        """Test that malformed kind name prefixes are rejected at construction."""
        with pytest.raises(ConfigurationError):
            SequenceService(store, kind_name_prefix=kind_name_prefix)

    async def test_reserved_prefix_does_not_join_empty_series(self, numbering, store):
        """Test that the store key of the empty prefix cannot be used as a prefix."""
        assert await numbering.allocate_id("") == "1"
        with pytest.raises(ConfigurationError):
            await numbering.allocate_id("(empty)", 100)
        with pytest.raises(ConfigurationError):
            await numbering.get_current_id("(empty)")
        assert await numbering.get_current_id("") == 1
        assert len(store.keys("NumberingItem")) == 1

    async def test_failing_rollback_keeps_original_error(self):
        """Test that an error during rollback does not hide the attempt failure."""
        store = FailingRollbackStore()
        store.put(Key.of("NumberingAncestor", "K", "NumberingItem", "K1"), {"id": 1, "designator": "K1"})
        numbering = SequenceService(store)
        with pytest.raises(ConflictError, match="Duplicate entity"):
            await numbering.allocate_id_once("K", 1)


class TestLookups:
    """Tests for the read-only lookups."""

    async def test_lookup_retries_transient_errors(self, fast_retry):
        """Test that lookups heal once the store recovers."""
        store = FlakyStore(failures=2)
        numbering = SequenceService(store, retry_policy=fast_retry)
        assert await numbering.get_current_id("R") is None
        assert store.failures == 0

        store.failures = 2
        assert await numbering.get_issuance("R", "R1") is None
        assert store.failures == 0

    async def test_lookup_exhausts_when_store_stays_down(self):
        """Test that a lookup on an unavailable store ends in ExhaustedError."""
        store = FlakyStore(failures=10_000)
        numbering = SequenceService(store, retry_policy=RetryPolicy(max_retry_time=0.1, min_delay=0.01, max_delay=0.02))
        with pytest.raises(ExhaustedError) as exc_info:
            await numbering.get_current_id("R")
        assert isinstance(exc_info.value.last_error, TransientStoreError)
