"""Shared pytest fixtures."""

import pytest

from seqnum.core.modules.sequence.retry import RetryPolicy
from seqnum.core.modules.sequence.service import SequenceService
from seqnum.core.store.memory import InMemoryStore


@pytest.fixture
def store():
    """Create an empty in-memory store."""
    return InMemoryStore()


@pytest.fixture
def fast_retry():
    """Retry policy with short delays so conflicting tests finish quickly."""
    return RetryPolicy(max_retry_time=5.0, min_delay=0.001, max_delay=0.02)


@pytest.fixture
def numbering(store, fast_retry):
    """Create a numbering service backed by the in-memory store."""
    return SequenceService(store, retry_policy=fast_retry)
