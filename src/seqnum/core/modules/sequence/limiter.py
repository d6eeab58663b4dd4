import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

T = TypeVar("T")


class ConcurrencyLimiter:
    """Single-slot gate: at most one call runs at a time, the rest wait in submission order.

    Scoped to whoever owns the instance. Pass the same limiter to several
    allocators to serialize them together.
    """

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._pending = 0

    @property
    def pending(self) -> int:
        """Number of calls running or waiting for the slot."""
        return self._pending

    async def run(self, func: Callable[[], Awaitable[T]]) -> T:
        self._pending += 1
        try:
            async with self._lock:
                return await func()
        finally:
            self._pending -= 1
