"""Time-bounded retry with randomized exponential backoff."""

import asyncio
import random
import time
from collections.abc import Awaitable, Callable
from typing import TypeVar

import structlog

from seqnum.errors import ConfigurationError, ExhaustedError

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class RetryPolicy:
    """Retry any failing attempt until a total time budget runs out.

    ConfigurationError is never retried. Every other exception counts as a
    failed attempt. Once the budget is spent the last failure is raised
    wrapped in ExhaustedError.
    """

    def __init__(
        self,
        max_retry_time: float = 5.0,
        min_delay: float = 0.1,
        max_delay: float = 1.0,
        factor: float = 2.0,
        randomize: bool = True,
    ) -> None:
        if max_retry_time <= 0:
            raise ConfigurationError("max_retry_time must be positive")
        if min_delay < 0 or max_delay < min_delay:
            raise ConfigurationError("Retry delays must satisfy 0 <= min_delay <= max_delay")
        if factor < 1:
            raise ConfigurationError("Backoff factor must be >= 1")
        self.max_retry_time = max_retry_time
        self.min_delay = min_delay
        self.max_delay = max_delay
        self.factor = factor
        self.randomize = randomize

    def backoff(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (0-based), before capping to the remaining budget."""
        delay = min(self.max_delay, self.min_delay * self.factor**attempt)
        if self.randomize:
            delay *= random.uniform(1, 2)
        return delay

    async def run(self, func: Callable[[], Awaitable[T]]) -> T:
        started = time.monotonic()
        attempt = 0
        while True:
            try:
                return await func()
            except ConfigurationError:
                raise
            except Exception as exc:
                elapsed = time.monotonic() - started
                remaining = self.max_retry_time - elapsed
                if remaining <= 0:
                    logger.warning("retry_exhausted", attempts=attempt + 1, elapsed=round(elapsed, 3), error=str(exc))
                    raise ExhaustedError(exc) from exc
                delay = min(remaining, self.backoff(attempt))
                logger.debug("retry_scheduled", attempt=attempt + 1, delay=round(delay, 3), error=str(exc))
                attempt += 1
                await asyncio.sleep(delay)
