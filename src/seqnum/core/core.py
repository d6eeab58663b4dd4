from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from seqnum.config import Config
from seqnum.core.modules.sequence.retry import RetryPolicy
from seqnum.core.store.base import TransactionalStore
from seqnum.core.store.mongo import MongoStore

if TYPE_CHECKING:
    from seqnum.core.modules.sequence.service import SequenceService


class Service:
    """Base class for services with direct store access."""

    def __init__(self, store: TransactionalStore) -> None:
        self.store = store

    async def on_start(self) -> None:
        """Initialize service on application startup."""

    async def on_stop(self) -> None:
        """Cleanup service on application shutdown."""


class Services:
    """Service registry built from configuration."""

    sequence: SequenceService

    def __init__(self, store: TransactionalStore, config: Config) -> None:
        from seqnum.core.modules.sequence.service import SequenceService  # noqa: PLC0415

        retry_policy = RetryPolicy(
            max_retry_time=config.max_retry_time,
            min_delay=config.retry_min_delay,
            max_delay=config.retry_max_delay,
        )
        self.sequence = SequenceService(store, kind_name_prefix=config.kind_name_prefix, retry_policy=retry_policy)
        self._services: list[Service] = [self.sequence]

    async def start_all(self) -> None:
        for service in self._services:
            await service.on_start()

    async def stop_all(self) -> None:
        for service in self._services:
            await service.on_stop()


class Core:
    """Container providing config, the store, and all service instances."""

    config: Config
    store: TransactionalStore
    services: Services

    def __init__(self, config: Config, store: TransactionalStore | None = None) -> None:
        """Initialize core with config and a store; MongoDB from config unless one is given."""
        self.config = config
        self.store = store if store is not None else MongoStore.from_url(config.database_url)
        self.services = Services(self.store, config)

    @asynccontextmanager
    async def lifespan(self) -> AsyncGenerator[None, None]:
        """Manage application lifecycle - startup and shutdown."""
        await self.on_start()
        try:
            yield
        finally:
            await self.on_stop()

    async def on_start(self) -> None:
        await self.store.on_start()
        await self.services.start_all()

    async def on_stop(self) -> None:
        """Stop services, then release the store."""
        await self.services.stop_all()
        await self.store.on_stop()
