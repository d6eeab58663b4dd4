from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from seqnum.config import Config
from seqnum.core.core import Core
from seqnum.core.modules.sequence.models import IssuanceRecord
from seqnum.core.store.base import TransactionalStore


class App:
    """Facade for numbering operations, delegates to Core."""

    def __init__(self, config: Config, store: TransactionalStore | None = None) -> None:
        self._core = Core(config, store)

    @asynccontextmanager
    async def lifespan(self) -> AsyncGenerator[None, None]:
        """Application lifespan management - delegates to Core."""
        async with self._core.lifespan():
            yield

    async def allocate_id(self, prefix: str = "", initial_id: int = 1) -> str:
        """Allocate the next designator of a sequence."""
        return await self._core.services.sequence.allocate_id(prefix, initial_id)

    async def get_current_id(self, prefix: str = "") -> int | None:
        """Get the last committed number of a sequence."""
        return await self._core.services.sequence.get_current_id(prefix)

    async def get_issuance(self, prefix: str, designator: str) -> IssuanceRecord | None:
        """Get the issuance record of a designator."""
        return await self._core.services.sequence.get_issuance(prefix, designator)
