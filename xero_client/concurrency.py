import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

logger = logging.getLogger(__name__)


class ConcurrencyGate:
    """Caps the number of requests in flight at once.

    Xero rejects calls outright above its concurrent-request ceiling, so this is
    separate from rate limiting. A capacity of None or 0 disables the gate.
    """

    def __init__(self, capacity: int | None = None):
        if capacity is not None and capacity < 0:
            raise ValueError("capacity must be a positive integer or None")
        self.capacity = capacity or None
        self._semaphore = asyncio.Semaphore(self.capacity) if self.capacity else None
        self._in_flight = 0

    @property
    def enabled(self) -> bool:
        return self._semaphore is not None

    @property
    def in_flight(self) -> int:
        return self._in_flight

    @asynccontextmanager
    async def slot(self) -> AsyncIterator[None]:
        if self._semaphore is None:
            yield
            return
        if self._semaphore.locked():
            logger.debug("Concurrency limit of %d reached, waiting for a slot", self.capacity)
        await self._semaphore.acquire()
        self._in_flight += 1
        try:
            yield
        finally:
            self._in_flight -= 1
            self._semaphore.release()
