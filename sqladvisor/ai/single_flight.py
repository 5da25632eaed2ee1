"""
Single-flight gate: at most one recommendation request dispatched to a
backend at a time.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from sqladvisor.ai.cancellation import CancellationToken, guarded
from sqladvisor.core.logger import get_logger

logger = get_logger('ai.single_flight')


class SingleFlightGate:
    """Binary slot guarding backend dispatch"""

    def __init__(self, name: str = "default"):
        self.name = name
        self._lock = asyncio.Lock()
        self.acquisitions = 0
        self.releases = 0

    @property
    def in_flight(self) -> bool:
        return self._lock.locked()

    @asynccontextmanager
    async def hold(self, cancel_token: Optional[CancellationToken] = None) -> AsyncIterator[None]:
        """
        Acquire the slot for the duration of the block.

        Waiting is abandoned with RecommendationCancelledError when the token
        fires; the slot is then never taken. Once taken, it is released
        exactly once whatever way the block exits.
        """
        if self._lock.locked():
            logger.debug(f"[{self.name}] Slot busy, waiting...")
        await guarded(self._lock.acquire(), cancel_token, stage="acquire_slot")
        self.acquisitions += 1
        logger.debug(f"[{self.name}] Slot acquired")
        try:
            yield
        finally:
            self._lock.release()
            self.releases += 1
            logger.debug(f"[{self.name}] Slot released")
