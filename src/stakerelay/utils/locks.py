"""Concurrency control utilities.

Provides per-key asyncio locks used for the two critical sections of the
relay pipeline: replay digest check-and-insert and relayer nonce allocation.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Hashable, Optional

logger = logging.getLogger(__name__)


class LockTimeoutError(Exception):
    """Raised when a lock cannot be acquired within the timeout period."""

    pass


class KeyedLock:
    """Registry of asyncio locks, one per key.

    Example:
        locks = KeyedLock("replay")
        async with locks.hold(digest):
            # check-and-insert for this digest only
            ...
    """

    def __init__(self, name: str, timeout: Optional[float] = 30.0):
        self.name = name
        self.timeout = timeout
        self._locks: dict[Hashable, asyncio.Lock] = {}
        self._waiters: dict[Hashable, int] = {}

    def get(self, key: Hashable) -> asyncio.Lock:
        """Get or create the lock for a key."""
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    @asynccontextmanager
    async def hold(self, key: Hashable, operation: str = "") -> AsyncIterator[None]:
        """Hold the lock for ``key`` for the duration of the block."""
        lock = self.get(key)
        self._waiters[key] = self._waiters.get(key, 0) + 1
        acquired = False
        try:
            if self.timeout:
                try:
                    await asyncio.wait_for(lock.acquire(), timeout=self.timeout)
                except asyncio.TimeoutError:
                    logger.warning(f"{self.name} lock timeout for {key} after {self.timeout}s: {operation}")
                    raise LockTimeoutError(
                        f"Could not acquire {self.name} lock for {key} within {self.timeout}s"
                    )
            else:
                await lock.acquire()
            acquired = True
            logger.debug(f"{self.name} lock acquired for {key}: {operation}")
            yield
        finally:
            if acquired:
                lock.release()
                logger.debug(f"{self.name} lock released for {key}: {operation}")
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                # Nobody else is waiting, drop the entry so the registry stays bounded
                del self._waiters[key]
                if not lock.locked():
                    self._locks.pop(key, None)

    def __len__(self) -> int:
        return len(self._locks)
