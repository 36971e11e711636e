"""
Keyed Locks - Per-key asyncio mutual exclusion.

Serializes work that shares a key (a checkout session id, a user id) inside
one process without making unrelated keys wait on each other. Locks are
reference counted and dropped once no task holds or waits on them.
"""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager


class KeyedLock:
    """Registry of asyncio locks keyed by string."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._waiters: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        """
        Hold the lock for key for the duration of the block.

        Usage:
            async with locks.hold(session_id):
                ...
        """
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                del self._locks[key]

    def is_held(self, key: str) -> bool:
        """True if some task currently holds the lock for key."""
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)


# Process-wide registries
fulfillment_locks = KeyedLock()
customer_locks = KeyedLock()
