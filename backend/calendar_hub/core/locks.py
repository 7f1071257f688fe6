"""
In-process keyed locks.

Serializes sync operations per (user_id, provider) while letting different
keys run concurrently. Entries are dropped once nobody holds or waits on them.
"""

import asyncio
from collections.abc import Hashable
from contextlib import asynccontextmanager


class KeyedLock:
    """A dict of asyncio.Lock objects with reference counting."""

    def __init__(self):
        self._locks: dict[Hashable, asyncio.Lock] = {}
        self._users: dict[Hashable, int] = {}

    @asynccontextmanager
    async def hold(self, key: Hashable):
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]

    def locked(self, key: Hashable) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)
