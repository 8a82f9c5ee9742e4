"""Keyed asyncio locks serializing work per user."""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator


class UserLockRegistry:
    """Hands out one asyncio.Lock per user, dropping it once nobody holds or waits on it."""

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}
        self._waiters: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, user_id: str) -> AsyncIterator[None]:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = self._locks[user_id] = asyncio.Lock()
        self._waiters[user_id] = self._waiters.get(user_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            remaining = self._waiters[user_id] - 1
            if remaining:
                self._waiters[user_id] = remaining
            else:
                del self._waiters[user_id]
                del self._locks[user_id]

    def is_locked(self, user_id: str) -> bool:
        lock = self._locks.get(user_id)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)
