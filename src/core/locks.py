"""Per-user serialization point for gamification read-modify-write cycles."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator


class UserLocks:
    """A registry of ``asyncio.Lock`` objects, one per user id.

    Constructed once per process and passed to whoever updates a user's
    streak, XP or achievements, so concurrent completions for the same user
    run one after another instead of losing updates.
    """

    def __init__(self) -> None:
        self._locks: dict[int, asyncio.Lock] = {}

    def _lock_for(self, user_id: int) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = self._locks[user_id] = asyncio.Lock()
        return lock

    @asynccontextmanager
    async def hold(self, user_id: int) -> AsyncIterator[None]:
        async with self._lock_for(user_id):
            yield

    def is_locked(self, user_id: int) -> bool:
        lock = self._locks.get(user_id)
        return lock is not None and lock.locked()
