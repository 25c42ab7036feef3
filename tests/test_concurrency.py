"""Tests for src.core.locks and src.core.sent_cache."""

import asyncio
from datetime import datetime, timedelta

import pytest

from src.core.locks import UserLocks
from src.core.sent_cache import SentNotificationCache

T0 = datetime(2026, 3, 10, 9, 0)


class TestUserLocks:
    @pytest.mark.asyncio
    async def test_same_user_serialized(self):
        locks = UserLocks()
        order: list[str] = []

        async def worker(name: str) -> None:
            async with locks.hold(1):
                order.append(f"{name}-in")
                await asyncio.sleep(0.01)
                order.append(f"{name}-out")

        await asyncio.gather(worker("a"), worker("b"))
        assert order in (["a-in", "a-out", "b-in", "b-out"], ["b-in", "b-out", "a-in", "a-out"])

    @pytest.mark.asyncio
    async def test_different_users_independent(self):
        locks = UserLocks()
        async with locks.hold(1):
            assert locks.is_locked(1)
            assert not locks.is_locked(2)
            async with locks.hold(2):
                assert locks.is_locked(2)
        assert not locks.is_locked(1)


class TestSentNotificationCache:
    def test_mark_and_check(self):
        cache = SentNotificationCache()
        assert not cache.has_sent(1, 2)
        cache.mark_sent(1, 2, T0)
        assert cache.has_sent(1, 2)
        assert not cache.has_sent(1, 3)
        assert len(cache) == 1

    def test_clear_older_than(self):
        cache = SentNotificationCache()
        cache.mark_sent(1, 1, T0 - timedelta(hours=30))
        cache.mark_sent(2, 1, T0 - timedelta(hours=1))
        assert cache.clear_older_than(T0 - timedelta(hours=24)) == 1
        assert not cache.has_sent(1, 1)
        assert cache.has_sent(2, 1)

    def test_clear(self):
        cache = SentNotificationCache()
        cache.mark_sent(1, 1, T0)
        cache.clear()
        assert len(cache) == 0
