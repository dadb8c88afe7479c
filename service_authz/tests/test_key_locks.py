"""
Unit tests for grant key locks.
"""

import asyncio
import pytest
from unittest.mock import AsyncMock, MagicMock, call

from redis.exceptions import LockError

from shared.errors import ServiceError
from service_authz.app.locks.key_locks import LocalKeyLocks, RedisKeyLocks


class TestLocalKeyLocks:
    """Test cases for LocalKeyLocks."""

    @pytest.fixture
    def locks(self):
        return LocalKeyLocks()

    @pytest.mark.asyncio
    async def test_same_key_is_serialized(self, locks):
        events = []

        async def writer(name):
            async with locks.hold("u1:doc:d1"):
                events.append(f"{name}-start")
                await asyncio.sleep(0.01)
                events.append(f"{name}-end")

        await asyncio.gather(writer("a"), writer("b"))

        assert events in (
            ["a-start", "a-end", "b-start", "b-end"],
            ["b-start", "b-end", "a-start", "a-end"],
        )

    @pytest.mark.asyncio
    async def test_different_keys_run_concurrently(self, locks):
        entered = asyncio.Event()

        async def first():
            async with locks.hold("k1"):
                await asyncio.wait_for(entered.wait(), timeout=1)

        async def second():
            async with locks.hold("k2"):
                entered.set()

        await asyncio.gather(first(), second())

    @pytest.mark.asyncio
    async def test_overlapping_multi_key_holders_do_not_deadlock(self, locks):
        async def holder(*names):
            async with locks.hold(*names):
                await asyncio.sleep(0.01)

        await asyncio.wait_for(
            asyncio.gather(holder("k1", "k2"), holder("k2", "k1"), holder("k2")),
            timeout=1
        )

        assert locks.active_keys == 0

    @pytest.mark.asyncio
    async def test_locks_released_on_error(self, locks):
        with pytest.raises(RuntimeError):
            async with locks.hold("k1", "k2"):
                raise RuntimeError("boom")

        assert locks.active_keys == 0
        async with locks.hold("k1"):
            pass


class TestRedisKeyLocks:
    """Test cases for RedisKeyLocks."""

    @pytest.fixture
    def redis_lock(self):
        lock = MagicMock()
        lock.acquire = AsyncMock(return_value=True)
        lock.release = AsyncMock()
        return lock

    @pytest.fixture
    def locks(self, redis_lock):
        locks = RedisKeyLocks("redis://localhost:6379/0", timeout=5.0)
        locks.redis = MagicMock()
        locks.redis.lock.return_value = redis_lock
        return locks

    @pytest.mark.asyncio
    async def test_acquires_in_sorted_order(self, locks, redis_lock):
        async with locks.hold("u2:doc:d1", "u1:doc:d1"):
            pass

        assert locks.redis.lock.call_args_list == [
            call("authz:grant-lock:u1:doc:d1", timeout=5.0, blocking_timeout=5.0),
            call("authz:grant-lock:u2:doc:d1", timeout=5.0, blocking_timeout=5.0),
        ]
        assert redis_lock.acquire.await_count == 2
        assert redis_lock.release.await_count == 2

    @pytest.mark.asyncio
    async def test_acquire_failure_raises_service_error(self, locks, redis_lock):
        redis_lock.acquire.side_effect = [True, False]

        with pytest.raises(ServiceError):
            async with locks.hold("k1", "k2"):
                pass

        # only the lock actually taken is released
        assert redis_lock.release.await_count == 1

    @pytest.mark.asyncio
    async def test_expired_lock_release_is_tolerated(self, locks, redis_lock):
        redis_lock.release.side_effect = LockError("not owned")

        async with locks.hold("k1"):
            pass

    @pytest.mark.asyncio
    async def test_health_check(self, locks):
        locks.redis.ping = AsyncMock(return_value=True)
        assert await locks.health_check() is True

        locks.redis.ping = AsyncMock(side_effect=ConnectionError("down"))
        assert await locks.health_check() is False
