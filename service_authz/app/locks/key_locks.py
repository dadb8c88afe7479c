"""
Per-key write serialization for resource grants.
"""

import asyncio
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, List, Optional

import redis.asyncio as redis
from redis.exceptions import LockError

from shared.logging import get_logger
from shared.errors import AccessLayerException, ServiceError


class KeyLockProvider(ABC):
    """At most one writer per key at a time."""

    @abstractmethod
    def hold(self, *names: str):
        """Async context manager holding every named lock.

        Locks are always taken in sorted order so overlapping multi-key
        holders cannot deadlock.
        """

    async def start(self):
        pass

    async def stop(self):
        pass

    async def health_check(self) -> bool:
        return True


class LocalKeyLocks(KeyLockProvider):
    """asyncio locks, valid within one process."""

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._holders: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, *names: str) -> AsyncIterator[None]:
        ordered = sorted(set(names))
        acquired: List[str] = []
        try:
            for name in ordered:
                lock = self._locks.setdefault(name, asyncio.Lock())
                self._holders[name] = self._holders.get(name, 0) + 1
                try:
                    await lock.acquire()
                except BaseException:
                    self._drop_holder(name)
                    raise
                acquired.append(name)
            yield
        finally:
            for name in reversed(acquired):
                self._locks[name].release()
                self._drop_holder(name)

    def _drop_holder(self, name: str):
        self._holders[name] -= 1
        if self._holders[name] == 0:
            del self._holders[name]
            del self._locks[name]

    @property
    def active_keys(self) -> int:
        return len(self._locks)


class RedisKeyLocks(KeyLockProvider):
    """Redis locks, shared by every replica pointed at the same Redis."""

    LOCK_PREFIX = "authz:grant-lock:"

    def __init__(self, redis_url: str, timeout: float = 10.0, blocking_timeout: Optional[float] = None):
        self.redis_url = redis_url
        self.timeout = timeout
        self.blocking_timeout = blocking_timeout if blocking_timeout is not None else timeout
        self.logger = get_logger("authz.locks.redis")
        self.redis: Optional[redis.Redis] = None

    async def start(self):
        """Connect to Redis."""
        try:
            self.redis = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
                retry_on_timeout=True,
                health_check_interval=30
            )
            await self.redis.ping()
            self.logger.info("Redis key locks started")

        except Exception as e:
            self.logger.error("Failed to start Redis key locks", error=str(e))
            raise AccessLayerException("REDIS_START_FAILED", str(e))

    async def stop(self):
        if self.redis:
            await self.redis.close()
            self.logger.info("Redis key locks stopped")

    @asynccontextmanager
    async def hold(self, *names: str) -> AsyncIterator[None]:
        acquired = []
        try:
            for name in sorted(set(names)):
                lock = self.redis.lock(
                    f"{self.LOCK_PREFIX}{name}",
                    timeout=self.timeout,
                    blocking_timeout=self.blocking_timeout
                )
                if not await lock.acquire():
                    self.logger.warning("Grant lock not acquired", key=name)
                    raise ServiceError("Resource grant is locked by another writer", details={"key": name})
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                try:
                    await lock.release()
                except LockError as e:
                    # Lock expired while held; the write already happened
                    self.logger.warning("Grant lock release failed", error=str(e))

    async def health_check(self) -> bool:
        try:
            await self.redis.ping()
            return True
        except Exception:
            return False
