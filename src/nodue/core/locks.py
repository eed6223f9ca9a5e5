"""
Keyed Locks

Exclusive locks scoped to a single key (one application, one student).
Mutations on the same key are serialized; different keys never contend.

Two implementations share the `acquire(key, timeout)` async context manager:
- LocalLockManager: asyncio locks, valid within a single process
- RedisLockManager: Redis locks, valid across API workers

Both raise LockUnavailableError when the lock cannot be obtained within the
timeout, so callers never block indefinitely.
"""

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Protocol

from redis.asyncio import Redis
from redis.exceptions import LockError, RedisError

logger = logging.getLogger(__name__)

LOCK_KEY_PREFIX = "nodue:lock"


class LockUnavailableError(Exception):
    """Raised when a keyed lock cannot be acquired in time."""

    def __init__(self, key: str, reason: str = "timed out waiting for lock"):
        self.key = key
        super().__init__(f"Lock '{key}' unavailable: {reason}")


class LockManager(Protocol):
    def acquire(self, key: str, timeout: float | None = None):
        """Async context manager holding the lock for `key`."""
        ...


class LocalLockManager:
    """In-process keyed locks. Idle keys are dropped once no task holds or waits on them."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def acquire(self, key: str, timeout: float | None = None) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            try:
                await asyncio.wait_for(lock.acquire(), timeout=timeout)
            except TimeoutError as e:
                logger.warning(f"Timed out after {timeout}s waiting for lock {key}")
                raise LockUnavailableError(key) from e
            try:
                yield
            finally:
                lock.release()
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                self._locks.pop(key, None)


class RedisLockManager:
    """
    Distributed keyed locks backed by Redis.

    The lease bounds how long a crashed holder can keep a key locked.
    """

    def __init__(
        self,
        redis_client: Redis,
        *,
        lease_seconds: float = 30.0,
        prefix: str = LOCK_KEY_PREFIX,
    ) -> None:
        self._redis = redis_client
        self._lease_seconds = lease_seconds
        self._prefix = prefix

    @asynccontextmanager
    async def acquire(self, key: str, timeout: float | None = None) -> AsyncIterator[None]:
        lock = self._redis.lock(
            f"{self._prefix}:{key}",
            timeout=self._lease_seconds,
            blocking_timeout=timeout,
        )
        try:
            acquired = await lock.acquire()
        except RedisError as e:
            logger.error(f"Redis error acquiring lock {key}: {e}")
            raise LockUnavailableError(key, "lock backend unavailable") from e

        if not acquired:
            logger.warning(f"Timed out after {timeout}s waiting for lock {key}")
            raise LockUnavailableError(key)

        try:
            yield
        finally:
            try:
                await lock.release()
            except LockError as e:
                # Lease expired while held; the write itself is guarded by the version check
                logger.warning(f"Lock {key} was no longer owned at release: {e}")
            except RedisError as e:
                logger.error(f"Redis error releasing lock {key}: {e}")
