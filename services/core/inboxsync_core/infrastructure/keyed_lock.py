"""Keyed single-flight locks for event handlers.

Events touching the same chat (or the same message, for read/edit/delete)
run one at a time; events with different keys never wait on each other.

Implements:
- LocalKeyedLock: in-process asyncio.Lock map for single-node deployments
- RedisKeyedLock: Redis lease lock keyed identically for multi-node deployments

Usage:
    locks = LocalKeyedLock()

    async with locks.hold("chat:abc"):
        await handler.handle_message_received(event)
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional, Protocol

from redis.exceptions import LockError

logger = logging.getLogger(__name__)


class AsyncRedisLockProtocol(Protocol):
    """Protocol for the async Redis client's lock factory."""

    def lock(
        self,
        name: str,
        timeout: Optional[float] = None,
        blocking_timeout: Optional[float] = None,
    ) -> Any: ...


class KeyedLockTimeout(Exception):
    """Raised when a keyed lock cannot be acquired in time."""

    def __init__(self, key: str):
        super().__init__(f"Timed out waiting for lock {key}")
        self.key = key


def chat_lock_key(chat_id: str) -> str:
    return f"chat:{chat_id}"


def message_lock_key(message_id: str) -> str:
    return f"message:{message_id}"


class KeyedLock(ABC):
    """Concurrency limit of 1 per key."""

    @abstractmethod
    def _acquire(self, key: str) -> Any:
        """Return an async context manager holding ``key``."""
        ...

    @asynccontextmanager
    async def hold(self, key: Optional[str]) -> AsyncIterator[None]:
        """Hold the lock for ``key``. A None key runs unguarded."""
        if key is None:
            yield
            return

        async with self._acquire(key):
            yield


class LocalKeyedLock(KeyedLock):
    """In-process lock map.

    Entries are reference-counted and removed once no coroutine holds or
    waits on them, so the map only grows with in-flight keys.
    """

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = timeout
        self._locks: dict[str, asyncio.Lock] = {}
        self._refcounts: dict[str, int] = {}

    def active_keys(self) -> list[str]:
        return list(self._locks)

    @asynccontextmanager
    async def _acquire(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        self._refcounts[key] = self._refcounts.get(key, 0) + 1

        try:
            try:
                if self.timeout is None:
                    await lock.acquire()
                else:
                    await asyncio.wait_for(lock.acquire(), timeout=self.timeout)
            except asyncio.TimeoutError as e:
                raise KeyedLockTimeout(key) from e

            try:
                yield
            finally:
                lock.release()
        finally:
            self._refcounts[key] -= 1
            if self._refcounts[key] == 0:
                del self._refcounts[key]
                del self._locks[key]


class RedisKeyedLock(KeyedLock):
    """Distributed lease lock using Redis.

    Uses Redis keys:
    - lock:{key} - lease held by the current worker; expires after lease_seconds
    """

    def __init__(
        self,
        redis: AsyncRedisLockProtocol,
        lease_seconds: float = 300.0,
        blocking_timeout: Optional[float] = 60.0,
    ):
        """Initialize the Redis lock.

        Args:
            redis: Async Redis client.
            lease_seconds: Lease TTL so crashed workers never hold a key forever.
            blocking_timeout: Maximum time to wait for the lease.
        """
        self.redis = redis
        self.lease_seconds = lease_seconds
        self.blocking_timeout = blocking_timeout

    @asynccontextmanager
    async def _acquire(self, key: str) -> AsyncIterator[None]:
        lock = self.redis.lock(
            f"lock:{key}",
            timeout=self.lease_seconds,
            blocking_timeout=self.blocking_timeout,
        )
        acquired = await lock.acquire()
        if not acquired:
            raise KeyedLockTimeout(key)

        try:
            yield
        finally:
            try:
                await lock.release()
            except LockError as e:
                # Lease already expired and possibly taken by another worker
                logger.warning(f"Failed to release lock {key}: {e}")


def build_keyed_lock(settings) -> KeyedLock:
    """Create the configured keyed lock backend."""
    if settings.keyed_lock_backend == "redis":
        import redis.asyncio as redis_asyncio

        client = redis_asyncio.from_url(settings.redis_url)
        return RedisKeyedLock(
            client,
            blocking_timeout=settings.keyed_lock_timeout_seconds,
        )

    return LocalKeyedLock(timeout=settings.keyed_lock_timeout_seconds)
