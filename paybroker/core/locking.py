"""
Per-reference mutual exclusion for notification processing.

Notifications for different references never wait on each other. The
store's conditional update still decides the winner; the lock only keeps
two workers from doing the same lookup/verify/transition at once.
"""
import asyncio
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import AsyncContextManager, AsyncIterator, Dict

import redis.asyncio as aioredis
import structlog
from redis.exceptions import LockError, RedisError

from paybroker.core.exceptions import LockUnavailableError
from paybroker.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


class ReferenceLock(ABC):
    @abstractmethod
    def hold(self, key: str) -> AsyncContextManager[None]:
        """Async context manager held for the critical section of ``key``."""


class LocalReferenceLock(ReferenceLock):
    """In-process lock table; enough for a single API worker."""

    def __init__(self, wait_seconds: float = 10.0):
        self.wait_seconds = wait_seconds
        self._locks: Dict[str, asyncio.Lock] = {}
        self._waiters: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            try:
                await asyncio.wait_for(lock.acquire(), timeout=self.wait_seconds)
            except asyncio.TimeoutError:
                metrics.record_reference_lock("timeout")
                raise LockUnavailableError(f"Timed out waiting for lock on {key}", key=key)
            metrics.record_reference_lock("acquired")
            try:
                yield
            finally:
                lock.release()
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                del self._locks[key]


class RedisReferenceLock(ReferenceLock):
    """
    Distributed lock built on redis-py's ``Lock``.

    ``timeout`` bounds how long a crashed holder can block the key;
    ``wait_seconds`` bounds how long a caller waits before giving up.
    """

    def __init__(
        self,
        redis_client: aioredis.Redis,
        timeout: float = 30.0,
        wait_seconds: float = 10.0,
        prefix: str = "paybroker:lock:",
    ):
        self.redis = redis_client
        self.timeout = timeout
        self.wait_seconds = wait_seconds
        self.prefix = prefix

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self.redis.lock(
            f"{self.prefix}{key}",
            timeout=self.timeout,
            blocking_timeout=self.wait_seconds,
        )
        try:
            acquired = await lock.acquire()
        except RedisError as e:
            metrics.record_reference_lock("error")
            logger.error("reference_lock_error", key=key, error=str(e))
            raise LockUnavailableError(f"Lock backend unavailable for {key}", key=key)
        if not acquired:
            metrics.record_reference_lock("timeout")
            raise LockUnavailableError(f"Timed out waiting for lock on {key}", key=key)

        metrics.record_reference_lock("acquired")
        try:
            yield
        finally:
            try:
                await lock.release()
            except LockError:
                # Expired while held.
                logger.warning("reference_lock_expired", key=key, timeout=self.timeout)
