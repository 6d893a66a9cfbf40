"""
Per-user mutual exclusion for balance mutations.

Every balance read-modify-write runs while holding the lock for that user,
so ledger snapshots stay exact. Different users never share a lock.
"""
import asyncio
import time
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import AsyncIterator, Dict, Optional, Protocol

import redis.asyncio as aioredis
import structlog
from redis.exceptions import LockError

from smm_panel.config import Settings
from smm_panel.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


class LockAcquisitionError(Exception):
    """Raised when a lock could not be acquired in time."""

    pass


class LockProvider(Protocol):
    def hold(self, key: str) -> AbstractAsyncContextManager[None]:
        ...


class LocalLockProvider:
    """
    In-process locks, one ``asyncio.Lock`` per key.

    Correct only when a single process serves all requests. A key's lock
    is dropped once nobody holds or waits for it.
    """

    def __init__(self, blocking_timeout: Optional[float] = None):
        self.blocking_timeout = blocking_timeout
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    @property
    def active_keys(self) -> int:
        return len(self._locks)

    def _checkout(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._users[key] = self._users.get(key, 0) + 1
        return lock

    def _checkin(self, key: str) -> None:
        self._users[key] -= 1
        if self._users[key] == 0:
            del self._users[key]
            del self._locks[key]

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._checkout(key)
        start_time = time.time()
        try:
            await asyncio.wait_for(lock.acquire(), timeout=self.blocking_timeout)
        except asyncio.TimeoutError as e:
            self._checkin(key)
            raise LockAcquisitionError(f"Timed out waiting for lock {key}") from e
        except BaseException:
            self._checkin(key)
            raise
        metrics.record_lock_wait(time.time() - start_time)
        try:
            yield
        finally:
            lock.release()
            self._checkin(key)


class RedisLockProvider:
    """
    Distributed locks backed by Redis.

    Uses redis-py's lock primitive so that every API worker and the sweeper
    serialize on the same key.
    """

    def __init__(
        self,
        redis_client: aioredis.Redis,
        timeout: int = 30,
        blocking_timeout: int = 10,
    ):
        """
        Initialize Redis lock provider.

        Args:
            redis_client: Redis client
            timeout: Seconds before a held lock expires on its own
            blocking_timeout: Max seconds to wait for the lock
        """
        self.redis_client = redis_client
        self.timeout = timeout
        self.blocking_timeout = blocking_timeout

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self.redis_client.lock(
            f"lock:{key}",
            timeout=self.timeout,
            blocking_timeout=self.blocking_timeout,
        )
        start_time = time.time()
        acquired = await lock.acquire()
        if not acquired:
            logger.warning("user_lock_acquisition_failed", key=key)
            raise LockAcquisitionError(f"Timed out waiting for lock {key}")
        metrics.record_lock_wait(time.time() - start_time)
        try:
            yield
        finally:
            try:
                await lock.release()
            except LockError as e:
                # Lock expired while held; the next holder already owns it
                logger.warning("user_lock_release_failed", key=key, error=str(e))


def build_lock_provider(
    settings: Settings, redis_client: Optional[aioredis.Redis] = None
) -> LocalLockProvider | RedisLockProvider:
    """
    Build the lock provider selected by ``settings.lock_backend``.

    Args:
        settings: Application settings
        redis_client: Optional Redis client (created from redis_url if absent)

    Returns:
        The configured lock provider
    """
    if settings.lock_backend == "local":
        logger.info("lock_provider_initialized", backend="local")
        return LocalLockProvider(blocking_timeout=settings.lock_blocking_timeout)

    client = redis_client or aioredis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
    )
    logger.info("lock_provider_initialized", backend="redis")
    return RedisLockProvider(
        client,
        timeout=settings.lock_timeout,
        blocking_timeout=settings.lock_blocking_timeout,
    )
