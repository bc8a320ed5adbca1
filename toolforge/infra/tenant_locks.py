"""Per-tenant locks serializing read-modify-write of a tenant's program."""

import asyncio
import logging
import threading
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Optional

import redis.asyncio as aioredis
from redis.exceptions import LockError, RedisError

from toolforge.infra.config import config
from toolforge.infra.timeout import TENANT_LOCK_TIMEOUT

logger = logging.getLogger(__name__)


class KeyedLocks:
    """
    Lazily created asyncio locks keyed by string.

    The dictionary itself is guarded by a threading lock so that lookups from
    different request threads never create two locks for the same key.
    """

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._guard = threading.Lock()

    def get(self, key: str) -> asyncio.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = asyncio.Lock()
                self._locks[key] = lock
            return lock


class TenantLockManager:
    """
    Serializes same-tenant builds.

    Always holds an in-process lock; when REDIS_URL is configured it also
    holds a Redis lock so builds running in other API processes wait too.
    """

    def __init__(self, redis_url: Optional[str] = None, timeout: int = TENANT_LOCK_TIMEOUT):
        self._local = KeyedLocks()
        self._timeout = timeout
        self._redis = aioredis.Redis.from_url(redis_url) if redis_url else None

    @asynccontextmanager
    async def hold(self, tenant_id: str) -> AsyncIterator[None]:
        async with self._local.get(tenant_id):
            if self._redis is None:
                yield
                return

            redis_lock = self._redis.lock(
                f"toolforge:tenant-lock:{tenant_id}",
                timeout=self._timeout,
                blocking_timeout=self._timeout,
            )
            try:
                acquired = await redis_lock.acquire()
            except RedisError as e:
                # Local lock still serializes this process; the store's version check covers the rest
                logger.warning(f"Redis tenant lock unavailable for {tenant_id}: {e}")
                yield
                return

            if not acquired:
                raise TimeoutError(f"Timed out waiting for tenant lock: {tenant_id}")
            try:
                yield
            finally:
                try:
                    await redis_lock.release()
                except LockError as e:
                    logger.warning(f"Redis tenant lock for {tenant_id} expired before release: {e}")

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()


tenant_locks = TenantLockManager(config.REDIS_URL)
