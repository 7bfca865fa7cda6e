"""
Distributed lock.

Redis-backed mutual exclusion for periodic jobs that must not overlap
across processes. Without a Redis client the lock degrades to an
in-process asyncio.Lock per key.
"""

import asyncio
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from loguru import logger
from redis.asyncio import Redis
from redis.exceptions import RedisError


# Delete the key only if it still holds our token
_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


class DistributedLock:
    """
    Non-blocking named lock.

    Usage:
        lock = DistributedLock(redis_client=redis_client)
        async with lock.lock("yield_accrual_sweep", timeout=300) as acquired:
            if not acquired:
                return
            ...
    """

    def __init__(self, redis_client: Redis | None = None) -> None:
        """
        Initialize lock.

        Args:
            redis_client: Redis client, None for process-local locking
        """
        self.redis_client = redis_client
        self._local_locks: dict[str, asyncio.Lock] = {}

    def _get_local_lock(self, key: str) -> asyncio.Lock:
        if key not in self._local_locks:
            self._local_locks[key] = asyncio.Lock()
        return self._local_locks[key]

    @asynccontextmanager
    async def lock(self, key: str, timeout: int = 60) -> AsyncIterator[bool]:
        """
        Try to acquire the lock once.

        Args:
            key: Lock name
            timeout: Expiry of the Redis key in seconds, so a crashed
                holder cannot block the lock forever

        Yields:
            True if the lock was acquired, False if someone else holds it
        """
        if self.redis_client is None:
            async with self._local(key) as acquired:
                yield acquired
            return

        token = uuid.uuid4().hex
        redis_key = f"lock:{key}"

        redis_ok = True
        try:
            acquired = bool(
                await self.redis_client.set(redis_key, token, nx=True, ex=timeout)
            )
        except RedisError as e:
            logger.warning(f"Redis unavailable for lock '{key}', using local lock: {e}")
            redis_ok = False

        if not redis_ok:
            async with self._local(key) as acquired:
                yield acquired
            return

        if not acquired:
            logger.debug(f"Lock '{key}' is held by another worker")
            yield False
            return

        logger.debug(f"Lock '{key}' acquired (ttl {timeout}s)")
        try:
            yield True
        finally:
            try:
                await self.redis_client.eval(_RELEASE_SCRIPT, 1, redis_key, token)
                logger.debug(f"Lock '{key}' released")
            except RedisError as e:
                logger.error(f"Failed to release lock '{key}': {e}")

    @asynccontextmanager
    async def _local(self, key: str) -> AsyncIterator[bool]:
        local_lock = self._get_local_lock(key)
        if local_lock.locked():
            yield False
            return

        await local_lock.acquire()
        try:
            yield True
        finally:
            local_lock.release()
