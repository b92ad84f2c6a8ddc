"""
Redis-based distributed locking for periodic maintenance work.

Keeps beat-scheduled tasks (quota reset sweep, pending job dispatch)
single-flight when several workers receive the same schedule. Uses Redis
SET NX PX for atomic acquisition with automatic expiration.

Job processing itself does not use this service: the pending → running
conditional update in JobQueue.lock is the job-level lock.

Usage:
    from indexnow.core.shared.lock_service import lock_service

    async with lock_service.lock("quota_reset_sweep", timeout=300) as acquired:
        if acquired:
            await quota_reset_service.sweep()
"""

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

import redis.asyncio as redis

from ...config import settings

logger = logging.getLogger("indexnow.lock_service")

# Only delete the key if it still holds our lock id
_RELEASE_SCRIPT = """
local current = redis.call('GET', KEYS[1])
if current and string.find(current, ARGV[1], 1, true) == 1 then
    return redis.call('DEL', KEYS[1])
end
return 0
"""


class LockService:
    """
    Distributed locking service using Redis.

    Lock Key Format:
        indexnow:lock:{resource_name}

    Lock Value Format:
        {lock_id}:{acquired_at}
    """

    def __init__(self, redis_url: Optional[str] = None):
        self._redis_url = redis_url or settings.celery_broker_url
        self._redis: Optional[redis.Redis] = None
        self._redis_loop: Optional[asyncio.AbstractEventLoop] = None
        self._lock_prefix = "indexnow:lock:"

    async def _get_redis(self) -> redis.Redis:
        loop = asyncio.get_running_loop()
        if self._redis is None or self._redis_loop is not loop:
            # A client bound to a closed loop (previous asyncio.run() in a
            # Celery task) cannot be closed, only abandoned.
            self._redis_loop = loop
            self._redis = redis.from_url(self._redis_url, decode_responses=True)
        return self._redis

    async def acquire_lock(self, resource_name: str, timeout: int = 300) -> Optional[str]:
        """
        Attempt to acquire a lock without waiting.

        Args:
            resource_name: Name of the resource to lock
            timeout: Lock expiration in seconds

        Returns:
            Lock ID string if acquired, None if another worker holds it
        """
        r = await self._get_redis()
        lock_key = f"{self._lock_prefix}{resource_name}"
        lock_id = str(uuid.uuid4())
        lock_value = f"{lock_id}:{datetime.utcnow().isoformat()}"

        acquired = await r.set(lock_key, lock_value, nx=True, px=timeout * 1000)
        if acquired:
            logger.debug(f"Lock acquired: {resource_name} (id={lock_id[:8]}..., timeout={timeout}s)")
            return lock_id

        logger.debug(f"Lock not available: {resource_name}")
        return None

    async def release_lock(self, resource_name: str, lock_id: str) -> bool:
        """Release a lock if it is still held by ``lock_id``."""
        r = await self._get_redis()
        lock_key = f"{self._lock_prefix}{resource_name}"
        released = await r.eval(_RELEASE_SCRIPT, 1, lock_key, lock_id) == 1

        if released:
            logger.debug(f"Lock released: {resource_name} (id={lock_id[:8]}...)")
        else:
            logger.debug(f"Lock not released (not held or mismatch): {resource_name}")
        return released

    @asynccontextmanager
    async def lock(self, resource_name: str, timeout: int = 300):
        """
        Context manager for acquiring and releasing a lock.

        Yields:
            True if the lock was acquired, False otherwise
        """
        lock_id = await self.acquire_lock(resource_name, timeout)
        try:
            yield lock_id is not None
        finally:
            if lock_id:
                await self.release_lock(resource_name, lock_id)


# Global singleton instance
lock_service = LockService()
