"""
Per-account rate limiting for indexing API calls.

Two backends enforce the same contract: consecutive calls through one
service account are at least ``min_interval`` seconds apart.

- AccountRateLimiter: in-process bookkeeping (default). Calls for the same
  account are serialized with an asyncio.Lock.
- RedisAccountRateLimiter: shared across worker processes using a Redis key
  per account set with SET NX PX (same primitive as LockService).

Usage:
    from indexnow.core.indexing.rate_limiter import create_rate_limiter

    limiter = create_rate_limiter()
    await limiter.wait(account_id)
    await api_call()
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Dict, Optional

import redis.asyncio as redis

from ...config import settings

logger = logging.getLogger("indexnow.indexing.rate_limiter")


class AccountRateLimiter:
    """
    In-memory per-account minimum interval.

    Attributes:
        min_interval: Minimum seconds between calls through one account
    """

    def __init__(
        self,
        min_interval: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.min_interval = (
            settings.rate_limit_min_interval if min_interval is None else min_interval
        )
        self._clock = clock
        self._sleep = sleep
        self._last_call: Dict[str, float] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._locks_loop: Optional[asyncio.AbstractEventLoop] = None

    def _get_lock(self, key: str) -> asyncio.Lock:
        # Locks are bound to the loop that created them; Celery tasks start a
        # new loop per asyncio.run() call.
        loop = asyncio.get_running_loop()
        if self._locks_loop is not loop:
            self._locks = {}
            self._locks_loop = loop
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    async def wait(self, account_id) -> float:
        """
        Block until the account may be used, then record the call.

        Returns:
            Seconds spent waiting
        """
        key = str(account_id)
        async with self._get_lock(key):
            waited = 0.0
            last = self._last_call.get(key)
            if last is not None:
                remaining = self.min_interval - (self._clock() - last)
                if remaining > 0:
                    logger.debug(f"Rate limit: waiting {remaining:.3f}s for account {key}")
                    await self._sleep(remaining)
                    waited = remaining
            self._last_call[key] = self._clock()
            return waited

    def reset(self) -> None:
        self._last_call.clear()


class RedisAccountRateLimiter:
    """
    Rate limiter shared by every worker process through Redis.

    A call claims ``indexnow:ratelimit:{account_id}`` with SET NX PX for
    ``min_interval``; while the key exists other callers sleep for its
    remaining PTTL and try again.
    """

    def __init__(
        self,
        min_interval: Optional[float] = None,
        redis_client=None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.min_interval = (
            settings.rate_limit_min_interval if min_interval is None else min_interval
        )
        self._redis = redis_client
        self._redis_loop: Optional[asyncio.AbstractEventLoop] = None
        self._owns_client = redis_client is None
        self._sleep = sleep
        self._prefix = "indexnow:ratelimit:"

    async def _get_redis(self):
        if not self._owns_client:
            return self._redis

        loop = asyncio.get_running_loop()
        if self._redis is None or self._redis_loop is not loop:
            self._redis_loop = loop
            self._redis = redis.from_url(settings.redis_url, decode_responses=True)
        return self._redis

    async def wait(self, account_id) -> float:
        r = await self._get_redis()
        key = f"{self._prefix}{account_id}"
        interval_ms = max(1, int(self.min_interval * 1000))
        waited = 0.0
        while True:
            acquired = await r.set(key, "1", nx=True, px=interval_ms)
            if acquired:
                return waited
            pttl = await r.pttl(key)
            delay = (pttl if pttl and pttl > 0 else interval_ms) / 1000.0
            logger.debug(f"Rate limit: waiting {delay:.3f}s for account {account_id}")
            await self._sleep(delay)
            waited += delay


def create_rate_limiter(backend: Optional[str] = None, min_interval: Optional[float] = None):
    """Build the rate limiter selected by ``settings.rate_limit_backend``."""
    backend = (backend or settings.rate_limit_backend).lower()
    if backend == "redis":
        return RedisAccountRateLimiter(min_interval=min_interval)
    if backend != "memory":
        raise ValueError(f"Unknown rate limit backend: {backend}")
    return AccountRateLimiter(min_interval=min_interval)
