"""
Retry policy for indexing API submissions.

Decides whether a failed submission may be retried, computes exponential
backoff with jitter, and wraps an async operation in that policy.

Usage:
    from indexnow.core.indexing.retry_handler import RetryHandler

    handler = RetryHandler(max_retries=3)
    result, attempts = await handler.with_retry(lambda: client.submit(url))
"""

import asyncio
import logging
import random
from typing import Awaitable, Callable, Optional, Tuple, TypeVar

from ...config import settings
from .errors import IndexingError, classify_api_error

logger = logging.getLogger("indexnow.indexing.retry")

T = TypeVar("T")

NON_RETRYABLE_PATTERNS = (
    "invalid url",
    "malformed",
    "permission",
    "unauthorized",
    "forbidden",
)


class RetryHandler:
    """
    Exponential backoff retry policy.

    Attributes:
        max_retries: Attempts allowed before giving up
        base_delay: Backoff base in seconds
        max_delay: Backoff cap in seconds
        jitter: Maximum extra delay as a fraction of the computed delay
    """

    def __init__(
        self,
        max_retries: Optional[int] = None,
        base_delay: Optional[float] = None,
        max_delay: Optional[float] = None,
        jitter: float = 0.1,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.max_retries = settings.max_retries if max_retries is None else max_retries
        self.base_delay = settings.retry_base_delay if base_delay is None else base_delay
        self.max_delay = settings.retry_max_delay if max_delay is None else max_delay
        self.jitter = jitter
        self._sleep = sleep

    def should_retry(self, retry_count: int, error_text: Optional[str],
                     max_retries: Optional[int] = None) -> bool:
        """
        Decide whether another attempt is allowed.

        Args:
            retry_count: Attempts already failed
            error_text: Last error message
            max_retries: Override for this call

        Returns:
            False once retry_count reaches the limit or the error text matches
            a non-retryable pattern, True otherwise.
        """
        limit = self.max_retries if max_retries is None else max_retries
        if retry_count >= limit:
            return False
        text = (error_text or "").lower()
        return not any(pattern in text for pattern in NON_RETRYABLE_PATTERNS)

    def backoff_delay(self, retry_count: int) -> float:
        """Seconds to wait before attempt ``retry_count + 1``."""
        delay = min(self.base_delay * (2 ** retry_count), self.max_delay)
        return delay + random.uniform(0, delay * self.jitter)

    def classify_error(self, status_code: Optional[int], message: str) -> IndexingError:
        return classify_api_error(status_code, message)

    async def with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        max_retries: Optional[int] = None,
    ) -> Tuple[T, int]:
        """
        Run ``operation`` until it succeeds or the policy gives up.

        Exceptions whose ``retryable`` attribute is False are raised
        immediately. Other exceptions are retried while should_retry allows,
        sleeping backoff_delay between attempts.

        Args:
            operation: Zero-argument coroutine factory
            max_retries: Override for this call

        Returns:
            Tuple of (result, attempts used)

        Raises:
            The last exception raised by ``operation``.
        """
        retry_count = 0
        while True:
            try:
                result = await operation()
                return result, retry_count + 1
            except Exception as e:
                if getattr(e, "retryable", True) is False:
                    raise
                retry_count += 1
                if not self.should_retry(retry_count, str(e), max_retries=max_retries):
                    raise
                delay = self.backoff_delay(retry_count - 1)
                logger.warning(
                    f"Attempt {retry_count} failed ({e}); retrying in {delay:.2f}s"
                )
                await self._sleep(delay)
