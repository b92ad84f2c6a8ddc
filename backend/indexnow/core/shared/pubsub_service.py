"""
Redis Pub/Sub Service for Real-Time Job Updates.

Broadcasts job and submission status deltas to subscribers (dashboards,
WebSocket bridges) via Redis channels. Publishing is fire-and-forget: a
failed publish is logged and reported as False, never raised into the
indexing pipeline.

Usage:
    from indexnow.core.shared.pubsub_service import pubsub_service

    # Job-level delta
    await pubsub_service.job_status_changed(
        owner_id, job_id, {"status": "running", "progress_percentage": 40}
    )

    # Submission-level delta
    await pubsub_service.submission_status_changed(
        owner_id, job_id, {"submission_id": "...", "status": "submitted"}
    )

Architecture:
    - Channel pattern: indexnow:owner:{owner_id}:jobs
    - Tenant isolation enforced at channel level
"""

import asyncio
import json
import logging
from datetime import date, datetime
from typing import Any, Dict, Optional
from uuid import UUID

import redis.asyncio as redis

from ...config import settings

logger = logging.getLogger("indexnow.pubsub_service")

JOB_STATUS_EVENT = "job_status"
SUBMISSION_STATUS_EVENT = "submission_status"
NOTIFICATION_EVENT = "notification"


def _serialize(obj: Any) -> Any:
    """Convert UUIDs and datetimes to strings for JSON serialization."""
    if isinstance(obj, UUID):
        return str(obj)
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, dict):
        return {k: _serialize(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_serialize(item) for item in obj]
    return obj


class PubSubService:
    """
    Redis pub/sub broadcaster for job updates.

    Attributes:
        _redis_url: Redis connection URL for pub/sub
        _publisher: Redis client for publishing messages
        _publisher_loop: Event loop the publisher is bound to
    """

    def __init__(self, redis_url: Optional[str] = None):
        self._redis_url = redis_url or settings.redis_url
        self._publisher: Optional[redis.Redis] = None
        self._publisher_loop: Optional[asyncio.AbstractEventLoop] = None
        self._connected = False

    @staticmethod
    def channel_name(owner_id) -> str:
        """Channel for one tenant: indexnow:owner:{owner_id}:jobs"""
        return f"indexnow:owner:{owner_id}:jobs"

    async def _ensure_connected(self) -> redis.Redis:
        """
        Ensure we have a connected Redis publisher for the running loop.

        Raises:
            ConnectionError: If unable to connect to Redis
        """
        loop = asyncio.get_running_loop()
        if self._publisher is None or not self._connected or self._publisher_loop is not loop:
            try:
                self._publisher = redis.from_url(
                    self._redis_url,
                    encoding="utf-8",
                    decode_responses=True,
                )
                await self._publisher.ping()
                self._publisher_loop = loop
                self._connected = True
                logger.info(f"Connected to Redis pub/sub at {self._redis_url}")
            except Exception as e:
                self._connected = False
                raise ConnectionError(f"Failed to connect to Redis: {e}") from e

        return self._publisher

    async def publish(self, owner_id, event_type: str, payload: Dict[str, Any]) -> bool:
        """
        Publish an event to the owner's channel.

        Message format:
            {
                "type": "job_status",
                "timestamp": "2024-01-15T12:00:00Z",
                "data": { ... payload ... }
            }

        Returns:
            True if published, False otherwise
        """
        try:
            publisher = await self._ensure_connected()
            channel = self.channel_name(owner_id)
            message = {
                "type": event_type,
                "timestamp": datetime.utcnow().isoformat() + "Z",
                "data": _serialize(payload),
            }
            num_subscribers = await publisher.publish(channel, json.dumps(message))
            logger.debug(f"Published {event_type} to {channel} ({num_subscribers} subscribers)")
            return True

        except Exception as e:
            logger.warning(f"Failed to publish {event_type} update: {e}")
            self._connected = False
            return False

    async def job_status_changed(self, owner_id, job_id, delta: Dict[str, Any]) -> bool:
        return await self.publish(owner_id, JOB_STATUS_EVENT, {"job_id": job_id, **delta})

    async def submission_status_changed(self, owner_id, job_id, delta: Dict[str, Any]) -> bool:
        return await self.publish(owner_id, SUBMISSION_STATUS_EVENT, {"job_id": job_id, **delta})

    async def close(self) -> None:
        """Close the publisher connection."""
        if self._publisher:
            await self._publisher.close()
            self._publisher = None
            self._connected = False
            logger.info("Closed Redis pub/sub publisher connection")


# Singleton instance
pubsub_service = PubSubService()
