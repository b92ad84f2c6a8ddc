"""
Notification Service for user-facing alerts.

Persists tenant notifications (for example "service account quota
exhausted") and relays them to the owner's real-time channel.

Usage:
    from indexnow.core.shared.notification_service import notification_service

    async with database_service.get_session() as session:
        notification = await notification_service.notify(
            session,
            owner_id=owner_id,
            severity="error",
            title="Service account quota exhausted",
            message="...",
            details={"service_account_id": str(account_id)},
            expires_at=datetime.utcnow() + timedelta(hours=24),
        )
    await notification_service.publish(notification)
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..database.models import Notification
from .pubsub_service import NOTIFICATION_EVENT, pubsub_service

logger = logging.getLogger("indexnow.notification_service")

SEVERITIES = ("info", "warning", "error")


class NotificationService:
    """Notification sink backed by the notifications table."""

    def __init__(self, broadcaster=None):
        self.broadcaster = broadcaster or pubsub_service

    async def notify(
        self,
        session: AsyncSession,
        owner_id: UUID,
        severity: str,
        title: str,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        expires_at: Optional[datetime] = None,
    ) -> Notification:
        """
        Persist a notification for an owner.

        Raises:
            ValueError: For an unknown severity
        """
        if severity not in SEVERITIES:
            raise ValueError(f"Unknown notification severity: {severity}")

        notification = Notification(
            owner_id=owner_id,
            severity=severity,
            title=title,
            message=message,
            details=details,
            expires_at=expires_at,
        )
        session.add(notification)
        await session.flush()
        logger.info(f"Notification for owner {owner_id}: [{severity}] {title}")
        return notification

    async def publish(self, notification: Notification) -> bool:
        """Relay a stored notification to the owner's channel."""
        return await self.broadcaster.publish(
            notification.owner_id,
            NOTIFICATION_EVENT,
            {
                "id": notification.id,
                "severity": notification.severity,
                "title": notification.title,
                "message": notification.message,
                "details": notification.details,
                "expires_at": notification.expires_at,
            },
        )

    async def list_for_owner(self, session: AsyncSession, owner_id: UUID,
                             unread_only: bool = False) -> List[Notification]:
        now = datetime.utcnow()
        query = select(Notification).where(
            Notification.owner_id == owner_id,
            (Notification.expires_at.is_(None)) | (Notification.expires_at > now),
        )
        if unread_only:
            query = query.where(Notification.is_read.is_(False))
        result = await session.execute(query.order_by(Notification.created_at.desc()))
        return list(result.scalars().all())

    async def cleanup_expired(self, session: AsyncSession, now: Optional[datetime] = None) -> int:
        """Delete notifications past their expiry. Returns the number removed."""
        now = now or datetime.utcnow()
        result = await session.execute(
            delete(Notification).where(
                Notification.expires_at.is_not(None),
                Notification.expires_at <= now,
            )
        )
        removed = result.rowcount or 0
        if removed:
            logger.info(f"Removed {removed} expired notifications")
        return removed


# Global service instance
notification_service = NotificationService()
