# backend/indexnow/api/v1/routers/notifications.py
"""
Notifications API Router.

Lists the owner's unexpired notifications, such as service account quota
exhaustion alerts.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, Query

from ....core.shared.database_service import DatabaseService
from ....core.shared.notification_service import notification_service
from ....dependencies import get_database_service, get_owner_id
from ..schemas import NotificationResponse, NotificationsListResponse

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get(
    "",
    response_model=NotificationsListResponse,
    summary="List notifications",
    description="Unexpired notifications for the owner, newest first.",
)
async def list_notifications(
    unread_only: bool = Query(False, description="Only notifications not yet read"),
    owner_id: UUID = Depends(get_owner_id),
    db: DatabaseService = Depends(get_database_service),
) -> NotificationsListResponse:
    async with db.get_session() as session:
        notifications = await notification_service.list_for_owner(
            session, owner_id, unread_only=unread_only
        )
        return NotificationsListResponse(
            items=[NotificationResponse.model_validate(n) for n in notifications],
            total=len(notifications),
        )
