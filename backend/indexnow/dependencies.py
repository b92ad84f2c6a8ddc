# backend/indexnow/dependencies.py
"""
FastAPI dependencies.

Owner identity arrives in the X-Owner-Id header, set by the authenticating
gateway in front of this service. Service dependencies are functions so
tests can swap them through app.dependency_overrides.
"""

from typing import Callable, Optional
from uuid import UUID

from fastapi import Header, HTTPException, status

from .core.shared.database_service import DatabaseService, database_service
from .core.shared.pubsub_service import pubsub_service


async def get_owner_id(
    x_owner_id: Optional[str] = Header(None, alias="X-Owner-Id"),
) -> UUID:
    """Resolve the calling tenant from the X-Owner-Id header."""
    if not x_owner_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-Owner-Id header",
        )
    try:
        return UUID(x_owner_id)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid X-Owner-Id header",
        )


def get_database_service() -> DatabaseService:
    return database_service


def get_broadcaster():
    return pubsub_service


def _enqueue_with_celery(job_id: UUID) -> Optional[str]:
    from .core.tasks.indexing import process_indexing_job_task

    result = process_indexing_job_task.delay(str(job_id))
    return result.id


def get_job_enqueuer() -> Callable[[UUID], Optional[str]]:
    """Callable that schedules processing of a job and returns the task id."""
    return _enqueue_with_celery
