"""
Job Log Service for durable per-job audit events.

Every lifecycle step of an indexing job (start, progress checkpoints,
per-URL outcomes, pause, completion, failure) is written to the
job_log_events table before the matching real-time broadcast, so the
history survives even when nobody is listening.

Usage:
    from indexnow.core.shared.job_log_service import job_log_service

    async with database_service.get_session() as session:
        await job_log_service.log_start(session, job_id, "Processing 120 URLs")
        await job_log_service.log_error(
            session, job_id, "Submission failed", context={"url": url}
        )
"""

import logging
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..database.models import JobLogEvent

logger = logging.getLogger("indexnow.job_log_service")


class JobLogService:
    """
    Service for JobLogEvent records.

    Events are added to the caller's session and flushed; the caller's
    session context commits them.
    """

    # =========================================================================
    # CREATE OPERATIONS
    # =========================================================================

    async def log_event(
        self,
        session: AsyncSession,
        job_id: UUID,
        level: str,
        event_type: str,
        message: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> JobLogEvent:
        """
        Create a structured log event for a job.

        Args:
            session: Database session
            job_id: Job UUID
            level: Log level (INFO, WARN, ERROR)
            event_type: Event classification (start, progress, submission,
                pause, resume, schedule, complete, error, stop)
            message: Human-readable message
            context: Machine-readable context dict

        Returns:
            Created JobLogEvent instance
        """
        event = JobLogEvent(
            job_id=job_id,
            level=level,
            event_type=event_type,
            message=message,
            context=context,
        )
        session.add(event)
        await session.flush()

        log_func = {
            "INFO": logger.info,
            "WARN": logger.warning,
            "ERROR": logger.error,
        }.get(level, logger.info)
        log_func(f"[Job {job_id}] {message}")

        return event

    # =========================================================================
    # CONVENIENCE LOGGING METHODS
    # =========================================================================

    async def log_start(self, session: AsyncSession, job_id: UUID, message: str,
                        context: Optional[Dict[str, Any]] = None) -> JobLogEvent:
        return await self.log_event(session, job_id, "INFO", "start", message, context)

    async def log_progress(
        self,
        session: AsyncSession,
        job_id: UUID,
        current: int,
        total: int,
        message: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> JobLogEvent:
        """Log a progress checkpoint with structured counts."""
        progress_context = {"current": current, "total": total, "unit": "urls", **(context or {})}
        return await self.log_event(session, job_id, "INFO", "progress", message, progress_context)

    async def log_submission(self, session: AsyncSession, job_id: UUID, success: bool,
                             message: str, context: Optional[Dict[str, Any]] = None) -> JobLogEvent:
        level = "INFO" if success else "ERROR"
        return await self.log_event(session, job_id, level, "submission", message, context)

    async def log_warning(self, session: AsyncSession, job_id: UUID, message: str,
                          context: Optional[Dict[str, Any]] = None,
                          event_type: str = "warning") -> JobLogEvent:
        return await self.log_event(session, job_id, "WARN", event_type, message, context)

    async def log_error(self, session: AsyncSession, job_id: UUID, message: str,
                        context: Optional[Dict[str, Any]] = None) -> JobLogEvent:
        return await self.log_event(session, job_id, "ERROR", "error", message, context)

    async def log_summary(self, session: AsyncSession, job_id: UUID, message: str,
                          context: Dict[str, Any]) -> JobLogEvent:
        return await self.log_event(session, job_id, "INFO", "complete", message, context)

    # =========================================================================
    # READ OPERATIONS
    # =========================================================================

    async def list_events(
        self,
        session: AsyncSession,
        job_id: UUID,
        event_type: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[JobLogEvent]:
        """List a job's events, oldest first."""
        query = select(JobLogEvent).where(JobLogEvent.job_id == job_id)
        if event_type:
            query = query.where(JobLogEvent.event_type == event_type)
        query = query.order_by(JobLogEvent.created_at).offset(offset).limit(limit)
        result = await session.execute(query)
        return list(result.scalars().all())

    async def count_events(self, session: AsyncSession, job_id: UUID,
                           event_type: Optional[str] = None) -> int:
        query = select(func.count(JobLogEvent.id)).where(JobLogEvent.job_id == job_id)
        if event_type:
            query = query.where(JobLogEvent.event_type == event_type)
        result = await session.execute(query)
        return result.scalar() or 0


# Global service instance
job_log_service = JobLogService()
