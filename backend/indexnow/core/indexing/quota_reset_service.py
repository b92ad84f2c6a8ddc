"""
Quota reset sweep.

Runs periodically (Celery beat) and undoes quota exhaustion once the quota
day has rolled over:

1. Reactivate service accounts exhausted on an earlier quota day.
2. Move paused jobs back to pending when their owner has an active
   account again. The caller enqueues them; on re-lock the job resumes
   from its pending submissions.
3. Remove expired notifications.

Usage:
    from indexnow.core.indexing.quota_reset_service import QuotaResetService

    result = await QuotaResetService().sweep()
    for job_id in result.resumed_job_ids:
        process_indexing_job_task.delay(str(job_id))
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Callable, List, Optional
from uuid import UUID

from sqlalchemy import select

from ..database.models import IndexingJob, JobStatus, ServiceAccount
from ..shared.database_service import DatabaseService, database_service
from ..shared.job_log_service import job_log_service
from ..shared.notification_service import NotificationService
from ..shared.pubsub_service import pubsub_service
from .quota_manager import get_quota_date

logger = logging.getLogger("indexnow.indexing.quota_reset")


@dataclass
class SweepResult:
    reactivated_account_ids: List[UUID] = field(default_factory=list)
    resumed_job_ids: List[UUID] = field(default_factory=list)
    expired_notifications: int = 0


class QuotaResetService:
    """Reactivates exhausted accounts and un-pauses their owners' jobs."""

    def __init__(
        self,
        db: Optional[DatabaseService] = None,
        broadcaster=None,
        notifier: Optional[NotificationService] = None,
        today: Optional[Callable[[], date]] = None,
    ):
        self.db = db or database_service
        self.broadcaster = broadcaster or pubsub_service
        self.notifier = notifier or NotificationService(broadcaster=self.broadcaster)
        self.today = today or get_quota_date

    async def sweep(self, dry_run: bool = False) -> SweepResult:
        """
        Run one sweep.

        Args:
            dry_run: Report what would change without writing

        Returns:
            SweepResult with reactivated accounts and resumed jobs
        """
        today = self.today()
        result = SweepResult()
        resumed_owners = {}

        async with self.db.get_session() as session:
            accounts = (await session.execute(
                select(ServiceAccount).where(
                    ServiceAccount.is_active.is_(False),
                    ServiceAccount.quota_exhausted_on.is_not(None),
                    ServiceAccount.quota_exhausted_on < today,
                )
            )).scalars().all()

            for account in accounts:
                result.reactivated_account_ids.append(account.id)
                logger.info(
                    f"Reactivating service account {account.email} "
                    f"(exhausted on {account.quota_exhausted_on})"
                )
                if not dry_run:
                    account.is_active = True
                    account.quota_exhausted_on = None
            await session.flush()

            paused_jobs = (await session.execute(
                select(IndexingJob)
                .where(IndexingJob.status == JobStatus.PAUSED.value)
                .order_by(IndexingJob.created_at)
            )).scalars().all()

            reactivated = set(result.reactivated_account_ids)
            for job in paused_jobs:
                if not await self._owner_has_active_account(session, job.owner_id, reactivated, dry_run):
                    continue
                result.resumed_job_ids.append(job.id)
                resumed_owners[job.id] = job.owner_id
                if dry_run:
                    continue
                job.status = JobStatus.PENDING.value
                job.error_message = None
                job.locked_at = None
                job.locked_by = None
                await job_log_service.log_event(
                    session, job.id, "INFO", "resume",
                    "Job resumed after quota reset",
                    context={"quota_date": today.isoformat()},
                )

            if not dry_run:
                result.expired_notifications = await self.notifier.cleanup_expired(session)

        if not dry_run:
            for job_id, owner_id in resumed_owners.items():
                await self.broadcaster.job_status_changed(
                    owner_id, job_id, {"status": JobStatus.PENDING.value, "error_message": None}
                )

        logger.info(
            f"Quota reset sweep: {len(result.reactivated_account_ids)} account(s) reactivated, "
            f"{len(result.resumed_job_ids)} job(s) resumed"
            + (" (dry run)" if dry_run else "")
        )
        return result

    async def _owner_has_active_account(self, session, owner_id, reactivated, dry_run) -> bool:
        query = select(ServiceAccount.id).where(ServiceAccount.owner_id == owner_id)
        if dry_run:
            rows = (await session.execute(
                query.where(ServiceAccount.is_active.is_(True))
            )).scalars().all()
            if rows:
                return True
            owned = (await session.execute(query)).scalars().all()
            return any(account_id in reactivated for account_id in owned)
        rows = (await session.execute(
            query.where(ServiceAccount.is_active.is_(True)).limit(1)
        )).scalars().all()
        return bool(rows)

    async def resume_job(self, job_id: UUID) -> bool:
        """
        Manually move a paused job back to pending.

        Returns:
            False if the job does not exist or is not paused
        """
        async with self.db.get_session() as session:
            job = await session.get(IndexingJob, job_id)
            if job is None or job.status != JobStatus.PAUSED.value:
                return False
            owner_id = job.owner_id
            job.status = JobStatus.PENDING.value
            job.error_message = None
            job.locked_at = None
            job.locked_by = None
            await job_log_service.log_event(
                session, job_id, "INFO", "resume", "Job resumed manually"
            )

        await self.broadcaster.job_status_changed(
            owner_id, job_id, {"status": JobStatus.PENDING.value, "error_message": None}
        )
        return True
