"""
Job queue: locking, URL extraction, and submission materialization.

JobQueue owns every write that decides *which* work a job does:

- lock(): the atomic pending → running transition. It is the only
  concurrency guard between worker processes; a second worker trying to
  lock the same job gets False.
- extract_urls(): resolves the job's URLs through the strategy registered
  for its kind (manual list or cached sitemap crawl).
- materialize_submissions(): either resumes the pending rows of the latest
  run or appends a fresh run. Submission rows are never deleted.

Usage:
    from indexnow.core.indexing.job_queue import JobQueue

    queue = JobQueue()
    if await queue.lock(job_id):
        job = await queue.get_job(job_id)
        urls = await queue.extract_urls(job)
        result = await queue.materialize_submissions(job_id, urls)
"""

import calendar
import logging
import os
import socket
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, List, Optional
from uuid import UUID

from sqlalchemy import func, or_, select, update

from ..database.models import (
    IndexingJob,
    JobKind,
    JobStatus,
    ScheduleType,
    SubmissionStatus,
    UrlSubmission,
)
from ..shared.database_service import DatabaseService, database_service
from ..shared.pubsub_service import pubsub_service
from .errors import InvalidJobError
from .url_sources import UrlSource, get_url_source

logger = logging.getLogger("indexnow.indexing.job_queue")

INSERT_BATCH_SIZE = 100


def default_worker_id() -> str:
    return f"{socket.gethostname()}:{os.getpid()}"


RECURRENCE_INTERVALS = {
    ScheduleType.HOURLY: timedelta(hours=1),
    ScheduleType.DAILY: timedelta(days=1),
    ScheduleType.WEEKLY: timedelta(days=7),
}


def next_run_time(schedule_type, now: datetime) -> Optional[datetime]:
    """
    Next run of a recurring job completed at ``now``.

    Monthly keeps the day of month, clamped to the length of the next month
    (Jan 31 -> Feb 28). Returns None for one-time jobs.
    """
    schedule_type = ScheduleType(schedule_type)
    if schedule_type in RECURRENCE_INTERVALS:
        return now + RECURRENCE_INTERVALS[schedule_type]
    if schedule_type == ScheduleType.MONTHLY:
        year, month = (now.year + 1, 1) if now.month == 12 else (now.year, now.month + 1)
        day = min(now.day, calendar.monthrange(year, month)[1])
        return now.replace(year=year, month=month, day=day)
    return None


@dataclass
class MaterializeResult:
    """Outcome of materialize_submissions."""

    run_number: int
    resumed: bool
    created: int
    pending: int


class JobQueue:
    """
    Persistence-facing job operations.

    Attributes:
        db: Database service
        broadcaster: Real-time channel for status deltas
        worker_id: Value stored in locked_by
    """

    def __init__(
        self,
        db: Optional[DatabaseService] = None,
        broadcaster=None,
        url_sources: Optional[Dict[JobKind, UrlSource]] = None,
        worker_id: Optional[str] = None,
    ):
        self.db = db or database_service
        self.broadcaster = broadcaster or pubsub_service
        self._url_sources = url_sources or {}
        self.worker_id = worker_id or default_worker_id()

    # =========================================================================
    # LOCKING
    # =========================================================================

    async def lock(self, job_id: UUID) -> bool:
        """
        Atomically move a pending job to running.

        Returns:
            True if this caller now owns the job, False if it was not pending
        """
        now = datetime.utcnow()
        async with self.db.get_session() as session:
            result = await session.execute(
                update(IndexingJob)
                .where(
                    IndexingJob.id == job_id,
                    IndexingJob.status == JobStatus.PENDING.value,
                )
                .values(
                    status=JobStatus.RUNNING.value,
                    locked_at=now,
                    locked_by=self.worker_id,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            locked = result.rowcount == 1
            owner_id = None
            if locked:
                owner_id = (await session.execute(
                    select(IndexingJob.owner_id).where(IndexingJob.id == job_id)
                )).scalar()

        if not locked:
            logger.info(f"Job {job_id} not eligible for locking (not pending or already locked)")
            return False

        logger.info(f"Job {job_id} locked by {self.worker_id}")
        await self.broadcaster.job_status_changed(
            owner_id, job_id, {"status": JobStatus.RUNNING.value, "locked_at": now}
        )
        return True

    # =========================================================================
    # JOB ACCESS
    # =========================================================================

    async def get_job(self, job_id: UUID) -> Optional[IndexingJob]:
        async with self.db.get_session() as session:
            return await session.get(IndexingJob, job_id)

    async def get_status(self, job_id: UUID) -> Optional[str]:
        """Fresh read of the job status (used for cooperative cancellation)."""
        async with self.db.get_session() as session:
            result = await session.execute(
                select(IndexingJob.status).where(IndexingJob.id == job_id)
            )
            return result.scalar_one_or_none()

    async def set_status(self, job_id: UUID, status: JobStatus, **fields) -> None:
        """
        Update a job's status and any other columns.

        Args:
            job_id: Job UUID
            status: New status
            **fields: Extra IndexingJob columns to set
        """
        values = {"status": JobStatus(status).value, "updated_at": datetime.utcnow(), **fields}
        async with self.db.get_session() as session:
            await session.execute(
                update(IndexingJob)
                .where(IndexingJob.id == job_id)
                .values(**values)
                .execution_options(synchronize_session=False)
            )

    async def update_fields(self, job_id: UUID, **fields) -> None:
        """Update job columns without touching status."""
        values = {"updated_at": datetime.utcnow(), **fields}
        async with self.db.get_session() as session:
            await session.execute(
                update(IndexingJob)
                .where(IndexingJob.id == job_id)
                .values(**values)
                .execution_options(synchronize_session=False)
            )

    # =========================================================================
    # URL EXTRACTION
    # =========================================================================

    def _source_for(self, kind) -> UrlSource:
        try:
            kind = JobKind(kind)
        except ValueError:
            raise InvalidJobError(f"Unsupported job kind: {kind}") from None
        return self._url_sources.get(kind) or get_url_source(kind)

    async def extract_urls(self, job: IndexingJob) -> List[str]:
        """
        Resolve the URLs a job should submit.

        Sitemap jobs crawl once; the parsed URLs are cached in source_data
        (together with last_parsed, total_parsed) and total_urls is updated.
        Later calls return the cache without any network access.

        Raises:
            InvalidJobError: Missing or malformed source data, unknown kind,
                or sitemap failure (SitemapError)
        """
        source = self._source_for(job.kind)
        extraction = await source.extract(dict(job.source_data or {}))

        if extraction.source_data is not None:
            async with self.db.get_session() as session:
                await session.execute(
                    update(IndexingJob)
                    .where(IndexingJob.id == job.id)
                    .values(
                        source_data=extraction.source_data,
                        total_urls=len(extraction.urls),
                        updated_at=datetime.utcnow(),
                    )
                    .execution_options(synchronize_session=False)
                )
            job.source_data = extraction.source_data
            job.total_urls = len(extraction.urls)
            logger.info(f"Cached {len(extraction.urls)} sitemap URLs on job {job.id}")

        return extraction.urls

    # =========================================================================
    # SUBMISSIONS
    # =========================================================================

    async def materialize_submissions(self, job_id: UUID, urls: List[str]) -> MaterializeResult:
        """
        Prepare submission rows for this processing attempt.

        Resume: pending rows exist (a quota pause, or a failure part way
        through a run). Nothing is inserted; counters are restored from the
        latest run's rows.

        Fresh run: no pending rows remain, so rows for ``urls`` are appended
        under run number max(existing) + 1 and the counters restart from
        zero. Earlier runs' rows are left untouched.
        """
        async with self.db.get_session() as session:
            job = await session.get(IndexingJob, job_id)
            if job is None:
                raise InvalidJobError(f"Job {job_id} not found")

            pending = (await session.execute(
                select(func.count(UrlSubmission.id)).where(
                    UrlSubmission.job_id == job_id,
                    UrlSubmission.status == SubmissionStatus.PENDING.value,
                )
            )).scalar() or 0

            max_run = (await session.execute(
                select(func.max(UrlSubmission.run_number)).where(UrlSubmission.job_id == job_id)
            )).scalar() or 0

            if pending > 0:
                counts = await self._run_counts(session, job_id, max_run)
                job.total_urls = counts["total"]
                job.processed_urls = counts["processed"]
                job.successful_urls = counts["submitted"]
                job.failed_urls = counts["failed"]
                job.progress_percentage = (
                    round(counts["processed"] / counts["total"] * 100) if counts["total"] else 0
                )
                logger.info(
                    f"Resuming job {job_id} run {max_run}: {pending} pending, "
                    f"{counts['processed']}/{counts['total']} already processed"
                )
                return MaterializeResult(
                    run_number=max_run, resumed=True, created=0, pending=pending
                )

            run_number = max_run + 1
            for start in range(0, len(urls), INSERT_BATCH_SIZE):
                session.add_all([
                    UrlSubmission(
                        job_id=job_id,
                        url=url,
                        status=SubmissionStatus.PENDING.value,
                        retry_count=0,
                        run_number=run_number,
                        batch_index=start + offset,
                    )
                    for offset, url in enumerate(urls[start:start + INSERT_BATCH_SIZE])
                ])
                await session.flush()

            job.total_urls = len(urls)
            job.processed_urls = 0
            job.successful_urls = 0
            job.failed_urls = 0
            job.progress_percentage = 0

        logger.info(f"Created {len(urls)} submissions for job {job_id} (run {run_number})")
        return MaterializeResult(
            run_number=run_number, resumed=False, created=len(urls), pending=len(urls)
        )

    async def _run_counts(self, session, job_id: UUID, run_number: int) -> Dict[str, int]:
        rows = (await session.execute(
            select(UrlSubmission.status, func.count(UrlSubmission.id))
            .where(UrlSubmission.job_id == job_id, UrlSubmission.run_number == run_number)
            .group_by(UrlSubmission.status)
        )).all()
        by_status = {status: count for status, count in rows}
        submitted = by_status.get(SubmissionStatus.SUBMITTED.value, 0)
        failed = by_status.get(SubmissionStatus.FAILED.value, 0)
        return {
            "total": sum(by_status.values()),
            "submitted": submitted,
            "failed": failed,
            "processed": submitted + failed,
        }

    async def count_pending(self, job_id: UUID) -> int:
        async with self.db.get_session() as session:
            result = await session.execute(
                select(func.count(UrlSubmission.id)).where(
                    UrlSubmission.job_id == job_id,
                    UrlSubmission.status == SubmissionStatus.PENDING.value,
                )
            )
            return result.scalar() or 0

    async def get_pending_submissions(self, job_id: UUID) -> List[UrlSubmission]:
        """Pending rows in creation order."""
        async with self.db.get_session() as session:
            result = await session.execute(
                select(UrlSubmission)
                .where(
                    UrlSubmission.job_id == job_id,
                    UrlSubmission.status == SubmissionStatus.PENDING.value,
                )
                .order_by(
                    UrlSubmission.created_at,
                    UrlSubmission.run_number,
                    UrlSubmission.batch_index,
                )
            )
            return list(result.scalars().all())

    async def list_submissions(
        self,
        job_id: UUID,
        run_number: Optional[int] = None,
        status: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[UrlSubmission]:
        query = select(UrlSubmission).where(UrlSubmission.job_id == job_id)
        if run_number is not None:
            query = query.where(UrlSubmission.run_number == run_number)
        if status:
            query = query.where(UrlSubmission.status == status)
        query = query.order_by(
            UrlSubmission.run_number, UrlSubmission.batch_index
        ).offset(offset).limit(limit)
        async with self.db.get_session() as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    async def update_submission(self, submission_id: UUID, **fields) -> None:
        values = {"updated_at": datetime.utcnow(), **fields}
        async with self.db.get_session() as session:
            await session.execute(
                update(UrlSubmission)
                .where(UrlSubmission.id == submission_id)
                .values(**values)
                .execution_options(synchronize_session=False)
            )

    # =========================================================================
    # DISPATCH
    # =========================================================================

    async def list_dispatchable(self, limit: int = 5) -> List[UUID]:
        """Oldest pending, unlocked jobs whose next run time has come."""
        now = datetime.utcnow()
        async with self.db.get_session() as session:
            result = await session.execute(
                select(IndexingJob.id)
                .where(
                    IndexingJob.status == JobStatus.PENDING.value,
                    IndexingJob.locked_at.is_(None),
                    or_(IndexingJob.next_run_at.is_(None), IndexingJob.next_run_at <= now),
                )
                .order_by(IndexingJob.created_at)
                .limit(limit)
            )
            return list(result.scalars().all())
