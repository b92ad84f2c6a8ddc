"""
Indexing service: entry point and state machine for job processing.

    pending ──lock──▶ running ──▶ completed
                         │──────▶ failed   (any error)
                         └──────▶ paused   (quota exhaustion, via QuotaManager)

    completed ──▶ pending  (recurring jobs, with next_run_at set)

process() never leaves a job in ``running`` once it returns: it either
completes the job, observes that QuotaManager paused it, or marks it failed.

Usage:
    from indexnow.core.indexing.indexing_service import indexing_service

    result = await indexing_service.process(job_id)
    if not result.success:
        print(result.error)
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Set
from uuid import UUID

from ..database.models import JobStatus
from ..shared.database_service import DatabaseService, database_service
from ..shared.job_log_service import job_log_service
from ..shared.pubsub_service import pubsub_service
from .api_client import IndexingApiClient, RunStats
from .errors import InvalidJobError, JobNotEligibleError
from .job_queue import JobQueue, MaterializeResult, next_run_time

logger = logging.getLogger("indexnow.indexing.service")


@dataclass
class JobProcessResult:
    """Outcome of IndexingService.process()."""

    job_id: UUID
    success: bool
    status: Optional[str] = None
    error: Optional[str] = None
    stats: Optional[RunStats] = None


class IndexingService:
    """
    Orchestrates one processing attempt of a job.

    Attributes:
        job_queue: Locking, extraction, submissions
        api_client: Submission loop
        _processing: Job ids in flight in this instance
    """

    def __init__(
        self,
        db: Optional[DatabaseService] = None,
        job_queue: Optional[JobQueue] = None,
        api_client: Optional[IndexingApiClient] = None,
        broadcaster=None,
    ):
        self.db = db or database_service
        self.broadcaster = broadcaster or pubsub_service
        self.job_queue = job_queue or JobQueue(db=self.db, broadcaster=self.broadcaster)
        self.api_client = api_client or IndexingApiClient(
            db=self.db, job_queue=self.job_queue, broadcaster=self.broadcaster
        )
        self._processing: Set[UUID] = set()

    async def process(self, job_id: UUID) -> JobProcessResult:
        """
        Process a job from pending to a terminal (or paused) state.

        Returns:
            JobProcessResult. success is False when the job was not eligible
            or when processing failed; the job then carries the error.
        """
        if job_id in self._processing:
            error = JobNotEligibleError(f"Job {job_id} is already being processed")
            logger.info(str(error))
            return JobProcessResult(job_id=job_id, success=False, error=str(error))

        self._processing.add(job_id)
        try:
            if not await self.job_queue.lock(job_id):
                error = JobNotEligibleError(
                    f"Job {job_id} is not eligible for processing (not pending)"
                )
                return JobProcessResult(job_id=job_id, success=False, error=str(error))

            return await self._run_locked(job_id)
        finally:
            self._processing.discard(job_id)

    async def _run_locked(self, job_id: UUID) -> JobProcessResult:
        owner_id = None
        try:
            job = await self.job_queue.get_job(job_id)
            owner_id = job.owner_id

            await self.job_queue.set_status(
                job_id,
                JobStatus.RUNNING,
                started_at=datetime.utcnow(),
                completed_at=None,
                error_message=None,
                processed_urls=0,
                successful_urls=0,
                failed_urls=0,
                progress_percentage=0,
            )

            urls = await self.job_queue.extract_urls(job)
            if not urls:
                raise InvalidJobError("No URLs to process")

            materialized = await self.job_queue.materialize_submissions(job_id, urls)
            await self._log_start(job_id, materialized)

            job = await self.job_queue.get_job(job_id)
            stats = await self.api_client.run(job)

            job = await self.job_queue.get_job(job_id)
            paused = job.status == JobStatus.PAUSED.value
            if paused and not await self.job_queue.count_pending(job_id):
                # Paused after its last URL was handled: nothing is left to
                # resume, so the run is complete.
                logger.info(f"Job {job_id} paused with no pending URLs left; completing")
                paused = False

            if paused:
                async with self.db.get_session() as session:
                    await job_log_service.log_warning(
                        session, job_id,
                        "Job suspended until the service account quota resets",
                        context={"processed_urls": job.processed_urls, "total_urls": job.total_urls},
                        event_type="pause",
                    )
                logger.info(f"Job {job_id} paused after {stats.processed} submissions")
                return JobProcessResult(
                    job_id=job_id, success=True, status=JobStatus.PAUSED.value, stats=stats
                )

            completed_at = datetime.utcnow()
            await self.job_queue.set_status(
                job_id,
                JobStatus.COMPLETED,
                completed_at=completed_at,
                progress_percentage=100,
                error_message=None,
                locked_at=None,
                locked_by=None,
            )
            async with self.db.get_session() as session:
                await job_log_service.log_summary(
                    session, job_id,
                    f"Job completed: {job.successful_urls} submitted, {job.failed_urls} failed",
                    context={
                        "total_urls": job.total_urls,
                        "processed_urls": job.processed_urls,
                        "successful_urls": job.successful_urls,
                        "failed_urls": job.failed_urls,
                    },
                )
            await self.broadcaster.job_status_changed(
                owner_id, job_id,
                {
                    "status": JobStatus.COMPLETED.value,
                    "progress_percentage": 100,
                    "completed_at": completed_at,
                },
            )
            await self._schedule_next_run(job, completed_at)
            return JobProcessResult(
                job_id=job_id, success=True, status=JobStatus.COMPLETED.value, stats=stats
            )

        except Exception as e:
            return await self._fail(job_id, owner_id, e)

    async def _schedule_next_run(self, job, completed_at: datetime) -> None:
        """Put a recurring job back to pending with its next run time."""
        next_run_at = next_run_time(job.schedule_type, completed_at)
        if next_run_at is None:
            return

        await self.job_queue.set_status(job.id, JobStatus.PENDING, next_run_at=next_run_at)
        async with self.db.get_session() as session:
            await job_log_service.log_event(
                session, job.id, "INFO", "schedule",
                f"Next {job.schedule_type} run scheduled for {next_run_at.isoformat()}",
                context={"next_run_at": next_run_at.isoformat()},
            )
        await self.broadcaster.job_status_changed(
            job.owner_id, job.id,
            {"status": JobStatus.PENDING.value, "next_run_at": next_run_at},
        )

    async def _fail(self, job_id: UUID, owner_id, error: Exception) -> JobProcessResult:
        message = str(error) or type(error).__name__
        logger.error(f"Job {job_id} failed: {message}", exc_info=True)

        await self.job_queue.set_status(
            job_id,
            JobStatus.FAILED,
            error_message=message,
            completed_at=datetime.utcnow(),
            locked_at=None,
            locked_by=None,
        )
        async with self.db.get_session() as session:
            await job_log_service.log_error(
                session, job_id, f"Job failed: {message}",
                context={"error_type": type(error).__name__},
            )
        if owner_id is not None:
            await self.broadcaster.job_status_changed(
                owner_id, job_id, {"status": JobStatus.FAILED.value, "error_message": message}
            )
        return JobProcessResult(
            job_id=job_id, success=False, status=JobStatus.FAILED.value, error=message
        )

    async def _log_start(self, job_id: UUID, materialized: MaterializeResult) -> None:
        if materialized.resumed:
            message = (
                f"Resuming run {materialized.run_number} with "
                f"{materialized.pending} pending URLs"
            )
        else:
            message = (
                f"Starting run {materialized.run_number} with {materialized.created} URLs"
            )
        async with self.db.get_session() as session:
            await job_log_service.log_start(
                session, job_id, message,
                context={
                    "run_number": materialized.run_number,
                    "resumed": materialized.resumed,
                    "pending": materialized.pending,
                },
            )


# Global service instance
indexing_service = IndexingService()
