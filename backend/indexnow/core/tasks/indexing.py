"""
Indexing Celery tasks for IndexNow.

Handles job processing, the periodic quota reset sweep, and dispatch of
pending jobs.
"""
import asyncio
import logging
from typing import Any, Dict
from uuid import UUID

from celery import shared_task

from indexnow.celery_app import app as celery_app  # noqa: F401
from indexnow.core.indexing.indexing_service import indexing_service
from indexnow.core.indexing.job_queue import JobQueue
from indexnow.core.indexing.quota_reset_service import QuotaResetService
from indexnow.core.shared.lock_service import lock_service

logger = logging.getLogger("indexnow.tasks")


# ============================================================================
# JOB PROCESSING
# ============================================================================


@shared_task(name="indexnow.tasks.process_indexing_job_task", bind=True)
def process_indexing_job_task(self, job_id: str) -> Dict[str, Any]:
    """
    Process one indexing job.

    Safe to enqueue more than once: only the worker that wins the
    pending → running transition does any work.

    Args:
        job_id: Job UUID string

    Returns:
        Dict with the processing result
    """
    logger.info(f"Processing indexing job {job_id} (task {self.request.id})")
    return asyncio.run(_process_indexing_job_async(UUID(job_id)))


async def _process_indexing_job_async(job_id: UUID) -> Dict[str, Any]:
    result = await indexing_service.process(job_id)
    stats = result.stats
    return {
        "job_id": str(job_id),
        "success": result.success,
        "status": result.status,
        "error": result.error,
        "processed": stats.processed if stats else 0,
        "successful": stats.successful if stats else 0,
        "failed": stats.failed if stats else 0,
    }


# ============================================================================
# QUOTA RESET SWEEP
# ============================================================================


@shared_task(name="indexnow.tasks.quota_reset_sweep_task", bind=True)
def quota_reset_sweep_task(self) -> Dict[str, Any]:
    """
    Reactivate exhausted accounts, resume paused jobs, and enqueue them.

    Returns:
        Dict with sweep statistics
    """
    return asyncio.run(_quota_reset_sweep_async())


async def _quota_reset_sweep_async() -> Dict[str, Any]:
    async with lock_service.lock("quota_reset_sweep", timeout=600) as acquired:
        if not acquired:
            logger.info("Quota reset sweep already running elsewhere, skipping")
            return {"status": "skipped", "reason": "locked"}

        result = await QuotaResetService().sweep()

    for job_id in result.resumed_job_ids:
        process_indexing_job_task.delay(str(job_id))

    return {
        "status": "completed",
        "reactivated_accounts": len(result.reactivated_account_ids),
        "resumed_jobs": [str(job_id) for job_id in result.resumed_job_ids],
        "expired_notifications": result.expired_notifications,
    }


# ============================================================================
# PENDING JOB DISPATCH
# ============================================================================


@shared_task(name="indexnow.tasks.dispatch_pending_jobs_task", bind=True)
def dispatch_pending_jobs_task(self, limit: int = 5) -> Dict[str, Any]:
    """
    Enqueue processing for the oldest pending, unlocked jobs.

    Args:
        limit: Maximum jobs enqueued per run

    Returns:
        Dict with the enqueued job ids
    """
    return asyncio.run(_dispatch_pending_jobs_async(limit))


async def _dispatch_pending_jobs_async(limit: int) -> Dict[str, Any]:
    job_ids = await JobQueue().list_dispatchable(limit=limit)
    for job_id in job_ids:
        process_indexing_job_task.delay(str(job_id))

    if job_ids:
        logger.info(f"Dispatched {len(job_ids)} pending job(s)")
    return {"status": "completed", "dispatched": [str(job_id) for job_id in job_ids]}
