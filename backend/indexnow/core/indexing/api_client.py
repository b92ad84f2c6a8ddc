"""
Indexing API client: submits a job's pending URLs.

For every pending submission, in creation order:

1. Re-read the job status; stop if it is no longer running (cooperative
   cancellation, checked once per URL).
2. Pick a service account round robin: index = (processed + skips) mod N.
3. Get a bearer token; an account without one is skipped and the same
   submission moves on to the next account.
4. Wait for the account's rate limit, then POST the URL with retries for
   transient failures. Every HTTP attempt is counted against the account
   quota.
5. Record the outcome on the submission, consume tenant quota, log, and
   broadcast. A quota exhaustion error hands the account to QuotaManager,
   which pauses the job.
6. Update job counters and progress, broadcast, and write a durable
   progress event every ``progress_log_interval`` submissions.

Usage:
    from indexnow.core.indexing.api_client import IndexingApiClient

    client = IndexingApiClient()
    stats = await client.run(job)
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx
from sqlalchemy import select

from ...config import settings
from ..database.models import (
    IndexingJob,
    JobStatus,
    ServiceAccount,
    SubmissionStatus,
    UrlSubmission,
)
from ..shared.database_service import DatabaseService, database_service
from ..shared.job_log_service import job_log_service
from ..shared.pubsub_service import pubsub_service
from .credentials import CredentialProvider
from .errors import (
    IndexingError,
    NoActiveAccountsError,
    NoUsableCredentialsError,
    QuotaExhaustedError,
    TransientApiError,
)
from .job_queue import JobQueue
from .quota_manager import QuotaManager
from .rate_limiter import create_rate_limiter
from .retry_handler import RetryHandler

logger = logging.getLogger("indexnow.indexing.api_client")

NOTIFICATION_TYPE = "URL_UPDATED"


@dataclass
class RunStats:
    """What one run() invocation did."""

    processed: int = 0
    successful: int = 0
    failed: int = 0
    account_skips: int = 0
    stopped: bool = False
    quota_exhausted: bool = False


class IndexingApiClient:
    """
    Submits pending URLs of a job to the indexing API.

    All collaborators are injectable; defaults are the shared services.
    """

    def __init__(
        self,
        db: Optional[DatabaseService] = None,
        job_queue: Optional[JobQueue] = None,
        quota_manager: Optional[QuotaManager] = None,
        retry_handler: Optional[RetryHandler] = None,
        rate_limiter=None,
        credential_provider: Optional[CredentialProvider] = None,
        broadcaster=None,
        http_client: Optional[httpx.AsyncClient] = None,
        api_url: Optional[str] = None,
        timeout: Optional[float] = None,
        inter_submission_delay: Optional[float] = None,
        progress_log_interval: Optional[int] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.db = db or database_service
        self.broadcaster = broadcaster or pubsub_service
        self.job_queue = job_queue or JobQueue(db=self.db, broadcaster=self.broadcaster)
        self.quota_manager = quota_manager or QuotaManager(db=self.db, broadcaster=self.broadcaster)
        self.retry_handler = retry_handler or RetryHandler()
        self.rate_limiter = rate_limiter or create_rate_limiter()
        self.credential_provider = credential_provider or CredentialProvider(db=self.db)
        self._http_client = http_client
        self.api_url = api_url or settings.indexing_api_url
        self.timeout = settings.indexing_api_timeout if timeout is None else timeout
        self.inter_submission_delay = (
            settings.inter_submission_delay
            if inter_submission_delay is None else inter_submission_delay
        )
        self.progress_log_interval = (
            progress_log_interval or settings.progress_log_interval
        )
        self._sleep = sleep

    # =========================================================================
    # HTTP
    # =========================================================================

    async def submit_url(self, client: httpx.AsyncClient, token: str, url: str) -> Dict[str, Any]:
        """
        Publish one URL notification.

        Returns:
            Response JSON

        Raises:
            IndexingError subclass chosen by RetryHandler.classify_error
        """
        try:
            response = await client.post(
                self.api_url,
                json={"url": url, "type": NOTIFICATION_TYPE},
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.TimeoutException as e:
            raise TransientApiError(f"Request timed out: {e}") from e
        except httpx.HTTPError as e:
            raise TransientApiError(f"Connection error: {e}") from e

        if 200 <= response.status_code < 300:
            try:
                return response.json()
            except ValueError:
                return {}

        message = None
        try:
            body = response.json()
            error = body.get("error") if isinstance(body, dict) else None
            if isinstance(error, dict):
                message = error.get("message")
            elif isinstance(error, str):
                message = error
        except ValueError:
            pass
        if not message:
            message = f"HTTP {response.status_code}: {response.reason_phrase}"

        raise self.retry_handler.classify_error(response.status_code, message)

    # =========================================================================
    # RUN
    # =========================================================================

    async def run(self, job: IndexingJob) -> RunStats:
        """
        Process every pending submission of ``job``.

        Raises:
            NoActiveAccountsError: The owner has no active account
            NoUsableCredentialsError: Every account was skipped in a row
        """
        if self._http_client is not None:
            return await self._run(job, self._http_client)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await self._run(job, client)

    async def _run(self, job: IndexingJob, client: httpx.AsyncClient) -> RunStats:
        accounts = await self._load_active_accounts(job.owner_id)
        if not accounts:
            raise NoActiveAccountsError(
                f"No active service accounts available for owner {job.owner_id}"
            )

        pending = await self.job_queue.get_pending_submissions(job.id)
        fresh = await self.job_queue.get_job(job.id)
        counters = {
            "total": fresh.total_urls,
            "processed": fresh.processed_urls,
            "successful": fresh.successful_urls,
            "failed": fresh.failed_urls,
        }

        stats = RunStats()
        n_accounts = len(accounts)
        consecutive_skips = 0
        index = 0

        logger.info(
            f"Job {job.id}: submitting {len(pending)} URLs across {n_accounts} account(s)"
        )

        while index < len(pending):
            submission = pending[index]

            status = await self.job_queue.get_status(job.id)
            if status != JobStatus.RUNNING.value:
                stats.stopped = True
                await self._log(
                    job.id, "WARN", "stop",
                    f"Processing stopped: job status is {status}",
                    {"remaining": len(pending) - index},
                )
                break

            account = accounts[(stats.processed + stats.account_skips) % n_accounts]
            token = await self.credential_provider.get_token(account.id)
            if token is None:
                stats.account_skips += 1
                consecutive_skips += 1
                logger.warning(
                    f"Job {job.id}: skipping service account {account.email} (no usable token)"
                )
                if consecutive_skips >= n_accounts:
                    raise NoUsableCredentialsError(
                        "No usable credentials: every active service account was skipped"
                    )
                continue
            consecutive_skips = 0

            success, error = await self._process_submission(client, job, submission, account, token)

            stats.processed += 1
            counters["processed"] += 1
            if success:
                stats.successful += 1
                counters["successful"] += 1
            else:
                stats.failed += 1
                counters["failed"] += 1

            await self._update_progress(job, counters, submission.url)

            if stats.processed % self.progress_log_interval == 0:
                await self._log_progress(job.id, counters)

            if isinstance(error, QuotaExhaustedError):
                stats.quota_exhausted = True
                await self.quota_manager.on_account_quota_exhausted(account.id)

            index += 1
            if index < len(pending) and self.inter_submission_delay > 0:
                await self._sleep(self.inter_submission_delay)

        if stats.processed % self.progress_log_interval != 0:
            await self._log_progress(job.id, counters)

        logger.info(
            f"Job {job.id}: run finished ({stats.successful} submitted, {stats.failed} failed, "
            f"{stats.account_skips} account skips, stopped={stats.stopped})"
        )
        return stats

    async def _process_submission(
        self,
        client: httpx.AsyncClient,
        job: IndexingJob,
        submission: UrlSubmission,
        account: ServiceAccount,
        token: str,
    ):
        """Submit one URL and record the outcome. Returns (success, error)."""

        async def attempt():
            await self.rate_limiter.wait(account.id)
            try:
                response = await self.submit_url(client, token, submission.url)
            except IndexingError:
                await self.quota_manager.record_usage(account.id, success=False)
                raise
            await self.quota_manager.record_usage(account.id, success=True)
            return response

        try:
            response, attempts = await self.retry_handler.with_retry(attempt)
        except IndexingError as e:
            retry_count = (submission.retry_count or 0) + 1
            await self.job_queue.update_submission(
                submission.id,
                status=SubmissionStatus.FAILED.value,
                retry_count=retry_count,
                error_message=str(e),
                service_account_id=account.id,
            )
            await self.quota_manager.consume_tenant_quota(job.owner_id, 1)
            await self._log_submission(
                job.id, False,
                f"Failed to submit {submission.url}: {e}",
                {
                    "submission_id": str(submission.id),
                    "url": submission.url,
                    "service_account_id": str(account.id),
                    "error_type": type(e).__name__,
                    "retry_count": retry_count,
                },
            )
            await self.broadcaster.submission_status_changed(
                job.owner_id, job.id,
                {
                    "submission_id": submission.id,
                    "url": submission.url,
                    "status": SubmissionStatus.FAILED.value,
                    "error_message": str(e),
                },
            )
            return False, e

        submitted_at = datetime.utcnow()
        await self.job_queue.update_submission(
            submission.id,
            status=SubmissionStatus.SUBMITTED.value,
            submitted_at=submitted_at,
            service_account_id=account.id,
            response_data=response,
            error_message=None,
        )
        await self.quota_manager.consume_tenant_quota(job.owner_id, 1)
        await self._log_submission(
            job.id, True,
            f"Submitted {submission.url}",
            {
                "submission_id": str(submission.id),
                "url": submission.url,
                "service_account_id": str(account.id),
                "attempts": attempts,
            },
        )
        await self.broadcaster.submission_status_changed(
            job.owner_id, job.id,
            {
                "submission_id": submission.id,
                "url": submission.url,
                "status": SubmissionStatus.SUBMITTED.value,
                "submitted_at": submitted_at,
            },
        )
        return True, None

    # =========================================================================
    # HELPERS
    # =========================================================================

    async def _load_active_accounts(self, owner_id) -> List[ServiceAccount]:
        async with self.db.get_session() as session:
            result = await session.execute(
                select(ServiceAccount)
                .where(
                    ServiceAccount.owner_id == owner_id,
                    ServiceAccount.is_active.is_(True),
                )
                .order_by(ServiceAccount.created_at)
            )
            return list(result.scalars().all())

    async def _update_progress(self, job: IndexingJob, counters: Dict[str, int],
                               current_url: str) -> None:
        total = counters["total"]
        progress = round(counters["processed"] / total * 100) if total else 0
        await self.job_queue.update_fields(
            job.id,
            processed_urls=counters["processed"],
            successful_urls=counters["successful"],
            failed_urls=counters["failed"],
            progress_percentage=progress,
        )
        await self.broadcaster.job_status_changed(
            job.owner_id, job.id,
            {
                "status": JobStatus.RUNNING.value,
                "total_urls": total,
                "processed_urls": counters["processed"],
                "successful_urls": counters["successful"],
                "failed_urls": counters["failed"],
                "progress_percentage": progress,
                "current_url": current_url,
            },
        )

    async def _log_progress(self, job_id, counters: Dict[str, int]) -> None:
        async with self.db.get_session() as session:
            await job_log_service.log_progress(
                session, job_id,
                current=counters["processed"],
                total=counters["total"],
                message=f"Processed {counters['processed']} of {counters['total']} URLs",
                context={
                    "successful": counters["successful"],
                    "failed": counters["failed"],
                },
            )

    async def _log(self, job_id, level: str, event_type: str, message: str,
                   context: Optional[Dict[str, Any]] = None) -> None:
        async with self.db.get_session() as session:
            await job_log_service.log_event(session, job_id, level, event_type, message, context)

    async def _log_submission(self, job_id, success: bool, message: str,
                              context: Dict[str, Any]) -> None:
        async with self.db.get_session() as session:
            await job_log_service.log_submission(session, job_id, success, message, context)
