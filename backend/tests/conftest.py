import json
import os
import uuid
from datetime import date, datetime
from typing import List, Optional
from unittest.mock import AsyncMock, MagicMock

# Use a throwaway in-memory database and keep external integrations quiet
# before any indexnow module builds its global services.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("REDIS_URL", "redis://localhost:6399/0")
os.environ.setdefault("CELERY_BROKER_URL", "memory://")
os.environ.setdefault("CELERY_RESULT_BACKEND", "cache+memory://")
os.environ.setdefault("INTER_SUBMISSION_DELAY", "0")
os.environ.setdefault("RATE_LIMIT_MIN_INTERVAL", "0")

import httpx
import pytest
import pytest_asyncio

from indexnow.core.database.models import (
    IndexingJob,
    JobKind,
    JobStatus,
    ScheduleType,
    ServiceAccount,
)
from indexnow.core.indexing.api_client import IndexingApiClient
from indexnow.core.indexing.indexing_service import IndexingService
from indexnow.core.indexing.job_queue import JobQueue
from indexnow.core.indexing.quota_manager import QuotaManager
from indexnow.core.indexing.rate_limiter import AccountRateLimiter
from indexnow.core.indexing.retry_handler import RetryHandler
from indexnow.core.shared.database_service import DatabaseService


TODAY = date(2026, 10, 18)


@pytest_asyncio.fixture
async def db():
    """Fresh in-memory database with all tables."""
    service = DatabaseService("sqlite+aiosqlite:///:memory:")
    await service.init_db()
    yield service
    await service.close()


@pytest.fixture
def broadcaster():
    """Recording stand-in for PubSubService."""
    fake = MagicMock()
    fake.publish = AsyncMock(return_value=True)
    fake.job_status_changed = AsyncMock(return_value=True)
    fake.submission_status_changed = AsyncMock(return_value=True)
    return fake


@pytest.fixture
def owner_id():
    return uuid.uuid4()


async def no_sleep(seconds: float) -> None:
    return None


async def create_job(
    db: DatabaseService,
    owner_id: uuid.UUID,
    urls: Optional[List[str]] = None,
    kind: JobKind = JobKind.MANUAL,
    source_data: Optional[dict] = None,
    status: JobStatus = JobStatus.PENDING,
    name: str = "Test job",
    schedule_type: ScheduleType = ScheduleType.ONE_TIME,
    next_run_at: Optional[datetime] = None,
) -> IndexingJob:
    if source_data is None:
        source_data = {"urls": list(urls or [])}
    async with db.get_session() as session:
        job = IndexingJob(
            owner_id=owner_id,
            name=name,
            kind=kind.value,
            status=status.value,
            source_data=source_data,
            total_urls=len(urls or []),
            schedule_type=schedule_type.value,
            next_run_at=next_run_at,
        )
        session.add(job)
        await session.flush()
        await session.refresh(job)
        return job


async def create_account(
    db: DatabaseService,
    owner_id: uuid.UUID,
    email: Optional[str] = None,
    is_active: bool = True,
    daily_quota_limit: int = 200,
    quota_exhausted_on: Optional[date] = None,
    credentials: Optional[dict] = None,
) -> ServiceAccount:
    email = email or f"indexer-{uuid.uuid4().hex[:8]}@project.iam.gserviceaccount.com"
    async with db.get_session() as session:
        account = ServiceAccount(
            owner_id=owner_id,
            name=email.split("@")[0],
            email=email,
            credentials=credentials,
            is_active=is_active,
            daily_quota_limit=daily_quota_limit,
            quota_exhausted_on=quota_exhausted_on,
        )
        session.add(account)
        await session.flush()
        await session.refresh(account)
        return account


class StaticTokenProvider:
    """Credential provider returning a fixed token, or None for listed accounts."""

    def __init__(self, missing=None):
        self.missing = set(missing or [])
        self.calls = []

    async def get_token(self, account_id):
        self.calls.append(account_id)
        if account_id in self.missing:
            return None
        return f"token-{account_id}"


API_URL = "https://indexing.example.test/v3/urlNotifications:publish"


class FakeIndexingApi:
    """
    MockTransport handler for the publish endpoint.

    ``scripted`` maps a URL to a list of (status, body) responses served in
    order; URLs without a script (or with an exhausted one) succeed.
    """

    def __init__(self, scripted=None):
        self.scripted = {url: list(responses) for url, responses in (scripted or {}).items()}
        self.calls = []

    def __call__(self, request):
        payload = json.loads(request.content)
        token = request.headers["Authorization"].split(" ", 1)[1]
        self.calls.append((payload["url"], token))
        script = self.scripted.get(payload["url"])
        if script:
            status, body = script.pop(0)
            return httpx.Response(status, json=body)
        return httpx.Response(
            200,
            json={"urlNotificationMetadata": {"url": payload["url"], "latestUpdate": {"type": payload["type"]}}},
        )

    def urls(self):
        return [url for url, _ in self.calls]


def quota_exceeded_response():
    return (429, {"error": {"code": 429, "message": "Quota exceeded for quota metric 'Publish requests'", "status": "RESOURCE_EXHAUSTED"}})


@pytest_asyncio.fixture
async def pipeline(db, broadcaster):
    """
    Factory wiring an IndexingService against ``db`` with fakes for the
    indexing API, credentials and pacing.
    """
    clients = []

    def build(api=None, tokens=None, today=None, max_retries=3, progress_log_interval=10,
              url_sources=None):
        api = api or FakeIndexingApi()
        http_client = httpx.AsyncClient(transport=httpx.MockTransport(api))
        clients.append(http_client)
        queue = JobQueue(
            db=db, broadcaster=broadcaster, url_sources=url_sources, worker_id="test-worker"
        )
        quota = QuotaManager(db=db, broadcaster=broadcaster, today=today or (lambda: TODAY))
        api_client = IndexingApiClient(
            db=db,
            job_queue=queue,
            quota_manager=quota,
            retry_handler=RetryHandler(max_retries=max_retries, sleep=no_sleep),
            rate_limiter=AccountRateLimiter(min_interval=0),
            credential_provider=tokens or StaticTokenProvider(),
            broadcaster=broadcaster,
            http_client=http_client,
            api_url=API_URL,
            inter_submission_delay=0,
            progress_log_interval=progress_log_interval,
            sleep=no_sleep,
        )
        service = IndexingService(
            db=db, job_queue=queue, api_client=api_client, broadcaster=broadcaster
        )
        return service, api

    yield build

    for client in clients:
        await client.aclose()
