"""
Tests for the quota reset sweep and manual resume.
"""

from datetime import datetime, timedelta

import pytest

from sqlalchemy import select

from conftest import TODAY, create_account, create_job
from indexnow.core.database.models import (
    IndexingJob,
    JobLogEvent,
    JobStatus,
    Notification,
    ServiceAccount,
)
from indexnow.core.indexing.quota_manager import QUOTA_PAUSE_REASON
from indexnow.core.indexing.quota_reset_service import QuotaResetService

YESTERDAY = TODAY - timedelta(days=1)


@pytest.fixture
def reset_service(db, broadcaster):
    return QuotaResetService(db=db, broadcaster=broadcaster, today=lambda: TODAY)


async def paused_job(db, owner_id):
    job = await create_job(db, owner_id, ["https://example.com/a"], status=JobStatus.PAUSED)
    async with db.get_session() as session:
        stored = await session.get(IndexingJob, job.id)
        stored.error_message = QUOTA_PAUSE_REASON
        stored.locked_at = datetime.utcnow()
        stored.locked_by = "worker-1"
    return job


async def load(db, model, pk):
    async with db.get_session() as session:
        return await session.get(model, pk)


class TestSweep:

    @pytest.mark.asyncio
    async def test_reactivates_accounts_from_previous_day(self, db, reset_service, owner_id):
        stale = await create_account(db, owner_id, is_active=False, quota_exhausted_on=YESTERDAY)
        fresh = await create_account(db, owner_id, is_active=False, quota_exhausted_on=TODAY)

        result = await reset_service.sweep()

        assert result.reactivated_account_ids == [stale.id]
        stale_row = await load(db, ServiceAccount, stale.id)
        assert stale_row.is_active is True
        assert stale_row.quota_exhausted_on is None
        assert (await load(db, ServiceAccount, fresh.id)).is_active is False

    @pytest.mark.asyncio
    async def test_resumes_paused_jobs_of_owners_with_active_account(
        self, db, reset_service, broadcaster, owner_id
    ):
        await create_account(db, owner_id, is_active=False, quota_exhausted_on=YESTERDAY)
        job = await paused_job(db, owner_id)

        result = await reset_service.sweep()

        assert result.resumed_job_ids == [job.id]
        stored = await load(db, IndexingJob, job.id)
        assert stored.status == JobStatus.PENDING.value
        assert stored.error_message is None
        assert stored.locked_at is None
        assert stored.locked_by is None

        async with db.get_session() as session:
            events = (await session.execute(
                select(JobLogEvent).where(JobLogEvent.job_id == job.id)
            )).scalars().all()
        assert [e.event_type for e in events] == ["resume"]
        broadcaster.job_status_changed.assert_awaited_once_with(
            owner_id, job.id, {"status": JobStatus.PENDING.value, "error_message": None}
        )

    @pytest.mark.asyncio
    async def test_owner_without_active_account_stays_paused(self, db, reset_service, owner_id):
        await create_account(db, owner_id, is_active=False, quota_exhausted_on=TODAY)
        job = await paused_job(db, owner_id)

        result = await reset_service.sweep()

        assert result.resumed_job_ids == []
        assert (await load(db, IndexingJob, job.id)).status == JobStatus.PAUSED.value

    @pytest.mark.asyncio
    async def test_dry_run_writes_nothing(self, db, reset_service, broadcaster, owner_id):
        account = await create_account(db, owner_id, is_active=False, quota_exhausted_on=YESTERDAY)
        job = await paused_job(db, owner_id)

        result = await reset_service.sweep(dry_run=True)

        assert result.reactivated_account_ids == [account.id]
        assert result.resumed_job_ids == [job.id]
        assert (await load(db, ServiceAccount, account.id)).is_active is False
        assert (await load(db, IndexingJob, job.id)).status == JobStatus.PAUSED.value
        broadcaster.job_status_changed.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_expired_notifications_removed(self, db, reset_service, owner_id):
        now = datetime.utcnow()
        async with db.get_session() as session:
            session.add_all([
                Notification(owner_id=owner_id, severity="error", title="old", message="m",
                             expires_at=now - timedelta(hours=1)),
                Notification(owner_id=owner_id, severity="error", title="current", message="m",
                             expires_at=now + timedelta(hours=1)),
                Notification(owner_id=owner_id, severity="info", title="forever", message="m"),
            ])

        result = await reset_service.sweep()

        assert result.expired_notifications == 1
        async with db.get_session() as session:
            titles = sorted((await session.execute(select(Notification.title))).scalars().all())
        assert titles == ["current", "forever"]


class TestManualResume:

    @pytest.mark.asyncio
    async def test_resume_paused_job(self, db, reset_service, broadcaster, owner_id):
        job = await paused_job(db, owner_id)

        assert await reset_service.resume_job(job.id) is True

        stored = await load(db, IndexingJob, job.id)
        assert stored.status == JobStatus.PENDING.value
        assert stored.error_message is None
        broadcaster.job_status_changed.assert_awaited_once()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [JobStatus.PENDING, JobStatus.RUNNING, JobStatus.COMPLETED])
    async def test_only_paused_jobs_resume(self, db, reset_service, owner_id, status):
        job = await create_job(db, owner_id, ["https://example.com/a"], status=status)
        assert await reset_service.resume_job(job.id) is False
        assert (await load(db, IndexingJob, job.id)).status == status.value
