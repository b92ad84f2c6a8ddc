"""
Tests for JobQueue: locking, URL extraction and submission materialization.

Runs against an in-memory SQLite database.
"""

import uuid
from datetime import datetime, timedelta

import pytest
from unittest.mock import AsyncMock, MagicMock

from sqlalchemy import func, select

from conftest import create_job
from indexnow.core.database.models import (
    JobKind,
    JobStatus,
    ScheduleType,
    SubmissionStatus,
    UrlSubmission,
)
from indexnow.core.indexing.errors import InvalidJobError
from indexnow.core.indexing.job_queue import INSERT_BATCH_SIZE, JobQueue, next_run_time
from indexnow.core.indexing.url_sources import SitemapUrlSource

URLS = [f"https://example.com/page-{i}" for i in range(5)]


@pytest.fixture
def queue(db, broadcaster):
    return JobQueue(db=db, broadcaster=broadcaster, worker_id="worker-1")


async def count_submissions(db, job_id, **filters):
    query = select(func.count(UrlSubmission.id)).where(UrlSubmission.job_id == job_id)
    for column, value in filters.items():
        query = query.where(getattr(UrlSubmission, column) == value)
    async with db.get_session() as session:
        return (await session.execute(query)).scalar()


# =============================================================================
# Locking
# =============================================================================


class TestLock:

    @pytest.mark.asyncio
    async def test_lock_pending_job(self, db, queue, broadcaster, owner_id):
        job = await create_job(db, owner_id, URLS)

        assert await queue.lock(job.id) is True

        fresh = await queue.get_job(job.id)
        assert fresh.status == JobStatus.RUNNING.value
        assert fresh.locked_by == "worker-1"
        assert fresh.locked_at is not None
        broadcaster.job_status_changed.assert_awaited_once()
        args = broadcaster.job_status_changed.await_args.args
        assert args[0] == owner_id
        assert args[2]["status"] == JobStatus.RUNNING.value

    @pytest.mark.asyncio
    async def test_second_lock_refused(self, db, broadcaster, owner_id):
        """Only one of two workers wins the pending -> running transition."""
        job = await create_job(db, owner_id, URLS)
        first = JobQueue(db=db, broadcaster=broadcaster, worker_id="worker-1")
        second = JobQueue(db=db, broadcaster=broadcaster, worker_id="worker-2")

        assert await first.lock(job.id) is True
        assert await second.lock(job.id) is False
        assert (await first.get_job(job.id)).locked_by == "worker-1"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.PAUSED])
    async def test_non_pending_not_lockable(self, db, queue, broadcaster, owner_id, status):
        job = await create_job(db, owner_id, URLS, status=status)
        assert await queue.lock(job.id) is False
        broadcaster.job_status_changed.assert_not_awaited()


# =============================================================================
# Extraction
# =============================================================================


class TestExtractUrls:

    @pytest.mark.asyncio
    async def test_manual(self, db, queue, owner_id):
        job = await create_job(db, owner_id, URLS + ["   "])
        assert await queue.extract_urls(job) == URLS

    @pytest.mark.asyncio
    async def test_sitemap_parsed_once_then_cached(self, db, broadcaster, owner_id):
        """A second extraction uses the cache and makes no network calls."""
        fetcher = MagicMock()
        fetcher.fetch_urls = AsyncMock(return_value=URLS[:3])
        queue = JobQueue(
            db=db,
            broadcaster=broadcaster,
            url_sources={JobKind.SITEMAP: SitemapUrlSource(fetcher=fetcher)},
        )
        job = await create_job(
            db, owner_id, kind=JobKind.SITEMAP,
            source_data={"sitemap_url": "https://example.com/sitemap.xml"},
        )

        first = await queue.extract_urls(job)
        stored = await queue.get_job(job.id)
        second = await queue.extract_urls(stored)

        assert first == second == URLS[:3]
        assert fetcher.fetch_urls.await_count == 1
        assert stored.total_urls == 3
        assert stored.source_data["parsed_urls"] == URLS[:3]
        assert stored.source_data["total_parsed"] == 3
        assert stored.source_data["sitemap_url"] == "https://example.com/sitemap.xml"

    @pytest.mark.asyncio
    async def test_sitemap_without_url(self, db, queue, owner_id):
        job = await create_job(db, owner_id, kind=JobKind.SITEMAP, source_data={})
        with pytest.raises(InvalidJobError):
            await queue.extract_urls(job)

    @pytest.mark.asyncio
    async def test_unknown_kind(self, db, queue, owner_id):
        job = await create_job(db, owner_id, URLS)
        job.kind = "rss"
        with pytest.raises(InvalidJobError):
            await queue.extract_urls(job)


# =============================================================================
# Materialization
# =============================================================================


class TestMaterializeSubmissions:

    @pytest.mark.asyncio
    async def test_first_run(self, db, queue, owner_id):
        job = await create_job(db, owner_id, URLS)

        result = await queue.materialize_submissions(job.id, URLS)

        assert result.run_number == 1
        assert result.resumed is False
        assert result.created == len(URLS)
        rows = await queue.list_submissions(job.id)
        assert [r.url for r in rows] == URLS
        assert [r.batch_index for r in rows] == list(range(len(URLS)))
        assert all(r.status == SubmissionStatus.PENDING.value for r in rows)
        assert all(r.run_number == 1 for r in rows)

        fresh = await queue.get_job(job.id)
        assert fresh.total_urls == len(URLS)
        assert fresh.processed_urls == 0

    @pytest.mark.asyncio
    async def test_large_batches(self, db, queue, owner_id):
        urls = [f"https://example.com/p{i}" for i in range(INSERT_BATCH_SIZE * 2 + 7)]
        job = await create_job(db, owner_id, urls)

        await queue.materialize_submissions(job.id, urls)

        assert await count_submissions(db, job.id) == len(urls)
        last = await queue.list_submissions(job.id, offset=len(urls) - 1)
        assert last[0].batch_index == len(urls) - 1

    @pytest.mark.asyncio
    async def test_rerun_appends_new_run(self, db, queue, owner_id):
        """A fresh run never deletes earlier rows."""
        job = await create_job(db, owner_id, URLS)
        await queue.materialize_submissions(job.id, URLS)
        for row in await queue.list_submissions(job.id):
            await queue.update_submission(row.id, status=SubmissionStatus.SUBMITTED.value)

        result = await queue.materialize_submissions(job.id, URLS[:2])

        assert result.run_number == 2
        assert result.resumed is False
        assert await count_submissions(db, job.id) == len(URLS) + 2
        assert await count_submissions(db, job.id, run_number=1) == len(URLS)
        run_two = await queue.list_submissions(job.id, run_number=2)
        assert [r.url for r in run_two] == URLS[:2]

    @pytest.mark.asyncio
    async def test_resume_inserts_nothing_and_restores_counters(self, db, queue, owner_id):
        job = await create_job(db, owner_id, URLS)
        await queue.materialize_submissions(job.id, URLS)
        rows = await queue.list_submissions(job.id)
        await queue.update_submission(rows[0].id, status=SubmissionStatus.SUBMITTED.value)
        await queue.update_submission(rows[1].id, status=SubmissionStatus.FAILED.value)
        await queue.set_status(job.id, JobStatus.RUNNING, processed_urls=0)

        result = await queue.materialize_submissions(job.id, URLS)

        assert result.resumed is True
        assert result.run_number == 1
        assert result.created == 0
        assert result.pending == 3
        assert await count_submissions(db, job.id) == len(URLS)

        fresh = await queue.get_job(job.id)
        assert fresh.total_urls == 5
        assert fresh.processed_urls == 2
        assert fresh.successful_urls == 1
        assert fresh.failed_urls == 1
        assert fresh.progress_percentage == 40

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [JobStatus.PAUSED, JobStatus.FAILED])
    async def test_pending_rows_resume_whatever_the_status(self, db, queue, owner_id, status):
        """A job paused or failed before it re-materialized keeps its pending rows."""
        job = await create_job(db, owner_id, URLS)
        await queue.materialize_submissions(job.id, URLS)
        rows = await queue.list_submissions(job.id)
        await queue.update_submission(rows[0].id, status=SubmissionStatus.SUBMITTED.value)
        await queue.set_status(job.id, status)

        result = await queue.materialize_submissions(job.id, URLS)

        assert result.resumed is True
        assert result.pending == 4
        assert await count_submissions(db, job.id) == len(URLS)

    @pytest.mark.asyncio
    async def test_missing_job(self, queue):
        with pytest.raises(InvalidJobError):
            await queue.materialize_submissions(uuid.uuid4(), URLS)

    @pytest.mark.asyncio
    async def test_pending_submissions_in_creation_order(self, db, queue, owner_id):
        job = await create_job(db, owner_id, URLS)
        await queue.materialize_submissions(job.id, URLS)
        rows = await queue.list_submissions(job.id)
        await queue.update_submission(rows[2].id, status=SubmissionStatus.SUBMITTED.value)

        pending = await queue.get_pending_submissions(job.id)

        assert [p.url for p in pending] == [URLS[0], URLS[1], URLS[3], URLS[4]]


# =============================================================================
# Status and dispatch
# =============================================================================


class TestStatusAndDispatch:

    @pytest.mark.asyncio
    async def test_set_status_and_get_status(self, db, queue, owner_id):
        job = await create_job(db, owner_id, URLS)
        await queue.set_status(job.id, JobStatus.FAILED, error_message="boom")

        assert await queue.get_status(job.id) == JobStatus.FAILED.value
        assert (await queue.get_job(job.id)).error_message == "boom"

    @pytest.mark.asyncio
    async def test_list_dispatchable(self, db, queue, owner_id):
        first = await create_job(db, owner_id, URLS, name="first")
        second = await create_job(db, owner_id, URLS, name="second")
        await create_job(db, owner_id, URLS, status=JobStatus.COMPLETED)
        locked = await create_job(db, owner_id, URLS, name="locked")
        await queue.lock(locked.id)

        job_ids = await queue.list_dispatchable(limit=5)

        assert job_ids == [first.id, second.id]
        assert await queue.list_dispatchable(limit=1) == [first.id]


    @pytest.mark.asyncio
    async def test_list_dispatchable_waits_for_next_run(self, db, queue, owner_id):
        now = datetime.utcnow()
        due = await create_job(
            db, owner_id, URLS, name="due",
            schedule_type=ScheduleType.DAILY, next_run_at=now - timedelta(minutes=1),
        )
        await create_job(
            db, owner_id, URLS, name="later",
            schedule_type=ScheduleType.DAILY, next_run_at=now + timedelta(hours=1),
        )
        unscheduled = await create_job(db, owner_id, URLS, name="unscheduled")

        assert await queue.list_dispatchable(limit=5) == [due.id, unscheduled.id]


class TestNextRunTime:

    NOW = datetime(2026, 10, 18, 9, 30)

    @pytest.mark.parametrize("schedule_type, expected", [
        (ScheduleType.HOURLY, datetime(2026, 10, 18, 10, 30)),
        (ScheduleType.DAILY, datetime(2026, 10, 19, 9, 30)),
        (ScheduleType.WEEKLY, datetime(2026, 10, 25, 9, 30)),
        (ScheduleType.MONTHLY, datetime(2026, 11, 18, 9, 30)),
        ("daily", datetime(2026, 10, 19, 9, 30)),
    ])
    def test_intervals(self, schedule_type, expected):
        assert next_run_time(schedule_type, self.NOW) == expected

    def test_one_time_is_not_rescheduled(self):
        assert next_run_time(ScheduleType.ONE_TIME, self.NOW) is None

    @pytest.mark.parametrize("now, expected", [
        (datetime(2026, 1, 31, 8, 0), datetime(2026, 2, 28, 8, 0)),
        (datetime(2028, 1, 31, 8, 0), datetime(2028, 2, 29, 8, 0)),
        (datetime(2026, 12, 15, 8, 0), datetime(2027, 1, 15, 8, 0)),
    ])
    def test_monthly_clamps_to_month_end(self, now, expected):
        assert next_run_time(ScheduleType.MONTHLY, now) == expected
