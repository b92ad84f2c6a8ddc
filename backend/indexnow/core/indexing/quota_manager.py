"""
Quota accounting and exhaustion handling.

Tracks two independent counters per quota day:

- Account quota: QuotaUsage rows keyed by (service_account_id, date),
  upserted and only ever incremented.
- Tenant quota: one TenantQuota row per owner, reset the first time the
  quota day changes.

When an account reports that its quota is exhausted, the account is
deactivated, every running job of its owner is paused, and the owner is
notified. Jobs resume after the quota reset sweep reactivates the account.

The quota day is the calendar date in ``settings.quota_timezone`` (the
indexing API resets quotas at midnight Pacific time).

Usage:
    from indexnow.core.indexing.quota_manager import QuotaManager

    quota = QuotaManager()
    await quota.record_usage(account_id, success=True)
    await quota.consume_tenant_quota(owner_id, 1)
    remaining = await quota.remaining(account_id)
"""

import logging
import uuid
from datetime import date, datetime, timedelta
from typing import Any, Callable, Dict, List, Optional
from uuid import UUID
from zoneinfo import ZoneInfo

from sqlalchemy import case, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from ...config import settings
from ..database.models import (
    IndexingJob,
    JobStatus,
    QuotaUsage,
    ServiceAccount,
    TenantQuota,
)
from ..shared.database_service import DatabaseService, database_service
from ..shared.job_log_service import job_log_service
from ..shared.notification_service import NotificationService
from ..shared.pubsub_service import pubsub_service

logger = logging.getLogger("indexnow.indexing.quota_manager")

QUOTA_PAUSE_REASON = (
    "Service account quota exhausted. Jobs will resume automatically "
    "after the daily quota reset."
)


def get_quota_date(now: Optional[datetime] = None, tz_name: Optional[str] = None) -> date:
    """
    Current quota day.

    Args:
        now: Aware datetime to convert (defaults to the current time)
        tz_name: IANA timezone (defaults to settings.quota_timezone)
    """
    tz = ZoneInfo(tz_name or settings.quota_timezone)
    if now is None:
        return datetime.now(tz).date()
    return now.astimezone(tz).date()


class QuotaManager:
    """
    Account and tenant quota bookkeeping.

    Attributes:
        db: Database service used for short, self-committing sessions
        broadcaster: Real-time channel for pause deltas
        notifier: Notification sink for exhaustion alerts
        today: Callable returning the current quota day
    """

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

    # =========================================================================
    # ACCOUNT QUOTA
    # =========================================================================

    async def record_usage(self, account_id: UUID, success: bool) -> None:
        """
        Count one API request against the account's quota for today.

        Uses INSERT ... ON CONFLICT DO UPDATE so concurrent workers never
        lose increments.
        """
        now = datetime.utcnow()
        insert = pg_insert if self.db.db_type == "postgresql" else sqlite_insert

        stmt = insert(QuotaUsage).values(
            id=uuid.uuid4(),
            service_account_id=account_id,
            date=self.today(),
            requests_made=1,
            requests_successful=1 if success else 0,
            requests_failed=0 if success else 1,
            last_request_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["service_account_id", "date"],
            set_={
                "requests_made": QuotaUsage.requests_made + 1,
                "requests_successful": QuotaUsage.requests_successful + (1 if success else 0),
                "requests_failed": QuotaUsage.requests_failed + (0 if success else 1),
                "last_request_at": now,
            },
        )

        async with self.db.get_session() as session:
            await session.execute(stmt)

    async def get_usage(self, account_id: UUID, day: Optional[date] = None) -> Optional[QuotaUsage]:
        async with self.db.get_session() as session:
            result = await session.execute(
                select(QuotaUsage).where(
                    QuotaUsage.service_account_id == account_id,
                    QuotaUsage.date == (day or self.today()),
                )
            )
            return result.scalar_one_or_none()

    async def remaining(self, account_id: UUID) -> int:
        """Requests the account may still make today (never negative)."""
        async with self.db.get_session() as session:
            account = await session.get(ServiceAccount, account_id)
            if account is None:
                return 0
            result = await session.execute(
                select(QuotaUsage.requests_made).where(
                    QuotaUsage.service_account_id == account_id,
                    QuotaUsage.date == self.today(),
                )
            )
            made = result.scalar() or 0
            return max(0, account.daily_quota_limit - made)

    async def account_summaries(self, owner_id: UUID) -> List[Dict[str, Any]]:
        """Per-account usage for today, for the owner's quota dashboard."""
        today = self.today()
        async with self.db.get_session() as session:
            accounts = (await session.execute(
                select(ServiceAccount)
                .where(ServiceAccount.owner_id == owner_id)
                .order_by(ServiceAccount.created_at)
            )).scalars().all()
            usage_rows = (await session.execute(
                select(QuotaUsage).where(
                    QuotaUsage.service_account_id.in_([a.id for a in accounts]),
                    QuotaUsage.date == today,
                )
            )).scalars().all()

        usage = {row.service_account_id: row for row in usage_rows}
        summaries = []
        for account in accounts:
            row = usage.get(account.id)
            made = row.requests_made if row else 0
            summaries.append({
                "service_account_id": account.id,
                "name": account.name,
                "email": account.email,
                "is_active": account.is_active,
                "daily_quota_limit": account.daily_quota_limit,
                "requests_made": made,
                "requests_successful": row.requests_successful if row else 0,
                "requests_failed": row.requests_failed if row else 0,
                "remaining": max(0, account.daily_quota_limit - made),
                "quota_exhausted_on": account.quota_exhausted_on,
            })
        return summaries

    # =========================================================================
    # TENANT QUOTA
    # =========================================================================

    async def consume_tenant_quota(self, owner_id: UUID, n: int = 1) -> int:
        """
        Add ``n`` to the owner's usage for today.

        A single INSERT ... ON CONFLICT DO UPDATE, so concurrent jobs of the
        same owner never lose increments. The counter restarts from ``n``
        when the stored reset date is not today.

        Returns:
            Usage for today after the increment
        """
        today = self.today()
        now = datetime.utcnow()
        insert = pg_insert if self.db.db_type == "postgresql" else sqlite_insert

        stmt = insert(TenantQuota).values(
            id=uuid.uuid4(),
            owner_id=owner_id,
            quota_used_today=n,
            quota_reset_date=today,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["owner_id"],
            set_={
                "quota_used_today": case(
                    (TenantQuota.quota_reset_date == today, TenantQuota.quota_used_today + n),
                    else_=n,
                ),
                "quota_reset_date": today,
                "updated_at": now,
            },
        ).returning(TenantQuota.quota_used_today)

        async with self.db.get_session() as session:
            result = await session.execute(stmt)
            return result.scalar_one()

    async def get_tenant_usage(self, owner_id: UUID) -> Dict[str, Any]:
        today = self.today()
        async with self.db.get_session() as session:
            result = await session.execute(
                select(TenantQuota).where(TenantQuota.owner_id == owner_id)
            )
            quota = result.scalar_one_or_none()

        used = 0
        limit = None
        if quota is not None:
            limit = quota.daily_quota_limit
            if quota.quota_reset_date == today:
                used = quota.quota_used_today
        return {
            "owner_id": owner_id,
            "quota_date": today,
            "quota_used_today": used,
            "daily_quota_limit": limit,
            "remaining": None if limit is None else max(0, limit - used),
        }

    # =========================================================================
    # EXHAUSTION
    # =========================================================================

    async def on_account_quota_exhausted(self, account_id: UUID) -> List[UUID]:
        """
        Contain an exhausted account.

        1. Deactivate the account and stamp quota_exhausted_on.
        2. Pause every running job of the account's owner (log, then
           broadcast).
        3. Notify the owner (severity error, expires in 24h).

        Returns:
            IDs of the jobs that were paused
        """
        today = self.today()
        paused: List[UUID] = []

        async with self.db.get_session() as session:
            account = await session.get(ServiceAccount, account_id)
            if account is None:
                logger.warning(f"Quota exhausted for unknown service account {account_id}")
                return paused

            owner_id = account.owner_id
            account.is_active = False
            account.quota_exhausted_on = today
            logger.warning(
                f"Service account {account.email} ({account_id}) exhausted its quota; deactivated"
            )

            jobs = (await session.execute(
                select(IndexingJob).where(
                    IndexingJob.owner_id == owner_id,
                    IndexingJob.status == JobStatus.RUNNING.value,
                )
            )).scalars().all()

            for job in jobs:
                job.status = JobStatus.PAUSED.value
                job.error_message = QUOTA_PAUSE_REASON
                await job_log_service.log_warning(
                    session,
                    job.id,
                    f"Job paused: {QUOTA_PAUSE_REASON}",
                    context={"service_account_id": str(account_id), "quota_date": today.isoformat()},
                    event_type="pause",
                )
                paused.append(job.id)

            notification = await self.notifier.notify(
                session,
                owner_id=owner_id,
                severity="error",
                title="Service account quota exhausted",
                message=(
                    f"Service account {account.email} reached its daily quota. "
                    f"{len(paused)} running job(s) were paused and will resume "
                    "automatically after the quota resets."
                ),
                details={
                    "service_account_id": str(account_id),
                    "paused_job_ids": [str(job_id) for job_id in paused],
                    "quota_date": today.isoformat(),
                },
                expires_at=datetime.utcnow() + timedelta(hours=settings.notification_ttl_hours),
            )

        for job_id in paused:
            await self.broadcaster.job_status_changed(
                owner_id, job_id,
                {"status": JobStatus.PAUSED.value, "error_message": QUOTA_PAUSE_REASON},
            )
        await self.notifier.publish(notification)

        return paused
