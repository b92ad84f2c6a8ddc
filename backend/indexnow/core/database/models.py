# backend/indexnow/core/database/models.py
"""
SQLAlchemy ORM models for the IndexNow multi-tenant indexing pipeline.

Models:
    - IndexingJob: A batch of URLs to submit, owned by one tenant
    - UrlSubmission: One URL within one run of a job (append-only)
    - ServiceAccount: Credentialed account used to call the indexing API
    - QuotaUsage: Per-account daily request counters
    - TenantQuota: Per-tenant daily consumption counter
    - JobLogEvent: Durable audit trail for job processing
    - Notification: User-facing alerts (quota exhaustion, etc.)

All models use UUID primary keys and include timestamps for auditing.
Tenants (owners) live in an external identity system, so owner_id columns
carry no foreign key.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import relationship

from ...config import settings
from .base import Base


# UUID type that works with both SQLite and PostgreSQL
class UUID(TypeDecorator):
    """Platform-independent UUID type.

    Uses PostgreSQL's UUID type when available, otherwise uses String(36).
    """
    impl = String
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(PG_UUID(as_uuid=True))
        return dialect.type_descriptor(String(36))

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if dialect.name == "postgresql" and isinstance(value, uuid.UUID):
            return value
        return str(value)

    def process_result_value(self, value, dialect):
        if value is None or isinstance(value, uuid.UUID):
            return value
        return uuid.UUID(value)


class JobStatus(str, Enum):
    """Lifecycle of an indexing job.

    pending → running → completed | failed | paused
    paused → pending (quota reset sweep or manual resume)
    """
    PENDING = "pending"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"


class JobKind(str, Enum):
    """Where a job's URLs come from."""
    MANUAL = "manual"
    SITEMAP = "sitemap"


class ScheduleType(str, Enum):
    """How often a job is re-run after it completes."""
    ONE_TIME = "one-time"
    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class SubmissionStatus(str, Enum):
    PENDING = "pending"
    SUBMITTED = "submitted"
    FAILED = "failed"


class IndexingJob(Base):
    """
    IndexingJob model representing one tenant's batch of URLs.

    Attributes:
        id: Unique job identifier
        owner_id: Tenant that owns the job
        name: Display name
        kind: URL source (manual, sitemap)
        status: Current job status (see JobStatus)
        source_data: JSON payload for the URL source.
            manual:  {"urls": [...]}
            sitemap: {"sitemap_url": ..., "parsed_urls": [...],
                      "last_parsed": iso8601, "total_parsed": n}
        total_urls / processed_urls / successful_urls / failed_urls:
            Counters for the current run
        progress_percentage: 0-100
        error_message: Failure reason, or pause reason for paused jobs
        locked_at / locked_by: Set by the atomic pending → running transition
        schedule_type: one-time, or the recurrence applied on completion
        next_run_at: Earliest time the dispatcher may pick the job up

    Note:
        source_data is a plain JSON column; updates must assign a new dict
        so SQLAlchemy detects the change.
    """

    __tablename__ = "indexing_jobs"

    id = Column(UUID(), primary_key=True, default=uuid.uuid4)
    owner_id = Column(UUID(), nullable=False, index=True)

    name = Column(String(255), nullable=False)
    kind = Column(String(20), nullable=False)
    status = Column(String(20), nullable=False, default=JobStatus.PENDING.value, index=True)

    source_data = Column(JSON, nullable=False, default=dict)

    # Progress counters (current run)
    total_urls = Column(Integer, nullable=False, default=0)
    processed_urls = Column(Integer, nullable=False, default=0)
    successful_urls = Column(Integer, nullable=False, default=0)
    failed_urls = Column(Integer, nullable=False, default=0)
    progress_percentage = Column(Integer, nullable=False, default=0)

    error_message = Column(Text, nullable=True)

    # Recurrence
    schedule_type = Column(String(20), nullable=False, default=ScheduleType.ONE_TIME.value)
    next_run_at = Column(DateTime, nullable=True)

    # Processing lock
    locked_at = Column(DateTime, nullable=True)
    locked_by = Column(String(255), nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    updated_at = Column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    # Relationships
    submissions = relationship(
        "UrlSubmission", back_populates="job", cascade="all, delete-orphan"
    )
    log_events = relationship(
        "JobLogEvent", back_populates="job", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("ix_indexing_jobs_owner_status", "owner_id", "status"),
        Index("ix_indexing_jobs_status_created", "status", "created_at"),
        Index("ix_indexing_jobs_status_next_run", "status", "next_run_at"),
    )

    def __repr__(self) -> str:
        return f"<IndexingJob(id={self.id}, kind={self.kind}, status={self.status})>"


class UrlSubmission(Base):
    """
    UrlSubmission model tracking one URL of one run of a job.

    Rows are never deleted by processing. A fresh run appends a new batch
    with run_number = previous max + 1; a resumed run reuses the pending rows
    of the latest run.

    Attributes:
        id: Unique submission identifier
        job_id: Owning job
        url: URL to submit
        status: pending, submitted, failed
        retry_count: Failed processing attempts
        service_account_id: Account that handled the URL (set when processed)
        error_message: Last error text
        run_number: 1-based run this row belongs to
        batch_index: Position of the URL within its run
        submitted_at: When the API accepted the URL
        response_data: Raw API response payload
    """

    __tablename__ = "url_submissions"

    id = Column(UUID(), primary_key=True, default=uuid.uuid4)
    job_id = Column(
        UUID(), ForeignKey("indexing_jobs.id", ondelete="CASCADE"), nullable=False, index=True
    )
    url = Column(Text, nullable=False)
    status = Column(String(20), nullable=False, default=SubmissionStatus.PENDING.value)
    retry_count = Column(Integer, nullable=False, default=0)
    service_account_id = Column(
        UUID(), ForeignKey("service_accounts.id", ondelete="SET NULL"), nullable=True
    )
    error_message = Column(Text, nullable=True)

    run_number = Column(Integer, nullable=False, default=1)
    batch_index = Column(Integer, nullable=False, default=0)

    submitted_at = Column(DateTime, nullable=True)
    response_data = Column(JSON, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    job = relationship("IndexingJob", back_populates="submissions")

    __table_args__ = (
        Index("ix_url_submissions_job_status", "job_id", "status"),
        Index("ix_url_submissions_job_run", "job_id", "run_number"),
    )

    def __repr__(self) -> str:
        return f"<UrlSubmission(id={self.id}, run={self.run_number}, status={self.status})>"


class ServiceAccount(Base):
    """
    ServiceAccount model for a credentialed indexing API identity.

    Accounts are deactivated, never deleted, when their daily quota runs out.
    The quota reset sweep reactivates them on the next quota day.

    Attributes:
        credentials: Service account key JSON (client_email, private_key,
            token_uri)
        daily_quota_limit: Requests allowed per quota day
        access_token / access_token_expires_at: Cached bearer token
        quota_exhausted_on: Quota day on which the account was deactivated
    """

    __tablename__ = "service_accounts"

    id = Column(UUID(), primary_key=True, default=uuid.uuid4)
    owner_id = Column(UUID(), nullable=False, index=True)

    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=False)
    credentials = Column(JSON, nullable=True)

    is_active = Column(Boolean, nullable=False, default=True, index=True)
    daily_quota_limit = Column(
        Integer, nullable=False, default=lambda: settings.default_account_daily_quota
    )
    quota_exhausted_on = Column(Date, nullable=True)

    access_token = Column(Text, nullable=True)
    access_token_expires_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    __table_args__ = (
        Index("ix_service_accounts_owner_active", "owner_id", "is_active"),
    )

    def __repr__(self) -> str:
        return f"<ServiceAccount(id={self.id}, email={self.email}, active={self.is_active})>"


class QuotaUsage(Base):
    """
    Daily request counters for one service account.

    One row per (service_account_id, date); counters only ever increase.
    """

    __tablename__ = "quota_usage"

    id = Column(UUID(), primary_key=True, default=uuid.uuid4)
    service_account_id = Column(
        UUID(), ForeignKey("service_accounts.id", ondelete="CASCADE"), nullable=False
    )
    date = Column(Date, nullable=False)

    requests_made = Column(Integer, nullable=False, default=0)
    requests_successful = Column(Integer, nullable=False, default=0)
    requests_failed = Column(Integer, nullable=False, default=0)
    last_request_at = Column(DateTime, nullable=True)

    __table_args__ = (
        UniqueConstraint("service_account_id", "date", name="uq_quota_usage_account_date"),
    )

    def __repr__(self) -> str:
        return f"<QuotaUsage(account={self.service_account_id}, date={self.date}, made={self.requests_made})>"


class TenantQuota(Base):
    """Per-tenant daily consumption, reset when the quota day changes."""

    __tablename__ = "tenant_quotas"

    id = Column(UUID(), primary_key=True, default=uuid.uuid4)
    owner_id = Column(UUID(), nullable=False, unique=True)

    quota_used_today = Column(Integer, nullable=False, default=0)
    quota_reset_date = Column(Date, nullable=True)
    daily_quota_limit = Column(Integer, nullable=True)

    updated_at = Column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    def __repr__(self) -> str:
        return f"<TenantQuota(owner={self.owner_id}, used={self.quota_used_today})>"


class JobLogEvent(Base):
    """
    Durable audit event for a job.

    Written before the matching real-time broadcast so the history survives
    even when nobody is subscribed.

    Attributes:
        level: INFO, WARN, ERROR
        event_type: start, progress, submission, pause, complete, error, ...
        context: Structured details (counts, URL, account, ...)
    """

    __tablename__ = "job_log_events"

    id = Column(UUID(), primary_key=True, default=uuid.uuid4)
    job_id = Column(
        UUID(), ForeignKey("indexing_jobs.id", ondelete="CASCADE"), nullable=False
    )
    level = Column(String(10), nullable=False, default="INFO")
    event_type = Column(String(50), nullable=False)
    message = Column(Text, nullable=False)
    context = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    job = relationship("IndexingJob", back_populates="log_events")

    __table_args__ = (
        Index("ix_job_log_events_job_created", "job_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<JobLogEvent(job={self.job_id}, type={self.event_type}, level={self.level})>"


class Notification(Base):
    """User-facing alert for a tenant."""

    __tablename__ = "notifications"

    id = Column(UUID(), primary_key=True, default=uuid.uuid4)
    owner_id = Column(UUID(), nullable=False, index=True)
    severity = Column(String(20), nullable=False, default="info")
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    # "metadata" is reserved on declarative classes
    details = Column(JSON, nullable=True)
    is_read = Column(Boolean, nullable=False, default=False)
    expires_at = Column(DateTime, nullable=True, index=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<Notification(owner={self.owner_id}, severity={self.severity}, title={self.title!r})>"
