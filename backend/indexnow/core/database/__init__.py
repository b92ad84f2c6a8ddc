"""Database layer: declarative base and ORM models."""

from .base import Base, get_db
from .models import (
    IndexingJob,
    JobKind,
    JobLogEvent,
    JobStatus,
    Notification,
    QuotaUsage,
    ServiceAccount,
    SubmissionStatus,
    TenantQuota,
    UrlSubmission,
)

__all__ = [
    "Base",
    "get_db",
    "IndexingJob",
    "JobKind",
    "JobLogEvent",
    "JobStatus",
    "Notification",
    "QuotaUsage",
    "ServiceAccount",
    "SubmissionStatus",
    "TenantQuota",
    "UrlSubmission",
]
