"""
Request and response schemas for API v1.
"""

from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from ...core.database.models import JobKind, ScheduleType

MAX_MANUAL_URLS = 10000


def _is_http_url(value: str) -> bool:
    parsed = urlparse(value)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


# =========================================================================
# JOBS
# =========================================================================


class JobCreateRequest(BaseModel):
    """Create an indexing job from a URL list or a sitemap."""
    name: str = Field(..., min_length=1, max_length=255, description="Job name")
    kind: JobKind = Field(..., description="URL source: manual or sitemap")
    urls: Optional[List[str]] = Field(None, description="URLs to submit (manual jobs)")
    sitemap_url: Optional[str] = Field(None, description="Sitemap to crawl (sitemap jobs)")
    schedule_type: ScheduleType = Field(
        ScheduleType.ONE_TIME, description="one-time, hourly, daily, weekly or monthly"
    )
    start_time: Optional[datetime] = Field(
        None, description="Earliest first run (UTC); ignored for one-time jobs"
    )

    @model_validator(mode="after")
    def _check_source(self):
        if self.kind == JobKind.MANUAL:
            urls = [u.strip() for u in (self.urls or []) if u and u.strip()]
            if not urls:
                raise ValueError("Manual jobs require at least one URL")
            if len(urls) > MAX_MANUAL_URLS:
                raise ValueError(f"Manual jobs accept at most {MAX_MANUAL_URLS} URLs")
            invalid = [u for u in urls if not _is_http_url(u)]
            if invalid:
                raise ValueError(f"Invalid URL: {invalid[0]}")
            self.urls = urls
        else:
            if not self.sitemap_url or not _is_http_url(self.sitemap_url.strip()):
                raise ValueError("Sitemap jobs require a valid sitemap_url")
            self.sitemap_url = self.sitemap_url.strip()
        if self.start_time is not None and self.start_time.tzinfo is not None:
            self.start_time = self.start_time.astimezone(timezone.utc).replace(tzinfo=None)
        return self

    def next_run_at(self) -> Optional[datetime]:
        if self.schedule_type == ScheduleType.ONE_TIME:
            return None
        return self.start_time

    def source_data(self) -> Dict[str, Any]:
        if self.kind == JobKind.MANUAL:
            return {"urls": list(self.urls or [])}
        return {"sitemap_url": self.sitemap_url}


class JobResponse(BaseModel):
    """Indexing job."""
    id: UUID = Field(..., description="Job UUID")
    owner_id: UUID = Field(..., description="Owner UUID")
    name: str
    kind: str = Field(..., description="manual or sitemap")
    status: str = Field(..., description="pending, running, paused, completed, failed")
    source_data: Dict[str, Any] = Field(default_factory=dict)
    total_urls: int = 0
    processed_urls: int = 0
    successful_urls: int = 0
    failed_urls: int = 0
    progress_percentage: int = 0
    error_message: Optional[str] = None
    schedule_type: str = Field(ScheduleType.ONE_TIME.value, description="Recurrence")
    next_run_at: Optional[datetime] = None
    locked_at: Optional[datetime] = None
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class JobsListResponse(BaseModel):
    items: List[JobResponse]
    total: int
    limit: int
    offset: int


class JobActionResponse(BaseModel):
    """Result of process/resume requests."""
    job_id: UUID
    status: str
    message: str
    task_id: Optional[str] = None


# =========================================================================
# SUBMISSIONS / LOGS
# =========================================================================


class SubmissionResponse(BaseModel):
    id: UUID
    job_id: UUID
    url: str
    status: str
    retry_count: int = 0
    service_account_id: Optional[UUID] = None
    error_message: Optional[str] = None
    run_number: int
    batch_index: int
    submitted_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


class SubmissionsListResponse(BaseModel):
    items: List[SubmissionResponse]
    limit: int
    offset: int


class JobLogEventResponse(BaseModel):
    id: UUID
    job_id: UUID
    level: str
    event_type: str
    message: str
    context: Optional[Dict[str, Any]] = None
    created_at: datetime

    class Config:
        from_attributes = True


class JobLogsResponse(BaseModel):
    items: List[JobLogEventResponse]
    total: int


# =========================================================================
# QUOTA
# =========================================================================


class AccountQuotaResponse(BaseModel):
    service_account_id: UUID
    name: str
    email: str
    is_active: bool
    daily_quota_limit: int
    requests_made: int
    requests_successful: int
    requests_failed: int
    remaining: int
    quota_exhausted_on: Optional[date] = None


class QuotaResponse(BaseModel):
    owner_id: UUID
    quota_date: date
    quota_used_today: int
    daily_quota_limit: Optional[int] = None
    remaining: Optional[int] = None
    accounts: List[AccountQuotaResponse] = Field(default_factory=list)


# =========================================================================
# NOTIFICATIONS
# =========================================================================


class NotificationResponse(BaseModel):
    id: UUID
    severity: str
    title: str
    message: str
    details: Optional[Dict[str, Any]] = None
    is_read: bool = False
    expires_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


class NotificationsListResponse(BaseModel):
    items: List[NotificationResponse]
    total: int
