"""
Indexing pipeline.

Components, leaves first: RetryHandler, AccountRateLimiter,
CredentialProvider, URL sources, QuotaManager, JobQueue, IndexingApiClient,
IndexingService (entry point), QuotaResetService (periodic un-pause).
"""

from .api_client import IndexingApiClient, RunStats
from .errors import (
    CredentialError,
    IndexingApiError,
    IndexingError,
    InvalidJobError,
    JobNotEligibleError,
    NoActiveAccountsError,
    NoUsableCredentialsError,
    QuotaExhaustedError,
    SitemapError,
    TransientApiError,
)
from .indexing_service import IndexingService, JobProcessResult, indexing_service
from .job_queue import JobQueue, MaterializeResult
from .quota_manager import QuotaManager, get_quota_date
from .quota_reset_service import QuotaResetService, SweepResult
from .retry_handler import RetryHandler

__all__ = [
    "CredentialError",
    "IndexingApiClient",
    "IndexingApiError",
    "IndexingError",
    "IndexingService",
    "InvalidJobError",
    "JobNotEligibleError",
    "JobProcessResult",
    "JobQueue",
    "MaterializeResult",
    "NoActiveAccountsError",
    "NoUsableCredentialsError",
    "QuotaExhaustedError",
    "QuotaManager",
    "QuotaResetService",
    "RetryHandler",
    "RunStats",
    "SitemapError",
    "SweepResult",
    "TransientApiError",
    "get_quota_date",
    "indexing_service",
]
