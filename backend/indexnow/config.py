# ============================================================================
# IndexNow - Application Configuration
# ============================================================================
"""
Application configuration module using Pydantic Settings.

This module defines all configuration parameters for the IndexNow backend,
including:
- API settings
- Database and Redis connections
- Indexing API endpoint and credential settings
- Pipeline pacing (rate limiting, retries, progress logging)
- Quota accounting and the quota reset sweep

Environment Variables:
    Every field can be overridden by an environment variable of the same
    name (case-insensitive), or through a .env file.

Usage:
    from indexnow.config import settings
    interval = settings.rate_limit_min_interval
"""

from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # =========================================================================
    # API SETTINGS
    # =========================================================================
    api_title: str = "IndexNow API"
    api_version: str = "1.0.0"
    debug: bool = Field(default=False, description="Enable verbose logging & SQL echo")
    log_level: str = Field(default="INFO", description="Root log level for entry points")
    cors_origins: List[str] = Field(
        default=["http://localhost:3000", "http://127.0.0.1:3000"],
        description="Allowed origins for CORS",
    )

    # =========================================================================
    # PERSISTENCE / BROKER
    # =========================================================================
    database_url: str = Field(
        default="sqlite+aiosqlite:///./data/indexnow.db",
        description="SQLAlchemy async database URL",
    )
    redis_url: str = Field(
        default="redis://redis:6379/2",
        description="Redis URL for pub/sub broadcasts and shared rate limiting",
    )
    celery_broker_url: str = Field(default="redis://redis:6379/0", description="Celery broker")
    celery_result_backend: str = Field(default="redis://redis:6379/1", description="Celery results")

    # =========================================================================
    # INDEXING API
    # =========================================================================
    indexing_api_url: str = Field(
        default="https://indexing.googleapis.com/v3/urlNotifications:publish",
        description="Publish endpoint of the search indexing API",
    )
    indexing_api_timeout: float = Field(default=30.0, description="Timeout (s) per API call")
    indexing_scope: str = Field(
        default="https://www.googleapis.com/auth/indexing",
        description="OAuth scope requested for service account tokens",
    )
    token_expiry_buffer_seconds: int = Field(
        default=300, description="Refresh cached tokens this many seconds before expiry"
    )

    # =========================================================================
    # PIPELINE PACING
    # =========================================================================
    rate_limit_backend: str = Field(
        default="memory", description="'memory' (per process) or 'redis' (shared)"
    )
    rate_limit_min_interval: float = Field(
        default=1.0, description="Minimum seconds between calls through one account"
    )
    inter_submission_delay: float = Field(
        default=0.1, description="Pause (s) between consecutive submissions of a job"
    )
    max_retries: int = Field(default=3, description="Attempts allowed per submission")
    retry_base_delay: float = Field(default=1.0, description="Backoff base (s)")
    retry_max_delay: float = Field(default=30.0, description="Backoff cap (s)")
    progress_log_interval: int = Field(
        default=10, description="Write a durable progress event every N submissions"
    )

    # =========================================================================
    # QUOTAS
    # =========================================================================
    quota_timezone: str = Field(
        default="America/Los_Angeles",
        description="Timezone whose calendar day defines the quota day",
    )
    default_account_daily_quota: int = Field(
        default=200, description="Daily request limit for new service accounts"
    )
    notification_ttl_hours: int = Field(
        default=24, description="Lifetime of quota exhaustion notifications"
    )
    quota_reset_sweep_enabled: bool = Field(default=True, description="Schedule the sweep")
    quota_reset_sweep_interval: int = Field(
        default=900, description="Seconds between quota reset sweeps"
    )
    pending_dispatch_enabled: bool = Field(
        default=True, description="Schedule dispatch of pending jobs"
    )
    pending_dispatch_interval: int = Field(
        default=60, description="Seconds between pending job dispatch runs"
    )
    pending_dispatch_batch: int = Field(
        default=5, description="Maximum jobs enqueued per dispatch run"
    )

    # =========================================================================
    # SITEMAPS
    # =========================================================================
    sitemap_timeout: float = Field(default=30.0, description="Timeout (s) per sitemap fetch")
    sitemap_max_depth: int = Field(default=5, description="Maximum sitemap index nesting")
    sitemap_user_agent: Optional[str] = Field(
        default="IndexNow-SitemapFetcher/1.0", description="User-Agent for sitemap requests"
    )

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"


# Global settings instance (imported elsewhere)
settings = Settings()
