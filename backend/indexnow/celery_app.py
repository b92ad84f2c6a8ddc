"""
Celery application setup for IndexNow.

Configures Celery using environment-driven settings so workers and the API
share the same broker/result backend. Tasks live in indexnow.core.tasks.

Queue Architecture:
- indexing: Job processing (long-running, one job per task)
- maintenance: Scheduled sweeps (quota reset, pending job dispatch)
"""
import logging
import os

from celery import Celery
from celery.signals import after_setup_logger
from kombu import Queue

from .config import settings


def _bool(val: str, default: bool = False) -> bool:
    if val is None:
        return default
    return str(val).lower() in {"1", "true", "yes", "on"}


app = Celery(
    "indexnow",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=["indexnow.core.tasks.indexing"],
)

app.conf.task_queues = (
    Queue("indexing", routing_key="indexing"),
    Queue("maintenance", routing_key="maintenance"),
)

# Core settings with sensible defaults, overridable via env
app.conf.update(
    task_acks_late=_bool(os.getenv("CELERY_ACKS_LATE", "true"), True),
    worker_prefetch_multiplier=int(os.getenv("CELERY_PREFETCH_MULTIPLIER", "1")),
    worker_max_tasks_per_child=int(os.getenv("CELERY_MAX_TASKS_PER_CHILD", "50")),
    # Large jobs at one URL per second run for hours
    task_soft_time_limit=int(os.getenv("CELERY_TASK_SOFT_TIME_LIMIT", "21600")),
    task_time_limit=int(os.getenv("CELERY_TASK_TIME_LIMIT", "22000")),
    result_expires=int(os.getenv("CELERY_RESULT_EXPIRES", "259200")),  # 3 days
    task_default_queue=os.getenv("CELERY_DEFAULT_QUEUE", "indexing"),
    task_routes={
        "indexnow.tasks.quota_reset_sweep_task": {"queue": "maintenance"},
        "indexnow.tasks.dispatch_pending_jobs_task": {"queue": "maintenance"},
    },
)

# ============================================================================
# Celery Beat Schedule (for periodic tasks)
# ============================================================================

beat_schedule = {}

if settings.quota_reset_sweep_enabled:
    beat_schedule["quota-reset-sweep"] = {
        "task": "indexnow.tasks.quota_reset_sweep_task",
        "schedule": settings.quota_reset_sweep_interval,  # Every N seconds (default: 900)
        "options": {"queue": "maintenance"},
    }

if settings.pending_dispatch_enabled:
    beat_schedule["dispatch-pending-jobs"] = {
        "task": "indexnow.tasks.dispatch_pending_jobs_task",
        "schedule": settings.pending_dispatch_interval,  # Every N seconds (default: 60)
        "kwargs": {"limit": settings.pending_dispatch_batch},
        "options": {"queue": "maintenance"},
    }

app.conf.beat_schedule = beat_schedule

app.conf.timezone = "UTC"


@after_setup_logger.connect
def _configure_indexnow_logger(logger, *args, **kwargs):
    logging.getLogger("indexnow").setLevel(settings.log_level.upper())
