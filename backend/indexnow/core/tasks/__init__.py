"""
Celery tasks package for IndexNow.

Celery discovers tasks via the include= list in celery_app.py, which
references each submodule directly.
"""

from indexnow.core.tasks.indexing import (
    dispatch_pending_jobs_task,
    process_indexing_job_task,
    quota_reset_sweep_task,
)

__all__ = [
    "dispatch_pending_jobs_task",
    "process_indexing_job_task",
    "quota_reset_sweep_task",
]
