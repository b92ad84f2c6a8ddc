"""
Process one indexing job in the foreground.

Runs the same pipeline as the Celery task, useful for debugging a job or
operating without a worker. A job that is not pending is reported and left
alone, unless --reset is given, in which case a completed or failed job is
moved back to pending first (its history is kept; a new run is appended).

Usage:
    python -m indexnow.core.commands.process_job JOB_ID [--reset] [--init-db]

Options:
    --reset     Move a completed/failed job back to pending before processing
    --init-db   Create missing tables first (development databases)
"""

import argparse
import asyncio
import logging
import sys
from uuid import UUID

from ...config import settings

# Set up logging
logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger("indexnow.commands.process_job")


async def main(job_id: UUID, reset: bool = False, init_db: bool = False) -> int:
    """Process the job and return a process exit code."""
    from ..database.models import JobStatus
    from ..indexing.indexing_service import indexing_service
    from ..shared.database_service import database_service

    if init_db:
        await database_service.init_db()

    job = await indexing_service.job_queue.get_job(job_id)
    if job is None:
        logger.error(f"Job {job_id} not found")
        return 2

    if reset and job.status in (JobStatus.COMPLETED.value, JobStatus.FAILED.value):
        logger.info(f"Resetting job {job_id} from {job.status} to pending")
        await indexing_service.job_queue.set_status(
            job_id, JobStatus.PENDING, error_message=None, locked_at=None, locked_by=None
        )

    result = await indexing_service.process(job_id)
    if result.success:
        logger.info(f"Job {job_id} finished with status {result.status}")
        if result.stats:
            logger.info(
                f"  submitted={result.stats.successful} failed={result.stats.failed} "
                f"account_skips={result.stats.account_skips}"
            )
        return 0

    logger.error(f"Job {job_id} not processed: {result.error}")
    return 1


def cli() -> None:
    parser = argparse.ArgumentParser(description="Process one indexing job in the foreground")
    parser.add_argument("job_id", type=UUID, help="Job UUID")
    parser.add_argument(
        "--reset", action="store_true",
        help="Move a completed/failed job back to pending before processing",
    )
    parser.add_argument(
        "--init-db", action="store_true", help="Create missing tables first"
    )
    args = parser.parse_args()
    sys.exit(asyncio.run(main(args.job_id, reset=args.reset, init_db=args.init_db)))


if __name__ == "__main__":
    cli()
