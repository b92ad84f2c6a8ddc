"""
Run the quota reset sweep once.

Reactivates service accounts exhausted on an earlier quota day and moves
paused jobs of their owners back to pending.

Usage:
    python -m indexnow.core.commands.quota_sweep [--dry-run] [--enqueue]

Options:
    --dry-run   Show what would change without writing
    --enqueue   Enqueue processing tasks for resumed jobs
"""

import argparse
import asyncio
import logging

from ...config import settings

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger("indexnow.commands.quota_sweep")


async def main(dry_run: bool = False, enqueue: bool = False) -> None:
    from ..indexing.quota_reset_service import QuotaResetService

    result = await QuotaResetService().sweep(dry_run=dry_run)

    prefix = "[DRY RUN] " if dry_run else ""
    logger.info(f"{prefix}Accounts reactivated: {len(result.reactivated_account_ids)}")
    for account_id in result.reactivated_account_ids:
        logger.info(f"  account {account_id}")
    logger.info(f"{prefix}Jobs resumed: {len(result.resumed_job_ids)}")
    for job_id in result.resumed_job_ids:
        logger.info(f"  job {job_id}")

    if enqueue and not dry_run:
        from ..tasks.indexing import process_indexing_job_task

        for job_id in result.resumed_job_ids:
            process_indexing_job_task.delay(str(job_id))
        logger.info(f"Enqueued {len(result.resumed_job_ids)} job(s)")


def cli() -> None:
    parser = argparse.ArgumentParser(description="Run the quota reset sweep once")
    parser.add_argument("--dry-run", action="store_true", help="Show changes without writing")
    parser.add_argument("--enqueue", action="store_true", help="Enqueue resumed jobs")
    args = parser.parse_args()
    asyncio.run(main(dry_run=args.dry_run, enqueue=args.enqueue))


if __name__ == "__main__":
    cli()
