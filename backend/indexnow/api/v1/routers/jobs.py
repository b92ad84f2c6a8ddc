# backend/indexnow/api/v1/routers/jobs.py
"""
Indexing Jobs API Router.

Endpoints for creating jobs, inspecting their progress, submissions and
audit log, and requesting processing or resumption.
"""

import logging
from typing import Callable, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import func, select

from ....core.database.models import IndexingJob, JobStatus
from ....core.indexing.job_queue import JobQueue
from ....core.indexing.quota_reset_service import QuotaResetService
from ....core.shared.database_service import DatabaseService
from ....core.shared.job_log_service import job_log_service
from ....dependencies import (
    get_broadcaster,
    get_database_service,
    get_job_enqueuer,
    get_owner_id,
)
from ..schemas import (
    JobActionResponse,
    JobCreateRequest,
    JobLogEventResponse,
    JobLogsResponse,
    JobResponse,
    JobsListResponse,
    SubmissionResponse,
    SubmissionsListResponse,
)

logger = logging.getLogger("indexnow.api.jobs")

router = APIRouter(prefix="/indexing/jobs", tags=["indexing-jobs"])


async def _get_owned_job(db: DatabaseService, job_id: UUID, owner_id: UUID) -> IndexingJob:
    async with db.get_session() as session:
        job = await session.get(IndexingJob, job_id)
    if job is None or job.owner_id != owner_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")
    return job


@router.post(
    "",
    response_model=JobResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create job",
    description="Create a pending indexing job from a URL list or a sitemap.",
)
async def create_job(
    request: JobCreateRequest,
    owner_id: UUID = Depends(get_owner_id),
    db: DatabaseService = Depends(get_database_service),
) -> JobResponse:
    async with db.get_session() as session:
        job = IndexingJob(
            owner_id=owner_id,
            name=request.name,
            kind=request.kind.value,
            status=JobStatus.PENDING.value,
            source_data=request.source_data(),
            total_urls=len(request.urls or []),
            schedule_type=request.schedule_type.value,
            next_run_at=request.next_run_at(),
        )
        session.add(job)
        await session.flush()
        await session.refresh(job)
        response = JobResponse.model_validate(job)

    logger.info(
        f"Created {request.kind.value} job {response.id} for owner {owner_id} "
        f"({request.schedule_type.value})"
    )
    return response


@router.get(
    "",
    response_model=JobsListResponse,
    summary="List jobs",
    description="List the owner's jobs, newest first.",
)
async def list_jobs(
    status_filter: Optional[JobStatus] = Query(None, alias="status", description="Filter by status"),
    limit: int = Query(50, ge=1, le=500, description="Maximum results to return"),
    offset: int = Query(0, ge=0, description="Number of results to skip"),
    owner_id: UUID = Depends(get_owner_id),
    db: DatabaseService = Depends(get_database_service),
) -> JobsListResponse:
    conditions = [IndexingJob.owner_id == owner_id]
    if status_filter is not None:
        conditions.append(IndexingJob.status == status_filter.value)

    async with db.get_session() as session:
        jobs = (await session.execute(
            select(IndexingJob)
            .where(*conditions)
            .order_by(IndexingJob.created_at.desc())
            .offset(offset)
            .limit(limit)
        )).scalars().all()
        total = (await session.execute(
            select(func.count(IndexingJob.id)).where(*conditions)
        )).scalar() or 0

        return JobsListResponse(
            items=[JobResponse.model_validate(j) for j in jobs],
            total=total,
            limit=limit,
            offset=offset,
        )


@router.get("/{job_id}", response_model=JobResponse, summary="Get job")
async def get_job(
    job_id: UUID,
    owner_id: UUID = Depends(get_owner_id),
    db: DatabaseService = Depends(get_database_service),
) -> JobResponse:
    job = await _get_owned_job(db, job_id, owner_id)
    return JobResponse.model_validate(job)


@router.get(
    "/{job_id}/submissions",
    response_model=SubmissionsListResponse,
    summary="List submissions",
    description="Per-URL submission records, optionally restricted to one run.",
)
async def list_submissions(
    job_id: UUID,
    run_number: Optional[int] = Query(None, ge=1, description="Restrict to one run"),
    submission_status: Optional[str] = Query(None, alias="status", description="pending, submitted, failed"),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    owner_id: UUID = Depends(get_owner_id),
    db: DatabaseService = Depends(get_database_service),
    broadcaster=Depends(get_broadcaster),
) -> SubmissionsListResponse:
    await _get_owned_job(db, job_id, owner_id)
    queue = JobQueue(db=db, broadcaster=broadcaster)
    submissions = await queue.list_submissions(
        job_id, run_number=run_number, status=submission_status, limit=limit, offset=offset
    )
    return SubmissionsListResponse(
        items=[SubmissionResponse.model_validate(s) for s in submissions],
        limit=limit,
        offset=offset,
    )


@router.get("/{job_id}/logs", response_model=JobLogsResponse, summary="Job audit log")
async def get_job_logs(
    job_id: UUID,
    event_type: Optional[str] = Query(None, description="Filter by event type"),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    owner_id: UUID = Depends(get_owner_id),
    db: DatabaseService = Depends(get_database_service),
) -> JobLogsResponse:
    await _get_owned_job(db, job_id, owner_id)
    async with db.get_session() as session:
        events = await job_log_service.list_events(
            session, job_id, event_type=event_type, limit=limit, offset=offset
        )
        total = await job_log_service.count_events(session, job_id, event_type=event_type)
        return JobLogsResponse(
            items=[JobLogEventResponse.model_validate(e) for e in events],
            total=total,
        )


@router.post(
    "/{job_id}/process",
    response_model=JobActionResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Process job",
    description=(
        "Queue a job for processing. A completed job starts a new run. A failed "
        "job resumes its pending URLs if any remain, otherwise it starts a new "
        "run. Running and paused jobs are rejected."
    ),
)
async def process_job(
    job_id: UUID,
    owner_id: UUID = Depends(get_owner_id),
    db: DatabaseService = Depends(get_database_service),
    broadcaster=Depends(get_broadcaster),
    enqueue: Callable = Depends(get_job_enqueuer),
) -> JobActionResponse:
    job = await _get_owned_job(db, job_id, owner_id)

    if job.status == JobStatus.RUNNING.value:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Job is already running")
    if job.status == JobStatus.PAUSED.value:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Job is paused for quota; use the resume endpoint",
        )

    if job.status != JobStatus.PENDING.value:
        queue = JobQueue(db=db, broadcaster=broadcaster)
        await queue.set_status(
            job_id, JobStatus.PENDING, error_message=None, locked_at=None, locked_by=None
        )
        await broadcaster.job_status_changed(owner_id, job_id, {"status": JobStatus.PENDING.value})

    task_id = enqueue(job_id)
    logger.info(f"Queued job {job_id} for processing (task {task_id})")
    return JobActionResponse(
        job_id=job_id,
        status=JobStatus.PENDING.value,
        message="Job queued for processing",
        task_id=task_id,
    )


@router.post(
    "/{job_id}/resume",
    response_model=JobActionResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Resume paused job",
)
async def resume_job(
    job_id: UUID,
    owner_id: UUID = Depends(get_owner_id),
    db: DatabaseService = Depends(get_database_service),
    broadcaster=Depends(get_broadcaster),
    enqueue: Callable = Depends(get_job_enqueuer),
) -> JobActionResponse:
    await _get_owned_job(db, job_id, owner_id)

    resumed = await QuotaResetService(db=db, broadcaster=broadcaster).resume_job(job_id)
    if not resumed:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Job is not paused")

    task_id = enqueue(job_id)
    return JobActionResponse(
        job_id=job_id,
        status=JobStatus.PENDING.value,
        message="Job resumed and queued for processing",
        task_id=task_id,
    )
