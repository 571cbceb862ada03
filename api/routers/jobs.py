"""
Job record endpoints — the operator's view of the durable job store.

POST /jobs/                → Schedule a job by hand (dedup applies)
GET  /jobs/                → List jobs with filtering + pagination
GET  /jobs/stats           → Counts per status
GET  /jobs/overdue         → Pending jobs whose run_at has passed
GET  /jobs/{job_id}        → Get a single job by ID
POST /jobs/{job_id}/cancel → Cancel a pending/promoted job
POST /jobs/{job_id}/retry  → Re-run a failed job with a fresh attempt budget
POST /jobs/cleanup         → Delete finished jobs past the retention period

Reads use the async session. Writes go through the Scheduler, which runs
on sync sessions, so they are pushed onto the threadpool with
run_in_threadpool to keep the event loop free.
"""

from uuid import UUID
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func

from api.dependencies import get_db, get_scheduler
from api.schemas.job import (
    CleanupResponse,
    EnqueueResponse,
    JobCreate,
    JobListResponse,
    JobResponse,
    JobStats,
)
from config.settings import settings
from models.base import utcnow
from models.job import JobRecord
from models.enums import JobStatus
from scheduler.engine import Scheduler

router = APIRouter(prefix="/jobs", tags=["jobs"])


@router.post("/", response_model=EnqueueResponse, status_code=201)
async def create_job(
    job_in: JobCreate,
    job_scheduler: Scheduler = Depends(get_scheduler),
) -> EnqueueResponse:
    """
    Schedule a job.

    Identical outstanding jobs are not duplicated: the response says
    skipped=true and points at the existing record.
    """
    if job_in.run_at is not None and job_in.run_at.tzinfo is None:
        raise HTTPException(status_code=422, detail="run_at must include a timezone")

    result = await run_in_threadpool(
        job_scheduler.enqueue,
        job_in.job_name.value,
        job_in.payload,
        run_at=job_in.run_at,
        priority=job_in.priority,
        max_attempts=job_in.max_attempts,
    )
    return EnqueueResponse(**vars(result))


@router.get("/", response_model=JobListResponse)
async def list_jobs(
    status: Optional[JobStatus] = Query(None, description="Filter by job status"),
    job_name: Optional[str] = Query(None, description="Filter by job name"),
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(20, ge=1, le=100, description="Jobs per page"),
    db: AsyncSession = Depends(get_db),
) -> JobListResponse:
    """
    List jobs with optional filtering and pagination.

    Two queries: one counts the matching rows, one fetches the page
    (OFFSET/LIMIT, newest first).
    """
    conditions = []
    if status:
        conditions.append(JobRecord.status == status.value)
    if job_name:
        conditions.append(JobRecord.job_name == job_name)

    total = (await db.execute(select(func.count(JobRecord.id)).where(*conditions))).scalar() or 0

    offset = (page - 1) * page_size
    query = (
        select(JobRecord)
        .where(*conditions)
        .order_by(JobRecord.created_at.desc())
        .offset(offset)
        .limit(page_size)
    )
    jobs = (await db.execute(query)).scalars().all()

    return JobListResponse(
        jobs=[JobResponse.model_validate(j) for j in jobs],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get("/stats", response_model=JobStats)
async def get_job_stats(
    db: AsyncSession = Depends(get_db),
) -> JobStats:
    """
    Counts per status plus the overdue count, in a single query using
    conditional aggregation (COUNT + FILTER).
    """
    def count_status(status: JobStatus):
        return func.count(JobRecord.id).filter(JobRecord.status == status.value).label(status.value)

    query = select(
        func.count(JobRecord.id).label("total"),
        *(count_status(status) for status in JobStatus),
        func.count(JobRecord.id)
        .filter(JobRecord.status == JobStatus.PENDING.value, JobRecord.run_at < utcnow())
        .label("overdue"),
    )
    row = (await db.execute(query)).one()

    return JobStats(
        total_jobs=row.total,
        pending=row.pending,
        promoted=row.promoted,
        running=row.running,
        completed=row.completed,
        failed=row.failed,
        cancelled=row.cancelled,
        overdue=row.overdue,
    )


@router.get("/overdue", response_model=list[JobResponse])
async def list_overdue_jobs(
    limit: int = Query(100, ge=1, le=1000),
    db: AsyncSession = Depends(get_db),
) -> list[JobResponse]:
    """
    Pending jobs that should already have run.

    A few seconds of lag is normal (promotion interval); a long list here
    means the worker is down or Redis is unreachable.
    """
    query = (
        select(JobRecord)
        .where(JobRecord.status == JobStatus.PENDING.value, JobRecord.run_at < utcnow())
        .order_by(JobRecord.priority.desc(), JobRecord.run_at)
        .limit(limit)
    )
    jobs = (await db.execute(query)).scalars().all()
    return [JobResponse.model_validate(j) for j in jobs]


@router.post("/cleanup", response_model=CleanupResponse)
async def cleanup_jobs(
    retention_days: int = Query(settings.JOB_RETENTION_DAYS, ge=0),
    job_scheduler: Scheduler = Depends(get_scheduler),
) -> CleanupResponse:
    """Delete completed, failed and cancelled jobs that finished before the retention window."""
    deleted = await run_in_threadpool(job_scheduler.cleanup, retention_days)
    return CleanupResponse(deleted=deleted, retention_days=retention_days)


@router.get("/{job_id}", response_model=JobResponse)
async def get_job(
    job_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> JobResponse:
    """Get a single job by its UUID."""
    job = await _get_or_404(db, job_id)
    return JobResponse.model_validate(job)


@router.post("/{job_id}/cancel", response_model=JobResponse)
async def cancel_job(
    job_id: UUID,
    db: AsyncSession = Depends(get_db),
    job_scheduler: Scheduler = Depends(get_scheduler),
) -> JobResponse:
    """
    Cancel a job.

    Only pending and promoted jobs can be cancelled. Once a job is running
    it is too late. A promoted job's Redis copy is withdrawn; if that fails
    the worker still refuses to claim it.

    We don't delete the row, so it still shows up in stats and history.
    """
    job = await _get_or_404(db, job_id)
    if not await run_in_threadpool(job_scheduler.cancel, job_id):
        raise HTTPException(
            status_code=409,
            detail=f"Cannot cancel job in {job.status} state. Only pending/promoted jobs can be cancelled.",
        )
    await db.refresh(job)
    return JobResponse.model_validate(job)


@router.post("/{job_id}/retry", response_model=EnqueueResponse)
async def retry_job(
    job_id: UUID,
    db: AsyncSession = Depends(get_db),
    job_scheduler: Scheduler = Depends(get_scheduler),
) -> EnqueueResponse:
    """Put a FAILED job back to pending with its attempt counter reset."""
    job = await _get_or_404(db, job_id)
    result = await run_in_threadpool(job_scheduler.retry, job_id)
    if result is None:
        raise HTTPException(
            status_code=409,
            detail=f"Cannot retry job in {job.status} state, or an identical job is already outstanding.",
        )
    return EnqueueResponse(**vars(result))


async def _get_or_404(db: AsyncSession, job_id: UUID) -> JobRecord:
    job = (await db.execute(select(JobRecord).where(JobRecord.id == job_id))).scalar_one_or_none()
    if job is None:
        raise HTTPException(status_code=404, detail=f"Job {job_id} not found")
    return job
