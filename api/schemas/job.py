"""
Pydantic schemas for the /jobs endpoints.

These are NOT database models — they define the HTTP API contract:
- JobCreate: what an operator sends to schedule a job by hand (request body)
- JobResponse: what we send back for a single job record
- JobListResponse: paginated list of job records
- JobStats: counts per status
- EnqueueResponse: outcome of scheduling (or retrying) a job

FastAPI validates incoming data against these automatically.
If someone sends an unknown job_name, FastAPI returns a 422 error before our code even runs.
"""

from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime
from uuid import UUID

from models.enums import DispatchOutcome, JobName


class JobCreate(BaseModel):
    """Request body for POST /jobs/."""

    job_name: JobName  # must be one of the registered job names
    payload: dict = Field(
        default_factory=dict,
        examples=[{"userId": "6f1c2e9a-1d3b-4c2a-9a47-5d0c1b7e8f21"}],
    )
    run_at: Optional[datetime] = Field(
        default=None,
        description="When to run (timezone-aware); defaults to now",
    )
    priority: int = Field(
        default=0,
        ge=0,
        le=10,
        description="Higher runs first among due jobs",
    )
    max_attempts: Optional[int] = Field(default=None, ge=1, le=20)


class JobResponse(BaseModel):
    """Response body for a single job record."""

    id: UUID
    job_name: str
    status: str
    payload: dict
    run_at: datetime
    priority: int
    attempts: int
    max_attempts: int
    last_error: Optional[str] = None
    result: Optional[dict] = None
    created_at: datetime
    promoted_at: Optional[datetime] = None
    last_attempt_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    # from_attributes=True tells Pydantic to read from SQLAlchemy model attributes
    # (e.g., job.status) instead of requiring a dict (e.g., {"status": "..."})
    model_config = {"from_attributes": True}


class JobListResponse(BaseModel):
    """Paginated list of jobs — returned by GET /jobs/."""

    jobs: list[JobResponse]
    total: int       # total matching jobs (ignoring pagination)
    page: int        # current page number
    page_size: int   # jobs per page


class JobStats(BaseModel):
    """Job counts per status — returned by GET /jobs/stats."""

    total_jobs: int
    pending: int
    promoted: int
    running: int
    completed: int
    failed: int
    cancelled: int
    overdue: int     # pending with run_at already in the past


class EnqueueResponse(BaseModel):
    success: bool
    skipped: bool
    reason: Optional[str] = None
    job_id: Optional[UUID] = None
    dispatch: Optional[DispatchOutcome] = None


class CleanupResponse(BaseModel):
    deleted: int
    retention_days: int
