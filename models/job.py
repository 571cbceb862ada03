"""
JobRecord ORM model — maps to the "job_records" table in PostgreSQL.

This table is the single source of truth for scheduled work. Redis only
ever holds a copy of jobs that are due soon; if Redis is flushed or
restarted, the promoter rebuilds it from here.

Key design decisions:
- UUID primary key, assigned by the store
- JSON payload/result: each job name interprets its own payload
- dedup_key: sha256 identity of (job_name, payload); the partial unique
  index guarantees one waiting (pending/promoted) record per key, the store
  additionally refuses duplicates of a running record
- attempts counts executions, bumped when a worker claims the job
"""

import uuid
from datetime import datetime

from sqlalchemy import JSON, Index, Integer, String, Text, Uuid, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from models.base import Base, UTCDateTime, utcnow
from models.enums import JobStatus

JsonColumn = JSON().with_variant(JSONB(), "postgresql")

_WAITING = "status IN ('pending', 'promoted')"


class JobRecord(Base):
    __tablename__ = "job_records"
    __table_args__ = (
        Index(
            "uq_job_records_waiting_dedup_key",
            "dedup_key",
            unique=True,
            postgresql_where=text(_WAITING),
            sqlite_where=text(_WAITING),
        ),
        Index("ix_job_records_status_run_at", "status", "run_at"),
    )

    # ── Identity ────────────────────────────────────────────────
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    job_name: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    dedup_key: Mapped[str] = mapped_column(String(200), nullable=False, index=True)
    payload: Mapped[dict] = mapped_column(JsonColumn, default=dict, nullable=False)

    # ── Scheduling fields ───────────────────────────────────────
    run_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    priority: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default=JobStatus.PENDING.value, nullable=False, index=True
    )

    # ── Retry tracking ──────────────────────────────────────────
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_attempts: Mapped[int] = mapped_column(Integer, default=5, nullable=False)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    result: Mapped[dict | None] = mapped_column(JsonColumn, nullable=True)

    # ── Lifecycle timestamps ────────────────────────────────────
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    promoted_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    last_attempt_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    def __repr__(self) -> str:
        return f"<JobRecord {self.id} [{self.job_name}] {self.status}>"
