"""
Durable Job Store — the source of truth for every scheduled job.

Everything that must survive a restart lives in the job_records table:
jobs due in six weeks, jobs Redis lost, jobs a crashed worker was halfway
through. Redis is only ever a cache of the near-term slice.

Status machine:
    pending ──promote──> promoted ──claim──> running ──> completed
       ^                     │                  │   └──> failed (fatal or exhausted)
       │                     │                  └──> pending (retry with backoff)
       └──── recover_stale ──┴──────────────────┘
    pending/promoted ──cancel──> cancelled

Every transition is a conditional UPDATE (WHERE status IN ...), so the
promoter, several workers and an operator can race on the same row and
exactly one of them wins.

All methods take the caller's session and commit their own change, the
same way the retry handler does; callers that need a change to land in
their own transaction pass commit=False.
"""

import json
import logging
import uuid
from datetime import datetime, timedelta

from sqlalchemy import delete, func, or_, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from config.settings import settings
from models.base import utcnow
from models.enums import (
    ACTIVE_JOB_STATUSES,
    CLAIMABLE_JOB_STATUSES,
    TERMINAL_JOB_STATUSES,
    JobStatus,
)
from models.job import JobRecord
from scheduler.dedup import dedup_key, stable_dumps
from scheduler.exceptions import JobPersistenceError

logger = logging.getLogger(__name__)

_ACTIVE = [s.value for s in ACTIVE_JOB_STATUSES]
_CLAIMABLE = [s.value for s in CLAIMABLE_JOB_STATUSES]
_TERMINAL = [s.value for s in TERMINAL_JOB_STATUSES]


def as_uuid(job_id) -> uuid.UUID:
    return job_id if isinstance(job_id, uuid.UUID) else uuid.UUID(str(job_id))


class JobStore:

    def __init__(self, default_max_attempts: int = settings.DEFAULT_MAX_ATTEMPTS):
        self.default_max_attempts = default_max_attempts

    # ── Submission ──────────────────────────────────────────────

    def enqueue(
        self,
        session: Session,
        job_name: str,
        payload: dict,
        run_at: datetime | None = None,
        priority: int = 0,
        max_attempts: int | None = None,
        exclude_job_id=None,
    ) -> tuple[JobRecord | None, bool]:
        """
        Persist a job unless an identical one is still outstanding.

        Returns (record, skipped). When skipped, record is the outstanding
        duplicate (or None if it finished in the meantime).

        exclude_job_id lets a running job schedule its own successor: the
        running record shares the successor's dedup key and would otherwise
        block it.
        """
        job_name = getattr(job_name, "value", job_name)
        key = dedup_key(job_name, payload)

        try:
            existing = self._find_active(session, key, exclude_job_id)
            if existing is not None:
                logger.info(
                    f"Job {job_name} skipped: duplicate of {existing.id} ({existing.status})"
                )
                return existing, True

            job = JobRecord(
                job_name=job_name,
                dedup_key=key,
                payload=payload,
                run_at=run_at or utcnow(),
                priority=priority,
                max_attempts=max_attempts or self.default_max_attempts,
                status=JobStatus.PENDING.value,
            )
            session.add(job)
            session.commit()

        except IntegrityError:
            # Lost an insert race against an identical submission
            session.rollback()
            logger.info(f"Job {job_name} skipped: concurrent duplicate for key {key}")
            return self._find_active(session, key, exclude_job_id), True

        except SQLAlchemyError as e:
            session.rollback()
            raise JobPersistenceError(f"Could not persist job {job_name}: {e}") from e

        logger.debug(f"Job {job.id} ({job_name}) persisted, run_at={job.run_at.isoformat()}")
        return job, False

    def _find_active(self, session: Session, key: str, exclude_job_id=None) -> JobRecord | None:
        query = session.query(JobRecord).filter(
            JobRecord.dedup_key == key,
            JobRecord.status.in_(_ACTIVE),
        )
        if exclude_job_id is not None:
            query = query.filter(JobRecord.id != as_uuid(exclude_job_id))
        return query.order_by(JobRecord.created_at).first()

    # ── Transitions ─────────────────────────────────────────────

    def _transition(self, session: Session, job_id, from_statuses, commit=True, **values) -> bool:
        result = session.execute(
            update(JobRecord)
            .where(JobRecord.id == as_uuid(job_id), JobRecord.status.in_(from_statuses))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if commit:
            session.commit()
        return result.rowcount > 0

    def mark_promoted(self, session: Session, job_id) -> bool:
        return self._transition(
            session,
            job_id,
            [JobStatus.PENDING.value],
            status=JobStatus.PROMOTED.value,
            promoted_at=utcnow(),
        )

    def claim(self, session: Session, job_id) -> JobRecord | None:
        """
        Atomically move a job to RUNNING and count the attempt.

        Returns None when the job is no longer claimable: cancelled while it
        sat in Redis, already finished, or claimed by another worker.
        """
        claimed = self._transition(
            session,
            job_id,
            _CLAIMABLE,
            status=JobStatus.RUNNING.value,
            attempts=JobRecord.attempts + 1,
            last_attempt_at=utcnow(),
        )
        if not claimed:
            return None
        return session.get(JobRecord, as_uuid(job_id), populate_existing=True)

    def mark_completed(self, session: Session, job_id, result: dict | None = None) -> bool:
        return self._transition(
            session,
            job_id,
            [JobStatus.RUNNING.value],
            status=JobStatus.COMPLETED.value,
            result=_json_safe(result),
            completed_at=utcnow(),
        )

    def mark_failed(
        self, session: Session, job_id, error: str, result: dict | None = None
    ) -> bool:
        return self._transition(
            session,
            job_id,
            [JobStatus.RUNNING.value],
            status=JobStatus.FAILED.value,
            last_error=error,
            result=_json_safe(result),
            completed_at=utcnow(),
        )

    def schedule_retry(self, session: Session, job_id, error: str, run_at: datetime) -> bool:
        return self._transition(
            session,
            job_id,
            [JobStatus.RUNNING.value],
            status=JobStatus.PENDING.value,
            last_error=error,
            run_at=run_at,
        )

    def expedite(self, session: Session, job_id, priority: int) -> JobRecord | None:
        """Pull a pending job forward to run now at the given priority."""
        moved = self._transition(
            session,
            job_id,
            [JobStatus.PENDING.value],
            run_at=utcnow(),
            priority=priority,
        )
        if not moved:
            return None
        return session.get(JobRecord, as_uuid(job_id), populate_existing=True)

    def reschedule(self, session: Session, job_id, run_at: datetime) -> JobRecord | None:
        moved = self._transition(session, job_id, [JobStatus.PENDING.value], run_at=run_at)
        if not moved:
            return None
        return session.get(JobRecord, as_uuid(job_id), populate_existing=True)

    def cancel(self, session: Session, job_id, commit: bool = True) -> bool:
        cancelled = self._transition(
            session,
            job_id,
            _CLAIMABLE,
            commit=commit,
            status=JobStatus.CANCELLED.value,
            completed_at=utcnow(),
        )
        if cancelled:
            logger.info(f"Job {job_id} cancelled")
        return cancelled

    def cancel_by_dedup_key(
        self, session: Session, job_name: str, payload: dict, commit: bool = True
    ) -> list[uuid.UUID]:
        """Cancel every waiting job with the same identity as (job_name, payload)."""
        key = dedup_key(job_name, payload)
        job_ids = [
            row.id
            for row in session.query(JobRecord.id).filter(
                JobRecord.dedup_key == key,
                JobRecord.status.in_(_CLAIMABLE),
            )
        ]
        for job_id in job_ids:
            self.cancel(session, job_id, commit=False)
        if commit:
            session.commit()
        return job_ids

    def retry(self, session: Session, job_id) -> JobRecord | None:
        """Operator retry: put a FAILED job back to pending with a fresh attempt budget."""
        job = session.get(JobRecord, as_uuid(job_id), populate_existing=True)
        if job is None or job.status != JobStatus.FAILED.value:
            return None
        if self._find_active(session, job.dedup_key) is not None:
            logger.info(f"Job {job_id} not retried: an identical job is already outstanding")
            return None

        job.status = JobStatus.PENDING.value
        job.run_at = utcnow()
        job.attempts = 0
        job.last_error = None
        job.completed_at = None
        session.commit()
        logger.info(f"Job {job_id} marked for retry")
        return job

    # ── Queries used by the promoter and the operator API ───────

    def find_due(self, session: Session, horizon_end: datetime, limit: int) -> list[JobRecord]:
        return (
            session.query(JobRecord)
            .filter(
                JobRecord.status == JobStatus.PENDING.value,
                JobRecord.run_at <= horizon_end,
            )
            .order_by(JobRecord.priority.desc(), JobRecord.run_at)
            .limit(limit)
            .all()
        )

    def find_overdue(self, session: Session, now: datetime | None = None) -> list[JobRecord]:
        return (
            session.query(JobRecord)
            .filter(
                JobRecord.status == JobStatus.PENDING.value,
                JobRecord.run_at < (now or utcnow()),
            )
            .order_by(JobRecord.priority.desc(), JobRecord.run_at)
            .all()
        )

    def recover_stale(
        self, session: Session, max_age_seconds: int, now: datetime | None = None, limit: int = 100
    ) -> list[uuid.UUID]:
        """
        Return jobs stuck in PROMOTED or RUNNING to pending.

        PROMOTED jobs whose run_at passed long ago were lost by Redis;
        RUNNING jobs that have not finished long after their last attempt
        started belonged to a worker that died. Either way the promoter
        hands them out again (at-least-once delivery).

        A running job that already scheduled its own successor is cancelled
        instead, so the dedup key keeps a single waiting record.
        """
        cutoff = (now or utcnow()) - timedelta(seconds=max_age_seconds)
        stale = (
            session.query(JobRecord)
            .filter(
                or_(
                    (JobRecord.status == JobStatus.PROMOTED.value) & (JobRecord.run_at < cutoff),
                    (JobRecord.status == JobStatus.RUNNING.value)
                    & (JobRecord.last_attempt_at < cutoff),
                )
            )
            .limit(limit)
            .populate_existing()
            .all()
        )

        recovered = []
        for job in stale:
            successor = (
                session.query(JobRecord.id)
                .filter(
                    JobRecord.dedup_key == job.dedup_key,
                    JobRecord.id != job.id,
                    JobRecord.status.in_(_CLAIMABLE),
                )
                .first()
            )
            if successor is not None:
                job.last_error = f"Superseded by {successor.id} while stuck in {job.status}"
                job.status = JobStatus.CANCELLED.value
                job.completed_at = utcnow()
                continue

            logger.warning(f"Recovering stale job {job.id} ({job.job_name}) from {job.status}")
            job.status = JobStatus.PENDING.value
            recovered.append(job.id)

        session.commit()
        return recovered

    def cleanup(self, session: Session, retention_days: int, now: datetime | None = None) -> int:
        cutoff = (now or utcnow()) - timedelta(days=retention_days)
        result = session.execute(
            delete(JobRecord).where(
                JobRecord.status.in_(_TERMINAL),
                JobRecord.completed_at < cutoff,
            )
        )
        session.commit()
        logger.info(f"Cleaned up {result.rowcount} finished jobs older than {retention_days} days")
        return result.rowcount

    def stats(self, session: Session) -> dict[str, int]:
        rows = session.query(JobRecord.status, func.count(JobRecord.id)).group_by(JobRecord.status)
        counts = {status.value: 0 for status in JobStatus}
        counts.update({status: count for status, count in rows})
        return counts


def _json_safe(result: dict | None) -> dict | None:
    if result is None:
        return None
    return json.loads(stable_dumps(result))
