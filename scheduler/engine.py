"""
Scheduler — the one object callers use to schedule work.

    scheduler.enqueue("refreshRecurringBuffer", {"userId": "..."}, run_at=...)

Each call:
    1. Persists the job in its own session (JobStore, dedup applied)
    2. Commits, so the job survives whatever happens next
    3. Offers it to the promoter for near-term execution

The Scheduler is constructed once per process (worker/main.py, api/main.py)
and passed to whoever needs it; there is no module-level queue handle.
Processes that shut down leave in-flight jobs promoted or running, and the
next promoter scan recovers them from the database.
"""

import logging
from dataclasses import dataclass
from datetime import datetime

from models.enums import DispatchOutcome, JobStatus
from models.job import JobRecord
from scheduler.promoter import QueuePromoter
from scheduler.store import JobStore, as_uuid

logger = logging.getLogger(__name__)


@dataclass
class EnqueueResult:
    success: bool
    skipped: bool
    reason: str | None = None
    job_id: str | None = None
    dispatch: DispatchOutcome | None = None


class Scheduler:

    def __init__(
        self,
        db_session_factory,
        promoter: QueuePromoter | None = None,
        store: JobStore | None = None,
    ):
        self._db_session_factory = db_session_factory
        self._promoter = promoter
        self._store = store or JobStore()

    @property
    def store(self) -> JobStore:
        return self._store

    def enqueue(
        self,
        job_name: str,
        payload: dict,
        *,
        run_at: datetime | None = None,
        priority: int = 0,
        max_attempts: int | None = None,
        exclude_job_id=None,
    ) -> EnqueueResult:
        """
        Schedule a job. Duplicates of an outstanding job are skipped, not errors.

        Raises JobPersistenceError only when the job could not be stored.
        Redis trouble is reported through `dispatch`, never raised.
        """
        job_name = getattr(job_name, "value", job_name)
        session = self._db_session_factory()
        try:
            record, skipped = self._store.enqueue(
                session,
                job_name,
                payload,
                run_at=run_at,
                priority=priority,
                max_attempts=max_attempts,
                exclude_job_id=exclude_job_id,
            )
            if skipped:
                return EnqueueResult(
                    success=True,
                    skipped=True,
                    reason="duplicate",
                    job_id=str(record.id) if record is not None else None,
                )

            if self._promoter is not None:
                dispatch = self._promoter.submit_for_near_term_execution(record, session)
            else:
                dispatch = DispatchOutcome.SCHEDULED

            logger.info(
                f"Job {record.id} [{job_name}] enqueued for {record.run_at.isoformat()} "
                f"({dispatch.value})"
            )
            return EnqueueResult(
                success=True, skipped=False, job_id=str(record.id), dispatch=dispatch
            )
        finally:
            session.close()

    def expedite(self, job_id, priority: int) -> DispatchOutcome | None:
        """
        Move a pending job's run_at to now and offer it for execution.

        Returns None when the job is not pending (already promoted, running
        or finished), in which case it needs no help.
        """
        session = self._db_session_factory()
        try:
            record = self._store.expedite(session, job_id, priority)
            if record is None:
                return None
            if self._promoter is None:
                return DispatchOutcome.SCHEDULED
            dispatch = self._promoter.submit_for_near_term_execution(record, session)
            logger.info(f"Job {job_id} [{record.job_name}] expedited ({dispatch.value})")
            return dispatch
        finally:
            session.close()

    def reschedule_waiting(self, job_id, run_at: datetime) -> datetime | None:
        """
        Point a waiting job at `run_at` and return the time it will now run.

        A pending job is moved. A promoted job is already on its way to a
        worker and keeps its own run_at. Anything else returns None.
        """
        session = self._db_session_factory()
        try:
            record = self._store.reschedule(session, job_id, run_at)
            if record is not None:
                if self._promoter is not None:
                    self._promoter.submit_for_near_term_execution(record, session)
                logger.info(f"Job {job_id} [{record.job_name}] rescheduled for {run_at.isoformat()}")
                return record.run_at

            record = session.get(JobRecord, as_uuid(job_id), populate_existing=True)
            if record is not None and record.status == JobStatus.PROMOTED.value:
                return record.run_at
            return None
        finally:
            session.close()

    # ── Operator actions (used by the API and maintenance scripts) ──

    def cancel(self, job_id) -> bool:
        session = self._db_session_factory()
        try:
            cancelled = self._store.cancel(session, job_id)
        finally:
            session.close()
        if cancelled and self._promoter is not None:
            self._promoter.withdraw(job_id)
        return cancelled

    def retry(self, job_id) -> EnqueueResult | None:
        """Give a FAILED job a fresh attempt budget. None if it cannot be retried."""
        session = self._db_session_factory()
        try:
            record = self._store.retry(session, job_id)
            if record is None:
                return None
            dispatch = (
                self._promoter.submit_for_near_term_execution(record, session)
                if self._promoter is not None
                else DispatchOutcome.SCHEDULED
            )
            return EnqueueResult(success=True, skipped=False, job_id=str(record.id), dispatch=dispatch)
        finally:
            session.close()

    def cleanup(self, retention_days: int) -> int:
        session = self._db_session_factory()
        try:
            return self._store.cleanup(session, retention_days)
        finally:
            session.close()
