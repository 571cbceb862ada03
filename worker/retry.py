"""
Retry handler — decides what happens when a job fails.

Two outcomes:
1. attempts < max_attempts → back to PENDING with run_at pushed out by
   RETRY_BACKOFF_BASE ** attempts seconds (2s, 4s, 8s, 16s with the defaults)
2. attempts >= max_attempts → FAILED, pushed to the dead-letter queue

The attempt was already counted when the worker claimed the job, so
`attempts` here is the number of executions that have happened.

Why reset to PENDING instead of re-enqueuing in Redis directly?
Because the promoter already scans for pending jobs entering its window.
Setting the record back to pending with a later run_at reuses that path:
the retry is as durable as any other scheduled job.

Handlers that return {"success": False} are not retried at all; the
executor sends them straight to dead_letter().
"""

import json
import logging
from datetime import timedelta

from redis import Redis
from redis.exceptions import RedisError
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from config.settings import settings
from models.base import utcnow
from models.job import JobRecord
from scheduler.dispatcher import FastDispatcher
from scheduler.store import JobStore, as_uuid

logger = logging.getLogger(__name__)


class RetryHandler:

    def __init__(
        self,
        redis_client: Redis,
        store: JobStore | None = None,
        backoff_base: float = settings.RETRY_BACKOFF_BASE,
    ):
        self._redis = redis_client
        self._store = store or JobStore()
        self.backoff_base = backoff_base

    def handle_failure(self, job_id: str, error_msg: str, session: Session) -> None:
        """
        Called by JobExecutor when a handler raises or times out.

        Args:
            job_id: the UUID of the failed job
            error_msg: the exception message
            session: an open DB session (caller closes it)
        """
        try:
            uid = as_uuid(job_id)
        except (ValueError, AttributeError):
            logger.warning(f"Invalid job_id format: {job_id}")
            return

        job = session.get(JobRecord, uid, populate_existing=True)
        if job is None:
            logger.warning(f"Job {job_id} not found in DB during retry handling")
            return

        if job.attempts < job.max_attempts:
            # ── Retry: send back to PENDING with backoff ────────
            delay = self.backoff_base ** job.attempts
            run_at = utcnow() + timedelta(seconds=delay)
            try:
                self._store.schedule_retry(session, uid, error_msg, run_at)
            except IntegrityError:
                # A successor with the same identity is already waiting
                session.rollback()
                self.dead_letter(session, job, f"{error_msg} (superseded, not retried)")
                return
            logger.info(
                f"Job {job_id} [{job.job_name}] will be retried in {delay:.0f}s "
                f"({job.attempts}/{job.max_attempts})"
            )
        else:
            # ── Exhausted: dead-letter queue ────────────────────
            self.dead_letter(session, job, error_msg)
            logger.warning(
                f"Job {job_id} [{job.job_name}] exhausted its {job.max_attempts} attempts, "
                f"moved to dead-letter queue"
            )

    def dead_letter(
        self, session: Session, job: JobRecord, error_msg: str, result: dict | None = None
    ) -> None:
        """Mark the job FAILED and record it on the Redis dead-letter list."""
        job_id, job_name, attempts = str(job.id), job.job_name, job.attempts
        payload = job.payload
        self._store.mark_failed(session, job_id, error_msg, result)

        dlq_entry = json.dumps({
            "job_id": job_id,
            "job_name": job_name,
            "payload": payload,
            "error": error_msg,
            "attempts": attempts,
            "failed_at": utcnow().isoformat(),
        })
        try:
            self._redis.rpush(FastDispatcher.DLQ_KEY, dlq_entry)
        except RedisError as e:
            # The record is FAILED in the database either way
            logger.error(f"Could not push job {job_id} to the dead-letter queue: {e}")
