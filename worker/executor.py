"""
Job executor — runs a single job inside a worker thread.

Each worker thread calls executor.execute(job_data) and this method handles
the full lifecycle:

    1. Claim the record: pending/promoted → running, attempts + 1
       (cancelled or finished jobs are dropped here, even if Redis still had them)
    2. Find the handler in the JobRegistry
    3. Call handler.run(payload, context) with a time limit
    4. {"success": False}  → FAILED, dead-letter, no retry
       anything else       → COMPLETED, result stored
       exception / timeout → RetryHandler (retry with backoff or dead-letter)

Every database operation uses a SYNC session because this runs in a thread,
not in the async event loop. This is why models/base.py has two engines.

Thread safety:
- Each execute() call gets its OWN database session (created and closed within)
- Handlers are stateless apart from their injected collaborators
- Redis clients are thread-safe
So multiple threads can call execute() simultaneously without locks.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout

from redis import Redis
from sqlalchemy.orm import Session

from config.settings import settings
from jobs.base import JobContext
from jobs.registry import JobRegistry
from scheduler.exceptions import UnknownJobError
from scheduler.store import JobStore
from worker.retry import RetryHandler

logger = logging.getLogger(__name__)


class JobExecutor:

    def __init__(
        self,
        db_session_factory,
        redis_client: Redis,
        registry: JobRegistry,
        store: JobStore | None = None,
        timeout: float = settings.JOB_TIMEOUT_SECONDS,
        handler_threads: int = settings.WORKER_POOL_SIZE * 2,
    ):
        self._db_session_factory = db_session_factory
        self._registry = registry
        self._store = store or JobStore()
        self._retry_handler = RetryHandler(redis_client, self._store)
        self.timeout = timeout
        # Handlers run here so a hung handler can be abandoned after `timeout`
        self._handler_pool = ThreadPoolExecutor(
            max_workers=handler_threads, thread_name_prefix="job-handler"
        )

    def shutdown(self) -> None:
        self._handler_pool.shutdown(wait=False, cancel_futures=True)

    def execute(self, job_data: dict) -> dict:
        """
        Execute a single job. Called by WorkerPool from a thread.

        Args:
            job_data: dict popped from the Redis ready set, containing
                      job_id, job_name, payload, etc.

        Returns:
            dict with execution status (for logging/debugging, not stored)
        """
        job_id = job_data["job_id"]

        session: Session = self._db_session_factory()
        try:
            # ── Step 1: Claim ───────────────────────────────────
            record = self._store.claim(session, job_id)
            if record is None:
                logger.info(f"Job {job_id} is no longer claimable, skipping")
                return {"status": "skipped", "job_id": job_id}

            job_name = record.job_name
            context = JobContext(job_id=str(record.id), job_name=job_name, attempt=record.attempts)

            # ── Step 2: Find handler ────────────────────────────
            try:
                handler = self._registry.get(job_name)
            except UnknownJobError as e:
                logger.error(f"Job {job_id}: {e}")
                self._retry_handler.dead_letter(session, record, str(e))
                return {"status": "failed", "job_id": job_id, "error": str(e)}

            # ── Step 3: Run with a time limit ───────────────────
            start_time = time.monotonic()
            future = self._handler_pool.submit(handler.run, record.payload, context)
            try:
                result = future.result(timeout=self.timeout)
            except FutureTimeout:
                future.cancel()
                error = f"Timed out after {self.timeout:.0f}s"
                logger.error(f"Job {job_id} [{job_name}] {error.lower()}")
                self._retry_handler.handle_failure(job_id, error, session)
                return {"status": "failed", "job_id": job_id, "error": error}
            except Exception as e:
                session.rollback()
                logger.error(f"Job {job_id} [{job_name}] failed: {e}", exc_info=True)
                self._retry_handler.handle_failure(job_id, str(e), session)
                return {"status": "failed", "job_id": job_id, "error": str(e)}
            elapsed = time.monotonic() - start_time

            # ── Step 4: Record the outcome ──────────────────────
            result = result if isinstance(result, dict) else {"value": result}
            if result.get("success") is False:
                error = result.get("error") or "Handler reported failure"
                logger.error(f"Job {job_id} [{job_name}] failed permanently: {error}")
                self._retry_handler.dead_letter(session, record, error, result)
                return {"status": "failed", "job_id": job_id, "error": error}

            self._store.mark_completed(
                session, job_id, {**result, "execution_time_sec": round(elapsed, 3)}
            )
            logger.info(f"Job {job_id} [{job_name}] completed in {elapsed:.3f}s")
            return {"status": "completed", "job_id": job_id}

        finally:
            # Always close the session, even after a handler error
            session.close()
