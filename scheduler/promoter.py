"""
Queue Promoter — moves jobs from the durable store into Redis as they come due.

Two tiers:

         Postgres (job_records)                         Redis
    ┌─────────────────────────────┐   promote    ┌──────────────────┐
    │ pending, run_at in 6 weeks  │              │                  │
    │ pending, run_at in 20 min ──│─────────────>│ delayed / ready  │──> workers
    │ promoted (lost by Redis?) ──│── recover ─┐ │                  │
    └─────────────────────────────┘            │ └──────────────────┘
                  ^────────────────────────────┘

A buffer refresh scheduled six weeks out must survive a Redis restart, so
it waits in Postgres until its run_at enters the promotion window (default
60 minutes). Only then is it copied into Redis.

submit_for_near_term_execution() is the fast path used right after a job is
persisted; promote_due() is the periodic scan run by a daemon thread inside
the worker process. Redis being down is never a job failure: the record
simply stays pending and the next scan tries again.
"""

import logging
import threading
from datetime import datetime, timedelta

from redis.exceptions import RedisError
from sqlalchemy.orm import Session

from config.settings import settings
from models.base import utcnow
from models.enums import DispatchOutcome
from models.job import JobRecord
from scheduler.dispatcher import FastDispatcher
from scheduler.store import JobStore

logger = logging.getLogger(__name__)


class QueuePromoter:

    def __init__(
        self,
        dispatcher: FastDispatcher | None,
        db_session_factory,
        store: JobStore | None = None,
        horizon: timedelta = timedelta(minutes=settings.PROMOTION_WINDOW_MINUTES),
        interval: float = settings.PROMOTION_INTERVAL_SECONDS,
        batch_size: int = settings.PROMOTION_BATCH_SIZE,
        stale_after_seconds: int = settings.STALE_JOB_SECONDS,
    ):
        self._dispatcher = dispatcher
        self._db_session_factory = db_session_factory
        self._store = store or JobStore()
        self.horizon = horizon
        self.interval = interval
        self.batch_size = batch_size
        self.stale_after_seconds = stale_after_seconds

        # One scan at a time; a tick that finds the lock held just skips
        self._scan_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    # ── Fast path ───────────────────────────────────────────────

    def submit_for_near_term_execution(
        self, record: JobRecord, session: Session | None = None
    ) -> DispatchOutcome:
        """
        Hand a freshly persisted job to Redis if it is due soon.

        IMMEDIATE  → in Redis now (delayed until its run_at), record promoted
        SCHEDULED  → run_at beyond the horizon, record left pending
        DEFERRED   → Redis unreachable, record left pending
        """
        if self._dispatcher is None:
            return DispatchOutcome.DEFERRED

        if record.run_at > utcnow() + self.horizon:
            return DispatchOutcome.SCHEDULED

        try:
            self._dispatcher.submit(record)
        except RedisError as e:
            logger.warning(f"Redis unavailable, job {record.id} deferred to the next scan: {e}")
            return DispatchOutcome.DEFERRED

        self._mark_promoted(record.id, session)
        return DispatchOutcome.IMMEDIATE

    def _mark_promoted(self, job_id, session: Session | None) -> None:
        if session is not None:
            self._store.mark_promoted(session, job_id)
            return
        own_session = self._db_session_factory()
        try:
            self._store.mark_promoted(own_session, job_id)
        finally:
            own_session.close()

    def withdraw(self, job_id) -> None:
        """Drop a cancelled job's copy from Redis. A worker would refuse to claim it anyway."""
        if self._dispatcher is None:
            return
        try:
            self._dispatcher.remove(job_id)
        except RedisError as e:
            logger.warning(f"Could not withdraw job {job_id} from Redis: {e}")

    # ── Periodic scan ───────────────────────────────────────────

    def promote_due(self, now: datetime | None = None) -> dict[str, int]:
        """
        Run one promotion scan.

        1. Recover records stuck in promoted/running (Redis lost them, or
           their worker died) back to pending.
        2. Submit pending records whose run_at falls inside the horizon,
           highest priority first, at most batch_size per scan.

        A Redis error ends the batch early; the remaining records stay
        pending for the next scan.
        """
        counts = {"promoted": 0, "failed": 0, "recovered": 0}
        if self._dispatcher is None:
            return counts
        if not self._scan_lock.acquire(blocking=False):
            logger.debug("Promotion scan already in progress, skipping")
            return counts

        now = now or utcnow()
        session: Session = self._db_session_factory()
        try:
            recovered = self._store.recover_stale(
                session, self.stale_after_seconds, now=now, limit=self.batch_size
            )
            counts["recovered"] = len(recovered)

            due = self._store.find_due(session, now + self.horizon, self.batch_size)
            for record in due:
                try:
                    self._dispatcher.submit(record)
                except RedisError as e:
                    counts["failed"] = len(due) - counts["promoted"]
                    logger.warning(
                        f"Redis unavailable during promotion, "
                        f"{counts['failed']} jobs left pending: {e}"
                    )
                    break
                self._store.mark_promoted(session, record.id)
                counts["promoted"] += 1

            if counts["promoted"] or counts["recovered"]:
                logger.info(
                    f"Promotion scan: {counts['promoted']} promoted, "
                    f"{counts['recovered']} recovered, {counts['failed']} failed"
                )
            return counts

        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
            self._scan_lock.release()

    # ── Background thread ───────────────────────────────────────

    def start(self) -> None:
        """Start the periodic scan in a daemon thread. The first scan runs immediately."""
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run_loop, name="queue-promoter", daemon=True)
        self._thread.start()
        logger.info(
            f"Queue promoter started (every {self.interval}s, "
            f"horizon {self.horizon.total_seconds() / 60:.0f} min)"
        )

    def stop(self) -> None:
        """Signal the loop to stop. It will finish its current scan and exit."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=self.interval)
        logger.info("Queue promoter stopped")

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.promote_due()
            except Exception as e:
                logger.error(f"Promotion scan error: {e}", exc_info=True)
            self._stop_event.wait(self.interval)
