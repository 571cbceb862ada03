"""
Worker pool — manages a thread pool that executes jobs from Redis.

Architecture:
    ┌─────────────────────────────────────────────────────────┐
    │                    WorkerPool                           │
    │                                                         │
    │  Dispatch Thread                                        │
    │  ┌───────────────────────┐                              │
    │  │ release_due()         │  ← delayed jobs whose run_at │
    │  │ BZPOPMIN ready set    │    passed become ready       │
    │  └──────────┬────────────┘                              │
    │             │ submit()                                  │
    │             ▼                                           │
    │  ┌──────────────────────────────────────────┐           │
    │  │ ThreadPoolExecutor (WORKER_POOL_SIZE)    │           │
    │  │  ┌────────┐ ┌────────┐ ┌────────┐        │           │
    │  │  │execute │ │execute │ │(idle)  │  ...   │           │
    │  │  └────────┘ └────────┘ └────────┘        │           │
    │  └──────────────────────────────────────────┘           │
    └─────────────────────────────────────────────────────────┘

The dispatch thread only pops a job when a worker thread is free (a
semaphore holds one slot per thread). Jobs therefore wait in Redis, ordered
by priority, rather than in the executor's internal queue where a crash
would strand them until the promoter's stale-job recovery.

A Redis outage never kills the dispatch thread: it logs, backs off for a
second and tries again.
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, Future

from redis.exceptions import RedisError

from config.settings import settings
from scheduler.dispatcher import FastDispatcher
from worker.executor import JobExecutor

logger = logging.getLogger(__name__)


class WorkerPool:

    def __init__(
        self,
        dispatcher: FastDispatcher,
        job_executor: JobExecutor,
        pool_size: int = settings.WORKER_POOL_SIZE,
    ):
        self._dispatcher = dispatcher
        self._job_executor = job_executor
        self.pool_size = pool_size
        self._executor = ThreadPoolExecutor(
            max_workers=pool_size,
            thread_name_prefix="job-worker",
        )
        self._slots = threading.Semaphore(pool_size)
        self._running = False

    def start(self) -> None:
        """Start the dispatch thread that feeds jobs to the thread pool."""
        self._running = True
        dispatcher = threading.Thread(target=self._dispatch_loop, name="job-dispatch", daemon=True)
        dispatcher.start()
        logger.info(f"Worker pool started with {self.pool_size} threads")

    def stop(self) -> None:
        """Signal the dispatcher to stop, then wait for running jobs to finish."""
        self._running = False
        self._executor.shutdown(wait=True)
        self._job_executor.shutdown()
        logger.info("Worker pool stopped")

    def _dispatch_loop(self) -> None:
        """
        Continuously pop ready jobs from Redis and submit them to the thread pool.

        The 1-second timeouts ensure we check self._running periodically
        so the loop can exit cleanly on shutdown.
        """
        while self._running:
            if not self._slots.acquire(timeout=1):
                continue  # every worker busy
            submitted = False
            try:
                self._dispatcher.release_due()
                job_data = self._dispatcher.pop_ready(timeout=1)
                if job_data is None:
                    continue

                logger.debug(f"Dispatching job {job_data['job_id']} to thread pool")
                future: Future = self._executor.submit(self._job_executor.execute, job_data)
                submitted = True
                future.add_done_callback(self._on_job_done)

            except RedisError as e:
                logger.warning(f"Redis unavailable, dispatch paused: {e}")
                time.sleep(1)
            except Exception as e:
                logger.error(f"Dispatch error: {e}", exc_info=True)
            finally:
                if not submitted:
                    self._slots.release()

    def _on_job_done(self, future: Future) -> None:
        """
        Callback fired when a worker thread finishes executing a job.

        Frees the slot and logs unhandled exceptions; the normal
        success/failure handling happens inside JobExecutor.execute().
        """
        self._slots.release()
        try:
            exc = future.exception()
            if exc:
                logger.error(f"Unhandled worker exception: {exc}")
        except Exception as e:
            logger.error(f"Callback error: {e}")
