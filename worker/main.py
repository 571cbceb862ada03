"""
Worker process entry point.

This is a SEPARATE process from the FastAPI API server.
It wires the scheduling core together and runs two components:

    1. QueuePromoter — scans Postgres for pending jobs entering the
       promotion window and copies them into Redis
    2. WorkerPool — pops due jobs from Redis and executes them
       in a thread pool

Both run as daemon threads. The main thread just waits for
Ctrl+C (SIGINT) or a kill signal (SIGTERM) to shut down gracefully.
Jobs still in flight at shutdown stay promoted/running in the database
and are recovered by the next promoter scan.

To run:
    python -m worker.main

In Docker:
    command: python -m worker.main
"""

import logging
import signal
import threading

from redis import Redis
from redis.exceptions import RedisError

from config.settings import settings
from integrations.alerts import QueueAlerter
from integrations.calendar import DisconnectedCalendarProvider
from integrations.pricing import ConfigPricingLookup
from jobs.registry import build_registry
from models.base import Base, sync_engine, SyncSessionLocal
from models import tables  # noqa: F401  (registers every table on Base.metadata)
from scheduler.dispatcher import FastDispatcher
from scheduler.engine import Scheduler
from scheduler.promoter import QueuePromoter
from worker.executor import JobExecutor
from worker.pool import WorkerPool

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def main():
    # Ensure tables exist before the promoter tries to query them.
    # Safe to call multiple times; solves the race where the worker
    # starts before the API has finished creating tables.
    logger.info("Ensuring database tables exist...")
    Base.metadata.create_all(sync_engine)

    redis_client = Redis.from_url(settings.redis_url)
    dispatcher = FastDispatcher(redis_client)
    promoter = QueuePromoter(dispatcher, SyncSessionLocal)
    scheduler = Scheduler(SyncSessionLocal, promoter)

    # Fail fast if any job name has no handler
    registry = build_registry(
        scheduler=scheduler,
        calendar=DisconnectedCalendarProvider(),
        pricing=ConfigPricingLookup(),
        alerter=QueueAlerter(scheduler),
        redis_client=redis_client,
        session_factory=SyncSessionLocal,
    )
    registry.validate()
    logger.info(f"Registered handlers: {', '.join(registry.names())}")

    session = SyncSessionLocal()
    try:
        counts = scheduler.store.stats(session)
    finally:
        session.close()
    logger.info(f"Job store at start-up: {counts}")
    try:
        logger.info(f"Redis queue at start-up: {dispatcher.depth()}")
    except RedisError as e:
        logger.warning(f"Redis unavailable at start-up, jobs will be deferred: {e}")

    promoter.start()

    executor = JobExecutor(SyncSessionLocal, redis_client, registry, scheduler.store)
    pool = WorkerPool(dispatcher, executor)
    pool.start()

    # ── Graceful shutdown on Ctrl+C or SIGTERM ──────────────────
    shutdown_event = threading.Event()

    def shutdown(signum, frame):
        logger.info("Shutdown signal received, stopping...")
        promoter.stop()
        pool.stop()
        shutdown_event.set()

    signal.signal(signal.SIGTERM, shutdown)
    signal.signal(signal.SIGINT, shutdown)

    logger.info("Worker process running. Press Ctrl+C to stop.")

    # Block the main thread until shutdown signal
    # (using Event.wait() instead of signal.pause() for Windows compatibility)
    shutdown_event.wait()

    logger.info("Worker process exited")


if __name__ == "__main__":
    main()
