"""
FastAPI application factory.

This file:
1. Creates the FastAPI app
2. Runs startup logic (create DB tables, connect to Redis, build the Scheduler)
3. Registers all routers (health, jobs, scheduler, recurring)
4. Runs shutdown logic (close connections)

The `lifespan` context manager is FastAPI's way of handling startup/shutdown.
It replaces the older @app.on_event("startup") pattern.

The API process builds its own Scheduler and SeriesService but never
starts the promoter thread or executes jobs; that is the worker's job.
Jobs enqueued here that are due soon go straight to Redis, everything
else waits for the worker's promotion scan.

To run:  python -m api.main  (binds API_HOST:API_PORT)
Or:      uvicorn api.main:app --host 0.0.0.0 --port 8000 --reload
"""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from redis import Redis
from redis.asyncio import Redis as AsyncRedis

from config.settings import settings
from integrations.alerts import QueueAlerter
from integrations.calendar import DisconnectedCalendarProvider
from integrations.pricing import ConfigPricingLookup
from models.base import async_engine, sync_engine, Base, SyncSessionLocal
from models import tables  # noqa: F401  (registers every table on Base.metadata)
from recurrence.buffer import BufferRefreshEngine
from recurrence.series import SeriesService
from scheduler.dispatcher import FastDispatcher
from scheduler.engine import Scheduler
from scheduler.promoter import QueuePromoter
from api.routers import jobs, scheduler, health, recurring

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def build_services(redis_client: Redis, session_factory) -> tuple[Scheduler, SeriesService]:
    """Wire the scheduling core for a process that enqueues but does not execute."""
    promoter = QueuePromoter(FastDispatcher(redis_client), session_factory)
    job_scheduler = Scheduler(session_factory, promoter)
    engine = BufferRefreshEngine(
        session_factory=session_factory,
        scheduler=job_scheduler,
        calendar=DisconnectedCalendarProvider(),
        pricing=ConfigPricingLookup(),
        alerter=QueueAlerter(job_scheduler),
    )
    return job_scheduler, SeriesService(session_factory, job_scheduler, engine)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Runs on startup (before yield) and shutdown (after yield).

    Startup:
    - Creates all DB tables if they don't exist (safe to run multiple times)
    - Connects to Redis (async client for reads, sync client for the Scheduler)
    - Builds the Scheduler and SeriesService

    Shutdown:
    - Closes Redis connections
    - Disposes the DB engines (closes connection pools)
    """
    # ── Startup ─────────────────────────────────────────────────
    logger.info("Creating database tables...")
    async with async_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    app.state.redis = AsyncRedis.from_url(settings.redis_url)
    app.state.sync_redis = Redis.from_url(settings.redis_url)
    app.state.scheduler, app.state.series_service = build_services(
        app.state.sync_redis, SyncSessionLocal
    )
    logger.info("API ready")

    yield  # app is running and serving requests between startup and shutdown

    # ── Shutdown ────────────────────────────────────────────────
    await app.state.redis.aclose()
    app.state.sync_redis.close()
    await async_engine.dispose()
    sync_engine.dispose()
    logger.info("API shut down")


def create_app() -> FastAPI:
    """Factory function that builds and configures the FastAPI application."""
    app = FastAPI(
        title="Booking Scheduler",
        description="Durable job scheduling and recurring booking buffer maintenance",
        version="1.0.0",
        lifespan=lifespan,
    )

    # Register routers — each one adds its endpoints to the app
    app.include_router(health.router)
    app.include_router(jobs.router)
    app.include_router(scheduler.router)
    app.include_router(recurring.router)

    return app


# This is what uvicorn imports: `uvicorn api.main:app`
app = create_app()


def run():
    uvicorn.run(app, host=settings.API_HOST, port=settings.API_PORT)


if __name__ == "__main__":
    run()
