"""
FastAPI dependency injection.

How this works:
- An endpoint declares `db: AsyncSession = Depends(get_db)`
- FastAPI calls get_db() before your endpoint runs, creating a DB session
- Your endpoint receives the session and uses it
- After the endpoint returns (or raises), the session is automatically closed

Reads go through the async session. Anything that changes job or booking
state goes through the Scheduler / SeriesService built in the lifespan
(stored on app.state), so the API and the worker share one implementation
of every state transition.
"""

from typing import AsyncGenerator

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession
from redis.asyncio import Redis

from models.base import AsyncSessionLocal
from recurrence.series import SeriesService
from scheduler.engine import Scheduler


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yields an async database session, auto-closes when the request ends."""
    async with AsyncSessionLocal() as session:
        yield session


async def get_redis(request: Request) -> Redis:
    """Returns the Redis client stored on the app during startup."""
    return request.app.state.redis


async def get_scheduler(request: Request) -> Scheduler:
    return request.app.state.scheduler


async def get_series_service(request: Request) -> SeriesService:
    return request.app.state.series_service
