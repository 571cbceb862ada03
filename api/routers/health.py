"""
Health check endpoint.

Checks Postgres and Redis connectivity.

Postgres is the source of truth, so if it is down the service is down
(the query raises and the request fails). Redis is only the fast-dispatch
layer: without it jobs wait in Postgres and are promoted once it returns,
so a Redis failure reports "degraded" rather than failing the check.
"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import text
from redis.asyncio import Redis
from redis.exceptions import RedisError

from api.dependencies import get_db, get_redis

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check(
    db: AsyncSession = Depends(get_db),
    redis: Redis = Depends(get_redis),
) -> dict:
    """Check that Postgres and Redis are reachable."""
    await db.execute(text("SELECT 1"))

    try:
        await redis.ping()
    except RedisError as e:
        logger.warning(f"Health check: Redis unavailable: {e}")
        return {"status": "degraded", "postgres": "ok", "redis": "unavailable"}

    return {"status": "healthy", "postgres": "ok", "redis": "ok"}
