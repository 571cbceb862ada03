"""
Fast-dispatch layer endpoints.

GET  /scheduler/status      → Redis queue depths, DLQ and alert counts
GET  /scheduler/dead-letter → List permanently failed jobs
GET  /scheduler/alerts      → List operator alerts, newest first

Everything here reads Redis. The durable view of the same jobs lives under
/jobs; if Redis was flushed these lists are empty while /jobs still shows
every record.
"""

import json

from fastapi import APIRouter, Depends, Query
from redis.asyncio import Redis

from api.dependencies import get_redis
from api.schemas.scheduler import SchedulerStatus
from scheduler.dispatcher import FastDispatcher

router = APIRouter(prefix="/scheduler", tags=["scheduler"])


@router.get("/status", response_model=SchedulerStatus)
async def get_scheduler_status(
    redis: Redis = Depends(get_redis),
) -> SchedulerStatus:
    """Get current fast-dispatch state."""
    return SchedulerStatus(
        ready_depth=await redis.zcard(FastDispatcher.READY_KEY),
        delayed_depth=await redis.zcard(FastDispatcher.DELAYED_KEY),
        dead_letter_count=await redis.llen(FastDispatcher.DLQ_KEY),
        alert_count=await redis.llen(FastDispatcher.ALERTS_KEY),
    )


@router.get("/dead-letter")
async def get_dead_letter_jobs(
    redis: Redis = Depends(get_redis),
) -> list[dict]:
    """
    List all jobs in the dead-letter queue.

    These jobs either returned a fatal result or exhausted their attempts.
    Fix the root cause, then POST /jobs/{id}/retry.
    """
    raw_entries = await redis.lrange(FastDispatcher.DLQ_KEY, 0, -1)
    return [json.loads(entry) for entry in raw_entries]


@router.get("/alerts")
async def get_alerts(
    limit: int = Query(50, ge=1, le=500),
    redis: Redis = Depends(get_redis),
) -> list[dict]:
    raw_entries = await redis.lrange(FastDispatcher.ALERTS_KEY, 0, limit - 1)
    return [json.loads(entry) for entry in raw_entries]
