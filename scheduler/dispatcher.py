"""
Fast Dispatcher — the Redis-backed near-term execution queue.

Only jobs due within the promotion horizon ever reach Redis. Three keys
hold them:

    bookingscheduler:jobs     hash    job_id → JSON body
    bookingscheduler:delayed  zset    job_id scored by run_at (epoch seconds)
    bookingscheduler:ready    zset    job_id scored by priority, then run_at

    submit ──HSETNX──> jobs
       │
       ├── run_at in the future ──> delayed ──release_due──┐
       └── already due ───────────────────────────────────>├──> ready ──BZPOPMIN──> worker

HSETNX makes submission idempotent: the promoter may submit the same
record twice (e.g. after a crash between submit and mark_promoted) and
Redis keeps one copy.

Losing every key here is harmless. The job_records table still holds the
jobs; stale promoted records are recovered and re-submitted by the
promoter.
"""

import json
import logging
import time

from redis import Redis

from models.job import JobRecord

logger = logging.getLogger(__name__)

# Larger than any epoch timestamp, so priority always dominates run_at
_PRIORITY_WEIGHT = 1e10


def _text(value) -> str:
    return value.decode() if isinstance(value, bytes) else value


def ready_score(priority: int, run_at_ts: float) -> float:
    """Lower scores pop first: higher priority, then earlier run_at."""
    return -priority * _PRIORITY_WEIGHT + run_at_ts


class FastDispatcher:

    # Redis key names, also read by api/routers/scheduler.py
    JOBS_KEY = "bookingscheduler:jobs"
    DELAYED_KEY = "bookingscheduler:delayed"
    READY_KEY = "bookingscheduler:ready"
    DLQ_KEY = "bookingscheduler:dead_letter"
    ALERTS_KEY = "bookingscheduler:alerts"

    def __init__(self, redis_client: Redis):
        self._redis = redis_client

    def submit(self, record: JobRecord) -> bool:
        """
        Queue a job for execution at its run_at.

        Returns False when the job is already queued. Raises
        redis.ConnectionError when Redis is unreachable; the caller treats
        that as "deferred".
        """
        job_id = str(record.id)
        body = json.dumps({
            "job_id": job_id,
            "job_name": record.job_name,
            "payload": record.payload,
            "priority": record.priority,
            "run_at": record.run_at.isoformat(),
        })
        if not self._redis.hsetnx(self.JOBS_KEY, job_id, body):
            logger.debug(f"Job {job_id} already queued in Redis")
            return False

        run_at_ts = record.run_at.timestamp()
        if run_at_ts > time.time():
            self._redis.zadd(self.DELAYED_KEY, {job_id: run_at_ts})
        else:
            self._redis.zadd(self.READY_KEY, {job_id: ready_score(record.priority, run_at_ts)})
        return True

    def release_due(self, now: float | None = None) -> int:
        """Move every delayed job whose run_at has passed into the ready set."""
        now = now if now is not None else time.time()
        released = 0
        for raw_id, run_at_ts in self._redis.zrangebyscore(
            self.DELAYED_KEY, "-inf", now, withscores=True
        ):
            job_id = _text(raw_id)
            # zrem decides the winner if two workers release concurrently
            if not self._redis.zrem(self.DELAYED_KEY, job_id):
                continue
            body = self._redis.hget(self.JOBS_KEY, job_id)
            if body is None:
                continue
            priority = json.loads(body).get("priority", 0)
            self._redis.zadd(self.READY_KEY, {job_id: ready_score(priority, run_at_ts)})
            released += 1

        if released:
            logger.debug(f"Released {released} delayed jobs to the ready set")
        return released

    def pop_ready(self, timeout: float | None = 1) -> dict | None:
        """
        Take the next ready job, blocking up to `timeout` seconds.

        timeout=0 or None pops without blocking. Returns the job body, or
        None if nothing is ready.
        """
        if timeout:
            popped = self._redis.bzpopmin(self.READY_KEY, timeout=timeout)
            if popped is None:
                return None
            _, raw_id, _ = popped
        else:
            popped = self._redis.zpopmin(self.READY_KEY)
            if not popped:
                return None
            raw_id, _ = popped[0]

        job_id = _text(raw_id)
        body = self._redis.hget(self.JOBS_KEY, job_id)
        self._redis.hdel(self.JOBS_KEY, job_id)
        if body is None:
            logger.warning(f"Job {job_id} popped without a body, dropping it")
            return None
        return json.loads(body)

    def remove(self, job_id) -> None:
        job_id = str(job_id)
        pipe = self._redis.pipeline()
        pipe.zrem(self.DELAYED_KEY, job_id)
        pipe.zrem(self.READY_KEY, job_id)
        pipe.hdel(self.JOBS_KEY, job_id)
        pipe.execute()

    def depth(self) -> dict[str, int]:
        return {
            "ready": self._redis.zcard(self.READY_KEY),
            "delayed": self._redis.zcard(self.DELAYED_KEY),
        }
