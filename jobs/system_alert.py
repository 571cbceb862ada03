"""
SystemAlert job — surface an operator alert.

Example payload:
    {"alertType": "buffer_refresh_failed",
     "context": {"userId": "...", "reason": "all_slots_conflicted"},
     "raisedAt": "2026-01-10T09:00:00+00:00"}

The alert is logged at ERROR (picked up by log-based alerting) and kept on
the Redis alerts list, newest first, which GET /scheduler/alerts reads.
"""

import json
import logging

from redis import Redis

from jobs.base import AbstractJobHandler, JobContext
from models.enums import JobName
from scheduler.dispatcher import FastDispatcher

logger = logging.getLogger(__name__)

MAX_KEPT_ALERTS = 500


class SystemAlertJob(AbstractJobHandler):

    def __init__(self, redis_client: Redis):
        self._redis = redis_client

    def run(self, payload: dict, context: JobContext) -> dict:
        alert_type = payload.get("alertType")
        if not alert_type:
            return {"success": False, "error": "No alert type provided"}

        logger.error(f"SYSTEM ALERT [{alert_type}]: {payload.get('context')}")
        entry = json.dumps({**payload, "jobId": context.job_id})
        self._redis.lpush(FastDispatcher.ALERTS_KEY, entry)
        self._redis.ltrim(FastDispatcher.ALERTS_KEY, 0, MAX_KEPT_ALERTS - 1)
        return {"success": True, "alertType": alert_type}

    @property
    def job_name(self) -> str:
        return JobName.SYSTEM_ALERT.value
