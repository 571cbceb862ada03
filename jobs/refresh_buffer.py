"""
refreshRecurringBuffer job — one buffer refresh pass for one user.

Example payload:
    {"userId": "6f1c2e9a-..."}

Example result:
    {"success": true, "created": 3, "skipped": 1,
     "nextRefresh": "2026-03-02T12:00:00+00:00", "alerted": false}

All the work happens in recurrence/buffer.py; this handler only unpacks
the payload and passes its own job id along, so the pass can schedule its
successor while this record is still running.
"""

from jobs.base import AbstractJobHandler, JobContext
from models.enums import JobName
from recurrence.buffer import BufferRefreshEngine


class RefreshBufferJob(AbstractJobHandler):

    def __init__(self, engine: BufferRefreshEngine):
        self._engine = engine

    def run(self, payload: dict, context: JobContext) -> dict:
        user_id = payload.get("userId")
        if not user_id:
            return {"success": False, "error": "No user ID provided"}

        result = self._engine.refresh(user_id, current_job_id=context.job_id)
        return {"userId": user_id, **result.to_dict()}

    @property
    def job_name(self) -> str:
        return JobName.REFRESH_RECURRING_BUFFER.value
