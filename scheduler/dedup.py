"""
Deduplication key function.

Two submissions with the same key collapse into one durable record while
that record is still pending, promoted or running. The key is also used
as the Redis job id, so the fast layer deduplicates the same way.

Most jobs are identified by their whole payload (serialized with sorted
keys so dict ordering never matters). A few are identified by a single
field: a calendar sync for a booking is the same work no matter which
extra hints the caller attached.
"""

import hashlib
import json
from typing import Any

from models.enums import JobName

_IDENTITY_FIELDS: dict[str, str] = {
    JobName.REFRESH_RECURRING_BUFFER.value: "userId",
    JobName.CALENDAR_EVENT_SYNC.value: "bookingId",
}


def stable_dumps(payload: Any) -> str:
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)


def dedup_key(job_name: str, payload: dict) -> str:
    job_name = getattr(job_name, "value", job_name)
    field = _IDENTITY_FIELDS.get(job_name)
    if field is not None and payload.get(field) is not None:
        identity = str(payload[field])
    else:
        identity = stable_dumps(payload)

    digest = hashlib.sha256(identity.encode("utf-8")).hexdigest()
    return f"{job_name}:{digest}"
