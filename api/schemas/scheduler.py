"""
Pydantic schemas for the /scheduler endpoints.

SchedulerStatus: response showing the state of the Redis fast-dispatch layer.
"""

from pydantic import BaseModel


class SchedulerStatus(BaseModel):
    """Response body for GET /scheduler/status."""

    ready_depth: int         # jobs due now, waiting for a worker
    delayed_depth: int       # promoted jobs waiting for their run_at
    dead_letter_count: int   # how many jobs permanently failed
    alert_count: int         # operator alerts kept on the alerts list
