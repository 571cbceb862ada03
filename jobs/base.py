"""
Abstract base class for job handlers.

Each job name (refreshRecurringBuffer, GoogleCalendarEventSync, ...) is
implemented by one handler. The worker calls handler.run(payload, context)
without knowing which one it is; it looks the handler up in the JobRegistry
by the job_name stored on the record.

Result contract:
- return {"success": True, ...}          → record completed (skips included)
- return {"success": False, "error": ...} → fatal, record failed, no retry
- raise                                   → retryable, RetryHandler decides

To add a new job:
1. Create a class that inherits AbstractJobHandler
2. Implement run() and job_name
3. Register it in jobs/registry.py:build_registry()
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class JobContext:
    """Which record and attempt a handler invocation belongs to."""

    job_id: str
    job_name: str
    attempt: int = 1


class AbstractJobHandler(ABC):

    @abstractmethod
    def run(self, payload: dict, context: JobContext) -> dict:
        """
        Execute the job.

        Args:
            payload: job-specific parameters from the record's JSON column.
            context: the record id and attempt number.

        Returns:
            dict with results — stored in JobRecord.result.

        Raises:
            Any exception → triggers retry logic in the worker.
        """
        ...

    @property
    @abstractmethod
    def job_name(self) -> str:
        """Unique identifier matching the JobName enum (e.g. 'refreshRecurringBuffer')."""
        ...
