"""
Job handler registry — maps job names to handler instances.

When a worker pulls a job from Redis it knows the job_name
("refreshRecurringBuffer", "GoogleCalendarEventSync", ...) but needs the
handler to execute it. This registry does that lookup.

The registry is built explicitly at process start (build_registry) and
validated against JobName, so a job name nobody can execute is a start-up
error rather than a stream of failed jobs weeks later.
"""

from collections.abc import Iterable

from models.enums import JobName
from jobs.base import AbstractJobHandler
from jobs.calendar_delete import CalendarDeleteJob
from jobs.calendar_sync import CalendarSyncJob
from jobs.refresh_buffer import RefreshBufferJob
from jobs.system_alert import SystemAlertJob
from recurrence.buffer import BufferRefreshEngine
from scheduler.exceptions import RegistryConfigurationError, UnknownJobError


class JobRegistry:

    def __init__(self, handlers: Iterable[AbstractJobHandler] = ()):
        self._handlers: dict[str, AbstractJobHandler] = {}
        for handler in handlers:
            self.register(handler)

    def register(self, handler: AbstractJobHandler) -> None:
        if handler.job_name in self._handlers:
            raise RegistryConfigurationError(
                f"Two handlers registered for job '{handler.job_name}'"
            )
        self._handlers[handler.job_name] = handler

    def get(self, job_name: str) -> AbstractJobHandler:
        """Look up a handler by job name. Raises UnknownJobError if unknown."""
        handler = self._handlers.get(job_name)
        if handler is None:
            raise UnknownJobError(
                f"Unknown job: '{job_name}'. Available: {self.names()}"
            )
        return handler

    def names(self) -> list[str]:
        return sorted(self._handlers)

    def validate(self, required: Iterable[str] = tuple(name.value for name in JobName)) -> None:
        missing = sorted(set(required) - set(self._handlers))
        if missing:
            raise RegistryConfigurationError(f"No handler registered for: {', '.join(missing)}")


def build_registry(scheduler, calendar, pricing, alerter, redis_client, session_factory) -> JobRegistry:
    """Wire every production handler to its collaborators."""
    engine = BufferRefreshEngine(
        session_factory=session_factory,
        scheduler=scheduler,
        calendar=calendar,
        pricing=pricing,
        alerter=alerter,
    )
    return JobRegistry([
        RefreshBufferJob(engine),
        CalendarSyncJob(session_factory, calendar),
        CalendarDeleteJob(session_factory, calendar),
        SystemAlertJob(redis_client),
    ])
