"""
Calendar provider interface used by the sync and deletion jobs.

The booking engine never talks to Google directly. It asks a
CalendarProvider, so the jobs can be exercised with an in-memory provider
and a deployment without calendar credentials runs with
DisconnectedCalendarProvider (every sync becomes a deliberate no-op).

Error taxonomy, mapped to job outcomes by the handlers:
- CalendarEventNotFoundError → the upstream event is gone (404/410)
- CalendarAuthError          → credentials revoked or access denied, fatal
- CalendarProviderError      → anything else, transient, retried
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime


class CalendarProviderError(Exception):
    """Transient provider failure; the job raises and is retried."""


class CalendarEventNotFoundError(CalendarProviderError):
    """The event id no longer exists upstream."""


class CalendarAuthError(CalendarProviderError):
    """Credentials missing, expired or lacking access; retrying will not help."""


@dataclass
class CalendarEvent:
    summary: str
    start: datetime
    end: datetime
    timezone: str
    event_id: str | None = None
    location: str | None = None
    description: str | None = None


@dataclass
class CalendarEventRef:
    event_id: str
    html_link: str | None = None


class CalendarProvider(ABC):

    @abstractmethod
    def is_connected(self) -> bool:
        ...

    @abstractmethod
    def upsert_event(self, event: CalendarEvent) -> CalendarEventRef:
        """Create the event, or update it in place when event.event_id is set."""
        ...

    @abstractmethod
    def delete_event(self, event_id: str) -> None:
        ...


class DisconnectedCalendarProvider(CalendarProvider):
    """Default provider when no calendar account is linked."""

    def is_connected(self) -> bool:
        return False

    def upsert_event(self, event: CalendarEvent) -> CalendarEventRef:
        raise CalendarAuthError("No calendar account is connected")

    def delete_event(self, event_id: str) -> None:
        raise CalendarAuthError("No calendar account is connected")
