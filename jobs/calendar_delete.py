"""
GoogleCalendarEventDeletion job — remove a cancelled booking's calendar event.

Example payload:
    {"bookingId": "0b6d7f12-...", "googleEventId": "abc123"}

The event id travels in the payload because the booking may already have
been cleaned up by the time the job runs. A 404/410 upstream means the
event is already gone, which is what we wanted.
"""

import logging

from integrations.calendar import (
    CalendarAuthError,
    CalendarEventNotFoundError,
    CalendarProvider,
)
from jobs.base import AbstractJobHandler, JobContext
from jobs.calendar_sync import set_sync_state
from models.booking import BookingSlot
from models.enums import JobName, SyncState
from scheduler.store import as_uuid

logger = logging.getLogger(__name__)


class CalendarDeleteJob(AbstractJobHandler):

    def __init__(self, db_session_factory, calendar: CalendarProvider):
        self._db_session_factory = db_session_factory
        self._calendar = calendar

    def run(self, payload: dict, context: JobContext) -> dict:
        booking_id = payload.get("bookingId")
        event_id = payload.get("googleEventId")
        if not event_id:
            return {"success": False, "error": "No event ID provided"}

        try:
            self._calendar.delete_event(event_id)
            logger.info(f"Deleted calendar event {event_id} for booking {booking_id}")
        except CalendarEventNotFoundError:
            logger.info(f"Calendar event {event_id} not found, assuming already deleted")
        except CalendarAuthError as e:
            logger.error(f"Calendar access denied while deleting event {event_id}: {e}")
            return {"success": False, "error": "calendar_auth_failed"}

        if booking_id:
            self._clear_event(booking_id, event_id)
        return {"success": True, "eventId": event_id}

    def _clear_event(self, booking_id: str, event_id: str) -> None:
        session = self._db_session_factory()
        try:
            booking = session.get(BookingSlot, as_uuid(booking_id))
            if booking is None or booking.google_event_id != event_id:
                return
            booking.google_event_id = None
            booking.google_html_link = None
            set_sync_state(booking, "google", SyncState.DELETED)
            session.commit()
        finally:
            session.close()

    @property
    def job_name(self) -> str:
        return JobName.CALENDAR_EVENT_DELETION.value
