"""
GoogleCalendarEventSync job — mirror one booking into the practice calendar.

Example payload:
    {"bookingId": "0b6d7f12-..."}

Outcomes:
- booking missing                  → fatal, {"success": False}
- booking cancelled                → success, google sync "not_applicable"
- already synced                   → success, nothing sent
- calendar not connected           → success, skipped
- event vanished upstream (update) → a new event is created
- auth / access error              → fatal, google sync "auth_failed"
- any other provider error         → raised, retried with backoff

Running twice is harmless: the "already synced" check stops the second run.
"""

import logging

from sqlalchemy.orm import Session

from config.settings import settings
from integrations.calendar import (
    CalendarAuthError,
    CalendarEvent,
    CalendarEventNotFoundError,
    CalendarProvider,
    CalendarProviderError,
)
from jobs.base import AbstractJobHandler, JobContext
from models.base import utcnow
from models.booking import BookingSlot
from models.enums import BookingSource, BookingStatus, JobName, LocationType, SyncState
from models.user import User
from scheduler.store import as_uuid

logger = logging.getLogger(__name__)


def set_sync_state(booking: BookingSlot, provider: str, state: SyncState) -> None:
    # Reassign so the JSON column change is picked up
    booking.sync_status = {
        **(booking.sync_status or {}),
        provider: state.value,
        "last_sync_attempt": utcnow().isoformat(),
    }


def build_event(booking: BookingSlot, user: User, tz: str = settings.PRACTICE_TIMEZONE) -> CalendarEvent:
    in_person = (
        booking.location_type == LocationType.IN_PERSON.value and booking.in_person_location
    )
    title = "Recurring Session" if booking.source == BookingSource.SYSTEM.value else "Therapy Session"
    description = f"Therapy session for {user.name}"
    if in_person:
        description += f"\nLocation: {booking.in_person_location}"

    return CalendarEvent(
        summary=f"{title} with {user.name}",
        start=booking.event_start_time,
        end=booking.event_end_time,
        timezone=tz,
        event_id=booking.google_event_id,
        location=booking.in_person_location if in_person else "Online Session",
        description=description,
    )


class CalendarSyncJob(AbstractJobHandler):

    def __init__(self, db_session_factory, calendar: CalendarProvider):
        self._db_session_factory = db_session_factory
        self._calendar = calendar

    def run(self, payload: dict, context: JobContext) -> dict:
        booking_id = payload.get("bookingId")
        if not booking_id:
            return {"success": False, "error": "No booking ID provided"}

        session: Session = self._db_session_factory()
        try:
            booking = session.get(BookingSlot, as_uuid(booking_id))
            if booking is None:
                logger.error(f"Calendar sync failed: booking {booking_id} not found")
                return {"success": False, "error": "Booking not found"}

            if booking.status == BookingStatus.CANCELLED.value:
                logger.info(f"Skipping sync for cancelled booking {booking_id}")
                set_sync_state(booking, "google", SyncState.NOT_APPLICABLE)
                session.commit()
                return {"success": True, "message": "Booking is cancelled, sync not needed"}

            if (booking.sync_status or {}).get("google") == SyncState.SYNCED.value and booking.google_event_id:
                logger.info(f"Booking {booking_id} already synced")
                return {"success": True, "message": "Already synced", "eventId": booking.google_event_id}

            if not self._calendar.is_connected():
                logger.info(f"Calendar not connected, skipping sync for booking {booking_id}")
                return {"success": True, "skipped": True, "reason": "calendar_not_connected"}

            user = session.get(User, booking.user_id)
            if user is None:
                set_sync_state(booking, "google", SyncState.FAILED)
                session.commit()
                return {"success": False, "error": "User not found"}

            return self._push(session, booking, user)
        finally:
            session.close()

    def _push(self, session: Session, booking: BookingSlot, user: User) -> dict:
        event = build_event(booking, user)
        try:
            try:
                ref = self._calendar.upsert_event(event)
            except CalendarEventNotFoundError:
                logger.warning(
                    f"Event {event.event_id} for booking {booking.id} vanished upstream, recreating"
                )
                event.event_id = None
                ref = self._calendar.upsert_event(event)

        except CalendarAuthError as e:
            logger.error(f"Calendar access denied while syncing booking {booking.id}: {e}")
            set_sync_state(booking, "google", SyncState.AUTH_FAILED)
            session.commit()
            return {"success": False, "error": "calendar_auth_failed"}

        except CalendarProviderError:
            set_sync_state(booking, "google", SyncState.FAILED)
            session.commit()
            raise

        booking.google_event_id = ref.event_id
        booking.google_html_link = ref.html_link
        set_sync_state(booking, "google", SyncState.SYNCED)
        session.commit()

        logger.info(f"Calendar event {ref.event_id} synced for booking {booking.id}")
        return {"success": True, "eventId": ref.event_id}

    @property
    def job_name(self) -> str:
        return JobName.CALENDAR_EVENT_SYNC.value
