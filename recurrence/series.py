"""
Series lifecycle — enrolling a client in recurring sessions and stopping it.

Enrollment creates the RecurringSeries, books the initial buffer through
the refresh engine and schedules the first refresh. Stopping reverses it:

    1. lock the series row (SELECT ... FOR UPDATE) and mark it inactive
    2. cancel the outstanding refreshRecurringBuffer record
    3. cancel the series' future bookings and drop their unpaid payments
    4. commit all of the above together
    5. queue calendar deletions for cancelled bookings that had an event

Because the refresh engine re-locks the series before scheduling its
successor, a refresh racing a stop either sees the series inactive or has
its successor cancelled in step 2.
"""

import logging
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from config.settings import settings
from models.base import utcnow
from models.booking import BookingSlot
from models.enums import BookingStatus, JobName, LocationType, PaymentStatus, RecurringInterval
from models.payment import Payment
from models.series import RecurringSeries
from models.user import User
from recurrence.buffer import BufferRefreshEngine, RefreshResult, active_series
from recurrence.occurrence import first_occurrence, parse_time_of_day
from scheduler.engine import EnqueueResult, Scheduler
from scheduler.exceptions import JobPersistenceError
from scheduler.store import JobStore, as_uuid

logger = logging.getLogger(__name__)


class SeriesError(Exception):
    pass


class UserNotFoundError(SeriesError):
    pass


class SeriesAlreadyActiveError(SeriesError):
    pass


class SeriesNotActiveError(SeriesError):
    pass


@dataclass
class StopResult:
    series_id: str
    cancelled_bookings: int
    cancelled_jobs: int
    deletions_queued: int


class SeriesService:

    def __init__(
        self,
        session_factory,
        scheduler: Scheduler,
        engine: BufferRefreshEngine,
        store: JobStore | None = None,
        clock=utcnow,
    ):
        self._session_factory = session_factory
        self._scheduler = scheduler
        self._engine = engine
        self._store = store or scheduler.store
        self._clock = clock

    def enroll(
        self,
        user_id,
        interval: str,
        day_of_week: int,
        time_of_day: str,
        location_type: str = LocationType.ONLINE.value,
        in_person_location: str | None = None,
        session_length_minutes: int = settings.SESSION_LENGTH_MINUTES,
    ) -> tuple[RecurringSeries, RefreshResult]:
        """
        Start a recurring series and book its initial buffer.

        If no session could be booked the series is closed again and
        SeriesError is raised, so a client never ends up "recurring" with
        nothing on the calendar.
        """
        interval = RecurringInterval(interval).value
        parse_time_of_day(time_of_day)
        user_id = as_uuid(user_id)

        session: Session = self._session_factory()
        try:
            user = session.get(User, user_id)
            if user is None:
                raise UserNotFoundError(f"User {user_id} not found")
            if active_series(session, user_id) is not None:
                raise SeriesAlreadyActiveError(f"User {user_id} already has an active series")

            series = RecurringSeries(
                user_id=user_id,
                active=True,
                interval=interval,
                day_of_week=day_of_week,
                time_of_day=time_of_day,
                session_length_minutes=session_length_minutes,
                location_type=location_type,
                in_person_location=in_person_location,
            )
            session.add(series)
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                raise SeriesAlreadyActiveError(f"User {user_id} already has an active series") from None

            logger.info(f"Enrolled user {user_id} in {interval} series {series.id}")

            first = first_occurrence(day_of_week, time_of_day, self._clock(), self._engine.tz)
            result = self._engine.extend_from(session, series, first)

            if result.created == 0:
                series.active = False
                series.ended_at = self._clock()
                session.commit()
                reason = result.error or "all_slots_conflicted"
                raise SeriesError(f"Could not book an initial buffer for user {user_id}: {reason}")

            session.refresh(series)
            return series, result
        finally:
            session.close()

    def stop(self, user_id) -> StopResult:
        user_id = as_uuid(user_id)
        session: Session = self._session_factory()
        try:
            series = session.execute(
                select(RecurringSeries)
                .where(RecurringSeries.user_id == user_id, RecurringSeries.active.is_(True))
                .with_for_update()
            ).scalar_one_or_none()
            if series is None:
                raise SeriesNotActiveError(f"User {user_id} has no active recurring series")

            now = self._clock()
            series.active = False
            series.ended_at = now
            series.next_buffer_refresh = None

            cancelled_jobs = self._store.cancel_by_dedup_key(
                session,
                JobName.REFRESH_RECURRING_BUFFER.value,
                {"userId": str(user_id)},
                commit=False,
            )

            future = session.scalars(
                select(BookingSlot).where(
                    BookingSlot.series_id == series.id,
                    BookingSlot.status == BookingStatus.ACTIVE.value,
                    BookingSlot.event_start_time > now,
                )
            ).all()

            deletions = []
            for booking in future:
                booking.status = BookingStatus.CANCELLED.value
                if booking.google_event_id:
                    deletions.append((str(booking.id), booking.google_event_id))

            unpaid = session.scalars(
                select(Payment).where(
                    Payment.booking_id.in_([b.id for b in future]),
                    Payment.transaction_status == PaymentStatus.NOT_INITIATED.value,
                )
            ).all()
            unpaid_bookings = {p.booking_id for p in unpaid}
            for booking in future:
                if booking.id in unpaid_bookings:
                    booking.payment_id = None
            for payment in unpaid:
                session.delete(payment)

            session.commit()
            series_id = str(series.id)
        finally:
            session.close()

        logger.info(
            f"Stopped series {series_id} for user {user_id}: "
            f"{len(future)} bookings cancelled, {len(cancelled_jobs)} refresh jobs cancelled"
        )

        queued = 0
        for booking_id, event_id in deletions:
            try:
                self._scheduler.enqueue(
                    JobName.CALENDAR_EVENT_DELETION.value,
                    {"bookingId": booking_id, "googleEventId": event_id},
                )
                queued += 1
            except JobPersistenceError as e:
                logger.error(f"Failed to queue calendar deletion for booking {booking_id}: {e}")

        return StopResult(
            series_id=series_id,
            cancelled_bookings=len(future),
            cancelled_jobs=len(cancelled_jobs),
            deletions_queued=queued,
        )

    def request_refresh(self, user_id, priority: int = 10) -> EnqueueResult:
        """
        Ask for a refresh pass now.

        When the user's next refresh is already waiting (usually weeks out),
        that record is pulled forward instead of adding a second one.
        """
        user_id = as_uuid(user_id)
        session: Session = self._session_factory()
        try:
            if active_series(session, user_id) is None:
                raise SeriesNotActiveError(f"User {user_id} has no active recurring series")
        finally:
            session.close()

        result = self._scheduler.enqueue(
            JobName.REFRESH_RECURRING_BUFFER.value,
            {"userId": str(user_id)},
            priority=priority,
        )
        if result.skipped and result.job_id is not None:
            result.dispatch = self._scheduler.expedite(result.job_id, priority)
        return result

    def request_refresh_all(self, priority: int = 1) -> dict[str, EnqueueResult]:
        session: Session = self._session_factory()
        try:
            user_ids = session.scalars(
                select(RecurringSeries.user_id).where(RecurringSeries.active.is_(True))
            ).all()
        finally:
            session.close()

        results = {}
        for user_id in user_ids:
            try:
                results[str(user_id)] = self.request_refresh(user_id, priority=priority)
            except (SeriesNotActiveError, JobPersistenceError) as e:
                logger.error(f"Failed to queue buffer refresh for user {user_id}: {e}")
        logger.info(f"Queued buffer refresh for {len(results)} recurring users")
        return results
