"""
Buffer Refresh Engine — keeps about two months of sessions booked ahead.

A recurring client always has a rolling buffer of concrete bookings. Each
refresh pass extends that buffer and schedules its own next run:

    VerifyActive ──> LocateLastBooking ──> price check ──> ComputeOccurrences
         │                  │                    │                 │
      (skip)        no_active_bookings    no_session_price         v
                                                      ┌─> reserve slot ──┐
                                                      │   (or conflict)  │
                                                      └──────────────────┘
                                                                │
                                        SyncDispatch ──> ScheduleNext ──> done

- Candidates run from the occurrence after the last booking up to
  now + BUFFER_TARGET_MONTHS, strictly one at a time.
- A conflicting candidate is skipped, never moved to another time.
- The next pass runs REFRESH_THRESHOLD_WEEKS before the new last booking.
  A pass with nothing due still schedules one, no earlier than the day
  after and no earlier than the next occurrence can enter the buffer.
  If every candidate conflicted no successor is scheduled and an operator
  alert is raised instead.

Re-running a pass is safe: it starts from whatever the last booking is now
and the conflict check refuses anything already booked.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta
from itertools import chain

from dateutil.relativedelta import relativedelta
from sqlalchemy import select
from sqlalchemy.orm import Session

from config.settings import settings
from integrations.alerts import OperatorAlerter
from integrations.calendar import CalendarProvider, DisconnectedCalendarProvider
from integrations.pricing import ConfigPricingLookup, PricingLookup
from models.base import utcnow
from models.booking import BookingSlot
from models.enums import AlertKind, BookingStatus, JobName
from models.series import RecurringSeries
from models.user import User
from recurrence.conflicts import reserve_slot
from recurrence.occurrence import next_occurrence, occurrences_between
from scheduler.exceptions import JobPersistenceError
from scheduler.store import as_uuid

logger = logging.getLogger(__name__)

USER_NOT_RECURRING = "user_not_recurring"
NO_ACTIVE_BOOKINGS = "no_active_bookings"
NO_SESSION_PRICE = "no_session_price"


@dataclass
class RefreshResult:
    success: bool
    created: int = 0
    skipped: int = 0
    reason: str | None = None
    error: str | None = None
    next_refresh: datetime | None = None
    alerted: bool = False

    def to_dict(self) -> dict:
        if self.reason is not None:
            return {"success": self.success, "skipped": True, "reason": self.reason}
        data = {
            "success": self.success,
            "created": self.created,
            "skipped": self.skipped,
            "nextRefresh": self.next_refresh.isoformat() if self.next_refresh else None,
            "alerted": self.alerted,
        }
        if self.error is not None:
            data["error"] = self.error
        return data


class BufferRefreshEngine:

    def __init__(
        self,
        session_factory,
        scheduler,
        calendar: CalendarProvider | None = None,
        pricing: PricingLookup | None = None,
        alerter: OperatorAlerter | None = None,
        clock=utcnow,
        tz: str = settings.PRACTICE_TIMEZONE,
        buffer_target_months: int = settings.BUFFER_TARGET_MONTHS,
        refresh_threshold_weeks: int = settings.REFRESH_THRESHOLD_WEEKS,
    ):
        self._session_factory = session_factory
        self._scheduler = scheduler
        self._calendar = calendar or DisconnectedCalendarProvider()
        self._pricing = pricing or ConfigPricingLookup()
        self._alerter = alerter
        self._clock = clock
        self.tz = tz
        self.buffer_target_months = buffer_target_months
        self.refresh_threshold_weeks = refresh_threshold_weeks

    # ── Entry points ────────────────────────────────────────────

    def refresh(self, user_id, current_job_id=None) -> RefreshResult:
        """
        Run one refresh pass for a user.

        current_job_id is the refreshRecurringBuffer record running this
        pass; its successor is allowed to share its dedup key.
        """
        user_id = as_uuid(user_id)
        logger.info(f"Starting buffer refresh for user {user_id}")

        session: Session = self._session_factory()
        try:
            series = active_series(session, user_id)
            if series is None:
                logger.warning(f"User {user_id} has no active recurring series, skipping refresh")
                return RefreshResult(success=True, reason=USER_NOT_RECURRING)

            last = last_booking(session, series.id)
            if last is None:
                logger.error(f"No bookings found for recurring user {user_id}, cannot refresh buffer")
                return RefreshResult(success=False, error=NO_ACTIVE_BOOKINGS)

            candidates = occurrences_between(
                last.event_start_time, series.interval, self.buffer_end(), self.tz
            )
            return self._extend(session, series, candidates, current_job_id)
        finally:
            session.close()

    def extend_from(self, session: Session, series: RecurringSeries, first_start: datetime) -> RefreshResult:
        """Build a fresh buffer whose first session is `first_start` (used at enrollment)."""
        buffer_end = self.buffer_end()
        head = [first_start] if first_start < buffer_end else []
        candidates = chain(head, occurrences_between(first_start, series.interval, buffer_end, self.tz))
        return self._extend(session, series, candidates)

    def buffer_end(self) -> datetime:
        return self._clock() + relativedelta(months=self.buffer_target_months)

    # ── Pass body ───────────────────────────────────────────────

    def _extend(
        self,
        session: Session,
        series: RecurringSeries,
        candidates: Iterable[datetime],
        current_job_id=None,
    ) -> RefreshResult:
        series_id = series.id
        user = session.get(User, series.user_id)

        price = self._pricing.get_session_price(session, user.account_type)
        if price is None:
            logger.error(f"Session price not configured, cannot refresh buffer for user {user.id}")
            alerted = self._alert(
                AlertKind.SESSION_PRICE_MISSING,
                {"userId": str(user.id), "accountType": user.account_type},
            )
            return RefreshResult(success=False, error=NO_SESSION_PRICE, alerted=alerted)

        created_ids = []
        skipped = 0
        for start in candidates:
            booking = reserve_slot(session, series, start, price)
            if booking is None:
                skipped += 1
            else:
                created_ids.append(str(booking.id))

        logger.info(
            f"Buffer refresh for user {user.id}: "
            f"{len(created_ids)} bookings created, {skipped} skipped"
        )

        if created_ids:
            self._dispatch_sync(created_ids)

        result = RefreshResult(success=True, created=len(created_ids), skipped=skipped)
        if created_ids or not skipped:
            # A pass with nothing due (buffer already full) still hands the chain on
            result.next_refresh = self._schedule_next(
                session, series_id, user, current_job_id, idle=not created_ids
            )
            if result.next_refresh is None and self._series_still_active(session, series_id):
                result.alerted = self._alert(
                    AlertKind.BUFFER_REFRESH_FAILED,
                    {**self._alert_context(user, series), "reason": "successor_not_scheduled"},
                )
        else:
            logger.error(
                f"Buffer refresh for user {user.id} failed: all {skipped} slots conflicted"
            )
            result.alerted = self._alert(
                AlertKind.BUFFER_REFRESH_FAILED,
                {
                    **self._alert_context(user, series),
                    "reason": "all_slots_conflicted",
                    "skippedCount": skipped,
                },
            )
        return result

    def _dispatch_sync(self, booking_ids: list[str]) -> None:
        try:
            connected = self._calendar.is_connected()
        except Exception as e:
            logger.error(f"Could not read calendar connection status: {e}", exc_info=True)
            return
        if not connected:
            logger.info(f"Calendar not connected, skipping sync for {len(booking_ids)} new bookings")
            return

        for booking_id in booking_ids:
            try:
                self._scheduler.enqueue(JobName.CALENDAR_EVENT_SYNC.value, {"bookingId": booking_id})
            except JobPersistenceError as e:
                logger.error(f"Failed to queue calendar sync for booking {booking_id}: {e}")

    def _schedule_next(
        self, session: Session, series_id, user: User, current_job_id, idle: bool = False
    ) -> datetime | None:
        """
        Schedule the successor pass. Returns its run time, or None if none was scheduled.

        The series row is locked first so a concurrent stop either happens
        before (series inactive, no successor) or waits until the successor
        exists (and is then cancelled by the stop).

        If an identical refresh is already waiting, that record becomes the
        successor and is moved to the computed time. A duplicate that is
        running elsewhere is not a successor, so None is returned.
        """
        user_id = user.id
        series = session.execute(
            select(RecurringSeries)
            .where(RecurringSeries.id == series_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if series is None or not series.active:
            session.rollback()
            logger.info(f"Series {series_id} stopped during refresh, not scheduling a successor")
            return None

        last = last_booking(session, series_id)
        if last is None:
            session.rollback()
            logger.error(f"Series {series_id} has no bookings left, not scheduling a successor")
            return None

        now = self._clock()
        run_at = last.event_start_time - timedelta(weeks=self.refresh_threshold_weeks)
        if idle:
            # Wake once the next occurrence falls inside the buffer window, at most daily
            upcoming = next_occurrence(last.event_start_time, series.interval, self.tz)
            run_at = max(
                run_at,
                upcoming - relativedelta(months=self.buffer_target_months),
                now + timedelta(days=1),
            )
        run_at = max(run_at, now)

        try:
            result = self._scheduler.enqueue(
                JobName.REFRESH_RECURRING_BUFFER.value,
                {"userId": str(user_id)},
                run_at=run_at,
                exclude_job_id=current_job_id,
            )
            if result.skipped:
                waiting_id = result.job_id or current_job_id
                run_at = (
                    self._scheduler.reschedule_waiting(waiting_id, run_at)
                    if waiting_id is not None
                    else None
                )
        except JobPersistenceError as e:
            session.rollback()
            logger.error(f"Failed to schedule next buffer refresh for user {user_id}: {e}")
            return None

        if run_at is None:
            session.rollback()
            logger.error(
                f"Next buffer refresh for user {user_id} not scheduled: "
                f"a duplicate is running and no waiting refresh is left to move"
            )
            return None

        series.next_buffer_refresh = run_at
        session.commit()
        logger.info(f"Scheduled next buffer refresh for user {user_id} at {run_at.isoformat()}")
        return run_at

    def _series_still_active(self, session: Session, series_id) -> bool:
        return bool(
            session.scalar(select(RecurringSeries.active).where(RecurringSeries.id == series_id))
        )

    def _alert(self, kind: AlertKind, context: dict) -> bool:
        if self._alerter is None:
            logger.error(f"No alerter configured, dropping {kind.value} alert: {context}")
            return False
        return self._alerter.raise_alert(kind.value, context)

    @staticmethod
    def _alert_context(user: User, series: RecurringSeries) -> dict:
        return {
            "userId": str(user.id),
            "userName": user.name,
            "userEmail": user.email,
            "interval": series.interval,
            "day": series.day_of_week,
            "time": series.time_of_day,
        }


def active_series(session: Session, user_id) -> RecurringSeries | None:
    return session.scalar(
        select(RecurringSeries).where(
            RecurringSeries.user_id == as_uuid(user_id),
            RecurringSeries.active.is_(True),
        )
    )


def last_booking(session: Session, series_id) -> BookingSlot | None:
    return session.scalar(
        select(BookingSlot)
        .where(
            BookingSlot.series_id == series_id,
            BookingSlot.status != BookingStatus.CANCELLED.value,
        )
        .order_by(BookingSlot.event_start_time.desc())
        .limit(1)
    )
