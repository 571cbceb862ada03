"""
Conflict checker — the therapist can only be in one session at a time.

Two slots conflict when their [start, end) ranges overlap:

    existing.start < new.end AND existing.end > new.start

Touching slots (one ends at 17:50, the next starts at 17:50) do not
conflict. Cancelled bookings never block anything, and the check is
practice-wide: a slot held by any client blocks every other client.

reserve_slot() is check-then-insert. Two refreshes running at the same
time can both pass the check; on PostgreSQL the bookings_no_overlap
exclusion constraint rejects the second insert and the loser reports a
conflict, exactly as if the check had caught it.
"""

import logging
import secrets
import string
from datetime import datetime, timedelta

from sqlalchemy import exists, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from models.booking import BookingSlot
from models.enums import BookingSource, BookingStatus, LocationType, PaymentStatus, SyncState
from models.payment import Payment
from models.series import RecurringSeries
from integrations.pricing import SessionPrice

logger = logging.getLogger(__name__)

_REFERENCE_ALPHABET = string.ascii_letters + string.digits


def transaction_reference() -> str:
    return "T-" + "".join(secrets.choice(_REFERENCE_ALPHABET) for _ in range(5))


def has_conflict(session: Session, start: datetime, end: datetime) -> bool:
    return bool(
        session.scalar(
            select(
                exists().where(
                    BookingSlot.status != BookingStatus.CANCELLED.value,
                    BookingSlot.event_start_time < end,
                    BookingSlot.event_end_time > start,
                )
            )
        )
    )


def reserve_slot(
    session: Session,
    series: RecurringSeries,
    start: datetime,
    price: SessionPrice,
) -> BookingSlot | None:
    """
    Create one booking and its "Not Initiated" payment, committed together.

    Returns None when the slot is taken. Commits on success, rolls back on
    a constraint violation; any other database error propagates.
    """
    end = start + timedelta(minutes=series.session_length_minutes)
    if has_conflict(session, start, end):
        logger.warning(f"Conflict detected for {start.isoformat()}, skipping slot")
        return None

    online = series.location_type == LocationType.ONLINE.value
    booking = BookingSlot(
        user_id=series.user_id,
        series_id=series.id,
        event_start_time=start,
        event_end_time=end,
        event_name="Recurring Session",
        status=BookingStatus.ACTIVE.value,
        source=BookingSource.SYSTEM.value,
        location_type=series.location_type,
        in_person_location=series.in_person_location,
        sync_status={
            "google": SyncState.PENDING.value,
            "zoom": SyncState.PENDING.value if online else SyncState.NOT_APPLICABLE.value,
            "last_sync_attempt": None,
        },
    )
    try:
        session.add(booking)
        session.flush()

        payment = Payment(
            booking_id=booking.id,
            user_id=series.user_id,
            amount=price.amount,
            currency=price.currency,
            transaction_reference_number=transaction_reference(),
            transaction_status=PaymentStatus.NOT_INITIATED.value,
        )
        session.add(payment)
        session.flush()

        booking.payment_id = payment.id
        session.commit()

    except IntegrityError as e:
        session.rollback()
        logger.warning(f"Slot {start.isoformat()} taken concurrently, skipping: {e.orig}")
        return None

    logger.debug(f"Created booking {booking.id} for {start.isoformat()}")
    return booking
