"""
Tests for the conflict checker and slot reservation.
"""

import re
from datetime import timedelta
from decimal import Decimal

from sqlalchemy import text

from integrations.pricing import SessionPrice
from models.booking import BookingSlot
from models.enums import BookingStatus
from models.payment import Payment
from recurrence import conflicts
from recurrence.conflicts import has_conflict, reserve_slot, transaction_reference

PRICE = SessionPrice(amount=Decimal("8000"), currency="PKR")


def test_overlapping_slot_conflicts(session, user, make_booking, now):
    make_booking(now, user=user)

    assert has_conflict(session, now + timedelta(minutes=30), now + timedelta(minutes=80))
    assert has_conflict(session, now - timedelta(minutes=30), now + timedelta(minutes=20))
    assert has_conflict(session, now + timedelta(minutes=10), now + timedelta(minutes=20))


def test_touching_slots_do_not_conflict(session, user, make_booking, now):
    make_booking(now, user=user)

    assert not has_conflict(session, now + timedelta(minutes=50), now + timedelta(minutes=100))
    assert not has_conflict(session, now - timedelta(minutes=50), now)


def test_cancelled_booking_never_conflicts(session, user, make_booking, now):
    make_booking(now, user=user, status=BookingStatus.CANCELLED.value)

    assert not has_conflict(session, now, now + timedelta(minutes=50))


def test_conflicts_are_practice_wide(session, make_user, make_series, make_booking, now):
    other = make_user(name="Someone Else")
    make_booking(now, user=other)
    series = make_series(make_user(name="Recurring Client"))

    assert reserve_slot(session, series, now, PRICE) is None


def test_reserve_slot_creates_booking_and_payment(session, user, make_series, now):
    series = make_series(user, location_type="in-person", in_person_location="Clinic")

    booking = reserve_slot(session, series, now, PRICE)

    assert booking.series_id == series.id
    assert booking.event_end_time - booking.event_start_time == timedelta(minutes=50)
    assert booking.event_name == "Recurring Session"
    assert booking.status == BookingStatus.ACTIVE.value
    assert booking.in_person_location == "Clinic"
    assert booking.sync_status == {"google": "pending", "zoom": "not_applicable", "last_sync_attempt": None}

    payment = session.get(Payment, booking.payment_id)
    assert payment.booking_id == booking.id
    assert payment.amount == Decimal("8000")
    assert payment.currency == "PKR"
    assert payment.transaction_status == "Not Initiated"


def test_online_slot_needs_zoom_sync(session, user, make_series, now):
    booking = reserve_slot(session, make_series(user), now, PRICE)
    assert booking.sync_status["zoom"] == "pending"


def test_reserve_twice_yields_one_booking(session, user, make_series, now):
    series = make_series(user)

    assert reserve_slot(session, series, now, PRICE) is not None
    assert reserve_slot(session, series, now, PRICE) is None
    assert session.query(BookingSlot).count() == 1


def test_insert_losing_a_race_is_a_conflict(session, make_user, make_series, make_booking, now, monkeypatch):
    session.execute(text("CREATE UNIQUE INDEX uq_bookings_start ON bookings (event_start_time)"))
    session.commit()
    make_booking(now, user=make_user(name="Walk-in"))
    series = make_series(make_user(name="Recurring Client"))
    monkeypatch.setattr(conflicts, "has_conflict", lambda *args, **kwargs: False)

    assert reserve_slot(session, series, now, PRICE) is None

    assert session.query(BookingSlot).count() == 1
    assert session.query(Payment).count() == 0
    # The session is usable again after the rollback
    assert reserve_slot(session, series, now + timedelta(hours=1), PRICE) is not None


def test_transaction_reference_format():
    assert re.fullmatch(r"T-[A-Za-z0-9]{5}", transaction_reference())
