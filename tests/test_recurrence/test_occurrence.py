"""
Tests for the occurrence calculator.

Sessions keep their wall-clock time in the practice timezone. In
Asia/Karachi (no DST) that also means a fixed UTC gap; in a DST zone the
UTC gap shifts by an hour across the change while local time stays put.
"""

from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from recurrence.occurrence import (
    first_occurrence,
    next_occurrence,
    occurrences_between,
    parse_time_of_day,
)

KARACHI = ZoneInfo("Asia/Karachi")
NEW_YORK = ZoneInfo("America/New_York")


def test_weekly_adds_seven_days():
    d = datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)
    assert next_occurrence(d, "weekly", "Asia/Karachi") == d + timedelta(days=7)


def test_biweekly_adds_fourteen_days():
    d = datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)
    assert next_occurrence(d, "biweekly", "Asia/Karachi") == d + timedelta(days=14)


def test_two_weekly_steps_are_fourteen_days_across_dst():
    """2026-03-08 is the US spring-forward date; Sunday 14:00 stays 14:00."""
    d = datetime(2026, 3, 1, 14, 0, tzinfo=NEW_YORK)

    twice = next_occurrence(next_occurrence(d, "weekly", NEW_YORK), "weekly", NEW_YORK)
    local = twice.astimezone(NEW_YORK)

    # Same tzinfo on both sides: subtraction compares wall-clock fields
    assert local - d == timedelta(days=14)
    assert (local.hour, local.minute) == (14, 0)
    # The absolute gap is one hour shorter because the clocks moved forward
    assert twice - d.astimezone(timezone.utc) == timedelta(days=14, hours=-1)


def test_two_weekly_steps_are_fourteen_days_in_practice_zone():
    d = datetime(2026, 3, 2, 14, 0, tzinfo=KARACHI)

    twice = next_occurrence(next_occurrence(d, "weekly"), "weekly")

    assert twice - d == timedelta(days=14)


def test_weekly_across_autumn_dst_keeps_local_time():
    d = datetime(2026, 10, 29, 17, 0, tzinfo=NEW_YORK)

    nxt = next_occurrence(d, "weekly", NEW_YORK).astimezone(NEW_YORK)

    assert nxt.date() == datetime(2026, 11, 5).date()
    assert nxt.hour == 17


def test_monthly_keeps_day_of_month():
    d = datetime(2026, 1, 15, 14, 0, tzinfo=KARACHI)
    assert next_occurrence(d, "monthly").astimezone(KARACHI) == datetime(2026, 2, 15, 14, 0, tzinfo=KARACHI)


def test_monthly_clamps_to_last_day_of_short_month():
    d = datetime(2026, 1, 31, 14, 0, tzinfo=KARACHI)

    feb = next_occurrence(d, "monthly").astimezone(KARACHI)
    mar = next_occurrence(feb, "monthly").astimezone(KARACHI)

    assert feb == datetime(2026, 2, 28, 14, 0, tzinfo=KARACHI)
    # The series stays on the clamped day from then on
    assert mar == datetime(2026, 3, 28, 14, 0, tzinfo=KARACHI)


def test_monthly_leap_year():
    d = datetime(2028, 1, 31, 14, 0, tzinfo=KARACHI)
    assert next_occurrence(d, "monthly").astimezone(KARACHI).day == 29


def test_result_is_utc():
    d = datetime(2026, 1, 5, 14, 0, tzinfo=KARACHI)
    assert next_occurrence(d, "weekly").tzinfo == timezone.utc


def test_unknown_interval_raises():
    with pytest.raises(ValueError, match="daily"):
        next_occurrence(datetime(2026, 1, 5, tzinfo=timezone.utc), "daily")


def test_first_occurrence_is_next_matching_weekday():
    # Monday 2026-01-05 10:00 local; Wednesday 17:00 is two days later
    after = datetime(2026, 1, 5, 10, 0, tzinfo=KARACHI)

    first = first_occurrence(2, "17:00", after).astimezone(KARACHI)

    assert first == datetime(2026, 1, 7, 17, 0, tzinfo=KARACHI)


def test_first_occurrence_is_strictly_after():
    after = datetime(2026, 1, 5, 14, 0, tzinfo=KARACHI)

    first = first_occurrence(0, "14:00", after).astimezone(KARACHI)

    assert first == datetime(2026, 1, 12, 14, 0, tzinfo=KARACHI)


def test_first_occurrence_later_today():
    after = datetime(2026, 1, 5, 9, 0, tzinfo=KARACHI)
    assert first_occurrence(0, "14:00", after).astimezone(KARACHI).date() == after.date()


def test_first_occurrence_rejects_bad_weekday():
    with pytest.raises(ValueError):
        first_occurrence(7, "14:00", datetime(2026, 1, 5, tzinfo=timezone.utc))


def test_occurrences_between_stops_before_until():
    last = datetime(2026, 1, 12, 9, 0, tzinfo=timezone.utc)
    until = datetime(2026, 3, 5, 9, 0, tzinfo=timezone.utc)

    dates = list(occurrences_between(last, "weekly", until))

    assert len(dates) == 7
    assert dates[0] == last + timedelta(days=7)
    assert all(b - a == timedelta(days=7) for a, b in zip(dates, dates[1:]))
    assert dates[-1] < until


def test_occurrences_between_excludes_exact_until():
    last = datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)
    until = last + timedelta(days=14)

    assert list(occurrences_between(last, "weekly", until)) == [last + timedelta(days=7)]


@pytest.mark.parametrize("value", ["17:00", "09:30", "00:00", "23:59"])
def test_parse_time_of_day(value):
    parsed = parse_time_of_day(value)
    assert f"{parsed.hour:02d}:{parsed.minute:02d}" == value


@pytest.mark.parametrize("value", ["17", "25:00", "ab:cd", None])
def test_parse_time_of_day_rejects_garbage(value):
    with pytest.raises(ValueError):
        parse_time_of_day(value)
