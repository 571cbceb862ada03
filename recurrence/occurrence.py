"""
Occurrence calculator — when does the next session of a series happen?

Sessions are agreed in the practice's local time ("Tuesdays at 17:00"), so
all arithmetic happens in civil time in the practice timezone and only the
result is converted back to UTC:

    weekly    → +7 days, same wall-clock time
    biweekly  → +14 days, same wall-clock time
    monthly   → +1 calendar month; the 29th-31st clamp to the month's last
                day (Jan 31 → Feb 28), and the series then stays on the
                clamped day

Across a DST change the wall-clock time is kept and the UTC gap between
two sessions shifts by the DST offset.
"""

from collections.abc import Iterator
from datetime import datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from dateutil.relativedelta import relativedelta

from config.settings import settings
from models.enums import RecurringInterval

_STEPS = {
    RecurringInterval.WEEKLY.value: timedelta(weeks=1),
    RecurringInterval.BIWEEKLY.value: timedelta(weeks=2),
    RecurringInterval.MONTHLY.value: relativedelta(months=1),
}


def _zone(tz) -> ZoneInfo:
    return tz if isinstance(tz, ZoneInfo) else ZoneInfo(tz)


def parse_time_of_day(value: str) -> time:
    """Parse "HH:MM" into a time. Raises ValueError on anything else."""
    try:
        hours, minutes = value.split(":")
        return time(int(hours), int(minutes))
    except (AttributeError, TypeError, ValueError):
        raise ValueError(f"Invalid time of day {value!r}, expected HH:MM") from None


def next_occurrence(
    instant: datetime, interval: str, tz=settings.PRACTICE_TIMEZONE
) -> datetime:
    """Return the occurrence one interval after `instant`, as an aware UTC datetime."""
    interval = getattr(interval, "value", interval)
    step = _STEPS.get(interval)
    if step is None:
        raise ValueError(f"Unknown recurring interval: {interval!r}")

    # Arithmetic on an aware datetime keeps its tzinfo and works on wall-clock fields
    local = instant.astimezone(_zone(tz))
    return (local + step).astimezone(timezone.utc)


def first_occurrence(
    day_of_week: int, time_of_day: str, after: datetime, tz=settings.PRACTICE_TIMEZONE
) -> datetime:
    """First session strictly after `after` on `day_of_week` (0 = Monday) at `time_of_day`."""
    if not 0 <= day_of_week <= 6:
        raise ValueError(f"day_of_week must be 0-6, got {day_of_week}")

    zone = _zone(tz)
    local_after = after.astimezone(zone)
    days_ahead = (day_of_week - local_after.weekday()) % 7
    candidate = datetime.combine(
        local_after.date() + timedelta(days=days_ahead),
        parse_time_of_day(time_of_day),
        tzinfo=zone,
    )
    if candidate <= local_after:
        candidate += timedelta(weeks=1)
    return candidate.astimezone(timezone.utc)


def occurrences_between(
    last: datetime, interval: str, until: datetime, tz=settings.PRACTICE_TIMEZONE
) -> Iterator[datetime]:
    """Yield every occurrence after `last` that starts before `until`."""
    candidate = next_occurrence(last, interval, tz)
    while candidate < until:
        yield candidate
        candidate = next_occurrence(candidate, interval, tz)
