"""
Date and time helpers for the scheduler.

Dates are plain calendar values stored as "YYYY-MM-DD" strings and times are
wall-clock "HH:MM" strings. Nothing here is timezone aware.
"""

import re
from datetime import date, datetime, time, timedelta
from typing import List, Tuple, Union

MINUTES_PER_HOUR = 60
MINUTES_PER_DAY = 24 * MINUTES_PER_HOUR

DATE_FORMAT = '%Y-%m-%d'
SLOT_KEY_SEPARATOR = ' '

_DATE_RE = re.compile(r'^(\d{4})-(\d{2})-(\d{2})')
_TIME_RE = re.compile(r'^(\d{1,2}):(\d{2})(?::(\d{2})(?:\.\d+)?)?$')

DateLike = Union[date, datetime, str]
TimeLike = Union[time, datetime, str]


def normalize_date(value: DateLike) -> date:
    """
    Reduce a date, datetime or date string to a date-only value.

    Strings may be "YYYY-MM-DD" or an ISO datetime; only the calendar part
    is kept, without any timezone conversion.

    Raises:
        ValueError: If the value cannot be read as a calendar date
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        match = _DATE_RE.match(value.strip())
        if match:
            year, month, day = (int(part) for part in match.groups())
            return date(year, month, day)
    raise ValueError(f"Invalid date: {value!r}")


def format_date(value: DateLike) -> str:
    """Format a date as a literal "YYYY-MM-DD" string."""
    return normalize_date(value).strftime(DATE_FORMAT)


def normalize_time(value: TimeLike) -> str:
    """
    Normalize a wall-clock time to "HH:MM" (seconds are dropped).

    Raises:
        ValueError: If the value is not a valid time of day
    """
    if isinstance(value, datetime):
        value = value.time()
    if isinstance(value, time):
        return f"{value.hour:02d}:{value.minute:02d}"
    if isinstance(value, str):
        match = _TIME_RE.match(value.strip())
        if match:
            hours, minutes = int(match.group(1)), int(match.group(2))
            if hours < 24 and minutes < MINUTES_PER_HOUR:
                return f"{hours:02d}:{minutes:02d}"
    raise ValueError(f"Invalid time: {value!r}")


def time_to_minutes(value: TimeLike) -> int:
    """Minutes since midnight for a wall-clock time."""
    hours, minutes = normalize_time(value).split(':')
    return int(hours) * MINUTES_PER_HOUR + int(minutes)


def minutes_to_time(total_minutes: int) -> str:
    """Inverse of time_to_minutes for values within a single day."""
    if not 0 <= total_minutes < MINUTES_PER_DAY:
        raise ValueError(f"{total_minutes} minutes is outside a single day")
    hours, minutes = divmod(total_minutes, MINUTES_PER_HOUR)
    return f"{hours:02d}:{minutes:02d}"


def calculate_end_time(start_time: TimeLike, duration_minutes: int) -> str:
    """
    Add a duration to a start time with explicit hour/minute carry.

    Raises:
        ValueError: If the duration is not positive or the session would
            run past midnight
    """
    if duration_minutes <= 0:
        raise ValueError("Duration must be positive")
    end_minutes = time_to_minutes(start_time) + duration_minutes
    if end_minutes >= MINUTES_PER_DAY:
        raise ValueError(
            f"A {duration_minutes} minute session starting at "
            f"{normalize_time(start_time)} would end past midnight"
        )
    return minutes_to_time(end_minutes)


def weekday_index(value: DateLike) -> int:
    """Day of week with 0=Sunday and 6=Saturday."""
    return (normalize_date(value).weekday() + 1) % 7


def add_days(value: DateLike, days: int) -> date:
    return normalize_date(value) + timedelta(days=days)


def slot_key(session_date: DateLike, start_time: TimeLike) -> str:
    """Combine a date and a start time into one sortable key."""
    return f"{format_date(session_date)}{SLOT_KEY_SEPARATOR}{normalize_time(start_time)}"


def split_slot_key(key: str) -> Tuple[str, str]:
    """Split a key built by slot_key back into (date, time) strings."""
    session_date, _, start_time = key.partition(SLOT_KEY_SEPARATOR)
    return format_date(session_date), normalize_time(start_time)


def to_naive_datetime(session_date: DateLike, start_time: TimeLike) -> datetime:
    """Wall-clock datetime for a slot, used only for local comparisons."""
    hours, minutes = normalize_time(start_time).split(':')
    return datetime.combine(normalize_date(session_date), time(int(hours), int(minutes)))


def time_grid(opens_at: TimeLike, closes_at: TimeLike, interval_minutes: int) -> List[str]:
    """Start times from opening (inclusive) to closing (exclusive)."""
    if interval_minutes <= 0:
        raise ValueError("Interval must be positive")
    current = time_to_minutes(opens_at)
    end = time_to_minutes(closes_at)
    times = []
    while current < end:
        times.append(minutes_to_time(current))
        current += interval_minutes
    return times


def fits_within_hours(
    start_time: TimeLike,
    duration_minutes: int,
    opens_at: TimeLike,
    closes_at: TimeLike
) -> bool:
    """True when a session of this length starts and ends inside the window."""
    start = time_to_minutes(start_time)
    return (
        start >= time_to_minutes(opens_at)
        and start + duration_minutes <= time_to_minutes(closes_at)
    )
