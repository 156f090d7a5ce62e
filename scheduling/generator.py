"""
Slot generation for driving session plans.

Pure functions: no database access, no settings lookups. The walk is bounded
by a lookahead horizon so a misconfigured calendar cannot loop forever.
"""

from datetime import date, timedelta
from typing import Dict, List, Optional

from .timeutils import (
    calculate_end_time,
    fits_within_hours,
    format_date,
    normalize_date,
    normalize_time,
    time_grid,
)
from .types import (
    HORIZON_DAYS,
    RESCHEDULE_SEARCH_DAYS,
    SLOT_INTERVAL_MINUTES,
    GenerationResult,
    SessionRequest,
    SessionSlot,
    TimeSlot,
    WorkingCalendar,
)


def generate_slots(
    request: SessionRequest,
    calendar: WorkingCalendar,
    horizon_days: int = HORIZON_DAYS
) -> GenerationResult:
    """
    Generate one session per working day starting at the joining date.

    Args:
        request: SessionRequest describing the plan
        calendar: WorkingCalendar of the branch
        horizon_days: How many days past the joining date the walk may go

    Returns:
        GenerationResult with slots numbered from 1. If the horizon runs out
        first the result is short and reports a non-zero shortfall.

    Raises:
        ValueError: If the request fields are invalid
    """
    _validate_request(request, calendar)

    joining_date = normalize_date(request.joining_date)
    start_time = normalize_time(request.joining_time)
    end_time = calculate_end_time(start_time, request.duration_minutes)
    last_date = joining_date + timedelta(days=horizon_days)

    slots = []
    for session_date in _working_days(joining_date, last_date, calendar):
        if len(slots) >= request.session_count:
            break
        slots.append(SessionSlot(
            session_number=len(slots) + 1,
            session_date=format_date(session_date),
            start_time=start_time,
            end_time=end_time,
            vehicle_id=request.vehicle_id,
            plan_id=request.plan_id,
            client_id=request.client_id,
        ))

    return GenerationResult(slots=slots, requested=request.session_count)


def next_available_date(
    after,
    calendar: WorkingCalendar,
    taken_dates=(),
    max_days: int = RESCHEDULE_SEARCH_DAYS
) -> Optional[str]:
    """
    First working day strictly after `after` whose date is not in taken_dates.

    Returns:
        "YYYY-MM-DD" string, or None if nothing is free within max_days
    """
    start = normalize_date(after) + timedelta(days=1)
    taken = {format_date(d) for d in taken_dates}
    for candidate in _working_days(start, start + timedelta(days=max_days - 1), calendar):
        if format_date(candidate) not in taken:
            return format_date(candidate)
    return None


def available_time_slots(
    calendar: WorkingCalendar,
    session_date,
    duration_minutes: int,
    booked: Optional[Dict[str, str]] = None,
    interval_minutes: int = SLOT_INTERVAL_MINUTES
) -> List[TimeSlot]:
    """
    List start times for one vehicle on one day.

    Args:
        calendar: WorkingCalendar of the branch
        session_date: Day to inspect
        duration_minutes: Session length; a start is offered only if the
            session also ends inside operating hours
        booked: Mapping of taken "HH:MM" start times to who holds them
        interval_minutes: Spacing of the time grid

    Returns:
        List of TimeSlot, empty on non-working days
    """
    if not calendar.is_working_day(normalize_date(session_date)):
        return []

    booked = {normalize_time(t): who for t, who in (booked or {}).items()}
    slots = []
    for start in time_grid(calendar.opens_at, calendar.closes_at, interval_minutes):
        if not fits_within_hours(start, duration_minutes, calendar.opens_at, calendar.closes_at):
            continue
        slots.append(TimeSlot(
            time=start,
            available=start not in booked,
            booked_by=booked.get(start),
        ))
    return slots


def _working_days(start: date, last: date, calendar: WorkingCalendar):
    """Yield working days from start to last, both inclusive."""
    current = start
    while current <= last:
        if calendar.is_working_day(current):
            yield current
        current += timedelta(days=1)


def _validate_request(request: SessionRequest, calendar: WorkingCalendar) -> None:
    """Validate request fields before generation."""
    if request.session_count <= 0:
        raise ValueError("Number of sessions must be positive")

    if request.duration_minutes <= 0:
        raise ValueError("Duration must be positive")

    start_time = normalize_time(request.joining_time)
    if not fits_within_hours(
        start_time, request.duration_minutes, calendar.opens_at, calendar.closes_at
    ):
        raise ValueError(
            f"A {request.duration_minutes} minute session at {start_time} does not fit "
            f"within operating hours {calendar.opens_at}-{calendar.closes_at}"
        )
