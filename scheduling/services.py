"""
Service layer for scheduling business logic.

This is the only module that connects the pure generator and reconciler
to the database. Every plan create or edit goes through sync_plan_sessions,
so a finalized plan always has its sessions.
"""

import logging
import warnings
from datetime import datetime
from typing import List, Optional, Tuple

from django.conf import settings
from django.db import DatabaseError, transaction
from django.utils import timezone

from .exceptions import ConfigurationError, ConflictError, PersistenceError, UnderGenerationWarning
from .generator import available_time_slots, generate_slots, next_available_date
from .models import Branch, Client, Plan, Session, Vehicle
from .reconciler import find_conflicts, reconcile
from .timeutils import calculate_end_time, format_date, normalize_date, normalize_time
from .types import (
    DEFAULT_SESSION_DURATION_MINUTES,
    HORIZON_DAYS,
    SLOT_INTERVAL_MINUTES,
    PlanTiming,
    PlanUpdateData,
    ReconcileResult,
    SessionSlot,
    SessionStatus,
    TimeSlot,
)

logger = logging.getLogger(__name__)


def scheduling_setting(name: str):
    """Read a value from settings.SCHEDULING, falling back to the module default."""
    defaults = {
        'HORIZON_DAYS': HORIZON_DAYS,
        'DEFAULT_SESSION_DURATION_MINUTES': DEFAULT_SESSION_DURATION_MINUTES,
        'SLOT_INTERVAL_MINUTES': SLOT_INTERVAL_MINUTES,
    }
    return getattr(settings, 'SCHEDULING', {}).get(name, defaults[name])


@transaction.atomic
def sync_plan_sessions(
    plan: Plan,
    previous_timing: Optional[PlanTiming] = None
) -> ReconcileResult:
    """
    Generate the plan's slots and bring its persisted sessions in line.

    Args:
        plan: Saved Plan instance
        previous_timing: PlanTiming before the edit (None for a new plan)

    Returns:
        ReconcileResult describing what was created, moved or cancelled

    Raises:
        ConfigurationError: If the branch calendar is malformed
        ConflictError: If another plan already holds one of the slots
        PersistenceError: If writing the sessions fails
        ValueError: If the plan fields are invalid
    """
    calendar = plan.branch.working_calendar()
    request = plan.session_request()
    interval = scheduling_setting('SLOT_INTERVAL_MINUTES')

    generated = generate_slots(request, calendar, horizon_days=scheduling_setting('HORIZON_DAYS'))
    existing = [
        session.to_record()
        for session in Session.objects.for_plan(plan).select_related('client')
    ]

    result = reconcile(
        request,
        generated,
        existing,
        calendar=calendar,
        find_vehicle_sessions=_vehicle_session_lookup(plan.branch),
        previous_timing=previous_timing,
        interval_minutes=interval,
    )

    if result.has_conflicts:
        logger.info(
            "Plan %s blocked by %d conflicting slot(s) on vehicle %s",
            plan.pk, len(result.conflicts), plan.vehicle_id
        )
        raise ConflictError(result.conflicts)

    if result.shortfall:
        message = (
            f"Only {plan.number_of_sessions - result.shortfall} of "
            f"{plan.number_of_sessions} sessions could be scheduled for plan {plan.pk}"
        )
        logger.warning(message)
        warnings.warn(message, UnderGenerationWarning, stacklevel=2)

    try:
        _apply_result(plan, result)
    except DatabaseError as exc:
        raise PersistenceError(f"Could not save sessions for plan {plan.pk}: {exc}") from exc

    logger.info("Synced sessions for plan %s: %s", plan.pk, result.summary())
    return result


@transaction.atomic
def create_plan(
    client: Client,
    vehicle: Vehicle,
    joining_date,
    joining_time: str,
    number_of_sessions: int,
    session_duration_minutes: Optional[int] = None
) -> Tuple[Plan, ReconcileResult]:
    """
    Create a plan and generate its sessions.

    Returns:
        Tuple of (created Plan, ReconcileResult)

    Raises:
        ConflictError: If a slot is taken; the plan is not saved either
        ValueError: If validation fails
    """
    _validate_plan_data(number_of_sessions, session_duration_minutes)
    if vehicle.branch_id != client.branch_id:
        raise ValueError("Vehicle belongs to a different branch than the client")

    if session_duration_minutes is None:
        session_duration_minutes = scheduling_setting('DEFAULT_SESSION_DURATION_MINUTES')

    plan = Plan.objects.create(
        branch=client.branch,
        client=client,
        vehicle=vehicle,
        joining_date=normalize_date(joining_date),
        joining_time=normalize_time(joining_time),
        number_of_sessions=number_of_sessions,
        session_duration_minutes=session_duration_minutes,
    )
    result = sync_plan_sessions(plan)
    return plan, result


@transaction.atomic
def update_plan(plan: Plan, update_data: PlanUpdateData) -> Tuple[Plan, ReconcileResult]:
    """
    Update plan fields and reconcile its sessions.

    Re-submitting unchanged timing is a no-op for the sessions. A new
    duration moves the end time of every session that can still move.

    Returns:
        Tuple of (updated Plan, ReconcileResult)

    Raises:
        ConflictError: If a moved slot is taken; nothing is saved
        ValueError: If validation fails
    """
    _validate_plan_data(update_data.number_of_sessions, update_data.session_duration_minutes)
    if update_data.vehicle is not None and update_data.vehicle.branch_id != plan.branch_id:
        raise ValueError("Vehicle belongs to a different branch than the plan")

    previous_timing = plan.timing()
    if (
        update_data.session_duration_minutes is not None
        and update_data.session_duration_minutes != plan.session_duration_minutes
    ):
        # Duration is not part of the timing, so force the series to be patched.
        previous_timing = None

    fields_to_update = {
        'vehicle': update_data.vehicle,
        'joining_date': (
            normalize_date(update_data.joining_date)
            if update_data.joining_date is not None else None
        ),
        'joining_time': (
            normalize_time(update_data.joining_time)
            if update_data.joining_time is not None else None
        ),
        'number_of_sessions': update_data.number_of_sessions,
        'session_duration_minutes': update_data.session_duration_minutes,
    }
    _apply_field_updates(plan, fields_to_update)
    plan.save()

    result = sync_plan_sessions(plan, previous_timing=previous_timing)
    return plan, result


@transaction.atomic
def reschedule_session(session: Session, new_date, new_time: Optional[str] = None) -> Session:
    """
    Move a single session to another day and/or start time.

    Raises:
        ValueError: If the session is locked or the new slot is not bookable
        ConflictError: If the vehicle is already booked at the new slot
    """
    if not session.is_mutable:
        raise ValueError(f"Cannot reschedule a {session.status.lower()} session")

    calendar = session.branch.working_calendar()
    session_date = format_date(new_date)
    start_time = normalize_time(new_time or session.start_time)
    duration = session.duration_minutes

    if not calendar.is_working_day(normalize_date(session_date)):
        raise ValueError(f"{session_date} is not a working day for this branch")

    slot = SessionSlot(
        session_number=session.session_number,
        session_date=session_date,
        start_time=start_time,
        end_time=calculate_end_time(start_time, duration),
        vehicle_id=session.vehicle_id,
        plan_id=session.plan_id,
        client_id=session.client_id,
    )
    occupied = [
        other.to_record()
        for other in Session.objects.active()
        .for_vehicle(session.vehicle_id)
        .on_date(session_date)
        .exclude(pk=session.pk)
        .select_related('client')
    ]
    conflicts = find_conflicts(
        [slot],
        occupied,
        calendar=calendar,
        duration_minutes=duration,
        interval_minutes=scheduling_setting('SLOT_INTERVAL_MINUTES'),
    )
    if conflicts:
        raise ConflictError(conflicts)

    session.session_date = slot.session_date
    session.start_time = slot.start_time
    session.end_time = slot.end_time
    session.status = SessionStatus.RESCHEDULED
    session.save()
    return session


def reschedule_to_next_available(session: Session) -> Session:
    """
    Move a session to the next working day on which its time is free.

    Raises:
        ValueError: If nothing is free within the search window
    """
    calendar = session.branch.working_calendar()
    taken = Session.objects.active().for_vehicle(session.vehicle_id).filter(
        start_time=session.start_time,
        session_date__gt=session.session_date,
    ).exclude(pk=session.pk).values_list('session_date', flat=True)
    own_dates = Session.objects.active().for_plan(session.plan_id).exclude(
        pk=session.pk
    ).values_list('session_date', flat=True)

    new_date = next_available_date(session.session_date, calendar, set(taken) | set(own_dates))
    if new_date is None:
        raise ValueError("No free day found for this session within the search window")
    return reschedule_session(session, new_date)


@transaction.atomic
def cancel_session(session: Session) -> Session:
    """
    Cancel a session. The row is kept and frees its slot.

    Raises:
        ValueError: If session is already cancelled or completed
    """
    if session.status == SessionStatus.CANCELLED:
        raise ValueError("Session is already cancelled")

    if session.status == SessionStatus.COMPLETED:
        raise ValueError("Cannot cancel a completed session")

    session.status = SessionStatus.CANCELLED
    session.save()
    return session


@transaction.atomic
def start_session(session: Session) -> Session:
    """
    Mark a session as in progress.

    Raises:
        ValueError: If session is not scheduled
    """
    if not session.is_mutable:
        raise ValueError(f"Cannot start a {session.status.lower()} session")

    session.status = SessionStatus.IN_PROGRESS
    session.save()
    return session


@transaction.atomic
def complete_session(session: Session) -> Session:
    """
    Mark a session as completed.

    Raises:
        ValueError: If session is already completed or cancelled
    """
    if session.status == SessionStatus.COMPLETED:
        raise ValueError("Session is already completed")

    if session.status in (SessionStatus.CANCELLED, SessionStatus.NO_SHOW):
        raise ValueError(f"Cannot complete a {session.status.lower()} session")

    session.status = SessionStatus.COMPLETED
    session.save()
    return session


@transaction.atomic
def mark_no_show(session: Session) -> Session:
    """
    Record that the client did not turn up.

    Raises:
        ValueError: If session is already closed
    """
    if session.status in (SessionStatus.COMPLETED, SessionStatus.CANCELLED, SessionStatus.NO_SHOW):
        raise ValueError(f"Cannot mark a {session.status.lower()} session as no-show")

    session.status = SessionStatus.NO_SHOW
    session.save()
    return session


@transaction.atomic
def advance_session_statuses(now: Optional[datetime] = None) -> Tuple[int, int]:
    """
    Move sessions along as the wall clock passes them.

    In-progress sessions whose end has passed are completed; scheduled
    sessions that are running now are marked in progress. A session that was
    never started is not completed automatically.

    Args:
        now: Aware datetime, defaults to the current time

    Returns:
        Tuple of (sessions started, sessions completed)
    """
    local_now = timezone.localtime(now) if now is not None else timezone.localtime()
    today = format_date(local_now)
    now_time = normalize_time(local_now)

    completed = Session.objects.due_to_finish(today, now_time).update(
        status=SessionStatus.COMPLETED, updated_at=timezone.now()
    )
    started = Session.objects.due_to_start(today, now_time).update(
        status=SessionStatus.IN_PROGRESS, updated_at=timezone.now()
    )

    if started or completed:
        logger.info("Session statuses advanced: %d started, %d completed", started, completed)
    return started, completed


def sync_plans_without_sessions(branch: Optional[Branch] = None) -> int:
    """
    Generate sessions for plans that have none.

    Plans whose slots conflict, whose branch calendar is broken or whose
    timing no longer fits the branch hours are skipped and logged.

    Returns:
        Number of plans that received sessions
    """
    plans = Plan.objects.without_sessions().select_related('branch')
    if branch is not None:
        plans = plans.filter(branch=branch)

    synced = 0
    for plan in plans:
        try:
            sync_plan_sessions(plan)
        except (ConflictError, ConfigurationError, ValueError) as exc:
            logger.warning("Skipping plan %s: %s", plan.pk, exc)
            continue
        synced += 1
    return synced


def get_sessions(branch: Branch, vehicle=None, client=None, start_date=None, end_date=None) -> List[Session]:
    """
    Get non-cancelled sessions of a branch ordered by date and time.

    Args:
        branch: Branch instance
        vehicle: Optional Vehicle (or id) filter
        client: Optional Client (or id) filter
        start_date: Optional first day (inclusive)
        end_date: Optional last day (inclusive)
    """
    queryset = Session.objects.active().for_branch(branch).select_related('client', 'vehicle')

    if vehicle is not None:
        queryset = queryset.for_vehicle(vehicle)
    if client is not None:
        queryset = queryset.for_client(client)
    if start_date is not None:
        queryset = queryset.filter(session_date__gte=format_date(start_date))
    if end_date is not None:
        queryset = queryset.filter(session_date__lte=format_date(end_date))

    return list(queryset.order_by('session_date', 'start_time'))


def get_available_time_slots(
    vehicle: Vehicle,
    session_date,
    duration_minutes: Optional[int] = None
) -> List[TimeSlot]:
    """
    List the vehicle's start times on a day with their availability.

    Raises:
        ConfigurationError: If the branch calendar is malformed
    """
    calendar = vehicle.branch.working_calendar()
    if duration_minutes is None:
        duration_minutes = scheduling_setting('DEFAULT_SESSION_DURATION_MINUTES')

    booked = {
        session.start_time: session.client.full_name
        for session in Session.objects.active()
        .for_vehicle(vehicle)
        .on_date(format_date(session_date))
        .select_related('client')
    }
    return available_time_slots(
        calendar,
        session_date,
        duration_minutes,
        booked=booked,
        interval_minutes=scheduling_setting('SLOT_INTERVAL_MINUTES'),
    )


def same_day_cancellations(branch: Branch, day=None) -> List[Session]:
    """Sessions of the branch cancelled for a day (today by default)."""
    if day is None:
        day = timezone.localdate()
    return list(
        Session.objects.for_branch(branch)
        .cancelled_on(format_date(day))
        .select_related('client', 'vehicle')
    )


def _vehicle_session_lookup(branch: Branch):
    """Bind the conflict-check query to a branch."""
    def find_vehicle_sessions(vehicle_id, first_date, last_date):
        return [
            session.to_record()
            for session in Session.objects.active()
            .for_branch(branch)
            .for_vehicle(vehicle_id)
            .in_date_range(first_date, last_date)
            .select_related('client')
        ]
    return find_vehicle_sessions


def _apply_result(plan: Plan, result: ReconcileResult) -> None:
    """Write a reconcile result: cancel surplus, move patched rows, insert new ones."""
    if result.cancelled:
        Session.objects.filter(pk__in=[r.id for r in result.cancelled]).update(
            status=SessionStatus.CANCELLED, updated_at=timezone.now()
        )

    if result.updated:
        # Park moving rows outside the active-slot constraint so the series
        # can shift onto dates its own rows still hold.
        moving_ids = [u.record.id for u in result.updated]
        Session.objects.filter(pk__in=moving_ids).update(status=SessionStatus.CANCELLED)
        for update in result.updated:
            Session.objects.filter(pk=update.record.id).update(
                session_date=update.slot.session_date,
                start_time=update.slot.start_time,
                end_time=update.slot.end_time,
                vehicle_id=update.slot.vehicle_id,
                status=update.record.status,
                updated_at=timezone.now(),
            )

    if result.created:
        Session.objects.bulk_create([
            Session(
                branch_id=plan.branch_id,
                client_id=slot.client_id,
                vehicle_id=slot.vehicle_id,
                plan_id=slot.plan_id,
                session_number=slot.session_number,
                session_date=slot.session_date,
                start_time=slot.start_time,
                end_time=slot.end_time,
                status=SessionStatus.SCHEDULED,
            )
            for slot in result.created
        ])


def _validate_plan_data(number_of_sessions: Optional[int], duration_minutes: Optional[int]) -> None:
    """Validate plan numbers when given."""
    if number_of_sessions is not None and number_of_sessions <= 0:
        raise ValueError("Number of sessions must be positive")

    if duration_minutes is not None and duration_minutes <= 0:
        raise ValueError("Duration must be positive")


def _apply_field_updates(obj, fields: dict) -> None:
    """Apply field updates to object if values are not None."""
    for field_name, value in fields.items():
        if value is not None:
            setattr(obj, field_name, value)
