"""
Reconciliation of generated slots against persisted sessions.

Decides whether a plan submission creates a new series, patches the
existing one in place, or changes nothing. Conflicts are returned as part
of the result; nothing in this module writes to storage.
"""

from collections import defaultdict
from typing import Callable, Iterable, List, Optional, Sequence

from .generator import available_time_slots
from .types import (
    SLOT_INTERVAL_MINUTES,
    GenerationResult,
    PlanTiming,
    ReconcileAction,
    ReconcileResult,
    SessionRecord,
    SessionRequest,
    SessionSlot,
    SessionStatus,
    SessionUpdate,
    SlotConflict,
    WorkingCalendar,
)

VehicleSessionLookup = Callable[[object, str, str], Iterable[SessionRecord]]


def has_plan_changed(previous: Optional[PlanTiming], current: PlanTiming) -> bool:
    """Unknown previous timing counts as a change."""
    return previous is None or previous != current


def reconcile(
    request: SessionRequest,
    generated: GenerationResult,
    existing: Sequence[SessionRecord],
    *,
    calendar: WorkingCalendar,
    find_vehicle_sessions: VehicleSessionLookup,
    previous_timing: Optional[PlanTiming] = None,
    interval_minutes: int = SLOT_INTERVAL_MINUTES
) -> ReconcileResult:
    """
    Decide how a plan's sessions should change.

    Args:
        request: SessionRequest the slots were generated from
        generated: Output of generate_slots for the request
        existing: Persisted sessions of the plan, any status
        calendar: WorkingCalendar used to offer alternative start times
        find_vehicle_sessions: Callable (vehicle_id, first_date, last_date)
            returning the vehicle's sessions in that date range
        previous_timing: PlanTiming the existing sessions were built from

    Returns:
        ReconcileResult whose action is create, patch, noop or conflict

    Raises:
        ValueError: If the plan is cut below the sessions already used up
    """
    if not existing:
        return _plan_create(request, generated, calendar, find_vehicle_sessions, interval_minutes)

    if not has_plan_changed(previous_timing, request.timing):
        return ReconcileResult(
            action=ReconcileAction.NOOP,
            unchanged=sorted(existing, key=lambda r: r.session_number),
        )

    return _plan_patch(request, generated, existing, calendar, find_vehicle_sessions, interval_minutes)


def find_conflicts(
    slots: Sequence[SessionSlot],
    occupied: Iterable[SessionRecord],
    *,
    calendar: WorkingCalendar,
    duration_minutes: int,
    exclude_plan_id=None,
    interval_minutes: int = SLOT_INTERVAL_MINUTES
) -> List[SlotConflict]:
    """
    Match slots against sessions that hold the same vehicle, date and start time.

    Cancelled sessions and sessions of exclude_plan_id never block; another
    plan of the same client does.
    """
    by_date = defaultdict(dict)
    for record in occupied:
        if not record.occupies_slot:
            continue
        if exclude_plan_id is not None and record.plan_id == exclude_plan_id:
            continue
        by_date[(record.vehicle_id, record.session_date)][record.start_time] = record

    conflicts = []
    for slot in slots:
        booked = by_date.get((slot.vehicle_id, slot.session_date), {})
        holder = booked.get(slot.start_time)
        if holder is None:
            continue
        free = available_time_slots(
            calendar,
            slot.session_date,
            duration_minutes,
            booked={t: r.client_name for t, r in booked.items()},
            interval_minutes=interval_minutes,
        )
        conflicts.append(SlotConflict(
            slot=slot,
            conflicting=holder,
            alternatives=tuple(t.time for t in free if t.available),
        ))
    return conflicts


def _plan_create(request, generated, calendar, find_vehicle_sessions, interval_minutes):
    """All generated slots are new; any conflict blocks the whole batch."""
    conflicts = _check_slots(
        request, generated.slots, calendar, find_vehicle_sessions, interval_minutes
    )
    if conflicts:
        return ReconcileResult(action=ReconcileAction.CONFLICT, conflicts=conflicts)

    return ReconcileResult(
        action=ReconcileAction.CREATE,
        created=list(generated.slots),
        shortfall=generated.shortfall,
    )


def _plan_patch(request, generated, existing, calendar, find_vehicle_sessions, interval_minutes):
    """Move mutable sessions onto the new series, keeping locked ones as they are."""
    locked = sorted((r for r in existing if not r.is_mutable), key=lambda r: r.session_number)
    mutable = sorted((r for r in existing if r.is_mutable), key=lambda r: r.session_number)

    consumed = [r for r in locked if r.status in SessionStatus.CONSUMED]
    if request.session_count < len(consumed):
        raise ValueError(
            f"Cannot reduce plan to {request.session_count} sessions as "
            f"{len(consumed)} sessions have already been used. "
            f"Minimum allowed: {len(consumed)} sessions."
        )

    needed = request.session_count - len(consumed)
    held_dates = {r.session_date for r in locked if r.occupies_slot}
    candidates = [s for s in generated.slots if s.session_date not in held_dates][:needed]

    updated, unchanged, created = [], list(locked), []
    next_number = max(r.session_number for r in existing) + 1
    for index, slot in enumerate(candidates):
        if index < len(mutable):
            record = mutable[index]
            slot = slot.renumbered(record.session_number)
            if record.matches(slot):
                unchanged.append(record)
            else:
                updated.append(SessionUpdate(record=record, slot=slot))
        else:
            created.append(slot.renumbered(next_number))
            next_number += 1

    # A short series leaves the remaining sessions in place unless their day
    # now belongs to a moved session; a smaller plan cancels surplus.
    claimed_dates = {s.session_date for s in candidates}
    leftover = mutable[len(candidates):needed]
    unchanged.extend(r for r in leftover if r.session_date not in claimed_dates)
    cancelled = [r for r in leftover if r.session_date in claimed_dates] + mutable[needed:]

    moving = [u.slot for u in updated] + created
    conflicts = _check_slots(request, moving, calendar, find_vehicle_sessions, interval_minutes)
    if conflicts:
        return ReconcileResult(action=ReconcileAction.CONFLICT, conflicts=conflicts)

    return ReconcileResult(
        action=ReconcileAction.PATCH,
        created=created,
        updated=updated,
        cancelled=cancelled,
        unchanged=sorted(unchanged, key=lambda r: r.session_number),
        shortfall=max(needed - len(candidates), 0),
    )


def _check_slots(request, slots, calendar, find_vehicle_sessions, interval_minutes):
    """Look up the vehicle's sessions once for the span of the slots and match them."""
    if not slots:
        return []
    dates = sorted(s.session_date for s in slots)
    occupied = find_vehicle_sessions(request.vehicle_id, dates[0], dates[-1])
    return find_conflicts(
        slots,
        occupied,
        calendar=calendar,
        duration_minutes=request.duration_minutes,
        exclude_plan_id=request.plan_id,
        interval_minutes=interval_minutes,
    )
