"""
Data types and constants for the session scheduling engine.

This module contains:
- Session status constants
- Value objects passed between the slot generator, the reconciler and
  the persistence layer
- DTOs for service layer operations
"""

from dataclasses import dataclass, field, replace
from datetime import date
from typing import Any, FrozenSet, List, Optional, Tuple

from .exceptions import ConfigurationError
from .timeutils import format_date, normalize_time, time_to_minutes, weekday_index


HORIZON_DAYS = 365
DEFAULT_SESSION_DURATION_MINUTES = 30
SLOT_INTERVAL_MINUTES = 30
RESCHEDULE_SEARCH_DAYS = 30

WEEKDAY_NAMES = [
    'Sunday',
    'Monday',
    'Tuesday',
    'Wednesday',
    'Thursday',
    'Friday',
    'Saturday',
]


class SessionStatus:
    """Lifecycle states of a driving session."""

    SCHEDULED = 'SCHEDULED'
    IN_PROGRESS = 'IN_PROGRESS'
    COMPLETED = 'COMPLETED'
    CANCELLED = 'CANCELLED'
    NO_SHOW = 'NO_SHOW'
    RESCHEDULED = 'RESCHEDULED'

    CHOICES = [
        (SCHEDULED, 'Scheduled'),
        (IN_PROGRESS, 'In Progress'),
        (COMPLETED, 'Completed'),
        (CANCELLED, 'Cancelled'),
        (NO_SHOW, 'No Show'),
        (RESCHEDULED, 'Rescheduled'),
    ]

    # Only these may be moved when a plan is edited.
    MUTABLE = frozenset({SCHEDULED, RESCHEDULED})
    LOCKED = frozenset({IN_PROGRESS, COMPLETED, CANCELLED, NO_SHOW})
    # Locked states that use up one of the plan's sessions.
    CONSUMED = frozenset({IN_PROGRESS, COMPLETED, NO_SHOW})


class ReconcileAction:
    CREATE = 'create'
    PATCH = 'patch'
    NOOP = 'noop'
    CONFLICT = 'conflict'


@dataclass(frozen=True)
class WorkingCalendar:
    """
    Branch working days and daily operating hours.

    working_days holds weekday indices with 0=Sunday and 6=Saturday.
    opens_at / closes_at are wall-clock "HH:MM" strings.
    """
    working_days: FrozenSet[int]
    opens_at: str = '06:00'
    closes_at: str = '21:00'

    def __post_init__(self):
        days = frozenset(self.working_days or ())
        if not days:
            raise ConfigurationError("Branch working days are not configured")
        invalid = sorted(d for d in days if not isinstance(d, int) or not 0 <= d <= 6)
        if invalid:
            raise ConfigurationError(f"Invalid working day indices: {invalid}")

        try:
            opens_at = normalize_time(self.opens_at)
            closes_at = normalize_time(self.closes_at)
        except ValueError as exc:
            raise ConfigurationError(f"Malformed operating hours: {exc}") from exc

        if time_to_minutes(opens_at) >= time_to_minutes(closes_at):
            raise ConfigurationError(
                f"Operating hours start ({opens_at}) must be before end ({closes_at})"
            )

        object.__setattr__(self, 'working_days', days)
        object.__setattr__(self, 'opens_at', opens_at)
        object.__setattr__(self, 'closes_at', closes_at)

    def is_working_day(self, day: date) -> bool:
        return weekday_index(day) in self.working_days


@dataclass(frozen=True)
class PlanTiming:
    """The plan fields that decide where sessions land."""
    joining_date: str
    joining_time: str
    vehicle_id: Any
    session_count: int


@dataclass
class SessionRequest:
    """Input for slot generation, built from an enrollment plan."""
    client_id: Any
    vehicle_id: Any
    plan_id: Any
    joining_date: Any
    joining_time: Any
    session_count: int
    duration_minutes: int = DEFAULT_SESSION_DURATION_MINUTES

    @property
    def timing(self) -> PlanTiming:
        return PlanTiming(
            joining_date=format_date(self.joining_date),
            joining_time=normalize_time(self.joining_time),
            vehicle_id=self.vehicle_id,
            session_count=self.session_count,
        )


@dataclass(frozen=True)
class SessionSlot:
    """One generated session: a literal date plus wall-clock start and end."""
    session_number: int
    session_date: str
    start_time: str
    end_time: str
    vehicle_id: Any
    plan_id: Any
    client_id: Any

    @property
    def key(self) -> Tuple[str, str]:
        return (self.session_date, self.start_time)

    def renumbered(self, session_number: int) -> 'SessionSlot':
        return replace(self, session_number=session_number)

    def as_dict(self) -> dict:
        return {
            'session_number': self.session_number,
            'session_date': self.session_date,
            'start_time': self.start_time,
            'end_time': self.end_time,
            'vehicle_id': self.vehicle_id,
            'plan_id': self.plan_id,
            'client_id': self.client_id,
        }


@dataclass(frozen=True)
class SessionRecord:
    """A persisted session as seen by the reconciler."""
    id: Any
    session_number: int
    session_date: str
    start_time: str
    end_time: str
    vehicle_id: Any
    client_id: Any
    plan_id: Any = None
    status: str = SessionStatus.SCHEDULED
    client_name: str = ''

    @property
    def key(self) -> Tuple[str, str]:
        return (self.session_date, self.start_time)

    @property
    def is_mutable(self) -> bool:
        return self.status in SessionStatus.MUTABLE

    @property
    def occupies_slot(self) -> bool:
        return self.status != SessionStatus.CANCELLED

    def matches(self, slot: SessionSlot) -> bool:
        """True when writing slot onto this record would change nothing."""
        return (
            self.session_date == slot.session_date
            and self.start_time == slot.start_time
            and self.end_time == slot.end_time
            and self.vehicle_id == slot.vehicle_id
            and self.plan_id == slot.plan_id
        )


@dataclass(frozen=True)
class TimeSlot:
    """A bookable start time on one day for one vehicle."""
    time: str
    available: bool
    booked_by: Optional[str] = None


@dataclass(frozen=True)
class SlotConflict:
    """A generated slot already taken by another client's active session."""
    slot: SessionSlot
    conflicting: SessionRecord
    alternatives: Tuple[str, ...] = ()

    def as_dict(self) -> dict:
        return {
            'session_number': self.slot.session_number,
            'session_date': self.slot.session_date,
            'start_time': self.slot.start_time,
            'booked_by': self.conflicting.client_name or None,
            'alternatives': list(self.alternatives),
        }


@dataclass
class GenerationResult:
    """Slots produced by the generator and the count that was asked for."""
    slots: List[SessionSlot]
    requested: int

    @property
    def shortfall(self) -> int:
        return max(self.requested - len(self.slots), 0)

    @property
    def is_complete(self) -> bool:
        return self.shortfall == 0


@dataclass(frozen=True)
class SessionUpdate:
    """Instruction to move an existing session onto a new slot."""
    record: SessionRecord
    slot: SessionSlot


@dataclass
class ReconcileResult:
    """Outcome of reconciling generated slots with persisted sessions."""
    action: str
    created: List[SessionSlot] = field(default_factory=list)
    updated: List[SessionUpdate] = field(default_factory=list)
    cancelled: List[SessionRecord] = field(default_factory=list)
    unchanged: List[SessionRecord] = field(default_factory=list)
    conflicts: List[SlotConflict] = field(default_factory=list)
    shortfall: int = 0

    @property
    def has_conflicts(self) -> bool:
        return bool(self.conflicts)

    def summary(self) -> dict:
        return {
            'action': self.action,
            'created': len(self.created),
            'updated': len(self.updated),
            'cancelled': len(self.cancelled),
            'unchanged': len(self.unchanged),
            'shortfall': self.shortfall,
        }


@dataclass
class PlanUpdateData:
    """DTO for plan update operations."""
    vehicle: Optional[Any] = None
    joining_date: Optional[date] = None
    joining_time: Optional[str] = None
    number_of_sessions: Optional[int] = None
    session_duration_minutes: Optional[int] = None
