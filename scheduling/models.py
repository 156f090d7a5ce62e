"""
Models for the driving school scheduling system.

- Branch carries the working calendar (working days and operating hours)
- Plan is a client's enrollment: vehicle, joining date/time and session count
- Session stores every generated driving slot; sessions are never deleted,
  only cancelled
"""

from django.core.exceptions import ValidationError
from django.core.validators import RegexValidator
from django.db import models

from .exceptions import ConfigurationError
from .managers import PlanManager, SessionManager
from .timeutils import format_date, normalize_time, time_to_minutes
from .types import (
    DEFAULT_SESSION_DURATION_MINUTES,
    WEEKDAY_NAMES,
    PlanTiming,
    SessionRecord,
    SessionRequest,
    SessionStatus,
    WorkingCalendar,
)


ALL_WEEKDAYS = [0, 1, 2, 3, 4, 5, 6]

time_of_day_validator = RegexValidator(
    regex=r'^([01]\d|2[0-3]):[0-5]\d$',
    message='Enter a time in HH:MM format.'
)
calendar_date_validator = RegexValidator(
    regex=r'^\d{4}-\d{2}-\d{2}$',
    message='Enter a date in YYYY-MM-DD format.'
)


def default_working_days():
    return list(ALL_WEEKDAYS)


class Branch(models.Model):
    """
    A driving school branch and its working calendar.

    working_days uses 0=Sunday .. 6=Saturday.
    """

    name = models.CharField(max_length=200)
    working_days = models.JSONField(
        default=default_working_days,
        help_text="Operable weekdays (0=Sunday, 6=Saturday)"
    )
    operating_hours_start = models.CharField(
        max_length=5,
        default='06:00',
        validators=[time_of_day_validator]
    )
    operating_hours_end = models.CharField(
        max_length=5,
        default='21:00',
        validators=[time_of_day_validator]
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['name']
        verbose_name_plural = 'branches'

    def __str__(self):
        return self.name

    @property
    def working_day_names(self):
        return [WEEKDAY_NAMES[d] for d in sorted(self.working_days or []) if 0 <= d <= 6]

    def working_calendar(self) -> WorkingCalendar:
        """
        Build the calendar the scheduler runs against.

        Raises:
            ConfigurationError: If working days are empty or hours malformed
        """
        if not isinstance(self.working_days, (list, tuple)):
            raise ConfigurationError("Branch working days must be a list of weekday indices")
        return WorkingCalendar(
            working_days=frozenset(self.working_days),
            opens_at=self.operating_hours_start,
            closes_at=self.operating_hours_end,
        )

    def clean(self):
        """Validate working calendar data."""
        super().clean()

        try:
            self.working_calendar()
        except ConfigurationError as exc:
            raise ValidationError({'working_days': str(exc)})

    def save(self, *args, **kwargs):
        """Save with validation."""
        self.full_clean()
        super().save(*args, **kwargs)


class Vehicle(models.Model):
    """A training vehicle owned by a branch."""

    branch = models.ForeignKey(Branch, on_delete=models.CASCADE, related_name='vehicles')
    name = models.CharField(max_length=200)
    registration_number = models.CharField(max_length=20, blank=True, default='')
    is_active = models.BooleanField(default=True)

    class Meta:
        ordering = ['name']

    def __str__(self):
        if self.registration_number:
            return f"{self.name} ({self.registration_number})"
        return self.name


class Client(models.Model):
    """A learner enrolled at a branch."""

    branch = models.ForeignKey(Branch, on_delete=models.CASCADE, related_name='clients')
    first_name = models.CharField(max_length=100)
    last_name = models.CharField(max_length=100, blank=True, default='')
    phone_number = models.CharField(max_length=20, blank=True, default='')

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['first_name', 'last_name']

    def __str__(self):
        return self.full_name

    @property
    def full_name(self):
        return f"{self.first_name} {self.last_name}".strip()


class Plan(models.Model):
    """
    A client's driving plan.

    Joining date, joining time, vehicle and number of sessions decide where
    the plan's sessions are placed.
    """

    branch = models.ForeignKey(Branch, on_delete=models.CASCADE, related_name='plans')
    client = models.ForeignKey(Client, on_delete=models.CASCADE, related_name='plans')
    vehicle = models.ForeignKey(Vehicle, on_delete=models.PROTECT, related_name='plans')

    joining_date = models.DateField()
    joining_time = models.CharField(
        max_length=5,
        validators=[time_of_day_validator],
        help_text="Daily session start time (HH:MM)"
    )
    number_of_sessions = models.PositiveIntegerField()
    session_duration_minutes = models.PositiveIntegerField(
        default=DEFAULT_SESSION_DURATION_MINUTES
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = PlanManager()

    class Meta:
        ordering = ['-created_at']

    def __str__(self):
        return f"{self.client} - {self.number_of_sessions} sessions from {format_date(self.joining_date)}"

    def timing(self) -> PlanTiming:
        return PlanTiming(
            joining_date=format_date(self.joining_date),
            joining_time=normalize_time(self.joining_time),
            vehicle_id=self.vehicle_id,
            session_count=self.number_of_sessions,
        )

    def session_request(self) -> SessionRequest:
        return SessionRequest(
            client_id=self.client_id,
            vehicle_id=self.vehicle_id,
            plan_id=self.pk,
            joining_date=self.joining_date,
            joining_time=self.joining_time,
            session_count=self.number_of_sessions,
            duration_minutes=self.session_duration_minutes,
        )

    def clean(self):
        """Validate plan data."""
        super().clean()

        if self.number_of_sessions is not None and self.number_of_sessions < 1:
            raise ValidationError({
                'number_of_sessions': 'A plan needs at least one session.'
            })
        if self.session_duration_minutes is not None and self.session_duration_minutes < 1:
            raise ValidationError({
                'session_duration_minutes': 'Duration must be positive.'
            })
        if self.client_id and self.vehicle_id and self.client.branch_id != self.vehicle.branch_id:
            raise ValidationError({
                'vehicle': 'Vehicle belongs to a different branch than the client.'
            })

    def save(self, *args, **kwargs):
        """Save with validation."""
        if self.joining_time:
            self.joining_time = normalize_time(self.joining_time)
        self.full_clean()
        super().save(*args, **kwargs)


class Session(models.Model):
    """
    One driving session of a plan.

    session_date is kept as a literal YYYY-MM-DD string and start/end times
    as HH:MM strings so no timezone conversion ever shifts a session.
    """

    branch = models.ForeignKey(Branch, on_delete=models.CASCADE, related_name='sessions')
    client = models.ForeignKey(Client, on_delete=models.CASCADE, related_name='sessions')
    vehicle = models.ForeignKey(Vehicle, on_delete=models.PROTECT, related_name='sessions')
    plan = models.ForeignKey(Plan, on_delete=models.CASCADE, related_name='sessions')

    session_number = models.PositiveIntegerField(
        help_text="Position of this session in the plan (1-based)"
    )
    session_date = models.CharField(max_length=10, validators=[calendar_date_validator])
    start_time = models.CharField(max_length=5, validators=[time_of_day_validator])
    end_time = models.CharField(max_length=5, validators=[time_of_day_validator])

    status = models.CharField(
        max_length=20,
        choices=SessionStatus.CHOICES,
        default=SessionStatus.SCHEDULED
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = SessionManager()

    class Meta:
        ordering = ['session_date', 'start_time']
        constraints = [
            models.UniqueConstraint(
                fields=['plan', 'session_number'],
                name='unique_session_number_per_plan'
            ),
            models.UniqueConstraint(
                fields=['vehicle', 'session_date', 'start_time'],
                condition=~models.Q(status=SessionStatus.CANCELLED),
                name='unique_active_vehicle_slot'
            ),
        ]
        indexes = [
            models.Index(fields=['session_date', 'status', 'vehicle'], name='sess_date_status_vehicle_idx'),
            models.Index(fields=['client', 'session_number'], name='sess_client_number_idx'),
        ]

    def __str__(self):
        status_str = f" [{self.status}]" if self.status != SessionStatus.SCHEDULED else ""
        return f"#{self.session_number} {self.session_date} {self.start_time}{status_str}"

    @property
    def is_mutable(self):
        return self.status in SessionStatus.MUTABLE

    @property
    def duration_minutes(self):
        return time_to_minutes(self.end_time) - time_to_minutes(self.start_time)

    def to_record(self) -> SessionRecord:
        return SessionRecord(
            id=self.pk,
            session_number=self.session_number,
            session_date=self.session_date,
            start_time=normalize_time(self.start_time),
            end_time=normalize_time(self.end_time),
            vehicle_id=self.vehicle_id,
            client_id=self.client_id,
            plan_id=self.plan_id,
            status=self.status,
            client_name=self.client.full_name if self.client_id else '',
        )

    def clean(self):
        """Validate session data."""
        super().clean()

        if self.start_time and self.end_time and self.end_time <= self.start_time:
            raise ValidationError({
                'end_time': 'End time must be after start time.'
            })

    def save(self, *args, **kwargs):
        """Save with validation."""
        self.full_clean()
        super().save(*args, **kwargs)
