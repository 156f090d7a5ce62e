"""
Custom managers and querysets for scheduling models.

QuerySets define chainable query methods.
Managers use QuerySets to enable method chaining.
No business logic should be here - only query operations.

Session dates are "YYYY-MM-DD" and times "HH:MM" strings, so plain string
comparisons order them correctly.
"""

from django.db import models

from .types import SessionStatus


class PlanQuerySet(models.QuerySet):
    """Custom queryset for Plan model with chainable methods."""

    def for_branch(self, branch):
        return self.filter(branch=branch)

    def without_sessions(self):
        """Plans that have no session rows at all."""
        return self.filter(sessions__isnull=True)


class SessionQuerySet(models.QuerySet):
    """Custom queryset for Session model with chainable methods."""

    def active(self):
        """Get all sessions that still hold their slot (not cancelled)."""
        return self.exclude(status=SessionStatus.CANCELLED)

    def mutable(self):
        """Get sessions a plan edit may still move."""
        return self.filter(status__in=SessionStatus.MUTABLE)

    def locked(self):
        """Get sessions that are started, finished or cancelled."""
        return self.filter(status__in=SessionStatus.LOCKED)

    def for_branch(self, branch):
        return self.filter(branch=branch)

    def for_vehicle(self, vehicle):
        return self.filter(vehicle=vehicle)

    def for_client(self, client):
        return self.filter(client=client)

    def for_plan(self, plan):
        return self.filter(plan=plan)

    def on_date(self, session_date):
        """
        Get sessions on a single day.

        Args:
            session_date: "YYYY-MM-DD" string
        """
        return self.filter(session_date=session_date)

    def in_date_range(self, start_date, end_date):
        """
        Get sessions between two days, both inclusive.

        Args:
            start_date: "YYYY-MM-DD" string
            end_date: "YYYY-MM-DD" string
        """
        return self.filter(session_date__gte=start_date, session_date__lte=end_date)

    def cancelled_on(self, session_date):
        """Get sessions on a day that were cancelled."""
        return self.filter(status=SessionStatus.CANCELLED, session_date=session_date)

    def due_to_start(self, today, now_time):
        """
        Get not-yet-started sessions that are running right now.

        Args:
            today: "YYYY-MM-DD" string
            now_time: "HH:MM" string
        """
        return self.mutable().filter(
            session_date=today,
            start_time__lte=now_time,
            end_time__gt=now_time,
        )

    def due_to_finish(self, today, now_time):
        """
        Get in-progress sessions whose end time has passed.

        Sessions never started stay as they are.

        Args:
            today: "YYYY-MM-DD" string
            now_time: "HH:MM" string
        """
        return self.filter(status=SessionStatus.IN_PROGRESS).filter(
            models.Q(session_date__lt=today)
            | models.Q(session_date=today, end_time__lte=now_time)
        )


class PlanManager(models.Manager):
    """Custom manager for Plan model."""

    def get_queryset(self):
        """Return custom queryset for method chaining."""
        return PlanQuerySet(self.model, using=self._db)

    def for_branch(self, branch):
        return self.get_queryset().for_branch(branch)

    def without_sessions(self):
        return self.get_queryset().without_sessions()


class SessionManager(models.Manager):
    """Custom manager for Session model."""

    def get_queryset(self):
        """Return custom queryset for method chaining."""
        return SessionQuerySet(self.model, using=self._db)

    def active(self):
        """Get all sessions that still hold their slot (not cancelled)."""
        return self.get_queryset().active()

    def mutable(self):
        return self.get_queryset().mutable()

    def locked(self):
        return self.get_queryset().locked()

    def for_branch(self, branch):
        return self.get_queryset().for_branch(branch)

    def for_vehicle(self, vehicle):
        return self.get_queryset().for_vehicle(vehicle)

    def for_client(self, client):
        return self.get_queryset().for_client(client)

    def for_plan(self, plan):
        return self.get_queryset().for_plan(plan)

    def on_date(self, session_date):
        return self.get_queryset().on_date(session_date)

    def in_date_range(self, start_date, end_date):
        return self.get_queryset().in_date_range(start_date, end_date)

    def cancelled_on(self, session_date):
        return self.get_queryset().cancelled_on(session_date)

    def due_to_start(self, today, now_time):
        return self.get_queryset().due_to_start(today, now_time)

    def due_to_finish(self, today, now_time):
        return self.get_queryset().due_to_finish(today, now_time)
