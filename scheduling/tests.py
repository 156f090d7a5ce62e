"""
Tests for the driving session scheduling system.

Tests cover:
- Date/time helpers and the working calendar
- Slot generator (pure)
- Reconciler: create, patch, no-op and conflict paths (pure)
- Service layer against the database
- API endpoints
- Management commands
"""

import warnings
from datetime import date, datetime, time
from io import StringIO

from django.core.exceptions import ValidationError
from django.core.management import call_command
from django.test import SimpleTestCase, TestCase, override_settings
from django.utils import timezone
from rest_framework import status
from rest_framework.test import APIClient, APITestCase

from . import services
from .exceptions import ConfigurationError, ConflictError, UnderGenerationWarning
from .generator import available_time_slots, generate_slots, next_available_date
from .models import Branch, Client, Plan, Session, Vehicle
from .reconciler import find_conflicts, has_plan_changed, reconcile
from .timeutils import (
    calculate_end_time,
    format_date,
    normalize_date,
    normalize_time,
    slot_key,
    split_slot_key,
    time_grid,
    weekday_index,
)
from .types import (
    PlanTiming,
    PlanUpdateData,
    ReconcileAction,
    SessionRecord,
    SessionRequest,
    SessionStatus,
    WorkingCalendar,
)


WEEKDAYS = frozenset({1, 2, 3, 4, 5})  # Monday to Friday
SATURDAY = date(2024, 11, 2)
MONDAY = date(2024, 11, 4)


def make_request(joining_date=MONDAY, joining_time='09:00', count=3, vehicle='v1',
                 client='c1', plan='p1', duration=30):
    return SessionRequest(
        client_id=client,
        vehicle_id=vehicle,
        plan_id=plan,
        joining_date=joining_date,
        joining_time=joining_time,
        session_count=count,
        duration_minutes=duration,
    )


def records_from(slots, statuses=None, start_id=1):
    """Turn generated slots into persisted records, overriding some statuses by number."""
    statuses = statuses or {}
    return [
        SessionRecord(
            id=start_id + index,
            session_number=slot.session_number,
            session_date=slot.session_date,
            start_time=slot.start_time,
            end_time=slot.end_time,
            vehicle_id=slot.vehicle_id,
            client_id=slot.client_id,
            plan_id=slot.plan_id,
            status=statuses.get(slot.session_number, SessionStatus.SCHEDULED),
        )
        for index, slot in enumerate(slots)
    ]


def lookup_returning(*records):
    def find_vehicle_sessions(vehicle_id, first_date, last_date):
        return [
            r for r in records
            if r.vehicle_id == vehicle_id and first_date <= r.session_date <= last_date
        ]
    return find_vehicle_sessions


def lookup_never_called(vehicle_id, first_date, last_date):
    raise AssertionError("vehicle sessions should not be looked up")


class TimeUtilsTests(SimpleTestCase):
    """Test date/time normalization helpers."""

    def test_normalize_date_strips_time_of_day(self):
        self.assertEqual(normalize_date(datetime(2024, 11, 4, 23, 59)), MONDAY)
        self.assertEqual(normalize_date('2024-11-04'), MONDAY)
        self.assertEqual(normalize_date('2024-11-04T23:30:00Z'), MONDAY)

    def test_normalize_date_rejects_garbage(self):
        with self.assertRaises(ValueError):
            normalize_date('04/11/2024')

    def test_format_date_is_literal(self):
        self.assertEqual(format_date(date(2024, 1, 5)), '2024-01-05')

    def test_normalize_time(self):
        self.assertEqual(normalize_time('9:05'), '09:05')
        self.assertEqual(normalize_time('17:30:00'), '17:30')
        self.assertEqual(normalize_time(time(7, 5)), '07:05')

        with self.assertRaises(ValueError):
            normalize_time('24:00')

    def test_calculate_end_time_carries_hours(self):
        self.assertEqual(calculate_end_time('09:45', 30), '10:15')
        self.assertEqual(calculate_end_time('17:30', 90), '19:00')

    def test_calculate_end_time_rejects_midnight_rollover(self):
        with self.assertRaises(ValueError):
            calculate_end_time('23:45', 30)

    def test_calculate_end_time_rejects_non_positive_duration(self):
        with self.assertRaises(ValueError):
            calculate_end_time('09:00', 0)

    def test_weekday_index_starts_on_sunday(self):
        self.assertEqual(weekday_index(date(2024, 11, 3)), 0)
        self.assertEqual(weekday_index(MONDAY), 1)
        self.assertEqual(weekday_index(SATURDAY), 6)

    def test_slot_key_round_trip(self):
        key = slot_key(MONDAY, '9:00')
        self.assertEqual(key, '2024-11-04 09:00')
        self.assertEqual(split_slot_key(key), ('2024-11-04', '09:00'))

    def test_time_grid_excludes_closing_time(self):
        self.assertEqual(time_grid('09:00', '10:30', 30), ['09:00', '09:30', '10:00'])


class WorkingCalendarTests(SimpleTestCase):
    """Test working calendar validation."""

    def test_empty_working_days_fail_fast(self):
        with self.assertRaises(ConfigurationError):
            WorkingCalendar(working_days=frozenset())

    def test_invalid_weekday_index(self):
        with self.assertRaises(ConfigurationError):
            WorkingCalendar(working_days=frozenset({1, 7}))

    def test_hours_must_be_ordered(self):
        with self.assertRaises(ConfigurationError):
            WorkingCalendar(working_days=WEEKDAYS, opens_at='18:00', closes_at='09:00')

    def test_malformed_hours(self):
        with self.assertRaises(ConfigurationError):
            WorkingCalendar(working_days=WEEKDAYS, opens_at='nine', closes_at='17:00')

    def test_hours_are_normalized(self):
        calendar = WorkingCalendar(working_days=[1, 2], opens_at='7:00', closes_at='18:00:00')
        self.assertEqual(calendar.opens_at, '07:00')
        self.assertEqual(calendar.closes_at, '18:00')
        self.assertEqual(calendar.working_days, frozenset({1, 2}))

    def test_is_working_day(self):
        calendar = WorkingCalendar(working_days=WEEKDAYS)
        self.assertTrue(calendar.is_working_day(MONDAY))
        self.assertFalse(calendar.is_working_day(SATURDAY))


class SlotGeneratorTests(SimpleTestCase):
    """Test the pure slot generator."""

    def setUp(self):
        self.calendar = WorkingCalendar(working_days=WEEKDAYS, opens_at='06:00', closes_at='21:00')

    def test_saturday_joining_starts_next_monday(self):
        """Joining on a Saturday with Mon-Fri working days."""
        result = generate_slots(make_request(joining_date=SATURDAY, count=3), self.calendar)

        self.assertEqual(
            [s.session_date for s in result.slots],
            ['2024-11-04', '2024-11-05', '2024-11-06']
        )
        for slot in result.slots:
            self.assertEqual(slot.start_time, '09:00')
            self.assertEqual(slot.end_time, '09:30')
        self.assertEqual([s.session_number for s in result.slots], [1, 2, 3])
        self.assertTrue(result.is_complete)

    def test_twenty_one_sessions_skip_weekends(self):
        result = generate_slots(make_request(joining_date=MONDAY, count=21), self.calendar)

        dates = [s.session_date for s in result.slots]
        self.assertEqual(len(dates), 21)
        self.assertEqual(dates[0], '2024-11-04')
        self.assertEqual(dates[-1], '2024-12-02')
        self.assertEqual(dates, sorted(set(dates)))
        for session_date in dates:
            self.assertIn(weekday_index(session_date), WEEKDAYS)

    def test_joining_date_counts_when_working(self):
        result = generate_slots(make_request(joining_date=MONDAY, count=1), self.calendar)
        self.assertEqual(result.slots[0].session_date, '2024-11-04')

    def test_single_working_day_calendar(self):
        calendar = WorkingCalendar(working_days=frozenset({0}))
        result = generate_slots(make_request(joining_date=MONDAY, count=2), calendar)
        self.assertEqual([s.session_date for s in result.slots], ['2024-11-10', '2024-11-17'])

    def test_horizon_bounds_generation(self):
        calendar = WorkingCalendar(working_days=frozenset(range(7)))
        result = generate_slots(make_request(count=20), calendar, horizon_days=9)

        self.assertEqual(len(result.slots), 10)
        self.assertEqual(result.shortfall, 10)
        self.assertFalse(result.is_complete)

    def test_slots_carry_plan_identifiers(self):
        result = generate_slots(make_request(count=1), self.calendar)
        self.assertEqual(result.slots[0].as_dict(), {
            'session_number': 1,
            'session_date': '2024-11-04',
            'start_time': '09:00',
            'end_time': '09:30',
            'vehicle_id': 'v1',
            'plan_id': 'p1',
            'client_id': 'c1',
        })

    def test_invalid_session_count(self):
        with self.assertRaises(ValueError):
            generate_slots(make_request(count=0), self.calendar)

    def test_session_must_fit_operating_hours(self):
        with self.assertRaises(ValueError):
            generate_slots(make_request(joining_time='05:30'), self.calendar)

        with self.assertRaises(ValueError):
            generate_slots(make_request(joining_time='20:45'), self.calendar)

    def test_available_time_slots(self):
        calendar = WorkingCalendar(working_days=WEEKDAYS, opens_at='09:00', closes_at='11:00')
        slots = available_time_slots(calendar, MONDAY, 30, booked={'09:30:00': 'Asha Rao'})

        self.assertEqual([s.time for s in slots], ['09:00', '09:30', '10:00', '10:30'])
        taken = slots[1]
        self.assertFalse(taken.available)
        self.assertEqual(taken.booked_by, 'Asha Rao')
        self.assertTrue(slots[0].available)

    def test_available_time_slots_respect_duration(self):
        calendar = WorkingCalendar(working_days=WEEKDAYS, opens_at='09:00', closes_at='11:00')
        slots = available_time_slots(calendar, MONDAY, 60)
        self.assertEqual([s.time for s in slots], ['09:00', '09:30', '10:00'])

    def test_no_time_slots_on_non_working_day(self):
        self.assertEqual(available_time_slots(self.calendar, SATURDAY, 30), [])

    def test_next_available_date_skips_taken_and_weekends(self):
        result = next_available_date(date(2024, 11, 1), self.calendar, taken_dates={'2024-11-04'})
        self.assertEqual(result, '2024-11-05')


class ReconcilerTests(SimpleTestCase):
    """Test create / patch / no-op decisions and conflict detection."""

    def setUp(self):
        self.calendar = WorkingCalendar(working_days=WEEKDAYS, opens_at='06:00', closes_at='21:00')

    def _reconcile(self, request, existing=(), lookup=None, previous=None):
        generated = generate_slots(request, self.calendar)
        return reconcile(
            request,
            generated,
            list(existing),
            calendar=self.calendar,
            find_vehicle_sessions=lookup or lookup_returning(),
            previous_timing=previous,
        )

    def _existing(self, request, statuses=None):
        return records_from(generate_slots(request, self.calendar).slots, statuses)

    def test_create_when_no_prior_sessions(self):
        result = self._reconcile(make_request(count=3))

        self.assertEqual(result.action, ReconcileAction.CREATE)
        self.assertEqual(len(result.created), 3)
        self.assertFalse(result.has_conflicts)

    def test_conflict_blocks_whole_create(self):
        other = SessionRecord(
            id=99, session_number=1, session_date='2024-11-05', start_time='09:00',
            end_time='09:30', vehicle_id='v1', client_id='c2', client_name='Ravi Kumar',
        )
        result = self._reconcile(make_request(count=3), lookup=lookup_returning(other))

        self.assertEqual(result.action, ReconcileAction.CONFLICT)
        self.assertEqual(result.created, [])
        self.assertEqual(len(result.conflicts), 1)

        conflict = result.conflicts[0]
        self.assertEqual(conflict.slot.session_date, '2024-11-05')
        self.assertIs(conflict.conflicting, other)
        self.assertNotIn('09:00', conflict.alternatives)
        self.assertIn('09:30', conflict.alternatives)
        self.assertEqual(conflict.as_dict()['booked_by'], 'Ravi Kumar')

    def test_cancelled_and_own_sessions_do_not_block(self):
        cancelled = SessionRecord(
            id=98, session_number=1, session_date='2024-11-04', start_time='09:00',
            end_time='09:30', vehicle_id='v1', client_id='c2', status=SessionStatus.CANCELLED,
        )
        own = SessionRecord(
            id=97, session_number=1, session_date='2024-11-05', start_time='09:00',
            end_time='09:30', vehicle_id='v1', client_id='c1', plan_id='p1',
        )
        result = self._reconcile(make_request(count=3), lookup=lookup_returning(cancelled, own))
        self.assertEqual(result.action, ReconcileAction.CREATE)

    def test_same_client_other_plan_blocks(self):
        earlier_plan = SessionRecord(
            id=96, session_number=1, session_date='2024-11-05', start_time='09:00',
            end_time='09:30', vehicle_id='v1', client_id='c1', plan_id='p0',
        )
        result = self._reconcile(make_request(count=3), lookup=lookup_returning(earlier_plan))

        self.assertEqual(result.action, ReconcileAction.CONFLICT)
        self.assertIs(result.conflicts[0].conflicting, earlier_plan)

    def test_short_series_cancels_sessions_on_claimed_days(self):
        original = make_request(count=3)
        existing = self._existing(original)
        edited = make_request(joining_date=date(2024, 11, 5), count=3)
        generated = generate_slots(edited, self.calendar, horizon_days=1)

        result = reconcile(
            edited,
            generated,
            existing,
            calendar=self.calendar,
            find_vehicle_sessions=lookup_returning(),
            previous_timing=original.timing,
        )

        self.assertEqual(result.action, ReconcileAction.PATCH)
        self.assertEqual(
            [(u.record.session_number, u.slot.session_date) for u in result.updated],
            [(1, '2024-11-05'), (2, '2024-11-06')]
        )
        self.assertEqual([r.session_number for r in result.cancelled], [3])
        self.assertEqual(result.shortfall, 1)
        self.assertEqual(result.unchanged, [])

    def test_short_series_keeps_sessions_on_free_days(self):
        original = make_request(count=3)
        existing = self._existing(original)
        edited = make_request(joining_time='10:00', count=3)
        generated = generate_slots(edited, self.calendar, horizon_days=1)

        result = reconcile(
            edited,
            generated,
            existing,
            calendar=self.calendar,
            find_vehicle_sessions=lookup_returning(),
            previous_timing=original.timing,
        )

        self.assertEqual([u.slot.session_date for u in result.updated], ['2024-11-04', '2024-11-05'])
        self.assertEqual([r.session_number for r in result.unchanged], [3])
        self.assertEqual(result.cancelled, [])

    def test_other_vehicle_does_not_block(self):
        other = SessionRecord(
            id=99, session_number=1, session_date='2024-11-04', start_time='09:00',
            end_time='09:30', vehicle_id='v2', client_id='c2',
        )
        slots = generate_slots(make_request(count=1), self.calendar).slots
        self.assertEqual(
            find_conflicts(slots, [other], calendar=self.calendar, duration_minutes=30),
            []
        )

    def test_resubmitting_same_plan_is_noop(self):
        request = make_request(count=3)
        existing = self._existing(request)

        result = self._reconcile(
            request, existing, lookup=lookup_never_called, previous=request.timing
        )

        self.assertEqual(result.action, ReconcileAction.NOOP)
        self.assertEqual(result.unchanged, existing)
        self.assertEqual(result.created, [])
        self.assertEqual(result.updated, [])

    def test_vehicle_change_patches_every_session_in_place(self):
        original = make_request(count=10, vehicle='v1')
        existing = self._existing(original)
        edited = make_request(count=10, vehicle='v2')

        result = self._reconcile(edited, existing, previous=original.timing)

        self.assertEqual(result.action, ReconcileAction.PATCH)
        self.assertEqual(len(result.updated), 10)
        for update in result.updated:
            self.assertEqual(update.slot.vehicle_id, 'v2')
            self.assertEqual(update.slot.session_number, update.record.session_number)
            self.assertEqual(update.slot.session_date, update.record.session_date)
        self.assertEqual(result.created, [])
        self.assertEqual(result.cancelled, [])

    def test_date_change_keeps_completed_session(self):
        original = make_request(count=10)
        existing = self._existing(original, {1: SessionStatus.COMPLETED})
        edited = make_request(joining_date=date(2024, 11, 18), count=10)

        result = self._reconcile(edited, existing, previous=original.timing)

        self.assertEqual(result.action, ReconcileAction.PATCH)
        updated_numbers = [u.record.session_number for u in result.updated]
        self.assertEqual(updated_numbers, list(range(2, 11)))
        self.assertEqual(result.updated[0].slot.session_date, '2024-11-18')
        self.assertEqual(result.updated[0].slot.session_number, 2)
        self.assertIn(existing[0], result.unchanged)

    def test_locked_sessions_are_never_patched(self):
        original = make_request(count=6)
        locked_statuses = {
            1: SessionStatus.COMPLETED,
            2: SessionStatus.IN_PROGRESS,
            3: SessionStatus.CANCELLED,
            4: SessionStatus.NO_SHOW,
        }
        existing = self._existing(original, locked_statuses)
        locked_ids = {r.id for r in existing if r.status in SessionStatus.LOCKED}

        for joining in (date(2024, 11, 11), date(2024, 11, 25), SATURDAY):
            edited = make_request(joining_date=joining, joining_time='10:00', count=6)
            result = self._reconcile(edited, existing, previous=original.timing)

            touched = {u.record.id for u in result.updated} | {r.id for r in result.cancelled}
            self.assertFalse(touched & locked_ids)

    def test_cancelled_sessions_do_not_use_up_the_plan(self):
        original = make_request(count=3)
        existing = self._existing(original, {1: SessionStatus.CANCELLED})
        edited = make_request(joining_time='10:00', count=3)

        result = self._reconcile(edited, existing, previous=original.timing)

        self.assertEqual(len(result.updated), 2)
        self.assertEqual(len(result.created), 1)
        self.assertEqual(result.created[0].session_number, 4)

    def test_new_series_avoids_days_held_by_locked_sessions(self):
        original = make_request(count=3)
        existing = self._existing(original, {1: SessionStatus.COMPLETED})
        edited = make_request(joining_time='10:00', count=3)

        result = self._reconcile(edited, existing, previous=original.timing)

        new_dates = [u.slot.session_date for u in result.updated]
        self.assertEqual(new_dates, ['2024-11-05', '2024-11-06'])

    def test_growing_plan_creates_surplus_sessions(self):
        original = make_request(count=3)
        existing = self._existing(original)
        edited = make_request(count=5)

        result = self._reconcile(edited, existing, previous=original.timing)

        self.assertEqual(result.action, ReconcileAction.PATCH)
        self.assertEqual(result.updated, [])
        self.assertEqual([s.session_number for s in result.created], [4, 5])
        self.assertEqual([s.session_date for s in result.created], ['2024-11-07', '2024-11-08'])

    def test_shrinking_plan_cancels_surplus_sessions(self):
        original = make_request(count=5)
        existing = self._existing(original)
        edited = make_request(count=3)

        result = self._reconcile(edited, existing, previous=original.timing)

        self.assertEqual([r.session_number for r in result.cancelled], [4, 5])
        self.assertEqual(len(result.unchanged), 3)
        self.assertEqual(result.updated, [])

    def test_cannot_shrink_below_used_sessions(self):
        original = make_request(count=3)
        existing = self._existing(original, {
            1: SessionStatus.COMPLETED,
            2: SessionStatus.COMPLETED,
            3: SessionStatus.NO_SHOW,
        })
        edited = make_request(count=2)

        with self.assertRaises(ValueError):
            self._reconcile(edited, existing, previous=original.timing)

    def test_patch_conflict_blocks_whole_edit(self):
        original = make_request(count=3)
        existing = self._existing(original)
        other = SessionRecord(
            id=99, session_number=1, session_date='2024-11-05', start_time='10:00',
            end_time='10:30', vehicle_id='v1', client_id='c2',
        )
        edited = make_request(joining_time='10:00', count=3)

        result = self._reconcile(edited, existing, lookup=lookup_returning(other), previous=original.timing)

        self.assertEqual(result.action, ReconcileAction.CONFLICT)
        self.assertEqual(result.updated, [])
        self.assertEqual(result.conflicts[0].slot.session_number, 2)

    def test_plan_change_detection(self):
        timing = PlanTiming('2024-11-04', '09:00', 'v1', 10)

        self.assertFalse(has_plan_changed(PlanTiming('2024-11-04', '09:00', 'v1', 10), timing))
        self.assertTrue(has_plan_changed(PlanTiming('2024-11-04', '09:00', 'v1', 11), timing))
        self.assertTrue(has_plan_changed(None, timing))

    def test_request_timing_is_normalized(self):
        request = make_request(joining_date=datetime(2024, 11, 4, 18, 0), joining_time='9:00')
        self.assertEqual(request.timing, PlanTiming('2024-11-04', '09:00', 'v1', 3))


class SchedulingTestMixin:
    """Shared fixtures for database-backed tests."""

    def create_fixtures(self):
        self.branch = Branch.objects.create(
            name="Main Branch",
            working_days=[1, 2, 3, 4, 5],
            operating_hours_start='06:00',
            operating_hours_end='21:00',
        )
        self.vehicle = Vehicle.objects.create(branch=self.branch, name="Swift", registration_number="KA01AB1234")
        self.other_vehicle = Vehicle.objects.create(branch=self.branch, name="i20")
        self.client_a = Client.objects.create(branch=self.branch, first_name="Asha", last_name="Rao")
        self.client_b = Client.objects.create(branch=self.branch, first_name="Ravi", last_name="Kumar")

    def plan_sessions(self, plan):
        return list(Session.objects.for_plan(plan).order_by('session_number'))


class BranchModelTests(SchedulingTestMixin, TestCase):
    """Test Branch calendar validation."""

    def setUp(self):
        self.create_fixtures()

    def test_working_calendar(self):
        calendar = self.branch.working_calendar()
        self.assertEqual(calendar.working_days, WEEKDAYS)
        self.assertEqual(self.branch.working_day_names, ['Monday', 'Tuesday', 'Wednesday', 'Thursday', 'Friday'])

    def test_empty_working_days_rejected_on_save(self):
        self.branch.working_days = []
        with self.assertRaises(ValidationError):
            self.branch.save()

    def test_reversed_hours_rejected_on_save(self):
        self.branch.operating_hours_start = '20:00'
        self.branch.operating_hours_end = '08:00'
        with self.assertRaises(ValidationError):
            self.branch.save()


class PlanServiceTests(SchedulingTestMixin, TestCase):
    """Test plan creation and editing through the service layer."""

    def setUp(self):
        self.create_fixtures()

    def _create(self, client=None, vehicle=None, joining_date=SATURDAY, joining_time='09:00', count=5):
        return services.create_plan(
            client=client or self.client_a,
            vehicle=vehicle or self.vehicle,
            joining_date=joining_date,
            joining_time=joining_time,
            number_of_sessions=count,
        )

    def test_create_plan_generates_sessions(self):
        plan, result = self._create()

        self.assertEqual(result.action, ReconcileAction.CREATE)
        sessions = self.plan_sessions(plan)
        self.assertEqual(len(sessions), 5)
        self.assertEqual(sessions[0].session_date, '2024-11-04')
        self.assertEqual(sessions[0].start_time, '09:00')
        self.assertEqual(sessions[0].end_time, '09:30')
        self.assertTrue(all(s.status == SessionStatus.SCHEDULED for s in sessions))
        self.assertTrue(all(s.branch_id == self.branch.id for s in sessions))

    def test_resubmitting_unchanged_plan_is_noop(self):
        plan, _ = self._create()
        before = [(s.id, s.session_date, s.updated_at) for s in self.plan_sessions(plan)]

        plan, result = services.update_plan(plan, PlanUpdateData(
            joining_date=SATURDAY,
            joining_time='09:00',
            number_of_sessions=5,
        ))

        self.assertEqual(result.action, ReconcileAction.NOOP)
        after = [(s.id, s.session_date, s.updated_at) for s in self.plan_sessions(plan)]
        self.assertEqual(before, after)

    def test_conflicting_plan_is_rejected_and_not_saved(self):
        self._create()

        with self.assertRaises(ConflictError) as ctx:
            self._create(client=self.client_b, joining_date=MONDAY)

        self.assertEqual(len(ctx.exception.conflicts), 5)
        self.assertEqual(Plan.objects.count(), 1)
        self.assertEqual(Session.objects.for_client(self.client_b).count(), 0)

    def test_same_time_on_other_vehicle_is_fine(self):
        self._create()
        plan, result = self._create(client=self.client_b, vehicle=self.other_vehicle)
        self.assertEqual(result.action, ReconcileAction.CREATE)

    def test_vehicle_change_moves_sessions(self):
        plan, _ = self._create()
        before = {s.id: s.session_date for s in self.plan_sessions(plan)}

        plan, result = services.update_plan(plan, PlanUpdateData(vehicle=self.other_vehicle))

        self.assertEqual(result.action, ReconcileAction.PATCH)
        sessions = self.plan_sessions(plan)
        self.assertTrue(all(s.vehicle_id == self.other_vehicle.id for s in sessions))
        self.assertEqual({s.id: s.session_date for s in sessions}, before)

    def test_shifting_series_by_one_day(self):
        plan, _ = self._create(joining_date=MONDAY)

        plan, result = services.update_plan(plan, PlanUpdateData(joining_date=date(2024, 11, 5)))

        self.assertEqual(len(result.updated), 5)
        dates = [s.session_date for s in self.plan_sessions(plan)]
        self.assertEqual(dates, ['2024-11-05', '2024-11-06', '2024-11-07', '2024-11-08', '2024-11-11'])
        self.assertTrue(all(s.status == SessionStatus.SCHEDULED for s in self.plan_sessions(plan)))

    def test_date_change_after_first_session_completed(self):
        plan, _ = self._create(joining_date=MONDAY, count=10)
        first = self.plan_sessions(plan)[0]
        services.complete_session(first)

        services.update_plan(plan, PlanUpdateData(joining_date=date(2024, 11, 18)))

        sessions = self.plan_sessions(plan)
        self.assertEqual(sessions[0].session_date, '2024-11-04')
        self.assertEqual(sessions[0].status, SessionStatus.COMPLETED)
        self.assertEqual(sessions[1].session_date, '2024-11-18')
        self.assertEqual([s.session_number for s in sessions], list(range(1, 11)))

    def test_shrinking_plan_cancels_surplus(self):
        plan, _ = self._create()

        plan, result = services.update_plan(plan, PlanUpdateData(number_of_sessions=3))

        self.assertEqual(len(result.cancelled), 2)
        self.assertEqual(Session.objects.active().for_plan(plan).count(), 3)
        self.assertEqual(Session.objects.for_plan(plan).count(), 5)

    def test_growing_plan_adds_sessions(self):
        plan, _ = self._create()

        services.update_plan(plan, PlanUpdateData(number_of_sessions=7))

        sessions = self.plan_sessions(plan)
        self.assertEqual(len(sessions), 7)
        self.assertEqual(sessions[-1].session_number, 7)

    def test_edit_into_conflict_leaves_plan_untouched(self):
        plan, _ = self._create()
        self._create(client=self.client_b, joining_time='10:00')

        with self.assertRaises(ConflictError):
            services.update_plan(plan, PlanUpdateData(joining_time='10:00'))

        plan.refresh_from_db()
        self.assertEqual(plan.joining_time, '09:00')
        self.assertTrue(all(s.start_time == '09:00' for s in self.plan_sessions(plan)))

    def test_misconfigured_branch_fails_fast(self):
        Branch.objects.filter(pk=self.branch.pk).update(working_days=[])
        self.client_a.refresh_from_db()

        with self.assertRaises(ConfigurationError):
            self._create()
        self.assertEqual(Plan.objects.count(), 0)

    @override_settings(SCHEDULING={'HORIZON_DAYS': 3})
    def test_under_generation_is_reported(self):
        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter('always')
            plan, result = self._create(joining_date=MONDAY, count=10)

        self.assertEqual(result.shortfall, 6)
        self.assertEqual(len(self.plan_sessions(plan)), 4)
        self.assertTrue(any(issubclass(w.category, UnderGenerationWarning) for w in caught))

    def test_duration_change_moves_end_times(self):
        plan, _ = self._create(count=3)
        before = [s.session_date for s in self.plan_sessions(plan)]

        plan, result = services.update_plan(plan, PlanUpdateData(session_duration_minutes=60))

        self.assertEqual(result.action, ReconcileAction.PATCH)
        self.assertEqual(len(result.updated), 3)
        sessions = self.plan_sessions(plan)
        self.assertEqual([s.end_time for s in sessions], ['10:00', '10:00', '10:00'])
        self.assertEqual([s.session_date for s in sessions], before)
        self.assertEqual(plan.session_duration_minutes, 60)

    def test_duration_change_leaves_completed_session(self):
        plan, _ = self._create(count=3)
        first = self.plan_sessions(plan)[0]
        services.complete_session(first)

        services.update_plan(plan, PlanUpdateData(session_duration_minutes=45))

        sessions = self.plan_sessions(plan)
        self.assertEqual([s.end_time for s in sessions], ['09:30', '09:45', '09:45'])

    def test_short_horizon_edit_cancels_sessions_on_claimed_days(self):
        plan, _ = self._create(joining_date=MONDAY, count=3)

        with self.settings(SCHEDULING={'HORIZON_DAYS': 1}):
            with warnings.catch_warnings(record=True) as caught:
                warnings.simplefilter('always')
                plan, result = services.update_plan(
                    plan, PlanUpdateData(joining_date=date(2024, 11, 5))
                )

        self.assertEqual(result.action, ReconcileAction.PATCH)
        self.assertEqual(result.shortfall, 1)
        self.assertTrue(any(issubclass(w.category, UnderGenerationWarning) for w in caught))

        active = list(Session.objects.active().for_plan(plan).order_by('session_number'))
        self.assertEqual([s.session_date for s in active], ['2024-11-05', '2024-11-06'])
        third = self.plan_sessions(plan)[2]
        self.assertEqual(third.status, SessionStatus.CANCELLED)

    def test_same_client_second_plan_on_taken_slot_conflicts(self):
        self._create()

        with self.assertRaises(ConflictError):
            self._create(joining_date=MONDAY)
        self.assertEqual(Plan.objects.count(), 1)

    def test_backfill_skips_plans_that_no_longer_fit(self):
        fitting = Plan.objects.create(
            branch=self.branch, client=self.client_a, vehicle=self.vehicle,
            joining_date=MONDAY, joining_time='09:00', number_of_sessions=2,
        )
        late = Plan.objects.create(
            branch=self.branch, client=self.client_b, vehicle=self.other_vehicle,
            joining_date=MONDAY, joining_time='20:00', number_of_sessions=2,
        )
        self.branch.operating_hours_end = '18:00'
        self.branch.save()

        synced = services.sync_plans_without_sessions()

        self.assertEqual(synced, 1)
        self.assertEqual(Session.objects.for_plan(fitting).count(), 2)
        self.assertEqual(Session.objects.for_plan(late).count(), 0)

    def test_vehicle_from_other_branch_rejected(self):
        other_branch = Branch.objects.create(name="North")
        foreign_vehicle = Vehicle.objects.create(branch=other_branch, name="Alto")

        with self.assertRaises(ValueError):
            self._create(vehicle=foreign_vehicle)


class SessionServiceTests(SchedulingTestMixin, TestCase):
    """Test single-session operations."""

    def setUp(self):
        self.create_fixtures()
        self.plan, _ = services.create_plan(
            client=self.client_a,
            vehicle=self.vehicle,
            joining_date=MONDAY,
            joining_time='09:00',
            number_of_sessions=3,
        )
        self.sessions = self.plan_sessions(self.plan)

    def test_reschedule_session(self):
        session = services.reschedule_session(self.sessions[0], date(2024, 11, 11), '10:00')

        session.refresh_from_db()
        self.assertEqual(session.session_date, '2024-11-11')
        self.assertEqual(session.start_time, '10:00')
        self.assertEqual(session.end_time, '10:30')
        self.assertEqual(session.status, SessionStatus.RESCHEDULED)

    def test_reschedule_to_weekend_rejected(self):
        with self.assertRaises(ValueError):
            services.reschedule_session(self.sessions[0], date(2024, 11, 9))

    def test_reschedule_into_taken_slot(self):
        services.create_plan(
            client=self.client_b,
            vehicle=self.vehicle,
            joining_date=date(2024, 11, 11),
            joining_time='10:00',
            number_of_sessions=1,
        )

        with self.assertRaises(ConflictError) as ctx:
            services.reschedule_session(self.sessions[0], date(2024, 11, 11), '10:00')
        self.assertIn('10:30', ctx.exception.conflicts[0].alternatives)

    def test_reschedule_locked_session_rejected(self):
        services.complete_session(self.sessions[0])
        with self.assertRaises(ValueError):
            services.reschedule_session(self.sessions[0], date(2024, 11, 11))

    def test_reschedule_to_next_available(self):
        last = self.sessions[-1]
        session = services.reschedule_to_next_available(self.sessions[0])
        self.assertGreater(session.session_date, last.session_date)
        self.assertEqual(session.session_date, '2024-11-07')

    def test_cancel_session(self):
        services.cancel_session(self.sessions[0])

        self.sessions[0].refresh_from_db()
        self.assertEqual(self.sessions[0].status, SessionStatus.CANCELLED)
        with self.assertRaises(ValueError):
            services.cancel_session(self.sessions[0])

    def test_cancelled_slot_can_be_booked_again(self):
        services.cancel_session(self.sessions[0])
        plan, result = services.create_plan(
            client=self.client_b,
            vehicle=self.vehicle,
            joining_date=MONDAY,
            joining_time='09:00',
            number_of_sessions=1,
        )
        self.assertEqual(result.action, ReconcileAction.CREATE)

    def test_complete_session(self):
        services.complete_session(self.sessions[0])

        self.sessions[0].refresh_from_db()
        self.assertEqual(self.sessions[0].status, SessionStatus.COMPLETED)
        with self.assertRaises(ValueError):
            services.complete_session(self.sessions[0])

    def test_cannot_complete_cancelled_session(self):
        services.cancel_session(self.sessions[0])
        with self.assertRaises(ValueError):
            services.complete_session(self.sessions[0])

    def test_start_and_no_show(self):
        services.start_session(self.sessions[0])
        self.assertEqual(self.sessions[0].status, SessionStatus.IN_PROGRESS)

        services.mark_no_show(self.sessions[1])
        self.assertEqual(self.sessions[1].status, SessionStatus.NO_SHOW)
        with self.assertRaises(ValueError):
            services.start_session(self.sessions[1])

    def test_advance_session_statuses(self):
        started, completed = services.advance_session_statuses(
            timezone.make_aware(datetime(2024, 11, 4, 9, 10))
        )
        self.assertEqual((started, completed), (1, 0))
        self.sessions[0].refresh_from_db()
        self.assertEqual(self.sessions[0].status, SessionStatus.IN_PROGRESS)

        started, completed = services.advance_session_statuses(
            timezone.make_aware(datetime(2024, 11, 5, 8, 0))
        )
        self.assertEqual((started, completed), (0, 1))
        self.sessions[0].refresh_from_db()
        self.assertEqual(self.sessions[0].status, SessionStatus.COMPLETED)
        self.sessions[1].refresh_from_db()
        self.assertEqual(self.sessions[1].status, SessionStatus.SCHEDULED)

    def test_sessions_never_started_are_not_completed(self):
        started, completed = services.advance_session_statuses(
            timezone.make_aware(datetime(2024, 11, 7, 8, 0))
        )

        self.assertEqual((started, completed), (0, 0))
        self.assertEqual(
            Session.objects.for_plan(self.plan).filter(status=SessionStatus.SCHEDULED).count(), 3
        )

    def test_available_time_slots(self):
        slots = services.get_available_time_slots(self.vehicle, MONDAY)

        by_time = {s.time: s for s in slots}
        self.assertFalse(by_time['09:00'].available)
        self.assertEqual(by_time['09:00'].booked_by, 'Asha Rao')
        self.assertTrue(by_time['09:30'].available)
        self.assertEqual(slots[0].time, '06:00')
        self.assertEqual(slots[-1].time, '20:30')

    def test_get_sessions_filters(self):
        services.cancel_session(self.sessions[2])

        sessions = services.get_sessions(self.branch, vehicle=self.vehicle)
        self.assertEqual(len(sessions), 2)

        sessions = services.get_sessions(self.branch, start_date=date(2024, 11, 5))
        self.assertEqual([s.session_date for s in sessions], ['2024-11-05'])

    def test_same_day_cancellations(self):
        services.cancel_session(self.sessions[1])

        cancelled = services.same_day_cancellations(self.branch, date(2024, 11, 5))
        self.assertEqual([s.pk for s in cancelled], [self.sessions[1].pk])
        self.assertEqual(services.same_day_cancellations(self.branch, MONDAY), [])


class PlanAPITests(SchedulingTestMixin, APITestCase):
    """Test plan endpoints."""

    def setUp(self):
        self.create_fixtures()
        self.api = APIClient()

    def _post_plan(self, client, joining_date='2024-11-02', joining_time='09:00', count=3):
        return self.api.post('/api/plans/', {
            'client': client.id,
            'vehicle': self.vehicle.id,
            'joining_date': joining_date,
            'joining_time': joining_time,
            'number_of_sessions': count,
        }, format='json')

    def test_create_plan(self):
        response = self._post_plan(self.client_a)

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['reconciliation']['action'], 'create')
        self.assertEqual(len(response.data['sessions']), 3)
        self.assertEqual(response.data['sessions'][0]['session_date'], '2024-11-04')

    def test_conflicting_plan_returns_409(self):
        self._post_plan(self.client_a)

        response = self._post_plan(self.client_b, joining_date='2024-11-04')

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(len(response.data['conflicts']), 3)
        self.assertIn('09:30', response.data['conflicts'][0]['alternatives'])
        self.assertEqual(Plan.objects.count(), 1)

    def test_invalid_time_rejected(self):
        response = self._post_plan(self.client_a, joining_time='25:00')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_time_outside_operating_hours_rejected(self):
        response = self._post_plan(self.client_a, joining_time='05:00')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(Plan.objects.count(), 0)

    def test_patch_with_same_data_is_noop(self):
        plan_id = self._post_plan(self.client_a).data['plan']['id']

        response = self.api.patch(f'/api/plans/{plan_id}/', {
            'joining_date': '2024-11-02',
            'joining_time': '09:00:00',
            'number_of_sessions': 3,
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['reconciliation']['action'], 'noop')
        self.assertEqual(Session.objects.count(), 3)

    def test_patch_time_moves_sessions(self):
        plan_id = self._post_plan(self.client_a).data['plan']['id']

        response = self.api.patch(f'/api/plans/{plan_id}/', {'joining_time': '10:00'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['reconciliation']['updated'], 3)
        self.assertTrue(all(s['start_time'] == '10:00' for s in response.data['sessions']))

    def test_plan_sessions_include_cancelled(self):
        plan_id = self._post_plan(self.client_a).data['plan']['id']
        self.api.patch(f'/api/plans/{plan_id}/', {'number_of_sessions': 2}, format='json')

        response = self.api.get(f'/api/plans/{plan_id}/sessions/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(
            [s['status'] for s in response.data],
            [SessionStatus.SCHEDULED, SessionStatus.SCHEDULED, SessionStatus.CANCELLED]
        )

    def test_list_and_get_plan(self):
        plan_id = self._post_plan(self.client_a).data['plan']['id']

        response = self.api.get('/api/plans/')
        self.assertEqual(len(response.data), 1)

        response = self.api.get(f'/api/plans/{plan_id}/')
        self.assertEqual(response.data['client_name'], 'Asha Rao')
        self.assertEqual(response.data['joining_time'], '09:00')


class SessionAPITests(SchedulingTestMixin, APITestCase):
    """Test session, calendar and availability endpoints."""

    def setUp(self):
        self.create_fixtures()
        self.api = APIClient()
        self.plan, _ = services.create_plan(
            client=self.client_a,
            vehicle=self.vehicle,
            joining_date=MONDAY,
            joining_time='09:00',
            number_of_sessions=3,
        )
        self.sessions = self.plan_sessions(self.plan)

    def test_cancel_session(self):
        response = self.api.delete(f'/api/sessions/{self.sessions[0].id}/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.sessions[0].refresh_from_db()
        self.assertEqual(self.sessions[0].status, SessionStatus.CANCELLED)

        response = self.api.delete(f'/api/sessions/{self.sessions[0].id}/')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_complete_session(self):
        response = self.api.post(f'/api/sessions/{self.sessions[0].id}/complete/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.sessions[0].refresh_from_db()
        self.assertEqual(self.sessions[0].status, SessionStatus.COMPLETED)

    def test_set_status(self):
        response = self.api.post(
            f'/api/sessions/{self.sessions[1].id}/status/',
            {'status': SessionStatus.NO_SHOW},
            format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['status'], SessionStatus.NO_SHOW)

    def test_reschedule_session(self):
        response = self.api.post(
            f'/api/sessions/{self.sessions[0].id}/reschedule/',
            {'session_date': '2024-11-11', 'start_time': '11:00'},
            format='json'
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['session_date'], '2024-11-11')
        self.assertEqual(response.data['status'], SessionStatus.RESCHEDULED)

    def test_reschedule_next_available(self):
        response = self.api.post(
            f'/api/sessions/{self.sessions[0].id}/reschedule/',
            {'next_available': True},
            format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['session_date'], '2024-11-07')

    def test_reschedule_requires_target(self):
        response = self.api.post(f'/api/sessions/{self.sessions[0].id}/reschedule/', {}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_branch_sessions(self):
        response = self.api.get(f'/api/branches/{self.branch.id}/sessions/', {
            'vehicle': self.vehicle.id,
            'start': '2024-11-05',
            'end': '2024-11-06',
        })

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([s['session_date'] for s in response.data], ['2024-11-05', '2024-11-06'])

    def test_vehicle_availability(self):
        response = self.api.get(
            f'/api/vehicles/{self.vehicle.id}/availability/',
            {'date': '2024-11-04', 'duration': 60}
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        nine = next(s for s in response.data if s['time'] == '09:00')
        self.assertFalse(nine['available'])
        self.assertEqual(nine['booked_by'], 'Asha Rao')
        self.assertEqual(response.data[-1]['time'], '20:00')

    def test_branch_calendar(self):
        response = self.api.get(f'/api/branches/{self.branch.id}/calendar/')
        self.assertEqual(response.data['working_days'], [1, 2, 3, 4, 5])

        response = self.api.patch(
            f'/api/branches/{self.branch.id}/calendar/',
            {'working_days': [6, 1, 1], 'operating_hours_end': '19:30'},
            format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.branch.refresh_from_db()
        self.assertEqual(self.branch.working_days, [1, 6])
        self.assertEqual(self.branch.operating_hours_end, '19:30')

    def test_branch_calendar_rejects_bad_values(self):
        response = self.api.patch(
            f'/api/branches/{self.branch.id}/calendar/',
            {'working_days': []},
            format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

        response = self.api.patch(
            f'/api/branches/{self.branch.id}/calendar/',
            {'operating_hours_start': '22:00'},
            format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)


class ManagementCommandTests(SchedulingTestMixin, TestCase):
    """Test management commands."""

    def setUp(self):
        self.create_fixtures()

    def test_sync_sessions_command(self):
        plan = Plan.objects.create(
            branch=self.branch,
            client=self.client_a,
            vehicle=self.vehicle,
            joining_date=MONDAY,
            joining_time='09:00',
            number_of_sessions=4,
        )

        out = StringIO()
        call_command('sync_sessions', f'--branch={self.branch.id}', stdout=out)

        self.assertIn('Successfully generated sessions for 1 plan(s)', out.getvalue())
        self.assertEqual(Session.objects.for_plan(plan).count(), 4)

        out = StringIO()
        call_command('sync_sessions', stdout=out)
        self.assertIn('for 0 plan(s)', out.getvalue())

    def test_advance_session_statuses_command(self):
        plan, _ = services.create_plan(
            client=self.client_a,
            vehicle=self.vehicle,
            joining_date=date(2020, 1, 6),
            joining_time='09:00',
            number_of_sessions=3,
        )
        first, second, third = self.plan_sessions(plan)
        services.start_session(first)
        services.start_session(second)

        out = StringIO()
        call_command('advance_session_statuses', stdout=out)

        self.assertIn('2 session(s) completed', out.getvalue())
        self.assertEqual(Session.objects.filter(status=SessionStatus.COMPLETED).count(), 2)
        third.refresh_from_db()
        self.assertEqual(third.status, SessionStatus.SCHEDULED)
