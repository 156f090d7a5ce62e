"""
Serializers for the scheduling API.
"""

from rest_framework import serializers

from .exceptions import ConfigurationError
from .models import Branch, Client, Plan, Session, Vehicle
from .timeutils import normalize_time
from .types import SessionStatus, WorkingCalendar


class WallClockTimeField(serializers.CharField):
    """Accepts "HH:MM" or "HH:MM:SS" and returns "HH:MM"."""

    def __init__(self, **kwargs):
        kwargs.setdefault('max_length', 8)
        super().__init__(**kwargs)

    def to_internal_value(self, data):
        value = super().to_internal_value(data)
        try:
            return normalize_time(value)
        except ValueError:
            raise serializers.ValidationError('Enter a time in HH:MM format.')


class BranchCalendarSerializer(serializers.ModelSerializer):
    """Serializer for reading and editing a branch working calendar."""

    working_days = serializers.ListField(
        child=serializers.IntegerField(min_value=0, max_value=6),
        allow_empty=False
    )
    operating_hours_start = WallClockTimeField()
    operating_hours_end = WallClockTimeField()
    working_day_names = serializers.ReadOnlyField()

    class Meta:
        model = Branch
        fields = [
            'id',
            'name',
            'working_days',
            'working_day_names',
            'operating_hours_start',
            'operating_hours_end',
        ]
        read_only_fields = ['id', 'name']

    def validate_working_days(self, value):
        return sorted(set(value))

    def validate(self, data):
        """Ensure the resulting calendar is usable."""
        instance = self.instance
        try:
            WorkingCalendar(
                working_days=frozenset(data.get('working_days', instance.working_days if instance else [])),
                opens_at=data.get('operating_hours_start', instance.operating_hours_start if instance else '06:00'),
                closes_at=data.get('operating_hours_end', instance.operating_hours_end if instance else '21:00'),
            )
        except ConfigurationError as exc:
            raise serializers.ValidationError(str(exc))
        return data


class PlanReadSerializer(serializers.ModelSerializer):
    """Serializer for reading/displaying Plan (output)."""

    client_name = serializers.CharField(source='client.full_name', read_only=True)
    vehicle_name = serializers.CharField(source='vehicle.name', read_only=True)

    class Meta:
        model = Plan
        fields = [
            'id',
            'branch',
            'client',
            'client_name',
            'vehicle',
            'vehicle_name',
            'joining_date',
            'joining_time',
            'number_of_sessions',
            'session_duration_minutes',
            'created_at',
            'updated_at',
        ]


class PlanCreateSerializer(serializers.Serializer):
    """Serializer for enrolling a client on a plan."""

    client = serializers.PrimaryKeyRelatedField(queryset=Client.objects.all())
    vehicle = serializers.PrimaryKeyRelatedField(queryset=Vehicle.objects.filter(is_active=True))
    joining_date = serializers.DateField()
    joining_time = WallClockTimeField()
    number_of_sessions = serializers.IntegerField(min_value=1)
    session_duration_minutes = serializers.IntegerField(min_value=1, required=False)

    def validate(self, data):
        """Vehicle and client must share a branch."""
        if data['vehicle'].branch_id != data['client'].branch_id:
            raise serializers.ValidationError({
                'vehicle': 'Vehicle belongs to a different branch than the client.'
            })
        return data


class PlanUpdateSerializer(serializers.Serializer):
    """Serializer for editing a plan's timing."""

    vehicle = serializers.PrimaryKeyRelatedField(
        queryset=Vehicle.objects.filter(is_active=True),
        required=False
    )
    joining_date = serializers.DateField(required=False)
    joining_time = WallClockTimeField(required=False)
    number_of_sessions = serializers.IntegerField(min_value=1, required=False)
    session_duration_minutes = serializers.IntegerField(min_value=1, required=False)


class SessionReadSerializer(serializers.ModelSerializer):
    """Serializer for reading/displaying Session (output)."""

    client_name = serializers.CharField(source='client.full_name', read_only=True)
    vehicle_name = serializers.CharField(source='vehicle.name', read_only=True)

    class Meta:
        model = Session
        fields = [
            'id',
            'plan',
            'client',
            'client_name',
            'vehicle',
            'vehicle_name',
            'session_number',
            'session_date',
            'start_time',
            'end_time',
            'status',
            'created_at',
            'updated_at',
        ]


class SessionRescheduleSerializer(serializers.Serializer):
    """Serializer for moving one session."""

    session_date = serializers.DateField(required=False)
    start_time = WallClockTimeField(required=False)
    next_available = serializers.BooleanField(default=False)

    def validate(self, data):
        if not data.get('next_available') and 'session_date' not in data:
            raise serializers.ValidationError(
                "Provide session_date or set next_available."
            )
        return data


class SessionQuerySerializer(serializers.Serializer):
    """Serializer for session list query parameters."""

    vehicle = serializers.IntegerField(required=False)
    client = serializers.IntegerField(required=False)
    start = serializers.DateField(required=False)
    end = serializers.DateField(required=False)

    def validate(self, data):
        """Ensure start is not after end."""
        if data.get('start') and data.get('end') and data['start'] > data['end']:
            raise serializers.ValidationError("Start date must not be after end date.")
        return data


class AvailabilityQuerySerializer(serializers.Serializer):
    """Serializer for vehicle availability query parameters."""

    date = serializers.DateField()
    duration = serializers.IntegerField(min_value=1, required=False)


class TimeSlotSerializer(serializers.Serializer):
    time = serializers.CharField()
    available = serializers.BooleanField()
    booked_by = serializers.CharField(allow_null=True)


class SessionStatusSerializer(serializers.Serializer):
    """Serializer for explicit status changes."""

    status = serializers.ChoiceField(choices=[
        SessionStatus.IN_PROGRESS,
        SessionStatus.COMPLETED,
        SessionStatus.NO_SHOW,
    ])
