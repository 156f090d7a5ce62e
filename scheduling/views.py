"""Views for the scheduling API."""

from django.shortcuts import get_object_or_404

from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView

from .exceptions import ConfigurationError, ConflictError
from .models import Branch, Plan, Session, Vehicle
from .serializers import (
    AvailabilityQuerySerializer,
    BranchCalendarSerializer,
    PlanCreateSerializer,
    PlanReadSerializer,
    PlanUpdateSerializer,
    SessionQuerySerializer,
    SessionReadSerializer,
    SessionRescheduleSerializer,
    SessionStatusSerializer,
    TimeSlotSerializer,
)
from . import services
from .types import PlanUpdateData, SessionStatus


def conflict_response(error: ConflictError) -> Response:
    """409 payload listing the taken slots and free alternatives."""
    return Response({
        'detail': str(error),
        'conflicts': [conflict.as_dict() for conflict in error.conflicts],
    }, status=status.HTTP_409_CONFLICT)


def bad_request(error: Exception) -> Response:
    return Response({'detail': str(error)}, status=status.HTTP_400_BAD_REQUEST)


def plan_response(plan, result, status_code=status.HTTP_200_OK) -> Response:
    sessions = Session.objects.for_plan(plan).select_related('client', 'vehicle').order_by('session_number')
    return Response({
        'plan': PlanReadSerializer(plan).data,
        'reconciliation': result.summary(),
        'sessions': SessionReadSerializer(sessions, many=True).data,
    }, status=status_code)


class BranchCalendarView(APIView):
    """
    Read or edit a branch working calendar.

    GET /api/branches/{id}/calendar/ - Retrieve working days and hours
    PATCH /api/branches/{id}/calendar/ - Update working days and hours
    """

    def get(self, request, pk):
        branch = get_object_or_404(Branch, pk=pk)
        return Response(BranchCalendarSerializer(branch).data)

    def patch(self, request, pk):
        branch = get_object_or_404(Branch, pk=pk)
        serializer = BranchCalendarSerializer(branch, data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        serializer.save()
        return Response(serializer.data)


class PlanListCreateView(APIView):
    """
    List plans or enroll a client on a new plan.

    GET /api/plans/ - List all plans
    POST /api/plans/ - Create a plan and generate its sessions
    """

    def get(self, request):
        """List all plans."""
        plans = Plan.objects.select_related('client', 'vehicle')
        serializer = PlanReadSerializer(plans, many=True)
        return Response(serializer.data)

    def post(self, request):
        """Create a plan; a taken slot returns 409 with alternatives."""
        serializer = PlanCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        data = serializer.validated_data
        try:
            plan, result = services.create_plan(
                client=data['client'],
                vehicle=data['vehicle'],
                joining_date=data['joining_date'],
                joining_time=data['joining_time'],
                number_of_sessions=data['number_of_sessions'],
                session_duration_minutes=data.get('session_duration_minutes'),
            )
        except ConflictError as exc:
            return conflict_response(exc)
        except (ConfigurationError, ValueError) as exc:
            return bad_request(exc)

        return plan_response(plan, result, status.HTTP_201_CREATED)


class PlanDetailView(APIView):
    """
    Retrieve or edit a plan.

    GET /api/plans/{id}/ - Retrieve plan
    PATCH /api/plans/{id}/ - Update plan and reconcile its sessions
    """

    def get(self, request, pk):
        plan = get_object_or_404(Plan, pk=pk)
        return Response(PlanReadSerializer(plan).data)

    def patch(self, request, pk):
        plan = get_object_or_404(Plan, pk=pk)
        serializer = PlanUpdateSerializer(data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)

        data = serializer.validated_data
        update_data = PlanUpdateData(
            vehicle=data.get('vehicle'),
            joining_date=data.get('joining_date'),
            joining_time=data.get('joining_time'),
            number_of_sessions=data.get('number_of_sessions'),
            session_duration_minutes=data.get('session_duration_minutes'),
        )
        try:
            plan, result = services.update_plan(plan, update_data)
        except ConflictError as exc:
            return conflict_response(exc)
        except (ConfigurationError, ValueError) as exc:
            return bad_request(exc)

        return plan_response(plan, result)


class PlanSessionsView(APIView):
    """
    List every session of a plan, cancelled ones included.

    GET /api/plans/{id}/sessions/
    """

    def get(self, request, pk):
        plan = get_object_or_404(Plan, pk=pk)
        sessions = Session.objects.for_plan(plan).select_related('client', 'vehicle').order_by('session_number')
        return Response(SessionReadSerializer(sessions, many=True).data)


class SessionListView(APIView):
    """
    List active sessions of a branch.

    GET /api/branches/{id}/sessions/?vehicle=X&client=Y&start=D&end=D
    """

    def get(self, request, pk):
        branch = get_object_or_404(Branch, pk=pk)
        query_serializer = SessionQuerySerializer(data=request.query_params)
        query_serializer.is_valid(raise_exception=True)

        data = query_serializer.validated_data
        sessions = services.get_sessions(
            branch,
            vehicle=data.get('vehicle'),
            client=data.get('client'),
            start_date=data.get('start'),
            end_date=data.get('end'),
        )
        return Response(SessionReadSerializer(sessions, many=True).data)


class SessionDetailView(APIView):
    """
    Retrieve or cancel a session.

    GET /api/sessions/{id}/ - Retrieve session
    DELETE /api/sessions/{id}/ - Cancel session (the row is kept)
    """

    def get(self, request, pk):
        session = get_object_or_404(Session, pk=pk)
        return Response(SessionReadSerializer(session).data)

    def delete(self, request, pk):
        session = get_object_or_404(Session, pk=pk)
        try:
            services.cancel_session(session)
        except ValueError as exc:
            return bad_request(exc)

        return Response({
            'message': f'Session #{session.session_number} on {session.session_date} has been cancelled.'
        }, status=status.HTTP_200_OK)


class SessionCompleteView(APIView):
    """
    Mark a session as completed.

    POST /api/sessions/{id}/complete/
    """

    def post(self, request, pk):
        session = get_object_or_404(Session, pk=pk)
        try:
            services.complete_session(session)
        except ValueError as exc:
            return bad_request(exc)

        return Response({
            'message': f'Session #{session.session_number} has been marked as completed.'
        }, status=status.HTTP_200_OK)


class SessionStatusView(APIView):
    """
    Set a session to in progress, completed or no-show.

    POST /api/sessions/{id}/status/
    """

    transitions = {
        SessionStatus.IN_PROGRESS: services.start_session,
        SessionStatus.COMPLETED: services.complete_session,
        SessionStatus.NO_SHOW: services.mark_no_show,
    }

    def post(self, request, pk):
        session = get_object_or_404(Session, pk=pk)
        serializer = SessionStatusSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            self.transitions[serializer.validated_data['status']](session)
        except ValueError as exc:
            return bad_request(exc)

        return Response(SessionReadSerializer(session).data)


class SessionRescheduleView(APIView):
    """
    Move a single session.

    POST /api/sessions/{id}/reschedule/
    """

    def post(self, request, pk):
        session = get_object_or_404(Session, pk=pk)
        serializer = SessionRescheduleSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        data = serializer.validated_data
        try:
            if data.get('next_available'):
                session = services.reschedule_to_next_available(session)
            else:
                session = services.reschedule_session(
                    session,
                    data['session_date'],
                    data.get('start_time'),
                )
        except ConflictError as exc:
            return conflict_response(exc)
        except (ConfigurationError, ValueError) as exc:
            return bad_request(exc)

        return Response(SessionReadSerializer(session).data)


class VehicleAvailabilityView(APIView):
    """
    List a vehicle's start times on one day.

    GET /api/vehicles/{id}/availability/?date=YYYY-MM-DD&duration=30
    """

    def get(self, request, pk):
        vehicle = get_object_or_404(Vehicle, pk=pk)
        query_serializer = AvailabilityQuerySerializer(data=request.query_params)
        query_serializer.is_valid(raise_exception=True)

        data = query_serializer.validated_data
        try:
            slots = services.get_available_time_slots(
                vehicle,
                data['date'],
                data.get('duration'),
            )
        except ConfigurationError as exc:
            return bad_request(exc)

        return Response(TimeSlotSerializer(slots, many=True).data)
