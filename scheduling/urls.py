"""
URL routing for the scheduling API.
"""

from django.urls import path
from .views import (
    BranchCalendarView,
    PlanDetailView,
    PlanListCreateView,
    PlanSessionsView,
    SessionCompleteView,
    SessionDetailView,
    SessionListView,
    SessionRescheduleView,
    SessionStatusView,
    VehicleAvailabilityView,
)

urlpatterns = [
    path('branches/<int:pk>/calendar/', BranchCalendarView.as_view(), name='branch-calendar'),
    path('branches/<int:pk>/sessions/', SessionListView.as_view(), name='branch-sessions'),
    path('plans/', PlanListCreateView.as_view(), name='plan-list-create'),
    path('plans/<int:pk>/', PlanDetailView.as_view(), name='plan-detail'),
    path('plans/<int:pk>/sessions/', PlanSessionsView.as_view(), name='plan-sessions'),
    path('sessions/<int:pk>/', SessionDetailView.as_view(), name='session-detail'),
    path('sessions/<int:pk>/complete/', SessionCompleteView.as_view(), name='session-complete'),
    path('sessions/<int:pk>/status/', SessionStatusView.as_view(), name='session-status'),
    path('sessions/<int:pk>/reschedule/', SessionRescheduleView.as_view(), name='session-reschedule'),
    path('vehicles/<int:pk>/availability/', VehicleAvailabilityView.as_view(), name='vehicle-availability'),
]
