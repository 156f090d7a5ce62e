"""
Admin configuration for the scheduling app.
"""

from django.contrib import admin
from .models import Branch, Client, Plan, Session, Vehicle


@admin.register(Branch)
class BranchAdmin(admin.ModelAdmin):
    """Admin interface for Branch model."""

    list_display = ['name', 'working_day_names', 'operating_hours_start', 'operating_hours_end']
    search_fields = ['name']

    fieldsets = (
        ('Basic Information', {
            'fields': ('name',)
        }),
        ('Working Calendar', {
            'fields': ('working_days', 'operating_hours_start', 'operating_hours_end')
        }),
        ('Metadata', {
            'fields': ('created_at', 'updated_at'),
            'classes': ('collapse',)
        }),
    )

    readonly_fields = ['created_at', 'updated_at']


@admin.register(Vehicle)
class VehicleAdmin(admin.ModelAdmin):
    list_display = ['name', 'registration_number', 'branch', 'is_active']
    list_filter = ['branch', 'is_active']
    search_fields = ['name', 'registration_number']


@admin.register(Client)
class ClientAdmin(admin.ModelAdmin):
    list_display = ['full_name', 'phone_number', 'branch', 'created_at']
    list_filter = ['branch']
    search_fields = ['first_name', 'last_name', 'phone_number']


@admin.register(Plan)
class PlanAdmin(admin.ModelAdmin):
    """Admin interface for Plan model."""

    list_display = ['client', 'vehicle', 'joining_date', 'joining_time', 'number_of_sessions']
    list_filter = ['branch', 'vehicle']
    search_fields = ['client__first_name', 'client__last_name']
    date_hierarchy = 'joining_date'

    fieldsets = (
        ('Enrollment', {
            'fields': ('branch', 'client', 'vehicle')
        }),
        ('Timing', {
            'fields': ('joining_date', 'joining_time', 'number_of_sessions', 'session_duration_minutes')
        }),
        ('Metadata', {
            'fields': ('created_at', 'updated_at'),
            'classes': ('collapse',)
        }),
    )

    readonly_fields = ['created_at', 'updated_at']


@admin.register(Session)
class SessionAdmin(admin.ModelAdmin):
    """Admin interface for Session model."""

    list_display = ['session_number', 'client', 'vehicle', 'session_date', 'start_time', 'end_time', 'status']
    list_filter = ['status', 'branch', 'vehicle']
    search_fields = ['client__first_name', 'client__last_name', 'session_date']

    fieldsets = (
        ('Basic Information', {
            'fields': ('branch', 'client', 'plan', 'vehicle', 'session_number')
        }),
        ('Schedule', {
            'fields': ('session_date', 'start_time', 'end_time')
        }),
        ('Status', {
            'fields': ('status',)
        }),
        ('Metadata', {
            'fields': ('created_at', 'updated_at'),
            'classes': ('collapse',)
        }),
    )

    readonly_fields = ['created_at', 'updated_at']
