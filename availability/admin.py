"""
Admin configuration for the availability app.
"""

from django.contrib import admin
from .models import AvailabilityOverride, AvailabilityTemplate, WeeklySchedule


@admin.register(WeeklySchedule)
class WeeklyScheduleAdmin(admin.ModelAdmin):
    """Admin interface for the weekly JSON store."""

    list_display = ['therapist', 'template_name', 'is_active', 'updated_at']
    list_filter = ['is_active', 'template_name']
    search_fields = ['therapist__email', 'therapist__full_name']

    fieldsets = (
        ('Owner', {
            'fields': ('therapist', 'template_name', 'is_active')
        }),
        ('Schedule', {
            'fields': ('weekly_availability',)
        }),
        ('Metadata', {
            'fields': ('created_at', 'updated_at'),
            'classes': ('collapse',)
        }),
    )

    readonly_fields = ['created_at', 'updated_at']


@admin.register(AvailabilityTemplate)
class AvailabilityTemplateAdmin(admin.ModelAdmin):
    """Admin interface for legacy per-day template rows."""

    list_display = ['therapist', 'day_of_week', 'start_time', 'end_time', 'session_duration', 'session_type', 'is_active']
    list_filter = ['day_of_week', 'session_type', 'is_active']
    search_fields = ['therapist__email']

    fieldsets = (
        ('Owner', {
            'fields': ('therapist', 'is_active')
        }),
        ('Schedule', {
            'fields': ('day_of_week', 'start_time', 'end_time')
        }),
        ('Sessions', {
            'fields': ('session_duration', 'session_type', 'max_sessions')
        }),
        ('Metadata', {
            'fields': ('created_at', 'updated_at'),
            'classes': ('collapse',)
        }),
    )

    readonly_fields = ['created_at', 'updated_at']


@admin.register(AvailabilityOverride)
class AvailabilityOverrideAdmin(admin.ModelAdmin):
    list_display = ['therapist', 'override_date', 'is_available', 'start_time', 'end_time', 'reason']
    list_filter = ['is_available']
    search_fields = ['therapist__email', 'reason']
    date_hierarchy = 'override_date'
    readonly_fields = ['created_at', 'updated_at']
