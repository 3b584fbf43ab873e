"""
Admin configuration for the therapy_sessions app.
"""

from django.contrib import admin
from .models import SessionNote, SessionProcessingError, TherapySession


@admin.register(TherapySession)
class TherapySessionAdmin(admin.ModelAdmin):
    """Admin interface for booked sessions."""

    list_display = ['therapist', 'user', 'session_date', 'session_time', 'duration_minutes', 'status', 'ai_notes_generated']
    list_filter = ['status', 'session_type', 'ai_notes_generated']
    search_fields = ['therapist__email', 'user__email', 'title']
    date_hierarchy = 'session_date'

    fieldsets = (
        ('Participants', {
            'fields': ('therapist', 'user')
        }),
        ('Schedule', {
            'fields': ('session_date', 'session_time', 'duration_minutes', 'session_type', 'status')
        }),
        ('Details', {
            'fields': ('title', 'notes', 'room_url', 'recording_id', 'session_summary', 'ai_notes_generated')
        }),
        ('Metadata', {
            'fields': ('completed_at', 'cancelled_at', 'created_at', 'updated_at'),
            'classes': ('collapse',)
        }),
    )

    readonly_fields = ['created_at', 'updated_at']


@admin.register(SessionNote)
class SessionNoteAdmin(admin.ModelAdmin):
    """Admin interface for session notes, flagging fallback content."""

    list_display = ['session', 'processing_status', 'provider', 'is_fallback', 'ai_generated', 'updated_at']
    list_filter = ['processing_status', 'provider', 'is_fallback', 'ai_generated']
    search_fields = ['session__therapist__email', 'session__user__email', 'recording_id']

    fieldsets = (
        ('Session', {
            'fields': ('session', 'recording_id', 'transcript')
        }),
        ('SOAP', {
            'fields': ('soap_subjective', 'soap_objective', 'soap_assessment', 'soap_plan', 'summary')
        }),
        ('Progress', {
            'fields': ('mood_rating', 'progress_notes', 'homework_assigned', 'next_session_focus', 'therapeutic_insights')
        }),
        ('Processing', {
            'fields': ('ai_generated', 'provider', 'is_fallback', 'processing_status', 'processing_time_ms')
        }),
        ('Metadata', {
            'fields': ('created_at', 'updated_at'),
            'classes': ('collapse',)
        }),
    )

    readonly_fields = ['created_at', 'updated_at']


@admin.register(SessionProcessingError)
class SessionProcessingErrorAdmin(admin.ModelAdmin):
    list_display = ['session', 'recording_id', 'created_at']
    search_fields = ['recording_id', 'error_message']
    readonly_fields = ['created_at']
