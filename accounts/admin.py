"""
Admin configuration for the accounts app.
"""

from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin

from .models import ConsistencyCheckLog, Notification, TherapistEnrollment, TherapistProfile, User


@admin.register(User)
class UserAdmin(BaseUserAdmin):
    list_display = ['email', 'full_name', 'user_type', 'is_verified', 'is_active']
    list_filter = ['user_type', 'is_verified', 'is_active']
    search_fields = ['email', 'full_name', 'username']
    ordering = ['email']

    fieldsets = BaseUserAdmin.fieldsets + (
        ('Platform', {
            'fields': ('full_name', 'user_type', 'avatar_url', 'is_verified')
        }),
    )


@admin.register(TherapistEnrollment)
class TherapistEnrollmentAdmin(admin.ModelAdmin):
    """Enrollment is the source of truth for therapist display fields."""

    list_display = ['email', 'full_name', 'status', 'is_active', 'experience_years', 'created_at']
    list_filter = ['status', 'is_active']
    search_fields = ['email', 'full_name']

    fieldsets = (
        ('Applicant', {
            'fields': ('email', 'full_name', 'profile_image_url')
        }),
        ('Review', {
            'fields': ('status', 'is_active')
        }),
        ('Profile', {
            'fields': ('bio', 'experience_years', 'specializations')
        }),
        ('Metadata', {
            'fields': ('created_at', 'updated_at'),
            'classes': ('collapse',)
        }),
    )

    readonly_fields = ['created_at', 'updated_at']


@admin.register(TherapistProfile)
class TherapistProfileAdmin(admin.ModelAdmin):
    list_display = ['user', 'verification_status', 'is_verified', 'experience_years', 'session_rate']
    list_filter = ['verification_status', 'is_verified']
    search_fields = ['user__email', 'user__full_name']
    readonly_fields = ['created_at', 'updated_at']


@admin.register(Notification)
class NotificationAdmin(admin.ModelAdmin):
    list_display = ['user', 'type', 'title', 'is_read', 'created_at']
    list_filter = ['type', 'is_read']
    search_fields = ['user__email', 'title']


@admin.register(ConsistencyCheckLog)
class ConsistencyCheckLogAdmin(admin.ModelAdmin):
    list_display = ['timestamp', 'total_therapists', 'consistent', 'inconsistent', 'auto_fixed']
    date_hierarchy = 'timestamp'
    readonly_fields = ['created_at']
