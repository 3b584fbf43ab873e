"""
Models for therapist availability.

Availability is stored in two representations:
- WeeklySchedule holds the full WeeklyAvailability as one JSON document
- AvailabilityTemplate holds the older per-row form (one row per day/time block)

Both are written on save; reads prefer WeeklySchedule. AvailabilityOverride
replaces the weekly schedule for a single date.
"""

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import models

from .managers import AvailabilityOverrideManager, AvailabilityTemplateManager, WeeklyScheduleManager
from .types import DEFAULT_TEMPLATE_NAME, WeeklyAvailability


SESSION_TYPE_CHOICES = [
    ('individual', 'Individual'),
    ('group', 'Group'),
    ('consultation', 'Consultation'),
]


class WeeklySchedule(models.Model):
    """The therapist's weekly availability as a JSON document."""

    therapist = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='weekly_schedules'
    )
    template_name = models.CharField(max_length=100, default=DEFAULT_TEMPLATE_NAME)
    weekly_availability = models.JSONField(default=dict)
    is_active = models.BooleanField(default=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = WeeklyScheduleManager()

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=['therapist', 'template_name'],
                name='unique_therapist_template_name'
            ),
        ]

    def __str__(self):
        return f"{self.therapist.email} - {self.template_name}"

    def as_availability(self) -> WeeklyAvailability:
        return WeeklyAvailability.from_dict(self.weekly_availability)


class AvailabilityTemplate(models.Model):
    """
    A recurring block of availability on one day of the week.

    day_of_week uses 0 = Sunday through 6 = Saturday.
    """

    DAY_OF_WEEK_CHOICES = [
        (0, 'Sunday'),
        (1, 'Monday'),
        (2, 'Tuesday'),
        (3, 'Wednesday'),
        (4, 'Thursday'),
        (5, 'Friday'),
        (6, 'Saturday'),
    ]

    therapist = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='availability_templates'
    )
    day_of_week = models.PositiveSmallIntegerField(
        choices=DAY_OF_WEEK_CHOICES,
        help_text="Day of week (0=Sunday, 6=Saturday)"
    )
    start_time = models.TimeField()
    end_time = models.TimeField()
    session_duration = models.PositiveIntegerField(default=45)
    session_type = models.CharField(
        max_length=20,
        choices=SESSION_TYPE_CHOICES,
        default='individual'
    )
    max_sessions = models.PositiveIntegerField(default=1)
    is_active = models.BooleanField(default=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = AvailabilityTemplateManager()

    class Meta:
        ordering = ['day_of_week', 'start_time']
        indexes = [
            models.Index(fields=['therapist', 'day_of_week'], name='template_therapist_day_idx'),
        ]

    def __str__(self):
        return f"{self.get_day_of_week_display()} {self.start_time:%H:%M}-{self.end_time:%H:%M}"

    def clean(self):
        if self.start_time and self.end_time and self.start_time >= self.end_time:
            raise ValidationError({'end_time': 'End time must be after start time.'})

    def save(self, *args, **kwargs):
        self.full_clean()
        super().save(*args, **kwargs)


class AvailabilityOverride(models.Model):
    """Replaces the weekly schedule for one date (day off or custom hours)."""

    therapist = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='availability_overrides'
    )
    override_date = models.DateField()
    is_available = models.BooleanField(
        default=False,
        help_text="False blocks the whole day; True replaces it with start_time-end_time"
    )
    start_time = models.TimeField(null=True, blank=True)
    end_time = models.TimeField(null=True, blank=True)
    session_duration = models.PositiveIntegerField(default=60)
    session_type = models.CharField(
        max_length=20,
        choices=SESSION_TYPE_CHOICES,
        default='individual'
    )
    max_sessions = models.PositiveIntegerField(default=1)
    reason = models.CharField(max_length=255, blank=True, default='')
    notes = models.TextField(blank=True, default='')

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = AvailabilityOverrideManager()

    class Meta:
        ordering = ['override_date']
        constraints = [
            models.UniqueConstraint(
                fields=['therapist', 'override_date'],
                name='unique_therapist_override_date'
            ),
        ]

    def __str__(self):
        state = 'available' if self.is_available else 'unavailable'
        return f"{self.therapist.email} {self.override_date} ({state})"

    def clean(self):
        if not self.is_available:
            return
        if not self.start_time or not self.end_time:
            raise ValidationError('Custom hours require both start_time and end_time.')
        if self.start_time >= self.end_time:
            raise ValidationError({'end_time': 'End time must be after start time.'})

    def save(self, *args, **kwargs):
        self.full_clean()
        super().save(*args, **kwargs)
