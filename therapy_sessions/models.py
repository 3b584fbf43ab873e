"""
Models for therapy sessions and their clinical notes.

- TherapySession is one booked appointment between a therapist and a patient
- SessionNote holds the transcript and SOAP notes for a session, whether
  written by the therapist or produced by the AI pipeline
- SessionProcessingError records each failed AI processing run
"""

from datetime import datetime, timedelta

from django.conf import settings
from django.core.exceptions import ValidationError
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models
from django.utils import timezone

from .managers import TherapySessionManager


class TherapySession(models.Model):
    """A booked session on a specific date and start time."""

    STATUS_CHOICES = [
        ('scheduled', 'Scheduled'),
        ('confirmed', 'Confirmed'),
        ('in_progress', 'In progress'),
        ('completed', 'Completed'),
        ('cancelled', 'Cancelled'),
    ]

    SESSION_TYPE_CHOICES = [
        ('individual', 'Individual'),
        ('group', 'Group'),
        ('consultation', 'Consultation'),
    ]

    therapist = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='therapist_sessions'
    )
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='patient_sessions',
        help_text="The patient"
    )

    session_date = models.DateField()
    session_time = models.TimeField()
    duration_minutes = models.PositiveIntegerField(default=60)
    session_type = models.CharField(
        max_length=20,
        choices=SESSION_TYPE_CHOICES,
        default='individual'
    )
    status = models.CharField(
        max_length=20,
        choices=STATUS_CHOICES,
        default='scheduled'
    )
    title = models.CharField(max_length=200, blank=True, default='')
    notes = models.TextField(blank=True, default='')

    room_url = models.URLField(max_length=500, blank=True, default='')
    recording_id = models.CharField(max_length=100, blank=True, default='')

    session_summary = models.TextField(blank=True, default='')
    ai_notes_generated = models.BooleanField(default=False)

    completed_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = TherapySessionManager()

    class Meta:
        ordering = ['session_date', 'session_time']
        indexes = [
            models.Index(fields=['therapist', 'session_date'], name='session_therapist_date_idx'),
            models.Index(fields=['user', 'session_date'], name='session_patient_date_idx'),
            models.Index(fields=['status'], name='session_status_idx'),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=['therapist', 'session_date', 'session_time'],
                condition=models.Q(status__in=['scheduled', 'confirmed', 'in_progress']),
                name='unique_active_therapist_slot'
            ),
        ]

    def __str__(self):
        status_str = f" [{self.status}]" if self.status != 'scheduled' else ""
        return f"{self.therapist.email} with {self.user.email} - {self.session_date} {self.session_time:%H:%M}{status_str}"

    @property
    def start_datetime(self):
        return timezone.make_aware(datetime.combine(self.session_date, self.session_time))

    @property
    def end_datetime(self):
        """Calculate end datetime based on duration."""
        return self.start_datetime + timedelta(minutes=self.duration_minutes)

    @property
    def room_name(self):
        """Last path segment of room_url, the video provider's room name."""
        return self.room_url.rstrip('/').rsplit('/', 1)[-1] if self.room_url else ''

    def clean(self):
        super().clean()

        if self.therapist_id and self.therapist_id == self.user_id:
            raise ValidationError('A therapist cannot book a session with themselves.')

    def save(self, *args, **kwargs):
        """Save with validation."""
        self.full_clean()
        super().save(*args, **kwargs)


class SessionNote(models.Model):
    """
    Clinical notes for one session.

    provider and is_fallback record where the SOAP content came from, so
    canned fallback content is never mistaken for a real provider result.
    """

    PROCESSING_STATUS_CHOICES = [
        ('pending', 'Pending'),
        ('processing', 'Processing'),
        ('completed', 'Completed'),
        ('error', 'Error'),
    ]

    session = models.OneToOneField(
        TherapySession,
        on_delete=models.CASCADE,
        related_name='note'
    )
    transcript = models.TextField(blank=True, default='')

    soap_subjective = models.TextField(blank=True, default='')
    soap_objective = models.TextField(blank=True, default='')
    soap_assessment = models.TextField(blank=True, default='')
    soap_plan = models.TextField(blank=True, default='')
    summary = models.TextField(blank=True, default='')

    mood_rating = models.PositiveSmallIntegerField(
        null=True,
        blank=True,
        validators=[MinValueValidator(1), MaxValueValidator(10)]
    )
    progress_notes = models.TextField(blank=True, default='')
    homework_assigned = models.TextField(blank=True, default='')
    next_session_focus = models.TextField(blank=True, default='')
    therapeutic_insights = models.JSONField(default=dict, blank=True)

    ai_generated = models.BooleanField(default=False)
    provider = models.CharField(max_length=50, blank=True, default='')
    is_fallback = models.BooleanField(default=False)
    processing_status = models.CharField(
        max_length=20,
        choices=PROCESSING_STATUS_CHOICES,
        default='pending'
    )
    recording_id = models.CharField(max_length=100, blank=True, default='')
    processing_time_ms = models.PositiveIntegerField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"Notes for session {self.session_id} [{self.processing_status}]"

    @property
    def soap_notes(self):
        return {
            'subjective': self.soap_subjective,
            'objective': self.soap_objective,
            'assessment': self.soap_assessment,
            'plan': self.soap_plan,
        }


class SessionProcessingError(models.Model):
    """One failed AI processing run for a session."""

    session = models.ForeignKey(
        TherapySession,
        on_delete=models.CASCADE,
        related_name='processing_errors'
    )
    recording_id = models.CharField(max_length=100, blank=True, default='')
    error_message = models.TextField()

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at']

    def __str__(self):
        return f"Processing error for session {self.session_id}: {self.error_message[:60]}"
