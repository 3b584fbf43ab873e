"""
Models for platform accounts.

Therapist data is denormalized across three tables:
- User holds login identity plus display fields (name, avatar, flags)
- TherapistEnrollment holds the application a therapist submitted
- TherapistProfile holds the public profile used by the booking flow

TherapistEnrollment is treated as the source of truth when the three drift
apart (see accounts.consistency).
"""

from django.contrib.auth.models import AbstractUser
from django.db import models

from .managers import TherapistEnrollmentManager, UserManager


class User(AbstractUser):
    """Platform user: patient, therapist, partner organisation, or admin."""

    USER_TYPE_CHOICES = [
        ('individual', 'Individual'),
        ('therapist', 'Therapist'),
        ('partner', 'Partner'),
        ('admin', 'Admin'),
    ]

    email = models.EmailField(unique=True)
    full_name = models.CharField(max_length=255, blank=True, default='')
    user_type = models.CharField(
        max_length=20,
        choices=USER_TYPE_CHOICES,
        default='individual'
    )
    avatar_url = models.URLField(max_length=500, blank=True, null=True)
    is_verified = models.BooleanField(default=False)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = UserManager()

    class Meta:
        indexes = [
            models.Index(fields=['user_type', 'is_active'], name='user_type_active_idx'),
        ]

    def __str__(self):
        return f"{self.full_name or self.username} <{self.email}>"

    @property
    def is_therapist(self):
        return self.user_type == 'therapist'

    @property
    def is_approved_therapist(self):
        """Therapists may publish availability only once verified and active."""
        return self.is_therapist and self.is_verified and self.is_active


class TherapistEnrollment(models.Model):
    """A therapist's enrollment application, keyed by email."""

    STATUS_CHOICES = [
        ('pending', 'Pending'),
        ('approved', 'Approved'),
        ('rejected', 'Rejected'),
    ]

    email = models.EmailField(unique=True)
    full_name = models.CharField(max_length=255)
    status = models.CharField(
        max_length=20,
        choices=STATUS_CHOICES,
        default='pending'
    )
    is_active = models.BooleanField(default=False)
    profile_image_url = models.URLField(max_length=500, blank=True, null=True)
    bio = models.TextField(blank=True, default='')
    experience_years = models.PositiveIntegerField(default=0)
    specializations = models.JSONField(default=list, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = TherapistEnrollmentManager()

    class Meta:
        ordering = ['-created_at']

    def __str__(self):
        return f"{self.full_name} ({self.email}) [{self.status}]"

    @property
    def is_approved(self):
        return self.status == 'approved'


class TherapistProfile(models.Model):
    """Public therapist profile read by the booking flow."""

    VERIFICATION_CHOICES = [
        ('pending', 'Pending'),
        ('verified', 'Verified'),
        ('rejected', 'Rejected'),
    ]

    user = models.OneToOneField(
        User,
        on_delete=models.CASCADE,
        related_name='therapist_profile'
    )
    profile_image_url = models.URLField(max_length=500, blank=True, null=True)
    bio = models.TextField(blank=True, default='')
    experience_years = models.PositiveIntegerField(default=0)
    is_verified = models.BooleanField(default=False)
    verification_status = models.CharField(
        max_length=20,
        choices=VERIFICATION_CHOICES,
        default='pending'
    )
    session_rate = models.DecimalField(max_digits=10, decimal_places=2, default=0)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"Profile of {self.user.email}"


class Notification(models.Model):
    """In-app notification shown on a user's dashboard."""

    user = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='notifications'
    )
    title = models.CharField(max_length=200)
    message = models.TextField()
    type = models.CharField(max_length=50)
    data = models.JSONField(default=dict, blank=True)
    is_read = models.BooleanField(default=False)

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['user', 'is_read'], name='notification_user_read_idx'),
        ]

    def __str__(self):
        return f"{self.type} -> {self.user.email}: {self.title}"


class ConsistencyCheckLog(models.Model):
    """One row per scheduled consistency audit."""

    total_therapists = models.PositiveIntegerField(default=0)
    consistent = models.PositiveIntegerField(default=0)
    inconsistent = models.PositiveIntegerField(default=0)
    auto_fixed = models.PositiveIntegerField(default=0)
    issues_found = models.JSONField(default=list, blank=True)
    timestamp = models.DateTimeField()

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at']

    def __str__(self):
        return f"Consistency check {self.timestamp:%Y-%m-%d %H:%M}: {self.inconsistent}/{self.total_therapists} inconsistent"
