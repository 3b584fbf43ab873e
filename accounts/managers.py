"""
Custom managers and querysets for account models.

Query operations only; reconciliation logic lives in accounts.consistency.
"""

from django.contrib.auth.models import UserManager as BaseUserManager
from django.db import models


class UserQuerySet(models.QuerySet):
    """Chainable filters for User."""

    def therapists(self):
        """Get all therapist accounts."""
        return self.filter(user_type='therapist')

    def approved_therapists(self):
        """Get therapists that are verified and active."""
        return self.therapists().filter(is_verified=True, is_active=True)


class UserManager(BaseUserManager.from_queryset(UserQuerySet)):
    """User manager keeping Django's create_user/create_superuser helpers."""


class TherapistEnrollmentQuerySet(models.QuerySet):
    """Chainable filters for TherapistEnrollment."""

    def approved(self):
        return self.filter(status='approved')

    def pending(self):
        return self.filter(status='pending')


class TherapistEnrollmentManager(models.Manager):

    def get_queryset(self):
        return TherapistEnrollmentQuerySet(self.model, using=self._db)

    def approved(self):
        return self.get_queryset().approved()

    def pending(self):
        return self.get_queryset().pending()
