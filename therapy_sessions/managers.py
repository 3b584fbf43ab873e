"""
Custom managers and querysets for therapy session models.

QuerySets define chainable query methods.
Managers use QuerySets to enable method chaining.
No business logic should be here - only query operations.
"""

from django.db import models


ACTIVE_STATUSES = ('scheduled', 'confirmed')


class TherapySessionQuerySet(models.QuerySet):
    """Custom queryset for TherapySession model with chainable methods."""

    def active(self):
        """Sessions still holding their slot (scheduled or confirmed)."""
        return self.filter(status__in=ACTIVE_STATUSES)

    def for_therapist(self, therapist):
        return self.filter(therapist=therapist)

    def for_participant(self, user):
        """Sessions where the user is either the therapist or the patient."""
        return self.filter(models.Q(therapist=user) | models.Q(user=user))

    def in_range(self, start_date, end_date):
        """
        Get sessions within a date range, inclusive.

        Args:
            start_date: date object
            end_date: date object
        """
        return self.filter(
            session_date__gte=start_date,
            session_date__lte=end_date
        )

    def with_status(self, status):
        return self.filter(status=status)


class TherapySessionManager(models.Manager):
    """Custom manager for TherapySession model."""

    def get_queryset(self):
        """Return custom queryset for method chaining."""
        return TherapySessionQuerySet(self.model, using=self._db)

    def for_therapist(self, therapist):
        return self.get_queryset().for_therapist(therapist)

    def for_participant(self, user):
        return self.get_queryset().for_participant(user)

    def in_range(self, start_date, end_date):
        """
        Get sessions within a date range, inclusive.

        Args:
            start_date: date object
            end_date: date object
        """
        return self.get_queryset().in_range(start_date, end_date)
