"""
Custom managers and querysets for availability models.

Query operations only; transformation and slot logic live in services/slots.
"""

from django.db import models


class WeeklyScheduleQuerySet(models.QuerySet):

    def active(self):
        return self.filter(is_active=True)

    def for_therapist(self, therapist):
        return self.filter(therapist=therapist)


class WeeklyScheduleManager(models.Manager):

    def get_queryset(self):
        return WeeklyScheduleQuerySet(self.model, using=self._db)

    def active(self):
        return self.get_queryset().active()

    def for_therapist(self, therapist):
        return self.get_queryset().for_therapist(therapist)


class AvailabilityTemplateQuerySet(models.QuerySet):
    """Chainable filters for legacy per-row templates."""

    def active(self):
        return self.filter(is_active=True)

    def for_therapist(self, therapist):
        return self.filter(therapist=therapist)

    def for_day(self, day_of_week):
        """
        Templates for one day of the week.

        Args:
            day_of_week: int (0=Sunday, 6=Saturday)
        """
        return self.filter(day_of_week=day_of_week, is_active=True)


class AvailabilityTemplateManager(models.Manager):

    def get_queryset(self):
        return AvailabilityTemplateQuerySet(self.model, using=self._db)

    def active(self):
        return self.get_queryset().active()

    def for_therapist(self, therapist):
        return self.get_queryset().for_therapist(therapist)


class AvailabilityOverrideQuerySet(models.QuerySet):

    def for_therapist(self, therapist):
        return self.filter(therapist=therapist)

    def in_range(self, start_date=None, end_date=None):
        """Overrides between two dates, either bound optional and inclusive."""
        queryset = self
        if start_date:
            queryset = queryset.filter(override_date__gte=start_date)
        if end_date:
            queryset = queryset.filter(override_date__lte=end_date)
        return queryset


class AvailabilityOverrideManager(models.Manager):

    def get_queryset(self):
        return AvailabilityOverrideQuerySet(self.model, using=self._db)

    def for_therapist(self, therapist):
        return self.get_queryset().for_therapist(therapist)
