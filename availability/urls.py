"""
URL routing for the availability API.
"""

from django.urls import path
from .views import (
    AvailabilityOverrideView,
    AvailabilityTemplateView,
    AvailableDaysView,
    AvailableSlotsView,
    WeeklyAvailabilityView,
)

urlpatterns = [
    path('therapist/availability/weekly/', WeeklyAvailabilityView.as_view(), name='availability-weekly'),
    path('therapist/availability/template/', AvailabilityTemplateView.as_view(), name='availability-template'),
    path('therapist/availability/override/', AvailabilityOverrideView.as_view(), name='availability-override'),
    path('availability/days/', AvailableDaysView.as_view(), name='availability-days'),
    path('availability/slots/', AvailableSlotsView.as_view(), name='availability-slots'),
]
