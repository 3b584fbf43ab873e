"""
URL routing for the accounts API.
"""

from django.urls import path
from .views import ConsistencyCheckView, TherapistConsistencyView

urlpatterns = [
    path('cron/consistency-check/', ConsistencyCheckView.as_view(), name='cron-consistency-check'),
    path('admin/consistency/', TherapistConsistencyView.as_view(), name='therapist-consistency'),
]
