"""
DRF permission classes shared by the API apps.
"""

import hmac

from django.conf import settings
from rest_framework.permissions import BasePermission


class IsTherapist(BasePermission):
    """Authenticated user whose account type is therapist."""

    message = 'Access denied. Therapist role required.'

    def has_permission(self, request, view):
        user = request.user
        return bool(user and user.is_authenticated and getattr(user, 'is_therapist', False))


class IsPlatformAdmin(BasePermission):
    """Staff users or accounts with the admin user type."""

    message = 'Admin access required.'

    def has_permission(self, request, view):
        user = request.user
        if not (user and user.is_authenticated):
            return False
        return user.is_staff or getattr(user, 'user_type', None) == 'admin'


def has_cron_secret(request):
    """True when the request carries ``Authorization: Bearer <CRON_SECRET>``."""
    header = request.headers.get('Authorization', '')
    expected = f"Bearer {settings.CRON_SECRET}"
    return bool(settings.CRON_SECRET) and hmac.compare_digest(header.encode(), expected.encode())
