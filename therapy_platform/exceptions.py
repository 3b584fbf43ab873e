"""
API error shaping.

Every error leaves the API as ``{"success": false, "error": ..., "code": ...}``.
Service-layer ``ValueError`` becomes a 400; anything unexpected is logged and
reported as a generic 500.
"""

import logging

from rest_framework import status
from rest_framework.exceptions import ValidationError
from rest_framework.response import Response
from rest_framework.views import exception_handler

logger = logging.getLogger(__name__)


def _first_message(detail):
    """Flatten DRF error detail into one human-readable string."""
    if isinstance(detail, dict):
        for key, value in detail.items():
            message = _first_message(value)
            if key in ('detail', 'non_field_errors'):
                return message
            return f"{key}: {message}"
        return ''
    if isinstance(detail, (list, tuple)):
        return _first_message(detail[0]) if detail else ''
    return str(detail)


def api_exception_handler(exc, context):
    response = exception_handler(exc, context)

    if response is not None:
        body = {
            'success': False,
            'error': _first_message(response.data),
            'code': getattr(exc, 'default_code', 'error').upper(),
        }
        if isinstance(exc, ValidationError):
            body['details'] = response.data
        response.data = body
        return response

    if isinstance(exc, ValueError):
        return Response(
            {'success': False, 'error': str(exc), 'code': 'VALIDATION_ERROR'},
            status=status.HTTP_400_BAD_REQUEST,
        )

    view = context.get('view')
    logger.exception("Unhandled error in %s", type(view).__name__ if view else 'view')
    return Response(
        {'success': False, 'error': 'Internal server error'},
        status=status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
