"""Views for therapist availability and bookable slots."""

import logging

from django.contrib.auth import get_user_model
from django.shortcuts import get_object_or_404
from django.utils import timezone
from django.utils.dateparse import parse_date

from rest_framework import status
from rest_framework.permissions import AllowAny
from rest_framework.response import Response
from rest_framework.views import APIView

from accounts.models import TherapistProfile
from accounts.permissions import IsTherapist

from . import services, slots
from .models import AvailabilityTemplate, WeeklySchedule
from .serializers import (
    AvailabilityOverrideReadSerializer,
    AvailabilityOverrideWriteSerializer,
    AvailabilityTemplateReadSerializer,
    AvailableDaysQuerySerializer,
    OverrideRangeQuerySerializer,
    SlotsQuerySerializer,
    TemplateSaveSerializer,
    TemplateUpdateSerializer,
)
from .types import DEFAULT_TEMPLATE_NAME, WeeklyAvailability

logger = logging.getLogger(__name__)

NO_STORE_HEADERS = {
    'Cache-Control': 'no-store, no-cache, must-revalidate',
    'Pragma': 'no-cache',
}


def _error(message, code, http_status, **extra):
    body = {'success': False, 'error': message, 'code': code}
    body.update(extra)
    return Response(body, status=http_status)


def _get_therapist(therapist_id):
    return get_object_or_404(get_user_model(), pk=therapist_id, user_type='therapist')


class WeeklyAvailabilityView(APIView):
    """
    The signed-in therapist's weekly schedule.

    GET /api/therapist/availability/weekly/ - Stored weekly schedule (or null)
    POST /api/therapist/availability/weekly/ - Save weekly schedule
    """

    permission_classes = [IsTherapist]

    def get(self, request):
        schedule = (
            WeeklySchedule.objects.for_therapist(request.user)
            .active()
            .filter(template_name=DEFAULT_TEMPLATE_NAME)
            .first()
        )
        if schedule is None:
            return Response({
                'success': True,
                'availability': None,
                'message': 'No availability schedule found.',
            }, headers=NO_STORE_HEADERS)

        return Response({
            'success': True,
            'availability': schedule.weekly_availability,
            'updated_at': schedule.updated_at,
        }, headers=NO_STORE_HEADERS)

    def post(self, request):
        raw = request.data.get('availability')
        if not raw:
            return _error(
                'Availability data is required', 'MISSING_AVAILABILITY_DATA',
                status.HTTP_400_BAD_REQUEST,
            )

        therapist = request.user
        if not (therapist.is_verified and therapist.is_active):
            logger.warning("Therapist %s tried to set availability before approval", therapist.pk)
            return _error(
                'Your therapist account is not yet approved', 'NOT_APPROVED',
                status.HTTP_403_FORBIDDEN,
                details={'is_verified': therapist.is_verified, 'is_active': therapist.is_active},
            )

        if not TherapistProfile.objects.filter(user=therapist).exists():
            logger.warning("Therapist %s has no profile", therapist.pk)
            return _error('Therapist profile not found', 'PROFILE_MISSING', status.HTTP_404_NOT_FOUND)

        try:
            availability = WeeklyAvailability.from_dict(raw)
        except ValueError as exc:
            return _error(str(exc), 'INVALID_AVAILABILITY', status.HTTP_400_BAD_REQUEST)

        schedule = services.save_weekly_schedule(therapist, availability)

        return Response({
            'success': True,
            'message': 'Weekly availability saved successfully',
            'availability': schedule.weekly_availability,
        })


class AvailabilityTemplateView(APIView):
    """
    Availability in both stores, plus legacy template row maintenance.

    GET /api/therapist/availability/template/?therapist_id=X - Availability, overrides, templates
    POST /api/therapist/availability/template/ - Save new-format availability or legacy rows
    PUT /api/therapist/availability/template/ - Update one legacy row
    DELETE /api/therapist/availability/template/?template_id=X - Delete one legacy row
    """

    def get_permissions(self):
        if self.request.method == 'GET':
            return [AllowAny()]
        return [IsTherapist()]

    def get(self, request):
        therapist_id = request.query_params.get('therapist_id')
        if not therapist_id:
            return _error('therapist_id is required', 'MISSING_THERAPIST_ID', status.HTTP_400_BAD_REQUEST)

        therapist = _get_therapist(therapist_id)
        availability = services.get_therapist_availability(therapist)
        overrides = services.get_availability_overrides(therapist, start_date=timezone.localdate())
        templates = AvailabilityTemplate.objects.for_therapist(therapist).active()

        return Response({
            'success': True,
            'availability': availability.to_dict(),
            'overrides': AvailabilityOverrideReadSerializer(overrides, many=True).data,
            'templates': AvailabilityTemplateReadSerializer(templates, many=True).data,
        }, headers=NO_STORE_HEADERS)

    def post(self, request):
        serializer = TemplateSaveSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        therapist_id = data.get('therapist_id', request.user.pk)
        if therapist_id != request.user.pk:
            return _error(
                'You can only update your own availability', 'FORBIDDEN',
                status.HTTP_403_FORBIDDEN,
            )

        if 'availability' in data:
            result = services.save_therapist_availability(request.user, data['availability'])
            if not result.success:
                return _error(result.message, 'VALIDATION_ERROR', status.HTTP_400_BAD_REQUEST)
            return Response({
                'success': True,
                'message': result.message,
                'template_count': result.template_count,
                'weekly_saved': result.weekly_saved,
                'warnings': result.warnings,
            })

        templates = services.replace_legacy_templates(request.user, data['templates'])
        return Response({
            'success': True,
            'message': f'Saved {len(templates)} template(s)',
            'templates': AvailabilityTemplateReadSerializer(templates, many=True).data,
        })

    def put(self, request):
        serializer = TemplateUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        template = get_object_or_404(
            AvailabilityTemplate,
            pk=serializer.validated_data['template_id'],
            therapist=request.user,
        )
        template = services.update_template(template, serializer.validated_data['updates'])

        return Response({
            'success': True,
            'template': AvailabilityTemplateReadSerializer(template).data,
        })

    def delete(self, request):
        template_id = request.query_params.get('template_id')
        if not template_id:
            return _error('template_id is required', 'MISSING_TEMPLATE_ID', status.HTTP_400_BAD_REQUEST)

        template = get_object_or_404(AvailabilityTemplate, pk=template_id, therapist=request.user)
        services.delete_template(template)

        return Response({'success': True, 'message': 'Template deleted.'})


class AvailabilityOverrideView(APIView):
    """
    Per-date overrides for the signed-in therapist.

    GET /api/therapist/availability/override/?start_date=X&end_date=Y - List overrides
    POST /api/therapist/availability/override/ - Create or replace the override for a date
    DELETE /api/therapist/availability/override/?date=X - Remove the override for a date
    """

    permission_classes = [IsTherapist]

    def get(self, request):
        query = OverrideRangeQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)

        overrides = services.get_availability_overrides(
            request.user,
            start_date=query.validated_data.get('start_date'),
            end_date=query.validated_data.get('end_date'),
        )
        return Response({
            'success': True,
            'overrides': AvailabilityOverrideReadSerializer(overrides, many=True).data,
        })

    def post(self, request):
        serializer = AvailabilityOverrideWriteSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        override = services.save_availability_override(
            request.user,
            override_date=data['date'],
            is_available=data['is_available'],
            start_time=data.get('start_time'),
            end_time=data.get('end_time'),
            session_duration=data['session_duration'],
            session_type=data['session_type'],
            max_sessions=data['max_sessions'],
            reason=data['reason'],
            notes=data['notes'],
        )
        return Response({
            'success': True,
            'message': 'Override saved successfully',
            'override': AvailabilityOverrideReadSerializer(override).data,
        }, status=status.HTTP_201_CREATED)

    def delete(self, request):
        override_date = parse_date(request.query_params.get('date') or '')
        if override_date is None:
            return _error('date is required (YYYY-MM-DD)', 'MISSING_DATE', status.HTTP_400_BAD_REQUEST)

        if not services.delete_availability_override(request.user, override_date):
            return _error('Override not found', 'NOT_FOUND', status.HTTP_404_NOT_FOUND)

        return Response({'success': True, 'message': 'Override deleted.'})


class AvailableDaysView(APIView):
    """
    GET /api/availability/days/?therapist_id=X&start_date=Y&end_date=Z - Dates with open slots
    """

    permission_classes = [AllowAny]

    def get(self, request):
        query = AvailableDaysQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)
        data = query.validated_data

        therapist = _get_therapist(data['therapist_id'])
        days = slots.get_available_days(therapist, data['start_date'], data['end_date'])
        available_days = [day.isoformat() for day in days]

        return Response({
            'success': True,
            'availableDays': available_days,
            'totalDays': len(available_days),
            'therapist_id': therapist.pk,
            'date_range': {
                'start_date': data['start_date'].isoformat(),
                'end_date': data['end_date'].isoformat(),
            },
        }, headers=NO_STORE_HEADERS)


class AvailableSlotsView(APIView):
    """
    GET /api/availability/slots/?therapist_id=X&date=Y - Open slots on a date
    """

    permission_classes = [AllowAny]

    def get(self, request):
        query = SlotsQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)

        therapist = _get_therapist(query.validated_data['therapist_id'])
        day = query.validated_data['date']
        day_slots = slots.get_slots_for_date(therapist, day)

        return Response({
            'success': True,
            'date': day.isoformat(),
            'therapist_id': therapist.pk,
            'slots': [slot.to_dict() for slot in day_slots],
            'total_slots': len(day_slots),
        }, headers=NO_STORE_HEADERS)
