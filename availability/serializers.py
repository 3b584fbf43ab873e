"""
Serializers for the availability API.
"""

from rest_framework import serializers

from .models import AvailabilityOverride, AvailabilityTemplate
from .slots import validate_date_range
from .types import SESSION_TYPES, WeeklyAvailability

TIME_INPUT_FORMATS = ['%H:%M', '%H:%M:%S']


class WeeklyAvailabilityField(serializers.JSONField):
    """Accepts the camelCase WeeklyAvailability payload and returns the dataclass."""

    def to_internal_value(self, data):
        data = super().to_internal_value(data)
        try:
            return WeeklyAvailability.from_dict(data)
        except ValueError as exc:
            raise serializers.ValidationError(str(exc))

    def to_representation(self, value):
        if isinstance(value, WeeklyAvailability):
            return value.to_dict()
        return value


class AvailabilityTemplateReadSerializer(serializers.ModelSerializer):
    """Serializer for reading legacy template rows (output)."""

    day_name = serializers.CharField(source='get_day_of_week_display', read_only=True)
    start_time = serializers.TimeField(format='%H:%M')
    end_time = serializers.TimeField(format='%H:%M')

    class Meta:
        model = AvailabilityTemplate
        fields = [
            'id',
            'therapist',
            'day_of_week',
            'day_name',
            'start_time',
            'end_time',
            'session_duration',
            'session_type',
            'max_sessions',
            'is_active',
            'created_at',
            'updated_at',
        ]


class LegacyTemplateRowSerializer(serializers.Serializer):
    """One legacy template row; day_of_week 0 is Sunday."""

    day_of_week = serializers.IntegerField(min_value=0, max_value=6)
    start_time = serializers.TimeField(input_formats=TIME_INPUT_FORMATS)
    end_time = serializers.TimeField(input_formats=TIME_INPUT_FORMATS)
    session_duration = serializers.IntegerField(min_value=1, default=45)
    session_type = serializers.ChoiceField(choices=SESSION_TYPES, default='individual')
    max_sessions = serializers.IntegerField(min_value=1, default=1)
    is_active = serializers.BooleanField(default=True)

    def validate(self, data):
        if data['start_time'] >= data['end_time']:
            raise serializers.ValidationError({
                'end_time': 'End time must be after start time.'
            })
        return data


class TemplateSaveSerializer(serializers.Serializer):
    """
    Body of POST /template/.

    Either a full WeeklyAvailability (new format) or a list of legacy rows.
    """

    therapist_id = serializers.IntegerField(required=False)
    availability = WeeklyAvailabilityField(required=False)
    templates = LegacyTemplateRowSerializer(many=True, required=False)

    def validate(self, data):
        if 'availability' not in data and 'templates' not in data:
            raise serializers.ValidationError(
                'Either availability or templates is required.'
            )
        return data


class TemplateUpdateSerializer(serializers.Serializer):
    template_id = serializers.IntegerField()
    updates = serializers.DictField()


class AvailabilityOverrideReadSerializer(serializers.ModelSerializer):
    """Serializer for reading overrides (output)."""

    date = serializers.DateField(source='override_date')
    start_time = serializers.TimeField(format='%H:%M', allow_null=True)
    end_time = serializers.TimeField(format='%H:%M', allow_null=True)
    type = serializers.SerializerMethodField()

    class Meta:
        model = AvailabilityOverride
        fields = [
            'id',
            'therapist',
            'date',
            'type',
            'is_available',
            'start_time',
            'end_time',
            'session_duration',
            'session_type',
            'max_sessions',
            'reason',
            'notes',
            'created_at',
            'updated_at',
        ]

    def get_type(self, obj):
        return 'custom_hours' if obj.is_available else 'unavailable'


class AvailabilityOverrideWriteSerializer(serializers.Serializer):
    """Serializer for creating or replacing an override (input)."""

    date = serializers.DateField()
    is_available = serializers.BooleanField(default=False)
    start_time = serializers.TimeField(input_formats=TIME_INPUT_FORMATS, required=False, allow_null=True)
    end_time = serializers.TimeField(input_formats=TIME_INPUT_FORMATS, required=False, allow_null=True)
    session_duration = serializers.IntegerField(min_value=1, default=60)
    session_type = serializers.ChoiceField(choices=SESSION_TYPES, default='individual')
    max_sessions = serializers.IntegerField(min_value=1, default=1)
    reason = serializers.CharField(max_length=255, required=False, allow_blank=True, default='')
    notes = serializers.CharField(required=False, allow_blank=True, default='')

    def validate(self, data):
        if data['is_available']:
            start, end = data.get('start_time'), data.get('end_time')
            if not start or not end:
                raise serializers.ValidationError(
                    'start_time and end_time are required when is_available is true.'
                )
            if start >= end:
                raise serializers.ValidationError({
                    'end_time': 'End time must be after start time.'
                })
        return data


class OverrideRangeQuerySerializer(serializers.Serializer):
    start_date = serializers.DateField(required=False)
    end_date = serializers.DateField(required=False)


class AvailableDaysQuerySerializer(serializers.Serializer):
    """Serializer for the available-days query parameters."""

    therapist_id = serializers.IntegerField()
    start_date = serializers.DateField()
    end_date = serializers.DateField()

    def validate(self, data):
        try:
            validate_date_range(data['start_date'], data['end_date'])
        except ValueError as exc:
            raise serializers.ValidationError(str(exc))
        return data


class SlotsQuerySerializer(serializers.Serializer):
    therapist_id = serializers.IntegerField()
    date = serializers.DateField()
