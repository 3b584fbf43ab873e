"""
Serializers for therapy sessions and session notes.
"""

from rest_framework import serializers

from .models import SessionNote, TherapySession


class TherapySessionReadSerializer(serializers.ModelSerializer):
    """Serializer for reading/displaying TherapySession (output)."""

    therapist_name = serializers.CharField(source='therapist.full_name', read_only=True)
    patient_name = serializers.CharField(source='user.full_name', read_only=True)
    session_time = serializers.TimeField(format='%H:%M')
    end_datetime = serializers.DateTimeField(read_only=True)

    class Meta:
        model = TherapySession
        fields = [
            'id',
            'therapist',
            'therapist_name',
            'user',
            'patient_name',
            'session_date',
            'session_time',
            'duration_minutes',
            'session_type',
            'status',
            'title',
            'notes',
            'room_url',
            'session_summary',
            'ai_notes_generated',
            'end_datetime',
            'completed_at',
            'cancelled_at',
            'created_at',
            'updated_at',
        ]


class BookSessionSerializer(serializers.Serializer):
    """Serializer for booking a session in an open slot."""

    therapist_id = serializers.IntegerField()
    session_date = serializers.DateField()
    start_time = serializers.TimeField(input_formats=['%H:%M', '%H:%M:%S'])
    duration_minutes = serializers.IntegerField(min_value=1, required=False)
    session_type = serializers.ChoiceField(choices=TherapySession.SESSION_TYPE_CHOICES, required=False)
    notes = serializers.CharField(required=False, allow_blank=True, default='')


class CompleteSessionSerializer(serializers.Serializer):
    summary = serializers.CharField(required=False, allow_blank=True)


class SessionRangeQuerySerializer(serializers.Serializer):
    """Serializer for date range query parameters."""

    start = serializers.DateField()
    end = serializers.DateField()
    status = serializers.ChoiceField(
        choices=TherapySession.STATUS_CHOICES,
        required=False
    )

    def validate(self, data):
        if data['start'] > data['end']:
            raise serializers.ValidationError({
                'end': 'End date must be on or after start date.'
            })
        return data


class SessionNoteSerializer(serializers.ModelSerializer):
    soap_notes = serializers.DictField(read_only=True)

    class Meta:
        model = SessionNote
        fields = [
            'id',
            'session',
            'transcript',
            'soap_notes',
            'summary',
            'mood_rating',
            'progress_notes',
            'homework_assigned',
            'next_session_focus',
            'therapeutic_insights',
            'ai_generated',
            'provider',
            'is_fallback',
            'processing_status',
            'recording_id',
            'processing_time_ms',
            'created_at',
            'updated_at',
        ]
        read_only_fields = fields


class TranscribeSerializer(serializers.Serializer):
    file = serializers.FileField()
    sessionId = serializers.IntegerField()


class SoapNotesRequestSerializer(serializers.Serializer):
    sessionId = serializers.IntegerField()
    transcript = serializers.CharField(required=False, allow_blank=True)


class ProcessSessionSerializer(serializers.Serializer):
    sessionId = serializers.CharField()
    transcript = serializers.CharField(required=False, allow_blank=True)


class RecordingReadySerializer(serializers.Serializer):
    """
    Recording-ready webhook body.

    room_name is matched against the end of the session's room URL. An
    explicit session_id narrows the match to that session.
    """

    recording_id = serializers.CharField()
    room_name = serializers.CharField()
    session_id = serializers.IntegerField(required=False)
