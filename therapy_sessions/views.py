"""Views for booking therapy sessions and the AI session-notes pipeline."""

import logging
import os
import tempfile

from django.conf import settings
from django.contrib.auth import get_user_model
from django.http import Http404
from django.shortcuts import get_object_or_404

from rest_framework import status
from rest_framework.parsers import FormParser, MultiPartParser
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from . import processor, services
from .ai.providers import ProviderError, generate_soap_notes, transcribe_audio
from .models import SessionNote, TherapySession
from .serializers import (
    BookSessionSerializer,
    CompleteSessionSerializer,
    ProcessSessionSerializer,
    RecordingReadySerializer,
    SessionNoteSerializer,
    SessionRangeQuerySerializer,
    SoapNotesRequestSerializer,
    TherapySessionReadSerializer,
    TranscribeSerializer,
)
from .types import SessionContext

logger = logging.getLogger(__name__)

TEST_SESSION_PREFIXES = ('test-session-', 'perf-test-')
RECORDING_READY_EVENTS = ('recording.finished', 'recording.ready-to-download')


def _error(message, code, http_status):
    return Response({'success': False, 'error': message, 'code': code}, status=http_status)


def _participant_session(user, pk):
    """Session the user takes part in, as therapist or patient; 404 otherwise."""
    queryset = TherapySession.objects.select_related('therapist', 'user')
    if not user.is_staff:
        queryset = queryset.for_participant(user)
    return get_object_or_404(queryset, pk=pk)


class SessionBookView(APIView):
    """
    Book a session in one of a therapist's open slots.

    POST /api/sessions/book/
    """

    permission_classes = [IsAuthenticated]

    def post(self, request):
        serializer = BookSessionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        therapist = get_object_or_404(get_user_model(), pk=data['therapist_id'], user_type='therapist')
        session = services.book_session(
            patient=request.user,
            therapist=therapist,
            session_date=data['session_date'],
            start_time=data['start_time'],
            duration_minutes=data.get('duration_minutes'),
            session_type=data.get('session_type'),
            notes=data.get('notes', ''),
        )

        return Response({
            'success': True,
            'session': TherapySessionReadSerializer(session).data,
        }, status=status.HTTP_201_CREATED)


class SessionListView(APIView):
    """
    List the signed-in user's sessions within a date range.

    GET /api/sessions/?start=YYYY-MM-DD&end=YYYY-MM-DD&status=X
    """

    permission_classes = [IsAuthenticated]

    def get(self, request):
        query_serializer = SessionRangeQuerySerializer(data=request.query_params)
        query_serializer.is_valid(raise_exception=True)

        sessions = services.get_sessions_in_range(
            query_serializer.validated_data['start'],
            query_serializer.validated_data['end'],
            status=query_serializer.validated_data.get('status'),
            participant=None if request.user.is_staff else request.user,
        )

        return Response({
            'success': True,
            'sessions': TherapySessionReadSerializer(sessions, many=True).data,
        })


class SessionDetailView(APIView):
    """
    Retrieve or cancel a session.

    GET /api/sessions/{id}/ - Retrieve session
    DELETE /api/sessions/{id}/ - Cancel session
    """

    permission_classes = [IsAuthenticated]

    def get(self, request, pk):
        session = _participant_session(request.user, pk)
        return Response({'success': True, 'session': TherapySessionReadSerializer(session).data})

    def delete(self, request, pk):
        session = _participant_session(request.user, pk)
        services.cancel_session(session)
        return Response({
            'success': True,
            'message': f'Session on {session.session_date} at {session.session_time:%H:%M} has been cancelled.',
        })


class SessionCompleteView(APIView):
    """
    Mark a session as completed.

    POST /api/sessions/{id}/complete/
    """

    permission_classes = [IsAuthenticated]

    def post(self, request, pk):
        session = _participant_session(request.user, pk)
        if session.therapist_id != request.user.pk and not request.user.is_staff:
            return _error('Only the session therapist can complete it', 'FORBIDDEN', status.HTTP_403_FORBIDDEN)

        serializer = CompleteSessionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        services.complete_session(session, summary=serializer.validated_data.get('summary'))

        return Response({
            'success': True,
            'session': TherapySessionReadSerializer(session).data,
        })


class TranscribeView(APIView):
    """
    Transcribe an uploaded audio file and store it on the session's notes.

    POST /api/transcribe/ (multipart: file, sessionId)
    """

    permission_classes = [IsAuthenticated]
    parser_classes = [MultiPartParser, FormParser]

    def post(self, request):
        serializer = TranscribeSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        upload = serializer.validated_data['file']
        session = _participant_session(request.user, serializer.validated_data['sessionId'])

        logger.info("Transcribing %d byte upload for session %s", upload.size, session.pk)
        suffix = os.path.splitext(upload.name)[1] or '.webm'
        with tempfile.NamedTemporaryFile(suffix=suffix, delete=False) as handle:
            for chunk in upload.chunks():
                handle.write(chunk)
            path = handle.name

        try:
            result = transcribe_audio(path, allow_fallback=False)
        except ProviderError as exc:
            return _error(str(exc), 'TRANSCRIPTION_FAILED', status.HTTP_502_BAD_GATEWAY)
        finally:
            try:
                os.remove(path)
            except OSError as exc:
                logger.error("Could not remove upload %s: %s", path, exc)

        processor.store_transcript(session, result.value.text)

        return Response({
            'success': True,
            'text': result.value.text,
            'sessionId': session.pk,
            'message': 'Audio transcribed successfully',
        })


class SoapNotesView(APIView):
    """
    Generate SOAP notes for a session from a transcript.

    POST /api/sessions/soap-notes/ - sessionId, optional transcript (falls
    back to the transcript stored on the session's notes)
    """

    permission_classes = [IsAuthenticated]

    def post(self, request):
        serializer = SoapNotesRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        session = _participant_session(request.user, serializer.validated_data['sessionId'])

        transcript = serializer.validated_data.get('transcript')
        if not transcript:
            transcript = (
                SessionNote.objects.filter(session=session)
                .values_list('transcript', flat=True)
                .first()
            )
        if not transcript:
            return _error('No transcript available for this session', 'NO_TRANSCRIPT', status.HTTP_400_BAD_REQUEST)

        try:
            note = processor.generate_notes_from_transcript(session, transcript)
        except processor.ProcessingError as exc:
            return _error(str(exc), 'ALREADY_PROCESSING', status.HTTP_409_CONFLICT)

        return Response({
            'success': True,
            'soapNotes': note.soap_notes,
            'note': SessionNoteSerializer(note).data,
            'provider': note.provider,
            'isFallback': note.is_fallback,
        })


class ProcessSessionView(APIView):
    """
    Generate SOAP notes from a transcript supplied by the caller.

    POST /api/ai/process-session/ - sessionId, transcript

    Session ids starting with test-session- or perf-test- are processed
    without authentication or persistence when FEATURE_ALLOW_TEST_ENDPOINTS
    is enabled.
    """

    permission_classes = [AllowAny]

    def post(self, request):
        serializer = ProcessSessionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        session_id = serializer.validated_data['sessionId']
        transcript = serializer.validated_data.get('transcript')

        if session_id.startswith(TEST_SESSION_PREFIXES):
            if not settings.FEATURE_ALLOW_TEST_ENDPOINTS:
                return _error('Test endpoints are disabled', 'TEST_ENDPOINTS_DISABLED', status.HTTP_403_FORBIDDEN)
            if not transcript:
                return _error('Transcript is required', 'MISSING_TRANSCRIPT', status.HTTP_400_BAD_REQUEST)
            result = generate_soap_notes(transcript, SessionContext(session_id=session_id))
            return Response({
                'success': True,
                'sessionId': session_id,
                'soapNotes': result.value.to_dict(),
                'provider': result.provider,
                'isFallback': result.is_fallback,
            })

        if not request.user.is_authenticated:
            return _error('Authentication required', 'UNAUTHORIZED', status.HTTP_401_UNAUTHORIZED)
        if not session_id.isdigit():
            return _error('Session not found or access denied', 'NOT_FOUND', status.HTTP_404_NOT_FOUND)
        session = _participant_session(request.user, int(session_id))

        if not transcript:
            return _error('Transcript is required', 'MISSING_TRANSCRIPT', status.HTTP_400_BAD_REQUEST)

        try:
            note = processor.generate_notes_from_transcript(session, transcript)
        except processor.ProcessingError as exc:
            return _error(str(exc), 'ALREADY_PROCESSING', status.HTTP_409_CONFLICT)

        return Response({
            'success': True,
            'sessionId': session.pk,
            'soapNotes': note.soap_notes,
            'summary': note.summary,
            'provider': note.provider,
            'isFallback': note.is_fallback,
        })


class AiSoapNotesView(APIView):
    """
    AI processing of a session's recording.

    GET /api/sessions/{id}/ai-soap-notes/ - Processing status and notes
    POST /api/sessions/{id}/ai-soap-notes/ - Start processing in the background
    """

    permission_classes = [IsAuthenticated]

    def get(self, request, pk):
        session = _participant_session(request.user, pk)
        state = processor.get_processing_status(session.pk)
        note = state['note']
        return Response({
            'success': True,
            'status': state['status'],
            'notes': SessionNoteSerializer(note).data if note is not None else None,
            'error': state['error'],
        })

    def post(self, request, pk):
        session = _participant_session(request.user, pk)
        if session.therapist_id != request.user.pk and not request.user.is_staff:
            return _error('Only the session therapist can request AI notes', 'FORBIDDEN', status.HTTP_403_FORBIDDEN)

        recording_id = request.data.get('recording_id') or session.recording_id
        if not recording_id:
            return _error('No recording available for this session', 'NO_RECORDING', status.HTTP_400_BAD_REQUEST)

        state = processor.get_processing_status(session.pk)
        if state['status'] == 'processing':
            return _error('Session is already being processed', 'ALREADY_PROCESSING', status.HTTP_409_CONFLICT)

        if state['status'] == 'error':
            processor.retry_processing(session.pk, recording_id)
        else:
            processor.process_session_in_background(session.pk, recording_id)

        return Response({
            'success': True,
            'status': 'processing',
            'message': 'AI processing started',
        }, status=status.HTTP_202_ACCEPTED)


class RecordingReadyWebhookView(APIView):
    """
    Video-provider webhook fired when a recording can be downloaded.

    POST /api/webhooks/recording-ready/

    The body may be flat or wrap its fields in "payload" (or "data"). Events
    named in "type" (or "event") other than RECORDING_READY_EVENTS are
    acknowledged and ignored. The recording must come from the session's
    own room; the processor checks this again against the provider.
    """

    permission_classes = [AllowAny]
    authentication_classes = []

    def post(self, request):
        event = request.data.get('type') or request.data.get('event')
        if event and event not in RECORDING_READY_EVENTS:
            logger.info("Ignoring video webhook event %s", event)
            return Response({
                'success': True,
                'ignored': True,
                'message': 'Event received but not processed',
            })

        body = request.data.get('payload') or request.data.get('data') or request.data
        serializer = RecordingReadySerializer(data=body)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        room_name = data['room_name']

        if 'session_id' in data:
            session = get_object_or_404(TherapySession, pk=data['session_id'])
            if session.room_name != room_name:
                logger.warning(
                    "Recording %s from room %s does not belong to session %s",
                    data['recording_id'], room_name, session.pk,
                )
                raise ValueError('Recording room does not match this session')
        else:
            session = (
                TherapySession.objects
                .filter(room_url__endswith=f"/{room_name}")
                .order_by('-session_date', '-session_time')
                .first()
            )
            if session is None:
                raise Http404('No session for this room')

        recording_id = data['recording_id']
        if session.recording_id != recording_id:
            session.recording_id = recording_id
            session.save()

        logger.info("Recording %s ready for session %s", recording_id, session.pk)
        processor.process_session_in_background(session.pk, recording_id)

        return Response({
            'success': True,
            'sessionId': session.pk,
            'status': 'processing',
        }, status=status.HTTP_202_ACCEPTED)
