"""
AI processing pipeline for session recordings.

recording -> audio -> transcript -> SOAP notes -> insights -> SessionNote
-> therapist notification -> temp file cleanup

A session is processed by at most one run at a time: a run first claims the
session's note by moving it to ``processing`` with a conditional UPDATE, and
a second run that finds it already claimed returns without doing anything.
Failures are recorded as SessionProcessingError rows and re-raised.
"""

import logging
import threading
import time
from typing import Any, Dict, Optional

from django.conf import settings
from django.db import close_old_connections, transaction

from accounts.models import Notification

from .ai.providers import extract_therapeutic_insights, generate_soap_notes, transcribe_audio
from .models import SessionNote, SessionProcessingError, TherapySession
from .types import ProcessedSession, ProviderResult, SessionContext
from .video import cleanup_files, get_daily_client, process_recording

logger = logging.getLogger(__name__)

AI_NOTES_READY = 'ai_notes_ready'


class ProcessingError(Exception):
    """The pipeline could not run for a session."""


def _claim(session: TherapySession, recording_id: str) -> Optional[SessionNote]:
    """Mark the session's note as processing; None when another run holds it."""
    note, _ = SessionNote.objects.get_or_create(session=session)
    claimed = (
        SessionNote.objects
        .filter(pk=note.pk)
        .exclude(processing_status='processing')
        .update(processing_status='processing', recording_id=recording_id)
    )
    if not claimed:
        return None
    note.refresh_from_db()
    return note


def _notify_therapist(session: TherapySession, processing_time_ms: int, is_fallback: bool) -> Notification:
    return Notification.objects.create(
        user=session.therapist,
        title='AI Session Notes Ready',
        message=f'AI-generated SOAP notes are ready for session {session.pk}',
        type=AI_NOTES_READY,
        data={
            'session_id': session.pk,
            'processing_time': processing_time_ms,
            'is_fallback': is_fallback,
        },
    )


@transaction.atomic
def _store_notes(
    session: TherapySession,
    note: SessionNote,
    transcript: str,
    soap: ProviderResult,
    insights: ProviderResult,
    is_fallback: bool,
    recording_id: str = '',
    processing_time_ms: Optional[int] = None
) -> SessionNote:
    notes = soap.value
    note.transcript = transcript
    note.soap_subjective = notes.subjective
    note.soap_objective = notes.objective
    note.soap_assessment = notes.assessment
    note.soap_plan = notes.plan
    note.summary = notes.summary
    note.mood_rating = notes.mood_rating
    note.progress_notes = notes.progress_notes
    note.homework_assigned = notes.homework_assigned
    note.next_session_focus = notes.next_session_focus
    note.ai_generated = True
    note.provider = soap.provider
    note.is_fallback = is_fallback
    note.processing_status = 'completed'
    if insights is not None:
        note.therapeutic_insights = {
            **insights.value.to_dict(),
            'provider': insights.provider,
            'is_fallback': insights.is_fallback,
        }
    if recording_id:
        note.recording_id = recording_id
    if processing_time_ms is not None:
        note.processing_time_ms = processing_time_ms
    note.save()

    session.ai_notes_generated = True
    if notes.summary:
        session.session_summary = notes.summary
    session.save()
    return note


def process_session_recording(
    session_id: int,
    recording_id: Optional[str] = None,
    daily_client=None,
    openai_client=None,
    deepseek_client=None
) -> Optional[ProcessedSession]:
    """
    Run the full pipeline for one recorded session.

    Args:
        session_id: TherapySession primary key
        recording_id: Video-provider recording id (defaults to the session's)
        daily_client, openai_client, deepseek_client: Provider clients, built
            from settings when omitted

    Returns:
        ProcessedSession, or None when another run is already processing
        this session

    Raises:
        ProcessingError: If the session has no recording, or the recording is
            not finished or was not made in the session's room
        Any provider or database error, after it has been recorded
    """
    started = time.monotonic()

    try:
        session = TherapySession.objects.select_related('therapist', 'user').get(pk=session_id)
    except TherapySession.DoesNotExist:
        raise ProcessingError(f'Session {session_id} not found')

    recording_id = recording_id or session.recording_id
    if not recording_id:
        raise ProcessingError(f'Session {session_id} has no recording')

    note = _claim(session, recording_id)
    if note is None:
        logger.info("Session %s is already being processed, skipping", session_id)
        return None

    logger.info("Starting AI processing for session %s, recording %s", session_id, recording_id)
    daily_client = daily_client or get_daily_client()
    video_path = audio_path = None

    try:
        recording = daily_client.get_recording(recording_id)
        if not recording.is_finished:
            raise ProcessingError(f'Recording {recording_id} is not finished yet (status: {recording.status})')
        if not session.room_name or recording.room_name != session.room_name:
            raise ProcessingError(
                f'Recording {recording_id} belongs to room "{recording.room_name}", '
                f'not to session {session_id}'
            )

        video_path, audio_path = process_recording(recording, settings.RECORDINGS_TEMP_DIR, client=daily_client)

        transcription = transcribe_audio(audio_path, client=openai_client)
        transcript = transcription.value.text
        context = SessionContext.from_session(session)
        soap = generate_soap_notes(
            transcript, context, deepseek_client=deepseek_client, openai_client=openai_client
        )
        insights = extract_therapeutic_insights(transcript, client=openai_client)
        is_fallback = transcription.is_fallback or soap.is_fallback or insights.is_fallback

        processing_time_ms = int((time.monotonic() - started) * 1000)
        _store_notes(
            session, note, transcript, soap, insights, is_fallback,
            recording_id=recording_id, processing_time_ms=processing_time_ms,
        )
        _notify_therapist(session, processing_time_ms, is_fallback)
    except Exception as exc:
        logger.exception("AI processing failed for session %s", session_id)
        SessionProcessingError.objects.create(
            session=session,
            recording_id=recording_id,
            error_message=str(exc) or type(exc).__name__,
        )
        SessionNote.objects.filter(pk=note.pk).update(processing_status='error')
        raise
    finally:
        cleanup_files(*[path for path in (video_path, audio_path) if path])

    if is_fallback:
        logger.warning(
            "Session %s notes used fallback content (transcription=%s, soap=%s, insights=%s)",
            session_id, transcription.provider, soap.provider, insights.provider,
        )
    logger.info("AI processing completed for session %s in %dms", session_id, processing_time_ms)

    return ProcessedSession(
        session_id=session.pk,
        recording_id=recording_id,
        transcript=transcript,
        soap_notes=soap.value,
        insights=insights.value,
        provider=soap.provider,
        is_fallback=is_fallback,
        processing_time_ms=processing_time_ms,
    )


def generate_notes_from_transcript(
    session: TherapySession,
    transcript: str,
    deepseek_client=None,
    openai_client=None
) -> SessionNote:
    """
    Generate and store SOAP notes for a session from an existing transcript.

    Raises:
        ValueError: If the transcript is too short
        ProcessingError: If the session is already being processed
    """
    soap = generate_soap_notes(
        transcript,
        SessionContext.from_session(session),
        deepseek_client=deepseek_client,
        openai_client=openai_client,
    )
    note, _ = SessionNote.objects.get_or_create(session=session)
    if note.processing_status == 'processing':
        raise ProcessingError(f'Session {session.pk} is already being processed')
    return _store_notes(session, note, transcript, soap, None, soap.is_fallback)


def store_transcript(session: TherapySession, transcript: str) -> SessionNote:
    note, _ = SessionNote.objects.get_or_create(session=session)
    note.transcript = transcript
    note.ai_generated = True
    note.save(update_fields=['transcript', 'ai_generated', 'updated_at'])
    return note


def _run_in_background(session_id: int, recording_id: Optional[str]) -> None:
    try:
        process_session_recording(session_id, recording_id)
        logger.info("Background processing finished for session %s", session_id)
    except Exception:
        logger.exception("Background processing failed for session %s", session_id)
    finally:
        close_old_connections()


def process_session_in_background(session_id: int, recording_id: Optional[str] = None) -> threading.Thread:
    """Start the pipeline in a daemon thread and return immediately."""
    thread = threading.Thread(
        target=_run_in_background,
        args=(session_id, recording_id),
        name=f'session-notes-{session_id}',
        daemon=True,
    )
    thread.start()
    return thread


def get_processing_status(session_id: int) -> Dict[str, Any]:
    """
    Current AI processing state for a session.

    Returns:
        dict with status (pending, processing, completed or error), note
        (SessionNote or None) and error (latest error message or None)
    """
    note = SessionNote.objects.filter(session_id=session_id).first()
    if note is not None and note.processing_status in ('processing', 'completed'):
        return {'status': note.processing_status, 'note': note, 'error': None}

    latest_error = SessionProcessingError.objects.filter(session_id=session_id).first()
    if latest_error is not None:
        return {'status': 'error', 'note': note, 'error': latest_error.error_message}

    return {'status': 'pending', 'note': note, 'error': None}


def retry_processing(session_id: int, recording_id: Optional[str] = None) -> threading.Thread:
    """Clear recorded failures and start processing again in the background."""
    SessionProcessingError.objects.filter(session_id=session_id).delete()
    SessionNote.objects.filter(session_id=session_id, processing_status='error').update(
        processing_status='pending'
    )
    return process_session_in_background(session_id, recording_id)
