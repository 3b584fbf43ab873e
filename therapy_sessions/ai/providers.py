"""
AI provider calls for session notes.

Every function returns a ProviderResult. When no real provider produces a
value, the canned content from ai.mock is returned with is_fallback=True and
the provider errors joined into ``error``. Transcription is done with OpenAI
Whisper; SOAP notes try DeepSeek first (when enabled), then OpenAI.
"""

import json
import logging
import re
from typing import Any, Dict, List, Optional

from django.conf import settings
from openai import OpenAI, OpenAIError

from ..types import ProviderResult, SessionContext, SOAPNotes, TherapeuticInsights, Transcription, MIN_TRANSCRIPT_LENGTH
from .deepseek import DeepSeekClient, DeepSeekError, generate_soap_notes_with_deepseek, is_deepseek_configured
from .mock import MOCK_PROVIDER, mock_insights, mock_soap_notes, mock_transcription

logger = logging.getLogger(__name__)

OPENAI_PROVIDER = 'openai'
DEEPSEEK_PROVIDER = 'deepseek'
OPENAI_TIMEOUT_S = 60.0

SOAP_JSON_SYSTEM_PROMPT = """You are a clinical psychologist creating SOAP notes for therapy sessions.

SUBJECTIVE: What the patient reports (symptoms, mood, recent stressors, perceived progress)
OBJECTIVE: What you observe (behavior, affect, speech, engagement)
ASSESSMENT: Clinical analysis (progress toward goals, symptom severity, risk)
PLAN: Next steps (interventions, homework, next session planning)

Respond with a JSON object with these fields: subjective, objective, assessment, plan,
summary, mood_rating (1-10), progress_notes, homework_assigned, next_session_focus.
Be professional and accurate, and avoid personal identifying information."""

INSIGHTS_SYSTEM_PROMPT = """Extract key therapeutic insights from this session transcript. Focus on:
1. Breakthroughs or significant moments
2. Areas of concern or difficulty
3. Quality of therapeutic relationship
4. Overall treatment progress

Respond in JSON with arrays "breakthroughs" and "concerns", and strings
"therapeutic_relationship" and "treatment_progress"."""

_FENCE = re.compile(r'^```(?:json)?\s*|\s*```$', re.IGNORECASE)


class ProviderError(Exception):
    """A provider could not produce a result."""


def is_openai_configured() -> bool:
    return bool(settings.OPENAI_API_KEY)


def get_openai_client() -> OpenAI:
    """
    Raises:
        ProviderError: If OPENAI_API_KEY is not set
    """
    if not is_openai_configured():
        raise ProviderError('OpenAI API key not configured')
    return OpenAI(api_key=settings.OPENAI_API_KEY, timeout=OPENAI_TIMEOUT_S, max_retries=2)


def parse_soap_json(content: str) -> Dict[str, Any]:
    """
    Parse a JSON object from model output, tolerating markdown code fences.

    Raises:
        ValueError: If the content is not a JSON object
    """
    cleaned = _FENCE.sub('', content.strip()).strip()
    data = json.loads(cleaned)
    if not isinstance(data, dict):
        raise ValueError('Expected a JSON object')
    return data


def transcribe_audio(
    audio_path: str,
    client: Optional[OpenAI] = None,
    allow_fallback: bool = True
) -> ProviderResult:
    """
    Transcribe an audio file with Whisper.

    Args:
        audio_path: Path to a local audio file
        client: OpenAI client (built from settings when omitted)
        allow_fallback: Return the canned transcript instead of raising

    Returns:
        ProviderResult wrapping a Transcription

    Raises:
        ProviderError: If transcription fails and allow_fallback is False
    """
    try:
        client = client or get_openai_client()
        with open(audio_path, 'rb') as audio_file:
            response = client.audio.transcriptions.create(
                model=settings.OPENAI_TRANSCRIPTION_MODEL,
                file=audio_file,
                response_format='verbose_json',
            )
    except (OpenAIError, OSError, ProviderError) as exc:
        logger.warning("Transcription failed for %s: %s", audio_path, exc)
        if not allow_fallback:
            raise ProviderError(f'Transcription failed: {exc}') from exc
        return ProviderResult(mock_transcription(), MOCK_PROVIDER, is_fallback=True, error=str(exc))

    transcription = Transcription(
        text=response.text,
        duration=getattr(response, 'duration', None),
        language=getattr(response, 'language', None),
    )
    logger.info("Transcribed %s (%d chars)", audio_path, len(transcription.text))
    return ProviderResult(transcription, OPENAI_PROVIDER)


def _soap_with_openai(transcript: str, context: SessionContext, client: Optional[OpenAI]) -> SOAPNotes:
    client = client or get_openai_client()
    completion = client.chat.completions.create(
        model=settings.OPENAI_SOAP_MODEL,
        messages=[
            {'role': 'system', 'content': SOAP_JSON_SYSTEM_PROMPT},
            {
                'role': 'user',
                'content': (
                    f"Therapy session transcript for session {context.session_id}:\n\n"
                    f"{transcript}\n\nPlease create comprehensive SOAP notes for this session."
                ),
            },
        ],
        temperature=0.2,
        max_tokens=2000,
        response_format={'type': 'json_object'},
    )
    content = completion.choices[0].message.content
    if not content:
        raise ProviderError('No response from OpenAI')
    return SOAPNotes.from_dict(parse_soap_json(content))


def generate_soap_notes(
    transcript: str,
    context: SessionContext,
    deepseek_client: Optional[DeepSeekClient] = None,
    openai_client: Optional[OpenAI] = None
) -> ProviderResult:
    """
    Generate SOAP notes, trying DeepSeek, then OpenAI, then canned notes.

    Returns:
        ProviderResult wrapping SOAPNotes

    Raises:
        ValueError: If the transcript is too short to analyse
    """
    if not transcript or len(transcript.strip()) < MIN_TRANSCRIPT_LENGTH:
        raise ValueError('Transcript is too short or empty')

    errors: List[str] = []

    use_deepseek = settings.USE_DEEPSEEK_FOR_SOAP_NOTES and (
        deepseek_client is not None or is_deepseek_configured()
    )
    if use_deepseek:
        try:
            parsed = generate_soap_notes_with_deepseek(transcript, context, client=deepseek_client)
        except DeepSeekError as exc:
            logger.error(
                "DeepSeek SOAP generation failed for session %s, falling back: %s",
                context.session_id, exc.message,
            )
            errors.append(f'deepseek: {exc.user_message}')
        else:
            notes = SOAPNotes.from_dict({**parsed['structured'], 'summary': parsed['summary']})
            return ProviderResult(notes, DEEPSEEK_PROVIDER)

    try:
        notes = _soap_with_openai(transcript, context, openai_client)
    except (OpenAIError, ProviderError, ValueError) as exc:
        logger.error(
            "OpenAI SOAP generation failed for session %s, using canned notes: %s",
            context.session_id, exc,
        )
        errors.append(f'openai: {exc}')
    else:
        return ProviderResult(notes, OPENAI_PROVIDER)

    return ProviderResult(
        mock_soap_notes(context.session_id),
        MOCK_PROVIDER,
        is_fallback=True,
        error='; '.join(errors),
    )


def extract_therapeutic_insights(transcript: str, client: Optional[OpenAI] = None) -> ProviderResult:
    """Breakthroughs, concerns and progress notes for a transcript."""
    try:
        client = client or get_openai_client()
        completion = client.chat.completions.create(
            model=settings.OPENAI_SOAP_MODEL,
            messages=[
                {'role': 'system', 'content': INSIGHTS_SYSTEM_PROMPT},
                {'role': 'user', 'content': transcript},
            ],
            temperature=0.3,
            max_tokens=1000,
            response_format={'type': 'json_object'},
        )
        content = completion.choices[0].message.content
        if not content:
            raise ProviderError('No response from OpenAI')
        insights = TherapeuticInsights.from_dict(parse_soap_json(content))
    except (OpenAIError, ProviderError, ValueError) as exc:
        logger.warning("Insight extraction failed, using canned insights: %s", exc)
        return ProviderResult(mock_insights(), MOCK_PROVIDER, is_fallback=True, error=str(exc))

    return ProviderResult(insights, OPENAI_PROVIDER)


def validate_ai_configuration() -> Dict[str, Any]:
    """Report which providers are usable with the current settings."""
    deepseek_enabled = settings.USE_DEEPSEEK_FOR_SOAP_NOTES and is_deepseek_configured()
    openai_enabled = is_openai_configured()

    if not openai_enabled and not deepseek_enabled:
        return {
            'success': False,
            'message': 'No AI provider configured; canned notes will be used',
            'providers': {'deepseek': False, 'openai': False},
        }
    if not openai_enabled:
        message = 'OpenAI API key not configured; transcription will use canned content'
    else:
        message = 'AI services configured properly'
    return {
        'success': openai_enabled,
        'message': message,
        'providers': {'deepseek': deepseek_enabled, 'openai': openai_enabled},
    }


def get_ai_service_stats() -> Dict[str, Any]:
    available = []
    if settings.USE_DEEPSEEK_FOR_SOAP_NOTES and is_deepseek_configured():
        available.append(DEEPSEEK_PROVIDER)
    if is_openai_configured():
        available.append(OPENAI_PROVIDER)
    return {
        'default_provider': available[0] if available else MOCK_PROVIDER,
        'available_providers': available,
        'transcription_provider': OPENAI_PROVIDER if is_openai_configured() else MOCK_PROVIDER,
        'status': 'configured' if available else 'not_configured',
    }
