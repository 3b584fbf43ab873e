"""
DeepSeek chat-completions client and SOAP-notes generation.

DeepSeek exposes an OpenAI-compatible REST API; it is called with httpx so the
retry policy stays in our hands: 429 responses and transport failures are
retried with exponential backoff (1s, 2s, 4s, ...), anything else fails fast.
"""

import logging
import re
import time
from typing import Any, Dict, List, Optional

import httpx
from django.conf import settings
from django.utils import timezone

from ..types import SessionContext

logger = logging.getLogger(__name__)

DEEPSEEK_CHAT_MODEL = 'deepseek-chat'

SOAP_SYSTEM_PROMPT = (
    "You are a professional therapist assistant specializing in clinical documentation. "
    "Generate comprehensive, accurate SOAP notes from therapy session transcripts. "
    "Follow proper medical documentation standards, maintain patient confidentiality, "
    "and ensure clinical accuracy.\n\n"
    "Key requirements:\n"
    "- Use professional medical terminology\n"
    "- Be objective and factual\n"
    "- Maintain patient privacy\n"
    "- Follow SOAP format strictly\n"
    "- Include relevant clinical observations\n"
    "- Provide actionable treatment recommendations"
)

SOAP_SECTIONS = ('subjective', 'objective', 'assessment', 'plan')
_SECTION_HEADER = re.compile(r'^##?\s*(SUBJECTIVE|OBJECTIVE|ASSESSMENT|PLAN)\b', re.IGNORECASE)

TOPIC_KEYWORDS = ('anxiety', 'depression', 'stress', 'relationship', 'work', 'family', 'trauma', 'grief')
PROGRESS_KEYWORDS = ('progress', 'improvement', 'better', 'worse')
NEXT_STEP_KEYWORDS = ('continue', 'practice', 'homework')


class DeepSeekError(Exception):
    """
    Error from the DeepSeek API.

    status_code is the HTTP status when the API answered, None for timeouts
    and connection failures.
    """

    def __init__(self, message: str, status_code: Optional[int] = None, timed_out: bool = False):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.timed_out = timed_out

    @property
    def is_retryable(self) -> bool:
        return self.status_code is None or self.status_code == 429

    @property
    def user_message(self) -> str:
        """Plain-language description suitable for API responses."""
        if self.status_code == 401:
            return 'DeepSeek API key is invalid or expired'
        if self.status_code == 402:
            return 'DeepSeek API account has insufficient balance'
        if self.status_code == 429:
            return 'DeepSeek API rate limit exceeded. Please try again later.'
        if self.status_code is not None and self.status_code >= 500:
            return 'DeepSeek server error. Please try again later.'
        if self.timed_out:
            return 'DeepSeek API request timed out. Please try again.'
        return f'DeepSeek AI processing failed: {self.message}'


class DeepSeekClient:
    """Minimal client for the DeepSeek REST API."""

    def __init__(
        self,
        api_key: str,
        base_url: str = 'https://api.deepseek.com/v1',
        timeout: float = 30.0,
        max_retries: int = 2,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.max_retries = max_retries
        self._transport = transport

    def _client(self) -> httpx.Client:
        return httpx.Client(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=self._transport,
            headers={'Authorization': f'Bearer {self.api_key}'},
        )

    @staticmethod
    def _error_from_response(response: httpx.Response) -> DeepSeekError:
        try:
            detail = response.json().get('error', {}).get('message')
        except (ValueError, AttributeError):
            detail = None
        message = f"DeepSeek API error: {response.status_code} {response.reason_phrase}"
        if detail:
            message = f"{message} - {detail}"
        return DeepSeekError(message, status_code=response.status_code)

    @staticmethod
    def _json_body(response: httpx.Response) -> Dict[str, Any]:
        try:
            body = response.json()
        except ValueError as exc:
            raise DeepSeekError(
                f"DeepSeek API returned invalid JSON: {exc}", status_code=response.status_code
            ) from exc
        if not isinstance(body, dict):
            raise DeepSeekError("DeepSeek API returned an unexpected body", status_code=response.status_code)
        return body

    def chat_completions_create(self, **params) -> Dict[str, Any]:
        """
        POST /chat/completions.

        Raises:
            DeepSeekError: When the request fails after all retries, or the
                response body is not a JSON object
        """
        attempts = self.max_retries + 1
        last_error = None

        for attempt in range(attempts):
            logger.info(
                "DeepSeek request attempt %d/%d model=%s messages=%d",
                attempt + 1, attempts, params.get('model'), len(params.get('messages') or []),
            )
            try:
                with self._client() as client:
                    response = client.post('/chat/completions', json=params)
            except httpx.TimeoutException as exc:
                last_error = DeepSeekError(
                    f"DeepSeek API timeout after {self.timeout}s: {exc}", timed_out=True
                )
            except httpx.TransportError as exc:
                last_error = DeepSeekError(f"DeepSeek API unreachable: {exc}")
            else:
                if response.is_success:
                    return self._json_body(response)
                last_error = self._error_from_response(response)
                if not last_error.is_retryable:
                    logger.error("DeepSeek request failed: %s", last_error.message)
                    raise last_error

            if attempt < self.max_retries:
                wait = 2 ** attempt
                logger.warning(
                    "DeepSeek attempt %d failed (%s), retrying in %ss",
                    attempt + 1, last_error.message, wait,
                )
                time.sleep(wait)

        logger.error("DeepSeek request failed after %d attempts: %s", attempts, last_error.message)
        raise last_error

    def models_list(self) -> Dict[str, Any]:
        """GET /models."""
        try:
            with self._client() as client:
                response = client.get('/models')
        except httpx.TransportError as exc:
            raise DeepSeekError(f"DeepSeek API unreachable: {exc}")
        if not response.is_success:
            raise self._error_from_response(response)
        return self._json_body(response)


def is_deepseek_configured() -> bool:
    return bool(settings.DEEPSEEK_API_KEY)


def get_deepseek_client(transport: Optional[httpx.BaseTransport] = None) -> DeepSeekClient:
    """
    Build a client from settings.

    Raises:
        DeepSeekError: If DEEPSEEK_API_KEY is not set
    """
    if not is_deepseek_configured():
        raise DeepSeekError('DEEPSEEK_API_KEY is not configured')
    return DeepSeekClient(
        api_key=settings.DEEPSEEK_API_KEY,
        base_url=settings.DEEPSEEK_API_BASE,
        timeout=settings.DEEPSEEK_TIMEOUT_S,
        max_retries=settings.DEEPSEEK_MAX_RETRIES,
        transport=transport,
    )


def create_soap_prompt(transcript: str, context: SessionContext) -> str:
    """User prompt asking for markdown SOAP notes with one ## heading per section."""
    session_date = context.session_date or timezone.localdate().isoformat()
    return f"""Generate comprehensive SOAP notes for this therapy session.

PATIENT INFORMATION:
- Patient: {context.patient_name}
- Session Date: {session_date}
- Duration: {context.duration_minutes} minutes
- Therapist: {context.therapist_name}
- Session Type: {context.session_type.title()} Therapy

SESSION TRANSCRIPT:
{transcript}

Please generate detailed SOAP notes with the following sections:

## SUBJECTIVE
- Patient's self-reported concerns, feelings, and experiences
- Direct quotes from the patient that capture key emotional states
- Reported symptoms, mood changes, or significant events

## OBJECTIVE
- Clinical observations of behavior, mood, and affect
- Notable non-verbal cues
- Mental status examination findings

## ASSESSMENT
- Clinical interpretation and progress toward treatment goals
- Current symptom severity and functional impairment
- Risk assessment (suicide, self-harm, violence if applicable)

## PLAN
- Specific interventions for the next session
- Homework assignments or between-session activities
- Follow-up scheduling and referrals if needed

Format the response as clean markdown with clear section headings. Be thorough but concise.
"""


def _sentences(text: str) -> List[str]:
    return [s.strip() for s in text.split('.') if s.strip()]


def _extract_key_topics(subjective: str) -> str:
    if not subjective:
        return 'general therapeutic concerns'
    sentences = _sentences(subjective)
    first = sentences[0] if sentences else ''
    found = [keyword for keyword in TOPIC_KEYWORDS if keyword in first.lower()]
    if found:
        return ' and '.join(found) + ' issues'
    return first[:100] + '...' if len(first) > 100 else first


def _extract_progress(assessment: str) -> str:
    if not assessment:
        return 'Progress assessment pending'
    sentences = _sentences(assessment)
    for sentence in sentences:
        if any(keyword in sentence.lower() for keyword in PROGRESS_KEYWORDS):
            return sentence
    return sentences[0] if sentences else 'Clinical assessment completed'


def _extract_next_steps(plan: str) -> str:
    if not plan:
        return 'Continue current treatment approach'
    lines = [line.strip() for line in plan.splitlines() if line.strip()]
    for line in lines:
        lowered = line.lower()
        if line.startswith(('-', '*')) or any(keyword in lowered for keyword in NEXT_STEP_KEYWORDS):
            return re.sub(r'^[-*]\s*', '', line)
    return lines[0] if lines else 'Continue therapeutic interventions'


def summarize_sections(sections: Dict[str, str]) -> str:
    return (
        f"Session focused on {_extract_key_topics(sections.get('subjective', ''))}. "
        f"{_extract_progress(sections.get('assessment', ''))}. "
        f"Next steps: {_extract_next_steps(sections.get('plan', ''))}"
    )


def parse_soap_notes(notes: str) -> Dict[str, Any]:
    """
    Split markdown SOAP notes into their four sections.

    Lines before the first recognised heading and top-level "# " titles are
    dropped.

    Returns:
        dict with raw, structured (subjective/objective/assessment/plan),
        summary, word_count, generated_at and provider
    """
    collected = {section: [] for section in SOAP_SECTIONS}
    current = None

    for line in notes.splitlines():
        if line.startswith('# '):
            continue
        match = _SECTION_HEADER.match(line.strip())
        if match:
            current = match.group(1).lower()
            continue
        if current:
            collected[current].append(line)

    structured = {section: '\n'.join(lines).strip() for section, lines in collected.items()}

    return {
        'raw': notes,
        'structured': structured,
        'summary': summarize_sections(structured),
        'word_count': len(notes.split()),
        'generated_at': timezone.now().isoformat(),
        'provider': 'deepseek',
    }


def generate_soap_notes_with_deepseek(
    transcript: str,
    context: SessionContext,
    client: Optional[DeepSeekClient] = None
) -> Dict[str, Any]:
    """
    Generate SOAP notes with DeepSeek.

    Returns:
        Parsed notes, see parse_soap_notes

    Raises:
        DeepSeekError: If the API fails or returns no usable content
    """
    client = client or get_deepseek_client()
    logger.info("Generating SOAP notes with DeepSeek for session %s", context.session_id)

    response = client.chat_completions_create(
        model=DEEPSEEK_CHAT_MODEL,
        messages=[
            {'role': 'system', 'content': SOAP_SYSTEM_PROMPT},
            {'role': 'user', 'content': create_soap_prompt(transcript, context)},
        ],
        max_tokens=2000,
        temperature=0.2,
        top_p=0.9,
        stream=False,
    )

    try:
        choices = response.get('choices') or []
        content = choices[0]['message'].get('content') if choices else None
    except (AttributeError, IndexError, KeyError, TypeError) as exc:
        raise DeepSeekError('Malformed response from DeepSeek API') from exc
    if not content:
        raise DeepSeekError('Empty response from DeepSeek API')
    if not isinstance(content, str):
        raise DeepSeekError('Malformed response from DeepSeek API')

    return parse_soap_notes(content)


def test_deepseek_connection(client: Optional[DeepSeekClient] = None) -> Dict[str, Any]:
    """Check credentials by listing models; never raises."""
    try:
        client = client or get_deepseek_client()
        response = client.models_list()
    except DeepSeekError as exc:
        return {'success': False, 'error': exc.message, 'status_code': exc.status_code}
    return {'success': True, 'models': response.get('data', [])}
