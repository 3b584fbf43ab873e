"""
Data types and constants for therapy sessions and the AI notes pipeline.

This module contains:
- DTOs passed between the service layer, the AI providers and the views
- ProviderResult, which tags every AI stage with where its value came from
"""

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Generic, List, Optional, TypeVar


DEFAULT_SESSION_DURATION = 60
MIN_TRANSCRIPT_LENGTH = 10
RECORDING_FINISHED = 'finished'

T = TypeVar('T')


@dataclass
class ProviderResult(Generic[T]):
    """
    Value produced by an AI stage plus its provenance.

    is_fallback is True when value is canned content because every real
    provider failed or none is configured; error then carries the last
    provider error.
    """
    value: T
    provider: str
    is_fallback: bool = False
    error: Optional[str] = None


@dataclass
class Transcription:
    text: str
    duration: Optional[float] = None
    language: Optional[str] = None


@dataclass
class SOAPNotes:
    """Structured SOAP notes as stored on a SessionNote."""
    subjective: str = ''
    objective: str = ''
    assessment: str = ''
    plan: str = ''
    summary: str = ''
    mood_rating: Optional[int] = None
    progress_notes: str = ''
    homework_assigned: str = ''
    next_session_focus: str = ''

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SOAPNotes':
        """Build from a provider payload, ignoring unknown keys."""
        mood = data.get('mood_rating')
        try:
            mood = min(max(int(mood), 1), 10) if mood is not None else None
        except (TypeError, ValueError):
            mood = None

        def text(key):
            value = data.get(key)
            if value is None:
                return ''
            if isinstance(value, (list, tuple)):
                return '\n'.join(str(item) for item in value)
            return str(value)

        return cls(
            subjective=text('subjective'),
            objective=text('objective'),
            assessment=text('assessment'),
            plan=text('plan'),
            summary=text('summary'),
            mood_rating=mood,
            progress_notes=text('progress_notes'),
            homework_assigned=text('homework_assigned'),
            next_session_focus=text('next_session_focus'),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class TherapeuticInsights:
    breakthroughs: List[str] = field(default_factory=list)
    concerns: List[str] = field(default_factory=list)
    therapeutic_relationship: str = ''
    treatment_progress: str = ''

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TherapeuticInsights':
        return cls(
            breakthroughs=[str(item) for item in data.get('breakthroughs') or []],
            concerns=[str(item) for item in data.get('concerns') or []],
            therapeutic_relationship=str(data.get('therapeutic_relationship') or ''),
            treatment_progress=str(data.get('treatment_progress') or ''),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class SessionContext:
    """Session details handed to prompt builders."""
    session_id: str
    patient_name: str = 'Patient'
    therapist_name: str = 'Therapist'
    session_date: Optional[str] = None
    duration_minutes: int = DEFAULT_SESSION_DURATION
    session_type: str = 'individual'

    @classmethod
    def from_session(cls, session) -> 'SessionContext':
        return cls(
            session_id=str(session.pk),
            patient_name=session.user.full_name or 'Patient',
            therapist_name=session.therapist.full_name or 'Therapist',
            session_date=session.session_date.isoformat(),
            duration_minutes=session.duration_minutes,
            session_type=session.session_type,
        )


@dataclass
class Recording:
    """A video-provider recording as returned by its REST API."""
    id: str
    room_name: str = ''
    status: str = ''
    download_url: Optional[str] = None
    duration: Optional[float] = None
    started_at: Optional[str] = None
    finished_at: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Recording':
        return cls(
            id=data['id'],
            room_name=data.get('room_name') or '',
            status=data.get('status') or '',
            download_url=data.get('download_url'),
            duration=data.get('duration'),
            started_at=data.get('started_at'),
            finished_at=data.get('finished_at'),
        )

    @property
    def is_finished(self) -> bool:
        return self.status == RECORDING_FINISHED


@dataclass
class ProcessedSession:
    """Outcome of one run of the recording pipeline."""
    session_id: int
    recording_id: str
    transcript: str
    soap_notes: SOAPNotes
    insights: TherapeuticInsights
    provider: str
    is_fallback: bool
    processing_time_ms: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
