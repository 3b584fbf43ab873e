"""
Canned AI output.

Used when a real provider is unavailable; callers wrap it in a
ProviderResult with is_fallback=True so it is never stored as a genuine
result.
"""

from ..types import SOAPNotes, TherapeuticInsights, Transcription

MOCK_PROVIDER = 'mock'

MOCK_TRANSCRIPT = """Therapist: Hello, how have you been feeling this week?
Patient: I've been feeling a bit better actually. I tried the breathing exercises you suggested and they really helped when I felt anxious at work.
Therapist: That's wonderful to hear! Can you tell me more about how you used them?
Patient: When I started feeling overwhelmed during a meeting, I took deep breaths and counted to five. It calmed me down.
Therapist: That's excellent progress. What other challenges did you face this week?
Patient: I still have trouble sleeping sometimes, but I'm not waking up as often in the middle of the night.
Therapist: For next week, continue with the breathing exercises and try some progressive muscle relaxation before bed.
Patient: I can do that. Thank you.""".strip()


def mock_transcription() -> Transcription:
    return Transcription(text=MOCK_TRANSCRIPT, duration=1800, language='en')


def mock_soap_notes(session_id=None) -> SOAPNotes:
    subject = f"session {session_id}" if session_id is not None else "this session"
    return SOAPNotes(
        subjective=f"Patient reported concerns during {subject}. Key topics discussed based on transcript analysis.",
        objective="Patient appeared engaged during the session. Communication was clear and appropriate.",
        assessment="Patient shows progress in therapy. No immediate risk factors identified.",
        plan="Continue current treatment approach. Schedule follow-up session.",
        summary="Productive therapy session focusing on patient's concerns.",
        mood_rating=7,
        progress_notes="Patient demonstrated good insight and engagement.",
        homework_assigned="Continue practicing discussed techniques.",
        next_session_focus="Follow up on progress and address any new concerns.",
    )


def mock_insights() -> TherapeuticInsights:
    return TherapeuticInsights(
        breakthroughs=['Patient showed good insight'],
        concerns=['None identified'],
        therapeutic_relationship='Good rapport established',
        treatment_progress='Steady progress noted',
    )
