"""
Service layer for session business logic.
Services are framework-agnostic and handle all business operations.
"""

import logging
from datetime import date, datetime, time
from typing import List, Optional, Union

from django.core.exceptions import ValidationError
from django.db import IntegrityError, transaction
from django.utils import timezone

from availability.services import format_time
from availability.slots import get_slots_for_date

from .models import TherapySession

logger = logging.getLogger(__name__)


@transaction.atomic
def book_session(
    patient,
    therapist,
    session_date: date,
    start_time: Union[str, time],
    duration_minutes: Optional[int] = None,
    session_type: Optional[str] = None,
    notes: str = '',
    now: Optional[datetime] = None
) -> TherapySession:
    """
    Book a session in one of the therapist's open slots.

    Args:
        patient: User booking the session
        therapist: Therapist user
        session_date: Date of the session
        start_time: Slot start, "HH:MM" or a time object
        duration_minutes: Must match the slot's session duration when given
        session_type: Defaults to the slot's session type
        notes: Free-text notes from the patient
        now: Reference time for dropping past slots

    Returns:
        Created TherapySession instance

    Raises:
        ValueError: If the therapist is not bookable, the slot is not open or the
                duration does not match the slot
    """
    if not therapist.is_therapist:
        raise ValueError("Selected user is not a therapist")

    if patient.pk == therapist.pk:
        raise ValueError("A therapist cannot book a session with themselves")

    if duration_minutes is not None:
        _validate_duration(duration_minutes)

    wanted = format_time(start_time)
    slot = next(
        (s for s in get_slots_for_date(therapist, session_date, now=now) if s.start_time == wanted),
        None
    )
    if slot is None:
        raise ValueError("Selected time slot is not available")

    if duration_minutes is not None and duration_minutes != slot.session_duration:
        raise ValueError(f"Session duration must be {slot.session_duration} minutes for this slot")

    session = TherapySession(
        therapist=therapist,
        user=patient,
        session_date=session_date,
        session_time=wanted,
        duration_minutes=slot.session_duration,
        session_type=session_type or slot.session_type,
        status='scheduled',
        title=f"Session with {therapist.full_name or therapist.email}",
        notes=notes,
    )
    try:
        with transaction.atomic():
            session.save()
    except (ValidationError, IntegrityError) as exc:
        logger.warning(
            "Booking conflict for therapist %s on %s at %s: %s",
            therapist.pk, session_date, wanted, exc,
        )
        raise ValueError("Selected time slot is not available")

    logger.info(
        "Booked session %s: therapist %s, patient %s, %s %s",
        session.pk, therapist.pk, patient.pk, session_date, wanted,
    )
    return session


@transaction.atomic
def cancel_session(session: TherapySession) -> TherapySession:
    """
    Cancel a session and release its slot.

    Raises:
        ValueError: If the session is already cancelled or completed
    """
    if session.status == 'cancelled':
        raise ValueError("Session is already cancelled")

    if session.status == 'completed':
        raise ValueError("Cannot cancel a completed session")

    session.status = 'cancelled'
    session.cancelled_at = timezone.now()
    session.save()
    return session


@transaction.atomic
def complete_session(session: TherapySession, summary: Optional[str] = None) -> TherapySession:
    """
    Mark a session as completed.

    Args:
        session: TherapySession instance to complete
        summary: Optional therapist summary stored on the session

    Returns:
        Updated TherapySession instance

    Raises:
        ValueError: If session is already completed or cancelled
    """
    if session.status == 'completed':
        raise ValueError("Session is already completed")

    if session.status == 'cancelled':
        raise ValueError("Cannot complete a cancelled session")

    session.status = 'completed'
    session.completed_at = timezone.now()
    if summary is not None:
        session.session_summary = summary
    session.save()
    return session


def get_sessions_in_range(
    start_date: date,
    end_date: date,
    status: Optional[str] = None,
    participant=None
) -> List[TherapySession]:
    """
    Get sessions within an inclusive date range.

    Args:
        start_date: Range start
        end_date: Range end
        status: Optional status filter
        participant: Restrict to sessions where this user is therapist or patient

    Returns:
        List of TherapySession instances

    Raises:
        ValueError: If start_date is after end_date
    """
    if start_date > end_date:
        raise ValueError("Start date must be on or before end date")

    queryset = TherapySession.objects.in_range(start_date, end_date)

    if participant is not None:
        queryset = queryset.for_participant(participant)

    if status:
        queryset = queryset.with_status(status)

    return list(queryset.select_related('therapist', 'user'))


def _validate_duration(duration_minutes: int) -> None:
    """Validate duration is positive."""
    if duration_minutes <= 0:
        raise ValueError("Duration must be positive")
