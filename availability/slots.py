"""
Bookable slot generation.

Expands a therapist's weekly availability and per-date overrides into
concrete slots for a date range, then removes slots that overlap a booked
session and duplicate start times. Precedence for a single date:

1. An override for the date (day off, or custom hours)
2. A disabled weekday yields nothing
3. customSlots, each chunked by its own duration
4. generalHours, chunked by sessionDuration with bufferTime between sessions
5. timeSlots, chunked by sessionSettings.sessionDuration
"""

import logging
from collections import defaultdict
from datetime import date, datetime
from typing import Dict, List, Optional, Tuple

from django.conf import settings
from django.utils import timezone

from therapy_sessions.models import TherapySession

from .models import AvailabilityOverride
from .services import (
    _to_minutes,
    date_range,
    generate_time_slots,
    get_availability_overrides,
    get_therapist_availability,
)
from .types import BookableSlot, WeeklyAvailability, day_name_for

logger = logging.getLogger(__name__)


def validate_date_range(start_date: date, end_date: date) -> None:
    """
    Raises:
        ValueError: If the range is reversed or longer than AVAILABILITY_MAX_RANGE_DAYS
    """
    if end_date < start_date:
        raise ValueError('end_date must be on or after start_date')
    max_days = settings.AVAILABILITY_MAX_RANGE_DAYS
    if (end_date - start_date).days + 1 > max_days:
        raise ValueError(f'Date range cannot exceed {max_days} days')


def _override_slots(day: date, override: AvailabilityOverride) -> List[BookableSlot]:
    if not override.is_available:
        return []
    return [
        BookableSlot(
            date=day,
            start_time=start,
            end_time=end,
            session_duration=override.session_duration,
            session_type=override.session_type,
            max_sessions=override.max_sessions,
            is_override=True,
            reason=override.reason or None,
        )
        for start, end in generate_time_slots(
            override.start_time, override.end_time, override.session_duration
        )
    ]


def _weekly_slots(day: date, availability: WeeklyAvailability) -> List[BookableSlot]:
    day_availability = availability.day(day_name_for(day))
    if not day_availability.enabled:
        return []

    slots = []

    if day_availability.custom_slots:
        for custom in day_availability.custom_slots:
            if not custom.is_available:
                continue
            for start, end in generate_time_slots(custom.start, custom.end, custom.duration):
                slots.append(BookableSlot(
                    date=day,
                    start_time=start,
                    end_time=end,
                    session_duration=custom.duration,
                    session_type=custom.type,
                    max_sessions=custom.max_sessions,
                    is_override=True,
                ))
        return slots

    hours = day_availability.general_hours
    if hours is not None:
        for start, end in generate_time_slots(
            hours.start, hours.end, hours.session_duration, hours.buffer_time
        ):
            slots.append(BookableSlot(
                date=day,
                start_time=start,
                end_time=end,
                session_duration=hours.session_duration,
            ))
        return slots

    duration = availability.session_settings.session_duration
    for time_slot in day_availability.time_slots:
        if not time_slot.is_available:
            continue
        for start, end in generate_time_slots(time_slot.start, time_slot.end, duration):
            slots.append(BookableSlot(
                date=day,
                start_time=start,
                end_time=end,
                session_duration=duration,
                session_type=time_slot.type,
                max_sessions=time_slot.max_sessions,
            ))
    return slots


def _booked_intervals(therapist, start_date: date, end_date: date) -> Dict[date, List[Tuple[int, int]]]:
    """Minute ranges [start, start + duration) held by active sessions, per date."""
    booked = defaultdict(list)
    sessions = (
        TherapySession.objects.for_therapist(therapist)
        .active()
        .filter(session_date__range=(start_date, end_date))
        .values_list('session_date', 'session_time', 'duration_minutes')
    )
    for session_date, session_time, duration_minutes in sessions:
        start = _to_minutes(session_time)
        booked[session_date].append((start, start + duration_minutes))
    return booked


def _overlaps_booking(slot: BookableSlot, intervals: List[Tuple[int, int]]) -> bool:
    start = _to_minutes(slot.start_time)
    end = start + slot.session_duration
    return any(start < booked_end and booked_start < end for booked_start, booked_end in intervals)


def generate_availability_slots(
    therapist,
    start_date: date,
    end_date: date,
    now: Optional[datetime] = None
) -> List[BookableSlot]:
    """
    Compute bookable slots for every date in an inclusive range.

    Args:
        therapist: Therapist user
        start_date: First date
        end_date: Last date
        now: Reference time for dropping past slots (defaults to the current time)

    Returns:
        Slots ordered by date then start time

    Raises:
        ValueError: If the date range is invalid
    """
    validate_date_range(start_date, end_date)

    current = timezone.localtime(now or timezone.now())
    today, current_time = current.date(), current.strftime('%H:%M')

    availability = get_therapist_availability(therapist)
    overrides = {
        override.override_date: override
        for override in get_availability_overrides(therapist, start_date, end_date)
    }
    booked = _booked_intervals(therapist, start_date, end_date)

    slots = []
    for day in date_range(start_date, end_date):
        if day < today:
            continue

        override = overrides.get(day)
        if override is not None:
            day_slots = _override_slots(day, override)
        else:
            day_slots = _weekly_slots(day, availability)

        taken = booked.get(day, [])
        seen = set()
        for slot in sorted(day_slots, key=lambda s: s.start_time):
            if slot.start_time in seen or _overlaps_booking(slot, taken):
                continue
            seen.add(slot.start_time)
            if day == today and slot.start_time <= current_time:
                continue
            slots.append(slot)

    logger.debug(
        "Generated %d slots for therapist %s between %s and %s",
        len(slots), therapist.pk, start_date, end_date,
    )
    return slots


def get_available_days(therapist, start_date: date, end_date: date, now: Optional[datetime] = None) -> List[date]:
    """Sorted dates in the range that have at least one bookable slot."""
    slots = generate_availability_slots(therapist, start_date, end_date, now=now)
    return sorted({slot.date for slot in slots})


def get_slots_for_date(therapist, day: date, now: Optional[datetime] = None) -> List[BookableSlot]:
    return generate_availability_slots(therapist, day, day, now=now)
