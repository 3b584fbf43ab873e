"""
Service layer for therapist availability.

Handles validation of WeeklyAvailability documents, conversion between the
weekly JSON store and the legacy per-row templates, and override management.
Services raise ValueError for invalid input; views turn that into a 400.
"""

import logging
from collections import defaultdict
from datetime import date, datetime, time, timedelta
from typing import Iterable, List, Optional, Tuple, Union

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import DatabaseError, transaction
from django.utils import timezone

from .models import AvailabilityOverride, AvailabilityTemplate, WeeklySchedule
from .types import (
    DAYS_OF_WEEK,
    DEFAULT_TEMPLATE_NAME,
    LEGACY_DEFAULT_SESSION_DURATION,
    SESSION_TYPES,
    DayAvailability,
    SaveResult,
    TimeSlot,
    ValidationResult,
    WeeklyAvailability,
    default_weekly_availability,
)

logger = logging.getLogger(__name__)

TEMPLATE_UPDATE_FIELDS = (
    'day_of_week',
    'start_time',
    'end_time',
    'session_duration',
    'session_type',
    'max_sessions',
    'is_active',
)


# ---------------------------------------------------------------------------
# Time helpers
# ---------------------------------------------------------------------------

def parse_time(value: Union[str, time]) -> time:
    """
    Parse "HH:MM" (or "HH:MM:SS") into a time.

    Raises:
        ValueError: If the value is empty or not a valid time
    """
    if isinstance(value, time):
        return value
    if not value:
        raise ValueError('Time is required')
    text = str(value).strip()
    for fmt in ('%H:%M', '%H:%M:%S'):
        try:
            return datetime.strptime(text, fmt).time()
        except ValueError:
            continue
    raise ValueError(f"Invalid time '{value}', expected HH:MM")


def format_time(value: Union[str, time]) -> str:
    return parse_time(value).strftime('%H:%M')


def _to_minutes(value: Union[str, time]) -> int:
    parsed = parse_time(value)
    return parsed.hour * 60 + parsed.minute


def _from_minutes(minutes: int) -> str:
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def calculate_end_time(start: Union[str, time], minutes: int) -> str:
    """
    Add minutes to a start time.

    Returns:
        "HH:MM" string; wraps past midnight
    """
    return _from_minutes((_to_minutes(start) + minutes) % (24 * 60))


def do_time_slots_overlap(first: TimeSlot, second: TimeSlot) -> bool:
    """True when two slots share any minute; touching edges do not overlap."""
    return (
        _to_minutes(first.start) < _to_minutes(second.end)
        and _to_minutes(second.start) < _to_minutes(first.end)
    )


def generate_time_slots(
    start: Union[str, time],
    end: Union[str, time],
    session_duration: int,
    buffer_time: int = 0
) -> List[Tuple[str, str]]:
    """
    Chunk a working block into consecutive sessions.

    Args:
        start: Block start
        end: Block end; a session never runs past it
        session_duration: Minutes per session
        buffer_time: Minutes left free between sessions

    Returns:
        List of (start, end) "HH:MM" pairs
    """
    if session_duration <= 0:
        raise ValueError('Session duration must be greater than 0')
    if buffer_time < 0:
        raise ValueError('Buffer time cannot be negative')

    cursor = _to_minutes(start)
    block_end = _to_minutes(end)
    slots = []

    while cursor + session_duration <= block_end:
        slots.append((_from_minutes(cursor), _from_minutes(cursor + session_duration)))
        cursor += session_duration + buffer_time

    return slots


# ---------------------------------------------------------------------------
# Validation and format conversion
# ---------------------------------------------------------------------------

def _validate_slots(day: str, label: str, slots: List[TimeSlot], errors: List[str]) -> None:
    for index, slot in enumerate(slots, start=1):
        if not slot.start or not slot.end:
            errors.append(f"{day} {label} {index} is missing start or end time")
        else:
            try:
                if _to_minutes(slot.start) >= _to_minutes(slot.end):
                    errors.append(f"{day} {label} {index} must end after it starts")
            except ValueError as exc:
                errors.append(f"{day} {label} {index}: {exc}")
        if slot.duration <= 0:
            errors.append(f"{day} {label} {index} has invalid duration")
        if slot.max_sessions <= 0:
            errors.append(f"{day} {label} {index} has invalid max sessions")
        if slot.type not in SESSION_TYPES:
            errors.append(f"{day} {label} {index} has unknown session type '{slot.type}'")


def validate_weekly_availability(availability: WeeklyAvailability) -> ValidationResult:
    """
    Check a WeeklyAvailability before it is persisted.

    Returns:
        ValidationResult; warnings never make the result invalid
    """
    errors = []
    warnings = []

    for day in DAYS_OF_WEEK:
        day_availability = availability.day(day)

        if day_availability.enabled and not (
            day_availability.time_slots
            or day_availability.custom_slots
            or day_availability.general_hours
        ):
            warnings.append(f"{day} is enabled but has no time slots")

        _validate_slots(day, 'slot', day_availability.time_slots, errors)
        _validate_slots(day, 'custom slot', day_availability.custom_slots, errors)

        hours = day_availability.general_hours
        if hours is not None:
            try:
                if _to_minutes(hours.start) >= _to_minutes(hours.end):
                    errors.append(f"{day} general hours must end after they start")
            except ValueError as exc:
                errors.append(f"{day} general hours: {exc}")
            if hours.session_duration <= 0:
                errors.append(f"{day} general hours have invalid session duration")
            if hours.buffer_time < 0:
                errors.append(f"{day} general hours have negative buffer time")

    settings = availability.session_settings
    if settings.session_duration <= 0:
        errors.append('Session duration must be greater than 0')
    if settings.buffer_time < 0:
        errors.append('Buffer time cannot be negative')
    if settings.max_sessions_per_day <= 0:
        errors.append('Max sessions per day must be greater than 0')

    return ValidationResult(is_valid=not errors, errors=errors, warnings=warnings)


def transform_to_legacy_format(
    availability: WeeklyAvailability,
    therapist_id: Optional[int] = None
) -> List[dict]:
    """
    Convert a WeeklyAvailability into legacy template rows.

    Only timeSlots marked available on enabled days become rows. Days set up
    through generalHours or customSlots produce no rows, so legacy readers see
    those days as empty; a warning is logged for each such day.

    Args:
        availability: Weekly schedule to convert
        therapist_id: Added to each row when given

    Returns:
        List of row dicts with day_of_week 0 (Sunday) to 6 (Saturday)
    """
    session_duration = availability.session_settings.session_duration or LEGACY_DEFAULT_SESSION_DURATION
    rows = []

    for day_index, day in enumerate(DAYS_OF_WEEK):
        day_availability = availability.day(day)
        if not day_availability.enabled:
            continue

        available = [slot for slot in day_availability.time_slots if slot.is_available]
        if not available and (day_availability.general_hours or day_availability.custom_slots):
            logger.warning(
                "%s is configured with generalHours/customSlots; no legacy template rows written",
                day,
            )

        for slot in available:
            row = {
                'day_of_week': day_index,
                'start_time': slot.start,
                'end_time': slot.end,
                'session_duration': session_duration,
                'session_type': slot.type,
                'max_sessions': slot.max_sessions,
                'is_active': True,
            }
            if therapist_id is not None:
                row['therapist_id'] = therapist_id
            rows.append(row)

    logger.debug("Generated %d legacy template rows", len(rows))
    return rows


def transform_legacy_to_new_format(rows: Iterable[dict]) -> WeeklyAvailability:
    """
    Rebuild a WeeklyAvailability from legacy template rows.

    A day is enabled exactly when it has at least one row; every row becomes
    a TimeSlot on that day.
    """
    rows_by_day = defaultdict(list)
    for row in rows:
        rows_by_day[int(row['day_of_week'])].append(row)

    availability = WeeklyAvailability()
    for day_index, day in enumerate(DAYS_OF_WEEK):
        day_rows = rows_by_day.get(day_index, [])
        slots = []
        for position, row in enumerate(day_rows):
            session_type = row.get('session_type') or 'individual'
            slots.append(TimeSlot(
                id=str(row.get('id') or f"slot-{day}-{position}"),
                start=format_time(row['start_time']),
                end=format_time(row['end_time']),
                duration=row.get('session_duration') or 60,
                type=session_type,
                max_sessions=row.get('max_sessions') or 1,
                title=f"{session_type.title()} Session",
                is_available=row.get('is_active') is not False,
            ))
        availability.standard_hours[day] = DayAvailability(
            enabled=bool(day_rows),
            time_slots=slots,
        )

    return availability


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------

def _save_validated(instance):
    """Save a model whose save() runs full_clean, reporting errors as ValueError."""
    try:
        instance.save()
    except DjangoValidationError as exc:
        raise ValueError('; '.join(exc.messages)) from exc
    return instance


def get_therapist_availability(therapist) -> WeeklyAvailability:
    """
    Load a therapist's weekly availability.

    Reads the weekly store first, then legacy templates, then falls back to
    the default Monday to Friday schedule.
    """
    schedule = (
        WeeklySchedule.objects.for_therapist(therapist)
        .active()
        .filter(template_name=DEFAULT_TEMPLATE_NAME)
        .first()
    )
    if schedule and schedule.weekly_availability:
        return schedule.as_availability()

    rows = list(
        AvailabilityTemplate.objects.for_therapist(therapist)
        .active()
        .order_by('day_of_week', 'start_time')
        .values()
    )
    if rows:
        return transform_legacy_to_new_format(rows)

    logger.info("No stored availability for therapist %s, using default", therapist.pk)
    return default_weekly_availability()


@transaction.atomic
def save_weekly_schedule(therapist, availability: WeeklyAvailability) -> WeeklySchedule:
    """
    Upsert the therapist's primary weekly schedule.

    Raises:
        ValueError: If the availability fails validation
    """
    validation = validate_weekly_availability(availability)
    if not validation.is_valid:
        raise ValueError(f"Validation failed: {', '.join(validation.errors)}")

    stored = availability.copy()
    stored.last_updated = timezone.now().isoformat()

    schedule, created = WeeklySchedule.objects.update_or_create(
        therapist=therapist,
        template_name=DEFAULT_TEMPLATE_NAME,
        defaults={
            'weekly_availability': stored.to_dict(),
            'is_active': True,
        },
    )
    logger.info(
        "%s weekly schedule for therapist %s",
        'Created' if created else 'Updated', therapist.pk,
    )
    return schedule


def _build_template(therapist, row: dict) -> AvailabilityTemplate:
    day_of_week = row.get('day_of_week')
    if day_of_week is None or day_of_week == '':
        raise ValueError('day_of_week is required')
    day_of_week = int(day_of_week)
    if not 0 <= day_of_week <= 6:
        raise ValueError(f"day_of_week must be between 0 (Sunday) and 6 (Saturday), got {day_of_week}")

    return AvailabilityTemplate(
        therapist=therapist,
        day_of_week=day_of_week,
        start_time=parse_time(row.get('start_time')),
        end_time=parse_time(row.get('end_time')),
        session_duration=int(row.get('session_duration') or 45),
        session_type=row.get('session_type') or 'individual',
        max_sessions=int(row.get('max_sessions') or 1),
        is_active=row.get('is_active', True) is not False,
    )


@transaction.atomic
def replace_legacy_templates(therapist, rows: List[dict]) -> List[AvailabilityTemplate]:
    """
    Replace all of a therapist's legacy templates in one transaction.

    Raises:
        ValueError: If any row is invalid; existing rows are left untouched
    """
    templates = [_build_template(therapist, row) for row in rows]

    deleted, _ = AvailabilityTemplate.objects.for_therapist(therapist).delete()
    for template in templates:
        _save_validated(template)

    logger.info(
        "Replaced legacy templates for therapist %s: %d removed, %d written",
        therapist.pk, deleted, len(templates),
    )
    return templates


def save_therapist_availability(therapist, availability: WeeklyAvailability) -> SaveResult:
    """
    Validate and persist availability to both stores.

    Legacy templates are replaced first; a failure writing the weekly store
    afterwards is logged and reported on the result rather than raised.
    """
    validation = validate_weekly_availability(availability)
    if not validation.is_valid:
        return SaveResult(
            success=False,
            message=f"Validation failed: {', '.join(validation.errors)}",
            warnings=validation.warnings,
        )

    rows = transform_to_legacy_format(availability)
    templates = replace_legacy_templates(therapist, rows)

    warnings = list(validation.warnings)
    weekly_saved = True
    try:
        save_weekly_schedule(therapist, availability)
    except DatabaseError as exc:
        logger.warning("Failed to store weekly schedule for therapist %s: %s", therapist.pk, exc)
        warnings.append('Weekly schedule not stored; legacy templates saved')
        weekly_saved = False

    return SaveResult(
        success=True,
        message='Availability saved successfully',
        template_count=len(templates),
        weekly_saved=weekly_saved,
        warnings=warnings,
    )


def _apply_field_updates(template: AvailabilityTemplate, updates: dict) -> None:
    unknown = set(updates) - set(TEMPLATE_UPDATE_FIELDS)
    if unknown:
        raise ValueError(f"Cannot update field(s): {', '.join(sorted(unknown))}")

    for field_name, value in updates.items():
        if field_name in ('start_time', 'end_time'):
            value = parse_time(value)
        elif field_name == 'day_of_week':
            value = int(value)
            if not 0 <= value <= 6:
                raise ValueError('day_of_week must be between 0 (Sunday) and 6 (Saturday)')
        setattr(template, field_name, value)


@transaction.atomic
def update_template(template: AvailabilityTemplate, updates: dict) -> AvailabilityTemplate:
    """
    Update a single legacy template row.

    Raises:
        ValueError: For unknown fields or values that fail model validation
    """
    _apply_field_updates(template, updates)
    return _save_validated(template)


def delete_template(template: AvailabilityTemplate) -> None:
    logger.info("Deleting template %s for therapist %s", template.pk, template.therapist_id)
    template.delete()


# ---------------------------------------------------------------------------
# Overrides
# ---------------------------------------------------------------------------

def get_availability_overrides(
    therapist,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None
) -> List[AvailabilityOverride]:
    return list(
        AvailabilityOverride.objects.for_therapist(therapist).in_range(start_date, end_date)
    )


@transaction.atomic
def save_availability_override(
    therapist,
    override_date: date,
    is_available: bool,
    start_time: Optional[Union[str, time]] = None,
    end_time: Optional[Union[str, time]] = None,
    session_duration: int = 60,
    session_type: str = 'individual',
    max_sessions: int = 1,
    reason: str = '',
    notes: str = ''
) -> AvailabilityOverride:
    """
    Create or replace the override for one date.

    Raises:
        ValueError: If custom hours are missing or invalid
    """
    override = (
        AvailabilityOverride.objects.for_therapist(therapist)
        .filter(override_date=override_date)
        .first()
    ) or AvailabilityOverride(therapist=therapist, override_date=override_date)

    override.is_available = is_available
    override.start_time = parse_time(start_time) if start_time else None
    override.end_time = parse_time(end_time) if end_time else None
    override.session_duration = session_duration
    override.session_type = session_type
    override.max_sessions = max_sessions
    override.reason = reason or ''
    override.notes = notes or ''

    return _save_validated(override)


def delete_availability_override(therapist, override_date: date) -> bool:
    """Returns True when an override existed for the date."""
    deleted, _ = (
        AvailabilityOverride.objects.for_therapist(therapist)
        .filter(override_date=override_date)
        .delete()
    )
    return deleted > 0


def date_range(start_date: date, end_date: date) -> List[date]:
    """Inclusive list of dates from start_date to end_date."""
    days = (end_date - start_date).days
    return [start_date + timedelta(days=offset) for offset in range(days + 1)]
