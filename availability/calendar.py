"""
Editing helpers for the weekly calendar.

Each function takes a WeeklyAvailability and returns an edited copy; the
input is never mutated, so callers can keep the previous state for undo.
"""

import copy
import uuid
from typing import Optional

from .services import do_time_slots_overlap, generate_time_slots, parse_time
from .types import DAYS_OF_WEEK, GeneralHours, TimeSlot, WeeklyAvailability


def _new_slot_id() -> str:
    return f"slot-{uuid.uuid4().hex[:12]}"


def toggle_day(availability: WeeklyAvailability, day: str, enabled: Optional[bool] = None) -> WeeklyAvailability:
    """Flip a day on or off, or set it explicitly when enabled is given."""
    updated = availability.copy()
    day_availability = updated.day(day)
    day_availability.enabled = (not day_availability.enabled) if enabled is None else enabled
    return updated


def set_general_hours(
    availability: WeeklyAvailability,
    day: str,
    start: str,
    end: str,
    session_duration: Optional[int] = None,
    buffer_time: Optional[int] = None
) -> WeeklyAvailability:
    """
    Give a day a single working block and enable it.

    Session duration and buffer default to the schedule's session settings.
    """
    start_time, end_time = parse_time(start), parse_time(end)
    if start_time >= end_time:
        raise ValueError('General hours must end after they start')

    updated = availability.copy()
    settings = updated.session_settings
    minutes = (end_time.hour * 60 + end_time.minute) - (start_time.hour * 60 + start_time.minute)

    day_availability = updated.day(day)
    day_availability.enabled = True
    day_availability.general_hours = GeneralHours(
        start=start_time.strftime('%H:%M'),
        end=end_time.strftime('%H:%M'),
        total_hours=round(minutes / 60, 2),
        session_duration=session_duration or settings.session_duration,
        buffer_time=settings.buffer_time if buffer_time is None else buffer_time,
    )
    return updated


def add_custom_slot(availability: WeeklyAvailability, day: str, slot: TimeSlot) -> WeeklyAvailability:
    """
    Append a custom slot to a day.

    Raises:
        ValueError: If the slot is empty or overlaps an existing custom slot
    """
    if parse_time(slot.start) >= parse_time(slot.end):
        raise ValueError('Slot must end after it starts')

    updated = availability.copy()
    day_availability = updated.day(day)

    for existing in day_availability.custom_slots:
        if do_time_slots_overlap(existing, slot):
            raise ValueError(f"Slot {slot.start}-{slot.end} overlaps {existing.start}-{existing.end}")

    new_slot = TimeSlot(**vars(slot))
    if not new_slot.id:
        new_slot.id = _new_slot_id()
    day_availability.custom_slots.append(new_slot)
    day_availability.custom_slots.sort(key=lambda s: s.start)
    day_availability.enabled = True
    return updated


def remove_slot(availability: WeeklyAvailability, day: str, slot_id: str) -> WeeklyAvailability:
    """Drop a slot by id from both customSlots and timeSlots of a day."""
    updated = availability.copy()
    day_availability = updated.day(day)
    day_availability.custom_slots = [s for s in day_availability.custom_slots if s.id != slot_id]
    day_availability.time_slots = [s for s in day_availability.time_slots if s.id != slot_id]
    return updated


def copy_day(availability: WeeklyAvailability, source: str, targets) -> WeeklyAvailability:
    """Copy one day's configuration onto other days; copied slots get fresh ids."""
    updated = availability.copy()
    source_day = updated.day(source)

    for target in targets:
        if target == source:
            continue
        updated.day(target)
        clone = copy.deepcopy(source_day)
        for slot in clone.custom_slots + clone.time_slots:
            slot.id = _new_slot_id()
        updated.standard_hours[target] = clone

    return updated


def day_summary(availability: WeeklyAvailability, day: str) -> dict:
    """
    Describe how a day is configured.

    mode is one of disabled, custom, general, legacy or empty, following the
    same precedence slot generation uses.
    """
    day_availability = availability.day(day)

    if not day_availability.enabled:
        return {'day': day, 'mode': 'disabled', 'slot_count': 0}
    if day_availability.custom_slots:
        return {'day': day, 'mode': 'custom', 'slot_count': len(day_availability.custom_slots)}
    if day_availability.general_hours:
        hours = day_availability.general_hours
        return {
            'day': day,
            'mode': 'general',
            'slot_count': _general_hours_capacity(hours),
            'hours': f"{hours.start}-{hours.end}",
        }
    if day_availability.time_slots:
        return {'day': day, 'mode': 'legacy', 'slot_count': len(day_availability.time_slots)}
    return {'day': day, 'mode': 'empty', 'slot_count': 0}


def _general_hours_capacity(hours: GeneralHours) -> int:
    return len(generate_time_slots(hours.start, hours.end, hours.session_duration, hours.buffer_time))


def week_summary(availability: WeeklyAvailability) -> list:
    return [day_summary(availability, day) for day in DAYS_OF_WEEK]
