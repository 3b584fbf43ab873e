"""
Data types and constants for therapist availability.

This module contains:
- The WeeklyAvailability structure and its parts, with camelCase JSON
  conversion matching the API payloads
- DTOs returned by the availability service layer
- Constants used across the app
"""

import copy
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, List, Optional


# Index in this tuple is the legacy day_of_week value (0 = Sunday).
DAYS_OF_WEEK = (
    'sunday',
    'monday',
    'tuesday',
    'wednesday',
    'thursday',
    'friday',
    'saturday',
)

SESSION_TYPES = ('individual', 'group', 'consultation')

# session_duration written to legacy rows when sessionSettings has none
LEGACY_DEFAULT_SESSION_DURATION = 50

DEFAULT_TEMPLATE_NAME = 'primary'


def day_name_for(value: date) -> str:
    """Day name for a date, using the Sunday-first convention."""
    return DAYS_OF_WEEK[(value.weekday() + 1) % 7]


@dataclass
class TimeSlot:
    start: str
    end: str
    duration: int = 60
    type: str = 'individual'
    max_sessions: int = 1
    title: str = 'Individual Therapy Session'
    is_available: bool = True
    id: str = ''
    description: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> 'TimeSlot':
        return cls(
            id=str(data.get('id') or ''),
            start=data.get('start') or '',
            end=data.get('end') or '',
            duration=int(data.get('duration', 60) or 0),
            type=data.get('type') or 'individual',
            max_sessions=int(data.get('maxSessions', 1) or 0),
            title=data.get('title') or '',
            description=data.get('description'),
            is_available=bool(data.get('isAvailable', True)),
        )

    def to_dict(self) -> dict:
        result = {
            'id': self.id,
            'start': self.start,
            'end': self.end,
            'duration': self.duration,
            'type': self.type,
            'maxSessions': self.max_sessions,
            'title': self.title,
            'isAvailable': self.is_available,
        }
        if self.description is not None:
            result['description'] = self.description
        return result


@dataclass
class GeneralHours:
    """A single working block chunked into sessions of session_duration."""
    start: str
    end: str
    total_hours: float = 0
    session_duration: int = 60
    buffer_time: int = 0

    @classmethod
    def from_dict(cls, data: dict) -> 'GeneralHours':
        return cls(
            start=data.get('start') or '',
            end=data.get('end') or '',
            total_hours=data.get('totalHours') or 0,
            session_duration=int(data.get('sessionDuration') or 60),
            buffer_time=int(data.get('bufferTime') or 0),
        )

    def to_dict(self) -> dict:
        return {
            'start': self.start,
            'end': self.end,
            'totalHours': self.total_hours,
            'sessionDuration': self.session_duration,
            'bufferTime': self.buffer_time,
        }


@dataclass
class DayAvailability:
    """
    One day of the weekly schedule.

    custom_slots, when non-empty, override general_hours and time_slots for
    the day. time_slots is the older per-slot representation.
    """
    enabled: bool = False
    general_hours: Optional[GeneralHours] = None
    time_slots: List[TimeSlot] = field(default_factory=list)
    custom_slots: List[TimeSlot] = field(default_factory=list)
    notes: str = ''

    def effective_slots(self) -> List[TimeSlot]:
        """Slots that drive booking for this day; always empty when disabled."""
        if not self.enabled:
            return []
        if self.custom_slots:
            return list(self.custom_slots)
        return list(self.time_slots)

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> 'DayAvailability':
        if not data:
            return cls()
        general_hours = data.get('generalHours')
        return cls(
            enabled=bool(data.get('enabled', False)),
            general_hours=GeneralHours.from_dict(general_hours) if general_hours else None,
            time_slots=[TimeSlot.from_dict(s) for s in data.get('timeSlots') or []],
            custom_slots=[TimeSlot.from_dict(s) for s in data.get('customSlots') or []],
            notes=data.get('notes') or '',
        )

    def to_dict(self) -> dict:
        result = {
            'enabled': self.enabled,
            'timeSlots': [s.to_dict() for s in self.time_slots],
            'customSlots': [s.to_dict() for s in self.custom_slots],
            'notes': self.notes,
        }
        if self.general_hours is not None:
            result['generalHours'] = self.general_hours.to_dict()
        return result


@dataclass
class SessionSettings:
    session_duration: int = 60
    buffer_time: int = 15
    max_sessions_per_day: int = 8
    advance_booking_days: int = 30
    cancellation_hours: int = 24

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> 'SessionSettings':
        defaults = cls()
        if not data:
            return defaults

        def _int(key, default):
            value = data.get(key)
            return default if value is None else int(value)

        return cls(
            session_duration=_int('sessionDuration', defaults.session_duration),
            buffer_time=_int('bufferTime', defaults.buffer_time),
            max_sessions_per_day=_int('maxSessionsPerDay', defaults.max_sessions_per_day),
            advance_booking_days=_int('advanceBookingDays', defaults.advance_booking_days),
            cancellation_hours=_int('cancellationHours', defaults.cancellation_hours),
        )

    def to_dict(self) -> dict:
        return {
            'sessionDuration': self.session_duration,
            'bufferTime': self.buffer_time,
            'maxSessionsPerDay': self.max_sessions_per_day,
            'advanceBookingDays': self.advance_booking_days,
            'cancellationHours': self.cancellation_hours,
        }


@dataclass
class WeeklyAvailability:
    standard_hours: Dict[str, DayAvailability] = field(default_factory=dict)
    session_settings: SessionSettings = field(default_factory=SessionSettings)
    timezone: str = 'UTC'
    last_updated: str = ''

    def __post_init__(self):
        for day in DAYS_OF_WEEK:
            self.standard_hours.setdefault(day, DayAvailability())

    def day(self, name: str) -> DayAvailability:
        if name not in DAYS_OF_WEEK:
            raise ValueError(f"Unknown day '{name}'")
        return self.standard_hours[name]

    def copy(self) -> 'WeeklyAvailability':
        return copy.deepcopy(self)

    @classmethod
    def from_dict(cls, data: dict) -> 'WeeklyAvailability':
        """
        Build from the JSON wire format.

        Missing days become disabled days; unknown keys are ignored.

        Raises:
            ValueError: If the payload is not an object or holds non-numeric numbers
        """
        if not isinstance(data, dict):
            raise ValueError('Availability must be an object')

        standard_hours = data.get('standardHours') or {}
        if not isinstance(standard_hours, dict):
            raise ValueError('standardHours must be an object')

        try:
            return cls(
                standard_hours={
                    day: DayAvailability.from_dict(standard_hours.get(day))
                    for day in DAYS_OF_WEEK
                },
                session_settings=SessionSettings.from_dict(data.get('sessionSettings')),
                timezone=data.get('timezone') or 'UTC',
                last_updated=data.get('lastUpdated') or '',
            )
        except (TypeError, AttributeError) as exc:
            raise ValueError(f'Malformed availability: {exc}') from exc

    def to_dict(self) -> dict:
        return {
            'standardHours': {
                day: self.standard_hours[day].to_dict() for day in DAYS_OF_WEEK
            },
            'sessionSettings': self.session_settings.to_dict(),
            'timezone': self.timezone,
            'lastUpdated': self.last_updated,
        }


def default_weekly_availability() -> WeeklyAvailability:
    """Monday to Friday enabled with no slots, weekend disabled."""
    return WeeklyAvailability(
        standard_hours={
            day: DayAvailability(enabled=day not in ('saturday', 'sunday'))
            for day in DAYS_OF_WEEK
        },
    )


@dataclass
class ValidationResult:
    is_valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


@dataclass
class SaveResult:
    """Outcome of save_therapist_availability."""
    success: bool
    message: str
    template_count: int = 0
    weekly_saved: bool = False
    warnings: List[str] = field(default_factory=list)


@dataclass
class BookableSlot:
    """A concrete bookable interval on a specific date."""
    date: date
    start_time: str
    end_time: str
    session_duration: int
    session_type: str = 'individual'
    max_sessions: int = 1
    is_available: bool = True
    is_override: bool = False
    reason: Optional[str] = None

    @property
    def day_of_week(self) -> int:
        return DAYS_OF_WEEK.index(day_name_for(self.date))

    def to_dict(self) -> dict:
        return {
            'date': self.date.isoformat(),
            'day_of_week': self.day_of_week,
            'start_time': self.start_time,
            'end_time': self.end_time,
            'session_duration': self.session_duration,
            'session_type': self.session_type,
            'max_sessions': self.max_sessions,
            'is_available': self.is_available,
            'is_override': self.is_override,
            'reason': self.reason,
        }
