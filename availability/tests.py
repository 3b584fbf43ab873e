"""
Tests for the availability app.

Tests cover:
- WeeklyAvailability parsing and time helpers
- Validation and legacy format conversion
- Dual-store persistence and overrides
- Bookable slot generation
- Calendar editing helpers
- HTTP clients
- API endpoints and the list_available_slots command
"""

import json
from datetime import date, datetime, time, timedelta
from io import StringIO
from unittest import mock
from urllib.parse import parse_qs

import httpx
from django.core.management import call_command
from django.core.management.base import CommandError
from django.db import DatabaseError
from django.test import TestCase, override_settings
from django.utils import timezone
from rest_framework import status
from rest_framework.test import APITestCase

from accounts.models import User
from accounts.tests import make_therapist
from therapy_sessions.models import TherapySession

from . import calendar, services, slots
from .client import AvailabilityClient, AvailabilityManager
from .models import AvailabilityOverride, AvailabilityTemplate, WeeklySchedule
from .types import (
    BookableSlot,
    DayAvailability,
    GeneralHours,
    TimeSlot,
    WeeklyAvailability,
    day_name_for,
    default_weekly_availability,
)


def next_monday():
    """A Monday at least a week ahead, so its slots are never in the past."""
    today = timezone.localdate()
    return today + timedelta(days=(7 - today.weekday()) % 7 + 7)


def monday_general_hours(start='09:00', end='12:00', session_duration=60, buffer_time=0):
    return {
        'standardHours': {
            'monday': {
                'enabled': True,
                'generalHours': {
                    'start': start,
                    'end': end,
                    'totalHours': 3,
                    'sessionDuration': session_duration,
                    'bufferTime': buffer_time,
                },
                'timeSlots': [],
                'customSlots': [],
            },
        },
        'sessionSettings': {'sessionDuration': 60, 'bufferTime': 0},
        'timezone': 'UTC',
    }


def weekday_slots():
    """Legacy-style schedule: one two-hour timeSlot on Monday and Wednesday."""
    availability = WeeklyAvailability()
    for day in ('monday', 'wednesday'):
        availability.standard_hours[day] = DayAvailability(
            enabled=True,
            time_slots=[TimeSlot(id=f'{day}-1', start='09:00', end='11:00')],
        )
    return availability


class WeeklyAvailabilityTypeTests(TestCase):
    """Test the weekly availability data types."""

    def test_day_name_uses_sunday_first(self):
        self.assertEqual(day_name_for(date(2030, 1, 6)), 'sunday')
        self.assertEqual(day_name_for(date(2030, 1, 7)), 'monday')

        slot = BookableSlot(date=date(2030, 1, 6), start_time='09:00', end_time='10:00', session_duration=60)
        self.assertEqual(slot.day_of_week, 0)
        self.assertEqual(slot.to_dict()['day_of_week'], 0)

    def test_missing_days_are_disabled(self):
        availability = WeeklyAvailability.from_dict(monday_general_hours())

        self.assertTrue(availability.day('monday').enabled)
        self.assertFalse(availability.day('sunday').enabled)
        self.assertEqual(availability.day('monday').general_hours.session_duration, 60)
        self.assertEqual(availability.session_settings.max_sessions_per_day, 8)

    def test_round_trip_keeps_camel_case(self):
        data = WeeklyAvailability.from_dict(monday_general_hours(buffer_time=15)).to_dict()

        self.assertEqual(data['standardHours']['monday']['generalHours']['bufferTime'], 15)
        self.assertIn('sessionSettings', data)
        self.assertEqual(WeeklyAvailability.from_dict(data).to_dict(), data)

    def test_malformed_payload(self):
        with self.assertRaises(ValueError):
            WeeklyAvailability.from_dict(['monday'])
        with self.assertRaises(ValueError):
            WeeklyAvailability.from_dict({'standardHours': 'monday'})

    def test_unknown_day(self):
        with self.assertRaises(ValueError):
            WeeklyAvailability().day('funday')

    def test_disabled_day_has_no_effective_slots(self):
        day = DayAvailability(enabled=False, time_slots=[TimeSlot(start='09:00', end='10:00')])
        self.assertEqual(day.effective_slots(), [])

    def test_custom_slots_win_over_time_slots(self):
        custom = TimeSlot(start='13:00', end='14:00')
        day = DayAvailability(
            enabled=True,
            time_slots=[TimeSlot(start='09:00', end='10:00')],
            custom_slots=[custom],
        )
        self.assertEqual(day.effective_slots(), [custom])


class TimeHelperTests(TestCase):
    """Test time parsing and chunking helpers."""

    def test_parse_and_format(self):
        self.assertEqual(services.parse_time('09:30'), time(9, 30))
        self.assertEqual(services.parse_time('09:30:00'), time(9, 30))
        self.assertEqual(services.format_time(time(14, 5)), '14:05')
        with self.assertRaises(ValueError):
            services.parse_time('25:00')
        with self.assertRaises(ValueError):
            services.parse_time('')

    def test_end_time_wraps_midnight(self):
        self.assertEqual(services.calculate_end_time('09:00', 50), '09:50')
        self.assertEqual(services.calculate_end_time('23:30', 60), '00:30')

    def test_touching_slots_do_not_overlap(self):
        first = TimeSlot(start='09:00', end='10:00')
        self.assertFalse(services.do_time_slots_overlap(first, TimeSlot(start='10:00', end='11:00')))
        self.assertTrue(services.do_time_slots_overlap(first, TimeSlot(start='09:30', end='10:30')))

    def test_generate_time_slots_with_buffer(self):
        self.assertEqual(
            services.generate_time_slots('09:00', '12:00', 50, 10),
            [('09:00', '09:50'), ('10:00', '10:50'), ('11:00', '11:50')],
        )

    def test_sessions_never_run_past_block_end(self):
        self.assertEqual(services.generate_time_slots('09:00', '10:30', 60), [('09:00', '10:00')])
        self.assertEqual(services.generate_time_slots('09:00', '09:30', 60), [])

    def test_invalid_chunking(self):
        with self.assertRaises(ValueError):
            services.generate_time_slots('09:00', '12:00', 0)
        with self.assertRaises(ValueError):
            services.generate_time_slots('09:00', '12:00', 60, -5)


class ValidationTests(TestCase):
    """Test weekly availability validation."""

    def test_default_schedule_is_valid_with_warnings(self):
        result = services.validate_weekly_availability(default_weekly_availability())

        self.assertTrue(result.is_valid)
        self.assertEqual(len(result.warnings), 5)
        self.assertIn('monday is enabled but has no time slots', result.warnings)

    def test_slot_ending_before_start(self):
        availability = WeeklyAvailability()
        availability.standard_hours['tuesday'] = DayAvailability(
            enabled=True, time_slots=[TimeSlot(start='11:00', end='10:00')],
        )

        result = services.validate_weekly_availability(availability)

        self.assertFalse(result.is_valid)
        self.assertEqual(result.errors, ['tuesday slot 1 must end after it starts'])

    def test_unknown_session_type(self):
        availability = WeeklyAvailability()
        availability.standard_hours['friday'] = DayAvailability(
            enabled=True, custom_slots=[TimeSlot(start='09:00', end='10:00', type='couples')],
        )

        result = services.validate_weekly_availability(availability)
        self.assertIn("friday custom slot 1 has unknown session type 'couples'", result.errors)

    def test_general_hours_checks(self):
        availability = WeeklyAvailability()
        availability.standard_hours['monday'] = DayAvailability(
            enabled=True,
            general_hours=GeneralHours(start='12:00', end='09:00', session_duration=60, buffer_time=-1),
        )

        result = services.validate_weekly_availability(availability)

        self.assertFalse(result.is_valid)
        self.assertIn('monday general hours must end after they start', result.errors)
        self.assertIn('monday general hours have negative buffer time', result.errors)

    def test_session_settings_checks(self):
        availability = WeeklyAvailability()
        availability.session_settings.session_duration = 0
        result = services.validate_weekly_availability(availability)
        self.assertIn('Session duration must be greater than 0', result.errors)


class LegacyFormatTests(TestCase):
    """Test conversion to and from legacy template rows."""

    def test_time_slots_become_rows(self):
        rows = services.transform_to_legacy_format(weekday_slots(), therapist_id=5)

        self.assertEqual([row['day_of_week'] for row in rows], [1, 3])
        self.assertEqual(rows[0], {
            'day_of_week': 1,
            'start_time': '09:00',
            'end_time': '11:00',
            'session_duration': 60,
            'session_type': 'individual',
            'max_sessions': 1,
            'is_active': True,
            'therapist_id': 5,
        })

    def test_general_hours_produce_no_rows(self):
        availability = WeeklyAvailability.from_dict(monday_general_hours())

        with self.assertLogs('availability.services', level='WARNING') as logs:
            rows = services.transform_to_legacy_format(availability)

        self.assertEqual(rows, [])
        self.assertIn('monday', logs.output[0])

    def test_unavailable_slots_and_disabled_days_are_skipped(self):
        availability = weekday_slots()
        availability.day('monday').time_slots[0].is_available = False
        availability.day('wednesday').enabled = False

        self.assertEqual(services.transform_to_legacy_format(availability), [])

    def test_rows_to_weekly(self):
        availability = services.transform_legacy_to_new_format([
            {'id': 3, 'day_of_week': 0, 'start_time': '10:00:00', 'end_time': '12:00:00',
             'session_duration': 45, 'session_type': 'group', 'max_sessions': 4, 'is_active': True},
        ])

        sunday = availability.day('sunday')
        self.assertTrue(sunday.enabled)
        self.assertFalse(availability.day('monday').enabled)
        self.assertEqual(sunday.time_slots[0].id, '3')
        self.assertEqual(sunday.time_slots[0].start, '10:00')
        self.assertEqual(sunday.time_slots[0].title, 'Group Session')
        self.assertEqual(sunday.time_slots[0].max_sessions, 4)

    def test_weekly_to_rows_and_back(self):
        rows = services.transform_to_legacy_format(weekday_slots())
        rebuilt = services.transform_legacy_to_new_format(rows)

        self.assertEqual(
            [day for day, value in rebuilt.standard_hours.items() if value.enabled],
            ['monday', 'wednesday'],
        )
        self.assertEqual(rebuilt.day('wednesday').time_slots[0].end, '11:00')


class PersistenceTests(TestCase):
    """Test loading and saving availability in both stores."""

    def setUp(self):
        self.therapist, _ = make_therapist()

    def test_default_when_nothing_stored(self):
        availability = services.get_therapist_availability(self.therapist)

        self.assertTrue(availability.day('monday').enabled)
        self.assertFalse(availability.day('saturday').enabled)

    def test_save_writes_both_stores(self):
        result = services.save_therapist_availability(self.therapist, weekday_slots())

        self.assertTrue(result.success)
        self.assertTrue(result.weekly_saved)
        self.assertEqual(result.template_count, 2)
        self.assertEqual(AvailabilityTemplate.objects.filter(therapist=self.therapist).count(), 2)

        schedule = WeeklySchedule.objects.get(therapist=self.therapist)
        self.assertEqual(schedule.template_name, 'primary')
        self.assertTrue(schedule.weekly_availability['lastUpdated'])

    def test_weekly_store_is_preferred(self):
        services.save_therapist_availability(
            self.therapist, WeeklyAvailability.from_dict(monday_general_hours())
        )

        availability = services.get_therapist_availability(self.therapist)
        self.assertEqual(availability.day('monday').general_hours.start, '09:00')
        self.assertFalse(AvailabilityTemplate.objects.exists())

    def test_legacy_rows_are_read_without_weekly_store(self):
        AvailabilityTemplate.objects.create(
            therapist=self.therapist, day_of_week=2, start_time=time(13, 0), end_time=time(15, 0),
        )

        availability = services.get_therapist_availability(self.therapist)

        self.assertTrue(availability.day('tuesday').enabled)
        self.assertFalse(availability.day('monday').enabled)

    def test_invalid_availability_is_not_saved(self):
        availability = WeeklyAvailability()
        availability.standard_hours['monday'] = DayAvailability(
            enabled=True, time_slots=[TimeSlot(start='10:00', end='09:00')],
        )

        result = services.save_therapist_availability(self.therapist, availability)

        self.assertFalse(result.success)
        self.assertTrue(result.message.startswith('Validation failed'))
        self.assertFalse(AvailabilityTemplate.objects.exists())
        self.assertFalse(WeeklySchedule.objects.exists())

    def test_weekly_store_failure_is_reported(self):
        with mock.patch('availability.services.save_weekly_schedule', side_effect=DatabaseError('down')):
            result = services.save_therapist_availability(self.therapist, weekday_slots())

        self.assertTrue(result.success)
        self.assertFalse(result.weekly_saved)
        self.assertEqual(result.template_count, 2)
        self.assertIn('Weekly schedule not stored; legacy templates saved', result.warnings)

    def test_replace_templates_is_all_or_nothing(self):
        services.replace_legacy_templates(self.therapist, [
            {'day_of_week': 1, 'start_time': '09:00', 'end_time': '10:00'},
        ])

        with self.assertRaises(ValueError):
            services.replace_legacy_templates(self.therapist, [
                {'day_of_week': 2, 'start_time': '09:00', 'end_time': '10:00'},
                {'day_of_week': 7, 'start_time': '09:00', 'end_time': '10:00'},
            ])

        self.assertEqual(
            list(AvailabilityTemplate.objects.values_list('day_of_week', flat=True)),
            [1],
        )

    def test_replace_templates_rejects_reversed_times(self):
        with self.assertRaises(ValueError):
            services.replace_legacy_templates(self.therapist, [
                {'day_of_week': 1, 'start_time': '10:00', 'end_time': '09:00'},
            ])

    def test_update_template(self):
        template = AvailabilityTemplate.objects.create(
            therapist=self.therapist, day_of_week=1, start_time=time(9, 0), end_time=time(10, 0),
        )

        services.update_template(template, {'end_time': '11:30', 'max_sessions': 2})
        template.refresh_from_db()

        self.assertEqual(template.end_time, time(11, 30))
        self.assertEqual(template.max_sessions, 2)

        with self.assertRaises(ValueError):
            services.update_template(template, {'therapist': 1})
        with self.assertRaises(ValueError):
            services.update_template(template, {'end_time': '08:00'})


class OverrideTests(TestCase):
    """Test per-date overrides."""

    def setUp(self):
        self.therapist, _ = make_therapist()
        services.save_weekly_schedule(self.therapist, WeeklyAvailability.from_dict(monday_general_hours()))
        self.monday = next_monday()

    def test_day_off(self):
        services.save_availability_override(self.therapist, self.monday, is_available=False, reason='Conference')
        self.assertEqual(slots.get_slots_for_date(self.therapist, self.monday), [])

    def test_custom_hours_replace_the_day(self):
        services.save_availability_override(
            self.therapist, self.monday, is_available=True,
            start_time='14:00', end_time='16:00', reason='Afternoon only',
        )

        day_slots = slots.get_slots_for_date(self.therapist, self.monday)

        self.assertEqual([slot.start_time for slot in day_slots], ['14:00', '15:00'])
        self.assertTrue(all(slot.is_override for slot in day_slots))
        self.assertEqual(day_slots[0].reason, 'Afternoon only')

    def test_override_on_disabled_day(self):
        tuesday = self.monday + timedelta(days=1)
        services.save_availability_override(
            self.therapist, tuesday, is_available=True, start_time='10:00', end_time='11:00',
        )
        self.assertEqual(len(slots.get_slots_for_date(self.therapist, tuesday)), 1)

    def test_saving_again_replaces(self):
        services.save_availability_override(self.therapist, self.monday, is_available=False)
        services.save_availability_override(
            self.therapist, self.monday, is_available=True, start_time='10:00', end_time='11:00',
        )

        override = AvailabilityOverride.objects.get(therapist=self.therapist)
        self.assertTrue(override.is_available)

    def test_custom_hours_require_times(self):
        with self.assertRaises(ValueError):
            services.save_availability_override(self.therapist, self.monday, is_available=True)

    def test_list_and_delete(self):
        services.save_availability_override(self.therapist, self.monday, is_available=False)

        self.assertEqual(len(services.get_availability_overrides(self.therapist, self.monday, self.monday)), 1)
        self.assertEqual(
            services.get_availability_overrides(self.therapist, self.monday + timedelta(days=1)),
            [],
        )
        self.assertTrue(services.delete_availability_override(self.therapist, self.monday))
        self.assertFalse(services.delete_availability_override(self.therapist, self.monday))


class SlotGenerationTests(TestCase):
    """Test expansion of schedules into bookable slots."""

    def setUp(self):
        self.therapist, _ = make_therapist()
        self.patient = User.objects.create_user(username='pat@example.com', email='pat@example.com', password='x')
        self.monday = next_monday()

    def save(self, data):
        services.save_weekly_schedule(self.therapist, WeeklyAvailability.from_dict(data))

    def starts(self, day, now=None):
        return [slot.start_time for slot in slots.get_slots_for_date(self.therapist, day, now=now)]

    def test_general_hours(self):
        self.save(monday_general_hours())
        self.assertEqual(self.starts(self.monday), ['09:00', '10:00', '11:00'])

    def test_general_hours_buffer(self):
        self.save(monday_general_hours(buffer_time=15))
        self.assertEqual(self.starts(self.monday), ['09:00', '10:15'])

    def test_disabled_day(self):
        self.save(monday_general_hours())
        self.assertEqual(self.starts(self.monday + timedelta(days=1)), [])

    def test_custom_slots_take_precedence(self):
        data = monday_general_hours()
        data['standardHours']['monday']['customSlots'] = [
            {'id': 'c1', 'start': '13:00', 'end': '14:30', 'duration': 45, 'type': 'consultation', 'maxSessions': 1},
        ]
        self.save(data)

        day_slots = slots.get_slots_for_date(self.therapist, self.monday)

        self.assertEqual([slot.start_time for slot in day_slots], ['13:00', '13:45'])
        self.assertEqual(day_slots[0].session_type, 'consultation')
        self.assertEqual(day_slots[0].session_duration, 45)

    def test_time_slots_use_session_duration(self):
        services.save_weekly_schedule(self.therapist, weekday_slots())
        self.assertEqual(self.starts(self.monday), ['09:00', '10:00'])

    def test_legacy_templates_generate_slots(self):
        AvailabilityTemplate.objects.create(
            therapist=self.therapist, day_of_week=1, start_time=time(9, 0), end_time=time(10, 0),
        )
        self.assertEqual(self.starts(self.monday), ['09:00'])

    def test_past_slots_are_dropped(self):
        self.save(monday_general_hours())
        now = timezone.make_aware(datetime.combine(self.monday, time(10, 0)))

        self.assertEqual(self.starts(self.monday, now=now), ['11:00'])
        self.assertEqual(self.starts(self.monday - timedelta(days=7), now=now), [])

    def test_booked_slots_are_removed(self):
        self.save(monday_general_hours())
        TherapySession.objects.create(
            therapist=self.therapist, user=self.patient,
            session_date=self.monday, session_time=time(10, 0),
        )
        cancelled = TherapySession.objects.create(
            therapist=self.therapist, user=self.patient,
            session_date=self.monday, session_time=time(11, 0),
        )
        cancelled.status = 'cancelled'
        cancelled.save()

        self.assertEqual(self.starts(self.monday), ['09:00', '11:00'])

    def test_session_off_the_grid_blocks_every_overlapping_slot(self):
        self.save(monday_general_hours())
        TherapySession.objects.create(
            therapist=self.therapist, user=self.patient,
            session_date=self.monday, session_time=time(9, 30), duration_minutes=60,
        )
        self.assertEqual(self.starts(self.monday), ['11:00'])

    def test_overlapping_time_slots_give_one_slot_per_start(self):
        availability = weekday_slots()
        availability.standard_hours['monday'].time_slots.append(
            TimeSlot(id='monday-2', start='10:00', end='12:00')
        )
        services.save_weekly_schedule(self.therapist, availability)

        self.assertEqual(self.starts(self.monday), ['09:00', '10:00', '11:00'])

    def test_available_days(self):
        self.save(monday_general_hours())
        days = slots.get_available_days(self.therapist, self.monday - timedelta(days=1), self.monday + timedelta(days=5))
        self.assertEqual(days, [self.monday])

    def test_range_validation(self):
        with self.assertRaises(ValueError):
            slots.generate_availability_slots(self.therapist, self.monday, self.monday - timedelta(days=1))
        with override_settings(AVAILABILITY_MAX_RANGE_DAYS=7):
            with self.assertRaises(ValueError):
                slots.generate_availability_slots(self.therapist, self.monday, self.monday + timedelta(days=7))


class CalendarHelperTests(TestCase):
    """Test the weekly calendar editing helpers."""

    def setUp(self):
        self.availability = WeeklyAvailability()

    def test_toggle_day_returns_copy(self):
        updated = calendar.toggle_day(self.availability, 'monday')

        self.assertTrue(updated.day('monday').enabled)
        self.assertFalse(self.availability.day('monday').enabled)
        self.assertFalse(calendar.toggle_day(updated, 'monday').day('monday').enabled)
        self.assertTrue(calendar.toggle_day(updated, 'monday', enabled=True).day('monday').enabled)

    def test_set_general_hours(self):
        updated = calendar.set_general_hours(self.availability, 'tuesday', '09:00', '12:30')
        hours = updated.day('tuesday').general_hours

        self.assertTrue(updated.day('tuesday').enabled)
        self.assertEqual(hours.total_hours, 3.5)
        self.assertEqual(hours.session_duration, 60)
        self.assertEqual(hours.buffer_time, 15)

        with self.assertRaises(ValueError):
            calendar.set_general_hours(self.availability, 'tuesday', '12:00', '09:00')

    def test_add_custom_slot(self):
        updated = calendar.add_custom_slot(self.availability, 'friday', TimeSlot(start='14:00', end='15:00'))
        updated = calendar.add_custom_slot(updated, 'friday', TimeSlot(start='10:00', end='11:00'))

        custom = updated.day('friday').custom_slots
        self.assertEqual([slot.start for slot in custom], ['10:00', '14:00'])
        self.assertTrue(all(slot.id.startswith('slot-') for slot in custom))
        self.assertTrue(updated.day('friday').enabled)

        with self.assertRaises(ValueError):
            calendar.add_custom_slot(updated, 'friday', TimeSlot(start='14:30', end='15:30'))

    def test_remove_slot(self):
        updated = calendar.add_custom_slot(self.availability, 'friday', TimeSlot(id='keep', start='09:00', end='10:00'))
        updated = calendar.add_custom_slot(updated, 'friday', TimeSlot(id='drop', start='11:00', end='12:00'))

        updated = calendar.remove_slot(updated, 'friday', 'drop')
        self.assertEqual([slot.id for slot in updated.day('friday').custom_slots], ['keep'])

    def test_copy_day(self):
        source = calendar.add_custom_slot(self.availability, 'monday', TimeSlot(id='m1', start='09:00', end='10:00'))

        updated = calendar.copy_day(source, 'monday', ['tuesday', 'monday'])

        copied = updated.day('tuesday').custom_slots[0]
        self.assertEqual(copied.start, '09:00')
        self.assertNotEqual(copied.id, 'm1')
        self.assertEqual(updated.day('monday').custom_slots[0].id, 'm1')

    def test_week_summary(self):
        updated = calendar.set_general_hours(self.availability, 'monday', '09:00', '12:00', session_duration=60, buffer_time=0)
        updated = calendar.add_custom_slot(updated, 'tuesday', TimeSlot(start='09:00', end='10:00'))
        updated = calendar.toggle_day(updated, 'wednesday', enabled=True)

        summary = {entry['day']: entry for entry in calendar.week_summary(updated)}

        self.assertEqual(len(summary), 7)
        self.assertEqual(summary['monday'], {'day': 'monday', 'mode': 'general', 'slot_count': 3, 'hours': '09:00-12:00'})
        self.assertEqual(summary['tuesday']['mode'], 'custom')
        self.assertEqual(summary['wednesday']['mode'], 'empty')
        self.assertEqual(summary['sunday']['mode'], 'disabled')


class AvailabilityClientTests(TestCase):
    """Test the availability HTTP clients with a mock transport."""

    base_url = 'https://app.example.com'

    def test_load(self):
        def handler(request):
            self.assertEqual(request.url.path, '/api/therapist/availability/template/')
            self.assertEqual(request.url.params['therapist_id'], '7')
            return httpx.Response(200, json={'success': True, 'availability': monday_general_hours()})

        result = AvailabilityManager(7, self.base_url, transport=httpx.MockTransport(handler)).load()

        self.assertTrue(result.from_server)
        self.assertIsNone(result.error)
        self.assertTrue(result.availability.day('monday').enabled)

    def test_load_falls_back_to_default(self):
        def handler(request):
            return httpx.Response(500, json={'success': False, 'error': 'Internal server error'})

        result = AvailabilityManager(7, self.base_url, transport=httpx.MockTransport(handler)).load()

        self.assertFalse(result.from_server)
        self.assertEqual(result.error, 'Internal server error')
        self.assertTrue(result.availability.day('friday').enabled)
        self.assertFalse(result.availability.day('sunday').enabled)

    def test_save_writes_weekly_then_legacy(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json={'success': True})

        manager = AvailabilityManager(7, self.base_url, transport=httpx.MockTransport(handler))
        result = manager.save(weekday_slots())

        self.assertTrue(result.legacy_synced)
        self.assertEqual(
            [request.url.path for request in requests],
            ['/api/therapist/availability/weekly/', '/api/therapist/availability/template/'],
        )
        legacy_body = json.loads(requests[1].content)
        self.assertEqual(legacy_body['therapist_id'], 7)
        self.assertEqual(len(legacy_body['templates']), 2)

    def test_save_reports_legacy_failure(self):
        def handler(request):
            if request.url.path.endswith('/template/'):
                return httpx.Response(400, json={'success': False, 'error': 'Bad rows', 'code': 'VALIDATION_ERROR'})
            return httpx.Response(200, json={'success': True})

        manager = AvailabilityManager(7, self.base_url, transport=httpx.MockTransport(handler))
        result = manager.save(weekday_slots())

        self.assertFalse(result.legacy_synced)
        self.assertEqual(result.legacy_error, 'Bad rows')
        self.assertTrue(result.weekly['success'])

    def test_available_days_for_month(self):
        seen = []

        def handler(request):
            seen.append(parse_qs(request.url.query.decode()))
            return httpx.Response(200, json={'success': True, 'availableDays': ['2030-02-04']})

        client = AvailabilityClient(self.base_url, transport=httpx.MockTransport(handler))

        self.assertEqual(client.get_available_days(7, 2, 2030), ['2030-02-04'])
        self.assertEqual(seen[0]['start_date'], ['2030-02-01'])
        self.assertEqual(seen[0]['end_date'], ['2030-02-28'])
        self.assertIn('_t', seen[0])

    def test_unreachable_api_returns_empty(self):
        def handler(request):
            raise httpx.ConnectError('refused', request=request)

        client = AvailabilityClient(self.base_url, transport=httpx.MockTransport(handler))

        self.assertEqual(client.get_available_days(7, 2, 2030), [])
        self.assertEqual(client.get_time_slots(7, date(2030, 2, 4)), [])

    def test_book_slot_error(self):
        def handler(request):
            return httpx.Response(400, json={
                'success': False, 'error': 'Selected time slot is not available', 'code': 'VALIDATION_ERROR',
            })

        client = AvailabilityClient(self.base_url, transport=httpx.MockTransport(handler))
        result = client.book_slot(7, {'date': '2030-02-04', 'start_time': '09:00'})

        self.assertEqual(result, {
            'success': False,
            'error': 'Selected time slot is not available',
            'code': 'VALIDATION_ERROR',
        })


class WeeklyAvailabilityAPITests(APITestCase):
    """Test the weekly schedule endpoint."""

    url = '/api/therapist/availability/weekly/'

    def setUp(self):
        self.therapist, _ = make_therapist()
        self.client.force_authenticate(self.therapist)

    def test_get_without_schedule(self):
        response = self.client.get(self.url)

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertIsNone(response.data['availability'])
        self.assertIn('no-store', response['Cache-Control'])

    def test_save_and_get(self):
        response = self.client.post(self.url, {'availability': monday_general_hours()}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)

        response = self.client.get(self.url)
        self.assertEqual(
            response.data['availability']['standardHours']['monday']['generalHours']['start'],
            '09:00',
        )

    def test_missing_availability(self):
        response = self.client.post(self.url, {}, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['code'], 'MISSING_AVAILABILITY_DATA')

    def test_invalid_availability(self):
        data = monday_general_hours(start='12:00', end='09:00')
        response = self.client.post(self.url, {'availability': data}, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertFalse(WeeklySchedule.objects.exists())

    def test_unapproved_therapist(self):
        self.therapist.is_verified = False
        self.therapist.save()

        response = self.client.post(self.url, {'availability': monday_general_hours()}, format='json')

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(response.data['code'], 'NOT_APPROVED')

    def test_missing_profile(self):
        therapist, _ = make_therapist(email='new@example.com', with_profile=False)
        self.client.force_authenticate(therapist)

        response = self.client.post(self.url, {'availability': monday_general_hours()}, format='json')

        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data['code'], 'PROFILE_MISSING')

    def test_patients_are_forbidden(self):
        patient = User.objects.create_user(username='pat@example.com', email='pat@example.com', password='x')
        self.client.force_authenticate(patient)

        response = self.client.get(self.url)
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)


class TemplateAPITests(APITestCase):
    """Test the combined template endpoint."""

    url = '/api/therapist/availability/template/'

    def setUp(self):
        self.therapist, _ = make_therapist()
        self.client.force_authenticate(self.therapist)

    def test_get_requires_therapist_id(self):
        response = self.client.get(self.url)
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['code'], 'MISSING_THERAPIST_ID')

    def test_get_is_public(self):
        services.save_therapist_availability(self.therapist, weekday_slots())
        self.client.force_authenticate(None)

        response = self.client.get(self.url, {'therapist_id': self.therapist.pk})

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(response.data['availability']['standardHours']['wednesday']['enabled'])
        self.assertEqual(len(response.data['templates']), 2)
        self.assertEqual(response.data['templates'][0]['day_name'], 'Monday')

    def test_post_availability(self):
        response = self.client.post(self.url, {'availability': weekday_slots().to_dict()}, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['template_count'], 2)
        self.assertTrue(response.data['weekly_saved'])

    def test_post_legacy_rows(self):
        response = self.client.post(self.url, {
            'therapist_id': self.therapist.pk,
            'templates': [{'day_of_week': 0, 'start_time': '10:00', 'end_time': '12:00'}],
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        template = AvailabilityTemplate.objects.get(therapist=self.therapist)
        self.assertEqual(template.day_of_week, 0)
        self.assertEqual(template.session_duration, 45)

    def test_post_for_someone_else(self):
        other, _ = make_therapist(email='other@example.com')

        response = self.client.post(self.url, {
            'therapist_id': other.pk,
            'templates': [],
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_update_and_delete_template(self):
        template = AvailabilityTemplate.objects.create(
            therapist=self.therapist, day_of_week=1, start_time=time(9, 0), end_time=time(10, 0),
        )

        response = self.client.put(self.url, {
            'template_id': template.pk,
            'updates': {'session_type': 'group', 'max_sessions': 3},
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['template']['session_type'], 'group')

        response = self.client.delete(f'{self.url}?template_id={template.pk}')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertFalse(AvailabilityTemplate.objects.exists())

    def test_cannot_touch_other_therapists_template(self):
        other, _ = make_therapist(email='other@example.com')
        template = AvailabilityTemplate.objects.create(
            therapist=other, day_of_week=1, start_time=time(9, 0), end_time=time(10, 0),
        )

        response = self.client.delete(f'{self.url}?template_id={template.pk}')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)


class OverrideAPITests(APITestCase):
    """Test the override endpoint."""

    url = '/api/therapist/availability/override/'

    def setUp(self):
        self.therapist, _ = make_therapist()
        self.client.force_authenticate(self.therapist)
        self.monday = next_monday()

    def test_create_list_delete(self):
        response = self.client.post(self.url, {
            'date': self.monday.isoformat(),
            'is_available': True,
            'start_time': '14:00',
            'end_time': '16:00',
            'reason': 'Afternoon clinic',
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['override']['type'], 'custom_hours')
        self.assertEqual(response.data['override']['start_time'], '14:00')

        response = self.client.get(self.url)
        self.assertEqual(len(response.data['overrides']), 1)

        response = self.client.delete(f'{self.url}?date={self.monday.isoformat()}')
        self.assertEqual(response.status_code, status.HTTP_200_OK)

        response = self.client.delete(f'{self.url}?date={self.monday.isoformat()}')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_custom_hours_need_times(self):
        response = self.client.post(self.url, {
            'date': self.monday.isoformat(),
            'is_available': True,
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_delete_requires_date(self):
        response = self.client.delete(self.url)
        self.assertEqual(response.data['code'], 'MISSING_DATE')


class AvailableSlotsAPITests(APITestCase):
    """Test the public day and slot listings."""

    def setUp(self):
        self.therapist, _ = make_therapist()
        services.save_weekly_schedule(self.therapist, WeeklyAvailability.from_dict(monday_general_hours()))
        self.monday = next_monday()

    def test_available_days(self):
        response = self.client.get('/api/availability/days/', {
            'therapist_id': self.therapist.pk,
            'start_date': self.monday.isoformat(),
            'end_date': (self.monday + timedelta(days=6)).isoformat(),
        })

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['availableDays'], [self.monday.isoformat()])
        self.assertEqual(response.data['totalDays'], 1)

    def test_reversed_range(self):
        response = self.client.get('/api/availability/days/', {
            'therapist_id': self.therapist.pk,
            'start_date': self.monday.isoformat(),
            'end_date': (self.monday - timedelta(days=1)).isoformat(),
        })
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_slots(self):
        response = self.client.get('/api/availability/slots/', {
            'therapist_id': self.therapist.pk,
            'date': self.monday.isoformat(),
        })

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['total_slots'], 3)
        self.assertEqual(response.data['slots'][0]['start_time'], '09:00')
        self.assertEqual(response.data['slots'][0]['day_of_week'], 1)

    def test_unknown_therapist(self):
        patient = User.objects.create_user(username='pat@example.com', email='pat@example.com', password='x')
        response = self.client.get('/api/availability/slots/', {
            'therapist_id': patient.pk,
            'date': self.monday.isoformat(),
        })
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)


class ListAvailableSlotsCommandTests(TestCase):
    """Test the list_available_slots management command."""

    def test_lists_slots(self):
        therapist, _ = make_therapist()
        services.save_weekly_schedule(therapist, WeeklyAvailability.from_dict(monday_general_hours()))
        monday = next_monday()
        out = StringIO()

        call_command('list_available_slots', therapist.email, '--days', '14', stdout=out)

        output = out.getvalue()
        self.assertIn(f'{monday:%A %Y-%m-%d}', output)
        self.assertIn('09:00-10:00 individual', output)

    def test_unknown_therapist(self):
        with self.assertRaises(CommandError):
            call_command('list_available_slots', 'nobody@example.com', stdout=StringIO())
