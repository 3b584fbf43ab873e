"""
Tests for the therapy_sessions app.

Tests cover:
- TherapySession model validation
- Booking, completing and cancelling sessions
- DeepSeek client retries and SOAP parsing
- Provider fallbacks (DeepSeek -> OpenAI -> canned notes)
- Recording download and audio extraction
- Recording pipeline, concurrency guard and background runs
- API endpoints
"""

import os
import shutil
import subprocess
import tempfile
from datetime import datetime, time, timedelta
from types import SimpleNamespace
from unittest import mock

import httpx
from django.core.exceptions import ValidationError
from django.core.files.uploadedfile import SimpleUploadedFile
from django.test import TestCase, override_settings
from django.utils import timezone
from openai import OpenAIError
from rest_framework import status
from rest_framework.test import APITestCase

from accounts.models import Notification, User
from availability.models import WeeklySchedule
from availability.slots import get_slots_for_date

from . import processor, services
from .ai import deepseek, providers
from .models import SessionNote, SessionProcessingError, TherapySession
from .types import ProviderResult, Recording, SessionContext, SOAPNotes, TherapeuticInsights, Transcription
from .video import AudioExtractionError, DailyClient, DailyError, extract_audio, process_recording


MONDAY_MORNINGS = {
    'standardHours': {
        'monday': {
            'enabled': True,
            'generalHours': {
                'start': '09:00',
                'end': '12:00',
                'totalHours': 3,
                'sessionDuration': 60,
                'bufferTime': 0,
            },
            'timeSlots': [],
            'customSlots': [],
        },
    },
    'sessionSettings': {'sessionDuration': 60, 'bufferTime': 0},
    'timezone': 'UTC',
}

SOAP_MARKDOWN = """# SOAP Notes
## SUBJECTIVE
Patient reports anxiety at work.
## OBJECTIVE
Calm and engaged.
## ASSESSMENT
Showing progress with coping skills.
## PLAN
- Continue breathing exercises
"""


def make_user(email, user_type='individual', **extra):
    return User.objects.create_user(
        username=email,
        email=email,
        password='pass1234',
        user_type=user_type,
        **extra
    )


def next_monday():
    """A Monday at least a week ahead, so its slots are never in the past."""
    today = timezone.localdate()
    return today + timedelta(days=(7 - today.weekday()) % 7 + 7)


def make_therapist_with_schedule(email='dr.kim@example.com'):
    therapist = make_user(email, user_type='therapist', full_name='Dr Kim', is_verified=True)
    WeeklySchedule.objects.create(
        therapist=therapist,
        template_name='primary',
        weekly_availability=MONDAY_MORNINGS,
    )
    return therapist


def chat_response(content):
    return {'choices': [{'message': {'role': 'assistant', 'content': content}}]}


def openai_completion(content):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


class TherapySessionModelTests(TestCase):
    """Test TherapySession model validation."""

    def setUp(self):
        self.therapist = make_user('dr.kim@example.com', user_type='therapist')
        self.patient = make_user('pat@example.com')

    def test_cannot_book_with_self(self):
        with self.assertRaises(ValidationError):
            TherapySession.objects.create(
                therapist=self.therapist,
                user=self.therapist,
                session_date=next_monday(),
                session_time=time(9, 0),
            )

    def test_end_datetime(self):
        session = TherapySession.objects.create(
            therapist=self.therapist,
            user=self.patient,
            session_date=next_monday(),
            session_time=time(9, 0),
            duration_minutes=50,
        )
        self.assertEqual(session.end_datetime - session.start_datetime, timedelta(minutes=50))

    def test_room_name(self):
        session = TherapySession(room_url='https://trpi.daily.co/therapy-abc/')
        self.assertEqual(session.room_name, 'therapy-abc')
        self.assertEqual(TherapySession().room_name, '')

    def test_two_active_sessions_in_same_slot_rejected(self):
        TherapySession.objects.create(
            therapist=self.therapist, user=self.patient,
            session_date=next_monday(), session_time=time(9, 0),
        )
        other = make_user('other@example.com')
        with self.assertRaises(ValidationError):
            TherapySession.objects.create(
                therapist=self.therapist, user=other,
                session_date=next_monday(), session_time=time(9, 0),
            )


class BookSessionTests(TestCase):
    """Test booking against generated slots."""

    def setUp(self):
        self.therapist = make_therapist_with_schedule()
        self.patient = make_user('pat@example.com', full_name='Pat')
        self.monday = next_monday()

    def test_book_open_slot(self):
        session = services.book_session(self.patient, self.therapist, self.monday, '10:00')
        session.refresh_from_db()

        self.assertEqual(session.status, 'scheduled')
        self.assertEqual(session.session_time, time(10, 0))
        self.assertEqual(session.duration_minutes, 60)
        self.assertEqual(session.user, self.patient)

    def test_booked_slot_is_no_longer_offered(self):
        services.book_session(self.patient, self.therapist, self.monday, '10:00')

        starts = [slot.start_time for slot in get_slots_for_date(self.therapist, self.monday)]
        self.assertEqual(starts, ['09:00', '11:00'])

    def test_double_booking_rejected(self):
        services.book_session(self.patient, self.therapist, self.monday, '10:00')
        other = make_user('other@example.com')

        with self.assertRaises(ValueError):
            services.book_session(other, self.therapist, self.monday, '10:00')
        self.assertEqual(TherapySession.objects.count(), 1)

    def test_time_outside_availability_rejected(self):
        with self.assertRaises(ValueError):
            services.book_session(self.patient, self.therapist, self.monday, '13:00')

    def test_disabled_day_rejected(self):
        tuesday = self.monday + timedelta(days=1)
        with self.assertRaises(ValueError):
            services.book_session(self.patient, self.therapist, tuesday, '10:00')

    def test_non_therapist_rejected(self):
        with self.assertRaises(ValueError):
            services.book_session(self.patient, make_user('friend@example.com'), self.monday, '10:00')

    def test_therapist_cannot_book_self(self):
        with self.assertRaises(ValueError):
            services.book_session(self.therapist, self.therapist, self.monday, '10:00')

    def test_cancelled_session_frees_slot(self):
        session = services.book_session(self.patient, self.therapist, self.monday, '10:00')
        services.cancel_session(session)

        rebooked = services.book_session(make_user('other@example.com'), self.therapist, self.monday, '10:00')
        self.assertEqual(rebooked.status, 'scheduled')

    def test_past_slots_are_not_bookable(self):
        late_on_monday = timezone.make_aware(datetime.combine(self.monday, time(10, 30)))
        with self.assertRaises(ValueError):
            services.book_session(self.patient, self.therapist, self.monday, '10:00', now=late_on_monday)
        session = services.book_session(self.patient, self.therapist, self.monday, '11:00', now=late_on_monday)
        self.assertEqual(session.status, 'scheduled')

    def test_duration_must_match_slot(self):
        with self.assertRaises(ValueError):
            services.book_session(self.patient, self.therapist, self.monday, '09:00', duration_minutes=180)
        self.assertFalse(TherapySession.objects.exists())

        session = services.book_session(self.patient, self.therapist, self.monday, '09:00', duration_minutes=60)
        self.assertEqual(session.duration_minutes, 60)

    def test_long_session_blocks_overlapping_slots(self):
        TherapySession.objects.create(
            therapist=self.therapist, user=self.patient,
            session_date=self.monday, session_time=time(9, 0),
            duration_minutes=120,
        )

        starts = [slot.start_time for slot in get_slots_for_date(self.therapist, self.monday)]
        self.assertEqual(starts, ['11:00'])
        with self.assertRaises(ValueError):
            services.book_session(make_user('other@example.com'), self.therapist, self.monday, '10:00')


class SessionStateTests(TestCase):
    """Test completing, cancelling and listing sessions."""

    def setUp(self):
        self.therapist = make_user('dr.kim@example.com', user_type='therapist')
        self.patient = make_user('pat@example.com')
        self.session = TherapySession.objects.create(
            therapist=self.therapist,
            user=self.patient,
            session_date=next_monday(),
            session_time=time(9, 0),
        )

    def test_complete_session(self):
        services.complete_session(self.session, summary='Worked on sleep hygiene')
        self.session.refresh_from_db()

        self.assertEqual(self.session.status, 'completed')
        self.assertIsNotNone(self.session.completed_at)
        self.assertEqual(self.session.session_summary, 'Worked on sleep hygiene')

    def test_complete_twice_rejected(self):
        services.complete_session(self.session)
        with self.assertRaises(ValueError):
            services.complete_session(self.session)

    def test_complete_cancelled_rejected(self):
        services.cancel_session(self.session)
        with self.assertRaises(ValueError):
            services.complete_session(self.session)

    def test_cancel_twice_rejected(self):
        services.cancel_session(self.session)
        self.assertIsNotNone(self.session.cancelled_at)
        with self.assertRaises(ValueError):
            services.cancel_session(self.session)

    def test_cancel_completed_rejected(self):
        services.complete_session(self.session)
        with self.assertRaises(ValueError):
            services.cancel_session(self.session)

    def test_sessions_in_range(self):
        day = self.session.session_date
        self.assertEqual(services.get_sessions_in_range(day, day), [self.session])
        self.assertEqual(services.get_sessions_in_range(day + timedelta(days=1), day + timedelta(days=2)), [])

    def test_sessions_in_range_for_participant(self):
        day = self.session.session_date
        outsider = make_user('outsider@example.com')

        self.assertEqual(len(services.get_sessions_in_range(day, day, participant=self.patient)), 1)
        self.assertEqual(services.get_sessions_in_range(day, day, participant=outsider), [])

    def test_sessions_in_range_filters_status(self):
        day = self.session.session_date
        self.assertEqual(services.get_sessions_in_range(day, day, status='completed'), [])

    def test_reversed_range_rejected(self):
        day = self.session.session_date
        with self.assertRaises(ValueError):
            services.get_sessions_in_range(day, day - timedelta(days=1))


class DeepSeekClientTests(TestCase):
    """Test the DeepSeek HTTP client with a mock transport."""

    def make_client(self, handler, max_retries=2):
        return deepseek.DeepSeekClient(
            api_key='sk-test',
            base_url='https://api.deepseek.test/v1',
            max_retries=max_retries,
            transport=httpx.MockTransport(handler),
        )

    def test_generate_soap_notes(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json=chat_response(SOAP_MARKDOWN))

        result = deepseek.generate_soap_notes_with_deepseek(
            'Patient talked about work stress.',
            SessionContext(session_id='7', patient_name='Pat'),
            client=self.make_client(handler),
        )

        self.assertEqual(seen[0].headers['Authorization'], 'Bearer sk-test')
        self.assertEqual(seen[0].url.path, '/v1/chat/completions')
        self.assertEqual(result['provider'], 'deepseek')
        self.assertEqual(result['structured']['subjective'], 'Patient reports anxiety at work.')
        self.assertEqual(result['structured']['plan'], '- Continue breathing exercises')
        self.assertEqual(
            result['summary'],
            'Session focused on anxiety and work issues. Showing progress with coping skills. '
            'Next steps: Continue breathing exercises'
        )

    def test_rate_limit_is_retried_with_backoff(self):
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) == 1:
                return httpx.Response(429, json={'error': {'message': 'slow down'}})
            return httpx.Response(200, json=chat_response('ok'))

        with mock.patch('therapy_sessions.ai.deepseek.time.sleep') as sleep:
            response = self.make_client(handler).chat_completions_create(model='deepseek-chat', messages=[])

        self.assertEqual(len(calls), 2)
        sleep.assert_called_once_with(1)
        self.assertEqual(response['choices'][0]['message']['content'], 'ok')

    def test_auth_error_is_not_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(401, json={'error': {'message': 'bad key'}})

        with mock.patch('therapy_sessions.ai.deepseek.time.sleep') as sleep:
            with self.assertRaises(deepseek.DeepSeekError) as ctx:
                self.make_client(handler).chat_completions_create(model='deepseek-chat', messages=[])

        self.assertEqual(len(calls), 1)
        sleep.assert_not_called()
        self.assertEqual(ctx.exception.status_code, 401)
        self.assertEqual(ctx.exception.user_message, 'DeepSeek API key is invalid or expired')

    def test_transport_errors_exhaust_retries(self):
        calls = []

        def handler(request):
            calls.append(request)
            raise httpx.ConnectError('connection refused', request=request)

        with mock.patch('therapy_sessions.ai.deepseek.time.sleep') as sleep:
            with self.assertRaises(deepseek.DeepSeekError) as ctx:
                self.make_client(handler, max_retries=2).chat_completions_create(model='deepseek-chat', messages=[])

        self.assertEqual(len(calls), 3)
        self.assertEqual([c.args[0] for c in sleep.call_args_list], [1, 2])
        self.assertIsNone(ctx.exception.status_code)

    def test_empty_content_raises(self):
        client = self.make_client(lambda request: httpx.Response(200, json={'choices': []}))
        with self.assertRaises(deepseek.DeepSeekError):
            deepseek.generate_soap_notes_with_deepseek('transcript text', SessionContext(session_id='1'), client=client)

    def test_non_json_success_body_raises(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, text='<html>gateway</html>')

        with self.assertRaises(deepseek.DeepSeekError) as ctx:
            self.make_client(handler).chat_completions_create(model='deepseek-chat', messages=[])

        self.assertEqual(len(calls), 1)
        self.assertEqual(ctx.exception.status_code, 200)

    def test_malformed_choices_raise(self):
        for body in ({'choices': [{}]}, {'choices': ['text']}, {'choices': 'text'}, {'choices': [{'message': {'content': 42}}]}):
            client = self.make_client(lambda request, body=body: httpx.Response(200, json=body))
            with self.assertRaises(deepseek.DeepSeekError):
                deepseek.generate_soap_notes_with_deepseek('transcript text', SessionContext(session_id='1'), client=client)

    def test_connection_check(self):
        def handler(request):
            return httpx.Response(200, json={'data': [{'id': 'deepseek-chat'}]})

        result = deepseek.test_deepseek_connection(self.make_client(handler))
        self.assertEqual(result, {'success': True, 'models': [{'id': 'deepseek-chat'}]})

    def test_connection_check_reports_failure(self):
        result = deepseek.test_deepseek_connection(
            self.make_client(lambda request: httpx.Response(402, json={}))
        )
        self.assertFalse(result['success'])
        self.assertEqual(result['status_code'], 402)

    @override_settings(DEEPSEEK_API_KEY='')
    def test_missing_key(self):
        with self.assertRaises(deepseek.DeepSeekError):
            deepseek.get_deepseek_client()

    def test_parse_without_headings(self):
        parsed = deepseek.parse_soap_notes('Just some text')
        self.assertEqual(parsed['structured']['subjective'], '')
        self.assertEqual(parsed['word_count'], 3)
        self.assertTrue(parsed['summary'].startswith('Session focused on general therapeutic concerns.'))


@override_settings(DEEPSEEK_API_KEY='', OPENAI_API_KEY='', USE_DEEPSEEK_FOR_SOAP_NOTES=True)
class ProviderTests(TestCase):
    """Test provider ordering and fallbacks."""

    transcript = 'Patient discussed stress at work and sleep problems.'

    def setUp(self):
        self.context = SessionContext(session_id='12')

    def deepseek_client(self, status_code=200, content=SOAP_MARKDOWN):
        def handler(request):
            if status_code == 200:
                return httpx.Response(200, json=chat_response(content))
            return httpx.Response(status_code, json={'error': {'message': 'failed'}})

        return deepseek.DeepSeekClient(api_key='sk-test', transport=httpx.MockTransport(handler))

    def test_deepseek_used_first(self):
        openai_client = mock.MagicMock()

        result = providers.generate_soap_notes(
            self.transcript, self.context,
            deepseek_client=self.deepseek_client(), openai_client=openai_client,
        )

        self.assertEqual(result.provider, 'deepseek')
        self.assertFalse(result.is_fallback)
        self.assertEqual(result.value.objective, 'Calm and engaged.')
        openai_client.chat.completions.create.assert_not_called()

    def test_falls_back_to_openai(self):
        openai_client = mock.MagicMock()
        openai_client.chat.completions.create.return_value = openai_completion(
            '```json\n{"subjective": "S", "objective": "O", "assessment": "A", '
            '"plan": "P", "summary": "Sum", "mood_rating": 12}\n```'
        )

        result = providers.generate_soap_notes(
            self.transcript, self.context,
            deepseek_client=self.deepseek_client(status_code=500), openai_client=openai_client,
        )

        self.assertEqual(result.provider, 'openai')
        self.assertFalse(result.is_fallback)
        self.assertEqual(result.value.plan, 'P')
        self.assertEqual(result.value.mood_rating, 10)

    @override_settings(USE_DEEPSEEK_FOR_SOAP_NOTES=False)
    def test_deepseek_disabled_skips_it(self):
        openai_client = mock.MagicMock()
        openai_client.chat.completions.create.return_value = openai_completion('{"subjective": "S"}')

        result = providers.generate_soap_notes(
            self.transcript, self.context,
            deepseek_client=self.deepseek_client(), openai_client=openai_client,
        )
        self.assertEqual(result.provider, 'openai')

    def test_canned_notes_are_flagged(self):
        result = providers.generate_soap_notes(self.transcript, self.context)

        self.assertEqual(result.provider, 'mock')
        self.assertTrue(result.is_fallback)
        self.assertIn('openai', result.error)
        self.assertIn('session 12', result.value.subjective)

    def test_openai_error_falls_back_to_canned_notes(self):
        openai_client = mock.MagicMock()
        openai_client.chat.completions.create.side_effect = OpenAIError('quota exceeded')

        result = providers.generate_soap_notes(self.transcript, self.context, openai_client=openai_client)

        self.assertTrue(result.is_fallback)
        self.assertIn('quota exceeded', result.error)

    def test_deepseek_html_body_falls_through_to_canned_notes(self):
        gateway_page = deepseek.DeepSeekClient(
            api_key='sk-test',
            transport=httpx.MockTransport(lambda request: httpx.Response(200, text='<html>gateway</html>')),
        )
        openai_client = mock.MagicMock()
        openai_client.chat.completions.create.side_effect = OpenAIError('quota exceeded')

        result = providers.generate_soap_notes(
            self.transcript, self.context,
            deepseek_client=gateway_page, openai_client=openai_client,
        )

        self.assertEqual(result.provider, 'mock')
        self.assertTrue(result.is_fallback)
        self.assertIn('deepseek', result.error)
        openai_client.chat.completions.create.assert_called_once()

    def test_short_transcript_rejected(self):
        with self.assertRaises(ValueError):
            providers.generate_soap_notes('   hi  ', self.context)

    def test_transcribe_audio(self):
        openai_client = mock.MagicMock()
        openai_client.audio.transcriptions.create.return_value = SimpleNamespace(
            text='hello there', duration=3.2, language='en'
        )
        with tempfile.NamedTemporaryFile(suffix='.wav') as audio:
            result = providers.transcribe_audio(audio.name, client=openai_client)

        self.assertEqual(result.provider, 'openai')
        self.assertEqual(result.value.text, 'hello there')
        self.assertEqual(result.value.language, 'en')

    def test_transcribe_without_key_uses_canned_transcript(self):
        result = providers.transcribe_audio('/nonexistent/audio.wav')

        self.assertTrue(result.is_fallback)
        self.assertEqual(result.provider, 'mock')
        self.assertIn('Therapist:', result.value.text)

    def test_transcribe_without_fallback_raises(self):
        with self.assertRaises(providers.ProviderError):
            providers.transcribe_audio('/nonexistent/audio.wav', allow_fallback=False)

    def test_extract_insights(self):
        openai_client = mock.MagicMock()
        openai_client.chat.completions.create.return_value = openai_completion(
            '{"breakthroughs": ["Used breathing at work"], "concerns": [], '
            '"therapeutic_relationship": "Strong", "treatment_progress": "Improving"}'
        )

        result = providers.extract_therapeutic_insights(self.transcript, client=openai_client)

        self.assertFalse(result.is_fallback)
        self.assertEqual(result.value.breakthroughs, ['Used breathing at work'])
        self.assertEqual(result.value.treatment_progress, 'Improving')

    def test_extract_insights_fallback(self):
        result = providers.extract_therapeutic_insights(self.transcript)
        self.assertTrue(result.is_fallback)
        self.assertEqual(result.value.therapeutic_relationship, 'Good rapport established')

    def test_parse_soap_json(self):
        self.assertEqual(providers.parse_soap_json('```json\n{"plan": "P"}\n```'), {'plan': 'P'})
        self.assertEqual(providers.parse_soap_json('{"plan": "P"}'), {'plan': 'P'})
        with self.assertRaises(ValueError):
            providers.parse_soap_json('[1, 2]')
        with self.assertRaises(ValueError):
            providers.parse_soap_json('not json')

    def test_configuration_report(self):
        self.assertFalse(providers.validate_ai_configuration()['success'])
        self.assertEqual(providers.get_ai_service_stats()['status'], 'not_configured')

        with self.settings(OPENAI_API_KEY='sk-openai', DEEPSEEK_API_KEY='sk-deepseek'):
            stats = providers.get_ai_service_stats()
            self.assertEqual(stats['available_providers'], ['deepseek', 'openai'])
            self.assertEqual(stats['default_provider'], 'deepseek')
            self.assertTrue(providers.validate_ai_configuration()['success'])


class VideoTests(TestCase):
    """Test recording fetch, download and audio extraction."""

    def setUp(self):
        self.output_dir = tempfile.mkdtemp()
        self.addCleanup(shutil.rmtree, self.output_dir, ignore_errors=True)

    def make_client(self, handler):
        return DailyClient(api_key='daily-key', base_url='https://api.daily.test/v1', transport=httpx.MockTransport(handler))

    def test_get_recording(self):
        def handler(request):
            self.assertEqual(request.headers['Authorization'], 'Bearer daily-key')
            return httpx.Response(200, json={'id': 'rec1', 'room_name': 'therapy-abc', 'status': 'finished', 'duration': 1800})

        recording = self.make_client(handler).get_recording('rec1')

        self.assertTrue(recording.is_finished)
        self.assertEqual(recording.room_name, 'therapy-abc')

    def test_get_recording_error(self):
        client = self.make_client(lambda request: httpx.Response(404, text='not found'))
        with self.assertRaises(DailyError) as ctx:
            client.get_recording('missing')
        self.assertEqual(ctx.exception.status_code, 404)

    def test_process_recording_uses_access_link_and_extracts_mono_16k(self):
        def handler(request):
            if request.url.path.endswith('/access-link'):
                return httpx.Response(200, json={'download_link': 'https://download.daily.test/rec1.mp4'})
            return httpx.Response(200, content=b'video-bytes')

        recording = Recording(id='rec1', status='finished')
        with mock.patch('therapy_sessions.video.subprocess.run') as run:
            video_path, audio_path = process_recording(recording, self.output_dir, client=self.make_client(handler))

        with open(video_path, 'rb') as handle:
            self.assertEqual(handle.read(), b'video-bytes')
        self.assertTrue(audio_path.endswith('rec1.wav'))
        command = run.call_args.args[0]
        self.assertEqual(command[0], 'ffmpeg')
        self.assertIn('16000', command)
        self.assertEqual(command[command.index('-ac') + 1], '1')

    def test_download_failure(self):
        recording = Recording(id='rec1', status='finished', download_url='https://download.daily.test/rec1.mp4')
        client = self.make_client(lambda request: httpx.Response(403))
        with self.assertRaises(DailyError):
            process_recording(recording, self.output_dir, client=client)

    def test_missing_ffmpeg(self):
        with mock.patch('therapy_sessions.video.subprocess.run', side_effect=FileNotFoundError()):
            with self.assertRaises(AudioExtractionError):
                extract_audio('in.mp4', 'out.wav')

    def test_ffmpeg_failure(self):
        failure = subprocess.CalledProcessError(1, ['ffmpeg'], stderr=b'Invalid data found')
        with mock.patch('therapy_sessions.video.subprocess.run', side_effect=failure):
            with self.assertRaises(AudioExtractionError) as ctx:
                extract_audio('in.mp4', 'out.wav')
        self.assertIn('Invalid data found', str(ctx.exception))


class ProcessorTests(TestCase):
    """Test the recording pipeline with providers patched out."""

    def setUp(self):
        self.therapist = make_user('dr.kim@example.com', user_type='therapist', full_name='Dr Kim')
        self.patient = make_user('pat@example.com', full_name='Pat')
        self.session = TherapySession.objects.create(
            therapist=self.therapist,
            user=self.patient,
            session_date=next_monday(),
            session_time=time(9, 0),
            room_url='https://trpi.daily.co/therapy-abc',
            recording_id='rec1',
        )
        self.daily = mock.MagicMock()
        self.daily.get_recording.return_value = Recording(
            id='rec1', room_name='therapy-abc', status='finished',
            download_url='https://download.daily.test/rec1.mp4',
        )

        patches = {
            'process_recording': mock.patch(
                'therapy_sessions.processor.process_recording',
                return_value=('/tmp/rec1.mp4', '/tmp/rec1.wav'),
            ),
            'transcribe_audio': mock.patch(
                'therapy_sessions.processor.transcribe_audio',
                return_value=ProviderResult(Transcription('Patient talked about stress at work.'), 'openai'),
            ),
            'generate_soap_notes': mock.patch(
                'therapy_sessions.processor.generate_soap_notes',
                return_value=ProviderResult(
                    SOAPNotes(subjective='S', objective='O', assessment='A', plan='P', summary='Good session', mood_rating=6),
                    'deepseek',
                ),
            ),
            'extract_therapeutic_insights': mock.patch(
                'therapy_sessions.processor.extract_therapeutic_insights',
                return_value=ProviderResult(TherapeuticInsights(breakthroughs=['Named triggers']), 'openai'),
            ),
            'cleanup_files': mock.patch('therapy_sessions.processor.cleanup_files'),
        }
        self.mocks = {}
        for name, patcher in patches.items():
            self.mocks[name] = patcher.start()
            self.addCleanup(patcher.stop)

    def test_pipeline_stores_notes_and_notifies(self):
        result = processor.process_session_recording(self.session.pk, 'rec1', daily_client=self.daily)

        note = SessionNote.objects.get(session=self.session)
        self.assertEqual(note.processing_status, 'completed')
        self.assertEqual(note.provider, 'deepseek')
        self.assertFalse(note.is_fallback)
        self.assertEqual(note.transcript, 'Patient talked about stress at work.')
        self.assertEqual(note.soap_plan, 'P')
        self.assertEqual(note.mood_rating, 6)
        self.assertEqual(note.therapeutic_insights['breakthroughs'], ['Named triggers'])
        self.assertEqual(note.recording_id, 'rec1')
        self.assertIsNotNone(note.processing_time_ms)

        self.session.refresh_from_db()
        self.assertTrue(self.session.ai_notes_generated)
        self.assertEqual(self.session.session_summary, 'Good session')

        notification = Notification.objects.get(user=self.therapist)
        self.assertEqual(notification.type, 'ai_notes_ready')
        self.assertEqual(notification.data['session_id'], self.session.pk)

        self.assertEqual(result.provider, 'deepseek')
        self.mocks['cleanup_files'].assert_called_once_with('/tmp/rec1.mp4', '/tmp/rec1.wav')

    def test_uses_session_recording_id_by_default(self):
        processor.process_session_recording(self.session.pk, daily_client=self.daily)
        self.daily.get_recording.assert_called_once_with('rec1')

    def test_fallback_content_is_flagged(self):
        self.mocks['transcribe_audio'].return_value = ProviderResult(
            Transcription('Canned transcript text.'), 'mock', is_fallback=True, error='no key'
        )

        result = processor.process_session_recording(self.session.pk, 'rec1', daily_client=self.daily)

        self.assertTrue(result.is_fallback)
        self.assertTrue(SessionNote.objects.get(session=self.session).is_fallback)
        self.assertTrue(Notification.objects.get(user=self.therapist).data['is_fallback'])

    def test_canned_insights_are_flagged(self):
        self.mocks['extract_therapeutic_insights'].return_value = ProviderResult(
            TherapeuticInsights(therapeutic_relationship='Good rapport established'),
            'mock', is_fallback=True, error='no key',
        )

        result = processor.process_session_recording(self.session.pk, 'rec1', daily_client=self.daily)

        note = SessionNote.objects.get(session=self.session)
        self.assertTrue(result.is_fallback)
        self.assertTrue(note.is_fallback)
        self.assertEqual(note.provider, 'deepseek')
        self.assertEqual(note.therapeutic_insights['provider'], 'mock')
        self.assertTrue(note.therapeutic_insights['is_fallback'])

    def test_insights_provider_is_stored(self):
        processor.process_session_recording(self.session.pk, 'rec1', daily_client=self.daily)

        insights = SessionNote.objects.get(session=self.session).therapeutic_insights
        self.assertEqual(insights['provider'], 'openai')
        self.assertFalse(insights['is_fallback'])

    def test_recording_from_another_room_is_rejected(self):
        self.daily.get_recording.return_value = Recording(
            id='rec1', room_name='therapy-xyz', status='finished',
            download_url='https://download.daily.test/rec1.mp4',
        )

        with self.assertRaises(processor.ProcessingError):
            processor.process_session_recording(self.session.pk, 'rec1', daily_client=self.daily)

        self.mocks['process_recording'].assert_not_called()
        self.assertFalse(SessionNote.objects.get(session=self.session).transcript)
        self.assertIn('therapy-xyz', SessionProcessingError.objects.get(session=self.session).error_message)

    def test_session_without_room_is_rejected(self):
        self.session.room_url = ''
        self.session.save()

        with self.assertRaises(processor.ProcessingError):
            processor.process_session_recording(self.session.pk, 'rec1', daily_client=self.daily)
        self.mocks['process_recording'].assert_not_called()

    def test_unfinished_recording_is_recorded_as_error(self):
        self.daily.get_recording.return_value = Recording(id='rec1', status='in-progress')

        with self.assertRaises(processor.ProcessingError):
            processor.process_session_recording(self.session.pk, 'rec1', daily_client=self.daily)

        error = SessionProcessingError.objects.get(session=self.session)
        self.assertIn('not finished', error.error_message)
        self.assertEqual(SessionNote.objects.get(session=self.session).processing_status, 'error')

        state = processor.get_processing_status(self.session.pk)
        self.assertEqual(state['status'], 'error')
        self.assertIn('not finished', state['error'])

    def test_failure_after_download_still_cleans_up(self):
        self.mocks['generate_soap_notes'].side_effect = RuntimeError('provider exploded')

        with self.assertRaises(RuntimeError):
            processor.process_session_recording(self.session.pk, 'rec1', daily_client=self.daily)

        self.mocks['cleanup_files'].assert_called_once_with('/tmp/rec1.mp4', '/tmp/rec1.wav')
        self.assertEqual(SessionProcessingError.objects.count(), 1)
        self.assertFalse(Notification.objects.exists())

    def test_concurrent_run_is_skipped(self):
        SessionNote.objects.create(session=self.session, processing_status='processing')

        result = processor.process_session_recording(self.session.pk, 'rec1', daily_client=self.daily)

        self.assertIsNone(result)
        self.daily.get_recording.assert_not_called()

    def test_missing_session(self):
        with self.assertRaises(processor.ProcessingError):
            processor.process_session_recording(999999, 'rec1', daily_client=self.daily)

    def test_status_pending_then_completed(self):
        self.assertEqual(processor.get_processing_status(self.session.pk)['status'], 'pending')

        processor.process_session_recording(self.session.pk, 'rec1', daily_client=self.daily)

        state = processor.get_processing_status(self.session.pk)
        self.assertEqual(state['status'], 'completed')
        self.assertEqual(state['note'].soap_subjective, 'S')

    def test_background_run(self):
        with mock.patch('therapy_sessions.processor.process_session_recording') as run:
            thread = processor.process_session_in_background(self.session.pk, 'rec1')
            thread.join(timeout=5)

        self.assertTrue(thread.daemon)
        run.assert_called_once_with(self.session.pk, 'rec1')

    def test_retry_clears_errors(self):
        SessionProcessingError.objects.create(session=self.session, recording_id='rec1', error_message='boom')
        SessionNote.objects.create(session=self.session, processing_status='error')

        with mock.patch('therapy_sessions.processor.process_session_in_background') as background:
            processor.retry_processing(self.session.pk, 'rec1')

        background.assert_called_once_with(self.session.pk, 'rec1')
        self.assertFalse(SessionProcessingError.objects.exists())
        self.assertEqual(SessionNote.objects.get(session=self.session).processing_status, 'pending')

    def test_notes_from_transcript(self):
        note = processor.generate_notes_from_transcript(self.session, 'Patient talked about stress at work.')

        self.assertEqual(note.processing_status, 'completed')
        self.assertTrue(note.ai_generated)
        self.assertEqual(note.soap_assessment, 'A')
        self.assertEqual(note.transcript, 'Patient talked about stress at work.')


class SessionAPITests(APITestCase):
    """Test booking and session endpoints."""

    def setUp(self):
        self.therapist = make_therapist_with_schedule()
        self.patient = make_user('pat@example.com', full_name='Pat')
        self.monday = next_monday()

    def book(self, start_time='10:00'):
        return self.client.post('/api/sessions/book/', {
            'therapist_id': self.therapist.pk,
            'session_date': self.monday.isoformat(),
            'start_time': start_time,
            'notes': 'First visit',
        }, format='json')

    def test_book_session(self):
        self.client.force_authenticate(self.patient)
        response = self.book()

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertTrue(response.data['success'])
        self.assertEqual(response.data['session']['session_time'], '10:00')
        self.assertEqual(response.data['session']['therapist_name'], 'Dr Kim')

    def test_book_taken_slot(self):
        self.client.force_authenticate(self.patient)
        self.book()
        response = self.book()

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertFalse(response.data['success'])
        self.assertEqual(response.data['code'], 'VALIDATION_ERROR')

    def test_book_requires_authentication(self):
        response = self.book()
        self.assertIn(response.status_code, (status.HTTP_401_UNAUTHORIZED, status.HTTP_403_FORBIDDEN))

    def test_book_unknown_therapist(self):
        self.client.force_authenticate(self.patient)
        response = self.client.post('/api/sessions/book/', {
            'therapist_id': self.patient.pk,
            'session_date': self.monday.isoformat(),
            'start_time': '10:00',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_list_sessions(self):
        self.client.force_authenticate(self.patient)
        self.book()

        response = self.client.get('/api/sessions/', {
            'start': self.monday.isoformat(),
            'end': self.monday.isoformat(),
        })

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(response.data['sessions']), 1)

        self.client.force_authenticate(make_user('outsider@example.com'))
        response = self.client.get('/api/sessions/', {
            'start': self.monday.isoformat(),
            'end': self.monday.isoformat(),
        })
        self.assertEqual(response.data['sessions'], [])

    def test_list_requires_range(self):
        self.client.force_authenticate(self.patient)
        response = self.client.get('/api/sessions/')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_detail_hidden_from_outsiders(self):
        self.client.force_authenticate(self.patient)
        session_id = self.book().data['session']['id']

        self.client.force_authenticate(make_user('outsider@example.com'))
        response = self.client.get(f'/api/sessions/{session_id}/')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_cancel_session(self):
        self.client.force_authenticate(self.patient)
        session_id = self.book().data['session']['id']

        response = self.client.delete(f'/api/sessions/{session_id}/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(TherapySession.objects.get(pk=session_id).status, 'cancelled')

    def test_complete_session(self):
        self.client.force_authenticate(self.patient)
        session_id = self.book().data['session']['id']

        response = self.client.post(f'/api/sessions/{session_id}/complete/', {}, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

        self.client.force_authenticate(self.therapist)
        response = self.client.post(f'/api/sessions/{session_id}/complete/', {'summary': 'Intake done'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['session']['status'], 'completed')

        response = self.client.post(f'/api/sessions/{session_id}/complete/', {}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)


@override_settings(DEEPSEEK_API_KEY='', OPENAI_API_KEY='')
class NotesAPITests(APITestCase):
    """Test transcription, SOAP-notes and processing endpoints."""

    def setUp(self):
        self.therapist = make_user('dr.kim@example.com', user_type='therapist', full_name='Dr Kim')
        self.patient = make_user('pat@example.com', full_name='Pat')
        self.session = TherapySession.objects.create(
            therapist=self.therapist,
            user=self.patient,
            session_date=next_monday(),
            session_time=time(9, 0),
            room_url='https://trpi.daily.co/therapy-abc',
            recording_id='rec1',
        )
        self.client.force_authenticate(self.therapist)

    def test_transcribe(self):
        upload = SimpleUploadedFile('clip.webm', b'audio-bytes', content_type='audio/webm')
        with mock.patch(
            'therapy_sessions.views.transcribe_audio',
            return_value=ProviderResult(Transcription('hello from the session'), 'openai'),
        ) as transcribe:
            response = self.client.post('/api/transcribe/', {'file': upload, 'sessionId': self.session.pk}, format='multipart')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['text'], 'hello from the session')
        self.assertEqual(SessionNote.objects.get(session=self.session).transcript, 'hello from the session')
        path = transcribe.call_args.args[0]
        self.assertTrue(path.endswith('.webm'))
        self.assertFalse(os.path.exists(path))

    def test_transcribe_failure(self):
        upload = SimpleUploadedFile('clip.webm', b'audio-bytes', content_type='audio/webm')
        with mock.patch('therapy_sessions.views.transcribe_audio', side_effect=providers.ProviderError('Transcription failed: quota')):
            response = self.client.post('/api/transcribe/', {'file': upload, 'sessionId': self.session.pk}, format='multipart')

        self.assertEqual(response.status_code, status.HTTP_502_BAD_GATEWAY)
        self.assertEqual(response.data['code'], 'TRANSCRIPTION_FAILED')

    def test_soap_notes_from_stored_transcript(self):
        SessionNote.objects.create(session=self.session, transcript='Patient talked about stress at work.')

        response = self.client.post('/api/sessions/soap-notes/', {'sessionId': self.session.pk}, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['provider'], 'mock')
        self.assertTrue(response.data['isFallback'])
        self.assertEqual(set(response.data['soapNotes']), {'subjective', 'objective', 'assessment', 'plan'})

    def test_soap_notes_without_transcript(self):
        response = self.client.post('/api/sessions/soap-notes/', {'sessionId': self.session.pk}, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['code'], 'NO_TRANSCRIPT')

    def test_process_session(self):
        response = self.client.post('/api/ai/process-session/', {
            'sessionId': str(self.session.pk),
            'transcript': 'Patient talked about stress at work.',
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(SessionNote.objects.get(session=self.session).ai_generated)

    def test_process_session_requires_authentication(self):
        self.client.force_authenticate(None)
        response = self.client.post('/api/ai/process-session/', {
            'sessionId': str(self.session.pk),
            'transcript': 'Patient talked about stress at work.',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    @override_settings(FEATURE_ALLOW_TEST_ENDPOINTS=False)
    def test_test_sessions_disabled(self):
        response = self.client.post('/api/ai/process-session/', {
            'sessionId': 'test-session-1',
            'transcript': 'Patient talked about stress at work.',
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(response.data['code'], 'TEST_ENDPOINTS_DISABLED')

    @override_settings(FEATURE_ALLOW_TEST_ENDPOINTS=True)
    def test_test_sessions_enabled(self):
        self.client.force_authenticate(None)
        response = self.client.post('/api/ai/process-session/', {
            'sessionId': 'test-session-1',
            'transcript': 'Patient talked about stress at work.',
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(response.data['isFallback'])
        self.assertFalse(SessionNote.objects.exists())

    def test_ai_soap_notes_status(self):
        response = self.client.get(f'/api/sessions/{self.session.pk}/ai-soap-notes/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['status'], 'pending')
        self.assertIsNone(response.data['notes'])

    def test_ai_soap_notes_start(self):
        with mock.patch('therapy_sessions.processor.process_session_in_background') as background:
            response = self.client.post(f'/api/sessions/{self.session.pk}/ai-soap-notes/', {}, format='json')

        self.assertEqual(response.status_code, status.HTTP_202_ACCEPTED)
        background.assert_called_once_with(self.session.pk, 'rec1')

    def test_ai_soap_notes_already_processing(self):
        SessionNote.objects.create(session=self.session, processing_status='processing')

        with mock.patch('therapy_sessions.processor.process_session_in_background') as background:
            response = self.client.post(f'/api/sessions/{self.session.pk}/ai-soap-notes/', {}, format='json')

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        background.assert_not_called()

    def test_ai_soap_notes_patient_forbidden(self):
        self.client.force_authenticate(self.patient)
        response = self.client.post(f'/api/sessions/{self.session.pk}/ai-soap-notes/', {}, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_recording_ready_webhook(self):
        self.client.force_authenticate(None)
        with mock.patch('therapy_sessions.processor.process_session_in_background') as background:
            response = self.client.post('/api/webhooks/recording-ready/', {
                'type': 'recording.ready-to-download',
                'payload': {'recording_id': 'rec9', 'room_name': 'therapy-abc'},
            }, format='json')

        self.assertEqual(response.status_code, status.HTTP_202_ACCEPTED)
        background.assert_called_once_with(self.session.pk, 'rec9')
        self.session.refresh_from_db()
        self.assertEqual(self.session.recording_id, 'rec9')

    def test_recording_ready_webhook_unknown_room(self):
        self.client.force_authenticate(None)
        response = self.client.post('/api/webhooks/recording-ready/', {
            'recording_id': 'rec9', 'room_name': 'nowhere',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_recording_finished_event_is_processed(self):
        self.client.force_authenticate(None)
        with mock.patch('therapy_sessions.processor.process_session_in_background') as background:
            response = self.client.post('/api/webhooks/recording-ready/', {
                'event': 'recording.finished',
                'data': {'recording_id': 'rec9', 'room_name': 'therapy-abc'},
            }, format='json')

        self.assertEqual(response.status_code, status.HTTP_202_ACCEPTED)
        background.assert_called_once_with(self.session.pk, 'rec9')

    def test_other_webhook_events_are_ignored(self):
        self.client.force_authenticate(None)
        with mock.patch('therapy_sessions.processor.process_session_in_background') as background:
            response = self.client.post('/api/webhooks/recording-ready/', {
                'type': 'recording.started',
                'payload': {'recording_id': 'rec9', 'room_name': 'therapy-abc'},
            }, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(response.data['ignored'])
        background.assert_not_called()
        self.session.refresh_from_db()
        self.assertEqual(self.session.recording_id, 'rec1')

    def test_webhook_rejects_recording_from_another_room(self):
        other = TherapySession.objects.create(
            therapist=self.therapist,
            user=make_user('other@example.com'),
            session_date=next_monday(),
            session_time=time(11, 0),
            room_url='https://trpi.daily.co/therapy-xyz',
        )
        self.client.force_authenticate(None)
        with mock.patch('therapy_sessions.processor.process_session_in_background') as background:
            response = self.client.post('/api/webhooks/recording-ready/', {
                'recording_id': 'rec9', 'room_name': 'therapy-abc', 'session_id': other.pk,
            }, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        background.assert_not_called()
        other.refresh_from_db()
        self.assertEqual(other.recording_id, '')

    def test_webhook_requires_room_name(self):
        self.client.force_authenticate(None)
        response = self.client.post('/api/webhooks/recording-ready/', {
            'recording_id': 'rec9', 'session_id': self.session.pk,
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
