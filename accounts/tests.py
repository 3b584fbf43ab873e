"""
Tests for the accounts app.

Tests cover:
- User and enrollment managers
- Consistency checker (check, auto-fix, audit, summary)
- Cron and admin consistency endpoints
- check_consistency management command
"""

from io import StringIO
from unittest import mock

from django.core.management import call_command
from django.db import DatabaseError
from django.test import TestCase, override_settings
from rest_framework import status
from rest_framework.test import APITestCase

from . import consistency
from .models import ConsistencyCheckLog, TherapistEnrollment, TherapistProfile, User


def make_therapist(email='dr.lee@example.com', full_name='Dr Lee', with_profile=True, **enrollment_overrides):
    """Create a fully consistent, approved therapist."""
    user = User.objects.create_user(
        username=email,
        email=email,
        password='pass1234',
        full_name=full_name,
        user_type='therapist',
        is_verified=True,
        avatar_url='https://cdn.example.com/lee.png',
    )
    enrollment_fields = {
        'email': email,
        'full_name': full_name,
        'status': 'approved',
        'is_active': True,
        'profile_image_url': 'https://cdn.example.com/lee.png',
        'bio': 'CBT specialist',
        'experience_years': 8,
    }
    enrollment_fields.update(enrollment_overrides)
    enrollment = TherapistEnrollment.objects.create(**enrollment_fields)
    if with_profile:
        TherapistProfile.objects.create(
            user=user,
            profile_image_url='https://cdn.example.com/lee.png',
            bio='CBT specialist',
            experience_years=8,
            is_verified=True,
            verification_status='verified',
        )
    return user, enrollment


class UserManagerTests(TestCase):
    """Test custom user querysets."""

    def test_therapists_and_approved_therapists(self):
        make_therapist()
        User.objects.create_user(
            username='pending@example.com', email='pending@example.com',
            password='x', user_type='therapist', is_verified=False,
        )
        User.objects.create_user(username='pat@example.com', email='pat@example.com', password='x')

        self.assertEqual(User.objects.therapists().count(), 2)
        self.assertEqual(
            list(User.objects.approved_therapists().values_list('email', flat=True)),
            ['dr.lee@example.com'],
        )

    def test_is_approved_therapist(self):
        user, _ = make_therapist()
        self.assertTrue(user.is_approved_therapist)

        user.is_verified = False
        self.assertFalse(user.is_approved_therapist)

    def test_enrollment_manager_filters(self):
        TherapistEnrollment.objects.create(email='a@example.com', full_name='A', status='approved')
        TherapistEnrollment.objects.create(email='b@example.com', full_name='B')

        self.assertEqual(TherapistEnrollment.objects.approved().count(), 1)
        self.assertEqual(TherapistEnrollment.objects.pending().count(), 1)


class ConsistencyCheckTests(TestCase):
    """Test check_therapist_consistency."""

    def test_consistent_therapist(self):
        make_therapist()

        check = consistency.check_therapist_consistency('dr.lee@example.com')

        self.assertTrue(check.consistent)
        self.assertEqual(check.inconsistencies, [])
        self.assertEqual(check.data['user']['email'], 'dr.lee@example.com')

    def test_avatar_mismatch_reported(self):
        user, _ = make_therapist()
        user.avatar_url = 'https://cdn.example.com/old.png'
        user.save()

        check = consistency.check_therapist_consistency(user.email)

        self.assertFalse(check.consistent)
        self.assertTrue(any(p.startswith('Avatar mismatch') for p in check.inconsistencies))

    def test_verification_follows_enrollment_status(self):
        make_therapist(status='pending')

        check = consistency.check_therapist_consistency('dr.lee@example.com')

        self.assertTrue(any(p.startswith('Verification mismatch') for p in check.inconsistencies))

    def test_missing_records(self):
        make_therapist(with_profile=False)
        TherapistEnrollment.objects.all().delete()

        check = consistency.check_therapist_consistency('dr.lee@example.com')

        self.assertIn('Missing therapist_enrollments record', check.inconsistencies)
        self.assertIn('Missing therapist_profiles record', check.inconsistencies)

    def test_unknown_email(self):
        check = consistency.check_therapist_consistency('nobody@example.com')

        self.assertFalse(check.consistent)
        self.assertIn('Missing user record', check.inconsistencies)


class AutoFixTests(TestCase):
    """Test auto_fix_inconsistencies and auto_fix_all."""

    def test_fix_then_recheck_is_consistent(self):
        user, _ = make_therapist(full_name='Dr Lee', bio='Updated bio', experience_years=10)
        User.objects.filter(pk=user.pk).update(full_name='Lee', is_active=False)

        result = consistency.auto_fix_inconsistencies(user.email)

        self.assertTrue(result.fixed)
        self.assertEqual(result.errors, [])
        self.assertTrue(consistency.check_therapist_consistency(user.email).consistent)

        profile = TherapistProfile.objects.get(user=user)
        self.assertEqual(profile.bio, 'Updated bio')
        self.assertEqual(profile.experience_years, 10)

    def test_fix_creates_missing_profile(self):
        user, _ = make_therapist(with_profile=False)

        result = consistency.auto_fix_inconsistencies(user.email)

        self.assertTrue(result.fixed)
        self.assertTrue(TherapistProfile.objects.filter(user=user).exists())
        self.assertTrue(consistency.check_therapist_consistency(user.email).consistent)

    def test_consistent_therapist_is_not_touched(self):
        make_therapist()

        result = consistency.auto_fix_inconsistencies('dr.lee@example.com')

        self.assertFalse(result.fixed)
        self.assertEqual(result.issues, [])

    def test_missing_enrollment_cannot_be_fixed(self):
        make_therapist()
        TherapistEnrollment.objects.all().delete()

        result = consistency.auto_fix_inconsistencies('dr.lee@example.com')

        self.assertFalse(result.fixed)
        self.assertIn('No enrollment data found - cannot auto-fix', result.errors)

    def test_profile_failure_keeps_user_fix(self):
        user, _ = make_therapist(full_name='Dr Lee')
        User.objects.filter(pk=user.pk).update(full_name='Lee')
        TherapistProfile.objects.filter(user=user).update(bio='stale')

        with mock.patch.object(
            TherapistProfile.objects, 'update_or_create', side_effect=DatabaseError('disk full')
        ):
            result = consistency.auto_fix_inconsistencies(user.email)

        self.assertFalse(result.fixed)
        self.assertEqual(len(result.errors), 1)
        self.assertIn('profiles', result.errors[0])
        user.refresh_from_db()
        self.assertEqual(user.full_name, 'Dr Lee')

    def test_auto_fix_all_counts(self):
        make_therapist()
        other, _ = make_therapist(email='dr.kim@example.com', full_name='Dr Kim')
        User.objects.filter(pk=other.pk).update(full_name='Kim')

        result = consistency.auto_fix_all()

        self.assertEqual(result.total, 1)
        self.assertEqual(result.fixed, 1)
        self.assertEqual(result.failed, 0)


class AuditReportTests(TestCase):
    """Test audit_all_therapists and report helpers."""

    def setUp(self):
        make_therapist()
        other, _ = make_therapist(email='dr.kim@example.com', full_name='Dr Kim')
        User.objects.filter(pk=other.pk).update(full_name='Kim', avatar_url=None)

    def test_audit_counts(self):
        report = consistency.audit_all_therapists()

        self.assertEqual(report.total, 2)
        self.assertEqual(report.consistent, 1)
        self.assertEqual(report.inconsistencies, 1)
        self.assertEqual(report.issues[0]['email'], 'dr.kim@example.com')

    def test_summary_report(self):
        summary = consistency.get_summary_report()

        self.assertEqual(summary['consistency_rate'], 50)
        issue_names = [item['issue'] for item in summary['top_issues']]
        self.assertIn('Name mismatch', issue_names)
        self.assertIn('Avatar mismatch', issue_names)

    def test_field_consistency(self):
        result = consistency.check_field_consistency('name')

        self.assertEqual(result['inconsistent'], 1)
        self.assertEqual(result['issues'], ['dr.kim@example.com'])

    def test_field_consistency_unknown_field(self):
        with self.assertRaises(ValueError):
            consistency.check_field_consistency('shoe_size')

    def test_run_consistency_check_with_fix(self):
        report = consistency.run_consistency_check(auto_fix=True)

        self.assertEqual(report.inconsistencies, 1)
        self.assertEqual(report.auto_fixed, 1)
        self.assertEqual(consistency.audit_all_therapists().inconsistencies, 0)

        log = ConsistencyCheckLog.objects.get()
        self.assertEqual(log.total_therapists, 2)
        self.assertEqual(log.auto_fixed, 1)

    @override_settings(AUTO_FIX_CONSISTENCY=False, CONSISTENCY_ALERT_THRESHOLD=0)
    def test_run_consistency_check_warns_over_threshold(self):
        with self.assertLogs('accounts.consistency', level='WARNING') as logs:
            report = consistency.run_consistency_check()

        self.assertEqual(report.auto_fixed, 0)
        self.assertTrue(any('High number of inconsistencies' in line for line in logs.output))
        self.assertEqual(ConsistencyCheckLog.objects.get().inconsistent, 1)


@override_settings(CRON_SECRET='test-secret', AUTO_FIX_CONSISTENCY=False)
class ConsistencyCronAPITests(APITestCase):
    """Test the consistency check endpoints."""

    def setUp(self):
        self.url = '/api/cron/consistency-check/'
        make_therapist()
        other, _ = make_therapist(email='dr.kim@example.com', full_name='Dr Kim')
        User.objects.filter(pk=other.pk).update(full_name='Kim')

    def test_requires_cron_secret(self):
        response = self.client.get(self.url)
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

        response = self.client.get(self.url, HTTP_AUTHORIZATION='Bearer wrong')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_cron_run_writes_log(self):
        response = self.client.get(self.url, HTTP_AUTHORIZATION='Bearer test-secret')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['summary']['inconsistent'], 1)
        self.assertEqual(response.data['summary']['auto_fixed'], 0)

        log = ConsistencyCheckLog.objects.get()
        self.assertEqual(log.total_therapists, 2)
        self.assertEqual(log.inconsistent, 1)

    @override_settings(AUTO_FIX_CONSISTENCY=True)
    def test_cron_run_auto_fixes(self):
        response = self.client.get(self.url, HTTP_AUTHORIZATION='Bearer test-secret')

        self.assertEqual(response.data['summary']['auto_fixed'], 1)
        self.assertEqual(consistency.audit_all_therapists().inconsistencies, 0)

    def test_manual_run_requires_admin(self):
        response = self.client.post(self.url, {}, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_manual_run_as_admin(self):
        admin = User.objects.create_user(
            username='ops@example.com', email='ops@example.com', password='x', user_type='admin'
        )
        self.client.force_authenticate(user=admin)

        response = self.client.post(self.url, {'autoFix': True}, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['report']['inconsistencies'], 1)
        self.assertEqual(response.data['fixResult']['fixed'], 1)
        self.assertEqual(response.data['summary']['consistency_rate'], 100)

    def test_single_therapist_check_and_fix(self):
        admin = User.objects.create_user(
            username='ops@example.com', email='ops@example.com', password='x', is_staff=True
        )
        self.client.force_authenticate(user=admin)

        response = self.client.get('/api/admin/consistency/', {'email': 'dr.kim@example.com'})
        self.assertFalse(response.data['check']['consistent'])

        response = self.client.post('/api/admin/consistency/', {'email': 'dr.kim@example.com'}, format='json')
        self.assertTrue(response.data['success'])
        self.assertTrue(response.data['result']['fixed'])


class CheckConsistencyCommandTests(TestCase):
    """Test the check_consistency management command."""

    def test_report_only(self):
        user, _ = make_therapist()
        User.objects.filter(pk=user.pk).update(full_name='Lee')
        out = StringIO()

        call_command('check_consistency', stdout=out)

        self.assertIn('inconsistent: 1', out.getvalue())
        self.assertIn('Name mismatch', out.getvalue())
        self.assertFalse(consistency.check_therapist_consistency(user.email).consistent)

    def test_fix_all(self):
        user, _ = make_therapist()
        User.objects.filter(pk=user.pk).update(full_name='Lee')
        out = StringIO()

        call_command('check_consistency', '--fix', stdout=out)

        self.assertIn('Fixed 1 therapist(s)', out.getvalue())
        self.assertTrue(consistency.check_therapist_consistency(user.email).consistent)

    def test_single_email(self):
        make_therapist()
        out = StringIO()

        call_command('check_consistency', '--email', 'dr.lee@example.com', stdout=out)

        self.assertIn('dr.lee@example.com is consistent', out.getvalue())
