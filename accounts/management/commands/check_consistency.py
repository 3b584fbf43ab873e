"""
Management command to audit therapist data across users, enrollments and profiles.

Intended for ad-hoc use and for cron hosts without HTTP access to the
/api/cron/consistency-check/ endpoint.
"""

from django.core.management.base import BaseCommand, CommandError

from accounts import consistency


class Command(BaseCommand):
    help = 'Check (and optionally fix) therapist data consistency'

    def add_arguments(self, parser):
        parser.add_argument(
            '--fix',
            action='store_true',
            help='Overwrite user and profile fields from the enrollment record'
        )
        parser.add_argument(
            '--email',
            help='Check a single therapist instead of all of them'
        )

    def handle(self, *args, **options):
        email = options.get('email')
        fix = options['fix']

        if email:
            self._handle_single(email, fix)
            return

        self.stdout.write('Auditing all therapists...')
        report = consistency.audit_all_therapists()

        self.stdout.write(
            f'Total: {report.total}  consistent: {report.consistent}  '
            f'inconsistent: {report.inconsistencies}'
        )
        for item in report.issues:
            self.stdout.write(f"  {item['email']}")
            for problem in item['problems']:
                self.stdout.write(f"    - {problem}")

        if not report.inconsistencies:
            self.stdout.write(self.style.SUCCESS('All therapists consistent'))
            return

        if fix:
            result = consistency.auto_fix_all()
            for error in result.errors:
                self.stderr.write(f"  {error['email']}: {error['error']}")
            self.stdout.write(
                self.style.SUCCESS(f'Fixed {result.fixed} therapist(s), {result.failed} failed')
            )

    def _handle_single(self, email, fix):
        check = consistency.check_therapist_consistency(email)
        if check.consistent:
            self.stdout.write(self.style.SUCCESS(f'{email} is consistent'))
            return

        for problem in check.inconsistencies:
            self.stdout.write(f"  - {problem}")

        if fix:
            result = consistency.auto_fix_inconsistencies(email)
            if result.errors:
                raise CommandError('; '.join(result.errors))
            self.stdout.write(self.style.SUCCESS(f'Fixed {email}'))
