"""
Management command to print a therapist's bookable slots.

Useful for checking what patients will see after a schedule change.
"""

from datetime import timedelta

from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand, CommandError
from django.utils import timezone

from availability import slots


class Command(BaseCommand):
    help = 'List bookable slots for a therapist over the coming days'

    def add_arguments(self, parser):
        parser.add_argument('email', help='Therapist email')
        parser.add_argument(
            '--days',
            type=int,
            default=7,
            help='Number of days ahead to list, starting today (default: 7)'
        )

    def handle(self, *args, **options):
        email = options['email']
        days_ahead = options['days']

        therapist = get_user_model().objects.therapists().filter(email=email).first()
        if therapist is None:
            raise CommandError(f'No therapist with email {email}')

        start = timezone.localdate()
        end = start + timedelta(days=days_ahead - 1)

        try:
            found = slots.generate_availability_slots(therapist, start, end)
        except ValueError as exc:
            raise CommandError(str(exc))

        self.stdout.write(f'Bookable slots for {email} from {start} to {end}:')

        current_date = None
        for slot in found:
            if slot.date != current_date:
                current_date = slot.date
                self.stdout.write(f'  {current_date:%A %Y-%m-%d}')
            marker = ' (override)' if slot.is_override else ''
            self.stdout.write(f'    {slot.start_time}-{slot.end_time} {slot.session_type}{marker}')

        self.stdout.write(
            self.style.SUCCESS(f'Found {len(found)} slot(s)')
        )
