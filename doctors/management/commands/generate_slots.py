from django.conf import settings
from django.core.management.base import BaseCommand
from doctors.services import generate_all_doctor_slots


class Command(BaseCommand):
    help = 'Generate slots for all doctors from their weekly availability'

    def add_arguments(self, parser):
        parser.add_argument(
            '--days',
            type=int,
            default=30,
            help='Number of days ahead to generate slots (default: 30)'
        )
        parser.add_argument(
            '--duration',
            type=int,
            default=settings.DEFAULT_SLOT_DURATION_MINUTES,
            help='Slot length in minutes'
        )
        parser.add_argument(
            '--timezone',
            default=settings.DEFAULT_SLOT_TIMEZONE,
            help='Timezone label stored on each slot'
        )

    def handle(self, *args, **options):
        days = options['days']

        self.stdout.write(f'Generating slots for next {days} days...\n')

        total = generate_all_doctor_slots(
            days_ahead=days,
            slot_duration_minutes=options['duration'],
            timezone_label=options['timezone'],
        )

        self.stdout.write(
            self.style.SUCCESS(f'\nTotal slots generated: {total}')
        )
