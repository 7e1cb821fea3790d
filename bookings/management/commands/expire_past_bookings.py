from django.core.management.base import BaseCommand

from bookings.services import expire_past_bookings


class Command(BaseCommand):
    help = 'Mark pending and confirmed bookings whose slot has ended as expired'

    def handle(self, *args, **options):
        count = expire_past_bookings()

        self.stdout.write(
            self.style.SUCCESS(f'Expired bookings: {count}')
        )
