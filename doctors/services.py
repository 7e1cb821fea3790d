import logging
from datetime import datetime, timedelta

from django.conf import settings
from django.db import transaction
from django.utils import timezone
from rest_framework.exceptions import ValidationError

from config.exceptions import ConflictError, NotFoundError
from .models import Doctor, Slot
from .utils import parse_date

logger = logging.getLogger(__name__)


def _sunday_first_weekday(day):
    """0=Sunday ... 6=Saturday, the numbering used by Availability."""
    return (day.weekday() + 1) % 7


def _normalize_duration(slot_duration_minutes):
    default = settings.DEFAULT_SLOT_DURATION_MINUTES
    try:
        duration = int(slot_duration_minutes)
    except (TypeError, ValueError):
        return default
    return duration if duration > 0 else default


def iter_window_slots(day, window_start, window_end, duration_minutes):
    """
    Yield ``(start_time, end_time)`` pairs that fit entirely inside the
    window. A trailing remainder shorter than the duration is dropped.
    """
    step = timedelta(minutes=duration_minutes)
    current = datetime.combine(day, window_start)
    window_close = datetime.combine(day, window_end)

    while current + step <= window_close:
        yield current.time(), (current + step).time()
        current += step


def generate_slots(doctor, start_date, end_date, slot_duration_minutes=None, timezone_label=None):
    """
    Generate slots for a doctor between start_date and end_date (inclusive)
    from the doctor's weekly availability.

    Each slot is inserted only if (doctor, date, start_time) does not exist
    yet, so overlapping or concurrent runs never duplicate slots. Returns the
    number of slots actually created.
    """
    start = parse_date(start_date)
    end = parse_date(end_date)

    errors = {}
    if start is None:
        errors['start_date'] = ['Invalid start_date']
    if end is None:
        errors['end_date'] = ['Invalid end_date']
    if errors:
        raise ValidationError(errors)
    if end < start:
        raise ValidationError({'end_date': ['end_date must be after or equal to start_date']})

    duration = _normalize_duration(slot_duration_minutes)
    timezone_label = timezone_label or settings.DEFAULT_SLOT_TIMEZONE

    windows = list(doctor.availabilities.filter(is_active=True))
    if not windows:
        return 0

    created_count = 0
    current_date = start

    while current_date <= end:
        day_of_week = _sunday_first_weekday(current_date)

        for window in windows:
            if window.day_of_week != day_of_week:
                continue

            for slot_start, slot_end in iter_window_slots(current_date, window.start_time, window.end_time, duration):
                # get_or_create recovers from the unique-constraint race itself
                _, created = Slot.objects.get_or_create(
                    doctor=doctor,
                    date=current_date,
                    start_time=slot_start,
                    defaults={
                        'end_time': slot_end,
                        'status': Slot.Status.AVAILABLE,
                        'timezone': timezone_label,
                    },
                )
                if created:
                    created_count += 1

        current_date += timedelta(days=1)

    logger.info(
        'Generated %s slots for doctor %s between %s and %s',
        created_count, doctor.pk, start, end,
    )
    return created_count


def generate_all_doctor_slots(days_ahead=30, slot_duration_minutes=None, timezone_label=None):
    """Generate slots for every doctor from today over the next days_ahead days."""
    today = timezone.localdate()
    end = today + timedelta(days=max(days_ahead, 1) - 1)
    total_slots = 0

    for doctor in Doctor.objects.all():
        total_slots += generate_slots(doctor, today, end, slot_duration_minutes, timezone_label)

    return total_slots


def _has_active_booking(slot):
    from bookings.models import Booking

    return Booking.objects.active().filter(slot=slot).exists()


def block_slot(slot_id):
    """Mark a slot as blocked. There is no unblock path."""
    with transaction.atomic():
        slot = Slot.objects.select_for_update().filter(pk=slot_id).first()
        if slot is None:
            raise NotFoundError('Slot not found')
        if _has_active_booking(slot):
            raise ConflictError('Cannot block a slot with an active booking')

        slot.status = Slot.Status.BLOCKED
        slot.save(update_fields=['status', 'updated_at'])

    logger.info('Blocked slot %s', slot.pk)
    return slot


def delete_slot(slot_id):
    """Delete a slot that no active booking depends on."""
    with transaction.atomic():
        slot = Slot.objects.select_for_update().filter(pk=slot_id).first()
        if slot is None:
            raise NotFoundError('Slot not found')
        if _has_active_booking(slot):
            raise ConflictError('Cannot delete a slot with an active booking')

        slot.delete()

    logger.info('Deleted slot %s', slot_id)
