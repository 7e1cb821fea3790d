"""
Booking engine.

Every operation that touches both a booking and a slot runs in one
``transaction.atomic()`` block. The partial unique constraint on
``Booking.slot`` is the final guard against double booking; the checks that
precede it only exist to produce a specific error message.

Lock order is always booking first, then slots by ascending primary key.
"""
import logging

from django.db import IntegrityError, transaction
from django.utils import timezone

from config.exceptions import ConflictError, ForbiddenError, InvalidStateError, NotFoundError
from doctors.models import Doctor, Slot
from doctors.utils import is_slot_in_past
from .models import Booking

logger = logging.getLogger(__name__)

SLOT_ALREADY_BOOKED = 'Slot is already booked'

CANCEL_REFUSALS = {
    Booking.Status.CANCELLED: 'Booking is already cancelled',
    Booking.Status.COMPLETED: 'Cannot cancel a completed booking',
    Booking.Status.EXPIRED: 'Cannot cancel an expired booking',
}

RESCHEDULE_REFUSALS = {
    Booking.Status.CANCELLED: 'Cannot reschedule a cancelled booking',
    Booking.Status.COMPLETED: 'Cannot reschedule a completed booking',
    Booking.Status.EXPIRED: 'Cannot reschedule an expired booking',
}

COMPLETE_REFUSALS = {
    Booking.Status.COMPLETED: 'Booking is already completed',
    Booking.Status.CANCELLED: 'Cannot complete a cancelled booking',
    Booking.Status.EXPIRED: 'Cannot complete an expired booking',
}


def _refuse(booking, refusals):
    raise InvalidStateError(refusals.get(booking.status, f'Booking is {booking.status}'))


def _require_transition(booking, new_status, refusals):
    if not booking.can_transition_to(new_status):
        _refuse(booking, refusals)


def _slot_has_active_booking(slot_id, exclude_booking_id=None):
    queryset = Booking.objects.active().filter(slot_id=slot_id)
    if exclude_booking_id is not None:
        queryset = queryset.exclude(pk=exclude_booking_id)
    return queryset.exists()


def _lock_booking(booking_id):
    booking = Booking.objects.select_for_update().filter(pk=booking_id).first()
    if booking is None:
        raise NotFoundError('Booking not found')
    return booking


def _lock_slots(*slot_ids):
    """
    Lock the given slots in one query, ordered by pk, and return them keyed
    by pk. ``None`` ids are ignored and missing slots are absent from the
    result.
    """
    wanted = [slot_id for slot_id in slot_ids if slot_id is not None]
    if not wanted:
        return {}
    locked = Slot.objects.select_for_update().filter(pk__in=wanted).order_by('pk')
    return {slot.pk: slot for slot in locked}


def _load_for_display(booking_id):
    return Booking.objects.select_related('user', 'doctor', 'slot').get(pk=booking_id)


def create_booking(user, slot_id):
    slot = Slot.objects.filter(pk=slot_id).first()
    if slot is None:
        raise NotFoundError('Slot not found')

    if is_slot_in_past(slot):
        raise InvalidStateError('Cannot book a slot in the past')

    if slot.status != Slot.Status.AVAILABLE:
        raise ConflictError('Slot is not available for booking')

    if _slot_has_active_booking(slot.pk):
        raise ConflictError(SLOT_ALREADY_BOOKED)

    doctor = Doctor.objects.filter(pk=slot.doctor_id).first()
    if doctor is None:
        raise NotFoundError('Doctor not found')

    try:
        with transaction.atomic():
            flipped = Slot.objects.filter(
                pk=slot.pk,
                status=Slot.Status.AVAILABLE,
            ).update(status=Slot.Status.BOOKED, updated_at=timezone.now())

            if not flipped:
                raise ConflictError(SLOT_ALREADY_BOOKED)

            booking = Booking.objects.create(
                user=user,
                slot=slot,
                doctor=doctor,
                status=Booking.Status.CONFIRMED,
            )
    except IntegrityError:
        logger.warning('Constraint rejected booking of slot %s by user %s', slot.pk, user.pk)
        raise ConflictError(SLOT_ALREADY_BOOKED)

    logger.info('Booking %s created for slot %s by user %s', booking.pk, slot.pk, user.pk)
    return _load_for_display(booking.pk)


def cancel_booking(booking_id, acting_user, reason=None):
    with transaction.atomic():
        booking = _lock_booking(booking_id)

        if booking.user_id != acting_user.pk and not acting_user.is_admin:
            raise ForbiddenError('Not authorized to cancel this booking')

        _require_transition(booking, Booking.Status.CANCELLED, CANCEL_REFUSALS)

        slot = _lock_slots(booking.slot_id).get(booking.slot_id)
        if is_slot_in_past(slot):
            raise InvalidStateError('Cannot cancel a booking for a past slot')

        booking.status = Booking.Status.CANCELLED
        if reason:
            booking.cancellation_reason = reason
        booking.save(update_fields=['status', 'cancellation_reason', 'updated_at'])

        if slot is not None:
            slot.status = Slot.Status.AVAILABLE
            slot.save(update_fields=['status', 'updated_at'])

    logger.info('Booking %s cancelled by user %s', booking.pk, acting_user.pk)
    return _load_for_display(booking.pk)


def reschedule_booking(booking_id, acting_user, new_slot_id):
    try:
        with transaction.atomic():
            booking = _lock_booking(booking_id)

            if booking.user_id != acting_user.pk:
                raise ForbiddenError('Not authorized to reschedule this booking')

            # Rescheduling keeps the status, so only active bookings qualify.
            if not booking.is_active:
                _refuse(booking, RESCHEDULE_REFUSALS)

            old_slot_id = booking.slot_id
            slots = _lock_slots(old_slot_id, new_slot_id)
            old_slot = slots.get(old_slot_id)
            new_slot = slots.get(new_slot_id)

            if is_slot_in_past(old_slot):
                raise InvalidStateError('Cannot reschedule a booking for a past slot')

            if new_slot is None:
                raise NotFoundError('New slot not found')
            if is_slot_in_past(new_slot):
                raise InvalidStateError('Cannot reschedule to a past slot')
            if new_slot.status != Slot.Status.AVAILABLE:
                raise ConflictError('New slot is not available')
            if _slot_has_active_booking(new_slot.pk, exclude_booking_id=booking.pk):
                raise ConflictError('New slot is already booked')
            if new_slot.doctor_id != booking.doctor_id:
                raise InvalidStateError('New slot must belong to the same doctor')

            if old_slot is not None:
                old_slot.status = Slot.Status.AVAILABLE
                old_slot.save(update_fields=['status', 'updated_at'])

            new_slot.status = Slot.Status.BOOKED
            new_slot.save(update_fields=['status', 'updated_at'])

            booking.slot = new_slot
            booking.save(update_fields=['slot', 'updated_at'])
    except IntegrityError:
        logger.warning('Constraint rejected reschedule of booking %s to slot %s', booking_id, new_slot_id)
        raise ConflictError('New slot is already booked')

    logger.info('Booking %s moved from slot %s to slot %s', booking.pk, old_slot_id, new_slot_id)
    return _load_for_display(booking.pk)


def complete_booking(booking_id):
    with transaction.atomic():
        booking = _lock_booking(booking_id)

        _require_transition(booking, Booking.Status.COMPLETED, COMPLETE_REFUSALS)

        slot = _lock_slots(booking.slot_id).get(booking.slot_id)
        if not is_slot_in_past(slot):
            raise InvalidStateError('Cannot complete a booking for a future slot')

        booking.status = Booking.Status.COMPLETED
        booking.save(update_fields=['status', 'updated_at'])

    logger.info('Booking %s completed', booking.pk)
    return _load_for_display(booking.pk)


def expire_past_bookings():
    """
    Mark bookings whose slot has ended as expired, for every status the
    transition table lets expire.

    Returns the number of bookings changed; a second run returns 0.
    """
    expirable = Booking.objects.filter(
        status__in=Booking.statuses_leading_to(Booking.Status.EXPIRED),
    )
    candidates = expirable.filter(slot__isnull=False).select_related('slot')
    expired_ids = [booking.pk for booking in candidates if is_slot_in_past(booking.slot)]

    if not expired_ids:
        return 0

    count = expirable.filter(pk__in=expired_ids).update(
        status=Booking.Status.EXPIRED,
        updated_at=timezone.now(),
    )

    logger.info('Expired %s past bookings', count)
    return count
