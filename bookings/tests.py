import threading
from io import StringIO
import pytest
from datetime import date, time, timedelta
from unittest.mock import patch
from django.core.management import call_command
from django.db import IntegrityError, connection, transaction
from django.test.utils import CaptureQueriesContext
from django.urls import reverse
from rest_framework import status

from config.exceptions import ConflictError, ForbiddenError, InvalidStateError, NotFoundError
from bookings import services
from bookings.models import Booking
from bookings.services import (
    create_booking,
    cancel_booking,
    reschedule_booking,
    complete_booking,
    expire_past_bookings,
)
from doctors.models import Slot


# ============================================
# MODEL TESTS
# ============================================

class TestBookingStatusTransitions:

    def test_transition_table_covers_every_status(self):
        assert set(Booking.ALLOWED_TRANSITIONS) == set(Booking.Status)

    def test_terminal_statuses_have_no_exits(self):
        for terminal in (Booking.Status.CANCELLED, Booking.Status.COMPLETED, Booking.Status.EXPIRED):
            assert Booking.ALLOWED_TRANSITIONS[terminal] == set()

    def test_active_statuses_can_close(self):
        booking = Booking(status=Booking.Status.CONFIRMED)

        assert booking.can_transition_to(Booking.Status.CANCELLED)
        assert booking.can_transition_to(Booking.Status.EXPIRED)
        assert not booking.can_transition_to(Booking.Status.PENDING)
        assert booking.is_active


@pytest.mark.django_db
class TestBookingConstraint:

    def test_second_active_booking_on_slot_rejected(self, booking, other_user):
        with pytest.raises(IntegrityError):
            with transaction.atomic():
                Booking.objects.create(
                    user=other_user,
                    doctor=booking.doctor,
                    slot=booking.slot,
                    status=Booking.Status.PENDING,
                )

    def test_historical_bookings_do_not_count(self, booking, other_user):
        Booking.objects.filter(pk=booking.pk).update(status=Booking.Status.CANCELLED)

        Booking.objects.create(
            user=other_user,
            doctor=booking.doctor,
            slot=booking.slot,
            status=Booking.Status.CONFIRMED,
        )

        assert Booking.objects.filter(slot=booking.slot).count() == 2
        assert Booking.objects.active().filter(slot=booking.slot).count() == 1


# ============================================
# CREATE TESTS
# ============================================

@pytest.mark.django_db
class TestCreateBooking:

    def test_create_booking(self, regular_user, future_slot):
        booking = create_booking(regular_user, future_slot.pk)

        future_slot.refresh_from_db()
        assert booking.status == Booking.Status.CONFIRMED
        assert booking.user == regular_user
        assert booking.doctor == future_slot.doctor
        assert future_slot.status == Slot.Status.BOOKED

    def test_missing_slot(self, regular_user):
        with pytest.raises(NotFoundError):
            create_booking(regular_user, 999999)

    def test_past_slot_rejected(self, regular_user, past_slot):
        with pytest.raises(InvalidStateError) as exc_info:
            create_booking(regular_user, past_slot.pk)

        assert str(exc_info.value.detail) == 'Cannot book a slot in the past'
        assert not Booking.objects.exists()

    def test_blocked_slot_rejected(self, regular_user, future_slot):
        future_slot.status = Slot.Status.BLOCKED
        future_slot.save()

        with pytest.raises(ConflictError) as exc_info:
            create_booking(regular_user, future_slot.pk)

        assert str(exc_info.value.detail) == 'Slot is not available for booking'

    def test_booked_slot_rejected(self, booking, other_user):
        with pytest.raises(ConflictError):
            create_booking(other_user, booking.slot_id)

        assert Booking.objects.count() == 1

    def test_stale_slot_status_caught_by_active_booking_check(self, booking, other_user):
        """Slot wrongly marked available still cannot be double booked"""
        Slot.objects.filter(pk=booking.slot_id).update(status=Slot.Status.AVAILABLE)

        with pytest.raises(ConflictError) as exc_info:
            create_booking(other_user, booking.slot_id)

        assert str(exc_info.value.detail) == 'Slot is already booked'
        assert Booking.objects.count() == 1

    def test_constraint_violation_becomes_conflict(self, booking, other_user):
        """Both pre-checks pass but the database constraint still refuses the insert"""
        Slot.objects.filter(pk=booking.slot_id).update(status=Slot.Status.AVAILABLE)

        with patch('bookings.services._slot_has_active_booking', return_value=False):
            with pytest.raises(ConflictError) as exc_info:
                create_booking(other_user, booking.slot_id)

        assert str(exc_info.value.detail) == 'Slot is already booked'
        assert Booking.objects.count() == 1
        assert Slot.objects.get(pk=booking.slot_id).status == Slot.Status.AVAILABLE

    def test_lost_status_flip_becomes_conflict(self, regular_user, future_slot):
        """Another request booked the slot between the checks and the write"""
        original_filter = Slot.objects.filter

        def racing_filter(*args, **kwargs):
            if kwargs.get('status') == Slot.Status.AVAILABLE:
                Slot.objects.all().update(status=Slot.Status.BOOKED)
            return original_filter(*args, **kwargs)

        with patch.object(Slot.objects, 'filter', side_effect=racing_filter):
            with pytest.raises(ConflictError):
                create_booking(regular_user, future_slot.pk)

        assert not Booking.objects.exists()


@pytest.mark.django_db(transaction=True)
class TestConcurrentBooking:
    """
    Bookings committed from separate database connections.

    The first test runs on any backend. The threaded stress test needs row
    locks, so it only runs when DATABASE_URL points at PostgreSQL.
    """

    def test_request_that_passed_checks_loses_to_committed_rival(self, future_slot, regular_user, other_user):
        real_check = services._slot_has_active_booking
        caller = threading.get_ident()
        rival = {}

        def rival_books():
            try:
                rival['booking'] = create_booking(other_user, future_slot.pk)
            finally:
                connection.close()

        def check_then_let_rival_commit(*args, **kwargs):
            result = real_check(*args, **kwargs)
            # The rival runs to commit after this request has passed every check
            if threading.get_ident() == caller and 'started' not in rival:
                rival['started'] = True
                thread = threading.Thread(target=rival_books)
                thread.start()
                thread.join()
            return result

        with patch('bookings.services._slot_has_active_booking', side_effect=check_then_let_rival_commit):
            with pytest.raises(ConflictError) as exc_info:
                create_booking(regular_user, future_slot.pk)

        assert str(exc_info.value.detail) == 'Slot is already booked'
        assert rival['booking'].user_id == other_user.pk
        assert Booking.objects.active().filter(slot=future_slot).count() == 1
        assert Slot.objects.get(pk=future_slot.pk).status == Slot.Status.BOOKED

    def test_only_one_of_many_concurrent_creates_succeeds(self, future_slot):
        if connection.vendor != 'postgresql':
            pytest.skip('Set DATABASE_URL to a PostgreSQL database to run')

        from accounts.models import User

        users = [
            User.objects.create_user(email=f'racer{i}@test.com', password='testpass123')
            for i in range(8)
        ]
        barrier = threading.Barrier(len(users))
        results = []
        lock = threading.Lock()

        def attempt(user):
            barrier.wait()
            try:
                create_booking(user, future_slot.pk)
                outcome = 'ok'
            except ConflictError:
                outcome = 'conflict'
            finally:
                connection.close()
            with lock:
                results.append(outcome)

        threads = [threading.Thread(target=attempt, args=(user,)) for user in users]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert results.count('ok') == 1
        assert results.count('conflict') == len(users) - 1
        assert Booking.objects.active().filter(slot=future_slot).count() == 1


# ============================================
# CANCEL TESTS
# ============================================

@pytest.mark.django_db
class TestCancelBooking:

    def test_owner_cancels_and_slot_reopens(self, booking, regular_user):
        cancelled = cancel_booking(booking.pk, regular_user, reason='Feeling better')

        assert cancelled.status == Booking.Status.CANCELLED
        assert cancelled.cancellation_reason == 'Feeling better'
        assert cancelled.slot.status == Slot.Status.AVAILABLE

    def test_cancelled_slot_can_be_booked_again(self, booking, regular_user, other_user):
        cancel_booking(booking.pk, regular_user)

        rebooked = create_booking(other_user, booking.slot_id)

        assert rebooked.status == Booking.Status.CONFIRMED
        assert Booking.objects.filter(slot_id=booking.slot_id).count() == 2

    def test_admin_can_cancel_any_booking(self, booking, admin_user):
        assert cancel_booking(booking.pk, admin_user).status == Booking.Status.CANCELLED

    def test_other_user_forbidden(self, booking, other_user):
        with pytest.raises(ForbiddenError):
            cancel_booking(booking.pk, other_user)

    def test_missing_booking(self, regular_user):
        with pytest.raises(NotFoundError):
            cancel_booking(999999, regular_user)

    @pytest.mark.parametrize('current, message', [
        (Booking.Status.CANCELLED, 'Booking is already cancelled'),
        (Booking.Status.COMPLETED, 'Cannot cancel a completed booking'),
        (Booking.Status.EXPIRED, 'Cannot cancel an expired booking'),
    ])
    def test_closed_booking_cannot_be_cancelled(self, booking, regular_user, current, message):
        Booking.objects.filter(pk=booking.pk).update(status=current)

        with pytest.raises(InvalidStateError) as exc_info:
            cancel_booking(booking.pk, regular_user)

        assert str(exc_info.value.detail) == message

    def test_pending_booking_can_be_cancelled(self, booking, regular_user):
        Booking.objects.filter(pk=booking.pk).update(status=Booking.Status.PENDING)

        assert cancel_booking(booking.pk, regular_user).status == Booking.Status.CANCELLED

    def test_cancellation_follows_transition_table(self, booking, regular_user):
        narrowed = {Booking.Status.CONFIRMED: {Booking.Status.COMPLETED, Booking.Status.EXPIRED}}

        with patch.dict(Booking.ALLOWED_TRANSITIONS, narrowed):
            with pytest.raises(InvalidStateError) as exc_info:
                cancel_booking(booking.pk, regular_user)

        assert str(exc_info.value.detail) == 'Booking is confirmed'
        assert Slot.objects.get(pk=booking.slot_id).status == Slot.Status.BOOKED

    def test_past_slot_cannot_be_cancelled(self, past_booking, regular_user):
        with pytest.raises(InvalidStateError) as exc_info:
            cancel_booking(past_booking.pk, regular_user)

        assert str(exc_info.value.detail) == 'Cannot cancel a booking for a past slot'
        past_booking.refresh_from_db()
        assert past_booking.status == Booking.Status.CONFIRMED


# ============================================
# RESCHEDULE TESTS
# ============================================

@pytest.mark.django_db
class TestRescheduleBooking:

    def test_reschedule_moves_both_slots(self, booking, regular_user, second_future_slot):
        old_slot_id = booking.slot_id

        moved = reschedule_booking(booking.pk, regular_user, second_future_slot.pk)

        assert moved.slot_id == second_future_slot.pk
        assert moved.status == Booking.Status.CONFIRMED
        assert Slot.objects.get(pk=old_slot_id).status == Slot.Status.AVAILABLE
        assert Slot.objects.get(pk=second_future_slot.pk).status == Slot.Status.BOOKED

    def test_reschedule_locks_both_slots_together(self, booking, regular_user, second_future_slot):
        with patch('bookings.services._lock_slots', wraps=services._lock_slots) as lock_slots:
            reschedule_booking(booking.pk, regular_user, second_future_slot.pk)

        lock_slots.assert_called_once_with(booking.slot_id, second_future_slot.pk)

    def test_lock_slots_uses_one_ordered_query(self, future_slot, second_future_slot):
        with CaptureQueriesContext(connection) as queries:
            locked = services._lock_slots(second_future_slot.pk, None, future_slot.pk)

        assert len(queries.captured_queries) == 1
        assert 'ORDER BY' in queries.captured_queries[0]['sql']
        assert list(locked) == sorted([future_slot.pk, second_future_slot.pk])

    def test_lock_slots_without_ids_runs_no_query(self):
        with CaptureQueriesContext(connection) as queries:
            assert services._lock_slots(None) == {}

        assert queries.captured_queries == []

    def test_admin_cannot_reschedule_for_user(self, booking, admin_user, second_future_slot):
        with pytest.raises(ForbiddenError):
            reschedule_booking(booking.pk, admin_user, second_future_slot.pk)

    def test_new_slot_missing(self, booking, regular_user):
        with pytest.raises(NotFoundError) as exc_info:
            reschedule_booking(booking.pk, regular_user, 999999)

        assert str(exc_info.value.detail) == 'New slot not found'

    def test_new_slot_in_past(self, booking, regular_user, past_slot):
        with pytest.raises(InvalidStateError):
            reschedule_booking(booking.pk, regular_user, past_slot.pk)

    def test_current_slot_in_past(self, past_booking, regular_user, future_slot):
        with pytest.raises(InvalidStateError) as exc_info:
            reschedule_booking(past_booking.pk, regular_user, future_slot.pk)

        assert str(exc_info.value.detail) == 'Cannot reschedule a booking for a past slot'

    def test_new_slot_unavailable(self, booking, regular_user, second_future_slot):
        second_future_slot.status = Slot.Status.BLOCKED
        second_future_slot.save()

        with pytest.raises(ConflictError):
            reschedule_booking(booking.pk, regular_user, second_future_slot.pk)

    def test_new_slot_already_booked(self, booking, regular_user, other_user, second_future_slot):
        create_booking(other_user, second_future_slot.pk)

        with pytest.raises(ConflictError):
            reschedule_booking(booking.pk, regular_user, second_future_slot.pk)

    def test_new_slot_other_doctor(self, booking, regular_user, other_doctor):
        foreign_slot = Slot.objects.create(
            doctor=other_doctor,
            date=date.today() + timedelta(days=3),
            start_time=time(9, 0),
            end_time=time(9, 30),
        )

        with pytest.raises(InvalidStateError) as exc_info:
            reschedule_booking(booking.pk, regular_user, foreign_slot.pk)

        assert str(exc_info.value.detail) == 'New slot must belong to the same doctor'

    def test_failed_reschedule_leaves_state_untouched(self, booking, regular_user, other_doctor):
        foreign_slot = Slot.objects.create(
            doctor=other_doctor,
            date=date.today() + timedelta(days=3),
            start_time=time(9, 0),
            end_time=time(9, 30),
        )

        with pytest.raises(InvalidStateError):
            reschedule_booking(booking.pk, regular_user, foreign_slot.pk)

        booking.refresh_from_db()
        foreign_slot.refresh_from_db()
        assert booking.slot.status == Slot.Status.BOOKED
        assert foreign_slot.status == Slot.Status.AVAILABLE

    def test_cancelled_booking_cannot_be_rescheduled(self, booking, regular_user, second_future_slot):
        cancel_booking(booking.pk, regular_user)

        with pytest.raises(InvalidStateError) as exc_info:
            reschedule_booking(booking.pk, regular_user, second_future_slot.pk)

        assert str(exc_info.value.detail) == 'Cannot reschedule a cancelled booking'


# ============================================
# COMPLETE / EXPIRE TESTS
# ============================================

@pytest.mark.django_db
class TestCompleteBooking:

    def test_complete_past_booking(self, past_booking):
        completed = complete_booking(past_booking.pk)

        assert completed.status == Booking.Status.COMPLETED
        assert completed.slot.status == Slot.Status.BOOKED

    def test_future_booking_cannot_be_completed(self, booking):
        with pytest.raises(InvalidStateError) as exc_info:
            complete_booking(booking.pk)

        assert str(exc_info.value.detail) == 'Cannot complete a booking for a future slot'

    def test_already_completed(self, past_booking):
        complete_booking(past_booking.pk)

        with pytest.raises(InvalidStateError) as exc_info:
            complete_booking(past_booking.pk)

        assert str(exc_info.value.detail) == 'Booking is already completed'

    def test_booking_without_slot_cannot_be_completed(self, past_booking):
        Booking.objects.filter(pk=past_booking.pk).update(slot=None)

        with pytest.raises(InvalidStateError) as exc_info:
            complete_booking(past_booking.pk)

        assert str(exc_info.value.detail) == 'Cannot complete a booking for a future slot'
        past_booking.refresh_from_db()
        assert past_booking.status == Booking.Status.CONFIRMED

    def test_pending_past_booking_can_be_completed(self, past_booking):
        Booking.objects.filter(pk=past_booking.pk).update(status=Booking.Status.PENDING)

        assert complete_booking(past_booking.pk).status == Booking.Status.COMPLETED

    def test_completion_follows_transition_table(self, past_booking):
        narrowed = {Booking.Status.CONFIRMED: {Booking.Status.CANCELLED, Booking.Status.EXPIRED}}

        with patch.dict(Booking.ALLOWED_TRANSITIONS, narrowed):
            with pytest.raises(InvalidStateError):
                complete_booking(past_booking.pk)


@pytest.mark.django_db
class TestExpirePastBookings:

    def test_only_active_past_bookings_expire(self, past_booking, booking, other_user, doctor):
        old_slot = Slot.objects.create(
            doctor=doctor,
            date=date.today() - timedelta(days=3),
            start_time=time(8, 0),
            end_time=time(8, 30),
        )
        cancelled = Booking.objects.create(
            user=other_user, doctor=doctor, slot=old_slot, status=Booking.Status.CANCELLED
        )
        pending_slot = Slot.objects.create(
            doctor=doctor,
            date=date.today() - timedelta(days=2),
            start_time=time(8, 0),
            end_time=time(8, 30),
            status=Slot.Status.BOOKED,
        )
        pending = Booking.objects.create(
            user=other_user, doctor=doctor, slot=pending_slot, status=Booking.Status.PENDING
        )

        assert expire_past_bookings() == 2

        past_booking.refresh_from_db()
        pending.refresh_from_db()
        booking.refresh_from_db()
        cancelled.refresh_from_db()
        assert past_booking.status == Booking.Status.EXPIRED
        assert pending.status == Booking.Status.EXPIRED
        assert booking.status == Booking.Status.CONFIRMED
        assert cancelled.status == Booking.Status.CANCELLED
        assert expire_past_bookings() == 0

    def test_pending_future_booking_is_not_expired(self, regular_user, future_slot):
        Booking.objects.create(
            user=regular_user, doctor=future_slot.doctor, slot=future_slot, status=Booking.Status.PENDING
        )

        assert expire_past_bookings() == 0

    def test_expiry_follows_transition_table(self, past_booking):
        narrowed = {Booking.Status.CONFIRMED: {Booking.Status.CANCELLED, Booking.Status.COMPLETED}}

        with patch.dict(Booking.ALLOWED_TRANSITIONS, narrowed):
            assert expire_past_bookings() == 0

    def test_second_run_expires_nothing(self, past_booking):
        expire_past_bookings()

        assert expire_past_bookings() == 0

    def test_expiry_leaves_slot_alone(self, past_booking):
        expire_past_bookings()

        assert Slot.objects.get(pk=past_booking.slot_id).status == Slot.Status.BOOKED

    def test_expire_command(self, past_booking):
        out = StringIO()
        call_command('expire_past_bookings', stdout=out)

        past_booking.refresh_from_db()
        assert past_booking.status == Booking.Status.EXPIRED
        assert 'Expired bookings: 1' in out.getvalue()


# ============================================
# BOOKING API TESTS
# ============================================

@pytest.mark.django_db
class TestBookingAPI:

    def test_create_booking_endpoint(self, authenticated_user, future_slot):
        response = authenticated_user.post(reverse('booking-list'), {'slot_id': future_slot.pk}, format='json')

        assert response.status_code == status.HTTP_201_CREATED
        assert response.data['booking']['status'] == 'confirmed'
        assert response.data['booking']['slot']['id'] == future_slot.pk
        assert response.data['booking']['doctor']['name'] == 'Jane Smith'

    def test_double_booking_returns_409(self, booking, authenticated_other_user):
        response = authenticated_other_user.post(
            reverse('booking-list'), {'slot_id': booking.slot_id}, format='json'
        )

        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.data['success'] is False
        assert response.data['error']['code'] == 'conflict'

    def test_create_requires_slot_id(self, authenticated_user):
        response = authenticated_user.post(reverse('booking-list'), {}, format='json')

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert 'slot_id' in response.data['error']['details']

    def test_past_slot_returns_invalid_state(self, authenticated_user, past_slot):
        response = authenticated_user.post(reverse('booking-list'), {'slot_id': past_slot.pk}, format='json')

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data['error']['code'] == 'invalid_state'

    def test_my_bookings_only_own(self, booking, authenticated_other_user, authenticated_user):
        assert authenticated_other_user.get(reverse('my-bookings')).data['count'] == 0

        response = authenticated_user.get(reverse('my-bookings'))
        assert response.data['count'] == 1
        assert response.data['results'][0]['id'] == booking.pk

    def test_all_bookings_admin_only(self, booking, authenticated_user, authenticated_admin):
        assert authenticated_user.get(reverse('booking-list')).status_code == status.HTTP_403_FORBIDDEN

        response = authenticated_admin.get(reverse('booking-list'))
        assert response.status_code == status.HTTP_200_OK
        assert response.data['count'] == 1

    def test_cancel_endpoint(self, booking, authenticated_user):
        url = reverse('cancel-booking', kwargs={'pk': booking.pk})

        response = authenticated_user.patch(url, {'reason': 'Conflict at work'}, format='json')

        assert response.status_code == status.HTTP_200_OK
        assert response.data['booking']['status'] == 'cancelled'
        assert response.data['booking']['slot']['status'] == 'available'

    def test_cancel_other_users_booking_forbidden(self, booking, authenticated_other_user):
        url = reverse('cancel-booking', kwargs={'pk': booking.pk})

        response = authenticated_other_user.patch(url, {}, format='json')

        assert response.status_code == status.HTTP_403_FORBIDDEN
        assert response.data['error']['code'] == 'forbidden'

    def test_reschedule_endpoint(self, booking, authenticated_user, second_future_slot):
        url = reverse('reschedule-booking', kwargs={'pk': booking.pk})

        response = authenticated_user.patch(url, {'new_slot_id': second_future_slot.pk}, format='json')

        assert response.status_code == status.HTTP_200_OK
        assert response.data['booking']['slot']['id'] == second_future_slot.pk

    def test_complete_requires_admin(self, past_booking, authenticated_user, authenticated_admin):
        url = reverse('complete-booking', kwargs={'pk': past_booking.pk})

        assert authenticated_user.patch(url).status_code == status.HTTP_403_FORBIDDEN

        response = authenticated_admin.patch(url)
        assert response.status_code == status.HTTP_200_OK
        assert response.data['booking']['status'] == 'completed'

    def test_expire_endpoint(self, past_booking, authenticated_admin):
        response = authenticated_admin.patch(reverse('expire-past-bookings'))

        assert response.data == {'message': 'Expired past bookings successfully', 'count': 1}

        response = authenticated_admin.patch(reverse('expire-past-bookings'))
        assert response.data == {'message': 'No bookings to expire', 'count': 0}

    def test_missing_booking_returns_404(self, authenticated_admin):
        response = authenticated_admin.patch(reverse('complete-booking', kwargs={'pk': 999999}))

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.data['error']['message'] == 'Booking not found'
