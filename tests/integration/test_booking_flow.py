# tests/integration/test_booking_flow.py
"""
Integration tests for the scheduling flow:
- Admin registers a doctor with weekly availability
- Admin generates slots
- User books, reschedules and cancels
- Admin completes and expires bookings
"""

import pytest
from datetime import date, timedelta
from django.urls import reverse
from rest_framework import status
from rest_framework.test import APIClient

from bookings.models import Booking
from doctors.models import Slot


def next_weekday(day_of_week):
    day = date.today() + timedelta(days=1)
    while (day.weekday() + 1) % 7 != day_of_week:
        day += timedelta(days=1)
    return day


@pytest.mark.django_db
class TestSchedulingJourney:
    """Full journey from doctor setup to completed booking"""

    def test_admin_setup_then_user_books(self, authenticated_admin, authenticated_user, doctor_user):
        # Admin registers the doctor
        response = authenticated_admin.post(reverse('doctor-list'), {
            'user_id': doctor_user.pk,
            'name': 'Grace Hopper',
            'specialization': 'General Practice',
            'email': 'grace@clinic.test',
            'availability': [{'day_of_week': 2, 'start_time': '09:00', 'end_time': '10:00'}],
        }, format='json')
        assert response.status_code == status.HTTP_201_CREATED
        doctor_id = response.data['doctor']['id']

        # Admin generates a week of slots
        tuesday = next_weekday(2)
        response = authenticated_admin.post(reverse('slot-generate'), {
            'doctor_id': doctor_id,
            'start_date': tuesday.isoformat(),
            'end_date': (tuesday + timedelta(days=6)).isoformat(),
            'timezone': 'Africa/Lagos',
        }, format='json')
        assert response.data['created_count'] == 2

        # User browses and books the first slot
        response = authenticated_user.get(reverse('slot-available'), {'doctor_id': doctor_id})
        first, second = response.data
        response = authenticated_user.post(reverse('booking-list'), {'slot_id': first['id']}, format='json')
        assert response.status_code == status.HTTP_201_CREATED
        booking_id = response.data['booking']['id']

        # Booked slot disappears from the available list
        response = authenticated_user.get(reverse('slot-available'), {'doctor_id': doctor_id})
        assert [s['id'] for s in response.data] == [second['id']]

        # User moves to the second slot
        response = authenticated_user.patch(
            reverse('reschedule-booking', kwargs={'pk': booking_id}),
            {'new_slot_id': second['id']},
            format='json',
        )
        assert response.status_code == status.HTTP_200_OK
        response = authenticated_user.get(reverse('slot-available'), {'doctor_id': doctor_id})
        assert [s['id'] for s in response.data] == [first['id']]

        # User cancels; both slots are open again
        response = authenticated_user.patch(reverse('cancel-booking', kwargs={'pk': booking_id}), {}, format='json')
        assert response.status_code == status.HTTP_200_OK
        response = authenticated_user.get(reverse('slot-available'), {'doctor_id': doctor_id})
        assert len(response.data) == 2

    def test_second_user_cannot_book_taken_slot(self, future_slot, authenticated_user, authenticated_other_user):
        url = reverse('booking-list')

        first = authenticated_user.post(url, {'slot_id': future_slot.pk}, format='json')
        second = authenticated_other_user.post(url, {'slot_id': future_slot.pk}, format='json')

        assert first.status_code == status.HTTP_201_CREATED
        assert second.status_code == status.HTTP_409_CONFLICT
        assert Booking.objects.active().filter(slot=future_slot).count() == 1

    def test_admin_cannot_block_booked_slot(self, booking, authenticated_admin):
        response = authenticated_admin.patch(reverse('slot-block', kwargs={'pk': booking.slot_id}))

        assert response.status_code == status.HTTP_409_CONFLICT
        assert Slot.objects.get(pk=booking.slot_id).status == Slot.Status.BOOKED

    def test_past_booking_lifecycle(self, past_booking, booking, authenticated_admin, authenticated_user):
        # Owner can no longer cancel a slot that has ended
        response = authenticated_user.patch(
            reverse('cancel-booking', kwargs={'pk': past_booking.pk}), {}, format='json'
        )
        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data['error']['code'] == 'invalid_state'

        # Admin sweeps past bookings; the future one is untouched
        response = authenticated_admin.patch(reverse('expire-past-bookings'))
        assert response.data['count'] == 1

        response = authenticated_user.get(reverse('my-bookings'))
        statuses = {b['id']: b['status'] for b in response.data['results']}
        assert statuses == {past_booking.pk: 'expired', booking.pk: 'confirmed'}

        # Expired bookings cannot be completed
        response = authenticated_admin.patch(reverse('complete-booking', kwargs={'pk': past_booking.pk}))
        assert response.status_code == status.HTTP_400_BAD_REQUEST


@pytest.mark.django_db
class TestAccessControl:

    @pytest.mark.parametrize('method, name, kwargs', [
        ('get', 'slot-available', {}),
        ('post', 'booking-list', {}),
        ('get', 'my-bookings', {}),
        ('patch', 'cancel-booking', {'pk': 1}),
    ])
    def test_anonymous_requests_rejected(self, method, name, kwargs):
        client = APIClient()

        response = getattr(client, method)(reverse(name, kwargs=kwargs))

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.data['success'] is False

    @pytest.mark.parametrize('method, name, kwargs', [
        ('post', 'slot-generate', {}),
        ('patch', 'slot-block', {'pk': 1}),
        ('delete', 'slot-delete', {'pk': 1}),
        ('get', 'booking-list', {}),
        ('patch', 'complete-booking', {'pk': 1}),
        ('patch', 'expire-past-bookings', {}),
    ])
    def test_admin_only_endpoints(self, authenticated_user, method, name, kwargs):
        response = getattr(authenticated_user, method)(reverse(name, kwargs=kwargs))

        assert response.status_code == status.HTTP_403_FORBIDDEN

    def test_login_then_book_with_bearer_token(self, regular_user, future_slot):
        client = APIClient()
        login = client.post(
            reverse('accounts:login'),
            {'email': 'user@test.com', 'password': 'testpass123'},
            format='json',
        )
        client.credentials(HTTP_AUTHORIZATION=f"Bearer {login.data['access']}")

        response = client.post(reverse('booking-list'), {'slot_id': future_slot.pk}, format='json')

        assert response.status_code == status.HTTP_201_CREATED
        assert response.data['booking']['user']['email'] == 'user@test.com'
