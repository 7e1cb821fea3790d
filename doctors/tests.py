import pytest
from unittest.mock import patch
from datetime import date, datetime, time, timedelta
from types import SimpleNamespace
from django.contrib.admin import site
from django.core.management import call_command
from django.db import IntegrityError, transaction
from django.urls import reverse
from rest_framework import status
from rest_framework.exceptions import ValidationError

from config.exceptions import ConflictError, NotFoundError
from doctors.models import Doctor, Availability, Slot
from doctors.services import generate_slots, block_slot, delete_slot, iter_window_slots
from doctors.utils import parse_time_string, parse_date, build_datetime, is_slot_in_past


def next_weekday(day_of_week):
    """Next date (from tomorrow) whose Sunday-first weekday matches"""
    day = date.today() + timedelta(days=1)
    while (day.weekday() + 1) % 7 != day_of_week:
        day += timedelta(days=1)
    return day


# ============================================
# TIME UTILITY TESTS
# ============================================

class TestTimeUtils:

    def test_parse_time_string(self):
        assert parse_time_string('09:30') == time(9, 30)
        assert parse_time_string(time(14, 0)) == time(14, 0)

    @pytest.mark.parametrize('value', [None, '', '9', 'ab:cd', '25:00', 930])
    def test_parse_time_string_invalid(self, value):
        assert parse_time_string(value) is None

    def test_parse_date(self):
        assert parse_date('2025-03-10') == date(2025, 3, 10)
        assert parse_date(datetime(2025, 3, 10, 8, 0)) == date(2025, 3, 10)
        assert parse_date('10/03/2025') is None

    def test_build_datetime(self):
        assert build_datetime('2025-03-10', '09:15') == datetime(2025, 3, 10, 9, 15)
        assert build_datetime(None, '09:15') is None
        assert build_datetime('2025-03-10', 'bad') is None

    def test_slot_in_past_uses_end_time(self):
        slot = SimpleNamespace(date=date(2025, 3, 10), start_time=time(9, 0), end_time=time(9, 30))

        assert is_slot_in_past(slot, now=datetime(2025, 3, 10, 9, 31))
        # Started but not yet ended
        assert not is_slot_in_past(slot, now=datetime(2025, 3, 10, 9, 15))

    def test_slot_in_past_falls_back_to_start_time(self):
        slot = SimpleNamespace(date=date(2025, 3, 10), start_time=time(9, 0), end_time=None)

        assert is_slot_in_past(slot, now=datetime(2025, 3, 10, 9, 1))

    def test_slot_in_past_fails_open(self):
        assert not is_slot_in_past(None)
        assert not is_slot_in_past(SimpleNamespace(date=None, start_time=time(9, 0), end_time=None))
        assert not is_slot_in_past(SimpleNamespace(date=date(2000, 1, 1), start_time=None, end_time=None))


# ============================================
# MODEL TESTS
# ============================================

@pytest.mark.django_db
class TestDoctorModels:

    def test_doctor_email_lowercased(self, doctor):
        assert doctor.email == 'jane.smith@clinic.test'
        assert str(doctor) == 'Dr. Jane Smith'

    def test_availability_day_names_start_on_sunday(self, doctor):
        avail = Availability.objects.create(
            doctor=doctor, day_of_week=0, start_time=time(9, 0), end_time=time(10, 0)
        )

        assert avail.get_day_of_week_display() == 'Sunday'

    def test_availability_end_must_follow_start(self, doctor):
        with pytest.raises(IntegrityError):
            with transaction.atomic():
                Availability.objects.create(
                    doctor=doctor, day_of_week=1, start_time=time(12, 0), end_time=time(9, 0)
                )

    def test_slot_unique_per_doctor_date_start(self, future_slot):
        with pytest.raises(IntegrityError):
            with transaction.atomic():
                Slot.objects.create(
                    doctor=future_slot.doctor,
                    date=future_slot.date,
                    start_time=future_slot.start_time,
                    end_time=time(11, 0),
                )

    def test_slot_defaults(self, future_slot):
        assert future_slot.status == Slot.Status.AVAILABLE
        assert future_slot.timezone == 'UTC'


# ============================================
# SLOT GENERATOR TESTS
# ============================================

@pytest.mark.django_db
class TestGenerateSlots:

    def test_window_boundary_exact_fit(self):
        slots = list(iter_window_slots(date(2025, 3, 10), time(9, 0), time(10, 0), 30))

        assert slots == [(time(9, 0), time(9, 30)), (time(9, 30), time(10, 0))]

    def test_window_boundary_drops_remainder(self):
        slots = list(iter_window_slots(date(2025, 3, 10), time(9, 0), time(9, 45), 30))

        assert slots == [(time(9, 0), time(9, 30))]

    def test_generates_from_weekly_availability(self, doctor, availability):
        monday = next_weekday(1)

        count = generate_slots(doctor, monday, monday + timedelta(days=6), 30, 'Africa/Lagos')

        # 09:00-12:00 in 30 minute steps, one Monday in the week
        assert count == 6
        slots = Slot.objects.filter(doctor=doctor)
        assert slots.count() == 6
        assert set(slots.values_list('date', flat=True)) == {monday}
        assert set(slots.values_list('timezone', flat=True)) == {'Africa/Lagos'}
        assert all(s.status == Slot.Status.AVAILABLE for s in slots)

    def test_generation_is_idempotent(self, doctor, availability):
        monday = next_weekday(1)
        end = monday + timedelta(days=13)

        first = generate_slots(doctor, monday, end)
        second = generate_slots(doctor, monday, end)

        assert first == 12
        assert second == 0
        assert Slot.objects.filter(doctor=doctor).count() == 12

    def test_overlapping_range_counts_only_new(self, doctor, availability):
        monday = next_weekday(1)
        generate_slots(doctor, monday, monday)

        count = generate_slots(doctor, monday, monday + timedelta(days=7))

        assert count == 6
        assert Slot.objects.filter(doctor=doctor).count() == 12

    def test_existing_slot_status_preserved(self, doctor, availability):
        monday = next_weekday(1)
        generate_slots(doctor, monday, monday)
        Slot.objects.filter(doctor=doctor, start_time=time(9, 0)).update(status=Slot.Status.BLOCKED)

        generate_slots(doctor, monday, monday)

        assert Slot.objects.get(doctor=doctor, start_time=time(9, 0)).status == Slot.Status.BLOCKED

    def test_inactive_availability_skipped(self, doctor, availability):
        availability.is_active = False
        availability.save()
        monday = next_weekday(1)

        assert generate_slots(doctor, monday, monday) == 0

    def test_overlapping_windows_do_not_duplicate(self, doctor, availability):
        Availability.objects.create(
            doctor=doctor, day_of_week=1, start_time=time(11, 0), end_time=time(13, 0)
        )
        monday = next_weekday(1)

        count = generate_slots(doctor, monday, monday)

        # 09:00-12:00 gives six, 11:00-13:00 adds 12:00 and 12:30
        assert count == 8

    def test_invalid_duration_falls_back_to_default(self, doctor, availability):
        monday = next_weekday(1)

        assert generate_slots(doctor, monday, monday, slot_duration_minutes=0) == 6

    def test_custom_duration(self, doctor, availability):
        monday = next_weekday(1)

        assert generate_slots(doctor, monday, monday, slot_duration_minutes=45) == 4

    def test_end_before_start_rejected(self, doctor, availability):
        monday = next_weekday(1)

        with pytest.raises(ValidationError):
            generate_slots(doctor, monday, monday - timedelta(days=1))
        assert Slot.objects.count() == 0

    def test_invalid_dates_rejected(self, doctor, availability):
        with pytest.raises(ValidationError):
            generate_slots(doctor, 'not-a-date', '2025-03-10')

    def test_generate_slots_command(self, doctor, availability):
        call_command('generate_slots', '--days', '7')

        assert Slot.objects.filter(doctor=doctor).count() == 6


# ============================================
# BLOCK / DELETE TESTS
# ============================================

@pytest.mark.django_db
class TestSlotAdminActions:

    def test_block_slot(self, future_slot):
        slot = block_slot(future_slot.pk)

        assert slot.status == Slot.Status.BLOCKED

    def test_block_missing_slot(self, db):
        with pytest.raises(NotFoundError):
            block_slot(999999)

    def test_block_slot_with_active_booking_rejected(self, booking):
        with pytest.raises(ConflictError):
            block_slot(booking.slot_id)

    def test_delete_slot(self, future_slot):
        delete_slot(future_slot.pk)

        assert not Slot.objects.filter(pk=future_slot.pk).exists()

    def test_delete_slot_with_active_booking_rejected(self, booking):
        with pytest.raises(ConflictError) as exc_info:
            delete_slot(booking.slot_id)

        assert 'active booking' in str(exc_info.value.detail)
        assert Slot.objects.filter(pk=booking.slot_id).exists()

    def test_delete_keeps_historical_bookings(self, booking, regular_user):
        from bookings.models import Booking
        from bookings.services import cancel_booking

        cancel_booking(booking.pk, regular_user)
        delete_slot(booking.slot_id)

        booking.refresh_from_db()
        assert booking.slot is None
        assert booking.status == Booking.Status.CANCELLED


# ============================================
# DOCTOR DIRECTORY API TESTS
# ============================================

@pytest.mark.django_db
class TestDoctorAPI:

    def test_admin_creates_doctor_with_availability(self, authenticated_admin, regular_user):
        payload = {
            'user_id': regular_user.pk,
            'name': 'Ada Obi',
            'specialization': 'Pediatrics',
            'email': 'ADA@clinic.test',
            'availability': [
                {'day_of_week': 1, 'start_time': '09:00', 'end_time': '12:00'},
                {'day_of_week': 3, 'start_time': '14:00', 'end_time': '16:00'},
            ],
        }

        response = authenticated_admin.post(reverse('doctor-list'), payload, format='json')

        assert response.status_code == status.HTTP_201_CREATED
        doctor = Doctor.objects.get(user=regular_user)
        assert doctor.email == 'ada@clinic.test'
        assert doctor.availabilities.count() == 2
        assert len(response.data['doctor']['availability']) == 2

    def test_create_doctor_unknown_user(self, authenticated_admin):
        payload = {'user_id': 999999, 'name': 'X', 'specialization': 'Y', 'email': 'x@y.test'}

        response = authenticated_admin.post(reverse('doctor-list'), payload, format='json')

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.data['error']['message'] == 'User not found'

    def test_create_doctor_duplicate_profile(self, authenticated_admin, doctor):
        payload = {'user_id': doctor.user_id, 'name': 'X', 'specialization': 'Y', 'email': 'x@y.test'}

        response = authenticated_admin.post(reverse('doctor-list'), payload, format='json')

        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_create_doctor_bad_window(self, authenticated_admin, regular_user):
        payload = {
            'user_id': regular_user.pk,
            'name': 'X',
            'specialization': 'Y',
            'email': 'x@y.test',
            'availability': [{'day_of_week': 1, 'start_time': '12:00', 'end_time': '09:00'}],
        }

        response = authenticated_admin.post(reverse('doctor-list'), payload, format='json')

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert not Doctor.objects.filter(user=regular_user).exists()

    def test_user_cannot_create_doctor(self, authenticated_user, other_user):
        payload = {'user_id': other_user.pk, 'name': 'X', 'specialization': 'Y', 'email': 'x@y.test'}

        response = authenticated_user.post(reverse('doctor-list'), payload, format='json')

        assert response.status_code == status.HTTP_403_FORBIDDEN
        assert response.data['error']['code'] == 'permission_denied'

    def test_list_doctors_paginated(self, authenticated_user, doctor, other_doctor):
        response = authenticated_user.get(reverse('doctor-list'), {'limit': 1})

        assert response.status_code == status.HTTP_200_OK
        assert response.data['count'] == 2
        assert len(response.data['results']) == 1
        assert response.data['results'][0]['name'] == 'Jane Smith'

    def test_doctor_detail(self, authenticated_user, doctor, availability):
        response = authenticated_user.get(reverse('doctor-detail', kwargs={'pk': doctor.pk}))

        assert response.status_code == status.HTTP_200_OK
        assert response.data['availability'][0]['day_name'] == 'Monday'

    def test_doctor_list_requires_auth(self, api_client):
        response = api_client.get(reverse('doctor-list'))

        assert response.status_code == status.HTTP_401_UNAUTHORIZED


# ============================================
# SLOT API TESTS
# ============================================

@pytest.mark.django_db
class TestSlotAPI:

    def test_admin_generates_slots(self, authenticated_admin, doctor, availability):
        monday = next_weekday(1)
        payload = {
            'doctor_id': doctor.pk,
            'start_date': monday.isoformat(),
            'end_date': monday.isoformat(),
            'slot_duration_minutes': 60,
            'timezone': 'Europe/London',
        }

        response = authenticated_admin.post(reverse('slot-generate'), payload, format='json')

        assert response.status_code == status.HTTP_201_CREATED
        assert response.data['created_count'] == 3

        again = authenticated_admin.post(reverse('slot-generate'), payload, format='json')
        assert again.data['created_count'] == 0

    def test_generate_unknown_doctor(self, authenticated_admin):
        payload = {'doctor_id': 999999, 'start_date': '2030-01-01', 'end_date': '2030-01-02', 'timezone': 'UTC'}

        response = authenticated_admin.post(reverse('slot-generate'), payload, format='json')

        assert response.status_code == status.HTTP_404_NOT_FOUND

    def test_generate_rejects_reversed_range(self, authenticated_admin, doctor):
        payload = {'doctor_id': doctor.pk, 'start_date': '2030-01-05', 'end_date': '2030-01-01', 'timezone': 'UTC'}

        response = authenticated_admin.post(reverse('slot-generate'), payload, format='json')

        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_generate_rejects_bad_timezone(self, authenticated_admin, doctor):
        payload = {
            'doctor_id': doctor.pk,
            'start_date': '2030-01-01',
            'end_date': '2030-01-02',
            'timezone': 'not a zone!',
        }

        response = authenticated_admin.post(reverse('slot-generate'), payload, format='json')

        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_user_cannot_generate(self, authenticated_user, doctor):
        payload = {'doctor_id': doctor.pk, 'start_date': '2030-01-01', 'end_date': '2030-01-02', 'timezone': 'UTC'}

        response = authenticated_user.post(reverse('slot-generate'), payload, format='json')

        assert response.status_code == status.HTTP_403_FORBIDDEN

    def test_available_slots_excludes_booked_and_blocked(self, authenticated_user, doctor, future_slot, second_future_slot):
        second_future_slot.status = Slot.Status.BLOCKED
        second_future_slot.save()

        response = authenticated_user.get(reverse('slot-available'), {'doctor_id': doctor.pk})

        assert response.status_code == status.HTTP_200_OK
        assert [s['id'] for s in response.data] == [future_slot.pk]

    def test_available_slots_date_filters(self, authenticated_user, future_slot, past_slot):
        response = authenticated_user.get(reverse('slot-available'), {'date': future_slot.date.isoformat()})
        assert [s['id'] for s in response.data] == [future_slot.pk]

        response = authenticated_user.get(
            reverse('slot-available'),
            {'start_date': past_slot.date.isoformat(), 'end_date': past_slot.date.isoformat()},
        )
        assert [s['id'] for s in response.data] == [past_slot.pk]

    def test_doctor_slots_status_filter(self, authenticated_user, doctor, future_slot, second_future_slot):
        second_future_slot.status = Slot.Status.BLOCKED
        second_future_slot.save()

        url = reverse('slot-doctor', kwargs={'doctor_id': doctor.pk})
        assert len(authenticated_user.get(url).data) == 2

        response = authenticated_user.get(url, {'status': 'blocked'})
        assert [s['id'] for s in response.data] == [second_future_slot.pk]

    def test_doctor_slots_invalid_status(self, authenticated_user, doctor):
        url = reverse('slot-doctor', kwargs={'doctor_id': doctor.pk})

        response = authenticated_user.get(url, {'status': 'gone'})

        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_block_slot_endpoint(self, authenticated_admin, future_slot):
        response = authenticated_admin.patch(reverse('slot-block', kwargs={'pk': future_slot.pk}))

        assert response.status_code == status.HTTP_200_OK
        assert response.data['slot']['status'] == 'blocked'

    def test_delete_slot_endpoint(self, authenticated_admin, future_slot):
        response = authenticated_admin.delete(reverse('slot-delete', kwargs={'pk': future_slot.pk}))

        assert response.status_code == status.HTTP_200_OK
        assert not Slot.objects.filter(pk=future_slot.pk).exists()

    def test_delete_booked_slot_conflict(self, authenticated_admin, booking):
        response = authenticated_admin.delete(reverse('slot-delete', kwargs={'pk': booking.slot_id}))

        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.data['error']['code'] == 'conflict'

    def test_delete_missing_slot(self, authenticated_admin):
        response = authenticated_admin.delete(reverse('slot-delete', kwargs={'pk': 999999}))

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.data['error']['message'] == 'Slot not found'

    def test_generate_requires_timezone(self, authenticated_admin, doctor):
        payload = {'doctor_id': doctor.pk, 'start_date': '2030-01-01', 'end_date': '2030-01-02'}

        response = authenticated_admin.post(reverse('slot-generate'), payload, format='json')

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert 'timezone' in response.data['error']['details']


# ============================================
# ADMIN TESTS
# ============================================

@pytest.mark.django_db
class TestSlotAdmin:
    """Admin changes to slots go through the same rules as the API"""

    @pytest.fixture
    def slot_admin(self):
        return site._registry[Slot]

    @pytest.fixture
    def admin_request(self, rf, admin_user):
        request = rf.post('/admin/doctors/slot/')
        request.user = admin_user
        return request

    def test_status_is_read_only(self, slot_admin, admin_request, future_slot):
        assert 'status' in slot_admin.get_readonly_fields(admin_request, future_slot)

    def test_booked_slot_has_no_delete_permission(self, slot_admin, admin_request, booking, second_future_slot):
        assert not slot_admin.has_delete_permission(admin_request, booking.slot)
        assert slot_admin.has_delete_permission(admin_request, second_future_slot)

    def test_delete_model_refuses_booked_slot(self, slot_admin, admin_request, booking):
        from bookings.models import Booking

        with pytest.raises(ConflictError):
            slot_admin.delete_model(admin_request, booking.slot)

        booking.refresh_from_db()
        assert booking.slot_id is not None
        assert booking.status == Booking.Status.CONFIRMED

    def test_bulk_delete_skips_booked_slots(self, slot_admin, admin_request, booking, second_future_slot):
        with patch.object(slot_admin, 'message_user') as message_user:
            slot_admin.delete_queryset(admin_request, Slot.objects.all())

        assert list(Slot.objects.values_list('pk', flat=True)) == [booking.slot_id]
        message_user.assert_called_once()

    def test_booking_admin_is_read_only(self, admin_request, booking):
        from bookings.models import Booking

        booking_admin = site._registry[Booking]

        assert not booking_admin.has_add_permission(admin_request)
        assert not booking_admin.has_delete_permission(admin_request, booking)
        assert {'status', 'slot'} <= set(booking_admin.get_readonly_fields(admin_request, booking))
