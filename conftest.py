import pytest
from datetime import date, time, timedelta
from rest_framework.test import APIClient


@pytest.fixture
def api_client():
    return APIClient()


@pytest.fixture
def admin_user(db):
    from accounts.models import User

    return User.objects.create_superuser(
        email='admin@test.com',
        password='testpass123',
        first_name='Site',
        last_name='Admin',
    )


@pytest.fixture
def regular_user(db):
    from accounts.models import User

    return User.objects.create_user(
        email='user@test.com',
        password='testpass123',
        first_name='Test',
        last_name='User',
    )


@pytest.fixture
def other_user(db):
    """Second user for ownership and double-booking tests"""
    from accounts.models import User

    return User.objects.create_user(
        email='other@test.com',
        password='testpass123',
        first_name='Other',
        last_name='User',
    )


@pytest.fixture
def valid_registration_data():
    return {
        'email': 'newuser@test.com',
        'password': 'SecurePass123!',
        'password_confirm': 'SecurePass123!',
        'first_name': 'John',
        'last_name': 'Doe',
    }


@pytest.fixture
def doctor_user(db):
    from accounts.models import User

    return User.objects.create_user(
        email='doctor@test.com',
        password='testpass123',
        first_name='Jane',
        last_name='Smith',
    )


@pytest.fixture
def doctor(db, doctor_user):
    from doctors.models import Doctor

    return Doctor.objects.create(
        user=doctor_user,
        name='Jane Smith',
        specialization='Cardiology',
        email='Jane.Smith@Clinic.test',
    )


@pytest.fixture
def other_doctor(db):
    from accounts.models import User
    from doctors.models import Doctor

    user = User.objects.create_user(
        email='doctor2@test.com',
        password='testpass123',
        first_name='Sam',
        last_name='Lee',
    )
    return Doctor.objects.create(
        user=user,
        name='Sam Lee',
        specialization='Dermatology',
        email='sam.lee@clinic.test',
    )


@pytest.fixture
def availability(db, doctor):
    """Monday 09:00-12:00"""
    from doctors.models import Availability

    return Availability.objects.create(
        doctor=doctor,
        day_of_week=1,
        start_time=time(9, 0),
        end_time=time(12, 0),
    )


@pytest.fixture
def future_slot(db, doctor):
    from doctors.models import Slot

    return Slot.objects.create(
        doctor=doctor,
        date=date.today() + timedelta(days=7),
        start_time=time(10, 0),
        end_time=time(10, 30),
    )


@pytest.fixture
def second_future_slot(db, doctor):
    from doctors.models import Slot

    return Slot.objects.create(
        doctor=doctor,
        date=date.today() + timedelta(days=7),
        start_time=time(10, 30),
        end_time=time(11, 0),
    )


@pytest.fixture
def past_slot(db, doctor):
    from doctors.models import Slot

    return Slot.objects.create(
        doctor=doctor,
        date=date.today() - timedelta(days=7),
        start_time=time(10, 0),
        end_time=time(10, 30),
    )


@pytest.fixture
def booking(db, regular_user, future_slot):
    from bookings.services import create_booking

    return create_booking(regular_user, future_slot.pk)


@pytest.fixture
def past_booking(db, regular_user, doctor, past_slot):
    """Confirmed booking whose slot has already ended"""
    from bookings.models import Booking
    from doctors.models import Slot

    past_slot.status = Slot.Status.BOOKED
    past_slot.save()
    return Booking.objects.create(
        user=regular_user,
        doctor=doctor,
        slot=past_slot,
        status=Booking.Status.CONFIRMED,
    )


@pytest.fixture
def authenticated_user(regular_user):
    client = APIClient()
    client.force_authenticate(user=regular_user)
    return client


@pytest.fixture
def authenticated_other_user(other_user):
    client = APIClient()
    client.force_authenticate(user=other_user)
    return client


@pytest.fixture
def authenticated_admin(admin_user):
    client = APIClient()
    client.force_authenticate(user=admin_user)
    return client
