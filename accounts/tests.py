import pytest
from django.urls import reverse
from rest_framework import status
from rest_framework_simplejwt.tokens import AccessToken

from accounts.models import User
from accounts.permissions import IsAdmin, IsAdminOrUser
from accounts.serializers import RegistrationSerializer, UserSerializer


# ============================================
# USER MODEL TESTS
# ============================================

@pytest.mark.django_db
class TestUserModel:
    """Test User model creation and roles"""

    def test_create_user_defaults_to_user_role(self):
        """Verify a new account gets the user role"""
        user = User.objects.create_user(
            email='NewUser@Test.COM',
            password='securepass123',
            first_name='John',
            last_name='Doe',
        )

        assert user.pk is not None
        assert user.email == 'NewUser@test.com'
        assert user.role == User.Role.USER
        assert user.check_password('securepass123')
        assert user.full_name == 'John Doe'
        assert user.is_admin is False

    def test_create_user_requires_email(self):
        """Verify empty email is rejected"""
        with pytest.raises(ValueError):
            User.objects.create_user(email='', password='securepass123')

    def test_create_superuser_is_admin(self):
        """Verify superuser gets the admin role and staff flags"""
        admin = User.objects.create_superuser(
            email='root@test.com',
            password='securepass123',
            role=User.Role.USER,
        )

        assert admin.role == User.Role.ADMIN
        assert admin.is_admin
        assert admin.is_staff
        assert admin.is_superuser

    def test_full_name_strips_missing_parts(self):
        user = User.objects.create_user(email='solo@test.com', password='x', first_name='Solo')

        assert user.full_name == 'Solo'


# ============================================
# SERIALIZER TESTS
# ============================================

@pytest.mark.django_db
class TestRegistrationSerializer:

    def test_valid_registration_creates_user(self, valid_registration_data):
        serializer = RegistrationSerializer(data=valid_registration_data)

        assert serializer.is_valid(), serializer.errors
        user = serializer.save()
        assert user.role == User.Role.USER
        assert user.check_password('SecurePass123!')

    def test_password_mismatch_rejected(self, valid_registration_data):
        valid_registration_data['password_confirm'] = 'Different123!'
        serializer = RegistrationSerializer(data=valid_registration_data)

        assert not serializer.is_valid()
        assert 'password_confirm' in serializer.errors

    def test_role_cannot_be_self_assigned(self, valid_registration_data):
        """Verify a role in the payload is ignored"""
        valid_registration_data['role'] = 'admin'
        serializer = RegistrationSerializer(data=valid_registration_data)

        assert serializer.is_valid()
        assert serializer.save().role == User.Role.USER

    def test_user_serializer_fields(self, regular_user):
        data = UserSerializer(regular_user).data

        assert data['email'] == 'user@test.com'
        assert data['role'] == 'user'
        assert data['full_name'] == 'Test User'
        assert 'password' not in data


# ============================================
# PERMISSION TESTS
# ============================================

class _Request:
    def __init__(self, user):
        self.user = user


@pytest.mark.django_db
class TestRolePermissions:

    def test_is_admin(self, admin_user, regular_user):
        assert IsAdmin().has_permission(_Request(admin_user), None)
        assert not IsAdmin().has_permission(_Request(regular_user), None)

    def test_is_admin_or_user(self, admin_user, regular_user):
        assert IsAdminOrUser().has_permission(_Request(admin_user), None)
        assert IsAdminOrUser().has_permission(_Request(regular_user), None)

    def test_unknown_role_denied(self, regular_user):
        regular_user.role = 'guest'

        assert not IsAdminOrUser().has_permission(_Request(regular_user), None)


# ============================================
# AUTH API TESTS
# ============================================

@pytest.mark.django_db
class TestAuthAPI:

    def test_register_returns_tokens(self, api_client, valid_registration_data):
        response = api_client.post(reverse('accounts:register'), valid_registration_data, format='json')

        assert response.status_code == status.HTTP_201_CREATED
        assert response.data['user']['role'] == 'user'
        assert 'access' in response.data['tokens']
        assert 'refresh' in response.data['tokens']

    def test_register_duplicate_email(self, api_client, regular_user, valid_registration_data):
        valid_registration_data['email'] = regular_user.email
        response = api_client.post(reverse('accounts:register'), valid_registration_data, format='json')

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data['success'] is False
        assert response.data['error']['code'] == 'invalid'

    def test_login_returns_role_claim(self, api_client, admin_user):
        response = api_client.post(
            reverse('accounts:login'),
            {'email': 'admin@test.com', 'password': 'testpass123'},
            format='json',
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.data['user']['role'] == 'admin'
        assert AccessToken(response.data['access'])['role'] == 'admin'

    def test_login_wrong_password(self, api_client, regular_user):
        response = api_client.post(
            reverse('accounts:login'),
            {'email': 'user@test.com', 'password': 'wrong'},
            format='json',
        )

        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    def test_me_with_bearer_token(self, api_client, regular_user):
        token = AccessToken.for_user(regular_user)
        api_client.credentials(HTTP_AUTHORIZATION=f'Bearer {token}')

        response = api_client.get(reverse('accounts:current-user'))

        assert response.status_code == status.HTTP_200_OK
        assert response.data['email'] == 'user@test.com'

    def test_me_requires_authentication(self, api_client):
        response = api_client.get(reverse('accounts:current-user'))

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.data['error']['code'] == 'not_authenticated'

    def test_invalid_token_rejected(self, api_client):
        api_client.credentials(HTTP_AUTHORIZATION='Bearer not-a-token')

        response = api_client.get(reverse('accounts:current-user'))

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
