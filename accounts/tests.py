"""
Tests for accounts app - user model and JWT access to the API.
"""
import pytest
from django.contrib.auth import get_user_model
from rest_framework.test import APIClient
from rest_framework_simplejwt.tokens import RefreshToken


@pytest.fixture
def api_client():
    return APIClient()


@pytest.fixture
def user_model():
    return get_user_model()


@pytest.fixture
def create_user(user_model):
    def _create_user(email="test@example.com", password="testpass123"):
        return user_model.objects.create_user(
            email=email,
            username=email,
            password=password
        )
    return _create_user


@pytest.fixture
def authenticated_client(api_client, create_user):
    user = create_user()
    refresh = RefreshToken.for_user(user)
    api_client.credentials(HTTP_AUTHORIZATION=f'Bearer {str(refresh.access_token)}')
    return api_client, user


@pytest.mark.django_db
class TestUserModel:

    def test_email_is_login_field(self, create_user, user_model):
        user = create_user()
        assert user_model.USERNAME_FIELD == 'email'
        assert str(user) == 'test@example.com'
        assert user.check_password('testpass123')

    def test_email_unique(self, create_user):
        from django.db import IntegrityError
        create_user()
        with pytest.raises(IntegrityError):
            create_user()


@pytest.mark.django_db
class TestJWTAccess:

    def test_health_is_public(self, api_client):
        response = api_client.get('/api/v1/health/')
        assert response.status_code == 200

    def test_missing_token_is_rejected(self, api_client):
        response = api_client.get('/api/v1/alerts/?site_id=1')
        assert response.status_code == 401

    def test_invalid_token_is_rejected(self, api_client):
        api_client.credentials(HTTP_AUTHORIZATION='Bearer not-a-token')
        response = api_client.get('/api/v1/alerts/?site_id=1')
        assert response.status_code == 401

    def test_valid_token_is_accepted(self, authenticated_client):
        from sites.models import Site
        client, user = authenticated_client
        site = Site.objects.create(user=user, name='Mine', url='https://mine.com')

        response = client.get(f'/api/v1/alerts/?site_id={site.id}')

        assert response.status_code == 200
