"""
Tests for authentication API views.

- TokenObtainPairView: email/password login issuing JWTs
- TokenRefreshView: access token refresh
- MeView: current user
"""

from rest_framework import status

from authentication.tests.factories import UserFactory

TOKEN_URL = "/api/v1/auth/token/"
REFRESH_URL = "/api/v1/auth/token/refresh/"
ME_URL = "/api/v1/auth/me/"


class TestTokenObtain:
    def test_valid_credentials_return_token_pair(self, db, api_client):
        UserFactory(email="ana@example.com", password="Secret123!")

        response = api_client.post(
            TOKEN_URL, {"email": "ana@example.com", "password": "Secret123!"}
        )

        assert response.status_code == status.HTTP_200_OK
        assert "access" in response.data
        assert "refresh" in response.data

    def test_wrong_password_is_rejected(self, db, api_client):
        UserFactory(email="ana@example.com", password="Secret123!")

        response = api_client.post(
            TOKEN_URL, {"email": "ana@example.com", "password": "wrong"}
        )

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert "error_code" in response.data

    def test_refresh_returns_new_access_token(self, db, api_client):
        UserFactory(email="ana@example.com", password="Secret123!")
        tokens = api_client.post(
            TOKEN_URL, {"email": "ana@example.com", "password": "Secret123!"}
        ).data

        response = api_client.post(REFRESH_URL, {"refresh": tokens["refresh"]})

        assert response.status_code == status.HTTP_200_OK
        assert "access" in response.data


class TestMeView:
    def test_returns_current_user(self, authenticated_client, user):
        response = authenticated_client.get(ME_URL)

        assert response.status_code == status.HTTP_200_OK
        assert response.data["id"] == user.id
        assert response.data["email"] == user.email
        assert response.data["display_name"] == "Ana"

    def test_requires_authentication(self, db, api_client):
        response = api_client.get(ME_URL)

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.data["error_code"] == "NOT_AUTHENTICATED"
