"""
Tests for authentication API endpoints.

Covers:
- POST /api/v1/auth/token/ (simplejwt token pair)
- POST /api/v1/auth/token/refresh/
- GET/PATCH /api/v1/auth/profile/
"""

import pytest
from rest_framework import status

from authentication.tests.factories import DEFAULT_PASSWORD, UserFactory


TOKEN_URL = "/api/v1/auth/token/"
REFRESH_URL = "/api/v1/auth/token/refresh/"
PROFILE_URL = "/api/v1/auth/profile/"


# =============================================================================
# Token Tests
# =============================================================================


@pytest.mark.django_db
class TestTokenObtain:
    """Tests for token issuance."""

    def test_valid_credentials_return_token_pair(self, api_client, user):
        """
        Correct handle and password return access and refresh tokens.

        Why it matters: The access token is the bearer credential for both
        the REST API and the realtime handshake.
        """
        response = api_client.post(
            TOKEN_URL,
            {"handle": user.handle, "password": DEFAULT_PASSWORD},
            format="json",
        )

        assert response.status_code == status.HTTP_200_OK
        assert "access" in response.data
        assert "refresh" in response.data

    def test_wrong_password_is_rejected(self, api_client, user):
        """Wrong password returns 401."""
        response = api_client.post(
            TOKEN_URL,
            {"handle": user.handle, "password": "wrong"},
            format="json",
        )
        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    def test_refresh_returns_new_access_token(self, api_client, user):
        """The refresh token can be exchanged for a new access token."""
        pair = api_client.post(
            TOKEN_URL,
            {"handle": user.handle, "password": DEFAULT_PASSWORD},
            format="json",
        ).data

        response = api_client.post(REFRESH_URL, {"refresh": pair["refresh"]}, format="json")

        assert response.status_code == status.HTTP_200_OK
        assert "access" in response.data


# =============================================================================
# Profile Tests
# =============================================================================


@pytest.mark.django_db
class TestProfileView:
    """Tests for the profile endpoint."""

    def test_get_returns_own_profile(self, authenticated_client, user):
        """GET returns the caller's profile."""
        response = authenticated_client.get(PROFILE_URL)

        assert response.status_code == status.HTTP_200_OK
        assert response.data["id"] == str(user.id)
        assert response.data["handle"] == user.handle
        assert "password" not in response.data

    def test_get_requires_authentication(self, api_client):
        """Anonymous requests are rejected."""
        response = api_client.get(PROFILE_URL)
        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    def test_patch_updates_editable_fields(
        self, authenticated_client, user, profile_update_data
    ):
        """PATCH updates display name, bio, picture and public key."""
        response = authenticated_client.patch(
            PROFILE_URL, profile_update_data, format="json"
        )

        assert response.status_code == status.HTTP_200_OK
        user.refresh_from_db()
        assert user.display_name == "Alice Liddell"
        assert user.bio == "Down the rabbit hole"
        assert user.public_key == "pk-alice-0001"

    def test_patch_rejects_handle_change(self, authenticated_client, user):
        """
        A handle in the payload is rejected.

        Why it matters: Handles are immutable after creation.
        """
        original = user.handle

        response = authenticated_client.patch(
            PROFILE_URL, {"handle": "new_handle"}, format="json"
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        user.refresh_from_db()
        assert user.handle == original

    def test_patch_does_not_touch_other_users(
        self, authenticated_client, user, profile_update_data
    ):
        """Only the caller's own profile is changed."""
        other = UserFactory(display_name="Bystander")

        authenticated_client.patch(PROFILE_URL, profile_update_data, format="json")

        other.refresh_from_db()
        assert other.display_name == "Bystander"
