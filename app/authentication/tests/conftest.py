"""
Test configuration and fixtures for authentication tests.

Shared fixtures (user, api_client, authenticated_client_factory) live in
the project-level conftest.py so the chat tests can use them too.

Usage:
    def test_example(user, authenticated_client):
        response = authenticated_client.get('/api/v1/auth/profile/')
        assert response.status_code == 200
"""

import pytest

from authentication.models import User


@pytest.fixture
def superuser(db):
    """Create a superuser with admin privileges."""
    return User.objects.create_superuser(handle="ops", password="AdminPass123!")


@pytest.fixture
def profile_update_data():
    """Valid PATCH body for the profile endpoint."""
    return {
        "display_name": "Alice Liddell",
        "bio": "Down the rabbit hole",
        "profile_picture": "https://cdn.example.com/alice.png",
        "public_key": "pk-alice-0001",
    }
