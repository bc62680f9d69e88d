"""
Root pytest configuration for the Django project.

This module configures pytest-django and provides project-wide fixtures.
App-specific fixtures are defined in each app's tests/conftest.py.

Test runs use:
    - InMemoryChannelLayer (no Redis needed for realtime tests)
    - LocalPresenceBackend (in-process presence registry)
    - Local-memory cache and a fast password hasher
"""

import pytest
from asgiref.sync import async_to_sync
from rest_framework.test import APIClient
from rest_framework_simplejwt.tokens import RefreshToken


def pytest_configure():
    """Configure Django settings before tests run."""
    from django.conf import settings

    # Disable throttling during tests to prevent rate limit failures
    settings.REST_FRAMEWORK["DEFAULT_THROTTLE_CLASSES"] = []
    settings.REST_FRAMEWORK["DEFAULT_THROTTLE_RATES"] = {}

    # Use fast password hasher for tests (PBKDF2 is too slow with 870K iterations)
    settings.PASSWORD_HASHERS = [
        "django.contrib.auth.hashers.MD5PasswordHasher",
    ]

    # Realtime and presence without Redis
    settings.CHANNEL_LAYERS = {
        "default": {"BACKEND": "channels.layers.InMemoryChannelLayer"},
    }
    settings.CHAT_PRESENCE_BACKEND = "chat.presence.LocalPresenceBackend"
    settings.CACHES = {
        "default": {"BACKEND": "django.core.cache.backends.locmem.LocMemCache"},
    }


def pytest_collection_modifyitems(items):
    """
    Auto-mark tests based on filename patterns.

    Mapping:
    - test_integration.py → e2e (full user journey workflows)
    - test_views.py, test_services.py, test_consumers.py, etc. → integration
    - test_models.py, test_serializers.py, test_presence.py, etc. → unit
    - Unmatched files → integration (safe default for Django)

    Explicit markers on test functions/classes take precedence.
    """
    # Filename patterns for each category
    e2e_patterns = ["test_integration.py"]

    integration_patterns = [
        "test_views.py",
        "test_services.py",
        "test_tasks.py",
        "test_consumers.py",
        "test_store.py",
        "test_delivery.py",
    ]

    unit_patterns = [
        "test_models.py",
        "test_serializers.py",
        "test_presence.py",
        "test_events.py",
        "test_exceptions.py",
    ]

    for item in items:
        # Skip if test already has unit/integration/e2e marker
        existing_markers = {m.name for m in item.iter_markers()}
        if existing_markers & {"unit", "integration", "e2e"}:
            continue

        filename = item.path.name

        # Check patterns in priority order
        if any(pattern in filename for pattern in e2e_patterns):
            item.add_marker(pytest.mark.e2e)
        elif any(pattern in filename for pattern in integration_patterns):
            item.add_marker(pytest.mark.integration)
        elif any(pattern in filename for pattern in unit_patterns):
            item.add_marker(pytest.mark.unit)
        else:
            # Default: integration (safe for Django where most tests hit DB)
            item.add_marker(pytest.mark.integration)


# =============================================================================
# Realtime state
# =============================================================================


@pytest.fixture(autouse=True)
def reset_realtime_state():
    """Start every test with no presence handles and empty channel groups."""
    from channels.layers import get_channel_layer

    from chat.presence import get_presence_backend

    get_presence_backend().clear()
    async_to_sync(get_channel_layer().flush)()
    yield
    get_presence_backend().clear()


# =============================================================================
# Shared user / client fixtures
# =============================================================================


@pytest.fixture
def user(db):
    """Create a regular active user."""
    from authentication.tests.factories import UserFactory

    return UserFactory(handle="alice", display_name="Alice")


@pytest.fixture
def other_user(db):
    """Create a second active user."""
    from authentication.tests.factories import UserFactory

    return UserFactory(handle="bob", display_name="Bob")


@pytest.fixture
def third_user(db):
    from authentication.tests.factories import UserFactory

    return UserFactory(handle="carol", display_name="Carol")


@pytest.fixture
def api_client():
    """Unauthenticated DRF API client."""
    return APIClient()


@pytest.fixture
def authenticated_client_factory():
    """
    Build API clients carrying a JWT access token for a given user.

    Usage:
        client = authenticated_client_factory(other_user)
    """

    def _make(user):
        client = APIClient()
        token = RefreshToken.for_user(user).access_token
        client.credentials(HTTP_AUTHORIZATION=f"Bearer {token}")
        return client

    return _make


@pytest.fixture
def authenticated_client(user, authenticated_client_factory):
    """API client authenticated as ``user``."""
    return authenticated_client_factory(user)
