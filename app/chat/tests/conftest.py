"""
Test configuration and fixtures for chat tests.

This module provides:
- Conversation fixtures (private and group) built from the shared users
  ``user`` (alice), ``other_user`` (bob) and ``third_user`` (carol)
- An outsider who belongs to none of them
- The store and a presence tracker on the local backend

Usage:
    def test_example(private_conversation, authenticated_client):
        response = authenticated_client.get(
            f"/api/v1/chat/conversations/{private_conversation.id}/"
        )
        assert response.status_code == 200
"""

import pytest

from authentication.tests.factories import UserFactory
from chat.presence import LocalPresenceBackend, PresenceTracker
from chat.store import DjangoChatStore
from chat.tests.factories import GroupConversationFactory, PrivateConversationFactory


@pytest.fixture
def outsider(db):
    """A user who is not a participant in any test conversation."""
    return UserFactory(handle="mallory", display_name="Mallory")


@pytest.fixture
def store():
    return DjangoChatStore()


@pytest.fixture
def presence_backend():
    """A fresh in-process presence backend, independent of settings."""
    return LocalPresenceBackend()


@pytest.fixture
def tracker(presence_backend, store):
    return PresenceTracker(backend=presence_backend, store=store)


@pytest.fixture
def private_conversation(db, user, other_user):
    """Private conversation between alice and bob."""
    return PrivateConversationFactory(user1=user, user2=other_user)


@pytest.fixture
def group_conversation(db, user, other_user, third_user):
    """Group 'Book Club' created by alice (admin) with bob and carol."""
    return GroupConversationFactory(
        name="Book Club", created_by=user, members=[other_user, third_user]
    )
