"""
Tests for chat model constraints and computed properties.

This module tests the chat models:
- Conversation: Type properties, list ordering
- PrivateConversationPair: Uniqueness constraint, canonical ordering
- Participant: One membership per user, role properties
- Message: Sequence uniqueness, reply snippets
- MessageStatus: One status per recipient, status ranking

Test Organization:
    - Each model has its own test class
    - Each test validates ONE specific behavior
    - Tests use descriptive names following: test_<scenario>_<expected_outcome>
"""

import uuid
from datetime import timedelta

import pytest
from django.db import IntegrityError, transaction
from django.utils import timezone

from authentication.tests.factories import UserFactory
from chat.models import (
    Conversation,
    ConversationType,
    DeliveryStatus,
    MessageType,
    ParticipantRole,
    PrivateConversationPair,
    statuses_below,
)
from chat.tests.factories import (
    GroupConversationFactory,
    MessageFactory,
    MessageStatusFactory,
    ParticipantFactory,
    PrivateConversationFactory,
)


# =============================================================================
# TestConversation
# =============================================================================


class TestConversation:
    """
    Tests for Conversation model.

    Verifies:
    - Type-specific properties (is_private, is_group)
    - Default ordering by most recent activity
    - String representation
    """

    def test_private_conversation_properties(self, private_conversation):
        """Private conversation reports is_private and not is_group."""
        assert private_conversation.is_private is True
        assert private_conversation.is_group is False
        assert private_conversation.name == ""

    def test_group_conversation_properties(self, group_conversation):
        """Group conversation reports is_group and keeps its name."""
        assert group_conversation.is_group is True
        assert group_conversation.is_private is False
        assert str(group_conversation) == "Group: Book Club"

    def test_new_conversation_starts_sequence_at_one(self, db):
        """
        A fresh conversation hands out sequence 1 first.

        Why it matters: Message order inside a conversation is the sequence.
        """
        conversation = GroupConversationFactory()
        assert conversation.next_sequence == 1

    def test_default_ordering_puts_recent_activity_first(self, db):
        """
        Conversations with newer messages sort first; silent ones last.

        Why it matters: Conversation lists are shown most recent first.
        """
        now = timezone.now()
        silent = GroupConversationFactory()
        older = GroupConversationFactory()
        newer = GroupConversationFactory()
        Conversation.objects.filter(pk=older.pk).update(last_message_at=now - timedelta(hours=1))
        Conversation.objects.filter(pk=newer.pk).update(last_message_at=now)

        ordered = list(
            Conversation.objects.filter(pk__in=[silent.pk, older.pk, newer.pk]).values_list(
                "pk", flat=True
            )
        )

        assert ordered == [newer.pk, older.pk, silent.pk]


# =============================================================================
# TestPrivateConversationPair
# =============================================================================


class TestPrivateConversationPair:
    """
    Tests for PrivateConversationPair model.

    Verifies:
    - Canonical ordering helper
    - Uniqueness of a user pair
    - Check constraint on ordering
    """

    def test_canonical_orders_ids_regardless_of_argument_order(self):
        """canonical(a, b) == canonical(b, a)."""
        first, second = uuid.uuid4(), uuid.uuid4()
        assert PrivateConversationPair.canonical(first, second) == (
            PrivateConversationPair.canonical(second, first)
        )
        lower, higher = PrivateConversationPair.canonical(first, second)
        assert lower < higher

    def test_canonical_accepts_string_ids(self):
        """String and UUID forms of the same ids give the same pair."""
        first, second = uuid.uuid4(), uuid.uuid4()
        assert PrivateConversationPair.canonical(str(first), str(second)) == (
            PrivateConversationPair.canonical(first, second)
        )

    def test_second_pair_for_same_users_is_rejected(self, private_conversation, user, other_user):
        """
        The database refuses a second private conversation for a pair.

        Why it matters: Racing creators must not both succeed.
        """
        duplicate = Conversation.objects.create(conversation_type=ConversationType.PRIVATE)
        lower, higher = PrivateConversationPair.canonical(user.pk, other_user.pk)

        with pytest.raises(IntegrityError), transaction.atomic():
            PrivateConversationPair.objects.create(
                conversation=duplicate, user_lower_id=lower, user_higher_id=higher
            )

    def test_non_canonical_order_is_rejected(self, db, user, other_user):
        """The lower id must be stored first."""
        conversation = Conversation.objects.create(conversation_type=ConversationType.PRIVATE)
        lower, higher = PrivateConversationPair.canonical(user.pk, other_user.pk)

        with pytest.raises(IntegrityError), transaction.atomic():
            PrivateConversationPair.objects.create(
                conversation=conversation, user_lower_id=higher, user_higher_id=lower
            )


# =============================================================================
# TestParticipant
# =============================================================================


class TestParticipant:
    """Tests for Participant model."""

    def test_group_creator_is_admin(self, group_conversation, user):
        """The factory-built group has its creator as admin."""
        participant = group_conversation.participants.get(user=user)
        assert participant.role == ParticipantRole.ADMIN
        assert participant.is_admin is True

    def test_members_are_not_admins(self, group_conversation, other_user):
        participant = group_conversation.participants.get(user=other_user)
        assert participant.is_admin is False

    def test_user_cannot_join_twice(self, group_conversation, other_user):
        """
        A user appears at most once per conversation.

        Why it matters: Duplicate memberships would double every status row.
        """
        with pytest.raises(IntegrityError), transaction.atomic():
            ParticipantFactory(conversation=group_conversation, user=other_user)


# =============================================================================
# TestMessage
# =============================================================================


class TestMessage:
    """
    Tests for Message model.

    Verifies:
    - Sequence numbers unique per conversation
    - Reply snippet content
    - String representation
    """

    def test_factory_assigns_increasing_sequence(self, group_conversation, user):
        first = MessageFactory(conversation=group_conversation, sender=user)
        second = MessageFactory(conversation=group_conversation, sender=user)

        assert (first.sequence, second.sequence) == (1, 2)

    def test_duplicate_sequence_in_conversation_is_rejected(self, group_conversation, user):
        """
        Two messages cannot share a position in the same conversation.

        Why it matters: History pagination relies on a strict total order.
        """
        message = MessageFactory(conversation=group_conversation, sender=user)

        with pytest.raises(IntegrityError), transaction.atomic():
            MessageFactory(
                conversation=group_conversation, sender=user, sequence=message.sequence
            )

    def test_same_sequence_allowed_across_conversations(self, group_conversation, private_conversation, user):
        group_message = MessageFactory(conversation=group_conversation, sender=user)
        private_message = MessageFactory(conversation=private_conversation, sender=user)

        assert group_message.sequence == private_message.sequence == 1

    def test_reply_snippet_truncates_content(self, group_conversation, user, other_user):
        original = MessageFactory(
            conversation=group_conversation, sender=other_user, content="x" * 250
        )
        reply = MessageFactory(
            conversation=group_conversation, sender=user, content="ok", reply_to=original
        )

        snippet = reply.reply_snippet(100)

        assert reply.is_reply is True
        assert snippet == {
            "id": original.pk,
            "sender_id": str(other_user.pk),
            "sender_handle": "bob",
            "message_type": MessageType.TEXT,
            "content": "x" * 100,
        }

    def test_reply_snippet_is_none_without_reply(self, group_conversation, user):
        message = MessageFactory(conversation=group_conversation, sender=user)
        assert message.is_reply is False
        assert message.reply_snippet(100) is None

    def test_str_marks_system_messages(self, group_conversation):
        message = MessageFactory(
            conversation=group_conversation,
            sender=None,
            message_type=MessageType.SYSTEM,
            content="Bob joined",
        )
        assert str(message) == "System: Bob joined"


# =============================================================================
# TestMessageStatus
# =============================================================================


class TestMessageStatus:
    """Tests for MessageStatus model and status ranking helpers."""

    def test_one_status_row_per_recipient(self, group_conversation, user, other_user):
        message = MessageFactory(conversation=group_conversation, sender=user)
        MessageStatusFactory(message=message, user=other_user)

        with pytest.raises(IntegrityError), transaction.atomic():
            MessageStatusFactory(message=message, user=other_user)

    def test_default_status_is_sent(self, db):
        status = MessageStatusFactory(user=UserFactory())
        assert status.status == DeliveryStatus.SENT

    @pytest.mark.parametrize(
        "status,expected",
        [
            (DeliveryStatus.SENT, []),
            (DeliveryStatus.DELIVERED, [DeliveryStatus.SENT]),
            (DeliveryStatus.READ, [DeliveryStatus.SENT, DeliveryStatus.DELIVERED]),
        ],
    )
    def test_statuses_below(self, status, expected):
        """Only lower-ranked statuses may be overwritten."""
        assert statuses_below(status) == expected
