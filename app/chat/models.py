"""
Chat system models.

This module defines the data models for the messaging core:
- Private (1:1) conversations between exactly two users
- Group conversations with admin/member roles
- Per-recipient delivery status for every message

Models:
    Conversation: Container for messages between participants
    PrivateConversationPair: Helper enforcing uniqueness of private conversations
    Participant: User membership in a conversation with a role
    Message: Immutable message within a conversation
    MessageStatus: Per-recipient sent/delivered/read state of a message

Design Decisions:
    - Private conversations have exactly two participants and never gain more
    - Messages are ordered by a per-conversation sequence number, allocated
      under a row lock on the conversation (see chat/store/django_store.py)
    - Messages and conversations are never edited or deleted by the core
    - MessageStatus only moves forward: sent -> delivered -> read
"""

from __future__ import annotations

import uuid

from django.conf import settings
from django.db import models
from django.db.models import F, Q

from core.models import BaseModel


class ConversationType(models.TextChoices):
    """
    Type of conversation.

    PRIVATE: Exactly two participants, unique per user pair, no name
    GROUP: Two or more participants, named, with admin/member roles
    """

    PRIVATE = "private", "Private"
    GROUP = "group", "Group"


class ParticipantRole(models.TextChoices):
    """
    Role within a conversation.

    ADMIN: Group creator; can add participants
    MEMBER: Can read and post
    """

    ADMIN = "admin", "Admin"
    MEMBER = "member", "Member"


class MessageType(models.TextChoices):
    """
    Type of message content.

    TEXT carries the message text in content. The media types carry an
    opaque reference in file_ref (upload handling lives outside the core).
    """

    TEXT = "text", "Text"
    IMAGE = "image", "Image"
    FILE = "file", "File"
    AUDIO = "audio", "Audio"
    VIDEO = "video", "Video"
    SYSTEM = "system", "System"


class DeliveryStatus(models.TextChoices):
    """
    Per-recipient delivery state of a message.

    Forward-only progression: SENT -> DELIVERED -> READ.
    """

    SENT = "sent", "Sent"
    DELIVERED = "delivered", "Delivered"
    READ = "read", "Read"


STATUS_RANK = {
    DeliveryStatus.SENT: 0,
    DeliveryStatus.DELIVERED: 1,
    DeliveryStatus.READ: 2,
}


def statuses_below(status: str) -> list[str]:
    """Return the statuses that rank strictly lower than ``status``."""
    rank = STATUS_RANK[DeliveryStatus(status)]
    return [value for value, value_rank in STATUS_RANK.items() if value_rank < rank]


class Conversation(BaseModel):
    """
    A conversation between two or more users.

    Conversation Types:
        PRIVATE: Exactly 2 participants, no name.
                 Unique per user pair (enforced via PrivateConversationPair).

        GROUP: 2+ participants. Creator automatically becomes admin.

    Fields:
        conversation_type: Type of conversation (private or group)
        name: Group name (empty string for private)
        description: Group description (empty string for private)
        created_by: User who created the conversation
        last_message_at: Timestamp of most recent message (for sorting)
        next_sequence: Sequence number the next message will receive
    """

    conversation_type = models.CharField(
        max_length=10,
        choices=ConversationType.choices,
        db_index=True,
        help_text="Type of conversation (private or group)",
    )

    name = models.CharField(
        max_length=100,
        blank=True,
        default="",
        help_text="Name for group conversations (empty for private)",
    )

    description = models.CharField(
        max_length=500,
        blank=True,
        default="",
        help_text="Description for group conversations (empty for private)",
    )

    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="created_conversations",
        help_text="User who created this conversation",
    )

    last_message_at = models.DateTimeField(
        null=True,
        blank=True,
        db_index=True,
        help_text="Timestamp of most recent message (for sorting conversation lists)",
    )

    next_sequence = models.PositiveIntegerField(
        default=1,
        help_text="Sequence number assigned to the next message",
    )

    class Meta:
        db_table = "chat_conversation"
        ordering = [F("last_message_at").desc(nulls_last=True), "-created_at"]
        indexes = [
            models.Index(
                fields=["-last_message_at"],
                name="chat_conv_last_msg_idx",
            ),
        ]

    def __str__(self) -> str:
        """Return human-readable representation."""
        if self.conversation_type == ConversationType.PRIVATE:
            return f"Private({self.pk})"
        if self.name:
            return f"Group: {self.name}"
        return f"Group({self.pk})"

    @property
    def is_private(self) -> bool:
        """Check if this is a private (1:1) conversation."""
        return self.conversation_type == ConversationType.PRIVATE

    @property
    def is_group(self) -> bool:
        """Check if this is a group conversation."""
        return self.conversation_type == ConversationType.GROUP


class PrivateConversationPair(models.Model):
    """
    Enforces uniqueness of private conversations between two users.

    This helper table stores user pairs in canonical order (lower user id
    first) so that, regardless of who initiates the conversation, there can
    only be one private conversation between any pair.

    Fields:
        conversation: The private conversation (OneToOne, serves as PK)
        user_lower: User with lower ID
        user_higher: User with higher ID

    Constraints:
        - UniqueConstraint(user_lower, user_higher): One conversation per pair
        - CheckConstraint(user_lower_id < user_higher_id): Enforce canonical order
    """

    conversation = models.OneToOneField(
        Conversation,
        on_delete=models.CASCADE,
        primary_key=True,
        related_name="private_pair",
        help_text="The private conversation this pair represents",
    )

    user_lower = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="+",
        help_text="User with lower ID in this conversation pair",
    )

    user_higher = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="+",
        help_text="User with higher ID in this conversation pair",
    )

    class Meta:
        db_table = "chat_private_conversation_pair"
        constraints = [
            models.UniqueConstraint(
                fields=["user_lower", "user_higher"],
                name="unique_private_conversation_pair",
            ),
            models.CheckConstraint(
                condition=Q(user_lower_id__lt=F("user_higher_id")),
                name="private_pair_lower_less_than_higher",
            ),
        ]

    def __str__(self) -> str:
        """Return human-readable representation."""
        return f"PrivatePair({self.user_lower_id}, {self.user_higher_id})"

    @staticmethod
    def canonical(user_a_id, user_b_id) -> tuple[uuid.UUID, uuid.UUID]:
        """Order two user ids the way the pair table stores them."""
        first, second = uuid.UUID(str(user_a_id)), uuid.UUID(str(user_b_id))
        if first < second:
            return first, second
        return second, first


class Participant(models.Model):
    """
    Membership of a user in a conversation.

    Fields:
        conversation: Conversation this participation belongs to
        user: User participating in the conversation
        role: admin or member (private participants are members)
        joined_at: When the user joined

    Constraints:
        - UniqueConstraint(conversation, user): a user appears at most once
    """

    conversation = models.ForeignKey(
        Conversation,
        on_delete=models.CASCADE,
        related_name="participants",
        help_text="Conversation this participation belongs to",
    )

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="conversation_participations",
        help_text="User participating in the conversation",
    )

    role = models.CharField(
        max_length=10,
        choices=ParticipantRole.choices,
        default=ParticipantRole.MEMBER,
        help_text="Role in the conversation",
    )

    joined_at = models.DateTimeField(
        auto_now_add=True,
        help_text="When the user joined this conversation",
    )

    class Meta:
        db_table = "chat_participant"
        ordering = ["joined_at", "id"]
        indexes = [
            models.Index(
                fields=["user", "conversation"],
                name="chat_part_user_conv_idx",
            ),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["conversation", "user"],
                name="unique_conversation_participant",
            ),
        ]

    def __str__(self) -> str:
        """Return human-readable representation."""
        return f"Participant: {self.user_id} in {self.conversation_id} ({self.role})"

    @property
    def is_admin(self) -> bool:
        """Check if participant has ADMIN role."""
        return self.role == ParticipantRole.ADMIN


class Message(models.Model):
    """
    A message within a conversation.

    Messages are immutable once created. Ordering within a conversation is
    given by ``sequence``, which increases by one per message and is unique
    together with the conversation. Cross-conversation order is irrelevant.

    Fields:
        conversation: Conversation this message belongs to
        sender: User who sent the message (null for system messages)
        message_type: text, image, file, audio, video or system
        content: Message text (may be empty for media messages)
        file_ref: Opaque reference to an uploaded file
        reply_to: Message in the same conversation this one replies to
        sequence: Position in the conversation timeline
        created_at: When the message was persisted
    """

    conversation = models.ForeignKey(
        Conversation,
        on_delete=models.CASCADE,
        related_name="messages",
        help_text="Conversation this message belongs to",
    )

    sender = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="sent_messages",
        help_text="User who sent this message (null for system messages)",
    )

    message_type = models.CharField(
        max_length=10,
        choices=MessageType.choices,
        default=MessageType.TEXT,
        help_text="Type of message content",
    )

    content = models.TextField(
        blank=True,
        default="",
        help_text="Message text",
    )

    file_ref = models.CharField(
        max_length=500,
        blank=True,
        default="",
        help_text="Opaque reference to an attached file (media messages)",
    )

    reply_to = models.ForeignKey(
        "self",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="replies",
        help_text="Message this one replies to (same conversation)",
    )

    sequence = models.PositiveIntegerField(
        help_text="Monotonic position within the conversation",
    )

    created_at = models.DateTimeField(
        auto_now_add=True,
        db_index=True,
        help_text="Timestamp when this message was persisted",
    )

    class Meta:
        db_table = "chat_message"
        ordering = ["conversation", "sequence"]
        constraints = [
            models.UniqueConstraint(
                fields=["conversation", "sequence"],
                name="unique_message_sequence",
            ),
        ]
        indexes = [
            models.Index(
                fields=["sender", "-created_at"],
                name="chat_msg_sender_idx",
            ),
        ]

    def __str__(self) -> str:
        """Return human-readable representation."""
        sender_str = f"User {self.sender_id}" if self.sender_id else "System"
        content_preview = (
            self.content[:50] + "..." if len(self.content) > 50 else self.content
        )
        return f"{sender_str}: {content_preview}"

    @property
    def is_reply(self) -> bool:
        """Check if this message is a reply to another message."""
        return self.reply_to_id is not None

    def reply_snippet(self, length: int) -> dict | None:
        """
        Denormalized preview of the replied-to message.

        Returns:
            Dict with id, sender_id, sender_handle, message_type and the first
            ``length`` characters of content, or None if not a reply
        """
        reply = self.reply_to
        if reply is None:
            return None
        return {
            "id": reply.pk,
            "sender_id": str(reply.sender_id) if reply.sender_id else None,
            "sender_handle": reply.sender.handle if reply.sender_id else None,
            "message_type": reply.message_type,
            "content": reply.content[:length],
        }


class MessageStatus(models.Model):
    """
    Delivery state of one message for one recipient.

    One row per (message, recipient) is created when the message is sent.
    Updates only ever raise the status rank; see
    DjangoChatStore.upsert_message_status().

    Fields:
        message: The message
        user: The recipient
        status: sent, delivered or read
        updated_at: Last transition time
    """

    message = models.ForeignKey(
        Message,
        on_delete=models.CASCADE,
        related_name="statuses",
    )

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="message_statuses",
    )

    status = models.CharField(
        max_length=10,
        choices=DeliveryStatus.choices,
        default=DeliveryStatus.SENT,
    )

    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "chat_message_status"
        constraints = [
            models.UniqueConstraint(
                fields=["message", "user"],
                name="unique_message_status_recipient",
            ),
        ]
        indexes = [
            models.Index(
                fields=["user", "status"],
                name="chat_status_user_status_idx",
            ),
        ]

    def __str__(self) -> str:
        """Return human-readable representation."""
        return f"MessageStatus: {self.message_id} -> {self.user_id} [{self.status}]"
