"""
Serializers for chat API.

This module provides serializers for the chat system:
- Conversation serializers (list, detail, create)
- Participant serializers (read, create)
- Message serializers (read, create, preview)

The same MessageSerializer output is used for REST responses and for the
``message`` field of realtime ``new_message`` events, so clients parse one
shape everywhere.

Serializer Hierarchy:
    ConversationListSerializer: List view with peer, last message and unread count
    ConversationDetailSerializer: Full details including participants
    ConversationCreateSerializer: Private/group conversation creation

    ParticipantSerializer: Participant with user info
    ParticipantCreateSerializer: Add participant to group

    MessageSerializer: Message with sender card and reply snippet
    MessageCreateSerializer: Send new message
    MessagePreviewSerializer: Minimal message for list preview

    PresenceSerializer: Online flag and last activity of a user

Design Decisions:
    - Read and write serializers are separate for clarity
    - Computed fields use SerializerMethodField and read through the store
"""

from __future__ import annotations

from rest_framework import serializers

from authentication.serializers import UserSerializer
from chat.constants import MESSAGE_CONFIG
from chat.models import (
    Conversation,
    ConversationType,
    Message,
    MessageType,
    Participant,
)
from chat.store import get_chat_store

USER_MESSAGE_TYPES = [
    choice for choice in MessageType.choices if choice[0] != MessageType.SYSTEM
]


# =============================================================================
# Message Serializers
# =============================================================================


class MessagePreviewSerializer(serializers.ModelSerializer):
    """
    Minimal message serializer for conversation list preview.

    Used to show the last message in conversation lists.
    """

    sender_id = serializers.UUIDField(read_only=True, allow_null=True)
    sender_handle = serializers.SerializerMethodField(
        help_text="Handle of the message sender"
    )

    class Meta:
        model = Message
        fields = [
            "id",
            "sender_id",
            "sender_handle",
            "content",
            "message_type",
            "sequence",
            "created_at",
        ]
        read_only_fields = fields

    def get_sender_handle(self, obj: Message) -> str | None:
        """Get sender's handle or None for system messages."""
        return obj.sender.handle if obj.sender_id else None


class MessageSerializer(serializers.ModelSerializer):
    """
    Full message serializer.

    Includes the sender's public card and, for replies, a denormalized
    snippet of the replied-to message.
    """

    conversation_id = serializers.IntegerField(read_only=True)
    sender = UserSerializer(read_only=True, allow_null=True)
    reply_to = serializers.PrimaryKeyRelatedField(read_only=True)
    reply_snippet = serializers.SerializerMethodField(
        help_text="Preview of the replied-to message"
    )

    class Meta:
        model = Message
        fields = [
            "id",
            "conversation_id",
            "sender",
            "message_type",
            "content",
            "file_ref",
            "reply_to",
            "reply_snippet",
            "sequence",
            "created_at",
        ]
        read_only_fields = fields

    def get_reply_snippet(self, obj: Message) -> dict | None:
        """Snippet of the replied-to message, if any."""
        return obj.reply_snippet(MESSAGE_CONFIG.REPLY_SNIPPET_LENGTH)


class MessageCreateSerializer(serializers.Serializer):
    """
    Serializer for sending a message.

    Deeper rules (participancy, reply in the same conversation, media
    messages needing a file_ref) are enforced by MessageService.
    """

    content = serializers.CharField(
        max_length=MESSAGE_CONFIG.MAX_CONTENT_LENGTH,
        required=False,
        allow_blank=True,
        trim_whitespace=False,
        default="",
    )
    message_type = serializers.ChoiceField(
        choices=USER_MESSAGE_TYPES,
        default=MessageType.TEXT,
    )
    file_ref = serializers.CharField(
        max_length=MESSAGE_CONFIG.MAX_FILE_REF_LENGTH,
        required=False,
        allow_blank=True,
        allow_null=True,
    )
    reply_to = serializers.IntegerField(required=False, allow_null=True, min_value=1)


class MessageStatusSerializer(serializers.Serializer):
    """One recipient's delivery status."""

    user_id = serializers.UUIDField()
    status = serializers.CharField()


# =============================================================================
# Participant Serializers
# =============================================================================


class ParticipantSerializer(serializers.ModelSerializer):
    """Participant with the member's public user card."""

    user = UserSerializer(read_only=True)

    class Meta:
        model = Participant
        fields = ["user", "role", "joined_at"]
        read_only_fields = fields


class ParticipantCreateSerializer(serializers.Serializer):
    """Serializer for adding a participant to a group."""

    user_id = serializers.UUIDField()


# =============================================================================
# Conversation Serializers
# =============================================================================


class ConversationDetailSerializer(serializers.ModelSerializer):
    """Full conversation details including participants."""

    created_by = serializers.UUIDField(source="created_by_id", read_only=True)
    participants = ParticipantSerializer(many=True, read_only=True)

    class Meta:
        model = Conversation
        fields = [
            "id",
            "conversation_type",
            "name",
            "description",
            "created_by",
            "created_at",
            "last_message_at",
            "participants",
        ]
        read_only_fields = fields


class ConversationListSerializer(ConversationDetailSerializer):
    """
    Conversation list entry.

    Adds the peer (private conversations), the last message and the
    requesting user's unread count. Expects ``request`` in the context.
    """

    peer = serializers.SerializerMethodField(help_text="Other participant (private only)")
    last_message = serializers.SerializerMethodField()
    unread_count = serializers.SerializerMethodField()

    class Meta(ConversationDetailSerializer.Meta):
        fields = ConversationDetailSerializer.Meta.fields + [
            "peer",
            "last_message",
            "unread_count",
        ]
        read_only_fields = fields

    def _viewer_id(self):
        request = self.context.get("request")
        return request.user.id if request else None

    def get_peer(self, obj: Conversation) -> dict | None:
        """Other participant of a private conversation."""
        if not obj.is_private:
            return None
        viewer_id = self._viewer_id()
        for participant in obj.participants.all():
            if participant.user_id != viewer_id:
                return UserSerializer(participant.user).data
        return None

    def get_last_message(self, obj: Conversation) -> dict | None:
        """Preview of the most recent message."""
        prefetched = getattr(obj, "latest_messages", None)
        if prefetched is not None:
            message = prefetched[0] if prefetched else None
        else:
            message = get_chat_store().latest_message(obj.pk)
        return MessagePreviewSerializer(message).data if message else None

    def get_unread_count(self, obj: Conversation) -> int:
        """Messages addressed to the viewer that are not read yet."""
        viewer_id = self._viewer_id()
        if viewer_id is None:
            return 0
        annotated = getattr(obj, "viewer_unread_count", None)
        if annotated is not None:
            return annotated
        return get_chat_store().unread_count(obj.pk, viewer_id)


class ConversationCreateSerializer(serializers.Serializer):
    """
    Serializer for creating a conversation.

    Fields:
        conversation_type: "private" or "group"
        participant_ids: Other participants (exactly one for private)
        name: Group name (required for groups)
        description: Group description
    """

    conversation_type = serializers.ChoiceField(choices=ConversationType.choices)
    participant_ids = serializers.ListField(
        child=serializers.UUIDField(),
        allow_empty=False,
    )
    name = serializers.CharField(max_length=100, required=False, allow_blank=True)
    description = serializers.CharField(max_length=500, required=False, allow_blank=True)

    def validate(self, attrs):
        """Groups need a name."""
        if attrs["conversation_type"] == ConversationType.GROUP and not (
            attrs.get("name") or ""
        ).strip():
            raise serializers.ValidationError({"name": ["Group conversations need a name."]})
        return attrs


# =============================================================================
# Presence Serializers
# =============================================================================


class PresenceSerializer(serializers.Serializer):
    """Online flag and last activity of a user."""

    user_id = serializers.UUIDField()
    handle = serializers.CharField()
    is_online = serializers.BooleanField()
    last_active = serializers.DateTimeField()
