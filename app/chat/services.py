"""
Chat system service layer.

This module provides the business logic of the messaging core, on top of
the persistence store contract (chat/store/).

Services:
    ConversationService: Conversation creation, listing, membership
    MessageService: Posting, history pagination, read receipts
    UserDirectoryService: User search, profiles, presence lookups

Design Principles:
    - Services are stateless (use class methods)
    - Expected failures raise core.exceptions (AccessDenied, InvalidArgument,
      NotFoundError); transports translate them
    - Persistence goes through the ChatStore returned by get_chat_store()
    - Broadcasting is not done here; the gateway and the views publish
      events after a service call succeeds

Usage:
    from chat.services import ConversationService, MessageService

    # Create (or fetch) a private conversation
    conversation, created = ConversationService.create_conversation(
        creator=alice,
        conversation_type="private",
        participant_ids=[bob.id],
    )

    # Send a message
    message = MessageService.post_message(
        conversation_id=conversation.id,
        sender=alice,
        content="Hello!",
    )
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from chat.constants import MESSAGE_CONFIG
from chat.models import ConversationType, DeliveryStatus, MessageType, ParticipantRole
from chat.presence import get_presence_tracker
from chat.store import get_chat_store
from chat.store.django_store import as_user_id
from core.exceptions import AccessDenied, ConflictError, InvalidArgument
from core.services import BaseService

if TYPE_CHECKING:
    from authentication.models import User
    from chat.models import Conversation, Message, Participant
    from chat.store.base import ChatStore


def _require_participant(store: ChatStore, conversation_id, user) -> None:
    if not store.is_participant(conversation_id, user.id):
        raise AccessDenied(
            "You are not a participant in this conversation",
            error_code="NOT_PARTICIPANT",
            details={"conversation_id": conversation_id},
        )


def _as_int(name: str, value) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError) as exc:
        raise InvalidArgument(f"{name} must be an integer", details={name: value}) from exc
    return number


class ConversationService(BaseService):
    """
    Service for conversation lifecycle operations.

    Methods:
        create_conversation: Create a group, or create/fetch a private conversation
        list_conversations: User's conversations, most recent activity first
        get_conversation: Single conversation, participants only
        add_participant: Add a member to a group (admins only)
    """

    @classmethod
    def create_conversation(
        cls,
        creator: User,
        conversation_type: str,
        participant_ids: list,
        name: str | None = None,
        description: str | None = None,
        store: ChatStore | None = None,
    ) -> tuple[Conversation, bool]:
        """
        Create a conversation.

        Private conversations are unique per user pair. If one already exists
        between the creator and the other participant it is returned
        unchanged. Two concurrent creators race on the pair's unique
        constraint; the loser fetches the winner's conversation.

        Args:
            creator: User creating the conversation
            conversation_type: "private" or "group"
            participant_ids: The other participants (creator may be included
                for groups)
            name: Group name (required for groups)
            description: Group description

        Returns:
            (conversation, created)

        Raises:
            InvalidArgument: Empty participant list, unknown type, private
                conversation without exactly one other user, unnamed group
            NotFoundError: Unknown participant
        """
        store = store or get_chat_store()

        if conversation_type not in ConversationType.values:
            raise InvalidArgument(
                f"Unknown conversation type: {conversation_type!r}",
                details={"allowed": list(ConversationType.values)},
            )
        if not participant_ids:
            raise InvalidArgument("participant_ids cannot be empty")

        user_ids = list(dict.fromkeys(as_user_id(value) for value in participant_ids))

        if conversation_type == ConversationType.PRIVATE:
            return cls._create_private(store, creator, user_ids)

        name = (name or "").strip()
        if not name:
            raise InvalidArgument("Group conversations need a name")
        members = [user_id for user_id in user_ids if user_id != creator.id]
        if not members:
            raise InvalidArgument("A group needs at least one other participant")

        conversation = store.create_conversation(
            ConversationType.GROUP,
            creator.id,
            [(creator.id, ParticipantRole.ADMIN)]
            + [(user_id, ParticipantRole.MEMBER) for user_id in members],
            name=name,
            description=(description or "").strip(),
        )
        cls.get_logger().info(
            f"User {creator.id} created group conversation {conversation.id} "
            f"with {len(members) + 1} participants"
        )
        return conversation, True

    @classmethod
    def _create_private(cls, store: ChatStore, creator: User, user_ids: list) -> tuple[Conversation, bool]:
        if creator.id in user_ids:
            raise InvalidArgument(
                "Cannot create a private conversation with yourself",
                error_code="SAME_USER",
            )
        if len(user_ids) != 1:
            raise InvalidArgument(
                "A private conversation takes exactly one other participant",
                details={"participant_count": len(user_ids)},
            )
        peer_id = user_ids[0]

        existing = store.find_private_conversation_between(creator.id, peer_id)
        if existing is not None:
            cls.get_logger().debug(
                f"Found existing private conversation {existing.id} "
                f"between users {creator.id} and {peer_id}"
            )
            return existing, False

        try:
            conversation = store.create_conversation(
                ConversationType.PRIVATE,
                creator.id,
                [(creator.id, ParticipantRole.MEMBER), (peer_id, ParticipantRole.MEMBER)],
            )
        except ConflictError:
            existing = store.find_private_conversation_between(creator.id, peer_id)
            if existing is None:
                raise
            cls.get_logger().info(
                f"Lost private conversation race between {creator.id} and {peer_id}; "
                f"returning conversation {existing.id}"
            )
            return existing, False

        cls.get_logger().info(
            f"Created private conversation {conversation.id} "
            f"between users {creator.id} and {peer_id}"
        )
        return conversation, True

    @classmethod
    def list_conversations(cls, user: User, store: ChatStore | None = None) -> list[Conversation]:
        """Conversations of a user, most recent message first."""
        store = store or get_chat_store()
        return store.list_conversations_for_user(user.id)

    @classmethod
    def get_conversation(cls, conversation_id, requester: User, store: ChatStore | None = None) -> Conversation:
        """
        Load a conversation for one of its participants.

        Raises:
            NotFoundError: Unknown conversation
            AccessDenied: Requester is not a participant
        """
        store = store or get_chat_store()
        conversation = store.get_conversation(conversation_id)
        _require_participant(store, conversation.pk, requester)
        return conversation

    @classmethod
    def add_participant(
        cls,
        conversation_id,
        actor: User,
        user_id,
        store: ChatStore | None = None,
    ) -> Participant:
        """
        Add a user to a group conversation as a member.

        Raises:
            AccessDenied: Actor is not an admin of the conversation
            InvalidArgument: Conversation is private
            ConflictError: User already participates
            NotFoundError: Unknown conversation or user
        """
        store = store or get_chat_store()
        store.get_conversation(conversation_id)

        membership = store.get_participant(conversation_id, actor.id)
        if membership is None or not membership.is_admin:
            cls.get_logger().warning(
                f"User {actor.id} tried to add a participant to conversation "
                f"{conversation_id} without admin rights"
            )
            raise AccessDenied(
                "Only conversation admins can add participants",
                error_code="NOT_ADMIN",
                details={"conversation_id": conversation_id},
            )

        participant = store.add_participant(conversation_id, user_id, ParticipantRole.MEMBER)
        cls.get_logger().info(
            f"User {actor.id} added {participant.user_id} to conversation {conversation_id}"
        )
        return participant


class MessageService(BaseService):
    """
    Service for message operations.

    Methods:
        post_message: Persist a message and its per-recipient statuses
        list_messages: One page of history, oldest first
        count_messages: Total messages in a conversation (participants only)
        mark_read: Idempotent read receipt
        list_statuses: Per-recipient delivery statuses of a message
    """

    USER_MESSAGE_TYPES = frozenset(MessageType.values) - {MessageType.SYSTEM}

    @classmethod
    def post_message(
        cls,
        conversation_id,
        sender: User,
        content: str,
        message_type: str = MessageType.TEXT,
        file_ref: str | None = None,
        reply_to=None,
        store: ChatStore | None = None,
    ) -> Message:
        """
        Send a message to a conversation.

        The message and one "sent" status row per other participant are
        written in one transaction.

        Args:
            conversation_id: Target conversation
            sender: User sending the message
            content: Message text
            message_type: text, image, file, audio or video
            file_ref: Opaque reference to an uploaded file
            reply_to: Id of a message in the same conversation

        Returns:
            The persisted message with sender and reply_to loaded

        Raises:
            AccessDenied: Sender is not a participant
            InvalidArgument: Bad type, empty or oversized content, reply from
                another conversation
            NotFoundError: Unknown reply_to
        """
        store = store or get_chat_store()

        if not isinstance(message_type, str) or message_type not in cls.USER_MESSAGE_TYPES:
            raise InvalidArgument(
                f"Unknown message type: {message_type!r}",
                details={"allowed": sorted(cls.USER_MESSAGE_TYPES)},
            )
        if content is None:
            content = ""
        if not isinstance(content, str):
            raise InvalidArgument("content must be a string")
        if len(content) > MESSAGE_CONFIG.MAX_CONTENT_LENGTH:
            raise InvalidArgument(
                "Message content is too long",
                details={"max_length": MESSAGE_CONFIG.MAX_CONTENT_LENGTH},
            )
        if message_type == MessageType.TEXT and not content.strip():
            raise InvalidArgument("Message content cannot be empty", error_code="EMPTY_CONTENT")
        if message_type != MessageType.TEXT and not (file_ref or content.strip()):
            raise InvalidArgument(
                "Media messages need a file_ref",
                error_code="MISSING_FILE_REF",
            )
        if file_ref is not None and not isinstance(file_ref, str):
            raise InvalidArgument("file_ref must be a string")
        if file_ref and len(file_ref) > MESSAGE_CONFIG.MAX_FILE_REF_LENGTH:
            raise InvalidArgument("file_ref is too long")
        if reply_to is not None:
            reply_to = _as_int("reply_to", reply_to)

        _require_participant(store, conversation_id, sender)

        with cls.atomic():
            message = store.insert_message(
                conversation_id,
                sender.id,
                content,
                message_type,
                file_ref=file_ref,
                reply_to_id=reply_to,
            )
            recipient_ids = [
                user_id
                for user_id in store.list_participant_ids(conversation_id)
                if user_id != sender.id
            ]
            store.create_message_statuses(message.pk, recipient_ids)

        cls.get_logger().debug(
            f"User {sender.id} sent message {message.pk} "
            f"to conversation {conversation_id}"
        )
        return store.get_message(message.pk)

    @classmethod
    def list_messages(
        cls,
        conversation_id,
        requester: User,
        page=1,
        page_size=MESSAGE_CONFIG.DEFAULT_PAGE_SIZE,
        store: ChatStore | None = None,
    ) -> list[Message]:
        """
        Return one page of history, ordered oldest first.

        Page 1 holds the newest page_size messages; higher pages go back in
        time without overlap or gap.

        Raises:
            AccessDenied: Requester is not a participant
            InvalidArgument: page < 1 or page_size outside 1..MAX_PAGE_SIZE
        """
        store = store or get_chat_store()
        page = _as_int("page", page)
        page_size = _as_int("page_size", page_size)
        if page < 1:
            raise InvalidArgument("page must be at least 1", details={"page": page})
        if not 1 <= page_size <= MESSAGE_CONFIG.MAX_PAGE_SIZE:
            raise InvalidArgument(
                f"page_size must be between 1 and {MESSAGE_CONFIG.MAX_PAGE_SIZE}",
                details={"page_size": page_size},
            )

        _require_participant(store, conversation_id, requester)
        return store.list_messages(conversation_id, page, page_size)

    @classmethod
    def count_messages(cls, conversation_id, requester: User, store: ChatStore | None = None) -> int:
        """Total messages in a conversation."""
        store = store or get_chat_store()
        _require_participant(store, conversation_id, requester)
        return store.count_messages(conversation_id)

    @classmethod
    def mark_read(
        cls,
        message_id,
        user: User,
        conversation_id=None,
        store: ChatStore | None = None,
    ) -> tuple[Message, bool]:
        """
        Mark a message read for a user.

        Idempotent: a message already read stays read and no error is
        raised. The sender marking their own message is a no-op.

        Args:
            message_id: Message to mark
            user: Reading user
            conversation_id: If given, must match the message's conversation

        Returns:
            (message, changed): changed is True only when the status moved
            to read in this call

        Raises:
            NotFoundError: Unknown message
            AccessDenied: User is not a participant
            InvalidArgument: conversation_id does not match
        """
        store = store or get_chat_store()
        message = store.get_message(message_id)

        if conversation_id is not None and str(conversation_id) != str(message.conversation_id):
            raise InvalidArgument(
                "Message does not belong to this conversation",
                details={"message_id": message.pk, "conversation_id": conversation_id},
            )
        _require_participant(store, message.conversation_id, user)

        if message.sender_id == user.id:
            return message, False

        previous = store.get_message_status(message.pk, user.id)
        if previous == DeliveryStatus.READ:
            return message, False

        current = store.upsert_message_status(message.pk, user.id, DeliveryStatus.READ)
        changed = current == DeliveryStatus.READ
        if changed:
            cls.get_logger().debug(f"User {user.id} read message {message.pk}")
        return message, changed

    @classmethod
    def list_statuses(cls, message_id, requester: User, store: ChatStore | None = None) -> dict:
        """Per-recipient statuses of a message, for participants."""
        store = store or get_chat_store()
        message = store.get_message(message_id)
        _require_participant(store, message.conversation_id, requester)
        return store.list_message_statuses(message.pk)


class UserDirectoryService(BaseService):
    """
    Service for user lookups.

    Methods:
        search: Find users by handle, display name or email
        get_profile: Load a user's profile
        update_profile: Change editable profile fields
        get_presence: Online flag and last activity of a user
    """

    @classmethod
    def search(
        cls,
        query: str,
        requester: User,
        limit: int = MESSAGE_CONFIG.SEARCH_DEFAULT_LIMIT,
        store: ChatStore | None = None,
    ) -> list[User]:
        """
        Search active users, excluding the requester.

        Raises:
            InvalidArgument: Blank query
        """
        store = store or get_chat_store()
        query = (query or "").strip()
        if not query:
            raise InvalidArgument("Search query cannot be empty")
        limit = max(1, min(_as_int("limit", limit), MESSAGE_CONFIG.SEARCH_MAX_LIMIT))
        return store.search_users(query, exclude_user_id=requester.id, limit=limit)

    @classmethod
    def get_profile(cls, user_id, store: ChatStore | None = None) -> User:
        """Load a user by id. Raises NotFoundError."""
        store = store or get_chat_store()
        return store.find_user_by_id(user_id)

    @classmethod
    def update_profile(cls, user: User, store: ChatStore | None = None, **fields) -> User:
        """Update display_name, bio, profile_picture or public_key."""
        store = store or get_chat_store()
        updated = store.update_profile(user.id, **fields)
        cls.get_logger().info(f"User {user.id} updated profile fields: {sorted(fields)}")
        return updated

    @classmethod
    def get_presence(cls, user_id, store: ChatStore | None = None) -> dict:
        """
        Presence of a user as seen by the tracker.

        Returns:
            Dict with user_id, handle, is_online and last_active
        """
        store = store or get_chat_store()
        user = store.find_user_by_id(user_id)
        return {
            "user_id": str(user.pk),
            "handle": user.handle,
            "is_online": get_presence_tracker().is_online(user.pk),
            "last_active": user.last_active,
        }
