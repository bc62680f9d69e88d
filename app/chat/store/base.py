"""
Abstract base class for the chat persistence store.

This module defines the contract that every persistence backing must
follow. The service layer, the presence tracker and the delivery tracker
talk to this contract only, so the backing can be swapped (embedded
SQLite, networked PostgreSQL, or a different store altogether) without
touching business logic.

Every operation is synchronous. Async callers (the websocket consumer)
wrap calls with channels.db.database_sync_to_async.

Failure contract:
    - Unique-constraint violations raise core.exceptions.ConflictError
    - Unknown references raise core.exceptions.NotFoundError
    - Invariant violations at the boundary raise core.exceptions.InvalidArgument
    - Any other persistence fault raises core.exceptions.StorageError,
      never retried by the store
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence
    from datetime import datetime

    from authentication.models import User
    from chat.models import Conversation, Message, Participant


class ChatStore(ABC):
    """
    Durable storage for users, conversations, messages and message statuses.

    Invariants enforced at this boundary:
    - A user appears at most once per conversation
    - A private conversation has exactly two participants and is unique per pair
    - A reply reference resolves to a message in the same conversation
    - A message status never moves to a lower rank
    """

    # -------------------------------------------------------------------------
    # Users
    # -------------------------------------------------------------------------

    @abstractmethod
    def create_user(
        self,
        handle: str,
        display_name: str = "",
        password: str | None = None,
        public_key: str = "",
        **extra_fields,
    ) -> User:
        """Create a user. Duplicate handle raises ConflictError."""

    @abstractmethod
    def find_user_by_handle(self, handle: str) -> User:
        """Case-insensitive lookup. Raises NotFoundError."""

    @abstractmethod
    def find_user_by_id(self, user_id) -> User:
        """Raises NotFoundError."""

    @abstractmethod
    def search_users(
        self, query: str, exclude_user_id=None, limit: int = 20
    ) -> list[User]:
        """Active users whose handle, display name or email contains query."""

    @abstractmethod
    def update_user_presence(
        self, user_id, is_online: bool, last_active: datetime
    ) -> None:
        """Write the cached online flag and last-active timestamp."""

    @abstractmethod
    def update_profile(self, user_id, **fields) -> User:
        """Update editable profile fields. Raises NotFoundError."""

    # -------------------------------------------------------------------------
    # Conversations
    # -------------------------------------------------------------------------

    @abstractmethod
    def create_conversation(
        self,
        conversation_type: str,
        creator_id,
        participants: Sequence[tuple],
        name: str = "",
        description: str = "",
    ) -> Conversation:
        """
        Create a conversation with its participant rows atomically.

        Args:
            conversation_type: "private" or "group"
            creator_id: User creating the conversation
            participants: (user_id, role) pairs, creator included
            name: Group name
            description: Group description

        Raises:
            InvalidArgument: Private conversation without exactly two distinct users
            ConflictError: Private pair already exists, or duplicate participant
            NotFoundError: Unknown user
        """

    @abstractmethod
    def get_conversation(self, conversation_id) -> Conversation:
        """Raises NotFoundError."""

    @abstractmethod
    def find_private_conversation_between(
        self, user_a_id, user_b_id
    ) -> Conversation | None:
        """Return the private conversation between two users, if any."""

    @abstractmethod
    def add_participant(self, conversation_id, user_id, role: str) -> Participant:
        """Add a user to a group conversation."""

    @abstractmethod
    def get_participant(self, conversation_id, user_id) -> Participant | None:
        """Return the membership row, or None for non-participants."""

    @abstractmethod
    def is_participant(self, conversation_id, user_id) -> bool:
        """Check membership."""

    @abstractmethod
    def list_participant_ids(self, conversation_id) -> list:
        """Return the user ids of every participant."""

    @abstractmethod
    def list_conversation_ids_for_user(self, user_id) -> list[int]:
        """Return ids of every conversation the user participates in."""

    @abstractmethod
    def list_conversations_for_user(self, user_id) -> list[Conversation]:
        """Conversations ordered by most-recent-message time, newest first."""

    # -------------------------------------------------------------------------
    # Messages
    # -------------------------------------------------------------------------

    @abstractmethod
    def insert_message(
        self,
        conversation_id,
        sender_id,
        content: str,
        message_type: str,
        file_ref: str | None = None,
        reply_to_id=None,
    ) -> Message:
        """Persist a message with the next sequence number of its conversation."""

    @abstractmethod
    def get_message(self, message_id) -> Message:
        """Raises NotFoundError."""

    @abstractmethod
    def list_messages(
        self, conversation_id, page: int, page_size: int
    ) -> list[Message]:
        """
        Return one page of history, oldest first within the page.

        Page 1 holds the newest ``page_size`` messages, page 2 the next
        older ones, with no overlap and no gap.
        """

    @abstractmethod
    def count_messages(self, conversation_id) -> int:
        """Number of messages in a conversation."""

    @abstractmethod
    def latest_message(self, conversation_id) -> Message | None:
        """Most recent message of a conversation, if any."""

    # -------------------------------------------------------------------------
    # Message statuses
    # -------------------------------------------------------------------------

    @abstractmethod
    def create_message_statuses(
        self, message_id, recipient_ids: Iterable, status: str = "sent"
    ) -> None:
        """Create one status row per recipient."""

    @abstractmethod
    def upsert_message_status(self, message_id, user_id, status: str) -> str:
        """
        Raise a recipient's status to ``status`` if it is higher.

        Creates the row when missing. Never lowers the rank.

        Returns:
            The status stored after the call
        """

    @abstractmethod
    def get_message_status(self, message_id, user_id) -> str | None:
        """Current status for one recipient, or None."""

    @abstractmethod
    def list_message_statuses(self, message_id) -> dict:
        """Map of recipient id to status."""

    @abstractmethod
    def advance_pending_statuses(
        self, user_id, from_status: str = "sent", to_status: str = "delivered"
    ) -> list[int]:
        """Move every status of a user from one state to a higher one."""

    @abstractmethod
    def unread_count(self, conversation_id, user_id) -> int:
        """Messages addressed to the user in a conversation that are not read."""
