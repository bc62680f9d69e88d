"""
Django ORM implementation of the chat persistence store.

The backing database is whatever DATABASES["default"] points at
(DATABASE_URL), so the same code serves an embedded SQLite file and a
networked PostgreSQL server.

Design Decisions:
    - Private conversation uniqueness is a unique constraint on
      PrivateConversationPair, so racing creators cannot both succeed
    - Message sequence numbers are allocated while holding a row lock on
      the conversation (SELECT ... FOR UPDATE); SQLite serializes writers
      on its own
    - Status upserts are conditional UPDATEs filtered on lower-ranked
      statuses, so concurrent delivered/read writes resolve to the maximum
    - Foreign keys are checked explicitly before writes because Django
      creates them DEFERRABLE INITIALLY DEFERRED, which would surface an
      unknown reference only at commit time
"""

from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager
from typing import TYPE_CHECKING

from django.contrib.auth import get_user_model
from django.core.exceptions import ObjectDoesNotExist
from django.db import DatabaseError, IntegrityError, transaction
from django.db.models import Count, F, IntegerField, OuterRef, Prefetch, Q, Subquery
from django.db.models.functions import Coalesce
from django.utils import timezone

from chat.models import (
    STATUS_RANK,
    Conversation,
    ConversationType,
    DeliveryStatus,
    Message,
    MessageStatus,
    MessageType,
    Participant,
    ParticipantRole,
    PrivateConversationPair,
    statuses_below,
)
from chat.store.base import ChatStore
from core.exceptions import (
    BaseApplicationError,
    ConflictError,
    InvalidArgument,
    NotFoundError,
    StorageError,
)

if TYPE_CHECKING:
    from collections.abc import Generator, Iterable, Sequence
    from datetime import datetime

    from authentication.models import User

logger = logging.getLogger(__name__)

PROFILE_FIELDS = frozenset({"display_name", "bio", "profile_picture", "public_key"})


@contextmanager
def translate_errors(action: str) -> Generator[None, None, None]:
    """
    Map database exceptions onto the application error taxonomy.

    Application errors raised inside the block pass through untouched.
    """
    try:
        yield
    except BaseApplicationError:
        raise
    except IntegrityError as exc:
        raise ConflictError(
            f"Could not {action}: a conflicting record already exists"
        ) from exc
    except ObjectDoesNotExist as exc:
        raise NotFoundError(f"Could not {action}: {exc}") from exc
    except DatabaseError as exc:
        logger.exception(f"Storage failure while trying to {action}")
        raise StorageError(f"Could not {action}: storage unavailable") from exc


def as_user_id(value) -> uuid.UUID:
    """Coerce a user id from a payload into a UUID."""
    try:
        return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))
    except (TypeError, ValueError, AttributeError) as exc:
        raise InvalidArgument(
            f"Invalid user id: {value!r}", details={"user_id": str(value)}
        ) from exc


def parse_status(value: str) -> DeliveryStatus:
    """Coerce a status string into a DeliveryStatus."""
    try:
        return DeliveryStatus(value)
    except ValueError as exc:
        raise InvalidArgument(
            f"Unknown message status: {value!r}",
            details={"allowed": list(DeliveryStatus.values)},
        ) from exc


class DjangoChatStore(ChatStore):
    """
    Persistence store backed by the Django ORM.

    Usage:
        from chat.store import get_chat_store

        store = get_chat_store()
        conversation = store.create_conversation(
            "private", alice.id, [(alice.id, "member"), (bob.id, "member")]
        )
        message = store.insert_message(conversation.id, alice.id, "hello", "text")
    """

    # -------------------------------------------------------------------------
    # Users
    # -------------------------------------------------------------------------

    def create_user(
        self,
        handle: str,
        display_name: str = "",
        password: str | None = None,
        public_key: str = "",
        **extra_fields,
    ) -> User:
        User = get_user_model()
        if User.objects.filter(handle__iexact=handle).exists():
            raise ConflictError(
                "Handle is already taken",
                error_code="HANDLE_TAKEN",
                details={"handle": handle},
            )
        with translate_errors("create user"), transaction.atomic():
            return User.objects.create_user(
                handle=handle,
                password=password,
                display_name=display_name or handle,
                public_key=public_key,
                **extra_fields,
            )

    def find_user_by_handle(self, handle: str) -> User:
        with translate_errors("find user"):
            user = get_user_model().objects.filter(handle__iexact=handle).first()
        if user is None:
            raise NotFoundError("User not found", details={"handle": handle})
        return user

    def find_user_by_id(self, user_id) -> User:
        user_id = as_user_id(user_id)
        with translate_errors("find user"):
            user = get_user_model().objects.filter(pk=user_id).first()
        if user is None:
            raise NotFoundError("User not found", details={"user_id": str(user_id)})
        return user

    def search_users(self, query: str, exclude_user_id=None, limit: int = 20) -> list[User]:
        queryset = get_user_model().objects.filter(
            Q(handle__icontains=query)
            | Q(display_name__icontains=query)
            | Q(email__icontains=query),
            is_active=True,
        )
        if exclude_user_id is not None:
            queryset = queryset.exclude(pk=exclude_user_id)
        with translate_errors("search users"):
            return list(queryset.order_by("handle")[:limit])

    def update_user_presence(self, user_id, is_online: bool, last_active: datetime) -> None:
        with translate_errors("update presence"):
            get_user_model().objects.filter(pk=user_id).update(
                is_online=is_online, last_active=last_active
            )

    def update_profile(self, user_id, **fields) -> User:
        unknown = set(fields) - PROFILE_FIELDS
        if unknown:
            raise InvalidArgument(
                "These profile fields cannot be changed",
                details={"fields": sorted(unknown)},
            )
        user = self.find_user_by_id(user_id)
        for name, value in fields.items():
            setattr(user, name, value)
        with translate_errors("update profile"):
            user.save(update_fields=[*fields, "updated_at"])
        return user

    # -------------------------------------------------------------------------
    # Conversations
    # -------------------------------------------------------------------------

    def create_conversation(
        self,
        conversation_type: str,
        creator_id,
        participants: Sequence[tuple],
        name: str = "",
        description: str = "",
    ) -> Conversation:
        if conversation_type not in ConversationType.values:
            raise InvalidArgument(
                f"Unknown conversation type: {conversation_type!r}",
                details={"allowed": list(ConversationType.values)},
            )
        members = [(as_user_id(user_id), role) for user_id, role in participants]
        user_ids = [user_id for user_id, _ in members]
        if len(set(user_ids)) != len(user_ids):
            raise ConflictError(
                "A user can appear only once per conversation",
                error_code="DUPLICATE_PARTICIPANT",
            )
        is_private = conversation_type == ConversationType.PRIVATE
        if is_private and len(user_ids) != 2:
            raise InvalidArgument(
                "A private conversation needs exactly two participants",
                details={"participant_count": len(user_ids)},
            )
        if not user_ids:
            raise InvalidArgument("A conversation needs at least one participant")

        User = get_user_model()
        with translate_errors("create conversation"), transaction.atomic():
            found = set(User.objects.filter(pk__in=user_ids).values_list("pk", flat=True))
            missing = [str(user_id) for user_id in user_ids if user_id not in found]
            if missing:
                raise NotFoundError("Unknown participant", details={"user_ids": missing})

            conversation = Conversation.objects.create(
                conversation_type=conversation_type,
                name="" if is_private else name,
                description="" if is_private else description,
                created_by_id=creator_id,
            )
            if is_private:
                lower, higher = PrivateConversationPair.canonical(*user_ids)
                PrivateConversationPair.objects.create(
                    conversation=conversation,
                    user_lower_id=lower,
                    user_higher_id=higher,
                )
            Participant.objects.bulk_create(
                Participant(conversation=conversation, user_id=user_id, role=role)
                for user_id, role in members
            )
        return conversation

    def get_conversation(self, conversation_id) -> Conversation:
        with translate_errors("load conversation"):
            conversation = (
                Conversation.objects.filter(pk=conversation_id)
                .prefetch_related("participants__user")
                .first()
            )
        if conversation is None:
            raise NotFoundError(
                "Conversation not found",
                details={"conversation_id": conversation_id},
            )
        return conversation

    def find_private_conversation_between(self, user_a_id, user_b_id) -> Conversation | None:
        lower, higher = PrivateConversationPair.canonical(user_a_id, user_b_id)
        with translate_errors("find private conversation"):
            pair = (
                PrivateConversationPair.objects.filter(
                    user_lower_id=lower, user_higher_id=higher
                )
                .select_related("conversation")
                .first()
            )
        return pair.conversation if pair else None

    def add_participant(self, conversation_id, user_id, role: str) -> Participant:
        if role not in ParticipantRole.values:
            raise InvalidArgument(f"Unknown role: {role!r}")
        conversation = self.get_conversation(conversation_id)
        if conversation.is_private:
            raise InvalidArgument(
                "Participants cannot be added to a private conversation",
                details={"conversation_id": conversation.pk},
            )
        user = self.find_user_by_id(user_id)
        if self.is_participant(conversation.pk, user.pk):
            raise ConflictError(
                "User is already a participant",
                error_code="DUPLICATE_PARTICIPANT",
                details={"conversation_id": conversation.pk, "user_id": str(user.pk)},
            )
        with translate_errors("add participant"), transaction.atomic():
            return Participant.objects.create(
                conversation=conversation, user=user, role=role
            )

    def get_participant(self, conversation_id, user_id) -> Participant | None:
        with translate_errors("load participant"):
            return Participant.objects.filter(
                conversation_id=conversation_id, user_id=user_id
            ).first()

    def is_participant(self, conversation_id, user_id) -> bool:
        with translate_errors("check participant"):
            return Participant.objects.filter(
                conversation_id=conversation_id, user_id=user_id
            ).exists()

    def list_participant_ids(self, conversation_id) -> list:
        with translate_errors("list participants"):
            return list(
                Participant.objects.filter(conversation_id=conversation_id)
                .order_by("joined_at", "id")
                .values_list("user_id", flat=True)
            )

    def list_conversation_ids_for_user(self, user_id) -> list[int]:
        with translate_errors("list conversations"):
            return list(
                Participant.objects.filter(user_id=user_id)
                .order_by("conversation_id")
                .values_list("conversation_id", flat=True)
            )

    def list_conversations_for_user(self, user_id) -> list[Conversation]:
        """
        Each conversation carries latest_messages (zero or one message) and
        viewer_unread_count for user_id, loaded in a fixed number of queries.
        """
        unread = (
            MessageStatus.objects.filter(message__conversation_id=OuterRef("pk"), user_id=user_id)
            .exclude(status=DeliveryStatus.READ)
            .order_by()
            .values("message__conversation_id")
            .annotate(total=Count("pk"))
            .values("total")
        )
        latest = Message.objects.select_related("sender").order_by("-sequence")

        with translate_errors("list conversations"):
            return list(
                Conversation.objects.filter(participants__user_id=user_id)
                .annotate(
                    viewer_unread_count=Coalesce(
                        Subquery(unread, output_field=IntegerField()), 0
                    )
                )
                .order_by(
                    F("last_message_at").desc(nulls_last=True), "-created_at", "-id"
                )
                .prefetch_related(
                    "participants__user",
                    Prefetch("messages", queryset=latest[:1], to_attr="latest_messages"),
                )
            )

    # -------------------------------------------------------------------------
    # Messages
    # -------------------------------------------------------------------------

    def insert_message(
        self,
        conversation_id,
        sender_id,
        content: str,
        message_type: str,
        file_ref: str | None = None,
        reply_to_id=None,
    ) -> Message:
        if message_type not in MessageType.values:
            raise InvalidArgument(
                f"Unknown message type: {message_type!r}",
                details={"allowed": list(MessageType.values)},
            )

        with translate_errors("insert message"), transaction.atomic():
            conversation = (
                Conversation.objects.select_for_update()
                .filter(pk=conversation_id)
                .first()
            )
            if conversation is None:
                raise NotFoundError(
                    "Conversation not found",
                    details={"conversation_id": conversation_id},
                )
            if sender_id is not None and not get_user_model().objects.filter(pk=sender_id).exists():
                raise NotFoundError("Sender not found", details={"user_id": str(sender_id)})
            if reply_to_id is not None:
                reply_conversation_id = (
                    Message.objects.filter(pk=reply_to_id)
                    .values_list("conversation_id", flat=True)
                    .first()
                )
                if reply_conversation_id is None:
                    raise NotFoundError(
                        "Replied-to message not found",
                        details={"reply_to": reply_to_id},
                    )
                if reply_conversation_id != conversation.pk:
                    raise InvalidArgument(
                        "Replies must reference a message in the same conversation",
                        details={"reply_to": reply_to_id},
                    )

            message = Message.objects.create(
                conversation=conversation,
                sender_id=sender_id,
                content=content,
                message_type=message_type,
                file_ref=file_ref or "",
                reply_to_id=reply_to_id,
                sequence=conversation.next_sequence,
            )
            Conversation.objects.filter(pk=conversation.pk).update(
                next_sequence=F("next_sequence") + 1,
                last_message_at=message.created_at,
            )
        return message

    def get_message(self, message_id) -> Message:
        with translate_errors("load message"):
            message = (
                Message.objects.filter(pk=message_id)
                .select_related("sender", "reply_to__sender")
                .first()
            )
        if message is None:
            raise NotFoundError("Message not found", details={"message_id": message_id})
        return message

    def list_messages(self, conversation_id, page: int, page_size: int) -> list[Message]:
        if page < 1 or page_size < 1:
            raise InvalidArgument(
                "page and page_size must be positive",
                details={"page": page, "page_size": page_size},
            )
        offset = (page - 1) * page_size
        with translate_errors("list messages"):
            newest_first = list(
                Message.objects.filter(conversation_id=conversation_id)
                .select_related("sender", "reply_to__sender")
                .order_by("-sequence")[offset : offset + page_size]
            )
        newest_first.reverse()
        return newest_first

    def count_messages(self, conversation_id) -> int:
        with translate_errors("count messages"):
            return Message.objects.filter(conversation_id=conversation_id).count()

    def latest_message(self, conversation_id) -> Message | None:
        with translate_errors("load latest message"):
            return (
                Message.objects.filter(conversation_id=conversation_id)
                .select_related("sender")
                .order_by("-sequence")
                .first()
            )

    # -------------------------------------------------------------------------
    # Message statuses
    # -------------------------------------------------------------------------

    def create_message_statuses(
        self, message_id, recipient_ids: Iterable, status: str = DeliveryStatus.SENT
    ) -> None:
        status = parse_status(status)
        with translate_errors("create message statuses"):
            MessageStatus.objects.bulk_create(
                MessageStatus(message_id=message_id, user_id=user_id, status=status)
                for user_id in recipient_ids
            )

    def upsert_message_status(self, message_id, user_id, status: str) -> str:
        status = parse_status(status)
        if not Message.objects.filter(pk=message_id).exists():
            raise NotFoundError("Message not found", details={"message_id": message_id})

        with translate_errors("update message status"), transaction.atomic():
            row, created = MessageStatus.objects.get_or_create(
                message_id=message_id,
                user_id=user_id,
                defaults={"status": status},
            )
            if created:
                return status
            MessageStatus.objects.filter(
                pk=row.pk, status__in=statuses_below(status)
            ).update(status=status, updated_at=timezone.now())
            return MessageStatus.objects.values_list("status", flat=True).get(pk=row.pk)

    def get_message_status(self, message_id, user_id) -> str | None:
        with translate_errors("load message status"):
            return (
                MessageStatus.objects.filter(message_id=message_id, user_id=user_id)
                .values_list("status", flat=True)
                .first()
            )

    def list_message_statuses(self, message_id) -> dict:
        with translate_errors("list message statuses"):
            return dict(
                MessageStatus.objects.filter(message_id=message_id).values_list(
                    "user_id", "status"
                )
            )

    def advance_pending_statuses(
        self,
        user_id,
        from_status: str = DeliveryStatus.SENT,
        to_status: str = DeliveryStatus.DELIVERED,
    ) -> list[int]:
        from_status, to_status = parse_status(from_status), parse_status(to_status)
        if STATUS_RANK[to_status] <= STATUS_RANK[from_status]:
            raise InvalidArgument(
                "Statuses only move forward",
                details={"from": from_status.value, "to": to_status.value},
            )

        with translate_errors("advance message statuses"), transaction.atomic():
            pending = MessageStatus.objects.select_for_update().filter(
                user_id=user_id, status=from_status
            )
            message_ids = sorted(pending.values_list("message_id", flat=True))
            if message_ids:
                MessageStatus.objects.filter(
                    user_id=user_id, message_id__in=message_ids, status=from_status
                ).update(status=to_status, updated_at=timezone.now())
        return message_ids

    def unread_count(self, conversation_id, user_id) -> int:
        with translate_errors("count unread messages"):
            return (
                MessageStatus.objects.filter(
                    message__conversation_id=conversation_id, user_id=user_id
                )
                .exclude(status=DeliveryStatus.READ)
                .count()
            )
