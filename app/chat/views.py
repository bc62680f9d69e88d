"""
Views for chat API.

This module provides REST API endpoints for the chat system:
- ConversationViewSet: List, create and retrieve conversations, add members
- MessageViewSet: Message history and sending (nested under conversation)
- MessageReadView / MessageStatusListView: Read receipts and statuses
- UserSearchView / UserPresenceView: User directory

URL Structure:
    /api/v1/chat/conversations/                          GET, POST
    /api/v1/chat/conversations/{id}/                     GET
    /api/v1/chat/conversations/{id}/participants/        POST
    /api/v1/chat/conversations/{id}/messages/            GET, POST
    /api/v1/chat/messages/{id}/read/                     POST
    /api/v1/chat/messages/{id}/statuses/                 GET
    /api/v1/chat/users/search/                           GET
    /api/v1/chat/presence/{user_id}/                     GET

Design Decisions:
    - Views are thin: validation of the request shape happens in
      serializers, everything else in the service layer
    - Service errors (core.exceptions) propagate to the project exception
      handler, which renders {"error", "error_code", "details"}
    - Writes are pushed to connected clients through the same channel
      layer events the WebSocket gateway emits
"""

from __future__ import annotations

from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import (
    OpenApiParameter,
    OpenApiResponse,
    extend_schema,
    extend_schema_view,
)
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from authentication.serializers import UserSerializer
from chat.delivery import DeliveryStatusTracker
from chat.events import (
    broadcast_to_conversation_sync,
    message_read_event,
    new_message_event,
    notify_conversation_joined_sync,
)
from chat.pagination import MessagePagePagination
from chat.serializers import (
    ConversationCreateSerializer,
    ConversationDetailSerializer,
    ConversationListSerializer,
    MessageCreateSerializer,
    MessageSerializer,
    MessageStatusSerializer,
    ParticipantCreateSerializer,
    ParticipantSerializer,
    PresenceSerializer,
)
from chat.services import ConversationService, MessageService, UserDirectoryService
from chat.store import get_chat_store

CONVERSATION_ID_PARAMETER = OpenApiParameter(
    name="conversation_pk",
    type=OpenApiTypes.INT,
    location=OpenApiParameter.PATH,
    description="Conversation id",
)


@extend_schema_view(
    list=extend_schema(
        operation_id="list_conversations",
        summary="List conversations",
        description=(
            "Conversations of the current user, most recent message first. "
            "Each entry carries the peer (private conversations), the last "
            "message and the user's unread count."
        ),
        responses={200: ConversationListSerializer(many=True)},
        tags=["Chat - Conversations"],
    ),
    create=extend_schema(
        operation_id="create_conversation",
        summary="Create conversation",
        description=(
            "Create a private or group conversation. Creating a private "
            "conversation that already exists returns it with status 200."
        ),
        request=ConversationCreateSerializer,
        responses={
            201: ConversationDetailSerializer,
            200: OpenApiResponse(
                response=ConversationDetailSerializer,
                description="Existing private conversation",
            ),
        },
        tags=["Chat - Conversations"],
    ),
    retrieve=extend_schema(
        operation_id="get_conversation",
        summary="Get conversation",
        responses={200: ConversationDetailSerializer},
        tags=["Chat - Conversations"],
    ),
)
class ConversationViewSet(viewsets.ViewSet):
    """
    ViewSet for conversation operations.

    list:
        Get all conversations for the current user.

    create:
        Create a new conversation (private or group).
        For private: returns existing if found, creates if not.

    retrieve:
        Get conversation details including all participants.

    participants:
        Add a member to a group. Admins only.
    """

    permission_classes = [IsAuthenticated]
    lookup_value_regex = r"\d+"

    def list(self, request):
        conversations = ConversationService.list_conversations(request.user)
        serializer = ConversationListSerializer(
            conversations, many=True, context={"request": request}
        )
        return Response(serializer.data)

    def create(self, request):
        """Create a conversation (private or group)."""
        serializer = ConversationCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        conversation, created = ConversationService.create_conversation(
            creator=request.user,
            conversation_type=data["conversation_type"],
            participant_ids=data["participant_ids"],
            name=data.get("name"),
            description=data.get("description"),
        )

        if created:
            participant_ids = get_chat_store().list_participant_ids(conversation.pk)
            notify_conversation_joined_sync(conversation.pk, participant_ids)

        conversation = ConversationService.get_conversation(conversation.pk, request.user)
        output_serializer = ConversationDetailSerializer(conversation, context={"request": request})
        return Response(
            output_serializer.data,
            status=status.HTTP_201_CREATED if created else status.HTTP_200_OK,
        )

    def retrieve(self, request, pk=None):
        conversation = ConversationService.get_conversation(pk, request.user)
        serializer = ConversationDetailSerializer(conversation, context={"request": request})
        return Response(serializer.data)

    @extend_schema(
        operation_id="add_participant",
        summary="Add participant",
        description="Add a user to a group conversation. Only admins can add members.",
        request=ParticipantCreateSerializer,
        responses={201: ParticipantSerializer},
        tags=["Chat - Conversations"],
    )
    @action(detail=True, methods=["post"])
    def participants(self, request, pk=None):
        serializer = ParticipantCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        participant = ConversationService.add_participant(
            conversation_id=pk,
            actor=request.user,
            user_id=serializer.validated_data["user_id"],
        )
        notify_conversation_joined_sync(participant.conversation_id, [participant.user_id])

        return Response(ParticipantSerializer(participant).data, status=status.HTTP_201_CREATED)


@extend_schema_view(
    list=extend_schema(
        operation_id="list_messages",
        summary="List messages",
        description=(
            "One page of message history. Page 1 holds the newest messages; "
            "messages within a page are ordered oldest first."
        ),
        parameters=[
            CONVERSATION_ID_PARAMETER,
            OpenApiParameter(name="page", type=OpenApiTypes.INT, location=OpenApiParameter.QUERY),
            OpenApiParameter(
                name="page_size", type=OpenApiTypes.INT, location=OpenApiParameter.QUERY
            ),
        ],
        responses={200: MessageSerializer(many=True)},
        tags=["Chat - Messages"],
    ),
    create=extend_schema(
        operation_id="send_message",
        summary="Send message",
        description=(
            "Send a message. Connected participants receive a new_message "
            "event; recipients online at that moment are marked delivered."
        ),
        parameters=[CONVERSATION_ID_PARAMETER],
        request=MessageCreateSerializer,
        responses={201: MessageSerializer},
        tags=["Chat - Messages"],
    ),
)
class MessageViewSet(viewsets.ViewSet):
    """
    ViewSet for message operations, nested under a conversation.

    list:
        Get messages page by page, newest page first.

    create:
        Send a message to the conversation.
    """

    permission_classes = [IsAuthenticated]
    pagination_class = MessagePagePagination

    def list(self, request, conversation_pk=None):
        paginator = self.pagination_class()
        page, page_size = paginator.get_page_params(request)

        messages = MessageService.list_messages(
            conversation_pk, request.user, page=page, page_size=page_size
        )
        total = MessageService.count_messages(conversation_pk, request.user)

        serializer = MessageSerializer(messages, many=True)
        return paginator.get_paginated_response(serializer.data, int(page), int(page_size), total)

    def create(self, request, conversation_pk=None):
        """Send a message."""
        serializer = MessageCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        message = MessageService.post_message(
            conversation_id=conversation_pk,
            sender=request.user,
            content=data["content"],
            message_type=data["message_type"],
            file_ref=data.get("file_ref") or None,
            reply_to=data.get("reply_to"),
        )

        broadcast_to_conversation_sync(message.conversation_id, new_message_event(message))
        recipient_ids = [
            user_id
            for user_id in get_chat_store().list_participant_ids(message.conversation_id)
            if user_id != request.user.id
        ]
        DeliveryStatusTracker.mark_delivered_for_online(message, recipient_ids)

        return Response(MessageSerializer(message).data, status=status.HTTP_201_CREATED)


class MessageReadView(APIView):
    """
    Mark a message as read.

    POST /api/v1/chat/messages/{message_id}/read/
        Idempotent. Broadcasts message_read only when the status changed.
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="mark_message_read",
        summary="Mark message read",
        request=None,
        responses={
            200: OpenApiResponse(description="{message_id, status, changed}"),
        },
        tags=["Chat - Messages"],
    )
    def post(self, request, message_id):
        message, changed = MessageService.mark_read(message_id, request.user)
        if changed:
            broadcast_to_conversation_sync(
                message.conversation_id,
                message_read_event(message.pk, message.conversation_id, request.user.id),
            )
        return Response(
            {
                "message_id": message.pk,
                "status": get_chat_store().get_message_status(message.pk, request.user.id),
                "changed": changed,
            }
        )


class MessageStatusListView(APIView):
    """
    Per-recipient delivery statuses of a message.

    GET /api/v1/chat/messages/{message_id}/statuses/
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="list_message_statuses",
        summary="List message statuses",
        responses={200: MessageStatusSerializer(many=True)},
        tags=["Chat - Messages"],
    )
    def get(self, request, message_id):
        statuses = MessageService.list_statuses(message_id, request.user)
        data = [
            {"user_id": user_id, "status": value}
            for user_id, value in sorted(statuses.items(), key=lambda item: str(item[0]))
        ]
        return Response(MessageStatusSerializer(data, many=True).data)


class UserSearchView(APIView):
    """
    Search users by handle, display name or email.

    GET /api/v1/chat/users/search/?q=<query>&limit=<n>
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="search_users",
        summary="Search users",
        parameters=[
            OpenApiParameter(
                name="q",
                type=OpenApiTypes.STR,
                location=OpenApiParameter.QUERY,
                required=True,
                description="Substring of a handle, display name or email",
            ),
            OpenApiParameter(name="limit", type=OpenApiTypes.INT, location=OpenApiParameter.QUERY),
        ],
        responses={200: UserSerializer(many=True)},
        tags=["Chat - Users"],
    )
    def get(self, request):
        users = UserDirectoryService.search(
            request.query_params.get("q", ""),
            requester=request.user,
            limit=request.query_params.get("limit", 20),
        )
        return Response(UserSerializer(users, many=True).data)


class UserPresenceView(APIView):
    """
    Get presence status for a specific user.

    GET /api/v1/chat/presence/{user_id}/
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="get_user_presence",
        summary="Get user presence",
        description=(
            "Whether the user has at least one open realtime connection, and "
            "when they were last active."
        ),
        parameters=[
            OpenApiParameter(
                name="user_id",
                type=OpenApiTypes.UUID,
                location=OpenApiParameter.PATH,
                description="UUID of the user to query",
            ),
        ],
        responses={200: PresenceSerializer},
        tags=["Chat - Presence"],
    )
    def get(self, request, user_id):
        presence = UserDirectoryService.get_presence(user_id)
        return Response(PresenceSerializer(presence).data)
