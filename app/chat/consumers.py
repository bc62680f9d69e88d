"""
WebSocket consumer for the realtime gateway.

One ChatConsumer instance serves one client connection. Channels delivers
that connection's frames and group messages to it one at a time, so the
per-connection state below is never mutated concurrently and needs no
locks. Every store call crosses into a worker thread through
database_sync_to_async, so a slow query never blocks other connections.

Connection states:
    unauthenticated -> authenticating -> joined -> closed (terminal)

    - authenticating: the handshake credential is checked (JWTAuthMiddleware
      already resolved it into scope["user"])
    - joined: registered with presence, subscribed to one group per
      conversation plus the personal user group
    - closed: groups left, presence released; late events are dropped

Authentication:
    On failure the socket is accepted, an AUTHENTICATION_FAILED error event
    is sent and the socket is closed with code 4001.

Channel Groups:
    conversation_<id>: every connection of every participant
    user_<id>: every connection of one user (new conversation notices)

Message Types (from client):
    - send_message: {conversation_id, content, message_type?, file_ref?, reply_to?, client_id?}
    - mark_read: {message_id, conversation_id?}
    - typing_start / typing_stop: {conversation_id}
    - heartbeat: {}

Message Types (to client):
    - connection_established, new_message, message_sent, message_read,
      user_typing, user_stop_typing, user_online, user_offline,
      conversation_joined, heartbeat_ack, error
"""

from __future__ import annotations

import enum
import logging

from channels.db import database_sync_to_async
from channels.generic.websocket import AsyncJsonWebsocketConsumer
from django.utils import timezone

from chat.constants import GATEWAY_CONFIG, PRESENCE_CONFIG, conversation_group_name, user_group_name
from chat.delivery import DeliveryStatusTracker
from chat.events import (
    ClientEvent,
    ServerEvent,
    broadcast_to_conversation,
    conversation_joined_event,
    error_event,
    message_read_event,
    message_sent_event,
    new_message_event,
    presence_event,
    typing_event,
)
from chat.models import MessageType
from chat.presence import get_presence_tracker
from chat.services import MessageService
from chat.store import get_chat_store
from core.exceptions import (
    AccessDenied,
    AuthenticationError,
    BaseApplicationError,
    InvalidArgument,
    StorageError,
)

logger = logging.getLogger(__name__)


class ConnectionState(enum.Enum):
    """Lifecycle of one realtime connection."""

    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATING = "authenticating"
    JOINED = "joined"
    CLOSED = "closed"


def _int_field(content: dict, key: str, required: bool = True) -> int | None:
    value = content.get(key)
    if value is None:
        if required:
            raise InvalidArgument(f"{key} is required", details={"field": key})
        return None
    if isinstance(value, bool):
        raise InvalidArgument(f"{key} must be an integer", details={"field": key})
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise InvalidArgument(f"{key} must be an integer", details={"field": key}) from exc


class ChatConsumer(AsyncJsonWebsocketConsumer):
    """
    WebSocket consumer for real-time chat functionality.

    Handles:
        - Connection authentication
        - Presence registration and online/offline broadcasts
        - Joining/leaving conversation channel groups
        - Sending messages and delivery status updates
        - Read receipts
        - Typing indicators

    Attributes:
        state: Current ConnectionState
        user: Authenticated user (after connect)
        conversation_ids: Conversations whose group this connection joined
    """

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.state = ConnectionState.UNAUTHENTICATED
        self.user = None
        self.conversation_ids: set[int] = set()
        self.presence_registered = False
        self.handlers = {
            ClientEvent.SEND_MESSAGE: self.handle_send_message,
            ClientEvent.MARK_READ: self.handle_mark_read,
            ClientEvent.TYPING_START: self.handle_typing_start,
            ClientEvent.TYPING_STOP: self.handle_typing_stop,
            ClientEvent.HEARTBEAT: self.handle_heartbeat,
        }

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def connect(self):
        """
        Handle WebSocket connection.

        Authenticates, registers presence, subscribes to every conversation
        group and announces the user if this is their first connection.
        """
        self.state = ConnectionState.AUTHENTICATING
        await self.accept(subprotocol=self._negotiated_subprotocol())

        user = self.scope.get("user")
        if user is None or not user.is_authenticated:
            reason = self.scope.get("auth_error") or "Authentication required"
            logger.warning(f"Rejected unauthenticated WebSocket connection: {reason}")
            error = AuthenticationError(reason)
            await self.send_json(error_event(error.error_code, error.message))
            self.state = ConnectionState.CLOSED
            await self.close(code=GATEWAY_CONFIG.CLOSE_CODE_AUTHENTICATION_FAILED)
            return

        self.user = user
        try:
            came_online = await self._register_presence()
            self.presence_registered = True
            conversation_ids = await self._load_conversation_ids()
        except BaseApplicationError as exc:
            logger.error(f"Could not join user {user.id} to the gateway: {exc}")
            await self.send_json(error_event(exc.default_error_code, exc.message))
            await self._release()
            await self.close(code=1011)
            return

        for conversation_id in conversation_ids:
            await self._join_group(conversation_id)
        await self.channel_layer.group_add(user_group_name(user.id), self.channel_name)

        self.state = ConnectionState.JOINED
        await self.send_json(
            {
                "type": ServerEvent.CONNECTION_ESTABLISHED,
                "user_id": str(user.id),
                "handle": user.handle,
                "conversation_ids": sorted(self.conversation_ids),
                "heartbeat_interval": PRESENCE_CONFIG.HEARTBEAT_INTERVAL_SECONDS,
            }
        )
        logger.info(
            f"User {user.id} connected ({len(self.conversation_ids)} conversation(s))"
        )

        if came_online:
            try:
                await self._recompute_deliveries()
            except BaseApplicationError as exc:
                logger.error(f"Delivery recompute failed for user {user.id}: {exc}")
            await self._broadcast_presence(online=True)

    async def disconnect(self, close_code):
        """
        Handle WebSocket disconnection.

        Leaves every group, releases presence and announces the user as
        offline if this was their last connection.
        """
        was_joined = self.state is ConnectionState.JOINED
        self.state = ConnectionState.CLOSED
        if self.user is None:
            return

        went_offline = await self._release()
        logger.info(f"User {self.user.id} disconnected (code={close_code})")
        if was_joined and went_offline:
            await self._broadcast_presence(online=False)

    async def _release(self) -> bool:
        for conversation_id in list(self.conversation_ids):
            await self.channel_layer.group_discard(
                conversation_group_name(conversation_id), self.channel_name
            )
        await self.channel_layer.group_discard(user_group_name(self.user.id), self.channel_name)

        if not self.presence_registered:
            return False
        self.presence_registered = False
        try:
            return await self._deregister_presence()
        except BaseApplicationError as exc:
            logger.error(f"Could not release presence for user {self.user.id}: {exc}")
            return False

    # -------------------------------------------------------------------------
    # Inbound frames
    # -------------------------------------------------------------------------

    async def receive(self, text_data=None, bytes_data=None, **kwargs):
        """Decode a frame, reporting malformed JSON instead of crashing."""
        if self.state is not ConnectionState.JOINED:
            return
        if text_data is None:
            await self.send_json(
                error_event(InvalidArgument.default_error_code, "Binary frames are not supported")
            )
            return
        try:
            content = await self.decode_json(text_data)
        except ValueError:
            await self.send_json(
                error_event(InvalidArgument.default_error_code, "Malformed JSON payload")
            )
            return
        await self.receive_json(content, **kwargs)

    async def receive_json(self, content, **kwargs):
        """
        Dispatch a client event.

        Errors are reported to this connection only and never close it.
        """
        if self.state is not ConnectionState.JOINED:
            return
        if not isinstance(content, dict):
            await self.send_json(
                error_event(InvalidArgument.default_error_code, "Payload must be a JSON object")
            )
            return

        event_type = content.get("type")
        handler = self.handlers.get(event_type)
        if handler is None:
            await self.send_json(
                error_event(
                    InvalidArgument.default_error_code,
                    f"Unknown event type: {event_type}",
                    event_type if isinstance(event_type, str) else None,
                )
            )
            return

        await self._keep_alive()
        try:
            await handler(content)
        except BaseApplicationError as exc:
            if isinstance(exc, StorageError):
                logger.error(f"Storage failure handling {event_type} for user {self.user.id}: {exc}")
            elif isinstance(exc, AccessDenied):
                logger.warning(f"User {self.user.id} denied on {event_type}: {exc}")
            details = dict(exc.details)
            if exc.error_code != exc.default_error_code:
                details["reason"] = exc.error_code
            await self.send_json(
                error_event(exc.default_error_code, exc.message, event_type, details)
            )

    async def handle_send_message(self, content: dict):
        """Persist, broadcast, acknowledge, then mark online recipients delivered."""
        conversation_id = _int_field(content, "conversation_id")
        message, payload, recipient_ids = await self._post_message(
            conversation_id,
            content=content.get("content"),
            message_type=content.get("message_type") or MessageType.TEXT,
            file_ref=content.get("file_ref"),
            reply_to=_int_field(content, "reply_to", required=False),
        )

        await broadcast_to_conversation(message.conversation_id, payload)
        await self.send_json(message_sent_event(message, content.get("client_id")))

        try:
            await self._mark_delivered(message, recipient_ids)
        except BaseApplicationError as exc:
            logger.error(f"Could not mark message {message.pk} delivered: {exc}")

    async def handle_mark_read(self, content: dict):
        """Mark a message read and broadcast the receipt when it changed."""
        message_id = _int_field(content, "message_id")
        conversation_id = _int_field(content, "conversation_id", required=False)
        message, changed = await self._mark_read(message_id, conversation_id)
        if changed:
            await broadcast_to_conversation(
                message.conversation_id,
                message_read_event(message.pk, message.conversation_id, self.user.id),
            )

    async def handle_typing_start(self, content: dict):
        await self._broadcast_typing(content, started=True)

    async def handle_typing_stop(self, content: dict):
        await self._broadcast_typing(content, started=False)

    async def handle_heartbeat(self, content: dict):
        """Acknowledge a heartbeat; the refresh itself happens in receive_json."""
        await self.send_json(
            {"type": ServerEvent.HEARTBEAT_ACK, "server_time": timezone.now().isoformat()}
        )

    async def _keep_alive(self):
        """
        Refresh this connection's presence heartbeat.

        A handle removed by stale pruning while the socket stayed open is
        registered again, and a resulting came-online transition is handled
        like a fresh connect.
        """
        try:
            if await self._touch_presence():
                return
            came_online = await self._register_presence()
            self.presence_registered = True
        except BaseApplicationError as exc:
            logger.error(f"Could not refresh presence for user {self.user.id}: {exc}")
            return

        logger.info(f"User {self.user.id} re-registered after presence pruning")
        if came_online:
            try:
                await self._recompute_deliveries()
            except BaseApplicationError as exc:
                logger.error(f"Delivery recompute failed for user {self.user.id}: {exc}")
            await self._broadcast_presence(online=True)

    async def _broadcast_typing(self, content: dict, started: bool):
        conversation_id = _int_field(content, "conversation_id")
        if conversation_id not in self.conversation_ids:
            raise AccessDenied(
                "You are not a participant in this conversation",
                error_code="NOT_PARTICIPANT",
                details={"conversation_id": conversation_id},
            )
        await broadcast_to_conversation(
            conversation_id,
            typing_event(started, conversation_id, self.user.id, self.user.handle),
            exclude_user=self.user.id,
        )

    # -------------------------------------------------------------------------
    # Channel layer handlers
    # -------------------------------------------------------------------------

    async def chat_event(self, event):
        """
        Handle chat.event messages from the channel layer.

        Forwards the payload unless this connection or its user is excluded.
        """
        if self.state is not ConnectionState.JOINED:
            return
        if event.get("exclude_channel") == self.channel_name:
            return
        if event.get("exclude_user") == str(self.user.id):
            return
        await self.send_json(event["event"])

    async def chat_join(self, event):
        """
        Handle chat.join messages sent to the personal user group.

        Subscribes this connection to a conversation created after it joined.
        """
        if self.state is not ConnectionState.JOINED:
            return
        conversation_id = event["conversation_id"]
        if conversation_id in self.conversation_ids:
            return
        await self._join_group(conversation_id)
        await self.send_json(conversation_joined_event(conversation_id))

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _negotiated_subprotocol(self) -> str | None:
        subprotocols = self.scope.get("subprotocols") or []
        return "jwt" if subprotocols and subprotocols[0] == "jwt" else None

    async def _join_group(self, conversation_id: int):
        self.conversation_ids.add(conversation_id)
        await self.channel_layer.group_add(
            conversation_group_name(conversation_id), self.channel_name
        )

    async def _broadcast_presence(self, online: bool):
        last_active = timezone.now()
        for conversation_id in sorted(self.conversation_ids):
            await broadcast_to_conversation(
                conversation_id,
                presence_event(online, self.user.id, last_active),
                exclude_user=self.user.id,
            )

    @database_sync_to_async
    def _register_presence(self) -> bool:
        return get_presence_tracker().connect(self.user.id, self.channel_name)

    @database_sync_to_async
    def _deregister_presence(self) -> bool:
        return get_presence_tracker().disconnect(self.user.id, self.channel_name)

    @database_sync_to_async
    def _touch_presence(self) -> bool:
        return get_presence_tracker().touch(self.channel_name)

    @database_sync_to_async
    def _load_conversation_ids(self) -> list[int]:
        return get_chat_store().list_conversation_ids_for_user(self.user.id)

    @database_sync_to_async
    def _recompute_deliveries(self) -> list[int]:
        return DeliveryStatusTracker.recompute_on_reconnect(self.user.id)

    @database_sync_to_async
    def _post_message(self, conversation_id, **fields):
        """
        Send a message using MessageService.

        Returns (message, new_message payload, recipient ids); the payload is
        built here because serializing touches related rows.
        """
        message = MessageService.post_message(conversation_id, self.user, **fields)
        recipient_ids = [
            user_id
            for user_id in get_chat_store().list_participant_ids(message.conversation_id)
            if user_id != self.user.id
        ]
        return message, new_message_event(message), recipient_ids

    @database_sync_to_async
    def _mark_delivered(self, message, recipient_ids) -> list:
        return DeliveryStatusTracker.mark_delivered_for_online(message, recipient_ids)

    @database_sync_to_async
    def _mark_read(self, message_id, conversation_id):
        return MessageService.mark_read(message_id, self.user, conversation_id=conversation_id)
