"""
Realtime event vocabulary and channel-layer fan-out helpers.

Client -> server events (ClientEvent) and server -> client events
(ServerEvent) are JSON objects with a ``type`` key. Builders in this
module return plain dicts holding only strings, numbers, booleans and
None, so payloads survive the msgpack encoding of channels-redis.

Group fan-out:
    Every group message has the channel-layer type ``chat.event`` and
    carries the client payload under ``event``. ChatConsumer.chat_event()
    forwards it, skipping the excluded channel or user when set.
    ``chat.join`` asks every connection of a user to subscribe to a newly
    created conversation.

Usage:
    from chat.events import broadcast_to_conversation, new_message_event

    await broadcast_to_conversation(conversation_id, new_message_event(message))

    # From synchronous code (REST views)
    broadcast_to_conversation_sync(conversation_id, message_read_event(...))
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer

from chat.constants import conversation_group_name, user_group_name

if TYPE_CHECKING:
    from chat.models import Message

logger = logging.getLogger(__name__)


class ClientEvent:
    """Event types a client may send while joined."""

    SEND_MESSAGE = "send_message"
    MARK_READ = "mark_read"
    TYPING_START = "typing_start"
    TYPING_STOP = "typing_stop"
    HEARTBEAT = "heartbeat"


class ServerEvent:
    """Event types the server sends to clients."""

    CONNECTION_ESTABLISHED = "connection_established"
    NEW_MESSAGE = "new_message"
    MESSAGE_SENT = "message_sent"
    MESSAGE_READ = "message_read"
    USER_TYPING = "user_typing"
    USER_STOP_TYPING = "user_stop_typing"
    USER_ONLINE = "user_online"
    USER_OFFLINE = "user_offline"
    CONVERSATION_JOINED = "conversation_joined"
    HEARTBEAT_ACK = "heartbeat_ack"
    ERROR = "error"


# Channel layer message types (dispatched to ChatConsumer.chat_event / chat_join)
LAYER_EVENT = "chat.event"
LAYER_JOIN = "chat.join"


# =============================================================================
# Payload builders
# =============================================================================


def message_payload(message: Message) -> dict:
    """Serialize a message the same way the REST API does."""
    from chat.serializers import MessageSerializer

    data = MessageSerializer(message).data
    return {
        **data,
        "sender": dict(data["sender"]) if data.get("sender") else None,
    }


def new_message_event(message: Message) -> dict:
    return {
        "type": ServerEvent.NEW_MESSAGE,
        "conversation_id": message.conversation_id,
        "message": message_payload(message),
    }


def message_sent_event(message: Message, client_id=None) -> dict:
    """Acknowledgement to the sending connection, echoing its client_id."""
    return {
        "type": ServerEvent.MESSAGE_SENT,
        "conversation_id": message.conversation_id,
        "message_id": message.pk,
        "client_id": client_id,
    }


def message_read_event(message_id, conversation_id, user_id) -> dict:
    return {
        "type": ServerEvent.MESSAGE_READ,
        "message_id": message_id,
        "conversation_id": conversation_id,
        "user_id": str(user_id),
    }


def typing_event(started: bool, conversation_id, user_id, handle: str) -> dict:
    return {
        "type": ServerEvent.USER_TYPING if started else ServerEvent.USER_STOP_TYPING,
        "conversation_id": conversation_id,
        "user_id": str(user_id),
        "handle": handle,
    }


def presence_event(online: bool, user_id, last_active=None) -> dict:
    return {
        "type": ServerEvent.USER_ONLINE if online else ServerEvent.USER_OFFLINE,
        "user_id": str(user_id),
        "last_active": last_active.isoformat() if last_active else None,
    }


def conversation_joined_event(conversation_id) -> dict:
    return {
        "type": ServerEvent.CONVERSATION_JOINED,
        "conversation_id": conversation_id,
    }


def error_event(code: str, message: str, event_type: str | None = None, details: dict | None = None) -> dict:
    """Error scoped to one connection; ``event`` names the failed client event."""
    payload = {
        "type": ServerEvent.ERROR,
        "code": code,
        "message": message,
        "event": event_type,
    }
    if details:
        payload["details"] = {key: _plain(value) for key, value in details.items()}
    return payload


def _plain(value):
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if isinstance(value, (list, tuple)):
        return [_plain(item) for item in value]
    return str(value)


# =============================================================================
# Fan-out
# =============================================================================


async def broadcast_to_conversation(
    conversation_id,
    event: dict,
    exclude_channel: str | None = None,
    exclude_user=None,
) -> None:
    """Send an event to every connection subscribed to a conversation."""
    channel_layer = get_channel_layer()
    if channel_layer is None:
        return
    await channel_layer.group_send(
        conversation_group_name(conversation_id),
        {
            "type": LAYER_EVENT,
            "event": event,
            "exclude_channel": exclude_channel,
            "exclude_user": str(exclude_user) if exclude_user else None,
        },
    )


async def notify_conversation_joined(conversation_id, user_ids) -> None:
    """Subscribe every open connection of each user to a new conversation."""
    channel_layer = get_channel_layer()
    if channel_layer is None:
        return
    for user_id in user_ids:
        await channel_layer.group_send(
            user_group_name(user_id),
            {"type": LAYER_JOIN, "conversation_id": conversation_id},
        )


def broadcast_to_conversation_sync(conversation_id, event: dict, **kwargs) -> None:
    """Synchronous wrapper of broadcast_to_conversation for views."""
    try:
        async_to_sync(broadcast_to_conversation)(conversation_id, event, **kwargs)
    except Exception:
        # Broadcast failures never fail an already committed request
        logger.exception(
            f"Failed to broadcast {event.get('type')} to conversation {conversation_id}"
        )


def notify_conversation_joined_sync(conversation_id, user_ids) -> None:
    """Synchronous wrapper of notify_conversation_joined for views."""
    try:
        async_to_sync(notify_conversation_joined)(conversation_id, list(user_ids))
    except Exception:
        logger.exception(
            f"Failed to announce conversation {conversation_id} to participants"
        )
