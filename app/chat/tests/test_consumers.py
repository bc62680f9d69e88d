"""
Tests for the realtime gateway (ChatConsumer).

Each test drives one or more WebsocketCommunicator clients through the
same middleware and routing stack as config/asgi.py, inside a single
event loop (async_to_sync). Database rows are created in the synchronous
test body before the loop starts.

Covers:
- Handshake authentication (query token, subprotocol, failure close code)
- connection_established and group membership
- send_message fan-out, acknowledgement and delivery status
- Typing indicators
- Multi-tab presence (one online, one offline broadcast)
- Offline delivery recomputed on reconnect, then read receipts
- Error events that keep the connection open
- Joining conversations created after connect
"""

import pytest
from asgiref.sync import async_to_sync
from channels.db import database_sync_to_async
from channels.routing import URLRouter
from channels.testing import WebsocketCommunicator
from rest_framework_simplejwt.tokens import AccessToken

from chat.events import notify_conversation_joined
from chat.middleware import JWTAuthMiddleware
from chat.models import ConversationType, DeliveryStatus, MessageStatus
from chat.presence import get_presence_tracker
from chat.routing import websocket_urlpatterns
from chat.services import ConversationService

pytestmark = pytest.mark.django_db(transaction=True)

TIMEOUT = 2


def gateway():
    return JWTAuthMiddleware(URLRouter(websocket_urlpatterns))


def token_for(user) -> str:
    return str(AccessToken.for_user(user))


async def open_socket(token: str) -> tuple[WebsocketCommunicator, dict]:
    """Connect with a query-string token and return the first event."""
    communicator = WebsocketCommunicator(gateway(), f"/ws/chat/?token={token}")
    connected, _ = await communicator.connect(timeout=TIMEOUT)
    assert connected
    first = await communicator.receive_json_from(timeout=TIMEOUT)
    return communicator, first


@database_sync_to_async
def prune_all() -> list[str]:
    """Expire every presence handle, as the scheduled prune would after a long silence."""
    return get_presence_tracker().prune_stale(max_age=-1)


@database_sync_to_async
def is_online(user_id) -> bool:
    return get_presence_tracker().is_online(user_id)


async def receive_types(communicator: WebsocketCommunicator, count: int) -> dict:
    """Receive count events and index them by type."""
    events = {}
    for _ in range(count):
        event = await communicator.receive_json_from(timeout=TIMEOUT)
        events[event["type"]] = event
    return events


# =============================================================================
# TestHandshake
# =============================================================================


class TestHandshake:
    """
    Tests for connection authentication.

    Why it matters: Unauthenticated sockets must learn why they were
    refused and must never join any group.
    """

    def test_missing_token_gets_error_and_close_4001(self):
        async def scenario():
            communicator = WebsocketCommunicator(gateway(), "/ws/chat/")
            connected, _ = await communicator.connect(timeout=TIMEOUT)
            assert connected

            error = await communicator.receive_json_from(timeout=TIMEOUT)
            close = await communicator.receive_output(timeout=TIMEOUT)
            await communicator.disconnect()
            return error, close

        error, close = async_to_sync(scenario)()

        assert error["type"] == "error"
        assert error["code"] == "AUTHENTICATION_FAILED"
        assert close["type"] == "websocket.close"
        assert close["code"] == 4001

    def test_invalid_token_is_rejected(self):
        async def scenario():
            communicator = WebsocketCommunicator(gateway(), "/ws/chat/?token=not-a-jwt")
            await communicator.connect(timeout=TIMEOUT)
            error = await communicator.receive_json_from(timeout=TIMEOUT)
            close = await communicator.receive_output(timeout=TIMEOUT)
            await communicator.disconnect()
            return error, close

        error, close = async_to_sync(scenario)()

        assert error["code"] == "AUTHENTICATION_FAILED"
        assert error["message"] == "Invalid or expired token"
        assert close["code"] == 4001

    def test_inactive_user_is_rejected(self, user):
        token = token_for(user)
        user.is_active = False
        user.save(update_fields=["is_active"])

        async def scenario():
            communicator = WebsocketCommunicator(gateway(), f"/ws/chat/?token={token}")
            await communicator.connect(timeout=TIMEOUT)
            error = await communicator.receive_json_from(timeout=TIMEOUT)
            await communicator.disconnect()
            return error

        error = async_to_sync(scenario)()

        assert error["code"] == "AUTHENTICATION_FAILED"

    def test_subprotocol_token_is_accepted(self, user):
        token = token_for(user)

        async def scenario():
            communicator = WebsocketCommunicator(
                gateway(), "/ws/chat/", subprotocols=["jwt", token]
            )
            connected, subprotocol = await communicator.connect(timeout=TIMEOUT)
            event = await communicator.receive_json_from(timeout=TIMEOUT)
            await communicator.disconnect()
            return connected, subprotocol, event

        connected, subprotocol, event = async_to_sync(scenario)()

        assert connected is True
        assert subprotocol == "jwt"
        assert event["type"] == "connection_established"

    def test_connection_established_lists_conversations(self, user, private_conversation, group_conversation):
        token = token_for(user)

        async def scenario():
            communicator, event = await open_socket(token)
            await communicator.disconnect()
            return event

        event = async_to_sync(scenario)()

        assert event == {
            "type": "connection_established",
            "user_id": str(user.id),
            "handle": "alice",
            "conversation_ids": sorted([private_conversation.pk, group_conversation.pk]),
            "heartbeat_interval": 30,
        }

    def test_connect_and_disconnect_update_cached_flag(self, user):
        token = token_for(user)

        @database_sync_to_async
        def is_online():
            user.refresh_from_db()
            return user.is_online

        async def scenario():
            communicator, _ = await open_socket(token)
            online_while_connected = await is_online()
            await communicator.disconnect()
            return online_while_connected, await is_online()

        assert async_to_sync(scenario)() == (True, False)


# =============================================================================
# TestMessaging
# =============================================================================


class TestMessaging:
    """
    Tests for send_message, mark_read and typing.

    Why it matters: These are the core realtime interactions of a DM.
    """

    def test_send_message_reaches_both_sides(self, user, other_user, private_conversation):
        alice_token, bob_token = token_for(user), token_for(other_user)

        async def scenario():
            alice, _ = await open_socket(alice_token)
            bob, _ = await open_socket(bob_token)
            online = await alice.receive_json_from(timeout=TIMEOUT)

            await alice.send_json_to(
                {
                    "type": "send_message",
                    "conversation_id": private_conversation.pk,
                    "content": "Hi Bob",
                    "client_id": "local-1",
                }
            )
            alice_events = await receive_types(alice, 2)
            bob_event = await bob.receive_json_from(timeout=TIMEOUT)

            await alice.disconnect()
            await bob.disconnect()
            return online, alice_events, bob_event

        online, alice_events, bob_event = async_to_sync(scenario)()

        assert online["type"] == "user_online"
        assert online["user_id"] == str(other_user.id)

        sent = alice_events["message_sent"]
        assert sent["client_id"] == "local-1"
        assert sent["conversation_id"] == private_conversation.pk

        assert bob_event["type"] == "new_message"
        assert bob_event["message"]["content"] == "Hi Bob"
        assert bob_event["message"]["id"] == sent["message_id"]
        assert alice_events["new_message"]["message"]["id"] == sent["message_id"]

        status = MessageStatus.objects.get(message_id=sent["message_id"], user=other_user)
        assert status.status == DeliveryStatus.DELIVERED

    def test_typing_is_not_echoed_to_sender(self, user, other_user, private_conversation):
        alice_token, bob_token = token_for(user), token_for(other_user)

        async def scenario():
            bob, _ = await open_socket(bob_token)
            alice, _ = await open_socket(alice_token)
            await bob.receive_json_from(timeout=TIMEOUT)  # user_online

            await alice.send_json_to(
                {"type": "typing_start", "conversation_id": private_conversation.pk}
            )
            typing = await bob.receive_json_from(timeout=TIMEOUT)
            echoed = not await alice.receive_nothing()

            await alice.send_json_to(
                {"type": "typing_stop", "conversation_id": private_conversation.pk}
            )
            stopped = await bob.receive_json_from(timeout=TIMEOUT)

            await alice.disconnect()
            await bob.disconnect()
            return typing, echoed, stopped

        typing, echoed, stopped = async_to_sync(scenario)()

        assert typing == {
            "type": "user_typing",
            "conversation_id": private_conversation.pk,
            "user_id": str(user.id),
            "handle": "alice",
        }
        assert echoed is False
        assert stopped["type"] == "user_stop_typing"

    def test_offline_recipient_gets_delivered_on_reconnect_then_reads(
        self, user, other_user, private_conversation
    ):
        """
        Alice sends while Bob is offline; Bob reconnects and reads.

        Why it matters: Status must go sent -> delivered -> read, driven by
        Bob's presence and his receipt, with Alice told about the read.
        """
        alice_token, bob_token = token_for(user), token_for(other_user)

        @database_sync_to_async
        def status_of(message_id):
            return MessageStatus.objects.get(message_id=message_id, user=other_user).status

        async def scenario():
            statuses = []
            alice, _ = await open_socket(alice_token)
            await alice.send_json_to(
                {
                    "type": "send_message",
                    "conversation_id": private_conversation.pk,
                    "content": "Are you there?",
                }
            )
            message_id = (await receive_types(alice, 2))["message_sent"]["message_id"]
            statuses.append(await status_of(message_id))

            bob, _ = await open_socket(bob_token)
            await alice.receive_json_from(timeout=TIMEOUT)  # user_online
            statuses.append(await status_of(message_id))

            await bob.send_json_to(
                {
                    "type": "mark_read",
                    "message_id": message_id,
                    "conversation_id": private_conversation.pk,
                }
            )
            read_event = await alice.receive_json_from(timeout=TIMEOUT)
            await bob.receive_json_from(timeout=TIMEOUT)
            statuses.append(await status_of(message_id))

            # A repeated receipt changes nothing and broadcasts nothing
            await bob.send_json_to({"type": "mark_read", "message_id": message_id})
            repeated = not await alice.receive_nothing()

            await alice.disconnect()
            await bob.disconnect()
            return statuses, read_event, message_id, repeated

        statuses, read_event, message_id, repeated = async_to_sync(scenario)()

        assert statuses == [DeliveryStatus.SENT, DeliveryStatus.DELIVERED, DeliveryStatus.READ]
        assert read_event == {
            "type": "message_read",
            "message_id": message_id,
            "conversation_id": private_conversation.pk,
            "user_id": str(other_user.id),
        }
        assert repeated is False


# =============================================================================
# TestPresence
# =============================================================================


class TestPresence:
    """
    Tests for online/offline broadcasts.

    Why it matters: A user with several tabs must appear online once and
    offline once, only after the last tab closes.
    """

    def test_multi_tab_user_goes_offline_once(self, user, other_user, private_conversation):
        alice_token, bob_token = token_for(user), token_for(other_user)

        async def scenario():
            bob, _ = await open_socket(bob_token)

            tab_one, _ = await open_socket(alice_token)
            first_online = await bob.receive_json_from(timeout=TIMEOUT)

            tab_two, _ = await open_socket(alice_token)
            quiet_after_second_tab = await bob.receive_nothing()

            await tab_one.disconnect()
            quiet_after_first_close = await bob.receive_nothing()

            await tab_two.disconnect()
            offline = await bob.receive_json_from(timeout=TIMEOUT)
            quiet_after_offline = await bob.receive_nothing()

            await bob.disconnect()
            return (
                first_online,
                quiet_after_second_tab,
                quiet_after_first_close,
                offline,
                quiet_after_offline,
            )

        first_online, quiet_two, quiet_close, offline, quiet_after = async_to_sync(scenario)()

        assert first_online["type"] == "user_online"
        assert quiet_two is True
        assert quiet_close is True
        assert offline["type"] == "user_offline"
        assert offline["user_id"] == str(user.id)
        assert offline["last_active"] is not None
        assert quiet_after is True

    def test_heartbeat_is_acknowledged(self, user):
        token = token_for(user)

        async def scenario():
            communicator, _ = await open_socket(token)
            await communicator.send_json_to({"type": "heartbeat"})
            ack = await communicator.receive_json_from(timeout=TIMEOUT)
            await communicator.disconnect()
            return ack

        ack = async_to_sync(scenario)()

        assert ack["type"] == "heartbeat_ack"
        assert "server_time" in ack

    def test_heartbeat_after_pruning_brings_user_back_online(self, user, other_user, private_conversation):
        """
        A connection whose handle was pruned while still open re-registers.

        Why it matters: The user would otherwise stay offline to contacts
        for as long as the socket lives.
        """
        alice_token, bob_token = token_for(user), token_for(other_user)

        async def scenario():
            bob, _ = await open_socket(bob_token)
            alice, _ = await open_socket(alice_token)
            await bob.receive_json_from(timeout=TIMEOUT)

            pruned = await prune_all()
            offline_after_prune = not await is_online(user.id)

            await alice.send_json_to({"type": "heartbeat"})
            ack = await alice.receive_json_from(timeout=TIMEOUT)
            announced = await bob.receive_json_from(timeout=TIMEOUT)
            online_again = await is_online(user.id)

            await alice.disconnect()
            await bob.disconnect()
            return pruned, offline_after_prune, ack, announced, online_again

        pruned, offline_after_prune, ack, announced, online_again = async_to_sync(scenario)()

        assert str(user.id) in pruned
        assert offline_after_prune is True
        assert ack["type"] == "heartbeat_ack"
        assert announced["type"] == "user_online"
        assert announced["user_id"] == str(user.id)
        assert online_again is True
        user.refresh_from_db()
        assert user.is_online is False  # alice's socket is closed again

    def test_any_event_refreshes_pruned_connection(self, user):
        token = token_for(user)

        async def scenario():
            communicator, _ = await open_socket(token)
            await prune_all()

            await communicator.send_json_to({"type": "mark_read", "message_id": 987654})
            error = await communicator.receive_json_from(timeout=TIMEOUT)
            online_again = await is_online(user.id)

            await communicator.disconnect()
            return error, online_again

        error, online_again = async_to_sync(scenario)()

        assert error["code"] == "NOT_FOUND"
        assert online_again is True


# =============================================================================
# TestErrors
# =============================================================================


class TestErrors:
    """
    Tests for error events.

    Why it matters: A bad frame is reported to its connection only and
    never tears the connection down.
    """

    def send_and_receive(self, user, frames):
        token = token_for(user)

        async def scenario():
            communicator, _ = await open_socket(token)
            replies = []
            for frame in frames:
                if isinstance(frame, str):
                    await communicator.send_to(text_data=frame)
                else:
                    await communicator.send_json_to(frame)
                replies.append(await communicator.receive_json_from(timeout=TIMEOUT))
            await communicator.disconnect()
            return replies

        return async_to_sync(scenario)()

    def test_unknown_event_type(self, user):
        error, ack = self.send_and_receive(user, [{"type": "dance"}, {"type": "heartbeat"}])

        assert error["code"] == "INVALID_ARGUMENT"
        assert error["event"] == "dance"
        assert ack["type"] == "heartbeat_ack"

    def test_malformed_json(self, user):
        (error,) = self.send_and_receive(user, ["{not json"])
        assert error["type"] == "error"
        assert error["code"] == "INVALID_ARGUMENT"

    def test_send_to_foreign_conversation_is_denied(self, user, outsider, private_conversation):
        (error,) = self.send_and_receive(
            outsider,
            [{"type": "send_message", "conversation_id": private_conversation.pk, "content": "hi"}],
        )

        assert error["code"] == "ACCESS_DENIED"
        assert error["event"] == "send_message"
        assert error["details"]["reason"] == "NOT_PARTICIPANT"

    def test_empty_message_is_rejected(self, user, private_conversation):
        (error,) = self.send_and_receive(
            user,
            [{"type": "send_message", "conversation_id": private_conversation.pk, "content": "  "}],
        )

        assert error["code"] == "INVALID_ARGUMENT"
        assert error["details"]["reason"] == "EMPTY_CONTENT"

    def test_missing_conversation_id(self, user):
        (error,) = self.send_and_receive(user, [{"type": "send_message", "content": "hi"}])
        assert error["details"] == {"field": "conversation_id"}

    def test_mark_read_unknown_message(self, user):
        (error,) = self.send_and_receive(user, [{"type": "mark_read", "message_id": 987654}])
        assert error["code"] == "NOT_FOUND"

    @pytest.mark.parametrize(
        "fields",
        [
            {"file_ref": 123, "message_type": "image"},
            {"message_type": ["text"]},
        ],
    )
    def test_mistyped_message_fields_keep_connection_open(self, user, private_conversation, fields):
        frame = {
            "type": "send_message",
            "conversation_id": private_conversation.pk,
            "content": "hi",
            **fields,
        }

        error, ack = self.send_and_receive(user, [frame, {"type": "heartbeat"}])

        assert error["type"] == "error"
        assert error["code"] == "INVALID_ARGUMENT"
        assert error["event"] == "send_message"
        assert ack["type"] == "heartbeat_ack"

    def test_typing_in_foreign_conversation_is_denied(self, user, outsider, private_conversation):
        (error,) = self.send_and_receive(
            outsider, [{"type": "typing_start", "conversation_id": private_conversation.pk}]
        )
        assert error["code"] == "ACCESS_DENIED"


# =============================================================================
# TestConversationJoin
# =============================================================================


class TestConversationJoin:
    """
    Tests for subscribing open connections to new conversations.

    Why it matters: The first message of a brand new DM must reach a
    recipient who was already connected.
    """

    def test_new_conversation_is_joined_by_open_connections(self, user, other_user):
        alice_token, bob_token = token_for(user), token_for(other_user)

        @database_sync_to_async
        def start_conversation():
            conversation, _ = ConversationService.create_conversation(
                user, ConversationType.PRIVATE, [other_user.id]
            )
            return conversation.pk

        async def scenario():
            alice, alice_hello = await open_socket(alice_token)
            bob, _ = await open_socket(bob_token)

            conversation_id = await start_conversation()
            await notify_conversation_joined(conversation_id, [user.id, other_user.id])
            joined = [
                await alice.receive_json_from(timeout=TIMEOUT),
                await bob.receive_json_from(timeout=TIMEOUT),
            ]

            await alice.send_json_to(
                {"type": "send_message", "conversation_id": conversation_id, "content": "First!"}
            )
            bob_message = await bob.receive_json_from(timeout=TIMEOUT)

            await alice.disconnect()
            await bob.disconnect()
            return alice_hello, conversation_id, joined, bob_message

        alice_hello, conversation_id, joined, bob_message = async_to_sync(scenario)()

        assert alice_hello["conversation_ids"] == []
        assert joined == [
            {"type": "conversation_joined", "conversation_id": conversation_id},
            {"type": "conversation_joined", "conversation_id": conversation_id},
        ]
        assert bob_message["type"] == "new_message"
        assert bob_message["message"]["content"] == "First!"
