"""
Delivery status coordination.

Thin layer between the presence tracker and the persistence store that
moves MessageStatus rows from sent to delivered:

- After a send, recipients who currently hold an open connection are
  marked delivered; offline recipients stay at sent.
- When a user comes back online, everything still at sent for them is
  advanced to delivered (recompute_on_reconnect).

Read receipts are not handled here; MessageService.mark_read() owns the
delivered -> read transition.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from chat.models import DeliveryStatus
from chat.presence import PresenceTracker, get_presence_tracker
from chat.store import get_chat_store
from core.services import BaseService

if TYPE_CHECKING:
    from collections.abc import Iterable

    from chat.models import Message
    from chat.store.base import ChatStore


class DeliveryStatusTracker(BaseService):
    """
    Advances per-recipient delivery status from presence information.

    Usage:
        from chat.delivery import DeliveryStatusTracker

        delivered_to = DeliveryStatusTracker.mark_delivered_for_online(
            message, recipient_ids
        )
        message_ids = DeliveryStatusTracker.recompute_on_reconnect(user.id)
    """

    @classmethod
    def mark_delivered_for_online(
        cls,
        message: Message,
        recipient_ids: Iterable,
        tracker: PresenceTracker | None = None,
        store: ChatStore | None = None,
    ) -> list:
        """
        Mark a fresh message delivered for every recipient who is online.

        Args:
            message: The persisted message
            recipient_ids: Participants other than the sender

        Returns:
            Recipient ids whose status is now delivered
        """
        tracker = tracker or get_presence_tracker()
        store = store or get_chat_store()

        recipient_ids = [
            user_id for user_id in recipient_ids if str(user_id) != str(message.sender_id)
        ]
        online = tracker.online_user_ids(recipient_ids)
        delivered = []
        for user_id in recipient_ids:
            if user_id not in online:
                continue
            status = store.upsert_message_status(
                message.pk, user_id, DeliveryStatus.DELIVERED
            )
            if status == DeliveryStatus.DELIVERED:
                delivered.append(user_id)

        if delivered:
            cls.get_logger().debug(
                f"Message {message.pk} delivered to {len(delivered)} online recipient(s)"
            )
        return delivered

    @classmethod
    def recompute_on_reconnect(cls, user_id, store: ChatStore | None = None) -> list[int]:
        """
        Advance every message still at sent for a user to delivered.

        Called when the user's presence transitions online.

        Returns:
            Ids of the messages that changed
        """
        store = store or get_chat_store()
        message_ids = store.advance_pending_statuses(
            user_id, DeliveryStatus.SENT, DeliveryStatus.DELIVERED
        )
        if message_ids:
            cls.get_logger().info(
                f"User {user_id} reconnected: {len(message_ids)} message(s) marked delivered"
            )
        return message_ids
