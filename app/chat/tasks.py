"""
Celery tasks for chat app.

This module defines periodic tasks for:
- Pruning presence handles whose heartbeat expired

Related files:
    - presence.py: PresenceTracker
    - events.py: user_offline broadcasts
    - config/settings.py: CELERY_BEAT_SCHEDULE

Usage:
    from chat.tasks import prune_stale_presence

    prune_stale_presence.delay()
"""

import logging

from celery import shared_task
from django.utils import timezone

from chat.events import broadcast_to_conversation_sync, presence_event
from chat.presence import get_presence_tracker
from chat.store import get_chat_store
from core.exceptions import StorageError

logger = logging.getLogger(__name__)


@shared_task(
    bind=True,
    autoretry_for=(StorageError,),
    retry_backoff=True,
    retry_kwargs={"max_retries": 3},
)
def prune_stale_presence(self, max_age: float | None = None) -> int:
    """
    Drop connection handles that stopped sending heartbeats.

    Users left without any connection are marked offline and announced
    to their conversations.

    Args:
        max_age: Seconds without heartbeat before a handle is stale
            (defaults to PRESENCE_TTL_SECONDS)

    Returns:
        Number of users that went offline
    """
    went_offline = get_presence_tracker().prune_stale(max_age)
    if not went_offline:
        return 0

    store = get_chat_store()
    last_active = timezone.now()
    for user_id in went_offline:
        event = presence_event(False, user_id, last_active)
        for conversation_id in store.list_conversation_ids_for_user(user_id):
            broadcast_to_conversation_sync(conversation_id, event, exclude_user=user_id)

    logger.info(f"Pruned stale presence for {len(went_offline)} user(s)")
    return len(went_offline)
