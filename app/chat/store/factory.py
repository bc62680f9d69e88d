"""
Factory function for chat store backend selection.

The backend is a dotted path in settings.CHAT_STORE_BACKEND, defaulting to
the Django ORM store. One instance per path is shared by the process; store
implementations hold no per-request state.
"""

from __future__ import annotations

from functools import lru_cache
from typing import TYPE_CHECKING

from django.conf import settings
from django.utils.module_loading import import_string

if TYPE_CHECKING:
    from chat.store.base import ChatStore

DEFAULT_STORE_BACKEND = "chat.store.django_store.DjangoChatStore"


@lru_cache(maxsize=None)
def _load_store(dotted_path: str) -> ChatStore:
    return import_string(dotted_path)()


def get_chat_store() -> ChatStore:
    """
    Get the configured persistence store.

    Usage:
        store = get_chat_store()
        conversation = store.get_conversation(conversation_id)
    """
    return _load_store(getattr(settings, "CHAT_STORE_BACKEND", DEFAULT_STORE_BACKEND))
