"""
Persistence store for the messaging core.

Exports:
    ChatStore: Abstract contract every backing implements
    DjangoChatStore: Django ORM backing (SQLite or PostgreSQL via DATABASE_URL)
    get_chat_store: Returns the backend configured by CHAT_STORE_BACKEND
"""

from chat.store.base import ChatStore
from chat.store.django_store import DjangoChatStore
from chat.store.factory import get_chat_store

__all__ = ["ChatStore", "DjangoChatStore", "get_chat_store"]
