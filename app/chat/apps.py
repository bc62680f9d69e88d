"""
Chat application configuration.

This app provides the messaging core:
- Private (1:1) and group conversations
- Ordered message history with per-recipient delivery status
- Presence tracking and the realtime websocket gateway
"""

from django.apps import AppConfig


class ChatConfig(AppConfig):
    """Configuration for the chat application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "chat"
    verbose_name = "Chat"
