"""
Tests for chat app.

This package contains test modules for:
- test_models.py: Conversation, Message, MessageStatus model tests
- test_store.py: DjangoChatStore persistence contract tests
- test_services.py: ConversationService, MessageService, UserDirectoryService tests
- test_presence.py: Presence backends and PresenceTracker tests
- test_delivery.py: DeliveryStatusTracker tests
- test_consumers.py: WebSocket gateway tests
- test_views.py: REST API endpoint tests
- test_tasks.py: Celery task tests

Usage:
    pytest app/chat/tests/
    pytest app/chat/tests/test_consumers.py
"""
