"""
Chat app for real-time messaging.

This app handles:
- Conversations (private and group)
- Message sending and paginated history
- Delivery and read receipts
- Presence (online/offline) and typing indicators
- WebSocket real-time updates

Related apps:
    - authentication: User model for participants
    - core: Error taxonomy and service base class

WebSocket Support:
    Uses Django Channels for real-time communication.
    See consumers.py for WebSocket handlers.
    See routing.py for WebSocket URL patterns.

Usage:
    from chat.services import ConversationService, MessageService

    conversation, created = ConversationService.create_conversation(
        creator=user,
        conversation_type="private",
        participant_ids=[other_user.id],
    )

    message = MessageService.post_message(
        conversation_id=conversation.id,
        sender=user,
        content="Hello!",
    )
"""
