"""
Constants and configuration for chat module features.

This module centralizes configuration values for:
- Message operations (content limits, reply snippets, pagination)
- Presence tracking (Redis keys, heartbeat TTL)
- Realtime gateway (group names, close codes)

Import example:
    from chat.constants import MESSAGE_CONFIG, PRESENCE_CONFIG
"""

from typing import Final


# =============================================================================
# Message Configuration
# =============================================================================


class MESSAGE_CONFIG:
    """Configuration for message operations."""

    # Content limits
    MAX_CONTENT_LENGTH: Final[int] = 10000  # Characters
    MAX_FILE_REF_LENGTH: Final[int] = 500

    # Denormalized reply preview
    REPLY_SNIPPET_LENGTH: Final[int] = 100

    # History pagination
    DEFAULT_PAGE_SIZE: Final[int] = 50
    MAX_PAGE_SIZE: Final[int] = 100

    # User search
    SEARCH_DEFAULT_LIMIT: Final[int] = 20
    SEARCH_MAX_LIMIT: Final[int] = 50


# =============================================================================
# Presence Configuration
# =============================================================================


class PRESENCE_CONFIG:
    """Configuration for presence tracking."""

    # TTL for a connection heartbeat (seconds) - how long before considered stale
    PRESENCE_TTL_SECONDS: Final[int] = 90

    # Redis key prefixes
    KEY_PREFIX_USER_CONNECTIONS: Final[str] = "presence:user"
    KEY_PREFIX_HANDLE_HEARTBEAT: Final[str] = "presence:handles"
    KEY_HANDLE_OWNERS: Final[str] = "presence:owners"

    # Heartbeat settings
    HEARTBEAT_INTERVAL_SECONDS: Final[int] = 30  # How often clients should send heartbeat

    # Celery beat interval for prune_stale_presence
    PRUNE_INTERVAL_SECONDS: Final[int] = 60


# =============================================================================
# Gateway Configuration
# =============================================================================


class GATEWAY_CONFIG:
    """Configuration for the realtime websocket gateway."""

    CONVERSATION_GROUP_FORMAT: Final[str] = "conversation_{conversation_id}"
    USER_GROUP_FORMAT: Final[str] = "user_{user_id}"

    # Application close codes (4000-4999 are reserved for applications)
    CLOSE_CODE_AUTHENTICATION_FAILED: Final[int] = 4001


def conversation_group_name(conversation_id) -> str:
    """Channel layer group for a conversation's broadcast fan-out."""
    return GATEWAY_CONFIG.CONVERSATION_GROUP_FORMAT.format(conversation_id=conversation_id)


def user_group_name(user_id) -> str:
    """Channel layer group that reaches every connection of one user."""
    return GATEWAY_CONFIG.USER_GROUP_FORMAT.format(user_id=user_id)
