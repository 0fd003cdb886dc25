"""
Constants and configuration for the chat module.

This module centralizes configuration values for:
- Message operations (content limits, history pagination)
- Room operations (group naming and size)
- Delivery fanout (channel layer group and event names)
- Client reconciliation (optimistic entry matching)

Import example:
    from chat.constants import MESSAGE_CONFIG, FANOUT_CONFIG
"""

from typing import Final


# =============================================================================
# Message Configuration
# =============================================================================


class MESSAGE_CONFIG:
    """Configuration for message operations."""

    # Content limits (measured after stripping surrounding whitespace)
    MAX_CONTENT_LENGTH: Final[int] = 10000  # Characters
    MIN_CONTENT_LENGTH: Final[int] = 1

    # History pagination
    DEFAULT_PAGE_SIZE: Final[int] = 50
    MAX_PAGE_SIZE: Final[int] = 100


# =============================================================================
# Room Configuration
# =============================================================================


class ROOM_CONFIG:
    """Configuration for room operations."""

    MAX_NAME_LENGTH: Final[int] = 100

    # Group rooms include the creator
    MIN_GROUP_PARTICIPANTS: Final[int] = 2
    MAX_GROUP_PARTICIPANTS: Final[int] = 50


# =============================================================================
# Fanout Configuration
# =============================================================================


class FANOUT_CONFIG:
    """
    Configuration for live delivery.

    Channel layer group names must be ASCII alphanumerics, hyphens,
    underscores or periods, shorter than 100 characters.
    """

    GROUP_PREFIX: Final[str] = "chat_room_"

    # Dispatched to ChatConsumer.chat_message by the channel layer
    MESSAGE_EVENT_TYPE: Final[str] = "chat.message"

    # Upper bound on how long a publish waits for the channel layer
    PUBLISH_TIMEOUT_SECONDS: Final[float] = 2.0


# =============================================================================
# Client Reconciliation Configuration
# =============================================================================


class CLIENT_CONFIG:
    """Configuration for client-side reconciliation state."""

    # An optimistic entry matches a stored message from the same sender
    # with the same content when their timestamps are this close
    OPTIMISTIC_MATCH_WINDOW_SECONDS: Final[int] = 10
