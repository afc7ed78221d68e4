"""
Constants and configuration for chat module features.

This module centralizes configuration values for:
- Message operations (content limits, history paging, search, spam)
- Attachment handling
- Presence, typing and realtime channels

Deployment-tunable values (typing timeout, rate limit, max length) live in
Django settings as CHAT_*; the values here are fixed by the wire protocol
or the data model.

Import example:
    from chat.constants import MESSAGE_CONFIG, REALTIME_CHANNELS
"""

import re
from typing import Final


# =============================================================================
# Message Configuration
# =============================================================================


class MESSAGE_CONFIG:
    """Configuration for message operations."""

    # History paging (limit is clamped into this range)
    HISTORY_DEFAULT_LIMIT: Final[int] = 50
    HISTORY_MIN_LIMIT: Final[int] = 1
    HISTORY_MAX_LIMIT: Final[int] = 200

    # Search settings
    SEARCH_MIN_QUERY_LENGTH: Final[int] = 2
    SEARCH_DEFAULT_LIMIT: Final[int] = 20
    SEARCH_MAX_LIMIT: Final[int] = 100

    # A sender's Nth identical message in a row is rejected as spam
    SPAM_REPEAT_THRESHOLD: Final[int] = 3

    # Shown instead of content once a moderator removes a message
    REMOVED_PLACEHOLDER: Final[str] = "[Message removed by moderator]"

    # flag_reason recorded for automatically flagged messages
    AUTO_FLAG_REASON: Final[str] = "auto: suspicious content"

    # Preview length used in notification bodies
    NOTIFICATION_PREVIEW_LENGTH: Final[int] = 100


# Content that is accepted but flagged for moderator review
SUSPICIOUS_PATTERNS: Final[tuple] = (
    re.compile(r"\b\d{4}[-\s]?\d{4}[-\s]?\d{4}[-\s]?\d{4}\b"),  # card number
    re.compile(r"\b\d{3}-\d{2}-\d{4}\b"),  # SSN
    re.compile(r"\b(?:bitcoin|btc|crypto wallet|send money|wire transfer)\b", re.I),
    re.compile(r"\b(?:click here|act now|limited time|free money)\b", re.I),
)


# =============================================================================
# Attachment Configuration
# =============================================================================


class ATTACHMENT_CONFIG:
    """
    Configuration for message attachments.

    Attachments are opaque references (URLs or storage ids) owned by the
    upload service; chat stores them in order and never dereferences them.
    """

    MAX_ATTACHMENTS_PER_MESSAGE: Final[int] = 10
    MAX_REFERENCE_LENGTH: Final[int] = 2048


# =============================================================================
# Presence Configuration
# =============================================================================


class PRESENCE_CONFIG:
    """Configuration for presence and session tracking."""

    # Cache key prefixes (CacheSessionRegistry)
    KEY_PREFIX_SESSIONS: Final[str] = "chat:sessions"
    KEY_PREFIX_LAST_SEEN: Final[str] = "chat:last_seen"

    # Cache keys (CacheTypingStore): one per conversation plus an index
    KEY_PREFIX_TYPING: Final[str] = "chat:typing"
    KEY_TYPING_INDEX: Final[str] = "chat:typing:index"

    # Typing keys outlive their deadlines by this much so the beat sweep
    # (every 30s) still finds expired entries and broadcasts typing_stop
    TYPING_SWEEP_GRACE_SECONDS: Final[int] = 120

    # Clients should send a ping at least this often to keep
    # cache-backed sessions alive
    HEARTBEAT_INTERVAL_SECONDS: Final[int] = 30


# =============================================================================
# Realtime Channels
# =============================================================================


class REALTIME_CHANNELS:
    """Logical channels a session can receive events on."""

    MESSAGE: Final[str] = "message"
    TYPING: Final[str] = "typing"
    STATUS: Final[str] = "status"
    MESSAGE_STATUS: Final[str] = "message_status"

    ALL: Final[tuple] = (MESSAGE, TYPING, STATUS, MESSAGE_STATUS)


class EVENT_TYPES:
    """Event `type` values sent to clients."""

    CHAT_MESSAGE: Final[str] = "chat_message"
    TYPING_START: Final[str] = "typing_start"
    TYPING_STOP: Final[str] = "typing_stop"
    USER_ONLINE: Final[str] = "user_online"
    USER_OFFLINE: Final[str] = "user_offline"
    MESSAGE_READ: Final[str] = "message_read"
    ERROR: Final[str] = "error"
    MESSAGE_SENT: Final[str] = "message_sent"
    PONG: Final[str] = "pong"
