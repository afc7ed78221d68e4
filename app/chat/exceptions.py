"""
Chat-specific exceptions.

Exception Hierarchy:
    ChatError (base for the chat domain)
    ├── ChatValidationError - Invalid input, rejected before persistence
    ├── ConversationNotFound / MessageNotFound - Lookup failures (404)
    ├── ChatPermissionDenied - Role matrix or moderator checks (403)
    ├── Blocked - Recipient has blocked the sender (403, generic message)
    ├── AlreadyBlocked - Identical active block exists (409)
    ├── SendRateLimited - Sender exceeded the per-minute message budget (429)
    ├── ConcurrencyConflict - Lost a find-or-create race (resolved internally)
    └── DeliveryFailure - Realtime fan-out failed (absorbed by the dispatcher)

Each class also inherits the matching core.exceptions class, so API code
that handles NotFoundError or ValidationError handles the chat variants too.

Usage:
    from chat.exceptions import Blocked, ChatValidationError

    if not content and not attachments:
        raise ChatValidationError(
            "Message must have content or attachments",
            error_code="EMPTY_MESSAGE",
        )
"""

from __future__ import annotations

from core.exceptions import (
    BaseApplicationError,
    ConflictError,
    ExternalServiceError,
    NotFoundError,
    PermissionDeniedError,
    RateLimitError,
    ValidationError,
)


class ChatError(BaseApplicationError):
    """Base exception for all chat operations."""

    default_error_code: str = "CHAT_ERROR"


class ChatValidationError(ChatError, ValidationError):
    """Invalid send/read/flag input; nothing was persisted."""

    default_error_code: str = "VALIDATION_ERROR"
    status_code: int = 400


class ConversationNotFound(ChatError, NotFoundError):
    """
    Conversation id does not resolve, or the caller is not a participant.

    Non-participants get the same error as a missing id.
    """

    default_error_code: str = "CONVERSATION_NOT_FOUND"
    status_code: int = 404


class MessageNotFound(ChatError, NotFoundError):
    """Message id does not resolve, or the caller cannot see it."""

    default_error_code: str = "MESSAGE_NOT_FOUND"
    status_code: int = 404


class ChatPermissionDenied(ChatError, PermissionDeniedError):
    """Role matrix forbids the conversation, or caller is not a moderator."""

    default_error_code: str = "CHAT_PERMISSION_DENIED"
    status_code: int = 403


class Blocked(ChatError, PermissionDeniedError):
    """
    The recipient has blocked the sender.

    The message and error code are deliberately generic: the blocked party
    sees the same response as any other rejected send. The block itself is
    only visible in server logs.
    """

    default_error_code: str = "SEND_REJECTED"
    status_code: int = 403
    default_message: str = "This message could not be sent."

    def __init__(self, message: str | None = None, **kwargs):
        super().__init__(message or self.default_message, **kwargs)


class AlreadyBlocked(ChatError, ConflictError):
    """An identical active block already exists."""

    default_error_code: str = "ALREADY_BLOCKED"
    status_code: int = 409


class SendRateLimited(ChatError, RateLimitError):
    """Sender exceeded CHAT_RATE_LIMIT_PER_MINUTE."""

    default_error_code: str = "MESSAGE_RATE_LIMIT"
    status_code: int = 429


class ConcurrencyConflict(ChatError, ConflictError):
    """
    A concurrent find-or-create inserted the same conversation first.

    Raised and handled inside ConversationService; callers only see it if
    the conflict persists past the retry budget.
    """

    default_error_code: str = "CONCURRENCY_CONFLICT"
    status_code: int = 409


class DeliveryFailure(ChatError, ExternalServiceError):
    """
    Realtime delivery to a live session failed.

    Never propagated to the sender of a message: the dispatcher logs it and
    falls back to a persisted notification.
    """

    default_error_code: str = "DELIVERY_FAILURE"
    status_code: int = 503
