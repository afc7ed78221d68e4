"""
Chat system models.

This module defines the data models for marketplace messaging:
- Conversations between customers, providers and the support desk
- Messages with attachments, replies and moderation state
- Read receipts and user blocks

Models:
    Conversation: Container for messages between a fixed participant set
    Participant: User membership with per-user unread tracking
    Message: Individual message within a conversation
    MessageReadReceipt: One row per (message, reader) acknowledgment
    UserBlock: Directed block between two users

Design Decisions:
    - A conversation's participant set is fixed at creation; its canonical
      signature (participant_key) plus type is unique among active
      conversations, enforced by a partial unique constraint
    - Counters (message_count, unread_count) are only changed through
      F() expressions in the service layer
    - Messages are ordered by (created_at, id); id breaks timestamp ties
    - Messages are immutable except for read, flag and moderation fields
    - Conversations are never hard-deleted, only deactivated or hidden
      per participant
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from django.conf import settings
from django.db import models
from django.db.models import Q
from django.utils import timezone

from authentication.models import UserRole
from chat.constants import MESSAGE_CONFIG
from core.models import BaseModel

if TYPE_CHECKING:
    from collections.abc import Iterable


class ConversationType(models.TextChoices):
    """
    Classification of a conversation by who is talking.

    CUSTOMER_PROVIDER: Guest and a property owner, vehicle owner or guide
    PROVIDER_ADMIN: Provider and the back office
    CUSTOMER_ADMIN: Guest and the back office
    SUPPORT: Support ticket thread
    GROUP: More than two participants
    """

    CUSTOMER_PROVIDER = "CUSTOMER_PROVIDER", "Customer / Provider"
    PROVIDER_ADMIN = "PROVIDER_ADMIN", "Provider / Admin"
    CUSTOMER_ADMIN = "CUSTOMER_ADMIN", "Customer / Admin"
    SUPPORT = "SUPPORT", "Support"
    GROUP = "GROUP", "Group"


class MessageType(models.TextChoices):
    """
    Type of message content.

    TEXT: User-authored message (attachments are a property, not a type)
    REPLY: User-authored message referencing an earlier one (reply_to set)
    SYSTEM: Auto-generated event message (sender is NULL)
    """

    TEXT = "TEXT", "Text"
    REPLY = "REPLY", "Reply"
    SYSTEM = "SYSTEM", "System"


class ModerationStatus(models.TextChoices):
    """Outcome of a moderator's review."""

    NONE = "NONE", "Not reviewed"
    APPROVED = "APPROVED", "Approved"
    REMOVED = "REMOVED", "Removed"


class Conversation(BaseModel):
    """
    A conversation between a fixed set of participants.

    Fields:
        conversation_type: Classification (CUSTOMER_PROVIDER, SUPPORT, ...)
        participant_key: Canonical signature of the participant set
            (sorted user ids joined by commas)
        subject: Optional subject (support tickets, listing enquiries)
        is_active: False once archived/closed
        message_count: Incremented exactly once per accepted message;
            rebuilt from rows after an erasure
        last_sequence: Highest message sequence handed out. Unlike
            message_count it never goes down, so sequences stay unique
        last_message / last_message_at: Most recent accepted message, used
            for inbox ordering
        created_by: User who opened the conversation

    Uniqueness:
        At most one active conversation exists per (participant_key,
        conversation_type). Concurrent first contact between the same users
        converges on one row because the losing insert violates the
        partial unique constraint and re-reads the winner.
    """

    conversation_type = models.CharField(
        max_length=20,
        choices=ConversationType.choices,
        db_index=True,
        help_text="Classification of the conversation",
    )

    participant_key = models.CharField(
        max_length=255,
        db_index=True,
        help_text="Sorted participant ids joined by commas",
    )

    subject = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Optional subject line",
    )

    is_active = models.BooleanField(
        default=True,
        db_index=True,
        help_text="False once the conversation is archived",
    )

    message_count = models.PositiveIntegerField(
        default=0,
        help_text="Number of accepted messages",
    )

    last_sequence = models.PositiveIntegerField(
        default=0,
        help_text="Highest sequence handed out; never decreases",
    )

    last_message = models.ForeignKey(
        "Message",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
        help_text="Most recent accepted message",
    )

    last_message_at = models.DateTimeField(
        null=True,
        blank=True,
        db_index=True,
        help_text="Timestamp of the most recent accepted message",
    )

    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="created_conversations",
        help_text="User who opened the conversation",
    )

    class Meta:
        db_table = "chat_conversation"
        ordering = ["-last_message_at", "-id"]
        indexes = [
            models.Index(
                fields=["-last_message_at", "-id"],
                name="chat_conv_inbox_idx",
            ),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["participant_key", "conversation_type"],
                condition=Q(is_active=True),
                name="chat_unique_active_participant_set",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.get_conversation_type_display()} conversation {self.pk}"

    @staticmethod
    def build_participant_key(user_ids: Iterable) -> str:
        """Canonical signature for a participant set (order-insensitive)."""
        return ",".join(str(user_id) for user_id in sorted({int(u) for u in user_ids}))

    @property
    def participant_ids(self) -> list[int]:
        """Participant user ids, parsed from participant_key."""
        return [int(part) for part in self.participant_key.split(",") if part]

    def has_participant(self, user_id) -> bool:
        return int(user_id) in self.participant_ids


class Participant(BaseModel):
    """
    A user's membership in a conversation.

    Fields:
        conversation: The conversation
        user: The participating user
        role: Marketplace role the user acts in within this conversation
        unread_count: Messages from others since the last read (>= 0)
        last_read_message / last_read_at: Read cursor
        hidden_at: Set when the user hides the conversation from their inbox;
            cleared on the next message in it

    Invariant:
        The sender of the most recent message has unread_count 0; everyone
        else's count only grows on new messages and only shrinks on read.
    """

    conversation = models.ForeignKey(
        Conversation,
        on_delete=models.CASCADE,
        related_name="participants",
        help_text="Conversation the user participates in",
    )

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="chat_participations",
        help_text="Participating user",
    )

    role = models.CharField(
        max_length=20,
        choices=UserRole.choices,
        help_text="Role the user acts in within this conversation",
    )

    unread_count = models.PositiveIntegerField(
        default=0,
        help_text="Unread messages from other participants",
    )

    last_read_message = models.ForeignKey(
        "Message",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
        help_text="Newest message the user has read",
    )

    last_read_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the user last read this conversation",
    )

    hidden_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the user hid this conversation from their inbox",
    )

    class Meta:
        db_table = "chat_participant"
        ordering = ["id"]
        constraints = [
            models.UniqueConstraint(
                fields=["conversation", "user"],
                name="chat_unique_participant",
            ),
        ]
        indexes = [
            models.Index(
                fields=["user", "hidden_at"],
                name="chat_part_user_inbox_idx",
            ),
        ]

    def __str__(self) -> str:
        return f"User {self.user_id} in conversation {self.conversation_id}"


class Message(BaseModel):
    """
    A message within a conversation.

    Message Types:
        TEXT: User-authored message
        REPLY: User-authored message with reply_to in the same conversation
        SYSTEM: Auto-generated event message (sender is NULL, no block check)

    Ordering:
        (created_at, id). `sequence` is taken from the conversation's
        last_sequence at acceptance so clients can restore send order when
        deliveries arrive out of order.

    Mutability:
        Only read state (is_read, receipts), flag state and moderation
        fields change after creation.

    Fields:
        conversation: Conversation this message belongs to
        sender / sender_role: Author and the role they wrote in
        message_type: TEXT, REPLY or SYSTEM
        content: Text body (may be empty only when attachments are present)
        attachments: Ordered list of opaque references
        reply_to: Earlier message in the same conversation
        sequence: Position in the conversation (1-based)
        is_read: True once any non-sender participant has read it
        is_flagged / flag_reason / flagged_by / flagged_at: Flag state
        moderation_status / moderated_by / moderated_at: Review outcome
        idempotency_key: Client token deduplicating retried sends
    """

    conversation = models.ForeignKey(
        Conversation,
        on_delete=models.CASCADE,
        related_name="messages",
        help_text="Conversation this message belongs to",
    )

    sender = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="sent_messages",
        help_text="User who sent this message (null for system messages)",
    )

    sender_role = models.CharField(
        max_length=20,
        choices=UserRole.choices,
        blank=True,
        default="",
        help_text="Role the sender wrote in",
    )

    message_type = models.CharField(
        max_length=10,
        choices=MessageType.choices,
        default=MessageType.TEXT,
        db_index=True,
        help_text="Type of message",
    )

    content = models.TextField(
        blank=True,
        default="",
        help_text="Message text",
    )

    attachments = models.JSONField(
        default=list,
        blank=True,
        help_text="Ordered list of attachment references",
    )

    reply_to = models.ForeignKey(
        "self",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="replies",
        help_text="Message this one replies to (same conversation)",
    )

    sequence = models.PositiveIntegerField(
        default=0,
        help_text="Position of this message in its conversation",
    )

    is_read = models.BooleanField(
        default=False,
        help_text="Whether any non-sender participant has read this message",
    )

    is_flagged = models.BooleanField(
        default=False,
        db_index=True,
        help_text="Whether the message awaits moderator review",
    )
    flag_reason = models.CharField(max_length=255, blank=True, default="")
    flagged_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="flagged_messages",
        help_text="User who flagged the message (null when auto-flagged)",
    )
    flagged_at = models.DateTimeField(null=True, blank=True)

    moderation_status = models.CharField(
        max_length=10,
        choices=ModerationStatus.choices,
        default=ModerationStatus.NONE,
        help_text="Outcome of moderator review",
    )
    moderated_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="moderated_messages",
    )
    moderated_at = models.DateTimeField(null=True, blank=True)

    idempotency_key = models.CharField(
        max_length=100,
        null=True,
        blank=True,
        help_text="Client token deduplicating retried sends",
    )

    class Meta:
        db_table = "chat_message"
        ordering = ["created_at", "id"]
        indexes = [
            # Messages in a conversation (cursor pagination)
            models.Index(
                fields=["conversation", "created_at", "id"],
                name="chat_msg_conv_cursor_idx",
            ),
            # User's messages
            models.Index(
                fields=["sender", "-created_at"],
                name="chat_msg_sender_idx",
            ),
            # Moderation queue
            models.Index(
                fields=["is_flagged", "created_at"],
                name="chat_msg_flagged_idx",
                condition=Q(is_flagged=True),
            ),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["sender", "idempotency_key"],
                condition=Q(idempotency_key__isnull=False),
                name="chat_msg_unique_idempotency_key",
            ),
        ]

    def __str__(self) -> str:
        sender_str = f"User {self.sender_id}" if self.sender_id else "System"
        content_preview = (
            self.content[:50] + "..." if len(self.content) > 50 else self.content
        )
        return f"{sender_str}: {content_preview}"

    @property
    def is_system_message(self) -> bool:
        return self.message_type == MessageType.SYSTEM

    @property
    def is_removed(self) -> bool:
        return self.moderation_status == ModerationStatus.REMOVED

    def get_display_content(self) -> str:
        """Content as served to clients (placeholder once removed)."""
        if self.is_removed:
            return MESSAGE_CONFIG.REMOVED_PLACEHOLDER
        return self.content

    def get_display_attachments(self) -> list:
        if self.is_removed:
            return []
        return list(self.attachments or [])

    @property
    def read_by(self) -> list[int]:
        """Ids of participants (excluding the sender) who read this message."""
        return [receipt.user_id for receipt in self.read_receipts.all()]

    @property
    def read_at(self) -> dict[int, str]:
        """Mapping of reader id to ISO timestamp of their first read."""
        return {
            receipt.user_id: receipt.read_at.isoformat()
            for receipt in self.read_receipts.all()
        }


class MessageReadReceipt(models.Model):
    """
    A reader's acknowledgment of a message.

    One row per (message, user); repeating a read never changes read_at.
    The sender never gets a receipt for their own message.
    """

    message = models.ForeignKey(
        Message,
        on_delete=models.CASCADE,
        related_name="read_receipts",
    )
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="message_receipts",
    )
    read_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = "chat_message_read_receipt"
        ordering = ["read_at", "id"]
        constraints = [
            models.UniqueConstraint(
                fields=["message", "user"],
                name="chat_unique_read_receipt",
            ),
        ]

    def __str__(self) -> str:
        return f"Message {self.message_id} read by user {self.user_id}"


class UserBlock(BaseModel):
    """
    A directed block: blocker no longer receives messages from blocked_user.

    A blocking B does not imply B blocks A. At most one active block exists
    per ordered pair; unblocking deactivates the row so history is kept.
    Prior messages are not hidden.
    """

    blocker = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="blocks_made",
        help_text="User who created the block",
    )
    blocked_user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="blocks_received",
        help_text="User who is blocked",
    )
    reason = models.CharField(max_length=255, blank=True, default="")
    is_active = models.BooleanField(default=True, db_index=True)
    blocked_at = models.DateTimeField(default=timezone.now)
    unblocked_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = "chat_user_block"
        ordering = ["-blocked_at", "-id"]
        constraints = [
            models.UniqueConstraint(
                fields=["blocker", "blocked_user"],
                condition=Q(is_active=True),
                name="chat_unique_active_block",
            ),
            models.CheckConstraint(
                condition=~Q(blocker=models.F("blocked_user")),
                name="chat_block_not_self",
            ),
        ]

    def __str__(self) -> str:
        state = "active" if self.is_active else "lifted"
        return f"User {self.blocker_id} blocks user {self.blocked_user_id} ({state})"
