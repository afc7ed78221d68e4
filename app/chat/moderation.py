"""
Moderation gate for chat.

Decides whether a sender may post into a conversation and manages user
blocks. Flag/approve/remove of individual messages lives in
MessageService; this module supplies the content checks those use.

Block Semantics:
    Blocks are directed. A message from S is rejected when any other
    participant of the conversation has an active block on S. The block
    S placed on others does not stop S from sending.

Usage:
    from chat.moderation import ModerationService

    ModerationService.block(host, guest, reason="spam")
    ModerationService.is_blocked(sender_id=guest.id, recipient_id=host.id)  # True
    ModerationService.unblock(host, guest)
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from django.conf import settings
from django.core.cache import cache
from django.db import IntegrityError
from django.utils import timezone

from chat.constants import MESSAGE_CONFIG, SUSPICIOUS_PATTERNS
from chat.exceptions import (
    AlreadyBlocked,
    Blocked,
    ChatValidationError,
    SendRateLimited,
)
from chat.models import Message, UserBlock
from core.services import BaseService

if TYPE_CHECKING:
    from collections.abc import Iterable

    from authentication.models import User
    from chat.models import Conversation

logger = logging.getLogger(__name__)

RATE_LIMIT_WINDOW_SECONDS = 60


class ModerationService(BaseService):
    """
    Service for user blocks and pre-send checks.

    Methods:
        is_blocked: Has recipient blocked sender?
        ensure_can_send: Raise Blocked if any counterpart blocked the sender
        block / unblock: Manage directed blocks
        list_blocks: Active blocks placed by a user
        check_rate_limit: Per-sender message budget
        check_spam: Reject a run of identical messages
        scan_content: Reason string for suspicious content, or ""
    """

    @classmethod
    def is_blocked(cls, sender_id: int, recipient_id: int) -> bool:
        """True if recipient has an active block on sender."""
        return UserBlock.objects.filter(
            blocker_id=recipient_id,
            blocked_user_id=sender_id,
            is_active=True,
        ).exists()

    @classmethod
    def blockers_of(cls, sender_id: int, recipient_ids: Iterable[int]) -> list[int]:
        """Which of recipient_ids have blocked sender_id."""
        return list(
            UserBlock.objects.filter(
                blocker_id__in=list(recipient_ids),
                blocked_user_id=sender_id,
                is_active=True,
            ).values_list("blocker_id", flat=True)
        )

    @classmethod
    def ensure_can_send(cls, sender: User, conversation: Conversation) -> None:
        """
        Gate a send from sender into conversation.

        Raises:
            Blocked: A counterpart has blocked the sender. The error carries
                no hint of who or why.
        """
        recipients = [uid for uid in conversation.participant_ids if uid != sender.id]
        blockers = cls.blockers_of(sender.id, recipients)
        if blockers:
            logger.info(
                f"Rejected send from user {sender.id} into conversation "
                f"{conversation.id}: blocked by {blockers}"
            )
            raise Blocked()

    @classmethod
    def block(cls, blocker: User, blocked_user: User, reason: str = "") -> UserBlock:
        """
        Create a directed block.

        Does not hide messages exchanged before the block.

        Raises:
            ChatValidationError: Attempt to block yourself
            AlreadyBlocked: An identical active block exists
        """
        if blocker.id == blocked_user.id:
            raise ChatValidationError(
                "You cannot block yourself",
                error_code="CANNOT_BLOCK_SELF",
            )

        if UserBlock.objects.filter(
            blocker=blocker, blocked_user=blocked_user, is_active=True
        ).exists():
            raise AlreadyBlocked(
                "User is already blocked",
                details={"user_id": blocked_user.id},
            )

        try:
            with cls.atomic():
                user_block = UserBlock.objects.create(
                    blocker=blocker,
                    blocked_user=blocked_user,
                    reason=reason[:255],
                )
        except IntegrityError:
            # Concurrent identical block committed first
            raise AlreadyBlocked(
                "User is already blocked",
                details={"user_id": blocked_user.id},
            )

        cls.get_logger().info(f"User {blocker.id} blocked user {blocked_user.id}")
        return user_block

    @classmethod
    def unblock(cls, blocker: User, blocked_user: User) -> bool:
        """
        Lift an active block. Idempotent.

        Returns:
            True if a block was lifted, False if there was none
        """
        updated = UserBlock.objects.filter(
            blocker=blocker,
            blocked_user=blocked_user,
            is_active=True,
        ).update(is_active=False, unblocked_at=timezone.now())

        if updated:
            cls.get_logger().info(
                f"User {blocker.id} unblocked user {blocked_user.id}"
            )
        return bool(updated)

    @classmethod
    def list_blocks(cls, blocker: User):
        """Active blocks placed by blocker, newest first."""
        return UserBlock.objects.filter(blocker=blocker, is_active=True).select_related(
            "blocked_user"
        )

    @classmethod
    def check_rate_limit(cls, sender: User) -> None:
        """
        Count one message against the sender's per-minute budget.

        Raises:
            SendRateLimited: Budget exhausted for the current window
        """
        limit = settings.CHAT_RATE_LIMIT_PER_MINUTE
        if not limit:
            return

        cache_key = f"chat:rate:{sender.id}"
        cache.add(cache_key, 0, timeout=RATE_LIMIT_WINDOW_SECONDS)
        try:
            current = cache.incr(cache_key)
        except ValueError:
            # Key expired between add() and incr()
            cache.set(cache_key, 1, timeout=RATE_LIMIT_WINDOW_SECONDS)
            current = 1

        if current > limit:
            logger.warning(f"User {sender.id} exceeded message rate limit ({limit}/min)")
            raise SendRateLimited(
                "Too many messages. Please slow down.",
                details={"retry_after": RATE_LIMIT_WINDOW_SECONDS, "limit": limit},
            )

    @classmethod
    def check_spam(cls, sender: User, conversation: Conversation, content: str) -> None:
        """
        Reject the Nth identical message in a row from the same sender.

        Raises:
            ChatValidationError: content repeats the sender's previous
                SPAM_REPEAT_THRESHOLD - 1 messages in this conversation
        """
        if not content:
            return

        previous_count = MESSAGE_CONFIG.SPAM_REPEAT_THRESHOLD - 1
        recent = list(
            Message.objects.filter(conversation=conversation)
            .order_by("-created_at", "-id")
            .values_list("sender_id", "content")[:previous_count]
        )
        if len(recent) < previous_count:
            return

        if all(
            sender_id == sender.id and previous == content
            for sender_id, previous in recent
        ):
            raise ChatValidationError(
                "Repeated message rejected",
                error_code="DUPLICATE_CONTENT",
            )

    @classmethod
    def scan_content(cls, content: str) -> str:
        """Flag reason for suspicious content, or "" when clean."""
        for pattern in SUSPICIOUS_PATTERNS:
            if pattern.search(content):
                return MESSAGE_CONFIG.AUTO_FLAG_REASON
        return ""
