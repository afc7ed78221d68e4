"""
Chat system service layer.

This module provides the business logic for the chat system, encapsulating
all operations on conversations, messages, presence and typing.

Services:
    ConversationService: Conversation registry (find-or-create, counters,
        read cursors, inbox listing, hide/archive)
    MessageService: Message pipeline (send, read receipts, history,
        flag/moderate, search, erasure)
    PresenceService: Session open/close, online status and typing, with
        the matching realtime broadcasts

Design Principles:
    - Services are stateless (use class methods)
    - Expected failures raise chat.exceptions (rendered by the API layer
      and echoed over the WebSocket by the consumer)
    - Counters only change through F() updates under a row lock
    - Realtime fan-out happens after commit and never fails the caller

Usage:
    from chat.services import ConversationService, MessageService

    conversation, created = ConversationService.find_or_create([guest, host])

    message = MessageService.send(
        conversation=conversation,
        sender=guest,
        content="Is this available?",
    )

    MessageService.mark_read(message, host)
"""

from __future__ import annotations

import base64
import json
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from itertools import combinations
from typing import TYPE_CHECKING

from django.conf import settings
from django.contrib.auth import get_user_model
from django.db import IntegrityError
from django.db.models import F, Q
from django.db.models.functions import Coalesce
from django.utils import timezone

from authentication.models import PROVIDER_ROLES, UserRole
from chat.constants import ATTACHMENT_CONFIG, MESSAGE_CONFIG, REALTIME_CHANNELS
from chat.dispatch import get_dispatcher
from chat.exceptions import (
    ChatPermissionDenied,
    ChatValidationError,
    ConcurrencyConflict,
    ConversationNotFound,
    MessageNotFound,
)
from chat.models import (
    Conversation,
    ConversationType,
    Message,
    MessageReadReceipt,
    MessageType,
    ModerationStatus,
    Participant,
)
from chat.moderation import ModerationService
from chat.presence import get_presence_tracker
from core.exceptions import NotFoundError
from core.services import BaseService

if TYPE_CHECKING:
    from collections.abc import Iterable

    from authentication.models import User

# find_or_create retries after losing a concurrent insert
FIND_OR_CREATE_ATTEMPTS = 3

# Sends into the same conversation are serialized per process so that
# commit order and fan-out order agree. Striped to bound memory.
_SEND_LOCKS = tuple(threading.Lock() for _ in range(64))


def _send_lock(conversation_id: int) -> threading.Lock:
    return _SEND_LOCKS[conversation_id % len(_SEND_LOCKS)]


def effective_role(user: User) -> str:
    """Role a user acts in within chat (superusers act as SUPER_ADMIN)."""
    if user.is_super_admin:
        return UserRole.SUPER_ADMIN
    return user.role


def roles_can_converse(role_a: str, role_b: str) -> bool:
    """
    Marketplace chat matrix.

    SUPER_ADMIN talks to anyone; customers talk to providers; providers
    talk to customers.
    """
    if UserRole.SUPER_ADMIN in (role_a, role_b):
        return True
    if role_a == UserRole.CUSTOMER:
        return role_b in PROVIDER_ROLES
    if role_a in PROVIDER_ROLES:
        return role_b == UserRole.CUSTOMER
    return False


def default_conversation_type(roles: list[str]) -> str:
    if len(roles) > 2:
        return ConversationType.GROUP

    admins = roles.count(UserRole.SUPER_ADMIN)
    if admins == 2:
        return ConversationType.SUPPORT
    if admins == 1:
        other = next(role for role in roles if role != UserRole.SUPER_ADMIN)
        if other == UserRole.CUSTOMER:
            return ConversationType.CUSTOMER_ADMIN
        return ConversationType.PROVIDER_ADMIN
    return ConversationType.CUSTOMER_PROVIDER


# =============================================================================
# Cursor
# =============================================================================


@dataclass(frozen=True)
class TimelineCursor:
    """
    Keyset position on a (timestamp, id) ordering.

    Encoded as URL-safe base64 JSON so it can travel in query strings.
    """

    timestamp: datetime
    id: int

    def encode(self) -> str:
        data = {"ts": self.timestamp.isoformat(), "id": self.id}
        return base64.urlsafe_b64encode(json.dumps(data).encode()).decode()

    @classmethod
    def decode(cls, encoded: str) -> TimelineCursor:
        try:
            data = json.loads(base64.urlsafe_b64decode(encoded.encode()).decode())
            return cls(timestamp=datetime.fromisoformat(data["ts"]), id=int(data["id"]))
        except (ValueError, KeyError, TypeError):
            raise ChatValidationError(
                "Invalid pagination cursor",
                error_code="INVALID_CURSOR",
            )

    def after(self, field: str = "created_at") -> Q:
        return Q(**{f"{field}__gt": self.timestamp}) | Q(
            **{field: self.timestamp, "id__gt": self.id}
        )

    def before(self, field: str = "created_at") -> Q:
        return Q(**{f"{field}__lt": self.timestamp}) | Q(
            **{field: self.timestamp, "id__lt": self.id}
        )


def _paginate(rows: list, limit: int, field: str) -> tuple[list, str | None]:
    """Trim a limit+1 fetch and build the cursor for the next page."""
    if len(rows) <= limit:
        return rows, None
    rows = rows[:limit]
    last = rows[-1]
    return rows, TimelineCursor(getattr(last, field), last.id).encode()


class ChatService(BaseService):
    """Shared helpers for chat services."""

    @classmethod
    def _fan_out(cls, method_name: str, *args) -> None:
        """Invoke a dispatcher fan-out; failures are logged, never raised."""
        try:
            getattr(get_dispatcher(), method_name)(*args)
        except Exception:
            cls.get_logger().exception(f"Realtime fan-out {method_name} failed")


# =============================================================================
# ConversationService
# =============================================================================


class ConversationService(ChatService):
    """
    Conversation registry.

    Methods:
        find_or_create: Return the active conversation for a participant set
        record_message: Bump counters for an accepted message
        mark_read: Move a participant's read cursor
        list_for_user: Inbox, most recent activity first
        get_for_participant: Lookup restricted to participants
        hide_for_user: Remove from one user's inbox until the next message
        archive: Deactivate a conversation
        unread_summary: Unread totals for badges
    """

    @classmethod
    def find_or_create(
        cls,
        participants: Iterable[User],
        conversation_type: str | None = None,
        created_by: User | None = None,
        subject: str = "",
    ) -> tuple[Conversation, bool]:
        """
        Find or create the active conversation for a participant set.

        At most one active conversation exists per (participant set, type).
        Concurrent first contact converges on one row: the losing insert
        hits the partial unique constraint, and the lookup is retried.

        Args:
            participants: Two or more distinct, active users
            conversation_type: Explicit type; derived from roles when None
            created_by: User opening the conversation
            subject: Optional subject line (new conversations only)

        Returns:
            (conversation, created)

        Raises:
            ChatValidationError: Fewer than two users, duplicates, inactive
                users or a type that does not fit the participant count
            ChatPermissionDenied: The role matrix forbids this combination
            ConcurrencyConflict: The race did not settle within the retries
        """
        users = list(participants)
        ids = [user.id for user in users]

        if len(ids) < 2:
            raise ChatValidationError(
                "A conversation needs at least two participants",
                error_code="TOO_FEW_PARTICIPANTS",
            )
        if len(set(ids)) != len(ids):
            raise ChatValidationError(
                "Participants must be distinct",
                error_code="DUPLICATE_PARTICIPANTS",
            )
        inactive = [user.id for user in users if not user.is_active]
        if inactive:
            raise ChatValidationError(
                "Cannot start a conversation with an inactive user",
                error_code="INACTIVE_PARTICIPANT",
                details={"user_ids": inactive},
            )

        roles = {user.id: effective_role(user) for user in users}
        for first, second in combinations(users, 2):
            if not roles_can_converse(roles[first.id], roles[second.id]):
                raise ChatPermissionDenied(
                    f"{roles[first.id]} users cannot chat with {roles[second.id]} users",
                    error_code="ROLE_NOT_ALLOWED",
                )

        if conversation_type is None:
            conversation_type = default_conversation_type(list(roles.values()))
        elif (conversation_type == ConversationType.GROUP) != (len(ids) > 2):
            raise ChatValidationError(
                "GROUP conversations must have more than two participants",
                error_code="INVALID_CONVERSATION_TYPE",
            )

        participant_key = Conversation.build_participant_key(ids)

        for attempt in range(1, FIND_OR_CREATE_ATTEMPTS + 1):
            existing = Conversation.objects.filter(
                participant_key=participant_key,
                conversation_type=conversation_type,
                is_active=True,
            ).first()
            if existing is not None:
                return existing, False

            try:
                with cls.atomic():
                    conversation = Conversation.objects.create(
                        conversation_type=conversation_type,
                        participant_key=participant_key,
                        subject=subject[:255],
                        created_by=created_by,
                    )
                    Participant.objects.bulk_create(
                        [
                            Participant(
                                conversation=conversation,
                                user=user,
                                role=roles[user.id],
                            )
                            for user in users
                        ]
                    )
            except IntegrityError:
                cls.get_logger().info(
                    f"Lost create race for participants {participant_key} "
                    f"({conversation_type}), attempt {attempt}"
                )
                continue

            cls.get_logger().info(
                f"Created {conversation_type} conversation {conversation.id} "
                f"for participants {participant_key}"
            )
            return conversation, True

        raise ConcurrencyConflict(
            "Conversation could not be created, please retry",
            details={"participant_key": participant_key},
        )

    @classmethod
    def record_message(cls, conversation: Conversation, message: Message) -> None:
        """
        Apply an accepted message to the conversation's counters.

        Must run inside the sender's transaction, after the conversation row
        has been locked. System messages move message_count and
        last_message_at but leave unread counts untouched.
        """
        now = timezone.now()
        Conversation.objects.filter(pk=conversation.pk).update(
            message_count=F("message_count") + 1,
            last_sequence=message.sequence,
            last_message=message,
            last_message_at=message.created_at,
            updated_at=now,
        )

        participants = Participant.objects.filter(conversation=conversation)
        if message.sender_id is None:
            participants.update(hidden_at=None, updated_at=now)
        else:
            participants.exclude(user_id=message.sender_id).update(
                unread_count=F("unread_count") + 1,
                hidden_at=None,
                updated_at=now,
            )
            participants.filter(user_id=message.sender_id).update(
                unread_count=0,
                last_read_message=message,
                last_read_at=now,
                hidden_at=None,
                updated_at=now,
            )

        conversation.refresh_from_db(
            fields=[
                "message_count",
                "last_sequence",
                "last_message",
                "last_message_at",
                "updated_at",
            ]
        )

    @classmethod
    def mark_read(
        cls,
        conversation: Conversation,
        user: User,
        through_message: Message | None = None,
    ) -> Participant:
        """
        Move user's read cursor up to through_message (default: latest).

        Idempotent: a message at or before the current cursor changes
        nothing. unread_count becomes the number of messages from others
        after the new cursor.

        Raises:
            ConversationNotFound: user is not a participant
            ChatValidationError: through_message belongs elsewhere
        """
        if through_message is None:
            through_message = conversation.messages.order_by("-created_at", "-id").first()
        elif through_message.conversation_id != conversation.id:
            raise ChatValidationError(
                "Message does not belong to this conversation",
                error_code="MESSAGE_NOT_IN_CONVERSATION",
            )

        with cls.atomic():
            participant = (
                Participant.objects.select_for_update()
                .select_related("last_read_message")
                .filter(conversation=conversation, user=user)
                .first()
            )
            if participant is None:
                raise ConversationNotFound(
                    "Conversation not found",
                    details={"conversation_id": conversation.id},
                )

            if through_message is None:
                return participant

            current = participant.last_read_message
            if current is not None and (current.created_at, current.id) >= (
                through_message.created_at,
                through_message.id,
            ):
                return participant

            cursor = TimelineCursor(through_message.created_at, through_message.id)
            participant.unread_count = (
                conversation.messages.filter(cursor.after())
                .exclude(sender=user)
                .exclude(message_type=MessageType.SYSTEM)
                .count()
            )
            participant.last_read_message = through_message
            participant.last_read_at = timezone.now()
            participant.save(
                update_fields=[
                    "unread_count",
                    "last_read_message",
                    "last_read_at",
                    "updated_at",
                ]
            )

        cls.get_logger().debug(
            f"User {user.id} read conversation {conversation.id} "
            f"through message {through_message.id}"
        )
        return participant

    @classmethod
    def list_for_user(
        cls,
        user: User,
        cursor: str | None = None,
        limit: int = 20,
        include_archived: bool = False,
    ) -> tuple[list[Conversation], str | None]:
        """
        User's inbox ordered by last activity, newest first.

        Conversations without messages sort by creation time. Hidden
        conversations are left out. Pagination is keyset on
        (activity_at, id) so pages stay stable while messages arrive.

        Returns:
            (conversations, next_cursor)
        """
        queryset = (
            Conversation.objects.filter(
                participants__user=user,
                participants__hidden_at__isnull=True,
            )
            .annotate(activity_at=Coalesce("last_message_at", "created_at"))
            .select_related("last_message")
            .prefetch_related("participants__user")
            .order_by("-activity_at", "-id")
        )
        if not include_archived:
            queryset = queryset.filter(is_active=True)
        if cursor:
            queryset = queryset.filter(TimelineCursor.decode(cursor).before("activity_at"))

        rows = list(queryset[: limit + 1])
        return _paginate(rows, limit, "activity_at")

    @classmethod
    def get_for_participant(cls, conversation_id, user: User) -> Conversation:
        """
        Raises:
            ConversationNotFound: Missing id or user is not a participant
        """
        conversation = (
            Conversation.objects.filter(pk=conversation_id, participants__user=user)
            .select_related("last_message")
            .first()
        )
        if conversation is None:
            raise ConversationNotFound(
                "Conversation not found",
                details={"conversation_id": conversation_id},
            )
        return conversation

    @classmethod
    def hide_for_user(cls, conversation: Conversation, user: User) -> None:
        """Soft-delete for one user; the next message brings it back."""
        updated = Participant.objects.filter(conversation=conversation, user=user).update(
            hidden_at=timezone.now(), updated_at=timezone.now()
        )
        if not updated:
            raise ConversationNotFound(
                "Conversation not found",
                details={"conversation_id": conversation.id},
            )
        cls.get_logger().info(f"User {user.id} hid conversation {conversation.id}")

    @classmethod
    def archive(cls, conversation: Conversation) -> Conversation:
        """
        Deactivate a conversation. Idempotent.

        Archived conversations reject new messages; a later find_or_create
        for the same participants opens a fresh conversation.
        """
        if not conversation.is_active:
            return conversation

        with cls.atomic():
            conversation.is_active = False
            conversation.save(update_fields=["is_active", "updated_at"])

        cls.get_logger().info(f"Archived conversation {conversation.id}")
        return conversation

    @classmethod
    def unread_summary(cls, user: User) -> dict:
        rows = Participant.objects.filter(
            user=user,
            conversation__is_active=True,
            hidden_at__isnull=True,
            unread_count__gt=0,
        ).values_list("conversation_id", "unread_count")
        by_conversation = {str(conversation_id): count for conversation_id, count in rows}
        return {
            "total": sum(by_conversation.values()),
            "by_conversation": by_conversation,
        }

    @classmethod
    def read_positions(cls, conversation_ids: Iterable[int]) -> dict:
        """
        Snapshot read cursors as {(conversation_id, user_id): TimelineCursor}.

        Taken before a hard delete so a cursor whose message is deleted
        keeps its place in the timeline.
        """
        participants = Participant.objects.filter(
            conversation_id__in=conversation_ids,
            last_read_message__isnull=False,
        ).select_related("last_read_message")
        return {
            (p.conversation_id, p.user_id): TimelineCursor(
                p.last_read_message.created_at, p.last_read_message_id
            )
            for p in participants
        }

    @classmethod
    def recompute_counters(
        cls,
        conversation: Conversation,
        read_positions: dict | None = None,
    ) -> None:
        """
        Rebuild message_count, last message and unread counts from rows.

        Only needed after messages are hard-deleted. Unread counts are the
        messages from others after each participant's read cursor, taken
        from read_positions (see read_positions()) or else from the current
        last_read_message. The cursor is moved back to the latest surviving
        message at or before that position. last_sequence is left alone.
        """
        read_positions = read_positions or {}
        messages = Message.objects.filter(conversation=conversation)
        last = messages.order_by("-created_at", "-id").first()
        Conversation.objects.filter(pk=conversation.pk).update(
            message_count=messages.count(),
            last_message=last,
            last_message_at=last.created_at if last else None,
            updated_at=timezone.now(),
        )

        participants = Participant.objects.filter(conversation=conversation).select_related(
            "last_read_message"
        )
        for participant in participants:
            position = read_positions.get((conversation.id, participant.user_id))
            if position is None and participant.last_read_message is not None:
                position = TimelineCursor(
                    participant.last_read_message.created_at,
                    participant.last_read_message_id,
                )

            unread = messages.exclude(sender_id=participant.user_id).exclude(
                message_type=MessageType.SYSTEM
            )
            if position is not None:
                unread = unread.filter(position.after())
                participant.last_read_message = (
                    messages.exclude(position.after()).order_by("-created_at", "-id").first()
                )
            participant.unread_count = unread.count()
            participant.save(
                update_fields=["unread_count", "last_read_message", "updated_at"]
            )


# =============================================================================
# MessageService
# =============================================================================


class MessageService(ChatService):
    """
    Message pipeline.

    Methods:
        send: Validate, gate, persist, count and fan out a user message
        post_system_message: Persist and fan out a SYSTEM message
        mark_read: Record a read receipt
        history: Keyset-paginated timeline
        flag / moderate: Moderation state transitions
        search: Content search across the user's conversations
        erase_user_messages: Data-erasure request
    """

    @classmethod
    def _clean_attachments(cls, attachments) -> list[str]:
        if not attachments:
            return []
        if not isinstance(attachments, (list, tuple)):
            raise ChatValidationError(
                "Attachments must be a list",
                error_code="INVALID_ATTACHMENTS",
            )
        if len(attachments) > ATTACHMENT_CONFIG.MAX_ATTACHMENTS_PER_MESSAGE:
            raise ChatValidationError(
                "Too many attachments",
                error_code="TOO_MANY_ATTACHMENTS",
                details={"max": ATTACHMENT_CONFIG.MAX_ATTACHMENTS_PER_MESSAGE},
            )

        cleaned = []
        for reference in attachments:
            if not isinstance(reference, str) or not reference.strip():
                raise ChatValidationError(
                    "Attachment references must be non-empty strings",
                    error_code="INVALID_ATTACHMENTS",
                )
            if len(reference) > ATTACHMENT_CONFIG.MAX_REFERENCE_LENGTH:
                raise ChatValidationError(
                    "Attachment reference too long",
                    error_code="INVALID_ATTACHMENTS",
                    details={"max_length": ATTACHMENT_CONFIG.MAX_REFERENCE_LENGTH},
                )
            cleaned.append(reference.strip())
        return cleaned

    @classmethod
    def _find_retry(
        cls, conversation: Conversation, sender: User, idempotency_key: str
    ) -> Message | None:
        """
        Message previously accepted under this key, if still deduplicated.

        Raises:
            ChatValidationError: The key was used in another conversation,
                or outside the window
        """
        existing = Message.objects.filter(
            sender=sender, idempotency_key=idempotency_key
        ).first()
        if existing is None:
            return None

        if existing.conversation_id != conversation.id:
            raise ChatValidationError(
                "Idempotency key was already used in another conversation",
                error_code="IDEMPOTENCY_KEY_REUSED",
            )

        window = timedelta(seconds=settings.CHAT_IDEMPOTENCY_WINDOW_SECONDS)
        if existing.created_at < timezone.now() - window:
            raise ChatValidationError(
                "Idempotency key has expired and cannot be reused",
                error_code="IDEMPOTENCY_KEY_EXPIRED",
            )
        return existing

    @classmethod
    def send(
        cls,
        conversation: Conversation,
        sender: User,
        content: str = "",
        attachments: list[str] | None = None,
        reply_to_id: int | None = None,
        idempotency_key: str | None = None,
    ) -> Message:
        """
        Accept a message from sender into conversation.

        Steps:
            1. Validate input (content/attachments, reply target)
            2. Moderation gate (blocks, repeated content, rate limit)
            3. Persist under the conversation row lock and bump counters
            4. Fan out to live sessions / offline notifications

        A retried send carrying the same idempotency_key returns the
        original message and is not fanned out again.

        Raises:
            ConversationNotFound: sender is not a participant
            ChatValidationError: Invalid input or closed conversation
            Blocked: A counterpart has blocked the sender
            SendRateLimited: Sender exceeded the per-minute budget
        """
        if not conversation.has_participant(sender.id):
            raise ConversationNotFound(
                "Conversation not found",
                details={"conversation_id": conversation.id},
            )
        if not conversation.is_active:
            raise ChatValidationError(
                "Conversation is closed",
                error_code="CONVERSATION_CLOSED",
            )

        content = (content or "").strip()
        attachments = cls._clean_attachments(attachments)

        if not content and not attachments:
            raise ChatValidationError(
                "Message must have content or attachments",
                error_code="EMPTY_MESSAGE",
            )
        if len(content) > settings.CHAT_MAX_MESSAGE_LENGTH:
            raise ChatValidationError(
                "Message is too long",
                error_code="MESSAGE_TOO_LONG",
                details={
                    "max_length": settings.CHAT_MAX_MESSAGE_LENGTH,
                    "length": len(content),
                },
            )

        if idempotency_key:
            previous = cls._find_retry(conversation, sender, idempotency_key)
            if previous is not None:
                cls.get_logger().info(
                    f"Duplicate send {idempotency_key} from user {sender.id}, "
                    f"returning message {previous.id}"
                )
                return previous

        reply_to = None
        if reply_to_id is not None:
            reply_to = Message.objects.filter(
                pk=reply_to_id, conversation=conversation
            ).first()
            if reply_to is None:
                raise ChatValidationError(
                    "Reply target is not in this conversation",
                    error_code="INVALID_REPLY",
                    details={"reply_to_id": reply_to_id},
                )

        ModerationService.ensure_can_send(sender, conversation)
        ModerationService.check_spam(sender, conversation, content)
        ModerationService.check_rate_limit(sender)

        flag_reason = ModerationService.scan_content(content)

        with _send_lock(conversation.id):
            try:
                with cls.atomic():
                    locked = Conversation.objects.select_for_update().get(pk=conversation.pk)
                    message = Message.objects.create(
                        conversation=locked,
                        sender=sender,
                        sender_role=effective_role(sender),
                        message_type=MessageType.REPLY if reply_to else MessageType.TEXT,
                        content=content,
                        attachments=attachments,
                        reply_to=reply_to,
                        sequence=locked.last_sequence + 1,
                        is_flagged=bool(flag_reason),
                        flag_reason=flag_reason,
                        flagged_at=timezone.now() if flag_reason else None,
                        idempotency_key=idempotency_key or None,
                    )
                    ConversationService.record_message(locked, message)
            except IntegrityError:
                if not idempotency_key:
                    raise
                # A concurrent retry with the same key committed first
                previous = cls._find_retry(locked, sender, idempotency_key)
                if previous is None:
                    raise
                return previous

            cls._fan_out("dispatch_new_message", message, locked.participant_ids)

        conversation.refresh_from_db(
            fields=[
                "message_count",
                "last_sequence",
                "last_message",
                "last_message_at",
                "updated_at",
            ]
        )

        if flag_reason:
            cls.get_logger().warning(
                f"Message {message.id} from user {sender.id} auto-flagged: {flag_reason}"
            )
        cls.get_logger().debug(
            f"User {sender.id} sent message {message.id} "
            f"to conversation {conversation.id}"
        )

        if get_presence_tracker().stop_typing(sender.id, conversation.id):
            cls._fan_out("dispatch_typing", conversation, sender.id, False)

        return message

    @classmethod
    def post_system_message(cls, conversation: Conversation, content: str) -> Message:
        """
        Post an automated event message (booking confirmed, ticket closed).

        No sender, no block check, no unread increments.
        """
        content = (content or "").strip()
        if not content:
            raise ChatValidationError(
                "System message content cannot be empty",
                error_code="EMPTY_MESSAGE",
            )

        with _send_lock(conversation.id):
            with cls.atomic():
                locked = Conversation.objects.select_for_update().get(pk=conversation.pk)
                message = Message.objects.create(
                    conversation=locked,
                    sender=None,
                    message_type=MessageType.SYSTEM,
                    content=content,
                    sequence=locked.last_sequence + 1,
                )
                ConversationService.record_message(locked, message)

            cls._fan_out("dispatch_new_message", message, locked.participant_ids)

        conversation.refresh_from_db(
            fields=[
                "message_count",
                "last_sequence",
                "last_message",
                "last_message_at",
                "updated_at",
            ]
        )
        cls.get_logger().info(
            f"System message {message.id} posted to conversation {conversation.id}"
        )
        return message

    @classmethod
    def get_for_participant(cls, message_id, user: User) -> Message:
        """
        Raises:
            MessageNotFound: Missing id, or user cannot see the conversation
        """
        message = (
            Message.objects.select_related("conversation", "sender")
            .filter(pk=message_id)
            .first()
        )
        if message is None or not (
            message.conversation.has_participant(user.id) or user.can_moderate
        ):
            raise MessageNotFound(
                "Message not found",
                details={"message_id": message_id},
            )
        return message

    @classmethod
    def mark_read(cls, message: Message, reader: User) -> MessageReadReceipt | None:
        """
        Record that reader has read message.

        Idempotent: a second call neither adds a receipt nor moves read_at.
        The sender's own messages are ignored. The conversation read cursor
        is moved when this message is newer than it.

        Returns:
            The receipt, or None for the sender's own message
        """
        conversation = message.conversation
        if not conversation.has_participant(reader.id):
            raise MessageNotFound(
                "Message not found",
                details={"message_id": message.id},
            )
        if message.sender_id == reader.id:
            return None

        created = False
        receipt = MessageReadReceipt.objects.filter(message=message, user=reader).first()
        if receipt is None:
            try:
                with cls.atomic():
                    receipt = MessageReadReceipt.objects.create(message=message, user=reader)
                    created = True
                    Message.objects.filter(pk=message.pk, is_read=False).update(
                        is_read=True, updated_at=timezone.now()
                    )
            except IntegrityError:
                receipt = MessageReadReceipt.objects.get(message=message, user=reader)

        message.is_read = True
        ConversationService.mark_read(conversation, reader, through_message=message)

        if created:
            cls._fan_out("dispatch_read_receipt", message, reader.id, receipt.read_at)
        return receipt

    @classmethod
    def history(
        cls,
        conversation: Conversation,
        user: User,
        cursor: str | None = None,
        limit: int = MESSAGE_CONFIG.HISTORY_DEFAULT_LIMIT,
        direction: str = "forward",
    ) -> tuple[list[Message], str | None]:
        """
        Page through a conversation's messages.

        direction="forward" reads oldest to newest (initial load);
        "backward" reads newest to oldest ("load earlier"). The cursor is
        keyset on (created_at, id), so messages arriving mid-pagination are
        neither skipped nor repeated.

        Returns:
            (messages, next_cursor)
        """
        if not conversation.has_participant(user.id) and not user.can_moderate:
            raise ConversationNotFound(
                "Conversation not found",
                details={"conversation_id": conversation.id},
            )
        if direction not in ("forward", "backward"):
            raise ChatValidationError(
                "direction must be 'forward' or 'backward'",
                error_code="INVALID_DIRECTION",
            )

        limit = max(
            MESSAGE_CONFIG.HISTORY_MIN_LIMIT,
            min(int(limit), MESSAGE_CONFIG.HISTORY_MAX_LIMIT),
        )

        queryset = (
            Message.objects.filter(conversation=conversation)
            .select_related("sender")
            .prefetch_related("read_receipts")
        )
        if direction == "forward":
            queryset = queryset.order_by("created_at", "id")
            if cursor:
                queryset = queryset.filter(TimelineCursor.decode(cursor).after())
        else:
            queryset = queryset.order_by("-created_at", "-id")
            if cursor:
                queryset = queryset.filter(TimelineCursor.decode(cursor).before())

        rows = list(queryset[: limit + 1])
        return _paginate(rows, limit, "created_at")

    @classmethod
    def flag(cls, message: Message, flagged_by: User, reason: str) -> Message:
        """
        Flag a message for review. Re-flagging updates reason and flagger.
        """
        reason = (reason or "").strip()
        if not reason:
            raise ChatValidationError(
                "A reason is required to flag a message",
                error_code="FLAG_REASON_REQUIRED",
            )
        if not message.conversation.has_participant(flagged_by.id) and not flagged_by.can_moderate:
            raise MessageNotFound(
                "Message not found",
                details={"message_id": message.id},
            )

        message.is_flagged = True
        message.flag_reason = reason[:255]
        message.flagged_by = flagged_by
        message.flagged_at = timezone.now()
        message.save(
            update_fields=["is_flagged", "flag_reason", "flagged_by", "flagged_at", "updated_at"]
        )

        cls.get_logger().info(f"User {flagged_by.id} flagged message {message.id}")
        return message

    @classmethod
    def moderate(cls, message: Message, moderator: User, action: str) -> Message:
        """
        Resolve a message as APPROVED or REMOVED and clear its flag.

        Removed messages keep their row; clients receive a placeholder.
        """
        if not moderator.can_moderate:
            raise ChatPermissionDenied(
                "Only moderators can moderate messages",
                error_code="NOT_MODERATOR",
            )
        if action not in (ModerationStatus.APPROVED, ModerationStatus.REMOVED):
            raise ChatValidationError(
                "Action must be APPROVED or REMOVED",
                error_code="INVALID_MODERATION_ACTION",
            )
        if message.moderation_status == action and not message.is_flagged:
            return message

        message.moderation_status = action
        message.moderated_by = moderator
        message.moderated_at = timezone.now()
        message.is_flagged = False
        message.save(
            update_fields=[
                "moderation_status",
                "moderated_by",
                "moderated_at",
                "is_flagged",
                "updated_at",
            ]
        )

        cls.get_logger().info(
            f"Moderator {moderator.id} set message {message.id} to {action}"
        )
        return message

    @classmethod
    def search(
        cls,
        user: User,
        query: str,
        conversation_id: int | None = None,
        limit: int = MESSAGE_CONFIG.SEARCH_DEFAULT_LIMIT,
    ) -> list[Message]:
        """
        Case-insensitive content search, newest first.

        Searches only conversations the user participates in. Removed and
        system messages are never returned.
        """
        query = (query or "").strip()
        if len(query) < MESSAGE_CONFIG.SEARCH_MIN_QUERY_LENGTH:
            raise ChatValidationError(
                f"Search query must be at least "
                f"{MESSAGE_CONFIG.SEARCH_MIN_QUERY_LENGTH} characters",
                error_code="QUERY_TOO_SHORT",
            )

        if conversation_id is not None:
            conversation = ConversationService.get_for_participant(conversation_id, user)
            conversation_ids = [conversation.id]
        else:
            conversation_ids = list(
                Participant.objects.filter(user=user).values_list("conversation_id", flat=True)
            )

        limit = max(1, min(int(limit), MESSAGE_CONFIG.SEARCH_MAX_LIMIT))
        return list(
            Message.objects.filter(
                conversation_id__in=conversation_ids,
                content__icontains=query,
            )
            .exclude(moderation_status=ModerationStatus.REMOVED)
            .exclude(message_type=MessageType.SYSTEM)
            .select_related("sender")
            .prefetch_related("read_receipts")
            .order_by("-created_at", "-id")[:limit]
        )

    @classmethod
    def erase_user_messages(cls, user: User) -> int:
        """
        Hard-delete every message user sent (privacy request).

        Receipts cascade; replies keep their row with reply_to cleared.
        Counters of every affected conversation are rebuilt from the read
        cursors as they stood before the delete. Sequences are not reused.

        Returns:
            Number of messages deleted
        """
        messages = Message.objects.filter(sender=user)
        conversation_ids = set(messages.values_list("conversation_id", flat=True))

        with cls.atomic():
            conversations = list(
                Conversation.objects.select_for_update().filter(pk__in=conversation_ids)
            )
            positions = ConversationService.read_positions(conversation_ids)
            count = messages.count()
            messages.delete()
            for conversation in conversations:
                ConversationService.recompute_counters(conversation, positions)

        cls.get_logger().info(
            f"Erased {count} messages of user {user.id} "
            f"across {len(conversation_ids)} conversations"
        )
        return count


# =============================================================================
# PresenceService
# =============================================================================


class PresenceService(ChatService):
    """
    Session lifecycle, online status and typing, with broadcasts.

    Only transitions are broadcast: a second tab coming online or a
    refreshed typing entry produces no event.
    """

    @classmethod
    def session_opened(cls, user_id: int, session_id: str, channels=REALTIME_CHANNELS.ALL) -> bool:
        came_online = get_presence_tracker().set_online(user_id, session_id, channels)
        if came_online:
            cls.get_logger().debug(f"User {user_id} is online")
            cls._fan_out("dispatch_presence", user_id, True)
        return came_online

    @classmethod
    def session_closed(cls, user_id: int, session_id: str) -> bool:
        tracker = get_presence_tracker()
        typing_in = tracker.typing_conversations(user_id)
        went_offline = tracker.set_offline(user_id, session_id)
        if went_offline:
            for conversation in Conversation.objects.filter(pk__in=typing_in):
                cls._fan_out("dispatch_typing", conversation, user_id, False)
            cls.get_logger().debug(f"User {user_id} is offline")
            cls._fan_out("dispatch_presence", user_id, False)
        return went_offline

    @classmethod
    def heartbeat(cls, user_id: int, session_id: str) -> None:
        get_presence_tracker().heartbeat(user_id, session_id)

    @classmethod
    def status(cls, user_id: int, viewer: User) -> dict:
        """
        Online flag and last-seen time of user_id.

        Visible to the user, their conversation counterparts and moderators.
        """
        if not get_user_model().objects.filter(pk=user_id).exists():
            raise NotFoundError(
                "User not found",
                error_code="USER_NOT_FOUND",
                details={"user_id": user_id},
            )

        shares_conversation = Participant.objects.filter(
            user_id=user_id,
            conversation__participants__user=viewer,
        ).exists()
        if viewer.id != int(user_id) and not shares_conversation and not viewer.can_moderate:
            raise ChatPermissionDenied(
                "You cannot view this user's presence",
                error_code="PRESENCE_NOT_VISIBLE",
            )

        tracker = get_presence_tracker()
        last_seen = tracker.last_seen(user_id)
        return {
            "user_id": int(user_id),
            "is_online": tracker.is_online(user_id),
            "last_seen": last_seen.isoformat() if last_seen else None,
        }

    @classmethod
    def set_typing(cls, conversation: Conversation, user: User, is_typing: bool) -> bool:
        """
        Start/refresh or stop a typing indicator.

        Returns:
            True if an event was broadcast
        """
        if not conversation.has_participant(user.id):
            raise ConversationNotFound(
                "Conversation not found",
                details={"conversation_id": conversation.id},
            )

        tracker = get_presence_tracker()
        if is_typing:
            changed = tracker.start_typing(user.id, conversation.id)
        else:
            changed = tracker.stop_typing(user.id, conversation.id)

        if changed:
            cls._fan_out("dispatch_typing", conversation, user.id, is_typing)
        return changed

    @classmethod
    def typing_users(cls, conversation: Conversation, exclude_user_id: int | None = None) -> list[int]:
        users = get_presence_tracker().typing_users(conversation.id)
        return sorted(uid for uid in users if uid != exclude_user_id)

    @classmethod
    def sweep_typing(cls) -> int:
        """
        Clear expired typing entries and broadcast the matching stops.

        Returns:
            Number of entries cleared
        """
        cleared = get_presence_tracker().sweep_expired()
        if not cleared:
            return 0

        conversations = Conversation.objects.in_bulk({cid for cid, _ in cleared})
        for conversation_id, user_id in cleared:
            conversation = conversations.get(conversation_id)
            if conversation is not None:
                cls._fan_out("dispatch_typing", conversation, user_id, False)
        return len(cleared)
