"""
Serializers for chat API.

This module provides serializers for the chat system:
- Conversation serializers (inbox entry, create)
- Message serializers (read, send, history/search query params)
- Moderation serializers (flag, moderate, blocks)

Design Decisions:
    - Read and write serializers are separate for clarity
    - Write serializers only check shape; business rules (empty message,
      role matrix, blocks) are enforced by the service layer so REST and
      WebSocket clients get the same errors
    - Removed message content is replaced with a placeholder
"""

from __future__ import annotations

from rest_framework import serializers

from authentication.serializers import UserSerializer
from chat.constants import ATTACHMENT_CONFIG, MESSAGE_CONFIG
from chat.models import (
    Conversation,
    ConversationType,
    Message,
    ModerationStatus,
    Participant,
    UserBlock,
)


# =============================================================================
# Message Serializers
# =============================================================================


class MessagePreviewSerializer(serializers.ModelSerializer):
    """
    Minimal message serializer for the inbox preview.
    """

    content = serializers.CharField(source="get_display_content", read_only=True)

    class Meta:
        model = Message
        fields = [
            "id",
            "sender_id",
            "content",
            "message_type",
            "sequence",
            "created_at",
        ]
        read_only_fields = fields


class MessageSerializer(serializers.ModelSerializer):
    """
    Full message serializer.

    read_by/read_at come from receipt rows; prefetch read_receipts when
    serializing lists.
    """

    sender = UserSerializer(read_only=True)
    content = serializers.CharField(source="get_display_content", read_only=True)
    attachments = serializers.ListField(
        source="get_display_attachments",
        child=serializers.CharField(),
        read_only=True,
    )
    read_by = serializers.ListField(child=serializers.IntegerField(), read_only=True)
    read_at = serializers.DictField(child=serializers.CharField(), read_only=True)

    class Meta:
        model = Message
        fields = [
            "id",
            "conversation_id",
            "sender",
            "sender_role",
            "message_type",
            "content",
            "attachments",
            "reply_to_id",
            "sequence",
            "is_read",
            "read_by",
            "read_at",
            "is_flagged",
            "moderation_status",
            "created_at",
        ]
        read_only_fields = fields


class MessageCreateSerializer(serializers.Serializer):
    """Input for sending a message."""

    content = serializers.CharField(required=False, allow_blank=True, default="", trim_whitespace=True)
    attachments = serializers.ListField(
        child=serializers.CharField(max_length=ATTACHMENT_CONFIG.MAX_REFERENCE_LENGTH),
        required=False,
        default=list,
    )
    reply_to_id = serializers.IntegerField(required=False, allow_null=True, default=None)
    idempotency_key = serializers.CharField(
        required=False,
        allow_null=True,
        default=None,
        max_length=100,
    )


class HistoryQuerySerializer(serializers.Serializer):
    cursor = serializers.CharField(required=False, default=None, allow_null=True)
    direction = serializers.ChoiceField(choices=["forward", "backward"], default="forward")
    limit = serializers.IntegerField(
        min_value=MESSAGE_CONFIG.HISTORY_MIN_LIMIT,
        max_value=MESSAGE_CONFIG.HISTORY_MAX_LIMIT,
        default=MESSAGE_CONFIG.HISTORY_DEFAULT_LIMIT,
    )


class SearchQuerySerializer(serializers.Serializer):
    q = serializers.CharField(min_length=MESSAGE_CONFIG.SEARCH_MIN_QUERY_LENGTH)
    conversation_id = serializers.IntegerField(required=False, default=None, allow_null=True)
    limit = serializers.IntegerField(
        min_value=1,
        max_value=MESSAGE_CONFIG.SEARCH_MAX_LIMIT,
        default=MESSAGE_CONFIG.SEARCH_DEFAULT_LIMIT,
    )


class MessagePageSerializer(serializers.Serializer):
    results = MessageSerializer(many=True)
    next_cursor = serializers.CharField(allow_null=True)


class ReadReceiptSerializer(serializers.Serializer):
    message_id = serializers.IntegerField()
    user_id = serializers.IntegerField()
    read_at = serializers.DateTimeField()


# =============================================================================
# Conversation Serializers
# =============================================================================


class ParticipantSerializer(serializers.ModelSerializer):
    user = UserSerializer(read_only=True)

    class Meta:
        model = Participant
        fields = ["user", "role", "unread_count", "last_read_at"]
        read_only_fields = fields


class ConversationSerializer(serializers.ModelSerializer):
    """
    Inbox entry / conversation detail.

    unread_count is the requesting user's own count.
    """

    participants = ParticipantSerializer(many=True, read_only=True)
    last_message = MessagePreviewSerializer(read_only=True)
    unread_count = serializers.SerializerMethodField()

    class Meta:
        model = Conversation
        fields = [
            "id",
            "conversation_type",
            "subject",
            "is_active",
            "message_count",
            "last_message",
            "last_message_at",
            "participants",
            "unread_count",
            "created_at",
        ]
        read_only_fields = fields

    def get_unread_count(self, obj: Conversation) -> int:
        request = self.context.get("request")
        if request is None:
            return 0
        for participant in obj.participants.all():
            if participant.user_id == request.user.id:
                return participant.unread_count
        return 0


class ConversationCreateSerializer(serializers.Serializer):
    """
    Input for find-or-create.

    participant_ids lists the other users; the requester is always added.
    """

    participant_ids = serializers.ListField(
        child=serializers.IntegerField(min_value=1),
        min_length=1,
    )
    conversation_type = serializers.ChoiceField(
        choices=ConversationType.choices,
        required=False,
        default=None,
        allow_null=True,
    )
    subject = serializers.CharField(required=False, allow_blank=True, default="", max_length=255)


class ConversationPageSerializer(serializers.Serializer):
    results = ConversationSerializer(many=True)
    next_cursor = serializers.CharField(allow_null=True)


class MarkReadSerializer(serializers.Serializer):
    message_id = serializers.IntegerField(required=False, default=None, allow_null=True)


class TypingSerializer(serializers.Serializer):
    is_typing = serializers.BooleanField()


class TypingUsersSerializer(serializers.Serializer):
    conversation_id = serializers.IntegerField()
    user_ids = serializers.ListField(child=serializers.IntegerField())


class UnreadSummarySerializer(serializers.Serializer):
    total = serializers.IntegerField()
    by_conversation = serializers.DictField(child=serializers.IntegerField())


class PresenceSerializer(serializers.Serializer):
    user_id = serializers.IntegerField()
    is_online = serializers.BooleanField()
    last_seen = serializers.DateTimeField(allow_null=True)


# =============================================================================
# Moderation Serializers
# =============================================================================


class FlagSerializer(serializers.Serializer):
    reason = serializers.CharField(max_length=255)


class ModerateSerializer(serializers.Serializer):
    action = serializers.ChoiceField(
        choices=[ModerationStatus.APPROVED, ModerationStatus.REMOVED]
    )


class UserBlockSerializer(serializers.ModelSerializer):
    blocked_user = UserSerializer(read_only=True)

    class Meta:
        model = UserBlock
        fields = ["id", "blocked_user", "reason", "blocked_at"]
        read_only_fields = fields


class BlockCreateSerializer(serializers.Serializer):
    user_id = serializers.IntegerField(min_value=1)
    reason = serializers.CharField(required=False, allow_blank=True, default="", max_length=255)
