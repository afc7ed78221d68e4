"""
Django admin configuration for chat models.

Provides admin interfaces for:
- Conversation management (archive action)
- Message moderation (approve / remove actions)
- User blocks
"""

from django.contrib import admin, messages

from chat.models import Conversation, Message, ModerationStatus, Participant, UserBlock
from chat.services import ConversationService, MessageService


class ParticipantInline(admin.TabularInline):
    """Inline display of participants in conversation admin."""

    model = Participant
    extra = 0
    readonly_fields = [
        "role",
        "unread_count",
        "last_read_message",
        "last_read_at",
        "hidden_at",
    ]
    raw_id_fields = ["user", "last_read_message"]


@admin.register(Conversation)
class ConversationAdmin(admin.ModelAdmin):
    """Admin interface for Conversation model."""

    list_display = [
        "id",
        "conversation_type",
        "participant_key",
        "subject",
        "message_count",
        "is_active",
        "last_message_at",
    ]
    list_filter = ["conversation_type", "is_active", "created_at"]
    search_fields = ["subject", "participant_key", "id"]
    readonly_fields = [
        "participant_key",
        "message_count",
        "last_message",
        "last_message_at",
        "created_at",
        "updated_at",
    ]
    raw_id_fields = ["created_by"]
    inlines = [ParticipantInline]
    ordering = ["-created_at"]
    actions = ["archive_conversations"]

    @admin.action(description="Archive selected conversations")
    def archive_conversations(self, request, queryset):
        for conversation in queryset:
            ConversationService.archive(conversation)
        self.message_user(request, f"Archived {queryset.count()} conversations.")


@admin.register(Message)
class MessageAdmin(admin.ModelAdmin):
    """Admin interface for Message model."""

    list_display = [
        "id",
        "conversation",
        "sender",
        "message_type",
        "content_preview",
        "is_flagged",
        "moderation_status",
        "created_at",
    ]
    list_filter = ["message_type", "is_flagged", "moderation_status", "created_at"]
    search_fields = ["content", "sender__email", "flag_reason"]
    readonly_fields = [
        "conversation",
        "sender",
        "sequence",
        "created_at",
        "updated_at",
        "flagged_at",
        "moderated_at",
    ]
    raw_id_fields = ["reply_to", "flagged_by", "moderated_by"]
    ordering = ["-created_at"]
    actions = ["approve_messages", "remove_messages"]

    @admin.display(description="Content Preview")
    def content_preview(self, obj: Message) -> str:
        """Return truncated content for list display."""
        max_length = 50
        if len(obj.content) > max_length:
            return obj.content[:max_length] + "..."
        return obj.content

    def _moderate(self, request, queryset, action):
        if not request.user.can_moderate:
            self.message_user(request, "Only moderators can do this.", messages.ERROR)
            return
        for message in queryset:
            MessageService.moderate(message, request.user, action)
        self.message_user(request, f"{queryset.count()} messages set to {action}.")

    @admin.action(description="Approve selected messages")
    def approve_messages(self, request, queryset):
        self._moderate(request, queryset, ModerationStatus.APPROVED)

    @admin.action(description="Remove selected messages")
    def remove_messages(self, request, queryset):
        self._moderate(request, queryset, ModerationStatus.REMOVED)


@admin.register(UserBlock)
class UserBlockAdmin(admin.ModelAdmin):
    """Admin interface for UserBlock model."""

    list_display = ["id", "blocker", "blocked_user", "is_active", "blocked_at", "unblocked_at"]
    list_filter = ["is_active", "blocked_at"]
    search_fields = ["blocker__email", "blocked_user__email", "reason"]
    raw_id_fields = ["blocker", "blocked_user"]
    ordering = ["-blocked_at"]
