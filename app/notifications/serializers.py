"""
Serializers for notification API.

Serializers:
    NotificationSerializer: Read-only notification representation
    UnreadCountSerializer: Response for unread count endpoint
    MarkAllReadResponseSerializer: Response for mark all read endpoint
"""

from __future__ import annotations

from rest_framework import serializers

from notifications.models import Notification


class NotificationSerializer(serializers.ModelSerializer):
    """
    Serializer for Notification model.

    actor_name is None for system notifications or when the actor was
    deleted (SET_NULL).
    """

    actor_name = serializers.SerializerMethodField()

    class Meta:
        model = Notification
        fields = [
            "id",
            "notification_type",
            "title",
            "message",
            "data",
            "actor_name",
            "is_read",
            "read_at",
            "created_at",
        ]
        read_only_fields = fields

    def get_actor_name(self, obj: Notification) -> str | None:
        if obj.actor is None:
            return None
        return obj.actor.get_full_name()


class UnreadCountSerializer(serializers.Serializer):
    """Response serializer for unread count endpoint."""

    unread_count = serializers.IntegerField(
        help_text="Number of unread notifications"
    )


class MarkAllReadResponseSerializer(serializers.Serializer):
    """Response serializer for mark all read endpoint."""

    marked_count = serializers.IntegerField(
        help_text="Number of notifications marked as read"
    )
