"""
Notification models.

Notification is the persisted fallback for events a user could not receive
live. The chat dispatcher creates MESSAGE notifications; other marketplace
flows (reviews, bookings) create their own kinds through the same service.

Design Decisions:
    - Notification inherits from BaseModel (timestamps, newest-first ordering)
    - Actor uses SET_NULL (preserve notification when actor deleted)
    - idempotency_key is unique when set, so a retried fallback for the
      same message and recipient never produces a second record
    - read_at is kept alongside is_read for retention pruning

Usage:
    from notifications.models import Notification, NotificationKind

    unread = Notification.objects.filter(recipient=user, is_read=False)
"""

from __future__ import annotations

from django.conf import settings
from django.db import models

from core.models import BaseModel


class NotificationKind(models.TextChoices):
    """Kinds of notification a user can receive."""

    MESSAGE = "MESSAGE", "Message"
    REVIEW = "REVIEW", "Review"
    BOOKING = "BOOKING", "Booking"
    SYSTEM = "SYSTEM", "System"


class Notification(BaseModel):
    """
    Individual notification record for a user.

    Fields:
        recipient: User receiving the notification (scopes all queries)
        notification_type: Kind of notification (MESSAGE, REVIEW, ...)
        actor: Optional user who triggered the notification
        title: Rendered title string
        message: Rendered body string
        data: Structured payload; MESSAGE notifications carry
            conversation_id, message_id and sender_id
        is_read / read_at: Acknowledgment state
        idempotency_key: Optional dedupe key

    Inherits from BaseModel:
        created_at: Timestamp (auto, indexed)
        updated_at: Timestamp (auto)

    Note:
        - recipient CASCADE: Notifications deleted when user deleted
        - actor SET_NULL: Notification preserved when actor deleted
    """

    recipient = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="notifications",
        db_index=True,
        help_text="User receiving this notification",
    )

    notification_type = models.CharField(
        max_length=20,
        choices=NotificationKind.choices,
        default=NotificationKind.SYSTEM,
        help_text="Kind of this notification",
    )

    actor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="triggered_notifications",
        help_text="User who triggered this notification (optional)",
    )

    title = models.CharField(
        max_length=255,
        help_text="Rendered notification title",
    )

    message = models.TextField(
        blank=True,
        default="",
        help_text="Rendered notification body",
    )

    data = models.JSONField(
        default=dict,
        blank=True,
        help_text="Structured context (conversation_id, message_id, sender_id, ...)",
    )

    is_read = models.BooleanField(
        default=False,
        db_index=True,
        help_text="Whether recipient has read this notification",
    )

    read_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the recipient acknowledged this notification",
    )

    idempotency_key = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        help_text="Idempotency key to prevent duplicate notifications",
    )

    class Meta:
        db_table = "notifications_notification"
        ordering = ["-created_at", "-id"]
        indexes = [
            # Primary query: user's unread notifications
            models.Index(
                fields=["recipient", "is_read", "-created_at"],
                name="notif_recipient_unread_idx",
            ),
            # Retention pruning
            models.Index(
                fields=["is_read", "read_at"],
                name="notif_read_at_idx",
            ),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["idempotency_key"],
                condition=models.Q(idempotency_key__isnull=False),
                name="notif_unique_idempotency_key",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.notification_type} for user {self.recipient_id}: {self.title}"
