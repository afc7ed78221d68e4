"""
Notification service layer.

Services:
    NotificationService: Notification creation, read status, retention

Design Principles:
    - Services are stateless (use class methods)
    - Ownership failures raise core.exceptions (rendered by the API layer)
    - Creation is idempotent when an idempotency_key is given: a repeated
      key returns the existing notification

Usage:
    from notifications.services import NotificationService

    notification = NotificationService.create(
        recipient=user,
        notification_type=NotificationKind.MESSAGE,
        title="New message from Jane",
        message="Is this available?",
        data={"conversation_id": 12, "message_id": 345, "sender_id": 7},
        idempotency_key="chat-message:345:user:9",
    )

    NotificationService.mark_as_read(notification, user)
    NotificationService.mark_all_as_read(user)
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import TYPE_CHECKING

from django.conf import settings
from django.db import IntegrityError
from django.utils import timezone

from core.exceptions import NotFoundError
from core.services import BaseService
from notifications.models import Notification, NotificationKind

if TYPE_CHECKING:
    from authentication.models import User

logger = logging.getLogger(__name__)


class NotificationService(BaseService):
    """
    Service for notification operations.

    Methods:
        create: Create a new notification (idempotent on key)
        mark_as_read: Mark a single notification as read
        mark_all_as_read: Mark all user's unread notifications as read
        unread_count: Badge count
        prune_read: Delete read notifications past the retention window
    """

    @classmethod
    def create(
        cls,
        recipient: User,
        title: str,
        message: str = "",
        notification_type: str = NotificationKind.SYSTEM,
        data: dict | None = None,
        actor: User | None = None,
        idempotency_key: str | None = None,
    ) -> Notification:
        """
        Create a new notification for a user.

        Args:
            recipient: User receiving the notification
            title: Rendered title
            message: Rendered body
            notification_type: NotificationKind value
            data: Structured payload
            actor: User who triggered the notification
            idempotency_key: Optional key to prevent duplicate notifications

        Returns:
            The created notification, or the existing one for a repeated key
        """
        cls.validate_required(recipient=recipient, title=title)

        if idempotency_key:
            existing = Notification.objects.filter(
                idempotency_key=idempotency_key
            ).first()
            if existing is not None:
                cls.get_logger().debug(
                    f"Notification with key {idempotency_key} already exists"
                )
                return existing

        try:
            with cls.atomic():
                notification = Notification.objects.create(
                    recipient=recipient,
                    notification_type=notification_type,
                    actor=actor,
                    title=title[:255],
                    message=message,
                    data=data or {},
                    idempotency_key=idempotency_key,
                )
        except IntegrityError:
            # Concurrent create with the same key won the race
            if not idempotency_key:
                raise
            return Notification.objects.get(idempotency_key=idempotency_key)

        cls.get_logger().info(
            f"Created {notification_type} notification {notification.id} "
            f"for user {recipient.id}"
        )
        return notification

    @classmethod
    def get_for_recipient(cls, notification_id: int, user: User) -> Notification:
        """
        Fetch a notification owned by user.

        Raises:
            NotFoundError: If it doesn't exist or belongs to another user
        """
        try:
            return Notification.objects.get(pk=notification_id, recipient=user)
        except Notification.DoesNotExist:
            raise NotFoundError(
                "Notification not found",
                error_code="NOTIFICATION_NOT_FOUND",
                details={"notification_id": notification_id},
            )

    @classmethod
    def mark_as_read(cls, notification: Notification, user: User) -> Notification:
        """
        Mark a single notification as read.

        Validates that the user owns the notification before marking.
        Operation is idempotent: read_at keeps its first value.

        Raises:
            NotFoundError: User doesn't own the notification (not revealed
                as a permission problem)
        """
        if notification.recipient_id != user.id:
            cls.get_logger().warning(
                f"User {user.id} attempted to mark notification {notification.id} "
                f"owned by user {notification.recipient_id}"
            )
            raise NotFoundError(
                "Notification not found",
                error_code="NOTIFICATION_NOT_FOUND",
                details={"notification_id": notification.id},
            )

        if not notification.is_read:
            notification.is_read = True
            notification.read_at = timezone.now()
            notification.save(update_fields=["is_read", "read_at", "updated_at"])
            cls.get_logger().debug(f"Marked notification {notification.id} as read")

        return notification

    @classmethod
    def mark_all_as_read(cls, user: User) -> int:
        """
        Mark all user's unread notifications as read.

        Performs a bulk update in a single database query.

        Returns:
            Count of notifications marked as read
        """
        now = timezone.now()
        count = Notification.objects.filter(
            recipient=user,
            is_read=False,
        ).update(is_read=True, read_at=now, updated_at=now)

        cls.get_logger().info(
            f"Marked {count} notifications as read for user {user.id}"
        )
        return count

    @classmethod
    def unread_count(cls, user: User) -> int:
        """Count of unread notifications for badge display."""
        return Notification.objects.filter(recipient=user, is_read=False).count()

    @classmethod
    def prune_read(cls, days: int | None = None) -> int:
        """
        Delete read notifications acknowledged more than `days` ago.

        Unread notifications are never pruned.

        Args:
            days: Retention window (defaults to NOTIFICATION_RETENTION_DAYS)

        Returns:
            Number of notifications deleted
        """
        if days is None:
            days = settings.NOTIFICATION_RETENTION_DAYS
        cutoff = timezone.now() - timedelta(days=days)

        deleted, _ = Notification.objects.filter(
            is_read=True,
            read_at__lt=cutoff,
        ).delete()

        cls.get_logger().info(
            f"Pruned {deleted} read notifications older than {days} days"
        )
        return deleted
