"""
Celery tasks for notification housekeeping.

Tasks:
    prune_read_notifications: Delete read notifications past retention

Scheduled nightly through settings.CELERY_BEAT_SCHEDULE.

Usage:
    from notifications.tasks import prune_read_notifications

    prune_read_notifications.delay(days=30)
"""

from __future__ import annotations

import logging

from celery import shared_task

from notifications.services import NotificationService

logger = logging.getLogger(__name__)


@shared_task(
    bind=True,
    autoretry_for=(Exception,),
    retry_backoff=True,
    retry_kwargs={"max_retries": 3},
)
def prune_read_notifications(self, days: int | None = None) -> int:
    """
    Delete read notifications older than the retention window.

    Args:
        days: Override for NOTIFICATION_RETENTION_DAYS

    Returns:
        Number of notifications deleted
    """
    deleted = NotificationService.prune_read(days=days)
    logger.info(f"Notification retention run removed {deleted} records")
    return deleted
