"""
Tests for notification Celery tasks.
"""

from datetime import timedelta

from django.utils import timezone

from notifications.tasks import prune_read_notifications
from notifications.tests.factories import NotificationFactory


class TestPruneReadNotifications:
    def test_task_delegates_to_service(self, user):
        NotificationFactory(
            recipient=user, is_read=True, read_at=timezone.now() - timedelta(days=90)
        )

        result = prune_read_notifications.apply(kwargs={"days": 30})

        assert result.get() == 1
