"""
Tests for the notifications API.
"""

from rest_framework import status

from notifications.models import NotificationKind
from notifications.tests.factories import NotificationFactory

BASE_URL = "/api/v1/notifications/"


class TestListNotifications:
    def test_lists_only_own_notifications(self, authenticated_client, user, other_user):
        NotificationFactory.create_batch(2, recipient=user)
        NotificationFactory(recipient=other_user)

        response = authenticated_client.get(BASE_URL)

        assert response.status_code == status.HTTP_200_OK
        assert response.data["count"] == 2

    def test_filter_by_read_state(self, authenticated_client, unread_notification, read_notification):
        response = authenticated_client.get(BASE_URL, {"is_read": "false"})

        ids = [item["id"] for item in response.data["results"]]
        assert ids == [unread_notification.id]

    def test_filter_by_type(self, authenticated_client, unread_notification, message_notification):
        response = authenticated_client.get(BASE_URL, {"type": "message"})

        ids = [item["id"] for item in response.data["results"]]
        assert ids == [message_notification.id]

    def test_message_notification_shape(self, authenticated_client, message_notification):
        response = authenticated_client.get(f"{BASE_URL}{message_notification.id}/")

        assert response.status_code == status.HTTP_200_OK
        assert response.data["notification_type"] == NotificationKind.MESSAGE
        assert response.data["actor_name"] == "Jane Host"
        assert response.data["data"]["conversation_id"] == 1

    def test_requires_authentication(self, api_client, db):
        assert api_client.get(BASE_URL).status_code == status.HTTP_401_UNAUTHORIZED


class TestNotificationActions:
    def test_unread_count(self, authenticated_client, user):
        NotificationFactory.create_batch(3, recipient=user)
        NotificationFactory(recipient=user, is_read=True)

        response = authenticated_client.get(f"{BASE_URL}unread-count/")

        assert response.data == {"unread_count": 3}

    def test_mark_read(self, authenticated_client, unread_notification):
        response = authenticated_client.post(f"{BASE_URL}{unread_notification.id}/read/")

        assert response.status_code == status.HTTP_200_OK
        assert response.data["is_read"] is True

    def test_mark_read_of_other_users_notification_is_404(self, authenticated_client, other_user):
        notification = NotificationFactory(recipient=other_user)

        response = authenticated_client.post(f"{BASE_URL}{notification.id}/read/")

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.data["error_code"] == "NOTIFICATION_NOT_FOUND"

    def test_read_all(self, authenticated_client, user):
        NotificationFactory.create_batch(2, recipient=user)

        response = authenticated_client.post(f"{BASE_URL}read-all/")

        assert response.data == {"marked_count": 2}
