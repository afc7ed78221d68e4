"""
Integration tests for chat flows.

This module provides end-to-end tests that exercise complete user journeys
through the chat API, from first contact to moderation.

Test Organization:
    - TestFirstContactFlow: Guest finds a host, chats, host reads
    - TestBlockFlow: Host blocks a guest mid-conversation
    - TestModerationFlow: Participant flags, admin removes
    - TestSupportFlow: Booking events and a support thread with an admin

Testing Philosophy:
    Integration tests exercise the full stack including:
    - HTTP request parsing and routing
    - JWT authentication
    - Serializer validation and transformation
    - Service layer business logic and the moderation gate
    - Realtime fan-out and the notification fallback

Note:
    Tests are marked with @pytest.mark.e2e to allow selective execution:
    pytest -m e2e
"""

import pytest
from rest_framework import status

from chat.constants import EVENT_TYPES, MESSAGE_CONFIG
from chat.models import ConversationType, ModerationStatus
from chat.services import MessageService
from notifications.models import Notification, NotificationKind

# =============================================================================
# URL Constants
# =============================================================================

CONVERSATIONS_URL = "/api/v1/chat/conversations/"
MESSAGES_URL = "/api/v1/chat/messages/"
UNREAD_URL = "/api/v1/chat/unread/"
BLOCKS_URL = "/api/v1/chat/blocks/"
NOTIFICATIONS_URL = "/api/v1/notifications/"


@pytest.mark.e2e
class TestFirstContactFlow:
    """
    Complete journey: Find host -> Send -> Host notified -> Host reads.

    Flow:
        1. Guest opens a conversation with a host (created, empty)
        2. Guest sends a question while host is offline
        3. Host gets a MESSAGE notification and an unread badge
        4. Host comes online, reads the message; guest sees the receipt
        5. Host replies live; guest receives it without a notification
    """

    def test_first_contact_to_read_receipt(
        self, guest_client, host_client, guest, host, registry, channel_layer, live_dispatcher
    ):
        # Step 1: Guest opens the conversation
        # -------------------------
        response = guest_client.post(
            CONVERSATIONS_URL, {"participant_ids": [host.id]}, format="json"
        )
        assert response.status_code == status.HTTP_201_CREATED
        conversation_id = response.data["id"]
        assert response.data["message_count"] == 0

        # Step 2: Guest sends while host is offline
        # -------------------------
        response = guest_client.post(
            f"{CONVERSATIONS_URL}{conversation_id}/messages/",
            {"content": "Is this available?"},
            format="json",
        )
        assert response.status_code == status.HTTP_201_CREATED
        message_id = response.data["id"]

        # Step 3: Host is notified and sees the unread badge
        # -------------------------
        notifications = host_client.get(NOTIFICATIONS_URL).data["results"]
        assert len(notifications) == 1
        assert notifications[0]["notification_type"] == NotificationKind.MESSAGE
        assert notifications[0]["data"]["message_id"] == message_id

        assert host_client.get(UNREAD_URL).data["total"] == 1

        # Step 4: Host reads; guest's live session gets the receipt
        # -------------------------
        registry.register(guest.id, "guest-tab")
        response = host_client.post(f"{MESSAGES_URL}{message_id}/read/")
        assert response.status_code == status.HTTP_200_OK

        [receipt_event] = channel_layer.payloads_for("guest-tab")
        assert receipt_event["type"] == EVENT_TYPES.MESSAGE_READ
        assert receipt_event["reader_id"] == host.id
        assert host_client.get(UNREAD_URL).data["total"] == 0

        history = guest_client.get(f"{CONVERSATIONS_URL}{conversation_id}/messages/")
        assert history.data["results"][0]["read_by"] == [host.id]

        # Step 5: Host replies while guest is online
        # -------------------------
        response = host_client.post(
            f"{CONVERSATIONS_URL}{conversation_id}/messages/",
            {"content": "Yes, it is!", "reply_to_id": message_id},
            format="json",
        )
        assert response.status_code == status.HTTP_201_CREATED
        assert response.data["message_type"] == "REPLY"

        live_event = channel_layer.payloads_for("guest-tab")[-1]
        assert live_event["type"] == EVENT_TYPES.CHAT_MESSAGE
        assert live_event["message"]["content"] == "Yes, it is!"
        assert not Notification.objects.filter(recipient=guest).exists()


@pytest.mark.e2e
class TestBlockFlow:
    """
    Host blocks a guest: guest can no longer send, host still can, and
    unblocking restores the conversation.
    """

    def test_block_then_unblock(self, guest_client, host_client, guest, conversation):
        url = f"{CONVERSATIONS_URL}{conversation.id}/messages/"
        assert guest_client.post(url, {"content": "hello"}, format="json").status_code == 201

        response = host_client.post(BLOCKS_URL, {"user_id": guest.id}, format="json")
        assert response.status_code == status.HTTP_201_CREATED

        response = guest_client.post(url, {"content": "hello??"}, format="json")
        assert response.status_code == status.HTTP_403_FORBIDDEN
        assert response.data["error_code"] == "SEND_REJECTED"

        assert host_client.post(url, {"content": "Please stop"}, format="json").status_code == 201

        # Prior messages stay visible to both sides
        history = guest_client.get(url).data["results"]
        assert [m["content"] for m in history] == ["hello", "Please stop"]

        response = host_client.delete(f"{BLOCKS_URL}{guest.id}/")
        assert response.status_code == status.HTTP_204_NO_CONTENT
        assert guest_client.post(url, {"content": "sorry"}, format="json").status_code == 201


@pytest.mark.e2e
class TestModerationFlow:
    """
    Host flags an abusive message; an admin removes it; both participants
    now see the placeholder and search no longer finds it.
    """

    def test_flag_and_remove(self, guest_client, host_client, admin_client, conversation, guest):
        message = MessageService.send(conversation, guest, "abusive words here")

        response = host_client.post(
            f"{MESSAGES_URL}{message.id}/flag/", {"reason": "abuse"}, format="json"
        )
        assert response.data["is_flagged"] is True

        response = admin_client.post(
            f"{MESSAGES_URL}{message.id}/moderate/",
            {"action": ModerationStatus.REMOVED},
            format="json",
        )
        assert response.status_code == status.HTTP_200_OK
        assert response.data["is_flagged"] is False

        for client in (guest_client, host_client):
            history = client.get(f"{CONVERSATIONS_URL}{conversation.id}/messages/")
            assert history.data["results"][0]["content"] == MESSAGE_CONFIG.REMOVED_PLACEHOLDER

        search = host_client.get(f"{MESSAGES_URL}search/", {"q": "abusive"})
        assert search.data["results"] == []


@pytest.mark.e2e
class TestSupportFlow:
    """
    Booking system posts an event into the guest/host thread, and the guest
    opens a separate support thread with an admin.
    """

    def test_system_message_and_support_thread(
        self, guest_client, admin_client, conversation, guest, host, admin
    ):
        MessageService.post_system_message(conversation, "Booking #123 confirmed")

        inbox = guest_client.get(CONVERSATIONS_URL).data["results"]
        assert inbox[0]["last_message"]["content"] == "Booking #123 confirmed"
        assert inbox[0]["unread_count"] == 0

        response = guest_client.post(
            CONVERSATIONS_URL,
            {
                "participant_ids": [admin.id],
                "conversation_type": ConversationType.SUPPORT,
                "subject": "Booking #123 refund",
            },
            format="json",
        )
        assert response.status_code == status.HTTP_201_CREATED
        support_id = response.data["id"]

        guest_client.post(
            f"{CONVERSATIONS_URL}{support_id}/messages/",
            {"content": "I need a refund"},
            format="json",
        )

        admin_inbox = admin_client.get(CONVERSATIONS_URL).data["results"]
        assert [c["id"] for c in admin_inbox] == [support_id]
        assert admin_inbox[0]["unread_count"] == 1

        inbox = guest_client.get(CONVERSATIONS_URL).data["results"]
        assert [c["id"] for c in inbox] == [support_id, conversation.id]
