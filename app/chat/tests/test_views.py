"""
Tests for chat API views.

This module covers:
- Conversation endpoints (inbox, find-or-create, detail, hide)
- Message history and send
- Read cursors, typing, receipts, flag/moderate, search
- Unread summary, presence and blocks

Testing Philosophy:
    Business rules are covered in test_services; these tests check the
    HTTP contract: status codes, response shape and error rendering.
"""

import pytest
from rest_framework import status

from chat.constants import MESSAGE_CONFIG
from chat.models import ConversationType, Message, ModerationStatus, UserBlock
from chat.moderation import ModerationService
from chat.services import ConversationService, MessageService, PresenceService

CONVERSATIONS_URL = "/api/v1/chat/conversations/"


def conversation_url(conversation, suffix=""):
    return f"{CONVERSATIONS_URL}{conversation.id}/{suffix}"


def message_url(message, suffix):
    return f"/api/v1/chat/messages/{message.id}/{suffix}"


# =============================================================================
# Conversations
# =============================================================================


class TestConversationList:
    def test_requires_authentication(self, api_client):
        response = api_client.get(CONVERSATIONS_URL)

        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    def test_inbox_entry(self, guest_client, conversation, guest, host):
        MessageService.send(conversation, host, "Welcome!")

        response = guest_client.get(CONVERSATIONS_URL)

        assert response.status_code == status.HTTP_200_OK
        assert response.data["next_cursor"] is None
        [entry] = response.data["results"]
        assert entry["id"] == conversation.id
        assert entry["conversation_type"] == ConversationType.CUSTOMER_PROVIDER
        assert entry["unread_count"] == 1
        assert entry["message_count"] == 1
        assert entry["last_message"]["content"] == "Welcome!"
        assert {p["user"]["id"] for p in entry["participants"]} == {guest.id, host.id}

    def test_empty_inbox(self, outsider_client, conversation):
        response = outsider_client.get(CONVERSATIONS_URL)

        assert response.data == {"results": [], "next_cursor": None}

    def test_invalid_cursor(self, guest_client):
        response = guest_client.get(CONVERSATIONS_URL, {"cursor": "garbage"})

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data["error_code"] == "INVALID_CURSOR"


class TestConversationCreate:
    def test_creates_then_finds(self, guest_client, guest, host):
        first = guest_client.post(
            CONVERSATIONS_URL, {"participant_ids": [host.id]}, format="json"
        )
        second = guest_client.post(
            CONVERSATIONS_URL, {"participant_ids": [host.id]}, format="json"
        )

        assert first.status_code == status.HTTP_201_CREATED
        assert second.status_code == status.HTTP_200_OK
        assert first.data["id"] == second.data["id"]
        assert first.data["message_count"] == 0
        assert first.data["last_message"] is None

    def test_requester_is_always_included(self, guest_client, guest, host):
        response = guest_client.post(
            CONVERSATIONS_URL, {"participant_ids": [guest.id, host.id]}, format="json"
        )

        assert response.status_code == status.HTTP_201_CREATED
        assert len(response.data["participants"]) == 2

    def test_support_conversation_with_subject(self, guest_client, admin):
        response = guest_client.post(
            CONVERSATIONS_URL,
            {
                "participant_ids": [admin.id],
                "conversation_type": ConversationType.SUPPORT,
                "subject": "Refund request",
            },
            format="json",
        )

        assert response.status_code == status.HTTP_201_CREATED
        assert response.data["conversation_type"] == ConversationType.SUPPORT
        assert response.data["subject"] == "Refund request"

    def test_role_matrix_forbidden(self, guest_client, other_guest):
        response = guest_client.post(
            CONVERSATIONS_URL, {"participant_ids": [other_guest.id]}, format="json"
        )

        assert response.status_code == status.HTTP_403_FORBIDDEN
        assert response.data["error_code"] == "ROLE_NOT_ALLOWED"

    def test_unknown_user(self, guest_client):
        response = guest_client.post(
            CONVERSATIONS_URL, {"participant_ids": [999_999]}, format="json"
        )

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.data["error_code"] == "USER_NOT_FOUND"
        assert response.data["details"] == {"user_ids": [999_999]}

    def test_only_self(self, guest_client, guest):
        response = guest_client.post(
            CONVERSATIONS_URL, {"participant_ids": [guest.id]}, format="json"
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data["error_code"] == "TOO_FEW_PARTICIPANTS"

    def test_missing_participants(self, guest_client):
        response = guest_client.post(CONVERSATIONS_URL, {}, format="json")

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert "participant_ids" in response.data


class TestConversationDetail:
    def test_participant_can_read(self, host_client, conversation):
        response = host_client.get(conversation_url(conversation))

        assert response.status_code == status.HTTP_200_OK
        assert response.data["id"] == conversation.id

    def test_outsider_gets_404(self, outsider_client, conversation):
        """
        Why it matters: Returning 403 would confirm the conversation
        exists; outsiders must not be able to probe ids.
        """
        response = outsider_client.get(conversation_url(conversation))

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.data["error_code"] == "CONVERSATION_NOT_FOUND"

    def test_hide(self, guest_client, conversation):
        response = guest_client.delete(conversation_url(conversation))

        assert response.status_code == status.HTTP_204_NO_CONTENT
        assert guest_client.get(CONVERSATIONS_URL).data["results"] == []


# =============================================================================
# Messages
# =============================================================================


class TestSendMessage:
    def test_send(self, guest_client, conversation, guest):
        response = guest_client.post(
            conversation_url(conversation, "messages/"),
            {"content": "Is this available?", "idempotency_key": "client-1"},
            format="json",
        )

        assert response.status_code == status.HTTP_201_CREATED
        assert response.data["content"] == "Is this available?"
        assert response.data["sender"]["id"] == guest.id
        assert response.data["sequence"] == 1
        assert response.data["read_by"] == []
        assert response.data["is_read"] is False

    def test_retry_with_same_key(self, guest_client, conversation):
        payload = {"content": "hello", "idempotency_key": "client-1"}
        url = conversation_url(conversation, "messages/")

        first = guest_client.post(url, payload, format="json")
        second = guest_client.post(url, payload, format="json")

        assert first.data["id"] == second.data["id"]
        assert Message.objects.count() == 1

    def test_key_reused_in_another_conversation(self, guest_client, conversation, guest, admin):
        support, _ = ConversationService.find_or_create([guest, admin])
        guest_client.post(
            conversation_url(conversation, "messages/"),
            {"content": "hello", "idempotency_key": "client-1"},
            format="json",
        )

        response = guest_client.post(
            conversation_url(support, "messages/"),
            {"content": "something else", "idempotency_key": "client-1"},
            format="json",
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data["error_code"] == "IDEMPOTENCY_KEY_REUSED"
        assert not support.messages.exists()

    def test_empty_message(self, guest_client, conversation):
        response = guest_client.post(
            conversation_url(conversation, "messages/"), {"content": "   "}, format="json"
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data["error_code"] == "EMPTY_MESSAGE"

    def test_blocked(self, guest_client, conversation, guest, host):
        ModerationService.block(host, guest)

        response = guest_client.post(
            conversation_url(conversation, "messages/"), {"content": "hi"}, format="json"
        )

        assert response.status_code == status.HTTP_403_FORBIDDEN
        assert response.data == {
            "error": "This message could not be sent.",
            "error_code": "SEND_REJECTED",
        }

    def test_rate_limited(self, guest_client, conversation, settings):
        settings.CHAT_RATE_LIMIT_PER_MINUTE = 1
        url = conversation_url(conversation, "messages/")
        guest_client.post(url, {"content": "one"}, format="json")

        response = guest_client.post(url, {"content": "two"}, format="json")

        assert response.status_code == status.HTTP_429_TOO_MANY_REQUESTS
        assert response.data["error_code"] == "MESSAGE_RATE_LIMIT"

    def test_outsider(self, outsider_client, conversation):
        response = outsider_client.post(
            conversation_url(conversation, "messages/"), {"content": "hi"}, format="json"
        )

        assert response.status_code == status.HTTP_404_NOT_FOUND


class TestHistory:
    def test_paginates_forward(self, host_client, conversation, guest):
        sent = [MessageService.send(conversation, guest, f"message {i}") for i in range(3)]
        url = conversation_url(conversation, "messages/")

        first = host_client.get(url, {"limit": 2})
        second = host_client.get(url, {"limit": 2, "cursor": first.data["next_cursor"]})

        ids = [m["id"] for m in first.data["results"] + second.data["results"]]
        assert ids == [m.id for m in sent]
        assert second.data["next_cursor"] is None

    def test_backward(self, host_client, conversation, guest):
        sent = [MessageService.send(conversation, guest, f"message {i}") for i in range(3)]

        response = host_client.get(
            conversation_url(conversation, "messages/"), {"direction": "backward"}
        )

        assert [m["id"] for m in response.data["results"]] == [m.id for m in reversed(sent)]

    def test_removed_message_placeholder(self, host_client, conversation, guest, admin):
        message = MessageService.send(conversation, guest, "nasty")
        MessageService.moderate(message, admin, ModerationStatus.REMOVED)

        response = host_client.get(conversation_url(conversation, "messages/"))

        [entry] = response.data["results"]
        assert entry["content"] == MESSAGE_CONFIG.REMOVED_PLACEHOLDER
        assert entry["moderation_status"] == ModerationStatus.REMOVED

    def test_invalid_direction(self, host_client, conversation):
        response = host_client.get(
            conversation_url(conversation, "messages/"), {"direction": "sideways"}
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert "direction" in response.data


class TestConversationRead:
    def test_read_all(self, host_client, conversation, guest):
        MessageService.send(conversation, guest, "one")
        latest = MessageService.send(conversation, guest, "two")

        response = host_client.post(conversation_url(conversation, "read/"), {}, format="json")

        assert response.status_code == status.HTTP_200_OK
        assert response.data == {
            "conversation_id": conversation.id,
            "unread_count": 0,
            "last_read_message_id": latest.id,
        }

    def test_read_through_message(self, host_client, conversation, guest):
        first = MessageService.send(conversation, guest, "one")
        MessageService.send(conversation, guest, "two")

        response = host_client.post(
            conversation_url(conversation, "read/"), {"message_id": first.id}, format="json"
        )

        assert response.data["unread_count"] == 1


class TestTyping:
    def test_start_and_list(self, guest_client, host_client, conversation, guest, tracker):
        response = guest_client.post(
            conversation_url(conversation, "typing/"), {"is_typing": True}, format="json"
        )
        assert response.data["user_ids"] == []

        response = host_client.get(conversation_url(conversation, "typing/"))

        assert response.data == {"conversation_id": conversation.id, "user_ids": [guest.id]}

    def test_missing_flag(self, guest_client, conversation):
        response = guest_client.post(conversation_url(conversation, "typing/"), {}, format="json")

        assert response.status_code == status.HTTP_400_BAD_REQUEST


class TestMessageActions:
    def test_mark_read(self, host_client, conversation, guest, host):
        message = MessageService.send(conversation, guest, "hello")

        response = host_client.post(message_url(message, "read/"))

        assert response.status_code == status.HTTP_200_OK
        assert response.data["message_id"] == message.id
        assert response.data["user_id"] == host.id

    def test_mark_own_message_read(self, guest_client, conversation, guest):
        message = MessageService.send(conversation, guest, "hello")

        response = guest_client.post(message_url(message, "read/"))

        assert response.status_code == status.HTTP_204_NO_CONTENT

    def test_outsider_cannot_see_message(self, outsider_client, conversation, guest):
        message = MessageService.send(conversation, guest, "hello")

        response = outsider_client.post(message_url(message, "read/"))

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.data["error_code"] == "MESSAGE_NOT_FOUND"

    def test_flag(self, host_client, conversation, guest):
        message = MessageService.send(conversation, guest, "hello")

        response = host_client.post(message_url(message, "flag/"), {"reason": "scam"}, format="json")

        assert response.status_code == status.HTTP_200_OK
        assert response.data["is_flagged"] is True

    def test_moderate_requires_moderator(self, host_client, conversation, guest):
        message = MessageService.send(conversation, guest, "hello")

        response = host_client.post(
            message_url(message, "moderate/"),
            {"action": ModerationStatus.REMOVED},
            format="json",
        )

        assert response.status_code == status.HTTP_403_FORBIDDEN

    def test_moderator_removes(self, admin_client, conversation, guest):
        message = MessageService.send(conversation, guest, "hello")

        response = admin_client.post(
            message_url(message, "moderate/"),
            {"action": ModerationStatus.REMOVED},
            format="json",
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.data["content"] == MESSAGE_CONFIG.REMOVED_PLACEHOLDER
        assert response.data["attachments"] == []

    def test_search(self, guest_client, conversation, host):
        hit = MessageService.send(conversation, host, "The pool is heated")
        MessageService.send(conversation, host, "Parking is free")

        response = guest_client.get("/api/v1/chat/messages/search/", {"q": "POOL"})

        assert response.status_code == status.HTTP_200_OK
        assert [m["id"] for m in response.data["results"]] == [hit.id]

    def test_search_query_too_short(self, guest_client):
        response = guest_client.get("/api/v1/chat/messages/search/", {"q": "a"})

        assert response.status_code == status.HTTP_400_BAD_REQUEST


# =============================================================================
# Badges, presence, blocks
# =============================================================================


class TestUnreadSummary:
    def test_summary(self, host_client, conversation, guest):
        MessageService.send(conversation, guest, "one")
        MessageService.send(conversation, guest, "two")

        response = host_client.get("/api/v1/chat/unread/")

        assert response.data == {
            "total": 2,
            "by_conversation": {str(conversation.id): 2},
        }


class TestPresence:
    def test_counterpart_online(self, guest_client, conversation, host, tracker):
        PresenceService.session_opened(host.id, "host-tab")

        response = guest_client.get(f"/api/v1/chat/presence/{host.id}/")

        assert response.status_code == status.HTTP_200_OK
        assert response.data["is_online"] is True
        assert response.data["last_seen"] is not None

    def test_stranger_forbidden(self, outsider_client, conversation, guest, tracker):
        response = outsider_client.get(f"/api/v1/chat/presence/{guest.id}/")

        assert response.status_code == status.HTTP_403_FORBIDDEN
        assert response.data["error_code"] == "PRESENCE_NOT_VISIBLE"

    def test_unknown_user(self, guest_client, tracker):
        response = guest_client.get("/api/v1/chat/presence/999999/")

        assert response.status_code == status.HTTP_404_NOT_FOUND


class TestBlocks:
    def test_block_list_unblock(self, host_client, host, guest):
        response = host_client.post(
            "/api/v1/chat/blocks/", {"user_id": guest.id, "reason": "spam"}, format="json"
        )
        assert response.status_code == status.HTTP_201_CREATED
        assert response.data["blocked_user"]["id"] == guest.id

        listing = host_client.get("/api/v1/chat/blocks/")
        assert [b["blocked_user"]["id"] for b in listing.data] == [guest.id]

        response = host_client.delete(f"/api/v1/chat/blocks/{guest.id}/")
        assert response.status_code == status.HTTP_204_NO_CONTENT
        assert not UserBlock.objects.filter(is_active=True).exists()

    def test_duplicate_block(self, host_client, host, guest):
        ModerationService.block(host, guest)

        response = host_client.post("/api/v1/chat/blocks/", {"user_id": guest.id}, format="json")

        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.data["error_code"] == "ALREADY_BLOCKED"

    def test_block_self(self, host_client, host):
        response = host_client.post("/api/v1/chat/blocks/", {"user_id": host.id}, format="json")

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data["error_code"] == "CANNOT_BLOCK_SELF"

    def test_unblock_is_idempotent(self, host_client, guest):
        response = host_client.delete(f"/api/v1/chat/blocks/{guest.id}/")

        assert response.status_code == status.HTTP_204_NO_CONTENT

    def test_unblock_unknown_user(self, host_client):
        response = host_client.delete("/api/v1/chat/blocks/999999/")

        assert response.status_code == status.HTTP_404_NOT_FOUND


@pytest.mark.parametrize(
    "url",
    ["/api/v1/chat/unread/", "/api/v1/chat/blocks/", "/api/v1/chat/messages/search/?q=hi"],
)
def test_endpoints_require_authentication(api_client, url):
    assert api_client.get(url).status_code == status.HTTP_401_UNAUTHORIZED
