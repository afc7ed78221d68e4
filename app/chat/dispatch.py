"""
Realtime fan-out of chat events.

RealtimeDispatcher delivers events to every live session of the affected
users through the Channels layer, and falls back to a persisted
Notification when a new-message event cannot reach a recipient live.

Delivery:
    Each WebSocket session registers its channel name in the session
    registry. publish() looks up the user's sessions listening on the
    logical channel and sends {"type": "realtime.event", "payload": ...}
    to each; ChatConsumer.realtime_event forwards the payload verbatim.

Fan-out rules:
    chat_message    every participant except the sender, "message" channel,
                    Notification fallback when nobody received it live
    typing_*        other participants only, fire-and-forget
    message_read    original sender only, "message_status" channel
    user_online/off conversation counterparts, "status" channel

Failures:
    Delivery errors never reach the sender of a message. They are logged
    and, for new messages, degrade to the Notification fallback.

Usage:
    from chat.dispatch import get_dispatcher

    get_dispatcher().dispatch_new_message(message)
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from django.contrib.auth import get_user_model

from chat.constants import EVENT_TYPES, MESSAGE_CONFIG, REALTIME_CHANNELS
from chat.exceptions import DeliveryFailure
from chat.models import Participant
from chat.presence import get_session_registry
from notifications.models import NotificationKind
from notifications.services import NotificationService

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime

    from chat.models import Conversation, Message
    from chat.presence import SessionRegistry

logger = logging.getLogger(__name__)

CHANNEL_EVENT_TYPE = "realtime.event"


# =============================================================================
# Payloads
# =============================================================================


def serialize_message(message: Message) -> dict:
    """Wire shape of a message (also used by the WebSocket send ack)."""
    return {
        "id": message.id,
        "conversation_id": message.conversation_id,
        "sender_id": message.sender_id,
        "sender_role": message.sender_role,
        "type": message.message_type,
        "content": message.get_display_content(),
        "attachments": message.get_display_attachments(),
        "reply_to_id": message.reply_to_id,
        "sequence": message.sequence,
        "created_at": message.created_at.isoformat(),
    }


def message_event(message: Message) -> dict:
    return {
        "type": EVENT_TYPES.CHAT_MESSAGE,
        "conversation_id": message.conversation_id,
        "message": serialize_message(message),
    }


def typing_event(conversation_id: int, user_id: int, is_typing: bool) -> dict:
    return {
        "type": EVENT_TYPES.TYPING_START if is_typing else EVENT_TYPES.TYPING_STOP,
        "conversation_id": conversation_id,
        "user_id": user_id,
    }


def presence_event(user_id: int, online: bool) -> dict:
    return {
        "type": EVENT_TYPES.USER_ONLINE if online else EVENT_TYPES.USER_OFFLINE,
        "user_id": user_id,
    }


def read_event(message: Message, reader_id: int, read_at: datetime) -> dict:
    receipts = list(message.read_receipts.all())
    return {
        "type": EVENT_TYPES.MESSAGE_READ,
        "conversation_id": message.conversation_id,
        "message_id": message.id,
        "reader_id": reader_id,
        "timestamp": read_at.isoformat(),
        "read_by": [receipt.user_id for receipt in receipts],
        "read_at": {
            str(receipt.user_id): receipt.read_at.isoformat() for receipt in receipts
        },
    }


def error_event(error_code: str, error: str, details: dict | None = None) -> dict:
    event = {"type": EVENT_TYPES.ERROR, "error": error, "error_code": error_code}
    if details:
        event["details"] = details
    return event


# =============================================================================
# Dispatcher
# =============================================================================


class RealtimeDispatcher:
    """
    Fans chat events out to live sessions.

    Args:
        registry: Session registry (defaults to the process-wide one)
        channel_layer: Channels layer (defaults to the configured one)
        notifier: Callable(user_id, event) creating the offline fallback;
            defaults to a MESSAGE Notification
    """

    def __init__(
        self,
        registry: SessionRegistry | None = None,
        channel_layer=None,
        notifier: Callable[[int, dict], object] | None = None,
    ):
        self.registry = registry or get_session_registry()
        self.channel_layer = channel_layer or get_channel_layer()
        self.notifier = notifier or notify_offline_recipient

    def publish(self, user_id: int, channel: str, payload: dict) -> int:
        """
        Deliver payload to every session of user_id listening on channel.

        A new-message event that reaches no session is persisted as a
        Notification instead.

        Returns:
            Number of sessions the event was handed to
        """
        delivered = 0
        for session_id in self.registry.sessions_for(user_id, channel):
            try:
                self._send(session_id, payload)
            except DeliveryFailure as e:
                logger.warning(
                    f"Delivery of {payload.get('type')} to user {user_id} "
                    f"session {session_id} failed: {e}"
                )
                continue
            delivered += 1

        if delivered == 0 and channel == REALTIME_CHANNELS.MESSAGE:
            self._fallback(user_id, payload)
        return delivered

    def _send(self, session_id: str, payload: dict) -> None:
        if self.channel_layer is None:
            raise DeliveryFailure("No channel layer configured")
        try:
            async_to_sync(self.channel_layer.send)(
                session_id, {"type": CHANNEL_EVENT_TYPE, "payload": payload}
            )
        except Exception as e:
            raise DeliveryFailure(
                "Channel layer send failed",
                details={"session_id": session_id, "reason": str(e)},
            ) from e

    def _fallback(self, user_id: int, payload: dict) -> None:
        try:
            self.notifier(user_id, payload)
        except Exception:
            # The message itself is already persisted; only the alert is lost
            logger.exception(
                f"Offline notification for user {user_id} could not be created"
            )

    # -- fan-out rules --------------------------------------------------------

    def dispatch_new_message(self, message: Message, participant_ids: list[int] | None = None) -> None:
        """Publish a new message to every participant except its sender."""
        recipients = participant_ids or message.conversation.participant_ids
        event = message_event(message)
        for user_id in recipients:
            if user_id == message.sender_id:
                continue
            self.publish(user_id, REALTIME_CHANNELS.MESSAGE, event)

    def dispatch_typing(self, conversation: Conversation, user_id: int, is_typing: bool) -> None:
        event = typing_event(conversation.id, user_id, is_typing)
        for participant_id in conversation.participant_ids:
            if participant_id != user_id:
                self.publish(participant_id, REALTIME_CHANNELS.TYPING, event)

    def dispatch_read_receipt(self, message: Message, reader_id: int, read_at: datetime) -> None:
        """Tell the original sender that reader_id read their message."""
        if not message.sender_id or message.sender_id == reader_id:
            return
        self.publish(
            message.sender_id,
            REALTIME_CHANNELS.MESSAGE_STATUS,
            read_event(message, reader_id, read_at),
        )

    def dispatch_presence(self, user_id: int, online: bool) -> None:
        """Tell everyone sharing an active conversation with user_id."""
        event = presence_event(user_id, online)
        for counterpart_id in counterparts_of(user_id):
            self.publish(counterpart_id, REALTIME_CHANNELS.STATUS, event)


def counterparts_of(user_id: int) -> set[int]:
    """Users sharing at least one active conversation with user_id."""
    conversation_ids = Participant.objects.filter(
        user_id=user_id, conversation__is_active=True
    ).values_list("conversation_id", flat=True)
    return set(
        Participant.objects.filter(conversation_id__in=conversation_ids)
        .exclude(user_id=user_id)
        .values_list("user_id", flat=True)
    )


def notify_offline_recipient(user_id: int, event: dict):
    """Persist a MESSAGE notification for a new-message event."""
    if event.get("type") != EVENT_TYPES.CHAT_MESSAGE:
        return None

    recipient = get_user_model().objects.filter(pk=user_id, is_active=True).first()
    if recipient is None:
        return None

    message = event["message"]
    sender = None
    if message["sender_id"]:
        sender = get_user_model().objects.filter(pk=message["sender_id"]).first()

    title = f"New message from {sender.get_full_name()}" if sender else "New message"
    preview = message["content"][: MESSAGE_CONFIG.NOTIFICATION_PREVIEW_LENGTH]
    if not preview and message["attachments"]:
        preview = "Sent an attachment"

    return NotificationService.create(
        recipient=recipient,
        notification_type=NotificationKind.MESSAGE,
        title=title,
        message=preview,
        actor=sender,
        data={
            "conversation_id": event["conversation_id"],
            "sender_id": message["sender_id"],
            "message_id": message["id"],
        },
        idempotency_key=f"chat-message:{message['id']}:user:{user_id}",
    )


_dispatcher: RealtimeDispatcher | None = None


def get_dispatcher() -> RealtimeDispatcher:
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = RealtimeDispatcher()
    return _dispatcher


def set_dispatcher(dispatcher: RealtimeDispatcher | None) -> None:
    """Replace the process-wide dispatcher (None rebuilds it on next use)."""
    global _dispatcher
    _dispatcher = dispatcher
