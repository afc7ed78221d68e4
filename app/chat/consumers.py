"""
WebSocket consumers for the chat application.

This module implements the per-user realtime stream. One connection
carries events for every conversation the user participates in.

Consumers:
    ChatConsumer: Handles a user's WebSocket session

Authentication:
    Users are authenticated via JWT token passed as query parameter.
    JWTAuthMiddleware attaches the user to self.scope["user"].

Sessions:
    Each connection registers its channel name in the session registry.
    RealtimeDispatcher sends {"type": "realtime.event", "payload": ...} to
    that channel name, and realtime_event() forwards the payload.

Message Types (from client):
    - chat.send: {conversation_id, content, attachments, reply_to_id,
      idempotency_key}
    - typing.start / typing.stop: {conversation_id}
    - chat.read: {message_id}
    - ping

Message Types (to client):
    - chat_message, typing_start, typing_stop, user_online, user_offline,
      message_read: realtime events
    - message_sent: ack for this session's chat.send
    - error: {error, error_code}
    - pong
"""

from __future__ import annotations

import logging

from channels.db import database_sync_to_async
from channels.generic.websocket import AsyncJsonWebsocketConsumer

from chat.constants import EVENT_TYPES
from chat.dispatch import error_event, serialize_message
from chat.exceptions import ChatValidationError
from chat.services import ConversationService, MessageService, PresenceService
from core.exceptions import BaseApplicationError

logger = logging.getLogger(__name__)


def _require_int(content: dict, key: str) -> int:
    value = content.get(key)
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ChatValidationError(
            f"{key} is required and must be an integer",
            error_code="VALIDATION_ERROR",
            details={key: ["A valid integer is required."]},
        )


class ChatConsumer(AsyncJsonWebsocketConsumer):
    """
    WebSocket consumer for a user's realtime chat stream.

    Handles:
        - Connection authentication and session registration
        - Online/offline broadcasts on first connect / last disconnect
        - Sending messages, typing indicators and read receipts
        - Forwarding dispatcher events to the client

    Close codes:
        4001: Unauthenticated
    """

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.user = None
        self.registered = False

    async def connect(self):
        user = self.scope.get("user")

        if not user or not user.is_authenticated:
            logger.warning("Rejected unauthenticated chat connection")
            await self.close(code=4001)
            return

        self.user = user
        await self.accept()
        await database_sync_to_async(PresenceService.session_opened)(
            user.id, self.channel_name
        )
        self.registered = True
        logger.info(f"User {user.id} connected to chat ({self.channel_name})")

    async def disconnect(self, close_code):
        if not self.registered:
            return

        await database_sync_to_async(PresenceService.session_closed)(
            self.user.id, self.channel_name
        )
        self.registered = False
        logger.info(
            f"User {self.user.id} disconnected from chat (code {close_code})"
        )

    async def receive_json(self, content, **kwargs):
        """
        Route a client event.

        Domain errors are echoed back as error events; the connection stays
        open.
        """
        if not isinstance(content, dict):
            await self.send_json(error_event("INVALID_EVENT", "Events must be JSON objects"))
            return

        event_type = content.get("type")
        handlers = {
            "chat.send": self._handle_send,
            "typing.start": self._handle_typing_start,
            "typing.stop": self._handle_typing_stop,
            "chat.read": self._handle_read,
            "ping": self._handle_ping,
        }
        handler = handlers.get(event_type)
        if handler is None:
            await self.send_json(
                error_event("UNKNOWN_EVENT", f"Unknown event type: {event_type}")
            )
            return

        try:
            await handler(content)
        except BaseApplicationError as e:
            await self.send_json(error_event(e.error_code, e.message, e.details))

    async def _handle_send(self, content):
        conversation_id = _require_int(content, "conversation_id")
        reply_to_id = content.get("reply_to_id")
        if reply_to_id is not None:
            reply_to_id = _require_int(content, "reply_to_id")

        payload = await self._send_message(
            conversation_id=conversation_id,
            content=content.get("content", ""),
            attachments=content.get("attachments") or [],
            reply_to_id=reply_to_id,
            idempotency_key=content.get("idempotency_key"),
        )
        await self.send_json({"type": EVENT_TYPES.MESSAGE_SENT, "message": payload})

    async def _handle_typing_start(self, content):
        await self._set_typing(_require_int(content, "conversation_id"), True)

    async def _handle_typing_stop(self, content):
        await self._set_typing(_require_int(content, "conversation_id"), False)

    async def _handle_read(self, content):
        await self._mark_read(_require_int(content, "message_id"))

    async def _handle_ping(self, content):
        await database_sync_to_async(PresenceService.heartbeat)(
            self.user.id, self.channel_name
        )
        await self.send_json({"type": EVENT_TYPES.PONG})

    async def realtime_event(self, event):
        """Handle realtime.event messages from the dispatcher."""
        await self.send_json(event["payload"])

    @database_sync_to_async
    def _send_message(self, conversation_id, **kwargs) -> dict:
        conversation = ConversationService.get_for_participant(conversation_id, self.user)
        message = MessageService.send(conversation=conversation, sender=self.user, **kwargs)
        return serialize_message(message)

    @database_sync_to_async
    def _set_typing(self, conversation_id: int, is_typing: bool) -> None:
        conversation = ConversationService.get_for_participant(conversation_id, self.user)
        PresenceService.set_typing(conversation, self.user, is_typing)

    @database_sync_to_async
    def _mark_read(self, message_id: int) -> None:
        message = MessageService.get_for_participant(message_id, self.user)
        MessageService.mark_read(message, self.user)
