"""
Chat app for real-time marketplace messaging.

This app handles:
- Conversations (customer/provider, back office, support, group)
- Message sending, history and search
- WebSocket real-time delivery, typing indicators and presence
- Read receipts, flagging, moderation and user blocks

Related apps:
    - authentication: User model and roles
    - notifications: Fallback for recipients who are not connected

WebSocket Support:
    Uses Django Channels for real-time communication.
    See consumers.py for WebSocket handlers.
    See routing.py for WebSocket URL patterns.

Usage:
    from chat.services import ConversationService, MessageService

    conversation, _ = ConversationService.find_or_create([guest, host])

    message = MessageService.send(
        conversation=conversation,
        sender=guest,
        content="Hello!",
    )
"""
