"""
Chat application configuration.

This app provides the marketplace messaging core:
- Conversations between customers, providers and the back office
- Message pipeline with read receipts and moderation state
- User blocks
- Presence, typing and realtime fan-out over Channels
"""

from django.apps import AppConfig


class ChatConfig(AppConfig):
    """Configuration for the chat application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "chat"
    verbose_name = "Chat"
