"""
Celery tasks for chat app.

This module defines async tasks for:
- Typing indicator expiry (beat, every 30 seconds)
- Data-erasure requests

Related files:
    - services.py: PresenceService, MessageService
    - config/settings.py: CELERY_BEAT_SCHEDULE

Usage:
    from chat.tasks import erase_user_messages

    erase_user_messages.delay(user_id)
"""

import logging

from celery import shared_task
from django.contrib.auth import get_user_model

from chat.services import MessageService, PresenceService

logger = logging.getLogger(__name__)


@shared_task(
    bind=True,
    autoretry_for=(Exception,),
    retry_backoff=True,
    retry_kwargs={"max_retries": 3},
)
def sweep_typing_indicators(self) -> int:
    """
    Clear typing entries that were not refreshed in time.

    Reads already ignore expired entries; the sweep sends the typing_stop
    events for users who went quiet without a stop. Typing state is read
    from CHAT_TYPING_STORE, which must be shared with the ASGI processes.

    Returns:
        Number of entries cleared
    """
    cleared = PresenceService.sweep_typing()
    if cleared:
        logger.info(f"Cleared {cleared} expired typing indicators")
    return cleared


@shared_task(
    bind=True,
    autoretry_for=(Exception,),
    retry_backoff=True,
    retry_kwargs={"max_retries": 3},
)
def erase_user_messages(self, user_id: int) -> int:
    """
    Delete every message a user sent (privacy request).

    Args:
        user_id: ID of the user requesting erasure

    Returns:
        Number of messages deleted
    """
    user = get_user_model().objects.filter(pk=user_id).first()
    if user is None:
        logger.warning(f"Erasure requested for unknown user {user_id}")
        return 0

    return MessageService.erase_user_messages(user)
