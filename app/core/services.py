"""
Base service layer patterns for business logic encapsulation.

Services encapsulate business logic separate from views and models.
Views and consumers handle transport concerns, models handle data,
services handle logic.

Error Handling:
    Services raise core.exceptions subclasses for expected failures
    (validation, not found, conflicts). The REST layer renders them through
    core.exception_handler and the WebSocket consumer echoes to_dict() back
    to the client, so callers never translate result objects by hand.

Usage:
    from core.services import BaseService

    class ConversationService(BaseService):
        @classmethod
        def archive(cls, conversation):
            with cls.atomic():
                conversation.is_active = False
                conversation.save(update_fields=["is_active", "updated_at"])

            cls.get_logger().info(f"Archived conversation {conversation.id}")
            return conversation
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import TYPE_CHECKING

from django.db import transaction

from core.exceptions import ValidationError

if TYPE_CHECKING:
    from collections.abc import Generator


class BaseService:
    """
    Base class for service layer classes.

    Provides common utilities for logging, transaction handling and required
    field validation. Services expose classmethods and keep no instance
    state.
    """

    @classmethod
    def get_logger(cls) -> logging.Logger:
        """
        Get a logger for this service class.

        Returns a logger named after the service class for
        easy filtering in logs.

        Example:
            class MessageService(BaseService):
                @classmethod
                def send(cls, ...):
                    cls.get_logger().info(f"Message {message.id} accepted")
        """
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    @classmethod
    @contextmanager
    def atomic(cls) -> Generator[None, None, None]:
        """
        Execute operations in a database transaction.

        Thin wrapper around Django's transaction.atomic() that makes
        transaction boundaries explicit in service code. Nested use creates
        a savepoint.
        """
        with transaction.atomic():
            yield

    @classmethod
    def validate_required(cls, **kwargs) -> None:
        """
        Validate that required fields are provided.

        Raises:
            ValidationError: With per-field errors for every value that is
                None or a blank string.

        Example:
            cls.validate_required(conversation_id=conversation_id, sender=sender)
        """
        errors = {}
        for field_name, value in kwargs.items():
            if value is None or (isinstance(value, str) and not value.strip()):
                errors[field_name] = ["This field is required."]

        if errors:
            raise ValidationError(
                "Required fields missing",
                error_code="VALIDATION_ERROR",
                details=errors,
            )
