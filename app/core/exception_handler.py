"""
DRF exception handler for application errors.

Registered as REST_FRAMEWORK["EXCEPTION_HANDLER"]. DRF's own exceptions
(authentication, serializer validation, throttling) keep their default
rendering; BaseApplicationError subclasses are rendered with to_dict() and
their class status code.
"""

from __future__ import annotations

import logging

from rest_framework.response import Response
from rest_framework.views import exception_handler

from core.exceptions import BaseApplicationError

logger = logging.getLogger(__name__)


def application_exception_handler(exc, context):
    """Render BaseApplicationError as {error, error_code, details}."""
    if isinstance(exc, BaseApplicationError):
        view = context.get("view")
        logger.info(
            f"{exc.__class__.__name__} in {view.__class__.__name__ if view else 'unknown view'}: "
            f"{exc.error_code}"
        )
        return Response(exc.to_dict(), status=exc.status_code)

    return exception_handler(exc, context)
