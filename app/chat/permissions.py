"""
Permission classes for chat API.

Participant checks live in the service layer (non-participants get 404,
not 403, so conversation ids are not probeable). The only view-level
permission is the moderator gate.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from rest_framework import permissions

if TYPE_CHECKING:
    from rest_framework.request import Request
    from rest_framework.views import APIView


class IsModerator(permissions.BasePermission):
    """
    Allows access only to staff and SUPER_ADMIN users.
    """

    message = "Only moderators can perform this action."

    def has_permission(self, request: Request, view: APIView) -> bool:
        user = request.user
        return bool(user and user.is_authenticated and user.can_moderate)
