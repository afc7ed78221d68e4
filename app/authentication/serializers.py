"""
Serializers for authentication models.

Only the public identity of a user is exposed; chat payloads embed it for
message senders and conversation participants.
"""

from rest_framework import serializers

from authentication.models import User


class UserSerializer(serializers.ModelSerializer):
    """
    Serializer for User model (read operations).

    Used for the /api/v1/auth/me/ endpoint and nested in chat responses.
    """

    full_name = serializers.SerializerMethodField()

    class Meta:
        model = User
        fields = [
            "id",
            "email",
            "full_name",
            "role",
        ]
        read_only_fields = fields

    def get_full_name(self, obj) -> str:
        """Return the user's display name."""
        return obj.get_full_name()
