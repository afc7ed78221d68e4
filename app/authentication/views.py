"""
Authentication views.

Token obtain/refresh come from djangorestframework-simplejwt; this module
adds the current-user endpoint.
"""

from drf_spectacular.utils import extend_schema
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from authentication.serializers import UserSerializer


class MeView(APIView):
    """Return the authenticated user's identity and role."""

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="get_current_user",
        responses={200: UserSerializer},
        tags=["Auth"],
    )
    def get(self, request):
        return Response(UserSerializer(request.user).data)
