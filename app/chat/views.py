"""
ViewSets for chat API.

This module provides REST API endpoints for the chat system:
- ConversationViewSet: Inbox, find-or-create, history, send, read, typing
- MessageViewSet: Read receipts, flagging, moderation, search
- UnreadSummaryView / UserPresenceView: Badges and presence
- BlockListView / BlockDetailView: User blocks

URL Structure:
    /api/v1/chat/conversations/                     GET, POST
    /api/v1/chat/conversations/{id}/                GET, DELETE (hide)
    /api/v1/chat/conversations/{id}/messages/       GET, POST
    /api/v1/chat/conversations/{id}/read/           POST
    /api/v1/chat/conversations/{id}/typing/         GET, POST
    /api/v1/chat/messages/{id}/read/                POST
    /api/v1/chat/messages/{id}/flag/                POST
    /api/v1/chat/messages/{id}/moderate/            POST (moderators)
    /api/v1/chat/messages/search/                   GET
    /api/v1/chat/unread/                            GET
    /api/v1/chat/presence/{user_id}/                GET
    /api/v1/chat/blocks/                            GET, POST
    /api/v1/chat/blocks/{user_id}/                  DELETE

Design Decisions:
    - Views only parse input and serialize output; every rule is enforced
      by the service layer, whose exceptions are rendered by
      core.exception_handler
    - Conversations the user is not part of are reported as not found
"""

from __future__ import annotations

from django.contrib.auth import get_user_model
from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import (
    OpenApiParameter,
    OpenApiResponse,
    extend_schema,
    extend_schema_view,
)
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from chat.moderation import ModerationService
from chat.permissions import IsModerator
from chat.serializers import (
    BlockCreateSerializer,
    ConversationCreateSerializer,
    ConversationPageSerializer,
    ConversationSerializer,
    FlagSerializer,
    HistoryQuerySerializer,
    MarkReadSerializer,
    MessageCreateSerializer,
    MessagePageSerializer,
    MessageSerializer,
    ModerateSerializer,
    PresenceSerializer,
    ReadReceiptSerializer,
    SearchQuerySerializer,
    TypingSerializer,
    TypingUsersSerializer,
    UnreadSummarySerializer,
    UserBlockSerializer,
)
from chat.services import (
    ConversationService,
    MessageService,
    PresenceService,
)
from core.exceptions import NotFoundError

User = get_user_model()


def _resolve_users(user_ids) -> list:
    """Active users for user_ids, or NotFoundError naming the missing ids."""
    users = list(User.objects.filter(id__in=user_ids, is_active=True))
    missing = sorted(set(user_ids) - {user.id for user in users})
    if missing:
        raise NotFoundError(
            "User not found",
            error_code="USER_NOT_FOUND",
            details={"user_ids": missing},
        )
    return users


# =============================================================================
# Conversations
# =============================================================================


@extend_schema_view(
    list=extend_schema(
        operation_id="list_conversations",
        summary="List conversations",
        description=(
            "Inbox of the authenticated user, most recent activity first. "
            "Hidden and archived conversations are excluded. Paginate with "
            "the returned next_cursor."
        ),
        parameters=[
            OpenApiParameter(
                name="cursor",
                type=OpenApiTypes.STR,
                location=OpenApiParameter.QUERY,
                required=False,
            ),
        ],
        responses={200: ConversationPageSerializer},
        tags=["Chat - Conversations"],
    ),
    create=extend_schema(
        operation_id="find_or_create_conversation",
        summary="Find or create conversation",
        description=(
            "Returns the active conversation between the requester and "
            "participant_ids (200), or creates it (201)."
        ),
        request=ConversationCreateSerializer,
        responses={200: ConversationSerializer, 201: ConversationSerializer},
        tags=["Chat - Conversations"],
    ),
    retrieve=extend_schema(
        operation_id="get_conversation",
        summary="Get conversation",
        responses={200: ConversationSerializer},
        tags=["Chat - Conversations"],
    ),
    destroy=extend_schema(
        operation_id="hide_conversation",
        summary="Hide conversation",
        description="Removes the conversation from your inbox until the next message.",
        responses={204: None},
        tags=["Chat - Conversations"],
    ),
)
class ConversationViewSet(viewsets.GenericViewSet):
    """
    ViewSet for conversation operations.

    list:
        Get the current user's inbox (keyset paginated).

    create:
        Find or create a conversation with the given users.

    retrieve:
        Get conversation details including participants.

    destroy:
        Hide the conversation for the current user.

    messages:
        GET history (cursor, direction, limit) / POST a new message.

    read:
        Move the read cursor (defaults to the latest message).

    typing:
        GET who is typing / POST start or stop typing.
    """

    permission_classes = [IsAuthenticated]
    serializer_class = ConversationSerializer
    lookup_value_regex = r"\d+"

    def get_conversation(self):
        return ConversationService.get_for_participant(self.kwargs["pk"], self.request.user)

    def list(self, request):
        conversations, next_cursor = ConversationService.list_for_user(
            request.user,
            cursor=request.query_params.get("cursor"),
        )
        serializer = ConversationSerializer(
            conversations, many=True, context={"request": request}
        )
        return Response({"results": serializer.data, "next_cursor": next_cursor})

    def create(self, request):
        serializer = ConversationCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        other_ids = set(data["participant_ids"]) - {request.user.id}
        participants = [request.user, *_resolve_users(other_ids)]

        conversation, created = ConversationService.find_or_create(
            participants,
            conversation_type=data["conversation_type"],
            created_by=request.user,
            subject=data["subject"],
        )
        output = ConversationSerializer(
            ConversationService.get_for_participant(conversation.id, request.user),
            context={"request": request},
        )
        return Response(
            output.data,
            status=status.HTTP_201_CREATED if created else status.HTTP_200_OK,
        )

    def retrieve(self, request, pk=None):
        serializer = ConversationSerializer(
            self.get_conversation(), context={"request": request}
        )
        return Response(serializer.data)

    def destroy(self, request, pk=None):
        ConversationService.hide_for_user(self.get_conversation(), request.user)
        return Response(status=status.HTTP_204_NO_CONTENT)

    @extend_schema(
        methods=["GET"],
        operation_id="list_messages",
        summary="Message history",
        parameters=[HistoryQuerySerializer],
        responses={200: MessagePageSerializer},
        tags=["Chat - Messages"],
    )
    @extend_schema(
        methods=["POST"],
        operation_id="send_message",
        summary="Send message",
        request=MessageCreateSerializer,
        responses={
            201: MessageSerializer,
            403: OpenApiResponse(description="Message could not be sent"),
            429: OpenApiResponse(description="Rate limit exceeded"),
        },
        tags=["Chat - Messages"],
    )
    @action(detail=True, methods=["get", "post"])
    def messages(self, request, pk=None):
        conversation = self.get_conversation()

        if request.method == "POST":
            serializer = MessageCreateSerializer(data=request.data)
            serializer.is_valid(raise_exception=True)
            message = MessageService.send(
                conversation=conversation,
                sender=request.user,
                **serializer.validated_data,
            )
            return Response(MessageSerializer(message).data, status=status.HTTP_201_CREATED)

        query = HistoryQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)
        messages, next_cursor = MessageService.history(
            conversation, request.user, **query.validated_data
        )
        return Response(
            {
                "results": MessageSerializer(messages, many=True).data,
                "next_cursor": next_cursor,
            }
        )

    @extend_schema(
        operation_id="mark_conversation_read",
        summary="Mark conversation as read",
        request=MarkReadSerializer,
        tags=["Chat - Conversations"],
    )
    @action(detail=True, methods=["post"])
    def read(self, request, pk=None):
        conversation = self.get_conversation()
        serializer = MarkReadSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        through_message = None
        message_id = serializer.validated_data["message_id"]
        if message_id is not None:
            through_message = MessageService.get_for_participant(message_id, request.user)

        participant = ConversationService.mark_read(
            conversation, request.user, through_message=through_message
        )
        return Response(
            {
                "conversation_id": conversation.id,
                "unread_count": participant.unread_count,
                "last_read_message_id": participant.last_read_message_id,
            }
        )

    @extend_schema(
        methods=["GET"],
        operation_id="get_typing_users",
        summary="Who is typing",
        responses={200: TypingUsersSerializer},
        tags=["Chat - Conversations"],
    )
    @extend_schema(
        methods=["POST"],
        operation_id="set_typing",
        summary="Start or stop typing",
        request=TypingSerializer,
        responses={200: TypingUsersSerializer},
        tags=["Chat - Conversations"],
    )
    @action(detail=True, methods=["get", "post"])
    def typing(self, request, pk=None):
        conversation = self.get_conversation()

        if request.method == "POST":
            serializer = TypingSerializer(data=request.data)
            serializer.is_valid(raise_exception=True)
            PresenceService.set_typing(
                conversation, request.user, serializer.validated_data["is_typing"]
            )

        return Response(
            {
                "conversation_id": conversation.id,
                "user_ids": PresenceService.typing_users(
                    conversation, exclude_user_id=request.user.id
                ),
            }
        )


# =============================================================================
# Messages
# =============================================================================


class MessageViewSet(viewsets.GenericViewSet):
    """
    Message-level actions.

    read:
        Record a read receipt for the current user.

    flag:
        Flag a message for moderator review.

    moderate:
        Approve or remove a message (moderators only).

    search:
        Search messages across the user's conversations.
    """

    permission_classes = [IsAuthenticated]
    serializer_class = MessageSerializer
    lookup_value_regex = r"\d+"

    def get_message(self):
        return MessageService.get_for_participant(self.kwargs["pk"], self.request.user)

    @extend_schema(
        operation_id="mark_message_read",
        summary="Mark message as read",
        request=None,
        responses={200: ReadReceiptSerializer, 204: None},
        tags=["Chat - Messages"],
    )
    @action(detail=True, methods=["post"])
    def read(self, request, pk=None):
        receipt = MessageService.mark_read(self.get_message(), request.user)
        if receipt is None:
            return Response(status=status.HTTP_204_NO_CONTENT)
        return Response(
            ReadReceiptSerializer(
                {
                    "message_id": receipt.message_id,
                    "user_id": receipt.user_id,
                    "read_at": receipt.read_at,
                }
            ).data
        )

    @extend_schema(
        operation_id="flag_message",
        summary="Flag message",
        request=FlagSerializer,
        responses={200: MessageSerializer},
        tags=["Chat - Moderation"],
    )
    @action(detail=True, methods=["post"])
    def flag(self, request, pk=None):
        serializer = FlagSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        message = MessageService.flag(
            self.get_message(), request.user, serializer.validated_data["reason"]
        )
        return Response(MessageSerializer(message).data)

    @extend_schema(
        operation_id="moderate_message",
        summary="Approve or remove message",
        request=ModerateSerializer,
        responses={200: MessageSerializer},
        tags=["Chat - Moderation"],
    )
    @action(detail=True, methods=["post"], permission_classes=[IsAuthenticated, IsModerator])
    def moderate(self, request, pk=None):
        serializer = ModerateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        message = MessageService.moderate(
            self.get_message(), request.user, serializer.validated_data["action"]
        )
        return Response(MessageSerializer(message).data)

    @extend_schema(
        operation_id="search_messages",
        summary="Search messages",
        description=(
            "Case-insensitive content search across conversations where the "
            "user is a participant, newest first."
        ),
        parameters=[SearchQuerySerializer],
        responses={200: MessageSerializer(many=True)},
        tags=["Chat - Search"],
    )
    @action(detail=False, methods=["get"])
    def search(self, request):
        query = SearchQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)
        data = query.validated_data
        messages = MessageService.search(
            request.user,
            data["q"],
            conversation_id=data["conversation_id"],
            limit=data["limit"],
        )
        return Response({"results": MessageSerializer(messages, many=True).data})


# =============================================================================
# Badges and presence
# =============================================================================


class UnreadSummaryView(APIView):
    """
    GET /api/v1/chat/unread/

    Unread totals across the user's active, visible conversations.
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="get_unread_summary",
        summary="Unread summary",
        responses={200: UnreadSummarySerializer},
        tags=["Chat - Conversations"],
    )
    def get(self, request):
        return Response(ConversationService.unread_summary(request.user))


class UserPresenceView(APIView):
    """
    GET /api/v1/chat/presence/{user_id}/

    Online status of a conversation counterpart.
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="get_user_presence",
        summary="Get user presence",
        responses={200: PresenceSerializer},
        tags=["Chat - Presence"],
    )
    def get(self, request, user_id):
        return Response(PresenceService.status(user_id, request.user))


# =============================================================================
# Blocks
# =============================================================================


class BlockListView(APIView):
    """
    GET  /api/v1/chat/blocks/ - Users I have blocked
    POST /api/v1/chat/blocks/ - Block a user
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="list_blocks",
        summary="List blocked users",
        responses={200: UserBlockSerializer(many=True)},
        tags=["Chat - Moderation"],
    )
    def get(self, request):
        blocks = ModerationService.list_blocks(request.user)
        return Response(UserBlockSerializer(blocks, many=True).data)

    @extend_schema(
        operation_id="block_user",
        summary="Block user",
        request=BlockCreateSerializer,
        responses={
            201: UserBlockSerializer,
            409: OpenApiResponse(description="User is already blocked"),
        },
        tags=["Chat - Moderation"],
    )
    def post(self, request):
        serializer = BlockCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        [blocked_user] = _resolve_users([serializer.validated_data["user_id"]])

        user_block = ModerationService.block(
            request.user, blocked_user, reason=serializer.validated_data["reason"]
        )
        return Response(UserBlockSerializer(user_block).data, status=status.HTTP_201_CREATED)


class BlockDetailView(APIView):
    """
    DELETE /api/v1/chat/blocks/{user_id}/ - Unblock (idempotent)
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="unblock_user",
        summary="Unblock user",
        responses={204: None},
        tags=["Chat - Moderation"],
    )
    def delete(self, request, user_id):
        blocked_user = User.objects.filter(pk=user_id).first()
        if blocked_user is None:
            raise NotFoundError(
                "User not found",
                error_code="USER_NOT_FOUND",
                details={"user_id": user_id},
            )
        ModerationService.unblock(request.user, blocked_user)
        return Response(status=status.HTTP_204_NO_CONTENT)
