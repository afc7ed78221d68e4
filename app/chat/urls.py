"""
URL configuration for chat API.

URL Structure:
    Conversations:
        /conversations/                  GET, POST
        /conversations/{id}/             GET, DELETE
        /conversations/{id}/messages/    GET, POST
        /conversations/{id}/read/        POST
        /conversations/{id}/typing/      GET, POST

    Messages:
        /messages/{id}/read/             POST
        /messages/{id}/flag/             POST
        /messages/{id}/moderate/         POST
        /messages/search/                GET

    Badges and presence:
        /unread/                         GET
        /presence/{user_id}/             GET

    Blocks:
        /blocks/                         GET, POST
        /blocks/{user_id}/               DELETE

All URLs are prefixed with /api/v1/chat/ in the main URL configuration.
"""

from django.urls import include, path
from rest_framework.routers import DefaultRouter

from chat.views import (
    BlockDetailView,
    BlockListView,
    ConversationViewSet,
    MessageViewSet,
    UnreadSummaryView,
    UserPresenceView,
)

router = DefaultRouter()
router.register(r"conversations", ConversationViewSet, basename="conversation")
router.register(r"messages", MessageViewSet, basename="message")

app_name = "chat"

urlpatterns = [
    path("", include(router.urls)),
    path("unread/", UnreadSummaryView.as_view(), name="unread-summary"),
    path("presence/<int:user_id>/", UserPresenceView.as_view(), name="presence-user"),
    path("blocks/", BlockListView.as_view(), name="block-list"),
    path("blocks/<int:user_id>/", BlockDetailView.as_view(), name="block-detail"),
]
