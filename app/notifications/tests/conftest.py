"""
Test configuration and fixtures for notification tests.

This module provides:
- Recipient and actor users
- Notification fixtures (read/unread, chat message kind)
- API client helpers for authenticated requests

Usage:
    def test_example(user, unread_notification, authenticated_client):
        response = authenticated_client.get('/api/v1/notifications/')
        assert response.status_code == 200
"""

import pytest
from rest_framework.test import APIClient
from rest_framework_simplejwt.tokens import RefreshToken

from authentication.tests.factories import ProviderFactory, UserFactory
from notifications.models import NotificationKind
from notifications.tests.factories import NotificationFactory


# =============================================================================
# User Fixtures
# =============================================================================


@pytest.fixture
def user(db):
    """Create a customer to receive notifications."""
    return UserFactory()


@pytest.fixture
def other_user(db):
    """Create another user for ownership tests."""
    return UserFactory()


@pytest.fixture
def actor_user(db):
    """Create a host to act as notification actor (message sender)."""
    return ProviderFactory(first_name="Jane", last_name="Host")


# =============================================================================
# Notification Fixtures
# =============================================================================


@pytest.fixture
def unread_notification(user):
    return NotificationFactory(recipient=user)


@pytest.fixture
def read_notification(user):
    return NotificationFactory(recipient=user, is_read=True)


@pytest.fixture
def message_notification(user, actor_user):
    """A chat fallback notification like the dispatcher creates."""
    return NotificationFactory(
        recipient=user,
        actor=actor_user,
        notification_type=NotificationKind.MESSAGE,
        title="New message from Jane Host",
        message="Is the cabin free next weekend?",
        data={"conversation_id": 1, "message_id": 2, "sender_id": actor_user.id},
    )


# =============================================================================
# API Client Fixtures
# =============================================================================


@pytest.fixture
def api_client():
    return APIClient()


@pytest.fixture
def authenticated_client(api_client, user):
    """Return an API client authenticated as `user`."""
    refresh = RefreshToken.for_user(user)
    api_client.credentials(HTTP_AUTHORIZATION=f"Bearer {refresh.access_token}")
    return api_client
