"""
Test configuration and fixtures for chat tests.

This module provides:
- Users in each marketplace role (guest, host, second guest, admin)
- A conversation between guest and host created through the service layer
- A recording dispatcher double and an injectable clock
- API client helpers for authenticated requests

Process-wide presence state and the dispatcher singleton are reset around
every test.

Usage:
    def test_example(conversation, guest_client):
        response = guest_client.get(f'/api/v1/chat/conversations/{conversation.id}/')
        assert response.status_code == 200
"""

import pytest
from rest_framework.test import APIClient
from rest_framework_simplejwt.tokens import RefreshToken

from authentication.tests.factories import AdminFactory, ProviderFactory, UserFactory
from chat.dispatch import RealtimeDispatcher, set_dispatcher
from chat.presence import InMemorySessionRegistry, PresenceTracker, reset_presence
from chat.services import ConversationService


@pytest.fixture(autouse=True)
def _reset_realtime_state():
    reset_presence()
    set_dispatcher(None)
    yield
    reset_presence()
    set_dispatcher(None)


# =============================================================================
# User Fixtures
# =============================================================================


@pytest.fixture
def guest(db):
    """A customer."""
    return UserFactory(first_name="Gina", last_name="Guest")


@pytest.fixture
def other_guest(db):
    """A second customer (customers cannot chat with each other)."""
    return UserFactory()


@pytest.fixture
def host(db):
    """A property owner."""
    return ProviderFactory(first_name="Hank", last_name="Host")


@pytest.fixture
def admin(db):
    """A back-office admin (moderator)."""
    return AdminFactory()


@pytest.fixture
def outsider(db):
    """A provider who is not part of the test conversation."""
    return ProviderFactory()


# =============================================================================
# Conversation Fixtures
# =============================================================================


@pytest.fixture
def conversation(guest, host):
    """CUSTOMER_PROVIDER conversation created through the service layer."""
    conversation, _ = ConversationService.find_or_create([guest, host], created_by=guest)
    return conversation


@pytest.fixture
def group_conversation(guest, host, admin):
    conversation, _ = ConversationService.find_or_create(
        [guest, host, admin], created_by=admin
    )
    return conversation


# =============================================================================
# Realtime doubles
# =============================================================================


class RecordingDispatcher:
    """Dispatcher double that records every fan-out call."""

    def __init__(self):
        self.calls = []

    def __getattr__(self, name):
        if not name.startswith("dispatch_"):
            raise AttributeError(name)

        def record(*args):
            self.calls.append((name, args))

        return record

    def named(self, name):
        return [args for call_name, args in self.calls if call_name == name]


@pytest.fixture
def recording_dispatcher():
    dispatcher = RecordingDispatcher()
    set_dispatcher(dispatcher)
    return dispatcher


class FakeClock:
    """Manually advanced clock (seconds since the epoch)."""

    def __init__(self, start=1_700_000_000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def tracker(clock, monkeypatch):
    """Process-wide PresenceTracker driven by the fake clock."""
    tracker = PresenceTracker(clock=clock, typing_timeout=8)
    monkeypatch.setattr("chat.presence._tracker", tracker)
    return tracker


class FakeChannelLayer:
    """Channel layer double recording (channel_name, message) pairs."""

    def __init__(self, fail_for=()):
        self.sent = []
        self.fail_for = set(fail_for)

    async def send(self, channel, message):
        if channel in self.fail_for:
            raise ConnectionError(f"{channel} is gone")
        self.sent.append((channel, message))

    def payloads_for(self, channel):
        return [message["payload"] for name, message in self.sent if name == channel]


@pytest.fixture
def channel_layer():
    return FakeChannelLayer()


@pytest.fixture
def registry():
    return InMemorySessionRegistry()


@pytest.fixture
def live_dispatcher(registry, channel_layer):
    """Real RealtimeDispatcher wired to a private registry and fake layer."""
    dispatcher = RealtimeDispatcher(registry=registry, channel_layer=channel_layer)
    set_dispatcher(dispatcher)
    return dispatcher


# =============================================================================
# API Client Fixtures
# =============================================================================


def _client_for(user):
    client = APIClient()
    refresh = RefreshToken.for_user(user)
    client.credentials(HTTP_AUTHORIZATION=f"Bearer {refresh.access_token}")
    return client


@pytest.fixture
def api_client():
    return APIClient()


@pytest.fixture
def guest_client(guest):
    return _client_for(guest)


@pytest.fixture
def host_client(host):
    return _client_for(host)


@pytest.fixture
def admin_client(admin):
    return _client_for(admin)


@pytest.fixture
def outsider_client(outsider):
    return _client_for(outsider)
