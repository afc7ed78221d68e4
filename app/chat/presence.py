"""
Presence and typing state for chat.

Nothing here is persisted. Two pieces of ephemeral state are tracked:

    Sessions: which live WebSocket sessions a user has, and which logical
        channels (message, typing, status, message_status) each one
        listens on. Held behind the SessionRegistry interface so the
        dispatcher can be tested with a fake and scaled out behind a
        shared store.

    Presence/typing: online flag, last-seen timestamp and per-conversation
        typing sets with a refresh deadline, held by PresenceTracker. Typing
        deadlines live in a TypingStore so the Celery beat sweep, which
        runs in a worker process, sees what the WebSocket processes wrote.

Registries:
    InMemorySessionRegistry: Process-local. State is lost on restart and
        is not shared between replicas.
    CacheSessionRegistry: Django cache (Redis in production), shared by
        every replica. Entries expire after CHAT_SESSION_TTL_SECONDS unless
        refreshed by a heartbeat.

Typing stores:
    CacheTypingStore: Django cache (default). Shared with the worker.
    InMemoryTypingStore: Process-local; reads still expire entries lazily
        but a sweep in another process finds nothing.

The active implementations are chosen by settings:

    CHAT_SESSION_REGISTRY = "chat.presence.CacheSessionRegistry"
    CHAT_TYPING_STORE = "chat.presence.CacheTypingStore"

Usage:
    from chat.presence import get_presence_tracker, get_session_registry

    registry = get_session_registry()
    registry.register(user.id, channel_name, REALTIME_CHANNELS.ALL)

    tracker = get_presence_tracker()
    tracker.start_typing(user.id, conversation.id)
    tracker.typing_users(conversation.id)  # {user.id}
"""

from __future__ import annotations

import logging
import threading
import time
from datetime import datetime
from datetime import timezone as dt_timezone
from typing import TYPE_CHECKING

from django.conf import settings
from django.core.cache import cache
from django.utils.module_loading import import_string

from chat.constants import PRESENCE_CONFIG, REALTIME_CHANNELS

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

logger = logging.getLogger(__name__)


# =============================================================================
# Session registries
# =============================================================================


class SessionRegistry:
    """
    Interface for the live-session registry.

    A session is identified by its channel layer name (one per WebSocket
    connection). A user may hold any number of sessions at once.
    """

    def register(self, user_id: int, session_id: str, channels: Iterable[str] = REALTIME_CHANNELS.ALL) -> None:
        raise NotImplementedError

    def unregister(self, user_id: int, session_id: str) -> None:
        raise NotImplementedError

    def sessions_for(self, user_id: int, channel: str | None = None) -> list[str]:
        """Session ids for user_id, optionally only those listening on channel."""
        raise NotImplementedError

    def touch(self, user_id: int, session_id: str) -> None:
        """Heartbeat. No-op for registries without expiry."""

    def has_sessions(self, user_id: int) -> bool:
        return bool(self.sessions_for(user_id))

    def clear(self) -> None:
        raise NotImplementedError


class InMemorySessionRegistry(SessionRegistry):
    """Process-local registry guarded by a lock."""

    def __init__(self):
        self._lock = threading.Lock()
        self._sessions: dict[int, dict[str, frozenset[str]]] = {}

    def register(self, user_id, session_id, channels=REALTIME_CHANNELS.ALL):
        with self._lock:
            self._sessions.setdefault(int(user_id), {})[session_id] = frozenset(channels)

    def unregister(self, user_id, session_id):
        with self._lock:
            user_sessions = self._sessions.get(int(user_id))
            if not user_sessions:
                return
            user_sessions.pop(session_id, None)
            if not user_sessions:
                del self._sessions[int(user_id)]

    def sessions_for(self, user_id, channel=None):
        with self._lock:
            user_sessions = dict(self._sessions.get(int(user_id), {}))
        return [
            session_id
            for session_id, channels in user_sessions.items()
            if channel is None or channel in channels
        ]

    def clear(self):
        with self._lock:
            self._sessions.clear()


class CacheSessionRegistry(SessionRegistry):
    """
    Registry stored in the Django cache, one key per user.

    Each key holds {session_id: [channels, expires_at]}. Writes are a
    read-modify-write of that small mapping; a lost concurrent update only
    affects presence hints, which are best-effort by nature.
    """

    def __init__(self, ttl: int | None = None, clock: Callable[[], float] = time.time):
        self.ttl = ttl or settings.CHAT_SESSION_TTL_SECONDS
        self.clock = clock

    def _key(self, user_id) -> str:
        return f"{PRESENCE_CONFIG.KEY_PREFIX_SESSIONS}:{int(user_id)}"

    def _load(self, user_id) -> dict:
        now = self.clock()
        entries = cache.get(self._key(user_id)) or {}
        return {
            session_id: entry
            for session_id, entry in entries.items()
            if entry[1] > now
        }

    def _store(self, user_id, entries: dict) -> None:
        if entries:
            cache.set(self._key(user_id), entries, timeout=self.ttl)
        else:
            cache.delete(self._key(user_id))

    def register(self, user_id, session_id, channels=REALTIME_CHANNELS.ALL):
        entries = self._load(user_id)
        entries[session_id] = [sorted(channels), self.clock() + self.ttl]
        self._store(user_id, entries)

    def unregister(self, user_id, session_id):
        entries = self._load(user_id)
        entries.pop(session_id, None)
        self._store(user_id, entries)

    def touch(self, user_id, session_id):
        entries = self._load(user_id)
        if session_id in entries:
            entries[session_id][1] = self.clock() + self.ttl
            self._store(user_id, entries)

    def sessions_for(self, user_id, channel=None):
        return [
            session_id
            for session_id, (channels, _expires_at) in self._load(user_id).items()
            if channel is None or channel in channels
        ]

    def clear(self):
        # Keys expire on their own; nothing to enumerate in a generic cache
        pass


_registry: SessionRegistry | None = None
_registry_lock = threading.RLock()


def get_session_registry() -> SessionRegistry:
    """Process-wide registry built from CHAT_SESSION_REGISTRY."""
    global _registry
    if _registry is None:
        with _registry_lock:
            if _registry is None:
                _registry = import_string(settings.CHAT_SESSION_REGISTRY)()
                logger.info(f"Session registry: {settings.CHAT_SESSION_REGISTRY}")
    return _registry


# =============================================================================
# Typing stores
# =============================================================================


class TypingStore:
    """
    Storage for typing deadlines, one {user_id: deadline} mapping per
    conversation.

    Stores only load and save mappings; PresenceTracker owns the expiry
    rules.
    """

    def load(self, conversation_id: int) -> dict[int, float]:
        raise NotImplementedError

    def save(self, conversation_id: int, typers: dict[int, float]) -> None:
        """Replace the mapping; an empty one removes the conversation."""
        raise NotImplementedError

    def conversation_ids(self) -> list[int]:
        """Conversations that currently hold entries (possibly expired)."""
        raise NotImplementedError

    def clear(self) -> None:
        raise NotImplementedError


class InMemoryTypingStore(TypingStore):
    """
    Process-local store.

    Only suitable when the ASGI server and the beat sweep share one
    process; a separate Celery worker sees an empty store.
    """

    def __init__(self):
        self._typing: dict[int, dict[int, float]] = {}

    def load(self, conversation_id):
        return dict(self._typing.get(int(conversation_id), {}))

    def save(self, conversation_id, typers):
        if typers:
            self._typing[int(conversation_id)] = dict(typers)
        else:
            self._typing.pop(int(conversation_id), None)

    def conversation_ids(self):
        return list(self._typing)

    def clear(self):
        self._typing.clear()


class CacheTypingStore(TypingStore):
    """
    Store in the Django cache, shared by the ASGI processes and the Celery
    worker running the beat sweep.

    One key per conversation plus an index key listing conversations with
    entries. Keys live TYPING_SWEEP_GRACE_SECONDS past the typing timeout.
    Like CacheSessionRegistry, writes are read-modify-write; a lost
    concurrent update can at worst delay a typing_stop until the key
    expires.
    """

    def __init__(self, ttl: int | None = None):
        self.ttl = ttl or (
            settings.CHAT_TYPING_TIMEOUT_SECONDS + PRESENCE_CONFIG.TYPING_SWEEP_GRACE_SECONDS
        )

    def _key(self, conversation_id) -> str:
        return f"{PRESENCE_CONFIG.KEY_PREFIX_TYPING}:{int(conversation_id)}"

    def load(self, conversation_id):
        entries = cache.get(self._key(conversation_id)) or {}
        return {int(user_id): deadline for user_id, deadline in entries.items()}

    def save(self, conversation_id, typers):
        index = set(cache.get(PRESENCE_CONFIG.KEY_TYPING_INDEX) or ())
        if typers:
            cache.set(self._key(conversation_id), dict(typers), timeout=self.ttl)
            index.add(int(conversation_id))
        else:
            cache.delete(self._key(conversation_id))
            index.discard(int(conversation_id))
        cache.set(PRESENCE_CONFIG.KEY_TYPING_INDEX, sorted(index), timeout=None)

    def conversation_ids(self):
        return list(cache.get(PRESENCE_CONFIG.KEY_TYPING_INDEX) or ())

    def clear(self):
        for conversation_id in self.conversation_ids():
            cache.delete(self._key(conversation_id))
        cache.delete(PRESENCE_CONFIG.KEY_TYPING_INDEX)


# =============================================================================
# Presence and typing
# =============================================================================


class PresenceTracker:
    """
    Online status, last-seen time and typing sets.

    A user is online while at least one session is registered for them;
    set_online/set_offline report whether the status actually changed so
    callers only broadcast transitions.

    Typing entries carry a deadline. Reads ignore expired entries, and
    sweep_expired() removes them so their typing_stop can be broadcast.

    Args:
        registry: Session registry consulted for online status
        clock: Returns seconds since the epoch; injectable for tests
        typing_timeout: Seconds an unrefreshed typing entry stays visible
        typing_store: Where typing deadlines live; built from
            CHAT_TYPING_STORE when None
    """

    def __init__(
        self,
        registry: SessionRegistry | None = None,
        clock: Callable[[], float] = time.time,
        typing_timeout: float | None = None,
        typing_store: TypingStore | None = None,
    ):
        self.registry = registry or get_session_registry()
        self.clock = clock
        self.typing_timeout = (
            typing_timeout
            if typing_timeout is not None
            else settings.CHAT_TYPING_TIMEOUT_SECONDS
        )
        self.typing = typing_store or import_string(settings.CHAT_TYPING_STORE)()
        self._lock = threading.Lock()
        self._last_seen: dict[int, float] = {}

    # -- presence -------------------------------------------------------------

    def set_online(self, user_id: int, session_id: str, channels: Iterable[str] = REALTIME_CHANNELS.ALL) -> bool:
        """
        Register a session. Returns True if the user was offline before.
        """
        was_online = self.registry.has_sessions(user_id)
        self.registry.register(user_id, session_id, channels)
        self._touch_last_seen(user_id)
        return not was_online

    def set_offline(self, user_id: int, session_id: str) -> bool:
        """
        Drop a session. Returns True if it was the user's last one.

        Typing entries of a user who went offline are cleared.
        """
        self.registry.unregister(user_id, session_id)
        self._touch_last_seen(user_id)
        if self.registry.has_sessions(user_id):
            return False

        with self._lock:
            for conversation_id in self.typing.conversation_ids():
                typers = self.typing.load(conversation_id)
                if typers.pop(int(user_id), None) is not None:
                    self.typing.save(conversation_id, typers)
        return True

    def is_online(self, user_id: int) -> bool:
        return self.registry.has_sessions(user_id)

    def last_seen(self, user_id: int) -> datetime | None:
        """Last connect/disconnect/heartbeat time, or None if never seen."""
        with self._lock:
            seen = self._last_seen.get(int(user_id))
        if seen is None:
            seen = cache.get(f"{PRESENCE_CONFIG.KEY_PREFIX_LAST_SEEN}:{int(user_id)}")
        if seen is None:
            return None
        return datetime.fromtimestamp(seen, tz=dt_timezone.utc)

    def heartbeat(self, user_id: int, session_id: str) -> None:
        self.registry.touch(user_id, session_id)
        self._touch_last_seen(user_id)

    def _touch_last_seen(self, user_id) -> None:
        now = self.clock()
        with self._lock:
            self._last_seen[int(user_id)] = now
        cache.set(
            f"{PRESENCE_CONFIG.KEY_PREFIX_LAST_SEEN}:{int(user_id)}",
            now,
            timeout=None,
        )

    # -- typing ---------------------------------------------------------------

    def start_typing(self, user_id: int, conversation_id: int) -> bool:
        """
        Record or refresh a typing entry.

        Returns:
            True if the user was not already typing (a start event is due)
        """
        now = self.clock()
        with self._lock:
            typers = self.typing.load(conversation_id)
            previous = typers.get(int(user_id))
            typers[int(user_id)] = now + self.typing_timeout
            self.typing.save(conversation_id, typers)
        return previous is None or previous <= now

    def stop_typing(self, user_id: int, conversation_id: int) -> bool:
        """
        Clear a typing entry. Idempotent.

        Returns:
            True if an unexpired entry was removed (a stop event is due)
        """
        now = self.clock()
        with self._lock:
            typers = self.typing.load(conversation_id)
            deadline = typers.pop(int(user_id), None)
            if deadline is not None:
                self.typing.save(conversation_id, typers)
        return deadline is not None and deadline > now

    def typing_users(self, conversation_id: int) -> set[int]:
        """Users currently typing in the conversation (expired entries ignored)."""
        now = self.clock()
        typers = self.typing.load(conversation_id)
        return {user_id for user_id, deadline in typers.items() if deadline > now}

    def typing_conversations(self, user_id: int) -> list[int]:
        """Conversations in which user_id has an unexpired typing entry."""
        now = self.clock()
        return [
            conversation_id
            for conversation_id in self.typing.conversation_ids()
            if self.typing.load(conversation_id).get(int(user_id), 0) > now
        ]

    def sweep_expired(self) -> list[tuple[int, int]]:
        """
        Drop every expired typing entry.

        Returns:
            (conversation_id, user_id) pairs that were cleared
        """
        now = self.clock()
        cleared = []
        with self._lock:
            for conversation_id in self.typing.conversation_ids():
                typers = self.typing.load(conversation_id)
                expired = [uid for uid, deadline in typers.items() if deadline <= now]
                for user_id in expired:
                    del typers[user_id]
                    cleared.append((conversation_id, user_id))
                if expired or not typers:
                    self.typing.save(conversation_id, typers)
        return cleared

    def reset(self) -> None:
        with self._lock:
            self.typing.clear()
            self._last_seen.clear()


_tracker: PresenceTracker | None = None


def get_presence_tracker() -> PresenceTracker:
    """Process-wide tracker bound to the process-wide session registry."""
    global _tracker
    if _tracker is None:
        with _registry_lock:
            if _tracker is None:
                _tracker = PresenceTracker()
    return _tracker


def reset_presence() -> None:
    """Drop process-wide presence state (tests, worker restarts)."""
    global _registry, _tracker
    with _registry_lock:
        if _registry is not None:
            _registry.clear()
        _registry = None
        _tracker = None
