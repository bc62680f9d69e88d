"""
Presence tracking for realtime connections.

A user is online while they hold at least one open realtime connection.
The tracker maps user id -> set of connection handles (Channels channel
names), so several tabs of the same user count as one presence.

Backends:
    RedisPresenceBackend: Shared across gateway processes. Add/remove run as
        Lua scripts returning (changed, remaining) so the first-connection and
        last-connection decisions are atomic per user.
    LocalPresenceBackend: Process-local and lock-guarded. For single-process
        deployments and tests.

The backend is selected with settings.CHAT_PRESENCE_BACKEND (dotted path).

Design Decisions:
    - The tracker owns "is this user online"; User.is_online is a cache
      written only on first connect and last disconnect, and may be briefly
      stale while the last tab of a session closes
    - Every handle carries a heartbeat timestamp; handles whose gateway
      process died are removed by prune_stale() (see chat/tasks.py)
    - Broadcasting online/offline events is the gateway's job; the tracker
      only reports the transitions

Usage:
    from chat.presence import get_presence_tracker

    tracker = get_presence_tracker()
    came_online = tracker.connect(user.id, self.channel_name)
    went_offline = tracker.disconnect(user.id, self.channel_name)
"""

from __future__ import annotations

import logging
import threading
import time
from abc import ABC, abstractmethod
from functools import lru_cache
from typing import TYPE_CHECKING

from django.conf import settings
from django.utils import timezone
from django.utils.module_loading import import_string
from redis.exceptions import RedisError

from chat.constants import PRESENCE_CONFIG
from chat.store import get_chat_store
from core.exceptions import StorageError

if TYPE_CHECKING:
    from collections.abc import Iterable

    from chat.store.base import ChatStore

logger = logging.getLogger(__name__)

DEFAULT_PRESENCE_BACKEND = "chat.presence.RedisPresenceBackend"


# =============================================================================
# Backends
# =============================================================================


class PresenceBackend(ABC):
    """
    Storage for the user -> connection handles mapping.

    User ids are passed as strings. Timestamps are epoch seconds.
    """

    @abstractmethod
    def add(self, user_id: str, handle: str, now: float) -> tuple[bool, int]:
        """
        Register a handle.

        Returns:
            (came_online, remaining): came_online is True only when this
            handle is the user's first
        """

    @abstractmethod
    def remove(self, user_id: str, handle: str) -> tuple[bool, int]:
        """
        Deregister a handle.

        Returns:
            (went_offline, remaining): went_offline is True only when this
            call removed the user's last handle
        """

    @abstractmethod
    def touch(self, handle: str, now: float) -> bool:
        """Refresh a handle's heartbeat. Returns False for unknown handles."""

    @abstractmethod
    def count(self, user_id: str) -> int:
        """Number of open handles for a user."""

    @abstractmethod
    def online(self, user_ids: Iterable[str]) -> set[str]:
        """Subset of user_ids with at least one open handle."""

    @abstractmethod
    def stale_handles(self, cutoff: float) -> list[tuple[str, str]]:
        """(user_id, handle) pairs whose last heartbeat is older than cutoff."""

    @abstractmethod
    def ping(self) -> bool:
        """Check that the backend is reachable."""

    @abstractmethod
    def clear(self) -> None:
        """Forget every handle."""


class LocalPresenceBackend(PresenceBackend):
    """
    In-process presence backend guarded by a lock.

    Only correct when every gateway connection lives in this process.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._handles_by_user: dict[str, set[str]] = {}
        self._heartbeats: dict[str, tuple[str, float]] = {}

    def add(self, user_id, handle, now):
        with self._lock:
            handles = self._handles_by_user.setdefault(user_id, set())
            is_new = handle not in handles
            handles.add(handle)
            self._heartbeats[handle] = (user_id, now)
            return is_new and len(handles) == 1, len(handles)

    def remove(self, user_id, handle):
        with self._lock:
            self._heartbeats.pop(handle, None)
            handles = self._handles_by_user.get(user_id)
            if not handles or handle not in handles:
                return False, len(handles or ())
            handles.discard(handle)
            if handles:
                return False, len(handles)
            del self._handles_by_user[user_id]
            return True, 0

    def touch(self, handle, now):
        with self._lock:
            entry = self._heartbeats.get(handle)
            if entry is None:
                return False
            self._heartbeats[handle] = (entry[0], now)
            return True

    def count(self, user_id):
        with self._lock:
            return len(self._handles_by_user.get(user_id, ()))

    def online(self, user_ids):
        with self._lock:
            return {user_id for user_id in user_ids if self._handles_by_user.get(user_id)}

    def stale_handles(self, cutoff):
        with self._lock:
            return [
                (user_id, handle)
                for handle, (user_id, seen) in self._heartbeats.items()
                if seen < cutoff
            ]

    def ping(self):
        return True

    def clear(self):
        with self._lock:
            self._handles_by_user.clear()
            self._heartbeats.clear()


class RedisPresenceBackend(PresenceBackend):
    """
    Redis presence backend shared by every gateway process.

    Keys:
        presence:user:<user_id>  SET of handles
        presence:handles         ZSET handle -> last heartbeat
        presence:owners          HASH handle -> user_id
    """

    # Keys: [user_handles, heartbeats, owners]
    # Args: [handle, user_id, now]
    LUA_ADD_HANDLE = """
    local added = redis.call('SADD', KEYS[1], ARGV[1])
    redis.call('ZADD', KEYS[2], ARGV[3], ARGV[1])
    redis.call('HSET', KEYS[3], ARGV[1], ARGV[2])
    local remaining = redis.call('SCARD', KEYS[1])
    if added == 1 and remaining == 1 then
        return {1, remaining}
    end
    return {0, remaining}
    """

    # Keys: [user_handles, heartbeats, owners]
    # Args: [handle]
    LUA_REMOVE_HANDLE = """
    local removed = redis.call('SREM', KEYS[1], ARGV[1])
    redis.call('ZREM', KEYS[2], ARGV[1])
    redis.call('HDEL', KEYS[3], ARGV[1])
    local remaining = redis.call('SCARD', KEYS[1])
    if removed == 1 and remaining == 0 then
        return {1, 0}
    end
    return {0, remaining}
    """

    # Keys: [heartbeats, owners]
    # Args: [handle, now]
    LUA_TOUCH_HANDLE = """
    if redis.call('HEXISTS', KEYS[2], ARGV[1]) == 1 then
        redis.call('ZADD', KEYS[1], ARGV[2], ARGV[1])
        return 1
    end
    return 0
    """

    def __init__(self, alias: str = "default"):
        self.alias = alias
        self._scripts = {}

    def _client(self):
        from django_redis import get_redis_connection

        return get_redis_connection(self.alias)

    def _script(self, client, source: str):
        script = self._scripts.get(source)
        if script is None:
            script = self._scripts[source] = client.register_script(source)
        return script

    @staticmethod
    def _user_key(user_id: str) -> str:
        return f"{PRESENCE_CONFIG.KEY_PREFIX_USER_CONNECTIONS}:{user_id}"

    def _run(self, action: str, func):
        try:
            return func(self._client())
        except RedisError as exc:
            logger.exception(f"Presence backend failed to {action}")
            raise StorageError(f"Presence unavailable: could not {action}") from exc

    def add(self, user_id, handle, now):
        def _add(client):
            changed, remaining = self._script(client, self.LUA_ADD_HANDLE)(
                keys=[
                    self._user_key(user_id),
                    PRESENCE_CONFIG.KEY_PREFIX_HANDLE_HEARTBEAT,
                    PRESENCE_CONFIG.KEY_HANDLE_OWNERS,
                ],
                args=[handle, user_id, now],
            )
            return bool(changed), int(remaining)

        return self._run("register connection", _add)

    def remove(self, user_id, handle):
        def _remove(client):
            changed, remaining = self._script(client, self.LUA_REMOVE_HANDLE)(
                keys=[
                    self._user_key(user_id),
                    PRESENCE_CONFIG.KEY_PREFIX_HANDLE_HEARTBEAT,
                    PRESENCE_CONFIG.KEY_HANDLE_OWNERS,
                ],
                args=[handle],
            )
            return bool(changed), int(remaining)

        return self._run("deregister connection", _remove)

    def touch(self, handle, now):
        def _touch(client):
            touched = self._script(client, self.LUA_TOUCH_HANDLE)(
                keys=[
                    PRESENCE_CONFIG.KEY_PREFIX_HANDLE_HEARTBEAT,
                    PRESENCE_CONFIG.KEY_HANDLE_OWNERS,
                ],
                args=[handle, now],
            )
            return bool(touched)

        return self._run("refresh heartbeat", _touch)

    def count(self, user_id):
        return self._run("count connections", lambda client: int(client.scard(self._user_key(user_id))))

    def online(self, user_ids):
        user_ids = list(user_ids)
        if not user_ids:
            return set()

        def _online(client):
            pipeline = client.pipeline()
            for user_id in user_ids:
                pipeline.scard(self._user_key(user_id))
            counts = pipeline.execute()
            return {user_id for user_id, count in zip(user_ids, counts) if count}

        return self._run("read presence", _online)

    def stale_handles(self, cutoff):
        def _stale(client):
            handles = client.zrangebyscore(
                PRESENCE_CONFIG.KEY_PREFIX_HANDLE_HEARTBEAT, "-inf", f"({cutoff}"
            )
            if not handles:
                return []
            owners = client.hmget(PRESENCE_CONFIG.KEY_HANDLE_OWNERS, handles)
            return [
                (owner.decode("utf-8"), handle.decode("utf-8"))
                for handle, owner in zip(handles, owners)
                if owner is not None
            ]

        return self._run("scan heartbeats", _stale)

    def ping(self):
        try:
            return bool(self._client().ping())
        except RedisError:
            logger.warning("Presence backend ping failed")
            return False

    def clear(self):
        def _clear(client):
            keys = list(client.scan_iter(f"{PRESENCE_CONFIG.KEY_PREFIX_USER_CONNECTIONS}:*"))
            keys += [
                PRESENCE_CONFIG.KEY_PREFIX_HANDLE_HEARTBEAT,
                PRESENCE_CONFIG.KEY_HANDLE_OWNERS,
            ]
            client.delete(*keys)

        self._run("clear presence", _clear)


@lru_cache(maxsize=None)
def _load_backend(dotted_path: str) -> PresenceBackend:
    return import_string(dotted_path)()


def get_presence_backend() -> PresenceBackend:
    """Get the backend configured by CHAT_PRESENCE_BACKEND."""
    return _load_backend(
        getattr(settings, "CHAT_PRESENCE_BACKEND", DEFAULT_PRESENCE_BACKEND)
    )


# =============================================================================
# Tracker
# =============================================================================


class PresenceTracker:
    """
    Online/offline accounting on top of a presence backend.

    connect() and disconnect() report transitions; the caller broadcasts
    user_online / user_offline when they return True.
    """

    def __init__(self, backend: PresenceBackend | None = None, store: ChatStore | None = None):
        self.backend = backend or get_presence_backend()
        self.store = store or get_chat_store()

    def connect(self, user_id, handle: str) -> bool:
        """
        Register a connection handle for a user.

        Returns:
            True if this is the user's first open connection
        """
        came_online, remaining = self.backend.add(str(user_id), handle, time.time())
        if came_online:
            self.store.update_user_presence(user_id, True, timezone.now())
        logger.info(
            f"Presence: user {user_id} connected ({remaining} open connection(s))"
        )
        return came_online

    def disconnect(self, user_id, handle: str) -> bool:
        """
        Deregister a connection handle.

        Returns:
            True if the user has no open connections left
        """
        went_offline, remaining = self.backend.remove(str(user_id), handle)
        if went_offline:
            self.store.update_user_presence(user_id, False, timezone.now())
        logger.info(
            f"Presence: user {user_id} disconnected ({remaining} open connection(s))"
        )
        return went_offline

    def touch(self, handle: str) -> bool:
        """Refresh the heartbeat of an open connection."""
        return self.backend.touch(handle, time.time())

    def is_online(self, user_id) -> bool:
        """True iff the user has at least one open connection."""
        return self.backend.count(str(user_id)) > 0

    def connection_count(self, user_id) -> int:
        """Number of open connections for a user."""
        return self.backend.count(str(user_id))

    def online_user_ids(self, user_ids: Iterable) -> set:
        """Return the members of user_ids that are currently online."""
        user_ids = list(user_ids)
        online = self.backend.online(str(user_id) for user_id in user_ids)
        return {user_id for user_id in user_ids if str(user_id) in online}

    def prune_stale(self, max_age: float | None = None) -> list[str]:
        """
        Remove handles whose heartbeat expired.

        A handle goes stale when its gateway process dies without running
        the disconnect path.

        Returns:
            Ids of users that went offline as a result
        """
        if max_age is None:
            max_age = PRESENCE_CONFIG.PRESENCE_TTL_SECONDS
        went_offline = []
        for user_id, handle in self.backend.stale_handles(time.time() - max_age):
            if self.disconnect(user_id, handle):
                went_offline.append(user_id)
        if went_offline:
            logger.info(f"Presence: pruned stale connections, {len(went_offline)} user(s) offline")
        return went_offline


def get_presence_tracker() -> PresenceTracker:
    """Build a tracker on the configured backend and store."""
    return PresenceTracker()
