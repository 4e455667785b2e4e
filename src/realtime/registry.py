"""Connection registry mapping users to their live connection."""

import logging
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, FrozenSet, List, Optional

from src.realtime.config import ChangeKind, RealtimeConfig

logger = logging.getLogger(__name__)


class ConnectionHandle:
    """A live bidirectional transport session owned by the transport layer.

    The core only stores the handle and pushes events through it. Both
    ``send`` and ``close`` must be non-blocking; subclasses implement
    ``_push`` and ``_terminate`` for their transport.
    """

    def __init__(self, user_id: str, connection_id: Optional[str] = None):
        self.connection_id = connection_id or uuid.uuid4().hex[:16]
        self.user_id = user_id
        self.connected_at = datetime.now(timezone.utc)
        self.last_heartbeat = self.connected_at
        self.closed = False
        self.close_code: Optional[int] = None
        self.close_reason: Optional[str] = None
        self.sent_count = 0

    def send(self, event) -> bool:
        """Push an outbound event. Returns False if the handle is closed."""
        if self.closed:
            return False
        self._push(event)
        self.sent_count += 1
        return True

    def close(self, code: int = 1000, reason: str = "") -> None:
        """Terminate the session. Closing twice is a no-op."""
        if self.closed:
            return
        self.closed = True
        self.close_code = code
        self.close_reason = reason
        self._terminate(code, reason)

    def touch(self) -> None:
        self.last_heartbeat = datetime.now(timezone.utc)

    def _push(self, event) -> None:
        raise NotImplementedError

    def _terminate(self, code: int, reason: str) -> None:
        pass

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(connection_id={self.connection_id!r}, "
            f"user_id={self.user_id!r}, closed={self.closed})"
        )


@dataclass
class RegistryChange:
    """A registry transition reported to listeners."""

    kind: ChangeKind
    user_id: str
    handle: ConnectionHandle
    replaced: Optional[ConnectionHandle] = None


Listener = Callable[[RegistryChange], None]


class ConnectionRegistry:
    """Thread-safe map from user id to that user's single live connection.

    A new connection for a user replaces the previous one, which is
    force-closed (last connection wins). Removal compares handle identity
    so a late disconnect of a superseded handle can never evict the
    connection that replaced it.
    """

    def __init__(self, config: Optional[RealtimeConfig] = None):
        self._config = config or RealtimeConfig()
        self._connections: Dict[str, ConnectionHandle] = {}
        self._listeners: List[Listener] = []
        self._replaced_total = 0
        self._lock = threading.Lock()

    def add_listener(self, listener: Listener) -> None:
        """Subscribe to registry changes. Listeners run outside the lock."""
        self._listeners.append(listener)

    def register(self, user_id: str, handle: ConnectionHandle) -> Optional[RegistryChange]:
        """Map *user_id* to *handle*, closing any previous live handle.

        Returns the change that was applied, or None when *handle* was
        already the registered connection for the user.
        """
        with self._lock:
            previous = self._connections.get(user_id)
            if previous is handle:
                return None
            self._connections[user_id] = handle
            if previous is not None:
                self._replaced_total += 1

        if previous is not None:
            previous.close(self._config.replaced_close_code, self._config.replaced_close_reason)
            logger.info(
                "Replaced connection %s with %s for user=%s",
                previous.connection_id,
                handle.connection_id,
                user_id,
            )
            change = RegistryChange(ChangeKind.REPLACED, user_id, handle, replaced=previous)
        else:
            logger.info("Registered connection %s for user=%s", handle.connection_id, user_id)
            change = RegistryChange(ChangeKind.CONNECTED, user_id, handle)

        self._notify(change)
        return change

    def unregister(self, handle: ConnectionHandle) -> Optional[str]:
        """Remove *handle* if it is still the current connection for its user.

        Returns the affected user id, or None when the handle was unknown
        or had already been superseded (the registry is left unchanged).
        """
        with self._lock:
            user_id = handle.user_id
            current = self._connections.get(user_id)
            if current is not handle:
                removed = False
            else:
                del self._connections[user_id]
                removed = True

        if not removed:
            if current is None:
                logger.debug(
                    "Ignoring unregister of unknown connection %s (user=%s)",
                    handle.connection_id,
                    user_id,
                )
            else:
                logger.info(
                    "Ignoring unregister of superseded connection %s; user=%s is on %s",
                    handle.connection_id,
                    user_id,
                    current.connection_id,
                )
            return None

        logger.info("Unregistered connection %s for user=%s", handle.connection_id, user_id)
        self._notify(RegistryChange(ChangeKind.DISCONNECTED, user_id, handle))
        return user_id

    def lookup(self, user_id: str) -> Optional[ConnectionHandle]:
        """Return the live connection for *user_id*, or None if offline."""
        return self._connections.get(user_id)

    def is_online(self, user_id: str) -> bool:
        return user_id in self._connections

    def all_online_user_ids(self) -> FrozenSet[str]:
        """Snapshot of every user with a live connection."""
        with self._lock:
            return frozenset(self._connections)

    def get_connection_count(self) -> int:
        return len(self._connections)

    def get_stats(self) -> dict:
        """Return a summary of registry statistics."""
        return {
            "online_users": self.get_connection_count(),
            "replaced_total": self._replaced_total,
            "listeners": len(self._listeners),
        }

    def reset(self) -> None:
        """Clear all connections (useful for testing)."""
        with self._lock:
            self._connections.clear()
            self._replaced_total = 0

    def _notify(self, change: RegistryChange) -> None:
        for listener in list(self._listeners):
            try:
                listener(change)
            except Exception:
                logger.exception(
                    "Registry listener failed for %s user=%s", change.kind.value, change.user_id
                )
