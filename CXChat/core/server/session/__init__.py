"""
Session registry for live connections.

Maps a user identity to the set of connections currently open for that
user (one per browser tab or device). The registry is process-local and
in-memory; it is created once by the application context and handed to
every component that needs it.
"""

import logging
import threading
from typing import Dict, List, Optional, Set

from CXChat.core.server.interfaces import TransportConnection

logger = logging.getLogger(__name__)


class SessionRegistry:
    """
    Registry of live connections keyed by user identity.

    Every map operation runs under one lock and never awaits while holding
    it, so a disconnect racing an ``emit`` sees either the old or the new
    state, never a half-updated one. Readers get snapshot copies.

    Invariants:
        - a connection id belongs to at most one user
        - no user is kept with an empty connection set
    """

    def __init__(self):
        self._lock = threading.RLock()
        # user -> conn ids
        self._rooms: Dict[str, Set[str]] = {}
        # conn id -> connection
        self._connections: Dict[str, TransportConnection] = {}
        # conn id -> user
        self._owners: Dict[str, str] = {}

    def register(self, connection: TransportConnection, user_id: str) -> None:
        """
        Bind a connection to a user's room.

        Idempotent for the same (connection, user). Re-binding a connection
        to a different user moves it.

        Args:
            connection: Live connection
            user_id: Verified user identity
        """
        conn_id = connection.conn_id
        with self._lock:
            previous = self._owners.get(conn_id)
            if previous == user_id:
                self._connections[conn_id] = connection
                return
            if previous is not None:
                self._discard_locked(previous, conn_id)
            self._rooms.setdefault(user_id, set()).add(conn_id)
            self._connections[conn_id] = connection
            self._owners[conn_id] = user_id
            count = len(self._rooms[user_id])

        logger.debug("Registered connection %s for user %s (total connections: %d)",
                     conn_id, user_id, count)

    def unregister(self, conn_id: str) -> Optional[str]:
        """
        Remove a connection.

        Safe for ids that were never registered or were already removed.

        Args:
            conn_id: Connection id

        Returns:
            The owning user id, or None if the connection was not registered
        """
        with self._lock:
            user_id = self._owners.pop(conn_id, None)
            self._connections.pop(conn_id, None)
            if user_id is None:
                return None
            self._discard_locked(user_id, conn_id)

        logger.debug("Unregistered connection %s for user %s", conn_id, user_id)
        return user_id

    def _discard_locked(self, user_id: str, conn_id: str) -> None:
        conns = self._rooms.get(user_id)
        if conns is None:
            return
        conns.discard(conn_id)
        if not conns:
            del self._rooms[user_id]

    def connections_for(self, user_id: str) -> List[TransportConnection]:
        """Snapshot of the connections currently in ``user_id``'s room."""
        with self._lock:
            return [self._connections[cid] for cid in self._rooms.get(user_id, ())]

    def owner_of(self, conn_id: str) -> Optional[str]:
        with self._lock:
            return self._owners.get(conn_id)

    def is_connected(self, user_id: str) -> bool:
        with self._lock:
            return user_id in self._rooms

    def connection_count(self, user_id: str) -> int:
        with self._lock:
            return len(self._rooms.get(user_id, ()))

    def online_users(self) -> List[str]:
        with self._lock:
            return sorted(self._rooms.keys())

    def all_connections(self) -> List[TransportConnection]:
        with self._lock:
            return list(self._connections.values())

    def prune_closed(self) -> List[str]:
        """
        Drop connections whose transport is no longer open.

        Returns:
            Ids of the removed connections
        """
        with self._lock:
            dead = [cid for cid, conn in self._connections.items() if not conn.is_open()]
        removed = [cid for cid in dead if self.unregister(cid) is not None]
        if removed:
            logger.info("Pruned %d closed connections", len(removed))
        return removed

    def clear(self) -> None:
        with self._lock:
            self._rooms.clear()
            self._connections.clear()
            self._owners.clear()

    def __len__(self) -> int:
        """Number of registered connections."""
        with self._lock:
            return len(self._connections)

    def __contains__(self, user_id: str) -> bool:
        return self.is_connected(user_id)


__all__ = [
    'SessionRegistry',
]
