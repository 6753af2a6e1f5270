"""
Lock-guarded registry of open connections and their identities
"""

import asyncio
from typing import Dict, List, Optional, Tuple

from .logger import get_logger, log_connection_event
from .models import ClientConnection, Identity

logger = get_logger()


class ConnectionRegistry:
    """Open sockets and, for each, whether and as whom it is authenticated

    Every read and mutation goes through one lock, and counts are computed
    under the same lock that changed them, so concurrent disconnects cannot
    under-count presence.
    """

    def __init__(self):
        # connection_id -> ClientConnection
        self._connections: Dict[str, ClientConnection] = {}
        self._lock = asyncio.Lock()

    def _authenticated_count(self) -> int:
        return sum(1 for connection in self._connections.values() if connection.is_authenticated)

    async def add(self, connection: ClientConnection) -> int:
        """
        Register a freshly accepted connection

        Returns:
            Current presence count
        """
        async with self._lock:
            self._connections[connection.connection_id] = connection
            count = self._authenticated_count()

        log_connection_event(connection.connection_id, "connect", connection.ip_address)
        return count

    async def authenticate(self, connection_id: str, identity: Identity) -> Optional[int]:
        """
        Attach a verified identity to an open connection

        Returns:
            Presence count after the change, or None if the connection is gone
        """
        async with self._lock:
            connection = self._connections.get(connection_id)
            if connection is None:
                return None
            connection.identity = identity
            count = self._authenticated_count()

        log_connection_event(connection_id, "authenticate", connection.ip_address, identity.username)
        return count

    async def remove(self, connection_id: str) -> Tuple[bool, bool, int]:
        """
        Drop a connection regardless of its state

        Safe to call more than once for the same connection.

        Returns:
            Tuple of (removed, was_authenticated, presence_count)
        """
        async with self._lock:
            connection = self._connections.pop(connection_id, None)
            count = self._authenticated_count()

        if connection is None:
            return False, False, count

        log_connection_event(connection_id, "disconnect", connection.ip_address, connection.display_name)
        return True, connection.is_authenticated, count

    async def mark_dead(self, connection_id: str) -> bool:
        """Flag a connection whose last send failed; returns False if it is unknown"""
        async with self._lock:
            connection = self._connections.get(connection_id)
            if connection is None:
                return False
            connection.is_alive = False
            return True

    async def collect_dead(self) -> List[ClientConnection]:
        """
        Connections that can no longer be reached

        A connection is dead once a send to it has failed or either side of
        its socket has closed, for instance when the server's protocol-level
        ping went unanswered.
        """
        async with self._lock:
            return [
                connection for connection in self._connections.values()
                if not connection.is_alive or not connection.transport_open
            ]

    async def snapshot(self) -> List[ClientConnection]:
        """All open connections, authenticated or not"""
        async with self._lock:
            return list(self._connections.values())

    async def presence_count(self) -> int:
        async with self._lock:
            return self._authenticated_count()

    async def get_connection_stats(self) -> Dict[str, int]:
        async with self._lock:
            return {
                "open_connections": len(self._connections),
                "authenticated_connections": self._authenticated_count(),
            }
