"""In-memory registry of live connections per user.

The registry is the source of truth for "is this user online on this
worker". It is only touched from the asyncio event loop and none of its
methods await, so each call runs to completion without interleaving.
"""

import logging
from typing import Optional

logger = logging.getLogger(__name__)


class ConnectionRegistry:
    """
    Track, for each user id, the list of live connection ids.

    A user may hold several connections at once (browser tabs, devices).
    A reverse index from connection id to user id keeps ``unregister`` O(1).
    """

    def __init__(self) -> None:
        # Map of user_id -> connection ids, in registration order
        self._user_connections: dict[int, list[str]] = {}
        # Map of connection_id -> owning user_id
        self._owners: dict[str, int] = {}

    def register(self, user_id: int, connection_id: str) -> bool:
        """
        Append a connection to a user's list.

        Registering the same pair twice stores two entries; callers should
        avoid it. A connection id already owned by a different user is not
        re-assigned.

        Returns:
            bool: True if the entry was added
        """
        owner = self._owners.get(connection_id)
        if owner is not None and owner != user_id:
            logger.warning(
                f"Connection {connection_id} already belongs to user {owner}, "
                f"refusing to register it for user {user_id}"
            )
            return False

        self._user_connections.setdefault(user_id, []).append(connection_id)
        self._owners[connection_id] = user_id
        return True

    def unregister(self, connection_id: str) -> Optional[int]:
        """
        Remove the first entry for a connection id.

        Safe to call for unknown ids and on every disconnect path.

        Returns:
            Optional[int]: The owning user id, or None if the id was not registered
        """
        user_id = self._owners.get(connection_id)
        if user_id is None:
            return None

        connections = self._user_connections.get(user_id, [])
        try:
            connections.remove(connection_id)
        except ValueError:
            pass

        if connection_id not in connections:
            del self._owners[connection_id]
        if not connections:
            self._user_connections.pop(user_id, None)

        return user_id

    def is_online(self, user_id: int) -> bool:
        """True if the user has at least one registered connection."""
        return bool(self._user_connections.get(user_id))

    def active_count(self, user_id: int) -> int:
        """Number of registered connections for a user."""
        return len(self._user_connections.get(user_id, []))

    def connections_for(self, user_id: int) -> list[str]:
        """Snapshot of a user's connection ids."""
        return list(self._user_connections.get(user_id, []))

    def online_users(self) -> list[int]:
        """User ids with at least one live connection."""
        return list(self._user_connections)

    @property
    def total_connections(self) -> int:
        """Total number of registered connection entries."""
        return sum(len(c) for c in self._user_connections.values())

    def clear(self) -> None:
        """Drop every entry (process shutdown)."""
        self._user_connections.clear()
        self._owners.clear()
