"""WebSocket connection manager with room-based support.

This module is the transport layer of the notification core:
- Accepts and tracks live WebSocket connections
- Groups connections into named rooms for targeted multicast
- Prunes room membership on disconnect
- Closes every connection on shutdown
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import uuid4

from fastapi import WebSocket, status

logger = logging.getLogger(__name__)


class MessageType(str, Enum):
    """WebSocket control message types."""

    # Connection events
    CONNECTED = "connected"
    ERROR = "error"

    # Room events
    JOIN_USER_ROOM = "join-user-room"
    ROOM_JOINED = "room-joined"

    # Ping/pong for keepalive
    PING = "ping"
    PONG = "pong"


class CloseCode:
    """Application close codes sent during or after the handshake."""

    AUTH_REQUIRED = 4001
    IDENTITY_MISMATCH = 4003
    TOO_MANY_CONNECTIONS = 4029


@dataclass(frozen=True, eq=False)
class WebSocketConnection:
    """One live transport session, bound to a single user for its lifetime."""

    websocket: WebSocket
    user_id: int
    token: str = ""
    connection_id: str = field(default_factory=lambda: uuid4().hex)
    transport: str = "websocket"
    connected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    rooms: set[str] = field(default_factory=set)

    def __hash__(self) -> int:
        return hash(self.connection_id)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, WebSocketConnection):
            return False
        return self.connection_id == other.connection_id


class ConnectionManager:
    """
    WebSocket connection manager with room-based support.

    Rooms are created implicitly by the first join and removed when their
    last member leaves or disconnects.
    """

    def __init__(self, max_connections_per_user: int = 50) -> None:
        """Initialize the connection manager."""
        self._max_connections_per_user = max_connections_per_user
        # Map of room name -> set of connections
        self._rooms: dict[str, set[WebSocketConnection]] = {}
        # Map of connection_id -> connection object
        self._connections: dict[str, WebSocketConnection] = {}

    @property
    def total_connections(self) -> int:
        """Get total number of active connections."""
        return len(self._connections)

    @property
    def total_rooms(self) -> int:
        """Get total number of active rooms."""
        return len(self._rooms)

    def get_room_count(self, room: str) -> int:
        """Get number of connections in a room."""
        return len(self._rooms.get(room, set()))

    def get_room_members(self, room: str) -> list[WebSocketConnection]:
        """Snapshot of the connections currently in a room."""
        return list(self._rooms.get(room, set()))

    def get_connection(self, connection_id: str) -> Optional[WebSocketConnection]:
        """Get a live connection by id."""
        return self._connections.get(connection_id)

    def count_user_connections(self, user_id: int) -> int:
        """Number of accepted connections held by a user, joined or not."""
        return sum(1 for c in self._connections.values() if c.user_id == user_id)

    async def connect(
        self,
        websocket: WebSocket,
        user_id: int,
        token: str = "",
    ) -> Optional[WebSocketConnection]:
        """
        Accept a WebSocket connection and track it.

        Args:
            websocket: The WebSocket instance
            user_id: The authenticated user's id
            token: The bearer token presented at handshake

        Returns:
            WebSocketConnection: The connection wrapper, or None if rejected
        """
        current = self.count_user_connections(user_id)
        if current >= self._max_connections_per_user:
            logger.warning(
                f"Connection limit reached for user {user_id}: "
                f"{current}/{self._max_connections_per_user}"
            )
            await websocket.close(
                code=CloseCode.TOO_MANY_CONNECTIONS, reason="Too many connections"
            )
            return None

        await websocket.accept()

        connection = WebSocketConnection(
            websocket=websocket,
            user_id=user_id,
            token=token,
        )
        self._connections[connection.connection_id] = connection

        logger.info(
            f"WebSocket connected: user={user_id}, "
            f"connection={connection.connection_id}, "
            f"total_connections={self.total_connections}"
        )

        await self.send_personal(
            connection,
            {
                "type": MessageType.CONNECTED.value,
                "data": {
                    "connection_id": connection.connection_id,
                    "user_id": user_id,
                    "connected_at": connection.connected_at.isoformat(),
                },
            },
        )

        return connection

    def disconnect(self, connection: WebSocketConnection) -> None:
        """
        Forget a connection and remove it from all of its rooms.

        Args:
            connection: The connection that closed
        """
        if self._connections.pop(connection.connection_id, None) is None:
            return

        for room in list(connection.rooms):
            self._discard_from_room(connection, room)

        logger.info(
            f"WebSocket disconnected: user={connection.user_id}, "
            f"connection={connection.connection_id}, "
            f"total_connections={self.total_connections}"
        )

    def join_room(self, connection: WebSocketConnection, room: str) -> bool:
        """
        Add a connection to a room.

        Returns:
            bool: False if the connection was already a member
        """
        if room in connection.rooms:
            return False
        self._rooms.setdefault(room, set()).add(connection)
        connection.rooms.add(room)
        return True

    def leave_room(self, connection: WebSocketConnection, room: str) -> None:
        """Remove a connection from a room."""
        self._discard_from_room(connection, room)

    def _discard_from_room(self, connection: WebSocketConnection, room: str) -> None:
        members = self._rooms.get(room)
        if members is not None:
            members.discard(connection)
            if not members:
                del self._rooms[room]
        connection.rooms.discard(room)

    async def send_personal(
        self,
        connection: WebSocketConnection,
        message: dict[str, Any],
    ) -> bool:
        """
        Send a message to a specific connection.

        Returns:
            bool: True if sent successfully, False otherwise
        """
        try:
            await connection.websocket.send_json(message)
            return True
        except Exception as e:
            logger.debug(
                f"Send failed on connection {connection.connection_id}: {e}"
            )
            return False

    async def broadcast_to_room(
        self,
        room: str,
        message: dict[str, Any],
        exclude: Optional[WebSocketConnection] = None,
    ) -> int:
        """
        Send a message to every connection in a room on this worker.

        Args:
            room: The room to broadcast to
            message: The message to send
            exclude: Optional connection to skip

        Returns:
            int: Number of successful sends
        """
        connections = self._rooms.get(room, set()).copy()

        if exclude:
            connections.discard(exclude)

        if not connections:
            return 0

        tasks = [self.send_personal(conn, message) for conn in connections]
        results = await asyncio.gather(*tasks, return_exceptions=True)

        success_count = sum(1 for r in results if r is True)
        logger.debug(
            f"Broadcast to room {room}: "
            f"{success_count}/{len(connections)} successful"
        )
        return success_count

    async def close_all(self, code: int = status.WS_1001_GOING_AWAY) -> int:
        """
        Close every tracked connection (server shutdown).

        Returns:
            int: Number of connections that were open
        """
        connections = list(self._connections.values())
        for connection in connections:
            try:
                await connection.websocket.close(code=code, reason="Server shutting down")
            except Exception as e:
                logger.debug(
                    f"Close failed on connection {connection.connection_id}: {e}"
                )
            self.disconnect(connection)
        return len(connections)
