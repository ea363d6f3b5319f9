"""Binding of connections to per-user broadcast rooms."""

import logging
from typing import Any, Optional

from .manager import ConnectionManager, MessageType, WebSocketConnection
from .registry import ConnectionRegistry
from .room_auth import USER_ROOM_PREFIX, check_room_access

logger = logging.getLogger(__name__)


def derive_room_name(user_id: int | str) -> str:
    """
    Get the room name for a user.

    Args:
        user_id: The user's numeric id

    Returns:
        str: Room name in format 'user-{id}'
    """
    return f"{USER_ROOM_PREFIX}{user_id}"


class RoomRouter:
    """
    Join each connection to its user room and keep the registry in step.

    Joining happens on an explicit ``join-user-room`` message, after the
    handshake, not from the handshake itself. Leaving is implicit: the
    transport drops room membership on disconnect and the router only has
    to unregister the connection.
    """

    def __init__(
        self,
        connection_manager: ConnectionManager,
        registry: ConnectionRegistry,
        enforce_identity: bool = True,
    ) -> None:
        self._manager = connection_manager
        self._registry = registry
        self._enforce_identity = enforce_identity

    async def join_room(self, connection: WebSocketConnection, user_id: int) -> bool:
        """
        Add a connection to the room of ``user_id`` and register it.

        Args:
            connection: The connection that sent join-user-room
            user_id: The user id claimed by the client

        Returns:
            bool: True if the connection is (now) a member of the room
        """
        room = derive_room_name(user_id)

        if self._enforce_identity and not check_room_access(connection.user_id, room):
            await self._manager.send_personal(
                connection,
                {
                    "type": MessageType.ERROR.value,
                    "data": {
                        "error": "JOIN_REJECTED",
                        "message": f"Not allowed to join {room}",
                    },
                },
            )
            return False

        if not self._manager.join_room(connection, room):
            logger.debug(
                f"Connection {connection.connection_id} already in {room}"
            )
            return True

        if not self._registry.register(user_id, connection.connection_id):
            # Room members must always be registered
            self._manager.leave_room(connection, room)
            await self._manager.send_personal(
                connection,
                {
                    "type": MessageType.ERROR.value,
                    "data": {
                        "error": "JOIN_REJECTED",
                        "message": f"Not allowed to join {room}",
                    },
                },
            )
            return False

        logger.info(
            f"User {user_id} joined room {room}: "
            f"connection={connection.connection_id}, "
            f"active_connections={self._registry.active_count(user_id)}"
        )

        await self._manager.send_personal(
            connection,
            {
                "type": MessageType.ROOM_JOINED.value,
                "data": {
                    "room": room,
                    "active_connections": self._registry.active_count(user_id),
                },
            },
        )
        return True

    def handle_disconnect(self, connection: WebSocketConnection) -> Optional[int]:
        """
        Clean up after a closed connection, whatever the reason.

        Returns:
            Optional[int]: The user whose entry was removed, if any
        """
        self._manager.disconnect(connection)
        user_id = self._registry.unregister(connection.connection_id)
        if user_id is not None:
            logger.info(
                f"User {user_id} left room {derive_room_name(user_id)}: "
                f"remaining_connections={self._registry.active_count(user_id)}"
            )
        return user_id

    async def handle_message(
        self,
        connection: WebSocketConnection,
        data: dict[str, Any],
    ) -> None:
        """
        Route an incoming client message.

        Args:
            connection: The connection that sent the message
            data: The decoded JSON frame
        """
        message_type = data.get("type")

        if message_type == MessageType.PING.value:
            await self._manager.send_personal(
                connection,
                {"type": MessageType.PONG.value, "data": {}},
            )

        elif message_type == MessageType.JOIN_USER_ROOM.value:
            user_id = _extract_user_id(data.get("data"))
            if user_id is None:
                logger.warning(
                    f"Malformed join-user-room from connection {connection.connection_id}: "
                    f"{data.get('data')!r}"
                )
                return
            await self.join_room(connection, user_id)

        elif message_type == MessageType.PONG.value:
            pass

        else:
            logger.debug(
                f"Unhandled message type: {message_type} from user {connection.user_id}"
            )


def _extract_user_id(raw: Any) -> Optional[int]:
    """Accept ``5``, ``"5"`` or ``{"user_id": 5}`` as join payloads."""
    if isinstance(raw, dict):
        raw = raw.get("user_id", raw.get("userId"))
    if isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return raw
    if isinstance(raw, str) and raw.isdigit():
        return int(raw)
    return None
