"""Room authorization for WebSocket connections.

Validates that a connection only joins the room of the user it
authenticated as. User rooms are named ``user-<id>``.
"""

import logging
from typing import Optional

logger = logging.getLogger(__name__)

USER_ROOM_PREFIX = "user-"


def parse_room_name(room: str) -> Optional[int]:
    """
    Recover the user id from a user room name.

    Args:
        room: Room name, expected format 'user-{id}'

    Returns:
        Optional[int]: The user id, or None for any other format
    """
    if not room or not room.startswith(USER_ROOM_PREFIX):
        return None
    suffix = room[len(USER_ROOM_PREFIX):]
    if not suffix.isdigit():
        return None
    return int(suffix)


def check_room_access(authenticated_user_id: int, room: str) -> bool:
    """
    Check if a user may join a room.

    Args:
        authenticated_user_id: The identity established at handshake
        room: The room the connection wants to join

    Returns:
        bool: True only for the user's own room
    """
    owner = parse_room_name(room)
    if owner is None:
        logger.warning(f"[Room Auth] DENIED - invalid room format: {room}")
        return False
    if owner != authenticated_user_id:
        logger.warning(
            f"[Room Auth] DENIED - user {authenticated_user_id} "
            f"attempted to join {room}"
        )
        return False
    return True
