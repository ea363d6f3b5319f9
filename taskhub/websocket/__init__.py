"""WebSocket module for real-time notifications."""

from .dispatcher import EventDispatcher
from .manager import (
    CloseCode,
    ConnectionManager,
    MessageType,
    WebSocketConnection,
)
from .registry import ConnectionRegistry
from .room_auth import check_room_access, parse_room_name
from .rooms import RoomRouter, derive_room_name
from .service import RealtimeService, get_realtime

__all__ = [
    # Manager
    "CloseCode",
    "ConnectionManager",
    "MessageType",
    "WebSocketConnection",
    # Registry
    "ConnectionRegistry",
    # Rooms
    "RoomRouter",
    "derive_room_name",
    # Room authorization
    "check_room_access",
    "parse_room_name",
    # Dispatch
    "EventDispatcher",
    # Lifecycle
    "RealtimeService",
    "get_realtime",
]
