"""Notifications API endpoints.

The notification channel itself is the /ws WebSocket. These endpoints let a
client check, over plain HTTP, whether the server currently sees it as
connected, which is useful when the live channel is in degraded mode.
"""

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from ..services.auth_service import get_current_user_id
from ..websocket.rooms import derive_room_name
from ..websocket.service import RealtimeService, get_realtime

router = APIRouter(prefix="/api/notifications", tags=["Notifications"])


class ConnectionStatus(BaseModel):
    """Live-channel status of the calling user on this worker."""

    user_id: int
    room: str
    online: bool = Field(..., description="At least one joined connection")
    active_connections: int = Field(..., ge=0)


@router.get("/status", response_model=ConnectionStatus)
async def get_connection_status(
    current_user_id: int = Depends(get_current_user_id),
    realtime: RealtimeService = Depends(get_realtime),
) -> ConnectionStatus:
    """Report whether the caller has a joined notification connection."""
    return ConnectionStatus(
        user_id=current_user_id,
        room=derive_room_name(current_user_id),
        online=realtime.registry.is_online(current_user_id),
        active_connections=realtime.registry.active_count(current_user_id),
    )
