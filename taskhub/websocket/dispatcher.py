"""Best-effort delivery of notification events to user rooms.

Delivery is fire-and-forget and at-most-once: there is no queue, no retry
and no history. A user who is offline when an event is dispatched never
receives it; the same data is always available through the REST API.
"""

import asyncio
import logging
from typing import Any, Coroutine, Optional

from ..schemas.notification import (
    NotificationEvent,
    NotificationEventKind,
    PayloadInput,
    build_payload,
)
from ..services.redis_service import RedisService
from .manager import ConnectionManager
from .registry import ConnectionRegistry
from .rooms import derive_room_name

logger = logging.getLogger(__name__)


class EventDispatcher:
    """
    Push typed notification events to the room of a target user.

    ``emit_to_user`` is synchronous and never raises: it is called from
    request handlers right after their database commit, and the HTTP
    response must not depend on whether a notification went out. The
    socket writes run as background tasks on the event loop.

    When a Redis backplane is connected, events are published on
    ``ws:notify`` and every worker delivers to the connections it holds.
    """

    _NOTIFY_CHANNEL = "ws:notify"

    def __init__(
        self,
        connection_manager: ConnectionManager,
        registry: ConnectionRegistry,
        redis: Optional[RedisService] = None,
    ) -> None:
        self._manager = connection_manager
        self._registry = registry
        self._redis = redis
        self._pending: set[asyncio.Task] = set()
        self._redis_initialized = False

    async def initialize_redis(self) -> None:
        """Subscribe to the cross-worker notification channel."""
        if self._redis is None or self._redis_initialized:
            return
        await self._redis.subscribe(self._NOTIFY_CHANNEL, self._handle_redis_notify)
        self._redis_initialized = True
        logger.info("EventDispatcher Redis pub/sub initialized")

    @property
    def pending(self) -> int:
        """Number of pushes scheduled but not finished."""
        return len(self._pending)

    def emit_to_user(
        self,
        user_id: int,
        kind: NotificationEventKind | str,
        payload: PayloadInput,
    ) -> bool:
        """
        Deliver an event to every live connection of a user.

        Args:
            user_id: The recipient (unknown ids are simply offline)
            kind: The event kind
            payload: Payload model, or dict matching the kind's shape

        Returns:
            bool: True if a push was scheduled; False if the user is offline
                on this worker, the payload was invalid, or no loop is running
        """
        try:
            event = NotificationEvent(
                kind=NotificationEventKind(kind),
                user_id=user_id,
                payload=build_payload(kind, payload),
            )
        except ValueError as e:
            logger.error(f"Invalid {kind!s} payload for user {user_id}: {e}")
            return False

        if self._redis is not None and self._redis.is_connected:
            return self._schedule(self._publish(event))

        if not self._registry.is_online(user_id):
            logger.debug(
                f"User {user_id} has no live connection, dropping {event.kind.value}"
            )
            return False

        return self._schedule(self._push_local(event.user_id, event.to_message()))

    async def drain(self) -> None:
        """Wait until every scheduled push has finished."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _schedule(self, coro: Coroutine[Any, Any, Any]) -> bool:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            logger.warning("No running event loop, notification dropped")
            return False

        task = loop.create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._on_push_done)
        return True

    def _on_push_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Notification push failed: {exc!r}")

    async def _push_local(self, user_id: int, message: dict[str, Any]) -> int:
        """Send to the local members of the user's room, logging failures."""
        room = derive_room_name(user_id)
        try:
            recipients = await self._manager.broadcast_to_room(room, message)
        except Exception as e:
            logger.error(f"Notification push to {room} failed: {e}")
            return 0

        logger.info(
            f"Notification {message.get('type')} sent: room={room}, "
            f"recipients={recipients}, "
            f"active_connections={self._registry.active_count(user_id)}"
        )
        return recipients

    async def _publish(self, event: NotificationEvent) -> None:
        message = event.to_message()
        try:
            await self._redis.publish(
                self._NOTIFY_CHANNEL,
                {"user_id": event.user_id, "message": message},
            )
        except Exception as e:
            logger.warning(
                f"Redis publish failed, delivering locally only: {e}"
            )
            if self._registry.is_online(event.user_id):
                await self._push_local(event.user_id, message)

    async def _handle_redis_notify(self, data: dict) -> None:
        """Deliver an event published by any worker to local connections."""
        user_id = data.get("user_id")
        message = data.get("message")
        if not isinstance(user_id, int) or not message:
            return
        if not self._registry.is_online(user_id):
            return
        await self._push_local(user_id, message)
