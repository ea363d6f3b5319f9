"""Composition of the notification core with an explicit lifecycle."""

import logging
from typing import Optional

from fastapi import Request

from ..config import Settings
from ..services.redis_service import RedisService
from .dispatcher import EventDispatcher
from .manager import ConnectionManager
from .registry import ConnectionRegistry
from .rooms import RoomRouter

logger = logging.getLogger(__name__)


class RealtimeService:
    """
    Owns the registry, transport manager, router and dispatcher.

    Built once per process at startup and handed to whatever needs it
    (the WebSocket endpoint, the notification service, routers); there is
    no module-level instance.
    """

    def __init__(self, config: Settings, redis: Optional[RedisService] = None) -> None:
        self.config = config
        self.redis = redis
        self.registry = ConnectionRegistry()
        self.manager = ConnectionManager(
            max_connections_per_user=config.ws_max_connections_per_user,
        )
        self.router = RoomRouter(
            self.manager,
            self.registry,
            enforce_identity=config.ws_enforce_room_identity,
        )
        self.dispatcher = EventDispatcher(self.manager, self.registry, redis=redis)
        self._started = False

    @property
    def is_started(self) -> bool:
        return self._started

    async def start(self) -> None:
        """Connect the optional Redis backplane and start its listener."""
        if self._started:
            return

        if self.redis is not None:
            logger.info("Connecting to Redis...")
            try:
                await self.redis.connect()
                await self.dispatcher.initialize_redis()
                await self.redis.start_listening()
                logger.info("Redis pub/sub backplane ready")
            except Exception as e:
                if self.config.redis_required:
                    logger.error(f"Redis connection failed and REDIS_REQUIRED=true: {e}")
                    raise RuntimeError(
                        f"Redis is required for multi-worker deployment but connection failed: {e}"
                    ) from e
                logger.warning(f"Redis connection failed, running in single-worker mode: {e}")
                await self.redis.disconnect()

        self._started = True

    async def shutdown(self) -> None:
        """Flush pending pushes, close every socket and release Redis."""
        await self.dispatcher.drain()

        closed = await self.manager.close_all()
        self.registry.clear()
        logger.info(f"Closed {closed} WebSocket connection(s)")

        if self.redis is not None:
            await self.redis.disconnect()

        self._started = False

    def stats(self) -> dict[str, int]:
        return {
            "connections": self.manager.total_connections,
            "rooms": self.manager.total_rooms,
            "online_users": len(self.registry.online_users()),
            "pending_pushes": self.dispatcher.pending,
        }


def get_realtime(request: Request) -> RealtimeService:
    """FastAPI dependency returning the service built in the app lifespan."""
    return request.app.state.realtime
