"""Unit tests for RealtimeService startup and shutdown."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from taskhub.config import Settings
from taskhub.main import app
from taskhub.services.notification_service import get_notification_service
from taskhub.services.redis_service import RedisService
from taskhub.websocket.service import RealtimeService, get_realtime


def _settings(**overrides) -> Settings:
    return Settings(jwt_secret="test-secret", **overrides)


def _fake_redis(connect_error: Exception | None = None) -> MagicMock:
    redis = MagicMock(spec=RedisService)
    redis.connect = AsyncMock(side_effect=connect_error)
    redis.disconnect = AsyncMock()
    redis.subscribe = AsyncMock()
    redis.start_listening = AsyncMock()
    redis.is_connected = connect_error is None
    return redis


@pytest.mark.asyncio
class TestRealtimeService:
    """Lifecycle of the notification core."""

    async def test_start_without_redis(self):
        service = RealtimeService(_settings(ws_max_connections_per_user=2))

        await service.start()

        assert service.is_started
        assert service.redis is None
        assert service.stats() == {
            "connections": 0,
            "rooms": 0,
            "online_users": 0,
            "pending_pushes": 0,
        }

    async def test_start_with_redis_subscribes(self):
        redis = _fake_redis()
        service = RealtimeService(_settings(), redis=redis)

        await service.start()

        redis.connect.assert_awaited_once()
        redis.subscribe.assert_awaited_once()
        assert redis.subscribe.call_args.args[0] == "ws:notify"
        redis.start_listening.assert_awaited_once()

    async def test_optional_redis_failure_degrades(self):
        redis = _fake_redis(connect_error=ConnectionError("refused"))
        service = RealtimeService(_settings(redis_required=False), redis=redis)

        await service.start()

        assert service.is_started
        redis.disconnect.assert_awaited_once()

    async def test_required_redis_failure_raises(self):
        redis = _fake_redis(connect_error=ConnectionError("refused"))
        service = RealtimeService(_settings(redis_required=True), redis=redis)

        with pytest.raises(RuntimeError):
            await service.start()

        assert not service.is_started

    async def test_shutdown_closes_connections(self):
        redis = _fake_redis()
        service = RealtimeService(_settings(), redis=redis)
        await service.start()
        mock_ws = AsyncMock()
        connection = await service.manager.connect(mock_ws, 5)
        await service.router.join_room(connection, 5)

        await service.shutdown()

        mock_ws.close.assert_awaited_once()
        assert service.manager.total_connections == 0
        assert not service.registry.is_online(5)
        redis.disconnect.assert_awaited_once()
        assert not service.is_started

    async def test_identity_enforcement_setting(self):
        service = RealtimeService(_settings(ws_enforce_room_identity=False))
        connection = await service.manager.connect(AsyncMock(), 5)

        assert await service.router.join_room(connection, 6) is True


def test_dependencies_resolve_lifespan_objects(client):
    request = MagicMock()
    request.app = app

    assert get_realtime(request) is app.state.realtime
    assert get_notification_service(request) is app.state.notifications
