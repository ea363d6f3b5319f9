"""Unit tests for EventDispatcher delivery semantics."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from taskhub.schemas.notification import NotificationEventKind, TaskAssignedPayload
from taskhub.services.redis_service import RedisService
from taskhub.websocket.dispatcher import EventDispatcher

from conftest import sent_events

ASSIGNED = {
    "task_id": 42,
    "title": "Fix login",
    "assigned_by": "Alice",
    "project_name": "Web",
}


async def _join(connection_manager, room_router, user_id: int) -> AsyncMock:
    mock_ws = AsyncMock()
    connection = await connection_manager.connect(mock_ws, user_id)
    await room_router.join_room(connection, user_id)
    return mock_ws


@pytest.mark.asyncio
class TestEmitToUser:
    """Tests for local (single-worker) delivery."""

    async def test_offline_user_gets_nothing(self, dispatcher, connection_manager):
        mock_ws = AsyncMock()
        # Connected but never joined: not reachable
        await connection_manager.connect(mock_ws, 5)

        assert dispatcher.emit_to_user(5, NotificationEventKind.TASK_ASSIGNED, ASSIGNED) is False
        await dispatcher.drain()

        assert sent_events(mock_ws, "task-assigned") == []

    async def test_unknown_user_is_offline(self, dispatcher):
        assert dispatcher.emit_to_user(999, "task-assigned", ASSIGNED) is False

    async def test_online_user_receives_event(self, dispatcher, connection_manager, room_router):
        mock_ws = await _join(connection_manager, room_router, 5)

        assert dispatcher.emit_to_user(5, "task-assigned", ASSIGNED) is True
        await dispatcher.drain()

        assert sent_events(mock_ws, "task-assigned") == [
            {"taskId": 42, "title": "Fix login", "assignedBy": "Alice", "projectName": "Web"}
        ]
        assert dispatcher.pending == 0

    async def test_payload_model_accepted(self, dispatcher, connection_manager, room_router):
        mock_ws = await _join(connection_manager, room_router, 5)
        payload = TaskAssignedPayload(**ASSIGNED)

        assert dispatcher.emit_to_user(5, NotificationEventKind.TASK_ASSIGNED, payload) is True
        await dispatcher.drain()

        assert sent_events(mock_ws, "task-assigned")[0]["taskId"] == 42

    async def test_two_tabs_receive_identical_payloads(
        self, dispatcher, connection_manager, room_router
    ):
        tab1 = await _join(connection_manager, room_router, 5)
        tab2 = await _join(connection_manager, room_router, 5)

        dispatcher.emit_to_user(5, "task-assigned", ASSIGNED)
        await dispatcher.drain()

        first = sent_events(tab1, "task-assigned")
        second = sent_events(tab2, "task-assigned")
        assert len(first) == 1
        assert first == second

    async def test_remaining_tab_receives_after_disconnect(
        self, dispatcher, connection_manager, registry, room_router
    ):
        ws1, ws2 = AsyncMock(), AsyncMock()
        tab1 = await connection_manager.connect(ws1, 5)
        tab2 = await connection_manager.connect(ws2, 5)
        await room_router.join_room(tab1, 5)
        await room_router.join_room(tab2, 5)

        room_router.handle_disconnect(tab1)
        assert registry.active_count(5) == 1

        assert dispatcher.emit_to_user(5, "task-assigned", ASSIGNED) is True
        await dispatcher.drain()

        assert sent_events(ws1, "task-assigned") == []
        assert len(sent_events(ws2, "task-assigned")) == 1

    async def test_other_users_not_addressed(self, dispatcher, connection_manager, room_router):
        target = await _join(connection_manager, room_router, 5)
        bystander = await _join(connection_manager, room_router, 6)

        dispatcher.emit_to_user(5, "task-assigned", ASSIGNED)
        await dispatcher.drain()

        assert len(sent_events(target, "task-assigned")) == 1
        assert sent_events(bystander, "task-assigned") == []

    async def test_send_failure_is_swallowed(self, dispatcher, connection_manager, room_router):
        mock_ws = await _join(connection_manager, room_router, 5)
        mock_ws.send_json.side_effect = RuntimeError("connection reset")

        assert dispatcher.emit_to_user(5, "task-assigned", ASSIGNED) is True
        await dispatcher.drain()

        assert dispatcher.pending == 0

    async def test_broadcast_error_is_swallowed(self, registry):
        broken_manager = MagicMock()
        broken_manager.broadcast_to_room = AsyncMock(side_effect=RuntimeError("boom"))
        dispatcher = EventDispatcher(broken_manager, registry)
        registry.register(5, "conn-a")

        assert dispatcher.emit_to_user(5, "task-assigned", ASSIGNED) is True
        await dispatcher.drain()

        broken_manager.broadcast_to_room.assert_awaited_once()

    async def test_invalid_payload_rejected(self, dispatcher, connection_manager, room_router):
        mock_ws = await _join(connection_manager, room_router, 5)

        # Missing assigned_by / project_name
        assert dispatcher.emit_to_user(5, "task-assigned", {"task_id": 1, "title": "x"}) is False
        await dispatcher.drain()

        assert sent_events(mock_ws, "task-assigned") == []

    async def test_mismatched_payload_model_rejected(
        self, dispatcher, connection_manager, room_router
    ):
        await _join(connection_manager, room_router, 5)
        payload = TaskAssignedPayload(**ASSIGNED)

        assert dispatcher.emit_to_user(5, "task-completed", payload) is False

    async def test_unknown_kind_rejected(self, dispatcher, connection_manager, room_router):
        await _join(connection_manager, room_router, 5)

        assert dispatcher.emit_to_user(5, "task-deleted", ASSIGNED) is False


def test_emit_without_event_loop_is_dropped(registry, connection_manager):
    """Calling from synchronous code with no loop never raises."""
    dispatcher = EventDispatcher(connection_manager, registry)
    registry.register(5, "conn-a")

    assert dispatcher.emit_to_user(5, "task-assigned", ASSIGNED) is False
    assert dispatcher.pending == 0


def _fake_redis(connected: bool = True) -> MagicMock:
    redis = MagicMock(spec=RedisService)
    redis.is_connected = connected
    redis.publish = AsyncMock(return_value=1)
    redis.subscribe = AsyncMock()
    return redis


@pytest.mark.asyncio
class TestRedisBackplane:
    """Tests for cross-worker delivery through Redis pub/sub."""

    async def test_initialize_subscribes_once(self, connection_manager, registry):
        redis = _fake_redis()
        dispatcher = EventDispatcher(connection_manager, registry, redis=redis)

        await dispatcher.initialize_redis()
        await dispatcher.initialize_redis()

        redis.subscribe.assert_awaited_once()
        assert redis.subscribe.call_args.args[0] == "ws:notify"

    async def test_emit_publishes_event(self, connection_manager, registry):
        redis = _fake_redis()
        dispatcher = EventDispatcher(connection_manager, registry, redis=redis)

        # Recipient may be connected to another worker
        assert dispatcher.emit_to_user(5, "task-assigned", ASSIGNED) is True
        await dispatcher.drain()

        redis.publish.assert_awaited_once()
        channel, body = redis.publish.call_args.args
        assert channel == "ws:notify"
        assert body["user_id"] == 5
        assert body["message"]["type"] == "task-assigned"
        assert body["message"]["data"]["taskId"] == 42

    async def test_disconnected_redis_delivers_locally(
        self, connection_manager, registry, room_router
    ):
        redis = _fake_redis(connected=False)
        dispatcher = EventDispatcher(connection_manager, registry, redis=redis)
        mock_ws = await _join(connection_manager, room_router, 5)

        dispatcher.emit_to_user(5, "task-assigned", ASSIGNED)
        await dispatcher.drain()

        redis.publish.assert_not_awaited()
        assert len(sent_events(mock_ws, "task-assigned")) == 1

    async def test_publish_failure_falls_back_to_local(
        self, connection_manager, registry, room_router
    ):
        redis = _fake_redis()
        redis.publish.side_effect = ConnectionError("redis down")
        dispatcher = EventDispatcher(connection_manager, registry, redis=redis)
        mock_ws = await _join(connection_manager, room_router, 5)

        assert dispatcher.emit_to_user(5, "task-assigned", ASSIGNED) is True
        await dispatcher.drain()

        assert len(sent_events(mock_ws, "task-assigned")) == 1

    async def test_notify_delivers_to_local_connections(
        self, connection_manager, registry, room_router
    ):
        dispatcher = EventDispatcher(connection_manager, registry, redis=_fake_redis())
        mock_ws = await _join(connection_manager, room_router, 5)
        message = {"type": "task-assigned", "data": {"taskId": 42, "title": "Fix login"}}

        await dispatcher._handle_redis_notify({"user_id": 5, "message": message})

        assert sent_events(mock_ws, "task-assigned") == [message["data"]]

    async def test_notify_for_user_elsewhere_is_ignored(self, connection_manager, registry):
        manager = MagicMock()
        manager.broadcast_to_room = AsyncMock()
        dispatcher = EventDispatcher(manager, registry, redis=_fake_redis())

        await dispatcher._handle_redis_notify(
            {"user_id": 5, "message": {"type": "task-assigned", "data": {}}}
        )
        await dispatcher._handle_redis_notify({"user_id": "5", "message": None})

        manager.broadcast_to_room.assert_not_awaited()
