"""Unit tests for user rooms: naming, authorization and join/leave flow."""

from unittest.mock import AsyncMock

import pytest

from taskhub.websocket.room_auth import check_room_access, parse_room_name
from taskhub.websocket.rooms import RoomRouter, derive_room_name

from conftest import sent_events, sent_frames


class TestRoomNames:
    """Tests for derive_room_name / parse_room_name."""

    def test_derive_room_name(self):
        assert derive_room_name(5) == "user-5"
        assert derive_room_name(123) == "user-123"

    def test_derive_room_name_is_deterministic(self):
        assert derive_room_name(5) == derive_room_name(5)
        assert derive_room_name(5) != derive_room_name(6)

    def test_parse_room_name(self):
        assert parse_room_name("user-5") == 5
        assert parse_room_name(derive_room_name(42)) == 42

    @pytest.mark.parametrize("room", ["", "user-", "user-abc", "project-5", "user5"])
    def test_parse_room_name_invalid(self, room):
        assert parse_room_name(room) is None


class TestRoomAccess:
    """Tests for check_room_access."""

    def test_own_room_allowed(self):
        assert check_room_access(5, "user-5") is True

    def test_other_user_room_denied(self):
        assert check_room_access(5, "user-6") is False

    def test_invalid_room_denied(self):
        assert check_room_access(5, "task-5") is False


class TestJoinRoom:
    """Tests for RoomRouter.join_room."""

    @pytest.mark.asyncio
    async def test_join_registers_connection(self, connection_manager, registry, room_router):
        mock_ws = AsyncMock()
        connection = await connection_manager.connect(mock_ws, 5)

        # Connecting alone does not make the user reachable
        assert not registry.is_online(5)

        assert await room_router.join_room(connection, 5) is True

        assert registry.is_online(5)
        assert registry.active_count(5) == 1
        assert "user-5" in connection.rooms
        joined = sent_events(mock_ws, "room-joined")
        assert joined == [{"room": "user-5", "active_connections": 1}]

    @pytest.mark.asyncio
    async def test_repeat_join_is_idempotent(self, connection_manager, registry, room_router):
        connection = await connection_manager.connect(AsyncMock(), 5)

        await room_router.join_room(connection, 5)
        assert await room_router.join_room(connection, 5) is True

        assert registry.active_count(5) == 1
        assert connection_manager.get_room_count("user-5") == 1

    @pytest.mark.asyncio
    async def test_two_tabs(self, connection_manager, registry, room_router):
        tab1 = await connection_manager.connect(AsyncMock(), 5)
        tab2 = await connection_manager.connect(AsyncMock(), 5)

        await room_router.join_room(tab1, 5)
        await room_router.join_room(tab2, 5)

        assert registry.active_count(5) == 2
        assert connection_manager.get_room_count("user-5") == 2

    @pytest.mark.asyncio
    async def test_join_other_user_room_rejected(self, connection_manager, registry, room_router):
        mock_ws = AsyncMock()
        connection = await connection_manager.connect(mock_ws, 5)

        assert await room_router.join_room(connection, 6) is False

        assert not registry.is_online(6)
        assert connection.rooms == set()
        errors = sent_events(mock_ws, "error")
        assert errors and errors[0]["error"] == "JOIN_REJECTED"

    @pytest.mark.asyncio
    async def test_join_other_room_allowed_without_enforcement(
        self, connection_manager, registry
    ):
        router = RoomRouter(connection_manager, registry, enforce_identity=False)
        connection = await connection_manager.connect(AsyncMock(), 5)

        assert await router.join_room(connection, 6) is True

        assert registry.is_online(6)
        assert "user-6" in connection.rooms

    @pytest.mark.asyncio
    async def test_refused_registration_leaves_room(self, connection_manager, registry):
        router = RoomRouter(connection_manager, registry, enforce_identity=False)
        mock_ws = AsyncMock()
        connection = await connection_manager.connect(mock_ws, 5)
        # Connection id already owned by another user
        registry.register(9, connection.connection_id)

        assert await router.join_room(connection, 5) is False

        assert connection.rooms == set()
        assert connection_manager.get_room_count("user-5") == 0
        assert not registry.is_online(5)
        errors = sent_events(mock_ws, "error")
        assert errors[0]["error"] == "JOIN_REJECTED"
        assert sent_events(mock_ws, "room-joined") == []


class TestHandleDisconnect:
    """Tests for RoomRouter.handle_disconnect."""

    @pytest.mark.asyncio
    async def test_disconnect_unregisters(self, connection_manager, registry, room_router):
        tab1 = await connection_manager.connect(AsyncMock(), 5)
        tab2 = await connection_manager.connect(AsyncMock(), 5)
        await room_router.join_room(tab1, 5)
        await room_router.join_room(tab2, 5)

        assert room_router.handle_disconnect(tab1) == 5

        assert registry.active_count(5) == 1
        assert connection_manager.get_room_members("user-5") == [tab2]

        room_router.handle_disconnect(tab2)

        assert not registry.is_online(5)
        assert connection_manager.total_rooms == 0

    @pytest.mark.asyncio
    async def test_disconnect_before_join(self, connection_manager, registry, room_router):
        connection = await connection_manager.connect(AsyncMock(), 5)

        assert room_router.handle_disconnect(connection) is None

        assert connection_manager.total_connections == 0
        assert registry.total_connections == 0

    @pytest.mark.asyncio
    async def test_disconnect_twice(self, connection_manager, registry, room_router):
        connection = await connection_manager.connect(AsyncMock(), 5)
        await room_router.join_room(connection, 5)

        room_router.handle_disconnect(connection)
        assert room_router.handle_disconnect(connection) is None

        assert registry.active_count(5) == 0


class TestHandleMessage:
    """Tests for RoomRouter.handle_message."""

    @pytest.mark.asyncio
    async def test_ping_pong(self, connection_manager, room_router):
        mock_ws = AsyncMock()
        connection = await connection_manager.connect(mock_ws, 5)

        await room_router.handle_message(connection, {"type": "ping"})

        assert sent_frames(mock_ws)[-1] == {"type": "pong", "data": {}}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", [5, "5", {"user_id": 5}, {"userId": 5}])
    async def test_join_payload_forms(self, connection_manager, registry, room_router, payload):
        connection = await connection_manager.connect(AsyncMock(), 5)

        await room_router.handle_message(
            connection, {"type": "join-user-room", "data": payload}
        )

        assert registry.is_online(5)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", [None, "abc", True, {"room": "user-5"}, [5]])
    async def test_malformed_join_ignored(self, connection_manager, registry, room_router, payload):
        mock_ws = AsyncMock()
        connection = await connection_manager.connect(mock_ws, 5)

        await room_router.handle_message(
            connection, {"type": "join-user-room", "data": payload}
        )

        assert not registry.is_online(5)
        assert sent_events(mock_ws, "room-joined") == []

    @pytest.mark.asyncio
    async def test_unknown_type_ignored(self, connection_manager, room_router):
        mock_ws = AsyncMock()
        connection = await connection_manager.connect(mock_ws, 5)
        before = len(sent_frames(mock_ws))

        await room_router.handle_message(connection, {"type": "subscribe", "data": {}})
        await room_router.handle_message(connection, {"type": "pong"})

        assert len(sent_frames(mock_ws)) == before
