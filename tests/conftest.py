"""Shared pytest fixtures for backend tests."""

import os
import sys
from typing import Generator
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

# Add project root to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Settings are read at import time; configure them before importing the app
os.environ.setdefault("JWT_SECRET", "test-secret-key-for-notification-tests")
os.environ["REDIS_ENABLED"] = "false"

from taskhub.main import app  # noqa: E402
from taskhub.services.auth_service import create_access_token  # noqa: E402
from taskhub.websocket import (  # noqa: E402
    ConnectionManager,
    ConnectionRegistry,
    EventDispatcher,
    RoomRouter,
)

ALICE_ID = 1
BOB_ID = 5
CAROL_ID = 7


def make_token(user_id: int) -> str:
    """Create an authentication token for a numeric user id."""
    return create_access_token(data={"sub": user_id, "email": f"user{user_id}@example.com"})


def ws_url(user_id: int, token: str | None = None) -> str:
    """Build the /ws handshake URL for a user."""
    return f"/ws?token={token or make_token(user_id)}&user_id={user_id}"


@pytest.fixture(scope="function")
def client() -> Generator[TestClient, None, None]:
    """Create a test client; entering it runs the app lifespan."""
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def auth_token() -> str:
    """Authentication token for user 5."""
    return make_token(BOB_ID)


@pytest.fixture
def auth_headers(auth_token: str) -> dict:
    """Create authorization headers."""
    return {"Authorization": f"Bearer {auth_token}"}


@pytest.fixture
def registry() -> ConnectionRegistry:
    return ConnectionRegistry()


@pytest.fixture
def connection_manager() -> ConnectionManager:
    return ConnectionManager(max_connections_per_user=3)


@pytest.fixture
def room_router(connection_manager: ConnectionManager, registry: ConnectionRegistry) -> RoomRouter:
    return RoomRouter(connection_manager, registry)


@pytest.fixture
def dispatcher(connection_manager: ConnectionManager, registry: ConnectionRegistry) -> EventDispatcher:
    return EventDispatcher(connection_manager, registry)


@pytest.fixture
def mock_websocket_factory():
    """Create mock WebSockets whose sent frames can be inspected."""
    def factory() -> AsyncMock:
        return AsyncMock()
    return factory


def sent_frames(websocket: AsyncMock) -> list[dict]:
    """All frames a mock WebSocket was asked to send."""
    return [call.args[0] for call in websocket.send_json.call_args_list]


def sent_events(websocket: AsyncMock, kind: str) -> list[dict]:
    """Payloads of frames of one type sent to a mock WebSocket."""
    return [f["data"] for f in sent_frames(websocket) if f.get("type") == kind]
