"""Async notification client with automatic reconnection.

State machine per session:

    DISCONNECTED -> CONNECTING -> CONNECTED -> JOINED
    CONNECTED/JOINED --(server-side close)--> RECONNECTING -> CONNECTING
    RECONNECTING --(attempts exhausted)--> DISCONNECTED (degraded)
    any --(logout)--> DISCONNECTED

Room membership does not survive a transport reconnect, so the client
sends ``join-user-room`` after every successful connect. Events pushed
while the client was away are not replayed.
"""

import asyncio
import inspect
import json
import logging
import random
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Protocol
from urllib.parse import urlencode

import aiohttp

from ..schemas.notification import NotificationEventKind
from .notifications import DesktopNotifier, NotificationStore, build_notification

logger = logging.getLogger(__name__)


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    JOINED = "joined"
    RECONNECTING = "reconnecting"


class HandshakeRejected(Exception):
    """The server refused the handshake credentials; retrying will not help."""


@dataclass(frozen=True)
class ReconnectPolicy:
    """Bounded exponential backoff for reconnect attempts."""

    attempts: int = 5
    delay: float = 1.0
    delay_max: float = 5.0
    factor: float = 2.0
    jitter: float = 0.5
    timeout: float = 10.0

    def backoff(self, attempt: int) -> float:
        """
        Delay before reconnect attempt number ``attempt`` (1-based).

        Args:
            attempt: Which reconnect attempt is about to start

        Returns:
            float: Seconds to wait, never above ``delay_max``
        """
        base = self.delay * (self.factor ** max(attempt - 1, 0))
        if self.jitter:
            spread = base * self.jitter
            base = random.uniform(base - spread, base + spread)
        return max(0.0, min(base, self.delay_max))


class ClientTransport(Protocol):
    """One open WebSocket, as seen by the client."""

    async def send(self, message: dict[str, Any]) -> None: ...

    async def receive(self) -> Optional[dict[str, Any]]:
        """Next decoded frame, or None once the socket is closed."""
        ...

    async def close(self) -> None: ...


TransportFactory = Callable[[str], Awaitable[ClientTransport]]
TaskUpdateListener = Callable[[str, dict[str, Any]], Any]


class AiohttpTransport:
    """ClientTransport over an aiohttp WebSocket."""

    def __init__(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        self._ws = ws

    @classmethod
    async def open(cls, session: aiohttp.ClientSession, url: str) -> "AiohttpTransport":
        try:
            ws = await session.ws_connect(url, heartbeat=None)
        except aiohttp.WSServerHandshakeError as e:
            if e.status in (401, 403):
                raise HandshakeRejected(str(e)) from e
            raise
        return cls(ws)

    async def send(self, message: dict[str, Any]) -> None:
        await self._ws.send_json(message)

    async def receive(self) -> Optional[dict[str, Any]]:
        while True:
            msg = await self._ws.receive()
            if msg.type == aiohttp.WSMsgType.TEXT:
                try:
                    frame = json.loads(msg.data)
                except json.JSONDecodeError:
                    logger.warning("Ignoring non-JSON frame from server")
                    continue
                if not isinstance(frame, dict):
                    logger.warning("Ignoring non-object frame from server")
                    continue
                return frame
            if msg.type in (
                aiohttp.WSMsgType.CLOSE,
                aiohttp.WSMsgType.CLOSING,
                aiohttp.WSMsgType.CLOSED,
                aiohttp.WSMsgType.ERROR,
            ):
                return None

    async def close(self) -> None:
        await self._ws.close()


class NotificationClient:
    """
    Keep one live notification channel per authenticated session.

    Received events are added to ``store``, shown through ``desktop`` when
    permission was granted, and passed to every task-update listener so
    views can refresh without a full reload.
    """

    def __init__(
        self,
        base_url: str,
        token: str,
        user_id: int,
        policy: Optional[ReconnectPolicy] = None,
        store: Optional[NotificationStore] = None,
        desktop: Optional[DesktopNotifier] = None,
        transport_factory: Optional[TransportFactory] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.user_id = user_id
        self.policy = policy or ReconnectPolicy()
        self.store = store or NotificationStore()
        self.desktop = desktop
        self._transport_factory = transport_factory
        self._session: Optional[aiohttp.ClientSession] = None

        self._state = ConnectionState.DISCONNECTED
        self._degraded = False
        self._closing = False
        self._transport: Optional[ClientTransport] = None
        self._runner: Optional[asyncio.Task] = None
        self._joined = asyncio.Event()
        self._listeners: list[TaskUpdateListener] = []
        self._state_listeners: list[Callable[[ConnectionState], Any]] = []

    # =========================================================================
    # Public API
    # =========================================================================

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def degraded(self) -> bool:
        """True when the live channel gave up; the app should fall back to polling."""
        return self._degraded

    @property
    def url(self) -> str:
        query = urlencode({"token": self.token, "user_id": self.user_id})
        return f"{self.base_url}/ws?{query}"

    def on_task_update(self, listener: TaskUpdateListener) -> None:
        """Register a callback receiving ``(event_kind, data)`` for every event."""
        self._listeners.append(listener)

    def on_state_change(self, listener: Callable[[ConnectionState], Any]) -> None:
        self._state_listeners.append(listener)

    async def start(self) -> None:
        """Open the channel (after login). No-op if already running."""
        if self._runner is not None and not self._runner.done():
            return
        self._closing = False
        self._degraded = False
        self._joined.clear()
        await self._request_desktop_permission()
        self._runner = asyncio.create_task(self._run())

    async def wait_joined(self, timeout: Optional[float] = None) -> bool:
        """Wait until the user room has been joined."""
        try:
            await asyncio.wait_for(self._joined.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        return True

    async def logout(self) -> None:
        """Explicitly disconnect and forget this session's notifications."""
        await self.close()
        self.store.clear_all()

    async def close(self) -> None:
        """Explicitly disconnect; no reconnect is attempted."""
        self._closing = True
        transport = self._transport
        if transport is not None:
            try:
                await transport.close()
            except Exception as e:
                logger.debug(f"Error while closing notification socket: {e}")
        if self._runner is not None:
            self._runner.cancel()
            try:
                await self._runner
            except asyncio.CancelledError:
                pass
            self._runner = None
        if self._session is not None:
            await self._session.close()
            self._session = None
        self._transport = None
        self._joined.clear()
        self._set_state(ConnectionState.DISCONNECTED)

    async def _request_desktop_permission(self) -> None:
        """Ask once per session for desktop notification permission."""
        if self.desktop is None or self.desktop.permission_granted:
            return
        try:
            result = self.desktop.request_permission()
            if inspect.isawaitable(result):
                result = await result
        except Exception as e:
            logger.warning(f"Desktop notification permission request failed: {e}")
            return
        if result:
            logger.info("Desktop notifications enabled")
        else:
            logger.info("Desktop notification permission denied")

    # =========================================================================
    # Connection loop
    # =========================================================================

    async def _open_transport(self) -> ClientTransport:
        if self._transport_factory is not None:
            return await self._transport_factory(self.url)
        if self._session is None:
            self._session = aiohttp.ClientSession()
        return await AiohttpTransport.open(self._session, self.url)

    async def _run(self) -> None:
        failures = 0
        while not self._closing:
            self._set_state(ConnectionState.CONNECTING)
            try:
                transport = await asyncio.wait_for(
                    self._open_transport(), timeout=self.policy.timeout
                )
            except HandshakeRejected as e:
                logger.warning(f"Notification handshake rejected: {e}")
                self._give_up()
                return
            except (asyncio.TimeoutError, aiohttp.ClientError, OSError) as e:
                failures += 1
                logger.warning(
                    f"Notification connect failed "
                    f"({failures}/{self.policy.attempts}): {e!r}"
                )
            else:
                failures = 0
                self._transport = transport
                try:
                    await self._serve(transport)
                finally:
                    self._transport = None
                    self._joined.clear()
                if self._closing:
                    break
                logger.info("Notification connection lost, reconnecting")

            if failures >= self.policy.attempts:
                self._give_up()
                return

            self._set_state(ConnectionState.RECONNECTING)
            await asyncio.sleep(self.policy.backoff(failures + 1))

    def _give_up(self) -> None:
        self._degraded = True
        self._set_state(ConnectionState.DISCONNECTED)
        logger.warning(
            "Notification channel unavailable; live updates disabled until next login"
        )

    async def _serve(self, transport: ClientTransport) -> None:
        """Join the user room, then consume frames until the socket closes."""
        self._set_state(ConnectionState.CONNECTED)
        try:
            await transport.send({"type": "join-user-room", "data": self.user_id})
            while True:
                message = await transport.receive()
                if message is None:
                    return
                if not isinstance(message, dict):
                    logger.warning(f"Ignoring non-object frame: {message!r}")
                    continue
                await self._handle_frame(transport, message)
        except (aiohttp.ClientError, ConnectionError) as e:
            logger.warning(f"Notification socket error: {e!r}")
        except Exception as e:
            logger.error(f"Notification connection failed: {e!r}")
        finally:
            if not self._closing:
                try:
                    await transport.close()
                except Exception as e:
                    logger.debug(f"Error while closing notification socket: {e}")

    async def _handle_frame(self, transport: ClientTransport, message: dict[str, Any]) -> None:
        kind = message.get("type")
        data = message.get("data")

        if kind == "room-joined":
            self._joined.set()
            self._set_state(ConnectionState.JOINED)
        elif kind == "ping":
            await transport.send({"type": "pong", "data": {}})
        elif kind == "error":
            logger.warning(f"Notification server error: {data}")
        elif kind in {k.value for k in NotificationEventKind}:
            await self._consume(kind, data)
        else:
            logger.debug(f"Ignoring frame of type {kind}")

    async def _consume(self, kind: str, data: Any) -> None:
        notification = build_notification(kind, data)
        if notification is None:
            return

        self.store.add(notification)

        if self.desktop is not None and self.desktop.permission_granted:
            try:
                self.desktop.show(notification.title, notification.message)
            except Exception as e:
                logger.warning(f"Desktop notification failed: {e}")

        for listener in list(self._listeners):
            try:
                result = listener(kind, notification.data)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Task update listener failed: {e}")

    def _set_state(self, state: ConnectionState) -> None:
        if state == self._state:
            return
        self._state = state
        for listener in list(self._state_listeners):
            try:
                listener(state)
            except Exception as e:
                logger.error(f"State listener failed: {e}")
