"""FastAPI application entry point."""

import asyncio
import json
import logging
import traceback
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import settings
from .routers import notifications_router
from .services.auth_service import decode_access_token
from .services.notification_service import NotificationService
from .services.redis_service import RedisService
from .websocket import CloseCode, RealtimeService

# Configure logging to show errors
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Re-validate the handshake token every 30 minutes
TOKEN_REVALIDATION_INTERVAL = 1800

# Grace period for the client to answer a verification ping
PING_VERIFY_TIMEOUT = 10.0


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown tasks."""
    # Startup
    redis = RedisService(settings) if settings.redis_enabled else None
    realtime = RealtimeService(settings, redis=redis)

    logger.info("Starting notification core...")
    await realtime.start()
    app.state.realtime = realtime
    app.state.notifications = NotificationService(realtime.dispatcher)
    logger.info("Notification core started")

    yield

    # Shutdown
    logger.info("Stopping notification core...")
    await realtime.shutdown()
    logger.info("Notification core stopped")


# Create FastAPI application
app = FastAPI(
    title="TaskHub Notifications",
    description="Real-time task notification channel",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "Accept"],
)


# Global exception handler to log errors
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Log all unhandled exceptions with full traceback."""
    logger.error(f"Unhandled exception on {request.method} {request.url}:")
    logger.error(f"Exception type: {type(exc).__name__}")
    logger.error(f"Exception message: {str(exc)}")
    logger.error(f"Traceback:\n{traceback.format_exc()}")
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )


app.include_router(notifications_router)


@app.get("/")
async def root():
    """Root endpoint - health check."""
    return {
        "status": "healthy",
        "service": "TaskHub Notifications",
        "version": "1.0.0",
    }


@app.get("/health")
async def health_check(request: Request):
    """Health check endpoint for monitoring."""
    realtime: RealtimeService = request.app.state.realtime
    if realtime.redis is not None:
        redis_health = await realtime.redis.health_check()
    else:
        redis_health = {"status": "disabled"}
    return {
        "status": "healthy",
        "redis": redis_health,
        "websocket": realtime.stats(),
    }


def _parse_user_id(raw: Optional[str]) -> Optional[int]:
    if raw is None or not raw.isdigit():
        return None
    return int(raw)


@app.websocket("/ws")
async def websocket_endpoint(
    websocket: WebSocket,
    token: Optional[str] = None,
    user_id: Optional[str] = None,
):
    """
    WebSocket endpoint for live notifications.

    Args:
        websocket: The WebSocket connection
        token: JWT token for authentication (query parameter)
        user_id: The numeric user id the client claims (query parameter)

    Both handshake values are required. After the handshake the client
    must send ``{"type": "join-user-room", "data": <user_id>}`` to start
    receiving notifications; it must send it again after every reconnect.

    Usage:
        ws://localhost:3000/ws?token=<jwt_token>&user_id=<id>
    """
    claimed_user_id = _parse_user_id(user_id)
    if not token or claimed_user_id is None:
        logger.debug("WebSocket connection attempt without token or user id")
        await websocket.close(code=CloseCode.AUTH_REQUIRED, reason="Authentication required")
        return

    token_data = decode_access_token(token)
    if token_data is None:
        logger.debug("WebSocket connection with invalid token")
        await websocket.close(code=CloseCode.AUTH_REQUIRED, reason="Invalid token")
        return
    authenticated_user_id = token_data.user_id

    if settings.ws_enforce_room_identity and claimed_user_id != authenticated_user_id:
        logger.warning(
            f"WebSocket handshake user mismatch: token={authenticated_user_id}, "
            f"claimed={claimed_user_id}"
        )
        await websocket.close(code=CloseCode.IDENTITY_MISMATCH, reason="User mismatch")
        return

    realtime: RealtimeService = websocket.app.state.realtime

    connection = await realtime.manager.connect(websocket, authenticated_user_id, token=token)
    if connection is None:
        logger.warning(f"WebSocket connection rejected (limit) for user: {authenticated_user_id}")
        return

    # Rate limiting state
    message_timestamps: list[float] = []

    # Token validity tracking
    token_valid = True
    loop = asyncio.get_running_loop()
    last_token_check = loop.time()

    async def server_ping_task():
        """Background task to send periodic pings and validate token."""
        nonlocal token_valid, last_token_check
        try:
            while True:
                await asyncio.sleep(settings.ws_ping_interval)
                try:
                    await websocket.send_json({"type": "ping", "data": {}})

                    current_time = loop.time()
                    if current_time - last_token_check > TOKEN_REVALIDATION_INTERVAL:
                        if decode_access_token(token) is None:
                            logger.warning(
                                f"Token expired for user {authenticated_user_id}, closing connection"
                            )
                            token_valid = False
                            await websocket.send_json({
                                "type": "error",
                                "data": {
                                    "error": "TOKEN_EXPIRED",
                                    "message": "Session expired, please re-authenticate",
                                },
                            })
                            await websocket.close(code=CloseCode.AUTH_REQUIRED, reason="Token expired")
                            break
                        last_token_check = current_time
                except Exception:
                    break  # Connection is dead, exit task
        except asyncio.CancelledError:
            pass

    ping_task = asyncio.create_task(server_ping_task())

    try:
        while token_valid:
            try:
                raw_message = await asyncio.wait_for(
                    websocket.receive_text(),
                    timeout=settings.ws_ping_timeout,
                )
            except asyncio.TimeoutError:
                # No message received within timeout - send ping to verify
                try:
                    await websocket.send_json({"type": "ping", "data": {}})
                    raw_message = await asyncio.wait_for(
                        websocket.receive_text(),
                        timeout=PING_VERIFY_TIMEOUT,
                    )
                except asyncio.TimeoutError:
                    logger.info(f"Connection timeout for user: {authenticated_user_id}")
                    try:
                        await websocket.close(
                            code=status.WS_1001_GOING_AWAY, reason="Connection timeout"
                        )
                    except Exception as e:
                        logger.debug(f"Close after timeout failed: {e}")
                    break

            # Rate limiting check
            current_time = loop.time()
            message_timestamps[:] = [
                t for t in message_timestamps
                if current_time - t < settings.ws_rate_limit_window
            ]

            if len(message_timestamps) >= settings.ws_rate_limit_messages:
                logger.warning(f"Rate limit exceeded for user {authenticated_user_id}")
                await websocket.send_json({
                    "type": "error",
                    "data": {"error": "RATE_LIMIT", "message": "Too many messages, slow down"},
                })
                continue

            message_timestamps.append(current_time)

            if len(raw_message) > settings.ws_max_message_size:
                logger.warning(
                    f"Message too large from user {authenticated_user_id}: "
                    f"{len(raw_message)} bytes (max: {settings.ws_max_message_size})"
                )
                await websocket.send_json({
                    "type": "error",
                    "data": {
                        "error": "MESSAGE_TOO_LARGE",
                        "message": f"Message exceeds maximum size of {settings.ws_max_message_size} bytes",
                    },
                })
                continue

            try:
                data = json.loads(raw_message)
            except json.JSONDecodeError:
                logger.warning(f"Invalid JSON from user {authenticated_user_id}")
                await websocket.send_json({
                    "type": "error",
                    "data": {"error": "INVALID_JSON", "message": "Invalid JSON format"},
                })
                continue

            if not isinstance(data, dict):
                continue

            await realtime.router.handle_message(connection, data)

    except WebSocketDisconnect as e:
        logger.info(f"WebSocket disconnect for user {authenticated_user_id}: code={e.code}")
    except Exception as e:
        logger.error(f"WebSocket exception for user {authenticated_user_id}: {e}")
    finally:
        # Unregister before any await so cancellation cannot skip it
        realtime.router.handle_disconnect(connection)
        ping_task.cancel()
        try:
            await ping_task
        except asyncio.CancelledError:
            pass
