"""Notification client: reconnecting channel and in-memory notification log."""

from .connection import (
    AiohttpTransport,
    ClientTransport,
    ConnectionState,
    HandshakeRejected,
    NotificationClient,
    ReconnectPolicy,
)
from .notifications import (
    ClientNotification,
    DesktopNotifier,
    NotificationStore,
    build_notification,
)

__all__ = [
    # Connection
    "AiohttpTransport",
    "ClientTransport",
    "ConnectionState",
    "HandshakeRejected",
    "NotificationClient",
    "ReconnectPolicy",
    # Notifications
    "ClientNotification",
    "DesktopNotifier",
    "NotificationStore",
    "build_notification",
]
