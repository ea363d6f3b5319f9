"""Business logic services."""

from .auth_service import (
    TokenData,
    create_access_token,
    decode_access_token,
    get_current_user_id,
)
from .notification_service import NotificationService, get_notification_service
from .redis_service import RedisService

__all__ = [
    # Auth service
    "TokenData",
    "create_access_token",
    "decode_access_token",
    "get_current_user_id",
    # Notification service
    "NotificationService",
    "get_notification_service",
    # Redis service
    "RedisService",
]
