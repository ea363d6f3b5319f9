"""Configuration management using pydantic-settings."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # JWT settings
    jwt_secret: str
    jwt_algorithm: str = "HS256"
    jwt_expiration_minutes: int = 1440

    # Server settings
    host: str = "0.0.0.0"
    port: int = 3000
    cors_origins: list[str] = ["http://localhost:3001"]

    # WebSocket settings
    ws_max_connections_per_user: int = 50
    ws_max_message_size: int = 65536  # 64KB
    ws_ping_interval: float = 25.0
    ws_ping_timeout: float = 60.0
    ws_rate_limit_messages: int = 100
    ws_rate_limit_window: float = 10.0
    # Reject join-user-room / handshake ids that differ from the token subject
    ws_enforce_room_identity: bool = True

    # Notification payloads
    note_excerpt_length: int = 100

    # Redis settings (optional pub/sub backplane for multi-worker delivery)
    redis_url: str = "redis://localhost:6379/0"
    redis_enabled: bool = True
    redis_max_connections: int = 50
    redis_socket_timeout: float = 5.0
    redis_retry_on_timeout: bool = True
    redis_required: bool = False  # Set True for multi-worker deployment


# Global settings instance
settings = Settings()
