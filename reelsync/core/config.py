"""Application configuration (settings and environment).

Single source of truth for server and client configuration. Uses
pydantic-settings with .env support. Freshness, reconnect and heartbeat
constants live here so no call site hardcodes them.
"""

from functools import lru_cache

from pydantic import SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from environment and .env.

    Everything has a default. The server additionally requires SECRET_KEY
    (checked by require_secret_key at app creation); the client library
    only reads the sync constants.
    """

    # App
    app_name: str = "reelsync"
    app_version: str = "1.0.0"
    debug: bool = False

    # Security (JWT issued by the external auth layer, verified here)
    secret_key: SecretStr = SecretStr("")
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 480  # 8 hours

    # CORS
    allowed_origins: str = "http://localhost:3000,http://localhost:5000"

    # Redis fan-out of change events between worker processes
    redis_enabled: bool = False
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_db: int = 0
    redis_password: SecretStr | None = None
    change_channel: str = "reelsync:changes"

    # OpenTelemetry
    telemetry_enabled: bool = False
    telemetry_exporter: str = "console"
    telemetry_otlp_endpoint: str | None = None
    telemetry_sample_rate: float = 1.0
    telemetry_environment: str = "development"

    # Client: endpoints
    sync_url: str = "ws://localhost:5000/socket.io"
    api_base_url: str = "http://localhost:5000"
    http_timeout_seconds: float = 30.0

    # Client: cache freshness policy defaults
    cache_max_age_seconds: float = 300.0  # 5 minutes
    cache_refetch_interval_seconds: float = 30.0  # safety net without push
    cache_gc_seconds: float = 600.0  # 10 minutes idle before eviction
    cache_refetch_on_focus: bool = True
    cache_revalidate_tick_seconds: float = 1.0
    query_retry_attempts: int = 3
    query_retry_max_delay_seconds: float = 4.0

    # Client: transport
    reconnect_delay_seconds: float = 1.0
    reconnect_delay_max_seconds: float = 5.0
    reconnect_randomization: float = 0.5
    heartbeat_interval_seconds: float = 25.0
    heartbeat_timeout_seconds: float = 20.0
    connect_timeout_seconds: float = 20.0

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    @model_validator(mode="after")
    def validate_sync_bounds(self) -> "Settings":
        """Reject inconsistent freshness and reconnect bounds."""
        positive = {
            "cache_max_age_seconds": self.cache_max_age_seconds,
            "cache_refetch_interval_seconds": self.cache_refetch_interval_seconds,
            "cache_revalidate_tick_seconds": self.cache_revalidate_tick_seconds,
            "reconnect_delay_seconds": self.reconnect_delay_seconds,
            "heartbeat_interval_seconds": self.heartbeat_interval_seconds,
            "heartbeat_timeout_seconds": self.heartbeat_timeout_seconds,
            "connect_timeout_seconds": self.connect_timeout_seconds,
        }
        for name, value in positive.items():
            if value <= 0:
                raise ValueError(f"{name} must be positive, got {value}")
        if self.reconnect_delay_max_seconds < self.reconnect_delay_seconds:
            raise ValueError(
                "reconnect_delay_max_seconds must be >= reconnect_delay_seconds"
            )
        if not 0 <= self.reconnect_randomization <= 1:
            raise ValueError("reconnect_randomization must be between 0 and 1")
        if self.query_retry_attempts < 1:
            raise ValueError("query_retry_attempts must be at least 1")
        return self

    def require_secret_key(self) -> None:
        """Raise if SECRET_KEY is missing (server only)."""
        if not self.secret_key.get_secret_value():
            raise ValueError(
                "SECRET_KEY is required to verify session tokens. "
                "Generate with: openssl rand -hex 32."
            )


@lru_cache
def get_settings() -> Settings:
    """Return cached settings (single instance per process).

    In tests, call get_settings.cache_clear() after changing env vars so the
    next call picks up the new values.
    """
    return Settings()
