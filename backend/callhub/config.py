"""
Application configuration.
Settings are read from environment variables and an optional .env file.

Version: 1.0.0
"""
from functools import lru_cache
from typing import List, Optional
from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
import logging

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """
    Call signaling service configuration.

    Every field can be overridden with an environment variable of the
    same name (case-insensitive), e.g. ``CALL_RING_TIMEOUT_SECONDS=30``.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # ===========================
    # Application
    # ===========================

    app_name: str = Field(
        default="CallHub Signaling Service",
        description="Human readable application name"
    )

    app_version: str = Field(
        default="1.0.0",
        description="Application version"
    )

    environment: str = Field(
        default="development",
        description="Deployment environment (development, testing, staging, production)"
    )

    debug: bool = Field(
        default=False,
        description="Enable debug mode (API docs, verbose errors)"
    )

    log_level: str = Field(
        default="INFO",
        description="Root log level"
    )

    # ===========================
    # API
    # ===========================

    api_host: str = Field(default="0.0.0.0", description="Bind address")
    api_port: int = Field(default=5000, ge=1, le=65535, description="Bind port")
    api_prefix: str = Field(default="/api", description="REST API prefix")

    cors_origins: str = Field(
        default="http://localhost:5173",
        description="Comma separated list of allowed CORS origins"
    )

    cors_allow_credentials: bool = Field(default=True)

    # ===========================
    # Database
    # ===========================

    database_url: str = Field(
        default="sqlite:///./data/callhub.db",
        description="Call-log database URL (sqlite:/// or postgresql://)"
    )

    database_echo: bool = Field(default=False, description="Echo SQL statements")
    database_pool_size: int = Field(default=10, ge=1, le=100)
    database_pool_overflow: int = Field(default=20, ge=0, le=100)
    database_pool_timeout: int = Field(default=30, ge=1)
    database_pool_recycle: int = Field(default=3600, ge=60)

    # ===========================
    # Redis / distributed locking
    # ===========================

    redis_url: Optional[str] = Field(
        default=None,
        description="Redis URL; required for cross-process session locks"
    )

    distributed_lock_enabled: bool = Field(
        default=False,
        description="Hold a Redis lock around every session mutation"
    )

    lock_timeout_seconds: int = Field(
        default=10,
        ge=1,
        le=300,
        description="Expiry of a distributed session lock"
    )

    # ===========================
    # Authentication
    # ===========================

    secret_key: SecretStr = Field(
        default=SecretStr("change-me-in-production"),
        description="JWT signing secret"
    )

    jwt_algorithm: str = Field(default="HS256", description="JWT algorithm")

    jwt_expiration_hours: int = Field(
        default=24 * 30,
        ge=1,
        description="Lifetime of tokens issued by AuthService.create_token"
    )

    user_directory_url: Optional[str] = Field(
        default=None,
        description="Base URL of the user service; the local users table is used when unset"
    )

    user_directory_timeout: float = Field(
        default=5.0,
        gt=0,
        description="Timeout for user service lookups in seconds"
    )

    user_cache_ttl: int = Field(
        default=300,
        ge=0,
        description="Seconds a resolved user record stays cached"
    )

    # ===========================
    # Call lifecycle
    # ===========================

    call_ring_timeout_seconds: float = Field(
        default=60.0,
        gt=0,
        description="Seconds a call may ring before it is marked missed"
    )

    call_fail_fast_offline: bool = Field(
        default=False,
        description="Refuse to ring a callee that has no open connection"
    )

    call_end_on_disconnect: bool = Field(
        default=True,
        description="End active calls (and cancel ringing ones) when a participant's connection drops"
    )

    signal_buffer_limit: int = Field(
        default=64,
        ge=1,
        le=1024,
        description="Client-side limit of signaling payloads buffered before accept"
    )

    ws_ping_interval: float = Field(
        default=20.0,
        gt=0,
        description="WebSocket protocol ping interval in seconds"
    )

    ws_ping_timeout: float = Field(
        default=20.0,
        gt=0,
        description="Seconds without a pong before a connection is considered dead"
    )

    # ===========================
    # Telemetry
    # ===========================

    enable_telemetry: bool = Field(
        default=True,
        description="Expose Prometheus metrics on /metrics"
    )

    slow_request_threshold: float = Field(
        default=1.0,
        gt=0,
        description="HTTP requests slower than this many seconds are logged as warnings"
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Restrict environment to known values."""
        allowed = {"development", "testing", "staging", "production"}
        v = v.lower()
        if v not in allowed:
            raise ValueError(f"environment must be one of {sorted(allowed)}")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        v = v.upper()
        if v not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Invalid log level: {v}")
        return v

    @property
    def cors_origin_list(self) -> List[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def is_development(self) -> bool:
        return self.environment == "development"

    @property
    def database_is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    @property
    def database_is_postgresql(self) -> bool:
        return self.database_url.startswith("postgresql")

    @property
    def async_database_url(self) -> str:
        """Database URL with the async driver substituted."""
        url = self.database_url
        if url.startswith("sqlite:///"):
            return url.replace("sqlite:///", "sqlite+aiosqlite:///", 1)
        if url.startswith("postgresql://"):
            return url.replace("postgresql://", "postgresql+asyncpg://", 1)
        return url

    def validate_configuration(self) -> List[str]:
        """
        Check for risky combinations of settings.

        Returns:
            List of warning messages (empty when configuration looks sane)
        """
        warnings = []

        if self.is_production and self.secret_key.get_secret_value() == "change-me-in-production":
            warnings.append("SECRET_KEY is using the default value in production")

        if self.distributed_lock_enabled and not self.redis_url:
            warnings.append("DISTRIBUTED_LOCK_ENABLED is set but REDIS_URL is empty; using local locks only")

        if self.is_production and self.database_is_sqlite:
            warnings.append("SQLite call log in production; consider PostgreSQL")

        return warnings


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()


__all__ = ["Settings", "get_settings", "settings"]
