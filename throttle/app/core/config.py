from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All settings can be configured via environment variables or .env file.
    """

    # Debug mode - enables detailed error responses
    debug: bool = False

    # Shared store endpoint (owned by the connection manager, not the limiter)
    redis_url: str = Field(default="redis://localhost:6379/0", validation_alias="REDIS_URL")
    redis_socket_timeout: float = 0.5  # Per-command socket timeout in seconds
    redis_connect_timeout: float = 0.5  # Time to establish connection

    # Rate limiting settings
    rate_limit_backend: Literal["redis", "memory"] = "redis"
    rate_limit_store_timeout: float = 1.0  # Upper bound for one limiter decision
    rate_limit_ttl_buffer_seconds: int = 10  # Extra TTL so abandoned keys self-clean
    rate_limit_atomic: bool = False  # Use the Lua script instead of pipelined steps
    rate_limit_session_cookie: str = "session_id"
    rate_limit_default_profile: str = "api"  # Profile used by RateLimitMiddleware
    rate_limit_memory_max_keys: int = 10000  # LRU bound for the in-memory store

    # Admin API token (empty disables the admin endpoints)
    admin_token: str = ""

    # Logging settings
    log_level: str = "INFO"
    log_format: str = "text"  # text | structured | json

    @field_validator("redis_socket_timeout", "redis_connect_timeout", "rate_limit_store_timeout")
    @classmethod
    def validate_timeout_positive(cls, v: float) -> float:
        """Validate timeout values are positive."""
        if v <= 0:
            raise ValueError("Timeout values must be positive")
        return v

    @field_validator("rate_limit_ttl_buffer_seconds")
    @classmethod
    def validate_ttl_buffer(cls, v: int) -> int:
        """Validate TTL buffer is not negative."""
        if v < 0:
            raise ValueError("rate_limit_ttl_buffer_seconds must not be negative")
        return v

    @field_validator("rate_limit_memory_max_keys")
    @classmethod
    def validate_max_keys(cls, v: int) -> int:
        """Validate in-memory key bound is positive."""
        if v < 1:
            raise ValueError("rate_limit_memory_max_keys must be at least 1")
        return v

    @field_validator("admin_token")
    @classmethod
    def strip_admin_token(cls, v: str) -> str:
        return v.strip()

    model_config = SettingsConfigDict(env_file=".env", extra="ignore", populate_by_name=True)


# Global settings instance
settings = Settings()
