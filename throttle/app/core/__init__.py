"""Core utilities for the limiter."""

from throttle.app.core.config import settings
from throttle.app.core.logging import get_log_context, get_logger, setup_logging
from throttle.app.core.redis_client import (
    close_redis_client,
    get_redis_client,
    reset_redis_client,
)

__all__ = [
    "settings",
    "get_logger",
    "get_log_context",
    "setup_logging",
    "get_redis_client",
    "close_redis_client",
    "reset_redis_client",
]
