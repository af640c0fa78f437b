"""Shared Redis connection for the limiter.

The connection is created lazily from ``settings.redis_url``; redis-py does
not open a socket until the first command, so building the client never
fails because the server is down.
"""

from typing import Any, Optional

import redis.asyncio as aioredis

from throttle.app.core.config import settings
from throttle.app.core.logging import get_logger

logger = get_logger(__name__)

# Global client instance (singleton pattern)
_redis_client: Optional[Any] = None


def get_redis_client(redis_url: Optional[str] = None) -> Any:
    """Get or create the process-wide Redis client.

    Args:
        redis_url: Override for settings.redis_url (first call only).

    Returns:
        A ``redis.asyncio.Redis`` instance with short socket timeouts.
    """
    global _redis_client

    if _redis_client is None:
        _redis_client = aioredis.from_url(
            redis_url or settings.redis_url,
            socket_timeout=settings.redis_socket_timeout,
            socket_connect_timeout=settings.redis_connect_timeout,
            decode_responses=True,
        )
        logger.debug("Redis client created")
    return _redis_client


async def close_redis_client() -> None:
    """Close the Redis connection pool, if one was created."""
    global _redis_client

    if _redis_client is not None:
        # Use aclose() for proper async cleanup in redis-py 5.0+
        await _redis_client.aclose()
        _redis_client = None
        logger.info("Redis client closed")


def reset_redis_client() -> None:
    """Forget the global client without closing it.

    This is primarily useful for testing.
    """
    global _redis_client
    _redis_client = None
