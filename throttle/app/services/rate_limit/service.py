"""Rate limit decision engine.

Combines the client identifier, a profile and a sliding-window store into
an allow/deny Decision. The engine is fail-open: a store outage, timeout or
malformed reply is logged and the request is allowed, so a throttling
outage never becomes a service outage.
"""

import asyncio
import time
from typing import Callable, Optional, Union

from starlette.requests import Request

from throttle.app.core.config import settings
from throttle.app.core.logging import get_log_context, get_logger
from throttle.app.core.redis_client import get_redis_client
from throttle.app.exceptions import StoreUnavailableError
from throttle.app.services.rate_limit.identity import resolve_identifier
from throttle.app.services.rate_limit.models import BucketKey, Decision, Profile
from throttle.app.services.rate_limit.profiles import ProfileRegistry, get_profile_registry
from throttle.app.services.rate_limit.store import (
    InMemorySlidingWindowStore,
    RedisSlidingWindowStore,
    SlidingWindowStore,
)

logger = get_logger(__name__)

ProfileRef = Union[Profile, str]


class RateLimiter:
    """Decision engine over a sliding-window store.

    Provides:
    - check/rate_limit: count a request and decide
    - status: read-only peek at a bucket
    - reset: drop a bucket, e.g. to clear a false positive

    None of these raise for operational failures; they always resolve to a
    Decision (or None for reset).
    """

    def __init__(
        self,
        store: SlidingWindowStore,
        registry: Optional[ProfileRegistry] = None,
        timeout_seconds: float = 1.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the engine.

        Args:
            store: Backend holding the event sets
            registry: Profiles resolvable by name (defaults to the process registry)
            timeout_seconds: Upper bound for one store operation
            clock: Time source returning epoch seconds
        """
        self.store = store
        self.registry = registry if registry is not None else get_profile_registry()
        self.timeout_seconds = timeout_seconds
        self._clock = clock

    def now(self) -> float:
        return self._clock()

    def _profile(self, profile: ProfileRef) -> Profile:
        return self.registry.resolve(profile)

    async def check(self, client_key: str, profile: ProfileRef) -> Decision:
        """Count one request from client_key against profile.

        Args:
            client_key: Client identifier, e.g. ``ip:203.0.113.5``
            profile: Profile or registry name

        Returns:
            Decision for this request
        """
        profile = self._profile(profile)
        key = BucketKey(profile.key_prefix, client_key)
        now = self.now()

        try:
            decision = await asyncio.wait_for(
                self.store.hit(key, profile.max_requests, profile.window_seconds, now),
                timeout=self.timeout_seconds,
            )
        except (StoreUnavailableError, asyncio.TimeoutError) as e:
            return self._fail_open(profile, client_key, now, e)
        except Exception as e:
            logger.exception(
                "Unexpected rate limit error",
                extra=get_log_context(profile=profile.name, client_key=client_key),
            )
            return self._fail_open(profile, client_key, now, e)

        if decision.allowed:
            logger.debug(
                "Rate limit check passed",
                extra=get_log_context(
                    profile=profile.name,
                    client_key=client_key,
                    remaining=decision.remaining,
                    limit=decision.limit,
                ),
            )
        else:
            logger.warning(
                "Rate limit exceeded",
                extra=get_log_context(
                    profile=profile.name,
                    client_key=client_key,
                    limit=decision.limit,
                    reset_at=decision.reset_at,
                ),
            )
        return decision

    async def rate_limit(self, request: Request, profile: ProfileRef) -> Decision:
        """Resolve the request's identifier and check it against profile."""
        profile = self._profile(profile)
        client_key = resolve_identifier(request, profile.identification)
        return await self.check(client_key, profile)

    async def status(self, client_key: str, profile: ProfileRef) -> Decision:
        """Peek at a bucket without recording a request."""
        profile = self._profile(profile)
        key = BucketKey(profile.key_prefix, client_key)
        now = self.now()

        try:
            return await asyncio.wait_for(
                self.store.peek(key, profile.max_requests, profile.window_seconds, now),
                timeout=self.timeout_seconds,
            )
        except (StoreUnavailableError, asyncio.TimeoutError) as e:
            return self._fail_open(profile, client_key, now, e)
        except Exception as e:
            logger.exception(
                "Unexpected rate limit status error",
                extra=get_log_context(profile=profile.name, client_key=client_key),
            )
            return self._fail_open(profile, client_key, now, e)

    async def reset(self, client_key: str, prefix: str) -> None:
        """Delete all state for the client under prefix."""
        key = BucketKey(prefix, client_key)
        try:
            await asyncio.wait_for(self.store.clear(key), timeout=self.timeout_seconds)
        except (StoreUnavailableError, asyncio.TimeoutError) as e:
            logger.error(
                f"Failed to reset rate limit: {e!r}",
                extra=get_log_context(client_key=client_key, prefix=prefix),
            )
            return
        logger.info(
            "Rate limit reset",
            extra=get_log_context(client_key=client_key, prefix=prefix),
        )

    def _fail_open(self, profile: Profile, client_key: str, now: float, error: BaseException) -> Decision:
        logger.warning(
            f"Rate limiting fail-open triggered: {error!r}. Request allowed without rate limit check.",
            extra=get_log_context(profile=profile.name, client_key=client_key),
        )
        return Decision.fail_open(profile, now)


def build_store() -> SlidingWindowStore:
    """Build the store backend selected in settings."""
    if settings.rate_limit_backend == "memory":
        logger.info("Using in-memory rate limit store")
        return InMemorySlidingWindowStore(
            ttl_buffer_seconds=settings.rate_limit_ttl_buffer_seconds,
            max_keys=settings.rate_limit_memory_max_keys,
        )

    logger.info("Using Redis rate limit store", extra={"atomic": settings.rate_limit_atomic})
    return RedisSlidingWindowStore(
        get_redis_client(),
        ttl_buffer_seconds=settings.rate_limit_ttl_buffer_seconds,
        atomic=settings.rate_limit_atomic,
    )


# Global engine instance (singleton pattern)
_rate_limiter: Optional[RateLimiter] = None


def get_rate_limiter() -> RateLimiter:
    """Get or create the process-wide engine from settings."""
    global _rate_limiter
    if _rate_limiter is None:
        _rate_limiter = RateLimiter(
            store=build_store(),
            registry=get_profile_registry(),
            timeout_seconds=settings.rate_limit_store_timeout,
        )
    return _rate_limiter


def set_rate_limiter(limiter: Optional[RateLimiter]) -> None:
    """Install a specific engine as the process-wide one."""
    global _rate_limiter
    _rate_limiter = limiter


def reset_rate_limiter() -> None:
    """Reset the global engine. This is primarily useful for testing."""
    set_rate_limiter(None)


async def check_rate_limit(client_key: str, profile: ProfileRef) -> Decision:
    """Count one request for client_key against profile."""
    return await get_rate_limiter().check(client_key, profile)


async def rate_limit(request: Request, profile: ProfileRef) -> Decision:
    """Count one request, deriving the client identifier from the request."""
    return await get_rate_limiter().rate_limit(request, profile)


async def reset_rate_limit(client_key: str, prefix: str) -> None:
    """Forget everything recorded for client_key under prefix."""
    await get_rate_limiter().reset(client_key, prefix)


async def get_rate_limit_status(client_key: str, profile: ProfileRef) -> Decision:
    """Read-only view of client_key's bucket for profile."""
    return await get_rate_limiter().status(client_key, profile)
