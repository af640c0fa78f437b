"""Sliding-window rate limiting backed by a shared store.

This package provides profile-based admission control across stateless
application instances, using Redis sorted sets for coordination, with a
fail-open policy when the store is unavailable.
"""

from .identity import resolve_identifier
from .models import BucketKey, Decision, IdentificationMode, Profile
from .profiles import (
    DEFAULT_PROFILES,
    ProfileRegistry,
    get_profile_registry,
    reset_profile_registry,
    validate_profile,
)
from .store import (
    InMemorySlidingWindowStore,
    RedisSlidingWindowStore,
    SlidingWindowStore,
)
from .service import (
    RateLimiter,
    check_rate_limit,
    get_rate_limit_status,
    get_rate_limiter,
    rate_limit,
    reset_rate_limit,
    reset_rate_limiter,
    set_rate_limiter,
)

__all__ = [
    # Models
    "BucketKey",
    "Decision",
    "IdentificationMode",
    "Profile",
    # Registry
    "DEFAULT_PROFILES",
    "ProfileRegistry",
    "get_profile_registry",
    "reset_profile_registry",
    "validate_profile",
    # Identification
    "resolve_identifier",
    # Stores
    "SlidingWindowStore",
    "RedisSlidingWindowStore",
    "InMemorySlidingWindowStore",
    # Engine
    "RateLimiter",
    "get_rate_limiter",
    "set_rate_limiter",
    "reset_rate_limiter",
    "check_rate_limit",
    "rate_limit",
    "reset_rate_limit",
    "get_rate_limit_status",
]
