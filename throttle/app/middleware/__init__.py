"""Middleware package for the limiter."""

from throttle.app.middleware.auth import require_admin
from throttle.app.middleware.rate_limit import (
    RateLimitMiddleware,
    apply_rate_limit_headers,
    build_throttled_response,
    rate_limited,
    with_rate_limit,
)

__all__ = [
    "require_admin",
    "RateLimitMiddleware",
    "apply_rate_limit_headers",
    "build_throttled_response",
    "rate_limited",
    "with_rate_limit",
]
