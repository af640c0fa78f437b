"""Distributed request rate limiting.

Library surface for handlers:

    from throttle import check_rate_limit, rate_limit, with_rate_limit
"""

from throttle.app.exceptions import ConfigError, RateLimitExceededError
from throttle.app.middleware.rate_limit import rate_limited, with_rate_limit
from throttle.app.services.rate_limit import (
    Decision,
    Profile,
    check_rate_limit,
    get_rate_limit_status,
    rate_limit,
    reset_rate_limit,
)

__all__ = [
    "ConfigError",
    "RateLimitExceededError",
    "Decision",
    "Profile",
    "check_rate_limit",
    "rate_limit",
    "with_rate_limit",
    "rate_limited",
    "reset_rate_limit",
    "get_rate_limit_status",
]
