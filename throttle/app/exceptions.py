"""Custom exceptions for the limiter."""

import time
from typing import Optional


class ThrottleException(Exception):
    """Base class for limiter exceptions with HTTP status code.

    All custom exceptions should inherit from this class and define
    their specific status_code for consistent HTTP response handling.
    """
    status_code: int = 500
    code: str = "INTERNAL_ERROR"

    def __init__(self, message: str = "Rate limiter error"):
        self.message = message
        super().__init__(message)


class ConfigError(ThrottleException):
    """Raised for an invalid or unknown rate limit profile.

    Raised at startup so the process never serves traffic with a broken
    policy.
    """
    code = "RATE_LIMIT_CONFIG_ERROR"


class StoreUnavailableError(ThrottleException):
    """Raised by store adapters on connection, timeout or protocol failure.

    The decision engine always recovers from it by failing open.
    """
    status_code = 503
    code = "RATE_LIMIT_STORE_UNAVAILABLE"

    def __init__(self, operation: str, detail: str = ""):
        self.operation = operation
        message = f"Rate limit store failed during {operation}"
        if detail:
            message += f": {detail}"
        super().__init__(message)


class RateLimitExceededError(ThrottleException):
    """Raised by handlers that check the limit inline and want a 429.

    Maps to HTTP 429 Too Many Requests.
    """
    status_code = 429
    code = "RATE_LIMIT_EXCEEDED"

    def __init__(
        self,
        limit: int,
        reset_at: int,
        message: str = "Too many requests. Please try again later.",
    ):
        self.limit = limit
        self.reset_at = reset_at
        super().__init__(message)

    def retry_after(self, now: Optional[float] = None) -> int:
        """Seconds until reset_at, never less than 1."""
        now = time.time() if now is None else now
        return max(1, int(self.reset_at - int(now)))

    def to_response(self, now: Optional[float] = None) -> dict:
        """Convert to the standardized throttling body."""
        return {
            "error": self.message,
            "code": self.code,
            "limit": self.limit,
            "resetAt": self.reset_at,
            "retryAfter": self.retry_after(now),
        }
