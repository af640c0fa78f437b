"""Rate limiting data models.

This module contains the immutable value types shared by the registry,
the store adapters and the decision engine.
"""

import time
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class IdentificationMode(str, Enum):
    """How a request is mapped to a client identifier."""
    IP = "ip"
    SESSION = "session"


@dataclass(frozen=True)
class Profile:
    """A named throttling policy.

    Attributes:
        name: Registry name referenced by call sites
        max_requests: Requests allowed per window
        window_seconds: Length of the sliding window
        key_prefix: Store namespace for this profile's buckets
        identification: Whether clients are keyed by IP or session
    """
    name: str
    max_requests: int
    window_seconds: int
    key_prefix: str
    identification: IdentificationMode = IdentificationMode.IP


@dataclass(frozen=True)
class BucketKey:
    """One client's counter state within one profile's namespace."""
    prefix: str
    identifier: str

    def serialize(self) -> str:
        """Render the store key."""
        return f"{self.prefix}:{self.identifier}"

    def __str__(self) -> str:
        return self.serialize()


@dataclass(frozen=True)
class Decision:
    """Outcome of a rate limit check. Derived per request, never stored."""
    allowed: bool
    remaining: int
    limit: int
    reset_at: int

    def retry_after(self, now: Optional[float] = None) -> int:
        """Seconds until reset_at, never less than 1."""
        now = time.time() if now is None else now
        return max(1, int(self.reset_at - int(now)))

    @classmethod
    def fail_open(cls, profile: Profile, now: float) -> "Decision":
        """Decision returned when the store cannot be consulted."""
        return cls(
            allowed=True,
            remaining=profile.max_requests,
            limit=profile.max_requests,
            reset_at=int(now + profile.window_seconds),
        )
