"""Sliding-window store adapters.

Each bucket is an ordered set of events scored by arrival time in epoch
milliseconds. A hit trims events that fell out of the window, counts what
is left and records a new event only when the count is under the limit.

Backends:
- RedisSlidingWindowStore: shared across every process pointing at the
  same Redis, the production backend.
- InMemorySlidingWindowStore: per-process, for single-instance and
  development deployments.
"""

import asyncio
import bisect
import uuid
from abc import ABC, abstractmethod
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Optional

from redis.exceptions import RedisError

from throttle.app.exceptions import StoreUnavailableError
from throttle.app.services.rate_limit.models import BucketKey, Decision
from throttle.app.services.rate_limit.redis_lua import SLIDING_WINDOW_SCRIPT

DEFAULT_TTL_BUFFER_SECONDS = 10


def _new_member(now_ms: int) -> str:
    return f"{now_ms}-{uuid.uuid4().hex}"


def _build_decision(allowed: bool, count: int, limit: int, window_seconds: int, now: float) -> Decision:
    # reset_at approximates when the window frees up; it is not derived
    # from the oldest stored event.
    return Decision(
        allowed=allowed,
        remaining=max(0, limit - count) if allowed else 0,
        limit=limit,
        reset_at=int(now + window_seconds),
    )


class SlidingWindowStore(ABC):
    """Abstract base class for sliding-window store backends."""

    def __init__(self, ttl_buffer_seconds: int = DEFAULT_TTL_BUFFER_SECONDS) -> None:
        self.ttl_buffer_seconds = ttl_buffer_seconds

    @abstractmethod
    async def hit(self, key: BucketKey, limit: int, window_seconds: int, now: float) -> Decision:
        """Record a request if the bucket has room.

        Args:
            key: Bucket to count against
            limit: Maximum events allowed in the window
            window_seconds: Window length
            now: Current time in epoch seconds

        Returns:
            Decision; ``remaining`` counts the event just recorded

        Raises:
            StoreUnavailableError: On any backend failure
        """

    @abstractmethod
    async def peek(self, key: BucketKey, limit: int, window_seconds: int, now: float) -> Decision:
        """Report the bucket's state without recording anything."""

    @abstractmethod
    async def clear(self, key: BucketKey) -> None:
        """Delete all state for the bucket."""

    @abstractmethod
    async def ping(self) -> bool:
        """Check that the backend is reachable."""


class RedisSlidingWindowStore(SlidingWindowStore):
    """Redis sorted-set implementation.

    By default a hit is two pipelined round-trips: trim+count, then
    add+expire. The steps are not one atomic unit, so requests racing on the
    same key can each see a count under the limit and all be admitted. The
    overcount is bounded by the number of concurrent racers minus one and is
    accepted in exchange for lower latency. Pass ``atomic=True`` to run the
    whole sequence as a Lua script instead.
    """

    def __init__(
        self,
        redis_client: Any,
        ttl_buffer_seconds: int = DEFAULT_TTL_BUFFER_SECONDS,
        atomic: bool = False,
    ) -> None:
        super().__init__(ttl_buffer_seconds)
        self._redis = redis_client
        self.atomic = atomic

    async def hit(self, key: BucketKey, limit: int, window_seconds: int, now: float) -> Decision:
        store_key = key.serialize()
        now_ms = int(now * 1000)
        window_ms = window_seconds * 1000
        ttl = window_seconds + self.ttl_buffer_seconds
        member = _new_member(now_ms)

        try:
            if self.atomic:
                reply = await self._redis.eval(
                    SLIDING_WINDOW_SCRIPT, 1, store_key, now_ms, window_ms, limit, ttl, member
                )
                allowed, count = int(reply[0]) == 1, int(reply[1])
                return _build_decision(allowed, count, limit, window_seconds, now)

            pipe = self._redis.pipeline(transaction=False)
            pipe.zremrangebyscore(store_key, "-inf", f"({now_ms - window_ms}")
            pipe.zcard(store_key)
            _, count = await pipe.execute()
            count = int(count)

            if count >= limit:
                return _build_decision(False, count, limit, window_seconds, now)

            pipe = self._redis.pipeline(transaction=False)
            pipe.zadd(store_key, {member: now_ms})
            pipe.expire(store_key, ttl)
            await pipe.execute()
        except RedisError as e:
            raise StoreUnavailableError("hit", str(e)) from e
        except (TypeError, ValueError, IndexError) as e:
            raise StoreUnavailableError("hit", f"malformed reply: {e}") from e

        return _build_decision(True, count + 1, limit, window_seconds, now)

    async def peek(self, key: BucketKey, limit: int, window_seconds: int, now: float) -> Decision:
        now_ms = int(now * 1000)
        try:
            # ZCOUNT is read-only; expired events are left for the next hit
            count = int(await self._redis.zcount(key.serialize(), now_ms - window_seconds * 1000, "+inf"))
        except RedisError as e:
            raise StoreUnavailableError("peek", str(e)) from e
        except (TypeError, ValueError) as e:
            raise StoreUnavailableError("peek", f"malformed reply: {e}") from e

        return Decision(
            allowed=count < limit,
            remaining=max(0, limit - count),
            limit=limit,
            reset_at=int(now + window_seconds),
        )

    async def clear(self, key: BucketKey) -> None:
        try:
            await self._redis.delete(key.serialize())
        except RedisError as e:
            raise StoreUnavailableError("clear", str(e)) from e

    async def ping(self) -> bool:
        try:
            return bool(await self._redis.ping())
        except RedisError as e:
            raise StoreUnavailableError("ping", str(e)) from e


@dataclass
class _Bucket:
    """Events of one key, sorted by score, plus the key's expiry."""
    events: list[tuple[int, str]] = field(default_factory=list)
    expires_at: Optional[float] = None


class InMemorySlidingWindowStore(SlidingWindowStore):
    """Per-process implementation with the same semantics as Redis.

    Suitable for single-instance deployments: every worker process keeps its
    own buckets, so N workers admit up to N times the limit.

    Memory optimization:
    - Uses OrderedDict for LRU cache behavior
    - Evicts the oldest 20% of keys once max_keys is exceeded
    - Key TTLs are honoured lazily on access
    """

    DEFAULT_MAX_KEYS = 10000

    def __init__(
        self,
        ttl_buffer_seconds: int = DEFAULT_TTL_BUFFER_SECONDS,
        max_keys: int = DEFAULT_MAX_KEYS,
    ) -> None:
        super().__init__(ttl_buffer_seconds)
        self._max_keys = max_keys
        self._buckets: OrderedDict[str, _Bucket] = OrderedDict()
        self._lock = asyncio.Lock()

    def _live_bucket(self, store_key: str, now: float) -> Optional[_Bucket]:
        bucket = self._buckets.get(store_key)
        if bucket is None:
            return None
        if bucket.expires_at is not None and bucket.expires_at <= now:
            del self._buckets[store_key]
            return None
        self._buckets.move_to_end(store_key)
        return bucket

    def _enforce_lru_limit(self) -> None:
        if len(self._buckets) > self._max_keys:
            remove_count = max(1, int(self._max_keys * 0.2))
            for _ in range(remove_count):
                self._buckets.popitem(last=False)

    async def hit(self, key: BucketKey, limit: int, window_seconds: int, now: float) -> Decision:
        store_key = key.serialize()
        now_ms = int(now * 1000)
        cutoff = now_ms - window_seconds * 1000

        async with self._lock:
            bucket = self._live_bucket(store_key, now)
            if bucket is not None:
                # Events are sorted, so everything before the cutoff is a prefix
                bucket.events = bucket.events[bisect.bisect_left(bucket.events, (cutoff, "")):]
            count = len(bucket.events) if bucket is not None else 0

            if count >= limit:
                return _build_decision(False, count, limit, window_seconds, now)

            if bucket is None:
                bucket = _Bucket()
                self._buckets[store_key] = bucket
                self._enforce_lru_limit()
            bisect.insort(bucket.events, (now_ms, _new_member(now_ms)))
            bucket.expires_at = now + window_seconds + self.ttl_buffer_seconds

        return _build_decision(True, count + 1, limit, window_seconds, now)

    async def peek(self, key: BucketKey, limit: int, window_seconds: int, now: float) -> Decision:
        cutoff = int(now * 1000) - window_seconds * 1000
        async with self._lock:
            bucket = self._buckets.get(key.serialize())
            if bucket is None or (bucket.expires_at is not None and bucket.expires_at <= now):
                count = 0
            else:
                count = len(bucket.events) - bisect.bisect_left(bucket.events, (cutoff, ""))

        return Decision(
            allowed=count < limit,
            remaining=max(0, limit - count),
            limit=limit,
            reset_at=int(now + window_seconds),
        )

    async def clear(self, key: BucketKey) -> None:
        async with self._lock:
            self._buckets.pop(key.serialize(), None)

    async def ping(self) -> bool:
        return True

    def __len__(self) -> int:
        return len(self._buckets)
