"""Tests for the rate limit decision engine.

Tests cover:
- Per-profile admission over a sliding window
- Client and profile isolation
- Window expiry and manual reset
- Fail-open on store errors and timeouts
- Read-only status
- Module-level helpers over the process-wide engine
"""

import asyncio
from unittest.mock import patch

import pytest
from starlette.requests import Request

from throttle.app.exceptions import StoreUnavailableError
from throttle.app.services.rate_limit import (
    DEFAULT_PROFILES,
    Decision,
    IdentificationMode,
    InMemorySlidingWindowStore,
    Profile,
    ProfileRegistry,
    RateLimiter,
    SlidingWindowStore,
    check_rate_limit,
    get_rate_limit_status,
    rate_limit,
    reset_rate_limit,
    reset_rate_limiter,
    set_rate_limiter,
)

START = 1_700_000_000.0

AUTH = Profile("auth", 5, 900, "rl:test")


class FakeClock:
    """Manually advanced epoch clock."""

    def __init__(self, now: float = START):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FailingStore(SlidingWindowStore):
    """Store whose every operation fails."""

    def __init__(self, error: Exception):
        super().__init__()
        self.error = error
        self.calls = 0

    async def hit(self, key, limit, window_seconds, now):
        self.calls += 1
        raise self.error

    async def peek(self, key, limit, window_seconds, now):
        raise self.error

    async def clear(self, key):
        raise self.error

    async def ping(self):
        raise self.error


class SlowStore(InMemorySlidingWindowStore):
    """Store that never answers within the engine's timeout."""

    async def hit(self, key, limit, window_seconds, now):
        await asyncio.sleep(10)
        return await super().hit(key, limit, window_seconds, now)


def make_request(host: str = "192.168.1.100", headers: dict = None) -> Request:
    raw_headers = [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()]
    return Request({
        "type": "http",
        "method": "GET",
        "path": "/",
        "query_string": b"",
        "headers": raw_headers,
        "client": (host, 50000),
    })


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def limiter(clock):
    return RateLimiter(InMemorySlidingWindowStore(), clock=clock)


@pytest.fixture(autouse=True)
def _reset_global_limiter():
    yield
    reset_rate_limiter()


class TestAdmission:
    """Tests for check()."""

    @pytest.mark.asyncio
    async def test_allows_up_to_limit_then_denies(self, limiter, clock):
        remaining = []
        for _ in range(5):
            decision = await limiter.check("ip:192.168.1.100", AUTH)
            assert decision.allowed is True
            remaining.append(decision.remaining)
        assert remaining == [4, 3, 2, 1, 0]

        denied = await limiter.check("ip:192.168.1.100", AUTH)
        assert denied.allowed is False
        assert denied.remaining == 0
        assert denied.limit == 5
        assert denied.reset_at == int(START + 900)
        assert denied.retry_after(clock()) == 900

    @pytest.mark.asyncio
    async def test_clients_are_isolated(self, limiter):
        for _ in range(5):
            assert (await limiter.check("ip:10.0.0.1", AUTH)).allowed
        for _ in range(5):
            assert (await limiter.check("ip:10.0.0.2", AUTH)).allowed

        assert not (await limiter.check("ip:10.0.0.1", AUTH)).allowed
        assert not (await limiter.check("ip:10.0.0.2", AUTH)).allowed

    @pytest.mark.asyncio
    async def test_profiles_are_isolated(self, limiter):
        other = Profile("other", 5, 900, "rl:other")
        for _ in range(5):
            await limiter.check("ip:10.0.0.1", AUTH)

        assert not (await limiter.check("ip:10.0.0.1", AUTH)).allowed
        assert (await limiter.check("ip:10.0.0.1", other)).allowed

    @pytest.mark.asyncio
    async def test_window_expiry_restores_capacity(self, limiter, clock):
        for _ in range(6):
            await limiter.check("ip:192.168.1.100", AUTH)

        clock.advance(901)
        decision = await limiter.check("ip:192.168.1.100", AUTH)
        assert decision.allowed is True
        assert decision.remaining == 4

    @pytest.mark.asyncio
    async def test_still_denied_inside_window(self, limiter, clock):
        for _ in range(5):
            await limiter.check("ip:192.168.1.100", AUTH)

        clock.advance(899)
        assert not (await limiter.check("ip:192.168.1.100", AUTH)).allowed

    @pytest.mark.asyncio
    async def test_never_more_than_limit_in_any_window(self, clock):
        profile = Profile("burst", 5, 60, "rl:burst")
        limiter = RateLimiter(InMemorySlidingWindowStore(), clock=clock)

        admitted = []
        for _ in range(200):
            if (await limiter.check("ip:10.0.0.9", profile)).allowed:
                admitted.append(clock())
            clock.advance(3)

        assert admitted
        for t in admitted:
            in_window = [s for s in admitted if t - 60 <= s <= t]
            assert len(in_window) <= 5

    @pytest.mark.asyncio
    async def test_resolves_profile_by_name(self, limiter):
        decision = await limiter.check("ip:10.0.0.1", "auth")
        assert decision.limit == 5
        assert decision.remaining == 4

    @pytest.mark.asyncio
    async def test_denial_is_logged(self, limiter):
        with patch("throttle.app.services.rate_limit.service.logger") as mock_logger:
            for _ in range(6):
                await limiter.check("ip:10.0.0.1", AUTH)

        mock_logger.warning.assert_called_once()
        assert mock_logger.warning.call_args[0][0] == "Rate limit exceeded"
        extra = mock_logger.warning.call_args[1]["extra"]
        assert extra["profile"] == "auth"
        assert "10.0.0.1" not in str(extra)


class TestRequestIdentification:
    """Tests for rate_limit(request, profile)."""

    @pytest.mark.asyncio
    async def test_counts_by_client_address(self, limiter):
        request = make_request(host="203.0.113.5")
        for _ in range(5):
            await limiter.rate_limit(request, AUTH)

        assert not (await limiter.rate_limit(request, AUTH)).allowed
        assert not (await limiter.check("ip:203.0.113.5", AUTH)).allowed
        assert (await limiter.rate_limit(make_request(host="203.0.113.6"), AUTH)).allowed

    @pytest.mark.asyncio
    async def test_session_profile_counts_by_session(self, limiter):
        cart = Profile("cart", 2, 3600, "rl:cart", IdentificationMode.SESSION)
        alice = make_request(headers={"Cookie": "session_id=alice"})
        bob = make_request(headers={"Cookie": "session_id=bob"})

        for _ in range(2):
            assert (await limiter.rate_limit(alice, cart)).allowed
        assert not (await limiter.rate_limit(alice, cart)).allowed

        # Same address, different session
        assert (await limiter.rate_limit(bob, cart)).allowed


class TestFailOpen:
    """A store outage must never block traffic."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [
        StoreUnavailableError("hit", "Connection refused"),
        RuntimeError("unexpected"),
    ])
    async def test_store_errors_allow_every_request(self, clock, error):
        store = FailingStore(error)
        limiter = RateLimiter(store, clock=clock)

        for _ in range(100):
            decision = await limiter.check("ip:10.0.0.1", AUTH)
            assert decision.allowed is True
            assert decision.remaining == AUTH.max_requests
            assert decision.limit == AUTH.max_requests
            assert decision.reset_at == int(START + AUTH.window_seconds)

        assert store.calls == 100

    @pytest.mark.asyncio
    async def test_timeout_allows_request(self, clock):
        limiter = RateLimiter(SlowStore(), timeout_seconds=0.01, clock=clock)
        decision = await limiter.check("ip:10.0.0.1", AUTH)
        assert decision == Decision.fail_open(AUTH, START)

    @pytest.mark.asyncio
    async def test_fail_open_is_logged(self, clock):
        limiter = RateLimiter(FailingStore(StoreUnavailableError("hit")), clock=clock)
        with patch("throttle.app.services.rate_limit.service.logger") as mock_logger:
            await limiter.check("ip:10.0.0.1", AUTH)

        mock_logger.warning.assert_called_once()
        assert "fail-open" in mock_logger.warning.call_args[0][0]

    @pytest.mark.asyncio
    async def test_status_fails_open(self, clock):
        limiter = RateLimiter(FailingStore(StoreUnavailableError("peek")), clock=clock)
        decision = await limiter.status("ip:10.0.0.1", AUTH)
        assert decision.allowed is True
        assert decision.remaining == AUTH.max_requests

    @pytest.mark.asyncio
    async def test_reset_failure_does_not_raise(self, clock):
        limiter = RateLimiter(FailingStore(StoreUnavailableError("clear")), clock=clock)
        with patch("throttle.app.services.rate_limit.service.logger") as mock_logger:
            assert await limiter.reset("ip:10.0.0.1", "rl:test") is None
        mock_logger.error.assert_called_once()


class TestResetAndStatus:
    """Tests for reset() and status()."""

    @pytest.mark.asyncio
    async def test_reset_restores_full_capacity(self, limiter):
        for _ in range(6):
            await limiter.check("ip:192.168.1.100", AUTH)

        await limiter.reset("ip:192.168.1.100", "rl:test")

        decision = await limiter.check("ip:192.168.1.100", AUTH)
        assert decision.allowed is True
        assert decision.remaining == 4

    @pytest.mark.asyncio
    async def test_reset_only_touches_one_client(self, limiter):
        for client in ("ip:10.0.0.1", "ip:10.0.0.2"):
            for _ in range(5):
                await limiter.check(client, AUTH)

        await limiter.reset("ip:10.0.0.1", "rl:test")

        assert (await limiter.check("ip:10.0.0.1", AUTH)).allowed
        assert not (await limiter.check("ip:10.0.0.2", AUTH)).allowed

    @pytest.mark.asyncio
    async def test_status_reports_usage(self, limiter):
        await limiter.check("ip:10.0.0.1", AUTH)
        await limiter.check("ip:10.0.0.1", AUTH)

        status = await limiter.status("ip:10.0.0.1", AUTH)
        assert status.allowed is True
        assert status.remaining == 3
        assert status.limit == 5

    @pytest.mark.asyncio
    async def test_status_does_not_consume(self, clock):
        observed = RateLimiter(InMemorySlidingWindowStore(), clock=clock)
        control = RateLimiter(InMemorySlidingWindowStore(), clock=clock)

        for engine in (observed, control):
            for _ in range(3):
                await engine.check("ip:10.0.0.1", AUTH)
        for _ in range(10):
            await observed.status("ip:10.0.0.1", AUTH)

        assert await observed.check("ip:10.0.0.1", AUTH) == await control.check("ip:10.0.0.1", AUTH)


class TestModuleHelpers:
    """Tests for the functions bound to the process-wide engine."""

    @pytest.mark.asyncio
    async def test_helpers_use_installed_engine(self, clock):
        registry = ProfileRegistry([AUTH])
        set_rate_limiter(RateLimiter(InMemorySlidingWindowStore(), registry=registry, clock=clock))

        for _ in range(5):
            assert (await check_rate_limit("ip:192.168.1.100", "auth")).allowed
        assert not (await check_rate_limit("ip:192.168.1.100", "auth")).allowed

        status = await get_rate_limit_status("ip:192.168.1.100", "auth")
        assert status.remaining == 0

        await reset_rate_limit("ip:192.168.1.100", "rl:test")
        assert (await rate_limit(make_request(), "auth")).remaining == 4

    def test_default_registry_is_used(self):
        limiter = RateLimiter(InMemorySlidingWindowStore())
        assert set(limiter.registry) == {p.name for p in DEFAULT_PROFILES}
