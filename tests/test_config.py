"""Tests for settings loading and validation."""

import pytest
from pydantic import ValidationError

from throttle.app.core.config import Settings


class TestSettings:
    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("REDIS_URL", raising=False)
        config = Settings(_env_file=None)

        assert config.redis_url == "redis://localhost:6379/0"
        assert config.rate_limit_backend == "redis"
        assert config.rate_limit_ttl_buffer_seconds == 10
        assert config.rate_limit_atomic is False
        assert config.rate_limit_session_cookie == "session_id"
        assert config.admin_token == ""

    def test_redis_url_from_environment(self, monkeypatch):
        monkeypatch.setenv("REDIS_URL", "redis://cache.internal:6380/2")
        assert Settings(_env_file=None).redis_url == "redis://cache.internal:6380/2"

    def test_backend_from_environment(self, monkeypatch):
        monkeypatch.setenv("RATE_LIMIT_BACKEND", "memory")
        monkeypatch.setenv("RATE_LIMIT_ATOMIC", "true")
        config = Settings(_env_file=None)
        assert config.rate_limit_backend == "memory"
        assert config.rate_limit_atomic is True

    def test_unknown_backend_rejected(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, rate_limit_backend="memcached")

    @pytest.mark.parametrize("field", [
        "redis_socket_timeout",
        "redis_connect_timeout",
        "rate_limit_store_timeout",
    ])
    def test_timeouts_must_be_positive(self, field):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, **{field: 0})

    def test_negative_ttl_buffer_rejected(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, rate_limit_ttl_buffer_seconds=-1)

    def test_max_keys_must_be_positive(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, rate_limit_memory_max_keys=0)

    def test_admin_token_stripped(self):
        assert Settings(_env_file=None, admin_token="  secret \n").admin_token == "secret"
