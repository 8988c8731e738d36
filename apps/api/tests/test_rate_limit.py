"""
Tests for rate limiting, the Redis helper and login lockout tracking.
"""
from unittest.mock import patch

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from redis.exceptions import ConnectionError as RedisConnectionError

from core import cache
from core.account_security import (
    MAX_FAILED_ATTEMPTS,
    clear_lockout,
    get_remaining_attempts,
    is_account_locked,
    record_login_attempt,
)
from core.rate_limit import RateLimitMiddleware


class FakeRedis:
    """Just enough of the Redis API for fixed-window counters."""

    def __init__(self):
        self.counts = {}

    def incr(self, key):
        self.counts[key] = self.counts.get(key, 0) + 1
        return self.counts[key]

    def expire(self, key, seconds):
        return True

    def ttl(self, key):
        return 42


@pytest.fixture
def limited_app():
    app = FastAPI()
    app.add_middleware(RateLimitMiddleware, default_limit=2, window=60)

    @app.get("/api/things")
    def things():
        return {"ok": True}

    return app


class TestRateLimitMiddleware:
    def test_blocks_after_limit(self, limited_app):
        fake = FakeRedis()
        with patch("core.rate_limit.settings.RATE_LIMIT_ENABLED", True), \
                patch("core.rate_limit.get_redis_client", return_value=fake):
            client = TestClient(limited_app)
            first = client.get("/api/things")
            client.get("/api/things")
            blocked = client.get("/api/things")

        assert first.headers["X-RateLimit-Remaining"] == "1"
        assert blocked.status_code == 429
        assert blocked.json()["code"] == "RATE_LIMITED"
        assert "Retry-After" in blocked.headers

    def test_fails_open_without_redis(self, limited_app):
        with patch("core.rate_limit.settings.RATE_LIMIT_ENABLED", True), \
                patch("core.rate_limit.get_redis_client", return_value=None):
            client = TestClient(limited_app)
            responses = [client.get("/api/things") for _ in range(5)]

        assert all(r.status_code == 200 for r in responses)

    def test_endpoint_specific_limits(self, limited_app):
        middleware = RateLimitMiddleware(limited_app, default_limit=100)
        assert middleware._get_endpoint_limit("/api/auth/login") == 10
        assert middleware._get_endpoint_limit("/api/integrations/abc/sync") == 30
        assert middleware._get_endpoint_limit("/api/activities") == 100


class TestRedisClient:
    def test_unavailable_redis_returns_none(self):
        cache.reset_redis_client()
        with patch("core.cache.redis.from_url") as from_url:
            from_url.return_value.ping.side_effect = RedisConnectionError("refused")
            assert cache.get_redis_client() is None
        cache.reset_redis_client()


class TestAccountLockout:
    def test_locks_after_max_failures(self):
        email = "lockme@example.com"
        for _ in range(MAX_FAILED_ATTEMPTS - 1):
            record_login_attempt(email, success=False)

        assert get_remaining_attempts(email) == 1
        assert is_account_locked(email)[0] is False

        record_login_attempt(email, success=False)
        locked, seconds = is_account_locked(email)
        assert locked is True
        assert seconds > 0

    def test_success_resets_failures(self):
        email = "reset@example.com"
        record_login_attempt(email, success=False)
        record_login_attempt(email, success=True)
        assert get_remaining_attempts(email) == MAX_FAILED_ATTEMPTS

    def test_clear_lockout(self):
        email = "clear@example.com"
        for _ in range(MAX_FAILED_ATTEMPTS):
            record_login_attempt(email, success=False)

        clear_lockout(email)
        assert is_account_locked(email) == (False, None)
