"""Tests for rate limiting and API security configuration."""

import uuid
from unittest.mock import MagicMock

import pytest
from fastapi import HTTPException

from app.core import rate_limit
from app.core.auth import Actor, require_write_role
from app.core.config import settings
from app.core.errors import ForbiddenError

# ---------------------------------------------------------------------------
# Configuration Security Tests
# ---------------------------------------------------------------------------


class TestSecurityConfig:
    """Test that security-related configuration is correct."""

    def test_cors_origins_configured(self):
        origins = settings.CORS_ORIGINS.split(",")
        assert len(origins) >= 1
        assert any(o.startswith("http") for o in origins)

    def test_debug_disabled_in_production(self):
        if settings.ENVIRONMENT == "production":
            assert settings.DEBUG is False

    def test_write_roles_parsed(self):
        assert "workshop" in settings.write_roles
        assert "office" not in settings.write_roles

    def test_office_role_cannot_write(self):
        office = Actor(user_id=uuid.uuid4(), company_id=uuid.uuid4(), roles=frozenset({"office"}))
        with pytest.raises(ForbiddenError) as exc_info:
            require_write_role(office)
        assert exc_info.value.code == "insufficient_role"

    def test_admin_role_can_write(self):
        admin = Actor(user_id=uuid.uuid4(), company_id=uuid.uuid4(), roles=frozenset({"admin", "office"}))
        require_write_role(admin)


# ---------------------------------------------------------------------------
# In-memory limiter
# ---------------------------------------------------------------------------


class TestTokenBucket:
    def test_consumes_until_empty(self):
        bucket = rate_limit._TokenBucket(tokens=2.0, last_refill=100.0, limit=2, window=60)
        assert bucket.consume(100.0) == (True, 0)
        assert bucket.consume(100.0) == (True, 0)
        allowed, retry_after = bucket.consume(100.0)
        assert allowed is False
        assert retry_after >= 1

    def test_refills_over_time(self):
        bucket = rate_limit._TokenBucket(tokens=0.0, last_refill=0.0, limit=60, window=60)
        assert bucket.consume(0.5)[0] is False
        assert bucket.consume(2.0)[0] is True

    def test_limiter_keys_are_independent(self):
        limiter = rate_limit._InMemoryLimiter()
        assert limiter.check("a", 1, 60)[0] is True
        assert limiter.check("a", 1, 60)[0] is False
        assert limiter.check("b", 1, 60)[0] is True


def _request(headers: dict[str, str], host: str = "10.0.0.9") -> MagicMock:
    request = MagicMock()
    request.headers = headers
    request.client.host = host
    return request


class TestClientKey:
    def test_prefers_user_id(self):
        assert rate_limit._client_key(_request({"X-User-Id": "u-1"})) == "user:u-1"

    def test_falls_back_to_forwarded_ip(self):
        req = _request({"X-Forwarded-For": "203.0.113.7, 10.0.0.1"})
        assert rate_limit._client_key(req) == "ip:203.0.113.7"

    def test_falls_back_to_client_host(self):
        assert rate_limit._client_key(_request({})) == "ip:10.0.0.9"


class TestFallbackWithoutRedis:
    @pytest.mark.asyncio
    async def test_raises_429_when_exhausted(self, monkeypatch):
        def _no_redis():
            raise RuntimeError("Redis client not initialized.")

        monkeypatch.setattr(rate_limit, "get_redis", _no_redis)
        monkeypatch.setattr(rate_limit, "_memory_limiter", rate_limit._InMemoryLimiter())
        req = _request({"X-User-Id": str(uuid.uuid4())})

        await rate_limit._check_rate_limit(req, limit=2, window=60, prefix="test")
        await rate_limit._check_rate_limit(req, limit=2, window=60, prefix="test")
        with pytest.raises(HTTPException) as exc_info:
            await rate_limit._check_rate_limit(req, limit=2, window=60, prefix="test")
        assert exc_info.value.status_code == 429
        assert "Retry-After" in exc_info.value.headers


# ---------------------------------------------------------------------------
# API Endpoint Method Tests
# ---------------------------------------------------------------------------


class TestAPIEndpointMethods:
    def _methods(self, router, path_fragment: str) -> set[str]:
        methods: set[str] = set()
        for route in router.routes:
            if hasattr(route, "methods") and path_fragment in route.path:
                methods |= route.methods
        return methods

    def test_dispatch_is_post(self):
        from app.api.v1.dispatch import router

        assert self._methods(router, "/dispatch") == {"POST"}

    def test_machine_actions_is_post(self):
        from app.api.v1.machines import router

        assert "POST" in self._methods(router, "/actions")

    def test_transition_log_has_limit_param(self):
        import inspect

        from app.api.v1.transitions import list_transitions

        assert "limit" in inspect.signature(list_transitions).parameters
