import pytest
from fastapi import HTTPException

from marketplace import ratelimit
from marketplace.ratelimit import RateLimiter


@pytest.fixture
def limiter():
    return RateLimiter()


def test_hit_counts_per_key(limiter):
    assert limiter.hit("otp", "1.1.1.1", "2 per minute")
    assert limiter.hit("otp", "1.1.1.1", "2 per minute")
    assert not limiter.hit("otp", "1.1.1.1", "2 per minute")
    assert limiter.hit("otp", "2.2.2.2", "2 per minute")
    assert limiter.hit("login", "1.1.1.1", "2 per minute")


def test_check_raises_429_with_retry_after(limiter):
    limiter.check("orders", "ip", "1 per minute")
    with pytest.raises(HTTPException) as err:
        limiter.check("orders", "ip", "1 per minute")
    assert err.value.status_code == 429
    assert 1 <= int(err.value.headers["Retry-After"]) <= 60


def test_reset_clears_counters(limiter):
    limiter.check("orders", "ip", "1 per minute")
    limiter.reset()
    limiter.check("orders", "ip", "1 per minute")


def test_malformed_limit_fails_at_route_definition():
    with pytest.raises(ValueError):
        ratelimit.rate_limited("broken", "often")


def test_login_route_is_throttled(client, monkeypatch):
    monkeypatch.setattr(ratelimit, "RATE_LIMIT_ENABLED", True)
    ratelimit.limiter.reset()
    try:
        body = {"email": "nobody@example.com", "password": "Wrong!Pass1"}
        for _ in range(10):
            assert client.post("/api/auth/vendor/login", json=body).status_code == 401
        res = client.post("/api/auth/vendor/login", json=body, headers={"X-Forwarded-For": "10.0.0.1"})
        assert res.status_code == 401
        res = client.post("/api/auth/vendor/login", json=body)
        assert res.status_code == 429
        assert res.json() == {"success": False, "message": "Too many requests. Please try again later."}
        assert "retry-after" in res.headers
    finally:
        ratelimit.limiter.reset()
