"""
Marketplace — Rate Limiting

Bounds request rate per caller address within a moving window. All counter
state lives inside one RateLimiter instance backed by a `limits` storage
(in-process memory by default, any `limits` storage URI otherwise), so nothing
leaks into module globals beyond the single shared limiter.

Usage in routes:
    @app.post("/api/auth/vendor/login", dependencies=[Depends(rate_limited("login", RATE_LIMIT_LOGIN))])
"""
import math, time
from fastapi import Request, HTTPException
from limits import parse
from limits.storage import storage_from_string
from limits.strategies import MovingWindowRateLimiter

from marketplace.config import RATE_LIMIT_ENABLED, RATE_LIMIT_STORAGE_URI


class RateLimiter:
    def __init__(self, storage_uri: str = "memory://"):
        self.storage = storage_from_string(storage_uri)
        self.strategy = MovingWindowRateLimiter(self.storage)

    def hit(self, scope: str, key: str, limit: str) -> bool:
        """Count one request; False when the caller is over the limit."""
        return self.strategy.hit(parse(limit), scope, key)

    def retry_after(self, scope: str, key: str, limit: str) -> int:
        stats = self.strategy.get_window_stats(parse(limit), scope, key)
        return max(1, math.ceil(stats.reset_time - time.time()))

    def check(self, scope: str, key: str, limit: str) -> None:
        if not self.hit(scope, key, limit):
            wait = self.retry_after(scope, key, limit)
            print(f"[RateLimit] {scope} limit hit by {key}")
            raise HTTPException(429, "Too many requests. Please try again later.",
                                headers={"Retry-After": str(wait)})

    def reset(self) -> None:
        self.storage.reset()


limiter = RateLimiter(RATE_LIMIT_STORAGE_URI)


def client_key(request: Request) -> str:
    forwarded = request.headers.get("X-Forwarded-For", "")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "anonymous"


def rate_limited(scope: str, limit: str):
    """Dependency factory: enforce `limit` (e.g. '5 per minute') per caller for a route."""
    parse(limit)  # fail fast on a malformed limit string

    async def dependency(request: Request):
        if RATE_LIMIT_ENABLED:
            limiter.check(scope, client_key(request), limit)
    return dependency
