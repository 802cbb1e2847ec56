"""Request rate limiting."""

from app.modules.ratelimit.limiter import (
    InMemorySlidingWindowStore,
    RateLimitResult,
    RateLimitRule,
    RedisSlidingWindowStore,
    SlidingWindowRateLimiter,
    SlidingWindowStore,
    build_rate_limiter,
    rules_from_settings,
)
from app.modules.ratelimit.middleware import RateLimitMiddleware

__all__ = [
    "InMemorySlidingWindowStore",
    "RateLimitMiddleware",
    "RateLimitResult",
    "RateLimitRule",
    "RedisSlidingWindowStore",
    "SlidingWindowRateLimiter",
    "SlidingWindowStore",
    "build_rate_limiter",
    "rules_from_settings",
]
