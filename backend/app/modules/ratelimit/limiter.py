"""Sliding-window rate limiter.

Requests are counted per (route class, client identity) over a rolling
window. Counters live in an injected store so every API instance shares the
same budget when the Redis store is used. When the store cannot be reached
the limiter fails open and lets the request through.
"""

import asyncio
import logging
import math
import time
import uuid
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass
from typing import Mapping, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from app.core.logging import log_warning
from app.core.metrics import record_rate_limit_decision

logger = logging.getLogger(__name__)

AUTH = "auth"
DISPATCH = "dispatch"
WRITE = "write"
SUPER_ADMIN = "super-admin"
GLOBAL = "global"

ROUTE_CLASSES = (AUTH, DISPATCH, WRITE, SUPER_ADMIN, GLOBAL)

WRITE_PREFIXES = ("/admin", "/groups", "/user", "/invitations", "/preferences")

# Failures that mean "store unreachable" rather than a bug
STORE_ERRORS = (RedisError, ConnectionError, OSError, TimeoutError)


@dataclass(frozen=True)
class RateLimitRule:
    """Request budget for one route class."""
    limit: int
    window_seconds: int

    @property
    def window_ms(self) -> int:
        return self.window_seconds * 1000


@dataclass
class RateLimitResult:
    """Outcome of one rate limit check.

    ``reset_at`` is the epoch time in milliseconds at which the oldest counted
    request leaves the window.
    """
    allowed: bool
    limit: int
    remaining: int
    reset_at: int
    retry_after: int = 0
    fail_open: bool = False


@dataclass
class WindowState:
    """What a store reports after recording a hit."""
    allowed: bool
    count: int
    oldest_ms: int


class SlidingWindowStore(ABC):
    """Backing store for sliding-window counters."""

    @abstractmethod
    async def hit(self, key: str, limit: int, window_ms: int, now_ms: int) -> WindowState:
        """Record a request at ``now_ms`` unless the window is already full."""
        pass


class RedisSlidingWindowStore(SlidingWindowStore):
    """Sliding log kept in a Redis sorted set, scored by request time."""

    def __init__(self, client: redis.Redis):
        self.client = client

    async def hit(self, key: str, limit: int, window_ms: int, now_ms: int) -> WindowState:
        member = f"{now_ms}-{uuid.uuid4().hex}"

        async with self.client.pipeline(transaction=True) as pipe:
            pipe.zremrangebyscore(key, "-inf", now_ms - window_ms)
            pipe.zadd(key, {member: now_ms})
            pipe.zcard(key)
            pipe.zrange(key, 0, 0, withscores=True)
            pipe.pexpire(key, window_ms)
            _, _, count, oldest, _ = await pipe.execute()

        allowed = count <= limit
        if not allowed:
            # Rejected requests do not consume budget
            await self.client.zrem(key, member)
            count -= 1

        oldest_ms = int(oldest[0][1]) if oldest else now_ms
        return WindowState(allowed=allowed, count=count, oldest_ms=oldest_ms)


class InMemorySlidingWindowStore(SlidingWindowStore):
    """Per-process sliding log. For local development and tests only."""

    def __init__(self):
        self._windows: dict[str, deque[int]] = {}
        self._lock = asyncio.Lock()

    async def hit(self, key: str, limit: int, window_ms: int, now_ms: int) -> WindowState:
        async with self._lock:
            window = self._windows.setdefault(key, deque())
            while window and window[0] <= now_ms - window_ms:
                window.popleft()

            allowed = len(window) < limit
            if allowed:
                window.append(now_ms)

            oldest_ms = window[0] if window else now_ms
            return WindowState(allowed=allowed, count=len(window), oldest_ms=oldest_ms)

    def reset(self) -> None:
        self._windows.clear()


class SlidingWindowRateLimiter:
    """Check requests against per-route-class sliding windows."""

    def __init__(
        self,
        store: SlidingWindowStore,
        rules: Mapping[str, RateLimitRule],
        key_prefix: str = "rl",
    ):
        if GLOBAL not in rules:
            raise ValueError("A global rate limit rule is required")
        self.store = store
        self.rules = dict(rules)
        self.key_prefix = key_prefix

    @staticmethod
    def classify(path: str, api_prefix: str = "") -> str:
        """Map a request path to its route class."""
        if api_prefix and path.startswith(api_prefix):
            path = path[len(api_prefix):]

        if path.startswith("/auth"):
            return AUTH
        if path.startswith("/dispatch"):
            return DISPATCH
        if path.startswith("/super-admin"):
            return SUPER_ADMIN
        if path.startswith(WRITE_PREFIXES):
            return WRITE
        return GLOBAL

    @staticmethod
    def client_identity(headers: Mapping[str, str], client_host: Optional[str] = None) -> str:
        """Identify the caller: first X-Forwarded-For hop, X-Real-IP, then the peer."""
        forwarded = headers.get("x-forwarded-for")
        if forwarded:
            first = forwarded.split(",")[0].strip()
            if first:
                return first
        real_ip = headers.get("x-real-ip")
        if real_ip:
            return real_ip.strip()
        return client_host or "anonymous"

    def rule_for(self, route_class: str) -> RateLimitRule:
        return self.rules.get(route_class, self.rules[GLOBAL])

    async def check(
        self,
        route_class: str,
        identity: str,
        now: Optional[float] = None,
    ) -> RateLimitResult:
        """Count one request and decide whether it may proceed.

        Args:
            route_class: Route class from ``classify``
            identity: Client identity from ``client_identity``
            now: Epoch seconds, defaults to the current time

        Returns:
            RateLimitResult: allowed=True with fail_open=True if the store is down
        """
        rule = self.rule_for(route_class)
        now_ms = int((now if now is not None else time.time()) * 1000)
        key = f"{self.key_prefix}:{route_class}:{identity}"

        try:
            state = await self.store.hit(key, rule.limit, rule.window_ms, now_ms)
        except STORE_ERRORS as e:
            log_warning(
                logger,
                "Rate limit store unavailable, allowing request",
                route_class=route_class,
                error=str(e),
            )
            record_rate_limit_decision(route_class, "fail_open")
            return RateLimitResult(
                allowed=True,
                limit=rule.limit,
                remaining=rule.limit,
                reset_at=now_ms + rule.window_ms,
                fail_open=True,
            )

        reset_at = state.oldest_ms + rule.window_ms
        result = RateLimitResult(
            allowed=state.allowed,
            limit=rule.limit,
            remaining=max(0, rule.limit - state.count),
            reset_at=reset_at,
        )
        if not state.allowed:
            result.retry_after = max(1, math.ceil((reset_at - now_ms) / 1000))

        record_rate_limit_decision(route_class, "allowed" if state.allowed else "rejected")
        return result


def rules_from_settings(settings) -> dict[str, RateLimitRule]:
    """Build the per-route-class rules from application settings."""
    return {
        AUTH: RateLimitRule(settings.RATE_LIMIT_AUTH_LIMIT, settings.RATE_LIMIT_AUTH_WINDOW_SECONDS),
        DISPATCH: RateLimitRule(
            settings.RATE_LIMIT_DISPATCH_LIMIT, settings.RATE_LIMIT_DISPATCH_WINDOW_SECONDS
        ),
        WRITE: RateLimitRule(settings.RATE_LIMIT_WRITE_LIMIT, settings.RATE_LIMIT_WRITE_WINDOW_SECONDS),
        SUPER_ADMIN: RateLimitRule(
            settings.RATE_LIMIT_SUPER_ADMIN_LIMIT, settings.RATE_LIMIT_SUPER_ADMIN_WINDOW_SECONDS
        ),
        GLOBAL: RateLimitRule(settings.RATE_LIMIT_GLOBAL_LIMIT, settings.RATE_LIMIT_GLOBAL_WINDOW_SECONDS),
    }


def build_rate_limiter(settings, redis_client: Optional[redis.Redis] = None) -> SlidingWindowRateLimiter:
    """Create the limiter with the store named by RATE_LIMIT_BACKEND."""
    if settings.RATE_LIMIT_BACKEND == "memory":
        store: SlidingWindowStore = InMemorySlidingWindowStore()
    else:
        if redis_client is None:
            from app.core.redis import redis_client
        store = RedisSlidingWindowStore(redis_client)
    return SlidingWindowRateLimiter(store, rules_from_settings(settings))
