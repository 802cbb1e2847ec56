"""Redis client shared by the rate limiter."""

import redis.asyncio as redis

from app.core.config import settings

# Short timeouts: an unreachable Redis must not stall requests before the
# limiter fails open
redis_client = redis.from_url(
    settings.REDIS_URL,
    decode_responses=True,
    socket_connect_timeout=1.0,
    socket_timeout=1.0,
)
