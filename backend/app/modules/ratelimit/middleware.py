"""Rate limiting middleware for the API surface.

Every path under the API prefix is checked except the cron endpoints, which
are guarded by their shared secret instead.
"""

from typing import Callable

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from app.modules.ratelimit.limiter import RateLimitResult, SlidingWindowRateLimiter


def rate_limit_headers(result: RateLimitResult) -> dict[str, str]:
    """Standard rate limit headers for a check result."""
    return {
        "X-RateLimit-Limit": str(result.limit),
        "X-RateLimit-Remaining": str(result.remaining),
        "X-RateLimit-Reset": str(result.reset_at),
    }


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Reject requests over their route class budget with 429."""

    def __init__(
        self,
        app: ASGIApp,
        limiter: SlidingWindowRateLimiter,
        api_prefix: str = "/api/v1",
        exempt_prefixes: tuple[str, ...] = ("/cron",),
    ):
        super().__init__(app)
        self.limiter = limiter
        self.api_prefix = api_prefix
        self.exempt_prefixes = exempt_prefixes

    def is_guarded(self, path: str) -> bool:
        if not path.startswith(self.api_prefix):
            return False
        relative = path[len(self.api_prefix):]
        return not relative.startswith(self.exempt_prefixes)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        path = request.url.path
        if not self.is_guarded(path):
            return await call_next(request)

        route_class = self.limiter.classify(path, self.api_prefix)
        identity = self.limiter.client_identity(
            request.headers, request.client.host if request.client else None
        )
        result = await self.limiter.check(route_class, identity)

        if not result.allowed:
            return JSONResponse(
                status_code=429,
                content={"error": "Too Many Requests"},
                headers={"Retry-After": str(result.retry_after), **rate_limit_headers(result)},
            )

        response = await call_next(request)
        if not result.fail_open:
            response.headers.update(rate_limit_headers(result))
        return response
