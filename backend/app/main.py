"""FastAPI application entry point."""

from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.openapi.utils import get_openapi

from app.core.config import settings
from app.core.logging import setup_logging
from app.core.metrics import get_metrics, set_app_info
from app.core.middleware import (
    CorrelationIdMiddleware,
    MetricsMiddleware,
    RequestLoggingMiddleware,
    SecurityHeadersMiddleware,
    TracingMiddleware,
)
from app.core.tracing import setup_tracing
from app.modules.announcement.router import router as announcement_router
from app.modules.dispatch.router import cron_router, router as dispatch_router
from app.modules.event.router import router as event_router
from app.modules.ratelimit import RateLimitMiddleware, build_rate_limiter

app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    description="""
## FamilyNotify Dispatch API

Delivers family announcements and event reminders to every member over the
channels they have enabled and verified: email, SMS, WhatsApp, web push and
voice call.

### Authentication

Admin and dispatch endpoints require a JWT Bearer token:

```
Authorization: Bearer <access_token>
```

Cron endpoints require the shared secret instead:

```
Authorization: Bearer <CRON_SECRET>
```
    """,
    openapi_url=f"{settings.API_V1_PREFIX}/openapi.json",
    openapi_tags=[
        {
            "name": "health",
            "description": "Health check endpoints",
        },
        {
            "name": "announcements",
            "description": "Announcement creation, scheduling and listing",
        },
        {
            "name": "events",
            "description": "Event reminders - immediate and scheduled",
        },
        {
            "name": "dispatch",
            "description": "Manual dispatch and delivery progress",
        },
        {
            "name": "cron",
            "description": "Scheduled sweeps for due announcements and reminders",
        },
    ],
)

setup_logging(
    level="DEBUG" if settings.DEBUG else settings.LOG_LEVEL,
    json_format=True,
    include_stack_trace=True,
)

setup_tracing(
    service_name=settings.PROJECT_NAME,
    service_version=settings.VERSION,
    environment=settings.ENVIRONMENT,
    otlp_endpoint=settings.OTLP_ENDPOINT,
    enable_console_export=settings.DEBUG,
)

set_app_info(version=settings.VERSION, environment=settings.ENVIRONMENT)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(TracingMiddleware)
app.add_middleware(CorrelationIdMiddleware)
app.add_middleware(MetricsMiddleware)
app.add_middleware(SecurityHeadersMiddleware)

app.state.rate_limiter = None
if settings.RATE_LIMIT_ENABLED:
    app.state.rate_limiter = build_rate_limiter(settings)
    app.add_middleware(
        RateLimitMiddleware,
        limiter=app.state.rate_limiter,
        api_prefix=settings.API_V1_PREFIX,
    )


def custom_openapi() -> dict:
    """Generate custom OpenAPI schema."""
    if app.openapi_schema:
        return app.openapi_schema

    openapi_schema = get_openapi(
        title=app.title,
        version=app.version,
        description=app.description,
        routes=app.routes,
        tags=app.openapi_tags,
    )

    openapi_schema.setdefault("components", {})["securitySchemes"] = {
        "BearerAuth": {
            "type": "http",
            "scheme": "bearer",
            "bearerFormat": "JWT",
            "description": "JWT access token",
        },
        "CronSecret": {
            "type": "http",
            "scheme": "bearer",
            "description": "Shared secret for the cron endpoints",
        },
    }

    app.openapi_schema = openapi_schema
    return app.openapi_schema


app.openapi = custom_openapi


@app.get("/health", tags=["health"])
async def health_check() -> dict[str, str]:
    """Health check endpoint.

    Returns:
        dict: Health status with "healthy" value.
    """
    return {"status": "healthy"}


@app.get("/metrics", include_in_schema=False)
async def metrics() -> Response:
    """Prometheus exposition endpoint."""
    body, content_type = get_metrics()
    return Response(content=body, media_type=content_type)


# Include routers
app.include_router(cron_router, prefix=settings.API_V1_PREFIX)
app.include_router(announcement_router, prefix=settings.API_V1_PREFIX)
app.include_router(event_router, prefix=settings.API_V1_PREFIX)
app.include_router(dispatch_router, prefix=settings.API_V1_PREFIX)
