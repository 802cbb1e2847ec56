"""Core infrastructure: settings, persistence, Redis, Celery and telemetry."""

from app.core.celery_app import celery_app
from app.core.config import settings
from app.core.database import Base, async_session_maker, get_db
from app.core.redis import redis_client

__all__ = [
    "Base",
    "async_session_maker",
    "celery_app",
    "get_db",
    "redis_client",
    "settings",
]
