"""FastAPI dependencies for the dispatch engine."""

from functools import lru_cache

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.database import get_db
from app.modules.dispatch.orchestrator import FanOutOrchestrator
from app.modules.dispatch.transports import ChannelTransport, build_default_transports
from app.modules.groups.models import Channel


@lru_cache
def get_transports() -> dict[Channel, ChannelTransport]:
    """Channel transports built once per process from settings."""
    return build_default_transports()


def get_orchestrator(
    session: AsyncSession = Depends(get_db),
    transports: dict[Channel, ChannelTransport] = Depends(get_transports),
) -> FanOutOrchestrator:
    """Dependency to get a fan-out orchestrator bound to the request session."""
    return FanOutOrchestrator(
        session,
        transports,
        concurrency=settings.DISPATCH_CONCURRENCY,
    )
