"""Celery tasks for scheduled dispatch.

Beat runs the two sweeps every SCHEDULER_INTERVAL_SECONDS. Running them more
often, or on several workers at once, is safe: each item is claimed by a
conditional update and dispatched by exactly one sweep.
"""

import asyncio
import logging
from dataclasses import asdict
from datetime import datetime, timedelta
from typing import Awaitable, Callable

from app.core.celery_app import celery_app
from app.core.config import settings
from app.core.database import async_session_maker, engine
from app.core.logging import log_warning
from app.core.metrics import ORPHANED_DELIVERY_ATTEMPTS
from app.modules.dispatch.dependencies import get_transports
from app.modules.dispatch.ledger import ORPHAN_REASON, DeliveryLedger
from app.modules.dispatch.orchestrator import FanOutOrchestrator
from app.modules.dispatch.scheduler import SchedulerClaimLoop

logger = logging.getLogger(__name__)


def _run(job: Callable[[], Awaitable[dict]]) -> dict:
    """Run an async job on a fresh event loop.

    Pooled connections belong to the loop that opened them, so the pool is
    emptied before the loop closes.
    """
    async def runner() -> dict:
        try:
            return await job()
        finally:
            await engine.dispose()

    return asyncio.run(runner())


def _claim_loop(session) -> SchedulerClaimLoop:
    orchestrator = FanOutOrchestrator(
        session,
        get_transports(),
        concurrency=settings.DISPATCH_CONCURRENCY,
    )
    return SchedulerClaimLoop(session, orchestrator, batch_size=settings.SCHEDULER_BATCH_SIZE)


async def _sweep_due_announcements() -> dict:
    async with async_session_maker() as session:
        result = await _claim_loop(session).sweep_due_announcements()
    return asdict(result)


async def _sweep_due_event_reminders() -> dict:
    async with async_session_maker() as session:
        result = await _claim_loop(session).sweep_due_event_reminders()
    return asdict(result)


async def _check_orphaned_attempts() -> dict:
    """Surface QUEUED attempts that never got an outcome.

    They are only marked FAILED when ORPHAN_RECONCILE_ENABLED is set and are
    never sent again.
    """
    older_than = datetime.utcnow() - timedelta(minutes=settings.ORPHANED_ATTEMPT_THRESHOLD_MINUTES)

    async with async_session_maker() as session:
        ledger = DeliveryLedger(session)
        orphaned = await ledger.find_orphaned(older_than)
        ORPHANED_DELIVERY_ATTEMPTS.set(len(orphaned))

        reconciled = 0
        if orphaned:
            log_warning(
                logger,
                "Orphaned delivery attempts found",
                count=len(orphaned),
                oldest_created_at=orphaned[0].created_at.isoformat(),
                attempt_ids=[str(a.id) for a in orphaned[:20]],
            )
            if settings.ORPHAN_RECONCILE_ENABLED:
                reconciled = await ledger.fail_orphaned(older_than, ORPHAN_REASON)
                ORPHANED_DELIVERY_ATTEMPTS.set(len(orphaned) - reconciled)

    return {"orphaned": len(orphaned), "reconciled": reconciled}


@celery_app.task(bind=True, max_retries=3, default_retry_delay=30)
def sweep_due_announcements_task(self) -> dict:
    """Claim and dispatch due first sends and resends."""
    try:
        return _run(_sweep_due_announcements)
    except Exception as exc:
        raise self.retry(exc=exc)


@celery_app.task(bind=True, max_retries=3, default_retry_delay=30)
def sweep_due_event_reminders_task(self) -> dict:
    """Claim and dispatch due event reminders."""
    try:
        return _run(_sweep_due_event_reminders)
    except Exception as exc:
        raise self.retry(exc=exc)


@celery_app.task(bind=True, max_retries=3, default_retry_delay=60)
def check_orphaned_attempts_task(self) -> dict:
    """Report delivery attempts stuck in QUEUED."""
    try:
        return _run(_check_orphaned_attempts)
    except Exception as exc:
        raise self.retry(exc=exc)


DISPATCH_BEAT_SCHEDULE = {
    "sweep-due-announcements": {
        "task": "app.modules.dispatch.tasks.sweep_due_announcements_task",
        "schedule": settings.SCHEDULER_INTERVAL_SECONDS,
    },
    "sweep-due-event-reminders": {
        "task": "app.modules.dispatch.tasks.sweep_due_event_reminders_task",
        "schedule": settings.SCHEDULER_INTERVAL_SECONDS,
    },
    "check-orphaned-attempts": {
        "task": "app.modules.dispatch.tasks.check_orphaned_attempts_task",
        "schedule": 300.0,
    },
}

celery_app.conf.beat_schedule.update(DISPATCH_BEAT_SCHEDULE)
