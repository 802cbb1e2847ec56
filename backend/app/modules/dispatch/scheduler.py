"""Scheduler claim loop.

Sweeps for due scheduled items and dispatches each one exactly once, even
when several sweeps run at the same time. The only coordination is the
conditional UPDATE behind every claim: the sweep that affects the row
dispatches, any other sweep sees zero affected rows and moves on.

If a dispatch fails after its claim, the claim is released so the next sweep
retries the item, unless the failed run already recorded delivery attempts.
Those members may have been reached, and a retry would message them twice,
so the claim is kept and the item is left for an admin to resend by hand.

Events also get reminders at their ``scheduled_reminder_offsets``. The sweep
turns each offset that has come due into an EventReminder row, keyed on
(event, offset) so only one sweep can create it, and then claims and sends it
like any other scheduled reminder.
"""

import logging
import uuid
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from functools import partial
from typing import Awaitable, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.database import to_naive_utc
from app.core.logging import log_error, log_info, log_warning
from app.core.metrics import record_claim
from app.core.tracing import create_span
from app.modules.announcement.repository import AnnouncementRepository
from app.modules.dispatch.ledger import DeliveryLedger
from app.modules.dispatch.models import ItemType
from app.modules.dispatch.orchestrator import FanOutOrchestrator
from app.modules.event.models import MAX_REMINDER_OFFSET_MINUTES
from app.modules.event.repository import EventReminderRepository, EventRepository

logger = logging.getLogger(__name__)

FIRST_SEND = "first_send"
RESEND = "resend"
EVENT_REMINDER = "event_reminder"
EVENT_OFFSET = "event_offset"


@dataclass
class SweepResult:
    """Counts for one sweep.

    ``processed`` counts items that were claimed and dispatched; lost claims
    land in ``skipped`` and failed dispatches in ``failed``. ``scheduled``
    counts reminder rows created from event offsets.
    """
    processed: int = 0
    candidates: int = 0
    skipped: int = 0
    failed: int = 0
    scheduled: int = 0


class SchedulerClaimLoop:
    """Claim and dispatch due announcements and event reminders."""

    def __init__(
        self,
        session: AsyncSession,
        orchestrator: FanOutOrchestrator,
        batch_size: int = 10,
        offset_grace_minutes: Optional[int] = None,
    ):
        self.session = session
        self.orchestrator = orchestrator
        self.batch_size = batch_size
        self.offset_grace_minutes = (
            offset_grace_minutes
            if offset_grace_minutes is not None
            else settings.EVENT_REMINDER_OFFSET_GRACE_MINUTES
        )
        self.announcements = AnnouncementRepository(session)
        self.events = EventRepository(session)
        self.reminders = EventReminderRepository(session)
        self.ledger = DeliveryLedger(session)

    async def sweep_due_announcements(self, now: Optional[datetime] = None) -> SweepResult:
        """Claim and dispatch due first sends and due resends."""
        now = to_naive_utc(now) or datetime.utcnow()
        result = SweepResult()

        with create_span("scheduler.sweep_due_announcements"):
            # Plain values only: a failed dispatch rolls back and expires loaded rows
            first_sends = [
                (a.id, a.family_group_id)
                for a in await self.announcements.find_due_first_sends(now, self.batch_size)
            ]
            for item_id, group_id in first_sends:
                await self._process(
                    result,
                    category=FIRST_SEND,
                    item_type=ItemType.ANNOUNCEMENT,
                    item_id=item_id,
                    claim=partial(self.announcements.claim_first_send, item_id, now),
                    dispatch=partial(self.orchestrator.dispatch_announcement, item_id, group_id),
                    release=partial(self.announcements.release_first_send, item_id, now),
                )

            resends = [
                (a.id, a.family_group_id, a.scheduled_resend_at)
                for a in await self.announcements.find_due_resends(now, self.batch_size)
            ]
            for item_id, group_id, resend_at in resends:
                await self._process(
                    result,
                    category=RESEND,
                    item_type=ItemType.ANNOUNCEMENT,
                    item_id=item_id,
                    claim=partial(self.announcements.claim_resend, item_id, now),
                    dispatch=partial(self.orchestrator.dispatch_announcement, item_id, group_id),
                    release=partial(self.announcements.release_resend, item_id, resend_at),
                )

        log_info(logger, "Announcement sweep finished", **asdict(result))
        return result

    async def sweep_due_event_reminders(self, now: Optional[datetime] = None) -> SweepResult:
        """Schedule due event offsets, then claim and dispatch due event reminders."""
        now = to_naive_utc(now) or datetime.utcnow()
        result = SweepResult()

        with create_span("scheduler.sweep_due_event_reminders"):
            result.scheduled = await self.schedule_offset_reminders(now)
            due = [
                (r.id, r.family_group_id)
                for r in await self.reminders.find_due(now, self.batch_size)
            ]
            for item_id, group_id in due:
                await self._process(
                    result,
                    category=EVENT_REMINDER,
                    item_type=ItemType.EVENT_REMINDER,
                    item_id=item_id,
                    claim=partial(self.reminders.claim, item_id, now),
                    dispatch=partial(self.orchestrator.dispatch_event_reminder, item_id, group_id),
                    release=partial(self.reminders.release, item_id, now),
                )

        log_info(logger, "Event reminder sweep finished", **asdict(result))
        return result

    async def schedule_offset_reminders(self, now: Optional[datetime] = None) -> int:
        """Create the reminder row for every event offset that has come due.

        An offset is due from ``starts_at - offset`` until the grace period
        has passed, and never once the event has started. Returns the number
        of rows this call created.
        """
        now = to_naive_utc(now) or datetime.utcnow()
        grace = timedelta(minutes=self.offset_grace_minutes)

        upcoming = [
            (
                e.id,
                e.family_group_id,
                e.created_by,
                e.starts_at,
                list(e.scheduled_reminder_offsets or []),
            )
            for e in await self.events.find_starting_between(
                now, now + timedelta(minutes=MAX_REMINDER_OFFSET_MINUTES)
            )
        ]
        if not upcoming:
            return 0
        existing = await self.reminders.scheduled_offsets([event[0] for event in upcoming])

        created = 0
        for event_id, group_id, created_by, starts_at, offsets in upcoming:
            for offset in offsets:
                if not isinstance(offset, int) or not 0 < offset <= MAX_REMINDER_OFFSET_MINUTES:
                    log_warning(
                        logger,
                        "Ignoring invalid reminder offset",
                        event_id=str(event_id),
                        offset=offset,
                    )
                    continue
                fire_at = starts_at - timedelta(minutes=offset)
                if (event_id, offset) in existing or not fire_at <= now <= fire_at + grace:
                    continue

                if await self.reminders.create_for_offset(
                    event_id, group_id, created_by, offset, fire_at
                ):
                    created += 1
                    record_claim(EVENT_OFFSET, "won")
                else:
                    record_claim(EVENT_OFFSET, "lost")
                    logger.debug(
                        "Offset reminder created by another sweep",
                        extra={"event_id": str(event_id), "offset": offset},
                    )
        return created

    async def _process(
        self,
        result: SweepResult,
        category: str,
        item_type: ItemType,
        item_id: uuid.UUID,
        claim: Callable[[], Awaitable[bool]],
        dispatch: Callable[[], Awaitable[object]],
        release: Callable[[], Awaitable[bool]],
    ) -> None:
        result.candidates += 1

        if not await claim():
            result.skipped += 1
            record_claim(category, "lost")
            logger.debug(
                "Claim lost to another sweep",
                extra={"category": category, "item_id": str(item_id)},
            )
            return

        record_claim(category, "won")
        started_at = datetime.utcnow()
        try:
            await dispatch()
        except Exception as e:
            await self.session.rollback()
            result.failed += 1
            if await self.ledger.has_attempts_since(item_type, item_id, started_at):
                released = False
                record_claim(category, "kept")
            else:
                released = await release()
                record_claim(category, "released")
            log_error(
                logger,
                "Dispatch failed after claim",
                exception=e,
                category=category,
                item_id=str(item_id),
                claim_released=released,
            )
            return

        result.processed += 1
