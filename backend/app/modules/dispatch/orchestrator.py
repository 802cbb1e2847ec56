"""Fan-out orchestrator.

Expands one dispatchable item into one delivery attempt per eligible
(member, channel) pair and drives each attempt through the ledger and its
channel transport. Pairs are isolated from one another: whatever goes wrong
for one pair ends as a FAILED attempt for that pair only.
"""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.logging import log_error
from app.core.metrics import DISPATCH_DURATION_SECONDS, record_delivery_outcome
from app.core.tracing import add_span_attributes, create_span
from app.modules.announcement.models import Announcement
from app.modules.dispatch.content import DEFAULT_CONTENT_BUILDERS, ContentBuilder
from app.modules.dispatch.exceptions import (
    GroupNotFoundError,
    InvalidDestinationError,
    ItemNotFoundError,
)
from app.modules.dispatch.ledger import DeliveryLedger
from app.modules.dispatch.models import DeliveryStatus, ItemType
from app.modules.dispatch.transports import ChannelTransport
from app.modules.event.models import Event, EventReminder
from app.modules.groups.models import Channel, Preference, User
from app.modules.groups.repository import MembershipRepository

logger = logging.getLogger(__name__)

UNKNOWN_CHANNEL = "Unknown channel"


@dataclass
class DispatchSummary:
    """Outcome counts for one dispatch call."""
    item_type: str
    item_id: uuid.UUID
    recipients: int = 0
    attempts: int = 0
    sent: int = 0
    failed: int = 0
    skipped: int = 0


class FanOutOrchestrator:
    """Dispatch announcements, events and event reminders to a family group."""

    def __init__(
        self,
        session: AsyncSession,
        transports: Mapping[Channel, ChannelTransport],
        content_builders: Optional[Mapping[ItemType, ContentBuilder]] = None,
        concurrency: int = 1,
    ):
        self.session = session
        self.transports = {Channel(channel): transport for channel, transport in transports.items()}
        self.content_builders = dict(content_builders or DEFAULT_CONTENT_BUILDERS)
        self.concurrency = max(1, concurrency)
        self.ledger = DeliveryLedger(session)
        self.memberships = MembershipRepository(session)
        # The ledger shares one session; writes must not interleave
        self._ledger_lock = asyncio.Lock()

    # ============================================
    # Public operations
    # ============================================

    async def dispatch_announcement(
        self, announcement_id: uuid.UUID, group_id: uuid.UUID
    ) -> DispatchSummary:
        """Deliver an announcement to every eligible member channel."""
        announcement = await self.session.get(Announcement, announcement_id)
        if announcement is None:
            raise ItemNotFoundError(ItemType.ANNOUNCEMENT.value, announcement_id)
        return await self._fan_out(ItemType.ANNOUNCEMENT, announcement, group_id)

    async def dispatch_event(self, event_id: uuid.UUID, group_id: uuid.UUID) -> DispatchSummary:
        """Deliver a reminder built directly from an event."""
        event = await self.session.get(Event, event_id)
        if event is None:
            raise ItemNotFoundError(ItemType.EVENT.value, event_id)
        return await self._fan_out(ItemType.EVENT, event, group_id)

    async def dispatch_event_reminder(
        self, reminder_id: uuid.UUID, group_id: uuid.UUID
    ) -> DispatchSummary:
        """Deliver an event reminder record, with its custom message if any."""
        result = await self.session.execute(
            select(EventReminder)
            .options(selectinload(EventReminder.event))
            .where(EventReminder.id == reminder_id)
        )
        reminder = result.scalar_one_or_none()
        if reminder is None:
            raise ItemNotFoundError(ItemType.EVENT_REMINDER.value, reminder_id)
        return await self._fan_out(ItemType.EVENT_REMINDER, reminder, group_id)

    # ============================================
    # Fan-out
    # ============================================

    async def _fan_out(self, item_type: ItemType, item: Any, group_id: uuid.UUID) -> DispatchSummary:
        if not await self.memberships.group_exists(group_id):
            raise GroupNotFoundError(group_id)

        summary = DispatchSummary(item_type=item_type.value, item_id=item.id)
        start_time = time.perf_counter()

        with create_span(
            "dispatch.fan_out",
            attributes={
                "dispatch.item_type": item_type.value,
                "dispatch.item_id": str(item.id),
                "dispatch.group_id": str(group_id),
            },
        ):
            recipients = await self.memberships.resolve_recipients(group_id, eligible_only=False)
            summary.recipients = len(recipients)

            pairs: list[tuple[User, Preference]] = []
            for recipient in recipients:
                for preference in recipient.preferences:
                    if not preference.is_eligible:
                        summary.skipped += 1
                        logger.debug(
                            "Skipping ineligible preference",
                            extra={
                                "user_id": str(recipient.user.id),
                                "channel": preference.channel,
                                "enabled": preference.enabled,
                                "verified": preference.verified_at is not None,
                            },
                        )
                        continue
                    pairs.append((recipient.user, preference))

            summary.attempts = len(pairs)
            if self.concurrency == 1:
                outcomes = [await self._deliver(item_type, item, user, pref) for user, pref in pairs]
            else:
                semaphore = asyncio.Semaphore(self.concurrency)

                async def bounded(user: User, preference: Preference) -> DeliveryStatus:
                    async with semaphore:
                        return await self._deliver(item_type, item, user, preference)

                outcomes = await asyncio.gather(*(bounded(user, pref) for user, pref in pairs))

            summary.sent = sum(1 for outcome in outcomes if outcome == DeliveryStatus.SENT)
            summary.failed = len(outcomes) - summary.sent
            add_span_attributes({
                "dispatch.attempts": summary.attempts,
                "dispatch.sent": summary.sent,
                "dispatch.failed": summary.failed,
            })

        DISPATCH_DURATION_SECONDS.labels(item_type=item_type.value).observe(
            time.perf_counter() - start_time
        )
        logger.info(
            "Dispatch completed",
            extra={
                "item_type": item_type.value,
                "item_id": str(item.id),
                "recipients": summary.recipients,
                "attempts": summary.attempts,
                "sent": summary.sent,
                "failed": summary.failed,
                "skipped": summary.skipped,
            },
        )
        return summary

    async def _deliver(
        self, item_type: ItemType, item: Any, user: User, preference: Preference
    ) -> DeliveryStatus:
        """Create, send and settle the attempt for one (member, channel) pair."""
        async with self._ledger_lock:
            attempt_id = await self.ledger.create(item_type, item.id, user.id, preference.channel)

        status, provider_message_id, error = await self._send(item_type, item, user, preference)

        async with self._ledger_lock:
            await self.ledger.update(
                attempt_id, status, provider_message_id=provider_message_id, error=error
            )

        record_delivery_outcome(preference.channel, status.value)
        log_extra = {
            "attempt_id": str(attempt_id),
            "item_type": item_type.value,
            "item_id": str(item.id),
            "user_id": str(user.id),
            "channel": preference.channel,
        }
        if status == DeliveryStatus.SENT:
            logger.info("Delivery sent", extra=log_extra)
        else:
            logger.warning("Delivery failed", extra={**log_extra, "error": error})
        return status

    async def _send(
        self, item_type: ItemType, item: Any, user: User, preference: Preference
    ) -> tuple[DeliveryStatus, Optional[str], Optional[str]]:
        try:
            transport = self.transports.get(Channel(preference.channel))
        except ValueError:
            transport = None
        if transport is None:
            return DeliveryStatus.FAILED, None, UNKNOWN_CHANNEL

        try:
            destination = transport.prepare_destination(preference.destination)
            content = self.content_builders[item_type](item, transport.channel, user)
            result = await transport.send(destination, content)
        except InvalidDestinationError as e:
            return DeliveryStatus.FAILED, None, str(e)
        except Exception as e:
            log_error(
                logger,
                "Delivery raised",
                exception=e,
                user_id=str(user.id),
                channel=preference.channel,
            )
            return DeliveryStatus.FAILED, None, str(e) or type(e).__name__

        if result.success:
            return DeliveryStatus.SENT, result.provider_message_id, None
        return DeliveryStatus.FAILED, None, result.error or "Delivery failed"
