"""Delivery ledger: durable record of delivery attempts and their outcomes.

Every write commits immediately so a QUEUED attempt is persisted before its
transport call starts. Updates only ever move an attempt out of QUEUED; the
``WHERE status = 'QUEUED'`` predicate makes a second terminal write a no-op.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Union

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.modules.dispatch.models import (
    TERMINAL_STATUSES,
    DeliveryAttempt,
    DeliveryStatus,
    ItemType,
)
from app.modules.groups.models import Channel

logger = logging.getLogger(__name__)

ORPHAN_REASON = "Orphaned: no delivery outcome recorded"


@dataclass
class ChannelProgress:
    """Attempt counts for one channel."""

    total: int = 0
    processed: int = 0
    sent: int = 0
    failed: int = 0
    queued: int = 0


@dataclass
class DeliveryProgress:
    """Aggregate delivery progress for one dispatched item."""

    item_type: str
    item_id: uuid.UUID
    total: int = 0
    processed: int = 0
    sent: int = 0
    failed: int = 0
    queued: int = 0
    percentage: int = 0
    by_channel: dict[str, ChannelProgress] = field(default_factory=dict)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    is_complete: bool = False


class DeliveryLedger:
    """Repository for DeliveryAttempt rows."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        item_type: Union[ItemType, str],
        item_id: uuid.UUID,
        user_id: uuid.UUID,
        channel: Union[Channel, str],
    ) -> uuid.UUID:
        """Record a new QUEUED attempt and return its ID."""
        attempt = DeliveryAttempt(
            id=uuid.uuid4(),
            item_type=ItemType(item_type).value,
            item_id=item_id,
            user_id=user_id,
            channel=channel.value if isinstance(channel, Channel) else channel,
            status=DeliveryStatus.QUEUED.value,
        )
        self.session.add(attempt)
        await self.session.commit()
        return attempt.id

    async def update(
        self,
        attempt_id: uuid.UUID,
        status: Union[DeliveryStatus, str],
        provider_message_id: Optional[str] = None,
        error: Optional[str] = None,
    ) -> bool:
        """Move a QUEUED attempt to a terminal status.

        Args:
            attempt_id: Attempt to update
            status: SENT or FAILED
            provider_message_id: Provider reference for a sent message
            error: Failure reason

        Returns:
            bool: False if the attempt does not exist or is already terminal

        Raises:
            ValueError: If status is not terminal
        """
        status = DeliveryStatus(status)
        if status not in TERMINAL_STATUSES:
            raise ValueError(f"Cannot transition delivery attempt to {status.value}")

        result = await self.session.execute(
            update(DeliveryAttempt)
            .where(
                DeliveryAttempt.id == attempt_id,
                DeliveryAttempt.status == DeliveryStatus.QUEUED.value,
            )
            .values(
                status=status.value,
                provider_message_id=provider_message_id,
                error=error,
                updated_at=datetime.utcnow(),
            )
        )
        await self.session.commit()

        if result.rowcount != 1:
            logger.warning(
                "Ignored update of non-queued delivery attempt",
                extra={"attempt_id": str(attempt_id), "status": status.value},
            )
            return False
        return True

    async def get(self, attempt_id: uuid.UUID) -> Optional[DeliveryAttempt]:
        """Get an attempt by ID."""
        result = await self.session.execute(
            select(DeliveryAttempt).where(DeliveryAttempt.id == attempt_id)
        )
        return result.scalar_one_or_none()

    async def list_for_item(
        self, item_type: Union[ItemType, str], item_id: uuid.UUID
    ) -> list[DeliveryAttempt]:
        """List every attempt recorded for an item."""
        result = await self.session.execute(
            select(DeliveryAttempt)
            .where(
                DeliveryAttempt.item_type == ItemType(item_type).value,
                DeliveryAttempt.item_id == item_id,
            )
            .order_by(DeliveryAttempt.created_at)
        )
        return list(result.scalars().all())

    async def count_by_status(
        self, item_type: Union[ItemType, str], item_id: uuid.UUID
    ) -> dict[DeliveryStatus, int]:
        """Count an item's attempts per status. Missing statuses count as zero."""
        result = await self.session.execute(
            select(DeliveryAttempt.status, func.count(DeliveryAttempt.id))
            .where(
                DeliveryAttempt.item_type == ItemType(item_type).value,
                DeliveryAttempt.item_id == item_id,
            )
            .group_by(DeliveryAttempt.status)
        )
        counts = {status: 0 for status in DeliveryStatus}
        for status, count in result.all():
            counts[DeliveryStatus(status)] = count
        return counts

    async def has_attempts_since(
        self, item_type: Union[ItemType, str], item_id: uuid.UUID, since: datetime
    ) -> bool:
        """Whether any attempt for the item was recorded at or after ``since``."""
        result = await self.session.execute(
            select(func.count(DeliveryAttempt.id)).where(
                DeliveryAttempt.item_type == ItemType(item_type).value,
                DeliveryAttempt.item_id == item_id,
                DeliveryAttempt.created_at >= since,
            )
        )
        return result.scalar_one() > 0

    async def get_progress(
        self, item_type: Union[ItemType, str], item_id: uuid.UUID
    ) -> DeliveryProgress:
        """Summarize delivery progress for an item, overall and per channel."""
        item_type = ItemType(item_type)
        filters = (
            DeliveryAttempt.item_type == item_type.value,
            DeliveryAttempt.item_id == item_id,
        )

        grouped = await self.session.execute(
            select(DeliveryAttempt.channel, DeliveryAttempt.status, func.count(DeliveryAttempt.id))
            .where(*filters)
            .group_by(DeliveryAttempt.channel, DeliveryAttempt.status)
        )
        bounds = await self.session.execute(
            select(func.min(DeliveryAttempt.created_at), func.max(DeliveryAttempt.updated_at))
            .where(*filters)
        )
        started_at, last_updated_at = bounds.one()

        progress = DeliveryProgress(
            item_type=item_type.value,
            item_id=item_id,
            by_channel={channel.value: ChannelProgress() for channel in Channel},
        )
        for channel, status, count in grouped.all():
            channel_progress = progress.by_channel.setdefault(channel, ChannelProgress())
            if status == DeliveryStatus.SENT.value:
                channel_progress.sent += count
            elif status == DeliveryStatus.FAILED.value:
                channel_progress.failed += count
            else:
                channel_progress.queued += count

        for channel_progress in progress.by_channel.values():
            channel_progress.processed = channel_progress.sent + channel_progress.failed
            channel_progress.total = channel_progress.processed + channel_progress.queued
            progress.sent += channel_progress.sent
            progress.failed += channel_progress.failed
            progress.queued += channel_progress.queued

        progress.processed = progress.sent + progress.failed
        progress.total = progress.processed + progress.queued
        if progress.total > 0:
            progress.percentage = round(progress.processed / progress.total * 100)
        progress.is_complete = progress.total > 0 and progress.queued == 0
        progress.started_at = started_at
        progress.completed_at = last_updated_at if progress.is_complete else None
        return progress

    async def find_orphaned(self, older_than: datetime) -> list[DeliveryAttempt]:
        """Find QUEUED attempts created before ``older_than``.

        These are attempts whose process died between the transport call and
        the outcome write.
        """
        result = await self.session.execute(
            select(DeliveryAttempt)
            .where(
                DeliveryAttempt.status == DeliveryStatus.QUEUED.value,
                DeliveryAttempt.created_at < older_than,
            )
            .order_by(DeliveryAttempt.created_at)
        )
        return list(result.scalars().all())

    async def fail_orphaned(self, older_than: datetime, reason: str) -> int:
        """Mark orphaned QUEUED attempts as FAILED. Returns the number updated."""
        result = await self.session.execute(
            update(DeliveryAttempt)
            .where(
                DeliveryAttempt.status == DeliveryStatus.QUEUED.value,
                DeliveryAttempt.created_at < older_than,
            )
            .values(
                status=DeliveryStatus.FAILED.value,
                error=reason,
                updated_at=datetime.utcnow(),
            )
        )
        await self.session.commit()
        return result.rowcount
