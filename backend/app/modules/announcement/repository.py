"""Repository for announcements, including the scheduler's claim primitives.

Each claim is a single conditional UPDATE whose affected-row count tells the
caller whether it won. Never split a claim into a read and a write.
"""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.modules.announcement.models import Announcement


class AnnouncementRepository:
    """Repository for Announcement rows."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, **kwargs) -> Announcement:
        """Create an announcement."""
        announcement = Announcement(**kwargs)
        self.session.add(announcement)
        await self.session.commit()
        await self.session.refresh(announcement)
        return announcement

    async def get_by_id(self, announcement_id: uuid.UUID) -> Optional[Announcement]:
        """Get announcement by ID."""
        result = await self.session.execute(
            select(Announcement).where(Announcement.id == announcement_id)
        )
        return result.scalar_one_or_none()

    async def list_for_group(self, group_id: uuid.UUID, limit: int = 50) -> list[Announcement]:
        """List a group's most recent announcements."""
        result = await self.session.execute(
            select(Announcement)
            .where(Announcement.family_group_id == group_id)
            .order_by(Announcement.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    # ============================================
    # Scheduler candidates
    # ============================================

    async def find_due_first_sends(self, now: datetime, limit: int) -> list[Announcement]:
        """Announcements scheduled at or before ``now`` that were never published."""
        result = await self.session.execute(
            select(Announcement)
            .where(
                Announcement.scheduled_at.is_not(None),
                Announcement.scheduled_at <= now,
                Announcement.published_at.is_(None),
            )
            .order_by(Announcement.scheduled_at)
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def find_due_resends(self, now: datetime, limit: int) -> list[Announcement]:
        """Announcements whose resend time has arrived."""
        result = await self.session.execute(
            select(Announcement)
            .where(
                Announcement.scheduled_resend_at.is_not(None),
                Announcement.scheduled_resend_at <= now,
            )
            .order_by(Announcement.scheduled_resend_at)
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    # ============================================
    # Claims
    # ============================================

    async def claim_first_send(self, announcement_id: uuid.UUID, now: datetime) -> bool:
        """Claim the first send by setting published_at where it is still NULL."""
        result = await self.session.execute(
            update(Announcement)
            .where(
                Announcement.id == announcement_id,
                Announcement.published_at.is_(None),
            )
            .values(published_at=now, updated_at=now)
        )
        await self.session.commit()
        return result.rowcount == 1

    async def release_first_send(self, announcement_id: uuid.UUID, claimed_at: datetime) -> bool:
        """Undo a first-send claim, only if published_at still holds our value."""
        result = await self.session.execute(
            update(Announcement)
            .where(
                Announcement.id == announcement_id,
                Announcement.published_at == claimed_at,
            )
            .values(published_at=None)
        )
        await self.session.commit()
        return result.rowcount == 1

    async def claim_resend(self, announcement_id: uuid.UUID, now: datetime) -> bool:
        """Claim a resend by clearing a due scheduled_resend_at."""
        result = await self.session.execute(
            update(Announcement)
            .where(
                Announcement.id == announcement_id,
                Announcement.scheduled_resend_at.is_not(None),
                Announcement.scheduled_resend_at <= now,
            )
            .values(scheduled_resend_at=None, updated_at=now)
        )
        await self.session.commit()
        return result.rowcount == 1

    async def release_resend(self, announcement_id: uuid.UUID, resend_at: datetime) -> bool:
        """Restore a cleared scheduled_resend_at, only if nobody set a new one."""
        result = await self.session.execute(
            update(Announcement)
            .where(
                Announcement.id == announcement_id,
                Announcement.scheduled_resend_at.is_(None),
            )
            .values(scheduled_resend_at=resend_at)
        )
        await self.session.commit()
        return result.rowcount == 1
