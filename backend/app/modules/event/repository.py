"""Repository for events and event reminders."""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.modules.event.models import Event, EventReminder


class EventRepository:
    """Repository for Event rows."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, event_id: uuid.UUID) -> Optional[Event]:
        """Get event by ID."""
        result = await self.session.execute(select(Event).where(Event.id == event_id))
        return result.scalar_one_or_none()

    async def find_starting_between(self, start: datetime, end: datetime) -> list[Event]:
        """Events with start < starts_at <= end, soonest first."""
        result = await self.session.execute(
            select(Event)
            .where(Event.starts_at > start, Event.starts_at <= end)
            .order_by(Event.starts_at)
        )
        return list(result.scalars().all())


class EventReminderRepository:
    """Repository for EventReminder rows and their send claim."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, **kwargs) -> EventReminder:
        """Create an event reminder."""
        reminder = EventReminder(**kwargs)
        self.session.add(reminder)
        await self.session.commit()
        await self.session.refresh(reminder)
        return reminder

    async def get_by_id(self, reminder_id: uuid.UUID) -> Optional[EventReminder]:
        """Get reminder by ID."""
        result = await self.session.execute(
            select(EventReminder).where(EventReminder.id == reminder_id)
        )
        return result.scalar_one_or_none()

    async def list_for_event(self, event_id: uuid.UUID) -> list[EventReminder]:
        """List an event's reminders, newest first."""
        result = await self.session.execute(
            select(EventReminder)
            .where(EventReminder.event_id == event_id)
            .order_by(EventReminder.created_at.desc())
        )
        return list(result.scalars().all())

    async def find_due(self, now: datetime, limit: int) -> list[EventReminder]:
        """Scheduled reminders that are due and not yet sent."""
        result = await self.session.execute(
            select(EventReminder)
            .where(
                EventReminder.scheduled_at.is_not(None),
                EventReminder.scheduled_at <= now,
                EventReminder.sent_at.is_(None),
            )
            .order_by(EventReminder.scheduled_at)
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def claim(self, reminder_id: uuid.UUID, now: datetime) -> bool:
        """Claim a reminder by setting sent_at where it is still NULL."""
        result = await self.session.execute(
            update(EventReminder)
            .where(
                EventReminder.id == reminder_id,
                EventReminder.sent_at.is_(None),
            )
            .values(sent_at=now)
        )
        await self.session.commit()
        return result.rowcount == 1

    async def release(self, reminder_id: uuid.UUID, claimed_at: datetime) -> bool:
        """Undo a claim, only if sent_at still holds our value."""
        result = await self.session.execute(
            update(EventReminder)
            .where(
                EventReminder.id == reminder_id,
                EventReminder.sent_at == claimed_at,
            )
            .values(sent_at=None)
        )
        await self.session.commit()
        return result.rowcount == 1

    async def scheduled_offsets(self, event_ids: list[uuid.UUID]) -> set[tuple[uuid.UUID, int]]:
        """(event_id, offset_minutes) pairs that already have a reminder row."""
        result = await self.session.execute(
            select(EventReminder.event_id, EventReminder.offset_minutes).where(
                EventReminder.event_id.in_(event_ids),
                EventReminder.offset_minutes.is_not(None),
            )
        )
        return {(event_id, offset) for event_id, offset in result.all()}

    async def create_for_offset(
        self,
        event_id: uuid.UUID,
        family_group_id: uuid.UUID,
        created_by: uuid.UUID,
        offset_minutes: int,
        scheduled_at: datetime,
    ) -> bool:
        """Insert the reminder row for one event offset.

        The unique (event_id, offset_minutes) key admits one row per offset;
        returns False when another sweep inserted it first.
        """
        self.session.add(
            EventReminder(
                event_id=event_id,
                family_group_id=family_group_id,
                created_by=created_by,
                offset_minutes=offset_minutes,
                scheduled_at=scheduled_at,
            )
        )
        try:
            await self.session.commit()
        except IntegrityError:
            await self.session.rollback()
            return False
        return True
