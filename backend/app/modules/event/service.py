"""Event reminder service."""

import logging
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.modules.dispatch.orchestrator import DispatchSummary, FanOutOrchestrator
from app.modules.event.models import Event, EventReminder
from app.modules.event.repository import EventReminderRepository, EventRepository
from app.modules.event.schemas import EventReminderCreate
from app.modules.groups.models import MemberRole
from app.modules.groups.repository import MembershipRepository

logger = logging.getLogger(__name__)


class EventServiceError(Exception):
    """Base exception for event service errors."""
    pass


class EventNotFoundError(EventServiceError):
    """Event not found."""
    pass


class EventAccessDeniedError(EventServiceError):
    """Caller lacks the required role in the event's family group."""
    pass


class EventService:
    """Service for event reminders and direct event dispatch."""

    def __init__(self, session: AsyncSession, orchestrator: FanOutOrchestrator):
        self.session = session
        self.orchestrator = orchestrator
        self.events = EventRepository(session)
        self.reminders = EventReminderRepository(session)
        self.memberships = MembershipRepository(session)

    async def _get_event_for(self, user_id: uuid.UUID, event_id: uuid.UUID, admin: bool) -> Event:
        event = await self.events.get_by_id(event_id)
        if event is None:
            raise EventNotFoundError(f"Event {event_id} not found")

        membership = await self.memberships.get_membership(user_id, event.family_group_id)
        if membership is None:
            raise EventAccessDeniedError("Not a member of this family group")
        if admin and membership.role != MemberRole.ADMIN.value:
            raise EventAccessDeniedError("Admin role required")
        return event

    async def create_reminder(
        self, user_id: uuid.UUID, data: EventReminderCreate
    ) -> tuple[EventReminder, Optional[DispatchSummary]]:
        """Create a reminder; send it now unless it has a scheduled time.

        Immediate reminders are created with sent_at already set so the
        sweep can never claim them.
        """
        event = await self._get_event_for(user_id, data.event_id, admin=True)
        send_now = data.scheduled_at is None

        reminder = await self.reminders.create(
            event_id=event.id,
            family_group_id=event.family_group_id,
            created_by=user_id,
            message=data.message,
            is_initial=data.is_initial,
            scheduled_at=data.scheduled_at,
            sent_at=datetime.utcnow() if send_now else None,
        )

        if not send_now:
            logger.info(
                "Event reminder scheduled",
                extra={"reminder_id": str(reminder.id), "scheduled_at": str(data.scheduled_at)},
            )
            return reminder, None

        summary = await self.orchestrator.dispatch_event_reminder(reminder.id, reminder.family_group_id)
        return reminder, summary

    async def list_reminders(self, user_id: uuid.UUID, event_id: uuid.UUID) -> list[EventReminder]:
        """List an event's reminders. Any member may read."""
        await self._get_event_for(user_id, event_id, admin=False)
        return await self.reminders.list_for_event(event_id)

    async def dispatch_event(self, user_id: uuid.UUID, event_id: uuid.UUID) -> DispatchSummary:
        """Send a reminder built directly from the event."""
        event = await self._get_event_for(user_id, event_id, admin=True)
        return await self.orchestrator.dispatch_event(event.id, event.family_group_id)
