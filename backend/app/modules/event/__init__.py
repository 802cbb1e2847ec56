"""Events and event reminders."""

from app.modules.event.models import Event, EventReminder
from app.modules.event.repository import EventReminderRepository, EventRepository

__all__ = ["Event", "EventReminder", "EventReminderRepository", "EventRepository"]
