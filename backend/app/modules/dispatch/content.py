"""Message content builders.

A builder turns a dispatchable item into the subject, text and HTML handed
to a transport. Builders are plain callables keyed by item type so callers
can swap in their own templates.
"""

import html
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Optional

from app.modules.announcement.models import Announcement, AnnouncementType
from app.modules.dispatch.models import ItemType
from app.modules.event.models import Event, EventReminder
from app.modules.groups.models import Channel, User


@dataclass
class MessageContent:
    """Rendered message for one recipient on one channel."""

    subject: str
    text: str
    html: Optional[str] = None
    data: dict[str, Any] = field(default_factory=dict)


ContentBuilder = Callable[[Any, Channel, User], MessageContent]


def _render_html(heading: str, body: str) -> str:
    paragraphs = html.escape(body).replace("\n", "<br>")
    return (
        '<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">'
        f"<h1>{html.escape(heading)}</h1>"
        f"<p>{paragraphs}</p>"
        "</div>"
    )


def _format_when(starts_at: datetime) -> str:
    return starts_at.strftime("%A, %d %B %Y at %H:%M UTC")


def build_announcement_content(
    announcement: Announcement, channel: Channel, user: User
) -> MessageContent:
    """Render an announcement. Simcha announcements get their own marker."""
    marker = "Mazal Tov!" if announcement.type == AnnouncementType.SIMCHA.value else "Announcement:"
    subject = f"{marker} {announcement.title}"
    return MessageContent(
        subject=subject,
        text=f"{announcement.title}\n\n{announcement.body}",
        html=_render_html(subject, announcement.body) if channel == Channel.EMAIL else None,
        data={"type": ItemType.ANNOUNCEMENT.value, "id": str(announcement.id)},
    )


def _event_text(event: Event) -> str:
    text = f"{event.title} starts {_format_when(event.starts_at)}"
    if event.location:
        text += f" at {event.location}"
    return text


def build_event_content(event: Event, channel: Channel, user: User) -> MessageContent:
    """Render a reminder sent directly for an event."""
    subject = f"Reminder: {event.title}"
    text = _event_text(event)
    if event.description:
        text += f"\n\n{event.description}"
    return MessageContent(
        subject=subject,
        text=text,
        html=_render_html(subject, text) if channel == Channel.EMAIL else None,
        data={"type": ItemType.EVENT.value, "id": str(event.id)},
    )


def build_event_reminder_content(
    reminder: EventReminder, channel: Channel, user: User
) -> MessageContent:
    """Render an event reminder record.

    The initial notice announces a new event; later ones remind about it.
    A custom message, when present, replaces the default body text.
    """
    event = reminder.event
    if reminder.is_initial:
        subject = f"New event: {event.title}"
    else:
        subject = f"Reminder: {event.title}"

    text = reminder.message or _event_text(event)
    return MessageContent(
        subject=subject,
        text=text,
        html=_render_html(subject, text) if channel == Channel.EMAIL else None,
        data={
            "type": ItemType.EVENT_REMINDER.value,
            "id": str(reminder.id),
            "event_id": str(event.id),
        },
    )


DEFAULT_CONTENT_BUILDERS: dict[ItemType, ContentBuilder] = {
    ItemType.ANNOUNCEMENT: build_announcement_content,
    ItemType.EVENT: build_event_content,
    ItemType.EVENT_REMINDER: build_event_reminder_content,
}
