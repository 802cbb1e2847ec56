"""Event and event reminder models."""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database import Base

# 24 hours and 1 hour before the event starts
DEFAULT_REMINDER_OFFSETS = [1440, 60]
MAX_REMINDER_OFFSET_MINUTES = 7 * 24 * 60


class Event(Base):
    """A family event such as a simcha or gathering."""

    __tablename__ = "events"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    family_group_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("family_groups.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    created_by: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    location: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    starts_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    # Minutes before starts_at at which a reminder goes out automatically
    scheduled_reminder_offsets: Mapped[list[int]] = mapped_column(
        JSON, nullable=False, default=lambda: list(DEFAULT_REMINDER_OFFSETS)
    )

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    reminders: Mapped[list["EventReminder"]] = relationship(
        "EventReminder", back_populates="event", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<Event(id={self.id}, title={self.title})>"


class EventReminder(Base):
    """A notice about an event, sent now or at ``scheduled_at``.

    ``is_initial`` marks the "new event" notice as opposed to a later
    reminder. ``sent_at`` is the claim field for scheduled sends.
    ``offset_minutes`` is set on rows created from the event's reminder
    offsets; at most one such row exists per (event, offset).
    """

    __tablename__ = "event_reminders"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    event_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("events.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    family_group_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("family_groups.id", ondelete="CASCADE"),
        nullable=False,
    )
    created_by: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )

    message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_initial: Mapped[bool] = mapped_column(Boolean, default=False)
    scheduled_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    offset_minutes: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    event: Mapped["Event"] = relationship("Event", back_populates="reminders")

    __table_args__ = (
        Index("ix_event_reminders_due", "scheduled_at", "sent_at"),
        UniqueConstraint("event_id", "offset_minutes", name="uq_event_reminders_event_offset"),
    )

    def __repr__(self) -> str:
        return f"<EventReminder(id={self.id}, event={self.event_id}, initial={self.is_initial})>"
