"""Delivery ledger model.

One DeliveryAttempt row exists per eligible (member, channel) pair per
dispatch run. Status moves from QUEUED to SENT or FAILED exactly once.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import DateTime, Index, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base


class ItemType(str, Enum):
    """Kinds of dispatchable items."""
    ANNOUNCEMENT = "ANNOUNCEMENT"
    EVENT = "EVENT"
    EVENT_REMINDER = "EVENT_REMINDER"


class DeliveryStatus(str, Enum):
    """Delivery attempt status."""
    QUEUED = "QUEUED"
    SENT = "SENT"
    FAILED = "FAILED"


TERMINAL_STATUSES = frozenset({DeliveryStatus.SENT, DeliveryStatus.FAILED})


class DeliveryAttempt(Base):
    """A single delivery of one item to one user over one channel."""

    __tablename__ = "delivery_attempts"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )

    item_type: Mapped[str] = mapped_column(String(20), nullable=False)
    item_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    channel: Mapped[str] = mapped_column(String(20), nullable=False)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=DeliveryStatus.QUEUED.value, index=True
    )
    provider_message_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    __table_args__ = (
        Index("ix_delivery_attempts_item", "item_type", "item_id"),
        Index("ix_delivery_attempts_status_created", "status", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<DeliveryAttempt(id={self.id}, item={self.item_type}:{self.item_id}, "
            f"channel={self.channel}, status={self.status})>"
        )

    @property
    def is_terminal(self) -> bool:
        return self.status in (DeliveryStatus.SENT.value, DeliveryStatus.FAILED.value)
