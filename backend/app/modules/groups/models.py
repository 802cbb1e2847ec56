"""Family group models: users, groups, memberships and channel preferences.

Dispatch only reads these tables. A preference is eligible for delivery when
it is enabled and its destination has been verified.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database import Base


class MemberRole(str, Enum):
    """Role of a user inside a family group."""
    ADMIN = "ADMIN"
    EDITOR = "EDITOR"
    MEMBER = "MEMBER"


class Channel(str, Enum):
    """Delivery channels a user can enable."""
    EMAIL = "EMAIL"
    SMS = "SMS"
    WHATSAPP = "WHATSAPP"
    PUSH = "PUSH"
    VOICE_CALL = "VOICE_CALL"


class User(Base):
    """A person who can belong to family groups."""

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    preferences: Mapped[list["Preference"]] = relationship(
        "Preference", back_populates="user", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email})>"


class FamilyGroup(Base):
    """A family group that receives announcements and event reminders."""

    __tablename__ = "family_groups"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    memberships: Mapped[list["Membership"]] = relationship(
        "Membership", back_populates="family_group", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<FamilyGroup(id={self.id}, name={self.name})>"


class Membership(Base):
    """Links a user to a family group with a role."""

    __tablename__ = "memberships"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    family_group_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("family_groups.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    role: Mapped[str] = mapped_column(String(20), nullable=False, default=MemberRole.MEMBER.value)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    user: Mapped["User"] = relationship("User")
    family_group: Mapped["FamilyGroup"] = relationship("FamilyGroup", back_populates="memberships")

    # One membership per user per group
    __table_args__ = (
        Index("ix_memberships_user_group", "user_id", "family_group_id", unique=True),
    )

    def __repr__(self) -> str:
        return f"<Membership(user={self.user_id}, group={self.family_group_id}, role={self.role})>"


class Preference(Base):
    """A user's opt-in for one delivery channel.

    ``destination`` holds an email address, a phone number or a serialized
    web push subscription depending on the channel.
    """

    __tablename__ = "preferences"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    channel: Mapped[str] = mapped_column(String(20), nullable=False)
    enabled: Mapped[bool] = mapped_column(Boolean, default=False)
    destination: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    verified_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    user: Mapped["User"] = relationship("User", back_populates="preferences")

    __table_args__ = (
        Index("ix_preferences_user_channel", "user_id", "channel", unique=True),
    )

    def __repr__(self) -> str:
        return f"<Preference(user={self.user_id}, channel={self.channel}, enabled={self.enabled})>"

    @property
    def is_eligible(self) -> bool:
        """True when the channel is enabled and its destination verified."""
        return bool(self.enabled) and self.verified_at is not None
