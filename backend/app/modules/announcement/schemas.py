"""Pydantic schemas for announcements."""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from app.core.database import to_naive_utc
from app.modules.announcement.models import AnnouncementType
from app.modules.dispatch.schemas import DispatchSummaryResponse


class AnnouncementCreate(BaseModel):
    """Request schema for creating an announcement.

    ``send_now`` dispatches immediately; a ``scheduled_at`` given alongside it
    becomes the resend time. Without ``send_now`` the announcement waits for
    the scheduler, so ``scheduled_at`` is required.
    """

    title: str = Field(..., min_length=1, max_length=255)
    body: str = Field(..., min_length=1)
    type: AnnouncementType = AnnouncementType.GENERAL
    family_group_id: uuid.UUID
    send_now: bool = True
    scheduled_at: Optional[datetime] = None

    @field_validator("scheduled_at")
    @classmethod
    def normalize_scheduled_at(cls, v: Optional[datetime]) -> Optional[datetime]:
        return to_naive_utc(v)

    @model_validator(mode="after")
    def require_schedule_when_deferred(self) -> "AnnouncementCreate":
        if not self.send_now and self.scheduled_at is None:
            raise ValueError("scheduled_at is required when send_now is false")
        return self


class AnnouncementResponse(BaseModel):
    """Response schema for an announcement."""

    id: uuid.UUID
    family_group_id: uuid.UUID
    created_by: uuid.UUID
    title: str
    body: str
    type: str
    scheduled_at: Optional[datetime] = None
    scheduled_resend_at: Optional[datetime] = None
    published_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


class AnnouncementCreateResponse(BaseModel):
    """Created announcement plus the dispatch outcome when it was sent now."""

    success: bool = True
    announcement: AnnouncementResponse
    dispatch: Optional[DispatchSummaryResponse] = None


class AnnouncementListResponse(BaseModel):
    announcements: list[AnnouncementResponse]
    total: int
