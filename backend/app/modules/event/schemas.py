"""Pydantic schemas for event reminders."""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from app.core.database import to_naive_utc
from app.modules.dispatch.schemas import DispatchSummaryResponse


class EventReminderCreate(BaseModel):
    """Request schema for an event reminder.

    Without ``scheduled_at`` the reminder is sent immediately.
    """

    event_id: uuid.UUID
    message: Optional[str] = Field(None, max_length=2000)
    scheduled_at: Optional[datetime] = None
    is_initial: bool = False

    @field_validator("scheduled_at")
    @classmethod
    def normalize_scheduled_at(cls, v: Optional[datetime]) -> Optional[datetime]:
        return to_naive_utc(v)


class EventReminderResponse(BaseModel):
    """Response schema for an event reminder."""

    id: uuid.UUID
    event_id: uuid.UUID
    family_group_id: uuid.UUID
    created_by: uuid.UUID
    message: Optional[str] = None
    is_initial: bool
    scheduled_at: Optional[datetime] = None
    sent_at: Optional[datetime] = None
    offset_minutes: Optional[int] = None
    created_at: datetime

    class Config:
        from_attributes = True


class EventReminderCreateResponse(BaseModel):
    success: bool = True
    reminder: EventReminderResponse
    dispatch: Optional[DispatchSummaryResponse] = None


class EventReminderListResponse(BaseModel):
    reminders: list[EventReminderResponse]
    total: int
