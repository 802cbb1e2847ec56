"""Pydantic schemas for dispatch responses."""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class DispatchSummaryResponse(BaseModel):
    """Outcome counts of one dispatch."""

    item_type: str
    item_id: uuid.UUID
    recipients: int
    attempts: int
    sent: int
    failed: int
    skipped: int

    class Config:
        from_attributes = True


class DispatchResponse(BaseModel):
    """Response for a manual dispatch."""

    success: bool = True
    message: str
    summary: DispatchSummaryResponse


class CronResponse(BaseModel):
    """Response for a scheduled sweep. ``processed`` counts dispatched items."""

    success: bool = True
    processed: int


class ChannelProgressResponse(BaseModel):
    total: int
    processed: int
    sent: int
    failed: int
    queued: int

    class Config:
        from_attributes = True


class DeliveryProgressResponse(BaseModel):
    """Ledger progress for one item."""

    item_type: str
    item_id: uuid.UUID
    total: int
    processed: int
    sent: int
    failed: int
    queued: int
    percentage: int
    by_channel: dict[str, ChannelProgressResponse]
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    is_complete: bool

    class Config:
        from_attributes = True
