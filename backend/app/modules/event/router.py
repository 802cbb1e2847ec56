"""FastAPI router for event reminder administration."""

import uuid

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.modules.auth.dependencies import get_current_user_id
from app.modules.dispatch.dependencies import get_orchestrator
from app.modules.dispatch.exceptions import DispatchError
from app.modules.dispatch.orchestrator import FanOutOrchestrator
from app.modules.dispatch.schemas import DispatchSummaryResponse
from app.modules.event.schemas import (
    EventReminderCreate,
    EventReminderCreateResponse,
    EventReminderListResponse,
    EventReminderResponse,
)
from app.modules.event.service import EventAccessDeniedError, EventNotFoundError, EventService

router = APIRouter(prefix="/admin/event-reminders", tags=["events"])


def get_service(
    session: AsyncSession = Depends(get_db),
    orchestrator: FanOutOrchestrator = Depends(get_orchestrator),
) -> EventService:
    """Dependency to get event service."""
    return EventService(session, orchestrator)


@router.post(
    "",
    response_model=EventReminderCreateResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create an event reminder",
)
async def create_event_reminder(
    data: EventReminderCreate,
    service: EventService = Depends(get_service),
    user_id: uuid.UUID = Depends(get_current_user_id),
):
    """Create an event reminder, sending it now or at ``scheduled_at``."""
    try:
        reminder, summary = await service.create_reminder(user_id, data)
    except EventNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except EventAccessDeniedError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    except DispatchError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    return EventReminderCreateResponse(
        reminder=EventReminderResponse.model_validate(reminder),
        dispatch=DispatchSummaryResponse.model_validate(summary) if summary else None,
    )


@router.get(
    "",
    response_model=EventReminderListResponse,
    summary="List an event's reminders",
)
async def list_event_reminders(
    event_id: uuid.UUID = Query(..., description="Event to list reminders for"),
    service: EventService = Depends(get_service),
    user_id: uuid.UUID = Depends(get_current_user_id),
):
    """Get all reminders of an event, newest first."""
    try:
        reminders = await service.list_reminders(user_id, event_id)
    except EventNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except EventAccessDeniedError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))

    return EventReminderListResponse(
        reminders=[EventReminderResponse.model_validate(r) for r in reminders],
        total=len(reminders),
    )
