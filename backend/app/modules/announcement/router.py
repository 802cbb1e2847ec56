"""FastAPI router for announcement administration."""

import uuid

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.modules.announcement.schemas import (
    AnnouncementCreate,
    AnnouncementCreateResponse,
    AnnouncementListResponse,
    AnnouncementResponse,
)
from app.modules.announcement.service import AnnouncementService, GroupAccessDeniedError
from app.modules.auth.dependencies import get_current_user_id
from app.modules.dispatch.dependencies import get_orchestrator
from app.modules.dispatch.exceptions import DispatchError
from app.modules.dispatch.orchestrator import FanOutOrchestrator
from app.modules.dispatch.schemas import DispatchSummaryResponse

router = APIRouter(prefix="/admin/announcements", tags=["announcements"])


def get_service(
    session: AsyncSession = Depends(get_db),
    orchestrator: FanOutOrchestrator = Depends(get_orchestrator),
) -> AnnouncementService:
    """Dependency to get announcement service."""
    return AnnouncementService(session, orchestrator)


@router.post(
    "",
    response_model=AnnouncementCreateResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create an announcement",
)
async def create_announcement(
    data: AnnouncementCreate,
    service: AnnouncementService = Depends(get_service),
    user_id: uuid.UUID = Depends(get_current_user_id),
):
    """Create an announcement, sending it now or scheduling it."""
    try:
        announcement, summary = await service.create_announcement(user_id, data)
    except GroupAccessDeniedError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    except DispatchError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    return AnnouncementCreateResponse(
        announcement=AnnouncementResponse.model_validate(announcement),
        dispatch=DispatchSummaryResponse.model_validate(summary) if summary else None,
    )


@router.get(
    "",
    response_model=AnnouncementListResponse,
    summary="List a group's announcements",
)
async def list_announcements(
    family_group_id: uuid.UUID = Query(..., description="Family group to list"),
    service: AnnouncementService = Depends(get_service),
    user_id: uuid.UUID = Depends(get_current_user_id),
):
    """Get the 50 most recent announcements of a family group."""
    try:
        announcements = await service.list_announcements(user_id, family_group_id)
    except GroupAccessDeniedError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))

    return AnnouncementListResponse(
        announcements=[AnnouncementResponse.model_validate(a) for a in announcements],
        total=len(announcements),
    )
