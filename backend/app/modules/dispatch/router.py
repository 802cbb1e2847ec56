"""FastAPI routers for scheduled sweeps, manual dispatch and delivery progress."""

import uuid

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.database import get_db
from app.modules.announcement.models import Announcement
from app.modules.announcement.service import (
    AnnouncementNotFoundError,
    AnnouncementService,
    GroupAccessDeniedError,
)
from app.modules.auth.dependencies import get_current_user_id, verify_cron_secret
from app.modules.dispatch.dependencies import get_orchestrator
from app.modules.dispatch.exceptions import DispatchError
from app.modules.dispatch.ledger import DeliveryLedger
from app.modules.dispatch.models import ItemType
from app.modules.dispatch.orchestrator import FanOutOrchestrator
from app.modules.dispatch.scheduler import SchedulerClaimLoop
from app.modules.dispatch.schemas import (
    CronResponse,
    DeliveryProgressResponse,
    DispatchResponse,
    DispatchSummaryResponse,
)
from app.modules.event.models import Event, EventReminder
from app.modules.event.service import EventAccessDeniedError, EventNotFoundError, EventService
from app.modules.groups.repository import MembershipRepository

cron_router = APIRouter(
    prefix="/cron",
    tags=["cron"],
    dependencies=[Depends(verify_cron_secret)],
)
router = APIRouter(tags=["dispatch"])

ITEM_MODELS = {
    ItemType.ANNOUNCEMENT: Announcement,
    ItemType.EVENT: Event,
    ItemType.EVENT_REMINDER: EventReminder,
}


def get_claim_loop(
    session: AsyncSession = Depends(get_db),
    orchestrator: FanOutOrchestrator = Depends(get_orchestrator),
) -> SchedulerClaimLoop:
    """Dependency to get a scheduler claim loop."""
    return SchedulerClaimLoop(session, orchestrator, batch_size=settings.SCHEDULER_BATCH_SIZE)


# ============================================
# Cron Endpoints
# ============================================


@cron_router.get(
    "/due-announcements",
    response_model=CronResponse,
    summary="Dispatch due scheduled announcements and resends",
)
async def cron_due_announcements(loop: SchedulerClaimLoop = Depends(get_claim_loop)):
    """Claim and dispatch due announcements.

    ``processed`` counts announcements this sweep claimed and dispatched.
    """
    result = await loop.sweep_due_announcements()
    return CronResponse(processed=result.processed)


@cron_router.get(
    "/event-reminders",
    response_model=CronResponse,
    summary="Dispatch due event reminders",
)
async def cron_event_reminders(loop: SchedulerClaimLoop = Depends(get_claim_loop)):
    """Claim and dispatch due event reminders, including due reminder offsets."""
    result = await loop.sweep_due_event_reminders()
    return CronResponse(processed=result.processed)


# ============================================
# Manual Dispatch Endpoints
# ============================================


@router.post(
    "/dispatch/announcement/{announcement_id}",
    response_model=DispatchResponse,
    summary="Dispatch an announcement now",
)
async def dispatch_announcement(
    announcement_id: uuid.UUID,
    session: AsyncSession = Depends(get_db),
    orchestrator: FanOutOrchestrator = Depends(get_orchestrator),
    user_id: uuid.UUID = Depends(get_current_user_id),
):
    """Send an existing announcement to its group and mark it published."""
    service = AnnouncementService(session, orchestrator)
    try:
        summary = await service.dispatch_now(user_id, announcement_id)
    except (AnnouncementNotFoundError, DispatchError) as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except GroupAccessDeniedError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))

    return DispatchResponse(
        message="Announcement dispatched",
        summary=DispatchSummaryResponse.model_validate(summary),
    )


@router.post(
    "/dispatch/event/{event_id}/reminders",
    response_model=DispatchResponse,
    summary="Send an event reminder now",
)
async def dispatch_event_reminders(
    event_id: uuid.UUID,
    session: AsyncSession = Depends(get_db),
    orchestrator: FanOutOrchestrator = Depends(get_orchestrator),
    user_id: uuid.UUID = Depends(get_current_user_id),
):
    """Send a reminder built from the event itself to the event's group."""
    service = EventService(session, orchestrator)
    try:
        summary = await service.dispatch_event(user_id, event_id)
    except (EventNotFoundError, DispatchError) as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except EventAccessDeniedError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))

    return DispatchResponse(
        message="Event reminders dispatched",
        summary=DispatchSummaryResponse.model_validate(summary),
    )


# ============================================
# Delivery Progress
# ============================================


@router.get(
    "/admin/delivery-progress/{item_type}/{item_id}",
    response_model=DeliveryProgressResponse,
    summary="Get delivery progress for an item",
)
async def get_delivery_progress(
    item_type: ItemType,
    item_id: uuid.UUID,
    session: AsyncSession = Depends(get_db),
    user_id: uuid.UUID = Depends(get_current_user_id),
):
    """Get ledger totals for an item, overall and per channel. Member only."""
    item = await session.get(ITEM_MODELS[item_type], item_id)
    if item is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"{item_type.value} {item_id} not found",
        )

    membership = await MembershipRepository(session).get_membership(user_id, item.family_group_id)
    if membership is None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not a member of this family group",
        )

    progress = await DeliveryLedger(session).get_progress(item_type, item_id)
    return DeliveryProgressResponse.model_validate(progress)
