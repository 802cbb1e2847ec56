"""Announcement service: creation policy and manual dispatch.

Send-now announcements are marked published before dispatch so the scheduler
never picks them up as a first send.
"""

import logging
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.modules.announcement.models import Announcement
from app.modules.announcement.repository import AnnouncementRepository
from app.modules.announcement.schemas import AnnouncementCreate
from app.modules.dispatch.orchestrator import DispatchSummary, FanOutOrchestrator
from app.modules.groups.models import MemberRole
from app.modules.groups.repository import MembershipRepository

logger = logging.getLogger(__name__)


class AnnouncementServiceError(Exception):
    """Base exception for announcement service errors."""
    pass


class AnnouncementNotFoundError(AnnouncementServiceError):
    """Announcement not found."""
    pass


class GroupAccessDeniedError(AnnouncementServiceError):
    """Caller lacks the required role in the family group."""
    pass


class AnnouncementService:
    """Service for creating, listing and dispatching announcements."""

    def __init__(self, session: AsyncSession, orchestrator: FanOutOrchestrator):
        self.session = session
        self.orchestrator = orchestrator
        self.announcements = AnnouncementRepository(session)
        self.memberships = MembershipRepository(session)

    async def _require_role(
        self, user_id: uuid.UUID, group_id: uuid.UUID, admin: bool = True
    ) -> None:
        membership = await self.memberships.get_membership(user_id, group_id)
        if membership is None:
            raise GroupAccessDeniedError("Not a member of this family group")
        if admin and membership.role != MemberRole.ADMIN.value:
            raise GroupAccessDeniedError("Admin role required")

    async def create_announcement(
        self, user_id: uuid.UUID, data: AnnouncementCreate
    ) -> tuple[Announcement, Optional[DispatchSummary]]:
        """Create an announcement and dispatch it now or leave it scheduled.

        | send_now | scheduled_at | result                                        |
        |----------|--------------|-----------------------------------------------|
        | True     | None         | dispatched, published now                     |
        | True     | set          | dispatched, published now, resend at the time |
        | False    | set          | scheduled for the sweep                       |

        Raises:
            GroupAccessDeniedError: If the caller is not a group admin
        """
        await self._require_role(user_id, data.family_group_id)

        if not data.send_now:
            announcement = await self.announcements.create(
                family_group_id=data.family_group_id,
                created_by=user_id,
                title=data.title,
                body=data.body,
                type=data.type.value,
                scheduled_at=data.scheduled_at,
                scheduled_resend_at=None,
                published_at=None,
            )
            logger.info(
                "Announcement scheduled",
                extra={"announcement_id": str(announcement.id), "scheduled_at": str(data.scheduled_at)},
            )
            return announcement, None

        announcement = await self.announcements.create(
            family_group_id=data.family_group_id,
            created_by=user_id,
            title=data.title,
            body=data.body,
            type=data.type.value,
            scheduled_at=None,
            scheduled_resend_at=data.scheduled_at,
            published_at=datetime.utcnow(),
        )
        summary = await self.orchestrator.dispatch_announcement(
            announcement.id, announcement.family_group_id
        )
        return announcement, summary

    async def list_announcements(
        self, user_id: uuid.UUID, group_id: uuid.UUID, limit: int = 50
    ) -> list[Announcement]:
        """List a group's recent announcements. Any member may read."""
        await self._require_role(user_id, group_id, admin=False)
        return await self.announcements.list_for_group(group_id, limit)

    async def dispatch_now(self, user_id: uuid.UUID, announcement_id: uuid.UUID) -> DispatchSummary:
        """Dispatch an existing announcement and set published_at if unset.

        Raises:
            AnnouncementNotFoundError: If the announcement does not exist
            GroupAccessDeniedError: If the caller is not a group admin
        """
        announcement = await self.announcements.get_by_id(announcement_id)
        if announcement is None:
            raise AnnouncementNotFoundError(f"Announcement {announcement_id} not found")
        await self._require_role(user_id, announcement.family_group_id)

        group_id = announcement.family_group_id
        summary = await self.orchestrator.dispatch_announcement(announcement_id, group_id)
        await self.announcements.claim_first_send(announcement_id, datetime.utcnow())
        return summary
