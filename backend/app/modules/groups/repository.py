"""Membership and preference resolution for family groups.

Read-only from the dispatch path.
"""

import uuid
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import joinedload

from app.modules.groups.models import FamilyGroup, Membership, Preference, User


@dataclass
class ResolvedRecipient:
    """A group member together with their channel preferences."""

    user: User
    role: str
    preferences: list[Preference] = field(default_factory=list)

    @property
    def eligible_preferences(self) -> list[Preference]:
        return [p for p in self.preferences if p.is_eligible]


class MembershipRepository:
    """Repository for family group membership lookups."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def group_exists(self, group_id: uuid.UUID) -> bool:
        """Check whether a family group exists."""
        result = await self.session.execute(
            select(FamilyGroup.id).where(FamilyGroup.id == group_id)
        )
        return result.scalar_one_or_none() is not None

    async def get_membership(
        self, user_id: uuid.UUID, group_id: uuid.UUID
    ) -> Optional[Membership]:
        """Get a user's membership in a group."""
        result = await self.session.execute(
            select(Membership).where(
                Membership.user_id == user_id,
                Membership.family_group_id == group_id,
            )
        )
        return result.scalar_one_or_none()

    async def resolve_recipients(
        self,
        group_id: uuid.UUID,
        eligible_only: bool = True,
    ) -> list[ResolvedRecipient]:
        """Load every member of a group with their channel preferences.

        Members are returned in membership order regardless of role. With
        ``eligible_only`` (the default) each recipient carries only the
        preferences that are enabled and verified; otherwise all of them, so
        the caller can account for the skipped ones.

        Args:
            group_id: Family group ID

        Returns:
            list[ResolvedRecipient]: Empty when the group has no members
        """
        result = await self.session.execute(
            select(Membership)
            .options(joinedload(Membership.user))
            .where(Membership.family_group_id == group_id)
            .order_by(Membership.created_at, Membership.id)
        )
        memberships = list(result.scalars().all())
        if not memberships:
            return []

        user_ids = [m.user_id for m in memberships]
        query = select(Preference).where(Preference.user_id.in_(user_ids))
        if eligible_only:
            query = query.where(
                Preference.enabled.is_(True),
                Preference.verified_at.is_not(None),
            )
        # Preferences change between dispatches; reload over identity-map copies
        pref_result = await self.session.execute(
            query.order_by(Preference.created_at, Preference.id)
            .execution_options(populate_existing=True)
        )

        by_user: dict[uuid.UUID, list[Preference]] = {}
        for preference in pref_result.scalars().all():
            by_user.setdefault(preference.user_id, []).append(preference)

        return [
            ResolvedRecipient(
                user=m.user,
                role=m.role,
                preferences=by_user.get(m.user_id, []),
            )
            for m in memberships
        ]
