"""Family groups, memberships and channel preferences."""

from app.modules.groups.models import (
    Channel,
    FamilyGroup,
    MemberRole,
    Membership,
    Preference,
    User,
)
from app.modules.groups.repository import MembershipRepository, ResolvedRecipient

__all__ = [
    "Channel",
    "FamilyGroup",
    "MemberRole",
    "Membership",
    "MembershipRepository",
    "Preference",
    "ResolvedRecipient",
    "User",
]
