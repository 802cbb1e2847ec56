"""Announcements: creation policy, scheduling and claim primitives."""

from app.modules.announcement.models import Announcement, AnnouncementType
from app.modules.announcement.repository import AnnouncementRepository

__all__ = ["Announcement", "AnnouncementRepository", "AnnouncementType"]
