"""Tests for the scheduler claim loop.

**Feature: familynotify-dispatch, Property 4: Exactly One Claim Wins**
**Feature: familynotify-dispatch, Property 5: Re-running A Sweep Is A No-op**
"""

import asyncio
import uuid
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import select

from app.modules.announcement.models import Announcement
from app.modules.announcement.repository import AnnouncementRepository
from app.modules.dispatch.ledger import DeliveryLedger
from app.modules.dispatch.models import ItemType
from app.modules.dispatch.orchestrator import FanOutOrchestrator
from app.modules.dispatch.scheduler import SchedulerClaimLoop
from app.modules.event.models import Event, EventReminder
from app.modules.event.repository import EventReminderRepository
from app.modules.groups.models import Channel, FamilyGroup, MemberRole


@pytest.fixture
def past() -> datetime:
    return datetime.utcnow() - timedelta(minutes=5)


async def reload(session_factory, model, item_id):
    async with session_factory() as fresh:
        return await fresh.get(model, item_id)


class TestClaims:
    """Atomic conditional updates."""

    @pytest.mark.asyncio
    async def test_concurrent_first_send_claims(self, session_factory, seed, past) -> None:
        """**Feature: familynotify-dispatch, Property 4: Exactly One Claim Wins**

        Two concurrent claims on the same scheduled announcement SHALL
        produce exactly one winner.
        """
        group = await seed.group()
        admin = await seed.member_with_channels(group, [Channel.EMAIL], role=MemberRole.ADMIN)
        announcement = await seed.announcement(group, admin, scheduled_at=past)
        now = datetime.utcnow()

        async def claim() -> bool:
            async with session_factory() as session:
                return await AnnouncementRepository(session).claim_first_send(announcement.id, now)

        results = await asyncio.gather(claim(), claim())
        assert sorted(results) == [False, True]

    @pytest.mark.asyncio
    async def test_concurrent_reminder_claims(self, session_factory, seed, past) -> None:
        group = await seed.group()
        admin = await seed.member_with_channels(group, [Channel.EMAIL], role=MemberRole.ADMIN)
        event = await seed.event(group, admin)
        reminder = await seed.reminder(event, admin, scheduled_at=past)
        now = datetime.utcnow()

        async def claim() -> bool:
            async with session_factory() as session:
                return await EventReminderRepository(session).claim(reminder.id, now)

        results = await asyncio.gather(claim(), claim(), claim())
        assert sorted(results) == [False, False, True]

    @pytest.mark.asyncio
    async def test_concurrent_sweeps_dispatch_once(self, session_factory, seed, past) -> None:
        group = await seed.group()
        admin = await seed.member_with_channels(group, [Channel.EMAIL], role=MemberRole.ADMIN)
        announcement = await seed.announcement(group, admin, scheduled_at=past)

        orchestrator = AsyncMock()

        async def sweep():
            async with session_factory() as session:
                return await SchedulerClaimLoop(session, orchestrator).sweep_due_announcements()

        results = await asyncio.gather(sweep(), sweep())

        assert sum(r.processed for r in results) == 1
        orchestrator.dispatch_announcement.assert_awaited_once_with(announcement.id, group.id)


class TestAnnouncementSweep:
    """First sends and resends."""

    @pytest.mark.asyncio
    async def test_due_announcement_dispatched_and_published(
        self, session, session_factory, seed, transports, past
    ) -> None:
        group = await seed.group()
        admin = await seed.member_with_channels(
            group, [Channel.EMAIL, Channel.SMS], role=MemberRole.ADMIN
        )
        announcement = await seed.announcement(group, admin, scheduled_at=past)

        loop = SchedulerClaimLoop(session, FanOutOrchestrator(session, transports))
        result = await loop.sweep_due_announcements()

        assert (result.processed, result.candidates, result.skipped, result.failed) == (1, 1, 0, 0)
        stored = await reload(session_factory, Announcement, announcement.id)
        assert stored.published_at is not None
        attempts = await DeliveryLedger(session).list_for_item(ItemType.ANNOUNCEMENT, announcement.id)
        assert len(attempts) == 2

    @pytest.mark.asyncio
    async def test_rerun_processes_nothing(self, session, seed, transports, past) -> None:
        """**Feature: familynotify-dispatch, Property 5: Re-running A Sweep Is A No-op**

        After an item has been claimed and dispatched, the next sweep SHALL
        report processed = 0 and create no further ledger entries.
        """
        group = await seed.group()
        admin = await seed.member_with_channels(group, [Channel.EMAIL], role=MemberRole.ADMIN)
        announcement = await seed.announcement(group, admin, scheduled_at=past)
        loop = SchedulerClaimLoop(session, FanOutOrchestrator(session, transports))

        first = await loop.sweep_due_announcements()
        second = await loop.sweep_due_announcements()

        assert first.processed == 1
        assert second.processed == 0
        assert second.candidates == 0
        attempts = await DeliveryLedger(session).list_for_item(ItemType.ANNOUNCEMENT, announcement.id)
        assert len(attempts) == 1

    @pytest.mark.asyncio
    async def test_published_announcement_excluded(self, session, seed, transports, past) -> None:
        group = await seed.group()
        admin = await seed.member_with_channels(group, [Channel.EMAIL], role=MemberRole.ADMIN)
        await seed.announcement(group, admin, scheduled_at=past, published_at=past)

        result = await SchedulerClaimLoop(
            session, FanOutOrchestrator(session, transports)
        ).sweep_due_announcements()

        assert result.candidates == 0
        assert result.processed == 0
        assert transports[Channel.EMAIL].sent == []

    @pytest.mark.asyncio
    async def test_future_announcement_not_due(self, session, seed, transports) -> None:
        group = await seed.group()
        admin = await seed.member_with_channels(group, [Channel.EMAIL], role=MemberRole.ADMIN)
        await seed.announcement(group, admin, scheduled_at=datetime.utcnow() + timedelta(hours=1))

        result = await SchedulerClaimLoop(
            session, FanOutOrchestrator(session, transports)
        ).sweep_due_announcements()

        assert result.candidates == 0

    @pytest.mark.asyncio
    async def test_due_resend_dispatched_once(
        self, session, session_factory, seed, transports, past
    ) -> None:
        group = await seed.group()
        admin = await seed.member_with_channels(group, [Channel.EMAIL], role=MemberRole.ADMIN)
        announcement = await seed.announcement(
            group, admin, published_at=past - timedelta(days=1), scheduled_resend_at=past
        )
        loop = SchedulerClaimLoop(session, FanOutOrchestrator(session, transports))

        first = await loop.sweep_due_announcements()
        second = await loop.sweep_due_announcements()

        assert first.processed == 1
        assert second.processed == 0
        stored = await reload(session_factory, Announcement, announcement.id)
        assert stored.scheduled_resend_at is None
        assert len(transports[Channel.EMAIL].sent) == 1

    @pytest.mark.asyncio
    async def test_failed_dispatch_releases_claim(
        self, session, session_factory, seed, transports, past
    ) -> None:
        group = await seed.group()
        admin = await seed.member_with_channels(group, [Channel.EMAIL], role=MemberRole.ADMIN)
        # Group row is gone by the time the sweep dispatches
        missing_group = FamilyGroup(id=uuid.uuid4(), name="Deleted Family")
        announcement = await seed.announcement(missing_group, admin, scheduled_at=past)

        result = await SchedulerClaimLoop(
            session, FanOutOrchestrator(session, transports)
        ).sweep_due_announcements()

        assert (result.processed, result.candidates, result.failed) == (0, 1, 1)
        stored = await reload(session_factory, Announcement, announcement.id)
        assert stored.published_at is None

    @pytest.mark.asyncio
    async def test_failure_after_deliveries_keeps_claim(
        self, session, session_factory, seed, past
    ) -> None:
        group = await seed.group()
        admin = await seed.member_with_channels(group, [Channel.EMAIL], role=MemberRole.ADMIN)
        admin_id = admin.id
        announcement = await seed.announcement(group, admin, scheduled_at=past)

        async def deliver_then_fail(item_id, group_id):
            await DeliveryLedger(session).create(ItemType.ANNOUNCEMENT, item_id, admin_id, Channel.EMAIL)
            raise RuntimeError("connection reset")

        orchestrator = AsyncMock()
        orchestrator.dispatch_announcement.side_effect = deliver_then_fail
        loop = SchedulerClaimLoop(session, orchestrator)

        first = await loop.sweep_due_announcements()
        second = await loop.sweep_due_announcements()

        assert (first.processed, first.failed) == (0, 1)
        assert second.candidates == 0
        stored = await reload(session_factory, Announcement, announcement.id)
        assert stored.published_at is not None
        orchestrator.dispatch_announcement.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_aware_now_is_normalized(self, session, seed, past) -> None:
        group = await seed.group()
        admin = await seed.member_with_channels(group, [Channel.EMAIL], role=MemberRole.ADMIN)
        await seed.announcement(group, admin, scheduled_at=past)
        orchestrator = AsyncMock()

        result = await SchedulerClaimLoop(session, orchestrator).sweep_due_announcements(
            now=datetime.now(timezone.utc)
        )

        assert result.processed == 1


class TestEventReminderSweep:
    """Scheduled event reminders."""

    @pytest.mark.asyncio
    async def test_due_reminder_dispatched_and_marked_sent(
        self, session, session_factory, seed, transports, past
    ) -> None:
        group = await seed.group()
        admin = await seed.member_with_channels(group, [Channel.WHATSAPP], role=MemberRole.ADMIN)
        event = await seed.event(group, admin)
        reminder = await seed.reminder(event, admin, message="Tomorrow!", scheduled_at=past)
        await seed.reminder(event, admin, scheduled_at=past, sent_at=past)
        await seed.reminder(event, admin, scheduled_at=datetime.utcnow() + timedelta(days=1))

        loop = SchedulerClaimLoop(session, FanOutOrchestrator(session, transports))
        result = await loop.sweep_due_event_reminders()
        again = await loop.sweep_due_event_reminders()

        assert (result.processed, result.candidates) == (1, 1)
        assert again.processed == 0
        stored = await reload(session_factory, EventReminder, reminder.id)
        assert stored.sent_at is not None
        _, content = transports[Channel.WHATSAPP].sent[0]
        assert content.text == "Tomorrow!"

    @pytest.mark.asyncio
    async def test_reminder_release_on_failure(self, session, session_factory, seed, past) -> None:
        group = await seed.group()
        admin = await seed.member_with_channels(group, [Channel.EMAIL], role=MemberRole.ADMIN)
        event = await seed.event(group, admin)
        reminder = await seed.reminder(event, admin, scheduled_at=past)

        orchestrator = AsyncMock()
        orchestrator.dispatch_event_reminder.side_effect = RuntimeError("boom")
        result = await SchedulerClaimLoop(session, orchestrator).sweep_due_event_reminders()

        assert result.failed == 1
        assert result.processed == 0
        stored = await reload(session_factory, EventReminder, reminder.id)
        assert stored.sent_at is None

    @pytest.mark.asyncio
    async def test_batch_size_limits_candidates(self, session, seed, past) -> None:
        group = await seed.group()
        admin = await seed.member_with_channels(group, [Channel.EMAIL], role=MemberRole.ADMIN)
        event = await seed.event(group, admin)
        for _ in range(3):
            await seed.reminder(event, admin, scheduled_at=past)

        result = await SchedulerClaimLoop(session, AsyncMock(), batch_size=2).sweep_due_event_reminders()

        assert result.candidates == 2
        assert result.processed == 2


class TestEventOffsetReminders:
    """Automatic reminders at an event's reminder offsets."""

    async def offset_rows(self, session_factory, event_id) -> list[EventReminder]:
        async with session_factory() as fresh:
            result = await fresh.execute(
                select(EventReminder).where(
                    EventReminder.event_id == event_id,
                    EventReminder.offset_minutes.is_not(None),
                )
            )
            return list(result.scalars().all())

    @pytest.mark.asyncio
    async def test_default_offsets(self, session_factory, seed) -> None:
        group = await seed.group()
        admin = await seed.member_with_channels(group, [Channel.EMAIL], role=MemberRole.ADMIN)
        event = await seed.event(group, admin)

        stored = await reload(session_factory, Event, event.id)

        assert stored.scheduled_reminder_offsets == [1440, 60]

    @pytest.mark.asyncio
    async def test_due_offset_sent_once(self, session, session_factory, seed, transports) -> None:
        group = await seed.group()
        admin = await seed.member_with_channels(group, [Channel.WHATSAPP], role=MemberRole.ADMIN)
        starts_at = datetime.utcnow() + timedelta(minutes=58)
        event = await seed.event(group, admin, title="Vort", starts_at=starts_at)

        loop = SchedulerClaimLoop(session, FanOutOrchestrator(session, transports))
        first = await loop.sweep_due_event_reminders()
        second = await loop.sweep_due_event_reminders()

        assert (first.scheduled, first.processed) == (1, 1)
        assert (second.scheduled, second.processed) == (0, 0)
        rows = await self.offset_rows(session_factory, event.id)
        assert [r.offset_minutes for r in rows] == [60]
        assert rows[0].scheduled_at == starts_at - timedelta(minutes=60)
        assert rows[0].sent_at is not None
        assert len(transports[Channel.WHATSAPP].sent) == 1
        _, content = transports[Channel.WHATSAPP].sent[0]
        assert content.subject == "Reminder: Vort"

    @pytest.mark.asyncio
    async def test_offset_not_yet_due(self, session, session_factory, seed) -> None:
        group = await seed.group()
        admin = await seed.member_with_channels(group, [Channel.EMAIL], role=MemberRole.ADMIN)
        event = await seed.event(group, admin, starts_at=datetime.utcnow() + timedelta(hours=3))
        orchestrator = AsyncMock()

        result = await SchedulerClaimLoop(session, orchestrator).sweep_due_event_reminders()

        assert (result.scheduled, result.processed) == (0, 0)
        assert await self.offset_rows(session_factory, event.id) == []
        orchestrator.dispatch_event_reminder.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_offset_past_grace_is_skipped(self, session, session_factory, seed) -> None:
        group = await seed.group()
        admin = await seed.member_with_channels(group, [Channel.EMAIL], role=MemberRole.ADMIN)
        # The 60 minute mark passed 40 minutes ago
        event = await seed.event(group, admin, starts_at=datetime.utcnow() + timedelta(minutes=20))

        loop = SchedulerClaimLoop(session, AsyncMock(), offset_grace_minutes=30)
        created = await loop.schedule_offset_reminders()

        assert created == 0
        assert await self.offset_rows(session_factory, event.id) == []

    @pytest.mark.asyncio
    async def test_started_event_gets_no_reminder(self, session, session_factory, seed) -> None:
        group = await seed.group()
        admin = await seed.member_with_channels(group, [Channel.EMAIL], role=MemberRole.ADMIN)
        event = await seed.event(
            group,
            admin,
            starts_at=datetime.utcnow() - timedelta(minutes=1),
            reminder_offsets=[5],
        )

        created = await SchedulerClaimLoop(session, AsyncMock()).schedule_offset_reminders()

        assert created == 0
        assert await self.offset_rows(session_factory, event.id) == []

    @pytest.mark.asyncio
    async def test_custom_offsets(self, session, session_factory, seed) -> None:
        group = await seed.group()
        admin = await seed.member_with_channels(group, [Channel.EMAIL], role=MemberRole.ADMIN)
        event = await seed.event(
            group,
            admin,
            starts_at=datetime.utcnow() + timedelta(minutes=115),
            reminder_offsets=[2880, 120, 30],
        )

        created = await SchedulerClaimLoop(session, AsyncMock()).schedule_offset_reminders()

        assert created == 1
        rows = await self.offset_rows(session_factory, event.id)
        assert [r.offset_minutes for r in rows] == [120]

    @pytest.mark.asyncio
    async def test_invalid_offsets_are_ignored(self, session, session_factory, seed) -> None:
        group = await seed.group()
        admin = await seed.member_with_channels(group, [Channel.EMAIL], role=MemberRole.ADMIN)
        event = await seed.event(
            group,
            admin,
            starts_at=datetime.utcnow() + timedelta(minutes=10),
            reminder_offsets=[0, -5, "15", 20000],
        )

        created = await SchedulerClaimLoop(session, AsyncMock()).schedule_offset_reminders()

        assert created == 0
        assert await self.offset_rows(session_factory, event.id) == []

    @pytest.mark.asyncio
    async def test_concurrent_offset_rows_created_once(self, session_factory, seed) -> None:
        group = await seed.group()
        admin = await seed.member_with_channels(group, [Channel.EMAIL], role=MemberRole.ADMIN)
        event = await seed.event(group, admin)
        fire_at = datetime.utcnow()

        async def create() -> bool:
            async with session_factory() as session:
                return await EventReminderRepository(session).create_for_offset(
                    event.id, group.id, admin.id, 60, fire_at
                )

        results = await asyncio.gather(create(), create())

        assert sorted(results) == [False, True]
        assert len(await self.offset_rows(session_factory, event.id)) == 1

    @pytest.mark.asyncio
    async def test_concurrent_sweeps_send_offset_once(self, session_factory, seed) -> None:
        group = await seed.group()
        admin = await seed.member_with_channels(group, [Channel.EMAIL], role=MemberRole.ADMIN)
        event = await seed.event(group, admin, starts_at=datetime.utcnow() + timedelta(minutes=59))
        orchestrator = AsyncMock()

        async def sweep():
            async with session_factory() as session:
                return await SchedulerClaimLoop(session, orchestrator).sweep_due_event_reminders()

        results = await asyncio.gather(sweep(), sweep())

        assert sum(r.scheduled for r in results) == 1
        assert sum(r.processed for r in results) == 1
        rows = await self.offset_rows(session_factory, event.id)
        assert len(rows) == 1
        orchestrator.dispatch_event_reminder.assert_awaited_once_with(rows[0].id, group.id)
