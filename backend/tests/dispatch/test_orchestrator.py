"""Tests for the fan-out orchestrator.

Covers the two-member scenario, per-pair isolation, malformed push
subscriptions, fatal lookups and bounded concurrency.
"""

import uuid

import pytest
from sqlalchemy import func, select

from app.modules.announcement.models import AnnouncementType
from app.modules.dispatch.exceptions import GroupNotFoundError, ItemNotFoundError
from app.modules.dispatch.ledger import DeliveryLedger
from app.modules.dispatch.models import DeliveryAttempt, DeliveryStatus, ItemType
from app.modules.dispatch.orchestrator import UNKNOWN_CHANNEL, FanOutOrchestrator
from app.modules.dispatch.transports import INVALID_PUSH_SUBSCRIPTION
from app.modules.groups.models import Channel, MemberRole


async def count_attempts(session) -> int:
    result = await session.execute(select(func.count(DeliveryAttempt.id)))
    return result.scalar_one()


class TestTwoMemberScenario:
    """Admin with EMAIL+WHATSAPP and Member with EMAIL only."""

    @pytest.mark.asyncio
    async def test_three_entries_all_sent(self, session, seed, transports) -> None:
        group = await seed.group()
        admin = await seed.member_with_channels(
            group, [Channel.EMAIL, Channel.WHATSAPP], role=MemberRole.ADMIN, name="Admin"
        )
        member = await seed.member_with_channels(group, [Channel.EMAIL], name="Member")
        announcement = await seed.announcement(group, admin)

        orchestrator = FanOutOrchestrator(session, transports)
        summary = await orchestrator.dispatch_announcement(announcement.id, group.id)

        attempts = await DeliveryLedger(session).list_for_item(ItemType.ANNOUNCEMENT, announcement.id)
        assert sorted((a.user_id, a.channel) for a in attempts) == sorted([
            (admin.id, Channel.EMAIL.value),
            (admin.id, Channel.WHATSAPP.value),
            (member.id, Channel.EMAIL.value),
        ])
        assert all(a.status == DeliveryStatus.SENT.value for a in attempts)
        assert all(a.provider_message_id for a in attempts)
        assert all(a.error is None for a in attempts)

        assert summary.recipients == 2
        assert summary.attempts == 3
        assert summary.sent == 3
        assert summary.failed == 0
        assert len(transports[Channel.EMAIL].sent) == 2
        assert len(transports[Channel.WHATSAPP].sent) == 1

    @pytest.mark.asyncio
    async def test_unverified_and_disabled_preferences_are_skipped(self, session, seed, transports) -> None:
        group = await seed.group()
        admin = await seed.member_with_channels(group, [Channel.EMAIL], role=MemberRole.ADMIN)
        await seed.preference(admin, Channel.SMS, verified=False)
        await seed.preference(admin, Channel.PUSH, enabled=False)
        announcement = await seed.announcement(group, admin)

        summary = await FanOutOrchestrator(session, transports).dispatch_announcement(
            announcement.id, group.id
        )

        assert summary.attempts == 1
        assert summary.skipped == 2
        assert transports[Channel.SMS].sent == []
        assert transports[Channel.PUSH].sent == []


class TestIsolation:
    """One pair going wrong never affects another pair."""

    @pytest.mark.asyncio
    async def test_transport_failure_does_not_block_other_recipients(
        self, session, seed, make_transport, make_transports
    ) -> None:
        group = await seed.group()
        admin = await seed.member_with_channels(
            group, [Channel.SMS, Channel.EMAIL], role=MemberRole.ADMIN
        )
        member = await seed.member_with_channels(group, [Channel.EMAIL])
        announcement = await seed.announcement(group, admin)

        transports = make_transports(sms=make_transport(Channel.SMS, error="Twilio API error: 400"))
        summary = await FanOutOrchestrator(session, transports).dispatch_announcement(
            announcement.id, group.id
        )

        attempts = await DeliveryLedger(session).list_for_item(ItemType.ANNOUNCEMENT, announcement.id)
        by_pair = {(a.user_id, a.channel): a for a in attempts}
        failed = by_pair[(admin.id, Channel.SMS.value)]
        assert failed.status == DeliveryStatus.FAILED.value
        assert failed.error == "Twilio API error: 400"
        assert by_pair[(admin.id, Channel.EMAIL.value)].status == DeliveryStatus.SENT.value
        assert by_pair[(member.id, Channel.EMAIL.value)].status == DeliveryStatus.SENT.value
        assert (summary.sent, summary.failed) == (2, 1)

    @pytest.mark.asyncio
    async def test_exception_in_send_becomes_failed_entry(
        self, session, seed, make_transport, make_transports
    ) -> None:
        group = await seed.group()
        admin = await seed.member_with_channels(
            group, [Channel.VOICE_CALL, Channel.EMAIL], role=MemberRole.ADMIN
        )
        announcement = await seed.announcement(group, admin)

        transports = make_transports(
            voice_call=make_transport(Channel.VOICE_CALL, exc=RuntimeError("socket closed"))
        )
        summary = await FanOutOrchestrator(session, transports).dispatch_announcement(
            announcement.id, group.id
        )

        counts = await DeliveryLedger(session).count_by_status(ItemType.ANNOUNCEMENT, announcement.id)
        assert counts[DeliveryStatus.SENT] == 1
        assert counts[DeliveryStatus.FAILED] == 1
        assert counts[DeliveryStatus.QUEUED] == 0
        assert summary.failed == 1

    @pytest.mark.asyncio
    async def test_malformed_push_subscription(self, session, seed, transports) -> None:
        group = await seed.group()
        admin = await seed.member_with_channels(group, [Channel.EMAIL], role=MemberRole.ADMIN)
        await seed.preference(admin, Channel.PUSH, destination="{not json")
        announcement = await seed.announcement(group, admin)

        await FanOutOrchestrator(session, transports).dispatch_announcement(announcement.id, group.id)

        attempts = await DeliveryLedger(session).list_for_item(ItemType.ANNOUNCEMENT, announcement.id)
        push = next(a for a in attempts if a.channel == Channel.PUSH.value)
        email = next(a for a in attempts if a.channel == Channel.EMAIL.value)
        assert push.status == DeliveryStatus.FAILED.value
        assert push.error == INVALID_PUSH_SUBSCRIPTION
        assert email.status == DeliveryStatus.SENT.value
        assert transports[Channel.PUSH].sent == []

    @pytest.mark.asyncio
    async def test_deeply_nested_push_subscription(self, session, seed, transports) -> None:
        group = await seed.group()
        admin = await seed.user("Admin")
        await seed.member(admin, group, MemberRole.ADMIN)
        await seed.preference(admin, Channel.PUSH, destination="[" * 100000)
        member = await seed.member_with_channels(group, [Channel.EMAIL])
        announcement = await seed.announcement(group, admin)

        summary = await FanOutOrchestrator(session, transports).dispatch_announcement(
            announcement.id, group.id
        )

        attempts = await DeliveryLedger(session).list_for_item(ItemType.ANNOUNCEMENT, announcement.id)
        by_user = {a.user_id: a for a in attempts}
        assert by_user[admin.id].status == DeliveryStatus.FAILED.value
        assert by_user[admin.id].error == INVALID_PUSH_SUBSCRIPTION
        assert by_user[member.id].status == DeliveryStatus.SENT.value
        assert (summary.sent, summary.failed) == (1, 1)

    @pytest.mark.parametrize("concurrency", [1, 4])
    @pytest.mark.asyncio
    async def test_destination_check_raising_becomes_failed_entry(
        self, session, seed, make_transport, make_transports, concurrency
    ) -> None:
        class BrokenDestinationTransport(make_transport):
            def prepare_destination(self, raw):
                raise RuntimeError("destination lookup exploded")

        group = await seed.group()
        admin = await seed.member_with_channels(group, [Channel.SMS], role=MemberRole.ADMIN)
        member = await seed.member_with_channels(group, [Channel.EMAIL])
        announcement = await seed.announcement(group, admin)

        transports = make_transports(sms=BrokenDestinationTransport(Channel.SMS))
        summary = await FanOutOrchestrator(
            session, transports, concurrency=concurrency
        ).dispatch_announcement(announcement.id, group.id)

        attempts = await DeliveryLedger(session).list_for_item(ItemType.ANNOUNCEMENT, announcement.id)
        by_user = {a.user_id: a for a in attempts}
        assert by_user[admin.id].status == DeliveryStatus.FAILED.value
        assert by_user[admin.id].error == "destination lookup exploded"
        assert by_user[member.id].status == DeliveryStatus.SENT.value
        assert transports[Channel.SMS].sent == []
        counts = await DeliveryLedger(session).count_by_status(ItemType.ANNOUNCEMENT, announcement.id)
        assert counts[DeliveryStatus.QUEUED] == 0
        assert (summary.sent, summary.failed) == (1, 1)

    @pytest.mark.asyncio
    async def test_channel_without_transport_fails_with_unknown_channel(
        self, session, seed, make_transports
    ) -> None:
        group = await seed.group()
        admin = await seed.member_with_channels(
            group, [Channel.EMAIL, Channel.SMS], role=MemberRole.ADMIN
        )
        announcement = await seed.announcement(group, admin)

        transports = make_transports()
        del transports[Channel.SMS]
        await FanOutOrchestrator(session, transports).dispatch_announcement(announcement.id, group.id)

        attempts = await DeliveryLedger(session).list_for_item(ItemType.ANNOUNCEMENT, announcement.id)
        sms = next(a for a in attempts if a.channel == Channel.SMS.value)
        assert sms.status == DeliveryStatus.FAILED.value
        assert sms.error == UNKNOWN_CHANNEL


class TestFatalLookups:
    """Missing item or group aborts before any ledger entry exists."""

    @pytest.mark.asyncio
    async def test_missing_announcement(self, session, seed, transports) -> None:
        group = await seed.group()
        await seed.member_with_channels(group, [Channel.EMAIL], role=MemberRole.ADMIN)

        with pytest.raises(ItemNotFoundError):
            await FanOutOrchestrator(session, transports).dispatch_announcement(uuid.uuid4(), group.id)

        assert await count_attempts(session) == 0

    @pytest.mark.asyncio
    async def test_missing_group(self, session, seed, transports) -> None:
        group = await seed.group()
        admin = await seed.member_with_channels(group, [Channel.EMAIL], role=MemberRole.ADMIN)
        announcement = await seed.announcement(group, admin)

        with pytest.raises(GroupNotFoundError):
            await FanOutOrchestrator(session, transports).dispatch_announcement(
                announcement.id, uuid.uuid4()
            )

        assert await count_attempts(session) == 0
        assert transports[Channel.EMAIL].sent == []

    @pytest.mark.asyncio
    async def test_missing_event_reminder(self, session, seed, transports) -> None:
        group = await seed.group()

        with pytest.raises(ItemNotFoundError):
            await FanOutOrchestrator(session, transports).dispatch_event_reminder(
                uuid.uuid4(), group.id
            )

        assert await count_attempts(session) == 0


class TestEventDispatch:
    """Events and event reminders fan out like announcements."""

    @pytest.mark.asyncio
    async def test_event_reminder_uses_custom_message(self, session, seed, transports) -> None:
        group = await seed.group()
        admin = await seed.member_with_channels(group, [Channel.SMS], role=MemberRole.ADMIN)
        event = await seed.event(group, admin, title="Sheva Brachot")
        reminder = await seed.reminder(event, admin, message="Bring a salad", is_initial=True)

        summary = await FanOutOrchestrator(session, transports).dispatch_event_reminder(
            reminder.id, group.id
        )

        assert summary.item_type == ItemType.EVENT_REMINDER.value
        assert summary.sent == 1
        _, content = transports[Channel.SMS].sent[0]
        assert content.subject == "New event: Sheva Brachot"
        assert content.text == "Bring a salad"

    @pytest.mark.asyncio
    async def test_direct_event_dispatch(self, session, seed, transports) -> None:
        group = await seed.group()
        admin = await seed.member_with_channels(group, [Channel.EMAIL], role=MemberRole.ADMIN)
        event = await seed.event(group, admin, title="Siyum")

        summary = await FanOutOrchestrator(session, transports).dispatch_event(event.id, group.id)

        attempts = await DeliveryLedger(session).list_for_item(ItemType.EVENT, event.id)
        assert len(attempts) == 1
        assert summary.sent == 1
        _, content = transports[Channel.EMAIL].sent[0]
        assert content.subject == "Reminder: Siyum"
        assert content.html is not None

    @pytest.mark.asyncio
    async def test_simcha_subject(self, session, seed, transports) -> None:
        group = await seed.group()
        admin = await seed.member_with_channels(group, [Channel.WHATSAPP], role=MemberRole.ADMIN)
        announcement = await seed.announcement(
            group, admin, title="It's a girl!", type=AnnouncementType.SIMCHA
        )

        await FanOutOrchestrator(session, transports).dispatch_announcement(announcement.id, group.id)

        _, content = transports[Channel.WHATSAPP].sent[0]
        assert content.subject == "Mazal Tov! It's a girl!"
        assert content.html is None


class TestConcurrency:
    """Bounded parallelism keeps every pair isolated and recorded once."""

    @pytest.mark.asyncio
    async def test_parallel_pairs_all_recorded(
        self, session, seed, make_transport, make_transports
    ) -> None:
        group = await seed.group()
        admin = await seed.member_with_channels(
            group, [Channel.EMAIL, Channel.SMS, Channel.WHATSAPP], role=MemberRole.ADMIN
        )
        for index in range(3):
            await seed.member_with_channels(group, [Channel.EMAIL, Channel.SMS], name=f"Member {index}")
        announcement = await seed.announcement(group, admin)

        transports = make_transports(
            email=make_transport(Channel.EMAIL, delay=0.01),
            sms=make_transport(Channel.SMS, error="SMS provider timeout", delay=0.01),
        )
        orchestrator = FanOutOrchestrator(session, transports, concurrency=4)
        summary = await orchestrator.dispatch_announcement(announcement.id, group.id)

        counts = await DeliveryLedger(session).count_by_status(ItemType.ANNOUNCEMENT, announcement.id)
        assert summary.attempts == 9
        assert counts[DeliveryStatus.SENT] == 5
        assert counts[DeliveryStatus.FAILED] == 4
        assert counts[DeliveryStatus.QUEUED] == 0
