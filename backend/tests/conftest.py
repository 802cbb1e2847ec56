"""Shared fixtures: SQLite database, seed data and recording transports."""

import asyncio
import os
import uuid
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Optional

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-familynotify")
os.environ.setdefault("CRON_SECRET", "test-cron-secret")
os.environ.setdefault("RATE_LIMIT_BACKEND", "memory")

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.core.database import Base
from app.modules.announcement.models import Announcement, AnnouncementType
from app.modules.dispatch.content import MessageContent
from app.modules.dispatch.models import DeliveryAttempt  # noqa: F401
from app.modules.dispatch.transports import ChannelTransport, PushTransport, TransportResult
from app.modules.event.models import Event, EventReminder
from app.modules.groups.models import (
    Channel,
    FamilyGroup,
    MemberRole,
    Membership,
    Preference,
    User,
)

VALID_PUSH_SUBSCRIPTION = (
    '{"endpoint": "https://push.example.com/sub/1", '
    '"keys": {"p256dh": "BNcRdreALRFXTkOOUHK1EtK2wtaz5Ry4YfYCA", "auth": "tBHItJI5svbpez7KI4CCXg"}}'
)

DESTINATIONS = {
    Channel.EMAIL: "member@example.com",
    Channel.SMS: "+15551234567",
    Channel.WHATSAPP: "+972501234567",
    Channel.PUSH: VALID_PUSH_SUBSCRIPTION,
    Channel.VOICE_CALL: "0501234567",
}


class RecordingTransport(ChannelTransport):
    """Transport that records sends instead of calling a provider."""

    def __init__(
        self,
        channel: Channel,
        error: Optional[str] = None,
        exc: Optional[Exception] = None,
        delay: float = 0.0,
    ):
        super().__init__(timeout=1.0)
        self.channel = Channel(channel)
        self.label = self.channel.value
        self.error = error
        self.exc = exc
        self.delay = delay
        self.sent: list[tuple[str, MessageContent]] = []

    async def send(self, destination, content: MessageContent) -> TransportResult:
        self.sent.append((destination, content))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.exc is not None:
            raise self.exc
        if self.error is not None:
            return self._failure(self.error)
        return self._success(f"{self.channel.value.lower()}-{len(self.sent)}")


class RecordingPushTransport(PushTransport):
    """Push transport with real subscription parsing and a recorded send."""

    def __init__(self):
        super().__init__(vapid_private_key="test-vapid-key", timeout=1.0)
        self.sent: list[tuple[dict, MessageContent]] = []

    async def send(self, destination: dict, content: MessageContent) -> TransportResult:
        self.sent.append((destination, content))
        return self._success()


def recording_transports(**overrides: ChannelTransport) -> dict[Channel, ChannelTransport]:
    """One recording transport per channel, with per-channel overrides by name."""
    transports: dict[Channel, ChannelTransport] = {
        Channel.EMAIL: RecordingTransport(Channel.EMAIL),
        Channel.SMS: RecordingTransport(Channel.SMS),
        Channel.WHATSAPP: RecordingTransport(Channel.WHATSAPP),
        Channel.PUSH: RecordingPushTransport(),
        Channel.VOICE_CALL: RecordingTransport(Channel.VOICE_CALL),
    }
    for name, transport in overrides.items():
        transports[Channel(name.upper())] = transport
    return transports


class Seeder:
    """Insert rows for a test and commit them."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _save(self, obj):
        self.session.add(obj)
        await self.session.commit()
        return obj

    async def user(self, name: str = "Member") -> User:
        return await self._save(
            User(id=uuid.uuid4(), name=name, email=f"{uuid.uuid4().hex[:12]}@example.com")
        )

    async def group(self, name: str = "Cohen Family") -> FamilyGroup:
        return await self._save(FamilyGroup(id=uuid.uuid4(), name=name))

    async def member(
        self, user: User, group: FamilyGroup, role: MemberRole = MemberRole.MEMBER
    ) -> Membership:
        return await self._save(
            Membership(id=uuid.uuid4(), user_id=user.id, family_group_id=group.id, role=role.value)
        )

    async def preference(
        self,
        user: User,
        channel: Channel,
        destination: Optional[str] = None,
        enabled: bool = True,
        verified: bool = True,
    ) -> Preference:
        return await self._save(
            Preference(
                id=uuid.uuid4(),
                user_id=user.id,
                channel=Channel(channel).value,
                enabled=enabled,
                destination=destination if destination is not None else DESTINATIONS[Channel(channel)],
                verified_at=datetime.utcnow() if verified else None,
            )
        )

    async def member_with_channels(
        self,
        group: FamilyGroup,
        channels: list[Channel],
        role: MemberRole = MemberRole.MEMBER,
        name: str = "Member",
    ) -> User:
        user = await self.user(name)
        await self.member(user, group, role)
        for channel in channels:
            await self.preference(user, channel)
        return user

    async def announcement(
        self,
        group: FamilyGroup,
        author: User,
        title: str = "Family dinner",
        body: str = "Friday night at Savta's.",
        type: AnnouncementType = AnnouncementType.GENERAL,
        scheduled_at: Optional[datetime] = None,
        scheduled_resend_at: Optional[datetime] = None,
        published_at: Optional[datetime] = None,
    ) -> Announcement:
        return await self._save(
            Announcement(
                id=uuid.uuid4(),
                family_group_id=group.id,
                created_by=author.id,
                title=title,
                body=body,
                type=type.value,
                scheduled_at=scheduled_at,
                scheduled_resend_at=scheduled_resend_at,
                published_at=published_at,
            )
        )

    async def event(
        self,
        group: FamilyGroup,
        author: User,
        title: str = "Bar Mitzvah",
        location: Optional[str] = "Beit Knesset Hagadol",
        starts_at: Optional[datetime] = None,
        reminder_offsets: Optional[list[int]] = None,
    ) -> Event:
        event = Event(
            id=uuid.uuid4(),
            family_group_id=group.id,
            created_by=author.id,
            title=title,
            description="Kiddush to follow.",
            location=location,
            starts_at=starts_at or datetime.utcnow() + timedelta(days=7),
        )
        if reminder_offsets is not None:
            event.scheduled_reminder_offsets = reminder_offsets
        return await self._save(event)

    async def reminder(
        self,
        event: Event,
        author: User,
        message: Optional[str] = None,
        is_initial: bool = False,
        scheduled_at: Optional[datetime] = None,
        sent_at: Optional[datetime] = None,
    ) -> EventReminder:
        return await self._save(
            EventReminder(
                id=uuid.uuid4(),
                event_id=event.id,
                family_group_id=event.family_group_id,
                created_by=author.id,
                message=message,
                is_initial=is_initial,
                scheduled_at=scheduled_at,
                sent_at=sent_at,
            )
        )


async def _create_schema(engine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


@pytest_asyncio.fixture
async def engine(tmp_path):
    """File-backed SQLite engine so separate sessions see each other's commits."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'dispatch.db'}")
    await _create_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def seed(session) -> Seeder:
    return Seeder(session)


@pytest.fixture
def in_memory_db() -> Callable[[Callable[[AsyncSession, Seeder], Awaitable]], Awaitable]:
    """Run a coroutine against a fresh in-memory database.

    For hypothesis tests, where each example needs its own schema.
    """
    async def run(scenario: Callable[[AsyncSession, Seeder], Awaitable]):
        engine = create_async_engine(
            "sqlite+aiosqlite://",
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
        try:
            await _create_schema(engine)
            factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
            async with factory() as session:
                return await scenario(session, Seeder(session))
        finally:
            await engine.dispose()

    return run


@pytest.fixture
def transports() -> dict[Channel, ChannelTransport]:
    return recording_transports()


@pytest.fixture
def make_transport() -> type[RecordingTransport]:
    return RecordingTransport


@pytest.fixture
def make_transports() -> Callable[..., dict[Channel, ChannelTransport]]:
    return recording_transports


@pytest.fixture
def auth_headers() -> Callable[[User], dict[str, str]]:
    """Bearer headers for a seeded user."""
    from app.modules.auth.jwt import create_access_token

    def build(user: User) -> dict[str, str]:
        return {"Authorization": f"Bearer {create_access_token(user.id)}"}

    return build


@pytest_asyncio.fixture
async def api_client(session_factory, transports):
    """HTTP client for the application, bound to the test database and transports."""
    import httpx

    from app.core.database import get_db
    from app.main import app
    from app.modules.dispatch.dependencies import get_transports
    from app.modules.ratelimit.limiter import InMemorySlidingWindowStore

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_transports] = lambda: transports
    limiter = app.state.rate_limiter
    if limiter is not None and isinstance(limiter.store, InMemorySlidingWindowStore):
        limiter.store.reset()

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
