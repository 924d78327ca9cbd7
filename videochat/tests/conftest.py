"""
Test fixtures for the videochat backend tests.

Provides:
- A fresh in-memory SQLite database per test
- Async test client with the session dependency overridden
- Factories for users, sponsor chains, payments and rooms
"""
# Settings are validated when the app is imported, so the env comes first
import os

# Placeholders only; every test runs on in-memory SQLite
os.environ.setdefault("DB_USER", "test")
os.environ.setdefault("DB_PASSWORD", "test")
os.environ.setdefault("DB_NAME", "test")
# development skips the production-only checks
os.environ.setdefault("ENVIRONMENT", "development")

import itertools
from datetime import datetime, timedelta
from decimal import Decimal
from typing import AsyncGenerator, List, Optional

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import (
    create_async_engine,
    AsyncSession,
    async_sessionmaker,
)
from sqlalchemy.pool import NullPool, StaticPool

from videochat.app.core.base import Base
from videochat.app.core.clock import utcnow
from videochat.app.core.constants import PAYMENT_COMPLETED
from videochat.app.main import app
from videochat.app.api.deps import get_session
from videochat.app.models.user import User
from videochat.app.models.payment import Payment
from videochat.app.models.room import Room, RoomMember
import videochat.app.models.moderation  # noqa: F401 - register moderation tables with Base.metadata


TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture
async def test_engine(request, tmp_path):
    """
    One database per test. In memory on a single StaticPool connection by
    default; tests marked file_db get a file so that every session has its
    own connection.
    """
    if request.node.get_closest_marker("file_db"):
        engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'videochat.db'}", poolclass=NullPool)
    else:
        engine = create_async_engine(
            TEST_DATABASE_URL,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
            echo=False,
        )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker:
    return async_sessionmaker(bind=test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def test_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
async def client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    """
    Async HTTP client for testing API endpoints.
    Every request gets its own session, like in production.
    """
    async def override_get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def auth():
    """Headers identifying the acting user."""
    def _headers(user: User) -> dict:
        return {"X-User-Id": str(user.id)}
    return _headers


# --- Test Data Factories ---

@pytest.fixture
def make_user(test_session: AsyncSession):
    """
    Create a committed user. By default the membership is active for 28 days;
    pass member=False for a user who never paid, or an explicit expiry.
    """
    counter = itertools.count(1)

    async def _make(
        username: Optional[str] = None,
        sponsor: Optional[User] = None,
        member: bool = True,
        expiry: Optional[datetime] = None,
        role: str = "user",
        status: str = "active",
    ) -> User:
        n = next(counter)
        username = username or f"user{n}"
        if expiry is None and member:
            expiry = utcnow() + timedelta(days=28)
        user = User(
            username=username,
            email=f"{username}@example.com",
            first_name="Test",
            last_name=f"User{n}",
            role=role,
            status=status,
            sponsor_id=sponsor.id if sponsor else None,
            membership_expiry=expiry,
            total_earnings=Decimal("0"),
        )
        test_session.add(user)
        await test_session.commit()
        await test_session.refresh(user)
        return user

    return _make


@pytest.fixture
def make_chain(make_user):
    """
    Build a sponsor chain and return (payer, sponsors) where sponsors[0]
    is the level 1 sponsor. `expired_levels` lists levels whose membership
    has lapsed.
    """
    async def _make(length: int, expired_levels: tuple = ()) -> tuple:
        sponsors: List[User] = []
        parent = None
        # Built from the top down; level = length - index
        for index in range(length):
            level = length - index
            expiry = utcnow() - timedelta(days=1) if level in expired_levels else None
            parent = await make_user(username=f"level{level}", sponsor=parent, expiry=expiry)
            sponsors.insert(0, parent)
        payer = await make_user(username="payer", sponsor=parent)
        return payer, sponsors

    return _make


@pytest.fixture
def make_payment(test_session: AsyncSession):
    """A completed membership payment, as left behind by the payment flow."""
    counter = itertools.count(1)

    async def _make(user: User, status: str = PAYMENT_COMPLETED) -> Payment:
        payment = Payment(
            user_id=user.id,
            amount=Decimal("10.00"),
            currency="USDT",
            transaction_hash=f"0xtesthash{next(counter):06d}",
            status=status,
            membership_extension=28,
            completed_at=utcnow() if status == PAYMENT_COMPLETED else None,
        )
        test_session.add(payment)
        await test_session.commit()
        await test_session.refresh(payment)
        return payment

    return _make


@pytest.fixture
def make_room(test_session: AsyncSession):
    """Create an active room with the given users already present."""
    async def _make(creator: User, members: List[User], max_participants: int = 10) -> Room:
        now = utcnow()
        room = Room(
            name="Test Room",
            topic="Testing",
            description="A room for tests",
            creator_id=creator.id,
            max_participants=max_participants,
            requires_membership=True,
            is_active=True,
            current_participants=len(members),
            total_votings=0,
            total_expulsions=0,
            last_activity=now,
        )
        test_session.add(room)
        await test_session.flush()
        for user in members:
            test_session.add(RoomMember(room_id=room.id, user_id=user.id, joined_at=now))
        await test_session.commit()
        await test_session.refresh(room)
        return room

    return _make
