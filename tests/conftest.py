"""Shared fixtures: in-memory database, local change feed, stub oracle and API client."""

import asyncio
import uuid
from typing import Optional

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from arcade_chat.core.database import Base, get_session
from arcade_chat.modules.automod import (
    AutomodGate,
    EscalationPolicy,
    MessageContext,
    ModerationOracle,
    ModerationVerdict,
)
from arcade_chat.modules.chat import LocalChangeFeed, SqlStoreReader
from arcade_chat.modules.moderation import UserProfile, UserRole


class StubOracle(ModerationOracle):
    """Oracle returning a configured verdict, raising, or stalling."""

    def __init__(self, verdict: Optional[ModerationVerdict] = None):
        self.verdict = verdict or ModerationVerdict(allowed=True)
        self.error: Optional[BaseException] = None
        self.delay: float = 0.0
        self.calls: list[tuple[str, MessageContext]] = []

    async def classify(self, content: str, context: MessageContext) -> ModerationVerdict:
        self.calls.append((content, context))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.verdict


@pytest.fixture
async def db_engine():
    """Isolated in-memory database per test."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_maker(db_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_maker):
    async with session_maker() as session:
        yield session


@pytest.fixture
def change_feed() -> LocalChangeFeed:
    return LocalChangeFeed()


@pytest.fixture
def oracle() -> StubOracle:
    return StubOracle()


@pytest.fixture
def gate(oracle, session_maker, change_feed) -> AutomodGate:
    return AutomodGate(
        oracle=oracle,
        session_maker=session_maker,
        feed=change_feed,
        timeout_seconds=0.5,
        escalation=EscalationPolicy(enabled=False),
        enabled=True,
    )


@pytest.fixture
def make_profile(session_maker):
    """Factory creating committed profiles."""

    async def create(
        role: UserRole = UserRole.USER,
        username: Optional[str] = None,
        user_id: Optional[uuid.UUID] = None,
    ) -> UserProfile:
        user_id = user_id or uuid.uuid4()
        async with session_maker() as session:
            profile = UserProfile(
                user_id=user_id,
                username=username or f"user_{user_id.hex[:8]}",
                role=role.value,
            )
            session.add(profile)
            await session.commit()
            return profile

    return create


@pytest.fixture
async def client(session_maker, change_feed, gate):
    """HTTP client over the app with test state and database."""
    from arcade_chat.main import app

    async def override_get_session():
        async with session_maker() as session:
            yield session

    app.state.change_feed = change_feed
    app.state.store_reader = SqlStoreReader(session_maker)
    app.state.automod_gate = gate
    app.dependency_overrides[get_session] = override_get_session

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    await gate.drain()
    app.dependency_overrides.clear()
