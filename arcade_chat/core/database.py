"""Database engine, session factory and declarative base."""

from collections.abc import AsyncGenerator
from datetime import datetime, timezone
from typing import ClassVar

from sqlalchemy import DateTime
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.types import TypeDecorator

from arcade_chat.core.config import settings


def utcnow() -> datetime:
    """Current time as a timezone aware UTC datetime."""
    return datetime.now(timezone.utc)


class TZDateTime(TypeDecorator):
    """Timezone aware DateTime datatype.

    Values are stored as naive UTC so that backends without timezone
    support (SQLite) round-trip the same instant as PostgreSQL.
    """

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None:
            if not value.tzinfo or value.tzinfo.utcoffset(value) is None:
                raise TypeError("timezone aware datetime object required")
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is not None:
            value = value.replace(tzinfo=timezone.utc)
        return value


class Base(DeclarativeBase):
    """Base class for models. Datetime columns are timezone aware."""

    type_annotation_map: ClassVar[dict] = {
        datetime: TZDateTime(),
    }


def _engine_kwargs(url: str) -> dict:
    kwargs: dict = {"echo": settings.DATABASE_ECHO}
    if not url.startswith("sqlite"):
        kwargs.update(pool_size=10, max_overflow=20, pool_pre_ping=True)
    return kwargs


engine = create_async_engine(settings.DATABASE_URL, **_engine_kwargs(settings.DATABASE_URL))

async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency yielding a request scoped session."""
    async with async_session_maker() as session:
        yield session


async def init_db() -> None:
    """Create all tables registered on the metadata."""
    # Import models so they register on Base.metadata
    from arcade_chat.modules.automod import models as _automod_models  # noqa: F401
    from arcade_chat.modules.chat import models as _chat_models  # noqa: F401
    from arcade_chat.modules.moderation import models as _moderation_models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
