"""Core module for configuration and utilities."""

from arcade_chat.core.config import settings
from arcade_chat.core.database import Base, async_session_maker, get_session, init_db, utcnow

__all__ = [
    "settings",
    "Base",
    "async_session_maker",
    "get_session",
    "init_db",
    "utcnow",
]
