"""Moderation models: user profiles with ban state and the moderation log."""

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import Boolean, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from arcade_chat.core.database import Base, utcnow


class UserRole(str, Enum):
    """Platform roles, lowest to highest."""
    USER = "user"
    STAFF = "staff"
    MODERATOR = "moderator"
    ADMIN = "admin"
    OWNER = "owner"


# Roles holding the moderator-or-above capability
STAFF_ROLES = frozenset({
    UserRole.STAFF,
    UserRole.MODERATOR,
    UserRole.ADMIN,
    UserRole.OWNER,
})


class ModerationAction(str, Enum):
    """Actions a moderator (or automod) can take against a user."""
    WARN = "warn"
    TIMEOUT = "timeout"
    KICK = "kick"
    BAN = "ban"
    UNBAN = "unban"


class UserProfile(Base):
    """Display and suspension state for a chat user.

    The suspension columns are a projection of the moderation log and are
    only written by the moderation service.
    """

    __tablename__ = "profiles"

    user_id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    username: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    avatar_url: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default=UserRole.USER.value)

    # Ban state
    is_suspended: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    ban_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    ban_expires_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)

    def has_staff_role(self) -> bool:
        try:
            return UserRole(self.role) in STAFF_ROLES
        except ValueError:
            return False

    def __repr__(self) -> str:
        return f"<UserProfile(user_id={self.user_id}, username={self.username}, suspended={self.is_suspended})>"


class ModerationLogEntry(Base):
    """Append-only record of a moderation action against a user."""

    __tablename__ = "user_moderation_logs"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    target_user_id: Mapped[uuid.UUID] = mapped_column(nullable=False, index=True)
    moderator_id: Mapped[uuid.UUID] = mapped_column(nullable=False, index=True)
    action: Mapped[str] = mapped_column(String(20), nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    duration_minutes: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    expires_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow, index=True)

    def __repr__(self) -> str:
        return f"<ModerationLogEntry(id={self.id}, target={self.target_user_id}, action={self.action})>"
