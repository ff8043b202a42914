"""Repository for moderation data access."""

import uuid
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from arcade_chat.modules.moderation.models import ModerationLogEntry, UserProfile
from arcade_chat.modules.moderation.transitions import BanState


class UserProfileRepository:
    """Repository for UserProfile lookups and ban state writes."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, profile: UserProfile) -> UserProfile:
        self.session.add(profile)
        await self.session.flush()
        return profile

    async def get_by_id(self, user_id: uuid.UUID) -> Optional[UserProfile]:
        result = await self.session.execute(
            select(UserProfile).where(UserProfile.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def get_by_ids(self, user_ids: list[uuid.UUID]) -> list[UserProfile]:
        """Batch fetch profiles. Unknown ids are skipped."""
        if not user_ids:
            return []
        result = await self.session.execute(
            select(UserProfile).where(UserProfile.user_id.in_(user_ids))
        )
        return list(result.scalars().all())

    async def set_ban_state(self, profile: UserProfile, state: BanState) -> UserProfile:
        """Overwrite the suspension columns of a profile."""
        profile.is_suspended = state.is_suspended
        profile.ban_reason = state.reason
        profile.ban_expires_at = state.expires_at
        await self.session.flush()
        return profile


class ModerationLogRepository:
    """Append-only access to the moderation log.

    There is intentionally no update or delete method.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, entry: ModerationLogEntry) -> ModerationLogEntry:
        self.session.add(entry)
        await self.session.flush()
        return entry

    async def get_by_target(
        self,
        target_user_id: uuid.UUID,
        limit: Optional[int] = None,
        oldest_first: bool = False,
    ) -> list[ModerationLogEntry]:
        """Get moderation history for a user.

        Args:
            target_user_id: User the actions were taken against
            limit: Maximum entries to return
            oldest_first: Chronological order instead of newest first

        Returns:
            List of log entries
        """
        order = ModerationLogEntry.created_at.asc() if oldest_first else ModerationLogEntry.created_at.desc()
        query = (
            select(ModerationLogEntry)
            .where(ModerationLogEntry.target_user_id == target_user_id)
            .order_by(order)
        )
        if limit:
            query = query.limit(limit)

        result = await self.session.execute(query)
        return list(result.scalars().all())
