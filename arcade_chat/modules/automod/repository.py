"""Repository for automod audit records."""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from arcade_chat.modules.automod.models import AutomodLog


class AutomodLogRepository:
    """Repository for AutomodLog writes and queries."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, log: AutomodLog) -> AutomodLog:
        self.session.add(log)
        await self.session.flush()
        return log

    async def get_recent(
        self,
        user_id: Optional[uuid.UUID] = None,
        limit: int = 50,
    ) -> list[AutomodLog]:
        """Newest audit records, optionally for one user."""
        query = select(AutomodLog)
        if user_id:
            query = query.where(AutomodLog.user_id == user_id)
        query = query.order_by(AutomodLog.created_at.desc()).limit(limit)

        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def count_for_user_since(
        self,
        user_id: uuid.UUID,
        action_taken: str,
        since: datetime,
    ) -> int:
        result = await self.session.execute(
            select(func.count(AutomodLog.id)).where(
                AutomodLog.user_id == user_id,
                AutomodLog.action_taken == action_taken,
                AutomodLog.created_at >= since,
            )
        )
        return result.scalar_one()
