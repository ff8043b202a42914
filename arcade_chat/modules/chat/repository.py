"""Repository for chat message data access."""

import uuid
from typing import Optional

from sqlalchemy import and_, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from arcade_chat.modules.chat.models import DirectMessage, GlobalMessage


class GlobalMessageRepository:
    """Repository for global channel messages.

    The only mutations offered are the two terminal transitions,
    ``soft_delete`` and ``redact``. Neither can clear ``is_deleted``.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, message: GlobalMessage) -> GlobalMessage:
        self.session.add(message)
        await self.session.flush()
        return message

    async def get_by_id(self, message_id: uuid.UUID) -> Optional[GlobalMessage]:
        result = await self.session.execute(
            select(GlobalMessage).where(GlobalMessage.id == message_id)
        )
        return result.scalar_one_or_none()

    async def get_by_ids(self, message_ids: list[uuid.UUID]) -> list[GlobalMessage]:
        if not message_ids:
            return []
        result = await self.session.execute(
            select(GlobalMessage).where(GlobalMessage.id.in_(message_ids))
        )
        return list(result.scalars().all())

    async def get_recent(self, limit: int) -> list[GlobalMessage]:
        """Most recent ``limit`` messages, returned oldest first."""
        result = await self.session.execute(
            select(GlobalMessage)
            .order_by(GlobalMessage.created_at.desc(), GlobalMessage.id.desc())
            .limit(limit)
        )
        messages = list(result.scalars().all())
        messages.reverse()
        return messages

    async def soft_delete(self, message_id: uuid.UUID) -> Optional[GlobalMessage]:
        """Mark a message deleted, keeping its content. Idempotent."""
        message = await self.get_by_id(message_id)
        if message and not message.is_deleted:
            message.is_deleted = True
            await self.session.flush()
        return message

    async def redact(
        self,
        message_id: uuid.UUID,
        placeholder: Optional[str] = None,
    ) -> Optional[GlobalMessage]:
        """Soft-delete and optionally scrub content in one UPDATE. Idempotent.

        Rows that are already deleted are left exactly as they are.

        Args:
            message_id: Message to redact
            placeholder: Replacement content, or None to keep the original text

        Returns:
            The post-change row, or None if the message does not exist
        """
        values: dict = {"is_deleted": True}
        if placeholder is not None:
            values["content"] = placeholder

        await self.session.execute(
            update(GlobalMessage)
            .where(GlobalMessage.id == message_id, GlobalMessage.is_deleted.is_(False))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(
            select(GlobalMessage)
            .where(GlobalMessage.id == message_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()


class DirectMessageRepository:
    """Repository for direct messages."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, message: DirectMessage) -> DirectMessage:
        self.session.add(message)
        await self.session.flush()
        return message

    async def get_conversation(
        self,
        user_a: uuid.UUID,
        user_b: uuid.UUID,
        limit: int = 100,
    ) -> list[DirectMessage]:
        """Most recent messages between two users, oldest first."""
        result = await self.session.execute(
            select(DirectMessage)
            .where(
                or_(
                    and_(DirectMessage.sender_id == user_a, DirectMessage.receiver_id == user_b),
                    and_(DirectMessage.sender_id == user_b, DirectMessage.receiver_id == user_a),
                ),
                DirectMessage.is_deleted == False,  # noqa: E712
            )
            .order_by(DirectMessage.created_at.desc())
            .limit(limit)
        )
        messages = list(result.scalars().all())
        messages.reverse()
        return messages
