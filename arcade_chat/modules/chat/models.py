"""Chat models for the global channel and direct messages."""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, ForeignKey, Index, Text
from sqlalchemy.orm import Mapped, mapped_column

from arcade_chat.core.database import Base, utcnow


class GlobalMessage(Base):
    """A message in the global chat channel.

    Rows are immutable apart from ``is_deleted`` going from false to true
    and, on the automod path only, the content redaction that accompanies it.
    """

    __tablename__ = "global_messages"
    __table_args__ = (
        Index("ix_global_messages_created_at_id", "created_at", "id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    author_id: Mapped[uuid.UUID] = mapped_column(nullable=False, index=True)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    # Replies survive the deletion of their target; no cascade
    reply_to_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        ForeignKey("global_messages.id"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)
    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    def __repr__(self) -> str:
        return f"<GlobalMessage(id={self.id}, author_id={self.author_id}, deleted={self.is_deleted})>"


class DirectMessage(Base):
    """A 1:1 message, stored only after automod screening."""

    __tablename__ = "direct_messages"
    __table_args__ = (
        Index("ix_direct_messages_pair", "sender_id", "receiver_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    sender_id: Mapped[uuid.UUID] = mapped_column(nullable=False)
    receiver_id: Mapped[uuid.UUID] = mapped_column(nullable=False, index=True)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return f"<DirectMessage(id={self.id}, sender_id={self.sender_id}, receiver_id={self.receiver_id})>"
