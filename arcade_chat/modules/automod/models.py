"""Automod audit log model."""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import String, Text
from sqlalchemy.orm import Mapped, mapped_column

from arcade_chat.core.database import Base, utcnow


class AutomodLog(Base):
    """One denial by the automod gate.

    ``message_id`` is null for direct messages and for global messages
    rejected before persistence.
    """

    __tablename__ = "automod_logs"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    message_id: Mapped[Optional[uuid.UUID]] = mapped_column(nullable=True, index=True)
    user_id: Mapped[uuid.UUID] = mapped_column(nullable=False, index=True)
    context: Mapped[str] = mapped_column(String(20), nullable=False)
    original_content: Mapped[str] = mapped_column(Text, nullable=False)
    flagged_reason: Mapped[str] = mapped_column(Text, nullable=False)
    severity: Mapped[str] = mapped_column(String(20), nullable=False)
    action_taken: Mapped[str] = mapped_column(String(20), nullable=False)
    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow, index=True)

    def __repr__(self) -> str:
        return f"<AutomodLog(id={self.id}, user_id={self.user_id}, action_taken={self.action_taken})>"
