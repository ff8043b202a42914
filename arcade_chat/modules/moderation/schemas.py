"""Pydantic schemas for moderation module."""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from arcade_chat.modules.moderation.models import ModerationAction


class ModerationActionRequest(BaseModel):
    """Moderator request to act on a user.

    Reason and duration rules are enforced by the service so that the same
    checks apply to every caller.
    """

    actor_id: uuid.UUID
    action: ModerationAction
    reason: str = ""
    duration_minutes: Optional[int] = Field(default=None, description="Required for timeout")


class ModerationLogResponse(BaseModel):
    id: uuid.UUID
    target_user_id: uuid.UUID
    moderator_id: uuid.UUID
    action: ModerationAction
    reason: str
    duration_minutes: Optional[int] = None
    expires_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


class BanStateResponse(BaseModel):
    """Stored suspension fields plus the lazily evaluated effective state."""

    user_id: uuid.UUID
    is_suspended: bool
    ban_reason: Optional[str] = None
    ban_expires_at: Optional[datetime] = None
    effectively_suspended: bool


class FieldErrorDetail(BaseModel):
    field: str
    message: str
