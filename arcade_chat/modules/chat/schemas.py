"""Pydantic schemas for chat messages, change events and rendered views."""

import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, field_validator

from arcade_chat.core.config import settings

GLOBAL_MESSAGES_TABLE = "global_messages"
DIRECT_MESSAGES_TABLE = "direct_messages"

DELETED_PLACEHOLDER = "Message deleted"
ANONYMOUS_NAME = "Anonymous"


def normalize_content(content: str, max_length: Optional[int] = None) -> str:
    """Trim message text and enforce the 1..max_length bound.

    Raises:
        ValueError: If the trimmed text is empty or too long
    """
    max_length = max_length or settings.MESSAGE_MAX_LENGTH
    content = (content or "").strip()
    if not content:
        raise ValueError("Message cannot be empty")
    if len(content) > max_length:
        raise ValueError(f"Message cannot exceed {max_length} characters")
    return content


# ============================================
# Realtime
# ============================================


class ChangeEventType(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"


WILDCARD_EVENT = "*"


class ChangeEvent(BaseModel):
    """A row change delivered by the realtime feed. ``record`` is the post-change row."""

    table: str
    type: ChangeEventType
    record: dict[str, Any]

    def matches(self, event: str) -> bool:
        return event == WILDCARD_EVENT or event == self.type.value


# ============================================
# Message Schemas
# ============================================


class MessageRecord(BaseModel):
    """A global channel message as stored."""

    id: uuid.UUID
    author_id: uuid.UUID
    content: str
    reply_to_id: Optional[uuid.UUID] = None
    created_at: datetime
    is_deleted: bool = False

    class Config:
        from_attributes = True

    @property
    def sort_key(self) -> tuple[datetime, uuid.UUID]:
        return (self.created_at, self.id)


class GlobalMessageCreate(BaseModel):
    author_id: uuid.UUID
    content: str
    reply_to_id: Optional[uuid.UUID] = None

    @field_validator("content")
    @classmethod
    def validate_content(cls, v: str) -> str:
        return normalize_content(v)


class DirectMessageCreate(BaseModel):
    sender_id: uuid.UUID
    receiver_id: uuid.UUID
    content: str

    @field_validator("content")
    @classmethod
    def validate_content(cls, v: str) -> str:
        return normalize_content(v)


class DirectMessageRecord(BaseModel):
    id: uuid.UUID
    sender_id: uuid.UUID
    receiver_id: uuid.UUID
    content: str
    is_read: bool = False
    is_deleted: bool = False
    created_at: datetime

    class Config:
        from_attributes = True


class MessageBlockedResponse(BaseModel):
    blocked: bool = True
    reason: str


# ============================================
# Rendered View
# ============================================


class ProfileSummary(BaseModel):
    """Display metadata for a message author."""

    user_id: uuid.UUID
    username: Optional[str] = None
    avatar_url: Optional[str] = None

    class Config:
        from_attributes = True

    @property
    def display_name(self) -> str:
        return self.username or ANONYMOUS_NAME


class ReplyPreview(BaseModel):
    message_id: uuid.UUID
    author_name: str
    text: str
    is_deleted: bool


class RenderedMessage(BaseModel):
    """A message as shown to a client.

    Deleted messages keep their position but show ``DELETED_PLACEHOLDER``
    instead of their content.
    """

    id: uuid.UUID
    author_id: uuid.UUID
    author_name: str
    avatar_url: Optional[str] = None
    content: str
    is_deleted: bool
    created_at: datetime
    reply_to_id: Optional[uuid.UUID] = None
    reply_preview: Optional[ReplyPreview] = None
