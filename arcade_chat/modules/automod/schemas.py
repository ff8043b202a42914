"""Pydantic schemas for the automod gate."""

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, model_validator


class MessageContext(str, Enum):
    """Where a message is being sent; selects the remediation strategy."""
    GLOBAL = "global"
    DM = "dm"


class Severity(str, Enum):
    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ActionTaken(str, Enum):
    WARNED = "warned"
    BLOCKED = "blocked"


OK_REASON = "ok"
FAIL_OPEN_REASON = "service unavailable"


class ModerationVerdict(BaseModel):
    """Outcome of classifying one message.

    A denial without a reason is rejected as malformed, which the gate then
    treats like any other unusable oracle output.
    """

    allowed: bool
    reason: str = OK_REASON
    severity: Severity = Severity.NONE
    filtered_content: Optional[str] = Field(default=None, alias="filteredContent")

    class Config:
        populate_by_name = True

    @model_validator(mode="before")
    @classmethod
    def require_reason_on_denial(cls, data):
        if isinstance(data, dict) and data.get("allowed") is False:
            reason = data.get("reason")
            if not isinstance(reason, str) or not reason.strip():
                raise ValueError("reason is required when allowed is false")
        return data

    @property
    def action_taken(self) -> Optional[ActionTaken]:
        """Audit action for a denial: blocked iff severity is high."""
        if self.allowed:
            return None
        return ActionTaken.BLOCKED if self.severity == Severity.HIGH else ActionTaken.WARNED

    @classmethod
    def fail_open(cls) -> "ModerationVerdict":
        return cls(allowed=True, reason=FAIL_OPEN_REASON)


class DirectMessageDecision(BaseModel):
    """Gate outcome for a direct message, decided before persistence."""

    blocked: bool
    reason: str
    content: Optional[str] = None
    verdict: ModerationVerdict


# ============================================
# HTTP surface
# ============================================


class AutomodRequest(BaseModel):
    """Function-style automod invocation."""

    content: str = Field(..., min_length=1)
    user_id: uuid.UUID = Field(..., alias="userId")
    type: MessageContext = MessageContext.GLOBAL
    message_id: Optional[uuid.UUID] = Field(default=None, alias="messageId")

    class Config:
        populate_by_name = True


class AutomodResponse(BaseModel):
    allowed: bool
    reason: str
    severity: Optional[Severity] = None
    filtered_content: Optional[str] = Field(default=None, serialization_alias="filteredContent")
    blocked: Optional[bool] = None

    class Config:
        populate_by_name = True


class AutomodLogResponse(BaseModel):
    id: uuid.UUID
    message_id: Optional[uuid.UUID] = None
    user_id: uuid.UUID
    context: MessageContext
    original_content: str
    flagged_reason: str
    severity: Severity
    action_taken: ActionTaken
    created_at: datetime

    class Config:
        from_attributes = True
