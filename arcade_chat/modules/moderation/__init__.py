"""Moderation module: moderation log and user ban state."""

from arcade_chat.modules.moderation.models import (
    STAFF_ROLES,
    ModerationAction,
    ModerationLogEntry,
    UserProfile,
    UserRole,
)
from arcade_chat.modules.moderation.router import router
from arcade_chat.modules.moderation.service import (
    BanStateUpdateError,
    ModerationPermissionError,
    ModerationService,
    ModerationServiceError,
    ModerationValidationError,
    UserNotFoundError,
)
from arcade_chat.modules.moderation.transitions import (
    ACTION_EFFECTS,
    BanEffect,
    BanState,
    apply_transition,
    is_effectively_suspended,
    replay_log,
)

__all__ = [
    # Models
    "STAFF_ROLES",
    "ModerationAction",
    "ModerationLogEntry",
    "UserProfile",
    "UserRole",
    # Service
    "BanStateUpdateError",
    "ModerationPermissionError",
    "ModerationService",
    "ModerationServiceError",
    "ModerationValidationError",
    "UserNotFoundError",
    # Transitions
    "ACTION_EFFECTS",
    "BanEffect",
    "BanState",
    "apply_transition",
    "is_effectively_suspended",
    "replay_log",
    # Router
    "router",
]
