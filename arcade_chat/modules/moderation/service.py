"""Moderation service: the single entry point for suspension-affecting actions.

Human moderators and the automod gate both go through
``ModerationService.apply_action``. Each call writes one moderation log
entry first and then updates the target's ban state, so the log can always
be replayed to rebuild the projection.
"""

import logging
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from arcade_chat.core.config import settings
from arcade_chat.core.database import utcnow
from arcade_chat.core.logging import log_error, log_info
from arcade_chat.core.metrics import MODERATION_ACTIONS_TOTAL
from arcade_chat.core.tracing import (
    ATTR_MODERATION_ACTION,
    ATTR_MODERATION_ACTOR,
    ATTR_MODERATION_TARGET,
    create_span,
)
from arcade_chat.modules.moderation.models import (
    ModerationAction,
    ModerationLogEntry,
    UserProfile,
)
from arcade_chat.modules.moderation.repository import (
    ModerationLogRepository,
    UserProfileRepository,
)
from arcade_chat.modules.moderation.schemas import BanStateResponse
from arcade_chat.modules.moderation.transitions import (
    ACTION_EFFECTS,
    MAX_TIMEOUT_MINUTES,
    BanEffect,
    BanState,
    apply_transition,
    compute_expires_at,
    is_effectively_suspended,
    replay_log,
)

logger = logging.getLogger(__name__)

AUTOMATED_REASON = "automod"


class ModerationServiceError(Exception):
    """Base exception for moderation service errors."""
    pass


class ModerationValidationError(ModerationServiceError):
    """Request rejected before any write."""

    def __init__(self, field: str, message: str):
        super().__init__(message)
        self.field = field
        self.message = message


class UserNotFoundError(ModerationServiceError):
    """Exception raised when the target user does not exist."""
    pass


class ModerationPermissionError(ModerationServiceError):
    """Exception raised when the actor lacks moderator capability."""
    pass


class BanStateUpdateError(ModerationServiceError):
    """The log entry was written but the ban state update failed."""

    def __init__(self, entry_id: uuid.UUID, message: str):
        super().__init__(message)
        self.entry_id = entry_id


def ban_state_of(profile: UserProfile) -> BanState:
    return BanState(
        is_suspended=profile.is_suspended,
        reason=profile.ban_reason,
        expires_at=profile.ban_expires_at,
    )


def to_ban_state_response(profile: UserProfile, now: Optional[datetime] = None) -> BanStateResponse:
    return BanStateResponse(
        user_id=profile.user_id,
        is_suspended=profile.is_suspended,
        ban_reason=profile.ban_reason,
        ban_expires_at=profile.ban_expires_at,
        effectively_suspended=is_effectively_suspended(
            profile.is_suspended, profile.ban_expires_at, now
        ),
    )


class ModerationService:
    """Service for the moderation log and ban state."""

    def __init__(
        self,
        session: AsyncSession,
        system_moderator_id: Optional[uuid.UUID] = None,
    ):
        self.session = session
        self.profile_repo = UserProfileRepository(session)
        self.log_repo = ModerationLogRepository(session)
        self.system_moderator_id = system_moderator_id or settings.SYSTEM_MODERATOR_ID

    # ============================================
    # Actions
    # ============================================

    def validate_action(
        self,
        actor_id: uuid.UUID,
        action: ModerationAction,
        reason: Optional[str],
        duration_minutes: Optional[int],
    ) -> tuple[str, Optional[int]]:
        """Validate an action request.

        Returns:
            Tuple of (normalized reason, duration to store)

        Raises:
            ModerationValidationError: On an empty human reason or a bad duration
        """
        reason = (reason or "").strip()
        if not reason:
            if actor_id != self.system_moderator_id:
                raise ModerationValidationError("reason", "A reason is required")
            reason = AUTOMATED_REASON

        if action == ModerationAction.TIMEOUT:
            if duration_minutes is None:
                raise ModerationValidationError("duration_minutes", "Duration is required for a timeout")
            if duration_minutes <= 0:
                raise ModerationValidationError("duration_minutes", "Duration must be a positive number of minutes")
            if duration_minutes > MAX_TIMEOUT_MINUTES:
                raise ModerationValidationError(
                    "duration_minutes",
                    f"Duration cannot exceed {MAX_TIMEOUT_MINUTES} minutes; use a ban instead",
                )
        else:
            duration_minutes = None

        return reason, duration_minutes

    async def apply_action(
        self,
        target_user_id: uuid.UUID,
        actor_id: uuid.UUID,
        action: ModerationAction,
        reason: Optional[str],
        duration_minutes: Optional[int] = None,
    ) -> ModerationLogEntry:
        """Record a moderation action and apply its ban state effect.

        Args:
            target_user_id: User being acted on
            actor_id: Moderator, or the system moderator for automod
            action: Action to apply
            reason: Why; required for human actors
            duration_minutes: Timeout length, required for timeouts only

        Returns:
            ModerationLogEntry: The written log entry

        Raises:
            ModerationValidationError: Invalid reason or duration
            UserNotFoundError: Unknown target user
            ModerationPermissionError: Actor is not staff
            BanStateUpdateError: Log entry written but ban state not updated
        """
        reason, duration_minutes = self.validate_action(actor_id, action, reason, duration_minutes)

        target = await self.profile_repo.get_by_id(target_user_id)
        if not target:
            raise UserNotFoundError(f"User {target_user_id} not found")

        if actor_id != self.system_moderator_id:
            actor = await self.profile_repo.get_by_id(actor_id)
            if not actor or not actor.has_staff_role():
                raise ModerationPermissionError(f"User {actor_id} cannot moderate users")

        with create_span(
            "moderation.apply_action",
            attributes={
                ATTR_MODERATION_ACTION: action.value,
                ATTR_MODERATION_TARGET: str(target_user_id),
                ATTR_MODERATION_ACTOR: str(actor_id),
            },
        ):
            now = utcnow()
            entry = await self.log_repo.create(
                ModerationLogEntry(
                    target_user_id=target_user_id,
                    moderator_id=actor_id,
                    action=action.value,
                    reason=reason,
                    duration_minutes=duration_minutes,
                    expires_at=compute_expires_at(action, duration_minutes, now),
                    created_at=now,
                )
            )
            await self.session.commit()
            MODERATION_ACTIONS_TOTAL.labels(action=action.value).inc()

            entry_id = entry.id
            if ACTION_EFFECTS[action] != BanEffect.NONE:
                try:
                    new_state = apply_transition(ban_state_of(target), action, reason, entry.expires_at)
                    await self.profile_repo.set_ban_state(target, new_state)
                    await self.session.commit()
                except Exception as e:
                    await self.session.rollback()
                    log_error(
                        logger,
                        "Ban state update failed after moderation log write",
                        exception=e,
                        entry_id=str(entry_id),
                        target_user_id=str(target_user_id),
                    )
                    raise BanStateUpdateError(
                        entry_id,
                        "Moderation action was logged but the ban state could not be updated",
                    ) from e

        log_info(
            logger,
            f"Moderation action {action.value} applied",
            target_user_id=str(target_user_id),
            moderator_id=str(actor_id),
            duration_minutes=duration_minutes,
        )
        return entry

    # ============================================
    # Queries
    # ============================================

    async def get_history(
        self,
        target_user_id: uuid.UUID,
        limit: Optional[int] = None,
    ) -> list[ModerationLogEntry]:
        """Moderation history for a user, newest first."""
        return await self.log_repo.get_by_target(target_user_id, limit=limit)

    async def get_ban_state(self, user_id: uuid.UUID) -> BanStateResponse:
        profile = await self.profile_repo.get_by_id(user_id)
        if not profile:
            raise UserNotFoundError(f"User {user_id} not found")
        return to_ban_state_response(profile)

    async def is_user_suspended(self, user_id: uuid.UUID, now: Optional[datetime] = None) -> bool:
        """Whether a user is currently barred from sending messages.

        Users without a profile have the default, not suspended, state.
        """
        profile = await self.profile_repo.get_by_id(user_id)
        if not profile:
            return False
        return is_effectively_suspended(profile.is_suspended, profile.ban_expires_at, now)

    async def rebuild_ban_state(self, user_id: uuid.UUID) -> BanStateResponse:
        """Recompute a user's ban state from the moderation log."""
        profile = await self.profile_repo.get_by_id(user_id)
        if not profile:
            raise UserNotFoundError(f"User {user_id} not found")

        entries = await self.log_repo.get_by_target(user_id, oldest_first=True)
        state = replay_log(entries)
        await self.profile_repo.set_ban_state(profile, state)
        await self.session.commit()

        log_info(logger, "Ban state rebuilt from moderation log", user_id=str(user_id), entries=len(entries))
        return to_ban_state_response(profile)
