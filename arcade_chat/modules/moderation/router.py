"""API Router for user moderation actions and ban state."""

import uuid

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from arcade_chat.core.database import get_session
from arcade_chat.modules.moderation.schemas import (
    BanStateResponse,
    FieldErrorDetail,
    ModerationActionRequest,
    ModerationLogResponse,
)
from arcade_chat.modules.moderation.service import (
    BanStateUpdateError,
    ModerationPermissionError,
    ModerationService,
    ModerationValidationError,
    UserNotFoundError,
)

router = APIRouter(prefix="/moderation", tags=["moderation"])


def get_moderation_service(session: AsyncSession = Depends(get_session)) -> ModerationService:
    return ModerationService(session)


@router.post(
    "/users/{user_id}/actions",
    response_model=ModerationLogResponse,
    status_code=status.HTTP_201_CREATED,
)
async def apply_moderation_action(
    user_id: uuid.UUID,
    data: ModerationActionRequest,
    service: ModerationService = Depends(get_moderation_service),
):
    """Warn, timeout, kick, ban or unban a user.

    Validation errors are returned as a field-level detail so the moderator
    UI can point at the offending input.
    """
    try:
        return await service.apply_action(
            target_user_id=user_id,
            actor_id=data.actor_id,
            action=data.action,
            reason=data.reason,
            duration_minutes=data.duration_minutes,
        )
    except ModerationValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=FieldErrorDetail(field=e.field, message=e.message).model_dump(),
        )
    except UserNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except ModerationPermissionError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    except BanStateUpdateError as e:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))


@router.get("/users/{user_id}/history", response_model=list[ModerationLogResponse])
async def get_moderation_history(
    user_id: uuid.UUID,
    limit: int = Query(50, ge=1, le=500),
    service: ModerationService = Depends(get_moderation_service),
):
    """Moderation history for a user, newest first."""
    return await service.get_history(user_id, limit=limit)


@router.get("/users/{user_id}/ban-state", response_model=BanStateResponse)
async def get_ban_state(
    user_id: uuid.UUID,
    service: ModerationService = Depends(get_moderation_service),
):
    try:
        return await service.get_ban_state(user_id)
    except UserNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


@router.post("/users/{user_id}/ban-state/rebuild", response_model=BanStateResponse)
async def rebuild_ban_state(
    user_id: uuid.UUID,
    service: ModerationService = Depends(get_moderation_service),
):
    """Replay the moderation log to repair a user's ban state."""
    try:
        return await service.rebuild_ban_state(user_id)
    except UserNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
