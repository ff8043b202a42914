"""API Router for automod invocation and audit records."""

import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from arcade_chat.core.database import get_session
from arcade_chat.core.logging import log_error
from arcade_chat.modules.automod.gate import AutomodGate
from arcade_chat.modules.automod.repository import AutomodLogRepository
from arcade_chat.modules.automod.schemas import (
    AutomodLogResponse,
    AutomodRequest,
    AutomodResponse,
    ModerationVerdict,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/automod", tags=["automod"])


def get_automod_gate(request: Request) -> AutomodGate:
    return request.app.state.automod_gate


@router.post("", response_model=AutomodResponse, response_model_exclude_none=True)
async def moderate_message(
    data: AutomodRequest,
    gate: AutomodGate = Depends(get_automod_gate),
):
    """Moderate one message.

    Always answers 200: any internal failure produces an allow verdict so
    callers never turn a moderation problem into a failed send.
    """
    try:
        return await gate.handle_request(data)
    except Exception as e:
        log_error(logger, "Automod request failed", exception=e, user_id=str(data.user_id))
        fail_open = ModerationVerdict.fail_open()
        return AutomodResponse(allowed=fail_open.allowed, reason=fail_open.reason)


@router.get("/logs", response_model=list[AutomodLogResponse])
async def list_automod_logs(
    user_id: Optional[uuid.UUID] = Query(None, description="Only records for this user"),
    limit: int = Query(50, ge=1, le=500),
    session: AsyncSession = Depends(get_session),
):
    """Most recent automod denials."""
    return await AutomodLogRepository(session).get_recent(user_id=user_id, limit=limit)
