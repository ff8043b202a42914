"""API Router for chat messages and the live chat feed."""

import asyncio
import logging
import uuid
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, WebSocket, WebSocketDisconnect, status
from sqlalchemy.ext.asyncio import AsyncSession

from arcade_chat.core.database import get_session
from arcade_chat.core.logging import log_error
from arcade_chat.modules.chat.delivery import ChatDeliverySession, MetadataCache, StoreReader
from arcade_chat.modules.chat.realtime import ChangeFeed
from arcade_chat.modules.chat.schemas import (
    DirectMessageCreate,
    DirectMessageRecord,
    GlobalMessageCreate,
    MessageBlockedResponse,
    MessageRecord,
    RenderedMessage,
)
from arcade_chat.modules.chat.service import (
    ChatPermissionError,
    ChatService,
    MessageBlockedError,
    MessageNotFoundError,
    MessageValidationError,
    UserSuspendedError,
)

router = APIRouter(prefix="/chat", tags=["chat"])

logger = logging.getLogger(__name__)


def get_change_feed(request: Request) -> ChangeFeed:
    return request.app.state.change_feed


def get_store_reader(request: Request) -> StoreReader:
    return request.app.state.store_reader


def get_chat_service(
    request: Request,
    session: AsyncSession = Depends(get_session),
    feed: ChangeFeed = Depends(get_change_feed),
) -> ChatService:
    return ChatService(session, request.app.state.automod_gate, feed)


def _blocked(e: MessageBlockedError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        detail=MessageBlockedResponse(reason=e.reason).model_dump(),
    )


# ==================== Global channel ====================

@router.get("/messages", response_model=list[RenderedMessage])
async def get_recent_messages(
    limit: Optional[int] = Query(None, ge=1, le=500, description="Page size, defaults to CHAT_PAGE_SIZE"),
    reader: StoreReader = Depends(get_store_reader),
    feed: ChangeFeed = Depends(get_change_feed),
):
    """Recent messages, oldest first, with author and reply metadata resolved."""
    session = ChatDeliverySession(reader, feed, MetadataCache(), page_size=limit)
    try:
        return await session.load()
    finally:
        session.close()


@router.post("/messages", response_model=MessageRecord, status_code=status.HTTP_201_CREATED)
async def send_message(
    data: GlobalMessageCreate,
    service: ChatService = Depends(get_chat_service),
):
    try:
        return await service.send_global_message(data.author_id, data.content, data.reply_to_id)
    except MessageValidationError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    except UserSuspendedError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    except MessageNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except MessageBlockedError as e:
        raise _blocked(e)


@router.delete("/messages/{message_id}", response_model=MessageRecord)
async def delete_message(
    message_id: uuid.UUID,
    actor_id: uuid.UUID = Query(..., description="User performing the delete"),
    service: ChatService = Depends(get_chat_service),
):
    """Soft-delete a message as its author or as staff."""
    try:
        return await service.delete_message(actor_id, message_id)
    except MessageNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except ChatPermissionError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))


# ==================== Direct messages ====================

@router.post("/direct-messages", response_model=DirectMessageRecord, status_code=status.HTTP_201_CREATED)
async def send_direct_message(
    data: DirectMessageCreate,
    service: ChatService = Depends(get_chat_service),
):
    try:
        return await service.send_direct_message(data.sender_id, data.receiver_id, data.content)
    except MessageValidationError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    except UserSuspendedError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    except MessageBlockedError as e:
        raise _blocked(e)


@router.get("/direct-messages", response_model=list[DirectMessageRecord])
async def get_conversation(
    user_a: uuid.UUID,
    user_b: uuid.UUID,
    limit: Optional[int] = Query(None, ge=1, le=500),
    service: ChatService = Depends(get_chat_service),
):
    return await service.get_conversation(user_a, user_b, limit)


# ==================== Live feed ====================

@router.websocket("/ws")
async def chat_feed(websocket: WebSocket):
    """Stream the global channel: a ``sync`` snapshot, then ``insert`` and ``update`` frames.

    A new snapshot is sent after every reconnect to the change feed. If the
    delivery session stops for good, the socket is closed with 1011 so the
    client can reconnect instead of waiting on a dead feed.
    """
    await websocket.accept()
    state = websocket.app.state

    async def push(kind: str, payload: Any) -> None:
        if kind == "sync":
            await websocket.send_json({
                "type": kind,
                "messages": [m.model_dump(mode="json") for m in payload],
            })
        else:
            await websocket.send_json({"type": kind, "message": payload.model_dump(mode="json")})

    session = ChatDeliverySession(state.store_reader, state.change_feed, MetadataCache(), listener=push)
    task = asyncio.create_task(session.run())
    receiver = asyncio.create_task(_receive_until_disconnect(websocket))
    try:
        await asyncio.wait({task, receiver}, return_when=asyncio.FIRST_COMPLETED)
        if task.done() and not receiver.done():
            # run() only returns after close(), so a finished task here has failed
            log_error(logger, "Chat delivery session stopped", exception=task.exception())
            await websocket.close(code=status.WS_1011_INTERNAL_ERROR)
    finally:
        session.close()
        task.cancel()
        receiver.cancel()
        await asyncio.gather(task, receiver, return_exceptions=True)


async def _receive_until_disconnect(websocket: WebSocket) -> None:
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
