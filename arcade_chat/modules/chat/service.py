"""Chat service: sending and deleting messages.

Every send is checked against the author's ban state and handed to the
automod gate. Global messages are stored and broadcast first, then
reviewed in the background (or held for the verdict when
AUTOMOD_HOLD_GLOBAL_MESSAGES is set). Direct messages always wait for the
verdict before anything is stored.
"""

import logging
import uuid
from typing import TYPE_CHECKING, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from arcade_chat.core.config import settings
from arcade_chat.core.logging import log_error
from arcade_chat.core.metrics import CHAT_MESSAGES_TOTAL
from arcade_chat.modules.automod.schemas import Severity
from arcade_chat.modules.chat.models import DirectMessage, GlobalMessage
from arcade_chat.modules.chat.realtime import ChangeFeed, ChangeFeedError
from arcade_chat.modules.chat.repository import DirectMessageRepository, GlobalMessageRepository
from arcade_chat.modules.chat.schemas import (
    DIRECT_MESSAGES_TABLE,
    GLOBAL_MESSAGES_TABLE,
    ChangeEventType,
    DirectMessageRecord,
    MessageRecord,
    normalize_content,
)
from arcade_chat.modules.moderation.repository import UserProfileRepository
from arcade_chat.modules.moderation.service import ModerationService

if TYPE_CHECKING:
    from arcade_chat.modules.automod.gate import AutomodGate

logger = logging.getLogger(__name__)


class ChatServiceError(Exception):
    """Base exception for chat service errors."""
    pass


class MessageValidationError(ChatServiceError):
    """Message text is empty or too long."""
    pass


class MessageNotFoundError(ChatServiceError):
    """Exception raised when a message does not exist."""
    pass


class UserSuspendedError(ChatServiceError):
    """Exception raised when a suspended user tries to send."""
    pass


class ChatPermissionError(ChatServiceError):
    """Exception raised when an actor may not delete a message."""
    pass


class MessageBlockedError(ChatServiceError):
    """Automod rejected the message before it was stored."""

    def __init__(self, reason: str):
        super().__init__(f"Message blocked: {reason}")
        self.reason = reason


class ChatService:
    """Service for global channel and direct message operations."""

    def __init__(
        self,
        session: AsyncSession,
        gate: "AutomodGate",
        feed: ChangeFeed,
        hold_global_messages: Optional[bool] = None,
    ):
        self.session = session
        self.gate = gate
        self.feed = feed
        self.hold_global_messages = (
            settings.AUTOMOD_HOLD_GLOBAL_MESSAGES if hold_global_messages is None else hold_global_messages
        )
        self.message_repo = GlobalMessageRepository(session)
        self.direct_repo = DirectMessageRepository(session)
        self.profile_repo = UserProfileRepository(session)
        self.moderation = ModerationService(session)

    # ============================================
    # Global channel
    # ============================================

    async def send_global_message(
        self,
        author_id: uuid.UUID,
        content: str,
        reply_to_id: Optional[uuid.UUID] = None,
    ) -> MessageRecord:
        """Store a global message, broadcast it and queue its automod review.

        Args:
            author_id: Sender
            content: Message text, trimmed to 1..MESSAGE_MAX_LENGTH characters
            reply_to_id: Message being replied to

        Returns:
            MessageRecord: The stored message

        Raises:
            MessageValidationError: Empty or oversized text
            UserSuspendedError: Sender is currently suspended
            MessageNotFoundError: Reply target does not exist
            MessageBlockedError: Held message rejected by automod
        """
        content = self._validate_content(content)
        await self._ensure_can_send(author_id)

        if reply_to_id and not await self.message_repo.get_by_id(reply_to_id):
            raise MessageNotFoundError(f"Reply target {reply_to_id} not found")

        if self.hold_global_messages:
            verdict = await self.gate.screen_global_message(content, author_id)
            if not verdict.allowed and verdict.severity == Severity.HIGH:
                raise MessageBlockedError(verdict.reason)

        message = await self.message_repo.create(
            GlobalMessage(author_id=author_id, content=content, reply_to_id=reply_to_id)
        )
        await self.session.commit()
        CHAT_MESSAGES_TOTAL.labels(channel=GLOBAL_MESSAGES_TABLE).inc()

        record = MessageRecord.model_validate(message)
        await self._publish(GLOBAL_MESSAGES_TABLE, ChangeEventType.INSERT, record.model_dump(mode="json"))

        if not self.hold_global_messages:
            self.gate.schedule_review(content, author_id, record.id)
        return record

    async def delete_message(self, actor_id: uuid.UUID, message_id: uuid.UUID) -> MessageRecord:
        """Soft-delete a message as its author or as staff. Idempotent.

        Raises:
            MessageNotFoundError: Unknown message
            ChatPermissionError: Actor is neither the author nor staff
        """
        message = await self.message_repo.get_by_id(message_id)
        if not message:
            raise MessageNotFoundError(f"Message {message_id} not found")

        if message.author_id != actor_id:
            actor = await self.profile_repo.get_by_id(actor_id)
            if not actor or not actor.has_staff_role():
                raise ChatPermissionError("Only the author or a moderator can delete this message")

        already_deleted = message.is_deleted
        message = await self.message_repo.soft_delete(message_id)
        await self.session.commit()

        record = MessageRecord.model_validate(message)
        if not already_deleted:
            await self._publish(GLOBAL_MESSAGES_TABLE, ChangeEventType.UPDATE, record.model_dump(mode="json"))
        return record

    # ============================================
    # Direct messages
    # ============================================

    async def send_direct_message(
        self,
        sender_id: uuid.UUID,
        receiver_id: uuid.UUID,
        content: str,
    ) -> DirectMessageRecord:
        """Screen and store a direct message.

        The stored text is the oracle's filtered version when one was given.

        Raises:
            MessageValidationError: Empty or oversized text
            UserSuspendedError: Sender is currently suspended
            MessageBlockedError: Automod rejected the message
        """
        content = self._validate_content(content)
        await self._ensure_can_send(sender_id)

        decision = await self.gate.screen_direct_message(content, sender_id)
        if decision.blocked:
            raise MessageBlockedError(decision.reason)

        message = await self.direct_repo.create(
            DirectMessage(
                sender_id=sender_id,
                receiver_id=receiver_id,
                content=decision.content or content,
            )
        )
        await self.session.commit()
        CHAT_MESSAGES_TOTAL.labels(channel=DIRECT_MESSAGES_TABLE).inc()

        record = DirectMessageRecord.model_validate(message)
        await self._publish(DIRECT_MESSAGES_TABLE, ChangeEventType.INSERT, record.model_dump(mode="json"))
        return record

    async def get_conversation(
        self,
        user_a: uuid.UUID,
        user_b: uuid.UUID,
        limit: Optional[int] = None,
    ) -> list[DirectMessageRecord]:
        messages = await self.direct_repo.get_conversation(user_a, user_b, limit or settings.CHAT_PAGE_SIZE)
        return [DirectMessageRecord.model_validate(m) for m in messages]

    # ============================================
    # Helpers
    # ============================================

    def _validate_content(self, content: str) -> str:
        try:
            return normalize_content(content)
        except ValueError as e:
            raise MessageValidationError(str(e)) from e

    async def _ensure_can_send(self, user_id: uuid.UUID) -> None:
        if await self.moderation.is_user_suspended(user_id):
            raise UserSuspendedError("You are suspended from chat")

    async def _publish(self, table: str, event_type: ChangeEventType, record: dict) -> None:
        """Announce a committed change. Subscribers recover missed events by refetching."""
        try:
            await self.feed.publish(table, event_type, record)
        except ChangeFeedError as e:
            log_error(logger, "Failed to publish change event", exception=e, table=table)
