"""Chat delivery: a live, ordered view of a channel for one client session.

A ``ChatDeliverySession`` moves through LOADING, SYNCED, RECEIVING and
RECONNECTING. It subscribes to the change feed before fetching the recent
page so no event falls between the two, keeps messages sorted by
``(created_at, id)`` regardless of arrival order, and re-fetches the recent
page after every reconnect because the feed does not replay missed events.
"""

import asyncio
import bisect
import logging
import math
import uuid
from enum import Enum
from typing import Any, Awaitable, Callable, Iterable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from arcade_chat.core.config import settings
from arcade_chat.core.database import async_session_maker
from arcade_chat.core.logging import log_info, log_warning
from arcade_chat.core.metrics import CHAT_DELIVERY_RECONNECTS_TOTAL, CHAT_DELIVERY_SESSIONS
from arcade_chat.modules.chat.realtime import ChangeFeed, ChangeFeedDisconnected
from arcade_chat.modules.chat.repository import GlobalMessageRepository
from arcade_chat.modules.chat.schemas import (
    ANONYMOUS_NAME,
    DELETED_PLACEHOLDER,
    GLOBAL_MESSAGES_TABLE,
    ChangeEvent,
    ChangeEventType,
    MessageRecord,
    ProfileSummary,
    RenderedMessage,
    ReplyPreview,
)
from arcade_chat.modules.moderation.repository import UserProfileRepository

logger = logging.getLogger(__name__)

REPLY_PREVIEW_LENGTH = 100

Listener = Callable[[str, Any], Awaitable[None]]

# Failures the session recovers from by resubscribing and re-fetching
RECOVERABLE_ERRORS = (ChangeFeedDisconnected, SQLAlchemyError, OSError)


class SessionState(str, Enum):
    LOADING = "loading"
    SYNCED = "synced"
    RECEIVING = "receiving"
    RECONNECTING = "reconnecting"
    CLOSED = "closed"


class ReconnectPolicy:
    """Exponential backoff between resubscribe attempts."""

    def __init__(
        self,
        initial_delay: Optional[float] = None,
        max_delay: Optional[float] = None,
        backoff_multiplier: Optional[float] = None,
        max_attempts: Optional[int] = None,
    ):
        self.initial_delay = settings.REALTIME_RECONNECT_INITIAL_DELAY if initial_delay is None else initial_delay
        self.max_delay = settings.REALTIME_RECONNECT_MAX_DELAY if max_delay is None else max_delay
        self.backoff_multiplier = settings.REALTIME_RECONNECT_BACKOFF if backoff_multiplier is None else backoff_multiplier
        # None retries forever
        self.max_attempts = max_attempts

    def should_retry(self, attempt: int) -> bool:
        return self.max_attempts is None or attempt <= self.max_attempts

    def calculate_delay(self, attempt: int) -> float:
        """Delay before the given attempt (1-indexed), capped at max_delay."""
        if attempt < 1:
            return self.initial_delay
        delay = self.initial_delay * math.pow(self.backoff_multiplier, attempt - 1)
        return min(delay, self.max_delay)


# ============================================
# Store access
# ============================================


class StoreReader:
    """Read side of the message store used by delivery sessions."""

    async def fetch_recent(self, limit: int) -> list[MessageRecord]:
        raise NotImplementedError

    async def fetch_messages(self, message_ids: list[uuid.UUID]) -> list[MessageRecord]:
        raise NotImplementedError

    async def fetch_profiles(self, user_ids: list[uuid.UUID]) -> list[ProfileSummary]:
        raise NotImplementedError


class SqlStoreReader(StoreReader):
    """StoreReader over the SQL database, one short session per query."""

    def __init__(self, session_maker: Optional[async_sessionmaker[AsyncSession]] = None):
        self.session_maker = session_maker or async_session_maker

    async def fetch_recent(self, limit: int) -> list[MessageRecord]:
        async with self.session_maker() as session:
            messages = await GlobalMessageRepository(session).get_recent(limit)
            return [MessageRecord.model_validate(m) for m in messages]

    async def fetch_messages(self, message_ids: list[uuid.UUID]) -> list[MessageRecord]:
        async with self.session_maker() as session:
            messages = await GlobalMessageRepository(session).get_by_ids(message_ids)
            return [MessageRecord.model_validate(m) for m in messages]

    async def fetch_profiles(self, user_ids: list[uuid.UUID]) -> list[ProfileSummary]:
        async with self.session_maker() as session:
            profiles = await UserProfileRepository(session).get_by_ids(user_ids)
            return [ProfileSummary.model_validate(p) for p in profiles]


# ============================================
# Metadata cache
# ============================================


class MetadataCache:
    """Author profiles and reply targets resolved for one channel session.

    Create one per session and pass it in; the session clears it on close.
    """

    def __init__(self):
        self._profiles: dict[uuid.UUID, ProfileSummary] = {}
        self._reply_targets: dict[uuid.UUID, MessageRecord] = {}

    def missing_profiles(self, user_ids: Iterable[uuid.UUID]) -> list[uuid.UUID]:
        return [uid for uid in dict.fromkeys(user_ids) if uid not in self._profiles]

    def missing_reply_targets(self, message_ids: Iterable[uuid.UUID]) -> list[uuid.UUID]:
        return [mid for mid in dict.fromkeys(message_ids) if mid not in self._reply_targets]

    def put_profile(self, profile: ProfileSummary) -> None:
        self._profiles[profile.user_id] = profile

    def get_profile(self, user_id: uuid.UUID) -> Optional[ProfileSummary]:
        return self._profiles.get(user_id)

    def put_reply_target(self, record: MessageRecord) -> None:
        self._reply_targets[record.id] = merge_records(self._reply_targets.get(record.id), record)

    def refresh_reply_target(self, record: MessageRecord) -> bool:
        """Update a cached reply target. Returns False if it was not cached."""
        if record.id not in self._reply_targets:
            return False
        self.put_reply_target(record)
        return True

    def get_reply_target(self, message_id: uuid.UUID) -> Optional[MessageRecord]:
        return self._reply_targets.get(message_id)

    def clear(self) -> None:
        self._profiles.clear()
        self._reply_targets.clear()

    def __len__(self) -> int:
        return len(self._profiles) + len(self._reply_targets)


def merge_records(existing: Optional[MessageRecord], incoming: MessageRecord) -> MessageRecord:
    """Combine two versions of one message without un-deleting it."""
    if existing is not None and existing.is_deleted and not incoming.is_deleted:
        return existing
    return incoming


# ============================================
# Delivery session
# ============================================


class ChatDeliverySession:
    """Ordered live view of one channel for one client."""

    def __init__(
        self,
        reader: StoreReader,
        feed: ChangeFeed,
        cache: MetadataCache,
        page_size: Optional[int] = None,
        table: str = GLOBAL_MESSAGES_TABLE,
        reconnect_policy: Optional[ReconnectPolicy] = None,
        listener: Optional[Listener] = None,
    ):
        self.reader = reader
        self.feed = feed
        self.cache = cache
        self.page_size = page_size or settings.CHAT_PAGE_SIZE
        self.table = table
        self.reconnect_policy = reconnect_policy or ReconnectPolicy()
        self.listener = listener

        self.state = SessionState.LOADING
        self._messages: list[MessageRecord] = []
        self._keys: list[tuple] = []
        self._index: dict[uuid.UUID, MessageRecord] = {}
        self._closing = False
        self._closed_event = asyncio.Event()

    @property
    def messages(self) -> list[MessageRecord]:
        return list(self._messages)

    def get(self, message_id: uuid.UUID) -> Optional[MessageRecord]:
        return self._index.get(message_id)

    # ----- loading and catch-up -----

    async def load(self) -> list[RenderedMessage]:
        """Fetch the recent page and merge it into the view.

        Used for the initial load and for catch-up after a reconnect;
        messages already in the view are kept and never un-deleted.
        """
        if self.state != SessionState.RECONNECTING:
            self.state = SessionState.LOADING
        records = await self.reader.fetch_recent(self.page_size)
        await self._resolve_metadata(records)
        for record in records:
            self.cache.refresh_reply_target(record)
            self._upsert(record)
        self.state = SessionState.SYNCED

        rendered = self.render()
        await self._notify("sync", rendered)
        return rendered

    # ----- live events -----

    async def handle_event(self, event: ChangeEvent) -> None:
        """Apply one change event from the feed."""
        if event.table != self.table:
            return
        self.state = SessionState.RECEIVING
        try:
            record = MessageRecord.model_validate(event.record)
            if event.type == ChangeEventType.INSERT:
                await self._apply_insert(record)
            else:
                await self._apply_update(record)
        finally:
            if self.state == SessionState.RECEIVING:
                self.state = SessionState.SYNCED

    async def add_local(self, record: MessageRecord) -> None:
        """Optimistically show a message the client just sent.

        The INSERT event for the same id is folded into this entry.
        """
        await self._apply_insert(record)

    async def _apply_insert(self, record: MessageRecord) -> None:
        if record.id in self._index:
            await self._apply_update(record)
            return

        await self._resolve_metadata([record])
        out_of_order = self._upsert(record)
        if out_of_order:
            logger.debug("Placed out-of-order message %s by created_at", record.id)
        await self._notify("insert", self._render_one(self._index[record.id]))

    async def _apply_update(self, record: MessageRecord) -> None:
        self.cache.refresh_reply_target(record)
        if record.id in self._index:
            self._upsert(record)
            await self._notify("update", self._render_one(self._index[record.id]))

        # Replies quoting this message re-render with the new preview
        for message in self._messages:
            if message.reply_to_id == record.id:
                await self._notify("update", self._render_one(message))

    def _upsert(self, record: MessageRecord) -> bool:
        """Insert or replace by id at the sorted position.

        Returns:
            True if a new message landed before the current tail
        """
        existing = self._index.get(record.id)
        if existing is not None:
            merged = merge_records(existing, record)
            position = bisect.bisect_left(self._keys, existing.sort_key)
            self._messages[position] = merged
            self._index[record.id] = merged
            return False

        key = record.sort_key
        position = bisect.bisect_right(self._keys, key)
        self._keys.insert(position, key)
        self._messages.insert(position, record)
        self._index[record.id] = record
        return position < len(self._messages) - 1

    async def _resolve_metadata(self, records: list[MessageRecord]) -> None:
        """Fetch reply targets and author profiles not yet known."""
        reply_ids = [
            r.reply_to_id for r in records
            if r.reply_to_id and r.reply_to_id not in self._index
        ]
        missing_targets = self.cache.missing_reply_targets(reply_ids)
        if missing_targets:
            for target in await self.reader.fetch_messages(missing_targets):
                self.cache.put_reply_target(target)

        author_ids = [r.author_id for r in records]
        for reply_id in reply_ids:
            target = self.cache.get_reply_target(reply_id)
            if target:
                author_ids.append(target.author_id)

        missing_profiles = self.cache.missing_profiles(author_ids)
        if missing_profiles:
            found = {p.user_id: p for p in await self.reader.fetch_profiles(missing_profiles)}
            for user_id in missing_profiles:
                # Cache misses too so unknown authors are not refetched
                self.cache.put_profile(found.get(user_id) or ProfileSummary(user_id=user_id))

    # ----- rendering -----

    def render(self) -> list[RenderedMessage]:
        return [self._render_one(m) for m in self._messages]

    def visible_count(self) -> int:
        return sum(1 for m in self._messages if not m.is_deleted)

    def _author_name(self, user_id: uuid.UUID) -> str:
        profile = self.cache.get_profile(user_id)
        return profile.display_name if profile else ANONYMOUS_NAME

    def _render_one(self, record: MessageRecord) -> RenderedMessage:
        profile = self.cache.get_profile(record.author_id)
        return RenderedMessage(
            id=record.id,
            author_id=record.author_id,
            author_name=self._author_name(record.author_id),
            avatar_url=profile.avatar_url if profile else None,
            content=DELETED_PLACEHOLDER if record.is_deleted else record.content,
            is_deleted=record.is_deleted,
            created_at=record.created_at,
            reply_to_id=record.reply_to_id,
            reply_preview=self._reply_preview(record.reply_to_id) if record.reply_to_id else None,
        )

    def _reply_preview(self, target_id: uuid.UUID) -> ReplyPreview:
        target = self._index.get(target_id) or self.cache.get_reply_target(target_id)
        if target is None:
            return ReplyPreview(
                message_id=target_id,
                author_name=ANONYMOUS_NAME,
                text=DELETED_PLACEHOLDER,
                is_deleted=True,
            )

        if target.is_deleted:
            text = DELETED_PLACEHOLDER
        elif len(target.content) > REPLY_PREVIEW_LENGTH:
            text = target.content[:REPLY_PREVIEW_LENGTH].rstrip() + "..."
        else:
            text = target.content

        return ReplyPreview(
            message_id=target_id,
            author_name=self._author_name(target.author_id),
            text=text,
            is_deleted=target.is_deleted,
        )

    # ----- lifecycle -----

    async def run(self) -> None:
        """Subscribe, load, then apply events until closed.

        After a transport loss, or a failed read of the message store, the
        session backs off, resubscribes and re-fetches the recent page before
        resuming live events.

        Raises:
            ChangeFeedDisconnected: When the reconnect policy gives up on the feed
            SQLAlchemyError, OSError: When it gives up on a failing store read
        """
        attempt = 0
        CHAT_DELIVERY_SESSIONS.inc()
        try:
            while not self._closing:
                try:
                    async with self.feed.subscribe(self.table) as events:
                        await self.load()
                        if attempt:
                            log_info(logger, "Delivery session resynced", table=self.table, attempt=attempt)
                        attempt = 0
                        async for event in events:
                            await self.handle_event(event)
                    if not self._closing:
                        raise ChangeFeedDisconnected("subscription ended")
                except RECOVERABLE_ERRORS as e:
                    if self._closing:
                        break
                    attempt += 1
                    if not self.reconnect_policy.should_retry(attempt):
                        self.state = SessionState.CLOSED
                        raise
                    self.state = SessionState.RECONNECTING
                    CHAT_DELIVERY_RECONNECTS_TOTAL.inc()
                    delay = self.reconnect_policy.calculate_delay(attempt)
                    log_warning(
                        logger,
                        "Realtime subscription lost, reconnecting",
                        table=self.table,
                        attempt=attempt,
                        delay_seconds=delay,
                        error=str(e),
                        error_type=type(e).__name__,
                    )
                    try:
                        await asyncio.wait_for(self._closed_event.wait(), timeout=delay)
                    except asyncio.TimeoutError:
                        pass
        finally:
            CHAT_DELIVERY_SESSIONS.dec()

    def close(self) -> None:
        """Stop the session and discard its cache.

        A ``run()`` blocked on the feed is not interrupted; cancel its task.
        """
        self._closing = True
        self._closed_event.set()
        self.state = SessionState.CLOSED
        self.cache.clear()

    async def _notify(self, kind: str, payload: Any) -> None:
        if self.listener is not None:
            await self.listener(kind, payload)
