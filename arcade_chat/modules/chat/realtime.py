"""Realtime change feed for chat tables.

Publishers announce INSERT and UPDATE events carrying the post-change row;
subscribers listen per table, optionally filtered by event type. Delivery
is best effort: nothing is queued for a subscriber across a disconnect, so
consumers must re-fetch after ``ChangeFeedDisconnected``.
"""

import asyncio
import logging
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

import redis.asyncio as redis
from pydantic import ValidationError
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError
from redis.exceptions import TimeoutError as RedisTimeoutError

from arcade_chat.core.config import settings
from arcade_chat.core.logging import log_warning
from arcade_chat.core.metrics import REALTIME_EVENTS_PUBLISHED_TOTAL
from arcade_chat.modules.chat.schemas import WILDCARD_EVENT, ChangeEvent, ChangeEventType

logger = logging.getLogger(__name__)


class ChangeFeedError(Exception):
    """Base exception for change feed errors."""
    pass


class ChangeFeedDisconnected(ChangeFeedError):
    """The subscription lost its transport; events may have been missed."""
    pass


class ChangeFeed:
    """Interface for publishing and subscribing to table change events."""

    async def publish(self, table: str, event_type: ChangeEventType, record: dict[str, Any]) -> None:
        raise NotImplementedError

    def subscribe(self, table: str, event: str = WILDCARD_EVENT):
        """Async context manager yielding an async iterator of ChangeEvent.

        Iteration raises ChangeFeedDisconnected when the transport drops.
        """
        raise NotImplementedError

    async def close(self) -> None:
        pass


# ============================================
# In-process feed
# ============================================


class LocalSubscription:
    """Queue backed subscription handed out by LocalChangeFeed."""

    def __init__(self, event: str, max_queue_size: int):
        self.event = event
        self.queue: asyncio.Queue[Optional[ChangeEvent]] = asyncio.Queue(maxsize=max_queue_size)
        self.closed = False

    def disconnect(self) -> None:
        self.closed = True
        try:
            self.queue.put_nowait(None)
        except asyncio.QueueFull:
            pass

    def __aiter__(self) -> "LocalSubscription":
        return self

    async def __anext__(self) -> ChangeEvent:
        if self.closed:
            raise ChangeFeedDisconnected("subscription closed")
        item = await self.queue.get()
        if item is None or self.closed:
            raise ChangeFeedDisconnected("subscription closed")
        return item


class LocalChangeFeed(ChangeFeed):
    """Change feed for a single process.

    A subscriber that falls ``max_queue_size`` events behind is
    disconnected rather than blocking publishers.
    """

    def __init__(self, max_queue_size: int = 1000):
        self.max_queue_size = max_queue_size
        self._subscribers: dict[str, set[LocalSubscription]] = defaultdict(set)

    async def publish(self, table: str, event_type: ChangeEventType, record: dict[str, Any]) -> None:
        event = ChangeEvent(table=table, type=event_type, record=record)
        for subscription in list(self._subscribers.get(table, ())):
            if subscription.closed or not event.matches(subscription.event):
                continue
            try:
                subscription.queue.put_nowait(event)
            except asyncio.QueueFull:
                log_warning(logger, "Dropping slow realtime subscriber", table=table)
                subscription.disconnect()
        REALTIME_EVENTS_PUBLISHED_TOTAL.labels(table=table, event=event_type.value).inc()

    @asynccontextmanager
    async def subscribe(self, table: str, event: str = WILDCARD_EVENT) -> AsyncIterator[LocalSubscription]:
        subscription = LocalSubscription(event, self.max_queue_size)
        self._subscribers[table].add(subscription)
        try:
            yield subscription
        finally:
            self._subscribers[table].discard(subscription)

    def subscriber_count(self, table: str) -> int:
        return sum(1 for s in self._subscribers.get(table, ()) if not s.closed)

    def disconnect_all(self) -> None:
        """Drop every live subscription, as a transport failure would."""
        for subscriptions in self._subscribers.values():
            for subscription in list(subscriptions):
                subscription.disconnect()

    async def close(self) -> None:
        self.disconnect_all()


# ============================================
# Redis pub/sub feed
# ============================================


class RedisChangeFeed(ChangeFeed):
    """Change feed over Redis pub/sub, one channel per table."""

    CHANNEL_PREFIX = "realtime:"

    def __init__(self, client: redis.Redis):
        self.client = client

    def channel_for(self, table: str) -> str:
        return f"{self.CHANNEL_PREFIX}{table}"

    async def publish(self, table: str, event_type: ChangeEventType, record: dict[str, Any]) -> None:
        payload = ChangeEvent(table=table, type=event_type, record=record).model_dump_json()
        try:
            await self.client.publish(self.channel_for(table), payload)
        except RedisError as e:
            raise ChangeFeedError(f"Failed to publish {event_type.value} on {table}: {e}") from e
        REALTIME_EVENTS_PUBLISHED_TOTAL.labels(table=table, event=event_type.value).inc()

    @asynccontextmanager
    async def subscribe(self, table: str, event: str = WILDCARD_EVENT) -> AsyncIterator[AsyncIterator[ChangeEvent]]:
        pubsub = self.client.pubsub(ignore_subscribe_messages=True)
        try:
            await pubsub.subscribe(self.channel_for(table))
        except (RedisConnectionError, RedisTimeoutError) as e:
            await pubsub.aclose()
            raise ChangeFeedDisconnected(f"Subscribe to {table} failed: {e}") from e

        try:
            yield self._iterate(pubsub, table, event)
        finally:
            await pubsub.aclose()

    async def _iterate(self, pubsub, table: str, event: str) -> AsyncIterator[ChangeEvent]:
        try:
            async for message in pubsub.listen():
                if message.get("type") != "message":
                    continue
                try:
                    change = ChangeEvent.model_validate_json(message["data"])
                except ValidationError:
                    log_warning(logger, "Ignoring malformed realtime payload", table=table)
                    continue
                if change.matches(event):
                    yield change
        except (RedisConnectionError, RedisTimeoutError) as e:
            raise ChangeFeedDisconnected(f"Lost realtime connection for {table}: {e}") from e
        raise ChangeFeedDisconnected(f"Realtime stream for {table} ended")


def create_change_feed(backend: Optional[str] = None) -> ChangeFeed:
    """Build the change feed selected by REALTIME_BACKEND."""
    backend = (backend or settings.REALTIME_BACKEND).lower()
    if backend == "local":
        return LocalChangeFeed()
    if backend == "redis":
        from arcade_chat.core.redis import redis_client
        return RedisChangeFeed(redis_client)
    raise ValueError(f"Unknown realtime backend: {backend}")
