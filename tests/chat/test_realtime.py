"""Tests for the realtime change feeds."""

import asyncio
import json
import uuid
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from arcade_chat.modules.chat.realtime import (
    ChangeFeedDisconnected,
    ChangeFeedError,
    LocalChangeFeed,
    RedisChangeFeed,
    create_change_feed,
)
from arcade_chat.modules.chat.schemas import (
    DIRECT_MESSAGES_TABLE,
    GLOBAL_MESSAGES_TABLE,
    ChangeEvent,
    ChangeEventType,
)


def sample_record() -> dict:
    return {"id": str(uuid.uuid4()), "content": "hi", "is_deleted": False}


class TestLocalChangeFeed:

    @pytest.mark.asyncio
    async def test_subscribers_receive_only_their_table(self):
        feed = LocalChangeFeed()
        record = sample_record()

        async with feed.subscribe(GLOBAL_MESSAGES_TABLE) as events:
            await feed.publish(DIRECT_MESSAGES_TABLE, ChangeEventType.INSERT, sample_record())
            await feed.publish(GLOBAL_MESSAGES_TABLE, ChangeEventType.INSERT, record)
            event = await asyncio.wait_for(anext(events), timeout=1)

        assert event.table == GLOBAL_MESSAGES_TABLE
        assert event.record == record
        assert events.queue.empty()

    @pytest.mark.asyncio
    async def test_event_type_filter(self):
        feed = LocalChangeFeed()

        async with feed.subscribe(GLOBAL_MESSAGES_TABLE, event="UPDATE") as events:
            await feed.publish(GLOBAL_MESSAGES_TABLE, ChangeEventType.INSERT, sample_record())
            await feed.publish(GLOBAL_MESSAGES_TABLE, ChangeEventType.UPDATE, sample_record())
            event = await asyncio.wait_for(anext(events), timeout=1)

        assert event.type == ChangeEventType.UPDATE
        assert events.queue.empty()

    @pytest.mark.asyncio
    async def test_slow_subscriber_is_disconnected(self):
        feed = LocalChangeFeed(max_queue_size=2)

        async with feed.subscribe(GLOBAL_MESSAGES_TABLE) as events:
            for _ in range(3):
                await feed.publish(GLOBAL_MESSAGES_TABLE, ChangeEventType.INSERT, sample_record())

            assert feed.subscriber_count(GLOBAL_MESSAGES_TABLE) == 0
            with pytest.raises(ChangeFeedDisconnected):
                await anext(events)

    @pytest.mark.asyncio
    async def test_unsubscribe_on_exit(self):
        feed = LocalChangeFeed()

        async with feed.subscribe(GLOBAL_MESSAGES_TABLE):
            assert feed.subscriber_count(GLOBAL_MESSAGES_TABLE) == 1

        assert feed.subscriber_count(GLOBAL_MESSAGES_TABLE) == 0

    @pytest.mark.asyncio
    async def test_close_disconnects_waiting_subscriber(self):
        feed = LocalChangeFeed()

        async with feed.subscribe(GLOBAL_MESSAGES_TABLE) as events:
            waiter = asyncio.create_task(anext(events))
            await asyncio.sleep(0)
            await feed.close()

            with pytest.raises(ChangeFeedDisconnected):
                await asyncio.wait_for(waiter, timeout=1)


class FakePubSub:
    """Stand-in for redis.asyncio PubSub."""

    def __init__(self, messages: list, error: BaseException = None):
        self.messages = messages
        self.error = error
        self.subscribe = AsyncMock()
        self.aclose = AsyncMock()

    async def listen(self):
        for message in self.messages:
            yield message
        if self.error is not None:
            raise self.error


class TestRedisChangeFeed:

    @pytest.mark.asyncio
    async def test_publish_serializes_event(self):
        client = MagicMock()
        client.publish = AsyncMock(return_value=1)
        feed = RedisChangeFeed(client)
        record = sample_record()

        await feed.publish(GLOBAL_MESSAGES_TABLE, ChangeEventType.UPDATE, record)

        channel, payload = client.publish.await_args.args
        assert channel == "realtime:global_messages"
        assert json.loads(payload) == {"table": GLOBAL_MESSAGES_TABLE, "type": "UPDATE", "record": record}

    @pytest.mark.asyncio
    async def test_publish_failure_raises_feed_error(self):
        client = MagicMock()
        client.publish = AsyncMock(side_effect=RedisConnectionError("down"))
        feed = RedisChangeFeed(client)

        with pytest.raises(ChangeFeedError):
            await feed.publish(GLOBAL_MESSAGES_TABLE, ChangeEventType.INSERT, sample_record())

    @pytest.mark.asyncio
    async def test_subscription_yields_events_then_reports_loss(self):
        good = ChangeEvent(table=GLOBAL_MESSAGES_TABLE, type=ChangeEventType.INSERT, record=sample_record())
        pubsub = FakePubSub(
            [
                {"type": "message", "data": "not json"},
                {"type": "message", "data": good.model_dump_json()},
            ],
            error=RedisConnectionError("connection reset"),
        )
        client = MagicMock()
        client.pubsub = MagicMock(return_value=pubsub)
        feed = RedisChangeFeed(client)

        received = []
        with pytest.raises(ChangeFeedDisconnected):
            async with feed.subscribe(GLOBAL_MESSAGES_TABLE) as events:
                async for event in events:
                    received.append(event)

        assert received == [good]
        pubsub.subscribe.assert_awaited_once_with("realtime:global_messages")
        pubsub.aclose.assert_awaited()

    @pytest.mark.asyncio
    async def test_ended_stream_is_a_disconnect(self):
        client = MagicMock()
        client.pubsub = MagicMock(return_value=FakePubSub([]))
        feed = RedisChangeFeed(client)

        with pytest.raises(ChangeFeedDisconnected):
            async with feed.subscribe(GLOBAL_MESSAGES_TABLE) as events:
                async for _ in events:
                    pass


class TestCreateChangeFeed:

    def test_local_backend(self):
        assert isinstance(create_change_feed("local"), LocalChangeFeed)

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            create_change_feed("carrier-pigeon")
