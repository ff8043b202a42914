"""Tests for chat delivery sessions: ordering, deletion, replies and reconnects."""

import asyncio
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest
from hypothesis import given, settings, strategies as st

from arcade_chat.modules.chat.delivery import (
    REPLY_PREVIEW_LENGTH,
    ChatDeliverySession,
    MetadataCache,
    ReconnectPolicy,
    SessionState,
    StoreReader,
    merge_records,
)
from arcade_chat.modules.chat.realtime import ChangeFeed, ChangeFeedDisconnected, LocalChangeFeed
from arcade_chat.modules.chat.schemas import (
    ANONYMOUS_NAME,
    DELETED_PLACEHOLDER,
    DIRECT_MESSAGES_TABLE,
    GLOBAL_MESSAGES_TABLE,
    ChangeEvent,
    ChangeEventType,
    MessageRecord,
    ProfileSummary,
)


BASE_TIME = datetime(2026, 3, 1, 18, 0, tzinfo=timezone.utc)


class InMemoryStoreReader(StoreReader):
    """StoreReader over plain dicts."""

    def __init__(self):
        self.messages: dict[uuid.UUID, MessageRecord] = {}
        self.profiles: dict[uuid.UUID, ProfileSummary] = {}
        self.profile_fetches: list[list[uuid.UUID]] = []

    def add(self, record: MessageRecord) -> MessageRecord:
        self.messages[record.id] = record
        return record

    async def fetch_recent(self, limit: int) -> list[MessageRecord]:
        ordered = sorted(self.messages.values(), key=lambda m: m.sort_key)
        return ordered[-limit:]

    async def fetch_messages(self, message_ids: list[uuid.UUID]) -> list[MessageRecord]:
        return [self.messages[mid] for mid in message_ids if mid in self.messages]

    async def fetch_profiles(self, user_ids: list[uuid.UUID]) -> list[ProfileSummary]:
        self.profile_fetches.append(list(user_ids))
        return [self.profiles[uid] for uid in user_ids if uid in self.profiles]


def make_record(
    offset_seconds: int = 0,
    content: str = "gg",
    author_id: Optional[uuid.UUID] = None,
    reply_to_id: Optional[uuid.UUID] = None,
    message_id: Optional[uuid.UUID] = None,
    is_deleted: bool = False,
) -> MessageRecord:
    return MessageRecord(
        id=message_id or uuid.uuid4(),
        author_id=author_id or uuid.uuid4(),
        content=content,
        reply_to_id=reply_to_id,
        created_at=BASE_TIME + timedelta(seconds=offset_seconds),
        is_deleted=is_deleted,
    )


def insert_event(record: MessageRecord) -> ChangeEvent:
    return ChangeEvent(
        table=GLOBAL_MESSAGES_TABLE,
        type=ChangeEventType.INSERT,
        record=record.model_dump(mode="json"),
    )


def update_event(record: MessageRecord) -> ChangeEvent:
    return ChangeEvent(
        table=GLOBAL_MESSAGES_TABLE,
        type=ChangeEventType.UPDATE,
        record=record.model_dump(mode="json"),
    )


def new_session(reader: StoreReader, feed: Optional[ChangeFeed] = None, **kwargs) -> ChatDeliverySession:
    return ChatDeliverySession(reader, feed or LocalChangeFeed(), MetadataCache(), **kwargs)


async def wait_until(predicate, timeout: float = 2.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


# Strategy for message batches with colliding timestamps
records_strategy = st.lists(
    st.builds(
        lambda offset, mid: make_record(offset, message_id=mid),
        st.integers(min_value=0, max_value=20),
        st.uuids(),
    ),
    min_size=1,
    max_size=25,
    unique_by=lambda r: r.id,
)


class TestDeliveryOrdering:
    """The view is ordered by (created_at, id) whatever the arrival order."""

    @given(records=records_strategy, data=st.data())
    @settings(max_examples=100)
    @pytest.mark.asyncio
    async def test_any_arrival_order_yields_sorted_view(self, records, data):
        arrival = data.draw(st.permutations(records))
        session = new_session(InMemoryStoreReader())

        for record in arrival:
            await session.handle_event(insert_event(record))

        expected = sorted(records, key=lambda r: (r.created_at, r.id))
        assert [m.id for m in session.messages] == [r.id for r in expected]

    @given(records=records_strategy, data=st.data())
    @settings(max_examples=100)
    @pytest.mark.asyncio
    async def test_redelivered_events_do_not_duplicate(self, records, data):
        repeats = data.draw(st.lists(st.sampled_from(records), max_size=10))
        arrival = data.draw(st.permutations(records + repeats))
        session = new_session(InMemoryStoreReader())

        for record in arrival:
            await session.handle_event(insert_event(record))

        assert len(session.messages) == len(records)

    @given(records=records_strategy, data=st.data())
    @settings(max_examples=100)
    @pytest.mark.asyncio
    async def test_deleted_never_reverts(self, records, data):
        """Stale undeleted versions arriving after a delete are ignored."""
        deleted = data.draw(st.sampled_from(records))
        session = new_session(InMemoryStoreReader())
        for record in records:
            await session.handle_event(insert_event(record))

        await session.handle_event(update_event(deleted.model_copy(update={"is_deleted": True})))
        await session.handle_event(update_event(deleted))
        await session.handle_event(insert_event(deleted))

        assert session.get(deleted.id).is_deleted is True
        assert session.visible_count() == len(records) - 1

    def test_merge_keeps_deleted(self):
        record = make_record()
        deleted = record.model_copy(update={"is_deleted": True})

        assert merge_records(deleted, record).is_deleted is True
        assert merge_records(record, deleted).is_deleted is True
        assert merge_records(None, record) is record


class TestDeliverySession:

    @pytest.mark.asyncio
    async def test_load_renders_oldest_first_with_authors(self):
        reader = InMemoryStoreReader()
        known = uuid.uuid4()
        reader.profiles[known] = ProfileSummary(user_id=known, username="pixel", avatar_url="https://cdn/p.png")
        first = reader.add(make_record(0, "first", author_id=known))
        second = reader.add(make_record(5, "second"))
        session = new_session(reader)

        rendered = await session.load()

        assert [m.id for m in rendered] == [first.id, second.id]
        assert rendered[0].author_name == "pixel"
        assert rendered[0].avatar_url == "https://cdn/p.png"
        assert rendered[1].author_name == ANONYMOUS_NAME
        assert session.state == SessionState.SYNCED

    @pytest.mark.asyncio
    async def test_load_respects_page_size(self):
        reader = InMemoryStoreReader()
        records = [reader.add(make_record(i)) for i in range(10)]
        session = new_session(reader, page_size=3)

        rendered = await session.load()

        assert [m.id for m in rendered] == [r.id for r in records[-3:]]

    @pytest.mark.asyncio
    async def test_profiles_are_fetched_once(self):
        reader = InMemoryStoreReader()
        author = uuid.uuid4()
        session = new_session(reader)

        await session.handle_event(insert_event(make_record(0, author_id=author)))
        await session.handle_event(insert_event(make_record(1, author_id=author)))

        assert reader.profile_fetches == [[author]]

    @pytest.mark.asyncio
    async def test_deleted_message_keeps_position_with_placeholder(self):
        reader = InMemoryStoreReader()
        a = reader.add(make_record(0, "a"))
        b = reader.add(make_record(1, "b"))
        c = reader.add(make_record(2, "c"))
        session = new_session(reader)
        await session.load()

        await session.handle_event(update_event(b.model_copy(update={"is_deleted": True})))

        rendered = session.render()
        assert [m.id for m in rendered] == [a.id, b.id, c.id]
        assert rendered[1].content == DELETED_PLACEHOLDER
        assert rendered[1].is_deleted is True

    @pytest.mark.asyncio
    async def test_other_tables_are_ignored(self):
        session = new_session(InMemoryStoreReader())
        event = ChangeEvent(
            table=DIRECT_MESSAGES_TABLE,
            type=ChangeEventType.INSERT,
            record=make_record().model_dump(mode="json"),
        )

        await session.handle_event(event)

        assert session.messages == []

    @pytest.mark.asyncio
    async def test_optimistic_message_merges_with_insert(self):
        session = new_session(InMemoryStoreReader())
        record = make_record(0, "sent by me")

        await session.add_local(record)
        await session.handle_event(insert_event(record))

        assert [m.id for m in session.messages] == [record.id]

    @pytest.mark.asyncio
    async def test_close_clears_cache(self):
        reader = InMemoryStoreReader()
        reader.add(make_record(0))
        session = new_session(reader)
        await session.load()
        assert len(session.cache) > 0

        session.close()

        assert len(session.cache) == 0
        assert session.state == SessionState.CLOSED


class TestReplyPreview:

    @pytest.mark.asyncio
    async def test_preview_of_loaded_target(self):
        reader = InMemoryStoreReader()
        author = uuid.uuid4()
        reader.profiles[author] = ProfileSummary(user_id=author, username="ace")
        target = reader.add(make_record(0, "nice shot", author_id=author))
        reply = reader.add(make_record(1, "thanks", reply_to_id=target.id))
        session = new_session(reader)

        rendered = {m.id: m for m in await session.load()}

        preview = rendered[reply.id].reply_preview
        assert preview.author_name == "ace"
        assert preview.text == "nice shot"
        assert preview.is_deleted is False

    @pytest.mark.asyncio
    async def test_target_outside_page_is_fetched(self):
        reader = InMemoryStoreReader()
        target = reader.add(make_record(0, "old message"))
        reply = reader.add(make_record(60, "replying", reply_to_id=target.id))
        session = new_session(reader, page_size=1)

        rendered = await session.load()

        assert [m.id for m in rendered] == [reply.id]
        assert rendered[0].reply_preview.text == "old message"

    @pytest.mark.asyncio
    async def test_missing_target_shows_placeholder(self):
        reader = InMemoryStoreReader()
        reply = reader.add(make_record(0, "orphan", reply_to_id=uuid.uuid4()))
        session = new_session(reader)

        rendered = await session.load()

        assert rendered[0].id == reply.id
        assert rendered[0].reply_preview.text == DELETED_PLACEHOLDER
        assert rendered[0].reply_preview.is_deleted is True

    @pytest.mark.asyncio
    async def test_long_target_is_truncated(self):
        reader = InMemoryStoreReader()
        target = reader.add(make_record(0, "x" * (REPLY_PREVIEW_LENGTH + 50)))
        reader.add(make_record(1, "reply", reply_to_id=target.id))
        session = new_session(reader)

        rendered = await session.load()

        text = rendered[1].reply_preview.text
        assert text.endswith("...")
        assert len(text) == REPLY_PREVIEW_LENGTH + 3

    @pytest.mark.asyncio
    async def test_deleting_target_updates_reply(self):
        reader = InMemoryStoreReader()
        target = reader.add(make_record(0, "bad take"))
        reply = reader.add(make_record(1, "agreed", reply_to_id=target.id))
        updates = []

        async def listener(kind, payload):
            if kind == "update":
                updates.append(payload)

        session = new_session(reader, listener=listener)
        await session.load()

        await session.handle_event(update_event(target.model_copy(update={"is_deleted": True})))

        reply_updates = [u for u in updates if u.id == reply.id]
        assert len(reply_updates) == 1
        assert reply_updates[0].reply_preview.text == DELETED_PLACEHOLDER
        assert reply_updates[0].content == "agreed"


class TestReconnect:

    def test_backoff_is_capped(self):
        policy = ReconnectPolicy(initial_delay=1.0, max_delay=10.0, backoff_multiplier=2.0)

        assert [policy.calculate_delay(n) for n in range(1, 7)] == [1.0, 2.0, 4.0, 8.0, 10.0, 10.0]
        assert policy.should_retry(1000)

    def test_bounded_attempts(self):
        policy = ReconnectPolicy(max_attempts=3)

        assert policy.should_retry(3)
        assert not policy.should_retry(4)

    @pytest.mark.asyncio
    async def test_catches_up_after_transport_loss(self):
        """Messages written while disconnected appear after the resync."""
        reader = InMemoryStoreReader()
        feed = LocalChangeFeed()
        reader.add(make_record(0, "before"))
        syncs = []

        async def listener(kind, payload):
            if kind == "sync":
                syncs.append(payload)

        session = new_session(
            reader,
            feed,
            reconnect_policy=ReconnectPolicy(initial_delay=0.01, max_delay=0.05, backoff_multiplier=2.0),
            listener=listener,
        )
        task = asyncio.create_task(session.run())
        try:
            await wait_until(lambda: len(syncs) == 1 and feed.subscriber_count(GLOBAL_MESSAGES_TABLE) == 1)

            live = reader.add(make_record(1, "live"))
            await feed.publish(GLOBAL_MESSAGES_TABLE, ChangeEventType.INSERT, live.model_dump(mode="json"))
            await wait_until(lambda: session.get(live.id) is not None)

            feed.disconnect_all()
            missed = reader.add(make_record(2, "missed"))
            await wait_until(lambda: len(syncs) == 2)

            assert [m.content for m in syncs[-1]] == ["before", "live", "missed"]
            assert session.get(missed.id) is not None
        finally:
            session.close()
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

    @pytest.mark.asyncio
    async def test_failed_catch_up_read_is_retried(self):
        """A store outage during the resync backs off and tries again."""

        class FlakyReader(InMemoryStoreReader):
            def __init__(self):
                super().__init__()
                self.fetch_calls = 0
                self.fail_on_call = 2

            async def fetch_recent(self, limit):
                self.fetch_calls += 1
                if self.fetch_calls == self.fail_on_call:
                    raise ConnectionError("database briefly unavailable")
                return await super().fetch_recent(limit)

        reader = FlakyReader()
        feed = LocalChangeFeed()
        reader.add(make_record(0, "before"))
        syncs = []

        async def listener(kind, payload):
            if kind == "sync":
                syncs.append(payload)

        session = new_session(
            reader,
            feed,
            reconnect_policy=ReconnectPolicy(initial_delay=0.01, max_delay=0.05, backoff_multiplier=2.0),
            listener=listener,
        )
        task = asyncio.create_task(session.run())
        try:
            await wait_until(lambda: len(syncs) == 1 and feed.subscriber_count(GLOBAL_MESSAGES_TABLE) == 1)

            feed.disconnect_all()
            missed = reader.add(make_record(1, "missed"))
            await wait_until(lambda: len(syncs) == 2)

            assert not task.done()
            assert reader.fetch_calls == 3
            assert [m.content for m in syncs[-1]] == ["before", "missed"]
            assert session.get(missed.id) is not None
            assert feed.subscriber_count(GLOBAL_MESSAGES_TABLE) == 1
        finally:
            session.close()
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

    @pytest.mark.asyncio
    async def test_store_errors_propagate_when_policy_exhausted(self):
        class DownReader(InMemoryStoreReader):
            async def fetch_recent(self, limit):
                raise ConnectionError("database down")

        session = new_session(
            DownReader(),
            reconnect_policy=ReconnectPolicy(initial_delay=0.001, max_delay=0.001, max_attempts=2),
        )

        with pytest.raises(ConnectionError):
            await session.run()

        assert session.state == SessionState.CLOSED

    @pytest.mark.asyncio
    async def test_gives_up_when_policy_exhausted(self):
        class DeadFeed(ChangeFeed):
            @asynccontextmanager
            async def subscribe(self, table, event="*"):
                raise ChangeFeedDisconnected("connection refused")
                yield

        session = new_session(
            InMemoryStoreReader(),
            DeadFeed(),
            reconnect_policy=ReconnectPolicy(initial_delay=0.001, max_delay=0.001, max_attempts=2),
        )

        with pytest.raises(ChangeFeedDisconnected):
            await session.run()

        assert session.state == SessionState.CLOSED
