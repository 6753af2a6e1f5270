"""Tests for message persistence and reply-thread assembly."""
import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select

from blurbboard import IdGenerator, MessageStore, NotFoundError, StoreError, ValidationError
from blurbboard.models import Message
from blurbboard.store import messages, order_threads
from conftest import FakeRandom, insert_row

T0 = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def at(seconds):
    return T0 + timedelta(seconds=seconds)


def ids(page):
    return [message.id for message in page.messages]


@pytest.mark.asyncio
async def test_post_returns_message_with_author_name(store):
    alice = await store.create_user("alice")
    message = await store.post(alice.id, "hello board")

    assert message.author_name == "alice"
    assert message.author_id == alice.id
    assert message.parent_id is None
    assert 100000 <= message.id <= 999999
    assert await store.message_exists(message.id)


@pytest.mark.asyncio
async def test_reply_to_existing_message(store):
    alice = await store.create_user("alice")
    root = await store.post(alice.id, "root")
    reply = await store.post(alice.id, "reply", parent_id=root.id)
    assert reply.parent_id == root.id


@pytest.mark.asyncio
async def test_reply_to_missing_parent_is_not_found(store):
    alice = await store.create_user("alice")
    with pytest.raises(NotFoundError, match="parent id is nonexistent"):
        await store.post(alice.id, "orphan", parent_id=123456)


@pytest.mark.asyncio
async def test_unknown_author_is_not_found(store):
    with pytest.raises(NotFoundError, match="user not found"):
        await store.post(424242, "who am i")


@pytest.mark.asyncio
async def test_empty_content_is_rejected(store):
    alice = await store.create_user("alice")
    with pytest.raises(ValidationError):
        await store.post(alice.id, "   ")


@pytest.mark.asyncio
async def test_duplicate_username_is_rejected(store):
    await store.create_user("alice")
    with pytest.raises(ValidationError, match="Username already exists"):
        await store.create_user("alice")


@pytest.mark.asyncio
async def test_get_user(store):
    alice = await store.create_user("alice")
    found = await store.get_user(alice.id)
    assert found.username == "alice"
    assert found.created_at.tzinfo is not None
    assert await store.get_user(1) is None


@pytest.mark.asyncio
async def test_insert_conflict_is_retried_with_fresh_id(store):
    alice = await store.create_user("alice")
    await insert_row(store, 111111, "already here", at(0), alice.id)

    async def stale_exists(kind, candidate):
        # Another writer took the id between the check and the insert
        return False

    racing = MessageStore(store.engine, id_generator=IdGenerator(stale_exists, rng=FakeRandom([111111, 222222])))
    message = await racing.post(alice.id, "second")

    assert message.id == 222222
    async with store.engine.connect() as conn:
        count = await conn.execute(select(func.count()).select_from(messages).where(messages.c.id == 111111))
        assert count.scalar_one() == 1


@pytest.mark.asyncio
async def test_persistent_conflicts_become_store_error(store):
    alice = await store.create_user("alice")
    await insert_row(store, 111111, "already here", at(0), alice.id)

    async def stale_exists(kind, candidate):
        return False

    racing = MessageStore(store.engine, id_generator=IdGenerator(stale_exists, rng=FakeRandom([111111])),
                          max_insert_attempts=3)
    with pytest.raises(StoreError):
        await racing.post(alice.id, "never stored")


@pytest.mark.asyncio
async def test_concurrent_posts_get_distinct_ids(store):
    alice = await store.create_user("alice")
    posted = await asyncio.gather(*(store.post(alice.id, f"message {i}") for i in range(10)))
    assert len({message.id for message in posted}) == 10


@pytest.mark.asyncio
async def test_replies_follow_root_oldest_first(store):
    alice = await store.create_user("alice")
    await insert_row(store, 100001, "R", at(0), alice.id)
    await insert_row(store, 100002, "A", at(1), alice.id, parent_id=100001)
    await insert_row(store, 100003, "B", at(2), alice.id, parent_id=100001)

    page = await store.list_page(1)

    assert ids(page) == [100001, 100002, 100003]
    assert {message.root_id for message in page.messages} == {100001}
    assert page.messages[1].author_name == "alice"


@pytest.mark.asyncio
async def test_threads_ordered_newest_root_first(store):
    alice = await store.create_user("alice")
    await insert_row(store, 100001, "R", at(0), alice.id)
    await insert_row(store, 100002, "A", at(1), alice.id, parent_id=100001)
    await insert_row(store, 100003, "S", at(3), alice.id)
    await insert_row(store, 100004, "C", at(4), alice.id, parent_id=100003)
    # Nested reply, newer than everything in S's thread
    await insert_row(store, 100005, "D", at(5), alice.id, parent_id=100002)

    page = await store.list_page(1)

    assert ids(page) == [100003, 100004, 100001, 100002, 100005]
    assert page.messages[-1].root_id == 100001


@pytest.mark.asyncio
async def test_deep_chain_is_fully_expanded(store):
    alice = await store.create_user("alice")
    await insert_row(store, 200000, "root", at(0), alice.id)
    for depth in range(1, 8):
        await insert_row(store, 200000 + depth, f"depth {depth}", at(depth), alice.id, parent_id=200000 + depth - 1)

    page = await store.list_page(1)

    assert ids(page) == [200000 + depth for depth in range(8)]


@pytest.mark.asyncio
async def test_paging_and_out_of_range_pages(store):
    alice = await store.create_user("alice")
    for i in range(12):
        await insert_row(store, 300000 + i, f"root {i}", at(i), alice.id)
    await insert_row(store, 399999, "reply", at(20), alice.id, parent_id=300000)

    first = await store.list_page(1)
    second = await store.list_page(2)
    beyond = await store.list_page(3)

    assert first.total_pages == second.total_pages == beyond.total_pages == 2
    assert ids(first) == [300000 + i for i in range(11, 1, -1)]
    # Oldest root on the last page still brings its (newer) reply along
    assert ids(second) == [300001, 300000, 399999]
    assert beyond.messages == []
    assert beyond.page == 3


@pytest.mark.asyncio
async def test_page_below_one_reads_first_page(store):
    alice = await store.create_user("alice")
    await insert_row(store, 100001, "R", at(0), alice.id)

    page = await store.list_page(0)
    assert page.page == 1
    assert ids(page) == [100001]


@pytest.mark.asyncio
async def test_empty_board(store):
    page = await store.list_page(1)
    assert page.total_pages == 0
    assert page.messages == []


def test_order_threads_breaks_root_timestamp_ties_by_root_id():
    rows = [
        Message(id=500002, content="y", timestamp=at(0), author_id=1, root_id=500002),
        Message(id=500003, content="y reply", timestamp=at(1), author_id=1, parent_id=500002, root_id=500002),
        Message(id=500001, content="x", timestamp=at(0), author_id=1, root_id=500001),
    ]
    assert [row.id for row in order_threads(rows)] == [500001, 500002, 500003]


def test_page_serializes_camel_case():
    page_rows = [Message(id=100001, content="R", timestamp=at(0), author_id=7, author_name="alice", root_id=100001)]
    from blurbboard.models import MessagePage
    data = MessagePage(page=1, total_pages=1, messages=page_rows).to_dict()
    assert data == {
        "page": 1,
        "totalPages": 1,
        "messages": [{
            "id": 100001,
            "content": "R",
            "timestamp": "2024-01-01T12:00:00Z",
            "authorId": 7,
            "authorName": "alice",
            "parentId": None,
            "rootId": 100001,
        }],
    }
