"""
Notification Store Tests.

Every test runs against the in-memory and the SQLAlchemy adapter.
"""

from datetime import datetime, timezone

import pytest

from backend.app.core.exceptions import NotificationNotFoundError, NotificationValidationError
from backend.app.models.enums import DevicePlatform, NotificationType
from backend.app.schemas.notification import MessageData, NotificationCreate, NotificationFilter, ReviewData
from backend.app.schemas.settings import NotificationSettings


def _create(user_id="u1", type=NotificationType.SYSTEM, title="Hello", data=None, is_read=False):
    return NotificationCreate(
        user_id=user_id, type=type, title=title, message=f"{title} body", data=data, is_read=is_read
    )


@pytest.mark.asyncio
async def test_create_assigns_id_and_created_at(store):
    first = await store.create(_create(title="first"))
    second = await store.create(_create(title="second"))

    assert first.id != second.id
    assert first.created_at < second.created_at
    assert first.created_at.tzinfo is not None
    assert first.is_read is False


@pytest.mark.asyncio
async def test_list_is_newest_first_and_scoped_to_user(store):
    await store.create(_create(title="a"))
    await store.create(_create(title="b"))
    await store.create(_create(user_id="someone-else", title="c"))
    await store.create(_create(title="d"))

    records = await store.list("u1")
    assert [r.title for r in records] == ["d", "b", "a"]


@pytest.mark.asyncio
async def test_payload_round_trips(store):
    data = MessageData(sender_id="s1", sender_name="Aiko", conversation_id="c9")
    created = await store.create(_create(type=NotificationType.MESSAGE, data=data))

    fetched = await store.get(created.id)
    assert isinstance(fetched.data, MessageData)
    assert fetched.data.sender_name == "Aiko"


@pytest.mark.asyncio
async def test_march_filter_returns_unread_messages_in_range(store, clock):
    """type=[message], read=false, March 2025: only matching records, newest first."""
    clock.set(datetime(2025, 2, 28, 23, 59, 59, tzinfo=timezone.utc))
    await store.create(_create(type=NotificationType.MESSAGE, title="february"))

    clock.set(datetime(2025, 3, 1, 0, 0, 0, tzinfo=timezone.utc))
    await store.create(_create(type=NotificationType.MESSAGE, title="march-first"))

    clock.set(datetime(2025, 3, 12, 8, 0, tzinfo=timezone.utc))
    read_one = await store.create(_create(type=NotificationType.MESSAGE, title="march-read"))
    await store.mark_read(read_one.id)

    clock.set(datetime(2025, 3, 15, 8, 0, tzinfo=timezone.utc))
    await store.create(_create(type=NotificationType.REVIEW, title="march-review"))

    clock.set(datetime(2025, 3, 31, 23, 0, tzinfo=timezone.utc))
    await store.create(_create(type=NotificationType.MESSAGE, title="march-last"))

    clock.set(datetime(2025, 4, 1, 0, 0, 1, tzinfo=timezone.utc))
    await store.create(_create(type=NotificationType.MESSAGE, title="april"))

    filter = NotificationFilter(
        types=[NotificationType.MESSAGE], read=False, start_date="2025-03-01", end_date="2025-03-31"
    )
    records = await store.list("u1", filter)

    assert [r.title for r in records] == ["march-last", "march-first"]


@pytest.mark.asyncio
async def test_types_filter_is_or_combined(store):
    await store.create(_create(type=NotificationType.MESSAGE, title="m"))
    await store.create(_create(type=NotificationType.REVIEW, title="r", data=ReviewData(review_id="r1", rating=5)))
    await store.create(_create(type=NotificationType.PAYMENT, title="p"))

    records = await store.list("u1", NotificationFilter(types=[NotificationType.MESSAGE, NotificationType.REVIEW]))
    assert {r.title for r in records} == {"m", "r"}


@pytest.mark.asyncio
async def test_limit(store):
    for i in range(5):
        await store.create(_create(title=str(i)))

    records = await store.list("u1", NotificationFilter(limit=2))
    assert [r.title for r in records] == ["4", "3"]


def test_inverted_range_is_rejected():
    with pytest.raises(NotificationValidationError):
        NotificationFilter(start_date="2025-03-31", end_date="2025-03-01")


def test_unparsable_date_is_rejected():
    with pytest.raises(NotificationValidationError):
        NotificationFilter(start_date="not-a-date")


@pytest.mark.asyncio
async def test_unread_count_matches_unread_list(store):
    for i in range(4):
        await store.create(_create(title=str(i)))
    records = await store.list("u1")
    await store.mark_read(records[0].id)

    unread = await store.list("u1", NotificationFilter(read=False))
    assert await store.unread_count("u1") == len(unread) == 3


@pytest.mark.asyncio
async def test_mark_read_is_idempotent(store):
    record = await store.create(_create())

    first = await store.mark_read(record.id)
    second = await store.mark_read(record.id)

    assert first.is_read and second.is_read
    assert first.read_at == second.read_at
    assert await store.unread_count("u1") == 0


@pytest.mark.asyncio
async def test_mark_read_missing_id_raises(store):
    with pytest.raises(NotificationNotFoundError):
        await store.mark_read("does-not-exist")


@pytest.mark.asyncio
async def test_mark_all_read_returns_transitioned_count(store):
    for i in range(3):
        await store.create(_create(title=str(i)))
    already = await store.create(_create(title="already"))
    await store.mark_read(already.id)
    await store.create(_create(user_id="u2"))

    assert await store.mark_all_read("u1") == 3
    assert await store.unread_count("u1") == 0
    assert await store.unread_count("u2") == 1
    assert await store.mark_all_read("u1") == 0


@pytest.mark.asyncio
async def test_mark_clicked_also_reads(store):
    record = await store.create(_create())

    clicked = await store.mark_clicked(record.id)
    again = await store.mark_clicked(record.id)

    assert clicked.is_read is True
    assert clicked.clicked_at is not None
    assert again.clicked_at == clicked.clicked_at
    with pytest.raises(NotificationNotFoundError):
        await store.mark_clicked("missing")


@pytest.mark.asyncio
async def test_delete(store):
    record = await store.create(_create())

    assert await store.delete(record.id) is True
    assert await store.delete(record.id) is False
    assert await store.delete("never-existed") is False
    assert await store.get(record.id) is None


@pytest.mark.asyncio
async def test_settings_round_trip(store):
    assert await store.get_settings("u1") is None

    settings = NotificationSettings(enable_email=False)
    settings.categories[NotificationType.REVIEW].push = False
    await store.save_settings("u1", settings)

    loaded = await store.get_settings("u1")
    assert loaded.enable_email is False
    assert loaded.categories[NotificationType.REVIEW].push is False
    assert loaded.categories[NotificationType.MARKETING].push is False


@pytest.mark.asyncio
async def test_device_token_upsert_is_keyed_by_user_and_token(store):
    first = await store.upsert_device_token("u1", "tok-1", DevicePlatform.IOS)
    again = await store.upsert_device_token("u1", "tok-1", DevicePlatform.IOS)
    await store.upsert_device_token("u1", "tok-2", DevicePlatform.ANDROID)
    await store.upsert_device_token("u2", "tok-1", DevicePlatform.WEB)

    devices = await store.list_device_tokens("u1")
    assert [d.token for d in devices] == ["tok-1", "tok-2"]
    assert again.id == first.id
    assert again.last_used_at > first.last_used_at
