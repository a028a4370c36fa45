"""
Concurrency Tests.

Validates that concurrent dispatches and mutations keep the store consistent.
"""

import pytest
import asyncio
from backend.app.domain.notifications.engine import build_notification_engine
from backend.app.domain.notifications.preference_resolver import PreferenceResolver
from backend.app.models.enums import DevicePlatform, NotificationType
from backend.app.schemas.notification import NotificationCreate
from backend.app.schemas.settings import CategoryPreferenceUpdate, NotificationSettings, NotificationSettingsUpdate


def _note(title, user_id="u1"):
    return NotificationCreate(user_id=user_id, type=NotificationType.SYSTEM, title=title, message="m")


@pytest.mark.asyncio
async def test_concurrent_creates_keep_newest_first_order(memory_store):
    """Concurrent creates get distinct, strictly ordered created_at values."""
    records = await asyncio.gather(*(memory_store.create(_note(str(i))) for i in range(50)))

    listed = await memory_store.list("u1")
    assert len(listed) == 50
    assert len({r.created_at for r in listed}) == 50
    assert all(a.created_at > b.created_at for a, b in zip(listed, listed[1:]))
    assert {r.id for r in records} == {r.id for r in listed}


@pytest.mark.asyncio
async def test_mark_all_read_does_not_touch_records_created_after_it(memory_store):
    for i in range(5):
        await memory_store.create(_note(f"before-{i}"))

    count, late = await asyncio.gather(
        memory_store.mark_all_read("u1"),
        memory_store.create(_note("late")),
    )

    assert count == 5
    late_record = await memory_store.get(late.id)
    assert late_record.is_read is False
    assert await memory_store.unread_count("u1") == 1


@pytest.mark.asyncio
async def test_concurrent_dispatches_to_many_devices(engine, fcm, apns):
    for i in range(3):
        await engine.push.register_device_token("u1", f"android-{i}", DevicePlatform.ANDROID)
    await engine.push.register_device_token("u1", "ios-0", DevicePlatform.IOS)

    records = await asyncio.gather(*(
        engine.dispatcher.dispatch("u1", NotificationType.MESSAGE, f"m{i}", "body", {"sender_id": "s"})
        for i in range(10)
    ))

    assert len(fcm.sent) == 30
    assert len(apns.sent) == 10
    assert len(await engine.store.list("u1")) == 10
    assert len({r.id for r in records}) == 10


@pytest.mark.asyncio
async def test_concurrent_device_registration_is_idempotent(memory_store):
    await asyncio.gather(*(
        memory_store.upsert_device_token("u1", "same-token", DevicePlatform.IOS) for _ in range(20)
    ))

    assert len(await memory_store.list_device_tokens("u1")) == 1


@pytest.mark.asyncio
async def test_concurrent_first_settings_access_seeds_once(store):
    resolver = PreferenceResolver(store)

    results = await asyncio.gather(*(resolver.get_settings("new-user") for _ in range(5)))

    assert all(settings == NotificationSettings() for settings in results)
    assert await store.get_settings("new-user") == NotificationSettings()


@pytest.mark.asyncio
async def test_concurrent_partial_settings_updates_keep_every_field(store):
    resolver = PreferenceResolver(store)

    await asyncio.gather(
        resolver.update_settings("u1", NotificationSettingsUpdate(enable_email=False)),
        resolver.update_settings("u1", NotificationSettingsUpdate(mute_all=True)),
        resolver.update_settings("u1", NotificationSettingsUpdate(
            categories={NotificationType.REVIEW: CategoryPreferenceUpdate(push=False)}
        )),
    )

    settings = await store.get_settings("u1")
    assert settings.enable_email is False
    assert settings.mute_all is True
    assert settings.categories[NotificationType.REVIEW].push is False


@pytest.mark.asyncio
async def test_concurrent_dispatches_for_new_user_on_database_store(
    sql_store, test_settings, fcm, apns, email_transport
):
    engine = await build_notification_engine(
        test_settings, store=sql_store, fcm=fcm, apns=apns, email_transport=email_transport
    )

    records = await asyncio.gather(*(
        engine.dispatcher.dispatch("fresh", NotificationType.SYSTEM, f"n{i}", "body") for i in range(3)
    ))

    assert {r.id for r in records} == {r.id for r in await sql_store.list("fresh")}
    assert len(email_transport.sent) == 3
