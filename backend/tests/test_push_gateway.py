"""
Push Gateway Tests.

Payload shapes, platform routing and partial-failure fan-out.
"""

import pytest

from backend.app.domain.notifications.push_gateway import PushGateway, build_apns_payload, build_fcm_payload
from backend.app.models.enums import DevicePlatform, NotificationType
from backend.app.schemas.notification import PaymentData


def test_fcm_payload_shape():
    payload = build_fcm_payload("tok", "Title", "Body", NotificationType.MESSAGE, {"sender_id": "s1"})

    assert payload == {
        "notification": {
            "title": "Title",
            "body": "Body",
            "icon": "notification_icon",
            "clickAction": "OPEN_ACTIVITY_1",
        },
        "data": {"sender_id": "s1", "notificationType": "message"},
        "token": "tok",
    }


def test_apns_payload_shape():
    payload = build_apns_payload("tok", "Title", "Body", NotificationType.RESERVATION, {"reservation_id": "r1"})

    assert payload == {
        "aps": {
            "alert": {"title": "Title", "body": "Body"},
            "badge": 1,
            "sound": "default",
            "content-available": 1,
        },
        "data": {"reservation_id": "r1", "notificationType": "reservation"},
        "token": "tok",
    }


@pytest.fixture
def gateway(memory_store, fcm, apns):
    return PushGateway(memory_store, fcm, apns, timeout=0.2)


@pytest.mark.asyncio
async def test_no_devices_is_delivered_with_zero_count(gateway, fcm, apns):
    result = await gateway.send("u1", "t", "b", NotificationType.SYSTEM)

    assert result.delivered is True
    assert result.device_count == 0
    assert fcm.sent == [] and apns.sent == []


@pytest.mark.asyncio
async def test_routes_by_platform_and_stringifies_data(gateway, fcm, apns):
    await gateway.register_device_token("u1", "ios-tok", DevicePlatform.IOS)
    await gateway.register_device_token("u1", "android-tok", DevicePlatform.ANDROID)
    await gateway.register_device_token("u1", "web-tok", DevicePlatform.WEB)

    data = PaymentData(payment_id="p1", amount=120.5, currency="JPY", payment_status="completed")
    result = await gateway.send("u1", "Paid", "Thanks", NotificationType.PAYMENT, data)

    assert result.delivered is True
    assert result.device_count == 3
    assert [p["token"] for p in apns.sent] == ["ios-tok"]
    assert sorted(p["token"] for p in fcm.sent) == ["android-tok", "web-tok"]
    assert apns.sent[0]["data"]["amount"] == "120.5"
    assert "kind" not in fcm.sent[0]["data"]


@pytest.mark.asyncio
async def test_one_failing_device_does_not_stop_the_others(gateway, fcm):
    await gateway.register_device_token("u1", "good", DevicePlatform.ANDROID)
    await gateway.register_device_token("u1", "bad", DevicePlatform.ANDROID)
    fcm.configure(failing_tokens={"bad"}, failure_reason="NotRegistered")

    result = await gateway.send("u1", "t", "b", NotificationType.MESSAGE)

    assert result.delivered is True
    assert result.device_count == 1
    failed = [a for a in result.attempts if not a.delivered]
    assert len(failed) == 1 and failed[0].error == "NotRegistered"


@pytest.mark.asyncio
async def test_all_devices_failing_is_not_delivered(gateway, fcm):
    await gateway.register_device_token("u1", "a", DevicePlatform.WEB)
    fcm.configure(should_succeed=False)

    result = await gateway.send("u1", "t", "b", NotificationType.MESSAGE)

    assert result.delivered is False
    assert result.device_count == 0


@pytest.mark.asyncio
async def test_slow_device_times_out_independently(gateway, fcm, apns):
    await gateway.register_device_token("u1", "slow-ios", DevicePlatform.IOS)
    await gateway.register_device_token("u1", "fast-android", DevicePlatform.ANDROID)
    apns.configure(delay=5)

    result = await gateway.send("u1", "t", "b", NotificationType.MESSAGE)

    assert result.device_count == 1
    by_platform = {a.platform: a for a in result.attempts}
    assert by_platform[DevicePlatform.IOS].error == "timeout"
    assert by_platform[DevicePlatform.ANDROID].delivered is True


@pytest.mark.asyncio
async def test_register_is_idempotent(gateway, memory_store):
    assert await gateway.register_device_token("u1", "tok", DevicePlatform.IOS) is True
    assert await gateway.register_device_token("u1", "tok", DevicePlatform.IOS) is True

    assert len(await memory_store.list_device_tokens("u1")) == 1
