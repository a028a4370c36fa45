"""
Failure Injection Tests.

Validates resilience against transport and dependency failures.
"""

import pytest
from backend.app.core.reliability import CircuitBreaker, CircuitOpenError
from backend.app.models.enums import Channel, DevicePlatform, NotificationType
from backend.app.domain.notifications.push_gateway import PushGateway


@pytest.mark.asyncio
async def test_circuit_breaker_activates():
    """Test that circuit breaker opens after threshold failures."""
    cb = CircuitBreaker("test", failure_threshold=2, reset_timeout=1)

    async def failing_func():
        raise ValueError("Boom")

    # Fail 1
    with pytest.raises(ValueError):
        await cb.call(failing_func)

    # Fail 2 (Threshold reached)
    with pytest.raises(ValueError):
        await cb.call(failing_func)

    # Call 3 (Should be CircuitOpenError)
    with pytest.raises(CircuitOpenError):
        await cb.call(failing_func)


@pytest.mark.asyncio
async def test_circuit_breaker_half_open_recovers():
    cb = CircuitBreaker("test", failure_threshold=1, reset_timeout=10)

    async def failing_func():
        raise ValueError("Boom")

    async def ok_func():
        return "ok"

    with pytest.raises(ValueError):
        await cb.call(failing_func)
    assert cb.state == "OPEN"

    # Pretend the reset timeout elapsed
    cb.last_failure_time -= 11
    assert await cb.call(ok_func) == "ok"
    assert cb.state == "CLOSED"
    assert cb.failures == 0


@pytest.mark.asyncio
async def test_open_push_circuit_skips_devices(memory_store, fcm, apns):
    gateway = PushGateway(
        memory_store, fcm, apns, fcm_breaker=CircuitBreaker("fcm", failure_threshold=1, reset_timeout=60)
    )
    await gateway.register_device_token("u1", "tok", DevicePlatform.ANDROID)
    fcm.configure(should_succeed=False)
    await gateway.send("u1", "t", "b", NotificationType.MESSAGE)

    fcm.configure(should_succeed=True)
    result = await gateway.send("u1", "t", "b", NotificationType.MESSAGE)

    assert result.delivered is False
    assert result.attempts[0].error == "circuit_open"
    assert fcm.sent == []


@pytest.mark.asyncio
async def test_unexpected_transport_error_is_contained(engine, fcm, mocker):
    await engine.push.register_device_token("u1", "tok", DevicePlatform.WEB)
    send = mocker.patch.object(fcm, "send", side_effect=KeyError("registration_ids"))

    record = await engine.dispatcher.dispatch("u1", NotificationType.SYSTEM, "x", "y")

    assert await engine.store.get(record.id) is not None
    outcomes = await engine.store.list_outcomes(record.created_at, record.created_at, "u1")
    push = [o for o in outcomes if o.channel == Channel.PUSH]
    assert push[0].delivered is False
    assert push[0].error == "KeyError"
    send.assert_awaited_once()


@pytest.mark.asyncio
async def test_health_degrades_when_redis_is_down(client, redis_client):
    await redis_client.aclose()

    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "degraded"
    assert response.json()["redis"] == "down"
