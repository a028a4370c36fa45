"""
Push Gateway.

Resolves a user's registered devices and fans one notification out to all
of them concurrently. Android and Web devices get FCM-shaped payloads, iOS
devices APNs-shaped payloads. One device failing or timing out never stops
the others.
"""

import asyncio
import logging
from typing import Any, Dict, Optional

from pydantic import BaseModel

from backend.app.core.exceptions import ChannelUnavailableError
from backend.app.core.reliability import CircuitBreaker, CircuitOpenError
from backend.app.domain.notifications.push_transports import PushTransport
from backend.app.domain.notifications.store import NotificationStore
from backend.app.models.enums import DevicePlatform, NotificationType
from backend.app.schemas.device import DeviceDelivery, DeviceTokenRecord, PushResult
from backend.app.schemas.notification import stringify_data

logger = logging.getLogger(__name__)


def build_fcm_payload(
    token: str,
    title: str,
    body: str,
    type: NotificationType,
    data: Dict[str, str],
    icon: str = "notification_icon",
    click_action: str = "OPEN_ACTIVITY_1",
) -> Dict[str, Any]:
    return {
        "notification": {
            "title": title,
            "body": body,
            "icon": icon,
            "clickAction": click_action,
        },
        "data": {
            **data,
            "notificationType": NotificationType(type).value,
        },
        "token": token,
    }


def build_apns_payload(
    token: str,
    title: str,
    body: str,
    type: NotificationType,
    data: Dict[str, str],
    badge: int = 1,
) -> Dict[str, Any]:
    return {
        "aps": {
            "alert": {
                "title": title,
                "body": body,
            },
            "badge": badge,
            "sound": "default",
            "content-available": 1,
        },
        "data": {
            **data,
            "notificationType": NotificationType(type).value,
        },
        "token": token,
    }


class PushGateway:

    def __init__(
        self,
        store: NotificationStore,
        fcm: PushTransport,
        apns: PushTransport,
        timeout: float = 10.0,
        fcm_breaker: Optional[CircuitBreaker] = None,
        apns_breaker: Optional[CircuitBreaker] = None,
        icon: str = "notification_icon",
        click_action: str = "OPEN_ACTIVITY_1",
    ):
        self.store = store
        self.fcm = fcm
        self.apns = apns
        self.timeout = timeout
        self.fcm_breaker = fcm_breaker or CircuitBreaker("fcm")
        self.apns_breaker = apns_breaker or CircuitBreaker("apns")
        self.icon = icon
        self.click_action = click_action

    async def register_device_token(self, user_id: str, token: str, platform: DevicePlatform) -> bool:
        """Idempotent upsert keyed by (user_id, token)."""
        device = await self.store.upsert_device_token(user_id, token, DevicePlatform(platform))
        logger.info("Registered %s device %s for user %s", device.platform.value, device.id, user_id)
        return True

    async def send(
        self,
        user_id: str,
        title: str,
        body: str,
        type: NotificationType,
        data: Optional[BaseModel] = None,
    ) -> PushResult:
        """
        Send to every device of the user.

        Returns:
            PushResult with device_count = devices that accepted the push and
            delivered = device_count > 0. A user without devices yields
            delivered=True, device_count=0.
        """
        devices = await self.store.list_device_tokens(user_id)
        if not devices:
            logger.info("No device tokens found for user %s", user_id)
            return PushResult(delivered=True, device_count=0)

        flat = stringify_data(data)
        attempts = await asyncio.gather(
            *(self._send_to_device(device, title, body, type, flat) for device in devices)
        )

        succeeded = [a.device_id for a in attempts if a.delivered]
        if succeeded:
            await self.store.touch_device_tokens(succeeded)

        return PushResult(
            delivered=len(succeeded) > 0,
            device_count=len(succeeded),
            attempts=list(attempts),
        )

    def _route(self, device: DeviceTokenRecord, title: str, body: str, type: NotificationType, data: Dict[str, str]):
        if device.platform == DevicePlatform.IOS:
            payload = build_apns_payload(device.token, title, body, type, data)
            return self.apns, self.apns_breaker, payload
        payload = build_fcm_payload(
            device.token, title, body, type, data, icon=self.icon, click_action=self.click_action
        )
        return self.fcm, self.fcm_breaker, payload

    async def _send_to_device(
        self,
        device: DeviceTokenRecord,
        title: str,
        body: str,
        type: NotificationType,
        data: Dict[str, str],
    ) -> DeviceDelivery:
        transport, breaker, payload = self._route(device, title, body, type, data)
        try:
            await asyncio.wait_for(breaker.call(transport.send, payload), timeout=self.timeout)
        except asyncio.TimeoutError:
            breaker.record_failure()
            logger.warning("Push to device %s timed out after %ss", device.id, self.timeout)
            return DeviceDelivery(device_id=device.id, platform=device.platform, delivered=False, error="timeout")
        except CircuitOpenError as e:
            logger.warning("Push to device %s skipped: %s", device.id, e)
            return DeviceDelivery(device_id=device.id, platform=device.platform, delivered=False, error="circuit_open")
        except ChannelUnavailableError as e:
            logger.warning("Push to device %s failed: %s", device.id, e.reason)
            return DeviceDelivery(device_id=device.id, platform=device.platform, delivered=False, error=e.reason[:255])
        except Exception as e:
            logger.exception("Push to device %s raised unexpectedly", device.id)
            return DeviceDelivery(
                device_id=device.id, platform=device.platform, delivered=False, error=e.__class__.__name__
            )
        return DeviceDelivery(device_id=device.id, platform=device.platform, delivered=True)