"""
Push transports.

A transport delivers one already-shaped payload to one device and raises
ChannelUnavailableError when the backend refuses it. FcmTransport and
ApnsTransport talk to the real services over httpx; RecordingPushTransport
keeps payloads in memory and is used when no credentials are configured.

Requires APNS_KEY_ID, APNS_TEAM_ID, APNS_BUNDLE_ID and APNS_KEY_P8 for iOS,
FCM_SERVER_KEY for Android/Web.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Set, Tuple

import httpx
from jose import jwt

from backend.app.core.config import Settings
from backend.app.core.exceptions import ChannelUnavailableError

logger = logging.getLogger(__name__)

# APNs host: sandbox for dev builds, production for release
APNS_SANDBOX = "https://api.sandbox.push.apple.com"
APNS_PRODUCTION = "https://api.push.apple.com"

# APNs accepts provider tokens issued within the last hour
_JWT_EXPIRY_SECONDS = 55 * 60


class PushTransport(ABC):

    name = "push"

    @abstractmethod
    async def send(self, payload: Dict[str, Any]) -> None:
        """
        Deliver one payload.

        Raises:
            ChannelUnavailableError: backend rejected or could not be reached
        """

    async def aclose(self) -> None:
        pass


class RecordingPushTransport(PushTransport):
    """Push transport that records payloads in memory for test assertions."""

    name = "push-recording"

    def __init__(self):
        self.sent: List[Dict[str, Any]] = []
        self.should_succeed = True
        self.failure_reason = "Push delivery failed"
        self.failing_tokens: Set[str] = set()
        self.delay: float = 0.0

    def configure(
        self,
        should_succeed: bool = True,
        failure_reason: str = "Push delivery failed",
        failing_tokens: Optional[Set[str]] = None,
        delay: float = 0.0,
    ):
        """Configure the fake transport behavior for testing."""
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason
        self.failing_tokens = set(failing_tokens or ())
        self.delay = delay

    async def send(self, payload: Dict[str, Any]) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        if not self.should_succeed or payload.get("token") in self.failing_tokens:
            raise ChannelUnavailableError("push", self.failure_reason)
        self.sent.append(payload)

    def reset(self):
        """Clear sent payloads (useful between tests)."""
        self.sent.clear()
        self.configure()


class FcmTransport(PushTransport):
    """Android and Web devices via Firebase Cloud Messaging."""

    name = "fcm"

    def __init__(self, settings: Settings, client: Optional[httpx.AsyncClient] = None):
        self.endpoint = settings.fcm_endpoint
        self.server_key = settings.fcm_server_key
        self._client = client or httpx.AsyncClient(timeout=settings.channel_timeout_seconds)

    async def send(self, payload: Dict[str, Any]) -> None:
        if not self.server_key:
            raise ChannelUnavailableError("push", "FCM not configured")
        try:
            resp = await self._client.post(
                self.endpoint,
                json=payload,
                headers={"Authorization": f"Bearer {self.server_key}"},
            )
        except httpx.HTTPError as e:
            raise ChannelUnavailableError("push", f"FCM request failed: {e}")
        if resp.status_code != 200:
            logger.warning("FCM returned %s for token %s...: %s", resp.status_code, payload["token"][:20], resp.text)
            raise ChannelUnavailableError("push", f"FCM returned {resp.status_code}")

    async def aclose(self) -> None:
        await self._client.aclose()


class ApnsTransport(PushTransport):
    """iOS devices via the Apple Push Notification service (HTTP/2, token auth)."""

    name = "apns"

    def __init__(self, settings: Settings, client: Optional[httpx.AsyncClient] = None):
        self.key_id = settings.apns_key_id
        self.team_id = settings.apns_team_id
        self.bundle_id = settings.apns_bundle_id
        self.key_p8 = settings.apns_key_p8
        self.base_url = APNS_SANDBOX if settings.apns_use_sandbox else APNS_PRODUCTION
        self._client = client or httpx.AsyncClient(http2=True, timeout=settings.channel_timeout_seconds)
        self._jwt_cache: Optional[Tuple[str, float]] = None

    def _provider_token(self) -> str:
        """Build and cache the ES256 provider token."""
        now = time.time()
        if self._jwt_cache and self._jwt_cache[1] > now:
            return self._jwt_cache[0]
        token = jwt.encode(
            {"iss": self.team_id, "iat": int(now)},
            self.key_p8,
            algorithm="ES256",
            headers={"kid": self.key_id},
        )
        self._jwt_cache = (token, now + _JWT_EXPIRY_SECONDS)
        return token

    async def send(self, payload: Dict[str, Any]) -> None:
        if not (self.key_id and self.team_id and self.bundle_id and self.key_p8):
            raise ChannelUnavailableError("push", "APNs not configured")
        body = {k: v for k, v in payload.items() if k != "token"}
        headers = {
            "authorization": f"bearer {self._provider_token()}",
            "apns-topic": self.bundle_id,
            "apns-push-type": "alert",
            "apns-priority": "10",
        }
        url = f"{self.base_url}/3/device/{payload['token']}"
        try:
            resp = await self._client.post(url, json=body, headers=headers)
        except httpx.HTTPError as e:
            raise ChannelUnavailableError("push", f"APNs request failed: {e}")
        if resp.status_code != 200:
            logger.warning("APNs returned %s for token %s...: %s", resp.status_code, payload["token"][:20], resp.text)
            raise ChannelUnavailableError("push", f"APNs returned {resp.status_code}")

    async def aclose(self) -> None:
        await self._client.aclose()
