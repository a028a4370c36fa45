"""
Email transports.

The engine does not render mail itself: it hands a template id plus data to
an email delivery API, which resolves the user's address and renders.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import httpx

from backend.app.core.config import Settings
from backend.app.core.exceptions import ChannelUnavailableError
from backend.app.schemas.email import EmailTemplate

logger = logging.getLogger(__name__)


class EmailTransport(ABC):

    name = "email"

    @abstractmethod
    async def send(self, user_id: str, template: EmailTemplate, data: Dict[str, Any]) -> None:
        """
        Raises:
            ChannelUnavailableError: delivery API rejected or unreachable
        """

    async def aclose(self) -> None:
        pass


class RecordingEmailTransport(EmailTransport):
    """Email transport that records messages in memory for test assertions."""

    name = "email-recording"

    def __init__(self):
        self.sent: List[Dict[str, Any]] = []
        self.should_succeed = True
        self.failure_reason = "Email delivery failed"

    def configure(self, should_succeed: bool = True, failure_reason: str = "Email delivery failed"):
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason

    async def send(self, user_id: str, template: EmailTemplate, data: Dict[str, Any]) -> None:
        if not self.should_succeed:
            raise ChannelUnavailableError("email", self.failure_reason)
        self.sent.append({
            "user_id": user_id,
            "template_id": template.id,
            "subject": template.subject,
            "data": data,
        })

    def reset(self):
        self.sent.clear()
        self.configure()


class HttpEmailTransport(EmailTransport):
    """Posts templated email requests to the delivery API."""

    name = "email-api"

    def __init__(self, settings: Settings, client: Optional[httpx.AsyncClient] = None):
        self.url = settings.email_api_url
        self.api_key = settings.email_api_key
        self._client = client or httpx.AsyncClient(timeout=settings.channel_timeout_seconds)

    async def send(self, user_id: str, template: EmailTemplate, data: Dict[str, Any]) -> None:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        body = {
            "userId": user_id,
            "templateId": template.id,
            "subject": template.subject,
            "data": data,
        }
        try:
            resp = await self._client.post(self.url, json=body, headers=headers)
        except httpx.HTTPError as e:
            raise ChannelUnavailableError("email", f"Email API request failed: {e}")
        if resp.status_code >= 300:
            logger.warning("Email API returned %s for user %s: %s", resp.status_code, user_id, resp.text)
            raise ChannelUnavailableError("email", f"Email API returned {resp.status_code}")
        logger.info("Email '%s' queued for user %s", template.id, user_id)

    async def aclose(self) -> None:
        await self._client.aclose()
