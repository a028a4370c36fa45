"""
Email Gateway.

Template-based email dispatch plus the per-category email opt-in view over
the user's notification settings.
"""

import asyncio
import logging
from typing import Any, Dict, List, Mapping, Optional

from backend.app.core.exceptions import ChannelUnavailableError, UnmappedTemplateError
from backend.app.core.reliability import CircuitBreaker, CircuitOpenError
from backend.app.domain.notifications.email_transports import EmailTransport
from backend.app.domain.notifications.preference_resolver import PreferenceResolver
from backend.app.models.enums import NotificationType
from backend.app.schemas.email import EmailTemplate
from backend.app.schemas.settings import CategoryPreferenceUpdate, NotificationSettingsUpdate

logger = logging.getLogger(__name__)


EMAIL_TEMPLATES: List[EmailTemplate] = [
    EmailTemplate(
        id="welcome",
        name="Welcome email",
        subject="Welcome to echo!",
        description="Sent to newly registered users",
    ),
    EmailTemplate(
        id="new-message",
        name="New message",
        subject="[echo] You have a new message",
        description="Sent when a new message arrives",
    ),
    EmailTemplate(
        id="reservation-confirmation",
        name="Reservation confirmed",
        subject="[echo] Your reservation is confirmed",
        description="Sent when a reservation is confirmed",
    ),
    EmailTemplate(
        id="reservation-reminder",
        name="Reservation reminder",
        subject="[echo] Your experience is tomorrow",
        description="Sent the day before a reservation",
    ),
    EmailTemplate(
        id="new-review",
        name="New review",
        subject="[echo] A new review was posted",
        description="Sent when a review is posted",
    ),
    EmailTemplate(
        id="payment-confirmation",
        name="Payment completed",
        subject="[echo] Your payment is complete",
        description="Sent when a payment is processed",
    ),
]

# Marketing is deliberately absent: campaigns must name their template.
DEFAULT_TEMPLATE_MAPPING: Dict[NotificationType, str] = {
    NotificationType.MESSAGE: "new-message",
    NotificationType.RESERVATION: "reservation-confirmation",
    NotificationType.REVIEW: "new-review",
    NotificationType.PAYMENT: "payment-confirmation",
    NotificationType.SYSTEM: "welcome",
}


class EmailGateway:

    def __init__(
        self,
        preferences: PreferenceResolver,
        transport: EmailTransport,
        timeout: float = 10.0,
        breaker: Optional[CircuitBreaker] = None,
        template_overrides: Optional[Mapping[str, str]] = None,
        templates: Optional[List[EmailTemplate]] = None,
    ):
        self.preferences = preferences
        self.transport = transport
        self.timeout = timeout
        self.breaker = breaker or CircuitBreaker("email")
        self.templates = {t.id: t for t in (templates or EMAIL_TEMPLATES)}
        self.mapping = dict(DEFAULT_TEMPLATE_MAPPING)
        for type_value, template_id in (template_overrides or {}).items():
            self.mapping[NotificationType(type_value)] = template_id

    def list_templates(self) -> List[EmailTemplate]:
        return list(self.templates.values())

    def template_for(self, type: NotificationType, explicit: Optional[str] = None) -> str:
        """
        Template id for a notification type.

        Raises:
            UnmappedTemplateError: no explicit template and no mapping for the type
        """
        if explicit:
            return explicit
        template_id = self.mapping.get(NotificationType(type))
        if template_id is None:
            raise UnmappedTemplateError(
                f"No email template mapped for notification type '{NotificationType(type).value}'",
                notification_type=NotificationType(type).value,
            )
        return template_id

    async def send_templated(self, user_id: str, template_id: str, data: Dict[str, Any]) -> bool:
        """
        Send one templated email.

        Raises:
            UnmappedTemplateError: unknown template id
            ChannelUnavailableError: transport failure, timeout or open circuit
        """
        template = self.templates.get(template_id)
        if template is None:
            raise UnmappedTemplateError(f"Unknown email template '{template_id}'", template_id=template_id)
        try:
            await asyncio.wait_for(
                self.breaker.call(self.transport.send, user_id, template, data),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            self.breaker.record_failure()
            raise ChannelUnavailableError("email", "timeout")
        except CircuitOpenError:
            raise ChannelUnavailableError("email", "circuit_open")
        logger.info("Sent '%s' email to user %s", template_id, user_id)
        return True

    async def send_notification_email(
        self,
        user_id: str,
        type: NotificationType,
        title: str,
        message: str,
        data: Optional[Dict[str, Any]] = None,
        template_id: Optional[str] = None,
    ) -> bool:
        """Resolve the template for the type and send with title/message merged into data."""
        resolved = self.template_for(type, template_id)
        return await self.send_templated(user_id, resolved, {**(data or {}), "title": title, "message": message})

    async def get_preferences(self, user_id: str) -> Dict[NotificationType, bool]:
        settings = await self.preferences.get_settings(user_id)
        return {t: settings.categories[t].email for t in NotificationType}

    async def update_preferences(
        self, user_id: str, partial: Mapping[NotificationType, bool]
    ) -> Dict[NotificationType, bool]:
        """Key-wise merge: unspecified categories keep their email flag."""
        update = NotificationSettingsUpdate(
            categories={NotificationType(t): CategoryPreferenceUpdate(email=v) for t, v in partial.items()}
        )
        settings = await self.preferences.update_settings(user_id, update)
        return {t: settings.categories[t].email for t in NotificationType}
