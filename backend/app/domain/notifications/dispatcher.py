"""
Delivery Dispatcher.

Entry point for producer subsystems. A dispatch always persists the record
first; push and email then run concurrently and their failures only show up
as undelivered outcomes, never as a failed dispatch.
"""

import asyncio
import logging
import uuid
from typing import Any, List, Optional

from backend.app.core.exceptions import ChannelUnavailableError, UnmappedTemplateError
from backend.app.domain.notifications.email_gateway import EmailGateway
from backend.app.domain.notifications.preference_resolver import PreferenceResolver
from backend.app.domain.notifications.push_gateway import PushGateway
from backend.app.domain.notifications.store import NotificationStore
from backend.app.models.enums import Channel, NotificationType
from backend.app.schemas.analytics import DeliveryOutcome
from backend.app.schemas.device import PushResult
from backend.app.schemas.notification import (
    MarketingData,
    NotificationCreate,
    NotificationRecord,
    parse_notification_data,
)
from backend.app.schemas.settings import NotificationSettings

logger = logging.getLogger(__name__)


class DeliveryDispatcher:

    def __init__(
        self,
        store: NotificationStore,
        preferences: PreferenceResolver,
        push: PushGateway,
        email: EmailGateway,
        timeout: float = 10.0,
    ):
        self.store = store
        self.preferences = preferences
        self.push = push
        self.email = email
        self.timeout = timeout

    async def dispatch(
        self,
        user_id: str,
        type: NotificationType,
        title: str,
        message: str,
        data: Any = None,
    ) -> NotificationRecord:
        """
        Persist a notification and deliver it on every eligible channel.

        Raises:
            NotificationValidationError: payload does not match the type
            Any store error: no record means no notification, so it propagates
        """
        type = NotificationType(type)
        payload = parse_notification_data(type, data)
        record = await self.store.create(
            NotificationCreate(user_id=user_id, type=type, title=title, message=message, data=payload)
        )
        settings = await self.preferences.get_settings(user_id)
        channels = PreferenceResolver.eligible_channels(settings, type)

        tasks = []
        if Channel.PUSH in channels:
            tasks.append(self._deliver_push(record))
        if Channel.EMAIL in channels:
            tasks.append(self._deliver_email(record))
        results = await asyncio.gather(*tasks)

        outcomes: List[DeliveryOutcome] = [o for channel_outcomes in results for o in channel_outcomes]
        outcomes.append(self._in_app_outcome(record, settings))
        try:
            await self.store.record_outcomes(outcomes)
        except Exception:
            # Record is already stored; outcomes are bookkeeping only
            logger.exception("Could not record delivery outcomes for notification %s", record.id)

        logger.info(
            "Dispatched %s notification %s to user %s",
            type.value, record.id, user_id,
            extra={
                "notification_id": record.id,
                "channels": sorted(c.value for c in channels),
                "delivered": sum(1 for o in outcomes if o.delivered),
                "attempted": len(outcomes),
            },
        )
        return record

    def _outcome(
        self,
        record: NotificationRecord,
        channel: Channel,
        delivered: bool,
        error: Optional[str] = None,
        platform=None,
    ) -> DeliveryOutcome:
        return DeliveryOutcome(
            id=str(uuid.uuid4()),
            notification_id=record.id,
            user_id=record.user_id,
            notification_type=record.type,
            channel=channel,
            platform=platform,
            delivered=delivered,
            error=error[:255] if error else None,
            created_at=record.created_at,
        )

    def _in_app_outcome(self, record: NotificationRecord, settings: NotificationSettings) -> DeliveryOutcome:
        # The record itself is the in-app delivery; ineligible users still get it stored.
        eligible = PreferenceResolver.is_eligible(settings, record.type, Channel.IN_APP)
        return self._outcome(
            record, Channel.IN_APP, delivered=eligible, error=None if eligible else "disabled"
        )

    async def _deliver_push(self, record: NotificationRecord) -> List[DeliveryOutcome]:
        try:
            # Per-device sends carry their own timeout; this bounds device lookup too.
            result: PushResult = await asyncio.wait_for(
                self.push.send(record.user_id, record.title, record.message, record.type, record.data),
                timeout=self.timeout * 2,
            )
        except asyncio.TimeoutError:
            logger.warning("Push for notification %s timed out", record.id)
            return [self._outcome(record, Channel.PUSH, delivered=False, error="timeout")]
        except Exception as e:
            logger.exception("Push for notification %s failed", record.id)
            return [self._outcome(record, Channel.PUSH, delivered=False, error=str(e) or e.__class__.__name__)]

        return [
            self._outcome(
                record, Channel.PUSH, delivered=attempt.delivered, error=attempt.error, platform=attempt.platform
            )
            for attempt in result.attempts
        ]

    async def _deliver_email(self, record: NotificationRecord) -> List[DeliveryOutcome]:
        explicit = record.data.template_id if isinstance(record.data, MarketingData) else None
        data = record.data.model_dump(exclude_none=True, exclude={"kind"}) if record.data else {}
        try:
            await self.email.send_notification_email(
                record.user_id, record.type, record.title, record.message, data, template_id=explicit
            )
        except UnmappedTemplateError as e:
            logger.error("Email for notification %s not sent: %s", record.id, e.message)
            return [self._outcome(record, Channel.EMAIL, delivered=False, error="unmapped_template")]
        except ChannelUnavailableError as e:
            logger.warning("Email for notification %s failed: %s", record.id, e.reason)
            return [self._outcome(record, Channel.EMAIL, delivered=False, error=e.reason)]
        except Exception as e:
            logger.exception("Email for notification %s failed", record.id)
            return [self._outcome(record, Channel.EMAIL, delivered=False, error=e.__class__.__name__)]
        return [self._outcome(record, Channel.EMAIL, delivered=True)]
