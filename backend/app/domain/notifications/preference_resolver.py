"""
Preference Resolver.

Decides whether a (category, channel) pair may deliver for a user:

    eligible = not mute_all and master_switch[channel] and categories[type][channel]

is_eligible only reads its inputs, so concurrent dispatch fan-outs call it
without locking.
"""

import logging
from typing import Set

from backend.app.domain.notifications.store import NotificationStore
from backend.app.models.enums import Channel, NotificationType
from backend.app.schemas.settings import NotificationSettings, NotificationSettingsUpdate

logger = logging.getLogger(__name__)


class PreferenceResolver:

    def __init__(self, store: NotificationStore):
        self.store = store

    @staticmethod
    def is_eligible(settings: NotificationSettings, type: NotificationType, channel: Channel) -> bool:
        if settings.mute_all:
            return False
        if not settings.master_switch(channel):
            return False
        return settings.categories[NotificationType(type)].allows(channel)

    @staticmethod
    def eligible_channels(settings: NotificationSettings, type: NotificationType) -> Set[Channel]:
        return {c for c in Channel if PreferenceResolver.is_eligible(settings, type, c)}

    @staticmethod
    def merge(current: NotificationSettings, partial: NotificationSettingsUpdate) -> NotificationSettings:
        """
        Field-wise merge for the master switches, key-wise for categories.

        Within a category only the supplied channel flags change.
        """
        merged = current.model_copy(deep=True)
        for field in ("enable_push", "enable_email", "enable_in_app", "mute_all"):
            value = getattr(partial, field)
            if value is not None:
                setattr(merged, field, value)
        for notification_type, update in partial.categories.items():
            category = merged.categories[notification_type]
            changes = update.model_dump(exclude_none=True)
            merged.categories[notification_type] = category.model_copy(update=changes)
        return merged

    async def get_settings(self, user_id: str) -> NotificationSettings:
        """Stored settings, or system defaults persisted on first access."""
        return await self.store.get_or_create_settings(user_id, NotificationSettings())

    async def update_settings(self, user_id: str, partial: NotificationSettingsUpdate) -> NotificationSettings:
        saved = await self.store.update_settings(
            user_id, lambda current: self.merge(current, partial), NotificationSettings()
        )
        logger.info("Notification settings updated for user %s", user_id)
        return saved

    async def reset_settings(self, user_id: str) -> NotificationSettings:
        """Settings are never deleted; resetting restores the defaults."""
        return await self.store.save_settings(user_id, NotificationSettings())
