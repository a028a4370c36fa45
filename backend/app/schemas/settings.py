"""
Notification Settings Schemas.
"""

from typing import Dict, Optional

from pydantic import BaseModel, Field, model_validator

from backend.app.models.enums import Channel, NotificationType


class CategoryPreference(BaseModel):
    push: bool = True
    email: bool = True
    in_app: bool = True

    def allows(self, channel: Channel) -> bool:
        if channel == Channel.PUSH:
            return self.push
        if channel == Channel.EMAIL:
            return self.email
        return self.in_app


class CategoryPreferenceUpdate(BaseModel):
    push: Optional[bool] = None
    email: Optional[bool] = None
    in_app: Optional[bool] = None


def default_categories() -> Dict[NotificationType, CategoryPreference]:
    categories = {t: CategoryPreference() for t in NotificationType}
    categories[NotificationType.MARKETING] = CategoryPreference(push=False, email=True, in_app=True)
    return categories


class NotificationSettings(BaseModel):
    enable_push: bool = True
    enable_email: bool = True
    enable_in_app: bool = True
    mute_all: bool = False
    categories: Dict[NotificationType, CategoryPreference] = Field(default_factory=default_categories)

    @model_validator(mode="after")
    def fill_missing_categories(self):
        # Every category is always present so eligibility never probes a missing key.
        defaults = default_categories()
        for notification_type in NotificationType:
            if notification_type not in self.categories:
                self.categories[notification_type] = defaults[notification_type]
        return self

    def master_switch(self, channel: Channel) -> bool:
        if channel == Channel.PUSH:
            return self.enable_push
        if channel == Channel.EMAIL:
            return self.enable_email
        return self.enable_in_app


class NotificationSettingsUpdate(BaseModel):
    """Partial update: omitted switches and categories keep their values."""
    enable_push: Optional[bool] = None
    enable_email: Optional[bool] = None
    enable_in_app: Optional[bool] = None
    mute_all: Optional[bool] = None
    categories: Dict[NotificationType, CategoryPreferenceUpdate] = Field(default_factory=dict)


class EmailPreferencesUpdate(BaseModel):
    preferences: Dict[NotificationType, bool]
