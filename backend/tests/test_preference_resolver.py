"""
Preference Resolver Tests.
"""

import itertools

import pytest

from backend.app.domain.notifications.preference_resolver import PreferenceResolver
from backend.app.models.enums import Channel, NotificationType
from backend.app.schemas.settings import (
    CategoryPreferenceUpdate,
    NotificationSettings,
    NotificationSettingsUpdate,
)


def test_defaults_enable_everything_but_marketing_push():
    settings = NotificationSettings()

    for type, channel in itertools.product(NotificationType, Channel):
        expected = not (type == NotificationType.MARKETING and channel == Channel.PUSH)
        assert PreferenceResolver.is_eligible(settings, type, channel) is expected


def test_mute_all_overrides_everything():
    settings = NotificationSettings(mute_all=True)

    for type, channel in itertools.product(NotificationType, Channel):
        assert PreferenceResolver.is_eligible(settings, type, channel) is False


def test_master_switch_and_category_are_conjunctive():
    settings = NotificationSettings(enable_email=False)
    settings.categories[NotificationType.REVIEW].push = False

    assert PreferenceResolver.is_eligible(settings, NotificationType.MESSAGE, Channel.EMAIL) is False
    assert PreferenceResolver.is_eligible(settings, NotificationType.REVIEW, Channel.PUSH) is False
    assert PreferenceResolver.is_eligible(settings, NotificationType.MESSAGE, Channel.PUSH) is True
    assert PreferenceResolver.eligible_channels(settings, NotificationType.REVIEW) == {Channel.IN_APP}


@pytest.mark.asyncio
async def test_get_settings_seeds_defaults(memory_store):
    resolver = PreferenceResolver(memory_store)

    settings = await resolver.get_settings("new-user")

    assert settings == NotificationSettings()
    assert await memory_store.get_settings("new-user") == settings


@pytest.mark.asyncio
async def test_update_merges_field_wise_and_key_wise(memory_store):
    resolver = PreferenceResolver(memory_store)
    await resolver.update_settings("u1", NotificationSettingsUpdate(
        categories={NotificationType.MESSAGE: CategoryPreferenceUpdate(email=False)}
    ))

    merged = await resolver.update_settings("u1", NotificationSettingsUpdate(
        enable_push=False,
        categories={NotificationType.PAYMENT: CategoryPreferenceUpdate(push=False)},
    ))

    assert merged.enable_push is False
    assert merged.enable_email is True
    # earlier category change survives, untouched flags keep their values
    assert merged.categories[NotificationType.MESSAGE].email is False
    assert merged.categories[NotificationType.MESSAGE].push is True
    assert merged.categories[NotificationType.PAYMENT].push is False
    assert merged.categories[NotificationType.PAYMENT].email is True
    assert merged.categories[NotificationType.MARKETING].push is False


@pytest.mark.asyncio
async def test_reset_restores_defaults(memory_store):
    resolver = PreferenceResolver(memory_store)
    await resolver.update_settings("u1", NotificationSettingsUpdate(mute_all=True))

    reset = await resolver.reset_settings("u1")

    assert reset == NotificationSettings()
    assert (await resolver.get_settings("u1")).mute_all is False
