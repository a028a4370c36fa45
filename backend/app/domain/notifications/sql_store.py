"""
SQLAlchemy Notification Store.

Durable adapter over the async ORM. Each operation runs in its own session
and commits before returning.
"""

import asyncio
import uuid
from datetime import datetime
from typing import Callable, List, Optional

from sqlalchemy import select, update, delete, func, desc
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker

from backend.app.core.exceptions import NotificationNotFoundError
from backend.app.domain.notifications.store import MonotonicClock, NotificationStore
from backend.app.models.delivery_outcome import DeliveryOutcomeRow
from backend.app.models.device_token import DeviceToken
from backend.app.models.enums import DevicePlatform
from backend.app.models.notification import Notification
from backend.app.models.notification_settings import NotificationSettingsRow
from backend.app.schemas.analytics import DeliveryOutcome
from backend.app.schemas.device import DeviceTokenRecord
from backend.app.schemas.notification import (
    NotificationCreate, NotificationFilter, NotificationRecord, as_utc, parse_notification_data
)
from backend.app.schemas.settings import CategoryPreference, NotificationSettings


def _record_from_row(row: Notification) -> NotificationRecord:
    return NotificationRecord(
        id=row.id,
        type=row.type,
        title=row.title,
        message=row.message,
        created_at=as_utc(row.created_at),
        is_read=row.is_read,
        user_id=row.user_id,
        data=parse_notification_data(row.type, row.data),
        read_at=as_utc(row.read_at) if row.read_at else None,
        clicked_at=as_utc(row.clicked_at) if row.clicked_at else None,
    )


def _device_from_row(row: DeviceToken) -> DeviceTokenRecord:
    return DeviceTokenRecord(
        id=row.id,
        user_id=row.user_id,
        token=row.token,
        platform=row.platform,
        created_at=as_utc(row.created_at),
        last_used_at=as_utc(row.last_used_at),
    )


def _settings_from_row(row: NotificationSettingsRow) -> NotificationSettings:
    return NotificationSettings(
        enable_push=row.enable_push,
        enable_email=row.enable_email,
        enable_in_app=row.enable_in_app,
        mute_all=row.mute_all,
        categories={k: CategoryPreference(**v) for k, v in (row.categories or {}).items()},
    )


def _fill_settings_row(row: NotificationSettingsRow, settings: NotificationSettings) -> None:
    row.enable_push = settings.enable_push
    row.enable_email = settings.enable_email
    row.enable_in_app = settings.enable_in_app
    row.mute_all = settings.mute_all
    row.categories = {t.value: pref.model_dump() for t, pref in settings.categories.items()}


def _outcome_from_row(row: DeliveryOutcomeRow) -> DeliveryOutcome:
    return DeliveryOutcome(
        id=row.id,
        notification_id=row.notification_id,
        user_id=row.user_id,
        notification_type=row.notification_type,
        channel=row.channel,
        platform=row.platform,
        delivered=row.delivered,
        error=row.error,
        created_at=as_utc(row.created_at),
    )


class SqlNotificationStore(NotificationStore):

    def __init__(
        self,
        session_factory: async_sessionmaker,
        engine: Optional[AsyncEngine] = None,
        clock: Optional[MonotonicClock] = None,
    ):
        super().__init__(clock)
        self._session_factory = session_factory
        self._engine = engine
        # Serialises settings writes within this process; row locks cover the rest
        self._settings_lock = asyncio.Lock()

    async def create(self, notification: NotificationCreate) -> NotificationRecord:
        created_at = self.clock.now()
        row = Notification(
            id=str(uuid.uuid4()),
            user_id=notification.user_id,
            type=notification.type,
            title=notification.title,
            message=notification.message,
            data=notification.data.model_dump(mode="json") if notification.data else None,
            is_read=notification.is_read,
            read_at=created_at if notification.is_read else None,
            created_at=created_at,
        )
        async with self._session_factory() as session:
            session.add(row)
            await session.commit()
        return _record_from_row(row)

    async def get(self, notification_id: str) -> Optional[NotificationRecord]:
        async with self._session_factory() as session:
            row = await session.get(Notification, notification_id)
            return _record_from_row(row) if row else None

    async def list(self, user_id: str, filter: Optional[NotificationFilter] = None) -> List[NotificationRecord]:
        filter = filter or NotificationFilter()
        query = select(Notification).where(Notification.user_id == user_id)

        if filter.types:
            query = query.where(Notification.type.in_(filter.types))
        if filter.read is not None:
            query = query.where(Notification.is_read == filter.read)
        if filter.start_date is not None:
            query = query.where(Notification.created_at >= filter.start_date)
        if filter.end_date is not None:
            query = query.where(Notification.created_at <= filter.end_date)

        query = query.order_by(desc(Notification.created_at))
        if filter.limit is not None:
            query = query.limit(filter.limit)

        async with self._session_factory() as session:
            result = await session.execute(query)
            return [_record_from_row(row) for row in result.scalars().all()]

    async def unread_count(self, user_id: str) -> int:
        query = select(func.count(Notification.id)).where(
            Notification.user_id == user_id,
            Notification.is_read == False  # noqa: E712
        )
        async with self._session_factory() as session:
            return (await session.execute(query)).scalar() or 0

    async def mark_read(self, notification_id: str) -> NotificationRecord:
        async with self._session_factory() as session:
            # Conditional update keeps the first read_at when two readers race
            await session.execute(
                update(Notification).where(
                    Notification.id == notification_id,
                    Notification.is_read == False  # noqa: E712
                ).values(is_read=True, read_at=self.clock.now())
            )
            await session.commit()
            row = await session.get(Notification, notification_id, populate_existing=True)
            if row is None:
                raise NotificationNotFoundError(notification_id)
            return _record_from_row(row)

    async def mark_all_read(self, user_id: str) -> int:
        now = self.clock.now()
        stmt = update(Notification).where(
            Notification.user_id == user_id,
            Notification.is_read == False,  # noqa: E712
            Notification.created_at <= now
        ).values(
            is_read=True,
            read_at=now
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            await session.commit()
            return result.rowcount or 0

    async def mark_clicked(self, notification_id: str) -> NotificationRecord:
        async with self._session_factory() as session:
            row = await session.get(Notification, notification_id, with_for_update=True)
            if row is None:
                raise NotificationNotFoundError(notification_id)
            now = self.clock.now()
            if row.clicked_at is None:
                row.clicked_at = now
            if not row.is_read:
                row.is_read = True
                row.read_at = now
            await session.commit()
            return _record_from_row(row)

    async def delete(self, notification_id: str) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(
                delete(Notification).where(Notification.id == notification_id)
            )
            await session.commit()
            return (result.rowcount or 0) > 0

    async def list_between(
        self, start: datetime, end: datetime, user_id: Optional[str] = None
    ) -> List[NotificationRecord]:
        query = select(Notification).where(
            Notification.created_at >= start,
            Notification.created_at <= end
        )
        if user_id is not None:
            query = query.where(Notification.user_id == user_id)
        async with self._session_factory() as session:
            result = await session.execute(query)
            return [_record_from_row(row) for row in result.scalars().all()]

    async def get_settings(self, user_id: str) -> Optional[NotificationSettings]:
        async with self._session_factory() as session:
            row = await session.get(NotificationSettingsRow, user_id)
            return _settings_from_row(row) if row else None

    async def save_settings(self, user_id: str, settings: NotificationSettings) -> NotificationSettings:
        return await self.update_settings(user_id, lambda current: settings, settings)

    async def get_or_create_settings(self, user_id: str, defaults: NotificationSettings) -> NotificationSettings:
        existing = await self.get_settings(user_id)
        if existing is not None:
            return existing
        async with self._settings_lock:
            async with self._session_factory() as session:
                row = await self._load_or_seed_settings(session, user_id, defaults)
                return _settings_from_row(row)

    async def update_settings(
        self,
        user_id: str,
        apply: Callable[[NotificationSettings], NotificationSettings],
        defaults: NotificationSettings,
    ) -> NotificationSettings:
        async with self._settings_lock:
            async with self._session_factory() as session:
                await self._load_or_seed_settings(session, user_id, defaults)
                # Row lock keeps concurrent writers from other processes out until commit
                row = await session.get(
                    NotificationSettingsRow, user_id, with_for_update=True, populate_existing=True
                )
                updated = apply(_settings_from_row(row))
                _fill_settings_row(row, updated)
                await session.commit()
                return updated.model_copy(deep=True)

    async def _load_or_seed_settings(
        self, session, user_id: str, defaults: NotificationSettings
    ) -> NotificationSettingsRow:
        row = await session.get(NotificationSettingsRow, user_id)
        if row is not None:
            return row
        row = NotificationSettingsRow(user_id=user_id)
        _fill_settings_row(row, defaults)
        session.add(row)
        try:
            await session.commit()
            return row
        except IntegrityError:
            # Another process seeded the same user first
            await session.rollback()
            return await session.get(NotificationSettingsRow, user_id, populate_existing=True)

    async def upsert_device_token(self, user_id: str, token: str, platform: DevicePlatform) -> DeviceTokenRecord:
        now = self.clock.now()
        async with self._session_factory() as session:
            result = await session.execute(
                select(DeviceToken).where(DeviceToken.user_id == user_id, DeviceToken.token == token)
            )
            row = result.scalar_one_or_none()
            if row is None:
                row = DeviceToken(
                    id=str(uuid.uuid4()),
                    user_id=user_id,
                    token=token,
                    platform=platform,
                    created_at=now,
                    last_used_at=now,
                )
                session.add(row)
                try:
                    await session.commit()
                    return _device_from_row(row)
                except IntegrityError:
                    # Lost a race with a concurrent registration of the same token
                    await session.rollback()
                    result = await session.execute(
                        select(DeviceToken).where(DeviceToken.user_id == user_id, DeviceToken.token == token)
                    )
                    row = result.scalar_one()
            row.platform = platform
            row.last_used_at = now
            await session.commit()
            return _device_from_row(row)

    async def list_device_tokens(self, user_id: str) -> List[DeviceTokenRecord]:
        query = select(DeviceToken).where(DeviceToken.user_id == user_id).order_by(DeviceToken.created_at)
        async with self._session_factory() as session:
            result = await session.execute(query)
            return [_device_from_row(row) for row in result.scalars().all()]

    async def touch_device_tokens(self, device_ids: List[str]) -> None:
        if not device_ids:
            return
        async with self._session_factory() as session:
            await session.execute(
                update(DeviceToken).where(DeviceToken.id.in_(device_ids)).values(last_used_at=self.clock.now())
            )
            await session.commit()

    async def record_outcomes(self, outcomes: List[DeliveryOutcome]) -> None:
        if not outcomes:
            return
        async with self._session_factory() as session:
            session.add_all([
                DeliveryOutcomeRow(
                    id=o.id,
                    notification_id=o.notification_id,
                    user_id=o.user_id,
                    notification_type=o.notification_type,
                    channel=o.channel,
                    platform=o.platform,
                    delivered=o.delivered,
                    error=o.error,
                    created_at=o.created_at,
                )
                for o in outcomes
            ])
            await session.commit()

    async def list_outcomes(
        self, start: datetime, end: datetime, user_id: Optional[str] = None
    ) -> List[DeliveryOutcome]:
        query = select(DeliveryOutcomeRow).where(
            DeliveryOutcomeRow.created_at >= start,
            DeliveryOutcomeRow.created_at <= end
        )
        if user_id is not None:
            query = query.where(DeliveryOutcomeRow.user_id == user_id)
        async with self._session_factory() as session:
            result = await session.execute(query)
            return [_outcome_from_row(row) for row in result.scalars().all()]

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
