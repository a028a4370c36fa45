"""
Notification Store.

The store is the single shared mutable resource of the engine: notification
records, per-user settings, device tokens and delivery outcomes. The engine
talks to the abstract NotificationStore; the in-memory adapter lives here and
the SQLAlchemy adapter in sql_store.py. Which one runs is decided at process
start by the engine factory.
"""

import asyncio
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional

from backend.app.core.exceptions import NotificationNotFoundError
from backend.app.models.enums import DevicePlatform
from backend.app.schemas.analytics import DeliveryOutcome
from backend.app.schemas.device import DeviceTokenRecord
from backend.app.schemas.notification import NotificationCreate, NotificationFilter, NotificationRecord, as_utc
from backend.app.schemas.settings import NotificationSettings


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class MonotonicClock:
    """
    Strictly increasing UTC timestamps.

    Two calls never return the same instant, so records created concurrently
    keep a total newest-first order even when the wall clock stalls or steps
    backwards.
    """

    def __init__(self, source: Callable[[], datetime] = utc_now):
        self._source = source
        self._last: Optional[datetime] = None

    def now(self) -> datetime:
        current = as_utc(self._source())
        if self._last is not None and current <= self._last:
            current = self._last + timedelta(microseconds=1)
        self._last = current
        return current


class NotificationStore(ABC):
    """Storage contract shared by every adapter."""

    def __init__(self, clock: Optional[MonotonicClock] = None):
        self.clock = clock or MonotonicClock()

    # --- Records ---

    @abstractmethod
    async def create(self, notification: NotificationCreate) -> NotificationRecord:
        """Persist a notification; id and created_at are assigned here."""

    @abstractmethod
    async def get(self, notification_id: str) -> Optional[NotificationRecord]:
        ...

    @abstractmethod
    async def list(self, user_id: str, filter: Optional[NotificationFilter] = None) -> List[NotificationRecord]:
        """Records of one user matching the filter, newest first."""

    @abstractmethod
    async def unread_count(self, user_id: str) -> int:
        ...

    @abstractmethod
    async def mark_read(self, notification_id: str) -> NotificationRecord:
        """
        Mark one record read. Idempotent.

        Raises:
            NotificationNotFoundError: no record with that id
        """

    @abstractmethod
    async def mark_all_read(self, user_id: str) -> int:
        """Mark every record existing at call time read; returns how many changed."""

    @abstractmethod
    async def mark_clicked(self, notification_id: str) -> NotificationRecord:
        """
        Record the first click on a notification; a click also reads it.

        Raises:
            NotificationNotFoundError: no record with that id
        """

    @abstractmethod
    async def delete(self, notification_id: str) -> bool:
        """Returns False when the id does not exist."""

    @abstractmethod
    async def list_between(
        self, start: datetime, end: datetime, user_id: Optional[str] = None
    ) -> List[NotificationRecord]:
        """Records created within [start, end], across users unless user_id is given."""

    # --- Settings ---

    @abstractmethod
    async def get_settings(self, user_id: str) -> Optional[NotificationSettings]:
        ...

    @abstractmethod
    async def save_settings(self, user_id: str, settings: NotificationSettings) -> NotificationSettings:
        ...

    @abstractmethod
    async def get_or_create_settings(self, user_id: str, defaults: NotificationSettings) -> NotificationSettings:
        """Stored settings, or `defaults` stored atomically when the user has none."""

    @abstractmethod
    async def update_settings(
        self,
        user_id: str,
        apply: Callable[[NotificationSettings], NotificationSettings],
        defaults: NotificationSettings,
    ) -> NotificationSettings:
        """
        Atomic read-modify-write of one user's settings.

        `apply` receives the current settings (or `defaults`) and returns the
        value to store. Concurrent updates for the same user never lose a write.
        """

    # --- Device tokens ---

    @abstractmethod
    async def upsert_device_token(self, user_id: str, token: str, platform: DevicePlatform) -> DeviceTokenRecord:
        """Insert or refresh the token keyed by (user_id, token)."""

    @abstractmethod
    async def list_device_tokens(self, user_id: str) -> List[DeviceTokenRecord]:
        ...

    @abstractmethod
    async def touch_device_tokens(self, device_ids: List[str]) -> None:
        """Bump last_used_at after a successful send."""

    # --- Delivery outcomes ---

    @abstractmethod
    async def record_outcomes(self, outcomes: List[DeliveryOutcome]) -> None:
        ...

    @abstractmethod
    async def list_outcomes(
        self, start: datetime, end: datetime, user_id: Optional[str] = None
    ) -> List[DeliveryOutcome]:
        ...

    async def close(self) -> None:
        """Release adapter resources."""


class InMemoryNotificationStore(NotificationStore):
    """
    Process-local adapter.

    Every mutation runs under one asyncio lock, which makes mark_all_read and
    create mutually atomic. Callers always receive copies.
    """

    def __init__(self, clock: Optional[MonotonicClock] = None):
        super().__init__(clock)
        self._lock = asyncio.Lock()
        self._records: Dict[str, NotificationRecord] = {}
        self._settings: Dict[str, NotificationSettings] = {}
        self._devices: Dict[str, DeviceTokenRecord] = {}
        self._outcomes: List[DeliveryOutcome] = []

    async def create(self, notification: NotificationCreate) -> NotificationRecord:
        async with self._lock:
            created_at = self.clock.now()
            record = NotificationRecord(
                id=str(uuid.uuid4()),
                type=notification.type,
                title=notification.title,
                message=notification.message,
                created_at=created_at,
                is_read=notification.is_read,
                user_id=notification.user_id,
                data=notification.data,
                read_at=created_at if notification.is_read else None,
            )
            self._records[record.id] = record
            return record.model_copy(deep=True)

    async def get(self, notification_id: str) -> Optional[NotificationRecord]:
        record = self._records.get(notification_id)
        return record.model_copy(deep=True) if record else None

    async def list(self, user_id: str, filter: Optional[NotificationFilter] = None) -> List[NotificationRecord]:
        filter = filter or NotificationFilter()
        matches = [
            r for r in self._records.values()
            if r.user_id == user_id and filter.matches(r)
        ]
        matches.sort(key=lambda r: r.created_at, reverse=True)
        if filter.limit is not None:
            matches = matches[:filter.limit]
        return [r.model_copy(deep=True) for r in matches]

    async def unread_count(self, user_id: str) -> int:
        return sum(1 for r in self._records.values() if r.user_id == user_id and not r.is_read)

    async def mark_read(self, notification_id: str) -> NotificationRecord:
        async with self._lock:
            record = self._records.get(notification_id)
            if record is None:
                raise NotificationNotFoundError(notification_id)
            if not record.is_read:
                record.is_read = True
                record.read_at = self.clock.now()
            return record.model_copy(deep=True)

    async def mark_all_read(self, user_id: str) -> int:
        async with self._lock:
            now = self.clock.now()
            count = 0
            for record in self._records.values():
                if record.user_id == user_id and not record.is_read:
                    record.is_read = True
                    record.read_at = now
                    count += 1
            return count

    async def mark_clicked(self, notification_id: str) -> NotificationRecord:
        async with self._lock:
            record = self._records.get(notification_id)
            if record is None:
                raise NotificationNotFoundError(notification_id)
            now = self.clock.now()
            if record.clicked_at is None:
                record.clicked_at = now
            if not record.is_read:
                record.is_read = True
                record.read_at = now
            return record.model_copy(deep=True)

    async def delete(self, notification_id: str) -> bool:
        async with self._lock:
            return self._records.pop(notification_id, None) is not None

    async def list_between(
        self, start: datetime, end: datetime, user_id: Optional[str] = None
    ) -> List[NotificationRecord]:
        return [
            r.model_copy(deep=True) for r in self._records.values()
            if start <= r.created_at <= end and (user_id is None or r.user_id == user_id)
        ]

    async def get_settings(self, user_id: str) -> Optional[NotificationSettings]:
        settings = self._settings.get(user_id)
        return settings.model_copy(deep=True) if settings else None

    async def save_settings(self, user_id: str, settings: NotificationSettings) -> NotificationSettings:
        async with self._lock:
            self._settings[user_id] = settings.model_copy(deep=True)
            return settings.model_copy(deep=True)

    async def get_or_create_settings(self, user_id: str, defaults: NotificationSettings) -> NotificationSettings:
        async with self._lock:
            settings = self._settings.setdefault(user_id, defaults.model_copy(deep=True))
            return settings.model_copy(deep=True)

    async def update_settings(
        self,
        user_id: str,
        apply: Callable[[NotificationSettings], NotificationSettings],
        defaults: NotificationSettings,
    ) -> NotificationSettings:
        async with self._lock:
            current = self._settings.get(user_id) or defaults
            updated = apply(current.model_copy(deep=True))
            self._settings[user_id] = updated.model_copy(deep=True)
            return updated.model_copy(deep=True)

    async def upsert_device_token(self, user_id: str, token: str, platform: DevicePlatform) -> DeviceTokenRecord:
        async with self._lock:
            now = self.clock.now()
            for device in self._devices.values():
                if device.user_id == user_id and device.token == token:
                    device.platform = platform
                    device.last_used_at = now
                    return device.model_copy()
            device = DeviceTokenRecord(
                id=str(uuid.uuid4()),
                user_id=user_id,
                token=token,
                platform=platform,
                created_at=now,
                last_used_at=now,
            )
            self._devices[device.id] = device
            return device.model_copy()

    async def list_device_tokens(self, user_id: str) -> List[DeviceTokenRecord]:
        devices = [d for d in self._devices.values() if d.user_id == user_id]
        devices.sort(key=lambda d: d.created_at)
        return [d.model_copy() for d in devices]

    async def touch_device_tokens(self, device_ids: List[str]) -> None:
        async with self._lock:
            now = self.clock.now()
            for device_id in device_ids:
                device = self._devices.get(device_id)
                if device is not None:
                    device.last_used_at = now

    async def record_outcomes(self, outcomes: List[DeliveryOutcome]) -> None:
        async with self._lock:
            self._outcomes.extend(o.model_copy() for o in outcomes)

    async def list_outcomes(
        self, start: datetime, end: datetime, user_id: Optional[str] = None
    ) -> List[DeliveryOutcome]:
        return [
            o.model_copy() for o in self._outcomes
            if start <= o.created_at <= end and (user_id is None or o.user_id == user_id)
        ]
