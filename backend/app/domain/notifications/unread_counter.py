"""
Unread Counter.

Polling projection of a user's unread count for badge display. It is never
authoritative: between polls the value may be stale, and a failed poll keeps
the previous value.
"""

import asyncio
import contextlib
import logging
from typing import Awaitable, Callable, Optional

from backend.app.domain.notifications.store import NotificationStore
from backend.app.services.cache import BadgeCache

logger = logging.getLogger(__name__)

BADGE_CAP = 99


def format_badge(count: int) -> Optional[str]:
    """None when there is nothing unread, "99+" above the cap."""
    if count <= 0:
        return None
    if count > BADGE_CAP:
        return f"{BADGE_CAP}+"
    return str(count)


class UnreadCounter:
    """
    Periodic, cancellable poller of ``store.unread_count(user_id)``.

    Use as ``async with UnreadCounter(...) as counter`` or call start()/stop()
    explicitly; the owner decides the lifetime.
    """

    def __init__(
        self,
        store: NotificationStore,
        user_id: str,
        interval: float = 60.0,
        cache: Optional[BadgeCache] = None,
        on_change: Optional[Callable[[int], Awaitable[None]]] = None,
    ):
        self.store = store
        self.user_id = user_id
        self.interval = interval
        self.cache = cache
        self.on_change = on_change
        self.count = 0
        self._task: Optional[asyncio.Task] = None
        self._wakeup = asyncio.Event()

    @property
    def badge(self) -> Optional[str]:
        return format_badge(self.count)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.running:
            return
        cached = await self.cache.get(self.user_id) if self.cache is not None else None
        if cached is not None:
            # Mutations invalidate the cache, so a cached count is current
            self.count = cached
        else:
            await self.refresh()
        self._task = asyncio.create_task(self._run(), name=f"unread-counter:{self.user_id}")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None

    def poke(self) -> None:
        """Ask the running poller to refresh now instead of waiting out the interval."""
        self._wakeup.set()

    async def refresh(self) -> int:
        """Poll once; on failure keep the previous count."""
        try:
            count = await self.store.unread_count(self.user_id)
        except Exception:
            logger.exception("Unread count poll failed for user %s, keeping %s", self.user_id, self.count)
            return self.count

        changed = count != self.count
        self.count = count
        if self.cache is not None:
            await self.cache.set(self.user_id, count)
        if changed and self.on_change is not None:
            await self.on_change(count)
        return count

    async def _run(self) -> None:
        while True:
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(self._wakeup.wait(), timeout=self.interval)
            self._wakeup.clear()
            await self.refresh()

    async def __aenter__(self) -> "UnreadCounter":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()
