"""
Notification Engine wiring.

Builds the store, gateways, dispatcher and analytics for one process. The
storage backend and the push/email transports are chosen here from Settings,
once, at startup; everything downstream receives its collaborators
explicitly.
"""

import contextlib
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional, Set

from backend.app.core.config import Settings
from backend.app.core.reliability import CircuitBreaker
from backend.app.db.session import build_engine, build_session_factory, create_tables
from backend.app.domain.notifications.analytics import AnalyticsAggregator
from backend.app.domain.notifications.dispatcher import DeliveryDispatcher
from backend.app.domain.notifications.email_gateway import EmailGateway
from backend.app.domain.notifications.email_transports import (
    EmailTransport,
    HttpEmailTransport,
    RecordingEmailTransport,
)
from backend.app.domain.notifications.preference_resolver import PreferenceResolver
from backend.app.domain.notifications.push_gateway import PushGateway
from backend.app.domain.notifications.push_transports import (
    ApnsTransport,
    FcmTransport,
    PushTransport,
    RecordingPushTransport,
)
from backend.app.domain.notifications.sql_store import SqlNotificationStore
from backend.app.domain.notifications.store import InMemoryNotificationStore, NotificationStore
from backend.app.domain.notifications.unread_counter import UnreadCounter
from backend.app.services.cache import BadgeCache

logger = logging.getLogger(__name__)


@dataclass
class NotificationEngine:
    settings: Settings
    store: NotificationStore
    preferences: PreferenceResolver
    push: PushGateway
    email: EmailGateway
    dispatcher: DeliveryDispatcher
    analytics: AnalyticsAggregator
    badge_cache: Optional[BadgeCache] = None
    transports: List[Any] = field(default_factory=list)
    # user_id -> counters currently running for that user
    live_counters: Dict[str, Set[UnreadCounter]] = field(default_factory=dict, init=False, repr=False)

    @contextlib.asynccontextmanager
    async def watch_unread(self, user_id: str, on_change=None) -> AsyncIterator[UnreadCounter]:
        """
        Run an UnreadCounter for the duration of the block.

        While it runs, invalidate_badge for the same user refreshes it at once.
        """
        counter = UnreadCounter(
            self.store,
            user_id,
            interval=self.settings.unread_poll_interval_seconds,
            cache=self.badge_cache,
            on_change=on_change,
        )
        async with counter:
            self.live_counters.setdefault(user_id, set()).add(counter)
            try:
                yield counter
            finally:
                watchers = self.live_counters.get(user_id)
                if watchers is not None:
                    watchers.discard(counter)
                    if not watchers:
                        del self.live_counters[user_id]

    async def invalidate_badge(self, user_id: str) -> None:
        """Drop the cached badge and wake every running counter of the user."""
        if self.badge_cache is not None:
            await self.badge_cache.invalidate(user_id)
        for counter in self.live_counters.get(user_id, ()):
            counter.poke()

    async def aclose(self) -> None:
        for transport in self.transports:
            await transport.aclose()
        await self.store.close()
        logger.info("Notification engine closed")


async def build_store(settings: Settings) -> NotificationStore:
    """Select the storage adapter; the database adapter gets its tables created."""
    if settings.store_backend == "memory":
        return InMemoryNotificationStore()
    if settings.store_backend == "database":
        engine = build_engine(settings)
        await create_tables(engine)
        return SqlNotificationStore(build_session_factory(engine), engine=engine)
    raise ValueError(f"Unknown store_backend '{settings.store_backend}'")


def _breaker(name: str, settings: Settings) -> CircuitBreaker:
    return CircuitBreaker(
        name,
        failure_threshold=settings.breaker_failure_threshold,
        reset_timeout=settings.breaker_reset_timeout,
    )


async def build_notification_engine(
    settings: Settings,
    store: Optional[NotificationStore] = None,
    fcm: Optional[PushTransport] = None,
    apns: Optional[PushTransport] = None,
    email_transport: Optional[EmailTransport] = None,
    redis: Any = None,
) -> NotificationEngine:
    """
    Assemble a NotificationEngine.

    Explicit collaborators win over Settings, which is how tests plug in
    recording transports and a prepared store.
    """
    store = store or await build_store(settings)

    if fcm is None or apns is None:
        if settings.push_transport == "live":
            fcm = fcm or FcmTransport(settings)
            apns = apns or ApnsTransport(settings)
        else:
            fcm = fcm or RecordingPushTransport()
            apns = apns or RecordingPushTransport()
    if email_transport is None:
        if settings.email_transport == "live":
            email_transport = HttpEmailTransport(settings)
        else:
            email_transport = RecordingEmailTransport()

    preferences = PreferenceResolver(store)
    push = PushGateway(
        store,
        fcm,
        apns,
        timeout=settings.channel_timeout_seconds,
        fcm_breaker=_breaker("fcm", settings),
        apns_breaker=_breaker("apns", settings),
        icon=settings.push_icon,
        click_action=settings.push_click_action,
    )
    email = EmailGateway(
        preferences,
        email_transport,
        timeout=settings.channel_timeout_seconds,
        breaker=_breaker("email", settings),
        template_overrides=settings.email_template_overrides,
    )
    dispatcher = DeliveryDispatcher(store, preferences, push, email, timeout=settings.channel_timeout_seconds)

    logger.info(
        "Notification engine ready (store=%s, push=%s/%s, email=%s)",
        store.__class__.__name__, fcm.name, apns.name, email_transport.name,
    )
    return NotificationEngine(
        settings=settings,
        store=store,
        preferences=preferences,
        push=push,
        email=email,
        dispatcher=dispatcher,
        analytics=AnalyticsAggregator(store, settings.analytics_max_range_days),
        badge_cache=BadgeCache(redis, settings.badge_cache_ttl_seconds) if redis is not None else None,
        transports=[fcm, apns, email_transport],
    )
