"""
Notification Analytics.

Read-only aggregation over notification records and delivery outcomes in a
date range. Nothing here is persisted; every report is recomputed.

Read and click counts follow the records created in the range (a record
created on March 3rd and read on March 5th counts as read on March 3rd).
"""

import logging
from collections import Counter, defaultdict
from datetime import datetime, time, timedelta, timezone
from fractions import Fraction
from typing import Any, Dict, Iterable, List, Optional, Tuple

from backend.app.core.exceptions import NotificationValidationError
from backend.app.domain.notifications.store import NotificationStore, utc_now
from backend.app.models.enums import Channel, DevicePlatform, NotificationType
from backend.app.schemas.analytics import (
    AnalyticsReport,
    ChannelEffectiveness,
    DeliveryOutcome,
    DeviceStats,
    NotificationMetrics,
    NotificationTrend,
    TopPerforming,
    TypeBreakdown,
    UserEngagement,
)
from backend.app.schemas.notification import NotificationRecord, check_range, normalize_bound

logger = logging.getLogger(__name__)

DEFAULT_MAX_RANGE_DAYS = 366


def percentage(part: int, whole: int) -> float:
    """part / whole as a percentage with one decimal; 0.0 when whole is 0."""
    if not whole:
        return 0.0
    return round(part / whole * 100, 1)


def _was_read(record: NotificationRecord) -> bool:
    return record.is_read or record.clicked_at is not None


def _was_clicked(record: NotificationRecord) -> bool:
    return record.clicked_at is not None


def _breakdown(records: Iterable[NotificationRecord]) -> Dict[NotificationType, TypeBreakdown]:
    breakdown = {t: TypeBreakdown() for t in NotificationType}
    for record in records:
        entry = breakdown[record.type]
        entry.sent += 1
        entry.read += int(_was_read(record))
        entry.clicked += int(_was_clicked(record))
    for entry in breakdown.values():
        entry.read_rate = percentage(entry.read, entry.sent)
        entry.click_rate = percentage(entry.clicked, entry.sent)
    return breakdown


def _best_type(breakdown: Dict[NotificationType, TypeBreakdown]) -> Optional[NotificationType]:
    """
    Highest read rate, then click rate, then enum declaration order.

    Ranked on exact ratios; the rounded percentages are for display.
    """
    order = {t: i for i, t in enumerate(NotificationType)}
    candidates = [t for t, entry in breakdown.items() if entry.sent > 0]
    if not candidates:
        return None
    return min(
        candidates,
        key=lambda t: (
            -Fraction(breakdown[t].read, breakdown[t].sent),
            -Fraction(breakdown[t].clicked, breakdown[t].sent),
            order[t],
        ),
    )


class AnalyticsAggregator:

    def __init__(self, store: NotificationStore, max_range_days: int = DEFAULT_MAX_RANGE_DAYS):
        self.store = store
        self.max_range_days = max_range_days

    def _range(self, start_date: Any, end_date: Any) -> Tuple[datetime, datetime]:
        """
        Resolve query bounds. A missing end means now; a missing start means
        the widest allowed window ending there.
        """
        end = normalize_bound(end_date, end_of_day=True) or utc_now()
        start = normalize_bound(start_date, end_of_day=False)
        if start is None:
            first_day = end.date() - timedelta(days=self.max_range_days - 1)
            start = datetime.combine(first_day, time.min, tzinfo=timezone.utc)
        check_range(start, end)

        days = (end.date() - start.date()).days + 1
        if days > self.max_range_days:
            raise NotificationValidationError(
                f"Date range spans {days} days; at most {self.max_range_days} allowed",
                details={"start_date": start.isoformat(), "end_date": end.isoformat()}
            )
        return start, end

    async def get_analytics(
        self, start_date: Any, end_date: Any, user_id: Optional[str] = None
    ) -> AnalyticsReport:
        """
        Date-ranged report: metrics, daily trends, device mix and the best
        performing notification type.

        Args:
            start_date: inclusive lower bound (date, datetime or ISO string)
            end_date: inclusive upper bound; a date-only value covers the whole day
            user_id: restrict to one user, otherwise every user

        Raises:
            NotificationValidationError: start_date after end_date, unparsable, or
                the range is longer than max_range_days
        """
        start, end = self._range(start_date, end_date)
        records = await self.store.list_between(start, end, user_id)
        outcomes = await self.store.list_outcomes(start, end, user_id)

        breakdown = _breakdown(records)
        total_sent = len(records)
        total_read = sum(1 for r in records if _was_read(r))
        total_clicked = sum(1 for r in records if _was_clicked(r))
        delivered = sum(1 for o in outcomes if o.delivered)

        metrics = NotificationMetrics(
            total_sent=total_sent,
            total_read=total_read,
            read_rate=percentage(total_read, total_sent),
            delivery_rate=percentage(delivered, len(outcomes)),
            click_rate=percentage(total_clicked, total_sent),
            breakdown=breakdown,
        )

        best = _best_type(breakdown)
        top_performing = None
        if best is not None:
            top_performing = TopPerforming(
                type=best,
                read_rate=breakdown[best].read_rate,
                click_rate=breakdown[best].click_rate,
            )

        logger.debug(
            "Analytics computed over %s records and %s outcomes (%s .. %s)",
            total_sent, len(outcomes), start.isoformat(), end.isoformat(),
        )
        return AnalyticsReport(
            start_date=start,
            end_date=end,
            user_id=user_id,
            metrics=metrics,
            trends=self._trends(records, start, end),
            devices=self._devices(outcomes),
            top_performing=top_performing,
        )

    @staticmethod
    def _trends(records: List[NotificationRecord], start: datetime, end: datetime) -> List[NotificationTrend]:
        per_day: Dict[str, Counter] = defaultdict(Counter)
        for record in records:
            day = record.created_at.date().isoformat()
            per_day[day]["sent"] += 1
            per_day[day]["read"] += int(_was_read(record))
            per_day[day]["clicked"] += int(_was_clicked(record))

        trends = []
        day = start.date()
        while day <= end.date():
            counts = per_day.get(day.isoformat(), Counter())
            trends.append(NotificationTrend(
                date=day.isoformat(),
                sent=counts["sent"],
                read=counts["read"],
                clicked=counts["clicked"],
            ))
            day += timedelta(days=1)
        return trends

    @staticmethod
    def _devices(outcomes: List[DeliveryOutcome]) -> List[DeviceStats]:
        counts = Counter(
            o.platform for o in outcomes
            if o.channel == Channel.PUSH and o.delivered and o.platform is not None
        )
        total = sum(counts.values())
        return [
            DeviceStats(platform=platform, count=counts[platform], percentage=percentage(counts[platform], total))
            for platform in DevicePlatform
            if counts[platform] > 0
        ]

    async def get_channel_effectiveness(
        self, start_date: Any = None, end_date: Any = None, user_id: Optional[str] = None
    ) -> List[ChannelEffectiveness]:
        """
        Per channel: delivery rate over attempts, and the share of notifications
        attempted on that channel that were later opened (read) or engaged
        with (clicked).
        """
        start, end = self._range(start_date, end_date)
        records = {r.id: r for r in await self.store.list_between(start, end, user_id)}
        outcomes = await self.store.list_outcomes(start, end, user_id)

        report = []
        for channel in Channel:
            attempts = [o for o in outcomes if o.channel == channel]
            notification_ids = {o.notification_id for o in attempts}
            attempted_records = [records[n] for n in notification_ids if n in records]
            report.append(ChannelEffectiveness(
                channel=channel,
                attempted=len(attempts),
                delivery_rate=percentage(sum(1 for o in attempts if o.delivered), len(attempts)),
                open_rate=percentage(sum(1 for r in attempted_records if _was_read(r)), len(notification_ids)),
                engagement_rate=percentage(
                    sum(1 for r in attempted_records if _was_clicked(r)), len(notification_ids)
                ),
            ))
        return report

    async def get_user_engagement(
        self, user_id: str, start_date: Any = None, end_date: Any = None
    ) -> UserEngagement:
        start, end = self._range(start_date, end_date)
        records = await self.store.list_between(start, end, user_id)

        engaged = [r for r in records if _was_read(r)]
        response_minutes = [
            (r.read_at - r.created_at).total_seconds() / 60
            for r in records
            if r.read_at is not None
        ]
        average = round(sum(response_minutes) / len(response_minutes), 1) if response_minutes else None

        return UserEngagement(
            user_id=user_id,
            engagement_rate=percentage(len(engaged), len(records)),
            average_response_time=average,
            most_engaged_type=_best_type(_breakdown(records)),
        )
