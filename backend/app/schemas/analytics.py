"""
Notification Analytics Schemas.

All rates are percentages rounded to one decimal place.
"""

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel

from backend.app.models.enums import Channel, DevicePlatform, NotificationType


class DeliveryOutcome(BaseModel):
    """One channel attempt for one notification (one device for push)."""
    id: str
    notification_id: str
    user_id: str
    notification_type: NotificationType
    channel: Channel
    platform: Optional[DevicePlatform] = None
    delivered: bool
    error: Optional[str] = None
    created_at: datetime


class TypeBreakdown(BaseModel):
    sent: int = 0
    read: int = 0
    clicked: int = 0
    read_rate: float = 0.0
    click_rate: float = 0.0


class NotificationMetrics(BaseModel):
    total_sent: int
    total_read: int
    read_rate: float
    delivery_rate: float
    click_rate: float
    breakdown: Dict[NotificationType, TypeBreakdown]


class NotificationTrend(BaseModel):
    date: str
    sent: int
    read: int
    clicked: int


class DeviceStats(BaseModel):
    platform: DevicePlatform
    count: int
    percentage: float


class TopPerforming(BaseModel):
    type: NotificationType
    read_rate: float
    click_rate: float


class AnalyticsReport(BaseModel):
    start_date: datetime
    end_date: datetime
    user_id: Optional[str] = None
    metrics: NotificationMetrics
    trends: List[NotificationTrend]
    devices: List[DeviceStats]
    top_performing: Optional[TopPerforming] = None


class ChannelEffectiveness(BaseModel):
    channel: Channel
    attempted: int
    delivery_rate: float
    open_rate: float
    engagement_rate: float


class UserEngagement(BaseModel):
    user_id: str
    engagement_rate: float
    # Minutes between creation and first read, averaged over read notifications
    average_response_time: Optional[float] = None
    most_engaged_type: Optional[NotificationType] = None
