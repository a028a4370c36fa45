"""
Delivery Outcome Database Model.

One row per channel attempt (per device for push). Consumed by analytics.
"""

from sqlalchemy import Column, String, Boolean, DateTime, Enum
from backend.app.db.session import Base
from backend.app.models.enums import Channel, DevicePlatform, NotificationType


class DeliveryOutcomeRow(Base):
    __tablename__ = "delivery_outcomes"

    id = Column(String(36), primary_key=True)
    notification_id = Column(String(36), nullable=False, index=True)
    user_id = Column(String(128), nullable=False, index=True)
    notification_type = Column(Enum(NotificationType), nullable=False)

    channel = Column(Enum(Channel), nullable=False, index=True)
    platform = Column(Enum(DevicePlatform), nullable=True)
    delivered = Column(Boolean, nullable=False)
    error = Column(String(255), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, index=True)

    def __repr__(self):
        return f"<DeliveryOutcome(notification={self.notification_id}, channel='{self.channel.value}', delivered={self.delivered})>"
