"""
Notification Settings Database Model.
"""

from sqlalchemy import Column, String, Boolean, DateTime, JSON
from sqlalchemy.sql import func
from backend.app.db.session import Base


class NotificationSettingsRow(Base):
    """
    One row per user. Category switches are kept as a JSON document
    keyed by NotificationType value: {"message": {"push": true, ...}}.
    """
    __tablename__ = "notification_settings"

    user_id = Column(String(128), primary_key=True)

    enable_push = Column(Boolean, default=True, nullable=False)
    enable_email = Column(Boolean, default=True, nullable=False)
    enable_in_app = Column(Boolean, default=True, nullable=False)
    mute_all = Column(Boolean, default=False, nullable=False)
    categories = Column(JSON, nullable=False)

    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<NotificationSettingsRow(user={self.user_id}, mute_all={self.mute_all})>"
