"""
Notification Database Model.
"""

from sqlalchemy import Column, String, Text, Boolean, DateTime, JSON, Enum, Index
from backend.app.db.session import Base
from backend.app.models.enums import NotificationType


class Notification(Base):
    """
    In-App Notification record.

    created_at is assigned by the store, never by the producer.
    """
    __tablename__ = "notifications"

    id = Column(String(36), primary_key=True)

    # Recipient
    user_id = Column(String(128), nullable=False, index=True)

    # Content
    type = Column(Enum(NotificationType), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    data = Column(JSON, nullable=True)

    # State
    is_read = Column(Boolean, default=False, nullable=False, index=True)
    read_at = Column(DateTime(timezone=True), nullable=True)
    clicked_at = Column(DateTime(timezone=True), nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), nullable=False, index=True)

    __table_args__ = (
        Index("ix_notifications_user_created", "user_id", "created_at"),
    )

    def __repr__(self):
        return f"<Notification(id={self.id}, user={self.user_id}, title='{self.title}')>"
