"""
Device Token Database Model.

Many tokens per user (multi-device). Tokens are never expired automatically.
"""

from sqlalchemy import Column, String, DateTime, Enum, UniqueConstraint
from backend.app.db.session import Base
from backend.app.models.enums import DevicePlatform


class DeviceToken(Base):
    __tablename__ = "device_tokens"

    id = Column(String(36), primary_key=True)
    user_id = Column(String(128), nullable=False, index=True)
    token = Column(String(512), nullable=False)
    platform = Column(Enum(DevicePlatform), nullable=False)

    created_at = Column(DateTime(timezone=True), nullable=False)
    last_used_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "token", name="uq_device_tokens_user_token"),
    )

    def __repr__(self):
        return f"<DeviceToken(id={self.id}, user={self.user_id}, platform='{self.platform.value}')>"
