"""
Device Token and Push Delivery Schemas.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from backend.app.models.enums import DevicePlatform


class DeviceTokenRecord(BaseModel):
    id: str
    user_id: str
    token: str
    platform: DevicePlatform
    created_at: datetime
    last_used_at: datetime


class DeviceTokenRegister(BaseModel):
    token: str = Field(min_length=1, max_length=512)
    platform: DevicePlatform


class DeviceDelivery(BaseModel):
    """Outcome of one per-device push send."""
    device_id: str
    platform: DevicePlatform
    delivered: bool
    error: Optional[str] = None


class PushResult(BaseModel):
    delivered: bool
    device_count: int
    attempts: List[DeviceDelivery] = Field(default_factory=list)
