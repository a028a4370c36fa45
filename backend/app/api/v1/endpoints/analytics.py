"""
Notification Analytics API Endpoints.

Read-only, date-ranged reports for operators and internal dashboards.
"""

from fastapi import APIRouter, Depends, Query
from typing import List, Optional

from backend.app.core.dependencies import get_engine
from backend.app.core.guards import require_admin
from backend.app.domain.notifications.engine import NotificationEngine
from backend.app.schemas.analytics import AnalyticsReport, ChannelEffectiveness

admin_router = APIRouter(prefix="/admin/analytics", tags=["Admin - Analytics"])


@admin_router.get("/notifications", response_model=AnalyticsReport)
async def get_notification_analytics(
    start_date: str = Query(..., description="ISO date or datetime, inclusive"),
    end_date: str = Query(..., description="ISO date or datetime, inclusive"),
    user_id: Optional[str] = Query(None),
    current_user: dict = Depends(require_admin),
    engine: NotificationEngine = Depends(get_engine)
):
    """Metrics, daily trends, device mix and top performing category."""
    return await engine.analytics.get_analytics(start_date, end_date, user_id)


@admin_router.get("/notifications/channels", response_model=List[ChannelEffectiveness])
async def get_channel_effectiveness(
    start_date: Optional[str] = Query(None),
    end_date: Optional[str] = Query(None),
    user_id: Optional[str] = Query(None),
    current_user: dict = Depends(require_admin),
    engine: NotificationEngine = Depends(get_engine)
):
    """Delivery, open and engagement rates per channel."""
    return await engine.analytics.get_channel_effectiveness(start_date, end_date, user_id)
