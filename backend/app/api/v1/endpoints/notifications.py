"""
Notification API Endpoints.

UI-facing routes. Every route acts on the authenticated user's own
notifications; ids belonging to someone else behave as missing.
"""

import asyncio
import json
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, Path, Query, status
from fastapi.responses import StreamingResponse

from backend.app.core.dependencies import get_current_user, get_engine
from backend.app.core.exceptions import NotificationNotFoundError
from backend.app.domain.notifications.engine import NotificationEngine
from backend.app.domain.notifications.unread_counter import format_badge
from backend.app.models.enums import NotificationType
from backend.app.schemas.analytics import UserEngagement
from backend.app.schemas.device import DeviceTokenRegister
from backend.app.schemas.email import EmailTemplate
from backend.app.schemas.notification import (
    DeleteResponse,
    MarkAllReadResponse,
    NotificationFilter,
    NotificationRecord,
    UnreadCountResponse,
)
from backend.app.schemas.settings import EmailPreferencesUpdate, NotificationSettings, NotificationSettingsUpdate

router = APIRouter(prefix="/notifications", tags=["Notifications"])


async def _owned(engine: NotificationEngine, notification_id: str, user_id: str) -> NotificationRecord:
    record = await engine.store.get(notification_id)
    if record is None or record.user_id != user_id:
        raise NotificationNotFoundError(notification_id)
    return record


@router.get("", response_model=List[NotificationRecord])
async def list_notifications(
    type: Optional[List[NotificationType]] = Query(None),
    read: Optional[bool] = Query(None),
    start_date: Optional[str] = Query(None, description="ISO date or datetime, inclusive"),
    end_date: Optional[str] = Query(None, description="ISO date or datetime, inclusive"),
    limit: Optional[int] = Query(None, ge=1, le=500),
    current_user: dict = Depends(get_current_user),
    engine: NotificationEngine = Depends(get_engine),
):
    """List current user's notifications, newest first."""
    filter = NotificationFilter(
        types=type or [],
        read=read,
        start_date=start_date,
        end_date=end_date,
        limit=limit,
    )
    return await engine.store.list(current_user["user_id"], filter)


@router.get("/unread-count", response_model=UnreadCountResponse)
async def unread_count(
    current_user: dict = Depends(get_current_user),
    engine: NotificationEngine = Depends(get_engine),
):
    count = await engine.store.unread_count(current_user["user_id"])
    return UnreadCountResponse(count=count, badge=format_badge(count))


@router.get("/unread-count/stream")
async def unread_count_stream(
    current_user: dict = Depends(get_current_user),
    engine: NotificationEngine = Depends(get_engine),
):
    """
    Server-sent events with the unread badge.

    One event on connect, then one per change. The poller lives exactly as
    long as the connection.
    """
    user_id = current_user["user_id"]

    async def events():
        changes: asyncio.Queue = asyncio.Queue()

        async def on_change(count: int):
            await changes.put(count)

        async with engine.watch_unread(user_id, on_change=on_change) as counter:
            # The first event already carries whatever start() observed
            while not changes.empty():
                changes.get_nowait()
            count = counter.count
            while True:
                payload = json.dumps({"count": count, "badge": format_badge(count)})
                yield f"event: unread\ndata: {payload}\n\n"
                count = await changes.get()

    return StreamingResponse(events(), media_type="text/event-stream", headers={"Cache-Control": "no-cache"})


@router.patch("/read-all", response_model=MarkAllReadResponse)
async def mark_all_notifications_read(
    current_user: dict = Depends(get_current_user),
    engine: NotificationEngine = Depends(get_engine),
):
    """Mark all notifications as read."""
    count = await engine.store.mark_all_read(current_user["user_id"])
    await engine.invalidate_badge(current_user["user_id"])
    return MarkAllReadResponse(count=count)


@router.get("/settings", response_model=NotificationSettings)
async def get_settings(
    current_user: dict = Depends(get_current_user),
    engine: NotificationEngine = Depends(get_engine),
):
    return await engine.preferences.get_settings(current_user["user_id"])


@router.patch("/settings", response_model=NotificationSettings)
async def update_settings(
    update: NotificationSettingsUpdate,
    current_user: dict = Depends(get_current_user),
    engine: NotificationEngine = Depends(get_engine),
):
    """Partial update; omitted switches and categories keep their values."""
    return await engine.preferences.update_settings(current_user["user_id"], update)


@router.post("/settings/reset", response_model=NotificationSettings)
async def reset_settings(
    current_user: dict = Depends(get_current_user),
    engine: NotificationEngine = Depends(get_engine),
):
    return await engine.preferences.reset_settings(current_user["user_id"])


@router.get("/email-preferences", response_model=Dict[NotificationType, bool])
async def get_email_preferences(
    current_user: dict = Depends(get_current_user),
    engine: NotificationEngine = Depends(get_engine),
):
    return await engine.email.get_preferences(current_user["user_id"])


@router.patch("/email-preferences", response_model=Dict[NotificationType, bool])
async def update_email_preferences(
    update: EmailPreferencesUpdate,
    current_user: dict = Depends(get_current_user),
    engine: NotificationEngine = Depends(get_engine),
):
    return await engine.email.update_preferences(current_user["user_id"], update.preferences)


@router.get("/email-templates", response_model=List[EmailTemplate])
async def list_email_templates(
    current_user: dict = Depends(get_current_user),
    engine: NotificationEngine = Depends(get_engine),
):
    return engine.email.list_templates()


@router.post("/devices", status_code=status.HTTP_201_CREATED)
async def register_device(
    device: DeviceTokenRegister,
    current_user: dict = Depends(get_current_user),
    engine: NotificationEngine = Depends(get_engine),
):
    """Register (or refresh) a push token for the current device."""
    registered = await engine.push.register_device_token(current_user["user_id"], device.token, device.platform)
    return {"registered": registered, "platform": device.platform}


@router.get("/engagement", response_model=UserEngagement)
async def my_engagement(
    start_date: Optional[str] = Query(None),
    end_date: Optional[str] = Query(None),
    current_user: dict = Depends(get_current_user),
    engine: NotificationEngine = Depends(get_engine),
):
    return await engine.analytics.get_user_engagement(current_user["user_id"], start_date, end_date)


@router.patch("/{notification_id}/read", response_model=NotificationRecord)
async def mark_notification_read(
    notification_id: str = Path(...),
    current_user: dict = Depends(get_current_user),
    engine: NotificationEngine = Depends(get_engine),
):
    """Mark a specific notification as read. Repeating the call is harmless."""
    await _owned(engine, notification_id, current_user["user_id"])
    record = await engine.store.mark_read(notification_id)
    await engine.invalidate_badge(current_user["user_id"])
    return record


@router.post("/{notification_id}/click", response_model=NotificationRecord)
async def click_notification(
    notification_id: str = Path(...),
    current_user: dict = Depends(get_current_user),
    engine: NotificationEngine = Depends(get_engine),
):
    """Record that the user opened the notification's target; this also reads it."""
    await _owned(engine, notification_id, current_user["user_id"])
    record = await engine.store.mark_clicked(notification_id)
    await engine.invalidate_badge(current_user["user_id"])
    return record


@router.delete("/{notification_id}", response_model=DeleteResponse)
async def delete_notification(
    notification_id: str = Path(...),
    current_user: dict = Depends(get_current_user),
    engine: NotificationEngine = Depends(get_engine),
):
    """Delete a notification; a missing id is reported as deleted=false."""
    record = await engine.store.get(notification_id)
    if record is None or record.user_id != current_user["user_id"]:
        return DeleteResponse(deleted=False)
    deleted = await engine.store.delete(notification_id)
    await engine.invalidate_badge(current_user["user_id"])
    return DeleteResponse(deleted=deleted)
