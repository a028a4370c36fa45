"""
Notification Dispatch Endpoint.

Called by producer subsystems (booking, messaging, reviews, payments,
system, marketing) with a service or admin token.
"""

import logging

from fastapi import APIRouter, Depends, status

from backend.app.core.dependencies import get_engine
from backend.app.core.guards import require_producer
from backend.app.domain.notifications.engine import NotificationEngine
from backend.app.schemas.notification import DispatchRequest, NotificationRecord

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/internal/notifications", tags=["Internal - Notifications"])


@router.post("/dispatch", response_model=NotificationRecord, status_code=status.HTTP_201_CREATED)
async def dispatch_notification(
    req: DispatchRequest,
    current_user: dict = Depends(require_producer),
    engine: NotificationEngine = Depends(get_engine)
):
    """
    Store a notification and deliver it on the user's eligible channels.

    The response is the stored record; channel failures never fail the call.
    """
    record = await engine.dispatcher.dispatch(req.user_id, req.type, req.title, req.message, req.data)
    await engine.invalidate_badge(req.user_id)
    logger.info("Dispatch requested by %s", current_user.get("sub", current_user["user_id"]))
    return record
