"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from backend.app.api.v1.endpoints import notifications, dispatch, analytics

router = APIRouter()

# UI-facing notification endpoints
router.include_router(notifications.router)

# Producer subsystems
router.include_router(dispatch.router)

# Operator analytics
router.include_router(analytics.admin_router)
