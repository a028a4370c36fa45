"""
FastAPI Application Entry Point.

This is the main application file for the Notification Engine.
"""

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from backend.app.core.config import settings
from backend.app.api.v1.router import router as api_v1_router
from backend.app.core import redis_client as redis_client_module
from backend.app.core.observability import ObservabilityMiddleware, configure_logging
from backend.app.domain.notifications.engine import build_notification_engine
from backend.app.core.exceptions import (
    AppException,
    app_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    generic_exception_handler
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for application startup/shutdown.

    1. Builds the notification engine (store, gateways, dispatcher); the
       database store creates its tables here.
    2. Closes transports and the store on shutdown.
    """
    configure_logging(settings.log_level)
    engine = await build_notification_engine(settings, redis=redis_client_module.redis_client)
    app.state.engine = engine
    logger.info("%s started (store=%s)", settings.app_name, settings.store_backend)
    yield
    await engine.aclose()
    await redis_client_module.redis_client.aclose()


# Initialize FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.api_version,
    debug=settings.debug,
    description="Notification engine for the travel marketplace: dispatch, preferences, read state and analytics",
    lifespan=lifespan,
)

app.add_middleware(ObservabilityMiddleware)

# Register global exception handlers
app.add_exception_handler(AppException, app_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)


@app.get("/health", tags=["Health"])
async def health_check():
    """
    Health check endpoint.

    Returns:
        dict: Status, application information and Redis reachability
    """
    redis_ok = await redis_client_module.ping_redis()
    return {
        "status": "healthy" if redis_ok else "degraded",
        "app_name": settings.app_name,
        "version": settings.api_version,
        "redis": "up" if redis_ok else "down",
    }


# Include API v1 router
app.include_router(api_v1_router, prefix=f"/{settings.api_version}")


@app.get("/", tags=["Root"])
async def root():
    """
    Root endpoint.

    Returns:
        dict: Welcome message and API documentation links
    """
    return {
        "message": "Welcome to the Notification Engine API",
        "docs": "/docs",
        "health": "/health",
    }
