"""
FastAPI dependencies.

Bearer-token authentication for every route, plus access to the
NotificationEngine built in the application lifespan.
"""

from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from backend.app.core.exceptions import AuthenticationError
from backend.app.core.jwt import decode_access_token
from backend.app.domain.notifications.engine import NotificationEngine

# HTTP Bearer security scheme
security = HTTPBearer()


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> dict:
    """
    FastAPI dependency for JWT authentication.

    Validates signature and expiry and requires a user_id claim. The user_id
    is always taken as a string since the auth service owns the id format.

    Returns:
        Decoded token payload containing user information

    Raises:
        AuthenticationError: 401 if the token is invalid or lacks user_id
    """
    payload = decode_access_token(credentials.credentials)
    if payload is None:
        raise AuthenticationError("Could not validate credentials")

    user_id = payload.get("user_id")
    if user_id is None or str(user_id) == "":
        raise AuthenticationError("Invalid token payload")

    payload["user_id"] = str(user_id)
    return payload


def get_engine(request: Request) -> NotificationEngine:
    """The process-wide NotificationEngine set up in the lifespan."""
    return request.app.state.engine
