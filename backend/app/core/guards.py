"""
Security guards for role-based access control.

UI routes only need an authenticated user; producer and analytics routes
are restricted to service and admin tokens.
"""

from typing import List
from fastapi import Depends
from backend.app.models.enums import UserRole
from backend.app.core.dependencies import get_current_user
from backend.app.core.exceptions import InsufficientPermissionsError


def require_role(allowed_roles: List[UserRole]):
    """
    Dependency factory for role-based access control.

    Usage:
        @router.post("/internal/notifications/dispatch")
        async def dispatch(current_user: dict = Depends(require_role([UserRole.SERVICE]))):
            ...

    Raises:
        InsufficientPermissionsError: 403 if the token role is missing, unknown
        or not in allowed_roles
    """
    async def role_checker(current_user: dict = Depends(get_current_user)) -> dict:
        user_role_str = current_user.get("role")

        if not user_role_str:
            raise InsufficientPermissionsError("Role information missing from token")

        try:
            user_role = UserRole(str(user_role_str).upper())
        except ValueError:
            raise InsufficientPermissionsError("Invalid role in token")

        if user_role not in allowed_roles:
            raise InsufficientPermissionsError(
                f"Access denied. Required role: {', '.join([r.value for r in allowed_roles])}"
            )

        return current_user

    return role_checker


require_producer = require_role([UserRole.SERVICE, UserRole.ADMIN])
require_admin = require_role([UserRole.ADMIN, UserRole.SERVICE])
