"""
Role-based access control for routes.

Each route declares the roles it admits; the check runs before any
business logic. Ownership of a specific parcel is checked inside the
lifecycle engine, not here.
"""

from typing import Iterable
from fastapi import Depends
from parcel_backend.app.core.dependencies import get_current_user
from parcel_backend.app.core.exceptions import InsufficientPermissionsError
from parcel_backend.app.models.enums import UserRole


def authorize_role(role_value, allowed_roles: Iterable[UserRole]) -> UserRole:
    """
    Decide whether a caller role may use a route.

    Args:
        role_value: Role claim of the verified caller
        allowed_roles: Roles declared by the route

    Returns:
        The caller's UserRole when allowed

    Raises:
        InsufficientPermissionsError: role missing, unknown or not allowed
    """
    if not role_value:
        raise InsufficientPermissionsError("Role information missing from token")

    try:
        role = UserRole(role_value)
    except ValueError:
        raise InsufficientPermissionsError("Invalid role in token")

    allowed = frozenset(allowed_roles)
    if role not in allowed:
        raise InsufficientPermissionsError("You are not permitted to view this route!")

    return role


def require_role(allowed_roles: Iterable[UserRole]):
    """
    Dependency factory for role-based access control.

    Usage:
        @router.get("/parcels/all")
        async def list_all(current_user: dict = Depends(require_role([UserRole.ADMIN]))):
            ...
    """
    allowed = tuple(allowed_roles)

    async def role_checker(current_user: dict = Depends(get_current_user)) -> dict:
        authorize_role(current_user.get("role"), allowed)
        return current_user

    return role_checker


require_admin = require_role([UserRole.ADMIN])
require_any_role = require_role(list(UserRole))
