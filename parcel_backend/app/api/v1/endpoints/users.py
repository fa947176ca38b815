"""
User API endpoints.

Self-registration and profile, plus admin-only user management with audit
logging and token revocation.
"""

from typing import List
from fastapi import APIRouter, Depends, Path, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from parcel_backend.app.core.exceptions import (
    InsufficientPermissionsError,
    ResourceNotFoundError,
    ValidationError,
)
from parcel_backend.app.core.guards import require_admin, require_any_role
from parcel_backend.app.core.token_revocation import clear_user_token_revocation, revoke_all_user_tokens
from parcel_backend.app.db.session import get_db
from parcel_backend.app.models.enums import IsActive, UserRole
from parcel_backend.app.schemas.common import MAX_ID, ApiResponse, PageMeta
from parcel_backend.app.schemas.user import (
    AssignRoleRequest,
    AuditLogResponse,
    ChangeUserStatusRequest,
    UserRegister,
    UserResponse,
)
from parcel_backend.app.services import user_store
from parcel_backend.app.services.audit import AuditAction, get_audit_trail, log_admin_action

router = APIRouter(prefix="/user", tags=["Users"])


async def _get_target_user(db: AsyncSession, user_id: int):
    user = await user_store.find_by_id(db, user_id, user_store.Visibility.INCLUDE_DELETED)
    if not user:
        raise ResourceNotFoundError("User", user_id)
    return user


@router.post("/register", response_model=ApiResponse[UserResponse], status_code=status.HTTP_201_CREATED)
async def register(
    user_data: UserRegister,
    db: AsyncSession = Depends(get_db)
):
    """
    Register a new user.

    ADMIN accounts cannot be created through the API.
    """
    if user_data.role == UserRole.ADMIN:
        raise InsufficientPermissionsError("Admin users cannot be registered via API")

    user = await user_store.create_user(
        db,
        name=user_data.name,
        email=user_data.email,
        password=user_data.password,
        role=user_data.role or UserRole.USER,
        phone=user_data.phone,
        address=user_data.address,
        picture=user_data.picture,
    )

    return ApiResponse(message="User registered successfully", data=UserResponse.model_validate(user))


@router.get("/me", response_model=ApiResponse[UserResponse])
async def get_me(
    current_user: dict = Depends(require_any_role),
    db: AsyncSession = Depends(get_db)
):
    """Profile of the authenticated caller."""
    user = await _get_target_user(db, current_user["user_id"])
    return ApiResponse(message="User retrieved successfully", data=UserResponse.model_validate(user))


@router.get("/all", response_model=ApiResponse[List[UserResponse]])
async def list_users(
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(50, ge=1, le=100, description="Items per page"),
    include_deleted: bool = Query(False, description="Include soft-deleted users"),
    admin: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """List users (admin-only)."""
    visibility = (
        user_store.Visibility.INCLUDE_DELETED if include_deleted
        else user_store.Visibility.EXCLUDE_DELETED
    )
    users, total = await user_store.list_users(db, page=page, page_size=page_size, visibility=visibility)

    return ApiResponse(
        message="All users retrieved successfully",
        data=[UserResponse.model_validate(user) for user in users],
        meta=PageMeta(total=total, page=page, page_size=page_size)
    )


@router.get("/audit-logs", response_model=ApiResponse[List[AuditLogResponse]])
async def audit_logs(
    target_user_id: int = Query(None, ge=1, le=MAX_ID, description="Filter by target user"),
    action: str = Query(None, description="Filter by action"),
    limit: int = Query(100, ge=1, le=500),
    admin: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Audit trail, most recent first (admin-only)."""
    logs = await get_audit_trail(db, target_user_id=target_user_id, action=action, limit=limit)
    return ApiResponse(
        message="Audit logs retrieved successfully",
        data=[AuditLogResponse.model_validate(log) for log in logs]
    )


@router.get("/{user_id}", response_model=ApiResponse[UserResponse])
async def get_user(
    user_id: int = Path(..., ge=1, le=MAX_ID, description="User ID"),
    admin: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Get a single user, deleted ones included (admin-only)."""
    user = await _get_target_user(db, user_id)
    return ApiResponse(message="User retrieved successfully", data=UserResponse.model_validate(user))


@router.patch("/{user_id}/assign-role", response_model=ApiResponse[UserResponse])
async def assign_role(
    request: AssignRoleRequest,
    user_id: int = Path(..., ge=1, le=MAX_ID, description="User ID"),
    admin: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Change a user's role (admin-only)."""
    if user_id == admin["user_id"]:
        raise ValidationError("You cannot change your own role", path="role")

    user = await _get_target_user(db, user_id)
    if user.is_deleted:
        raise ValidationError("Cannot change the role of a deleted user", path="role")

    previous_role = user.role
    user.role = request.role
    user = await user_store.save_user(db, user)

    await log_admin_action(
        db=db,
        admin=admin,
        action=AuditAction.ROLE_CHANGED,
        target_user_id=user.id,
        target_email=user.email,
        metadata={"from": previous_role.value, "to": request.role.value}
    )

    return ApiResponse(
        message=f"Role of '{user.email}' changed to {user.role.value}",
        data=UserResponse.model_validate(user)
    )


@router.patch("/{user_id}/status", response_model=ApiResponse[UserResponse])
async def change_user_status(
    request: ChangeUserStatusRequest,
    user_id: int = Path(..., ge=1, le=MAX_ID, description="User ID"),
    admin: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """
    Block, deactivate or re-activate a user (admin-only).

    Leaving ACTIVE revokes all of the user's tokens immediately; returning
    to ACTIVE clears the revocation.
    """
    if user_id == admin["user_id"]:
        raise ValidationError("You cannot change your own status", path="is_active")

    user = await _get_target_user(db, user_id)
    if user.is_deleted:
        raise ValidationError("Cannot change the status of a deleted user", path="is_active")

    if user.is_active == request.is_active:
        raise ValidationError(f"User is already {request.is_active.value}", path="is_active")

    previous_status = user.is_active
    user.is_active = request.is_active
    user = await user_store.save_user(db, user)

    if request.is_active == IsActive.ACTIVE:
        await clear_user_token_revocation(user.id)
    else:
        await revoke_all_user_tokens(user.id)

    metadata = {"from": previous_status.value, "to": request.is_active.value}
    if request.reason:
        metadata["reason"] = request.reason
    await log_admin_action(
        db=db,
        admin=admin,
        action=AuditAction.USER_STATUS_CHANGED,
        target_user_id=user.id,
        target_email=user.email,
        metadata=metadata
    )

    return ApiResponse(
        message=f"User '{user.email}' is now {user.is_active.value}",
        data=UserResponse.model_validate(user)
    )


@router.delete("/{user_id}", response_model=ApiResponse[UserResponse])
async def delete_user(
    user_id: int = Path(..., ge=1, le=MAX_ID, description="User ID"),
    admin: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Soft delete a user and revoke their tokens (admin-only)."""
    if user_id == admin["user_id"]:
        raise ValidationError("You cannot delete yourself", path="user_id")

    user = await _get_target_user(db, user_id)
    if user.is_deleted:
        raise ValidationError("User is already deleted", path="user_id")

    user.is_deleted = True
    user = await user_store.save_user(db, user)
    await revoke_all_user_tokens(user.id)

    await log_admin_action(
        db=db,
        admin=admin,
        action=AuditAction.USER_DELETED,
        target_user_id=user.id,
        target_email=user.email
    )

    return ApiResponse(message=f"User '{user.email}' has been deleted", data=UserResponse.model_validate(user))
