"""
User Pydantic schemas.

Registration input, profile output and admin management requests.
"""

import re
from pydantic import BaseModel, EmailStr, Field, field_validator
from datetime import datetime
from typing import List, Optional
from parcel_backend.app.models.enums import UserRole, IsActive, AuthProviderName


PASSWORD_RULES = (
    (r"[A-Z]", "Password must contain at least one uppercase letter"),
    (r"[a-z]", "Password must contain at least one lowercase letter"),
    (r"[0-9]", "Password must contain at least one number"),
    (r"[^A-Za-z0-9]", "Password must contain at least one special character"),
)


def check_password_strength(value: str) -> str:
    """Shared strength rules for registration and password reset."""
    for pattern, message in PASSWORD_RULES:
        if not re.search(pattern, value):
            raise ValueError(message)
    return value


class UserRegister(BaseModel):
    """
    Schema for user registration.

    Used by POST /user/register. Role defaults to USER.
    """
    name: str = Field(..., min_length=4, max_length=50, description="Full name")
    email: EmailStr = Field(..., description="User email address")
    password: str = Field(..., min_length=6, max_length=20, description="Password")
    phone: Optional[str] = Field(None, pattern=r"^\+?[1-9]\d{9,14}$", description="Phone number")
    address: Optional[str] = Field(None, max_length=500)
    picture: Optional[str] = Field(None, max_length=500)
    role: Optional[UserRole] = Field(default=UserRole.USER, description="USER or DELIVERY_MAN")

    @field_validator("password")
    @classmethod
    def validate_password(cls, value: str) -> str:
        return check_password_strength(value)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return value.strip().lower()


class AuthProviderResponse(BaseModel):
    provider: AuthProviderName
    provider_id: str

    class Config:
        from_attributes = True


class UserResponse(BaseModel):
    """Public view of a user record (never exposes the password hash)."""
    id: int
    name: str
    email: str
    phone: Optional[str] = None
    address: Optional[str] = None
    picture: Optional[str] = None
    role: UserRole
    is_active: IsActive
    is_deleted: bool
    is_verified: bool
    auths: List[AuthProviderResponse] = []
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class AssignRoleRequest(BaseModel):
    """Schema for PATCH /user/{id}/assign-role."""
    role: UserRole


class ChangeUserStatusRequest(BaseModel):
    """Schema for PATCH /user/{id}/status."""
    is_active: IsActive
    reason: Optional[str] = Field(None, max_length=500, description="Reason (for audit log)")


class AuditLogResponse(BaseModel):
    """Schema for audit log entry."""
    id: int
    actor_id: Optional[int]
    actor_email: Optional[str]
    action: str
    target_user_id: Optional[int]
    target_email: Optional[str]
    meta_data: Optional[dict]
    ip_address: Optional[str]
    timestamp: datetime

    class Config:
        from_attributes = True
