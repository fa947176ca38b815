"""
Authentication Pydantic schemas.

Defines request and response schemas for authentication endpoints.
"""

from pydantic import BaseModel, EmailStr, Field, field_validator
from typing import Optional
from parcel_backend.app.schemas.user import UserResponse, check_password_strength


class UserLogin(BaseModel):
    """
    Schema for credentials login.

    Used by POST /auth/login endpoint.
    """
    email: EmailStr = Field(..., description="Account email")
    password: str = Field(..., min_length=1, description="Password")


class RefreshTokenRequest(BaseModel):
    """Optional body for POST /auth/refresh-token when cookies are unavailable."""
    refresh_token: Optional[str] = None


class ResetPasswordRequest(BaseModel):
    """Schema for POST /auth/reset-password."""
    old_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=6, max_length=20)

    @field_validator("new_password")
    @classmethod
    def validate_new_password(cls, value: str) -> str:
        return check_password_strength(value)


class TokenPair(BaseModel):
    """Access and refresh token returned after login."""
    access_token: str
    refresh_token: Optional[str] = None
    token_type: str = "bearer"


class LoginData(TokenPair):
    """Payload of a successful login."""
    user: UserResponse
