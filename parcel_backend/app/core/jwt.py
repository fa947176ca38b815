"""
JWT token utilities for authentication.

Access and refresh tokens carry the same claims but are signed with
different secrets and expire independently.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any
from jose import JWTError, jwt
from parcel_backend.app.core.config import settings

ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"


def sign_token(claims: Dict[str, Any], secret: str, expires_delta: timedelta) -> str:
    """
    Sign a claims dictionary into a JWT.

    Args:
        claims: Payload to encode (user_id, email, role, type)
        secret: Signing secret
        expires_delta: Token lifetime

    Returns:
        Encoded JWT token string
    """
    to_encode = claims.copy()
    to_encode.update({"exp": datetime.now(timezone.utc) + expires_delta})
    return jwt.encode(to_encode, secret, algorithm=settings.jwt_algorithm)


def verify_token(token: str, secret: str) -> Optional[Dict[str, Any]]:
    """
    Decode and validate a JWT.

    Returns:
        Decoded payload if signature and expiry are valid, None otherwise
    """
    try:
        return jwt.decode(token, secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None


def build_claims(user) -> Dict[str, Any]:
    """Claims embedded in both access and refresh tokens."""
    return {
        "user_id": user.id,
        "email": user.email,
        "role": user.role.value,
    }


def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """
    Create a JWT access token.

    Example payload:
        {
            "user_id": 123,
            "email": "user@mail.com",
            "role": "USER",
            "type": "access",
            "exp": 1234567890
        }
    """
    claims = {**data, "type": ACCESS_TOKEN_TYPE}
    return sign_token(
        claims,
        settings.jwt_access_secret,
        expires_delta or timedelta(minutes=settings.jwt_access_expire_minutes)
    )


def create_refresh_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """Create a longer-lived JWT refresh token."""
    claims = {**data, "type": REFRESH_TOKEN_TYPE}
    return sign_token(
        claims,
        settings.jwt_refresh_secret,
        expires_delta or timedelta(minutes=settings.jwt_refresh_expire_minutes)
    )


def create_user_tokens(user) -> Dict[str, str]:
    """Issue an access/refresh token pair for a user record."""
    claims = build_claims(user)
    return {
        "access_token": create_access_token(claims),
        "refresh_token": create_refresh_token(claims),
    }


def decode_access_token(token: str) -> Optional[Dict[str, Any]]:
    """Decode an access token; refresh tokens are rejected."""
    payload = verify_token(token, settings.jwt_access_secret)
    if payload is None or payload.get("type") != ACCESS_TOKEN_TYPE:
        return None
    return payload


def decode_refresh_token(token: str) -> Optional[Dict[str, Any]]:
    """Decode a refresh token; access tokens are rejected."""
    payload = verify_token(token, settings.jwt_refresh_secret)
    if payload is None or payload.get("type") != REFRESH_TOKEN_TYPE:
        return None
    return payload
