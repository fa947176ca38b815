"""
Authentication dependencies for FastAPI.

This module provides the dependency that turns a request credential into a
verified caller identity.
"""

from typing import Optional
from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession
from parcel_backend.app.core.exceptions import AuthenticationError, InsufficientPermissionsError, TokenRevokedError
from parcel_backend.app.core.jwt import decode_access_token
from parcel_backend.app.core.token_revocation import is_token_revoked, are_user_tokens_revoked
from parcel_backend.app.db.session import get_db
from parcel_backend.app.models.enums import IsActive
from parcel_backend.app.services import user_store

ACCESS_TOKEN_COOKIE = "accessToken"
REFRESH_TOKEN_COOKIE = "refreshToken"

# Bearer scheme for the OpenAPI docs; raw tokens and cookies are accepted too
security = HTTPBearer(auto_error=False)


def extract_access_token(request: Request, credentials: Optional[HTTPAuthorizationCredentials]) -> Optional[str]:
    """
    Find the access token on a request.

    Order: `Authorization: Bearer <token>`, a bare `Authorization: <token>`
    header, then the `accessToken` cookie.
    """
    if credentials and credentials.credentials:
        return credentials.credentials

    header = request.headers.get("Authorization")
    if header:
        header = header.strip()
        if header.lower().startswith("bearer "):
            header = header[7:].strip()
        if header:
            return header

    return request.cookies.get(ACCESS_TOKEN_COOKIE)


async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db)
) -> dict:
    """
    FastAPI dependency for JWT authentication.

    Checks, in order:
    1. A credential is present (401)
    2. JWT signature, expiry and token type (401)
    3. The token is not blacklisted (401)
    4. The user's tokens have not all been revoked (401)
    5. The user exists (401), is not deleted (403) and is ACTIVE (403)

    Returns:
        Claims dict {"user_id", "email", "role"}; the role is read from the
        database so role changes apply without re-login.
    """
    token = extract_access_token(request, credentials)
    if not token:
        raise AuthenticationError("No token received")

    payload = decode_access_token(token)
    if payload is None:
        raise AuthenticationError("Could not validate credentials")

    user_id = payload.get("user_id")
    if not user_id:
        raise AuthenticationError("Invalid token payload")

    if await is_token_revoked(token):
        raise TokenRevokedError()

    if await are_user_tokens_revoked(user_id):
        raise TokenRevokedError("User access has been revoked")

    user = await user_store.find_by_id(db, user_id, user_store.Visibility.INCLUDE_DELETED)
    if not user:
        raise AuthenticationError("User doesn't exist")

    if user.is_deleted:
        raise InsufficientPermissionsError("User is deleted")

    if user.is_active != IsActive.ACTIVE:
        raise InsufficientPermissionsError(f"User is {user.is_active.value}")

    return {
        "user_id": user.id,
        "email": user.email,
        "role": user.role.value,
    }
