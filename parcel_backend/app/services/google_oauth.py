"""
Google OAuth login.

Authorization-code flow: redirect to Google, exchange the returned code
for tokens, read the profile, then find or create the matching user.
"""

import logging
from typing import Any, Dict
from urllib.parse import urlencode

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from parcel_backend.app.core.config import settings
from parcel_backend.app.core.exceptions import AuthenticationError, InsufficientPermissionsError
from parcel_backend.app.models.enums import AuthProviderName, IsActive
from parcel_backend.app.models.user import AuthProvider, User
from parcel_backend.app.services import user_store

logger = logging.getLogger("parcel_backend")

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"
GOOGLE_SCOPES = ["openid", "profile", "email"]


def get_google_auth_url(state: str) -> str:
    """Generate the Google consent URL; `state` carries the post-login redirect path."""
    params = {
        "client_id": settings.google_client_id,
        "redirect_uri": settings.google_callback_url,
        "response_type": "code",
        "scope": " ".join(GOOGLE_SCOPES),
        "state": state,
    }
    return f"{GOOGLE_AUTH_URL}?{urlencode(params)}"


async def exchange_google_code(code: str) -> Dict[str, Any]:
    """Exchange authorization code for tokens."""
    async with httpx.AsyncClient() as client:
        response = await client.post(
            GOOGLE_TOKEN_URL,
            data={
                "client_id": settings.google_client_id,
                "client_secret": settings.google_client_secret,
                "code": code,
                "grant_type": "authorization_code",
                "redirect_uri": settings.google_callback_url,
            },
        )
        response.raise_for_status()
        return response.json()


async def get_google_user_info(access_token: str) -> Dict[str, Any]:
    """Get user info from Google."""
    async with httpx.AsyncClient() as client:
        response = await client.get(
            GOOGLE_USERINFO_URL,
            headers={"Authorization": f"Bearer {access_token}"},
        )
        response.raise_for_status()
        return response.json()


async def find_or_create_google_user(db: AsyncSession, profile: Dict[str, Any]) -> User:
    """
    Resolve a Google profile to a local user.

    Existing accounts with the same email get a `google` provider binding;
    unknown emails become new verified USER accounts without a password.
    """
    email = profile.get("email")
    google_id = str(profile.get("id") or profile.get("sub") or "")
    if not email or not google_id:
        raise AuthenticationError("Google profile is missing email or id")

    user = await user_store.find_by_email(db, email, user_store.Visibility.INCLUDE_DELETED)
    if user is None:
        user = await user_store.create_user(
            db,
            name=profile.get("name") or email.split("@")[0],
            email=email,
            picture=profile.get("picture"),
            is_verified=True,
            provider=AuthProviderName.GOOGLE,
            provider_id=google_id,
        )
        logger.info("Created user %s from Google login", user.id)
        return user

    if user.is_deleted:
        raise InsufficientPermissionsError("User is deleted")
    if user.is_active != IsActive.ACTIVE:
        raise InsufficientPermissionsError(f"User is {user.is_active.value}")

    if not any(auth.provider == AuthProviderName.GOOGLE for auth in user.auths):
        user.auths.append(AuthProvider(provider=AuthProviderName.GOOGLE, provider_id=google_id))
        user.is_verified = True
        user = await user_store.save_user(db, user)
    return user


async def authenticate_with_google(db: AsyncSession, code: str) -> User:
    """Complete the callback leg of the flow."""
    try:
        tokens = await exchange_google_code(code)
        profile = await get_google_user_info(tokens["access_token"])
    except (httpx.HTTPError, KeyError) as exc:
        logger.warning("Google login failed: %s", exc)
        raise AuthenticationError("Google authentication failed")
    return await find_or_create_google_user(db, profile)
