"""
Authentication API endpoints.

Credentials login, token refresh, logout, password reset and Google login.
Tokens are returned in the body and also set as httpOnly cookies.
"""

from typing import Dict, Optional
from fastapi import APIRouter, Depends, Query, Request, Response, status
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from parcel_backend.app.core.config import settings
from parcel_backend.app.core.dependencies import (
    ACCESS_TOKEN_COOKIE,
    REFRESH_TOKEN_COOKIE,
    extract_access_token,
    security,
)
from parcel_backend.app.core.exceptions import (
    AppException,
    AuthenticationError,
    InsufficientPermissionsError,
    TokenRevokedError,
    ValidationError,
)
from parcel_backend.app.core.guards import require_any_role
from parcel_backend.app.core.jwt import (
    build_claims,
    create_access_token,
    create_user_tokens,
    decode_access_token,
    decode_refresh_token,
)
from parcel_backend.app.core.security import verify_password
from parcel_backend.app.core.token_revocation import are_user_tokens_revoked, revoke_token
from parcel_backend.app.db.session import get_db
from parcel_backend.app.models.enums import IsActive
from parcel_backend.app.schemas.auth import (
    LoginData,
    RefreshTokenRequest,
    ResetPasswordRequest,
    TokenPair,
    UserLogin,
)
from parcel_backend.app.schemas.common import ApiResponse
from parcel_backend.app.schemas.user import UserResponse
from parcel_backend.app.services import google_oauth, user_store
from parcel_backend.app.services.audit import AuditAction, log_auth_event

router = APIRouter(prefix="/auth", tags=["Authentication"])


def set_auth_cookies(response: Response, tokens: Dict[str, Optional[str]]) -> None:
    """Write whichever of the access/refresh tokens are present as cookies."""
    options = {
        "httponly": True,
        "secure": settings.is_production,
        "samesite": "lax",
    }
    if tokens.get("access_token"):
        response.set_cookie(ACCESS_TOKEN_COOKIE, tokens["access_token"], **options)
    if tokens.get("refresh_token"):
        response.set_cookie(REFRESH_TOKEN_COOKIE, tokens["refresh_token"], **options)


def clear_auth_cookies(response: Response) -> None:
    for cookie in (ACCESS_TOKEN_COOKIE, REFRESH_TOKEN_COOKIE):
        response.delete_cookie(cookie, httponly=True, secure=settings.is_production, samesite="lax")


@router.post("/login", response_model=ApiResponse[LoginData])
async def login(
    credentials: UserLogin,
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_db)
):
    """
    Login with email and password.

    Logs successful and failed login attempts for security monitoring.
    """
    ip_address = request.client.host if request.client else None
    user = await user_store.find_by_email(db, credentials.email, user_store.Visibility.INCLUDE_DELETED)

    if not user:
        await log_auth_event(
            db=db,
            action=AuditAction.LOGIN_FAILED,
            user_id=None,
            email=credentials.email,
            ip_address=ip_address,
            metadata={"reason": "User not found"}
        )
        raise AuthenticationError("Invalid credentials")

    if not user.hashed_password:
        raise ValidationError(
            "You do not have a password set. Please log in with Google.",
            path="password"
        )

    if not verify_password(credentials.password, user.hashed_password):
        await log_auth_event(
            db=db,
            action=AuditAction.LOGIN_FAILED,
            user_id=user.id,
            email=user.email,
            ip_address=ip_address,
            metadata={"reason": "Invalid password"}
        )
        raise AuthenticationError("Invalid credentials")

    if user.is_deleted:
        raise InsufficientPermissionsError("User is deleted")

    if user.is_active != IsActive.ACTIVE:
        await log_auth_event(
            db=db,
            action=AuditAction.LOGIN_FAILED,
            user_id=user.id,
            email=user.email,
            ip_address=ip_address,
            metadata={"reason": f"Account is {user.is_active.value}"}
        )
        raise InsufficientPermissionsError(f"User is {user.is_active.value}")

    tokens = create_user_tokens(user)
    set_auth_cookies(response, tokens)

    await log_auth_event(
        db=db,
        action=AuditAction.LOGIN_SUCCESS,
        user_id=user.id,
        email=user.email,
        ip_address=ip_address
    )

    return ApiResponse(
        message="User logged in successfully",
        data=LoginData(
            access_token=tokens["access_token"],
            refresh_token=tokens["refresh_token"],
            user=UserResponse.model_validate(user),
        )
    )


@router.post("/refresh-token", response_model=ApiResponse[TokenPair])
async def refresh_access_token(
    request: Request,
    response: Response,
    body: Optional[RefreshTokenRequest] = None,
    db: AsyncSession = Depends(get_db)
):
    """
    Issue a new access token from a refresh token.

    The refresh token is read from the `refreshToken` cookie, or from the
    body for clients without cookies.
    """
    refresh_token = request.cookies.get(REFRESH_TOKEN_COOKIE) or (body.refresh_token if body else None)
    if not refresh_token:
        raise ValidationError("No refresh token received from cookies.", path="refreshToken")

    payload = decode_refresh_token(refresh_token)
    if payload is None or not payload.get("user_id"):
        raise AuthenticationError("Invalid or expired refresh token")

    if await are_user_tokens_revoked(payload["user_id"]):
        raise TokenRevokedError("User access has been revoked")

    user = await user_store.find_by_id(db, payload["user_id"], user_store.Visibility.INCLUDE_DELETED)
    if not user:
        raise AuthenticationError("User doesn't exist")
    if user.is_deleted:
        raise InsufficientPermissionsError("User is deleted")
    if user.is_active != IsActive.ACTIVE:
        raise InsufficientPermissionsError(f"User is {user.is_active.value}")

    access_token = create_access_token(build_claims(user))
    set_auth_cookies(response, {"access_token": access_token})

    return ApiResponse(
        message="New Access Token Retrieved Successfully",
        data=TokenPair(access_token=access_token)
    )


@router.post("/logout", response_model=ApiResponse[None])
async def logout(
    request: Request,
    response: Response,
    credentials=Depends(security),
    db: AsyncSession = Depends(get_db)
):
    """Clear auth cookies and blacklist the presented access token."""
    token = extract_access_token(request, credentials)
    if token:
        payload = decode_access_token(token)
        if payload and payload.get("user_id"):
            await revoke_token(token, payload["user_id"])
            await log_auth_event(
                db=db,
                action=AuditAction.LOGOUT,
                user_id=payload["user_id"],
                email=payload.get("email"),
                ip_address=request.client.host if request.client else None
            )

    clear_auth_cookies(response)
    return ApiResponse(message="Logged Out Successfully", data=None)


@router.post("/reset-password", response_model=ApiResponse[None])
async def reset_password(
    passwords: ResetPasswordRequest,
    current_user: dict = Depends(require_any_role),
    db: AsyncSession = Depends(get_db)
):
    """Change the caller's password after checking the old one."""
    user = await user_store.find_by_id(db, current_user["user_id"])
    if not user:
        raise AuthenticationError("User doesn't exist")

    if not user.hashed_password:
        raise ValidationError(
            "You do not have a password set. Please use social login or set a password in your account settings.",
            path="old_password"
        )

    if not verify_password(passwords.old_password, user.hashed_password):
        raise AuthenticationError("Old password does not match.")

    await user_store.save_user(db, user, new_password=passwords.new_password)
    await log_auth_event(
        db=db,
        action=AuditAction.PASSWORD_CHANGED,
        user_id=user.id,
        email=user.email
    )

    return ApiResponse(message="Password changed Successfully", data=None)


@router.get("/google", status_code=status.HTTP_307_TEMPORARY_REDIRECT)
async def google_login(redirect: str = Query("/", description="Frontend path to return to")):
    """Start the Google login flow."""
    if not settings.google_client_id:
        raise AppException(
            "Google login is not configured",
            "ERR_CONFIG_001",
            status.HTTP_503_SERVICE_UNAVAILABLE
        )
    return RedirectResponse(google_oauth.get_google_auth_url(state=redirect))


@router.get("/google/callback", status_code=status.HTTP_307_TEMPORARY_REDIRECT)
async def google_callback(
    code: str = Query(...),
    state: str = Query(""),
    db: AsyncSession = Depends(get_db)
):
    """
    Finish the Google login flow.

    On success the auth cookies are set and the browser is sent to the
    frontend path carried in `state`.
    """
    try:
        user = await google_oauth.authenticate_with_google(db, code)
    except (AuthenticationError, InsufficientPermissionsError):
        return RedirectResponse(f"{settings.frontend_url}/login?error=google-auth-failed")

    redirect_to = state[1:] if state.startswith("/") else state
    redirect = RedirectResponse(f"{settings.frontend_url}/{redirect_to}")
    set_auth_cookies(redirect, create_user_tokens(user))
    return redirect
