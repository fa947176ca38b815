"""
Custom exceptions and error handlers for consistent error responses.

Every domain failure is raised as an AppException subclass and translated
into the error envelope here:

    {"success": false, "message": ..., "error_code": ...,
     "errorSources": [{"path": ..., "message": ...}], "stack": ...}
"""

import logging
import traceback
from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from typing import Any, Dict, List, Optional

from parcel_backend.app.core.config import settings

logger = logging.getLogger("parcel_backend")


class AppException(Exception):
    """Base application exception."""

    def __init__(
        self,
        message: str,
        error_code: str,
        status_code: int = 500,
        error_sources: Optional[List[Dict[str, str]]] = None
    ):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.error_sources = error_sources or [{"path": "", "message": message}]
        super().__init__(message)


class ValidationError(AppException):
    """Raised when input is missing or malformed beyond schema validation."""

    def __init__(self, message: str, path: str = ""):
        super().__init__(
            message=message,
            error_code="ERR_VALIDATION_001",
            status_code=status.HTTP_400_BAD_REQUEST,
            error_sources=[{"path": path, "message": message}]
        )


class InsufficientPermissionsError(AppException):
    """Raised when user doesn't have permission to perform an action."""

    def __init__(self, message: str = "Insufficient permissions"):
        super().__init__(
            message=message,
            error_code="ERR_PERM_001",
            status_code=status.HTTP_403_FORBIDDEN
        )


class ResourceNotFoundError(AppException):
    """Raised when requested resource is not found."""

    def __init__(self, resource: str, resource_id: Any = None):
        message = f"{resource} not found"
        if resource_id:
            message = f"{resource} with ID {resource_id} not found"
        super().__init__(
            message=message,
            error_code="ERR_NOT_FOUND_001",
            status_code=status.HTTP_404_NOT_FOUND,
            error_sources=[{"path": resource.lower(), "message": message}]
        )


class AuthenticationError(AppException):
    """Raised for authentication failures."""

    def __init__(self, message: str = "Authentication failed"):
        super().__init__(
            message=message,
            error_code="ERR_AUTH_001",
            status_code=status.HTTP_401_UNAUTHORIZED
        )


class TokenRevokedError(AppException):
    """Raised when token has been revoked."""

    def __init__(self, message: str = "Token has been revoked"):
        super().__init__(
            message=message,
            error_code="ERR_AUTH_002",
            status_code=status.HTTP_401_UNAUTHORIZED
        )


class ConflictError(AppException):
    """Raised on uniqueness violations (e.g. duplicate email)."""

    def __init__(self, message: str, path: str = ""):
        super().__init__(
            message=message,
            error_code="ERR_CONFLICT_001",
            status_code=status.HTTP_409_CONFLICT,
            error_sources=[{"path": path, "message": message}]
        )


class ConcurrentModificationError(AppException):
    """Raised when a parcel changed between read and write."""

    def __init__(self, message: str = "Parcel was modified by another request, please retry"):
        super().__init__(
            message=message,
            error_code="ERR_CONFLICT_002",
            status_code=status.HTTP_409_CONFLICT,
            error_sources=[{"path": "currentStatus", "message": message}]
        )


class IllegalTransitionError(AppException):
    """Raised when a parcel status change violates the state machine."""

    def __init__(self, current_status: Any, target_status: Any, message: Optional[str] = None):
        current = getattr(current_status, "value", current_status)
        target = getattr(target_status, "value", target_status)
        message = message or f"Cannot change parcel status from {current} to {target}"
        self.current_status = current
        self.target_status = target
        super().__init__(
            message=message,
            error_code="ERR_TRANSITION_001",
            status_code=status.HTTP_400_BAD_REQUEST,
            error_sources=[{"path": "status", "message": message}]
        )


class ParcelBlockedError(AppException):
    """Raised when a blocked parcel is asked to change state."""

    def __init__(self, tracking_number: str):
        message = f"Parcel {tracking_number} is blocked by an administrator"
        super().__init__(
            message=message,
            error_code="ERR_TRANSITION_002",
            status_code=status.HTTP_400_BAD_REQUEST,
            error_sources=[{"path": "isBlocked", "message": message}]
        )


def _error_body(message: str, error_code: str, error_sources: List[Dict[str, str]], exc: Exception) -> Dict[str, Any]:
    body = {
        "success": False,
        "message": message,
        "error_code": error_code,
        "errorSources": error_sources,
    }
    if settings.debug and not settings.is_production:
        body["stack"] = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    return body


# Global Exception Handlers

async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handler for custom application exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(exc.message, exc.error_code, exc.error_sources, exc)
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handler for FastAPI HTTPException with standardized format."""
    # Map status code to error code
    error_code_map = {
        400: "ERR_BAD_REQUEST",
        401: "ERR_UNAUTHORIZED",
        403: "ERR_FORBIDDEN",
        404: "ERR_NOT_FOUND",
        405: "ERR_METHOD_NOT_ALLOWED",
        409: "ERR_CONFLICT",
        500: "ERR_INTERNAL_SERVER"
    }

    error_code = error_code_map.get(exc.status_code, "ERR_UNKNOWN")
    message = str(exc.detail)

    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(message, error_code, [{"path": "", "message": message}], exc),
        headers=getattr(exc, "headers", None)
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handler for Pydantic validation errors."""
    error_sources = [
        {
            "path": ".".join(str(part) for part in error["loc"] if part != "body"),
            "message": error["msg"],
        }
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=_error_body("Validation Error", "ERR_VALIDATION", error_sources, exc)
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handler for unhandled exceptions."""
    logger.error(
        "Unhandled exception on %s %s: %s",
        request.method,
        request.url.path,
        exc,
        exc_info=exc,
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=_error_body(
            "Something went wrong!",
            "ERR_INTERNAL_SERVER",
            [{"path": "", "message": "An internal server error occurred"}],
            exc
        )
    )
