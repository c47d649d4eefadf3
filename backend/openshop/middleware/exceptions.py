"""Error taxonomy and exception handlers for consistent error responses.

Onboarding errors fall into a small taxonomy:

  StepValidationError    → required field missing / bad time range (blocks advance)
  ConflictError          → "already exists" from the remote API (absorbed by callers)
  TransientNetworkError  → transport failure or remote 5xx (user retries manually)
  AuthError              → session invalid (forces exit)
  PersistenceError       → draft save failed (surfaced as status, never fatal)
  IllegalTransitionError → step navigation that the sequencer forbids
  DraftNotFoundError     → recovery requested with no usable draft
  RemoteApiError         → any other remote rejection
"""

import logging
import traceback
from typing import Union

from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class OpenShopException(Exception):
    """Base exception for onboarding service errors."""

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        error_code: str = "INTERNAL_ERROR",
        details: Union[dict, list, None] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details
        super().__init__(self.message)


class StepValidationError(OpenShopException):
    """A step's own validation failed; errors map field → message."""

    def __init__(self, errors: dict[str, str], message: str | None = None):
        self.errors = errors
        first = next(iter(errors.values()), "Validation error")
        super().__init__(
            message=message or first,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            error_code="VALIDATION_ERROR",
            details={"errors": errors},
        )


class ConflictError(OpenShopException):
    """The remote record already exists."""

    def __init__(self, message: str = "Resource already exists"):
        super().__init__(
            message=message,
            status_code=status.HTTP_409_CONFLICT,
            error_code="CONFLICT",
        )


class TransientNetworkError(OpenShopException):
    """Transport failure or remote outage.  Never retried automatically."""

    def __init__(self, message: str = "Remote service unavailable. Please try again."):
        super().__init__(
            message=message,
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            error_code="TRANSIENT_NETWORK_ERROR",
        )


class AuthError(OpenShopException):
    """Session is missing or no longer valid."""

    def __init__(self, message: str = "Please log in to continue."):
        super().__init__(
            message=message,
            status_code=status.HTTP_401_UNAUTHORIZED,
            error_code="AUTH_REQUIRED",
        )


class PersistenceError(OpenShopException):
    """Draft backend failed to read or write."""

    def __init__(self, message: str = "Failed to save draft"):
        super().__init__(
            message=message,
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            error_code="PERSISTENCE_ERROR",
        )


class IllegalTransitionError(OpenShopException):
    """Requested step move is not allowed from the current position."""

    def __init__(self, message: str):
        super().__init__(
            message=message,
            status_code=status.HTTP_409_CONFLICT,
            error_code="ILLEGAL_TRANSITION",
        )


class DraftNotFoundError(OpenShopException):
    """No recoverable draft for this user on this device."""

    def __init__(self, message: str = "No saved draft to recover"):
        super().__init__(
            message=message,
            status_code=status.HTTP_404_NOT_FOUND,
            error_code="DRAFT_NOT_FOUND",
        )


class RemoteApiError(OpenShopException):
    """The remote store API rejected the request."""

    def __init__(self, message: str, remote_status: int | None = None):
        self.remote_status = remote_status
        super().__init__(
            message=message,
            status_code=status.HTTP_502_BAD_GATEWAY,
            error_code="REMOTE_API_ERROR",
        )


def create_error_response(
    status_code: int,
    message: str,
    error_code: str = "ERROR",
    details: Union[dict, list, None] = None,
    headers: dict | None = None,
) -> JSONResponse:
    """Create standardized error response.

    Format:
    {
        "error": {
            "code": "ERROR_CODE",
            "message": "Human-readable error message",
            "details": {...}  // Optional additional details
        }
    }
    """
    content = {
        "error": {
            "code": error_code,
            "message": message,
        }
    }

    if details:
        content["error"]["details"] = details

    return JSONResponse(
        status_code=status_code,
        content=content,
        headers=headers,
    )


async def openshop_exception_handler(
    request: Request,
    exc: OpenShopException,
) -> JSONResponse:
    """Handle onboarding service exceptions."""
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        f"OpenShop exception: {exc.error_code} - {exc.message}",
        extra={
            "error_code": exc.error_code,
            "path": request.url.path,
            "method": request.method,
        },
    )

    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, AuthError) else None
    return create_error_response(
        status_code=exc.status_code,
        message=exc.message,
        error_code=exc.error_code,
        details=exc.details,
        headers=headers,
    )


async def http_exception_handler(
    request: Request,
    exc: Union[HTTPException, StarletteHTTPException],
) -> JSONResponse:
    """Handle FastAPI HTTP exceptions."""
    if exc.status_code >= 500:
        logger.error(
            f"HTTP {exc.status_code}: {exc.detail}",
            extra={
                "path": request.url.path,
                "method": request.method,
            },
        )

    return create_error_response(
        status_code=exc.status_code,
        message=str(exc.detail),
        error_code=f"HTTP_{exc.status_code}",
    )


async def validation_exception_handler(
    request: Request,
    exc: Union[RequestValidationError, ValidationError],
) -> JSONResponse:
    """Handle Pydantic validation errors."""
    logger.warning(
        f"Validation error on {request.url.path}",
        extra={
            "path": request.url.path,
            "method": request.method,
            "errors": exc.errors(),
        },
    )

    errors = []
    for error in exc.errors():
        field = " -> ".join(str(loc) for loc in error["loc"])
        errors.append({
            "field": field,
            "message": error["msg"],
            "type": error["type"],
        })

    return create_error_response(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        message="Validation error",
        error_code="VALIDATION_ERROR",
        details={"errors": errors},
    )


async def general_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    """Handle all other unhandled exceptions."""
    logger.error(
        f"Unhandled exception on {request.url.path}: {str(exc)}",
        extra={
            "path": request.url.path,
            "method": request.method,
            "traceback": traceback.format_exc(),
        },
        exc_info=True,
    )

    # Don't expose internal details
    return create_error_response(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        message="An unexpected error occurred. Please try again later.",
        error_code="INTERNAL_SERVER_ERROR",
    )


def register_exception_handlers(app):
    """Register all custom exception handlers with FastAPI app."""
    app.add_exception_handler(OpenShopException, openshop_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(ValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)
