"""
API Error Handling Module
=========================

Standardized error response format across all API endpoints.

Every error response has the shape:

    {"error_code": "NOT_FOUND", "message": "Feature 'f-1' not found", "details": {...}}

Core exceptions are translated here so routers can let them propagate:
- AutoModeAlreadyRunningError, FeatureAlreadyRunningError -> 409 CONFLICT
- FeatureNotFoundError -> 404 NOT_FOUND
- PathNotAllowedError -> 403 FORBIDDEN
- RequestValidationError -> 422 VALIDATION_ERROR
- SQLAlchemyError -> 500 DATABASE_ERROR (409 for unique violations)
- anything else -> 500 INTERNAL_ERROR
"""

import logging
from typing import Any

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from starlette.exceptions import HTTPException

from automode.exceptions import (
    AutoModeAlreadyRunningError,
    FeatureAlreadyRunningError,
    FeatureNotFoundError,
)
from automode.secure_fs import PathNotAllowedError

_logger = logging.getLogger(__name__)


class ErrorCode:
    """Machine-readable error codes."""
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    DATABASE_ERROR = "DATABASE_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"
    BAD_REQUEST = "BAD_REQUEST"
    FORBIDDEN = "FORBIDDEN"


# =============================================================================
# Custom Exception Classes
# =============================================================================


class APIError(Exception):
    """Base class for exceptions raised directly by routers."""

    def __init__(
        self,
        error_code: str,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: dict[str, Any] | None = None
    ):
        self.error_code = error_code
        self.message = message
        self.status_code = status_code
        self.details = details
        super().__init__(message)


class NotFoundError(APIError):
    """
    Resource not found.

    Example:
        raise NotFoundError("provider", "foo")
        # {"error_code": "NOT_FOUND", "message": "Provider 'foo' not found"}
    """

    def __init__(self, resource: str, identifier: Any = None, message: str | None = None):
        if message is None:
            if identifier is not None:
                message = f"{resource.title()} '{identifier}' not found"
            else:
                message = f"{resource.title()} not found"

        details = {"resource": resource}
        if identifier is not None:
            details["id"] = identifier

        super().__init__(ErrorCode.NOT_FOUND, message, status.HTTP_404_NOT_FOUND, details)


class ConflictError(APIError):
    """Request conflicts with current state (e.g. a dependency cycle)."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(ErrorCode.CONFLICT, message, status.HTTP_409_CONFLICT, details)


class BadRequestError(APIError):
    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(ErrorCode.BAD_REQUEST, message, status.HTTP_400_BAD_REQUEST, details)


# =============================================================================
# Exception Handlers
# =============================================================================


def create_error_response(
    error_code: str,
    message: str,
    details: dict[str, Any] | None = None
) -> dict[str, Any]:
    response = {
        "error_code": error_code,
        "message": message
    }
    if details is not None:
        response["details"] = details
    return response


def _error(status_code: int, error_code: str, message: str, details: dict[str, Any] | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=create_error_response(error_code, message, details),
    )


async def api_error_handler(request: Request, exc: APIError) -> JSONResponse:
    return _error(exc.status_code, exc.error_code, exc.message, exc.details)


async def already_running_handler(request: Request, exc: Exception) -> JSONResponse:
    details = None
    if isinstance(exc, FeatureAlreadyRunningError):
        details = {"featureId": exc.feature_id}
    elif isinstance(exc, AutoModeAlreadyRunningError) and exc.project_path:
        details = {"projectPath": exc.project_path}
    return _error(status.HTTP_409_CONFLICT, ErrorCode.CONFLICT, str(exc), details)


async def feature_not_found_handler(request: Request, exc: FeatureNotFoundError) -> JSONResponse:
    return _error(
        status.HTTP_404_NOT_FOUND,
        ErrorCode.NOT_FOUND,
        str(exc),
        {"resource": "feature", "id": exc.feature_id},
    )


async def path_not_allowed_handler(request: Request, exc: PathNotAllowedError) -> JSONResponse:
    _logger.warning("Rejected path outside allowed root: %s", exc.path)
    return _error(status.HTTP_403_FORBIDDEN, ErrorCode.FORBIDDEN, str(exc))


async def validation_error_handler(
    request: Request,
    exc: RequestValidationError
) -> JSONResponse:
    """Convert FastAPI/Pydantic validation errors, keeping per-field details."""
    errors = []
    for error in exc.errors():
        loc = error.get("loc", [])
        field_parts = [str(p) for p in loc if p not in ("body", "query")]
        field = ".".join(field_parts) if field_parts else "unknown"

        errors.append({
            "field": field,
            "message": error.get("msg", "Validation error"),
            "type": error.get("type", "value_error")
        })

    if len(errors) == 1:
        message = f"Validation error on field '{errors[0]['field']}': {errors[0]['message']}"
    else:
        message = f"Validation failed with {len(errors)} errors"

    return _error(
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        ErrorCode.VALIDATION_ERROR,
        message,
        {"errors": errors},
    )


async def http_exception_handler(
    request: Request,
    exc: HTTPException
) -> JSONResponse:
    status_to_code = {
        400: ErrorCode.BAD_REQUEST,
        403: ErrorCode.FORBIDDEN,
        404: ErrorCode.NOT_FOUND,
        409: ErrorCode.CONFLICT,
        422: ErrorCode.VALIDATION_ERROR,
    }
    error_code = status_to_code.get(exc.status_code, ErrorCode.INTERNAL_ERROR)
    message = str(exc.detail) if exc.detail else "An error occurred"
    return _error(exc.status_code, error_code, message)


async def sqlalchemy_error_handler(
    request: Request,
    exc: SQLAlchemyError
) -> JSONResponse:
    """Database errors are logged; clients only see a generic message."""
    _logger.exception("Database error: %s", exc)

    if isinstance(exc, IntegrityError):
        error_str = str(exc.orig) if hasattr(exc, "orig") else str(exc)
        if "UNIQUE constraint failed" in error_str:
            return _error(
                status.HTTP_409_CONFLICT,
                ErrorCode.CONFLICT,
                "Duplicate value: resource already exists",
            )

    return _error(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        ErrorCode.DATABASE_ERROR,
        "A database error occurred",
    )


async def generic_exception_handler(
    request: Request,
    exc: Exception
) -> JSONResponse:
    _logger.exception("Unhandled exception: %s", exc)
    return _error(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        ErrorCode.INTERNAL_ERROR,
        "An unexpected error occurred",
    )


def register_exception_handlers(app) -> None:
    """
    Register all exception handlers with the FastAPI app.

    Example:
        from server.exceptions import register_exception_handlers

        app = FastAPI()
        register_exception_handlers(app)
    """
    app.add_exception_handler(APIError, api_error_handler)
    app.add_exception_handler(AutoModeAlreadyRunningError, already_running_handler)
    app.add_exception_handler(FeatureAlreadyRunningError, already_running_handler)
    app.add_exception_handler(FeatureNotFoundError, feature_not_found_handler)
    app.add_exception_handler(PathNotAllowedError, path_not_allowed_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(SQLAlchemyError, sqlalchemy_error_handler)
    app.add_exception_handler(Exception, generic_exception_handler)


__all__ = [
    "ErrorCode",
    "APIError",
    "NotFoundError",
    "ConflictError",
    "BadRequestError",
    "register_exception_handlers",
]
