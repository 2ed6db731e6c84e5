"""
Centralized error handling utilities
"""

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from typing import Any, Dict, Optional
import traceback

from casedrills.utils.constants import ERROR_MESSAGES
from casedrills.utils.logger import logger
from casedrills.config import settings


class AppException(Exception):
    """Base application exception"""

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.status_code = status_code
        self.error_code = error_code or "INTERNAL_ERROR"
        self.details = details or {}
        super().__init__(self.message)


class NotFoundError(AppException):
    """Resource not found exception"""

    def __init__(self, resource: str, identifier: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=f"{resource} not found: {identifier}",
            status_code=status.HTTP_404_NOT_FOUND,
            error_code="NOT_FOUND",
            details={"resource": resource, "identifier": identifier, **(details or {})}
        )


class ValidationError(AppException):
    """Validation error exception"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            error_code="VALIDATION_ERROR",
            details=details or {}
        )


class AuthenticationError(AppException):
    """Missing or invalid credentials"""

    def __init__(self, message: str = ERROR_MESSAGES["AUTH_REQUIRED"]):
        super().__init__(
            message=message,
            status_code=status.HTTP_401_UNAUTHORIZED,
            error_code="AUTH_REQUIRED"
        )


class UnauthorizedError(AppException):
    """Caller does not own the resource"""

    def __init__(self, message: str = ERROR_MESSAGES["NOT_OWNER"], details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            status_code=status.HTTP_403_FORBIDDEN,
            error_code="UNAUTHORIZED",
            details=details or {}
        )


class InvalidStateError(AppException):
    """Transition attempted from a state that does not allow it"""

    def __init__(
        self,
        current: str,
        operation: str,
        message: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message or ERROR_MESSAGES["INVALID_TRANSITION"].format(current=current, operation=operation),
            status_code=status.HTTP_409_CONFLICT,
            error_code="INVALID_STATE",
            details={"current_status": current, "operation": operation, **(details or {})}
        )


class ConflictError(AppException):
    """Optimistic concurrency collision; safe for the caller to retry"""

    def __init__(
        self,
        message: str = ERROR_MESSAGES["VERSION_CONFLICT"],
        error_code: str = "CONFLICT",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            status_code=status.HTTP_409_CONFLICT,
            error_code=error_code,
            details={"retryable": True, **(details or {})}
        )


class AlreadyInProgressError(ConflictError):
    """An active attempt already exists for the user and drill"""

    def __init__(self, attempt_id: str, drill_id: str):
        super().__init__(
            message=ERROR_MESSAGES["ALREADY_IN_PROGRESS"],
            error_code="ALREADY_IN_PROGRESS",
            details={"retryable": False, "attempt_id": attempt_id, "drill_id": drill_id}
        )


class AttemptLimitError(ConflictError):
    """User has reached the limit of simultaneous attempts"""

    def __init__(self, limit: int):
        super().__init__(
            message=ERROR_MESSAGES["ATTEMPT_LIMIT"],
            error_code="ATTEMPT_LIMIT_REACHED",
            details={"retryable": False, "limit": limit}
        )


class EvaluationFailedError(AppException):
    """AI evaluation exhausted its retries"""

    def __init__(self, attempt_id: str, attempts: int, last_error: Optional[str] = None):
        super().__init__(
            message=ERROR_MESSAGES["EVALUATION_FAILED"],
            status_code=status.HTTP_502_BAD_GATEWAY,
            error_code="EVALUATION_FAILED",
            details={"attempt_id": attempt_id, "attempts": attempts, "last_error": last_error}
        )


def create_error_response(
    message: str,
    status_code: int,
    error_code: str,
    details: Optional[Dict[str, Any]] = None,
    request_id: Optional[str] = None
) -> JSONResponse:
    """
    Create standardized error response

    Args:
        message: Error message
        status_code: HTTP status code
        error_code: Application error code
        details: Additional error details
        request_id: Request ID for tracking

    Returns:
        JSONResponse with error details
    """
    response_data = {
        "success": False,
        "error": {
            "code": error_code,
            "message": message,
            "details": details or {}
        }
    }

    if request_id:
        response_data["error"]["request_id"] = request_id

    return JSONResponse(
        status_code=status_code,
        content=response_data
    )


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Global exception handler for unhandled exceptions"""
    request_id = getattr(request.state, "request_id", None)

    logger.error(
        "Unhandled exception",
        exc_info=exc,
        extra={
            "request_id": request_id,
            "path": request.url.path,
            "method": request.method
        }
    )

    error_message = str(exc) if settings.DEBUG else "An unexpected error occurred"
    error_details = {"traceback": traceback.format_exc()} if settings.DEBUG else {}

    return create_error_response(
        message=error_message,
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        error_code="INTERNAL_SERVER_ERROR",
        details=error_details,
        request_id=request_id
    )


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handler for application exceptions"""
    request_id = getattr(request.state, "request_id", None)

    logger.warning(
        f"Application exception: {exc.message}",
        extra={
            "request_id": request_id,
            "error_code": exc.error_code,
            "status_code": exc.status_code,
            "details": exc.details
        }
    )

    return create_error_response(
        message=exc.message,
        status_code=exc.status_code,
        error_code=exc.error_code,
        details=exc.details,
        request_id=request_id
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handler for HTTP exceptions"""
    request_id = getattr(request.state, "request_id", None)

    return create_error_response(
        message=str(exc.detail),
        status_code=exc.status_code,
        error_code="HTTP_ERROR",
        request_id=request_id
    )


async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError
) -> JSONResponse:
    """Handler for request body validation errors"""
    request_id = getattr(request.state, "request_id", None)

    errors = [
        {
            "field": ".".join(str(loc) for loc in error.get("loc", [])),
            "message": error.get("msg"),
            "type": error.get("type")
        }
        for error in exc.errors()
    ]

    logger.warning(
        "Validation error",
        extra={
            "request_id": request_id,
            "errors": errors
        }
    )

    return create_error_response(
        message="Validation failed",
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        error_code="VALIDATION_ERROR",
        details={"validation_errors": errors},
        request_id=request_id
    )
