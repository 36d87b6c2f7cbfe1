"""Custom exceptions and handlers for consistent error responses.

Provides standardized error formatting, security-safe error messages,
and proper logging for debugging.
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


class ConsoleException(Exception):
    """Base exception for console application errors."""

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


class WizardValidationError(ConsoleException):
    """A step's own input is invalid. Wizard state is left untouched."""

    def __init__(self, message: str, details: Union[dict, list, None] = None):
        super().__init__(
            message=message,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            error_code="WIZARD_VALIDATION_ERROR",
            details=details,
        )


class BranchIndexError(ConsoleException):
    """Branch index outside 0..branch_count-1."""

    def __init__(self, index: int, branch_count: int):
        self.index = index
        self.branch_count = branch_count
        super().__init__(
            message=f"Branch index {index} out of range (branch count: {branch_count})",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            error_code="BRANCH_INDEX_OUT_OF_RANGE",
        )


class IllegalTransitionError(ConsoleException):
    """Requested wizard transition is not defined for the current step."""

    def __init__(self, action: str, current_step: str):
        self.action = action
        self.current_step = current_step
        super().__init__(
            message=f"Cannot {action} while at step {current_step}",
            status_code=status.HTTP_409_CONFLICT,
            error_code="ILLEGAL_TRANSITION",
        )


class TenantApiError(ConsoleException):
    """Transport or HTTP failure talking to the tenant management API."""

    def __init__(self, message: str, error_code: str = "TENANT_API_ERROR"):
        super().__init__(
            message=message,
            status_code=status.HTTP_502_BAD_GATEWAY,
            error_code=error_code,
        )


class ReconciliationError(TenantApiError):
    """Tenant status check failed or returned inconsistent data."""

    def __init__(self, message: str):
        super().__init__(message=message, error_code="RECONCILIATION_FAILED")


class PlanAssignmentError(TenantApiError):
    """Plan assignment rejected or failed. The step does not advance."""

    def __init__(self, message: str):
        super().__init__(message=message, error_code="PLAN_ASSIGNMENT_FAILED")


def create_error_response(
    status_code: int,
    message: str,
    error_code: str = "ERROR",
    details: Union[dict, list, None] = None,
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
    )


async def console_exception_handler(
    request: Request,
    exc: ConsoleException,
) -> JSONResponse:
    """Handle custom console exceptions."""
    logger.warning(
        f"Console exception: {exc.error_code} - {exc.message}",
        extra={
            "error_code": exc.error_code,
            "path": request.url.path,
            "method": request.method,
        },
    )

    return create_error_response(
        status_code=exc.status_code,
        message=exc.message,
        error_code=exc.error_code,
        details=exc.details,
    )


async def http_exception_handler(
    request: Request,
    exc: Union[HTTPException, StarletteHTTPException],
) -> JSONResponse:
    """Handle FastAPI HTTP exceptions."""
    # Log non-4xx errors
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
    app.add_exception_handler(ConsoleException, console_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(ValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)
