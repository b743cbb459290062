"""Standardized error handling and response schemas for the REST API.

Error Response Format:
    All errors return JSON with this structure:
    {
        "code": "VALIDATION_ERROR",
        "message": "Human-readable description",
        "details": {"additional": "context"}
    }

Error Categories:
    - Validation errors: VALIDATION_ERROR, INVALID_LAYER_INDEX,
      INVALID_FILE_PATH, INVALID_COMMAND
    - Resource errors: NOT_FOUND
    - System errors: INTERNAL_ERROR, SERVICE_UNAVAILABLE, RATE_LIMIT_EXCEEDED

Logging Strategy:
    DEBUG - Error creation
    INFO  - Client errors (4xx)
    WARN  - Request validation failures, service unavailable
    ERROR - Server errors (5xx), unexpected exceptions

Usage:
    >>> raise_validation_error("Layer index must be between 0 and 1", code=ErrorCode.INVALID_LAYER_INDEX)
"""
from __future__ import annotations

from enum import Enum
from typing import Any, Optional
import logging

from fastapi import HTTPException, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

# ============================================================================
# Error Response Schema
# ============================================================================

class ErrorResponse(BaseModel):
    """Standardized error response schema for all API errors.

    Attributes:
        code: Machine-readable error code (from ErrorCode enum)
        message: Human-readable error message for display
        details: Optional additional context
    """

    code: str = Field(..., description="Error code for programmatic handling")
    message: str = Field(..., description="Human-readable error message")
    details: Optional[dict[str, Any]] = Field(None, description="Additional error details")

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "code": "INVALID_LAYER_INDEX",
                    "message": "Layer index must be between 0 and 1",
                    "details": {"index": 2}
                }
            ]
        }
    }


# ============================================================================
# Error Codes Enum
# ============================================================================

class ErrorCode(str, Enum):
    """Standardized error codes for the API."""

    # Validation errors (400, 422)
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_LAYER_INDEX = "INVALID_LAYER_INDEX"
    INVALID_FILE_PATH = "INVALID_FILE_PATH"
    INVALID_COMMAND = "INVALID_COMMAND"

    # Resource errors (404)
    NOT_FOUND = "NOT_FOUND"

    # System errors (429, 500, 503)
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    INTERNAL_ERROR = "INTERNAL_ERROR"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"


# ============================================================================
# Error Response Factory
# ============================================================================

def create_error_response(
    code: ErrorCode | str,
    message: str,
    details: Optional[dict[str, Any]] = None
) -> ErrorResponse:
    """Create a standardized error response.

    Args:
        code: Error code (ErrorCode enum or string)
        message: Human-readable error message
        details: Optional additional error context

    Returns:
        Structured ErrorResponse object
    """
    code_str = code.value if isinstance(code, ErrorCode) else code
    logger.debug(f"Creating error response: code={code_str}, message={message}")
    return ErrorResponse(code=code_str, message=message, details=details)


# ============================================================================
# Specialized Error Raisers
# ============================================================================

def raise_validation_error(
    message: str,
    details: Optional[dict[str, Any]] = None,
    code: ErrorCode = ErrorCode.VALIDATION_ERROR
) -> None:
    """Raise a standardized 400 validation error.

    Used for checks that depend on runtime configuration and are not
    covered by the Pydantic request models.

    Raises:
        HTTPException: 400 error with standardized format
    """
    logger.debug(f"Validation error: {message}, details={details}")

    error = create_error_response(code=code, message=message, details=details)
    raise HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail=error.model_dump()
    )


def raise_not_found(resource: str, resource_id: str) -> None:
    """Raise a standardized 404 error.

    Raises:
        HTTPException: 404 error with standardized format
    """
    logger.debug(f"Resource not found: {resource} with id={resource_id}")

    error = create_error_response(
        code=ErrorCode.NOT_FOUND,
        message=f"{resource.capitalize()} not found",
        details={"resource": resource, "id": resource_id}
    )
    raise HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=error.model_dump()
    )


def raise_service_unavailable(
    message: str = "Service temporarily unavailable",
    details: Optional[dict[str, Any]] = None
) -> None:
    """Raise a standardized 503 service unavailable error.

    Raises:
        HTTPException: 503 error with standardized format
    """
    logger.warning(f"Service unavailable: {message}, details={details}")

    error = create_error_response(
        code=ErrorCode.SERVICE_UNAVAILABLE,
        message=message,
        details=details
    )
    raise HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=error.model_dump()
    )


# ============================================================================
# Global Exception Handlers
# ============================================================================

async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError
) -> JSONResponse:
    """Handle Pydantic validation errors with standardized format (422)."""
    error_count = len(exc.errors())
    logger.warning(
        f"Validation failed: {request.method} {request.url.path} "
        f"({error_count} error(s))"
    )
    logger.debug(f"Validation errors: {exc.errors()}")

    error = create_error_response(
        code=ErrorCode.VALIDATION_ERROR,
        message="Request validation failed",
        details={
            "errors": jsonable_encoder(exc.errors()),
            "body": str(exc.body) if exc.body else None
        }
    )

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=error.model_dump()
    )


async def http_exception_handler(
    request: Request,
    exc: HTTPException
) -> JSONResponse:
    """Handle HTTPException with standardized format.

    Pre-formatted details pass through; anything else is wrapped.
    """
    if exc.status_code >= 500:
        logger.error(
            f"Server error: {request.method} {request.url.path} "
            f"-> {exc.status_code}: {exc.detail}"
        )
    else:
        logger.info(
            f"Client error: {request.method} {request.url.path} "
            f"-> {exc.status_code}: {exc.detail}"
        )

    headers = getattr(exc, "headers", None)

    if isinstance(exc.detail, dict) and "code" in exc.detail:
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.detail,
            headers=headers
        )

    code = ErrorCode.NOT_FOUND if exc.status_code == 404 else ErrorCode.INTERNAL_ERROR
    error = create_error_response(
        code=code,
        message=str(exc.detail) if exc.detail else "An error occurred"
    )

    return JSONResponse(
        status_code=exc.status_code,
        content=error.model_dump(),
        headers=headers
    )


async def general_exception_handler(
    request: Request,
    exc: Exception
) -> JSONResponse:
    """Handle unexpected exceptions with a generic 500 response."""
    logger.error(
        f"Unhandled exception: {request.method} {request.url.path} "
        f"-> {type(exc).__name__}: {str(exc)}",
        exc_info=exc
    )

    error = create_error_response(
        code=ErrorCode.INTERNAL_ERROR,
        message="An internal server error occurred"
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error.model_dump()
    )
