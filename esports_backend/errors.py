"""
esports_backend/errors.py
Centralized API error envelope.

ERROR RESPONSE STRUCTURE:
{
    "success": false,
    "error": "ErrorType",
    "message": "Human-readable description",
    "code": "UNIQUE_ERROR_CODE",
    "details": {} (optional)
}

HTTP STATUS CODE DISCIPLINE:
- 400: Invalid input / malformed request
- 401: Actor identity missing
- 403: Actor may not manage this tournament
- 404: Resource does not exist
- 409: State conflict (wrong status, stale write, already declared)
- 422: Resource exhausted (full, balance, prize pool) or schema validation
- 429: Rate limit exceeded
- 500: NEVER caused by user input (internal only)
"""
import logging
import uuid
from typing import Any, Dict, Optional

from fastapi import status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from esports_backend.exceptions import (
    TournamentEngineError,
    ValidationError,
    NotFoundError,
    PermissionDeniedError,
    StateConflictError,
    ResourceExhaustedError,
)

logger = logging.getLogger(__name__)


class ErrorCode:
    """Unique error codes for machine-readable error handling"""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_INPUT = "INVALID_INPUT"

    AUTH_REQUIRED = "AUTH_REQUIRED"
    FORBIDDEN = "FORBIDDEN"

    NOT_FOUND = "NOT_FOUND"

    RATE_LIMITED = "RATE_LIMITED"

    INTERNAL_ERROR = "INTERNAL_ERROR"


class ErrorResponse(BaseModel):
    """Standard error response model"""
    success: bool = False
    error: str
    message: str
    code: str
    details: Optional[Dict[str, Any]] = None


ERROR_TYPES = [
    (ValidationError, "Bad Request"),
    (NotFoundError, "Not Found"),
    (PermissionDeniedError, "Forbidden"),
    (StateConflictError, "Conflict"),
    (ResourceExhaustedError, "Resource Exhausted"),
]


def error_type_for(exc: TournamentEngineError) -> str:
    """Human-readable error family for an engine exception."""
    for exc_class, label in ERROR_TYPES:
        if isinstance(exc, exc_class):
            return label
    return "Error"


def build_error_body(
    error: str,
    message: str,
    code: str,
    details: Optional[Dict[str, Any]] = None
) -> Dict[str, Any]:
    """Build the standard error body."""
    body = {
        "success": False,
        "error": error,
        "message": message,
        "code": code,
    }
    if details:
        body["details"] = details
    return body


def engine_error_response(exc: TournamentEngineError) -> JSONResponse:
    """Convert an engine exception to a FastAPI JSONResponse"""
    return JSONResponse(
        status_code=exc.status_code,
        content=build_error_body(
            error=error_type_for(exc),
            message=exc.message,
            code=exc.code,
            details=exc.details,
        ),
    )


def internal_error_response(exc: Exception, context: str = "") -> JSONResponse:
    """Log an internal error and return a safe 500 response"""
    log_id = str(uuid.uuid4())[:8]
    logger.error(f"[{log_id}] Internal error in {context}: {type(exc).__name__}: {str(exc)}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=build_error_body(
            error="Internal Error",
            message="An unexpected error occurred. Please try again later.",
            code=ErrorCode.INTERNAL_ERROR,
            details={"log_id": log_id},
        ),
    )
