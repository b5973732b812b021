"""
Standardized API Response Module

Provides consistent response formatting across all API endpoints.

RESPONSE FORMAT:
    Success:
        {
            "ok": true,
            "data": <response data>
        }

    Error:
        {
            "ok": false,
            "error": "Human-readable message",
            "code": "ERROR_CODE",
            "details": {...}  # Optional extra context
        }

Services and routes raise ``ApiError`` (or FastAPI's ``HTTPException``); the
handlers registered by ``register_exception_handlers`` turn both into the
error envelope so clients only ever see one shape.
"""

import logging
from typing import Any, Optional

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


# ============================================================================
# COMMON ERROR CODES
# ============================================================================

class ErrorCodes:
    """Standard error codes for API responses."""

    # Authentication errors (401)
    AUTHENTICATION_REQUIRED = "AUTHENTICATION_REQUIRED"
    INVALID_TOKEN = "INVALID_TOKEN"

    # Authorization errors (403)
    AUTHORIZATION_DENIED = "AUTHORIZATION_DENIED"
    NOT_TENANT_MEMBER = "NOT_TENANT_MEMBER"
    PLAN_LIMIT_EXCEEDED = "PLAN_LIMIT_EXCEEDED"

    # Not found errors (404)
    NOT_FOUND = "NOT_FOUND"
    TENANT_NOT_FOUND = "TENANT_NOT_FOUND"

    # Validation errors (400/422)
    VALIDATION_ERROR = "VALIDATION_ERROR"
    BAD_REQUEST = "BAD_REQUEST"

    # Conflict errors (409)
    CONFLICT = "CONFLICT"

    # Throttling (429)
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"

    # Server errors (500)
    INTERNAL_ERROR = "INTERNAL_ERROR"


_STATUS_CODES = {
    status.HTTP_400_BAD_REQUEST: ErrorCodes.BAD_REQUEST,
    status.HTTP_401_UNAUTHORIZED: ErrorCodes.AUTHENTICATION_REQUIRED,
    status.HTTP_403_FORBIDDEN: ErrorCodes.AUTHORIZATION_DENIED,
    status.HTTP_404_NOT_FOUND: ErrorCodes.NOT_FOUND,
    status.HTTP_409_CONFLICT: ErrorCodes.CONFLICT,
    status.HTTP_422_UNPROCESSABLE_ENTITY: ErrorCodes.VALIDATION_ERROR,
    status.HTTP_429_TOO_MANY_REQUESTS: ErrorCodes.RATE_LIMIT_EXCEEDED,
}


class ApiError(Exception):
    """An error that maps directly onto the error envelope."""

    def __init__(
        self,
        status_code: int,
        code: str,
        message: str,
        details: Optional[dict] = None,
        headers: Optional[dict[str, str]] = None,
    ):
        self.status_code = status_code
        self.code = code
        self.message = message
        self.details = details
        self.headers = headers
        super().__init__(message)

    @classmethod
    def not_found(cls, what: str) -> "ApiError":
        return cls(status.HTTP_404_NOT_FOUND, ErrorCodes.NOT_FOUND, f"{what} not found")


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def success_response(data: Any) -> dict:
    """Create a standardized success response dict."""
    return {"ok": True, "data": data}


def error_response(
    code: str,
    message: str,
    details: Optional[dict] = None,
) -> dict:
    """Create a standardized error response dict."""
    response = {"ok": False, "error": message, "code": code}
    if details:
        response["details"] = jsonable_encoder(details)
    return response


# ============================================================================
# EXCEPTION HANDLERS
# ============================================================================

async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=error_response(exc.code, exc.message, exc.details),
        headers=exc.headers,
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    code = _STATUS_CODES.get(exc.status_code, ErrorCodes.INTERNAL_ERROR)
    details = None
    message = exc.detail
    if isinstance(exc.detail, dict):
        code = exc.detail.get("code", code)
        message = exc.detail.get("message") or exc.detail.get("error") or code
        details = {k: v for k, v in exc.detail.items() if k not in ("code", "message", "error")}
    return JSONResponse(
        status_code=exc.status_code,
        content=error_response(code, str(message), details),
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=error_response(
            ErrorCodes.VALIDATION_ERROR,
            "Request validation failed",
            {"errors": exc.errors()},
        ),
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    request_id = getattr(request.state, "request_id", None)
    logger.exception(f"Unhandled error on {request.method} {request.url.path} (request_id={request_id})")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_response(ErrorCodes.INTERNAL_ERROR, "Internal server error"),
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
