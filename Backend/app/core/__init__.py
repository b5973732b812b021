"""
Core module - configuration, database, logging and response formatting.

Request context lives in ``app.core.request_context`` and is imported from
there directly because it depends on the ORM models.
"""
from .config import get_settings
from .db import get_session, Base, engine, AsyncSessionLocal
from .logging_config import configure_logging
from .responses import (
    ApiError,
    ErrorCodes,
    error_response,
    register_exception_handlers,
    success_response,
)

__all__ = [
    # Config
    "get_settings",
    # Database
    "get_session",
    "Base",
    "engine",
    "AsyncSessionLocal",
    # Logging
    "configure_logging",
    # Responses
    "ApiError",
    "ErrorCodes",
    "error_response",
    "register_exception_handlers",
    "success_response",
]
