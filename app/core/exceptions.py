"""
Base exception classes for application-wide error handling.

This module provides a standardized exception hierarchy that enables:
- Consistent error responses across the application
- Machine-readable error codes for client handling
- Detailed error information for debugging

Exception Hierarchy:
    BaseApplicationError (base)
    ├── ValidationError - Input validation failures (400)
    ├── NotFoundError - Resource not found (404)
    ├── PermissionDeniedError - Authorization failures (403)
    ├── ConflictError - State conflicts (409)
    └── TransientError - Retryable storage/network failures (503)

Usage:
    from core.exceptions import NotFoundError, TransientError

    raise NotFoundError("Message not found", error_code="MESSAGE_NOT_FOUND")

    try:
        ...
    except BaseApplicationError as e:
        return Response(e.to_dict(), status=e.status_code)

DRF integration:
    REST_FRAMEWORK["EXCEPTION_HANDLER"] = "core.exceptions.api_exception_handler"
    maps the hierarchy above, plus database I/O failures, to HTTP responses.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from django.db import OperationalError
from rest_framework import status

if TYPE_CHECKING:
    from typing import Any

    from rest_framework.response import Response

logger = logging.getLogger(__name__)


class BaseApplicationError(Exception):
    """
    Base exception for all application-specific errors.

    Provides a consistent interface for error handling across the application.
    All custom exceptions should inherit from this class.

    Attributes:
        message: Human-readable error description
        error_code: Machine-readable code for client-side handling
        details: Additional error context (field errors, metadata, etc.)
        status_code: HTTP status used when the error reaches the API layer
        retryable: Whether the caller may safely retry the operation
    """

    default_error_code: str = "APPLICATION_ERROR"
    status_code: int = status.HTTP_400_BAD_REQUEST
    retryable: bool = False

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        """
        Initialize the exception.

        Args:
            message: Human-readable error description
            error_code: Machine-readable error code (defaults to class default)
            details: Additional error context
        """
        self.message = message
        self.error_code = error_code or self.default_error_code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """
        Convert exception to dictionary for API response.

        Returns:
            Dict with error, error_code, and optional details/retryable keys
        """
        result: dict[str, Any] = {
            "error": self.message,
            "error_code": self.error_code,
        }
        if self.details:
            result["details"] = self.details
        if self.retryable:
            result["retryable"] = True
        return result

    def __str__(self) -> str:
        """Return string representation with error code."""
        return f"[{self.error_code}] {self.message}"

    def __repr__(self) -> str:
        """Return detailed representation for debugging."""
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"error_code={self.error_code!r}, "
            f"details={self.details!r})"
        )


class ValidationError(BaseApplicationError):
    """
    Raised when input validation fails.

    Use for malformed, missing or self-referential input. Not retried;
    surfaced to the caller verbatim.
    """

    default_error_code: str = "VALIDATION_ERROR"


class NotFoundError(BaseApplicationError):
    """
    Raised when a requested resource is not found.

    Use for single-resource lookups where existence is expected
    (users, messages, rooms).
    """

    default_error_code: str = "NOT_FOUND"
    status_code: int = status.HTTP_404_NOT_FOUND


class PermissionDeniedError(BaseApplicationError):
    """
    Raised when user lacks permission for an operation.

    The message must not reveal details about the protected resource
    beyond the fact that access was denied.
    """

    default_error_code: str = "PERMISSION_DENIED"
    status_code: int = status.HTTP_403_FORBIDDEN


class ConflictError(BaseApplicationError):
    """
    Raised when operation conflicts with current resource state.

    Use for unique constraint violations and concurrent modification
    conflicts that the service layer could not resolve itself.
    """

    default_error_code: str = "CONFLICT"
    status_code: int = status.HTTP_409_CONFLICT


class TransientError(BaseApplicationError):
    """
    Raised when a storage or network operation failed in a retryable way.

    Use for:
    - Database connection failures
    - Statement/lock timeouts
    - Unavailable channel layer or cache backends

    Callers may retry with backoff. No partial write is implied.
    """

    default_error_code: str = "TRANSIENT"
    status_code: int = status.HTTP_503_SERVICE_UNAVAILABLE
    retryable: bool = True


def api_exception_handler(exc: Exception, context: dict) -> Response | None:
    """
    DRF exception handler extending the default one.

    Handles, in order:
        - BaseApplicationError subclasses: rendered with to_dict()
        - OperationalError (connection loss, statement timeout): TransientError
        - Anything DRF already knows (auth, validation, 404): default handler,
          with the body reshaped to {"error", "error_code"[, "details"]}
    """
    from rest_framework.exceptions import APIException
    from rest_framework.exceptions import ValidationError as DRFValidationError
    from rest_framework.response import Response
    from rest_framework.views import exception_handler

    if isinstance(exc, OperationalError):
        logger.warning(f"Storage operation failed transiently: {exc}")
        exc = TransientError("Storage temporarily unavailable, please retry")

    if isinstance(exc, BaseApplicationError):
        return Response(exc.to_dict(), status=exc.status_code)

    response = exception_handler(exc, context)
    if response is None or not isinstance(exc, APIException):
        return response

    if isinstance(exc, DRFValidationError):
        response.data = {
            "error": "Invalid request",
            "error_code": "VALIDATION_ERROR",
            "details": response.data,
        }
    else:
        response.data = {
            "error": str(exc.detail),
            "error_code": exc.default_code.upper(),
        }
    return response
