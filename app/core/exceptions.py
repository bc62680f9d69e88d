"""
Base exception classes for application-wide error handling.

This module provides the error taxonomy shared by the persistence store,
the service layer, the REST API and the realtime gateway:
- Consistent error payloads for HTTP responses and websocket error events
- Machine-readable error codes for client handling
- Detailed error information for debugging

Exception Hierarchy:
    BaseApplicationError (base)
    ├── InvalidArgument - Malformed request shape or values
    ├── AuthenticationError - Missing or invalid credentials
    ├── AccessDenied - Non-participant attempting a conversation-scoped operation
    ├── NotFoundError - Dangling reference / resource not found
    ├── ConflictError - Unique constraint violations (duplicate creation)
    └── StorageError - Underlying persistence failure

Usage:
    from core.exceptions import AccessDenied, NotFoundError

    # Raise with message only
    raise AccessDenied("You are not a participant in this conversation")

    # Raise with error code and details
    raise NotFoundError(
        "Message not found",
        error_code="MESSAGE_NOT_FOUND",
        details={"message_id": 42},
    )

    # Convert to dict for API response or websocket error event
    try:
        ...
    except BaseApplicationError as e:
        return Response(e.to_dict(), status=e.status_code)

Note:
    AccessDenied, InvalidArgument and NotFoundError are expected outcomes
    reported back to the single caller. StorageError is not retried by
    the store; callers decide.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from typing import Any


class BaseApplicationError(Exception):
    """
    Base exception for all application-specific errors.

    Attributes:
        message: Human-readable error description
        error_code: Machine-readable code for client-side handling
        details: Additional error context (field errors, ids, etc.)
        status_code: HTTP status used by the DRF exception handler
    """

    default_error_code: str = "APPLICATION_ERROR"
    status_code: int = 400

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
            Dict with error, error_code, and details keys

        Example:
            {
                "error": "Conversation not found",
                "error_code": "NOT_FOUND",
                "details": {"conversation_id": 12}
            }
        """
        result: dict[str, Any] = {
            "error": self.message,
            "error_code": self.error_code,
        }
        if self.details:
            result["details"] = self.details
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


class InvalidArgument(BaseApplicationError):
    """
    Raised when a request is malformed.

    Use for:
    - Unknown conversation or message types
    - Empty participant lists or message content
    - Reply references pointing into another conversation
    - Out-of-range pagination parameters
    """

    default_error_code: str = "INVALID_ARGUMENT"
    status_code: int = 400


class AuthenticationError(BaseApplicationError):
    """
    Raised when a realtime handshake carries no valid credential.

    Terminates only the offending connection.
    """

    default_error_code: str = "AUTHENTICATION_FAILED"
    status_code: int = 401


class AccessDenied(BaseApplicationError):
    """
    Raised when a user is not allowed to perform a conversation-scoped operation.

    Example:
        if not store.is_participant(conversation_id, user.id):
            raise AccessDenied(
                "You are not a participant in this conversation",
                error_code="NOT_PARTICIPANT",
            )
    """

    default_error_code: str = "ACCESS_DENIED"
    status_code: int = 403


class NotFoundError(BaseApplicationError):
    """
    Raised when a referenced resource does not exist.

    Use for single-resource lookups where existence is expected and for
    unknown foreign-key references on insert.
    """

    default_error_code: str = "NOT_FOUND"
    status_code: int = 404


class ConflictError(BaseApplicationError):
    """
    Raised when a write violates a uniqueness rule.

    Use for:
    - Duplicate handles
    - Duplicate participant rows
    - A second private conversation for the same user pair

    Note:
        Where creation is idempotent, callers resolve this by returning the
        existing resource instead of failing.
    """

    default_error_code: str = "CONFLICT"
    status_code: int = 409


class StorageError(BaseApplicationError):
    """
    Raised when the underlying persistence layer fails.

    The original database exception is chained (``raise ... from exc``).
    """

    default_error_code: str = "STORAGE_ERROR"
    status_code: int = 503
