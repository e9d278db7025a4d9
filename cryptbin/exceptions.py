"""
Error taxonomy for the paste service.

Store backends return booleans/None for expected conditions (duplicate id,
missing record, unknown namespace). These exceptions are raised by the
service layer and mapped to JSON error responses by the HTTP layer.
"""

from typing import Any, Dict, Optional


class CryptbinError(Exception):
    """Base exception for the paste service."""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        error_code: str = "internal_error",
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details or {}


class ValidationError(CryptbinError):
    """Raised when a submitted envelope or identifier is malformed."""

    def __init__(self, message: str = "Invalid data.", details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(
            message=message,
            status_code=400,
            error_code="validation_error",
            details=details,
        )


class NotFoundError(CryptbinError):
    """Raised when a paste is missing or expired (indistinguishable)."""

    def __init__(self, message: str = "Paste does not exist, has expired or has been deleted.") -> None:
        super().__init__(
            message=message,
            status_code=404,
            error_code="not_found",
        )


class ConflictError(CryptbinError):
    """Raised when an id is already taken; callers may retry with a new id."""

    def __init__(self, message: str = "You are unlucky. Try again.") -> None:
        super().__init__(
            message=message,
            status_code=409,
            error_code="conflict",
        )


class DeletionTokenError(CryptbinError):
    """Raised when a deletion token does not match the paste."""

    def __init__(self, message: str = "Wrong deletion token. Paste was not deleted.") -> None:
        super().__init__(
            message=message,
            status_code=403,
            error_code="wrong_deletion_token",
        )


class CreatorNotAllowedError(CryptbinError):
    """Raised when a creators list is configured and the client is not on it."""

    def __init__(self, message: str = "Your IP is not authorized to create pastes.") -> None:
        super().__init__(
            message=message,
            status_code=403,
            error_code="creator_not_allowed",
        )


class TrafficLimitError(CryptbinError):
    """Raised when a client posts again before the minimum interval elapsed."""

    def __init__(self, limit_seconds: int, retry_after: Optional[int] = None) -> None:
        details = {}
        if retry_after:
            details["retry_after"] = retry_after

        super().__init__(
            message=f"Please wait {limit_seconds} seconds between each post.",
            status_code=429,
            error_code="rate_limit_exceeded",
            details=details,
        )


class BackendUnavailable(CryptbinError):
    """Raised when the storage medium fails (disk, database, object store)."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(
            message=message,
            status_code=503,
            error_code="backend_unavailable",
            details=details,
        )
