"""
Base exception classes for application-wide error handling.

This module provides a standardized exception hierarchy that enables:
- Consistent failure results across every service
- Machine-readable error codes for callers
- Detailed error information for debugging

Exception Hierarchy:
    BaseApplicationError (base)
    ├── ValidationError - Input validation failures
    ├── NotFoundError - Resource not found
    ├── PermissionDeniedError - Authorization failures
    ├── ConflictError - State conflicts (invalid transitions, lost races)
    └── ExternalServiceError - Collaborator failures (retryable)

Usage:
    from core.exceptions import ValidationError, NotFoundError

    # Raise with message only
    raise ValidationError("Amount must be positive")

    # Raise with additional details
    raise ValidationError(
        "Validation failed",
        details={"errors": {"amount": ["Must be at least 0.10"]}},
    )

    # Convert to a failed ServiceResult at the service boundary
    try:
        ...
    except BaseApplicationError as e:
        return ServiceResult.from_exception(e)

Note:
    These exceptions are for domain/business logic errors. They are raised
    inside services and converted to ServiceResult at the public boundary.
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
        error_code: Machine-readable code for caller-side handling
        details: Additional error context (field errors, metadata, etc.)
        retryable: Whether the caller may safely repeat the operation

    Example:
        try:
            escrow = store.get(escrow_id)
        except NotFoundError as e:
            logger.warning(f"Escrow not found: {e.error_code}")
            return ServiceResult.from_exception(e)
    """

    default_error_code: str = "APPLICATION_ERROR"
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
        Convert exception to a plain dictionary.

        Returns:
            Dict with error, error_code, and details keys

        Example:
            {
                "error": "Escrow esc_0123456789abcdef not found",
                "error_code": "NOT_FOUND",
                "details": {"escrow_id": "esc_0123456789abcdef"}
            }
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

    Field-level messages go under ``details["errors"]`` so the service
    boundary can surface them as ``ServiceResult.errors``.

    Example:
        raise ValidationError(
            "Validation failed",
            details={"errors": {"description": ["Too short"]}},
        )
    """

    default_error_code: str = "VALIDATION_ERROR"


class NotFoundError(BaseApplicationError):
    """
    Raised when a requested resource is not found.

    Example:
        raise NotFoundError(
            f"Account {account_id} not found",
            details={"account_id": account_id},
        )
    """

    default_error_code: str = "NOT_FOUND"


class PermissionDeniedError(BaseApplicationError):
    """
    Raised when the actor lacks permission for an operation.

    Use for role checks (e.g. only the creator may release), not for
    identity resolution, which happens before the service is called.
    """

    default_error_code: str = "PERMISSION_DENIED"


class ConflictError(BaseApplicationError):
    """
    Raised when an operation conflicts with current resource state.

    Use for:
    - Invalid state transitions
    - Concurrent modification conflicts (lost compare-and-swap)
    - Duplicate entries

    Example:
        if escrow.status != "funded":
            raise ConflictError(
                f"Cannot complete escrow in {escrow.status} status",
                details={"current_status": escrow.status, "action": "complete"},
            )
    """

    default_error_code: str = "CONFLICT"


class ExternalServiceError(BaseApplicationError):
    """
    Raised when an external collaborator call fails.

    These failures are transient from the caller's point of view, so they
    are marked retryable. Log the original error for debugging but do not
    expose internal details to callers.

    Example:
        try:
            balance_ledger.credit(account_id, amount, reason, key)
        except Exception as e:
            raise ExternalServiceError(
                "Balance ledger unavailable, please retry later",
                details={"original_error": str(e)},
            ) from e
    """

    default_error_code: str = "EXTERNAL_SERVICE_ERROR"
    retryable: bool = True
