"""
Base service layer patterns for business logic encapsulation.

This module provides foundational patterns for the service layer:
- ServiceResult: Standard result wrapper for consistent success/failure handling
- BaseService: Base class with common service utilities

Service Layer Philosophy:
    Services encapsulate business logic separate from transports and models.
    Callers (HTTP handlers, tool adapters, Celery tasks) only ever see a
    ServiceResult; domain exceptions stay inside the service.

Pattern Comparison:
    - ServiceResult: What a public operation returns, success or failure
    - Exceptions: How the steps inside an operation signal failure

Usage:
    from core.services import BaseService, ServiceResult

    class EscrowService(BaseService):
        def dispute(self, escrow_id: str, actor: str, reason: str) -> ServiceResult[Escrow]:
            try:
                escrow = self._apply(...)
            except BaseApplicationError as e:
                return self.handle_exception(e, "dispute", log_level=logging.INFO)
            return ServiceResult.success(escrow)

Related:
    - core.exceptions: The domain error hierarchy converted here
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Generic, TypeVar

from django.db import transaction

from .exceptions import BaseApplicationError

if TYPE_CHECKING:
    from collections.abc import Generator
    from typing import Any

# Generic type for ServiceResult data
T = TypeVar("T")


@dataclass
class ServiceResult(Generic[T]):
    """
    Standard result wrapper for service operations.

    Attributes:
        success: Whether the operation succeeded
        data: Result data if successful (None if failed)
        error: Error message if failed (None if successful)
        error_code: Machine-readable error code for caller handling
        errors: Field-level errors for validation failures
        retryable: Whether repeating the same call may succeed

    Usage:
        result = service.release(escrow_id, actor="ag_creator")
        if result.success:
            escrow = result.data
        elif result.retryable:
            schedule_retry()
        else:
            print(f"Error: {result.error} ({result.error_code})")
    """

    success: bool
    data: T | None = None
    error: str | None = None
    error_code: str | None = None
    errors: dict[str, list[str]] | None = field(default=None)
    retryable: bool = False

    @classmethod
    def success(cls, data: T) -> ServiceResult[T]:
        """
        Create a successful result.

        Args:
            data: The result data

        Returns:
            ServiceResult with success=True and data set
        """
        return cls(success=True, data=data)

    @classmethod
    def failure(
        cls,
        error: str,
        error_code: str | None = None,
        errors: dict[str, list[str]] | None = None,
        retryable: bool = False,
    ) -> ServiceResult[T]:
        """
        Create a failed result.

        Args:
            error: Human-readable error message
            error_code: Machine-readable error code
            errors: Field-level errors (for validation failures)
            retryable: Whether the caller may retry

        Returns:
            ServiceResult with success=False and error details
        """
        return cls(
            success=False,
            error=error,
            error_code=error_code,
            errors=errors,
            retryable=retryable,
        )

    @classmethod
    def from_exception(cls, exc: Exception, error_code: str | None = None) -> ServiceResult[T]:
        """
        Create a failed result from an exception.

        Application errors keep their message, code, field errors and
        retryable flag. Anything else becomes a generic failure so that
        internal details never leak to callers.

        Args:
            exc: The caught exception
            error_code: Optional error code override

        Returns:
            ServiceResult with error details from exception
        """
        if isinstance(exc, BaseApplicationError):
            return cls.failure(
                exc.message,
                error_code=error_code or exc.error_code,
                errors=exc.details.get("errors"),
                retryable=exc.retryable,
            )
        return cls.failure(
            "Internal error, please retry later",
            error_code=error_code or "INTERNAL_ERROR",
        )

    def to_response(self) -> dict[str, Any]:
        """
        Convert to a plain response payload.

        Returns:
            Dict with success status and data or error details
        """
        if self.success:
            return {"success": True, "data": self.data}

        response: dict[str, Any] = {
            "success": False,
            "error": self.error,
        }
        if self.error_code:
            response["error_code"] = self.error_code
        if self.errors:
            response["errors"] = self.errors
        if self.retryable:
            response["retryable"] = True
        return response

    def __bool__(self) -> bool:
        """Allow using result in boolean context (same as ``result.success``)."""
        return self.success


class BaseService:
    """
    Base class for service layer classes.

    Provides common utilities for services:
    - Logging setup per service
    - Database transaction management
    - Exception to result conversion
    """

    @classmethod
    def get_logger(cls) -> logging.Logger:
        """
        Get logger for this service.

        Returns a logger named after the service class for
        easy filtering in logs.
        """
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    @classmethod
    @contextmanager
    def atomic(cls) -> Generator[None, None, None]:
        """
        Execute operations in a database transaction.

        All database operations within this context manager are
        wrapped in a transaction. If any operation raises, all
        changes are rolled back.

        Example:
            with self.atomic():
                store.transition(...)
                store.append_event(...)
                # If the event insert fails, the status change is rolled back
        """
        with transaction.atomic():
            yield

    @classmethod
    def handle_exception(
        cls,
        exc: Exception,
        context: str = "",
        log_level: int = logging.ERROR,
        extra: dict[str, Any] | None = None,
    ) -> ServiceResult:
        """
        Convert exception to ServiceResult with logging.

        Application errors are logged at ``log_level``; anything else is
        unexpected and is logged at ERROR with the traceback.

        Args:
            exc: The caught exception
            context: Operation name for the log line
            log_level: Logging level for application errors
            extra: Structured context for the log record

        Returns:
            ServiceResult with error details
        """
        logger = cls.get_logger()
        message = f"{context} failed: {exc}" if context else str(exc)
        if isinstance(exc, BaseApplicationError):
            logger.log(log_level, message, extra=extra or {})
        else:
            logger.error(message, extra=extra or {}, exc_info=True)
        return ServiceResult.from_exception(exc)
