"""
Escrow-specific exceptions.

Every kind of failure an escrow operation can report has its own class and
error code. Services raise these internally and convert them to a failed
ServiceResult at their public boundary.

Exception Hierarchy:
    EscrowValidationError (ValidationError)          VALIDATION_ERROR
    EscrowNotFoundError (NotFoundError)              NOT_FOUND
    EscrowForbiddenError (PermissionDeniedError)     FORBIDDEN
    InvalidStateTransitionError (ConflictError)      INVALID_STATE
    InsufficientFundsError (ConflictError)           INSUFFICIENT_FUNDS
    LedgerFailureError (ExternalServiceError)        LEDGER_FAILURE      retryable
    PersistenceFailureError (BaseApplicationError)   PERSISTENCE_FAILURE retryable

Usage:
    from escrow.exceptions import EscrowForbiddenError

    if actor != escrow.creator:
        raise EscrowForbiddenError("Only the creator can release this escrow")
"""

from __future__ import annotations

from core.exceptions import (
    BaseApplicationError,
    ConflictError,
    ExternalServiceError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)

# Message returned to callers for operational failures; the specifics
# go to the log only
RETRY_LATER_MESSAGE = "Temporary failure, please retry later"


class EscrowValidationError(ValidationError):
    """Malformed or out-of-range input (amount, description, counterparty)."""

    default_error_code: str = "VALIDATION_ERROR"


class EscrowNotFoundError(NotFoundError):
    """Unknown escrow id, or a participant without a balance account."""

    default_error_code: str = "NOT_FOUND"


class EscrowForbiddenError(PermissionDeniedError):
    """The actor does not hold the role the transition requires."""

    default_error_code: str = "FORBIDDEN"


class InvalidStateTransitionError(ConflictError):
    """
    The escrow's status does not allow the requested transition.

    Also raised when the guarded update finds that another caller
    already moved the escrow out of the expected status.
    """

    default_error_code: str = "INVALID_STATE"


class InsufficientFundsError(ConflictError):
    """The creator's balance cannot cover the escrow amount."""

    default_error_code: str = "INSUFFICIENT_FUNDS"


class LedgerFailureError(ExternalServiceError):
    """
    The balance ledger failed during a credit or lookup.

    Nothing is committed on the escrow side; the same call may be retried
    because every ledger movement carries an idempotency key.
    """

    default_error_code: str = "LEDGER_FAILURE"

    def __init__(self, message: str = RETRY_LATER_MESSAGE, **kwargs):
        super().__init__(message, **kwargs)


class PersistenceFailureError(BaseApplicationError):
    """Writing the escrow record, event or counters failed."""

    default_error_code: str = "PERSISTENCE_FAILURE"
    retryable: bool = True

    def __init__(self, message: str = RETRY_LATER_MESSAGE, **kwargs):
        super().__init__(message, **kwargs)
