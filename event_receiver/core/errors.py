"""
Error taxonomy for message processing.

Every failure the processor can observe is tagged with an ErrorKind. Adapters
(account store, queue client) translate their library exceptions into these
tagged errors at their boundary, and the processor only ever looks at the tag.
"""
from enum import Enum
from typing import Optional


class ErrorKind(Enum):
    """Closed set of failure tags seen by the processor."""

    DECODE = "decode"
    ACCOUNT_NOT_FOUND = "account_not_found"
    UNRECOGNIZED_KIND = "unrecognized_kind"
    CONCURRENCY_CONFLICT = "concurrency_conflict"
    TIMEOUT = "timeout"
    UNAVAILABLE = "unavailable"
    INVALID_OPERATION = "invalid_operation"
    UNCLASSIFIED = "unclassified"


class FailureClass(Enum):
    """Classification of failures for retry logic."""

    TRANSIENT = "transient"  # Retry these
    PERMANENT = "permanent"  # Don't retry these


_TRANSIENT_KINDS = frozenset(
    {
        ErrorKind.CONCURRENCY_CONFLICT,
        ErrorKind.TIMEOUT,
        ErrorKind.UNAVAILABLE,
        ErrorKind.INVALID_OPERATION,
    }
)


def classify(kind: ErrorKind) -> FailureClass:
    """
    Map an error tag to its failure class.

    Args:
        kind: Error tag

    Returns:
        FailureClass: TRANSIENT for contention/availability problems,
        PERMANENT for everything else
    """
    if kind in _TRANSIENT_KINDS:
        return FailureClass.TRANSIENT
    return FailureClass.PERMANENT


def error_kind_of(error: BaseException) -> ErrorKind:
    """Return the tag of a receiver error, UNCLASSIFIED for anything else."""
    if isinstance(error, ReceiverError):
        return error.kind
    return ErrorKind.UNCLASSIFIED


class ReceiverError(Exception):
    """Base exception for tagged processing errors."""

    kind: ErrorKind = ErrorKind.UNCLASSIFIED

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        """
        Initialize receiver error.

        Args:
            message: Error message
            original_error: Library exception this error was translated from
        """
        super().__init__(message)
        self.original_error = original_error


class DecodeError(ReceiverError):
    """Raised when a message payload is not a valid transaction record."""

    kind = ErrorKind.DECODE


class AccountNotFound(ReceiverError):
    """Raised when a transaction targets an account that does not exist."""

    kind = ErrorKind.ACCOUNT_NOT_FOUND


class UnrecognizedTransactionKind(ReceiverError):
    """Raised when a transaction kind is neither Credit nor Debit."""

    kind = ErrorKind.UNRECOGNIZED_KIND


class StoreError(ReceiverError):
    """Base exception for account store failures."""

    pass


class ConcurrencyConflict(StoreError):
    """Raised when the account version changed since it was read."""

    kind = ErrorKind.CONCURRENCY_CONFLICT


class StoreTimeout(StoreError):
    """Raised when a store call did not finish within its timeout."""

    kind = ErrorKind.TIMEOUT


class StoreUnavailable(StoreError):
    """Raised when the store cannot be reached."""

    kind = ErrorKind.UNAVAILABLE


class InvalidStoreOperation(StoreError):
    """Raised when the store rejects an operation in its current state."""

    kind = ErrorKind.INVALID_OPERATION


class BalanceOutOfRange(StoreError):
    """Raised when a balance cannot be stored without rounding. Unclassified, so permanent."""


class QueueError(ReceiverError):
    """Base exception for queue client failures."""

    pass


class InvalidQueueOperation(QueueError):
    """Raised when a message is settled in a state that does not allow it."""

    kind = ErrorKind.INVALID_OPERATION
