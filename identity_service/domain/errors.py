"""Errors raised by identity reconciliation."""


class ReconciliationError(Exception):
    """Base class for reconciliation failures."""

    code = "RECONCILIATION_ERROR"

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class ValidationError(ReconciliationError):
    """Malformed input, rejected before any read or write."""

    code = "VALIDATION_ERROR"


class StoreError(ReconciliationError):
    """The contact store failed during a read or write."""

    code = "SERVICE_UNAVAILABLE"


class InvariantViolation(ReconciliationError):
    """Stored identity groups are not in a shape that can be resolved safely."""

    code = "INVARIANT_VIOLATION"


class LockTimeout(ReconciliationError):
    """An identity lock could not be acquired in time."""

    code = "LOCK_TIMEOUT"
