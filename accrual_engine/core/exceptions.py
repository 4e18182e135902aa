"""Exception hierarchy for the accrual engine."""

from typing import Any, Optional


class AccrualEngineError(Exception):
    """Base exception for all accrual engine errors."""


class LoanDataError(AccrualEngineError):
    """Raised when a stored loan row cannot be decoded into a usable state."""

    def __init__(self, loan_id: Any, reason: str, raw: Optional[Any] = None):
        super().__init__(f"Loan #{loan_id}: {reason}")
        self.loan_id = loan_id
        self.reason = reason
        self.raw = raw


class ConcurrentModificationError(AccrualEngineError):
    """Raised when a loan changed between read and commit."""

    def __init__(self, loan_id: Any):
        super().__init__(f"Loan #{loan_id} was modified concurrently")
        self.loan_id = loan_id


class InvalidCadenceError(AccrualEngineError):
    """Raised when a task cadence is malformed."""


class TaskAlreadyRegisteredError(AccrualEngineError):
    """Raised when a task name is registered twice."""


class TaskNotFoundError(AccrualEngineError):
    """Raised when a task name is not registered."""


class TaskDisabledError(AccrualEngineError):
    """Raised when a disabled task is triggered manually."""


class NotificationGatewayError(AccrualEngineError):
    """Raised when the SMS gateway rejects or fails a delivery."""


class AssignmentServiceError(AccrualEngineError):
    """Raised when recovery officer assignment fails."""
