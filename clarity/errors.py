"""
Error taxonomy for Clarity.

Every failure surfaced by the services is a ClarityError subclass so callers
can map them to their own transport without knowing storage details.
"""


class ClarityError(Exception):
    """Base class for all errors raised by Clarity services."""


class ValidationError(ClarityError):
    """Raised when a submission or query is malformed or missing fields."""

    def __init__(self, message: str, field: str = ""):
        super().__init__(message)
        self.field = field


class NotFoundError(ClarityError):
    """Raised when a requested trace does not exist."""


class StorageError(ClarityError):
    """Raised when the storage collaborator fails."""


class UnsupportedRangeError(ClarityError):
    """Raised for an unknown time-range token."""

    def __init__(self, token: str):
        super().__init__(f"unsupported time range: {token}")
        self.token = token


class OperationCancelled(ClarityError):
    """Raised when the caller cancels an operation or its deadline passes."""
