from abc import ABC


class SequenceError(ABC, Exception):
    """Base class for numbering errors.

    Only ExhaustedError and ConfigurationError are raised to callers of the
    public API. ConflictError and TransientStoreError describe a single failed
    attempt and are handled by the retry loop.
    """


class ConflictError(SequenceError):
    """Raised when an attempt collides with another writer or a duplicate designator."""

    def __init__(self, message: str = "Transaction conflict") -> None:
        super().__init__(message)


class TransientStoreError(SequenceError):
    """Raised when the store is unreachable or temporarily unavailable."""

    def __init__(self, message: str = "Store unavailable") -> None:
        super().__init__(message)


class ExhaustedError(SequenceError):
    """Raised when the retry time budget elapsed without a successful commit."""

    def __init__(self, last_error: BaseException, message: str | None = None) -> None:
        super().__init__(message or f"Retry budget exhausted: {last_error}")
        self.last_error = last_error


class ConfigurationError(SequenceError):
    """Raised for invalid constructor or call arguments. Never retried."""
