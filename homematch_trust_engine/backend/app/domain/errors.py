# backend/app/domain/errors.py
from __future__ import annotations


class TrustEngineError(Exception):
    """Base class for every error raised by the trust & matching core."""


class ValidationError(TrustEngineError):
    """Malformed input. Rejected immediately, never retried."""


class NotFoundError(TrustEngineError):
    """Referenced tenant / property / application / interview does not exist."""


class PermissionDeniedError(TrustEngineError):
    """Caller is not allowed to act on the referenced record."""


class ConcurrencyConflict(TrustEngineError):
    """Two writers raced on the same record (compare-and-swap lost)."""


class TranscriptionError(TrustEngineError):
    """A single answer could not be transcribed."""

    def __init__(self, message: str, *, retryable: bool = True) -> None:
        super().__init__(message)
        self.retryable = retryable


class AnalysisError(TrustEngineError):
    """The aggregate transcript analysis failed. Fatal for the current run."""

    def __init__(self, message: str, *, retryable: bool = True) -> None:
        super().__init__(message)
        self.retryable = retryable
