from __future__ import annotations

from typing import Optional


class VectorResilienceError(RuntimeError):
    """Base class for every failure raised by the resilience layer.

    Attributes:
        retryable: Whether the retry executor may attempt the operation again.
        index: Position of the failing input in a batch call, when known.
    """

    retryable = False

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message
        self.index: Optional[int] = None

    def at_index(self, index: int) -> "VectorResilienceError":
        """Tag the error with the batch position that produced it."""
        self.index = index
        return self

    def __str__(self) -> str:
        if self.index is None:
            return self.message
        return f"{self.message} (input index {self.index})"


class NetworkFailure(VectorResilienceError):
    """Raised on timeouts and connection-level failures."""

    retryable = True


class _HttpFailure(VectorResilienceError):
    def __init__(self, message: str, status_code: int, body: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class ServerFailure(_HttpFailure):
    """Raised on 5xx responses."""

    retryable = True


class ClientFailure(_HttpFailure):
    """Raised on 4xx responses; never retried."""


class AlreadyExists(ClientFailure):
    """Raised when a created resource is already present (409)."""


class NotFound(ClientFailure):
    """Raised when a resource does not exist (404)."""


class ValidationFailure(VectorResilienceError, ValueError):
    """Raised when a call violates a local precondition (bad k, empty input...)."""


class DimensionMismatch(ValidationFailure):
    """Raised when an embedding length disagrees with the established dimension."""

    def __init__(self, expected: int, actual: int, context: str = "embedding") -> None:
        super().__init__(f"{context} has dimension {actual}, expected {expected}")
        self.expected = expected
        self.actual = actual


class SerializationFailure(VectorResilienceError):
    """Raised when a response body or persisted record cannot be decoded."""


class StoreCorruption(SerializationFailure):
    """Raised when the fallback store log cannot be replayed."""


class RetriesExhausted(VectorResilienceError):
    """Raised after the retry policy ran out of attempts.

    Attributes:
        last_error: Final underlying failure.
        attempts: Number of attempts made.
        context: RetryContext for the failed call.
    """

    def __init__(self, operation: str, last_error: VectorResilienceError, attempts: int, context=None) -> None:
        super().__init__(f"{operation} failed after {attempts} attempt(s): {last_error}")
        self.operation = operation
        self.last_error = last_error
        self.attempts = attempts
        self.context = context
