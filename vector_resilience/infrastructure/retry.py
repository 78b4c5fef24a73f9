"""
Retry with exponential backoff for remote calls.

A RetryExecutor wraps any zero-argument callable. Failures are classified by
the error taxonomy: NetworkFailure and ServerFailure are retried, everything
else is re-raised on the spot. Exceptions outside the taxonomy are programming
errors and pass through untouched.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

from ..domain.errors import RetriesExhausted, ValidationFailure, VectorResilienceError
from ..domain.models import RetryContext
from .logging import get_logger

logger = get_logger("vector_resilience.retry")

T = TypeVar("T")

# 2**32 * base_delay is already far beyond any useful wait.
_MAX_EXPONENT = 32


@dataclass(frozen=True)
class RetryPolicy:
    """
    Backoff policy.

    Attributes:
        max_attempts: Attempts including the first try (1 disables retry).
        base_delay: Delay in seconds before the second attempt.
        max_delay: Optional cap in seconds for any single delay.
    """
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: Optional[float] = None

    def __post_init__(self) -> None:
        if not isinstance(self.max_attempts, int) or self.max_attempts < 1:
            raise ValidationFailure(f"max_attempts must be an integer >= 1, got {self.max_attempts!r}")
        if self.base_delay <= 0:
            raise ValidationFailure(f"base_delay must be positive, got {self.base_delay!r}")
        if self.max_delay is not None and self.max_delay <= 0:
            raise ValidationFailure(f"max_delay must be positive when set, got {self.max_delay!r}")

    @classmethod
    def from_settings(cls, settings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.max_attempts,
            base_delay=settings.retry_delay_ms / 1000.0,
            max_delay=settings.max_retry_delay_ms / 1000.0 if settings.max_retry_delay_ms is not None else None,
        )

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after the given failed attempt (1-based)."""
        exponent = min(max(attempt - 1, 0), _MAX_EXPONENT)
        delay = self.base_delay * (2 ** exponent)
        if self.max_delay is not None:
            delay = min(delay, self.max_delay)
        return delay


class RetryExecutor:
    """Runs operations under a RetryPolicy. Stateless between calls; safe to share."""

    def __init__(self, policy: Optional[RetryPolicy] = None, sleep: Callable[[float], None] = time.sleep) -> None:
        self.policy = policy or RetryPolicy()
        self._sleep = sleep

    def run(self, operation: Callable[[], T], name: str = "operation") -> T:
        """
        Execute ``operation`` until it succeeds, fails permanently or runs out of attempts.

        Args:
            operation: Callable taking no arguments.
            name: Operation name for logs and error messages.

        Returns:
            Whatever ``operation`` returns.

        Raises:
            RetriesExhausted: Every attempt failed with a retryable error.
            VectorResilienceError: First non-retryable failure, unchanged.
        """
        ctx = RetryContext(operation=name)
        max_attempts = self.policy.max_attempts
        while True:
            ctx.attempts += 1
            try:
                result = operation()
            except VectorResilienceError as e:
                ctx.last_error = e
                if not e.retryable:
                    logger.debug("%s failed with non-retryable error: %s", name, e)
                    raise
                if ctx.attempts >= max_attempts:
                    logger.error("%s exhausted all %d attempt(s): %s", name, max_attempts, e)
                    raise RetriesExhausted(name, e, ctx.attempts, ctx) from e
                delay = self.policy.delay_for(ctx.attempts)
                logger.warning(
                    "%s failed (attempt %d/%d): %s. Retrying in %.3fs",
                    name, ctx.attempts, max_attempts, e, delay,
                )
                ctx.elapsed_backoff += delay
                self._sleep(delay)
                continue
            if ctx.attempts > 1:
                logger.info("%s succeeded after %d attempts", name, ctx.attempts)
            return result
