from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

from .config import connection_timeout_ms, request_timeout_ms


@dataclass(frozen=True)
class TimeoutConfig:
    """Per-attempt HTTP timeouts in seconds.

    ``connect_seconds`` bounds connection establishment; ``request_seconds``
    bounds the wait for the response once connected.
    """
    connect_seconds: float = 30.0
    request_seconds: float = 60.0

    def as_requests_timeout(self) -> Tuple[float, float]:
        return (self.connect_seconds, self.request_seconds)


def get_timeout_config() -> TimeoutConfig:
    return TimeoutConfig(
        connect_seconds=connection_timeout_ms() / 1000.0,
        request_seconds=request_timeout_ms() / 1000.0,
    )
