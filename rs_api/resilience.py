"""Retry policy for API requests."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

import httpx


def is_server_error(status_code: int) -> bool:
    return status_code >= 500


@dataclass(frozen=True)
class RetryPolicy:
    """
    Bounded retry policy.

    A request is attempted at most ``max_attempts`` times. Transport failures
    (the request never completed) and statuses accepted by
    ``retryable_status`` are retried; anything else is returned at once.
    The default policy waits nothing between attempts.
    """
    max_attempts: int = 3
    backoff_factor: float = 0.0
    retryable_status: Callable[[int], bool] = is_server_error

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {self.max_attempts}")

    def should_retry_status(self, status_code: int, attempt: int) -> bool:
        """Whether a completed response on attempt ``attempt`` (1-based) is retried."""
        return self.retryable_status(status_code) and attempt < self.max_attempts

    def should_retry_error(self, error: Exception, attempt: int) -> bool:
        """Whether a failure to send the request is retried."""
        return isinstance(error, httpx.TransportError) and attempt < self.max_attempts

    def delay(self, attempt: int) -> float:
        """Seconds to wait after attempt ``attempt`` failed."""
        if self.backoff_factor <= 0:
            return 0.0
        return self.backoff_factor * (2 ** (attempt - 1))
