"""Bounded retry with exponential backoff for record writes."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, TypeVar

from .errors import AdapterError, RecordWriteFailed

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    initial_backoff_seconds: float = 0.5
    backoff_multiplier: float = 2.0

    def backoff(self, attempt: int) -> float:
        """Delay to wait after failed *attempt* (1-based)."""
        return self.initial_backoff_seconds * (
            self.backoff_multiplier ** (attempt - 1)
        )


def call_with_retry(
    operation: Callable[[], T],
    record_id: str,
    policy: RetryPolicy,
    sleeper: Callable[[float], None] = time.sleep,
    on_retry: Callable[[int, float, Exception], None] | None = None,
) -> T:
    """Run *operation*, retrying ``AdapterError`` up to the policy bound.

    Args:
        operation: Zero-argument callable performing one write.
        record_id: Record being written, for the error message.
        policy: Attempt count and backoff shape.
        sleeper: Injected ``time.sleep`` replacement.
        on_retry: Called with ``(attempt, backoff, exc)`` before each
            backoff sleep.

    Returns:
        Whatever *operation* returns.

    Raises:
        RecordWriteFailed: When every attempt raised ``AdapterError``.
    """
    attempts = 0
    last_error: Exception | None = None
    while attempts < policy.max_attempts:
        attempts += 1
        try:
            return operation()
        except AdapterError as exc:
            last_error = exc
            if attempts >= policy.max_attempts:
                break
            backoff = policy.backoff(attempts)
            logger.debug(
                "Write of %s failed (attempt %d/%d), retrying in %.2fs: %s",
                record_id,
                attempts,
                policy.max_attempts,
                backoff,
                exc,
            )
            if on_retry is not None:
                on_retry(attempts, backoff, exc)
            sleeper(backoff)
    raise RecordWriteFailed(record_id, attempts, str(last_error))
