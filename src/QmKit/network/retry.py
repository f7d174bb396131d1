"""Network retry policy: Tenacity-driven fixed-delay retry for 5xx responses.

A :class:`RetryPolicy` is a small value object (``count`` retries after the
first attempt, a fixed ``delay_seconds`` between attempts).  :meth:`build`
turns it into a ``tenacity.AsyncRetrying`` controller for one logical call.

Design:
- **Server errors only**: a response is retried only when its status is in
  ``[500, 600)``; transport exceptions and cancellations propagate at once.
- **Fixed delay**: no jitter and no growth across attempts.
- **Cancellable sleep**: the caller passes the call's cancellation-aware sleep
  so an abort during the wait halts the whole loop.
- **Explicit exhaustion**: running out of attempts on a 5xx raises
  :class:`~QmKit.errors.RetryBudgetExhausted` carrying the last response.

Example:
    >>> policy = RetryPolicy(count=2, delay_seconds=0.01)
    >>> policy.max_attempts
    3
    >>> # response = await policy.build(sleep=token.sleep)(send_once)
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    before_sleep_log,
    retry_if_result,
    stop_after_attempt,
    wait_fixed,
)

from QmKit.errors import ConfigurationError, RetryBudgetExhausted
from QmKit.network.policy import RETRYABLE_STATUS_RANGE
from QmKit.settings import RetrySettings

logger = logging.getLogger(__name__)

SleepFn = Callable[[float], Awaitable[None]]


def is_retryable_status(status_code: int) -> bool:
    """Return ``True`` for server errors (``500 <= status < 600``)."""
    return status_code in RETRYABLE_STATUS_RANGE


def _status_of(response: Any) -> Optional[int]:
    status = getattr(response, "status_code", None)
    return status if isinstance(status, int) else None


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded, fixed-delay retry for transient server failures."""

    count: int = 0
    delay_seconds: float = 0.0

    def __post_init__(self) -> None:
        if self.count < 0:
            raise ConfigurationError(f"retry count must be >= 0, got {self.count}")
        if self.delay_seconds < 0:
            raise ConfigurationError(f"retry delay must be >= 0, got {self.delay_seconds}")

    @classmethod
    def from_settings(cls, settings: RetrySettings) -> "RetryPolicy":
        return cls(count=settings.count, delay_seconds=settings.delay_seconds)

    @property
    def max_attempts(self) -> int:
        return self.count + 1

    def should_retry(self, response: Any) -> bool:
        """Retry predicate applied to each attempt's response."""
        status = _status_of(response)
        return self.count > 0 and status is not None and is_retryable_status(status)

    def build(self, *, sleep: SleepFn = asyncio.sleep) -> AsyncRetrying:
        """Create the Tenacity controller for one logical call."""

        def _exhausted(retry_state: RetryCallState) -> Any:
            outcome = retry_state.outcome
            response = outcome.result() if outcome is not None else None
            status = _status_of(response) or 0
            raise RetryBudgetExhausted(
                f"giving up after {retry_state.attempt_number} attempts (last status {status})",
                attempts=retry_state.attempt_number,
                status_code=status,
                response=response,
            )

        return AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_fixed(self.delay_seconds),
            retry=retry_if_result(self.should_retry),
            sleep=sleep,
            before_sleep=before_sleep_log(logger, logging.WARNING),
            retry_error_callback=_exhausted,
        )


__all__ = [
    "RetryPolicy",
    "is_retryable_status",
]
