"""Exception hierarchy shared by the request and stream engines.

Every recoverable condition the engines meet is absorbed and turned into
published state, so most of these classes never reach callers.  They still
matter: the error tracker receives them, log records carry their names, and
the taxonomy lets the engines decide which branch of the state machine to take
without inspecting status codes in several places.
"""

from __future__ import annotations

from typing import Any, Optional

__all__ = [
    "QmKitError",
    "ConfigurationError",
    "CallerCancelled",
    "ServerError",
    "RetryableServerError",
    "NonRetryableServerError",
    "TransportFailure",
    "DecodeFailure",
    "RetryBudgetExhausted",
    "StreamConnectionError",
]


class QmKitError(RuntimeError):
    """Base exception for request, retry, and streaming failures."""


class ConfigurationError(QmKitError):
    """Raised when settings or engine construction inputs are invalid."""


class CallerCancelled(QmKitError):
    """Raised inside an engine when its cancellation token was signalled.

    Never surfaced as a problem; the engine resolves ``None`` instead.
    """


class ServerError(QmKitError):
    """Raised (or reported) when the server answered with a non-success status."""

    def __init__(self, message: str, *, status_code: int) -> None:
        super().__init__(message)
        self.status_code = status_code

    @property
    def retryable(self) -> bool:
        return False


class RetryableServerError(ServerError):
    """5xx response; eligible for another attempt while budget remains."""

    @property
    def retryable(self) -> bool:
        return True


class NonRetryableServerError(ServerError):
    """Any other non-2xx response; surfaced immediately."""


class TransportFailure(QmKitError):
    """Connection-level failure with no HTTP status available."""


class DecodeFailure(QmKitError):
    """Raised when a payload cannot be decoded into the expected shape."""

    def __init__(self, message: str, *, raw: Optional[str] = None) -> None:
        super().__init__(message)
        self.raw = raw


class RetryBudgetExhausted(QmKitError):
    """Raised when every attempt in the retry budget ended in a 5xx."""

    def __init__(
        self,
        message: str,
        *,
        attempts: int,
        status_code: int,
        response: Optional[Any] = None,
    ) -> None:
        super().__init__(message)
        self.attempts = attempts
        self.status_code = status_code
        self.response = response


class StreamConnectionError(QmKitError):
    """Reported when a stream session runs out of reconnect attempts."""

    def __init__(self, message: str, *, attempts: int) -> None:
        super().__init__(message)
        self.attempts = attempts
