"""Network subsystem: HTTP client, instrumentation, protocol constants, and retry.

This package provides the HTTP stack both engines share, based on:
- HTTPX: async HTTP/1.1 (optionally HTTP/2) client with connection pooling
- Tenacity: fixed-delay retry for transient server failures

Modules:
- client: loop-aware HTTPX AsyncClient factory with lazy singleton pattern
- policy: header names, media types, and status ranges
- instrumentation: request/response hooks for structured telemetry
- retry: Tenacity-based retry policy for 5xx responses
- transport: one cancellable exchange per request attempt

Example:
    >>> from QmKit.network import get_http_client
    >>> from QmKit.network.retry import RetryPolicy
    >>>
    >>> client = get_http_client()
    >>> policy = RetryPolicy(count=2, delay_seconds=0.5)
    >>> # response = await policy.build(sleep=token.sleep)(send_once)
"""

from QmKit.network.client import (
    close_http_client,
    configure_http_client,
    get_http_client,
    reset_http_client,
)
from QmKit.network.instrumentation import create_http_event_hooks
from QmKit.network.policy import (
    AUTH_HEADER,
    CONTENT_DISPOSITION_HEADER,
    CONTENT_TYPE_HEADER,
    EVENT_STREAM_MEDIA_TYPE,
    JSON_MEDIA_TYPE,
    PROBLEM_JSON_MEDIA_TYPE,
)
from QmKit.network.retry import RetryPolicy, is_retryable_status

__all__ = [
    # Client lifecycle
    "get_http_client",
    "configure_http_client",
    "close_http_client",
    "reset_http_client",
    # Instrumentation
    "create_http_event_hooks",
    # Protocol constants
    "AUTH_HEADER",
    "CONTENT_TYPE_HEADER",
    "CONTENT_DISPOSITION_HEADER",
    "JSON_MEDIA_TYPE",
    "PROBLEM_JSON_MEDIA_TYPE",
    "EVENT_STREAM_MEDIA_TYPE",
    # Retry
    "RetryPolicy",
    "is_retryable_status",
]
