# === NAVMAP v1 ===
# {
#   "module": "QmKit.network.instrumentation",
#   "purpose": "HTTP network layer instrumentation and telemetry.",
#   "sections": [
#     {
#       "id": "create-http-event-hooks",
#       "name": "create_http_event_hooks",
#       "anchor": "function-create-http-event-hooks",
#       "kind": "function"
#     }
#   ]
# }
# === /NAVMAP ===

"""HTTP network layer instrumentation and telemetry.

Logs one ``net.request`` record per exchange made by the shared HTTPX client,
capturing method, redacted URL, status, and elapsed time.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Awaitable, Callable, Dict, List

import httpx

from QmKit.logging_utils import redact_url

logger = logging.getLogger(__name__)

_START_KEY = "qmkit_start_time"


def create_http_event_hooks() -> Dict[str, List[Callable[[Any], Awaitable[None]]]]:
    """Create async HTTPX event hooks for telemetry logging.

    Returns:
        Dict with 'request' and 'response' hooks for ``httpx.AsyncClient``

    Usage:
        >>> import httpx
        >>> hooks = create_http_event_hooks()
        >>> client = httpx.AsyncClient(event_hooks=hooks)
    """

    async def on_request(request: httpx.Request) -> None:
        request.extensions[_START_KEY] = time.perf_counter()

    async def on_response(response: httpx.Response) -> None:
        start_time = response.request.extensions.get(_START_KEY)
        if not isinstance(start_time, float):
            return
        elapsed_ms = (time.perf_counter() - start_time) * 1000
        logger.debug(
            "net.request",
            extra={
                "method": response.request.method,
                "url_redacted": redact_url(str(response.request.url)),
                "host": response.request.url.host or "unknown",
                "status": response.status_code,
                "http_version": response.http_version,
                "elapsed_ms": round(elapsed_ms, 3),
            },
        )

    return {
        "request": [on_request],
        "response": [on_response],
    }


__all__ = [
    "create_http_event_hooks",
]
