# === NAVMAP v1 ===
# {
#   "module": "QmKit.network.client",
#   "purpose": "Shared, event-loop-aware HTTPX AsyncClient factory.",
#   "sections": [
#     {
#       "id": "get-http-client",
#       "name": "get_http_client",
#       "anchor": "function-get-http-client",
#       "kind": "function"
#     },
#     {
#       "id": "configure-http-client",
#       "name": "configure_http_client",
#       "anchor": "function-configure-http-client",
#       "kind": "function"
#     },
#     {
#       "id": "close-http-client",
#       "name": "close_http_client",
#       "anchor": "function-close-http-client",
#       "kind": "function"
#     },
#     {
#       "id": "reset-http-client",
#       "name": "reset_http_client",
#       "anchor": "function-reset-http-client",
#       "kind": "function"
#     },
#     {
#       "id": "create-ssl-context",
#       "name": "_create_ssl_context",
#       "anchor": "function-create-ssl-context",
#       "kind": "function"
#     },
#     {
#       "id": "create-http-client",
#       "name": "_create_http_client",
#       "anchor": "function-create-http-client",
#       "kind": "function"
#     }
#   ]
# }
# === /NAVMAP ===

"""HTTPX AsyncClient factory.

Provides a lazily created ``httpx.AsyncClient`` shared by every engine that is
not handed a client explicitly.

Key design:
- **Lazy initialization**: Client created on first use, not at import time.
- **Loop-aware**: An ``AsyncClient``'s connection pool belongs to the event
  loop that created it.  When the running loop changes (a new
  ``asyncio.run``, a fresh test loop) the stale client is dropped and a new one
  is built on first use, the same way a forked process rebuilds its client.
- **Overridable**: :func:`configure_http_client` installs a transport (for
  example ``httpx.MockTransport``) or a ready-made client; tests use it via
  :func:`QmKit.testing.use_mock_http_client`.
- **No transport retries**: connect failures surface to the engines, which
  decide what is retryable.

Example:
    >>> from QmKit.network import get_http_client, close_http_client
    >>> client = get_http_client()
    >>> # ... await client.get(...) ...
    >>> # await close_http_client()  # at shutdown or test cleanup
"""

from __future__ import annotations

import asyncio
import importlib.util
import logging
import ssl
import threading
from typing import Optional

import certifi
import httpx

from QmKit.network.instrumentation import create_http_event_hooks
from QmKit.settings import HttpSettings, get_settings

logger = logging.getLogger(__name__)


# ============================================================================
# Global Client State
# ============================================================================

_client: Optional[httpx.AsyncClient] = None
_client_loop: Optional[asyncio.AbstractEventLoop] = None
_client_lock = threading.Lock()
_override_transport: Optional[httpx.AsyncBaseTransport] = None
_override_client: Optional[httpx.AsyncClient] = None


# ============================================================================
# Public API
# ============================================================================


def get_http_client() -> httpx.AsyncClient:
    """Get or create the shared HTTPX async client.

    Behavior:
        - Client installed via :func:`configure_http_client`: returned as-is.
        - First call on a loop: creates the client and binds it to that loop.
        - Running loop changed or client closed: rebuilds on this call.
    """
    global _client, _client_loop

    if _override_client is not None:
        return _override_client

    loop = _running_loop()
    if _client is not None and _client_loop is loop and not _client.is_closed:
        return _client

    with _client_lock:
        if _client is not None and _client_loop is loop and not _client.is_closed:
            return _client

        if _client is not None:
            logger.debug(
                "Event loop changed or client closed; rebuilding HTTP client.",
                extra={"closed": _client.is_closed},
            )

        _client = _create_http_client(get_settings().http, transport=_override_transport)
        _client_loop = loop
        return _client


def configure_http_client(
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> None:
    """Install a transport or client used by :func:`get_http_client`.

    Passing neither restores the default network transport.
    """
    global _override_transport, _override_client, _client, _client_loop

    with _client_lock:
        _override_transport = transport
        _override_client = client
        _client = None
        _client_loop = None


async def close_http_client() -> None:
    """Close the shared client and release its connections.

    Safe to call multiple times or when no client has been created.
    """
    global _client, _client_loop

    with _client_lock:
        client, _client, _client_loop = _client, None, None

    if client is not None and not client.is_closed:
        await client.aclose()
        logger.debug("HTTP client closed")


def reset_http_client() -> None:
    """Forget the shared client and any override (primarily for testing).

    The dropped client is not closed; use :func:`close_http_client` first when
    its loop is still running.
    """
    configure_http_client()


# ============================================================================
# Implementation Details
# ============================================================================


def _running_loop() -> Optional[asyncio.AbstractEventLoop]:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


def _http2_available() -> bool:
    return importlib.util.find_spec("h2") is not None


def _create_ssl_context(verify: bool = True) -> ssl.SSLContext:
    """Create SSL context with system defaults plus the certifi bundle."""
    if not verify:
        ctx = ssl.create_default_context()
        ctx.check_hostname = False
        ctx.verify_mode = ssl.CERT_NONE
        logger.warning("TLS verification DISABLED (development only!)")
        return ctx

    ctx = ssl.create_default_context(cafile=certifi.where())
    ctx.check_hostname = True
    ctx.verify_mode = ssl.CERT_REQUIRED
    return ctx


def _create_http_client(
    http: HttpSettings,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.AsyncClient:
    """Create an ``httpx.AsyncClient`` from :class:`HttpSettings`."""
    ssl_ctx = _create_ssl_context(http.verify_tls)

    http2 = http.http2
    if http2 and not _http2_available():
        logger.warning("HTTP/2 requested but the 'h2' package is missing; using HTTP/1.1")
        http2 = False

    if transport is None:
        transport = httpx.AsyncHTTPTransport(verify=ssl_ctx, http2=http2, retries=0)

    client = httpx.AsyncClient(
        transport=transport,
        timeout=httpx.Timeout(
            connect=http.timeout_connect,
            read=http.timeout_read,
            write=http.timeout_write,
            pool=http.timeout_pool,
        ),
        limits=httpx.Limits(
            max_connections=http.pool_max_connections,
            max_keepalive_connections=http.pool_keepalive_max,
            keepalive_expiry=http.keepalive_expiry,
        ),
        headers={"User-Agent": http.user_agent},
        trust_env=http.trust_env,
        follow_redirects=http.follow_redirects,
        max_redirects=http.max_redirects,
        event_hooks=create_http_event_hooks(),
    )

    logger.debug(
        "HTTPX async client created",
        extra={
            "http2": http2,
            "max_connections": http.pool_max_connections,
            "custom_transport": not isinstance(transport, httpx.AsyncHTTPTransport),
        },
    )
    return client


__all__ = [
    "get_http_client",
    "configure_http_client",
    "close_http_client",
    "reset_http_client",
]
