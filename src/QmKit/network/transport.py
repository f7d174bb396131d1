"""Transport abstraction: one HTTP exchange per call, cancellable via a token."""

from __future__ import annotations

import logging
from typing import Optional, Protocol

import httpx

from QmKit.cancellation import CancellationToken
from QmKit.descriptor import RequestDescriptor, body_arguments
from QmKit.logging_utils import redact_url
from QmKit.network.client import get_http_client

__all__ = ["Transport", "HttpTransport"]

logger = logging.getLogger(__name__)


class Transport(Protocol):
    """Performs a single exchange for ``descriptor``.

    Implementations must stop waiting once ``token`` is signalled and raise
    :class:`~QmKit.errors.CallerCancelled`; the response body must be fully
    read before returning.
    """

    async def send(self, descriptor: RequestDescriptor, token: CancellationToken) -> httpx.Response:
        ...


class HttpTransport:
    """:class:`Transport` backed by an ``httpx.AsyncClient``.

    Without an explicit client the shared one from
    :func:`~QmKit.network.client.get_http_client` is looked up per exchange,
    so overrides installed by tests are honoured.
    """

    def __init__(self, client: Optional[httpx.AsyncClient] = None) -> None:
        self._client = client

    @property
    def client(self) -> httpx.AsyncClient:
        return self._client if self._client is not None else get_http_client()

    def build_request(self, descriptor: RequestDescriptor) -> httpx.Request:
        client = self.client
        extra = {}
        if descriptor.timeout is not None:
            extra["timeout"] = descriptor.timeout
        return client.build_request(
            descriptor.method,
            descriptor.url,
            headers=descriptor.headers,
            params=descriptor.params,
            **body_arguments(descriptor.body),
            **extra,
        )

    async def send(self, descriptor: RequestDescriptor, token: CancellationToken) -> httpx.Response:
        request = self.build_request(descriptor)
        logger.debug(
            "sending request",
            extra={"method": request.method, "url_redacted": redact_url(str(request.url)), "token": token.id},
        )
        return await token.guard(self.client.send(request))
