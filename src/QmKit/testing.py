"""Testing utilities for exercising the engines without a network.

Provides a scripted HTTPX transport that replays canned responses and records
the requests it saw, plus a helper that installs an ``httpx.AsyncClient``
backed by any transport as the shared client for the duration of a block.
"""

from __future__ import annotations

import contextlib
import json
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, List, Mapping, Optional, Sequence

import httpx

from QmKit.network.client import configure_http_client, reset_http_client
from QmKit.settings import get_settings

__all__ = [
    "ResponseSpec",
    "ScriptedTransport",
    "use_mock_http_client",
]


@dataclass
class ResponseSpec:
    """Canned response replayed by :class:`ScriptedTransport`.

    ``body`` may be bytes, text, or any JSON-serializable value; JSON values
    get an ``application/json`` content type unless ``headers`` set one.
    """

    status: int = 200
    body: Any = b""
    headers: Mapping[str, str] = field(default_factory=dict)
    error: Optional[Exception] = None

    def build(self, request: httpx.Request) -> httpx.Response:
        if self.error is not None:
            raise self.error
        headers = dict(self.headers)
        if isinstance(self.body, bytes):
            content = self.body
        elif isinstance(self.body, str):
            content = self.body.encode("utf-8")
        else:
            content = json.dumps(self.body).encode("utf-8")
            if not any(key.lower() == "content-type" for key in headers):
                headers["Content-Type"] = "application/json"
        return httpx.Response(self.status, headers=headers, content=content, request=request)


class ScriptedTransport(httpx.MockTransport):
    """Mock transport answering with ``responses`` in order.

    The last response repeats once the script runs out.  Every request is
    appended to :attr:`requests`.
    """

    def __init__(self, responses: Sequence[ResponseSpec]) -> None:
        if not responses:
            raise ValueError("ScriptedTransport needs at least one response")
        self._responses = list(responses)
        self.requests: List[httpx.Request] = []
        super().__init__(self._handle)

    @property
    def calls(self) -> int:
        return len(self.requests)

    def _handle(self, request: httpx.Request) -> httpx.Response:
        index = min(len(self.requests), len(self._responses) - 1)
        self.requests.append(request)
        return self._responses[index].build(request)


@contextlib.asynccontextmanager
async def use_mock_http_client(transport: httpx.AsyncBaseTransport, **client_kwargs: Any) -> AsyncIterator[httpx.AsyncClient]:
    """Temporarily install an HTTPX async client backed by ``transport``."""
    client_kwargs.setdefault("follow_redirects", get_settings().http.follow_redirects)
    client = httpx.AsyncClient(transport=transport, **client_kwargs)
    configure_http_client(client=client)
    try:
        yield client
    finally:
        reset_http_client()
        await client.aclose()
