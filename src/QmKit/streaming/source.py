"""Event-stream connection delivering ordered lifecycle notifications.

An :class:`EventSource` performs one streaming ``GET`` and turns it into a
sequence of :class:`StreamNotification` values:

- ``OPEN`` once the server answered ``200`` with ``text/event-stream``,
- ``MESSAGE`` per decoded server-sent event,
- exactly one ``ERROR`` as the last notification, whether the request failed,
  the server answered with something other than an event stream, or the
  server closed the stream.

Reconnecting is the caller's business; a source is good for one connection.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Mapping, Optional

import httpx

from QmKit.errors import TransportFailure
from QmKit.logging_utils import redact_url
from QmKit.network.client import get_http_client
from QmKit.network.policy import CONTENT_TYPE_HEADER, EVENT_STREAM_MEDIA_TYPE, LAST_EVENT_ID_HEADER
from QmKit.streaming.sse import ServerSentEvent, SSEDecoder, aiter_sse

__all__ = ["NotificationKind", "StreamNotification", "EventSource"]

logger = logging.getLogger(__name__)


class NotificationKind(str, enum.Enum):
    OPEN = "open"
    MESSAGE = "message"
    ERROR = "error"


@dataclass(frozen=True)
class StreamNotification:
    kind: NotificationKind
    event: Optional[ServerSentEvent] = None
    error: Optional[BaseException] = None


def _stream_timeout(client: httpx.AsyncClient) -> httpx.Timeout:
    base = client.timeout
    return httpx.Timeout(connect=base.connect, read=None, write=base.write, pool=base.pool)


class EventSource:
    """One ``text/event-stream`` connection.

    Args:
        url: Stream endpoint.
        params: Query parameters (the credential may travel here).
        client: HTTPX client; the shared client when omitted.
        last_event_id: Sent as ``Last-Event-ID`` so the server can resume.
        redact_params: Extra query parameter names masked in log output.
    """

    def __init__(
        self,
        url: str,
        *,
        params: Optional[Mapping[str, Any]] = None,
        client: Optional[httpx.AsyncClient] = None,
        last_event_id: Optional[str] = None,
        redact_params: tuple[str, ...] = (),
    ) -> None:
        self.url = url
        self.params = dict(params) if params else None
        self.last_event_id = last_event_id
        self._client = client
        self._redact_params = redact_params
        self._decoder = SSEDecoder()
        self._response: Optional[httpx.Response] = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def decoder(self) -> SSEDecoder:
        return self._decoder

    async def notifications(self) -> AsyncIterator[StreamNotification]:
        """Open the connection and yield notifications until it ends."""
        if self._closed:
            yield StreamNotification(NotificationKind.ERROR, error=TransportFailure("event source closed"))
            return

        client = self._client or get_http_client()
        headers = {"Accept": EVENT_STREAM_MEDIA_TYPE, "Cache-Control": "no-cache"}
        if self.last_event_id:
            headers[LAST_EVENT_ID_HEADER] = self.last_event_id

        try:
            async with client.stream(
                "GET",
                self.url,
                params=self.params,
                headers=headers,
                timeout=_stream_timeout(client),
            ) as response:
                self._response = response
                failure = self._check_response(response)
                if failure is not None:
                    yield StreamNotification(NotificationKind.ERROR, error=failure)
                    return

                logger.debug(
                    "event stream opened",
                    extra={"url_redacted": redact_url(str(response.url), self._redact_params)},
                )
                yield StreamNotification(NotificationKind.OPEN)
                async for sse in aiter_sse(response.aiter_lines(), self._decoder):
                    yield StreamNotification(NotificationKind.MESSAGE, event=sse)
        except Exception as exc:
            logger.debug("event stream failed", extra={"error": type(exc).__name__})
            yield StreamNotification(NotificationKind.ERROR, error=exc)
            return
        finally:
            self._response = None

        yield StreamNotification(NotificationKind.ERROR, error=TransportFailure("stream ended"))

    async def aclose(self) -> None:
        """Close the connection; safe to call repeatedly."""
        if self._closed:
            return
        self._closed = True
        response, self._response = self._response, None
        if response is not None and not response.is_closed:
            await response.aclose()

    def _check_response(self, response: httpx.Response) -> Optional[TransportFailure]:
        if response.status_code != 200:
            return TransportFailure(f"event stream answered with status {response.status_code}")
        media_type = (response.headers.get(CONTENT_TYPE_HEADER) or "").split(";", 1)[0].strip().lower()
        if media_type != EVENT_STREAM_MEDIA_TYPE:
            return TransportFailure(f"expected {EVENT_STREAM_MEDIA_TYPE}, got {media_type or 'no content type'}")
        return None
