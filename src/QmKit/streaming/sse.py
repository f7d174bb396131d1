"""Incremental ``text/event-stream`` decoder.

Lines are fed one at a time (HTTPX's ``aiter_lines`` already strips the line
terminator); a blank line dispatches the event accumulated so far.

- ``data`` lines accumulate, joined with ``\\n``; an event with no data is
  not dispatched.
- ``event`` names the event type (default ``"message"``).
- ``id`` sets the last event id, which persists across events; values
  containing NUL are ignored.
- ``retry`` with an all-digit value is the server's reconnection hint in ms.
- Lines starting with ``:`` are comments; unknown fields are ignored.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import AsyncIterable, AsyncIterator, List, Optional

__all__ = ["ServerSentEvent", "SSEDecoder", "aiter_sse"]

DEFAULT_EVENT = "message"


@dataclass(frozen=True)
class ServerSentEvent:
    event: str = DEFAULT_EVENT
    data: str = ""
    id: Optional[str] = None
    retry: Optional[int] = None


class SSEDecoder:
    """Stateful line decoder for one connection."""

    def __init__(self) -> None:
        self._event = ""
        self._data: List[str] = []
        self._last_event_id: Optional[str] = None
        self._retry: Optional[int] = None

    @property
    def last_event_id(self) -> Optional[str]:
        return self._last_event_id

    def decode(self, line: str) -> Optional[ServerSentEvent]:
        """Consume one line; return an event when ``line`` completes one."""
        line = line.rstrip("\r\n")
        if not line:
            return self._dispatch()
        if line.startswith(":"):
            return None

        name, sep, value = line.partition(":")
        if sep and value.startswith(" "):
            value = value[1:]

        if name == "data":
            self._data.append(value)
        elif name == "event":
            self._event = value
        elif name == "id":
            if "\0" not in value:
                self._last_event_id = value
        elif name == "retry":
            if value.isdigit():
                self._retry = int(value)
        return None

    def _dispatch(self) -> Optional[ServerSentEvent]:
        if not self._data:
            self._event = ""
            return None
        sse = ServerSentEvent(
            event=self._event or DEFAULT_EVENT,
            data="\n".join(self._data),
            id=self._last_event_id,
            retry=self._retry,
        )
        self._event = ""
        self._data = []
        self._retry = None
        return sse


async def aiter_sse(lines: AsyncIterable[str], decoder: Optional[SSEDecoder] = None) -> AsyncIterator[ServerSentEvent]:
    """Decode events from an async iterable of lines.

    A trailing event without its terminating blank line is discarded.
    """
    decoder = decoder or SSEDecoder()
    async for line in lines:
        sse = decoder.decode(line)
        if sse is not None:
            yield sse
