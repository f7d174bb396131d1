"""Event-stream support: SSE decoding, connections, and the reconnecting engine.

Modules:
- sse: incremental ``text/event-stream`` decoder
- source: one streaming connection as ordered open/message/error notifications
- engine: persistent session with bounded reconnection and published state
"""

from QmKit.streaming.engine import (
    CONNECTION_FAILED_TITLE,
    PARSE_ERROR_TITLE,
    ReconnectPolicy,
    StreamEngine,
    StreamOverride,
    StreamSession,
    StreamState,
)
from QmKit.streaming.source import EventSource, NotificationKind, StreamNotification
from QmKit.streaming.sse import ServerSentEvent, SSEDecoder, aiter_sse

__all__ = [
    "StreamEngine",
    "StreamOverride",
    "StreamSession",
    "StreamState",
    "ReconnectPolicy",
    "CONNECTION_FAILED_TITLE",
    "PARSE_ERROR_TITLE",
    "EventSource",
    "NotificationKind",
    "StreamNotification",
    "ServerSentEvent",
    "SSEDecoder",
    "aiter_sse",
]
