# === NAVMAP v1 ===
# {
#   "module": "QmKit.streaming.engine",
#   "purpose": "Persistent event-stream session with bounded reconnection",
#   "sections": [
#     {"id": "streamstate", "name": "StreamState", "anchor": "class-streamstate", "kind": "class"},
#     {"id": "reconnectpolicy", "name": "ReconnectPolicy", "anchor": "class-reconnectpolicy", "kind": "class"},
#     {"id": "streamsession", "name": "StreamSession", "anchor": "class-streamsession", "kind": "class"},
#     {"id": "streamengine", "name": "StreamEngine", "anchor": "class-streamengine", "kind": "class"}
#   ]
# }
# === /NAVMAP ===

"""Stream engine: keeps one event-stream session alive and publishes its data.

State machine::

    IDLE -> CONNECTING -> OPEN -> (error -> RECONNECTING -> CONNECTING)* -> CLOSED

A supervisor task owns the session and performs every transition, so state is
only ever written from one place.  Each :meth:`StreamEngine.execute` starts a
new session under a fresh generation; :meth:`StreamEngine.abort` retires the
generation, which discards anything a pending reconnect would publish.

- Opening resets the reconnect counter and sets ``loading``.
- Each ``message`` event is parsed as JSON and published as ``data``; a parse
  failure publishes a ``ParseError`` problem and keeps the session open.
- An error (including the server closing the stream) clears ``loading`` and
  reconnects after the backoff delay while attempts remain, refreshing the
  credential for every connection.  Otherwise a terminal
  ``Connection failed`` problem is published and the engine stays closed.
"""

from __future__ import annotations

import asyncio
import contextlib
import enum
import json
import logging
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, Generic, Mapping, Optional, TypeVar

import httpx

from QmKit.cancellation import CancellationToken
from QmKit.context import EngineContext
from QmKit.errors import CallerCancelled, ConfigurationError, DecodeFailure, StreamConnectionError
from QmKit.logging_utils import redact_url
from QmKit.network.policy import BEARER_PREFIX
from QmKit.problems import NO_STATUS, ProblemDetails
from QmKit.settings import StreamSettings, get_settings
from QmKit.state import ExecutionState, StateEvent, StatePublisher, Subscriber
from QmKit.streaming.source import EventSource, NotificationKind
from QmKit.streaming.sse import DEFAULT_EVENT, ServerSentEvent

__all__ = [
    "StreamState",
    "ReconnectPolicy",
    "StreamSession",
    "StreamOverride",
    "StreamEngine",
    "CONNECTION_FAILED_TITLE",
    "PARSE_ERROR_TITLE",
]

logger = logging.getLogger(__name__)

T = TypeVar("T")

CONNECTION_FAILED_TITLE = "Connection failed"
PARSE_ERROR_TITLE = "ParseError"

SourceFactory = Callable[..., EventSource]


class StreamState(enum.Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    OPEN = "open"
    RECONNECTING = "reconnecting"
    CLOSED = "closed"


@dataclass(frozen=True)
class ReconnectPolicy:
    """Reconnect budget and the fixed delay before each reconnect."""

    max_attempts: int = 3
    backoff_seconds: float = 1.0

    def __post_init__(self) -> None:
        if self.max_attempts < 0:
            raise ConfigurationError(f"max reconnect attempts must be >= 0, got {self.max_attempts}")
        if self.backoff_seconds < 0:
            raise ConfigurationError(f"reconnect backoff must be >= 0, got {self.backoff_seconds}")

    @classmethod
    def from_settings(cls, settings: StreamSettings) -> "ReconnectPolicy":
        return cls(max_attempts=settings.max_reconnect_attempts, backoff_seconds=settings.backoff_seconds)


@dataclass(frozen=True)
class StreamSession:
    """One logical connection lifetime, replaced (never mutated) on every change."""

    session_id: int
    url: str
    connection: Optional[EventSource] = None
    reconnect_attempt_count: int = 0
    max_reconnect_attempts: int = 0
    backoff_delay: float = 0.0
    last_event_id: Optional[str] = None

    @property
    def can_reconnect(self) -> bool:
        return self.reconnect_attempt_count < self.max_reconnect_attempts


@dataclass(frozen=True)
class StreamOverride:
    """Per-``execute`` changes; ``None`` keeps the engine's value."""

    path_suffix: Optional[str] = None
    params: Optional[Mapping[str, Any]] = None
    reconnect: Optional[ReconnectPolicy] = None


def _strip_bearer(credential: str) -> str:
    if credential.startswith(BEARER_PREFIX):
        return credential[len(BEARER_PREFIX):]
    return credential


def _reap(task: "asyncio.Task[None]") -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.debug("stream supervisor failed", extra={"error": type(exc).__name__})


class StreamEngine(Generic[T]):
    """Maintains a persistent event-stream session.

    Args:
        url: Stream endpoint.
        params: Static query parameters.
        reconnect: Reconnect budget; defaults to :class:`~QmKit.settings.StreamSettings`.
        auth_query_param: Query parameter that carries the credential, since
            event streams cannot send an ``Authorization`` header.
        context: Credential supplier and error tracker.
        client: HTTPX client for the default :class:`EventSource`.
        source_factory: Builds the per-connection source.
        event: Event type whose payloads are published; ``None`` publishes all.
    """

    def __init__(
        self,
        url: str,
        *,
        params: Optional[Mapping[str, Any]] = None,
        reconnect: Optional[ReconnectPolicy] = None,
        auth_query_param: Optional[str] = None,
        context: Optional[EngineContext] = None,
        client: Optional[httpx.AsyncClient] = None,
        source_factory: Optional[SourceFactory] = None,
        event: Optional[str] = DEFAULT_EVENT,
    ) -> None:
        settings = get_settings().stream
        self.url = url
        self.params = dict(params) if params else None
        self.reconnect = reconnect or ReconnectPolicy.from_settings(settings)
        self.auth_query_param = auth_query_param or settings.auth_query_param
        self.event = event
        self._context = context or EngineContext()
        self._client = client
        self._source_factory: SourceFactory = source_factory or EventSource
        self._publisher: StatePublisher[T] = StatePublisher()
        self._state = StreamState.IDLE
        self._session: Optional[StreamSession] = None
        self._token: Optional[CancellationToken] = None
        self._task: Optional["asyncio.Task[None]"] = None

    # ------------------------------------------------------------------
    # Published state
    # ------------------------------------------------------------------
    @property
    def state(self) -> StreamState:
        return self._state

    @property
    def session(self) -> Optional[StreamSession]:
        return self._session

    @property
    def execution_state(self) -> ExecutionState[T]:
        return self._publisher.state

    @property
    def data(self) -> Optional[T]:
        return self._publisher.state.data

    @property
    def loading(self) -> bool:
        return self._publisher.state.loading

    @property
    def problem_details(self) -> Optional[ProblemDetails]:
        return self._publisher.state.problem_details

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        return self._publisher.subscribe(callback)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------
    async def execute(self, override: Optional[StreamOverride] = None) -> None:
        """Close any current session and start a new one.

        Returns once the supervisor task is scheduled; use :meth:`join` to wait
        for the session to end.
        """
        previous = self._task
        self.abort()
        if previous is not None:
            await asyncio.wait({previous})
            _reap(previous)

        override = override or StreamOverride()
        url = self.url + (override.path_suffix or "")
        params: Dict[str, Any] = dict(self.params or {})
        params.update(override.params or {})
        policy = override.reconnect or self.reconnect

        generation = self._publisher.next_generation()
        token = CancellationToken()
        self._token = token
        self._session = StreamSession(
            session_id=generation,
            url=url,
            max_reconnect_attempts=policy.max_attempts,
            backoff_delay=policy.backoff_seconds,
        )
        self._set_state(StreamState.CONNECTING)
        self._task = asyncio.create_task(self._supervise(generation, token, params))

    def abort(self) -> None:
        """Stop the session and clear ``loading``; idempotent, a no-op when idle."""
        token = self._token
        if token is None:
            return
        self._token = None
        token.cancel("aborted")
        task = self._task
        if task is not None and not task.done():
            task.cancel()
        self._publisher.transition(self._publisher.generation, StateEvent.SETTLE)
        self._publisher.next_generation()
        if self._session is not None:
            self._session = replace(self._session, connection=None)
        self._set_state(StreamState.CLOSED)

    async def join(self) -> None:
        """Wait until the current session's supervisor finishes."""
        task = self._task
        if task is not None:
            await asyncio.wait({task})
            _reap(task)

    async def aclose(self) -> None:
        """Abort and wait for the connection to be released."""
        self.abort()
        await self.join()

    async def __aenter__(self) -> "StreamEngine[T]":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # Supervisor
    # ------------------------------------------------------------------
    def _set_state(self, state: StreamState) -> None:
        if state is not self._state:
            logger.debug("stream state", extra={"from_state": self._state.value, "to_state": state.value})
        self._state = state

    def _current(self, generation: int) -> bool:
        return self._publisher.is_current(generation)

    async def _supervise(self, generation: int, token: CancellationToken, params: Dict[str, Any]) -> None:
        try:
            while True:
                failure = await self._connect_once(generation, token, params)
                if not self._current(generation):
                    return
                self._publisher.transition(generation, StateEvent.SETTLE)

                session = self._session
                assert session is not None
                if session.can_reconnect:
                    session = replace(
                        session,
                        connection=None,
                        reconnect_attempt_count=session.reconnect_attempt_count + 1,
                    )
                    self._session = session
                    self._set_state(StreamState.RECONNECTING)
                    logger.info(
                        "stream reconnecting",
                        extra={
                            "attempt": session.reconnect_attempt_count,
                            "max_attempts": session.max_reconnect_attempts,
                            "delay_s": session.backoff_delay,
                            "error": type(failure).__name__,
                        },
                    )
                    await token.sleep(session.backoff_delay)
                    self._set_state(StreamState.CONNECTING)
                    continue

                self._give_up(generation, session, failure)
                return
        except CallerCancelled:
            logger.debug("stream session cancelled", extra={"session_id": generation})
        except Exception as exc:
            logger.exception("stream supervisor crashed")
            if self._current(generation) and self._session is not None:
                self._publisher.transition(generation, StateEvent.SETTLE)
                self._give_up(generation, self._session, exc)

    def _give_up(self, generation: int, session: StreamSession, failure: BaseException) -> None:
        self._token = None
        self._session = replace(session, connection=None)
        self._set_state(StreamState.CLOSED)
        attempts = session.reconnect_attempt_count
        problem = ProblemDetails(
            status=NO_STATUS,
            title=CONNECTION_FAILED_TITLE,
            detail=f"stream closed after {attempts} reconnect attempts: {failure}",
        )
        logger.warning(
            "stream connection failed",
            extra={"attempts": attempts, "error": type(failure).__name__},
        )
        if self._publisher.transition(generation, StateEvent.PROBLEM, problem):
            self._context.notify_error(
                StreamConnectionError(problem.detail, attempts=attempts),
                problem.as_metadata(),
            )

    async def _credential_params(self, token: CancellationToken, params: Dict[str, Any]) -> Dict[str, Any]:
        query = dict(params)
        if not self.auth_query_param:
            return query
        credential = await token.guard(self._context.resolve_credential())
        if credential:
            query[self.auth_query_param] = _strip_bearer(credential)
        return query

    async def _connect_once(
        self, generation: int, token: CancellationToken, params: Dict[str, Any]
    ) -> BaseException:
        """Run one connection to its end and return what ended it."""
        token.raise_if_cancelled()
        try:
            query = await self._credential_params(token, params)
        except CallerCancelled:
            raise
        except Exception as exc:
            logger.warning("credential supplier failed", extra={"error": type(exc).__name__})
            return exc

        session = self._session
        assert session is not None
        try:
            source = self._source_factory(
                session.url,
                params=query or None,
                client=self._client,
                last_event_id=session.last_event_id,
                redact_params=(self.auth_query_param,) if self.auth_query_param else (),
            )
        except Exception as exc:
            logger.warning("event source could not be created", extra={"error": type(exc).__name__})
            return exc
        self._session = replace(session, connection=source)
        logger.debug(
            "stream connecting",
            extra={"url_redacted": redact_url(session.url), "attempt": session.reconnect_attempt_count},
        )

        try:
            async with contextlib.aclosing(source.notifications()) as notifications:
                async for note in notifications:
                    if not self._current(generation):
                        raise CallerCancelled("session superseded")
                    if note.kind is NotificationKind.OPEN:
                        self._on_open(generation)
                    elif note.kind is NotificationKind.MESSAGE and note.event is not None:
                        self._on_message(generation, note.event)
                    elif note.kind is NotificationKind.ERROR:
                        return note.error or StreamConnectionError("stream error", attempts=0)
            return StreamConnectionError("stream ended without an error notification", attempts=0)
        finally:
            await source.aclose()

    def _on_open(self, generation: int) -> None:
        session = self._session
        assert session is not None
        self._session = replace(session, reconnect_attempt_count=0)
        self._set_state(StreamState.OPEN)
        self._publisher.transition(generation, StateEvent.OPEN)

    def _on_message(self, generation: int, sse: ServerSentEvent) -> None:
        session = self._session
        if session is not None and sse.id is not None:
            self._session = replace(session, last_event_id=sse.id)
        if self.event is not None and sse.event != self.event:
            return

        try:
            payload = json.loads(sse.data)
        except json.JSONDecodeError as exc:
            problem = ProblemDetails(status=NO_STATUS, title=PARSE_ERROR_TITLE, detail=str(exc))
            if self._publisher.transition(generation, StateEvent.PROBLEM, problem):
                self._context.notify_error(
                    DecodeFailure(f"invalid JSON in stream event: {exc}", raw=sse.data),
                    problem.as_metadata(),
                )
            return

        self._publisher.transition(generation, StateEvent.DATA, payload)
