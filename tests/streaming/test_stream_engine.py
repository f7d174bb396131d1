"""Tests for the reconnecting stream engine."""

import asyncio

import httpx
import pytest

from QmKit.context import EngineContext
from QmKit.errors import DecodeFailure, StreamConnectionError
from QmKit.streaming.engine import (
    CONNECTION_FAILED_TITLE,
    PARSE_ERROR_TITLE,
    ReconnectPolicy,
    StreamEngine,
    StreamOverride,
    StreamState,
)
from QmKit.streaming.source import NotificationKind, StreamNotification
from QmKit.testing import ResponseSpec, ScriptedTransport
from tests.fixtures.http_mocking import event_stream_body

URL = "https://api.example.org/events"
SSE_HEADERS = {"content-type": "text/event-stream"}


async def _until(predicate, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.001)


class _HeldStream:
    """Mock transport serving an event stream that stays open until released."""

    def __init__(self, *events: str) -> None:
        self.events = events
        self.hold = asyncio.Event()
        self.by_path = {}
        self.requests = []
        self.transport = httpx.MockTransport(self._handle)

    def _handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        events = self.by_path.get(request.url.path, self.events)

        async def _body():
            yield event_stream_body(*events)
            await self.hold.wait()

        return httpx.Response(200, headers=SSE_HEADERS, content=_body())


def _engine(transport, **kwargs) -> StreamEngine:
    kwargs.setdefault("reconnect", ReconnectPolicy(max_attempts=0, backoff_seconds=0))
    return StreamEngine(URL, client=httpx.AsyncClient(transport=transport), **kwargs)


def _failing(status: int = 500) -> ScriptedTransport:
    return ScriptedTransport([ResponseSpec(status=status, body="unavailable")])


@pytest.mark.asyncio
async def test_open_and_message_publish_data() -> None:
    server = _HeldStream('data: {"n": 1}')
    engine = _engine(server.transport)

    await engine.execute()
    await _until(lambda: engine.data == {"n": 1})

    assert engine.state is StreamState.OPEN
    assert engine.loading is True
    assert engine.session.reconnect_attempt_count == 0
    assert server.requests[0].headers["accept"] == "text/event-stream"

    await engine.aclose()
    assert engine.state is StreamState.CLOSED
    assert engine.loading is False


@pytest.mark.asyncio
async def test_reconnects_then_fails_terminally(tracker) -> None:
    transport = _failing()
    engine = _engine(
        transport,
        reconnect=ReconnectPolicy(max_attempts=1, backoff_seconds=0),
        context=EngineContext(track_error=tracker),
    )

    await engine.execute()
    await engine.join()

    assert transport.calls == 2
    assert engine.state is StreamState.CLOSED
    assert engine.loading is False
    assert engine.problem_details.title == CONNECTION_FAILED_TITLE
    assert engine.problem_details.status == 0
    error, metadata = tracker.calls[0]
    assert isinstance(error, StreamConnectionError)
    assert error.attempts == 1
    assert metadata["title"] == CONNECTION_FAILED_TITLE


@pytest.mark.asyncio
async def test_reconnect_counter_resets_on_open() -> None:
    ended = ResponseSpec(status=200, body=b"", headers=SSE_HEADERS)
    transport = ScriptedTransport([ended, ended, ResponseSpec(status=503)])
    engine = _engine(transport, reconnect=ReconnectPolicy(max_attempts=1, backoff_seconds=0))

    await engine.execute()
    await engine.join()

    assert transport.calls == 3
    assert engine.problem_details.title == CONNECTION_FAILED_TITLE


@pytest.mark.asyncio
async def test_server_closing_stream_triggers_reconnect() -> None:
    states = []
    transport = ScriptedTransport(
        [
            ResponseSpec(status=200, body=event_stream_body(["id: 7", 'data: {"n": 1}']), headers=SSE_HEADERS),
            ResponseSpec(status=500),
        ]
    )
    engine = _engine(transport, reconnect=ReconnectPolicy(max_attempts=1, backoff_seconds=0))
    engine.subscribe(lambda state: states.append(state))

    await engine.execute()
    await engine.join()

    assert transport.calls == 2
    assert transport.requests[1].headers["last-event-id"] == "7"
    assert {"n": 1} in [s.data for s in states]
    assert any(s.loading for s in states)


@pytest.mark.asyncio
async def test_parse_error_is_not_fatal(tracker) -> None:
    server = _HeldStream("data: not json", 'data: {"ok": true}')
    engine = _engine(server.transport, context=EngineContext(track_error=tracker))
    problems = []
    engine.subscribe(lambda state: problems.append(state.problem_details))

    await engine.execute()
    await _until(lambda: engine.data == {"ok": True})

    assert any(p is not None and p.title == PARSE_ERROR_TITLE for p in problems)
    assert engine.problem_details is None
    assert engine.state is StreamState.OPEN
    assert len(server.requests) == 1
    assert isinstance(tracker.calls[0][0], DecodeFailure)
    await engine.aclose()


@pytest.mark.asyncio
async def test_other_event_types_ignored() -> None:
    server = _HeldStream(["event: ping", "data: {}"], 'data: {"n": 2}')
    engine = _engine(server.transport)
    seen = []
    engine.subscribe(lambda state: seen.append(state.data))

    await engine.execute()
    await _until(lambda: engine.data == {"n": 2})

    assert {} not in seen
    await engine.aclose()


@pytest.mark.asyncio
async def test_auth_query_param_refreshed_per_connection() -> None:
    issued = iter(["Bearer t1", "Bearer t2"])
    transport = _failing()
    engine = _engine(
        transport,
        reconnect=ReconnectPolicy(max_attempts=1, backoff_seconds=0),
        auth_query_param="access_token",
        params={"channel": "news"},
        context=EngineContext(get_auth_header=lambda: next(issued)),
    )

    await engine.execute()
    await engine.join()

    assert [r.url.params["access_token"] for r in transport.requests] == ["t1", "t2"]
    assert all(r.url.params["channel"] == "news" for r in transport.requests)
    assert all("authorization" not in r.headers for r in transport.requests)


@pytest.mark.asyncio
async def test_abort_is_idempotent_and_noop_when_idle() -> None:
    server = _HeldStream('data: {"n": 1}')
    engine = _engine(server.transport)
    states = []
    engine.subscribe(states.append)

    engine.abort()
    assert engine.state is StreamState.IDLE
    assert states == []

    await engine.execute()
    await _until(lambda: engine.state is StreamState.OPEN)
    engine.abort()
    engine.abort()

    assert engine.state is StreamState.CLOSED
    assert engine.loading is False
    await engine.join()


@pytest.mark.asyncio
async def test_abort_during_backoff_discards_reconnect() -> None:
    transport = _failing()
    engine = _engine(transport, reconnect=ReconnectPolicy(max_attempts=3, backoff_seconds=10))

    await engine.execute()
    await _until(lambda: engine.state is StreamState.RECONNECTING)
    engine.abort()
    await asyncio.sleep(0.01)

    assert transport.calls == 1
    assert engine.state is StreamState.CLOSED
    assert engine.problem_details is None


@pytest.mark.asyncio
async def test_execute_restarts_after_terminal_close() -> None:
    transport = _failing()
    engine = _engine(transport)

    await engine.execute()
    await engine.join()
    assert engine.state is StreamState.CLOSED

    await engine.execute(StreamOverride(path_suffix="/v2", reconnect=ReconnectPolicy(max_attempts=0)))
    await engine.join()

    assert transport.calls == 2
    assert str(transport.requests[1].url) == URL + "/v2"


@pytest.mark.asyncio
async def test_context_exit_closes_session() -> None:
    server = _HeldStream('data: {"n": 1}')
    async with _engine(server.transport) as engine:
        await engine.execute()
        await _until(lambda: engine.state is StreamState.OPEN)

    assert engine.state is StreamState.CLOSED
    assert engine.loading is False


@pytest.mark.asyncio
async def test_wrong_content_type_is_a_connection_error() -> None:
    transport = ScriptedTransport([ResponseSpec(status=200, body={"not": "a stream"})])
    engine = _engine(transport)

    await engine.execute()
    await engine.join()

    assert engine.problem_details.title == CONNECTION_FAILED_TITLE
    assert "text/event-stream" in engine.problem_details.detail


@pytest.mark.asyncio
async def test_execute_on_live_session_replaces_connection() -> None:
    server = _HeldStream('data: {"session": 1}')
    server.by_path = {"/events/v2": ('data: {"session": 2}',)}
    engine = _engine(server.transport)

    await engine.execute()
    await _until(lambda: engine.data == {"session": 1})
    first = engine.session.connection
    published = []
    engine.subscribe(lambda state: published.append(state.data))

    await engine.execute(StreamOverride(path_suffix="/v2"))
    await _until(lambda: engine.data == {"session": 2})

    assert first.closed
    assert engine.session.connection is not first
    assert len(server.requests) == 2
    assert engine.state is StreamState.OPEN
    assert engine.session.reconnect_attempt_count == 0
    first_new = published.index({"session": 2})
    assert all(data == {"session": 2} for data in published[first_new:])
    await engine.aclose()


@pytest.mark.asyncio
async def test_invalid_url_goes_through_reconnect_budget(tracker) -> None:
    transport = _failing()
    engine = StreamEngine(
        "http://[::1",
        client=httpx.AsyncClient(transport=transport),
        reconnect=ReconnectPolicy(max_attempts=1, backoff_seconds=0),
        context=EngineContext(track_error=tracker),
    )

    await engine.execute()
    await engine.join()

    assert transport.calls == 0
    assert engine.state is StreamState.CLOSED
    assert engine.loading is False
    assert engine.problem_details.title == CONNECTION_FAILED_TITLE
    error, _ = tracker.calls[0]
    assert isinstance(error, StreamConnectionError)
    assert error.attempts == 1


@pytest.mark.asyncio
async def test_failing_source_factory_is_a_connection_failure(tracker) -> None:
    built = []

    def factory(url, **kwargs):
        built.append(url)
        raise RuntimeError("no sockets left")

    engine = StreamEngine(
        URL,
        source_factory=factory,
        reconnect=ReconnectPolicy(max_attempts=2, backoff_seconds=0),
        context=EngineContext(track_error=tracker),
    )

    await engine.execute()
    await engine.join()

    assert len(built) == 3
    assert engine.problem_details.title == CONNECTION_FAILED_TITLE
    assert "no sockets left" in engine.problem_details.detail
    assert len(tracker.calls) == 1


class _ExplodingSource:
    """Source that opens, then fails with an error outside the HTTP stack."""

    def __init__(self, url, **kwargs) -> None:
        self.closed = False

    async def notifications(self):
        yield StreamNotification(NotificationKind.OPEN)
        raise KeyError("decoder state lost")

    async def aclose(self) -> None:
        self.closed = True


@pytest.mark.asyncio
async def test_unexpected_source_error_publishes_terminal_problem(tracker) -> None:
    engine = StreamEngine(URL, source_factory=_ExplodingSource, context=EngineContext(track_error=tracker))

    await engine.execute()
    await engine.join()

    assert engine._task.exception() is None
    assert engine.state is StreamState.CLOSED
    assert engine.loading is False
    assert engine.problem_details.title == CONNECTION_FAILED_TITLE
    assert "decoder state lost" in engine.problem_details.detail
    assert isinstance(tracker.calls[0][0], StreamConnectionError)


@pytest.mark.asyncio
async def test_restart_retrieves_failed_supervisor_exception(caplog) -> None:
    transport = _failing()
    engine = _engine(transport)

    async def _broken_supervisor(*args):
        raise RuntimeError("supervisor bug")

    engine._supervise = _broken_supervisor
    await engine.execute()
    await asyncio.wait({engine._task})

    with caplog.at_level("DEBUG", logger="QmKit.streaming.engine"):
        await engine.execute()
        await engine.join()

    assert any(r.getMessage() == "stream supervisor failed" for r in caplog.records)
