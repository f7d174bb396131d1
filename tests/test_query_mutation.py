"""Tests for the query and mutation presets."""

import json

import httpx
import pytest

from QmKit.context import EngineContext
from QmKit.descriptor import RequestOverride
from QmKit.network.transport import HttpTransport
from QmKit.request import Mutation, Query

URL = "https://api.example.org/todos"


def _transport(scripted_transport) -> HttpTransport:
    return HttpTransport(httpx.AsyncClient(transport=scripted_transport))


@pytest.mark.asyncio
async def test_query_auto_invokes_on_enter(http_mock, scripted) -> None:
    transport = scripted(http_mock(200).with_json([{"id": 1}]))

    async with Query(URL, transport=_transport(transport)) as todos:
        assert todos.data == [{"id": 1}]
        assert todos.loading is False

    assert transport.calls == 1
    assert transport.requests[0].method == "GET"


@pytest.mark.asyncio
async def test_query_without_auto_invoke_waits_for_query(http_mock, scripted) -> None:
    transport = scripted(http_mock(200).with_json({"n": 1}))

    async with Query(URL, auto_invoke=False, transport=_transport(transport)) as todos:
        assert transport.calls == 0
        assert await todos.query() == {"n": 1}

    assert transport.calls == 1


@pytest.mark.asyncio
async def test_query_with_empty_url_does_not_auto_invoke(http_mock, scripted) -> None:
    transport = scripted(http_mock(200).with_json({}))

    async with Query("", transport=_transport(transport)):
        pass

    assert transport.calls == 0


@pytest.mark.asyncio
async def test_query_method_is_always_get(http_mock, scripted) -> None:
    transport = scripted(http_mock(200).with_json({}))
    todos = Query(URL, auto_invoke=False, transport=_transport(transport))

    await todos.execute(RequestOverride(method="DELETE", path_suffix="/3"))

    assert transport.requests[0].method == "GET"
    assert str(transport.requests[0].url) == URL + "/3"


@pytest.mark.asyncio
async def test_mutation_defaults_to_post_json(http_mock, scripted) -> None:
    transport = scripted(http_mock(201).with_json({"id": 9}))
    create = Mutation(URL, transport=_transport(transport))

    async with create:
        assert transport.calls == 0
        result = await create.mutate(body={"title": "write tests"})

    request = transport.requests[0]
    assert result == {"id": 9}
    assert request.method == "POST"
    assert request.headers["content-type"] == "application/json"
    assert json.loads(request.content) == {"title": "write tests"}


@pytest.mark.asyncio
async def test_mutation_keeps_caller_content_type(http_mock, scripted) -> None:
    transport = scripted(http_mock(204))
    upload = Mutation(
        URL,
        method="PUT",
        headers={"content-type": "text/csv"},
        transport=_transport(transport),
    )

    await upload.mutate(body="a,b\n1,2\n")

    request = transport.requests[0]
    assert request.method == "PUT"
    assert request.headers.get_list("content-type") == ["text/csv"]
    assert request.content == b"a,b\n1,2\n"


@pytest.mark.asyncio
async def test_mutation_dynamic_suffix_and_override(http_mock, scripted, tracker) -> None:
    transport = scripted(http_mock(409).with_problem("Conflict", "already done"))
    update = Mutation(URL, transport=_transport(transport), context=EngineContext(track_error=tracker))

    result = await update.mutate(RequestOverride(headers={"If-Match": "v1"}), path_suffix="/5", method="PATCH")

    request = transport.requests[0]
    assert result is None
    assert str(request.url) == URL + "/5"
    assert request.method == "PATCH"
    assert request.headers["if-match"] == "v1"
    assert update.problem_details.title == "Conflict"
    assert str(tracker.calls[0][0]) == "Error: status: 409"
