"""Tests for response classification."""

import httpx
import pytest

from QmKit.classifier import (
    BinaryPayload,
    classify_response,
    extract_filename,
    is_json_media_type,
)
from QmKit.descriptor import ResponseKind
from QmKit.errors import DecodeFailure


def _response(status: int, content: bytes = b"", content_type: str = "", **headers: str) -> httpx.Response:
    all_headers = dict(headers)
    if content_type:
        all_headers["content-type"] = content_type
    return httpx.Response(status, content=content, headers=all_headers)


@pytest.mark.parametrize(
    "content_type, expected",
    [
        ("application/json", True),
        ("application/json; charset=utf-8", True),
        ("application/problem+json", True),
        ("application/vnd.api+json", True),
        ("APPLICATION/JSON", True),
        ("text/plain", False),
        ("text/event-stream", False),
        ("", False),
        (None, False),
    ],
)
def test_is_json_media_type(content_type, expected) -> None:
    assert is_json_media_type(content_type) is expected


@pytest.mark.parametrize(
    "disposition, expected",
    [
        ('attachment; filename="report.csv"', "report.csv"),
        ("attachment; filename=report.csv", "report.csv"),
        ("attachment; filename*=UTF-8''na%C3%AFve%20file.txt", "naïve file.txt"),
        ("attachment; filename=\"plain.txt\"; filename*=UTF-8''fancy.txt", "fancy.txt"),
        ("inline", None),
        (None, None),
    ],
)
def test_extract_filename(disposition, expected) -> None:
    assert extract_filename(disposition) == expected


def test_success_json_is_decoded() -> None:
    outcome = classify_response(_response(200, b'{"items": [1]}', "application/json"))
    assert outcome.ok
    assert outcome.value == {"items": [1]}


def test_success_non_json_wrapped_with_status() -> None:
    outcome = classify_response(_response(201, b"created", "text/plain"))
    assert outcome.value == {"status": 201, "message": "created"}


def test_success_text_kind_returns_text() -> None:
    outcome = classify_response(_response(200, b'{"a": 1}', "application/json"), ResponseKind.TEXT)
    assert outcome.value == '{"a": 1}'


def test_json_kind_forces_decode() -> None:
    outcome = classify_response(_response(200, b"[1, 2]", "text/plain"), ResponseKind.JSON)
    assert outcome.value == [1, 2]


def test_binary_kind_carries_filename() -> None:
    response = _response(
        200,
        b"\x00\x01",
        "application/octet-stream",
        **{"content-disposition": 'attachment; filename="blob.bin"'},
    )
    outcome = classify_response(response, ResponseKind.BINARY)
    assert outcome.value == BinaryPayload(content=b"\x00\x01", filename="blob.bin", content_type="application/octet-stream")


def test_invalid_success_json_raises_decode_failure() -> None:
    with pytest.raises(DecodeFailure) as excinfo:
        classify_response(_response(200, b"{not json", "application/json"))
    assert excinfo.value.raw == "{not json"


def test_problem_json_error_is_decoded() -> None:
    body = b'{"status": 404, "title": "Not Found", "detail": "no item 7", "instance": "/items/7"}'
    outcome = classify_response(_response(404, body, "application/problem+json"))

    assert not outcome.ok
    assert outcome.problem.status == 404
    assert outcome.problem.title == "Not Found"
    assert outcome.problem.detail == "no item 7"
    assert outcome.problem.model_extra == {"instance": "/items/7"}


def test_problem_without_status_gets_http_status() -> None:
    outcome = classify_response(_response(422, b'{"title": "Invalid"}', "application/json"))
    assert outcome.problem.status == 422
    assert outcome.problem.title == "Invalid"


def test_text_error_synthesizes_problem() -> None:
    outcome = classify_response(_response(502, b"bad gateway", "text/html"))
    assert outcome.problem.status == 502
    assert outcome.problem.title == "Request failed"
    assert outcome.problem.detail == "bad gateway"


@pytest.mark.parametrize("body", [b"[1, 2]", b"{broken"])
def test_unusable_json_error_falls_back_to_text(body: bytes) -> None:
    outcome = classify_response(_response(500, body, "application/json"))
    assert outcome.problem.status == 500
    assert outcome.problem.title == "Request failed"
    assert outcome.problem.detail == body.decode()
