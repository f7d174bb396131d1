"""Classify HTTP responses into success payloads or problem documents.

Decision table (first matching row wins):

- non-2xx, JSON-family content type: body decoded as a problem document
- non-2xx, anything else: synthesized "Request failed" problem carrying the text
- 2xx, ``ResponseKind.BINARY``: :class:`BinaryPayload` with any attachment filename
- 2xx, ``ResponseKind.TEXT``: the body text
- 2xx, ``ResponseKind.JSON`` or JSON-family content type: the decoded JSON value
- 2xx, otherwise: ``{"status": status, "message": text}``
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Optional
from urllib.parse import unquote

import httpx

from .descriptor import ResponseKind
from .errors import DecodeFailure
from .network.policy import (
    CONTENT_DISPOSITION_HEADER,
    CONTENT_TYPE_HEADER,
    JSON_MEDIA_TYPE,
    JSON_SUFFIX,
    SUCCESS_STATUS_RANGE,
)
from .problems import ProblemDetails, problem_from_payload, problem_from_text

__all__ = [
    "BinaryPayload",
    "Classification",
    "classify_response",
    "extract_filename",
    "is_json_media_type",
    "is_success",
]

_FILENAME_STAR_RE = re.compile(r"filename\*\s*=\s*([^']*)'[^']*'([^;]+)", re.IGNORECASE)
_FILENAME_RE = re.compile(r'filename="?([^";]+)"?', re.IGNORECASE)


@dataclass(frozen=True)
class BinaryPayload:
    """Raw success body plus what the headers say about it."""

    content: bytes
    filename: Optional[str] = None
    content_type: Optional[str] = None


@dataclass(frozen=True)
class Classification:
    """Either a decoded success ``value`` or a ``problem``; never both."""

    value: Any = None
    problem: Optional[ProblemDetails] = None

    @property
    def ok(self) -> bool:
        return self.problem is None


def is_success(status_code: int) -> bool:
    return status_code in SUCCESS_STATUS_RANGE


def is_json_media_type(content_type: Optional[str]) -> bool:
    """Return ``True`` for ``application/json`` and any ``+json`` media type.

    Examples:
        >>> is_json_media_type("application/problem+json; charset=utf-8")
        True
        >>> is_json_media_type("text/plain")
        False
    """
    if not content_type:
        return False
    media_type = content_type.split(";", 1)[0].strip().lower()
    return media_type == JSON_MEDIA_TYPE or media_type.endswith(JSON_SUFFIX)


def extract_filename(disposition: Optional[str]) -> Optional[str]:
    """Pull a filename out of a ``Content-Disposition`` header value.

    ``filename*`` (RFC 5987) wins over the plain ``filename`` parameter.

    Examples:
        >>> extract_filename('attachment; filename="report.csv"')
        'report.csv'
        >>> extract_filename("attachment; filename*=UTF-8''na%C3%AFve.txt")
        'naïve.txt'
    """
    if not disposition:
        return None
    match = _FILENAME_STAR_RE.search(disposition)
    if match:
        charset = match.group(1) or "utf-8"
        try:
            return unquote(match.group(2).strip(), encoding=charset, errors="strict")
        except (LookupError, UnicodeDecodeError):
            pass
    match = _FILENAME_RE.search(disposition)
    if match:
        return match.group(1).strip()
    return None


def _decode_json(response: httpx.Response) -> Any:
    try:
        return response.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise DecodeFailure(f"invalid JSON body: {exc}", raw=response.text) from exc


def _classify_problem(response: httpx.Response, json_family: bool) -> ProblemDetails:
    status = response.status_code
    if json_family:
        try:
            payload = response.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            return problem_from_text(status, response.text)
        return problem_from_payload(status, payload, raw_text=response.text)
    return problem_from_text(status, response.text)


def classify_response(response: httpx.Response, kind: ResponseKind = ResponseKind.AUTO) -> Classification:
    """Turn a fully-read response into a :class:`Classification`.

    Raises:
        DecodeFailure: if a success body that must be JSON does not parse.
    """
    content_type = response.headers.get(CONTENT_TYPE_HEADER)
    json_family = is_json_media_type(content_type)

    if not is_success(response.status_code):
        return Classification(problem=_classify_problem(response, json_family))

    if kind is ResponseKind.BINARY:
        return Classification(
            value=BinaryPayload(
                content=response.content,
                filename=extract_filename(response.headers.get(CONTENT_DISPOSITION_HEADER)),
                content_type=content_type,
            )
        )
    if kind is ResponseKind.TEXT:
        return Classification(value=response.text)
    if kind is ResponseKind.JSON or json_family:
        return Classification(value=_decode_json(response))
    return Classification(value={"status": response.status_code, "message": response.text})
