"""Request descriptors, per-call overrides, and body serialization.

A :class:`RequestDescriptor` is bound when an engine is created.  Each call may
pass a :class:`RequestOverride`; :func:`prepare_descriptor` merges the two
field by field and serializes a structured body once, producing the frozen
descriptor every attempt of that call reuses.

Merge order (lowest to highest precedence):

1. the static descriptor,
2. the per-call override (``None`` fields keep the static value; header and
   query-parameter maps merge by key, override wins, header keys compare
   case-insensitively),
3. the credential header injected per attempt by the engine.
"""

from __future__ import annotations

import dataclasses
import enum
import io
import json
from collections.abc import AsyncIterable, Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, Optional

import httpx
from pydantic import BaseModel

from .network.policy import CONTENT_TYPE_HEADER, JSON_MEDIA_TYPE

if TYPE_CHECKING:  # pragma: no cover
    from .network.retry import RetryPolicy

__all__ = [
    "ResponseKind",
    "FormBody",
    "RequestDescriptor",
    "RequestOverride",
    "body_arguments",
    "encode_json_body",
    "is_structured_body",
    "prepare_descriptor",
]


class ResponseKind(str, enum.Enum):
    """How a successful response body should be decoded."""

    AUTO = "auto"
    JSON = "json"
    TEXT = "text"
    BINARY = "binary"


@dataclass(frozen=True)
class FormBody:
    """URL-encoded or multipart form payload; handed to HTTPX untouched."""

    fields: Mapping[str, Any] = field(default_factory=dict)
    files: Optional[Mapping[str, Any]] = None


@dataclass(frozen=True)
class RequestDescriptor:
    """Everything needed to perform one attempt.

    Attributes:
        base_url: URL the engine was created for.
        path_suffix: Appended verbatim to ``base_url``.
        method: HTTP method.
        headers: Case-insensitive header map with unique keys.
        body: ``bytes``/``str``/:class:`FormBody`/stream, or a structured value
            before :func:`prepare_descriptor` serializes it.
        params: Query parameters merged into the URL by HTTPX.
        response_kind: Success decoding override.
        retry: Retry policy for this call; engines fall back to settings.
        timeout: Per-call timeout in seconds, ``None`` for the client default.
    """

    base_url: str
    path_suffix: str = ""
    method: str = "GET"
    headers: httpx.Headers = field(default_factory=httpx.Headers)
    body: Any = None
    params: Optional[Mapping[str, Any]] = None
    response_kind: ResponseKind = ResponseKind.AUTO
    retry: Optional["RetryPolicy"] = None
    timeout: Optional[float] = None

    def __post_init__(self) -> None:
        if not isinstance(self.headers, httpx.Headers):
            object.__setattr__(self, "headers", httpx.Headers(self.headers or {}))
        object.__setattr__(self, "method", self.method.upper())
        object.__setattr__(self, "response_kind", ResponseKind(self.response_kind))

    @property
    def url(self) -> str:
        return self.base_url + (self.path_suffix or "")

    def with_header(self, name: str, value: str) -> "RequestDescriptor":
        """Return a copy with ``name`` set, replacing any same-named header."""
        headers = httpx.Headers(self.headers)
        headers[name] = value
        return dataclasses.replace(self, headers=headers)


@dataclass(frozen=True)
class RequestOverride:
    """Typed partial descriptor supplied to a single ``execute()`` call.

    ``None`` means "keep the static value"; an override cannot clear a body or
    header the static descriptor set.
    """

    path_suffix: Optional[str] = None
    method: Optional[str] = None
    headers: Optional[Mapping[str, str]] = None
    body: Any = None
    params: Optional[Mapping[str, Any]] = None
    response_kind: Optional[ResponseKind] = None
    retry: Optional["RetryPolicy"] = None
    timeout: Optional[float] = None


def is_structured_body(body: Any) -> bool:
    """Return ``True`` when ``body`` must be JSON-encoded before sending.

    Raw bytes, text, forms, file objects, and (async) iterators are streams
    or already-encoded payloads and are never re-encoded.
    """
    if body is None:
        return False
    if isinstance(body, (bytes, bytearray, memoryview, str, FormBody, io.IOBase)):
        return False
    if isinstance(body, (AsyncIterable, Iterator)):
        return False
    if isinstance(body, BaseModel) or dataclasses.is_dataclass(body):
        return True
    return isinstance(body, (Mapping, Sequence, int, float, bool))


def encode_json_body(body: Any) -> bytes:
    """Serialize a structured value to compact UTF-8 JSON."""
    if isinstance(body, BaseModel):
        body = body.model_dump(mode="json")
    elif dataclasses.is_dataclass(body) and not isinstance(body, type):
        body = dataclasses.asdict(body)
    return json.dumps(body, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def _merge_mapping(
    base: Optional[Mapping[str, Any]], extra: Optional[Mapping[str, Any]]
) -> Optional[Dict[str, Any]]:
    if base is None and extra is None:
        return None
    merged: Dict[str, Any] = dict(base or {})
    merged.update(extra or {})
    return merged


def prepare_descriptor(
    static: RequestDescriptor, override: Optional[RequestOverride] = None
) -> RequestDescriptor:
    """Merge ``override`` into ``static`` and serialize a structured body once."""
    if override is None:
        override = RequestOverride()

    headers = httpx.Headers(static.headers)
    if override.headers:
        headers.update(override.headers)

    body = static.body if override.body is None else override.body
    if is_structured_body(body):
        body = encode_json_body(body)
        if CONTENT_TYPE_HEADER not in headers:
            headers[CONTENT_TYPE_HEADER] = JSON_MEDIA_TYPE

    return RequestDescriptor(
        base_url=static.base_url,
        path_suffix=static.path_suffix if override.path_suffix is None else override.path_suffix,
        method=override.method or static.method,
        headers=headers,
        body=body,
        params=_merge_mapping(static.params, override.params),
        response_kind=override.response_kind or static.response_kind,
        retry=override.retry or static.retry,
        timeout=static.timeout if override.timeout is None else override.timeout,
    )


def body_arguments(body: Any) -> Dict[str, Any]:
    """Translate a prepared body into ``httpx.AsyncClient.build_request`` keywords."""
    if body is None:
        return {}
    if isinstance(body, FormBody):
        arguments: Dict[str, Any] = {"data": dict(body.fields)}
        if body.files:
            arguments["files"] = dict(body.files)
        return arguments
    if isinstance(body, (bytearray, memoryview)):
        return {"content": bytes(body)}
    return {"content": body}
