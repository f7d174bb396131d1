"""RFC 7807 problem documents, both server-sent and locally synthesized."""

from __future__ import annotations

from typing import Any, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

__all__ = [
    "ProblemDetails",
    "NO_STATUS",
    "problem_from_exception",
    "problem_from_payload",
    "problem_from_text",
]

#: Status used when no HTTP status is available (transport or parse failures).
NO_STATUS = 0


class ProblemDetails(BaseModel):
    """Problem document describing why a request or stream produced no data.

    Extra members a server includes (``instance``, validation ``errors`` ...)
    are preserved as model extras.
    """

    model_config = ConfigDict(frozen=True, extra="allow")

    status: int = Field(default=NO_STATUS, description="HTTP status; 0 when none applies")
    title: str = Field(default="", description="Short, human-readable summary")
    detail: str = Field(default="", description="Explanation specific to this occurrence")
    type: Optional[str] = Field(default=None, description="URI reference identifying the type")

    def as_metadata(self) -> dict[str, Any]:
        """Return a plain mapping suitable for error-tracker metadata."""
        return self.model_dump(exclude_none=True)


def problem_from_text(status: int, text: str, *, title: str = "Request failed") -> ProblemDetails:
    return ProblemDetails(status=status, title=title, detail=text)


def problem_from_payload(status: int, payload: Any, *, raw_text: str = "") -> ProblemDetails:
    """Interpret a decoded JSON error body as a problem document.

    Bodies that are not JSON objects, or whose members have the wrong types,
    fall back to a synthesized problem carrying the raw body text.
    """
    if not isinstance(payload, Mapping):
        return problem_from_text(status, raw_text)
    document = dict(payload)
    document.setdefault("status", status)
    try:
        return ProblemDetails.model_validate(document)
    except ValidationError:
        return problem_from_text(status, raw_text)


def problem_from_exception(exc: BaseException, *, title: Optional[str] = None) -> ProblemDetails:
    """Synthesize a status-less problem from an exception's name and message."""
    return ProblemDetails(
        status=NO_STATUS,
        title=title or type(exc).__name__,
        detail=str(exc) or type(exc).__name__,
    )
