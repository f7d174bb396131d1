"""Structured logging helpers shared by the request and stream engines."""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Dict, Iterable, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

__all__ = ["JSONFormatter", "mask_sensitive_data", "redact_url", "setup_logging"]

_SENSITIVE_KEYS = {"authorization", "api_key", "apikey", "token", "access_token", "secret", "password"}
_MASK = "***masked***"


def mask_sensitive_data(payload: Dict[str, object]) -> Dict[str, object]:
    """Remove secrets from structured payloads prior to logging.

    Examples:
        >>> mask_sensitive_data({"token": "secret", "status": "ok"})
        {'token': '***masked***', 'status': 'ok'}
    """
    masked: Dict[str, object] = {}
    for key, value in payload.items():
        if key.lower() in _SENSITIVE_KEYS:
            masked[key] = _MASK
        elif isinstance(value, dict):
            masked[key] = mask_sensitive_data(value)
        else:
            masked[key] = value
    return masked


def redact_url(url: str, extra_params: Iterable[str] = ()) -> str:
    """Mask credential-bearing query parameters in ``url``.

    Examples:
        >>> redact_url("https://h/events?access_token=abc&x=1")
        'https://h/events?access_token=%2A%2A%2Amasked%2A%2A%2A&x=1'
    """
    try:
        parts = urlsplit(url)
    except ValueError:
        return "<unparsable url>"
    if not parts.query:
        return url
    sensitive = _SENSITIVE_KEYS | {name.lower() for name in extra_params}
    query = [
        (key, _MASK if key.lower() in sensitive else value)
        for key, value in parse_qsl(parts.query, keep_blank_values=True)
    ]
    return urlunsplit(parts._replace(query=urlencode(query)))


class JSONFormatter(logging.Formatter):
    """Formatter emitting masked JSON log entries."""

    _RESERVED = set(vars(logging.makeLogRecord({})).keys()) | {"message", "asctime"}

    def format(self, record: logging.LogRecord) -> str:
        now = datetime.now(timezone.utc)
        payload: Dict[str, object] = {
            "timestamp": now.isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in vars(record).items():
            if key not in self._RESERVED and not key.startswith("_"):
                payload[key] = value
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(mask_sensitive_data(payload), default=str)


def setup_logging(
    *,
    level: str = "INFO",
    json_logs: bool = False,
    logger_name: str = "QmKit",
    propagate: bool = False,
) -> logging.Logger:
    """Configure the ``QmKit`` logger with a single managed stderr handler.

    Handlers installed by earlier calls are replaced, so repeated calls (tests,
    CLI re-entry) never duplicate output.
    """
    logger = logging.getLogger(logger_name)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in list(logger.handlers):
        if getattr(handler, "_qmkit_managed", False):
            logger.removeHandler(handler)

    handler: logging.Handler = logging.StreamHandler(sys.stderr)
    formatter: Optional[logging.Formatter]
    if json_logs:
        formatter = JSONFormatter()
    else:
        formatter = logging.Formatter("%(levelname)s %(name)s: %(message)s")
    handler.setFormatter(formatter)
    handler._qmkit_managed = True  # type: ignore[attr-defined]
    logger.addHandler(handler)

    logger.propagate = propagate
    return logger
