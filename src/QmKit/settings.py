# === NAVMAP v1 ===
# {
#   "module": "QmKit.settings",
#   "purpose": "Pydantic settings models and environment overrides for the request and stream engines",
#   "sections": [
#     {"id": "httpsettings", "name": "HttpSettings", "anchor": "class-httpsettings", "kind": "class"},
#     {"id": "retrysettings", "name": "RetrySettings", "anchor": "class-retrysettings", "kind": "class"},
#     {"id": "streamsettings", "name": "StreamSettings", "anchor": "class-streamsettings", "kind": "class"},
#     {"id": "loggingsettings", "name": "LoggingSettings", "anchor": "class-loggingsettings", "kind": "class"},
#     {"id": "qmkitsettings", "name": "QmKitSettings", "anchor": "class-qmkitsettings", "kind": "class"},
#     {"id": "get-settings", "name": "get_settings", "anchor": "function-get-settings", "kind": "function"},
#     {"id": "reset-settings", "name": "reset_settings", "anchor": "function-reset-settings", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""Configuration models for QmKit.

Settings are grouped into small frozen domain models and assembled by
:class:`QmKitSettings`, a ``pydantic-settings`` model that reads ``QMKIT_*``
environment variables.  Nested fields use ``__`` as the delimiter, so
``QMKIT_RETRY__COUNT=2`` sets ``settings.retry.count``.

Example:
    >>> from QmKit.settings import get_settings
    >>> get_settings().retry.count
    0
"""

from __future__ import annotations

import logging
import threading
from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

__all__ = [
    "HttpSettings",
    "RetrySettings",
    "StreamSettings",
    "LoggingSettings",
    "QmKitSettings",
    "get_settings",
    "reset_settings",
]


class HttpSettings(BaseModel):
    """HTTPX client settings: timeouts, pooling, TLS, and identification."""

    model_config = ConfigDict(frozen=True, validate_assignment=False)

    http2: bool = Field(default=False, description="Enable HTTP/2 (requires the h2 extra)")
    timeout_connect: float = Field(default=5.0, gt=0.0, le=60.0, description="Connect timeout in seconds")
    timeout_read: float = Field(default=30.0, gt=0.0, le=300.0, description="Read timeout in seconds")
    timeout_write: float = Field(default=30.0, gt=0.0, le=300.0, description="Write timeout in seconds")
    timeout_pool: float = Field(default=5.0, gt=0.0, le=60.0, description="Acquire-from-pool timeout in seconds")
    pool_max_connections: int = Field(default=64, ge=1, le=1024, description="Max concurrent connections")
    pool_keepalive_max: int = Field(default=20, ge=0, le=1024, description="Keepalive pool size")
    keepalive_expiry: float = Field(default=30.0, ge=0.0, le=600.0, description="Idle connection expiry in seconds")
    verify_tls: bool = Field(default=True, description="Verify server certificates")
    trust_env: bool = Field(default=True, description="Honor HTTP(S)_PROXY and NO_PROXY environment variables")
    user_agent: str = Field(default="qmkit/0.1", description="User-Agent header value")
    follow_redirects: bool = Field(default=True, description="Follow 3xx responses and classify the final one")
    max_redirects: int = Field(default=20, ge=0, le=100, description="Redirect hops before giving up")


class RetrySettings(BaseModel):
    """Default retry policy applied when a request carries none of its own."""

    model_config = ConfigDict(frozen=True, validate_assignment=False)

    count: int = Field(default=0, ge=0, le=20, description="Retries after the first attempt")
    delay_seconds: float = Field(default=1.0, ge=0.0, le=300.0, description="Fixed delay between attempts")


class StreamSettings(BaseModel):
    """Reconnect behaviour for event-stream sessions."""

    model_config = ConfigDict(frozen=True, validate_assignment=False)

    max_reconnect_attempts: int = Field(
        default=3,
        ge=0,
        le=1000,
        description="Reconnects allowed after an error before the session closes",
    )
    backoff_seconds: float = Field(default=1.0, ge=0.0, le=600.0, description="Delay before each reconnect")
    auth_query_param: Optional[str] = Field(
        default=None,
        description="Query parameter carrying the credential (event streams cannot send headers)",
    )


class LoggingSettings(BaseModel):
    """Logging configuration."""

    model_config = ConfigDict(frozen=True, validate_assignment=False)

    level: str = Field(default="INFO", description="Logging level (DEBUG, INFO, WARNING, ERROR)")
    emit_json_logs: bool = Field(
        default=False,
        description="Emit JSON-formatted logs",
        validation_alias=AliasChoices("emit_json_logs", "json"),
    )

    @field_validator("level", mode="before")
    @classmethod
    def normalize_level(cls, v: str) -> str:
        """Normalize and validate logging level."""
        upper = str(v).upper()
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR"}
        if upper not in valid_levels:
            raise ValueError(f"level must be one of {sorted(valid_levels)}, got '{v}'")
        return upper

    def level_int(self) -> int:
        """Convert level string to logging module integer."""
        return getattr(logging, self.level)


class QmKitSettings(BaseSettings):
    """Top-level settings assembled from defaults and ``QMKIT_*`` variables."""

    model_config = SettingsConfigDict(
        env_prefix="QMKIT_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    http: HttpSettings = Field(default_factory=HttpSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    stream: StreamSettings = Field(default_factory=StreamSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


_SETTINGS: Optional[QmKitSettings] = None
_SETTINGS_LOCK = threading.Lock()


def get_settings() -> QmKitSettings:
    """Return the process-wide settings, loading them on first use."""
    global _SETTINGS  # noqa: PLW0603

    with _SETTINGS_LOCK:
        if _SETTINGS is None:
            _SETTINGS = QmKitSettings()
        return _SETTINGS


def reset_settings() -> None:
    """Drop cached settings so the next :func:`get_settings` re-reads the environment."""
    global _SETTINGS  # noqa: PLW0603

    with _SETTINGS_LOCK:
        _SETTINGS = None
