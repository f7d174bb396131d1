"""Collaborators supplied by the embedding application.

The engines never register credentials or trackers themselves; they receive an
:class:`EngineContext` carrying two optional callables and call them at fixed
points: the credential supplier once per attempt or reconnect (never
memoized), the error tracker once per surfaced problem.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping, Optional, Union

__all__ = ["CredentialSupplier", "ErrorTracker", "EngineContext"]

logger = logging.getLogger(__name__)

CredentialSupplier = Callable[[], Union[Awaitable[Optional[str]], Optional[str]]]
ErrorTracker = Callable[..., Any]


@dataclass(frozen=True)
class EngineContext:
    """Optional credential supplier and error tracker shared by engines."""

    get_auth_header: Optional[CredentialSupplier] = None
    track_error: Optional[ErrorTracker] = None

    async def resolve_credential(self) -> Optional[str]:
        """Invoke the credential supplier; falsy results mean "no credential"."""
        if self.get_auth_header is None:
            return None
        value = self.get_auth_header()
        if inspect.isawaitable(value):
            value = await value
        return value or None

    def notify_error(self, error: BaseException, metadata: Optional[Mapping[str, Any]] = None) -> None:
        """Report ``error`` to the tracker without awaiting it.

        Tracker failures are logged and never propagate into the engine.
        """
        if self.track_error is None:
            return
        try:
            if metadata is None:
                result = self.track_error(error)
            else:
                result = self.track_error(error, dict(metadata))
        except Exception:
            logger.warning("error tracker raised", exc_info=True)
            return
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            task.add_done_callback(_log_tracker_failure)


def _log_tracker_failure(task: "asyncio.Future[Any]") -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.warning("error tracker raised", exc_info=exc)
