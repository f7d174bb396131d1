"""Cooperative cancellation primitives shared by the request and stream engines.

Each logical call owns one :class:`CancellationToken`.  Superseding a call or
aborting it signals the token; every suspension point the engines go through
(transport exchange, inter-retry delay, inter-reconnect delay) is awaited via
the token so the signal releases the pending work immediately and its
eventual outcome is ignored.  Tokens are loop-local: the engines run on a
single asyncio loop and never share a token across threads.
"""

from __future__ import annotations

import asyncio
import itertools
from typing import Awaitable, Optional, TypeVar

from .errors import CallerCancelled

__all__ = ["CancellationToken"]

T = TypeVar("T")

_TOKEN_IDS = itertools.count(1)


class CancellationToken:
    """Cancellation token for one logical call and all of its attempts.

    Examples:
        >>> token = CancellationToken()
        >>> token.is_cancelled()
        False
        >>> token.cancel()
        >>> token.is_cancelled()
        True
    """

    def __init__(self) -> None:
        """Initialize a new, uncancelled token."""
        self.id = next(_TOKEN_IDS)
        self._event = asyncio.Event()
        self._reason: Optional[str] = None

    def __repr__(self) -> str:
        state = "cancelled" if self.is_cancelled() else "live"
        return f"CancellationToken(id={self.id}, {state})"

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def cancel(self, reason: str = "cancelled") -> None:
        """Signal cancellation; repeated calls keep the first reason."""
        if self._event.is_set():
            return
        self._reason = reason
        self._event.set()

    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise CallerCancelled(self._reason or "cancelled")

    async def wait(self) -> None:
        """Block until the token is cancelled."""
        await self._event.wait()

    async def sleep(self, delay: float) -> None:
        """Sleep for ``delay`` seconds unless cancelled first.

        Raises:
            CallerCancelled: if the token is signalled before or during the delay.
        """
        self.raise_if_cancelled()
        if delay <= 0:
            return
        try:
            await asyncio.wait_for(self._event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return
        raise CallerCancelled(self._reason or "cancelled")

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` but stop waiting as soon as the token is signalled.

        The wrapped work runs in its own task; on cancellation that task is
        cancelled and awaited so sockets and timers are released before
        :class:`CallerCancelled` is raised.
        """
        if self._event.is_set():
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise CallerCancelled(self._reason or "cancelled")

        work = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except BaseException:
            work.cancel()
            raise
        finally:
            waiter.cancel()

        if work.done():
            return work.result()

        work.cancel()
        try:
            await work
        except asyncio.CancelledError:
            pass
        except Exception:
            # Outcome of a cancelled attempt is ignored.
            pass
        raise CallerCancelled(self._reason or "cancelled")
# === NAVMAP v1 ===
# {
#   "module": "QmKit.cancellation",
#   "purpose": "Provide cooperative cancellation tokens for request attempts and stream sessions",
#   "sections": [
#     {"id": "token", "name": "CancellationToken", "anchor": "TOK", "kind": "api"}
#   ]
# }
# === /NAVMAP ===
