"""Published ``{data, loading, problem_details}`` state for one engine instance.

All mutations go through :meth:`StatePublisher.transition`, keyed by the
generation (request call or stream session) that produced the event.  Events
from a superseded generation are dropped, which is what keeps a late response
from an invalidated call from overwriting its successor's outcome.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, replace
from typing import Any, Callable, Generic, List, Optional, TypeVar

from .problems import ProblemDetails

__all__ = ["ExecutionState", "StateEvent", "StatePublisher", "Subscriber"]

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class ExecutionState(Generic[T]):
    """Snapshot handed to subscribers after every publish."""

    data: Optional[T] = None
    loading: bool = False
    problem_details: Optional[ProblemDetails] = None


class StateEvent(enum.Enum):
    """Kinds of transitions an engine can request."""

    BEGIN = "begin"  # loading on, previous problem cleared
    OPEN = "open"  # loading on, nothing else touched
    DATA = "data"  # data published, problem cleared
    PROBLEM = "problem"  # problem published, data cleared
    SETTLE = "settle"  # loading off


Subscriber = Callable[[ExecutionState[Any]], None]


class StatePublisher(Generic[T]):
    """Single-writer holder of an engine's :class:`ExecutionState`."""

    def __init__(self) -> None:
        self._state: ExecutionState[T] = ExecutionState()
        self._generation = 0
        self._subscribers: List[Subscriber] = []

    @property
    def state(self) -> ExecutionState[T]:
        return self._state

    @property
    def generation(self) -> int:
        return self._generation

    def next_generation(self) -> int:
        """Invalidate the current generation and return a fresh identity."""
        self._generation += 1
        return self._generation

    def is_current(self, generation: int) -> bool:
        return generation == self._generation

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register ``callback`` for every publish; returns an unsubscribe function."""
        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return _unsubscribe

    def transition(self, generation: int, event: StateEvent, value: Any = None) -> bool:
        """Apply ``event`` on behalf of ``generation``.

        Returns:
            ``True`` when the transition was applied, ``False`` when it came
            from a stale generation and was discarded.
        """
        if generation != self._generation:
            logger.debug(
                "discarding stale state event",
                extra={"event": event.value, "generation": generation, "current": self._generation},
            )
            return False

        current = self._state
        if event is StateEvent.BEGIN:
            updated = replace(current, loading=True, problem_details=None)
        elif event is StateEvent.OPEN:
            updated = replace(current, loading=True)
        elif event is StateEvent.DATA:
            updated = replace(current, data=value, problem_details=None)
        elif event is StateEvent.PROBLEM:
            updated = replace(current, data=None, problem_details=value)
        elif event is StateEvent.SETTLE:
            updated = replace(current, loading=False)
        else:  # pragma: no cover - exhaustive over StateEvent
            raise ValueError(f"unknown state event {event!r}")

        self._state = updated
        self._publish(updated)
        return True

    def _publish(self, state: ExecutionState[T]) -> None:
        for callback in list(self._subscribers):
            try:
                callback(state)
            except Exception:
                logger.exception("state subscriber failed")
