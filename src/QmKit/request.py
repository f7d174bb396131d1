# === NAVMAP v1 ===
# {
#   "module": "QmKit.request",
#   "purpose": "Single-flight request engine with retry, cancellation, and query/mutation presets",
#   "sections": [
#     {"id": "requestengine", "name": "RequestEngine", "anchor": "class-requestengine", "kind": "class"},
#     {"id": "query", "name": "Query", "anchor": "class-query", "kind": "class"},
#     {"id": "mutation", "name": "Mutation", "anchor": "class-mutation", "kind": "class"}
#   ]
# }
# === /NAVMAP ===

"""Request engine: one logical request, 1..N attempts, published state.

Each :meth:`RequestEngine.execute` call:

1. supersedes any in-flight call (its token is cancelled, its generation
   retired so nothing it produces is published),
2. merges the per-call :class:`~QmKit.descriptor.RequestOverride` into the
   static descriptor and serializes a structured body once,
3. publishes ``loading=True`` with the previous problem cleared,
4. runs attempts under a Tenacity controller built from the call's
   :class:`~QmKit.network.retry.RetryPolicy`; each attempt resolves the
   credential afresh and attaches it as the ``Authorization`` header,
5. classifies the final response and publishes ``data`` or
   ``problem_details``, notifying the error tracker for problems,
6. settles ``loading=False`` if the call is still current.

Caller cancellation (supersede or :meth:`RequestEngine.abort`) resolves
``None`` and is never reported as a problem.

Example:
    >>> async def main():
    ...     async with Query("https://api.example.org/items") as items:
    ...         print(items.data, items.problem_details)
"""

from __future__ import annotations

import dataclasses
import logging
from typing import Any, Callable, Generic, Mapping, Optional, TypeVar, Union

import httpx

from .cancellation import CancellationToken
from .classifier import Classification, classify_response
from .context import EngineContext
from .descriptor import RequestDescriptor, RequestOverride, ResponseKind, prepare_descriptor
from .errors import (
    CallerCancelled,
    DecodeFailure,
    NonRetryableServerError,
    QmKitError,
    RetryableServerError,
    RetryBudgetExhausted,
    ServerError,
    TransportFailure,
)
from .logging_utils import redact_url
from .network.policy import AUTH_HEADER, CONTENT_TYPE_HEADER, JSON_MEDIA_TYPE
from .network.retry import RetryPolicy, is_retryable_status
from .network.transport import HttpTransport, Transport
from .problems import ProblemDetails, problem_from_exception
from .settings import get_settings
from .state import ExecutionState, StateEvent, StatePublisher, Subscriber

__all__ = ["RequestEngine", "Query", "Mutation", "MAX_ATTEMPTS_TITLE"]

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_ATTEMPTS_TITLE = "Max attempts exceeded"


def _server_error(status: int) -> ServerError:
    message = f"Error: status: {status}"
    if is_retryable_status(status):
        return RetryableServerError(message, status_code=status)
    return NonRetryableServerError(message, status_code=status)


class RequestEngine(Generic[T]):
    """Orchestrates a single logical request at a time and publishes its state.

    Args:
        descriptor: Static descriptor, or a URL for a plain ``GET``.
        context: Credential supplier and error tracker.
        transport: Exchange implementation; defaults to :class:`HttpTransport`
            over the shared HTTPX client.
    """

    def __init__(
        self,
        descriptor: Union[RequestDescriptor, str],
        *,
        context: Optional[EngineContext] = None,
        transport: Optional[Transport] = None,
    ) -> None:
        if isinstance(descriptor, str):
            descriptor = RequestDescriptor(base_url=descriptor)
        self._descriptor = descriptor
        self._context = context or EngineContext()
        self._transport: Transport = transport or HttpTransport()
        self._publisher: StatePublisher[T] = StatePublisher()
        self._token: Optional[CancellationToken] = None

    # ------------------------------------------------------------------
    # Published state
    # ------------------------------------------------------------------
    @property
    def descriptor(self) -> RequestDescriptor:
        return self._descriptor

    @property
    def state(self) -> ExecutionState[T]:
        return self._publisher.state

    @property
    def data(self) -> Optional[T]:
        return self._publisher.state.data

    @property
    def loading(self) -> bool:
        return self._publisher.state.loading

    @property
    def problem_details(self) -> Optional[ProblemDetails]:
        return self._publisher.state.problem_details

    @property
    def in_flight(self) -> bool:
        return self._token is not None

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        return self._publisher.subscribe(callback)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------
    async def execute(self, override: Optional[RequestOverride] = None) -> Optional[T]:
        """Run one logical request, superseding any call still in flight.

        Returns:
            The decoded success value, or ``None`` on a problem or cancellation.
        """
        previous = self._token
        if previous is not None:
            previous.cancel("superseded")

        token = CancellationToken()
        self._token = token
        generation = self._publisher.next_generation()
        self._publisher.transition(generation, StateEvent.BEGIN)

        try:
            return await self._run(override, token, generation)
        except CallerCancelled as exc:
            logger.debug("request cancelled", extra={"reason": str(exc), "generation": generation})
            return None
        finally:
            self._publisher.transition(generation, StateEvent.SETTLE)
            if self._token is token:
                self._token = None

    def abort(self) -> None:
        """Cancel the in-flight call, if any, and clear ``loading``.

        Idempotent; a no-op while idle.
        """
        token = self._token
        if token is None:
            return
        self._token = None
        token.cancel("aborted")
        self._publisher.transition(self._publisher.generation, StateEvent.SETTLE)
        self._publisher.next_generation()

    async def __aenter__(self) -> "RequestEngine[T]":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        self.abort()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    async def _attempt(self, descriptor: RequestDescriptor, token: CancellationToken) -> httpx.Response:
        token.raise_if_cancelled()
        try:
            credential = await token.guard(self._context.resolve_credential())
        except QmKitError:
            raise
        except Exception as exc:
            raise TransportFailure(f"credential supplier failed: {exc}") from exc
        if credential:
            descriptor = descriptor.with_header(AUTH_HEADER, credential)
        return await self._transport.send(descriptor, token)

    async def _run(
        self,
        override: Optional[RequestOverride],
        token: CancellationToken,
        generation: int,
    ) -> Optional[T]:
        descriptor = self._descriptor
        try:
            descriptor = prepare_descriptor(self._descriptor, override)
            policy = descriptor.retry or RetryPolicy.from_settings(get_settings().retry)
            logger.debug(
                "request started",
                extra={
                    "method": descriptor.method,
                    "url_redacted": redact_url(descriptor.url),
                    "attempt_budget": policy.max_attempts,
                    "generation": generation,
                },
            )
            response = await policy.build(sleep=token.sleep)(self._attempt, descriptor, token)
        except CallerCancelled:
            raise
        except RetryBudgetExhausted as exc:
            self._fail(generation, self._exhausted_problem(exc, descriptor.response_kind), exc)
            return None
        except Exception as exc:
            logger.warning(
                "request failed without a response",
                extra={"error": type(exc).__name__, "url_redacted": redact_url(descriptor.url)},
            )
            self._fail(generation, problem_from_exception(exc), exc)
            return None

        try:
            outcome = classify_response(response, descriptor.response_kind)
        except DecodeFailure as exc:
            self._fail(generation, problem_from_exception(exc), exc)
            return None

        if outcome.problem is not None:
            self._fail(generation, outcome.problem, _server_error(response.status_code))
            return None

        if not self._publisher.transition(generation, StateEvent.DATA, outcome.value):
            return None
        return outcome.value

    def _exhausted_problem(self, exc: RetryBudgetExhausted, kind: ResponseKind) -> ProblemDetails:
        last_detail = ""
        if isinstance(exc.response, httpx.Response):
            last: Classification = classify_response(exc.response, kind)
            if last.problem is not None:
                last_detail = last.problem.detail or last.problem.title
        detail = f"Gave up after {exc.attempts} attempts"
        if last_detail:
            detail = f"{detail}; last response: {last_detail}"
        return ProblemDetails(status=exc.status_code, title=MAX_ATTEMPTS_TITLE, detail=detail)

    def _fail(self, generation: int, problem: ProblemDetails, error: BaseException) -> None:
        if not self._publisher.transition(generation, StateEvent.PROBLEM, problem):
            return
        logger.info(
            "request produced a problem",
            extra={"status": problem.status, "title": problem.title, "error": type(error).__name__},
        )
        self._context.notify_error(error, problem.as_metadata())


class Query(RequestEngine[T]):
    """``GET`` preset that runs once on entering its async context.

    The method is always ``GET``, whatever a per-call override says.
    """

    def __init__(
        self,
        url: str,
        *,
        headers: Optional[Mapping[str, str]] = None,
        params: Optional[Mapping[str, Any]] = None,
        response_kind: ResponseKind = ResponseKind.AUTO,
        retry: Optional[RetryPolicy] = None,
        timeout: Optional[float] = None,
        auto_invoke: bool = True,
        context: Optional[EngineContext] = None,
        transport: Optional[Transport] = None,
    ) -> None:
        descriptor = RequestDescriptor(
            base_url=url,
            method="GET",
            headers=httpx.Headers(headers or {}),
            params=params,
            response_kind=response_kind,
            retry=retry,
            timeout=timeout,
        )
        super().__init__(descriptor, context=context, transport=transport)
        self.auto_invoke = auto_invoke

    async def execute(self, override: Optional[RequestOverride] = None) -> Optional[T]:
        if override is not None and override.method is not None:
            override = dataclasses.replace(override, method=None)
        return await super().execute(override)

    async def query(self) -> Optional[T]:
        """Re-run the query with its static descriptor."""
        return await self.execute()

    async def __aenter__(self) -> "Query[T]":
        if self.auto_invoke and self._descriptor.base_url:
            await self.execute()
        return self


class Mutation(RequestEngine[T]):
    """Manually triggered preset; ``POST`` with a JSON content type by default."""

    def __init__(
        self,
        url: str,
        *,
        method: str = "POST",
        headers: Optional[Mapping[str, str]] = None,
        body: Any = None,
        params: Optional[Mapping[str, Any]] = None,
        response_kind: ResponseKind = ResponseKind.AUTO,
        retry: Optional[RetryPolicy] = None,
        timeout: Optional[float] = None,
        context: Optional[EngineContext] = None,
        transport: Optional[Transport] = None,
    ) -> None:
        merged = httpx.Headers(headers or {})
        if CONTENT_TYPE_HEADER not in merged:
            merged[CONTENT_TYPE_HEADER] = JSON_MEDIA_TYPE
        descriptor = RequestDescriptor(
            base_url=url,
            method=method or "POST",
            headers=merged,
            body=body,
            params=params,
            response_kind=response_kind,
            retry=retry,
            timeout=timeout,
        )
        super().__init__(descriptor, context=context, transport=transport)

    async def mutate(self, override: Optional[RequestOverride] = None, **changes: Any) -> Optional[T]:
        """Execute the mutation.

        Keyword arguments are shorthand for :class:`RequestOverride` fields,
        e.g. ``await mutation.mutate(body={"name": "x"}, path_suffix="/7")``.
        """
        if changes:
            override = dataclasses.replace(override or RequestOverride(), **changes)
        return await self.execute(override)
