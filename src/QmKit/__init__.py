"""QmKit: single-flight HTTP requests and reconnecting event streams on asyncio.

Public surface:

- :class:`RequestEngine`, :class:`Query`, :class:`Mutation` for one logical
  request at a time with bounded retry and cooperative cancellation,
- :class:`StreamEngine` for a persistent ``text/event-stream`` session,
- :class:`EngineContext` carrying the credential supplier and error tracker,
- :class:`ExecutionState` / :class:`ProblemDetails` as the published state.

Example:
    >>> from QmKit import Mutation, RequestOverride
    >>> async def create(name):
    ...     mutation = Mutation("https://api.example.org/items")
    ...     return await mutation.mutate(body={"name": name})
"""

from QmKit.cancellation import CancellationToken
from QmKit.classifier import BinaryPayload, classify_response
from QmKit.context import EngineContext
from QmKit.descriptor import FormBody, RequestDescriptor, RequestOverride, ResponseKind
from QmKit.errors import (
    CallerCancelled,
    ConfigurationError,
    DecodeFailure,
    NonRetryableServerError,
    QmKitError,
    RetryableServerError,
    RetryBudgetExhausted,
    ServerError,
    StreamConnectionError,
    TransportFailure,
)
from QmKit.network.retry import RetryPolicy
from QmKit.network.transport import HttpTransport, Transport
from QmKit.problems import ProblemDetails
from QmKit.request import Mutation, Query, RequestEngine
from QmKit.settings import QmKitSettings, get_settings
from QmKit.state import ExecutionState
from QmKit.streaming.engine import ReconnectPolicy, StreamEngine, StreamOverride, StreamState

__version__ = "0.1.0"

__all__ = [
    "__version__",
    # Engines
    "RequestEngine",
    "Query",
    "Mutation",
    "StreamEngine",
    # Inputs
    "EngineContext",
    "RequestDescriptor",
    "RequestOverride",
    "ResponseKind",
    "FormBody",
    "RetryPolicy",
    "ReconnectPolicy",
    "StreamOverride",
    "Transport",
    "HttpTransport",
    # Outputs
    "ExecutionState",
    "ProblemDetails",
    "BinaryPayload",
    "StreamState",
    "classify_response",
    "CancellationToken",
    # Configuration
    "QmKitSettings",
    "get_settings",
    # Errors
    "QmKitError",
    "ConfigurationError",
    "CallerCancelled",
    "ServerError",
    "RetryableServerError",
    "NonRetryableServerError",
    "TransportFailure",
    "DecodeFailure",
    "RetryBudgetExhausted",
    "StreamConnectionError",
]
