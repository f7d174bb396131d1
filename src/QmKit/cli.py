# === NAVMAP v1 ===
# {
#   "module": "QmKit.cli",
#   "purpose": "Typer CLI for exercising the request and stream engines against a live backend",
#   "sections": [
#     {"id": "fetch", "name": "fetch", "anchor": "function-fetch", "kind": "function"},
#     {"id": "stream", "name": "stream", "anchor": "function-stream", "kind": "function"},
#     {"id": "settings-show", "name": "settings_show", "anchor": "function-settings-show", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""Command line entry point.

Commands:
- ``qmkit fetch URL``: run one request (with retry) and print the result
- ``qmkit stream URL``: follow an event stream and print each payload
- ``qmkit settings show``: display the effective configuration

Exit status is ``1`` when the engine ends with a problem document.

Example:
    $ qmkit fetch https://api.example.org/items --retry 2 --retry-delay 0.5
    $ qmkit stream https://api.example.org/events --max-events 10
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, Dict, List, Optional

import typer
from rich.console import Console
from rich.table import Table

from QmKit.classifier import BinaryPayload
from QmKit.context import EngineContext
from QmKit.descriptor import RequestDescriptor, ResponseKind
from QmKit.logging_utils import setup_logging
from QmKit.network.client import close_http_client
from QmKit.network.retry import RetryPolicy
from QmKit.problems import ProblemDetails
from QmKit.request import RequestEngine
from QmKit.settings import get_settings
from QmKit.streaming.engine import ReconnectPolicy, StreamEngine

app = typer.Typer(
    name="qmkit",
    help="Run requests and event streams through the QmKit engines",
    no_args_is_help=True,
)
settings_app = typer.Typer(name="settings", help="Inspect QmKit configuration")
app.add_typer(settings_app, name="settings")

_SECRET_FIELDS = ("token", "secret", "password")


@app.callback()
def main(
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Override QMKIT_LOGGING__LEVEL"),
    json_logs: bool = typer.Option(False, "--json-logs", help="Emit JSON log records"),
) -> None:
    """Configure logging for every command."""
    logging_settings = get_settings().logging
    setup_logging(
        level=log_level or logging_settings.level,
        json_logs=json_logs or logging_settings.emit_json_logs,
    )


def _parse_headers(values: List[str]) -> Dict[str, str]:
    headers: Dict[str, str] = {}
    for item in values:
        name, sep, value = item.partition(":")
        if not sep or not name.strip():
            raise typer.BadParameter(f"expected 'Name: value', got {item!r}", param_hint="--header")
        headers[name.strip()] = value.strip()
    return headers


def _context(token: Optional[str]) -> EngineContext:
    if not token:
        return EngineContext()
    credential = token if " " in token else f"Bearer {token}"
    return EngineContext(get_auth_header=lambda: credential)


def _echo_problem(problem: ProblemDetails) -> None:
    typer.echo(json.dumps(problem.model_dump(exclude_none=True), indent=2, default=str), err=True)


def _echo_value(value: Any) -> None:
    if isinstance(value, (dict, list)):
        typer.echo(json.dumps(value, indent=2, default=str))
    elif isinstance(value, bytes):
        typer.echo(f"<{len(value)} bytes>")
    elif isinstance(value, BinaryPayload):
        name = f" {value.filename}" if value.filename else ""
        typer.echo(f"<{len(value.content)} bytes{name}>")
    else:
        typer.echo(str(value))


@app.command()
def fetch(
    url: str = typer.Argument(..., help="Request URL"),
    method: str = typer.Option("GET", "--method", "-X", help="HTTP method"),
    header: List[str] = typer.Option([], "--header", "-H", help="Extra header as 'Name: value'"),
    data: Optional[str] = typer.Option(None, "--data", "-d", help="JSON request body"),
    kind: ResponseKind = typer.Option(ResponseKind.AUTO, "--kind", help="Success decoding"),
    retry: Optional[int] = typer.Option(None, "--retry", min=0, help="Retries after the first attempt"),
    retry_delay: Optional[float] = typer.Option(None, "--retry-delay", min=0.0, help="Seconds between attempts"),
    token: Optional[str] = typer.Option(None, "--token", envvar="QMKIT_TOKEN", help="Bearer credential"),
) -> None:
    """Run one request and print the decoded result."""
    body: Any = None
    if data is not None:
        try:
            body = json.loads(data)
        except json.JSONDecodeError as exc:
            raise typer.BadParameter(f"invalid JSON: {exc}", param_hint="--data") from exc

    policy = None
    if retry is not None or retry_delay is not None:
        defaults = get_settings().retry
        policy = RetryPolicy(
            count=defaults.count if retry is None else retry,
            delay_seconds=defaults.delay_seconds if retry_delay is None else retry_delay,
        )

    descriptor = RequestDescriptor(
        base_url=url,
        method=method,
        headers=_parse_headers(header),
        body=body,
        response_kind=kind,
        retry=policy,
    )

    async def _run() -> RequestEngine[Any]:
        engine: RequestEngine[Any] = RequestEngine(descriptor, context=_context(token))
        try:
            await engine.execute()
        finally:
            await close_http_client()
        return engine

    engine = asyncio.run(_run())
    if engine.problem_details is not None:
        _echo_problem(engine.problem_details)
        raise typer.Exit(1)
    _echo_value(engine.data)


@app.command()
def stream(
    url: str = typer.Argument(..., help="Event-stream URL"),
    max_events: int = typer.Option(0, "--max-events", min=0, help="Stop after this many payloads (0 = no limit)"),
    reconnect: Optional[int] = typer.Option(None, "--reconnect", min=0, help="Reconnect attempts after an error"),
    backoff: Optional[float] = typer.Option(None, "--backoff", min=0.0, help="Seconds before each reconnect"),
    token: Optional[str] = typer.Option(None, "--token", envvar="QMKIT_TOKEN", help="Bearer credential"),
    auth_param: Optional[str] = typer.Option(None, "--auth-param", help="Query parameter carrying the credential"),
) -> None:
    """Follow an event stream and print each payload."""
    defaults = get_settings().stream
    policy = ReconnectPolicy(
        max_attempts=defaults.max_reconnect_attempts if reconnect is None else reconnect,
        backoff_seconds=defaults.backoff_seconds if backoff is None else backoff,
    )

    async def _run() -> Optional[ProblemDetails]:
        engine: StreamEngine[Any] = StreamEngine(
            url,
            reconnect=policy,
            auth_query_param=auth_param,
            context=_context(token),
        )
        received = 0
        last_data: Any = None

        def _on_state(state: Any) -> None:
            nonlocal received, last_data
            if state.data is None or state.data is last_data:
                return
            last_data = state.data
            received += 1
            _echo_value(state.data)
            if max_events and received >= max_events:
                engine.abort()

        unsubscribe = engine.subscribe(_on_state)
        try:
            await engine.execute()
            await engine.join()
        finally:
            unsubscribe()
            await engine.aclose()
            await close_http_client()
        return engine.problem_details

    problem = asyncio.run(_run())
    if problem is not None:
        _echo_problem(problem)
        raise typer.Exit(1)


@settings_app.command("show")
def settings_show(
    format_output: str = typer.Option("table", "--format", "-f", help="Output format: table or json"),
) -> None:
    """Display the effective configuration (secrets redacted)."""
    rows = []
    settings = get_settings()
    for domain_name in ("http", "retry", "stream", "logging"):
        for field_name, value in getattr(settings, domain_name).model_dump().items():
            display = value
            if value and any(secret in field_name.lower() for secret in _SECRET_FIELDS):
                display = "***REDACTED***"
            rows.append({"field": f"{domain_name}__{field_name}", "value": display, "type": type(value).__name__})

    if format_output == "json":
        typer.echo(json.dumps(rows, indent=2, default=str))
        return
    if format_output != "table":
        typer.echo(f"Unknown format {format_output!r}; use table or json", err=True)
        raise typer.Exit(2)

    table = Table(title="QmKit - Effective Configuration")
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="green")
    table.add_column("Type", style="magenta")
    for row in rows:
        table.add_row(row["field"], str(row["value"]), row["type"])
    Console().print(table)


if __name__ == "__main__":  # pragma: no cover
    app()
