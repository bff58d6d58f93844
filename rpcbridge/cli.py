# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Command-line interface for rpc-bridge.

Provides ``routes`` and ``serve`` for a bridge defined in Python, and
``call`` for invoking a bridged endpoint over HTTP.

Usage::

    rpc-bridge routes myapp.bridge:bridge
    rpc-bridge serve myapp.bridge:bridge --port 8080 --time-format iso
    rpc-bridge call http://localhost:8080 GET v1/users/42
    rpc-bridge call http://localhost:8080 POST v1/users name=Alice age=25

``TARGET`` names a :class:`~rpcbridge.bridge.Bridge` as ``module:attribute``;
the attribute may also be a zero-argument callable returning one.
"""

from __future__ import annotations

import importlib
import json
import sys
from dataclasses import dataclass
from enum import StrEnum
from typing import Annotated

import httpx
import typer

from rpcbridge.bridge import Bridge
from rpcbridge.errors import RouteResolutionError
from rpcbridge.logging_utils import configure_logging
from rpcbridge.timeformat import time_format_by_name

# ---------------------------------------------------------------------------
# Option enums
# ---------------------------------------------------------------------------


class OutputFormat(StrEnum):
    """Output format for CLI commands."""

    auto = "auto"
    json = "json"
    table = "table"


class LogFormat(StrEnum):
    """Log record format on stderr."""

    text = "text"
    json = "json"


class TimeFormatName(StrEnum):
    """Built-in timestamp wire formats."""

    epoch = "epoch"
    iso = "iso"


# ---------------------------------------------------------------------------
# CLI config
# ---------------------------------------------------------------------------


@dataclass
class _CliConfig:
    """Holds resolved CLI options."""

    format: OutputFormat = OutputFormat.auto


app = typer.Typer(
    name="rpc-bridge",
    help="Serve and call typed RPC services over HTTP/JSON.",
    add_completion=False,
    no_args_is_help=True,
)


@app.callback()
def _main(
    ctx: typer.Context,
    fmt: Annotated[OutputFormat, typer.Option("--format", "-f", help="Output format")] = OutputFormat.auto,
    log_level: Annotated[
        str | None, typer.Option("--log-level", help="Log rpcbridge records at this level to stderr")
    ] = None,
    log_format: Annotated[LogFormat, typer.Option("--log-format", help="Log record format")] = LogFormat.text,
) -> None:
    """Configure output and logging options."""
    if log_level is not None:
        try:
            configure_logging(log_level, log_format.value)
        except ValueError as e:
            raise typer.BadParameter(str(e), param_hint="--log-level") from None
    ctx.obj = _CliConfig(format=fmt)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _load_bridge(target: str) -> Bridge:
    """Import ``module:attribute`` and return the bridge it names.

    Raises:
        typer.BadParameter: If the target cannot be imported or is not a Bridge.

    """
    module_name, sep, attr = target.partition(":")
    if not sep or not module_name or not attr:
        raise typer.BadParameter(f"Expected module:attribute, got: {target}")
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise typer.BadParameter(f"Cannot import {module_name!r}: {e}") from None
    obj = module
    for part in attr.split("."):
        try:
            obj = getattr(obj, part)
        except AttributeError:
            raise typer.BadParameter(f"{module_name!r} has no attribute {attr!r}") from None
    if not isinstance(obj, Bridge) and callable(obj):
        obj = obj()
    if not isinstance(obj, Bridge):
        raise typer.BadParameter(f"{target} is not a Bridge (got {type(obj).__name__})")
    return obj


def _coerce_value(value_str: str) -> object:
    """Interpret a CLI value as JSON when it parses, otherwise as a string."""
    try:
        return json.loads(value_str)
    except ValueError:
        return value_str


def _parse_key_value_args(args: list[str]) -> dict[str, object]:
    """Parse key=value args into a JSON object.

    Raises:
        typer.BadParameter: If an argument has no ``=``.

    """
    result: dict[str, object] = {}
    for arg in args:
        if "=" not in arg:
            raise typer.BadParameter(f"Expected key=value, got: {arg}")
        key, value = arg.split("=", 1)
        result[key] = _coerce_value(value)
    return result


def _format_table(rows: list[dict[str, object]]) -> str:
    """Format rows as a simple column-aligned text table."""
    if not rows:
        return "(empty)"
    columns = list(rows[0].keys())
    widths = {col: max(len(col), *(len(str(row.get(col, ""))) for row in rows)) for col in columns}
    lines = [
        "  ".join(col.ljust(widths[col]) for col in columns),
        "  ".join("-" * widths[col] for col in columns),
    ]
    lines.extend("  ".join(str(row.get(col, "")).ljust(widths[col]) for col in columns) for row in rows)
    return "\n".join(lines)


def _print_json(data: object, *, pretty: bool = False) -> None:
    """Print JSON to stdout."""
    if pretty:
        typer.echo(json.dumps(data, indent=2, default=str))
    else:
        typer.echo(json.dumps(data, default=str))


def _print_rows(rows: list[dict[str, object]], config: _CliConfig) -> None:
    if config.format == OutputFormat.table:
        typer.echo(_format_table(rows))
    else:
        _print_json(rows, pretty=(config.format == OutputFormat.auto and sys.stdout.isatty()))


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@app.command()
def routes(
    ctx: typer.Context,
    target: Annotated[str, typer.Argument(help="Bridge as module:attribute")],
) -> None:
    """List the HTTP routes a bridge resolves to."""
    config: _CliConfig = ctx.obj
    bridge = _load_bridge(target)
    try:
        table = bridge.routes()
    except RouteResolutionError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from None

    rows: list[dict[str, object]] = []
    for route in table:
        info = route.target.info
        rows.append(
            {
                "http_method": route.http_method,
                "path": f"/{route.template}",
                "method": route.target.full_name,
                "input": info.input_type.__name__,
                "output": info.output_type.__name__ if info.output_type is not None else "None",
            }
        )
    _print_rows(rows, config)


@app.command()
def serve(
    target: Annotated[str, typer.Argument(help="Bridge as module:attribute")],
    host: Annotated[str, typer.Option("--host", help="Interface to bind")] = "127.0.0.1",
    port: Annotated[int, typer.Option("--port", help="Port to bind")] = 8080,
    prefix: Annotated[str, typer.Option("--prefix", "-p", help="URL path prefix")] = "",
    time_format: Annotated[
        TimeFormatName | None,
        typer.Option("--time-format", envvar="RPCBRIDGE_TIME_FORMAT", help="Timestamp wire format"),
    ] = None,
    cors_origin: Annotated[
        list[str] | None, typer.Option("--cors-origin", help="Allowed CORS origin (repeatable, '*' for any)")
    ] = None,
) -> None:
    """Serve a bridge with waitress."""
    import waitress

    from rpcbridge.http import make_wsgi_app

    bridge = _load_bridge(target)
    if time_format is not None:
        bridge.time_format = time_format_by_name(time_format.value)
    try:
        bridge.routes()
    except RouteResolutionError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from None

    app_ = make_wsgi_app(bridge, prefix=prefix, cors_origins=cors_origin or None)
    typer.echo(f"Serving on http://{host}:{port}{prefix}", err=True)
    waitress.serve(app_, host=host, port=port)


@app.command()
def call(
    url: Annotated[str, typer.Argument(help="Base URL, e.g. http://localhost:8080")],
    http_method: Annotated[str, typer.Argument(metavar="METHOD", help="HTTP method")],
    path: Annotated[str, typer.Argument(help="Request path, e.g. v1/users/42")],
    args: Annotated[list[str] | None, typer.Argument(help="key=value body fields")] = None,
    data: Annotated[str | None, typer.Option("--data", "-d", help="JSON request body")] = None,
    header: Annotated[list[str] | None, typer.Option("--header", "-H", help="Extra header 'Name: value'")] = None,
    timeout: Annotated[float, typer.Option("--timeout", help="Request timeout in seconds")] = 30.0,
) -> None:
    """Send a JSON request to a bridged endpoint and print the response."""
    body: dict[str, object] = {}
    if data:
        try:
            parsed = json.loads(data)
        except ValueError as e:
            raise typer.BadParameter(f"--data is not valid JSON: {e}") from None
        if not isinstance(parsed, dict):
            raise typer.BadParameter("--data must be a JSON object")
        body.update(parsed)
    if args:
        body.update(_parse_key_value_args(args))

    headers: dict[str, str] = {}
    for h in header or []:
        name, sep, value = h.partition(":")
        if not sep:
            raise typer.BadParameter(f"Expected 'Name: value', got: {h}")
        headers[name.strip()] = value.strip()

    full_url = f"{url.rstrip('/')}/{path.lstrip('/')}"
    try:
        response = httpx.request(
            http_method.upper(),
            full_url,
            json=body if body else None,
            headers=headers,
            timeout=timeout,
        )
    except httpx.HTTPError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from None

    if response.is_error:
        typer.echo(f"Error: HTTP {response.status_code}: {response.text}", err=True)
        raise typer.Exit(1)
    try:
        result = response.json()
    except ValueError:
        typer.echo(response.text)
        return
    _print_json(result, pretty=sys.stdout.isatty())
