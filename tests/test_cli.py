# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Tests for the rpc-bridge CLI tool."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from typing import Any

import falcon.testing
import httpx
import pytest
import waitress
from typer.testing import CliRunner

from rpcbridge import Bridge
from rpcbridge.cli import app
from rpcbridge.logging_utils import BridgeJsonFormatter

from .services import make_bridge

runner = CliRunner()

_TARGET = "tests.services:make_bridge"


def _unresolvable() -> Bridge:
    """A bridge whose routes need a time format it does not have."""
    return make_bridge(time_format=None)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _invoke(args: list[str]) -> Any:
    """Invoke the CLI app with the given args.

    Returns ``Any`` because ``runner.invoke`` returns ``click.testing.Result``.
    """
    return runner.invoke(app, args, catch_exceptions=False)


@pytest.fixture(autouse=True)
def _reset_loggers() -> Iterator[None]:
    """Save and restore the rpcbridge logger after each test."""
    logger = logging.getLogger("rpcbridge")
    saved = (logger.level, list(logger.handlers))
    yield
    logger.setLevel(saved[0])
    logger.handlers[:] = saved[1]


# ---------------------------------------------------------------------------
# routes
# ---------------------------------------------------------------------------


class TestRoutes:
    """The ``routes`` command."""

    def test_json(self) -> None:
        """``--format json`` lists one object per route."""
        result = _invoke(["--format", "json", "routes", _TARGET])
        assert result.exit_code == 0, result.output
        rows = json.loads(result.stdout)
        assert len(rows) == 7
        assert {
            "http_method": "GET",
            "path": "/v1/users/{id}",
            "method": "example.UserService.get_user",
            "input": "GetUserRequest",
            "output": "TestUser",
        } in rows
        delete = next(r for r in rows if r["method"].endswith("delete_user"))
        assert delete["output"] == "None"

    def test_json_is_compact(self) -> None:
        """JSON output is a single line."""
        result = _invoke(["--format", "json", "routes", _TARGET])
        assert "\n" not in result.stdout.strip()

    def test_table(self) -> None:
        """``--format table`` prints aligned columns."""
        result = _invoke(["--format", "table", "routes", _TARGET])
        assert result.exit_code == 0, result.output
        assert "http_method" in result.stdout
        assert "---" in result.stdout
        assert "/v1/users/{id}/friends/{friend}" in result.stdout

    def test_bridge_attribute(self) -> None:
        """A module-level Bridge instance is accepted as well as a factory."""
        result = _invoke(["--format", "json", "routes", "tests.test_cli:_BRIDGE"])
        assert result.exit_code == 0, result.output

    def test_resolution_error(self) -> None:
        """A bridge that cannot resolve exits 1 with the reason."""
        result = _invoke(["routes", "tests.test_cli:_unresolvable"])
        assert result.exit_code == 1
        assert "Error: failed to resolve HTTP rules" in result.output


_BRIDGE = make_bridge()


class TestTargets:
    """``module:attribute`` resolution."""

    @pytest.mark.parametrize(
        ("target", "fragment"),
        [
            ("tests.services", "Expected module:attribute"),
            ("no_such_module_xyz:bridge", "Cannot import"),
            ("tests.services:nothing_here", "has no attribute"),
            ("tests.services:REGISTRY", "is not a Bridge"),
        ],
    )
    def test_bad_target(self, target: str, fragment: str) -> None:
        """Bad targets are usage errors."""
        result = _invoke(["routes", target])
        assert result.exit_code == 2
        assert fragment in result.output


# ---------------------------------------------------------------------------
# serve
# ---------------------------------------------------------------------------


class TestServe:
    """The ``serve`` command, with waitress replaced."""

    @pytest.fixture
    def served(self, monkeypatch: pytest.MonkeyPatch) -> dict[str, Any]:
        """Capture the arguments passed to ``waitress.serve``."""
        captured: dict[str, Any] = {}

        def fake_serve(wsgi_app: Any, **kwargs: Any) -> None:
            captured["app"] = wsgi_app
            captured.update(kwargs)

        monkeypatch.setattr(waitress, "serve", fake_serve)
        return captured

    def test_serves_app(self, served: dict[str, Any]) -> None:
        """The bridge is served on the requested interface with its prefix."""
        result = _invoke(["serve", _TARGET, "--host", "0.0.0.0", "--port", "9999", "--prefix", "/api"])
        assert result.exit_code == 0, result.output
        assert served["host"] == "0.0.0.0"
        assert served["port"] == 9999
        resp = falcon.testing.TestClient(served["app"]).simulate_get("/api/v1/users/u1")
        assert resp.status_code == 200
        assert resp.json["created_at"] == "2025-09-21T11:32:03Z"

    def test_time_format_option(self, served: dict[str, Any]) -> None:
        """``--time-format`` replaces the bridge's time format."""
        result = _invoke(["serve", _TARGET, "--time-format", "epoch"])
        assert result.exit_code == 0, result.output
        resp = falcon.testing.TestClient(served["app"]).simulate_get("/v1/users/u1")
        assert resp.json["created_at"] == "1758454323"

    def test_time_format_env(self, served: dict[str, Any], monkeypatch: pytest.MonkeyPatch) -> None:
        """The time format can come from the environment."""
        monkeypatch.setenv("RPCBRIDGE_TIME_FORMAT", "epoch")
        result = _invoke(["serve", _TARGET])
        assert result.exit_code == 0, result.output
        resp = falcon.testing.TestClient(served["app"]).simulate_get("/v1/users/u1")
        assert resp.json["created_at"] == "1758454323"

    def test_time_format_fixes_resolution(self, served: dict[str, Any]) -> None:
        """A missing time format can be supplied on the command line."""
        result = _invoke(["serve", "tests.test_cli:_unresolvable", "--time-format", "iso"])
        assert result.exit_code == 0, result.output
        assert "app" in served

    def test_resolution_error(self, served: dict[str, Any]) -> None:
        """Routes are resolved before serving."""
        result = _invoke(["serve", "tests.test_cli:_unresolvable"])
        assert result.exit_code == 1
        assert "no time format" in result.output
        assert "app" not in served

    def test_cors_origin(self, served: dict[str, Any]) -> None:
        """``--cors-origin`` enables CORS headers."""
        result = _invoke(["serve", _TARGET, "--cors-origin", "*"])
        assert result.exit_code == 0, result.output
        resp = falcon.testing.TestClient(served["app"]).simulate_get(
            "/v1/users/u1", headers={"Origin": "http://example.com"}
        )
        assert resp.headers.get("access-control-allow-origin") == "*"


# ---------------------------------------------------------------------------
# call
# ---------------------------------------------------------------------------


class TestCall:
    """The ``call`` command, with httpx replaced."""

    @pytest.fixture
    def sent(self, monkeypatch: pytest.MonkeyPatch) -> dict[str, Any]:
        """Capture the request and answer with a canned response."""
        captured: dict[str, Any] = {"response_status": 200, "response_json": {"id": "u1", "name": "Alice"}}

        def fake_request(method: str, url: str, **kwargs: Any) -> httpx.Response:
            captured["method"] = method
            captured["url"] = url
            captured.update(kwargs)
            return httpx.Response(
                captured["response_status"],
                json=captured["response_json"],
                request=httpx.Request(method, url),
            )

        monkeypatch.setattr(httpx, "request", fake_request)
        return captured

    def test_get(self, sent: dict[str, Any]) -> None:
        """Path and method are joined onto the base URL; the response is printed."""
        result = _invoke(["call", "http://localhost:8080/", "get", "/v1/users/u1"])
        assert result.exit_code == 0, result.output
        assert sent["method"] == "GET"
        assert sent["url"] == "http://localhost:8080/v1/users/u1"
        assert sent["json"] is None
        assert json.loads(result.stdout) == {"id": "u1", "name": "Alice"}

    def test_key_value_body(self, sent: dict[str, Any]) -> None:
        """key=value arguments build the JSON body; values parse as JSON when they can."""
        result = _invoke(["call", "http://h", "POST", "v1/users", "name=Alice", "age=25", "emails=[\"a@b\"]"])
        assert result.exit_code == 0, result.output
        assert sent["json"] == {"name": "Alice", "age": 25, "emails": ["a@b"]}

    def test_data_and_headers(self, sent: dict[str, Any]) -> None:
        """``--data`` seeds the body; key=value arguments override it."""
        result = _invoke(
            ["call", "http://h", "PATCH", "v1/users/u1", "-d", '{"name": "A", "age": 1}', "age=2", "-H", "X-Request-ID: r1"]
        )
        assert result.exit_code == 0, result.output
        assert sent["json"] == {"name": "A", "age": 2}
        assert sent["headers"] == {"X-Request-ID": "r1"}

    def test_error_status(self, sent: dict[str, Any]) -> None:
        """Error statuses exit 1 with the response text."""
        sent["response_status"] = 404
        sent["response_json"] = "no route"
        result = _invoke(["call", "http://h", "GET", "v2/nothing"])
        assert result.exit_code == 1
        assert "Error: HTTP 404" in result.output

    def test_transport_error(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Connection failures exit 1."""

        def refuse(method: str, url: str, **kwargs: Any) -> httpx.Response:
            raise httpx.ConnectError("connection refused")

        monkeypatch.setattr(httpx, "request", refuse)
        result = _invoke(["call", "http://h", "GET", "v1/users/u1"])
        assert result.exit_code == 1
        assert "connection refused" in result.output

    @pytest.mark.parametrize(
        "args",
        [
            ["-d", "{"],
            ["-d", "[1]"],
            ["novalue"],
            ["-H", "no-colon"],
        ],
    )
    def test_bad_arguments(self, sent: dict[str, Any], args: list[str]) -> None:
        """Malformed body or header arguments are usage errors."""
        result = _invoke(["call", "http://h", "POST", "v1/users", *args])
        assert result.exit_code == 2
        assert "method" not in sent


# ---------------------------------------------------------------------------
# Logging options
# ---------------------------------------------------------------------------


class TestLogging:
    """``--log-level`` and ``--log-format``."""

    def test_no_logging_by_default(self) -> None:
        """Without ``--log-level`` no handler is installed."""
        before = list(logging.getLogger("rpcbridge").handlers)
        _invoke(["--format", "json", "routes", _TARGET])
        assert logging.getLogger("rpcbridge").handlers == before

    def test_log_level(self) -> None:
        """``--log-level`` sets the rpcbridge logger level."""
        result = _invoke(["--log-level", "debug", "--format", "json", "routes", _TARGET])
        assert result.exit_code == 0, result.output
        assert logging.getLogger("rpcbridge").level == logging.DEBUG

    def test_log_format_json(self) -> None:
        """``--log-format json`` installs the JSON formatter."""
        result = _invoke(["--log-level", "INFO", "--log-format", "json", "--format", "json", "routes", _TARGET])
        assert result.exit_code == 0, result.output
        handlers = logging.getLogger("rpcbridge").handlers
        assert any(isinstance(h.formatter, BridgeJsonFormatter) for h in handlers)

    def test_bad_level(self) -> None:
        """Unknown level names are usage errors."""
        result = _invoke(["--log-level", "LOUD", "routes", _TARGET])
        assert result.exit_code == 2
