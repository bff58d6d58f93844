# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Tests for URL template matching and the route table."""

from __future__ import annotations

import logging

import pytest

from rpcbridge import (
    DecodeError,
    MethodNotAllowedError,
    RouteNotFoundError,
    RouteTable,
    TemplateMismatchError,
    match_template,
)
from rpcbridge.routing import normalize_template, template_params

# ---------------------------------------------------------------------------
# match_template
# ---------------------------------------------------------------------------


class TestMatchTemplate:
    """Positional extraction of path parameters."""

    @pytest.mark.parametrize(
        ("template", "path", "expected"),
        [
            ("v1/getUsers/{id}", "v1/getUsers/123", {"id": "123"}),
            ("v1/getUsers/{id}/workspace/{wid}", "v1/getUsers/123/workspace/456", {"id": "123", "wid": "456"}),
            ("v1/getUsers", "v1/getUsers", {}),
            ("v1/getUsers/{user-id}/posts/{post-id}", "v1/getUsers/user-123/posts/1", {"user-id": "user-123", "post-id": "1"}),
            ("v1/getUsers/{id}", "v1/getUsers/123/", {"id": "123"}),
            ("v1/getUsers/{id}/workspace/{wid}", "v1/getUsers/123/", {"id": "123"}),
            ("/v1/getUsers/{id}/", "/v1/getUsers/123", {"id": "123"}),
            ("v1/getUsers/{id}", "v1/getUsers/123/extra/segments", {"id": "123"}),
        ],
    )
    def test_matches(self, template: str, path: str, expected: dict[str, str]) -> None:
        """Captures are extracted by position."""
        assert match_template(template, path) == expected

    def test_empty_segment_against_literal(self) -> None:
        """A doubled slash makes an empty segment that fails a literal."""
        with pytest.raises(TemplateMismatchError, match="does not match template"):
            match_template("v1/getUsers/{id}/posts/{pid}", "v1/getUsers/123//posts/22")

    def test_literal_mismatch(self) -> None:
        """Literal segments must be equal."""
        with pytest.raises(TemplateMismatchError):
            match_template("v1/getUsers/{id}", "v2/getUsers/123")

    def test_mismatch_is_decode_error(self) -> None:
        """Template mismatches are client errors."""
        with pytest.raises(DecodeError):
            match_template("v1/a", "v1/b")

    def test_percent_decoding(self) -> None:
        """Captured values are percent-decoded after splitting."""
        assert match_template("v1/files/{name}", "v1/files/a%2Fb%20c") == {"name": "a/b c"}
        assert match_template("v1/files/{name}", "v1/files/caf%C3%A9") == {"name": "café"}

    def test_plus_is_literal(self) -> None:
        """``+`` is not a space in a path."""
        assert match_template("v1/q/{term}", "v1/q/a+b") == {"term": "a+b"}

    @pytest.mark.parametrize("segment", ["%zz", "abc%", "%4", "%e9"])
    def test_bad_escapes(self, segment: str) -> None:
        """Malformed escapes and invalid UTF-8 fail the match."""
        with pytest.raises(TemplateMismatchError):
            match_template("v1/files/{name}", f"v1/files/{segment}")


class TestTemplates:
    """Template validation helpers."""

    def test_normalize(self) -> None:
        """Leading and trailing slashes are dropped."""
        assert normalize_template("/v1/users/{id}/") == "v1/users/{id}"

    def test_params(self) -> None:
        """Capture names in order."""
        assert template_params("v1/users/{id}/posts/{post-id}") == ["id", "post-id"]

    @pytest.mark.parametrize("template", ["v1/{id}/{id}", "v1/{}", "v1/x{id}", "v1/{a{b}"])
    def test_invalid(self, template: str) -> None:
        """Duplicate, empty and malformed captures are rejected."""
        with pytest.raises(ValueError):
            normalize_template(template)


# ---------------------------------------------------------------------------
# RouteTable
# ---------------------------------------------------------------------------


class TestRouteTable:
    """Route selection by method and path."""

    @pytest.fixture
    def table(self) -> RouteTable[str]:
        """A small table."""
        table: RouteTable[str] = RouteTable()
        table.add("GET", "v1/users/{id}", "get_user")
        table.add("DELETE", "v1/users/{id}", "delete_user")
        table.add("POST", "v1/users", "create_user")
        table.add("GET", "v1/users/me", "me")
        table.add("GET", "/", "root")
        return table

    def test_lookup(self, table: RouteTable[str]) -> None:
        """Method and segments select the route."""
        assert table.lookup("GET", "/v1/users/42").target == "get_user"
        assert table.lookup("delete", "/v1/users/42").target == "delete_user"
        assert table.lookup("POST", "/v1/users/").target == "create_user"

    def test_literal_beats_capture(self, table: RouteTable[str]) -> None:
        """A literal segment wins over a capture at the same position."""
        assert table.lookup("GET", "/v1/users/me").target == "me"

    def test_root(self, table: RouteTable[str]) -> None:
        """The root template matches ``/``."""
        assert table.lookup("GET", "/").target == "root"

    def test_segment_count_must_match(self, table: RouteTable[str]) -> None:
        """Routing requires every path segment to be accounted for."""
        with pytest.raises(RouteNotFoundError):
            table.lookup("GET", "/v1/users/42/extra")

    def test_empty_capture_does_not_route(self, table: RouteTable[str]) -> None:
        """A capture never matches an empty segment."""
        with pytest.raises(RouteNotFoundError):
            table.lookup("GET", "/v1//42")

    def test_method_not_allowed(self, table: RouteTable[str]) -> None:
        """A path routed only for other methods reports them."""
        with pytest.raises(MethodNotAllowedError) as exc_info:
            table.lookup("PUT", "/v1/users/42")
        assert exc_info.value.allowed == frozenset({"GET", "DELETE"})

    def test_last_registration_wins(self, caplog: pytest.LogCaptureFixture) -> None:
        """Re-adding a (method, template) pair replaces it with a warning."""
        table: RouteTable[str] = RouteTable()
        table.add("GET", "v1/users/{id}", "first")
        with caplog.at_level(logging.WARNING, logger="rpcbridge.routing"):
            table.add("GET", "/v1/users/{id}/", "second")
        assert len(table) == 1
        assert table.lookup("GET", "/v1/users/1").target == "second"
        assert any("registered twice" in r.getMessage() for r in caplog.records)

    def test_iteration_order(self, table: RouteTable[str]) -> None:
        """Routes iterate in registration order."""
        assert [r.target for r in table] == ["get_user", "delete_user", "create_user", "me", "root"]
