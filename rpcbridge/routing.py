# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""URL templates: parameter extraction and the route table.

A template is a slash-separated pattern whose ``{name}`` segments capture
the corresponding path segment:

    >>> match_template("v1/users/{id}", "/v1/users/42")
    {'id': '42'}

Matching works on the raw (still percent-encoded) path so an encoded ``/``
inside a capture does not split the segment; captured values are
percent-decoded afterwards.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterator
from dataclasses import dataclass
from urllib.parse import unquote

from rpcbridge.errors import MethodNotAllowedError, RouteNotFoundError, TemplateMismatchError

__all__ = [
    "Route",
    "RouteTable",
    "match_template",
    "normalize_template",
    "split_path",
    "template_params",
]

_logger = logging.getLogger("rpcbridge.routing")

_MALFORMED_ESCAPE = re.compile(r"%(?![0-9A-Fa-f]{2})")


def split_path(path: str) -> list[str]:
    """Split a path or template on ``/`` after trimming leading and trailing slashes."""
    return path.strip("/").split("/")


def _capture_name(segment: str) -> str | None:
    if len(segment) >= 2 and segment[0] == "{" and segment[-1] == "}":
        return segment[1:-1]
    return None


def _unescape(segment: str) -> str:
    """Percent-decode one path segment, rejecting malformed escapes and invalid UTF-8."""
    if _MALFORMED_ESCAPE.search(segment):
        raise TemplateMismatchError(f"invalid URL escape in path segment {segment!r}")
    try:
        return unquote(segment, errors="strict")
    except UnicodeDecodeError as exc:
        raise TemplateMismatchError(f"path segment {segment!r} is not valid UTF-8: {exc}") from exc


def match_template(template: str, path: str) -> dict[str, str]:
    """Extract path parameters from *path* according to *template*.

    Segments are compared positionally.  When the path is shorter than the
    template, matching stops early and the remaining captures are absent;
    extra path segments are ignored.

    Args:
        template: URL template such as ``"v1/users/{id}"``.
        path: Raw request path (percent-encoded).

    Returns:
        Captured values by name, percent-decoded.

    Raises:
        TemplateMismatchError: If a literal segment differs from the path
            segment, or a captured value cannot be percent-decoded.

    """
    template_segments = split_path(template)
    path_segments = split_path(path)
    params: dict[str, str] = {}
    for i, segment in enumerate(template_segments):
        if i >= len(path_segments):
            break
        name = _capture_name(segment)
        if name is not None:
            params[name] = _unescape(path_segments[i])
        elif segment != path_segments[i]:
            raise TemplateMismatchError(
                f"path {path!r} does not match template {template!r}: {path_segments[i]!r} != {segment!r}"
            )
    return params


def template_params(template: str) -> list[str]:
    """Names captured by *template*, in order."""
    return [name for name in map(_capture_name, split_path(template)) if name is not None]


def normalize_template(template: str) -> str:
    """Canonical form of a template: no leading or trailing slash.

    Raises:
        ValueError: If a capture is unnamed or malformed, or a name is
            captured twice.

    """
    segments = split_path(template)
    seen: set[str] = set()
    for segment in segments:
        name = _capture_name(segment)
        if name is None:
            if "{" in segment or "}" in segment:
                raise ValueError(f"malformed capture segment {segment!r} in template {template!r}")
            continue
        if not name or "{" in name or "}" in name or "/" in name:
            raise ValueError(f"invalid capture name {name!r} in template {template!r}")
        if name in seen:
            raise ValueError(f"capture {name!r} appears twice in template {template!r}")
        seen.add(name)
    return "/".join(segments)


# ---------------------------------------------------------------------------
# Route table
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Route[T]:
    """One ``(HTTP method, template)`` entry of a :class:`RouteTable`.

    Attributes:
        http_method: Upper-case HTTP method.
        template: Normalized template (see :func:`normalize_template`).
        target: Value dispatched to when the route is selected.

    """

    http_method: str
    template: str
    target: T

    @property
    def segments(self) -> list[str]:
        """Template segments."""
        return split_path(self.template)

    def matches(self, path_segments: list[str]) -> bool:
        """Whether the route fits every segment of a request path."""
        segments = self.segments
        if len(segments) != len(path_segments):
            return False
        for segment, actual in zip(segments, path_segments, strict=True):
            if _capture_name(segment) is not None:
                if not actual:
                    return False
            elif segment != actual:
                return False
        return True

    def _specificity(self) -> tuple[bool, ...]:
        # Literal segments win over captures at the first position they differ.
        return tuple(_capture_name(s) is None for s in self.segments)


class RouteTable[T]:
    """Routes keyed by ``(HTTP method, normalized template)``.

    Adding a route for a key that is already present replaces the earlier
    route; the replacement is logged at WARNING.
    """

    __slots__ = ("_routes",)

    def __init__(self) -> None:
        self._routes: dict[tuple[str, str], Route[T]] = {}

    def add(self, http_method: str, template: str, target: T) -> Route[T]:
        """Add (or replace) the route for *http_method* and *template*.

        Raises:
            ValueError: If the template is malformed.

        """
        route = Route(http_method=http_method.upper(), template=normalize_template(template), target=target)
        key = (route.http_method, route.template)
        previous = self._routes.get(key)
        if previous is not None:
            _logger.warning(
                "Route %s /%s registered twice; replacing %r with %r",
                route.http_method,
                route.template,
                previous.target,
                target,
                extra={"http_method": route.http_method, "template": route.template},
            )
        self._routes[key] = route
        return route

    def lookup(self, http_method: str, path: str) -> Route[T]:
        """Select the route for a request.

        Args:
            http_method: Request method.
            path: Raw request path, relative to any mount prefix.

        Raises:
            RouteNotFoundError: If no template fits the path.
            MethodNotAllowedError: If templates fit the path but none is
                registered for *http_method*.

        """
        path_segments = split_path(path)
        candidates = [r for r in self._routes.values() if r.matches(path_segments)]
        if not candidates:
            raise RouteNotFoundError(f"no route for {path!r}")
        method = http_method.upper()
        for_method = [r for r in candidates if r.http_method == method]
        if not for_method:
            allowed = frozenset(r.http_method for r in candidates)
            raise MethodNotAllowedError(f"method {method} not allowed for {path!r}", allowed)
        return max(for_method, key=Route._specificity)

    def __iter__(self) -> Iterator[Route[T]]:
        """Iterate routes in registration order."""
        return iter(self._routes.values())

    def __len__(self) -> int:
        """Number of routes."""
        return len(self._routes)
