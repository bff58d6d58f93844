# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Exception hierarchy for rpc-bridge.

Client input problems derive from :class:`DecodeError` so the HTTP layer can
map them to 400 responses; everything else surfaces as a server error.
"""

from __future__ import annotations

__all__ = [
    "BridgeError",
    "ConfigurationError",
    "DecodeError",
    "EncodeError",
    "MethodNotAllowedError",
    "RouteNotFoundError",
    "RouteResolutionError",
    "SchemaError",
    "TemplateMismatchError",
]


class BridgeError(Exception):
    """Base class for all rpc-bridge errors."""


class SchemaError(BridgeError, TypeError):
    """A message type cannot be described (unsupported annotation, wire key collision)."""


class DecodeError(BridgeError, ValueError):
    """A JSON value does not fit the target message."""


class TemplateMismatchError(DecodeError):
    """A request path does not fit the URL template of its route."""


class EncodeError(BridgeError):
    """A message value cannot be converted to JSON."""


class ConfigurationError(BridgeError, RuntimeError):
    """The bridge is missing configuration required by a message (e.g. a time format)."""


class RouteResolutionError(BridgeError):
    """Resolving HTTP rules into routes failed.

    The cause is cached by :class:`~rpcbridge.bridge.Bridge` and reported
    again for every later request.
    """


class RouteNotFoundError(BridgeError):
    """No route matches the request path."""


class MethodNotAllowedError(BridgeError):
    """Routes match the request path, but none for the request's HTTP method.

    Attributes:
        allowed: HTTP methods that do have a route for the path.

    """

    def __init__(self, message: str, allowed: frozenset[str]) -> None:
        """Initialize with a message and the allowed HTTP methods."""
        super().__init__(message)
        self.allowed = allowed
