# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""In-process test client for bridged services.

Provides ``make_test_client`` which wraps ``falcon.testing.TestClient``
around ``make_wsgi_app``; no real HTTP server is needed.
"""

from __future__ import annotations

from collections.abc import Iterable

import falcon.testing

from rpcbridge.bridge import Bridge

from ._server import make_wsgi_app


def make_test_client(
    bridge: Bridge,
    *,
    prefix: str = "",
    cors_origins: str | Iterable[str] | None = None,
    default_headers: dict[str, str] | None = None,
) -> falcon.testing.TestClient:
    """Create a Falcon test client serving *bridge*.

    Args:
        bridge: The bridge to serve.
        prefix: See ``make_wsgi_app``.
        cors_origins: See ``make_wsgi_app``.
        default_headers: Headers sent with every simulated request.

    Returns:
        A ``falcon.testing.TestClient``; use ``simulate_get``,
        ``simulate_post`` and friends to issue requests.

    """
    app = make_wsgi_app(bridge, prefix=prefix, cors_origins=cors_origins)
    return falcon.testing.TestClient(app, headers=default_headers)
