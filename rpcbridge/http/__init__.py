# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""HTTP surface for rpc-bridge using Falcon.

Provides ``make_wsgi_app`` to expose a :class:`~rpcbridge.bridge.Bridge` as a
Falcon WSGI application, and ``make_test_client`` to exercise it in-process.

HTTP Wire Protocol
------------------
Each routed method is served at ``{prefix}/{template}`` for the HTTP method
of its rule.  Path captures and the JSON request body are merged (body keys
win) and decoded into the request message; the response message is
returned as ``application/json``.

Errors are ``text/plain``:

- **400**: path does not fit the template, malformed JSON, unknown field,
  wrong value type
- **404** / **405**: no route for the path / for the HTTP method
- **500**: ``internal server error: <cause>`` (route resolution,
  configuration, implementation, and encoding failures)

Every response carries ``X-Request-ID``.
"""

from rpcbridge.http._common import _HttpError
from rpcbridge.http._server import make_wsgi_app
from rpcbridge.http._testing import make_test_client

__all__ = [
    "_HttpError",
    "make_test_client",
    "make_wsgi_app",
]
