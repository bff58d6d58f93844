# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""HTTP server implementation using Falcon/WSGI.

Provides ``make_wsgi_app`` to expose a :class:`~rpcbridge.bridge.Bridge` as a
Falcon WSGI application.  Requests are served by a single sink: the route
table of the bridge selects the method, and matching works on the raw
(percent-encoded) request path.
"""

from __future__ import annotations

import logging
import re
import time
from collections.abc import Iterable
from http import HTTPStatus
from typing import Any, Literal
from urllib.parse import quote, unquote, urlsplit

import falcon

from rpcbridge.bridge import (
    BoundMethod,
    Bridge,
    CallContext,
    _current_request_id,
    _generate_request_id,
)
from rpcbridge.codec import encode_bytes
from rpcbridge.errors import (
    BridgeError,
    ConfigurationError,
    DecodeError,
    MethodNotAllowedError,
    RouteNotFoundError,
    RouteResolutionError,
    SchemaError,
)

from ._common import _JSON_CONTENT_TYPE, _REQUEST_ID_HEADER, _TEXT_CONTENT_TYPE, _HttpError

_logger = logging.getLogger("rpcbridge.http")
_access_logger = logging.getLogger("rpcbridge.access")

# RFC 3986 pchar plus "/", used to re-encode a decoded path.
_PATH_SAFE = "/:@!$&'()*+,;=-._~"


def _set_error_response(resp: falcon.Response, error: _HttpError) -> None:
    """Set a Falcon response to a plain-text error."""
    resp.content_type = _TEXT_CONTENT_TYPE
    resp.text = error.body
    resp.status = str(error.status_code.value)
    for name, value in error.headers.items():
        resp.set_header(name, value)


def _raw_path(req: falcon.Request) -> str:
    """Return the request path as sent by the client, still percent-encoded.

    Uses the server-provided ``RAW_URI`` / ``REQUEST_URI`` when it agrees
    with the decoded path, otherwise re-encodes Falcon's decoded ``req.path``.
    """
    raw = req.env.get("RAW_URI") or req.env.get("REQUEST_URI")
    if raw:
        path = raw.split("?", 1)[0]
        if "://" in path:
            path = urlsplit(path).path
        script_name = quote(req.env.get("SCRIPT_NAME", ""), safe=_PATH_SAFE)
        if script_name and path.startswith(script_name):
            path = path[len(script_name) :]
        path = path or "/"
        if unquote(path) == req.path:
            return path
    return quote(req.path, safe=_PATH_SAFE)


def _log_method_error(target: BoundMethod, exc: BaseException) -> str:
    """Log an implementation error and return the exception class name.

    Returns:
        The exception class name (for use as ``error_type``).

    """
    error_type = type(exc).__name__
    extra: dict[str, object] = {"method": target.full_name, "error_type": error_type}
    request_id = _current_request_id.get()
    if request_id:
        extra["request_id"] = request_id
    _logger.error("Error in %s: %s", target.full_name, exc, exc_info=True, extra=extra)
    return error_type


def _emit_access_log(
    req: falcon.Request,
    path: str,
    rpc_method: str,
    http_status: int,
    duration_ms: float,
    status: Literal["ok", "error"],
    error_type: str = "",
) -> None:
    """Emit a structured access log record for a completed request."""
    if not _access_logger.isEnabledFor(logging.INFO):
        return
    try:
        extra: dict[str, object] = {
            "http_method": req.method,
            "path": path,
            "rpc_method": rpc_method,
            "http_status": http_status,
            "duration_ms": round(duration_ms, 2),
            "status": status,
            "error_type": error_type,
            "remote_addr": req.remote_addr or "",
        }
        request_id = _current_request_id.get()
        if request_id:
            extra["request_id"] = request_id
        _access_logger.info("%s %s %d", req.method, path, http_status, extra=extra)
    except Exception:
        _logger.debug("Access log emission failed", exc_info=True)


class _BridgeSink:
    """Falcon sink dispatching every request under the prefix through the bridge's route table."""

    __slots__ = ("_bridge", "_prefix")

    def __init__(self, bridge: Bridge, prefix: str) -> None:
        self._bridge = bridge
        self._prefix = prefix

    def __call__(self, req: falcon.Request, resp: falcon.Response, **kwargs: Any) -> None:
        """Handle one request and emit its access log record."""
        start = time.monotonic()
        path = _raw_path(req)[len(self._prefix) :] or "/"
        req.context.rpc_method = ""
        error_type = ""
        try:
            self._handle(req, resp, path)
        except _HttpError as e:
            error_type = type(e.cause).__name__
            _set_error_response(resp, e)
        http_status = int(str(resp.status).split(" ", 1)[0])
        _emit_access_log(
            req,
            path,
            req.context.rpc_method,
            http_status,
            (time.monotonic() - start) * 1000,
            "error" if http_status >= HTTPStatus.BAD_REQUEST else "ok",
            error_type,
        )

    def _lookup(self, req: falcon.Request, path: str) -> BoundMethod:
        """Resolve the route for the request.

        Raises:
            _HttpError: 500 if route resolution failed, 404 or 405 if no
                route fits.

        """
        try:
            routes = self._bridge.routes()
        except RouteResolutionError as exc:
            raise _HttpError(exc, status_code=HTTPStatus.INTERNAL_SERVER_ERROR) from exc
        try:
            return routes.lookup(req.method, path).target
        except RouteNotFoundError as exc:
            raise _HttpError(exc, status_code=HTTPStatus.NOT_FOUND) from exc
        except MethodNotAllowedError as exc:
            allow = ", ".join(sorted(exc.allowed))
            raise _HttpError(exc, status_code=HTTPStatus.METHOD_NOT_ALLOWED, headers={"Allow": allow}) from exc

    def _handle(self, req: falcon.Request, resp: falcon.Response, path: str) -> None:
        if req.method == "OPTIONS":
            self._options(req, resp, path)
            return

        target = self._lookup(req, path)
        req.context.rpc_method = target.full_name
        options = self._bridge.codec_options

        body = req.bounded_stream.read()
        try:
            request, params = target.decode_request(path, body, options)
        except (DecodeError, SchemaError) as exc:
            _logger.debug("Bad request for %s: %s", target.full_name, exc, extra={"method": target.full_name})
            raise _HttpError(exc, status_code=HTTPStatus.BAD_REQUEST) from exc
        except ConfigurationError as exc:
            _logger.error("Configuration error in %s: %s", target.full_name, exc, extra={"method": target.full_name})
            raise _HttpError(exc, status_code=HTTPStatus.INTERNAL_SERVER_ERROR) from exc

        ctx = CallContext(
            service_name=target.service_name,
            method_name=target.info.name,
            http_method=req.method,
            path=path,
            path_params=params,
            headers=req.headers,
            remote_addr=req.remote_addr or "",
        )
        try:
            result = target(request, ctx)
        except Exception as exc:
            _log_method_error(target, exc)
            raise _HttpError(exc, status_code=HTTPStatus.INTERNAL_SERVER_ERROR) from exc

        try:
            payload = encode_bytes(result, options)
        except BridgeError as exc:
            _log_method_error(target, exc)
            raise _HttpError(exc, status_code=HTTPStatus.INTERNAL_SERVER_ERROR) from exc

        resp.content_type = _JSON_CONTENT_TYPE
        resp.data = payload
        resp.status = str(HTTPStatus.OK.value)

    def _options(self, req: falcon.Request, resp: falcon.Response, path: str) -> None:
        """Answer OPTIONS (including CORS preflight) with the methods routed for *path*."""
        try:
            allowed: Iterable[str] = [self._lookup(req, path).rule.method]
        except _HttpError as e:
            if e.status_code != HTTPStatus.METHOD_NOT_ALLOWED:
                raise
            allowed = e.headers["Allow"].split(", ")
        resp.set_header("Allow", ", ".join(sorted({*allowed, "OPTIONS"})))
        resp.status = str(HTTPStatus.OK.value)


# Client-supplied IDs end up in response headers and log records.
_REQUEST_ID_RE = re.compile(r"[A-Za-z0-9._:-]{1,128}")


class _RequestIdMiddleware:
    """Assign every request a correlation ID and echo it as ``X-Request-ID``.

    A client-supplied ID is kept when it is 1 to 128 characters of
    ``[A-Za-z0-9._:-]``; anything else is replaced by a generated one.
    """

    def process_request(self, req: falcon.Request, resp: falcon.Response) -> None:
        """Pick the request ID and make it current for the request."""
        supplied = req.get_header(_REQUEST_ID_HEADER)
        if supplied and _REQUEST_ID_RE.fullmatch(supplied):
            request_id = supplied
        else:
            request_id = _generate_request_id()
            if supplied:
                _logger.debug("Replacing malformed request ID %r with %s", supplied[:64], request_id)
        req.context.request_id = request_id
        req.context.request_id_token = _current_request_id.set(request_id)

    def process_response(
        self,
        req: falcon.Request,
        resp: falcon.Response,
        resource: object,
        req_succeeded: bool,
    ) -> None:
        """Set the response header and leave the request's ID context."""
        request_id = getattr(req.context, "request_id", None)
        if request_id is not None:
            resp.set_header(_REQUEST_ID_HEADER, request_id)
        token = getattr(req.context, "request_id_token", None)
        if token is not None:
            _current_request_id.reset(token)


def _normalize_prefix(prefix: str) -> str:
    prefix = prefix.strip("/")
    return f"/{prefix}" if prefix else ""


def make_wsgi_app(
    bridge: Bridge,
    *,
    prefix: str = "",
    cors_origins: str | Iterable[str] | None = None,
) -> falcon.App[falcon.Request, falcon.Response]:
    """Create a Falcon WSGI app that serves the bridge's HTTP rules.

    Args:
        bridge: The bridge whose routes to serve.  Routes are resolved on
            the first request; a resolution failure turns every request
            into a 500 response.
        prefix: URL prefix under which the rule templates are mounted
            (default: none, templates are served from ``/``).
        cors_origins: Allowed origins for CORS.  Pass ``"*"`` to allow all
            origins, a single origin string like ``"https://example.com"``,
            or an iterable of origin strings.  ``None`` (the default)
            disables CORS headers.  Uses Falcon's built-in
            ``CORSMiddleware``.

    Returns:
        A Falcon application.  Responses carry ``application/json`` on
        success and a ``text/plain`` message on failure: 400 for client
        input errors, 404 and 405 for unrouted requests, 500 for server
        errors (prefixed ``internal server error: ``).

    """
    prefix = _normalize_prefix(prefix)
    middleware: list[Any] = [_RequestIdMiddleware()]
    if cors_origins is not None:
        middleware.append(falcon.CORSMiddleware(allow_origins=cors_origins, expose_headers=[_REQUEST_ID_HEADER]))
    app: falcon.App[falcon.Request, falcon.Response] = falcon.App(middleware=middleware)
    sink_prefix = re.compile(re.escape(prefix) + r"(?=/|$)") if prefix else re.compile("/")
    app.add_sink(_BridgeSink(bridge, prefix), prefix=sink_prefix)

    _logger.info(
        "WSGI app created (prefix=%s, services=%d, cors=%s)",
        prefix or "/",
        len(bridge.registry),
        "enabled" if cors_origins is not None else "disabled",
        extra={
            "prefix": prefix or "/",
            "services": [name for name, _ in bridge.registry],
            "cors_enabled": cors_origins is not None,
        },
    )
    return app
