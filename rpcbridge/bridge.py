# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Service registry, HTTP rule annotations, and route resolution.

Services are ``Protocol`` classes whose methods take one request message
and return one response message.  HTTP rules bind methods to URL
templates::

    @service("example.UserService")
    class UserService(Protocol):
        @http_rule("GET", "v1/users/{id}")
        def get_user(self, request: GetUserRequest) -> User: ...

    bridge = Bridge(time_format=ISO_TIME_FORMAT)
    bridge.register_service(UserService, UserServiceImpl())

:meth:`Bridge.routes` resolves every rule of every registered protocol once;
a failure is sticky and re-raised on every later call.
"""

from __future__ import annotations

import functools
import inspect
import logging
import threading
import uuid
from collections.abc import Callable, Iterator, Mapping, MutableMapping
from contextvars import ContextVar
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, get_type_hints

from rpcbridge.codec import CodecOptions, JsonMarshaler, JsonUnmarshaler, decode_bytes
from rpcbridge.errors import BridgeError, ConfigurationError, RouteResolutionError
from rpcbridge.routing import RouteTable, match_template, normalize_template
from rpcbridge.schema import Message, Timestamp, _is_optional_type, new_message, rename_table, schema_of
from rpcbridge.timeformat import TimeFormat

__all__ = [
    "DEFAULT_REGISTRY",
    "HTTP_METHODS",
    "Bridge",
    "BoundMethod",
    "CallContext",
    "HttpRule",
    "MethodInfo",
    "ServiceRegistry",
    "http_rule",
    "http_rules",
    "service",
]

_logger = logging.getLogger("rpcbridge.bridge")

HTTP_METHODS: frozenset[str] = frozenset({"GET", "POST", "PUT", "DELETE", "PATCH"})

_HTTP_RULE_ATTR = "__rpcbridge_http_rule__"


# ---------------------------------------------------------------------------
# HTTP rules
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class HttpRule:
    """Binding of an RPC method to an HTTP method and URL template."""

    method: str
    path: str

    def __post_init__(self) -> None:
        """Validate the HTTP method."""
        if self.method not in HTTP_METHODS:
            raise ValueError(f"Unsupported HTTP method {self.method!r}; expected one of {sorted(HTTP_METHODS)}")


def http_rule[F: Callable[..., Any]](method: str, path: str) -> Callable[[F], F]:
    """Attach an :class:`HttpRule` to a protocol method.

    Args:
        method: HTTP method (``GET``, ``POST``, ``PUT``, ``DELETE`` or ``PATCH``).
        path: URL template, e.g. ``"v1/users/{id}"``.

    Raises:
        ValueError: If the HTTP method is not supported.
        TypeError: If the method already carries a rule.

    """
    rule = HttpRule(method.upper(), path)

    def decorator(func: F) -> F:
        if hasattr(func, _HTTP_RULE_ATTR):
            raise TypeError(f"{func.__qualname__} already has an HTTP rule; only one rule per method is supported")
        setattr(func, _HTTP_RULE_ATTR, rule)
        return func

    return decorator


@dataclass(frozen=True)
class MethodInfo:
    """Introspected description of one protocol method.

    Attributes:
        name: Method name.
        input_type: Request message type.
        output_type: Response message type, or ``None`` for methods
            returning ``None``.
        rule: HTTP rule, or ``None`` when the method is not exposed over HTTP.
        doc: Method docstring.

    """

    name: str
    input_type: type[Message]
    output_type: type[Message] | None
    rule: HttpRule | None = None
    doc: str | None = None


def _message_type(protocol: type, name: str, role: str, hint: Any) -> type[Message]:
    if not (isinstance(hint, type) and issubclass(hint, Message)):
        raise TypeError(f"{protocol.__name__}.{name}() {role} must be a Message subclass, got {hint!r}")
    return hint


@functools.lru_cache(maxsize=64)
def http_rules(protocol: type) -> Mapping[str, MethodInfo]:
    """Introspect a Protocol class and return :class:`MethodInfo` for each method.

    Skips underscore-prefixed names and non-callable attributes.  Each
    method must take exactly one request parameter annotated with a
    :class:`~rpcbridge.schema.Message` subclass and return a message type
    (optionally ``| None``) or ``None``.

    Raises:
        TypeError: If a method signature does not fit that shape.

    """
    result: dict[str, MethodInfo] = {}

    for name in dir(protocol):
        if name.startswith("_"):
            continue
        attr = getattr(protocol, name, None)
        if attr is None or not callable(attr):
            continue

        try:
            hints = get_type_hints(attr)
        except (NameError, AttributeError) as exc:
            raise TypeError(f"Failed to resolve type hints for {protocol.__name__}.{name}(): {exc}") from exc

        params = [p for p in inspect.signature(attr).parameters.values() if p.name != "self"]
        if len(params) != 1 or params[0].kind not in (
            inspect.Parameter.POSITIONAL_ONLY,
            inspect.Parameter.POSITIONAL_OR_KEYWORD,
        ):
            raise TypeError(f"{protocol.__name__}.{name}() must take exactly one positional request parameter")
        request_param = params[0].name
        if request_param not in hints:
            raise TypeError(f"{protocol.__name__}.{name}() parameter '{request_param}' needs a type annotation")
        input_type = _message_type(protocol, name, "request", hints[request_param])

        return_hint = hints.get("return", type(None))
        output_type: type[Message] | None = None
        if return_hint is not type(None):
            inner, _ = _is_optional_type(return_hint)
            output_type = _message_type(protocol, name, "return type", inner)

        result[name] = MethodInfo(
            name=name,
            input_type=input_type,
            output_type=output_type,
            rule=getattr(attr, _HTTP_RULE_ATTR, None),
            doc=getattr(attr, "__doc__", None),
        )

    return MappingProxyType(result)


# ---------------------------------------------------------------------------
# Service registry
# ---------------------------------------------------------------------------


class ServiceRegistry:
    """Named service protocols, in registration order."""

    __slots__ = ("_lock", "_services")

    def __init__(self) -> None:
        self._services: dict[str, type] = {}
        self._lock = threading.Lock()

    def add(self, protocol: type, name: str | None = None) -> type:
        """Register *protocol* under *name* (default: its qualified name).

        Raises:
            ValueError: If another protocol is already registered under *name*.

        """
        name = name or protocol.__qualname__
        with self._lock:
            existing = self._services.get(name)
            if existing is not None and existing is not protocol:
                raise ValueError(f"Service name {name!r} is already registered for {existing.__qualname__}")
            self._services[name] = protocol
        return protocol

    def service[P: type](self, name: str | None = None) -> Callable[[P], P]:
        """Class decorator form of :meth:`add`."""

        def decorator(protocol: P) -> P:
            self.add(protocol, name)
            return protocol

        return decorator

    def name_of(self, protocol: type) -> str | None:
        """Registered name of *protocol*, or ``None``."""
        return next((n for n, p in self._services.items() if p is protocol), None)

    def __contains__(self, protocol: object) -> bool:
        """Whether *protocol* is registered."""
        return any(p is protocol for p in self._services.values())

    def __iter__(self) -> Iterator[tuple[str, type]]:
        """Iterate ``(name, protocol)`` pairs in registration order."""
        return iter(list(self._services.items()))

    def __len__(self) -> int:
        """Number of registered services."""
        return len(self._services)


DEFAULT_REGISTRY = ServiceRegistry()
"""Registry used by :func:`service` and by :class:`Bridge` when none is given."""


def service[P: type](name: str | None = None) -> Callable[[P], P]:
    """Register a service protocol in :data:`DEFAULT_REGISTRY`."""
    return DEFAULT_REGISTRY.service(name)


# ---------------------------------------------------------------------------
# Call context
# ---------------------------------------------------------------------------


def _generate_request_id() -> str:
    """Generate a 16-char hex request ID for correlation."""
    return uuid.uuid4().hex[:16]


_current_request_id: ContextVar[str] = ContextVar("rpcbridge_request_id", default="")


class _CallLoggerAdapter(logging.LoggerAdapter[logging.Logger]):
    """Logger for one call, named ``rpcbridge.service.<ServiceName>``.

    The call's request fields are bound once and win over per-call ``extra``
    of the same name.
    """

    def __init__(self, ctx: CallContext) -> None:
        """Bind the request fields of *ctx*."""
        fields: dict[str, object] = {
            "service": ctx.service_name,
            "method": ctx.method_name,
            "http_method": ctx.http_method,
            "path": ctx.path,
        }
        if ctx.path_params:
            fields["path_params"] = dict(ctx.path_params)
        if ctx.request_id:
            fields["request_id"] = ctx.request_id
        if ctx.remote_addr:
            fields["remote_addr"] = ctx.remote_addr
        super().__init__(logging.getLogger(f"rpcbridge.service.{ctx.service_name}"), fields)

    def process(self, msg: str, kwargs: MutableMapping[str, Any]) -> tuple[str, MutableMapping[str, Any]]:
        """Add the bound fields to the record's ``extra``."""
        kwargs["extra"] = {**kwargs.get("extra", {}), **(self.extra or {})}
        return msg, kwargs


class CallContext:
    """Request-scoped context injected into implementation methods that declare a ``ctx`` parameter."""

    __slots__ = (
        "_logger",
        "_request_id",
        "headers",
        "http_method",
        "method_name",
        "path",
        "path_params",
        "remote_addr",
        "service_name",
    )

    def __init__(
        self,
        *,
        service_name: str,
        method_name: str,
        http_method: str,
        path: str,
        path_params: Mapping[str, str] | None = None,
        headers: Mapping[str, str] | None = None,
        remote_addr: str = "",
        request_id: str | None = None,
    ) -> None:
        """Initialize from request details; the request ID defaults to the current one."""
        self.service_name = service_name
        self.method_name = method_name
        self.http_method = http_method
        self.path = path
        self.path_params: Mapping[str, str] = path_params or {}
        self.headers: Mapping[str, str] = headers or {}
        self.remote_addr = remote_addr
        self._request_id = request_id if request_id is not None else _current_request_id.get()
        self._logger: _CallLoggerAdapter | None = None

    @property
    def request_id(self) -> str:
        """Per-request correlation ID (empty string if not set)."""
        return self._request_id

    @property
    def logger(self) -> logging.LoggerAdapter[logging.Logger]:
        """Server-side logger with request context pre-bound.

        Returns:
            A ``LoggerAdapter`` with logger name
            ``rpcbridge.service.<ServiceName>``.  Always includes
            ``service``, ``method``, ``http_method`` and ``path``; includes
            ``path_params``, ``request_id`` and ``remote_addr`` when set.

        """
        if self._logger is None:
            self._logger = _CallLoggerAdapter(self)
        return self._logger


# ---------------------------------------------------------------------------
# Bound methods and implementation validation
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BoundMethod:
    """A routed protocol method bound to its implementation."""

    service_name: str
    info: MethodInfo
    handler: Callable[..., Any]
    accepts_ctx: bool

    @property
    def full_name(self) -> str:
        """``<service>.<method>``."""
        return f"{self.service_name}.{self.info.name}"

    @property
    def rule(self) -> HttpRule:
        """The method's HTTP rule."""
        assert self.info.rule is not None
        return self.info.rule

    def decode_request(self, path: str, body: bytes | None, options: CodecOptions) -> tuple[Message, dict[str, str]]:
        """Build the request message from the raw path and body.

        Returns:
            The decoded request and the extracted path parameters.

        Raises:
            DecodeError: If the path does not fit the template or the merged
                input does not fit the request type.

        """
        params = match_template(self.rule.path, path)
        request = new_message(self.info.input_type)
        decode_bytes(body, request, params, options)
        return request, params

    def __call__(self, request: Message, ctx: CallContext | None = None) -> Any:
        """Invoke the implementation."""
        if self.accepts_ctx:
            return self.handler(request, ctx=ctx)
        return self.handler(request)

    def __repr__(self) -> str:
        """Short form used in logs."""
        return f"<BoundMethod {self.full_name}>"


def _accepts_ctx(method: Callable[..., Any]) -> bool:
    try:
        return "ctx" in inspect.signature(method).parameters
    except (TypeError, ValueError):
        return False


def _validate_implementation(protocol: type, implementation: object, methods: Mapping[str, MethodInfo]) -> None:
    """Validate that *implementation* provides every method of *protocol*.

    Each method must be callable with the request message as its single
    positional argument; a ``ctx`` keyword parameter is allowed.

    Raises:
        TypeError: If one or more problems are found.  The message lists
            every problem.

    """
    errors: list[str] = []

    for name, info in methods.items():
        method = getattr(implementation, name, None)

        if method is None:
            errors.append(f"missing method {name}(request: {info.input_type.__name__})")
            continue

        if not callable(method):
            errors.append(f"'{name}' exists but is not callable")
            continue

        try:
            sig = inspect.signature(method)
        except (TypeError, ValueError):
            continue
        call_kwargs = {"ctx": None} if "ctx" in sig.parameters else {}
        try:
            sig.bind(None, **call_kwargs)
        except TypeError as exc:
            errors.append(f"'{name}()' cannot be called with a single request argument: {exc}")

    if errors:
        impl_name = type(implementation).__name__
        header = f"{impl_name} does not implement {protocol.__name__}:"
        detail = "\n".join(f"  - {e}" for e in errors)
        raise TypeError(f"{header}\n{detail}")


def _timestamp_path(cls: type[Message]) -> str | None:
    """Dotted field path to the first Timestamp reachable from *cls*, or ``None``."""
    pending: list[tuple[type[Message], str]] = [(cls, cls.__name__)]
    seen: set[type] = set()
    while pending:
        current, where = pending.pop(0)
        if current in seen:
            continue
        seen.add(current)
        if issubclass(current, Timestamp):
            return where
        # Types that encode and decode themselves never reach the time format.
        if issubclass(current, JsonMarshaler) and issubclass(current, JsonUnmarshaler):
            continue
        for fd in schema_of(current):
            if fd.message_type is not None:
                pending.append((fd.message_type, f"{where}.{fd.name}"))
    return None


# ---------------------------------------------------------------------------
# Bridge
# ---------------------------------------------------------------------------


class Bridge:
    """Registered implementations plus the route table resolved from their HTTP rules.

    Args:
        registry: Service registry to resolve (default :data:`DEFAULT_REGISTRY`).
        time_format: Wire format for timestamps.  Required when any routed
            message contains a :class:`~rpcbridge.schema.Timestamp`.

    """

    def __init__(self, registry: ServiceRegistry | None = None, *, time_format: TimeFormat | None = None) -> None:
        """Initialize an empty bridge."""
        self.registry = registry if registry is not None else DEFAULT_REGISTRY
        self.time_format = time_format
        self._implementations: dict[type, object] = {}
        self._routes: RouteTable[BoundMethod] | None = None
        self._failure: Exception | None = None
        self._lock = threading.Lock()

    @property
    def codec_options(self) -> CodecOptions:
        """Codec options derived from the bridge configuration."""
        return CodecOptions(time_format=self.time_format)

    def register_service(self, protocol: type, implementation: object) -> None:
        """Bind *implementation* to *protocol*.

        Protocols not yet in the registry are added under their qualified name.

        Raises:
            TypeError: If the implementation does not provide every protocol
                method, or a protocol method has an unsupported signature.
            RuntimeError: If routes have already been resolved.

        """
        methods = http_rules(protocol)
        _validate_implementation(protocol, implementation, methods)
        with self._lock:
            if self._routes is not None or self._failure is not None:
                raise RuntimeError("Routes are already resolved; register services before serving requests")
            if protocol not in self.registry:
                self.registry.add(protocol)
            self._implementations[protocol] = implementation
        _logger.debug(
            "Registered %s for %s",
            type(implementation).__name__,
            protocol.__qualname__,
            extra={"protocol": protocol.__qualname__, "implementation": type(implementation).__name__},
        )

    def routes(self) -> RouteTable[BoundMethod]:
        """Resolve the HTTP rules of every registered protocol, once.

        Raises:
            RouteResolutionError: If resolution fails.  A fresh error chained
                to the cached cause is raised by every later call.

        """
        routes = self._routes
        if routes is not None:
            return routes
        with self._lock:
            if self._routes is None and self._failure is None:
                try:
                    self._routes = self._resolve()
                except (BridgeError, TypeError, ValueError) as exc:
                    self._failure = exc
                    _logger.error("Route resolution failed: %s", exc, exc_info=exc)
            if self._failure is not None:
                raise RouteResolutionError(f"failed to resolve HTTP rules: {self._failure}") from self._failure
            assert self._routes is not None
            return self._routes

    def _resolve(self) -> RouteTable[BoundMethod]:
        table: RouteTable[BoundMethod] = RouteTable()
        for service_name, protocol in self.registry:
            routed = {n: info for n, info in http_rules(protocol).items() if info.rule is not None}
            if not routed:
                continue
            implementation = self._implementations.get(protocol)
            if implementation is None:
                raise ConfigurationError(f"service {service_name} has HTTP rules but no registered implementation")
            for name, info in routed.items():
                assert info.rule is not None
                handler = getattr(implementation, name, None)
                if handler is None or not callable(handler):
                    raise ConfigurationError(f"method {service_name}.{name} not found on implementation")
                for message_type in (info.input_type, info.output_type):
                    if message_type is None:
                        continue
                    rename_table(message_type)
                    if self.time_format is None:
                        where = _timestamp_path(message_type)
                        if where is not None:
                            raise ConfigurationError(
                                f"{service_name}.{name} uses a Timestamp ({where}) but no time format is configured"
                            )
                normalize_template(info.rule.path)
                target = BoundMethod(
                    service_name=service_name, info=info, handler=handler, accepts_ctx=_accepts_ctx(handler)
                )
                route = table.add(info.rule.method, info.rule.path, target)
                _logger.debug(
                    "Route %s /%s -> %s",
                    route.http_method,
                    route.template,
                    target.full_name,
                    extra={"http_method": route.http_method, "template": route.template, "method": target.full_name},
                )
        _logger.info("Resolved %d routes", len(table), extra={"route_count": len(table)})
        return table
