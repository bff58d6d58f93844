# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Expose typed RPC services over HTTP/JSON.

Messages are dataclasses; services are ``Protocol`` classes whose methods
carry HTTP rules.  The codec converts between messages and JSON, the route
table maps requests to methods, and :mod:`rpcbridge.http` serves it all as a
Falcon WSGI app.
"""

import logging

from rpcbridge.bridge import (
    DEFAULT_REGISTRY,
    HTTP_METHODS,
    BoundMethod,
    Bridge,
    CallContext,
    HttpRule,
    MethodInfo,
    ServiceRegistry,
    http_rule,
    http_rules,
    service,
)
from rpcbridge.codec import (
    CodecOptions,
    JsonMarshaler,
    JsonUnmarshaler,
    decode,
    decode_bytes,
    encode,
    encode_bytes,
    merge_params,
)
from rpcbridge.errors import (
    BridgeError,
    ConfigurationError,
    DecodeError,
    EncodeError,
    MethodNotAllowedError,
    RouteNotFoundError,
    RouteResolutionError,
    SchemaError,
    TemplateMismatchError,
)
from rpcbridge.routing import Route, RouteTable, match_template
from rpcbridge.schema import (
    ArrowType,
    Cardinality,
    FieldDescriptor,
    Float32,
    Int32,
    Int64,
    JsonName,
    Kind,
    Message,
    MessageSchema,
    RenameTable,
    Timestamp,
    UInt32,
    UInt64,
    new_message,
    rename_table,
    schema_of,
)
from rpcbridge.timeformat import EPOCH_TIME_FORMAT, ISO_TIME_FORMAT, TimeFormat, time_format_by_name

__all__ = [
    "ArrowType",
    "BoundMethod",
    "Bridge",
    "BridgeError",
    "CallContext",
    "Cardinality",
    "CodecOptions",
    "ConfigurationError",
    "DEFAULT_REGISTRY",
    "DecodeError",
    "EPOCH_TIME_FORMAT",
    "EncodeError",
    "FieldDescriptor",
    "Float32",
    "HTTP_METHODS",
    "HttpRule",
    "ISO_TIME_FORMAT",
    "Int32",
    "Int64",
    "JsonMarshaler",
    "JsonName",
    "JsonUnmarshaler",
    "Kind",
    "Message",
    "MessageSchema",
    "MethodInfo",
    "MethodNotAllowedError",
    "RenameTable",
    "Route",
    "RouteNotFoundError",
    "RouteResolutionError",
    "RouteTable",
    "SchemaError",
    "ServiceRegistry",
    "TemplateMismatchError",
    "TimeFormat",
    "Timestamp",
    "UInt32",
    "UInt64",
    "decode",
    "decode_bytes",
    "encode",
    "encode_bytes",
    "http_rule",
    "http_rules",
    "match_template",
    "merge_params",
    "new_message",
    "rename_table",
    "schema_of",
    "service",
    "time_format_by_name",
]

# Attach NullHandler so library users don't get "No handlers could be
# found" warnings; applications configure logging themselves.
logging.getLogger("rpcbridge").addHandler(logging.NullHandler())
