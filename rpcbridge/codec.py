# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Schema-driven transcoding between messages and generic JSON values.

The JSON side is the plain Python representation produced by ``json.loads``
(``None``, ``bool``, ``int``, ``float``, ``str``, ``list``, ``dict``) plus
``bytes`` for bytes fields, which are written as base64 strings when the
value is serialized.

KEY FUNCTIONS
-------------
encode(message, options) : Message -> JSON value
decode(data, target, options) : JSON value -> message, in place
encode_bytes(message, options) : Message -> JSON document bytes
decode_bytes(body, target, params, options) : Path params + body -> message
merge_params(body, params) : Path params + body -> decode input

KEY CLASSES
-----------
CodecOptions : Codec configuration (time format)
JsonMarshaler : Capability replacing field-by-field encoding for a type
JsonUnmarshaler : Capability replacing field-by-field decoding for a type

"""

from __future__ import annotations

import base64
import binascii
import functools
import json
import math
import os
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

import pyarrow as pa
import structlog

from rpcbridge.errors import BridgeError, ConfigurationError, DecodeError, EncodeError
from rpcbridge.schema import (
    FieldDescriptor,
    Kind,
    Message,
    Timestamp,
    new_message,
    rename_table,
    schema_of,
)
from rpcbridge.timeformat import TimeFormat

__all__ = [
    "CodecOptions",
    "JsonMarshaler",
    "JsonUnmarshaler",
    "decode",
    "decode_bytes",
    "encode",
    "encode_bytes",
    "merge_params",
]

# Codec debug logging - enable with RPCBRIDGE_CODEC_DEBUG=1
_CODEC_DEBUG = os.environ.get("RPCBRIDGE_CODEC_DEBUG", "").lower() in ("1", "true", "yes")
_codec_log: structlog.stdlib.BoundLogger | None = None


def _get_codec_log() -> structlog.stdlib.BoundLogger:
    """Get or create the codec debug logger, configured to write to stderr."""
    global _codec_log
    if _codec_log is None:
        import sys

        structlog.configure(
            processors=[
                structlog.processors.add_log_level,
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.dev.ConsoleRenderer(),
            ],
            wrapper_class=structlog.make_filtering_bound_logger(0),
            logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        )
        _codec_log = structlog.get_logger().bind(component="codec")
    return _codec_log


# ---------------------------------------------------------------------------
# Options and override capabilities
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CodecOptions:
    """Codec configuration.

    Attributes:
        time_format: Wire format for :class:`~rpcbridge.schema.Timestamp`
            values.  Encoding or decoding a timestamp without one raises
            :class:`~rpcbridge.errors.ConfigurationError`.

    """

    time_format: TimeFormat | None = None


_DEFAULT_OPTIONS = CodecOptions()


@runtime_checkable
class JsonMarshaler(Protocol):
    """Message types implementing this produce their own JSON value."""

    def marshal_json(self) -> Any:
        """Return the JSON value for this message."""
        ...


@runtime_checkable
class JsonUnmarshaler(Protocol):
    """Message types implementing this consume their own JSON value."""

    def unmarshal_json(self, data: Any) -> None:
        """Populate this message from a raw JSON value."""
        ...


@dataclass(frozen=True)
class _Capabilities:
    marshal: bool
    unmarshal: bool


@functools.cache
def _capabilities(cls: type) -> _Capabilities:
    """Check once per type whether it implements the override capabilities."""
    return _Capabilities(marshal=issubclass(cls, JsonMarshaler), unmarshal=issubclass(cls, JsonUnmarshaler))


def _require_time_format(options: CodecOptions, where: str) -> TimeFormat:
    if options.time_format is None:
        raise ConfigurationError(f"cannot convert {where}: no time format is configured for Timestamp values")
    return options.time_format


def _call_hook[T](hook: Callable[[], T], error: type[BridgeError], where: str) -> T:
    """Run an override or time format conversion.

    Exceptions other than :class:`BridgeError` are re-raised as *error* so the
    HTTP layer maps them like any other codec failure.
    """
    try:
        return hook()
    except BridgeError:
        raise
    except Exception as exc:
        raise error(f"{where}: {exc}") from exc


# ---------------------------------------------------------------------------
# Scalar conversion
# ---------------------------------------------------------------------------

_INTEGER_KINDS = frozenset({Kind.INT32, Kind.INT64, Kind.UINT32, Kind.UINT64})


@functools.cache
def _int_bounds(arrow_type: pa.DataType) -> tuple[int, int]:
    """Inclusive value range of an integer Arrow type."""
    width = arrow_type.bit_width
    if pa.types.is_signed_integer(arrow_type):
        return -(1 << (width - 1)), (1 << (width - 1)) - 1
    return 0, (1 << width) - 1


def _to_float32(value: float) -> float:
    """Round a Python float to the nearest float32 value."""
    narrowed = pa.scalar(value, type=pa.float32()).as_py()
    if math.isinf(narrowed) and not math.isinf(value):
        raise OverflowError(f"{value!r} is out of range for float32")
    return narrowed


def _json_type_name(value: Any) -> str:
    match value:
        case None:
            return "null"
        case bool():
            return "boolean"
        case int() | float():
            return "number"
        case str():
            return "string"
        case list():
            return "array"
        case dict():
            return "object"
        case _:
            return type(value).__name__


def _encode_scalar(fd: FieldDescriptor, value: Any) -> Any:
    """Convert a Python scalar to its JSON value, checking type and width."""
    kind = fd.kind
    if kind is Kind.BOOL:
        if isinstance(value, bool):
            return value
    elif kind in _INTEGER_KINDS or kind is Kind.ENUM:
        if isinstance(value, int) and not isinstance(value, bool):
            low, high = _int_bounds(fd.arrow_type)
            if not low <= value <= high:
                raise EncodeError(f"{fd.name}: {value} is out of range for {fd.arrow_type}")
            return int(value)
    elif kind is Kind.FLOAT:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            try:
                return _to_float32(float(value))
            except (OverflowError, pa.ArrowException) as exc:
                raise EncodeError(f"{fd.name}: {exc}") from exc
    elif kind is Kind.DOUBLE:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return float(value)
    elif kind is Kind.STRING:
        if isinstance(value, str):
            return value
    elif kind is Kind.BYTES:
        if isinstance(value, (bytes, bytearray, memoryview)):
            return bytes(value)
    raise EncodeError(f"{fd.name}: expected {kind.value} value, got {type(value).__name__}")


def _decode_scalar(fd: FieldDescriptor, value: Any) -> Any:
    """Convert a JSON scalar to the field kind, narrowing numbers to the field width."""
    kind = fd.kind
    if kind is Kind.BOOL:
        if isinstance(value, bool):
            return value
    elif kind in _INTEGER_KINDS or kind is Kind.ENUM:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            if isinstance(value, float):
                if not math.isfinite(value):
                    raise DecodeError(f"{fd.name}: {value} is not a valid {kind.value}")
                value = int(value)
            low, high = _int_bounds(fd.arrow_type)
            if not low <= value <= high:
                raise DecodeError(f"{fd.name}: {value} is out of range for {fd.arrow_type}")
            if kind is Kind.ENUM:
                assert fd.enum_type is not None
                try:
                    return fd.enum_type(value)
                except ValueError:
                    raise DecodeError(f"{fd.name}: {value} is not a valid {fd.enum_type.__name__} code") from None
            return value
    elif kind is Kind.FLOAT:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            try:
                return _to_float32(float(value))
            except (OverflowError, pa.ArrowException) as exc:
                raise DecodeError(f"{fd.name}: {exc}") from exc
    elif kind is Kind.DOUBLE:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return float(value)
    elif kind is Kind.STRING:
        if isinstance(value, str):
            return value
    elif kind is Kind.BYTES:
        if isinstance(value, (bytes, bytearray)):
            return bytes(value)
        if isinstance(value, str):
            try:
                return base64.b64decode(value, validate=True)
            except binascii.Error as exc:
                raise DecodeError(f"{fd.name}: invalid base64 value: {exc}") from exc
    raise DecodeError(f"{fd.name}: expected {kind.value}, got {_json_type_name(value)}")


# ---------------------------------------------------------------------------
# Encode
# ---------------------------------------------------------------------------


def encode(value: Message | None, options: CodecOptions | None = None) -> Any:
    """Encode a message to a generic JSON value.

    Args:
        value: The message to encode, or ``None``.
        options: Codec options; required to hold a time format when the
            message contains timestamps.

    Returns:
        ``None`` for ``None``; the override result for types implementing
        :class:`JsonMarshaler`; the time format's value for timestamps;
        otherwise a ``dict`` keyed by wire keys in field order.  Fields
        whose encoded value is ``None`` are omitted.

    Raises:
        EncodeError: If a field value has the wrong type or range, or a
            field has no wire key.
        ConfigurationError: If a timestamp is encountered without a
            configured time format.
        SchemaError: If the message type cannot be described.

    """
    if value is None:
        return None
    options = options or _DEFAULT_OPTIONS
    cls = type(value)
    if _capabilities(cls).marshal:
        return _call_hook(value.marshal_json, EncodeError, cls.__name__)  # type: ignore[attr-defined]
    if isinstance(value, Timestamp):
        time_format = _require_time_format(options, cls.__name__)
        return _call_hook(lambda: time_format.marshal(value), EncodeError, cls.__name__)
    if not isinstance(value, Message):
        raise EncodeError(f"wrong type {cls.__name__}, expected a Message")

    table = rename_table(cls)
    result: dict[str, Any] = {}
    for fd in schema_of(cls):
        key = table.wire_key(fd.name)
        if key is None:
            raise EncodeError(f"key not found {fd.name}")
        encoded = _encode_field(fd, getattr(value, fd.name), options)
        # Unset messages and unset nullable scalars are omitted; zero scalars are not.
        if encoded is not None:
            result[key] = encoded
    return result


def _encode_element(fd: FieldDescriptor, value: Any, options: CodecOptions) -> Any:
    if fd.kind is Kind.MESSAGE:
        if value is not None and not isinstance(value, Message) and not _capabilities(type(value)).marshal:
            raise EncodeError(f"{fd.name}: expected {fd.message_type.__name__}, got {type(value).__name__}")  # type: ignore[union-attr]
        return encode(value, options)
    if value is None:
        raise EncodeError(f"{fd.name}: None is not a valid {fd.kind.value} value")
    return _encode_scalar(fd, value)


def _encode_field(fd: FieldDescriptor, value: Any, options: CodecOptions) -> Any:
    if fd.is_map:
        if value is None:
            return {}
        if not isinstance(value, Mapping):
            raise EncodeError(f"{fd.name}: expected a mapping, got {type(value).__name__}")
        return {str(k): _encode_element(fd, v, options) for k, v in value.items()}
    if fd.is_list:
        if value is None:
            return []
        if isinstance(value, (str, bytes, Mapping)):
            raise EncodeError(f"{fd.name}: expected a list, got {type(value).__name__}")
        return [_encode_element(fd, item, options) for item in value]
    if value is None and fd.nullable:
        return None
    return _encode_element(fd, value, options)


def _json_default(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray, memoryview)):
        return base64.b64encode(bytes(value)).decode("ascii")
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def encode_bytes(value: Message | None, options: CodecOptions | None = None) -> bytes:
    """Encode a message and serialize it as a compact JSON document.

    Raises:
        EncodeError: If the message or an override result cannot be
            serialized (including non-finite floats).

    """
    encoded = encode(value, options)
    try:
        body = json.dumps(encoded, default=_json_default, separators=(",", ":"), allow_nan=False).encode()
    except (TypeError, ValueError) as exc:
        raise EncodeError(f"failed to marshal response body: {exc}") from exc
    if _CODEC_DEBUG:
        _get_codec_log().debug("codec_encode", message_type=type(value).__name__, nbytes=len(body))
    return body


# ---------------------------------------------------------------------------
# Decode
# ---------------------------------------------------------------------------


def decode(data: Any, target: Message, options: CodecOptions | None = None) -> None:
    """Decode a generic JSON value into *target*, in place.

    Only keys present in *data* are touched; other fields keep their
    current values.  List and map fields are extended, not replaced.

    Args:
        data: JSON value (normally a ``dict``).
        target: Message instance to populate.
        options: Codec options; required to hold a time format when the
            message contains timestamps.

    Raises:
        DecodeError: If *data* does not fit the message (wrong shape or
            type, unknown wire key, out-of-range number).
        ConfigurationError: If a timestamp is encountered without a
            configured time format.
        SchemaError: If the message type cannot be described.

    """
    options = options or _DEFAULT_OPTIONS
    cls = type(target)
    if _capabilities(cls).unmarshal:
        _call_hook(lambda: target.unmarshal_json(data), DecodeError, cls.__name__)  # type: ignore[attr-defined]
        return
    if isinstance(target, Timestamp):
        time_format = _require_time_format(options, cls.__name__)
        ts = _call_hook(lambda: time_format.unmarshal(data), DecodeError, cls.__name__)
        target.seconds, target.nanos = ts.seconds, ts.nanos
        return
    if not isinstance(data, dict):
        raise DecodeError(f"expected object for {cls.__name__}, got {_json_type_name(data)}")

    table = rename_table(cls)
    schema = schema_of(cls)
    for key, value in data.items():
        name = table.field_name(key)
        if name is None:
            raise DecodeError(f"field {key} not found")
        fd = schema.by_name(name)
        if fd is None:
            raise DecodeError(f"field descriptor for {name} not found")
        _decode_field(fd, target, value, options)


def _decode_message(cls: type[Message], value: Any, options: CodecOptions, where: str) -> Message:
    """Materialize a fresh nested message from *value*."""
    if not _capabilities(cls).unmarshal and issubclass(cls, Timestamp):
        time_format = _require_time_format(options, where)
        return _call_hook(lambda: time_format.unmarshal(value), DecodeError, where)
    msg = new_message(cls)
    decode(value, msg, options)
    return msg


def _decode_element(fd: FieldDescriptor, value: Any, options: CodecOptions) -> Any:
    if value is None:
        raise DecodeError(f"{fd.name}: null is not a valid {fd.cardinality.value} element")
    if fd.kind is Kind.MESSAGE:
        assert fd.message_type is not None
        return _decode_message(fd.message_type, value, options, fd.name)
    return _decode_scalar(fd, value)


def _field_shape(fd: FieldDescriptor) -> str:
    if fd.is_map or fd.is_list:
        return fd.cardinality.value
    if fd.message_type is not None:
        return fd.message_type.__name__
    return fd.kind.value


def _decode_field(fd: FieldDescriptor, target: Message, value: Any, options: CodecOptions) -> None:
    if value is None:
        # Only nullable scalars take null; containers and messages need a value.
        if not fd.nullable or fd.kind is Kind.MESSAGE:
            raise DecodeError(f"{fd.name}: null is not a valid {_field_shape(fd)} value")
        setattr(target, fd.name, None)
        return
    if fd.is_map:
        if not isinstance(value, dict):
            raise DecodeError(f"expected object for map field {fd.name}, got {_json_type_name(value)}")
        entries = dict(getattr(target, fd.name) or {})
        for k, v in value.items():
            # Only string keys are supported.
            entries[k] = _decode_element(fd, v, options)
        setattr(target, fd.name, entries)
    elif fd.is_list:
        if not isinstance(value, list):
            raise DecodeError(f"expected array for list field {fd.name}, got {_json_type_name(value)}")
        items = list(getattr(target, fd.name) or [])
        items.extend(_decode_element(fd, v, options) for v in value)
        setattr(target, fd.name, items)
    elif fd.kind is Kind.MESSAGE:
        assert fd.message_type is not None
        setattr(target, fd.name, _decode_message(fd.message_type, value, options, fd.name))
    else:
        setattr(target, fd.name, _decode_scalar(fd, value))


def merge_params(body: bytes | None, params: Mapping[str, str] | None = None) -> dict[str, Any]:
    """Build the decode input from path parameters and a JSON request body.

    Path parameters are inserted first; the body is merged into the same
    dict afterwards, so body keys override path parameters of the same name.

    Raises:
        DecodeError: If the body is not valid JSON or not a JSON object.

    """
    value: dict[str, Any] = {}
    for k, v in (params or {}).items():
        if k in value:
            raise DecodeError(f"parameter conflict: {k!r} already exists with value {value[k]!r}")
        value[k] = v
    if body:
        try:
            parsed = json.loads(body)
        except ValueError as exc:
            raise DecodeError(f"failed to unmarshal request body: {exc}") from exc
        if parsed is not None:
            if not isinstance(parsed, dict):
                raise DecodeError(f"failed to unmarshal request body: expected object, got {_json_type_name(parsed)}")
            value.update(parsed)
    return value


def decode_bytes(
    body: bytes | None,
    target: Message,
    params: Mapping[str, str] | None = None,
    options: CodecOptions | None = None,
) -> None:
    """Merge path parameters with a JSON body and decode the result into *target*.

    See :func:`merge_params` for the precedence rules and :func:`decode`
    for the decoding rules.
    """
    value = merge_params(body, params)
    if _CODEC_DEBUG:
        _get_codec_log().debug(
            "codec_decode",
            message_type=type(target).__name__,
            params=sorted((params or {}).keys()),
            nbytes=len(body or b""),
        )
    decode(value, target, options)
