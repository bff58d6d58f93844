# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Message schemas derived from dataclass annotations.

A message type is a mutable ``@dataclass`` that subclasses :class:`Message`.
Its schema (an ordered tuple of :class:`FieldDescriptor`) is inferred from
the field annotations the first time it is needed and cached for the life
of the process.  Scalar widths are expressed as pyarrow types:

    @dataclass
    class City(Message):
        name: str = ""
        pincode: Int32 = 0
        country_code: Annotated[str, JsonName("countryCode")] = ""

KEY FUNCTIONS
-------------
schema_of(cls) : Ordered field descriptors for a message type
rename_table(cls) : Bidirectional wire key <-> field name mapping
new_message(cls) : Instance with zero values for fields lacking defaults

KEY CLASSES
-----------
Message : Base class for message dataclasses
Timestamp : Well-known absolute instant (seconds + nanos since the epoch)
ArrowType : Annotation marker overriding the inferred scalar width
JsonName : Annotation marker overriding the wire key of a field

"""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterator, Mapping
from dataclasses import MISSING, dataclass, field, is_dataclass
from dataclasses import fields as dataclass_fields
from datetime import UTC, datetime, timedelta
from enum import Enum, IntEnum
from types import MappingProxyType, UnionType
from typing import (
    Annotated,
    Any,
    ClassVar,
    Self,
    Union,
    get_args,
    get_origin,
    get_type_hints,
)

import pyarrow as pa

from rpcbridge.errors import BridgeError, SchemaError

__all__ = [
    "ArrowType",
    "Cardinality",
    "FieldDescriptor",
    "Float32",
    "Int32",
    "Int64",
    "JsonName",
    "Kind",
    "Message",
    "MessageSchema",
    "RenameTable",
    "Timestamp",
    "UInt32",
    "UInt64",
    "new_message",
    "rename_table",
    "schema_of",
]


# ---------------------------------------------------------------------------
# Annotation markers
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ArrowType:
    """Annotation marker to specify the Arrow type of a scalar field.

    Use with Annotated to override the default inferred width:

        @dataclass
        class Score(Message):
            # Override int64 -> int32
            points: Annotated[int, ArrowType(pa.int32())] = 0

    """

    arrow_type: pa.DataType


@dataclass(frozen=True)
class JsonName:
    """Annotation marker declaring the wire key of a field.

    Without it, the wire key equals the field name.
    """

    name: str


Int32 = Annotated[int, ArrowType(pa.int32())]
Int64 = Annotated[int, ArrowType(pa.int64())]
UInt32 = Annotated[int, ArrowType(pa.uint32())]
UInt64 = Annotated[int, ArrowType(pa.uint64())]
Float32 = Annotated[float, ArrowType(pa.float32())]


# ---------------------------------------------------------------------------
# Kinds and descriptors
# ---------------------------------------------------------------------------


class Kind(Enum):
    """Value kind of a field (the element kind for list and map fields)."""

    BOOL = "bool"
    INT32 = "int32"
    INT64 = "int64"
    UINT32 = "uint32"
    UINT64 = "uint64"
    FLOAT = "float"
    DOUBLE = "double"
    STRING = "string"
    BYTES = "bytes"
    ENUM = "enum"
    MESSAGE = "message"


class Cardinality(Enum):
    """Whether a field holds one value, a list of values, or a string-keyed map."""

    SINGULAR = "singular"
    LIST = "list"
    MAP = "map"


@dataclass(frozen=True)
class FieldDescriptor:
    """Description of a single message field.

    Attributes:
        name: Attribute name on the dataclass.
        kind: Value kind (element kind for lists, value kind for maps).
        cardinality: Singular, list, or map.
        arrow_type: Arrow type of the scalar value (element/value type for
            lists and maps); ``None`` for message kinds.
        nullable: ``True`` when annotated ``T | None``; ``None`` means unset.
        message_type: Nested message class for ``Kind.MESSAGE``.
        enum_type: ``IntEnum`` subclass for ``Kind.ENUM``.
        json_name: Wire key override from :class:`JsonName`, if declared.

    """

    name: str
    kind: Kind
    cardinality: Cardinality = Cardinality.SINGULAR
    arrow_type: pa.DataType | None = None
    nullable: bool = False
    message_type: type[Message] | None = None
    enum_type: type[IntEnum] | None = None
    json_name: str | None = None

    @property
    def is_list(self) -> bool:
        """``True`` for list fields."""
        return self.cardinality is Cardinality.LIST

    @property
    def is_map(self) -> bool:
        """``True`` for map fields."""
        return self.cardinality is Cardinality.MAP

    @property
    def is_timestamp(self) -> bool:
        """``True`` when the value kind is the well-known :class:`Timestamp`."""
        return self.message_type is not None and issubclass(self.message_type, Timestamp)

    def element_zero_value(self) -> Any:
        """Zero value of a single element of this field's kind."""
        match self.kind:
            case Kind.BOOL:
                return False
            case Kind.INT32 | Kind.INT64 | Kind.UINT32 | Kind.UINT64:
                return 0
            case Kind.FLOAT | Kind.DOUBLE:
                return 0.0
            case Kind.STRING:
                return ""
            case Kind.BYTES:
                return b""
            case Kind.ENUM:
                assert self.enum_type is not None
                try:
                    return self.enum_type(0)
                except ValueError:
                    return next(iter(self.enum_type))
            case Kind.MESSAGE:
                return None

    def zero_value(self) -> Any:
        """Zero value of the whole field (``[]`` for lists, ``{}`` for maps)."""
        if self.is_list:
            return []
        if self.is_map:
            return {}
        if self.nullable:
            return None
        return self.element_zero_value()


@dataclass(frozen=True)
class MessageSchema:
    """Ordered field descriptors of a message type."""

    message_type: type[Message]
    fields: tuple[FieldDescriptor, ...]
    _by_name: Mapping[str, FieldDescriptor] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        """Index the descriptors by field name."""
        object.__setattr__(self, "_by_name", MappingProxyType({f.name: f for f in self.fields}))

    def by_name(self, name: str) -> FieldDescriptor | None:
        """Return the descriptor for *name*, or ``None``."""
        return self._by_name.get(name)

    def __iter__(self) -> Iterator[FieldDescriptor]:
        """Iterate descriptors in declaration order."""
        return iter(self.fields)

    def __len__(self) -> int:
        """Number of fields."""
        return len(self.fields)


@dataclass(frozen=True)
class RenameTable:
    """Bidirectional mapping between wire keys and field names of one message type.

    Both directions honor :class:`JsonName` overrides.
    """

    message_type: type[Message]
    to_wire: Mapping[str, str]
    to_field: Mapping[str, str]

    def wire_key(self, field_name: str) -> str | None:
        """Wire key for *field_name* (encode direction)."""
        return self.to_wire.get(field_name)

    def field_name(self, wire_key: str) -> str | None:
        """Field name for *wire_key* (decode direction)."""
        return self.to_field.get(wire_key)


# ---------------------------------------------------------------------------
# Message base and the well-known Timestamp
# ---------------------------------------------------------------------------


class _SchemaDescriptor:
    """Descriptor resolving ``MESSAGE_SCHEMA`` through the process-wide cache.

    ``@dataclass`` runs after ``__init_subclass__``, so the schema can only
    be derived on first access.
    """

    def __get__(self, instance: object | None, owner: type[Message]) -> MessageSchema:
        return schema_of(owner)


class Message:
    """Base class for message dataclasses.

    Subclasses must be mutable dataclasses; the codec sets attributes in
    place while decoding.

    Attributes:
        MESSAGE_SCHEMA: Schema inferred from the field annotations.

    """

    MESSAGE_SCHEMA: ClassVar[MessageSchema] = _SchemaDescriptor()  # type: ignore[assignment]


@dataclass
class Timestamp(Message):
    """An absolute instant as seconds and nanoseconds since the Unix epoch.

    The wire form is chosen by the configured
    :class:`~rpcbridge.timeformat.TimeFormat`, not by the generic field logic.
    """

    seconds: Int64 = 0
    nanos: Int32 = 0

    @classmethod
    def from_seconds(cls, seconds: int) -> Self:
        """Create a timestamp at whole-second granularity."""
        return cls(seconds=seconds)

    @classmethod
    def from_datetime(cls, value: datetime) -> Self:
        """Create a timestamp from a datetime; naive values are taken as UTC."""
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        delta = value - _EPOCH
        seconds = delta.days * 86_400 + delta.seconds
        return cls(seconds=seconds, nanos=delta.microseconds * 1000)

    def to_datetime(self) -> datetime:
        """Return the instant as an aware UTC datetime (microsecond precision)."""
        return _EPOCH + timedelta(seconds=self.seconds, microseconds=self.nanos // 1000)


_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


# ---------------------------------------------------------------------------
# Annotation inference
# ---------------------------------------------------------------------------


def _is_optional_type(python_type: Any) -> tuple[Any, bool]:
    """Check if a type is Optional (X | None) and extract the inner type.

    Returns:
        Tuple of (inner_type, is_nullable).

    """
    origin = get_origin(python_type)
    args = get_args(python_type)

    if origin is UnionType or origin is Union:
        non_none_types = [t for t in args if t is not type(None)]
        if len(non_none_types) == 1 and len(args) == 2:
            return non_none_types[0], True

    return python_type, False


def _split_annotated(python_type: Any) -> tuple[Any, list[Any]]:
    """Unwrap ``Annotated[T, ...]`` and return ``(T, metadata)``."""
    if get_origin(python_type) is Annotated:
        args = get_args(python_type)
        return args[0], list(args[1:])
    return python_type, []


_SIMPLE_TYPES: dict[type, pa.DataType] = {
    bool: pa.bool_(),
    int: pa.int64(),
    float: pa.float64(),
    str: pa.string(),
    bytes: pa.binary(),
}


def _kind_of_arrow_type(arrow_type: pa.DataType) -> Kind:
    """Map a scalar Arrow type to a field kind."""
    if pa.types.is_boolean(arrow_type):
        return Kind.BOOL
    if pa.types.is_signed_integer(arrow_type):
        return Kind.INT64 if arrow_type.bit_width == 64 else Kind.INT32
    if pa.types.is_unsigned_integer(arrow_type):
        return Kind.UINT64 if arrow_type.bit_width == 64 else Kind.UINT32
    if pa.types.is_float64(arrow_type):
        return Kind.DOUBLE
    if pa.types.is_float32(arrow_type):
        return Kind.FLOAT
    if pa.types.is_string(arrow_type) or pa.types.is_large_string(arrow_type):
        return Kind.STRING
    if pa.types.is_binary(arrow_type) or pa.types.is_large_binary(arrow_type):
        return Kind.BYTES
    raise SchemaError(f"Unsupported Arrow type for a message field: {arrow_type}")


def _check_override(base: Any, arrow_type: pa.DataType) -> None:
    """Reject ArrowType overrides that contradict the Python type."""
    if base is int and pa.types.is_integer(arrow_type):
        return
    if base is float and pa.types.is_floating(arrow_type):
        return
    if base in _SIMPLE_TYPES and _kind_of_arrow_type(arrow_type) is _kind_of_arrow_type(_SIMPLE_TYPES[base]):
        return
    raise SchemaError(f"ArrowType({arrow_type}) does not fit Python type {getattr(base, '__name__', base)}")


def _infer_element(python_type: Any) -> tuple[Kind, pa.DataType | None, type[Message] | None, type[IntEnum] | None]:
    """Infer the kind of a single (non-list, non-map) value.

    Returns:
        ``(kind, arrow_type, message_type, enum_type)``

    Raises:
        SchemaError: If the type is not supported.

    """
    base, metadata = _split_annotated(python_type)
    override = next((m.arrow_type for m in metadata if isinstance(m, ArrowType)), None)

    # NewType - unwrap to underlying type
    while hasattr(base, "__supertype__"):
        base = base.__supertype__

    if get_origin(base) in (list, dict):
        raise SchemaError(f"Nested containers are not supported: {python_type}")

    if isinstance(base, type) and issubclass(base, Message):
        if override is not None:
            raise SchemaError(f"ArrowType cannot be applied to message type {base.__name__}")
        return Kind.MESSAGE, None, base, None

    if isinstance(base, type) and issubclass(base, Enum):
        if not issubclass(base, IntEnum):
            raise SchemaError(f"Enum {base.__name__} must be an IntEnum to be carried as an integer code")
        return Kind.ENUM, pa.int32(), None, base

    if base in _SIMPLE_TYPES:
        if override is not None:
            _check_override(base, override)
            return _kind_of_arrow_type(override), override, None, None
        arrow_type = _SIMPLE_TYPES[base]
        return _kind_of_arrow_type(arrow_type), arrow_type, None, None

    raise SchemaError(
        f"Cannot infer a field kind for: {python_type}. "
        f"Use str, bytes, bool, int, float, an IntEnum, a Message subclass, list[T] or dict[str, T]."
    )


def _describe_field(name: str, hint: Any) -> FieldDescriptor:
    """Build the descriptor of one dataclass field from its type hint."""
    outer, metadata = _split_annotated(hint)
    inner, nullable = _is_optional_type(outer)
    inner, inner_metadata = _split_annotated(inner)
    metadata.extend(inner_metadata)

    json_name = next((m.name for m in metadata if isinstance(m, JsonName)), None)
    override = next((m for m in metadata if isinstance(m, ArrowType)), None)

    origin = get_origin(inner)
    args = get_args(inner)
    cardinality = Cardinality.SINGULAR
    element: Any = inner
    if origin is list:
        if not args:
            raise SchemaError(f"list field {name!r} needs an element type")
        cardinality = Cardinality.LIST
        element = args[0]
    elif origin is dict:
        if len(args) != 2:
            raise SchemaError(f"dict field {name!r} needs key and value types")
        if args[0] is not str:
            raise SchemaError(f"dict field {name!r} must have str keys, got {args[0]}")
        cardinality = Cardinality.MAP
        element = args[1]

    if cardinality is not Cardinality.SINGULAR and nullable:
        raise SchemaError(f"{cardinality.value} field {name!r} cannot be nullable")
    if override is not None:
        # An override on a container applies to its elements.
        element = Annotated[element, override]

    kind, arrow_type, message_type, enum_type = _infer_element(element)
    return FieldDescriptor(
        name=name,
        kind=kind,
        cardinality=cardinality,
        arrow_type=arrow_type,
        nullable=nullable,
        message_type=message_type,
        enum_type=enum_type,
        json_name=json_name,
    )


def _build_schema(cls: type[Message]) -> MessageSchema:
    """Derive the schema of *cls* from its dataclass fields."""
    if not (isinstance(cls, type) and issubclass(cls, Message)):
        raise SchemaError(f"{cls!r} is not a Message subclass")
    if not is_dataclass(cls):
        raise SchemaError(f"{cls.__name__} must be a dataclass")
    if cls.__dataclass_params__.frozen:  # type: ignore[attr-defined]
        raise SchemaError(f"{cls.__name__} must be a mutable dataclass (frozen=False)")

    try:
        type_hints = get_type_hints(cls, include_extras=True)
    except (NameError, AttributeError) as exc:
        raise SchemaError(f"Failed to resolve type hints for {cls.__name__}: {exc}") from exc

    descriptors: list[FieldDescriptor] = []
    for f in dataclass_fields(cls):
        try:
            descriptors.append(_describe_field(f.name, type_hints.get(f.name, f.type)))
        except SchemaError as exc:
            raise SchemaError(f"Cannot describe {cls.__name__}.{f.name}: {exc}") from exc
    return MessageSchema(message_type=cls, fields=tuple(descriptors))


def _build_rename_table(cls: type[Message]) -> RenameTable:
    """Build the wire key <-> field name table, rejecting duplicate wire keys."""
    to_wire: dict[str, str] = {}
    to_field: dict[str, str] = {}
    for fd in schema_of(cls):
        key = fd.json_name or fd.name
        if key in to_field:
            raise SchemaError(f"same field {key} is specified twice in {cls.__name__}")
        to_field[key] = fd.name
        to_wire[fd.name] = key
    return RenameTable(message_type=cls, to_wire=MappingProxyType(to_wire), to_field=MappingProxyType(to_field))


# ---------------------------------------------------------------------------
# Process-wide caches
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class _Failure:
    error: BridgeError


class _BuildOnceCache[V]:
    """Per-type cache whose entries are built at most once.

    Builds run under a lock so concurrent first lookups observe the same
    outcome; reads after that take no lock.  Build failures are cached too
    and each lookup raises a fresh copy chained to the original.
    """

    __slots__ = ("_build", "_entries", "_lock")

    def __init__(self, build: Callable[[type[Message]], V]) -> None:
        self._build = build
        self._entries: dict[type, V | _Failure] = {}
        self._lock = threading.RLock()

    def get(self, cls: type[Message]) -> V:
        entry = self._entries.get(cls)
        if entry is None:
            with self._lock:
                entry = self._entries.get(cls)
                if entry is None:
                    try:
                        entry = self._build(cls)
                    except BridgeError as exc:
                        entry = _Failure(exc)
                    self._entries[cls] = entry
        if isinstance(entry, _Failure):
            raise type(entry.error)(*entry.error.args) from entry.error
        return entry


_schemas: _BuildOnceCache[MessageSchema] = _BuildOnceCache(_build_schema)
_rename_tables: _BuildOnceCache[RenameTable] = _BuildOnceCache(_build_rename_table)


def schema_of(cls: type[Message]) -> MessageSchema:
    """Return the cached schema of a message type.

    Raises:
        SchemaError: If the type cannot be described.  An equal error,
            chained to the first, is raised for every later lookup.

    """
    return _schemas.get(cls)


def rename_table(cls: type[Message]) -> RenameTable:
    """Return the cached rename table of a message type.

    Raises:
        SchemaError: If two fields resolve to the same wire key, or the
            schema cannot be built.

    """
    return _rename_tables.get(cls)


def new_message[M: Message](cls: type[M]) -> M:
    """Construct *cls*, filling zero values for fields without a default."""
    schema = schema_of(cls)
    kwargs: dict[str, Any] = {}
    for f in dataclass_fields(cls):  # type: ignore[arg-type]
        if not f.init or f.default is not MISSING or f.default_factory is not MISSING:
            continue
        fd = schema.by_name(f.name)
        assert fd is not None
        kwargs[f.name] = fd.zero_value()
    return cls(**kwargs)
