# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Wire formats for the well-known :class:`~rpcbridge.schema.Timestamp`.

Two interchangeable strategies are provided; the active one is a
configuration choice (``Bridge(time_format=...)``), never auto-detected:

    EPOCH_TIME_FORMAT : "1758454323"            (decimal seconds, as a string)
    ISO_TIME_FORMAT   : "2025-09-21T11:32:03Z"  (RFC 3339, UTC)

Both work at whole-second granularity: fractional seconds are dropped when
encoding and truncated when decoding.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from rpcbridge.errors import DecodeError
from rpcbridge.schema import Timestamp

__all__ = [
    "EPOCH_TIME_FORMAT",
    "ISO_TIME_FORMAT",
    "TimeFormat",
    "time_format_by_name",
]


@dataclass(frozen=True)
class TimeFormat:
    """A pair of conversions between :class:`Timestamp` and its wire value.

    Attributes:
        name: Short identifier used by configuration (``"epoch"``, ``"iso"``).
        marshal: Converts a timestamp to its JSON value.
        unmarshal: Converts a JSON value to a timestamp; raises
            :class:`~rpcbridge.errors.DecodeError` on malformed input.

    """

    name: str
    marshal: Callable[[Timestamp], Any]
    unmarshal: Callable[[Any], Timestamp]


_EPOCH_RE = re.compile(r"[+-]?[0-9]+")


def _require_string(value: Any) -> str:
    if not isinstance(value, str):
        raise DecodeError(f"expected string for timestamp, got {type(value).__name__}")
    return value


def _epoch_unmarshal(value: Any) -> Timestamp:
    s = _require_string(value)
    if not _EPOCH_RE.fullmatch(s):
        raise DecodeError(f"invalid epoch timestamp {s!r}")
    return Timestamp.from_seconds(int(s))


def _epoch_marshal(ts: Timestamp) -> str:
    return str(ts.seconds)


def _iso_unmarshal(value: Any) -> Timestamp:
    s = _require_string(value)
    try:
        parsed = datetime.fromisoformat(s)
    except ValueError as exc:
        raise DecodeError(f"invalid RFC 3339 timestamp {s!r}: {exc}") from exc
    if parsed.tzinfo is None:
        raise DecodeError(f"RFC 3339 timestamp {s!r} has no timezone offset")
    # Whole seconds only.
    return Timestamp.from_seconds(Timestamp.from_datetime(parsed).seconds)


def _iso_marshal(ts: Timestamp) -> str:
    return Timestamp.from_seconds(ts.seconds).to_datetime().astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


EPOCH_TIME_FORMAT = TimeFormat(name="epoch", marshal=_epoch_marshal, unmarshal=_epoch_unmarshal)
"""Seconds since the epoch as a decimal string."""

ISO_TIME_FORMAT = TimeFormat(name="iso", marshal=_iso_marshal, unmarshal=_iso_unmarshal)
"""RFC 3339 in UTC with a ``Z`` suffix; fractional seconds truncated on decode."""

_BY_NAME = {tf.name: tf for tf in (EPOCH_TIME_FORMAT, ISO_TIME_FORMAT)}


def time_format_by_name(name: str) -> TimeFormat:
    """Look up a built-in time format by its configuration name.

    Raises:
        ValueError: If *name* is not ``"epoch"`` or ``"iso"``.

    """
    try:
        return _BY_NAME[name.lower()]
    except KeyError:
        raise ValueError(f"Unknown time format {name!r}; expected one of {sorted(_BY_NAME)}") from None
