# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Tests for the epoch and RFC 3339 timestamp formats."""

from __future__ import annotations

import pytest

from rpcbridge import EPOCH_TIME_FORMAT, ISO_TIME_FORMAT, DecodeError, Timestamp, time_format_by_name


class TestEpochFormat:
    """Decimal seconds as a string."""

    def test_marshal(self) -> None:
        """Seconds are written as a decimal string; nanos are dropped."""
        assert EPOCH_TIME_FORMAT.marshal(Timestamp(seconds=1758454323, nanos=999)) == "1758454323"

    def test_unmarshal(self) -> None:
        """Decimal strings parse to whole seconds."""
        assert EPOCH_TIME_FORMAT.unmarshal("1758454323") == Timestamp(seconds=1758454323)
        assert EPOCH_TIME_FORMAT.unmarshal("-5") == Timestamp(seconds=-5)

    @pytest.mark.parametrize("value", ["", "12.5", "abc", "1e9", " 12"])
    def test_unmarshal_rejects_non_integers(self, value: str) -> None:
        """Anything but an optionally signed integer is rejected."""
        with pytest.raises(DecodeError, match="invalid epoch timestamp"):
            EPOCH_TIME_FORMAT.unmarshal(value)

    def test_unmarshal_requires_string(self) -> None:
        """JSON numbers are not accepted."""
        with pytest.raises(DecodeError, match="expected string"):
            EPOCH_TIME_FORMAT.unmarshal(1758454323)


class TestIsoFormat:
    """RFC 3339 in UTC."""

    def test_marshal(self) -> None:
        """Timestamps are written in UTC with a Z suffix."""
        assert ISO_TIME_FORMAT.marshal(Timestamp(seconds=1758454323)) == "2025-09-21T11:32:03Z"

    def test_marshal_drops_fraction(self) -> None:
        """Nanos are not written."""
        assert ISO_TIME_FORMAT.marshal(Timestamp(seconds=0, nanos=500_000_000)) == "1970-01-01T00:00:00Z"

    @pytest.mark.parametrize(
        "value",
        [
            "2025-09-21T11:32:03Z",
            "2025-09-21T11:32:03.987654Z",
            "2025-09-21T13:32:03+02:00",
            "2025-09-21T11:32:03+00:00",
        ],
    )
    def test_unmarshal(self, value: str) -> None:
        """Offsets are normalized and fractional seconds truncated."""
        assert ISO_TIME_FORMAT.unmarshal(value) == Timestamp(seconds=1758454323)

    def test_unmarshal_requires_offset(self) -> None:
        """A timestamp without an offset is ambiguous and rejected."""
        with pytest.raises(DecodeError, match="no timezone offset"):
            ISO_TIME_FORMAT.unmarshal("2025-09-21T11:32:03")

    def test_unmarshal_rejects_garbage(self) -> None:
        """Unparseable strings raise DecodeError."""
        with pytest.raises(DecodeError, match="invalid RFC 3339"):
            ISO_TIME_FORMAT.unmarshal("yesterday")

    def test_unmarshal_requires_string(self) -> None:
        """Non-strings are rejected."""
        with pytest.raises(DecodeError):
            ISO_TIME_FORMAT.unmarshal(None)


class TestLookup:
    """Configuration names."""

    def test_by_name(self) -> None:
        """Names are case-insensitive."""
        assert time_format_by_name("epoch") is EPOCH_TIME_FORMAT
        assert time_format_by_name("ISO") is ISO_TIME_FORMAT

    def test_unknown(self) -> None:
        """Unknown names raise ValueError."""
        with pytest.raises(ValueError, match="Unknown time format"):
            time_format_by_name("unix-millis")
