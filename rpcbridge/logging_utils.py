# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Logging helpers: a single-line JSON formatter and handler setup.

:class:`BridgeJsonFormatter` writes one JSON object per record carrying every
field attached through ``extra`` (the access log's ``http_status``,
``duration_ms`` and ``rpc_method``), tagged with the current request ID.

This module is **not** auto-imported by ``rpcbridge``; import it explicitly::

    from rpcbridge.logging_utils import BridgeJsonFormatter
"""

from __future__ import annotations

import base64
import json
import logging
import sys
from datetime import UTC, datetime
from typing import Literal

from rpcbridge.bridge import _current_request_id

__all__ = ["BridgeJsonFormatter", "configure_logging"]

# Attribute names every LogRecord has; anything else came from ``extra``.
_DEFAULT_RECORD_ATTRS: frozenset[str] = frozenset(logging.LogRecord("", 0, "", 0, "", (), None).__dict__.keys()) | {
    "message",
    "asctime",
}

_RESERVED_KEYS: frozenset[str] = frozenset({"timestamp", "level", "logger", "message", "exception", "stack_info"})


def _json_default(value: object) -> object:
    if isinstance(value, (set, frozenset)):
        return sorted(value, key=str)
    if isinstance(value, (bytes, bytearray)):
        return base64.b64encode(value).decode("ascii")
    return str(value)


class BridgeJsonFormatter(logging.Formatter):
    """Write each record as one JSON object.

    ``timestamp`` (RFC 3339, UTC, milliseconds), ``level``, ``logger`` and
    ``message`` come first and cannot be overwritten by ``extra``.  Records
    emitted while a request is being served get that request's
    ``request_id`` even when the caller did not bind one, so application
    logs line up with the access log.  Sets are written as sorted lists and
    bytes as base64; other values without a JSON form fall back to ``str()``.
    """

    def formatTime(self, record: logging.LogRecord, datefmt: str | None = None) -> str:  # noqa: N802
        """Format the record time as RFC 3339 UTC unless *datefmt* is given."""
        if datefmt is not None:
            return super().formatTime(record, datefmt)
        created = datetime.fromtimestamp(record.created, UTC)
        return created.isoformat(timespec="milliseconds").replace("+00:00", "Z")

    def format(self, record: logging.LogRecord) -> str:
        """Format a log record as a single-line JSON string."""
        record.message = record.getMessage()
        extra = {k: v for k, v in record.__dict__.items() if k not in _DEFAULT_RECORD_ATTRS and k not in _RESERVED_KEYS}
        obj: dict[str, object] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.message,
        }
        request_id = extra.pop("request_id", None) or _current_request_id.get()
        if request_id:
            obj["request_id"] = request_id
        obj.update(extra)
        if record.exc_info and record.exc_info[1]:
            obj["exception"] = self.formatException(record.exc_info)
        if record.stack_info:
            obj["stack_info"] = self.formatStack(record.stack_info)
        return json.dumps(obj, default=_json_default)


def configure_logging(level: str | int = "INFO", fmt: Literal["text", "json"] = "text") -> logging.Handler:
    """Attach a stderr handler to the ``rpcbridge`` logger hierarchy.

    Args:
        level: Level name or number for the ``rpcbridge`` logger.
        fmt: ``"text"`` for a plain line format, ``"json"`` for
            :class:`BridgeJsonFormatter`.

    Returns:
        The installed handler.  Calling again replaces it.

    """
    logger = logging.getLogger("rpcbridge")
    logger.setLevel(level.upper() if isinstance(level, str) else level)
    for existing in [h for h in logger.handlers if getattr(h, "_rpcbridge_handler", False)]:
        logger.removeHandler(existing)
    handler = logging.StreamHandler(sys.stderr)
    handler._rpcbridge_handler = True  # type: ignore[attr-defined]
    if fmt == "json":
        handler.setFormatter(BridgeJsonFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    logger.addHandler(handler)
    return handler
