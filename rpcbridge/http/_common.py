# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Shared constants and exception for the HTTP layer."""

from __future__ import annotations

from http import HTTPStatus

import falcon

_JSON_CONTENT_TYPE = falcon.MEDIA_JSON
_TEXT_CONTENT_TYPE = falcon.MEDIA_TEXT
_REQUEST_ID_HEADER = "X-Request-ID"
_INTERNAL_ERROR_PREFIX = "internal server error: "


class _HttpError(Exception):
    """Internal exception for HTTP-layer errors with status codes."""

    __slots__ = ("cause", "headers", "status_code")

    def __init__(
        self, cause: BaseException, *, status_code: HTTPStatus, headers: dict[str, str] | None = None
    ) -> None:
        self.cause = cause
        self.status_code = status_code
        self.headers = headers or {}

    @property
    def body(self) -> str:
        """Plain-text response body."""
        if self.status_code >= HTTPStatus.INTERNAL_SERVER_ERROR:
            return f"{_INTERNAL_ERROR_PREFIX}{self.cause}"
        return str(self.cause)
