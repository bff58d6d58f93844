# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Shared fixtures for the rpc-bridge test suite."""

from __future__ import annotations

import falcon.testing
import pytest

from rpcbridge import EPOCH_TIME_FORMAT, ISO_TIME_FORMAT, Bridge, CodecOptions
from rpcbridge.http import make_test_client

from .services import make_bridge


@pytest.fixture
def iso_options() -> CodecOptions:
    """Codec options with RFC 3339 timestamps."""
    return CodecOptions(time_format=ISO_TIME_FORMAT)


@pytest.fixture
def epoch_options() -> CodecOptions:
    """Codec options with epoch-seconds timestamps."""
    return CodecOptions(time_format=EPOCH_TIME_FORMAT)


@pytest.fixture
def bridge() -> Bridge:
    """A bridge serving the seeded user service with ISO timestamps."""
    return make_bridge()


@pytest.fixture
def client(bridge: Bridge) -> falcon.testing.TestClient:
    """Falcon test client for :func:`bridge`."""
    return make_test_client(bridge)
