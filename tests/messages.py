# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Message types shared by the test suite."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Annotated, Any

from rpcbridge import Float32, Int32, JsonName, Message, Timestamp, UInt32, UInt64


class Role(IntEnum):
    """User role, carried as an integer code."""

    UNKNOWN = 0
    ADMIN = 1
    MEMBER = 2


@dataclass
class City(Message):
    """A city."""

    name: str = ""
    pincode: Int32 = 0
    state: str = ""
    country: str = ""


@dataclass
class Address(Message):
    """A postal address."""

    first_line: str = ""
    second_line: str = ""
    city: City | None = None


@dataclass
class TestUser(Message):
    """A user with nested, repeated and map fields."""

    __test__ = False

    id: str = ""
    name: str = ""
    age: Int32 = 0
    created_at: Timestamp | None = None
    emails: list[str] = field(default_factory=list)
    scores: dict[str, Int32] = field(default_factory=dict)
    friends_loc: dict[str, Address] = field(default_factory=dict)
    my_addresses: list[Address] = field(default_factory=list)


@dataclass
class Profile(Message):
    """One field of every scalar kind."""

    user_id: Annotated[str, JsonName("userId")] = ""
    avatar: bytes = b""
    rating: Float32 = 0.0
    balance: float = 0.0
    followers: UInt64 = 0
    following: UInt32 = 0
    karma: int = 0
    verified: bool = False
    role: Role = Role.UNKNOWN
    nickname: str | None = None
    roles: list[Role] = field(default_factory=list)


@dataclass
class Money(Message):
    """Encodes itself as ``"<units> <currency>"``."""

    units: int = 0
    currency: str = ""

    def marshal_json(self) -> Any:
        """Return the compact string form."""
        return f"{self.units} {self.currency}"

    def unmarshal_json(self, data: Any) -> None:
        """Parse the compact string form."""
        units, currency = str(data).split(" ", 1)
        self.units = int(units)
        self.currency = currency


@dataclass
class Wallet(Message):
    """Holds override-encoded values."""

    owner: str = ""
    balance: Money | None = None
    history: list[Money] = field(default_factory=list)


@dataclass
class Empty(Message):
    """No fields."""


@dataclass
class GetUserRequest(Message):
    """Look up a user by id."""

    id: str = ""


@dataclass
class AddressRequest(Message):
    """Look up one of a user's friends' addresses."""

    id: str = ""
    friend: str = ""


@dataclass
class WhoAmI(Message):
    """Request details seen by the implementation."""

    request_id: str = ""
    http_method: str = ""
    path: str = ""
    path_params: dict[str, str] = field(default_factory=dict)
