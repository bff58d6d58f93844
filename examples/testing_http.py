"""Testing a bridge without a running server.

``make_test_client`` wraps a Falcon ``TestClient`` around the WSGI app so
routing, decoding and encoding run in-process with zero network I/O.

Run::

    python examples/testing_http.py
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from rpcbridge import Bridge, Int32, Message, ServiceRegistry, http_rule
from rpcbridge.http import make_test_client

# ---------------------------------------------------------------------------
# 1. Define messages, a Protocol and an implementation
# ---------------------------------------------------------------------------


@dataclass
class GreetRequest(Message):
    """Who to greet, and how often."""

    name: str = ""
    times: Int32 = 1


@dataclass
class Greeting(Message):
    """The greeting."""

    text: str = ""


registry = ServiceRegistry()


@registry.service("demo.Greeter")
class Greeter(Protocol):
    """Says hello."""

    @http_rule("GET", "v1/greet/{name}")
    def greet(self, request: GreetRequest) -> Greeting:
        """Greet by name."""
        ...


class GreeterImpl:
    """Concrete implementation of Greeter."""

    def greet(self, request: GreetRequest) -> Greeting:
        """Greet by name."""
        return Greeting(text=" ".join([f"Hello, {request.name}!"] * request.times))


# ---------------------------------------------------------------------------
# 2. Exercise it through the in-process client
# ---------------------------------------------------------------------------


def main() -> None:
    """Run the HTTP testing examples."""
    bridge = Bridge(registry)
    bridge.register_service(Greeter, GreeterImpl())
    client = make_test_client(bridge)

    # Path parameters fill the request
    resp = client.simulate_get("/v1/greet/World")
    assert resp.status_code == 200
    print(f"GET /v1/greet/World -> {resp.text}")

    # A JSON body can supply the remaining fields
    resp = client.simulate_get("/v1/greet/World", json={"times": 2})
    assert resp.json == {"text": "Hello, World! Hello, World!"}
    print(f"GET /v1/greet/World times=2 -> {resp.text}")

    # Client errors are 400 with a plain-text reason
    resp = client.simulate_get("/v1/greet/World", json={"times": "twice"})
    assert resp.status_code == 400
    print(f"bad body -> {resp.status_code} {resp.text}")

    # Unrouted methods are 405 and list what is allowed
    resp = client.simulate_post("/v1/greet/World")
    assert resp.status_code == 405
    print(f"POST -> {resp.status_code} Allow: {resp.headers['allow']}")

    print("All assertions passed!")


if __name__ == "__main__":
    main()
