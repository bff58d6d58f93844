"""HTTP server example using Falcon (WSGI) and waitress.

Requires the CLI extra: ``pip install rpc-bridge[cli]``

Start the server::

    python examples/http_server.py

or through the CLI::

    rpc-bridge serve examples.http_server:build_bridge --port 8234

Then call it from another terminal::

    rpc-bridge call http://127.0.0.1:8234 POST v1/notes title=groceries "tags=[\\"home\\"]"
    rpc-bridge call http://127.0.0.1:8234 GET v1/notes/1
"""

from __future__ import annotations

import socket
import sys
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Protocol

import waitress

from rpcbridge import (
    ISO_TIME_FORMAT,
    Bridge,
    CallContext,
    Message,
    ServiceRegistry,
    Timestamp,
    http_rule,
)
from rpcbridge.http import make_wsgi_app
from rpcbridge.logging_utils import configure_logging

PORT = 8234

registry = ServiceRegistry()


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------


@dataclass
class Note(Message):
    """A stored note."""

    id: str = ""
    title: str = ""
    body: str = ""
    tags: list[str] = field(default_factory=list)
    created_at: Timestamp | None = None


@dataclass
class NoteRef(Message):
    """Identifies one note."""

    id: str = ""


# ---------------------------------------------------------------------------
# Service definition
# ---------------------------------------------------------------------------


@registry.service("demo.Notes")
class NoteService(Protocol):
    """A tiny note store."""

    @http_rule("POST", "v1/notes")
    def create_note(self, request: Note) -> Note:
        """Store a note and assign it an ID."""
        ...

    @http_rule("GET", "v1/notes/{id}")
    def get_note(self, request: NoteRef) -> Note:
        """Fetch a note by ID."""
        ...

    @http_rule("DELETE", "v1/notes/{id}")
    def delete_note(self, request: NoteRef) -> None:
        """Remove a note."""
        ...


class NoteServiceImpl:
    """In-memory implementation of NoteService."""

    def __init__(self) -> None:
        self._notes: dict[str, Note] = {}

    def create_note(self, request: Note, ctx: CallContext) -> Note:
        """Store a note, logging through the request-scoped logger."""
        request.id = str(len(self._notes) + 1)
        request.created_at = Timestamp.from_datetime(datetime.now(UTC).replace(microsecond=0))
        self._notes[request.id] = request
        ctx.logger.info("Created note %s", request.id, extra={"note_id": request.id})
        return request

    def get_note(self, request: NoteRef) -> Note:
        """Fetch a note by ID."""
        note = self._notes.get(request.id)
        if note is None:
            raise LookupError(f"note {request.id} not found")
        return note

    def delete_note(self, request: NoteRef) -> None:
        """Remove a note."""
        self._notes.pop(request.id, None)


def build_bridge() -> Bridge:
    """Create a bridge serving a fresh note store."""
    bridge = Bridge(registry, time_format=ISO_TIME_FORMAT)
    bridge.register_service(NoteService, NoteServiceImpl())
    return bridge


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------


def _find_free_port() -> int:
    """Find a free TCP port on localhost."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return int(s.getsockname()[1])


def main() -> None:
    """Start the HTTP server."""
    port = int(sys.argv[1]) if len(sys.argv) > 1 else PORT
    if port == 0:
        port = _find_free_port()

    configure_logging("INFO")
    app = make_wsgi_app(build_bridge())

    print(f"Serving demo.Notes on http://127.0.0.1:{port}", flush=True)
    waitress.serve(app, host="127.0.0.1", port=port, _quiet=True)


if __name__ == "__main__":
    main()
