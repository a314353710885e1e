"""Socket.IO server definition.

This module instantiates the Socket.IO server used for real-time
communication and wires every inbound event to the ``EventRouter``.
The router decides who receives what; this module only delivers the
``Outbound`` records it returns. Each Socket.IO session id doubles as
the router's session id.
"""

from __future__ import annotations

import logging
import os
from typing import Iterable

import socketio

from .router import EventRouter, Outbound
from .store import ChatStore

log = logging.getLogger("uvicorn.error")

CLIENT_URL = os.getenv("CLIENT_URL", "http://localhost:5173")
PING_TIMEOUT = int(os.getenv("SOCKET_PING_TIMEOUT", "25"))
PING_INTERVAL = int(os.getenv("SOCKET_PING_INTERVAL", "20"))

# Create the Socket.IO server. We choose async_mode="asgi" because the
# application will run in an ASGI environment via Uvicorn.
sio = socketio.AsyncServer(
    async_mode="asgi",
    cors_allowed_origins=[CLIENT_URL],
    ping_timeout=PING_TIMEOUT,
    ping_interval=PING_INTERVAL,
)

store = ChatStore()
router = EventRouter(store)


async def deliver(server: socketio.AsyncServer, outbound: Iterable[Outbound]) -> None:
    """Emit each record to its recipients, in the order produced."""
    for out in outbound:
        if not out.to:
            continue
        # Every client sits in a room named after its own sid.
        await server.emit(out.event, out.data, to=list(out.to))


@sio.event
async def connect(sid, environ, auth=None):
    """Called when a client connects to the socket server."""
    router.connect(sid)


@sio.event
async def disconnect(sid, reason=None):
    """Called when a client disconnects from the socket server."""
    await deliver(sio, await router.disconnect(sid))


def _relay(event: str) -> None:
    async def handler(sid, data=None):
        await deliver(sio, await router.dispatch(sid, event, data))

    handler.__name__ = f"on_{event}"
    sio.on(event, handler)


for _event in router.events:
    _relay(_event)
