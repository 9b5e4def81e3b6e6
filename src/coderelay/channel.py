"""Outbound side of a session channel.

The supervisor only ever talks to a :class:`Channel`; the transport behind
it is a WebSocket in production and an in‑memory recorder in tests.  Once
a channel is closed, either because the client went away or because a
send failed, further events are dropped.
"""

from __future__ import annotations

import logging

from fastapi import WebSocket

from .models import OutputEvent

logger = logging.getLogger("coderelay.channel")


class Channel:
    """Ordered delivery of events to one client."""

    def __init__(self) -> None:
        self.closed = False

    async def send(self, event: OutputEvent) -> None:
        if self.closed:
            return
        try:
            await self._deliver(event)
        except Exception as exc:
            # Transport failures end the channel; the receive loop will see the close.
            logger.warning("Failed to deliver %s event: %s", event.type, exc)
            self.closed = True

    def mark_closed(self) -> None:
        self.closed = True

    async def _deliver(self, event: OutputEvent) -> None:
        raise NotImplementedError


class WebSocketChannel(Channel):
    """Channel backed by a FastAPI/Starlette WebSocket."""

    def __init__(self, websocket: WebSocket) -> None:
        super().__init__()
        self.websocket = websocket

    async def _deliver(self, event: OutputEvent) -> None:
        await self.websocket.send_json(event.model_dump())
