"""
Event Broadcaster
=================

Bridges the in-process EventBus to websocket clients on /ws/events.

Every bus event is forwarded as:

    {"type": "auto-mode:event", "payload": {"type": "auto_mode_progress", ...}}

Each client gets its own bounded queue drained by a sender coroutine, so
events reach a client in emit order and a slow client never blocks the
scheduler. When a client's queue is full, new events for that client are
dropped and counted.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

from fastapi import WebSocket, WebSocketDisconnect

from automode.event_bus import WILDCARD, EventBus

logger = logging.getLogger(__name__)

# Messages buffered per client before new ones are dropped
MAX_QUEUED_MESSAGES = 1000


@dataclass(eq=False)
class _Client:
    websocket: WebSocket
    queue: asyncio.Queue
    dropped: int = 0


class EventBroadcaster:
    """
    Fans bus events out to connected websocket clients.

    Usage:
        broadcaster = EventBroadcaster()
        broadcaster.attach(bus)

        @app.websocket("/ws/events")
        async def events(websocket: WebSocket):
            await broadcaster.serve(websocket)
    """

    def __init__(self, max_queued_messages: int = MAX_QUEUED_MESSAGES):
        self.max_queued_messages = max_queued_messages
        self._clients: set[_Client] = set()
        self._unsubscribe: Optional[Callable[[], None]] = None

    @property
    def client_count(self) -> int:
        return len(self._clients)

    def attach(self, bus: EventBus) -> None:
        """Subscribe to every event on bus. Calling again replaces the subscription."""
        self.detach()
        self._unsubscribe = bus.subscribe(WILDCARD, self._on_event)

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def _on_event(self, event_type: str, payload: dict[str, Any]) -> None:
        message = {"type": event_type, "payload": payload}
        for client in list(self._clients):
            try:
                client.queue.put_nowait(message)
            except asyncio.QueueFull:
                client.dropped += 1
                if client.dropped == 1 or client.dropped % 100 == 0:
                    logger.warning(
                        "Websocket client is not keeping up, %d event(s) dropped", client.dropped
                    )

    def _add_client(self, websocket: WebSocket) -> _Client:
        client = _Client(websocket=websocket, queue=asyncio.Queue(maxsize=self.max_queued_messages))
        self._clients.add(client)
        return client

    async def _send_loop(self, client: _Client) -> None:
        while True:
            message = await client.queue.get()
            await client.websocket.send_json(message)

    async def _receive_loop(self, client: _Client) -> None:
        # Clients do not send commands; reading only detects disconnects
        while True:
            await client.websocket.receive_text()

    async def serve(self, websocket: WebSocket) -> None:
        """Accept the connection and forward events until the client goes away."""
        await websocket.accept()
        client = self._add_client(websocket)
        logger.debug("Event websocket connected (%d client(s))", self.client_count)

        sender = asyncio.create_task(self._send_loop(client))
        receiver = asyncio.create_task(self._receive_loop(client))
        try:
            done, pending = await asyncio.wait(
                {sender, receiver}, return_when=asyncio.FIRST_COMPLETED
            )
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            for task in done:
                if task.cancelled():
                    continue
                exc = task.exception()
                if exc is not None and not isinstance(exc, WebSocketDisconnect):
                    logger.warning("Event websocket closed with error: %s", exc)
        finally:
            sender.cancel()
            receiver.cancel()
            self._clients.discard(client)
            logger.debug("Event websocket disconnected (%d client(s))", self.client_count)
