"""
Event Bus
=========

In-process publish/subscribe used by the scheduler to report progress.

- emit() is synchronous and never raises because of a subscriber
- subscribers may be plain functions or coroutine functions; coroutine
  results are scheduled on the running loop and awaited in the background
- subscribe("*", handler) receives every event
- no persistence and no replay: late subscribers miss earlier events

Handlers are called with (event_type, payload).

Usage:
    bus = EventBus()
    unsubscribe = bus.subscribe("auto-mode:event", lambda t, p: print(p["type"]))
    bus.emit("auto-mode:event", {"type": "auto_mode_started"})
    unsubscribe()
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Callable

_logger = logging.getLogger(__name__)

WILDCARD = "*"

EventHandler = Callable[[str, dict[str, Any]], Any]


class EventBus:
    """Synchronous fan-out of (event_type, payload) to subscribers."""

    def __init__(self) -> None:
        self._subscribers: dict[str, list[EventHandler]] = {}
        self._pending: set[asyncio.Task] = set()

    def subscribe(self, event_type: str, handler: EventHandler) -> Callable[[], None]:
        """Register handler; returns a function that removes it again."""
        self._subscribers.setdefault(event_type, []).append(handler)

        def unsubscribe() -> None:
            handlers = self._subscribers.get(event_type, [])
            if handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    def subscriber_count(self, event_type: str) -> int:
        return len(self._subscribers.get(event_type, []))

    def emit(self, event_type: str, payload: dict[str, Any]) -> None:
        handlers = list(self._subscribers.get(event_type, []))
        if event_type != WILDCARD:
            handlers += self._subscribers.get(WILDCARD, [])

        for handler in handlers:
            try:
                result = handler(event_type, payload)
            except Exception:
                _logger.exception("Event handler failed for %s", event_type)
                continue
            if inspect.isawaitable(result):
                self._schedule(event_type, result)

    def _schedule(self, event_type: str, awaitable: Any) -> None:
        try:
            task = asyncio.ensure_future(awaitable)
        except RuntimeError:
            _logger.warning("Dropping async handler for %s: no running event loop", event_type)
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            return

        self._pending.add(task)

        def _done(t: asyncio.Task) -> None:
            self._pending.discard(t)
            if not t.cancelled() and t.exception() is not None:
                _logger.error(
                    "Async event handler failed for %s: %s", event_type, t.exception()
                )

        task.add_done_callback(_done)

    async def drain(self) -> None:
        """Wait for in-flight async handlers (used at shutdown and in tests)."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
