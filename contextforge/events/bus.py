"""Async event bus used to surface build outcomes to observers."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import Awaitable, Callable, Optional

from contextforge.events.types import Event, EventType

logger = logging.getLogger(__name__)

EventHandler = Callable[[Event], Awaitable[None]]
Middleware = Callable[[Event], Awaitable[Optional[Event]]]


class EventBus:
    """Async pub/sub event bus with middleware and an event log."""

    def __init__(self, max_log_size: int = 100) -> None:
        self._subscribers: dict[EventType, list[EventHandler]] = defaultdict(list)
        self._event_log: list[Event] = []
        self._middleware: list[Middleware] = []
        self._max_log_size = max_log_size

    def subscribe(self, event_type: EventType, handler: EventHandler) -> Callable[[], None]:
        """Register a handler; returns a function that unsubscribes it."""
        self._subscribers[event_type].append(handler)

        def _unsubscribe() -> None:
            handlers = self._subscribers.get(event_type, [])
            if handler in handlers:
                handlers.remove(handler)

        return _unsubscribe

    async def publish(self, event: Event) -> None:
        """Publish an event to all subscribers of its type.

        Handler failures are logged and never reach the publisher.
        """
        processed: Optional[Event] = event
        for mw in self._middleware:
            processed = await mw(processed)
            if processed is None:
                return
        event = processed

        self._event_log.append(event)
        if len(self._event_log) > self._max_log_size:
            del self._event_log[: len(self._event_log) - self._max_log_size]

        handlers = list(self._subscribers.get(event.event_type, []))
        results = await asyncio.gather(
            *(handler(event) for handler in handlers), return_exceptions=True
        )
        for result in results:
            if isinstance(result, Exception):
                logger.error(
                    "Handler error for %s: %s", event.event_type.value, result
                )

    async def emit(self, event_type: EventType, payload: dict, source: str = "assembler") -> None:
        await self.publish(Event(event_type=event_type, payload=payload, source=source))

    def add_middleware(self, middleware: Middleware) -> None:
        """Add a middleware function to the processing chain."""
        self._middleware.append(middleware)

    def get_event_log(self, event_type: Optional[EventType] = None) -> list[Event]:
        """Retrieve logged events, optionally filtered by type."""
        if event_type is None:
            return list(self._event_log)
        return [e for e in self._event_log if e.event_type == event_type]

    def clear_log(self) -> None:
        self._event_log.clear()
