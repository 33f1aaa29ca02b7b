"""Event middleware for logging."""

from __future__ import annotations

import logging
from typing import Optional

from contextforge.events.types import Event

logger = logging.getLogger(__name__)


class EventLogger:
    """Logs all events for debugging."""

    async def __call__(self, event: Event) -> Optional[Event]:
        logger.debug(
            "[%s] -> %s (id=%s) %s",
            event.source,
            event.event_type.value,
            event.event_id[:8],
            sorted(event.payload.keys()),
        )
        return event
