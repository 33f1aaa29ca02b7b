"""Event types and data structures for the ContextForge event system."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class EventType(str, Enum):
    """Events published while assembling prompts."""

    PROMPT_BUILT = "prompt:built"
    PROMPT_ERROR = "prompt:error"
    CACHE_HIT = "prompt:cache_hit"
    OPTIMIZATION_APPLIED = "prompt:optimization_applied"


@dataclass
class Event:
    """A single published event."""

    event_type: EventType
    payload: dict[str, Any]
    source: str = "assembler"
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
