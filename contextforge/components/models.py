"""Read-only input records supplied by external collaborators."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Union

from contextforge.errors import InputShapeError

WorldInfo = Union[str, list, dict, None]

USER_SENDER_IDS = ("user", "User")


def _timestamp(value: Any) -> float:
    """Numeric timestamp; missing or empty means 0."""
    if value is None or value == "":
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        raise InputShapeError(
            f"Invalid message timestamp: {value!r} (expected a number)"
        ) from None


@dataclass(frozen=True)
class CharacterProfile:
    """A character card's prompt-relevant fields."""

    name: str = ""
    description: str = ""
    personality: str = ""
    scenario: str = ""
    first_mes: str = ""
    mes_example: str = ""
    system_prompt: str = ""
    world_info: WorldInfo = None
    id: Optional[str] = None

    @property
    def identity(self) -> str:
        """Opaque identity used for cache keys and metadata."""
        return self.id or self.name or "unknown"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CharacterProfile":
        """Create a profile from ``{id?, data: {...}}`` or a flat mapping."""
        fields = data.get("data")
        if not isinstance(fields, dict):
            fields = data
        return cls(
            name=fields.get("name") or "",
            description=fields.get("description") or "",
            personality=fields.get("personality") or "",
            scenario=fields.get("scenario") or "",
            first_mes=fields.get("first_mes") or "",
            mes_example=fields.get("mes_example") or "",
            system_prompt=fields.get("system_prompt") or "",
            world_info=fields.get("world_info"),
            id=data.get("id"),
        )


@dataclass(frozen=True)
class Message:
    """A single chat turn."""

    sender_id: str
    content: str
    timestamp: float = 0.0
    role: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Message":
        return cls(
            sender_id=str(data.get("senderId", data.get("sender_id", "")) or ""),
            content=data.get("content") or "",
            timestamp=_timestamp(data.get("timestamp")),
            role=data.get("role"),
        )

    @classmethod
    def coerce(cls, value: Union["Message", dict[str, Any]]) -> "Message":
        if isinstance(value, Message):
            return value
        return cls.from_dict(value)


@dataclass(frozen=True)
class UserPersona:
    """Structured description of the user the character is talking to."""

    description: str = ""
    personality: str = ""
    background: str = ""
    text: str = ""
    """Free-form persona; used verbatim when set."""

    @classmethod
    def coerce(
        cls, value: Union["UserPersona", str, dict[str, Any], None]
    ) -> Optional["UserPersona"]:
        if value is None or isinstance(value, UserPersona):
            return value
        if isinstance(value, str):
            return cls(text=value)
        return cls(
            description=value.get("description") or "",
            personality=value.get("personality") or "",
            background=value.get("background") or "",
        )
