"""Derives the named prompt blocks from character, chat and persona data."""

from __future__ import annotations

import json
import logging
import math
import re
from typing import Any, Optional, Sequence

from contextforge.budget.truncation import split_sentences, truncate_chars
from contextforge.components.models import (
    USER_SENDER_IDS,
    CharacterProfile,
    Message,
    UserPersona,
    WorldInfo,
)
from contextforge.config import BuildConfig, ContextPreset

logger = logging.getLogger(__name__)

# Per-block caps as a share of max_context_length
WORLD_INFO_SHARE = 0.3
CHARACTER_SHARE = 0.4
PERSONA_SHARE = 0.2

CHARACTER_LABELS = {
    "Character": "char",
    "Description": "description",
    "Personality": "personality",
    "Scenario": "scenario",
    "First message": "first_mes",
    "Example conversation": "mes_example",
}

_LABEL_LINE = re.compile(
    r"^(" + "|".join(CHARACTER_LABELS) + r"):[ \t]?(.*)$"
)


def format_world_info(world_info: WorldInfo) -> str:
    """Normalize string, list or mapping world info into text lines."""
    if world_info is None:
        return ""
    if isinstance(world_info, str):
        return world_info
    if isinstance(world_info, list):
        lines = []
        for item in world_info:
            if isinstance(item, str):
                lines.append(item)
            elif isinstance(item, dict) and item.get("name") and item.get("content"):
                lines.append(f"{item['name']}: {item['content']}")
            else:
                lines.append(json.dumps(item, ensure_ascii=False))
        return "\n".join(lines)
    if isinstance(world_info, dict):
        return "\n".join(f"{key}: {value}" for key, value in world_info.items())
    return str(world_info)


class ComponentBuilder:
    """Builds each prompt block independently under its own size cap.

    These caps are applied before, and independently of, the global token
    reallocation done by ``PriorityAllocator``.
    """

    def __init__(self, config: BuildConfig) -> None:
        self.config = config

    def build(
        self,
        character: Optional[CharacterProfile],
        messages: Sequence[Message],
        preset: ContextPreset,
    ) -> dict[str, str]:
        components: dict[str, str] = {}
        if self.config.include_system_prompt:
            components["system"] = self.build_system_prompt(character, preset)
        if character is not None and character.world_info:
            components["worldInfo"] = self.build_world_info(character)
        components["character"] = self.build_character_description(character)
        if messages:
            components["history"] = self.build_chat_history(messages, character)
        persona = UserPersona.coerce(self.config.user_persona)
        if persona is not None:
            components["user"] = self.build_user_persona(persona)
        return components

    def _share(self, fraction: float) -> int:
        return math.floor(self.config.max_context_length * fraction)

    def build_system_prompt(
        self, character: Optional[CharacterProfile], preset: ContextPreset
    ) -> str:
        parts = []
        if character is not None and character.system_prompt.strip():
            parts.append(character.system_prompt.strip())
        if preset.system_instructions and preset.system_instructions.strip():
            parts.append(preset.system_instructions.strip())
        system_prompt = "\n\n".join(parts) or self.default_system_prompt(character)
        return truncate_chars(system_prompt, self.config.max_system_prompt_length)

    @staticmethod
    def default_system_prompt(character: Optional[CharacterProfile]) -> str:
        name = character.name if character is not None and character.name else "a character"
        return (
            f"You are {name} in a roleplay conversation.\n"
            "Respond in character and maintain consistency with your "
            "personality and background.\n"
            "Keep responses engaging and appropriate to the context."
        )

    def build_world_info(self, character: CharacterProfile) -> str:
        world_info = format_world_info(character.world_info)
        return truncate_chars(world_info, self._share(WORLD_INFO_SHARE))

    def build_character_description(
        self, character: Optional[CharacterProfile]
    ) -> str:
        if character is None:
            return ""
        lines = []
        if character.name:
            lines.append(f"Character: {character.name}")
        if character.description:
            lines.append(f"Description: {character.description}")
        if character.personality:
            lines.append(f"Personality: {character.personality}")
        if character.scenario:
            lines.append(f"Scenario: {character.scenario}")
        if character.first_mes:
            lines.append(f"First message: {character.first_mes}")
        if character.mes_example:
            lines.append(f"Example conversation:\n{character.mes_example}")
        description = "".join(f"{line}\n" for line in lines)
        return truncate_chars(description, self._share(CHARACTER_SHARE))

    def build_chat_history(
        self,
        messages: Sequence[Message],
        character: Optional[CharacterProfile],
    ) -> str:
        """Most recent messages that fit ``max_history_length``, oldest first."""
        ordered = sorted(messages, key=lambda m: m.timestamp)
        budget = self.config.max_history_length
        lines: list[str] = []
        length = 0
        for message in reversed(ordered):
            line = self.format_message(message, character)
            if not line:
                continue
            if length + len(line) > budget:
                break
            lines.append(line)
            length += len(line) + 1
        if len(lines) < len(ordered):
            logger.debug(
                "History limited to %d of %d messages", len(lines), len(ordered)
            )
        lines.reverse()
        history = "\n".join(lines).strip()
        if self.config.trim_sentences:
            history = self.trim_sentences(history)
        return history

    @staticmethod
    def trim_sentences(text: str, keep: int = 3) -> str:
        """Keep only the last ``keep`` sentences."""
        sentences = split_sentences(text)
        if len(sentences) <= keep:
            return text
        return " ".join(sentences[-keep:])

    def format_message(
        self, message: Message, character: Optional[CharacterProfile]
    ) -> str:
        if not message.content:
            return ""
        if message.sender_id and self.config.always_force_name2:
            return f"{self.sender_name(message.sender_id, character)}: {message.content}"
        return message.content

    @staticmethod
    def sender_name(sender_id: str, character: Optional[CharacterProfile]) -> str:
        if (
            character is not None
            and character.name
            and sender_id in (character.id, character.name)
        ):
            return character.name
        if sender_id in USER_SENDER_IDS:
            return "You"
        return sender_id

    def build_user_persona(self, persona: UserPersona) -> str:
        if persona.text:
            text = persona.text
        else:
            text = ""
            if persona.description:
                text += f"User: {persona.description}\n"
            if persona.personality:
                text += f"User personality: {persona.personality}\n"
            if persona.background:
                text += f"User background: {persona.background}\n"
        return truncate_chars(text, self._share(PERSONA_SHARE))

    @staticmethod
    def parse_character_block(block: str) -> dict[str, Any]:
        """Read labeled fields back out of a (possibly truncated) character block.

        Unlabeled lines continue the preceding field, so multi-line values
        survive the round trip.
        """
        fields: dict[str, list[str]] = {}
        current: Optional[str] = None
        for line in block.splitlines():
            match = _LABEL_LINE.match(line)
            if match:
                current = CHARACTER_LABELS[match.group(1)]
                fields[current] = [match.group(2)] if match.group(2) else []
            elif current is not None:
                fields[current].append(line)
        return {key: "\n".join(value).strip() for key, value in fields.items()}
