"""Build result records returned by the assembler."""

from __future__ import annotations

import copy
import json
from dataclasses import dataclass, field
from typing import Any, Optional

from contextforge.config import BuildConfig


@dataclass
class OptimizationStats:
    """What the token optimization and compression passes did."""

    optimization_applied: bool = False
    original_tokens: int = 0
    optimized_tokens: int = 0
    truncated_components: list[str] = field(default_factory=list)
    dropped_components: list[str] = field(default_factory=list)
    compression: Optional[dict[str, Any]] = None

    @property
    def tokens_saved(self) -> int:
        return max(0, self.original_tokens - self.optimized_tokens)

    def to_dict(self) -> dict[str, Any]:
        return {
            "optimizationApplied": self.optimization_applied,
            "originalTokens": self.original_tokens,
            "optimizedTokens": self.optimized_tokens,
            "tokensSaved": self.tokens_saved,
            "truncatedComponents": list(self.truncated_components),
            "droppedComponents": list(self.dropped_components),
            "compression": self.compression,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "OptimizationStats":
        return cls(
            optimization_applied=data.get("optimizationApplied", False),
            original_tokens=data.get("originalTokens", 0),
            optimized_tokens=data.get("optimizedTokens", 0),
            truncated_components=data.get("truncatedComponents", []),
            dropped_components=data.get("droppedComponents", []),
            compression=data.get("compression"),
        )


@dataclass
class BuildMetadata:
    character_id: str
    message_count: int
    context_preset: str
    total_length: int
    component_lengths: dict[str, int] = field(default_factory=dict)
    build_time: float = 0.0
    """Milliseconds spent building."""
    cache_hit: bool = False
    timestamp: float = 0.0
    token_count: int = 0
    optimization_stats: OptimizationStats = field(default_factory=OptimizationStats)

    def to_dict(self) -> dict[str, Any]:
        return {
            "characterId": self.character_id,
            "messageCount": self.message_count,
            "contextPreset": self.context_preset,
            "totalLength": self.total_length,
            "componentLengths": dict(self.component_lengths),
            "buildTime": self.build_time,
            "cacheHit": self.cache_hit,
            "timestamp": self.timestamp,
            "tokenCount": self.token_count,
            "optimizationStats": self.optimization_stats.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BuildMetadata":
        return cls(
            character_id=data.get("characterId", "unknown"),
            message_count=data.get("messageCount", 0),
            context_preset=data.get("contextPreset", "default"),
            total_length=data.get("totalLength", 0),
            component_lengths=data.get("componentLengths", {}),
            build_time=data.get("buildTime", 0.0),
            cache_hit=data.get("cacheHit", False),
            timestamp=data.get("timestamp", 0.0),
            token_count=data.get("tokenCount", 0),
            optimization_stats=OptimizationStats.from_dict(
                data.get("optimizationStats") or {}
            ),
        )


@dataclass
class BuildResult:
    """The assembled prompt plus everything used to produce it."""

    content: str
    metadata: BuildMetadata
    components: dict[str, str]
    config: BuildConfig

    def copy(self) -> "BuildResult":
        """Detached deep copy; mutating it never affects this result."""
        return copy.deepcopy(self)

    def as_cache_hit(self) -> "BuildResult":
        """Detached copy of this result flagged as served from cache."""
        hit = self.copy()
        hit.metadata.cache_hit = True
        return hit

    def to_dict(self) -> dict[str, Any]:
        return {
            "content": self.content,
            "metadata": self.metadata.to_dict(),
            "components": dict(self.components),
            "config": self.config.model_dump(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BuildResult":
        return cls(
            content=data["content"],
            metadata=BuildMetadata.from_dict(data["metadata"]),
            components=data.get("components", {}),
            config=BuildConfig.model_validate(data["config"]),
        )

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)

    @classmethod
    def from_json(cls, payload: str) -> "BuildResult":
        return cls.from_dict(json.loads(payload))
