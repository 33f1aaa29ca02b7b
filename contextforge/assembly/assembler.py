"""Context assembly: builds a budgeted prompt from character and chat data."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Sequence, Union

from pydantic import ValidationError

from contextforge.assembly.result import BuildMetadata, BuildResult, OptimizationStats
from contextforge.budget.allocator import PriorityAllocator
from contextforge.budget.compression import compress_text
from contextforge.budget.truncation import Truncator, check_strategy, truncate_chars
from contextforge.cache.compression import Compressor
from contextforge.cache.store import (
    DEFAULT_COMPRESSION_THRESHOLD,
    DEFAULT_MAX_SIZE,
    ResultCache,
    ResultLRU,
)
from contextforge.components.builder import ComponentBuilder
from contextforge.components.models import CharacterProfile, Message
from contextforge.config import BuildConfig, ContextPreset, merge_config
from contextforge.errors import ConfigurationError, InputShapeError
from contextforge.events.bus import EventBus
from contextforge.events.types import EventType
from contextforge.templates.engine import DEFAULT_STORY_STRING, TemplateEngine
from contextforge.utils.tokens import TokenCounter, resolve_counter

logger = logging.getLogger(__name__)

TEMPLATE_VARIABLES = (
    "system",
    "wiBefore",
    "description",
    "personality",
    "scenario",
    "wiAfter",
    "persona",
    "char",
    "trim",
    "first_mes",
    "mes_example",
)

CharacterInput = Union[CharacterProfile, Mapping[str, Any], None]
MessageInput = Union[Message, Mapping[str, Any]]
PresetInput = Union[ContextPreset, Mapping[str, Any], None]


@dataclass
class AssemblerStats:
    prompts_built: int = 0
    cache_hits: int = 0
    cache_misses: int = 0
    total_length: int = 0
    total_tokens: int = 0
    optimizations: int = 0
    truncation_count: int = 0
    compressions: int = 0
    compression_ratio_total: float = 0.0

    @property
    def average_length(self) -> float:
        return self.total_length / self.prompts_built if self.prompts_built else 0.0

    @property
    def average_tokens(self) -> float:
        return self.total_tokens / self.prompts_built if self.prompts_built else 0.0

    @property
    def average_compression_ratio(self) -> float:
        if not self.compressions:
            return 1.0
        return self.compression_ratio_total / self.compressions

    def record(self, result: BuildResult) -> None:
        self.prompts_built += 1
        self.total_length += result.metadata.total_length
        self.total_tokens += result.metadata.token_count


class ContextAssembler:
    """Coordinates component building, budgeting, rendering and caching.

    Each assembler owns its caches; two assemblers never share results.
    """

    def __init__(
        self,
        defaults: Optional[BuildConfig] = None,
        event_bus: Optional[EventBus] = None,
        compressor: Optional[Compressor] = None,
        max_cache_size: int = DEFAULT_MAX_SIZE,
        cache_compression_threshold: int = DEFAULT_COMPRESSION_THRESHOLD,
        result_cache_size: int = 100,
        template_engine: Optional[TemplateEngine] = None,
    ) -> None:
        self.defaults = (defaults or BuildConfig()).check()
        self.event_bus = event_bus
        self.templates = template_engine or TemplateEngine()
        self.cache = ResultCache(
            max_size=max_cache_size,
            compressor=compressor,
            compression_threshold=cache_compression_threshold,
        )
        self.results: ResultLRU[BuildResult] = ResultLRU(result_cache_size)
        self.stats = AssemblerStats()

    # -- configuration ---------------------------------------------------

    def merge_config(
        self, options: Union[BuildConfig, Mapping[str, Any], None] = None
    ) -> BuildConfig:
        return merge_config(self.defaults, options)

    def _update_defaults(self, **changes: Any) -> None:
        self.defaults = merge_config(self.defaults, changes)

    def set_token_counting_method(self, method: str) -> None:
        resolve_counter(method)
        self._update_defaults(token_estimation_method=method)

    def set_truncation_strategy(self, strategy: str) -> None:
        check_strategy(strategy)
        self._update_defaults(truncation_strategy=strategy)

    def set_compression_settings(
        self, enabled: bool, threshold: Optional[int] = None
    ) -> None:
        changes: dict[str, Any] = {"compression_enabled": enabled}
        if threshold is not None:
            changes["compression_threshold"] = threshold
        self._update_defaults(**changes)

    def set_cache_enabled(self, enabled: bool) -> None:
        self._update_defaults(context_caching=enabled)
        if not enabled:
            self.clear_cache()

    def clear_cache(self) -> None:
        self.cache.clear()
        self.results.clear()

    # -- build -----------------------------------------------------------

    async def build(
        self,
        character: CharacterInput = None,
        messages: Optional[Sequence[MessageInput]] = None,
        preset: PresetInput = None,
        options: Union[BuildConfig, Mapping[str, Any], None] = None,
    ) -> BuildResult:
        """Assemble a prompt whose length never exceeds ``max_context_length``."""
        start = time.perf_counter()
        raw_messages = list(messages or [])
        config = self.merge_config(options)

        if character is not None and not isinstance(character, (CharacterProfile, Mapping)):
            message = f"Invalid character data: expected a mapping, got {type(character).__name__}"
            if config.strict_character_input:
                raise InputShapeError(message)
            logger.warning(message)
            await self._emit(
                EventType.PROMPT_ERROR,
                {
                    "error": "Invalid character data",
                    "characterId": "unknown",
                    "messageCount": len(raw_messages),
                },
            )
            return self._empty_result(config, len(raw_messages), start)

        profile = self._coerce_character(character)
        identity = profile.identity if profile is not None else "unknown"
        try:
            chat = [Message.coerce(m) for m in raw_messages]
            context_preset = self._coerce_preset(preset)
            key = self.cache_key(profile, chat, context_preset, config)

            if config.context_caching:
                cached = await self._lookup(key)
                if cached is not None:
                    self.stats.cache_hits += 1
                    self.stats.record(cached)
                    logger.debug("Cache hit for %s", key)
                    await self._emit(
                        EventType.CACHE_HIT,
                        {"characterId": identity, "cacheKey": key},
                    )
                    return cached

            self.stats.cache_misses += 1
            result = await self._assemble(profile, chat, context_preset, config, start)
            self.stats.record(result)

            if config.context_caching:
                await self._store(key, result, config)

            await self._emit(
                EventType.PROMPT_BUILT,
                {
                    "characterId": identity,
                    "messageCount": len(chat),
                    "promptLength": result.metadata.total_length,
                    "buildTime": result.metadata.build_time,
                },
            )
            return result
        except Exception as e:
            await self._emit(
                EventType.PROMPT_ERROR,
                {
                    "error": str(e),
                    "characterId": identity,
                    "messageCount": len(raw_messages),
                },
            )
            raise

    def cache_key(
        self,
        character: Optional[CharacterProfile],
        messages: Sequence[Message],
        preset: ContextPreset,
        config: BuildConfig,
    ) -> str:
        identity = character.identity if character is not None else "unknown"
        return (
            f"{identity}_{len(messages)}_{preset.name}_"
            f"{preset.fingerprint()}_{config.fingerprint()}"
        )

    async def _assemble(
        self,
        character: Optional[CharacterProfile],
        messages: list[Message],
        preset: ContextPreset,
        config: BuildConfig,
        start: float,
    ) -> BuildResult:
        builder = ComponentBuilder(config)
        counter = resolve_counter(config.token_estimation_method)
        components = builder.build(character, messages, preset)
        optimization = OptimizationStats()

        budgeted = config.token_counting_enabled and config.token_limit > 0
        if budgeted and config.content_prioritization:
            components, optimization = await self._optimize(components, config, counter)

        content = self._render(components, preset, config)

        if budgeted and counter(content) > config.token_limit:
            # Labels and separators added by the template can push the
            # rendered prompt past the budget even when the blocks fit.
            content = Truncator(counter).truncate(
                content, config.token_limit, strategy="end"
            ).text

        if config.compression_enabled and len(content) > config.compression_threshold:
            compression = compress_text(content)
            content = compression.text
            optimization.compression = compression.to_dict()
            if compression.compressed:
                self.stats.compressions += 1
                self.stats.compression_ratio_total += compression.ratio

        token_count = counter(content) if config.token_counting_enabled else 0
        metadata = BuildMetadata(
            character_id=character.identity if character is not None else "unknown",
            message_count=len(messages),
            context_preset=preset.name,
            total_length=len(content),
            component_lengths={name: len(text) for name, text in components.items()},
            build_time=(time.perf_counter() - start) * 1000,
            cache_hit=False,
            timestamp=time.time(),
            token_count=token_count,
            optimization_stats=optimization,
        )
        return BuildResult(
            content=content,
            metadata=metadata,
            components=components,
            config=config,
        )

    async def _optimize(
        self,
        components: dict[str, str],
        config: BuildConfig,
        counter: TokenCounter,
    ) -> tuple[dict[str, str], OptimizationStats]:
        allocator = PriorityAllocator(counter, config.truncation_strategy)
        if not allocator.needs_allocation(components, config.token_limit):
            return components, OptimizationStats()

        allocation = allocator.allocate(
            components,
            config.token_limit,
            weights=config.priority_weights,
            order=config.priority_order,
        )
        self.stats.optimizations += 1
        self.stats.truncation_count += len(allocation.truncated)
        logger.debug(
            "Reallocated %d -> %d tokens (limit %d)",
            allocation.original_tokens,
            allocation.allocated_tokens,
            config.token_limit,
        )
        await self._emit(
            EventType.OPTIMIZATION_APPLIED,
            {
                "originalTokens": allocation.original_tokens,
                "optimizedTokens": allocation.allocated_tokens,
                "truncated": list(allocation.truncated),
            },
        )
        return allocation.components, OptimizationStats(
            optimization_applied=True,
            original_tokens=allocation.original_tokens,
            optimized_tokens=allocation.allocated_tokens,
            truncated_components=list(allocation.truncated),
            dropped_components=list(allocation.dropped),
        )

    def template_variables(self, components: Mapping[str, str]) -> dict[str, str]:
        """Variables exposed to story-string templates."""
        fields = ComponentBuilder.parse_character_block(components.get("character", ""))
        return {
            "system": components.get("system", ""),
            "wiBefore": components.get("worldInfo", ""),
            "description": fields.get("description", ""),
            "personality": fields.get("personality", ""),
            "scenario": fields.get("scenario", ""),
            "wiAfter": "",
            "persona": components.get("user", ""),
            "char": fields.get("char") or "Character",
            "trim": "",
            "first_mes": fields.get("first_mes", ""),
            "mes_example": fields.get("mes_example", ""),
        }

    def _render(
        self,
        components: Mapping[str, str],
        preset: ContextPreset,
        config: BuildConfig,
    ) -> str:
        template = preset.story_string or DEFAULT_STORY_STRING
        content = self.templates.render(template, self.template_variables(components))

        history = components.get("history")
        if history:
            content += f"\n{preset.example_separator}\n{history}"
        if preset.chat_start:
            content += f"\n{preset.chat_start}"
        if config.single_line:
            content = content.replace("\n", " ")
        if len(content) > config.max_context_length:
            content = truncate_chars(content, config.max_context_length)
        return content.strip()

    # -- caching ---------------------------------------------------------

    async def _lookup(self, key: str) -> Optional[BuildResult]:
        result = self.results.get(key)
        if result is not None:
            return result.as_cache_hit()

        payload = await self.cache.get(key)
        if payload is None:
            return None
        try:
            result = BuildResult.from_json(payload)
        except (ValueError, KeyError, TypeError) as e:
            logger.warning("Discarding unreadable cached result %s: %s", key, e)
            self.cache.delete(key)
            return None
        self.results.put(key, result)
        return result.as_cache_hit()

    async def _store(self, key: str, result: BuildResult, config: BuildConfig) -> None:
        # The caller keeps ``result``; the cache holds its own copy
        self.results.put(key, result.copy())
        await self.cache.put(key, result.to_json(), compress=config.cache_compression)

    # -- helpers ---------------------------------------------------------

    @staticmethod
    def _coerce_character(character: CharacterInput) -> Optional[CharacterProfile]:
        if character is None or isinstance(character, CharacterProfile):
            return character
        return CharacterProfile.from_dict(dict(character))

    @staticmethod
    def _coerce_preset(preset: PresetInput) -> ContextPreset:
        if preset is None:
            return ContextPreset()
        if isinstance(preset, ContextPreset):
            return preset
        try:
            return ContextPreset.model_validate(dict(preset))
        except ValidationError as e:
            raise ConfigurationError(f"Invalid context preset: {e}") from e

    def _empty_result(
        self, config: BuildConfig, message_count: int, start: float
    ) -> BuildResult:
        return BuildResult(
            content="",
            metadata=BuildMetadata(
                character_id="unknown",
                message_count=message_count,
                context_preset="default",
                total_length=0,
                build_time=(time.perf_counter() - start) * 1000,
                cache_hit=False,
                timestamp=time.time(),
            ),
            components={},
            config=config,
        )

    async def _emit(self, event_type: EventType, payload: dict[str, Any]) -> None:
        if self.event_bus is not None:
            await self.event_bus.emit(event_type, payload)

    # -- statistics ------------------------------------------------------

    def get_stats(self) -> dict[str, Any]:
        return {
            "promptsBuilt": self.stats.prompts_built,
            "cacheHits": self.stats.cache_hits,
            "cacheMisses": self.stats.cache_misses,
            "totalLength": self.stats.total_length,
            "averageLength": self.stats.average_length,
            "averageTokens": self.stats.average_tokens,
            "optimizationStats": {
                "optimizations": self.stats.optimizations,
                "truncationCount": self.stats.truncation_count,
                "compressions": self.stats.compressions,
            },
            "resultCacheSize": len(self.results),
            "contextCacheStats": self.cache.snapshot(),
            "cacheEnabled": self.defaults.context_caching,
        }

    def get_optimization_stats(self) -> dict[str, Any]:
        return {
            "tokenCounting": {
                "enabled": self.defaults.token_counting_enabled,
                "method": self.defaults.token_estimation_method,
                "tokenLimit": self.defaults.token_limit,
                "totalTokenCounts": self.stats.total_tokens,
                "averageTokens": self.stats.average_tokens,
            },
            "compression": {
                "enabled": self.defaults.compression_enabled,
                "threshold": self.defaults.compression_threshold,
                "totalCompressions": self.stats.compressions,
                "averageRatio": self.stats.average_compression_ratio,
            },
            "truncation": {
                "enabled": self.defaults.content_prioritization,
                "strategy": self.defaults.truncation_strategy,
                "truncationCount": self.stats.truncation_count,
            },
            "caching": {
                "contextEnabled": self.defaults.context_caching,
                "compressionEnabled": self.defaults.cache_compression,
                **self.cache.snapshot(),
            },
        }

