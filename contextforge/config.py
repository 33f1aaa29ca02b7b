"""Configuration loading and validation for context builds."""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any, Mapping, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from contextforge.budget.truncation import check_strategy
from contextforge.errors import ConfigurationError
from contextforge.utils.tokens import resolve_counter

COMPONENT_NAMES = ("system", "worldInfo", "character", "history", "user")

DEFAULT_PRIORITY_WEIGHTS: dict[str, float] = {
    "system": 1.0,
    "character": 0.8,
    "history": 0.6,
    "worldInfo": 0.5,
    "user": 0.4,
}

CONFIG_FILENAME = "contextforge.yaml"


class ContextPreset(BaseModel):
    """Story template and separators used to lay out the final prompt."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    name: str = "default"
    story_string: Optional[str] = None
    system_instructions: Optional[str] = None
    example_separator: str = "***"
    chat_start: Optional[str] = None

    def fingerprint(self) -> str:
        """Short hash of the layout, so same-named presets stay distinct."""
        return _digest(self.model_dump())


def _digest(data: dict[str, Any]) -> str:
    payload = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:16]


class BuildConfig(BaseModel):
    """Budgets, weights and toggles for a single build."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    # Character budgets
    max_context_length: int = Field(default=4000, ge=1)
    max_history_length: int = Field(default=2000, ge=0)
    max_system_prompt_length: int = Field(default=1000, ge=0)

    # Prioritization
    priority_order: list[str] = Field(
        default_factory=lambda: list(COMPONENT_NAMES)
    )
    priority_weights: dict[str, float] = Field(
        default_factory=lambda: dict(DEFAULT_PRIORITY_WEIGHTS)
    )
    content_prioritization: bool = True

    # Component construction
    include_system_prompt: bool = True
    trim_sentences: bool = False
    single_line: bool = False
    always_force_name2: bool = True
    user_persona: Optional[Union[str, dict[str, Any]]] = None

    # Token budgets
    token_counting_enabled: bool = True
    token_estimation_method: str = "character"
    token_limit: int = Field(default=0, ge=0)
    """0 disables global reallocation."""
    truncation_strategy: str = "smart"

    # Lossy text compression
    compression_enabled: bool = False
    compression_threshold: int = Field(default=1000, ge=0)

    # Caching
    context_caching: bool = True
    cache_compression: bool = True

    strict_character_input: bool = False
    """Raise InputShapeError on malformed character input instead of degrading."""

    def check(self) -> "BuildConfig":
        """Fail fast on unknown token methods or truncation strategies."""
        resolve_counter(self.token_estimation_method)
        check_strategy(self.truncation_strategy)
        return self

    def fingerprint(self) -> str:
        """Deterministic short hash of every setting."""
        return _digest(self.model_dump())


def merge_config(
    defaults: BuildConfig,
    options: Union[BuildConfig, Mapping[str, Any], None] = None,
) -> BuildConfig:
    """Overlay caller options on defaults and validate the result."""
    if isinstance(options, BuildConfig):
        return options.check()
    merged = {**defaults.model_dump(), **dict(options or {})}
    try:
        config = BuildConfig.model_validate(merged)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid build configuration: {e}") from e
    return config.check()


class ProjectConfig(BaseModel):
    """Root configuration: default build settings plus named presets."""

    build: BuildConfig = Field(default_factory=BuildConfig)
    presets: dict[str, ContextPreset] = Field(default_factory=dict)
    default_preset: str = "default"

    def preset(self, name: Optional[str] = None) -> ContextPreset:
        """Return the named preset, falling back to the default one."""
        key = name or self.default_preset
        if key in self.presets:
            return self.presets[key]
        if name is not None:
            raise ConfigurationError(
                f"Unknown preset: {name}. Available: {list(self.presets.keys())}"
            )
        return ContextPreset(name=key)


def load_config(path: Path) -> ProjectConfig:
    """Load and validate configuration from a YAML file or a directory."""
    config_path = path / CONFIG_FILENAME if path.is_dir() else path
    if not config_path.exists():
        raise FileNotFoundError(f"Config not found: {config_path}")

    raw = load_yaml_file(config_path)
    raw["presets"] = {
        name: {"name": name, **(preset or {})}
        for name, preset in (raw.get("presets") or {}).items()
    }

    try:
        config = ProjectConfig(**raw)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid config {config_path}: {e}") from e
    config.build.check()
    return config


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a YAML file and return its contents as a dict."""
    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")
    with open(path) as f:
        return yaml.safe_load(f) or {}
