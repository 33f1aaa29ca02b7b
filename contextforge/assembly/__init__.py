"""Prompt assembly: the orchestrator and its result types."""

from contextforge.assembly.assembler import (
    AssemblerStats,
    ContextAssembler,
    TEMPLATE_VARIABLES,
)
from contextforge.assembly.result import (
    BuildMetadata,
    BuildResult,
    OptimizationStats,
)

__all__ = [
    "AssemblerStats",
    "ContextAssembler",
    "TEMPLATE_VARIABLES",
    "BuildMetadata",
    "BuildResult",
    "OptimizationStats",
]
