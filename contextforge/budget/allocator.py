"""Greedy, priority-weighted token budget allocation across content blocks."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Optional, Sequence

from contextforge.budget.truncation import Truncator, check_strategy
from contextforge.utils.tokens import TokenCounter, count_tokens_approximate

logger = logging.getLogger(__name__)

DEFAULT_WEIGHT = 0.5


@dataclass
class Allocation:
    """Result of fitting components into a shared token budget."""

    components: dict[str, str]
    original_tokens: int = 0
    allocated_tokens: int = 0
    truncated: list[str] = field(default_factory=list)
    dropped: list[str] = field(default_factory=list)

    @property
    def tokens_saved(self) -> int:
        return max(0, self.original_tokens - self.allocated_tokens)


class PriorityAllocator:
    """Distributes a token budget over named components by weight.

    Components are visited in descending weight. Each one receives
    ``floor(remaining * weight)`` tokens, capped at its own size, and the
    tokens it actually uses after truncation are subtracted from the
    remaining budget. Components not reached before the budget runs out are
    emptied.

    Equal weights keep declaration order (``order``), then insertion order,
    so the outcome is deterministic for a given configuration.
    """

    def __init__(
        self,
        counter: Optional[TokenCounter] = None,
        strategy: str = "smart",
    ) -> None:
        self._count = counter or count_tokens_approximate
        self._strategy = check_strategy(strategy)
        self._truncator = Truncator(self._count)

    def total_tokens(self, components: dict[str, str]) -> int:
        return sum(self._count(text) for text in components.values())

    def needs_allocation(self, components: dict[str, str], token_budget: int) -> bool:
        """True when a positive budget is exceeded by the combined estimate."""
        return token_budget > 0 and self.total_tokens(components) > token_budget

    def rank(
        self,
        components: dict[str, str],
        weights: dict[str, float],
        order: Sequence[str] = (),
    ) -> list[str]:
        """Component names sorted by descending weight with a stable tie-break."""
        declared = {name: i for i, name in enumerate(order)}
        inserted = {name: i for i, name in enumerate(components)}
        return sorted(
            components,
            key=lambda name: (
                -weights.get(name, DEFAULT_WEIGHT),
                declared.get(name, len(declared)),
                inserted[name],
            ),
        )

    def allocate(
        self,
        components: dict[str, str],
        token_budget: int,
        weights: Optional[dict[str, float]] = None,
        order: Sequence[str] = (),
    ) -> Allocation:
        weights = weights or {}
        original = self.total_tokens(components)
        allocation = Allocation(
            components=dict(components),
            original_tokens=original,
            allocated_tokens=original,
        )
        if not components:
            return allocation

        remaining = token_budget
        used = 0
        for name in self.rank(components, weights, order):
            text = components[name]
            if remaining <= 0:
                if text:
                    allocation.dropped.append(name)
                allocation.components[name] = ""
                continue

            weight = min(1.0, max(0.0, weights.get(name, DEFAULT_WEIGHT)))
            own_tokens = self._count(text)
            granted = min(math.floor(remaining * weight), own_tokens)
            result = self._truncator.truncate(
                text, granted, strategy=self._strategy, priority=weight
            )
            actual = self._count(result.text)
            if result.truncated:
                allocation.truncated.append(name)
            logger.debug(
                "Allocated %s: %d/%d tokens (weight=%.2f, remaining=%d)",
                name, actual, own_tokens, weight, remaining,
            )
            allocation.components[name] = result.text
            remaining -= actual
            used += actual

        allocation.allocated_tokens = used
        return allocation
