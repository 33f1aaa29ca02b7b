"""Tests for PriorityAllocator."""

import pytest

from contextforge.budget.allocator import PriorityAllocator
from contextforge.config import DEFAULT_PRIORITY_WEIGHTS
from contextforge.errors import ConfigurationError
from contextforge.utils.tokens import count_tokens_approximate


def _components():
    # 100 tokens each under the character method
    return {
        "system": "a" * 400,
        "character": "b" * 400,
        "history": "c" * 400,
    }


class TestPriorityAllocator:
    def setup_method(self):
        self.allocator = PriorityAllocator(count_tokens_approximate, strategy="end")

    def test_needs_allocation(self):
        assert self.allocator.needs_allocation(_components(), 200) is True
        assert self.allocator.needs_allocation(_components(), 300) is False
        assert self.allocator.needs_allocation(_components(), 0) is False

    def test_rank_by_weight_then_declared_order(self):
        components = {"user": "x", "history": "x", "worldInfo": "x", "extra": "x"}
        weights = {"user": 0.5, "history": 0.9, "worldInfo": 0.5}
        ranked = self.allocator.rank(components, weights, order=["worldInfo", "user"])
        assert ranked == ["history", "worldInfo", "user", "extra"]

    def test_sum_stays_within_budget(self):
        allocation = self.allocator.allocate(
            _components(), 150, weights=DEFAULT_PRIORITY_WEIGHTS
        )
        total = sum(count_tokens_approximate(t) for t in allocation.components.values())
        assert total <= 150
        assert allocation.original_tokens == 300
        assert allocation.allocated_tokens == total
        assert allocation.tokens_saved == 300 - total

    def test_highest_weight_kept_whole(self):
        allocation = self.allocator.allocate(
            _components(), 150, weights=DEFAULT_PRIORITY_WEIGHTS
        )
        assert allocation.components["system"] == "a" * 400
        assert "system" not in allocation.truncated
        assert allocation.truncated == ["character", "history"]

    def test_greedy_shares(self):
        allocation = self.allocator.allocate(
            _components(), 150, weights=DEFAULT_PRIORITY_WEIGHTS
        )
        # 150 - 100 = 50 left; character gets floor(50 * 0.8) = 40
        assert count_tokens_approximate(allocation.components["character"]) == 40
        # 10 left; history gets floor(10 * 0.6) = 6
        assert count_tokens_approximate(allocation.components["history"]) == 6

    def test_exhausted_budget_drops_rest(self):
        allocation = self.allocator.allocate(
            _components(), 100, weights=DEFAULT_PRIORITY_WEIGHTS
        )
        assert allocation.components["character"] == ""
        assert allocation.components["history"] == ""
        assert allocation.dropped == ["character", "history"]

    def test_weights_are_clamped(self):
        allocation = self.allocator.allocate(
            {"system": "a" * 400}, 50, weights={"system": 7.5}
        )
        assert count_tokens_approximate(allocation.components["system"]) == 50

    def test_zero_weight_gets_nothing(self):
        allocation = self.allocator.allocate(
            {"system": "a" * 400, "user": "u" * 40}, 200, weights={"system": 1.0, "user": 0.0}
        )
        assert allocation.components["user"] == ""

    def test_does_not_mutate_input(self):
        components = _components()
        self.allocator.allocate(components, 50, weights=DEFAULT_PRIORITY_WEIGHTS)
        assert components == _components()

    def test_empty_components(self):
        allocation = self.allocator.allocate({}, 100)
        assert allocation.components == {}
        assert allocation.allocated_tokens == 0

    def test_invalid_strategy(self):
        with pytest.raises(ConfigurationError):
            PriorityAllocator(count_tokens_approximate, strategy="bogus")
