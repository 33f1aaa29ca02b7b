"""Strategy-based text shortening under a token budget."""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import Callable, Optional

from contextforge.errors import ConfigurationError
from contextforge.utils.tokens import TokenCounter, count_tokens_approximate

STRATEGIES = ("end", "start", "middle", "smart")
ELLIPSIS = "..."

_WORD = re.compile(r"\S+")
_SENTENCE_BOUNDARY = re.compile(r"(?<=[.!?])\s+")


def split_sentences(text: str) -> list[str]:
    """Split on ``.``, ``!`` or ``?`` followed by whitespace."""
    return [s for s in _SENTENCE_BOUNDARY.split(text.strip()) if s]


@dataclass
class TruncationResult:
    """Outcome of a single truncation."""

    text: str
    truncated: bool
    tokens_removed: int


def check_strategy(strategy: str) -> str:
    """Fail fast on unknown truncation strategy names."""
    if strategy not in STRATEGIES:
        raise ConfigurationError(f"Invalid truncation strategy: {strategy}")
    return strategy


def truncate_chars(text: str, max_length: int, suffix: str = ELLIPSIS) -> str:
    """Hard-truncate text to ``max_length`` characters, suffix included.

    Prefers cutting at a word boundary when one exists in the last fifth of
    the allowed length.
    """
    if len(text) <= max_length:
        return text
    if max_length <= len(suffix):
        return text[: max(0, max_length)]
    cut = text[: max_length - len(suffix)]
    last_space = cut.rfind(" ")
    if last_space > max_length * 0.8:
        return cut[:last_space] + suffix
    return cut + suffix


class Truncator:
    """Shortens text to a token budget using word or sentence granularity."""

    def __init__(self, counter: Optional[TokenCounter] = None) -> None:
        self._count: Callable[[str], int] = counter or count_tokens_approximate

    def truncate(
        self,
        text: str,
        max_tokens: int,
        strategy: str = "smart",
        priority: float = 0.5,
    ) -> TruncationResult:
        """Shorten ``text`` so its estimate is at most ``max_tokens``.

        ``priority`` only affects the ``smart`` strategy: above 0.7 the start
        of the text is kept, below 0.3 the end, otherwise both ends.
        """
        check_strategy(strategy)
        if not text:
            return TruncationResult(text="", truncated=False, tokens_removed=0)

        total = self._count(text)
        if total <= max_tokens:
            return TruncationResult(text=text, truncated=False, tokens_removed=0)
        if max_tokens <= 0:
            return TruncationResult(text="", truncated=True, tokens_removed=total)

        if strategy == "end":
            result = self._truncate_end(text, max_tokens, total)
        elif strategy == "start":
            result = self._truncate_start(text, max_tokens, total)
        elif strategy == "middle":
            result = self._truncate_middle(text, max_tokens, total)
        else:
            result = self._truncate_smart(text, max_tokens, total, priority)

        return TruncationResult(
            text=result,
            truncated=True,
            tokens_removed=max(0, total - self._count(result)),
        )

    @staticmethod
    def _words_to_remove(total: int, max_tokens: int, word_count: int) -> int:
        """Estimate words to drop from the average tokens per word."""
        tokens_per_word = total / word_count
        return math.ceil((total - max_tokens) / tokens_per_word)

    def _truncate_end(self, text: str, max_tokens: int, total: int) -> str:
        spans = [m.span() for m in _WORD.finditer(text)]
        if not spans:
            return self._cut_prefix(text, max_tokens)
        keep = max(0, len(spans) - self._words_to_remove(total, max_tokens, len(spans)))
        while keep > 0 and self._count(text[: spans[keep - 1][1]]) > max_tokens:
            keep -= 1
        if keep == 0:
            return self._cut_prefix(text, max_tokens)
        return text[: spans[keep - 1][1]]

    def _truncate_start(self, text: str, max_tokens: int, total: int) -> str:
        spans = [m.span() for m in _WORD.finditer(text)]
        if not spans:
            return self._cut_suffix(text, max_tokens)
        keep = max(0, len(spans) - self._words_to_remove(total, max_tokens, len(spans)))
        while keep > 0 and self._count(text[spans[-keep][0]:]) > max_tokens:
            keep -= 1
        if keep == 0:
            return self._cut_suffix(text, max_tokens)
        return text[spans[-keep][0]:]

    def _truncate_middle(self, text: str, max_tokens: int, total: int) -> str:
        spans = [m.span() for m in _WORD.finditer(text)]
        if not spans:
            return self._cut_prefix(text, max_tokens)
        keep = max(0, len(spans) - self._words_to_remove(total, max_tokens, len(spans)))
        while keep > 0:
            candidate = self._join_middle(text, spans, keep)
            if self._count(candidate) <= max_tokens:
                return candidate
            keep -= 1
        return self._cut_prefix(text, max_tokens)

    @staticmethod
    def _join_middle(text: str, spans: list[tuple[int, int]], keep: int) -> str:
        head = math.ceil(keep / 2)
        tail = keep - head
        head_text = text[: spans[head - 1][1]]
        if not tail:
            return f"{head_text} {ELLIPSIS}"
        return f"{head_text} {ELLIPSIS} {text[spans[-tail][0]:]}"

    def _truncate_smart(
        self, text: str, max_tokens: int, total: int, priority: float
    ) -> str:
        sentences = split_sentences(text)
        if len(sentences) <= 1:
            return self._truncate_end(text, max_tokens, total)

        keep_ratio = 1 - (total - max_tokens) / total
        keep = max(1, math.floor(len(sentences) * keep_ratio))
        if priority > 0.7:
            selected = sentences[:keep]
        elif priority < 0.3:
            selected = sentences[-keep:]
        else:
            head = math.ceil(keep / 2)
            tail = keep - head
            selected = sentences[:head] + (sentences[-tail:] if tail else [])

        result = " ".join(selected)
        current = self._count(result)
        if current <= max_tokens:
            return result
        if priority < 0.3:
            return self._truncate_start(result, max_tokens, current)
        return self._truncate_end(result, max_tokens, current)

    def _cut_prefix(self, text: str, max_tokens: int) -> str:
        """Longest character prefix whose estimate fits the budget."""
        lo, hi = 0, len(text)
        while lo < hi:
            mid = (lo + hi + 1) // 2
            if self._count(text[:mid]) <= max_tokens:
                lo = mid
            else:
                hi = mid - 1
        return text[:lo].rstrip()

    def _cut_suffix(self, text: str, max_tokens: int) -> str:
        """Longest character suffix whose estimate fits the budget."""
        lo, hi = 0, len(text)
        while lo < hi:
            mid = (lo + hi + 1) // 2
            if self._count(text[len(text) - mid:]) <= max_tokens:
                lo = mid
            else:
                hi = mid - 1
        return text[len(text) - lo:].lstrip()


def truncate(
    text: str,
    max_tokens: int,
    strategy: str = "smart",
    priority: float = 0.5,
    counter: Optional[TokenCounter] = None,
) -> TruncationResult:
    """Module-level shortcut for ``Truncator(counter).truncate(...)``."""
    return Truncator(counter).truncate(text, max_tokens, strategy, priority)
