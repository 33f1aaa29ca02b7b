"""Token counting utilities.

All counters are approximations used for budgeting; none of them claims to
match a specific model's tokenizer except ``tiktoken``.
"""

from __future__ import annotations

import math
import re
from functools import lru_cache
from typing import Callable, Optional

from contextforge.errors import ConfigurationError

TokenCounter = Callable[[str], int]

DEFAULT_METHOD = "character"

_PUNCTUATION = re.compile(r"[^\w\s]")


def count_tokens_approximate(text: Optional[str]) -> int:
    """Approximate token count using the ceil(chars/4) heuristic."""
    if not text:
        return 0
    return math.ceil(len(text) / 4)


def count_tokens_words(text: Optional[str]) -> int:
    """Count whitespace-delimited words."""
    if not text:
        return 0
    return len(text.split())


def count_tokens_heuristic(text: Optional[str]) -> int:
    """Approximate sub-word tokenization by splitting around punctuation."""
    if not text:
        return 0
    padded = _PUNCTUATION.sub(lambda m: f" {m.group(0)} ", text.lower())
    return len([token for token in padded.split() if token])


@lru_cache(maxsize=4)
def _encoding(name: str):
    import tiktoken

    return tiktoken.get_encoding(name)


def count_tokens_tiktoken(
    text: Optional[str], encoding: str = "cl100k_base"
) -> int:
    """Count tokens using a tiktoken encoding."""
    if not text:
        return 0
    return len(_encoding(encoding).encode(text, disallowed_special=()))


TOKEN_METHODS: dict[str, TokenCounter] = {
    "character": count_tokens_approximate,
    "word": count_tokens_words,
    "heuristic": count_tokens_heuristic,
    "gpt2": count_tokens_heuristic,
    "tiktoken": count_tokens_tiktoken,
}


def resolve_counter(method: str = DEFAULT_METHOD) -> TokenCounter:
    """Return the counter for ``method`` or fail fast on unknown names."""
    try:
        return TOKEN_METHODS[method]
    except KeyError:
        raise ConfigurationError(
            f"Unknown token counting method: {method}"
        ) from None


def count_tokens(text: Optional[str], method: str = DEFAULT_METHOD) -> int:
    """Estimate the number of tokens in ``text`` with the given method."""
    return resolve_counter(method)(text)
