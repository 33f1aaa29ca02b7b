"""Lossy text compression for assembled prompts."""

from __future__ import annotations

import re
from dataclasses import dataclass

# Filler phrases that carry little information for the model
REDUNDANT_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"\bI think,?\s+", re.IGNORECASE),
    re.compile(r"\bin my opinion,?\s+", re.IGNORECASE),
    re.compile(r"\bto be honest,?\s+", re.IGNORECASE),
    re.compile(r"\bbasically,?\s+", re.IGNORECASE),
    re.compile(r"\bneedless to say,?\s+", re.IGNORECASE),
    re.compile(r",?\s+and so on\b", re.IGNORECASE),
    re.compile(r",?\s+and so forth\b", re.IGNORECASE),
    re.compile(r"\b(?:very|really|quite|extremely|actually)\s+", re.IGNORECASE),
]

SHORT_FORMS: dict[str, str] = {
    "character": "char",
    "description": "desc",
    "personality": "persona",
    "information": "info",
    "conversation": "convo",
    "example": "ex",
    "environment": "env",
    "approximately": "approx",
    "because": "bc",
    "through": "thru",
    "though": "tho",
    "without": "w/o",
}

_SHORT_FORM_PATTERN = re.compile(
    r"\b(" + "|".join(SHORT_FORMS) + r")(s?)\b", re.IGNORECASE
)
_SPACES = re.compile(r"[ \t]+")
_TRAILING_SPACES = re.compile(r"[ \t]+\n")
_BLANK_LINES = re.compile(r"\n{3,}")
_SPACE_BEFORE_PUNCT = re.compile(r"[ \t]+([.,!?;:])")


@dataclass
class TextCompression:
    """Outcome of a lossy compression pass."""

    text: str
    compressed: bool
    original_size: int
    compressed_size: int

    @property
    def savings(self) -> int:
        return self.original_size - self.compressed_size

    @property
    def ratio(self) -> float:
        if not self.original_size:
            return 1.0
        return self.compressed_size / self.original_size

    def to_dict(self) -> dict:
        return {
            "compressed": self.compressed,
            "originalSize": self.original_size,
            "compressedSize": self.compressed_size,
            "savings": self.savings,
            "compressionRatio": self.ratio,
        }


def _shorten(match: re.Match[str]) -> str:
    word, plural = match.group(1), match.group(2)
    short = SHORT_FORMS[word.lower()]
    if word[0].isupper():
        short = short[0].upper() + short[1:]
    return short + plural


def collapse_whitespace(text: str) -> str:
    text = _SPACES.sub(" ", text)
    text = _TRAILING_SPACES.sub("\n", text)
    return _BLANK_LINES.sub("\n\n", text).strip()


def remove_redundancy(text: str) -> str:
    for pattern in REDUNDANT_PATTERNS:
        text = pattern.sub("", text)
    text = _SPACE_BEFORE_PUNCT.sub(r"\1", text)
    return _SPACES.sub(" ", text)


def shorten_words(text: str) -> str:
    return _SHORT_FORM_PATTERN.sub(_shorten, text)


def compress_text(
    text: str,
    remove_whitespace: bool = True,
    remove_redundant: bool = True,
    shorten: bool = True,
) -> TextCompression:
    """Apply the enabled lossy passes; the result is never longer than the input."""
    original_size = len(text)
    result = text
    if remove_whitespace:
        result = collapse_whitespace(result)
    if remove_redundant:
        result = remove_redundancy(result)
    if shorten:
        result = shorten_words(result)

    if len(result) >= original_size:
        return TextCompression(
            text=text,
            compressed=False,
            original_size=original_size,
            compressed_size=original_size,
        )
    return TextCompression(
        text=result,
        compressed=True,
        original_size=original_size,
        compressed_size=len(result),
    )
