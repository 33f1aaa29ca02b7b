"""Compressor interface injected into the result cache."""

from __future__ import annotations

import gzip
from abc import ABC, abstractmethod


class Compressor(ABC):
    """Abstract interface for lossless payload compression."""

    @abstractmethod
    async def compress(self, text: str) -> bytes:
        """Compress ``text`` to bytes."""
        ...

    @abstractmethod
    async def decompress(self, data: bytes) -> str:
        """Restore the exact text passed to ``compress``."""
        ...


class GzipCompressor(Compressor):
    """Gzip adapter over the standard library."""

    def __init__(self, level: int = 6) -> None:
        self._level = level

    async def compress(self, text: str) -> bytes:
        return gzip.compress(text.encode("utf-8"), compresslevel=self._level)

    async def decompress(self, data: bytes) -> str:
        return gzip.decompress(data).decode("utf-8")
