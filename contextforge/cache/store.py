"""Content-addressed, size-bounded caches for assembled prompts."""

from __future__ import annotations

import itertools
import logging
import time
from collections import OrderedDict
from dataclasses import asdict, dataclass
from typing import Generic, Optional, TypeVar, Union

from contextforge.cache.compression import Compressor
from contextforge.errors import CacheOperationError
from contextforge.utils.retry import compressor_retry

logger = logging.getLogger(__name__)

DEFAULT_MAX_SIZE = 5 * 1024 * 1024
DEFAULT_COMPRESSION_THRESHOLD = 1024

T = TypeVar("T")


@dataclass(frozen=True)
class CacheEntry:
    """A stored payload. Never mutated; replaced or evicted as a whole."""

    key: str
    payload: Union[str, bytes]
    size: int
    original_size: int
    compressed: bool
    created_at: float
    sequence: int


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    compressions: int = 0
    decompressions: int = 0
    compression_failures: int = 0
    evictions: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


class ResultCache:
    """Two-tier byte-bounded cache of serialized build results.

    Payloads larger than ``compression_threshold`` bytes go to the compressed
    tier when the injected compressor makes them smaller. When the tracked
    size exceeds ``max_size``, entries from both tiers are evicted oldest
    insertion first. Compressor failures never reach the caller: a failed
    write is stored uncompressed and a failed read counts as a miss.
    """

    def __init__(
        self,
        max_size: int = DEFAULT_MAX_SIZE,
        compressor: Optional[Compressor] = None,
        compression_threshold: int = DEFAULT_COMPRESSION_THRESHOLD,
    ) -> None:
        self.max_size = max_size
        self._compressor = compressor
        self._threshold = compression_threshold
        self._plain: dict[str, CacheEntry] = {}
        self._compressed: dict[str, CacheEntry] = {}
        self._sequence = itertools.count()
        self.total_size = 0
        self.stats = CacheStats()

    def __len__(self) -> int:
        return len(self._plain) + len(self._compressed)

    def __contains__(self, key: str) -> bool:
        return key in self._plain or key in self._compressed

    def keys(self) -> list[str]:
        return [e.key for e in self._ordered_entries()]

    async def put(self, key: str, value: str, compress: bool = True) -> CacheEntry:
        """Store ``value`` under ``key``, replacing any previous entry."""
        self._remove(key)
        original_size = len(value.encode("utf-8"))
        entry: Optional[CacheEntry] = None

        if compress and self._compressor is not None and original_size > self._threshold:
            try:
                data = await self._compress(value)
            except CacheOperationError as e:
                self.stats.compression_failures += 1
                logger.warning("Storing %s uncompressed: %s", key, e)
            else:
                if len(data) < original_size:
                    entry = self._entry(key, data, len(data), original_size, True)
                    self._compressed[key] = entry
                    self.stats.compressions += 1

        if entry is None:
            entry = self._entry(key, value, original_size, original_size, False)
            self._plain[key] = entry

        self.total_size += entry.size
        self._evict()
        return entry

    async def get(self, key: str) -> Optional[str]:
        """Return the stored value, or None on a miss."""
        entry = self._compressed.get(key)
        if entry is not None:
            try:
                value = await self._decompress(entry.payload)
            except CacheOperationError as e:
                logger.warning("Dropping unreadable cache entry %s: %s", key, e)
                self._remove(key)
            else:
                self.stats.hits += 1
                self.stats.decompressions += 1
                return value

        entry = self._plain.get(key)
        if entry is not None:
            self.stats.hits += 1
            return entry.payload  # type: ignore[return-value]

        self.stats.misses += 1
        return None

    def delete(self, key: str) -> None:
        self._remove(key)

    def clear(self) -> None:
        """Drop every entry and reset statistics."""
        self._plain.clear()
        self._compressed.clear()
        self.total_size = 0
        self.stats = CacheStats()

    def snapshot(self) -> dict[str, int]:
        return {
            **self.stats.to_dict(),
            "entries": len(self),
            "compressed_entries": len(self._compressed),
            "total_size": self.total_size,
            "max_size": self.max_size,
        }

    def _entry(
        self,
        key: str,
        payload: Union[str, bytes],
        size: int,
        original_size: int,
        compressed: bool,
    ) -> CacheEntry:
        return CacheEntry(
            key=key,
            payload=payload,
            size=size,
            original_size=original_size,
            compressed=compressed,
            created_at=time.time(),
            sequence=next(self._sequence),
        )

    @compressor_retry
    async def _call_compress(self, value: str) -> bytes:
        return await self._compressor.compress(value)  # type: ignore[union-attr]

    @compressor_retry
    async def _call_decompress(self, data: bytes) -> str:
        return await self._compressor.decompress(data)  # type: ignore[union-attr]

    async def _compress(self, value: str) -> bytes:
        try:
            return await self._call_compress(value)
        except Exception as e:
            raise CacheOperationError(f"compression failed: {e}") from e

    async def _decompress(self, payload: Union[str, bytes]) -> str:
        if self._compressor is None or not isinstance(payload, bytes):
            raise CacheOperationError("no compressor available for compressed entry")
        try:
            return await self._call_decompress(payload)
        except Exception as e:
            raise CacheOperationError(f"decompression failed: {e}") from e

    def _remove(self, key: str) -> None:
        entry = self._plain.pop(key, None) or self._compressed.pop(key, None)
        if entry is not None:
            self.total_size -= entry.size

    def _ordered_entries(self) -> list[CacheEntry]:
        return sorted(
            [*self._plain.values(), *self._compressed.values()],
            key=lambda e: (e.created_at, e.sequence),
        )

    def _evict(self) -> None:
        if self.total_size <= self.max_size:
            return
        for entry in self._ordered_entries():
            if self.total_size <= self.max_size:
                break
            self._remove(entry.key)
            self.stats.evictions += 1
            logger.debug(
                "Evicted %s (%d bytes, total=%d/%d)",
                entry.key, entry.size, self.total_size, self.max_size,
            )


class ResultLRU(Generic[T]):
    """Entry-count bounded store evicting the oldest insertion first."""

    def __init__(self, capacity: int = 100) -> None:
        self.capacity = capacity
        self._entries: OrderedDict[str, T] = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def get(self, key: str) -> Optional[T]:
        return self._entries.get(key)

    def put(self, key: str, value: T) -> None:
        if key in self._entries:
            self._entries.move_to_end(key)
        self._entries[key] = value
        self._shrink()

    def resize(self, capacity: int) -> None:
        self.capacity = capacity
        self._shrink()

    def clear(self) -> None:
        self._entries.clear()

    def _shrink(self) -> None:
        while len(self._entries) > self.capacity:
            self._entries.popitem(last=False)
