"""Tests for ResultCache and ResultLRU."""

import logging

import pytest

from contextforge.cache.compression import Compressor, GzipCompressor
from contextforge.cache.store import ResultCache, ResultLRU


class FailingCompressor(Compressor):
    def __init__(self, fail_compress=True, fail_decompress=True):
        self.fail_compress = fail_compress
        self.fail_decompress = fail_decompress
        self.compress_calls = 0

    async def compress(self, text):
        self.compress_calls += 1
        if self.fail_compress:
            raise RuntimeError("compress broke")
        return text.encode("utf-8")[: len(text) // 2]

    async def decompress(self, data):
        if self.fail_decompress:
            raise RuntimeError("decompress broke")
        return data.decode("utf-8")


class FlakyCompressor(GzipCompressor):
    """Fails with a transient error once before succeeding."""

    def __init__(self):
        super().__init__()
        self.attempts = 0

    async def compress(self, text):
        self.attempts += 1
        if self.attempts == 1:
            raise ConnectionError("transient")
        return await super().compress(text)


class TestGzipCompressor:
    @pytest.mark.asyncio
    async def test_lossless(self):
        compressor = GzipCompressor()
        text = "ünïcode prompt " * 50
        assert await compressor.decompress(await compressor.compress(text)) == text


class TestResultCache:
    @pytest.mark.asyncio
    async def test_miss_then_hit(self):
        cache = ResultCache()
        assert await cache.get("k") is None
        await cache.put("k", "value")
        assert await cache.get("k") == "value"
        assert cache.stats.misses == 1
        assert cache.stats.hits == 1

    @pytest.mark.asyncio
    async def test_large_payload_compressed(self):
        cache = ResultCache(compressor=GzipCompressor(), compression_threshold=100)
        value = "repeat " * 500
        entry = await cache.put("k", value)
        assert entry.compressed is True
        assert entry.size < entry.original_size
        assert await cache.get("k") == value
        assert cache.stats.compressions == 1
        assert cache.stats.decompressions == 1

    @pytest.mark.asyncio
    async def test_small_payload_not_compressed(self):
        cache = ResultCache(compressor=GzipCompressor(), compression_threshold=100)
        entry = await cache.put("k", "short")
        assert entry.compressed is False

    @pytest.mark.asyncio
    async def test_compression_can_be_skipped(self):
        cache = ResultCache(compressor=GzipCompressor(), compression_threshold=10)
        entry = await cache.put("k", "repeat " * 100, compress=False)
        assert entry.compressed is False

    @pytest.mark.asyncio
    async def test_compress_failure_stores_plain(self, caplog):
        cache = ResultCache(compressor=FailingCompressor(), compression_threshold=10)
        value = "x" * 100
        with caplog.at_level(logging.WARNING):
            entry = await cache.put("k", value)
        assert entry.compressed is False
        assert await cache.get("k") == value
        assert cache.stats.compression_failures == 1
        assert "uncompressed" in caplog.text

    @pytest.mark.asyncio
    async def test_decompress_failure_is_a_miss(self):
        compressor = FailingCompressor(fail_compress=False, fail_decompress=True)
        cache = ResultCache(compressor=compressor, compression_threshold=10)
        entry = await cache.put("k", "y" * 100)
        assert entry.compressed is True

        assert await cache.get("k") is None
        assert "k" not in cache
        assert cache.stats.misses == 1
        assert cache.total_size == 0

    @pytest.mark.asyncio
    async def test_transient_compress_error_is_retried(self):
        compressor = FlakyCompressor()
        cache = ResultCache(compressor=compressor, compression_threshold=10)
        entry = await cache.put("k", "repeat " * 100)
        assert entry.compressed is True
        assert compressor.attempts == 2

    @pytest.mark.asyncio
    async def test_evicts_oldest_first(self):
        cache = ResultCache(max_size=25)
        await cache.put("a", "a" * 10)
        await cache.put("b", "b" * 10)
        await cache.put("c", "c" * 10)
        assert cache.keys() == ["b", "c"]
        assert cache.total_size == 20
        assert cache.stats.evictions == 1

    @pytest.mark.asyncio
    async def test_replace_updates_size(self):
        cache = ResultCache()
        await cache.put("k", "a" * 10)
        await cache.put("k", "b" * 4)
        assert len(cache) == 1
        assert cache.total_size == 4
        assert await cache.get("k") == "bbbb"

    @pytest.mark.asyncio
    async def test_clear_resets_stats(self):
        cache = ResultCache()
        await cache.put("k", "v")
        await cache.get("k")
        cache.clear()
        snapshot = cache.snapshot()
        assert snapshot["entries"] == 0
        assert snapshot["hits"] == 0
        assert snapshot["total_size"] == 0

    @pytest.mark.asyncio
    async def test_delete(self):
        cache = ResultCache()
        await cache.put("k", "v")
        cache.delete("k")
        assert "k" not in cache
        assert cache.total_size == 0


class TestResultLRU:
    def test_capacity(self):
        lru = ResultLRU(capacity=2)
        lru.put("a", 1)
        lru.put("b", 2)
        lru.put("c", 3)
        assert "a" not in lru
        assert lru.get("c") == 3
        assert len(lru) == 2

    def test_reinsert_refreshes(self):
        lru = ResultLRU(capacity=2)
        lru.put("a", 1)
        lru.put("b", 2)
        lru.put("a", 10)
        lru.put("c", 3)
        assert "b" not in lru
        assert lru.get("a") == 10

    def test_resize(self):
        lru = ResultLRU(capacity=3)
        for key in "abc":
            lru.put(key, key)
        lru.resize(1)
        assert len(lru) == 1
        assert "c" in lru
