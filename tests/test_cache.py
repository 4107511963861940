"""Tests for the modification-time validated read cache."""

import asyncio
import os
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import patch

import pytest

from cache import CacheEntry, CacheStats, ReadCache, WaiterGroup


def set_mtime(path, seconds):
    """Pin a file's modification time so staleness checks are deterministic."""
    os.utime(path, ns=(int(seconds * 1e9), int(seconds * 1e9)))


def wait_for(predicate, timeout=5.0):
    deadline = time.time() + timeout
    while not predicate():
        if time.time() > deadline:
            return False
        time.sleep(0.005)
    return True


class ReadInterrupted(BaseException):
    """Stands in for KeyboardInterrupt or SystemExit during a read."""


class RefusingExecutor(ThreadPoolExecutor):
    """Thread pool that accepts only `accept` more submissions."""

    def __init__(self, accept):
        super().__init__(max_workers=2)
        self.accept = accept

    def submit(self, *args, **kwargs):
        if self.accept <= 0:
            raise RuntimeError("cannot schedule new futures after shutdown")
        self.accept -= 1
        return super().submit(*args, **kwargs)


@pytest.fixture
def cache():
    read_cache = ReadCache(max_workers=4)
    yield read_cache
    read_cache.shutdown()


@pytest.fixture
def sample(tmp_path):
    path = tmp_path / "a.txt"
    path.write_bytes(b"hello")
    set_mtime(path, 1_000_000)
    return str(path)


class TestReadCacheBasics:
    """Test cases for hits, misses and staleness."""

    def test_cache_initialization(self):
        """Test cache initializes correctly."""
        read_cache = ReadCache(max_workers=8, enabled=True)
        assert read_cache.max_workers == 8
        assert read_cache.enabled is True
        assert len(read_cache) == 0

    def test_first_read_loads_and_stores(self, cache, sample):
        """Test a miss reads from disk and stores an entry."""
        with patch.object(cache, "_read_file", wraps=cache._read_file) as reader:
            data = cache.get(sample)

        assert data == b"hello"
        assert reader.call_count == 1
        assert (sample, None) in cache
        assert len(cache) == 1

    def test_unchanged_file_is_served_from_cache(self, cache, sample):
        """Test a second read with the same mtime issues no disk read."""
        first = cache.get(sample)
        with patch.object(cache, "_read_file", wraps=cache._read_file) as reader:
            second = cache.get(sample)

        assert reader.call_count == 0
        assert first == second == b"hello"
        assert cache.get_stats().hits == 1

    def test_changed_mtime_reloads(self, cache, sample):
        """Test read-after-write coherence once the mtime differs."""
        assert cache.get(sample, "utf-8") == "hello"

        with open(sample, "w") as f:
            f.write("world")
        set_mtime(sample, 2_000_000)

        with patch.object(cache, "_read_file", wraps=cache._read_file) as reader:
            assert cache.get(sample, "utf-8") == "world"
        assert reader.call_count == 1
        assert len(cache) == 1

    def test_same_mtime_keeps_serving_cached_content(self, cache, sample):
        """Test staleness is judged by mtime only."""
        cache.get(sample)
        with open(sample, "wb") as f:
            f.write(b"HELLO")
        set_mtime(sample, 1_000_000)

        assert cache.get(sample) == b"hello"

    def test_encodings_are_distinct_entries(self, cache, sample):
        """Test the same file read with different encodings is cached twice."""
        assert cache.get(sample) == b"hello"
        assert cache.get(sample, "utf-8") == "hello"
        assert cache.get(sample, {"encoding": "utf-8", "errors": "replace"}) == "hello"
        assert len(cache) == 3

    def test_stat_failure_leaves_cache_untouched(self, cache, tmp_path):
        """Test a missing file fails the caller without mutating state."""
        missing = str(tmp_path / "missing.txt")
        with pytest.raises(FileNotFoundError):
            cache.get(missing)

        assert len(cache) == 0
        assert not cache.is_loading(missing)
        assert cache.get_stats().misses == 0

    def test_disabled_cache_always_reads(self, sample):
        """Test cache operations when disabled."""
        read_cache = ReadCache(enabled=False)
        with patch.object(read_cache, "_read_file", wraps=read_cache._read_file) as reader:
            read_cache.get(sample)
            read_cache.get(sample)

        assert reader.call_count == 2
        assert len(read_cache) == 0


class TestCopyIsolation:
    """Test cases for copy-on-delivery."""

    def test_mutating_result_does_not_affect_cache(self, cache, sample):
        first = cache.get(sample)
        first[0:5] = b"XXXXX"

        second = cache.get(sample)
        assert second == b"hello"
        assert second is not first

    def test_binary_results_are_private_bytearrays(self, cache, sample):
        first = cache.get(sample)
        second = cache.get(sample)
        assert isinstance(first, bytearray)
        assert isinstance(second, bytearray)
        assert first is not second

    def test_text_results_are_str(self, cache, sample):
        assert isinstance(cache.get(sample, "utf-8"), str)


class TestSingleFlight:
    """Test cases for coalescing of concurrent reads."""

    def test_concurrent_reads_share_one_disk_read(self, cache, sample):
        """Test N concurrent reads of a new file issue exactly one read."""
        gate = threading.Event()
        real_read = cache._read_file
        results = []

        def slow_read(path, encoding):
            gate.wait(5)
            return real_read(path, encoding)

        with patch.object(cache, "_read_file", side_effect=slow_read) as reader:
            threads = [
                threading.Thread(target=lambda: results.append(cache.get(sample)))
                for _ in range(5)
            ]
            for t in threads:
                t.start()

            assert wait_for(lambda: cache.waiters(sample) == 5)
            assert cache.is_loading(sample)
            gate.set()
            for t in threads:
                t.join(5)

        assert reader.call_count == 1
        assert len(results) == 5
        assert all(r == b"hello" for r in results)
        assert len({id(r) for r in results}) == 5
        assert not cache.is_loading(sample)

        stats = cache.get_stats()
        assert stats.misses == 1
        assert stats.coalesced == 4
        assert stats.loads == 1

    def test_read_failure_is_delivered_to_every_waiter(self, cache, sample):
        """Test a failed read fails all waiters and is not cached."""
        gate = threading.Event()
        errors = []

        def failing_read(path, encoding):
            gate.wait(5)
            raise PermissionError(13, "Permission denied", path)

        def reader_thread():
            try:
                cache.get(sample)
            except OSError as e:
                errors.append(e)

        with patch.object(cache, "_read_file", side_effect=failing_read):
            threads = [threading.Thread(target=reader_thread) for _ in range(3)]
            for t in threads:
                t.start()
            assert wait_for(lambda: cache.waiters(sample) == 3)
            gate.set()
            for t in threads:
                t.join(5)

        assert len(errors) == 3
        assert all(isinstance(e, PermissionError) for e in errors)
        assert len(cache) == 0
        assert not cache.is_loading(sample)
        assert cache.get_stats().load_failures == 1

        # No error caching: the next call retries from scratch
        with patch.object(cache, "_read_file", wraps=cache._read_file) as reader:
            assert cache.get(sample) == b"hello"
        assert reader.call_count == 1

    def test_read_after_reload_does_not_join_stale_group(self, cache, sample):
        """Test a call arriving after a reload completed is a plain hit."""
        cache.get(sample)
        with patch.object(cache, "_read_file", wraps=cache._read_file) as reader:
            cache.get(sample)
        assert reader.call_count == 0
        assert cache.waiters(sample) == 0

    @pytest.mark.asyncio
    async def test_async_reads_coalesce(self, cache, sample):
        """Test concurrent aget calls for a new file issue one read."""
        with patch.object(cache, "_read_file", wraps=cache._read_file) as reader:
            results = await asyncio.gather(*[cache.aget(sample, "utf-8") for _ in range(8)])

        assert reader.call_count == 1
        assert results == ["hello"] * 8

    @pytest.mark.asyncio
    async def test_async_stat_failure(self, cache, tmp_path):
        """Test aget propagates stat failures."""
        with pytest.raises(FileNotFoundError):
            await cache.aget(str(tmp_path / "missing"))
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_async_and_sync_share_entries(self, cache, sample):
        """Test entries stored by aget are served to get."""
        await cache.aget(sample)
        with patch.object(cache, "_read_file", wraps=cache._read_file) as reader:
            assert cache.get(sample) == b"hello"
        assert reader.call_count == 0

    def test_base_exception_does_not_leave_read_in_flight(self, cache, sample):
        """Test a read interrupted by a BaseException retires its group."""
        with patch.object(cache, "_read_file", side_effect=ReadInterrupted):
            with pytest.raises(ReadInterrupted):
                cache.get(sample)

        assert not cache.is_loading(sample)
        assert cache.get_stats().loading == 0
        assert cache.get_stats().load_failures == 1
        assert cache.get(sample) == b"hello"

    @pytest.mark.asyncio
    async def test_cancelled_waiter_does_not_affect_others(self, cache, sample):
        """Test cancelling one aget leaves the shared read to the rest."""
        gate = threading.Event()
        real_read = cache._read_file

        def slow_read(path, encoding):
            gate.wait(5)
            return real_read(path, encoding)

        with patch.object(cache, "_read_file", side_effect=slow_read) as reader:
            try:
                first = asyncio.create_task(cache.aget(sample))
                quitter = asyncio.create_task(cache.aget(sample))
                other = asyncio.create_task(cache.aget(sample))

                async def all_joined():
                    while cache.waiters(sample) < 3:
                        await asyncio.sleep(0.005)

                await asyncio.wait_for(all_joined(), 5)
                quitter.cancel()
                await asyncio.sleep(0)
            finally:
                gate.set()

            results = await asyncio.gather(first, other)

        assert [bytes(r) for r in results] == [b"hello", b"hello"]
        assert quitter.cancelled()
        assert reader.call_count == 1
        assert not cache.is_loading(sample)
        assert (sample, None) in cache

    @pytest.mark.asyncio
    async def test_async_submit_failure_settles_group(self, sample):
        """Test a leader that cannot schedule its read fails and retires the group."""
        executor = RefusingExecutor(accept=1)
        cache = ReadCache(executor=executor)
        try:
            with pytest.raises(RuntimeError):
                await cache.aget(sample)
            assert not cache.is_loading(sample)

            executor.accept = 2
            assert await cache.aget(sample) == b"hello"
        finally:
            executor.shutdown()


class TestPurge:
    """Test cases for purge and invalidate."""

    def test_purge_forces_one_new_read(self, cache, sample):
        """Test purge clears entries so the next read hits disk once."""
        cache.get(sample)
        cache.purge()
        assert len(cache) == 0

        with patch.object(cache, "_read_file", wraps=cache._read_file) as reader:
            cache.get(sample)
            cache.get(sample)
        assert reader.call_count == 1

    def test_purge_does_not_disturb_inflight_read(self, cache, sample, tmp_path):
        """Test purge during a read leaves that read's outcome intact."""
        other = tmp_path / "b.txt"
        other.write_bytes(b"other")
        cache.get(str(other))

        gate = threading.Event()
        real_read = cache._read_file
        results = []

        def slow_read(path, encoding):
            gate.wait(5)
            return real_read(path, encoding)

        with patch.object(cache, "_read_file", side_effect=slow_read):
            thread = threading.Thread(target=lambda: results.append(cache.get(sample)))
            thread.start()
            assert wait_for(lambda: cache.is_loading(sample))

            cache.purge()
            assert (str(other), None) not in cache

            gate.set()
            thread.join(5)

        assert results == [b"hello"]
        assert (sample, None) in cache

    def test_purge_skips_keys_being_loaded(self, cache, sample):
        """Test entries with an active waiter group survive purge."""
        key = cache.make_key(sample)
        cache._entries[key] = CacheEntry(mtime_ms=1, content=b"stale")
        cache._loading[key] = WaiterGroup(waiters=1)

        cache.purge()
        assert key in cache._entries

        del cache._loading[key]
        cache.purge()
        assert key not in cache._entries

    def test_invalidate_single_entry(self, cache, sample):
        cache.get(sample)
        cache.get(sample, "utf-8")

        assert cache.invalidate(sample) is True
        assert cache.invalidate(sample) is False
        assert (sample, None) not in cache
        assert (sample, "utf-8") in cache


class TestKeysAndStats:
    """Test cases for keys and statistics."""

    def test_make_key(self):
        assert ReadCache.make_key("/a/b") == "/a/b?null"
        assert ReadCache.make_key("/a/b", "utf-8") == "/a/b?utf-8"
        assert ReadCache.make_key("/a/b", {"errors": "strict", "encoding": "utf-8"}) == \
            '/a/b?{"encoding": "utf-8", "errors": "strict"}'

    def test_cache_stats(self, cache, sample):
        """Test cache statistics."""
        stats = cache.get_stats()
        assert stats.hits == 0
        assert stats.misses == 0
        assert stats.hit_rate == 0.0

        cache.get(sample)  # miss
        cache.get(sample)  # hit

        stats = cache.get_stats()
        assert stats.hits == 1
        assert stats.misses == 1
        assert stats.loads == 1
        assert stats.size == 1
        assert stats.hit_rate == 0.5

        cache.clear_stats()
        assert cache.get_stats().hits == 0
        assert len(cache) == 1

    def test_cache_stats_to_dict(self):
        """Test CacheStats to_dict method."""
        stats = CacheStats(hits=10, misses=5, coalesced=3, loads=5, size=4, hit_rate=0.55555)
        d = stats.to_dict()
        assert d["hits"] == 10
        assert d["misses"] == 5
        assert d["coalesced"] == 3
        assert d["size"] == 4
        assert d["hit_rate"] == 0.5556

    def test_entry_touch(self):
        entry = CacheEntry(mtime_ms=1, content=b"x")
        entry.touch()
        assert entry.hits == 1


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
