"""Modification-time validated read cache for whole-file reads.

This module provides an in-memory cache of file contents keyed by
resolved path and encoding. Every lookup stats the file and reuses the
cached content only while its modification time is unchanged. Concurrent
reads of the same key are coalesced so that at most one real read per
key is in flight.
"""

import asyncio
import json
import logging
import os
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Tuple, Union

from scopedfs_config import SCOPEDFS_CONFIG_DEFAULT, ScopedFSConfig
from utils.file_utils import Encoding, format_size, read_file_plain

logger = logging.getLogger(__name__)

Content = Union[bytes, bytearray, str]


@dataclass
class CacheEntry:
    """Single cache entry holding the content of one file.

    Attributes:
        mtime_ms: File modification time (milliseconds) the content was read at
        content: Cached content (bytes, or str for text reads). Never handed
            out directly; callers receive copies.
        created: When the entry was stored
        hits: Number of times this entry was served
    """
    mtime_ms: int
    content: Union[bytes, str]
    created: float = field(default_factory=time.time)
    hits: int = field(default=0)

    def touch(self) -> None:
        """Update access statistics when entry is served."""
        self.hits += 1


@dataclass
class WaiterGroup:
    """Callers waiting on one in-flight read.

    All callers share a single future; it is settled exactly once with the
    outcome of the read.

    Attributes:
        future: Future settled with the read content or its error
        waiters: Number of callers that joined this read
    """
    future: Future = field(default_factory=Future)
    waiters: int = field(default=0)


@dataclass
class CacheStats:
    """Cache statistics for monitoring and debugging.

    Attributes:
        hits: Reads served from cache
        misses: Reads that started a real read
        coalesced: Reads that joined an in-flight real read
        loads: Real reads that succeeded
        load_failures: Real reads that failed
        purged: Entries removed by purge()
        size: Current number of entries in cache
        loading: Keys currently being read
        hit_rate: hits / (hits + misses + coalesced)
    """
    hits: int = 0
    misses: int = 0
    coalesced: int = 0
    loads: int = 0
    load_failures: int = 0
    purged: int = 0
    size: int = 0
    loading: int = 0
    hit_rate: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        """Convert stats to dictionary for JSON serialization."""
        return {
            "hits": self.hits,
            "misses": self.misses,
            "coalesced": self.coalesced,
            "loads": self.loads,
            "load_failures": self.load_failures,
            "purged": self.purged,
            "size": self.size,
            "loading": self.loading,
            "hit_rate": round(self.hit_rate, 4),
        }


class ReadCache:
    """Thread-safe, single-flight cache for whole-file reads.

    Lookups follow a stat-then-maybe-read protocol:

    1. stat the file; a stat failure fails only this caller
    2. if an entry exists with the same modification time, return a copy
    3. otherwise join the in-flight read for the key, or start one
    4. when the read finishes, store the entry (on success) and settle
       every caller that joined, with the content or with the error

    Errors are never cached: after a failed read the next lookup retries.
    The cache is unbounded until purge() is called.

    Both maps are guarded by one lock, so checking for an in-flight read
    and registering a new one cannot race across threads.

    Example:
        >>> cache = ReadCache()
        >>> data = cache.get("/etc/hostname")             # disk read
        >>> data = cache.get("/etc/hostname")             # served from cache
        >>> text = await cache.aget("/etc/hostname", "utf-8")
        >>> cache.purge()

    Attributes:
        enabled: Whether caching is enabled. When disabled every lookup
            is a plain read.
        max_workers: Size of the thread pool used by aget()
    """

    def __init__(
        self,
        executor: Optional[ThreadPoolExecutor] = None,
        max_workers: int = 4,
        enabled: bool = True
    ):
        """Initialize the read cache.

        Args:
            executor: Thread pool for asynchronous stat/read calls. A pool
                     owned by the cache is created lazily when omitted.
            max_workers: Size of the owned thread pool (default: 4)
            enabled: Whether caching is enabled (default: True)
        """
        self.max_workers = max(max_workers, 1)
        self.enabled = enabled
        self._executor = executor
        self._owns_executor = executor is None

        self._entries: Dict[str, CacheEntry] = {}
        self._loading: Dict[str, WaiterGroup] = {}
        self._lock = threading.RLock()

        # Statistics
        self._hits = 0
        self._misses = 0
        self._coalesced = 0
        self._loads = 0
        self._load_failures = 0
        self._purged = 0

        logger.debug(
            "ReadCache initialized (max_workers=%d, enabled=%s)",
            self.max_workers,
            self.enabled
        )

    @classmethod
    def from_config(cls, config: ScopedFSConfig) -> "ReadCache":
        """Create a cache sized and enabled according to config."""
        return cls(max_workers=config.read_workers, enabled=config.cache_enabled)

    @property
    def executor(self) -> ThreadPoolExecutor:
        """Thread pool used for asynchronous filesystem calls."""
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self.max_workers,
                    thread_name_prefix="scopedfs-read"
                )
            return self._executor

    @staticmethod
    def make_key(path: str, encoding: Encoding = None) -> str:
        """Create the cache key for a path and encoding selector.

        Reads of the same file with different encodings are distinct
        entries. A mapping of read options is keyed by its JSON form.

        Args:
            path: Resolved file path
            encoding: None (binary), encoding name or mapping of options

        Returns:
            String key for cache lookup
        """
        if isinstance(encoding, Mapping):
            selector = json.dumps(dict(encoding), sort_keys=True)
        elif isinstance(encoding, str):
            selector = encoding
        else:
            selector = "null"
        return f"{path}?{selector}"

    @staticmethod
    def _stat_mtime(path: str) -> int:
        return os.stat(path).st_mtime_ns // 1_000_000

    def _read_file(self, path: str, encoding: Encoding) -> Union[bytes, str]:
        """Perform the real filesystem read."""
        return read_file_plain(path, encoding)

    @staticmethod
    def _copy(content: Content) -> Content:
        # str is immutable; binary content gets a private mutable buffer
        if isinstance(content, str):
            return content
        return bytearray(content)

    def _join(
        self,
        key: str,
        mtime_ms: int
    ) -> Tuple[Optional[Union[bytes, str]], Optional[WaiterGroup], bool]:
        """Serve from cache or register with a read for key.

        Returns:
            (content, None, False) on a hit, (None, group, is_leader) on a
            miss. The leader is responsible for performing the read.
        """
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and entry.mtime_ms == mtime_ms:
                entry.touch()
                self._hits += 1
                return entry.content, None, False

            # Stale or missing: the entry must not be served again
            self._entries.pop(key, None)

            group = self._loading.get(key)
            if group is not None:
                group.waiters += 1
                self._coalesced += 1
                return None, group, False

            group = WaiterGroup(waiters=1)
            # A running future ignores cancel(); one caller giving up must
            # not settle the read for the others.
            group.future.set_running_or_notify_cancel()
            self._loading[key] = group
            self._misses += 1
            return None, group, True

    def _fail(self, key: str, path: str, group: WaiterGroup, error: BaseException) -> None:
        """Retire group and settle its callers with error."""
        with self._lock:
            if self._loading.get(key) is group:
                del self._loading[key]
            self._load_failures += 1
            waiters = group.waiters
        logger.warning("Read failed for %s (%d waiting): %r", path, waiters, error)
        group.future.set_exception(error)

    def _load(
        self,
        key: str,
        path: str,
        encoding: Encoding,
        mtime_ms: int,
        group: WaiterGroup
    ) -> None:
        """Read the file and settle every caller waiting on group.

        Never raises: any failure, including a BaseException such as
        KeyboardInterrupt, is delivered through group.future.
        """
        try:
            content = self._read_file(path, encoding)
        except BaseException as e:
            self._fail(key, path, group, e)
            return

        with self._lock:
            self._entries[key] = CacheEntry(mtime_ms=mtime_ms, content=content)
            if self._loading.get(key) is group:
                del self._loading[key]
            self._loads += 1
            waiters = group.waiters

        logger.debug(
            "Cache loaded %s (%s, %d waiting)",
            key[:80],
            format_size(len(content)),
            waiters
        )
        group.future.set_result(content)

    def get(self, path: str, encoding: Encoding = None) -> Content:
        """Read a file through the cache, blocking the calling thread.

        Args:
            path: Resolved file path
            encoding: None (binary), encoding name or mapping of options

        Returns:
            A private copy of the content: bytearray for binary reads,
            str for text reads

        Raises:
            OSError: If the stat or the read fails
        """
        if not self.enabled:
            return self._read_file(path, encoding)

        key = self.make_key(path, encoding)
        mtime_ms = self._stat_mtime(path)

        content, group, leader = self._join(key, mtime_ms)
        if group is None:
            logger.debug("Cache hit for key: %s", key[:80])
            return self._copy(content)

        if leader:
            logger.debug("Cache miss for key: %s", key[:80])
            self._load(key, path, encoding, mtime_ms, group)
        else:
            logger.debug("Joined in-flight read for key: %s", key[:80])
        return self._copy(group.future.result())

    async def aget(self, path: str, encoding: Encoding = None) -> Content:
        """Read a file through the cache from a coroutine.

        The stat and the real read run in the cache's thread pool. The
        shared waiter future is a concurrent future, so callers on
        different event loops or threads can join the same read.

        Args:
            path: Resolved file path
            encoding: None (binary), encoding name or mapping of options

        Returns:
            A private copy of the content

        Raises:
            OSError: If the stat or the read fails
        """
        loop = asyncio.get_running_loop()
        if not self.enabled:
            return await loop.run_in_executor(self.executor, self._read_file, path, encoding)

        key = self.make_key(path, encoding)
        mtime_ms = await loop.run_in_executor(self.executor, self._stat_mtime, path)

        content, group, leader = self._join(key, mtime_ms)
        if group is None:
            logger.debug("Cache hit for key: %s", key[:80])
            return self._copy(content)

        if leader:
            logger.debug("Cache miss for key: %s", key[:80])
            # Not awaited: the read must finish even if this caller is cancelled
            try:
                self.executor.submit(self._load, key, path, encoding, mtime_ms, group)
            except BaseException as e:
                self._fail(key, path, group, e)
        else:
            logger.debug("Joined in-flight read for key: %s", key[:80])
        return self._copy(await asyncio.wrap_future(group.future))

    def purge(self) -> None:
        """Remove every cached entry.

        Entries whose key is being read are left in place so that the
        callers waiting on that read are not disturbed.
        """
        with self._lock:
            keys_to_remove = [key for key in self._entries if key not in self._loading]
            for key in keys_to_remove:
                del self._entries[key]
            self._purged += len(keys_to_remove)
            kept = len(self._entries)

        logger.info(
            "Read cache purged: %d entries removed, %d in flight kept",
            len(keys_to_remove),
            kept
        )

    def invalidate(self, path: str, encoding: Encoding = None) -> bool:
        """Drop a single entry without replacing it.

        Returns:
            True if an entry was removed
        """
        key = self.make_key(path, encoding)
        with self._lock:
            removed = self._entries.pop(key, None) is not None
        if removed:
            logger.debug("Cache entry invalidated: %s", key[:80])
        return removed

    def is_loading(self, path: str, encoding: Encoding = None) -> bool:
        """Check whether a real read is in flight for path and encoding."""
        with self._lock:
            return self.make_key(path, encoding) in self._loading

    def waiters(self, path: str, encoding: Encoding = None) -> int:
        """Number of callers waiting on the in-flight read (0 if none)."""
        with self._lock:
            group = self._loading.get(self.make_key(path, encoding))
            return group.waiters if group is not None else 0

    def get_stats(self) -> CacheStats:
        """Get current cache statistics."""
        with self._lock:
            total = self._hits + self._misses + self._coalesced
            return CacheStats(
                hits=self._hits,
                misses=self._misses,
                coalesced=self._coalesced,
                loads=self._loads,
                load_failures=self._load_failures,
                purged=self._purged,
                size=len(self._entries),
                loading=len(self._loading),
                hit_rate=self._hits / total if total > 0 else 0.0
            )

    def clear_stats(self) -> None:
        """Reset cache statistics (preserves entries)."""
        with self._lock:
            self._hits = 0
            self._misses = 0
            self._coalesced = 0
            self._loads = 0
            self._load_failures = 0
            self._purged = 0
            logger.debug("Cache statistics reset")

    def shutdown(self, wait: bool = True) -> None:
        """Shut down the owned thread pool. It is recreated on next use."""
        with self._lock:
            executor = self._executor if self._owns_executor else None
            if executor is not None:
                self._executor = None
        if executor is not None:
            executor.shutdown(wait=wait)

    def __len__(self) -> int:
        """Return current number of cache entries."""
        with self._lock:
            return len(self._entries)

    def __contains__(self, key_tuple: Tuple[str, Encoding]) -> bool:
        """Check if (path, encoding) has a cached entry.

        The entry is not validated against the file's current
        modification time.
        """
        if len(key_tuple) != 2:
            return False
        path, encoding = key_tuple
        with self._lock:
            return self.make_key(path, encoding) in self._entries


# Process-wide cache shared by every ScopedFS that is not given its own.
default_cache = ReadCache.from_config(SCOPEDFS_CONFIG_DEFAULT)
