import asyncio
import logging
import os
import shutil
import tempfile
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

from cache import ReadCache, default_cache
from scopedfs_config import DEFAULT_ROOT, SCOPEDFS_CONFIG_DEFAULT, ScopedFSConfig
from utils import file_utils, walk_utils
from utils.file_utils import Encoding
from utils.path_utils import PathInput, PathResolver, coerce_path

logger = logging.getLogger(__name__)

ReadCallback = Callable[[Optional[BaseException], Any], None]

# Marks an omitted encoding argument, so the configured default applies
_DEFAULT_ENCODING: Any = object()

# Callback-style reads block a worker while waiting on a coalesced read,
# so they run on their own pool rather than the cache's.
_callback_executor = ThreadPoolExecutor(thread_name_prefix="scopedfs-callback")


def infer_read_args(args: Tuple[Any, ...]) -> Tuple[Encoding, bool, Optional[ReadCallback]]:
    """Disambiguate the positional arguments of a callback-style read.

    Shapes (after the path argument):

    - (callback)                     -> default encoding, caching disabled
    - (use_cache, callback)          -> default encoding, caching = use_cache
    - (encoding, callback)           -> caching disabled
    - (encoding, use_cache, callback)

    Args:
        args: Positional arguments following the path

    Returns:
        Tuple of (encoding, use_cache, callback). The encoding is
        _DEFAULT_ENCODING when none was given, so the scope's configured
        default applies. A given encoding that is neither a string nor a
        mapping of read options becomes None.
    """
    if not args:
        return _DEFAULT_ENCODING, False, None

    encoding: Any = args[0]
    use_cache: Any = False
    callback: Any = None

    if callable(encoding):
        callback = encoding
        encoding = _DEFAULT_ENCODING
    elif isinstance(encoding, bool):
        use_cache = encoding
        callback = args[1] if len(args) > 1 else None
        encoding = _DEFAULT_ENCODING
    elif len(args) > 1 and callable(args[1]):
        callback = args[1]
    else:
        use_cache = bool(args[1]) if len(args) > 1 else False
        callback = args[2] if len(args) > 2 else None

    if encoding is not _DEFAULT_ENCODING and not isinstance(encoding, (str, Mapping)):
        encoding = None
    return encoding, bool(use_cache), callback if callable(callback) else None


class ScopedFS:
    """Filesystem access confined to a root directory.

    Every relative path given to an instance is resolved against its root
    first. When the instance is locked, '..' navigation is clamped at the
    root instead of escaping it; no error is raised and the clamped path
    simply may not exist.

    Whole-file reads can go through a read cache that is validated
    against the file's modification time and coalesces concurrent reads.
    The cache is process-wide unless a ReadCache is injected, so two
    instances reading the same absolute path share an entry.

    The usual os-level operations (stat, rename, mkdir, ...) are exposed
    as pass-throughs that resolve their path argument(s) first.

    Example:
        >>> fs = ScopedFS("/srv/site", locked=True)
        >>> fs.path_of("../../etc/passwd")
        '/srv/site/etc/passwd'
        >>> page = fs.read_file("index.html", "utf-8", use_cache=True)
        >>> assets = fs.scoped("assets")
        >>> assets.each_file_matching_sorted(r"\\.css$")
    """

    def __init__(
        self,
        path: PathInput = DEFAULT_ROOT,
        locked: Optional[bool] = None,
        cache: Optional[ReadCache] = None,
        config: Optional[ScopedFSConfig] = None,
    ):
        """Initialize a scoped filesystem.

        Args:
            path: Root directory ('' means the whole filesystem)
            locked: Whether '..' navigation is clamped at the root.
                   Defaults to config.locked.
            cache: Read cache to use (default: the process-wide cache)
            config: Configuration (uses default if not provided)

        Raises:
            TypeError: If path is not a path-like value
            ValueError: If the configuration is invalid
        """
        self.config = config or SCOPEDFS_CONFIG_DEFAULT
        self.config.validate()
        self.path = coerce_path(path)
        self.locked = self.config.locked if locked is None else bool(locked)
        self._resolver = PathResolver(self.path, self.locked)
        self._cache = cache if cache is not None else default_cache

        logger.debug("Scope created (root=%r, locked=%s)", self.path, self.locked)

    def __repr__(self) -> str:
        return f"ScopedFS(path={self.path!r}, locked={self.locked})"

    @property
    def cache(self) -> ReadCache:
        """The read cache used by this instance."""
        return self._cache

    def path_of(self, relpath: PathInput) -> str:
        """Resolve a path relative to this scope's root."""
        return self._resolver.resolve(relpath)

    def scoped(self, relpath: PathInput = "", locked: Optional[bool] = None) -> "ScopedFS":
        """Derive a narrower scope rooted at relpath.

        Args:
            relpath: New root, relative to this scope
            locked: Lock flag of the child (default: this scope's flag)

        Returns:
            New ScopedFS sharing this instance's cache and configuration
        """
        return ScopedFS(
            self.path_of(relpath or ""),
            locked=self.locked if locked is None else locked,
            cache=self._cache,
            config=self.config,
        )

    def create_temp_fs(self, suffix: Optional[str] = None, prefix: Optional[str] = None) -> "ScopedFS":
        """Create a fresh temporary directory and return a scope rooted there."""
        temp_dir = tempfile.mkdtemp(suffix=suffix, prefix=prefix or self.config.temp_prefix)
        logger.debug("Created temporary scope: %s", temp_dir)
        return ScopedFS(temp_dir, locked=False, cache=self._cache, config=self.config)

    # Reads

    def _encoding(self, encoding: Any) -> Encoding:
        if encoding is _DEFAULT_ENCODING:
            return self.config.default_encoding
        return encoding

    def _use_cache(self, use_cache: bool) -> bool:
        return bool(use_cache) and self.config.cache_enabled

    def read_file(
        self,
        relpath: PathInput,
        encoding: Encoding = _DEFAULT_ENCODING,
        use_cache: bool = False
    ) -> Union[bytes, bytearray, str]:
        """Read a whole file, optionally through the read cache.

        Args:
            relpath: Path relative to this scope
            encoding: None for bytes, an encoding name, or a mapping of read
                     options ({"encoding": ..., "errors": ...}).
                     Defaults to config.default_encoding.
            use_cache: Serve from the cache while the file's modification
                      time is unchanged

        Returns:
            File content. Cached binary reads return a private bytearray.

        Raises:
            TypeError: If relpath is not a path-like value
            OSError: If the file cannot be stat'ed or read
        """
        path = self.path_of(relpath)
        encoding = self._encoding(encoding)
        if self._use_cache(use_cache):
            return self._cache.get(path, encoding)
        return file_utils.read_file_plain(path, encoding)

    async def aread_file(
        self,
        relpath: PathInput,
        encoding: Encoding = _DEFAULT_ENCODING,
        use_cache: bool = False
    ) -> Union[bytes, bytearray, str]:
        """Asynchronous read_file. Blocking calls run in the cache's thread pool."""
        path = self.path_of(relpath)
        encoding = self._encoding(encoding)
        if self._use_cache(use_cache):
            return await self._cache.aget(path, encoding)
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            self._cache.executor, file_utils.read_file_plain, path, encoding
        )

    def read_file_cb(self, relpath: Any, *args: Any) -> Future:
        """Callback-style read_file.

        Accepts (callback), (use_cache, callback), (encoding, callback) or
        (encoding, use_cache, callback) after the path; see
        infer_read_args. The callback is called as callback(err, data) from
        a worker thread. Errors, including a bad path argument, are passed
        to the callback and never raised.

        Returns:
            Future settled with the same outcome
        """
        encoding, use_cache, callback = infer_read_args(args)
        future = _callback_executor.submit(self.read_file, relpath, encoding, use_cache)

        if callback is not None:
            def deliver(done: Future) -> None:
                err = done.exception()
                if err is not None:
                    logger.debug("read_file(%r) failed: %s", relpath, err)
                    callback(err, None)
                else:
                    callback(None, done.result())

            future.add_done_callback(deliver)
        return future

    def purge_cache(self) -> None:
        """Purge the read cache. The cache is shared, so this is not per scope."""
        self._cache.purge()

    # Additions on top of the plain os operations

    def rmrf(self, relpath: PathInput) -> None:
        """Remove a file or directory tree; a missing path is not an error."""
        file_utils.rmrf(self.path_of(relpath))

    def mkdirp(self, relpath: PathInput, mode: int = 0o777) -> None:
        """Create a directory and any missing parents."""
        file_utils.mkdirp(self.path_of(relpath), mode)

    def put(self, relpath: PathInput, data: Union[bytes, bytearray, str], encoding: Encoding = None) -> None:
        """Write a file, creating its parent directories first."""
        file_utils.put(self.path_of(relpath), data, encoding)

    def apply(self, update: Mapping[str, Any]) -> List[Any]:
        """Apply a mapping of relative paths to content.

        For each (relpath, content):

        - callable content is called with the resolved path
        - None removes the path (file or directory tree)
        - a relpath ending in '/' creates that directory
        - anything else is written to the file (parents created)

        Returns:
            One result per entry, in mapping order
        """
        results: List[Any] = []
        for relpath, content in update.items():
            if callable(content):
                results.append(content(self.path_of(relpath)))
            elif content is None:
                results.append(self.rmrf(relpath))
            elif relpath.endswith("/"):
                results.append(self.mkdirp(relpath.rstrip("/")))
            else:
                results.append(self.put(relpath, content))
        return results

    def each_file(self, relpath: PathInput = "", recurse: bool = True):
        return walk_utils.each_file(self.path_of(relpath), recurse, self.config.follow_symlinks)

    def each_directory(self, relpath: PathInput = "", recurse: bool = True):
        return walk_utils.each_directory(self.path_of(relpath), recurse, self.config.follow_symlinks)

    def each_file_or_directory(self, relpath: PathInput = "", recurse: bool = True):
        return walk_utils.each_file_or_directory(
            self.path_of(relpath), recurse, self.config.follow_symlinks
        )

    def each_file_matching(self, expression: walk_utils.Expression, relpath: PathInput = "", recurse: bool = True):
        return walk_utils.each_file_matching(
            expression, self.path_of(relpath), recurse, self.config.follow_symlinks
        )

    def each_file_matching_sorted(
        self,
        expression: walk_utils.Expression,
        relpath: PathInput = "",
        recurse: bool = True,
        key: Optional[Callable[[str], Any]] = None,
        reverse: bool = False
    ) -> List[str]:
        return walk_utils.each_file_matching_sorted(
            expression, self.path_of(relpath), recurse, key, reverse, self.config.follow_symlinks
        )

    def read_each_file_matching(
        self,
        expression: walk_utils.Expression,
        relpath: PathInput = "",
        recurse: bool = True,
        encoding: Encoding = None,
        skip_binary: bool = False
    ):
        return walk_utils.read_each_file_matching(
            expression, self.path_of(relpath), recurse, encoding, skip_binary,
            self.config.follow_symlinks
        )


# Delegation table: operation name -> plain function. Single/double path
# operations get their first one/two arguments resolved through path_of;
# operations on file descriptors are forwarded untouched. Functions the
# platform lacks (e.g. os.lchown on Windows) are left out.

_SINGLE_PATH_OPS: Dict[str, Optional[Callable[..., Any]]] = {
    "access": os.access,
    "stat": os.stat,
    "lstat": os.lstat,
    "chmod": os.chmod,
    "chown": getattr(os, "chown", None),
    "lchown": getattr(os, "lchown", None),
    "readlink": os.readlink,
    "realpath": os.path.realpath,
    "unlink": os.unlink,
    "rmdir": os.rmdir,
    "mkdir": os.mkdir,
    "readdir": os.listdir,
    "exists": os.path.exists,
    "open": open,
    "utimes": os.utime,
    "truncate": os.truncate,
    "write_file": file_utils.write_file,
    "append_file": file_utils.append_file,
}

_DOUBLE_PATH_OPS: Dict[str, Optional[Callable[..., Any]]] = {
    "rename": os.rename,
    "link": getattr(os, "link", None),
    "symlink": os.symlink,
    "copy_file": shutil.copyfile,
}

_NO_PATH_OPS: Dict[str, Optional[Callable[..., Any]]] = {
    "fstat": os.fstat,
    "fsync": os.fsync,
    "fdatasync": getattr(os, "fdatasync", None),
    "ftruncate": os.ftruncate,
    "fchmod": getattr(os, "fchmod", None),
    "fchown": getattr(os, "fchown", None),
    "close": os.close,
    "read": os.read,
    "write": os.write,
}


def _single_path(name: str, func: Callable[..., Any]) -> Callable[..., Any]:
    def method(self: ScopedFS, path: PathInput, *args: Any, **kwargs: Any) -> Any:
        return func(self.path_of(path), *args, **kwargs)
    method.__name__ = name
    method.__doc__ = f"Resolve path within the scope, then call {func.__qualname__}."
    return method


def _double_path(name: str, func: Callable[..., Any]) -> Callable[..., Any]:
    def method(self: ScopedFS, src: PathInput, dst: PathInput, *args: Any, **kwargs: Any) -> Any:
        return func(self.path_of(src), self.path_of(dst), *args, **kwargs)
    method.__name__ = name
    method.__doc__ = f"Resolve both paths within the scope, then call {func.__qualname__}."
    return method


def _install_delegates() -> None:
    for name, func in _SINGLE_PATH_OPS.items():
        if func is not None:
            setattr(ScopedFS, name, _single_path(name, func))
    for name, func in _DOUBLE_PATH_OPS.items():
        if func is not None:
            setattr(ScopedFS, name, _double_path(name, func))
    for name, func in _NO_PATH_OPS.items():
        if func is not None:
            setattr(ScopedFS, name, staticmethod(func))


_install_delegates()


def scope(
    path: PathInput,
    locked: bool = False,
    cache: Optional[ReadCache] = None,
    config: Optional[ScopedFSConfig] = None
) -> ScopedFS:
    """Create a new scoped view of the filesystem rooted at path."""
    return ScopedFS(path, locked=locked, cache=cache, config=config)


# Default instance: the whole filesystem, unlocked.
root_fs = ScopedFS(DEFAULT_ROOT)
