"""Path utility functions for scoped filesystem access.

This module provides the path resolution rule that confines relative
paths to a root directory. In locked mode, attempts to navigate above
the root (e.g. using '..') are clamped to the root instead of rejected.
"""

import os
from typing import Union

PathInput = Union[str, bytes, os.PathLike]

_SEPARATORS = os.sep + (os.altsep or "")


def coerce_path(value: PathInput) -> str:
    """Convert a path argument to text.

    Args:
        value: Path as str, UTF-8 bytes, or os.PathLike

    Returns:
        Path as a string

    Raises:
        TypeError: If value is not a path-like value
    """
    if isinstance(value, str):
        return value
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("utf-8")
    if isinstance(value, os.PathLike):
        return coerce_path(os.fspath(value))
    raise TypeError(f"Bad argument: path must be a string, got {type(value).__name__}")


def _join(root: str, relative_path: str) -> str:
    # Join-then-normalize: the relative part is always appended to root,
    # even when it starts with a separator.
    if not root:
        return os.path.normpath(relative_path) if relative_path else "."
    return os.path.normpath(os.path.join(root, relative_path.lstrip(_SEPARATORS)))


def _clamp(relative_path: str) -> str:
    """Normalize a path as if it were rooted, so it cannot climb above root."""
    _, tail = os.path.splitdrive(relative_path)
    return os.path.normpath(os.sep + tail).lstrip(_SEPARATORS)


def resolve_path(root: str, relative_path: PathInput, locked: bool = False) -> str:
    """Resolve a relative path against a scope root.

    Never touches the filesystem and never fails for a well-typed input.

    Args:
        root: Root directory of the scope ('' means the whole filesystem)
        relative_path: Path relative to root (str, UTF-8 bytes or PathLike)
        locked: If True, '..' segments are clamped at root

    Returns:
        Resolved path

    Raises:
        TypeError: If relative_path is not a path-like value

    Example:
        >>> resolve_path("/tmp/root", "../../etc/passwd", locked=True)
        '/tmp/root/etc/passwd'
        >>> resolve_path("/tmp/root", "../../etc/passwd")
        '/etc/passwd'
    """
    relative_path = coerce_path(relative_path)
    if not locked:
        return _join(root, relative_path)

    clamped = _clamp(relative_path)
    if not root:
        return os.sep + clamped
    return _join(root, clamped)


class PathResolver:
    """Path resolver bound to a scope root.

    Example:
        >>> resolver = PathResolver("/workspace", locked=True)
        >>> resolver.resolve("subdir/file.txt")
        '/workspace/subdir/file.txt'
        >>> resolver.resolve("../../../etc/passwd")
        '/workspace/etc/passwd'
    """

    def __init__(self, base_path: str, locked: bool = False):
        """Initialize the path resolver.

        Args:
            base_path: Root path of the scope
            locked: Whether navigation above the root is clamped
        """
        self.base_path = coerce_path(base_path)
        self.locked = bool(locked)

    def resolve(self, relative_path: PathInput) -> str:
        """Convert a relative path to a path within this scope."""
        return resolve_path(self.base_path, relative_path, self.locked)

    def is_within(self, path: PathInput) -> bool:
        """Check whether a path lies at or below the scope root.

        Purely syntactic: symlinks are not followed.
        """
        path = os.path.normpath(coerce_path(path))
        base = os.path.normpath(self.base_path or os.sep)
        if path == base:
            return True
        return path.startswith(base.rstrip(os.sep) + os.sep)
