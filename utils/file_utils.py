"""File utility functions for scoped filesystem access.

This module provides the plain (uncached) file operations that the
scoped filesystem forwards to once a path has been resolved: whole-file
reads and writes, recursive delete and recursive directory creation.
"""

import logging
import os
import shutil
from pathlib import Path
from typing import Any, Mapping, Optional, Tuple, Union

logger = logging.getLogger(__name__)

Encoding = Union[None, str, Mapping[str, Any]]


def split_encoding(encoding: Encoding) -> Tuple[Optional[str], Optional[str]]:
    """Split an encoding selector into (encoding, errors).

    Args:
        encoding: None for binary, an encoding name, or a mapping of
                 read options with optional "encoding" and "errors" keys

    Returns:
        Tuple of (encoding name or None, errors handler or None)

    Raises:
        TypeError: If encoding is of an unsupported type
    """
    if encoding is None or isinstance(encoding, str):
        return encoding, None
    if isinstance(encoding, Mapping):
        return encoding.get("encoding"), encoding.get("errors")
    raise TypeError(f"encoding must be a string or a mapping, got {type(encoding).__name__}")


def read_file_plain(path: str, encoding: Encoding = None) -> Union[bytes, str]:
    """Read a whole file without caching.

    Args:
        path: Path to the file
        encoding: Encoding selector (None reads bytes)

    Returns:
        File content as bytes, or str when an encoding is given
    """
    name, errors = split_encoding(encoding)
    if name is None:
        with open(path, "rb") as f:
            return f.read()
    with open(path, "r", encoding=name, errors=errors, newline="") as f:
        return f.read()


def _write(path: str, data: Union[bytes, bytearray, str], encoding: Encoding, mode: str) -> None:
    if isinstance(data, str):
        name, errors = split_encoding(encoding)
        with open(path, mode, encoding=name or "utf-8", errors=errors, newline="") as f:
            f.write(data)
    else:
        with open(path, mode + "b") as f:
            f.write(data)


def write_file(path: str, data: Union[bytes, bytearray, str], encoding: Encoding = None) -> None:
    """Write data to a file, replacing its content.

    str data is encoded (UTF-8 unless an encoding is given), bytes are
    written as-is.
    """
    _write(path, data, encoding, "w")


def append_file(path: str, data: Union[bytes, bytearray, str], encoding: Encoding = None) -> None:
    """Append data to a file, creating it if needed."""
    _write(path, data, encoding, "a")


def rmrf(path: str) -> None:
    """Remove a file or a directory tree.

    A missing path is not an error.
    """
    if os.path.islink(path) or os.path.isfile(path):
        try:
            os.unlink(path)
        except FileNotFoundError:
            pass
        return
    if os.path.isdir(path):
        shutil.rmtree(path)
        logger.debug("Removed directory tree: %s", path)


def mkdirp(path: str, mode: int = 0o777) -> None:
    """Create a directory and any missing parents."""
    if not path:
        return
    os.makedirs(path, mode=mode, exist_ok=True)


def put(path: str, data: Union[bytes, bytearray, str], encoding: Encoding = None) -> None:
    """Write a file, creating its parent directories first."""
    mkdirp(os.path.dirname(path))
    write_file(path, data, encoding)


def is_text_file(file_path: Union[str, Path], sample_size: int = 8192) -> bool:
    """Check if a file is text-readable by attempting to decode it as UTF-8.

    Args:
        file_path: Path to the file to check
        sample_size: Number of bytes to read for detection (default 8KB)

    Returns:
        True if file can be read as text, False otherwise
    """
    try:
        with open(file_path, "rb") as f:
            raw = f.read(sample_size)

        if not raw:
            return True

        raw.decode("utf-8", errors="strict")
        return True
    except (UnicodeDecodeError, OSError):
        return False


def format_size(size_bytes: float) -> str:
    """Format bytes to human readable string.

    Args:
        size_bytes: Size in bytes

    Returns:
        Human readable string (e.g., "1.5MB", "256KB")
    """
    for unit in ['B', 'KB', 'MB', 'GB']:
        if size_bytes < 1024:
            return f"{size_bytes:.1f}{unit}"
        size_bytes /= 1024
    return f"{size_bytes:.1f}TB"
