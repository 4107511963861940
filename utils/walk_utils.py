"""Directory walking and matching utilities.

This module provides generators that enumerate files and directories
below a path, optionally filtered by a regular expression or glob
pattern and optionally sorted.
"""

import fnmatch
import logging
import os
import re
from typing import Any, Callable, Iterator, List, Optional, Tuple, Union

from .file_utils import Encoding, is_text_file, read_file_plain

logger = logging.getLogger(__name__)

Expression = Union[str, re.Pattern[str]]


def glob_to_regex(pattern: str) -> re.Pattern[str]:
    """Compile a glob pattern into a regex anchored at a path segment.

    As with fnmatch, '*' also matches path separators.

    Example:
        >>> bool(glob_to_regex("*.py").search("/src/app/main.py"))
        True
    """
    return re.compile(r"(^|[\\/])" + fnmatch.translate(pattern))


def _compile(expression: Expression) -> re.Pattern[str]:
    if isinstance(expression, str):
        return re.compile(expression)
    return expression


def _scan(path: str, follow_symlinks: bool) -> Tuple[List[str], List[str]]:
    files: List[str] = []
    dirs: List[str] = []
    with os.scandir(path) as entries:
        for entry in sorted(entries, key=lambda e: e.name):
            if entry.is_dir(follow_symlinks=follow_symlinks):
                dirs.append(entry.path)
            else:
                files.append(entry.path)
    return files, dirs


def each_file_or_directory(
    path: str,
    recurse: bool = True,
    follow_symlinks: bool = False
) -> Iterator[Tuple[str, bool]]:
    """Walk a directory tree top-down.

    Entries of each directory are visited in name order. Every directory
    is yielded before its contents.

    Args:
        path: Directory to walk
        recurse: Whether to descend into subdirectories
        follow_symlinks: Whether symlinked directories are descended into

    Yields:
        Tuples of (path, is_directory)
    """
    files, dirs = _scan(path, follow_symlinks)
    for file_path in files:
        yield file_path, False
    for dir_path in dirs:
        yield dir_path, True
        if recurse:
            yield from each_file_or_directory(dir_path, recurse, follow_symlinks)


def each_file(path: str, recurse: bool = True, follow_symlinks: bool = False) -> Iterator[str]:
    """Yield every file below path."""
    for entry, is_dir in each_file_or_directory(path, recurse, follow_symlinks):
        if not is_dir:
            yield entry


def each_directory(path: str, recurse: bool = True, follow_symlinks: bool = False) -> Iterator[str]:
    """Yield every directory below path."""
    for entry, is_dir in each_file_or_directory(path, recurse, follow_symlinks):
        if is_dir:
            yield entry


def each_file_matching(
    expression: Expression,
    path: str,
    recurse: bool = True,
    follow_symlinks: bool = False
) -> Iterator[str]:
    """Yield every file below path whose full path matches expression.

    Args:
        expression: Regular expression (string or compiled), searched
                   anywhere in the path. Use glob_to_regex for globs.
        path: Directory to walk
        recurse: Whether to descend into subdirectories
        follow_symlinks: Whether symlinked directories are descended into
    """
    regex = _compile(expression)
    for file_path in each_file(path, recurse, follow_symlinks):
        if regex.search(file_path):
            yield file_path


def each_file_matching_sorted(
    expression: Expression,
    path: str,
    recurse: bool = True,
    key: Optional[Callable[[str], Any]] = None,
    reverse: bool = False,
    follow_symlinks: bool = False
) -> List[str]:
    """Return the files matching expression, sorted.

    Args:
        expression: Regular expression (string or compiled)
        path: Directory to walk
        recurse: Whether to descend into subdirectories
        key: Sort key computed from each path (default: the path itself)
        reverse: Sort in descending order
        follow_symlinks: Whether symlinked directories are descended into

    Returns:
        Sorted list of matching file paths
    """
    matches = list(each_file_matching(expression, path, recurse, follow_symlinks))
    matches.sort(key=key, reverse=reverse)
    return matches


def read_each_file_matching(
    expression: Expression,
    path: str,
    recurse: bool = True,
    encoding: Encoding = None,
    skip_binary: bool = False,
    follow_symlinks: bool = False
) -> Iterator[Tuple[str, Union[bytes, str]]]:
    """Read every file matching expression.

    Args:
        expression: Regular expression (string or compiled)
        path: Directory to walk
        recurse: Whether to descend into subdirectories
        encoding: Encoding selector passed to the read (None reads bytes)
        skip_binary: Skip files that are not valid UTF-8 text
        follow_symlinks: Whether symlinked directories are descended into

    Yields:
        Tuples of (path, content)
    """
    for file_path in each_file_matching(expression, path, recurse, follow_symlinks):
        if skip_binary and not is_text_file(file_path):
            logger.debug("Skipping binary file: %s", file_path)
            continue
        yield file_path, read_file_plain(file_path, encoding)
