"""Utility modules for scoped filesystem access.

This package contains the path resolution rule used to jail paths to a
scope root, plus the plain file operations and directory walkers that
the scoped filesystem forwards to once a path is resolved.
"""

from .file_utils import (
    append_file,
    format_size,
    is_text_file,
    mkdirp,
    put,
    read_file_plain,
    rmrf,
    split_encoding,
    write_file,
)
from .path_utils import PathResolver, coerce_path, resolve_path
from .walk_utils import (
    each_directory,
    each_file,
    each_file_matching,
    each_file_matching_sorted,
    each_file_or_directory,
    glob_to_regex,
    read_each_file_matching,
)

__all__ = [
    "append_file",
    "format_size",
    "is_text_file",
    "mkdirp",
    "put",
    "read_file_plain",
    "rmrf",
    "split_encoding",
    "write_file",
    "PathResolver",
    "coerce_path",
    "resolve_path",
    "each_directory",
    "each_file",
    "each_file_matching",
    "each_file_matching_sorted",
    "each_file_or_directory",
    "glob_to_regex",
    "read_each_file_matching",
]
