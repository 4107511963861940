from dataclasses import dataclass, field
from typing import Optional

# Root of the default instance: '' gives access to the whole filesystem,
# whereas '/' or '.' would pin relative paths to one drive or the cwd.
DEFAULT_ROOT = ""


@dataclass
class ScopedFSConfig:
    """Scoped filesystem configuration model.

    Attributes:
        locked: Whether new scopes clamp '..' navigation at their root
        cache_enabled: Whether cached reads are honoured. When False,
            read_file(..., use_cache=True) falls back to a plain read.
        read_workers: Worker threads used for asynchronous stat/read calls
        default_encoding: Encoding used by read_file when none is given
            (None reads bytes)
        temp_prefix: Prefix for directories made by create_temp_fs
        follow_symlinks: Whether directory walkers descend into symlinked
            directories

    Example:
        >>> config = ScopedFSConfig(
        ...     locked=True,
        ...     cache_enabled=True,
        ...     read_workers=8,
        ...     default_encoding="utf-8",
        ...     temp_prefix="scopedfs-",
        ...     follow_symlinks=False
        ... )
    """
    locked: bool = field(default=False)
    cache_enabled: bool = field(default=True)
    read_workers: int = field(default=4)
    default_encoding: Optional[str] = field(default=None)
    temp_prefix: str = field(default="scopedfs-")
    follow_symlinks: bool = field(default=False)

    def validate(self) -> None:
        """Validate configuration parameters.

        Raises:
            ValueError: If configuration parameters are invalid
        """
        if self.read_workers <= 0:
            raise ValueError(f"read_workers must be positive, got {self.read_workers}")
        if self.default_encoding is not None and not self.default_encoding.strip():
            raise ValueError("default_encoding cannot be empty, use None for binary reads")


SCOPEDFS_CONFIG_DEFAULT = ScopedFSConfig(
    locked=False,
    cache_enabled=True,
    read_workers=4,
    default_encoding=None,       # Binary reads unless asked otherwise
    temp_prefix="scopedfs-",
    follow_symlinks=False,
)


# Presets for different use cases
SCOPEDFS_CONFIG_LOCKED = ScopedFSConfig(
    locked=True,                 # Clamp '..' at the scope root
    cache_enabled=True,
    read_workers=4,
    default_encoding=None,
    temp_prefix="scopedfs-",
    follow_symlinks=False,       # Do not walk out through symlinked dirs
)

SCOPEDFS_CONFIG_UNCACHED = ScopedFSConfig(
    locked=False,
    cache_enabled=False,         # Every read goes to disk
    read_workers=2,              # Fewer workers, nothing to coalesce
    default_encoding=None,
    temp_prefix="scopedfs-",
    follow_symlinks=False,
)
