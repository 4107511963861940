"""Tests for scope path resolution."""

import os
from pathlib import Path

import pytest

from utils import PathResolver, coerce_path, resolve_path

ROOT = "/tmp/root"

ESCAPES = [
    "../../etc/passwd",
    "..",
    "../",
    "a/../../b",
    "a/b/../../../../c",
    "/../x",
    "/etc/passwd",
    "./../.././x/y",
]

PLAIN = [
    "a.txt",
    "a/b/c.txt",
    "./a/./b",
    "a//b",
    "",
    "dir/",
]


class TestCoercePath:
    """Test cases for coerce_path."""

    def test_str_passes_through(self):
        assert coerce_path("a/b") == "a/b"

    def test_bytes_are_decoded_as_utf8(self):
        assert coerce_path("café.txt".encode("utf-8")) == "café.txt"

    def test_pathlike(self):
        assert coerce_path(Path("a") / "b") == os.path.join("a", "b")

    @pytest.mark.parametrize("value", [None, 42, 1.5, ["a"], object()])
    def test_other_types_raise(self, value):
        with pytest.raises(TypeError, match="path must be a string"):
            coerce_path(value)


class TestResolvePathUnlocked:
    """Test cases for unlocked resolution (plain join)."""

    def test_join(self):
        assert resolve_path(ROOT, "a/b.txt") == "/tmp/root/a/b.txt"

    def test_dotdot_escapes_root(self):
        assert resolve_path(ROOT, "../../etc/passwd") == "/etc/passwd"

    def test_leading_separator_is_appended(self):
        assert resolve_path(ROOT, "/etc/passwd") == "/tmp/root/etc/passwd"

    def test_empty_root_is_whole_filesystem(self):
        assert resolve_path("", "/etc/passwd") == "/etc/passwd"

    def test_empty_root_keeps_relative_path(self):
        assert resolve_path("", "a/b") == os.path.normpath("a/b")

    def test_empty_input_is_root(self):
        assert resolve_path(ROOT, "") == ROOT

    def test_slash_root(self):
        assert resolve_path("/", "etc") == "/etc"


class TestResolvePathLocked:
    """Test cases for locked resolution (clamped at root)."""

    def test_clamps_parent_navigation(self):
        assert resolve_path(ROOT, "../../etc/passwd", locked=True) == "/tmp/root/etc/passwd"

    def test_clamps_to_root_itself(self):
        assert resolve_path(ROOT, "../..", locked=True) == ROOT

    def test_inner_dotdot_still_works(self):
        assert resolve_path(ROOT, "a/b/../c", locked=True) == "/tmp/root/a/c"

    def test_bytes_input(self):
        assert resolve_path(ROOT, b"../x", locked=True) == "/tmp/root/x"

    def test_empty_root_locks_to_filesystem_root(self):
        assert resolve_path("", "../../etc", locked=True) == "/etc"
        assert resolve_path("", "", locked=True) == "/"

    @pytest.mark.parametrize("relpath", ESCAPES + PLAIN)
    def test_result_never_leaves_root(self, relpath):
        resolved = resolve_path(ROOT, relpath, locked=True)
        assert PathResolver(ROOT).is_within(resolved)

    @pytest.mark.parametrize("relpath", PLAIN)
    def test_locked_equals_unlocked_without_dotdot(self, relpath):
        assert resolve_path(ROOT, relpath, locked=True) == resolve_path(ROOT, relpath)

    def test_invalid_type_raises(self):
        with pytest.raises(TypeError):
            resolve_path(ROOT, 123, locked=True)


class TestPathResolver:
    """Test cases for the PathResolver wrapper."""

    def test_resolve_uses_lock_flag(self):
        assert PathResolver(ROOT, locked=True).resolve("../x") == "/tmp/root/x"
        assert PathResolver(ROOT).resolve("../x") == "/tmp/x"

    def test_is_within(self):
        resolver = PathResolver(ROOT)
        assert resolver.is_within("/tmp/root")
        assert resolver.is_within("/tmp/root/a/b")
        assert not resolver.is_within("/tmp/rootless/a")
        assert not resolver.is_within("/tmp")

    def test_resolver_performs_no_io(self, tmp_path):
        missing = tmp_path / "does-not-exist"
        resolver = PathResolver(str(missing), locked=True)
        assert resolver.resolve("../../x") == os.path.join(str(missing), "x")
        assert not missing.exists()
