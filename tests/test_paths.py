import os

import pytest

from davgate.paths import (
    REJECTED,
    PathValidationError,
    is_within,
    jail_root,
    resolve,
    resolve_or_raise,
)


class TestResolve:
    @pytest.mark.parametrize(
        "base, subdir, name, expected",
        [
            ("/tmp", None, "/foo", "/tmp/foo"),
            ("/tmp", None, "foo/bar", "/tmp/foo/bar"),
            ("/tmp", None, "", "/tmp"),
            ("/tmp", None, ".", "/tmp"),
            ("/tmp", None, "/", "/tmp"),
            ("/tmp", None, "/foo/../bar", "/tmp/bar"),
            ("/tmp", None, "../../../x", "/tmp/x"),
            ("/tmp", None, "//etc/passwd", "/tmp/etc/passwd"),
            ("/tmp", "/littlejohn", "/foo", "/tmp/littlejohn/foo"),
            ("/tmp", "/littlejohn", "/../../etc", "/tmp/littlejohn/etc"),
            ("/tmp", "littlejohn", "", "/tmp/littlejohn"),
            ("", None, "a/b", "a/b"),
            ("", None, "", "."),
        ],
    )
    def test_table(self, base, subdir, name, expected):
        assert resolve(base, subdir, name) == expected

    def test_nul_byte_rejected(self):
        assert resolve("/tmp", None, "foo\x00bar") == REJECTED

    @pytest.mark.skipif(os.sep != "/", reason="posix separator only")
    def test_backslash_is_just_a_character_on_posix(self):
        assert resolve("/tmp", None, "a\\b") == "/tmp/a\\b"

    def test_resolve_or_raise(self):
        with pytest.raises(PathValidationError):
            resolve_or_raise("/tmp", None, "\x00")
        with pytest.raises(FileNotFoundError):
            resolve_or_raise("/tmp", None, "\x00")

    def test_jail_root(self):
        assert jail_root("/tmp") == "/tmp"
        assert jail_root("/tmp", "/lj") == "/tmp/lj"


class TestNeverEscapes:
    @pytest.mark.parametrize(
        "name",
        ["..", "../..", "/../../../../etc/shadow", "a/../../b", "./../x", "....//..//y"],
    )
    @pytest.mark.parametrize("subdir", [None, "/jail"])
    def test_inside_base(self, name, subdir):
        physical = resolve("/srv/data", subdir, name)
        assert is_within("/srv/data", physical)
        assert is_within(jail_root("/srv/data", subdir), physical)

    def test_is_within(self):
        assert is_within("/tmp", "/tmp")
        assert is_within("/tmp", "/tmp/x/y")
        assert not is_within("/tmp", "/tmpx")
        assert not is_within("/tmp", "/etc")
        assert is_within(".", "a/b")
        assert not is_within(".", "../a")
