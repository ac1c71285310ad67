"""Tests for dotstore.paths."""

import os
from pathlib import Path

import pytest

from dotstore.config import Entry
from dotstore.exceptions import FileNotFound, InvalidPath
from dotstore.paths import canonicalize, common_base, is_within, rebase, relative_to_base


class TestCanonicalize:
    def test_resolves_dots(self, tmp_path):
        (tmp_path / "a").mkdir()
        (tmp_path / "f").write_text("x")
        assert canonicalize(tmp_path / "a" / ".." / "f") == (tmp_path / "f").resolve()

    def test_expands_user(self, home):
        (home / ".zshrc").write_text("x")
        assert canonicalize("~/.zshrc") == home / ".zshrc"

    @pytest.mark.skipif(os.name == "nt", reason="needs symlinks")
    def test_follows_symlinks(self, tmp_path):
        (tmp_path / "real").write_text("x")
        (tmp_path / "link").symlink_to(tmp_path / "real")
        assert canonicalize(tmp_path / "link") == (tmp_path / "real").resolve()

    def test_missing(self, tmp_path):
        with pytest.raises(FileNotFound):
            canonicalize(tmp_path / "nope")

    @pytest.mark.skipif(os.name == "nt", reason="needs symlinks")
    def test_broken_symlink(self, tmp_path):
        (tmp_path / "link").symlink_to(tmp_path / "gone")
        with pytest.raises(InvalidPath):
            canonicalize(tmp_path / "link")


class TestCommonBase:
    def test_single_file_uses_parent(self, tmp_path):
        f = tmp_path / "f"
        f.write_text("x")
        assert common_base([f]) == tmp_path

    def test_same_file_twice(self, tmp_path):
        f = tmp_path / "f"
        f.write_text("x")
        assert common_base([f, f]) == tmp_path

    def test_single_directory(self, tmp_path):
        assert common_base([tmp_path]) == tmp_path

    def test_siblings(self, tmp_path):
        assert common_base([tmp_path / "a" / "x", tmp_path / "b" / "y"]) == tmp_path

    def test_nested(self, tmp_path):
        d = tmp_path / "a"
        d.mkdir()
        assert common_base([d, d / "b" / "c"]) == d

    def test_relative_rejected(self):
        with pytest.raises(InvalidPath):
            common_base([Path("relative/path")])

    def test_empty_rejected(self):
        with pytest.raises(InvalidPath):
            common_base([])


class TestRelativeToBase:
    def test_posix_string(self, tmp_path):
        assert relative_to_base(tmp_path / "a" / "b", tmp_path) == "a/b"

    def test_outside(self, tmp_path):
        with pytest.raises(InvalidPath):
            relative_to_base(tmp_path.parent, tmp_path)

    def test_base_itself(self, tmp_path):
        with pytest.raises(InvalidPath):
            relative_to_base(tmp_path, tmp_path)


def test_is_within(tmp_path):
    assert is_within(tmp_path / "a", tmp_path)
    assert is_within(tmp_path, tmp_path)
    assert not is_within(tmp_path, tmp_path / "a")
    assert not is_within(tmp_path / "ab", tmp_path / "a")


class TestRebase:
    def test_new_entry(self, tmp_path):
        plan = rebase(Entry("e"), [tmp_path / "a" / "x", tmp_path / "a" / "y"])
        assert plan.base == tmp_path / "a"
        assert not plan.moved

    def test_base_unchanged(self, tmp_path):
        entry = Entry("e", tmp_path, {"x"})
        plan = rebase(entry, [tmp_path / "sub" / "y"])
        assert plan.base == tmp_path
        assert plan.renames == {}

    def test_no_candidates(self, tmp_path):
        entry = Entry("e", tmp_path / "a", {"x", "y/z"})
        assert rebase(entry, []).base == tmp_path / "a"

    def test_base_moves_up(self, tmp_path):
        entry = Entry("e", tmp_path / "a", {"x", "y/z"})
        plan = rebase(entry, [tmp_path / "b" / "w"])
        assert plan.base == tmp_path
        assert plan.renames == {"x": "a/x", "y/z": "a/y/z"}
        assert plan.moved

    def test_base_moves_down(self, tmp_path):
        entry = Entry("e", tmp_path, {"a/b/x"})
        plan = rebase(entry, [tmp_path / "a" / "b" / "y"])
        assert plan.base == tmp_path / "a" / "b"
        assert plan.renames == {"a/b/x": "x"}

    def test_nothing_at_all(self):
        with pytest.raises(InvalidPath):
            rebase(Entry("e"), [])
