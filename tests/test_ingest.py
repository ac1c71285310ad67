"""Tests for copying files into entry storage."""

import os
import shutil

import pytest

from dotstore.config import ConfigContext, Entry
from dotstore.exceptions import CorruptState, FileNotFound, IngestError, InvalidPath
from dotstore.ingest import ingest


@pytest.fixture
def store(tmp_path):
    ctx = ConfigContext(tmp_path / "config")
    ctx.config_dir.mkdir()
    return ctx


@pytest.fixture
def src(tmp_path):
    d = tmp_path / "src"
    (d / "sub").mkdir(parents=True)
    (d / "a.txt").write_text("alpha")
    (d / "sub" / "b.txt").write_text("beta")
    return d.resolve()


class TestIngest:
    def test_single_file(self, store, src):
        result = ingest(store, Entry("e"), [src / "a.txt"])
        assert result.entry.target_dir == src
        assert result.added == {"a.txt"}
        assert (store.storage_dir("e") / "a.txt").read_text() == "alpha"

    def test_directory(self, store, src):
        result = ingest(store, Entry("e"), [src])
        assert result.entry.target_dir == src
        assert result.entry.files == {"a.txt", "sub/b.txt"}
        assert (store.storage_dir("e") / "sub" / "b.txt").read_text() == "beta"

    def test_leaves_input_entry_alone(self, store, src):
        entry = Entry("e")
        ingest(store, entry, [src])
        assert entry.target_dir is None
        assert entry.files == set()

    def test_preserves_exec_bit(self, store, src):
        os.chmod(src / "a.txt", 0o755)
        ingest(store, Entry("e"), [src / "a.txt"])
        assert os.stat(store.storage_dir("e") / "a.txt").st_mode & 0o111

    def test_skips_git_directory(self, store, src):
        (src / ".git").mkdir()
        (src / ".git" / "HEAD").write_text("ref: refs/heads/main\n")
        result = ingest(store, Entry("e"), [src])
        assert not any(f.startswith(".git") for f in result.entry.files)

    @pytest.mark.skipif(os.name == "nt", reason="needs symlinks")
    def test_skips_links_into_storage(self, store, src):
        stored = store.storage_dir("other") / "x"
        stored.parent.mkdir()
        stored.write_text("x")
        (src / "deployed").symlink_to(stored)
        result = ingest(store, Entry("e"), [src])
        assert "deployed" not in result.entry.files

    def test_existing_entry_same_base(self, store, src):
        first = ingest(store, Entry("e"), [src / "a.txt"]).entry
        result = ingest(store, first, [src / "sub" / "b.txt"])
        assert result.entry.target_dir == src
        assert result.entry.files == {"a.txt", "sub/b.txt"}
        assert result.added == {"sub/b.txt"}

    def test_base_moves_down_relocates_storage(self, store, src):
        entry = Entry("e", src.parent, {"src/sub/b.txt"})
        stored = store.storage_dir("e") / "src" / "sub" / "b.txt"
        stored.parent.mkdir(parents=True)
        stored.write_text("beta")
        (src / "sub" / "c.txt").write_text("gamma")

        result = ingest(store, entry, [src / "sub" / "c.txt"])

        assert result.entry.target_dir == src / "sub"
        assert result.entry.files == {"b.txt", "c.txt"}
        storage = store.storage_dir("e")
        assert sorted(p.name for p in storage.iterdir()) == ["b.txt", "c.txt"]
        assert (storage / "b.txt").read_text() == "beta"
        assert not (store.config_dir / ".e.rebase").exists()

    def test_copy_failure_after_base_move_restores_layout(self, store, src, monkeypatch):
        entry = Entry("e", src / "sub", {"b.txt"})
        stored = store.storage_dir("e") / "b.txt"
        stored.parent.mkdir(parents=True)
        stored.write_text("beta")

        def copy2(source, dest, **kwargs):
            raise PermissionError(13, "Permission denied", str(source))

        monkeypatch.setattr(shutil, "copy2", copy2)
        with pytest.raises(IngestError) as excinfo:
            ingest(store, entry, [src / "a.txt"])

        assert excinfo.value.copied == set()
        storage = store.storage_dir("e")
        assert sorted(p.name for p in storage.iterdir()) == ["b.txt"]
        assert stored.read_text() == "beta"
        assert not (store.config_dir / ".e.rebase").exists()
        assert entry.files == {"b.txt"}

    def test_missing_file_changes_nothing(self, store, src):
        with pytest.raises(FileNotFound):
            ingest(store, Entry("e"), [src / "a.txt", src / "nope.txt"])
        assert not store.storage_dir("e").exists()

    def test_inside_config_dir(self, store):
        inside = store.config_dir / "file"
        inside.write_text("x")
        with pytest.raises(InvalidPath):
            ingest(store, Entry("e"), [inside])

    def test_relocation_needs_stored_files(self, store, src):
        entry = Entry("e", src / "sub", {"b.txt"})
        with pytest.raises(CorruptState):
            ingest(store, entry, [src / "a.txt"])

    def test_no_candidates(self, store):
        entry = Entry("e", None, set())
        result = ingest(store, entry, [])
        assert result.added == set()
        assert result.entry == entry
