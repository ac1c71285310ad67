"""Tests for symlink deployment."""

import os
from pathlib import Path

import pytest

from dotstore.config import Config, ConfigContext, Entry
from dotstore.deploy import deploy, link_pairs, restore_files, undeploy
from dotstore.exceptions import CorruptState, DeployError, UndeployError
from dotstore.progress import RecordingProgress

pytestmark = pytest.mark.skipif(os.name == "nt", reason="deploys symlinks")


@pytest.fixture
def store(tmp_path):
    return ConfigContext(tmp_path / "config")


@pytest.fixture
def target(tmp_path):
    d = tmp_path / "target"
    d.mkdir()
    return d


def make_entry(store, target, files, name="e"):
    """Write stored copies for *files* and return a config holding the entry."""
    for rel, data in files.items():
        stored = store.storage_dir(name) / rel
        stored.parent.mkdir(parents=True, exist_ok=True)
        stored.write_text(data)
    entry = Entry(name, target, set(files))
    return Config(entries={name: entry})


class TestDeploy:
    def test_creates_symlinks(self, store, target):
        config = make_entry(store, target, {"a": "A", "d/b": "B"})
        progress = RecordingProgress()
        report = deploy(store, config, progress=progress)

        assert sorted(report.linked) == [target / "a", target / "d" / "b"]
        assert os.readlink(target / "d" / "b") == str(store.storage_dir("e") / "d" / "b")
        assert (target / "a").read_text() == "A"
        assert ("message", f"Linked {target / 'a'}") in progress.events

    def test_idempotent(self, store, target):
        config = make_entry(store, target, {"a": "A"})
        deploy(store, config)
        report = deploy(store, config)
        assert report.linked == []
        assert report.unchanged == [target / "a"]

    def test_replaces_existing_file(self, store, target):
        config = make_entry(store, target, {"a": "stored"})
        (target / "a").write_text("local")
        report = deploy(store, config)
        assert report.replaced == [target / "a"]
        assert (target / "a").read_text() == "stored"

    def test_replaces_foreign_symlink(self, store, target, tmp_path):
        config = make_entry(store, target, {"a": "stored"})
        (tmp_path / "elsewhere").write_text("x")
        (target / "a").symlink_to(tmp_path / "elsewhere")
        deploy(store, config)
        assert (target / "a").read_text() == "stored"

    def test_single_entry(self, store, target, tmp_path):
        config = make_entry(store, target, {"a": "A"})
        other = tmp_path / "other"
        other.mkdir()
        config.entries.update(make_entry(store, other, {"b": "B"}, name="f").entries)
        deploy(store, config, "f")
        assert not os.path.lexists(target / "a")
        assert (other / "b").is_symlink()

    def test_missing_storage_touches_nothing(self, store, target):
        config = make_entry(store, target, {"a": "A"})
        config.entries["e"].files.add("missing")
        (target / "a").write_text("local")
        with pytest.raises(CorruptState):
            deploy(store, config)
        assert not (target / "a").is_symlink()
        assert (target / "a").read_text() == "local"

    def test_failure_restores_copies(self, store, target):
        config = make_entry(store, target, {"a": "A", "sub/b": "B"})
        # A regular file where a directory is needed makes the second link fail
        (target / "sub").write_text("in the way")

        with pytest.raises(DeployError) as exc:
            deploy(store, config)

        err = exc.value
        assert err.path == target / "sub" / "b"
        assert err.restored == [target / "a"]
        assert len(err.restore_failures) == 1
        assert isinstance(err.__cause__, OSError)
        assert not (target / "a").is_symlink()
        assert (target / "a").read_text() == "A"


class TestUndeploy:
    def test_removes_our_symlinks(self, store, target):
        config = make_entry(store, target, {"a": "A", "d/b": "B"})
        deploy(store, config)
        report = undeploy(store, config)
        assert sorted(report.removed) == [target / "a", target / "d" / "b"]
        assert not os.path.lexists(target / "a")
        assert (store.storage_dir("e") / "a").read_text() == "A"

    def test_leaves_other_files_alone(self, store, target, tmp_path):
        config = make_entry(store, target, {"a": "A", "b": "B", "c": "C"})
        (target / "a").write_text("mine")
        (tmp_path / "elsewhere").write_text("x")
        (target / "b").symlink_to(tmp_path / "elsewhere")

        report = undeploy(store, config)

        assert sorted(report.skipped) == [target / "a", target / "b", target / "c"]
        assert (target / "a").read_text() == "mine"
        assert os.readlink(target / "b") == str(tmp_path / "elsewhere")

    def test_second_pass_changes_nothing(self, store, target):
        config = make_entry(store, target, {"a": "A", "d/b": "B"})
        (target / "c").write_text("mine")
        deploy(store, config)
        undeploy(store, config)
        before = sorted(str(p.relative_to(target)) for p in target.rglob("*"))

        report = undeploy(store, config)

        assert report.removed == []
        assert sorted(report.skipped) == [target / "a", target / "d" / "b"]
        assert sorted(str(p.relative_to(target)) for p in target.rglob("*")) == before

    def test_collects_failures_and_keeps_going(self, store, target, monkeypatch):
        config = make_entry(store, target, {"a": "A", "b": "B", "c": "C"})
        deploy(store, config)
        real_unlink = Path.unlink

        def unlink(self, missing_ok=False):
            if self == target / "b":
                raise PermissionError(13, "Permission denied", str(self))
            return real_unlink(self, missing_ok=missing_ok)

        monkeypatch.setattr(Path, "unlink", unlink)
        with pytest.raises(UndeployError) as exc:
            undeploy(store, config)

        assert [p for p, _ in exc.value.failures] == [str(target / "b")]
        assert "Permission denied" in exc.value.failures[0][1]
        assert not os.path.lexists(target / "a")
        assert not os.path.lexists(target / "c")
        assert (target / "b").is_symlink()


class TestRestoreFiles:
    def test_replaces_symlinks_with_copies(self, store, target):
        config = make_entry(store, target, {"a": "A", "b": "B"})
        deploy(store, config)
        done = restore_files(store, config.entries["e"], ["a"])
        assert done == [target / "a"]
        assert not (target / "a").is_symlink()
        assert (target / "a").read_text() == "A"
        assert (target / "b").is_symlink()

    def test_without_replace(self, store, target):
        config = make_entry(store, target, {"a": "A"})
        deploy(store, config)
        restore_files(store, config.entries["e"], replace=False)
        assert not os.path.lexists(target / "a")

    def test_never_touches_foreign_files(self, store, target):
        config = make_entry(store, target, {"a": "A"})
        (target / "a").write_text("mine")
        assert restore_files(store, config.entries["e"]) == []
        assert (target / "a").read_text() == "mine"


def test_link_pairs_for_uninitialized_entry(store):
    assert link_pairs(store, Entry("e")) == []
