"""Tests for the config lock."""

import os
import threading
import time

import pytest

from dotstore._lock import LOCK_NAME, config_lock, holder_pid, lock_path
from dotstore.exceptions import ConfigLocked

pytestmark = pytest.mark.skipif(os.name == "nt", reason="flock semantics")


def test_lock_path_inside_git_dir(tmp_path):
    (tmp_path / ".git").mkdir()
    assert lock_path(tmp_path) == tmp_path / ".git" / LOCK_NAME


def test_lock_path_without_git_dir(tmp_path):
    assert lock_path(tmp_path) == tmp_path / f".{LOCK_NAME}"


def test_holder_writes_its_pid(tmp_path):
    with config_lock(tmp_path) as path:
        assert holder_pid(path) == os.getpid()
    assert holder_pid(path) is None


def test_reacquire_after_release(tmp_path):
    with config_lock(tmp_path):
        pass
    with config_lock(tmp_path):
        pass


def test_busy_lock_names_the_holder(tmp_path):
    with config_lock(tmp_path):
        with pytest.raises(ConfigLocked) as exc:
            with config_lock(tmp_path, timeout=0.1):
                pass
    assert exc.value.pid == os.getpid()
    assert exc.value.path == lock_path(tmp_path)
    assert f"process {os.getpid()}" in str(exc.value)


def test_serializes_threads(tmp_path):
    active = []
    overlaps = []

    def worker():
        with config_lock(tmp_path):
            if active:
                overlaps.append(True)
            active.append(1)
            time.sleep(0.01)
            active.pop()

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert overlaps == []
