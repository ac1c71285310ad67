"""Advisory config lock held by every command that writes.

The lock is taken without blocking and retried until a timeout runs out,
so a second ``dotstore`` stuck behind a hung one reports who holds the
lock instead of waiting forever.  The holder writes its pid into the lock
file for that message.
"""

from __future__ import annotations

import os
import time
from contextlib import contextmanager
from pathlib import Path

from loguru import logger

from .exceptions import ConfigLocked

LOCK_NAME = "dotstore.lock"
LOCK_TIMEOUT = 30.0
_POLL_INTERVAL = 0.05


def lock_path(config_dir) -> Path:
    """The lock file lives inside ``.git`` so it is never committed."""
    git_dir = Path(config_dir) / ".git"
    if git_dir.is_dir():
        return git_dir / LOCK_NAME
    return Path(config_dir) / f".{LOCK_NAME}"


try:
    import fcntl

    def _try_lock(fd: int) -> bool:
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            return False
        return True

    def _unlock(fd: int) -> None:
        fcntl.flock(fd, fcntl.LOCK_UN)

except ImportError:
    import msvcrt

    def _try_lock(fd: int) -> bool:
        os.lseek(fd, 0, os.SEEK_SET)
        try:
            msvcrt.locking(fd, msvcrt.LK_NBLCK, 1)
        except OSError:
            return False
        return True

    def _unlock(fd: int) -> None:
        os.lseek(fd, 0, os.SEEK_SET)
        msvcrt.locking(fd, msvcrt.LK_UNLCK, 1)


def holder_pid(path: Path) -> int | None:
    """The pid recorded by the current holder, if it wrote one."""
    try:
        text = path.read_text(encoding="ascii").strip()
    except (OSError, UnicodeDecodeError):
        return None
    return int(text) if text.isdigit() else None


@contextmanager
def config_lock(config_dir, timeout: float = LOCK_TIMEOUT):
    """Hold the lock of *config_dir* for the duration of the block.

    Raises :class:`ConfigLocked` when another process or thread still holds
    it after *timeout* seconds.
    """
    path = lock_path(config_dir)
    fd = os.open(path, os.O_CREAT | os.O_RDWR | getattr(os, "O_CLOEXEC", 0))
    try:
        deadline = time.monotonic() + timeout
        while not _try_lock(fd):
            if time.monotonic() >= deadline:
                raise ConfigLocked(path, holder_pid(path))
            time.sleep(_POLL_INTERVAL)
        os.ftruncate(fd, 0)
        os.write(fd, f"{os.getpid()}\n".encode())
        logger.debug("Acquired {}", path)
        try:
            yield path
        finally:
            os.ftruncate(fd, 0)
            _unlock(fd)
            logger.debug("Released {}", path)
    finally:
        os.close(fd)
