"""Common-base computation for entries.

Every file of an entry is stored relative to the lowest directory that
contains all of the entry's deployed files.  Adding files can move that
base up (a file outside the old base) or down (all files share a deeper
directory), in which case the relative paths already recorded are
re-expressed against the new base.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath

from loguru import logger

from .config import Entry
from .exceptions import FileNotFound, InvalidPath


def canonicalize(path: str | os.PathLike[str]) -> Path:
    """Return *path* absolute, with symlinks resolved and no ``.``/``..``."""
    p = Path(path).expanduser()
    if not os.path.lexists(p):
        raise FileNotFound(p)
    try:
        return p.resolve(strict=True)
    except (OSError, RuntimeError) as exc:
        raise InvalidPath(f"Could not canonicalize {p}: {exc}") from exc


def common_base(paths) -> Path:
    """Return the lowest common ancestor directory of *paths*.

    The paths must already be absolute and canonical.  When the common
    path is itself a file (a single file, or the same file twice) its
    parent directory is the base.
    """
    paths = [Path(p) for p in paths]
    if not paths:
        raise InvalidPath("Cannot compute a common base of no paths")
    for p in paths:
        if not p.is_absolute():
            raise InvalidPath(f"Path is not absolute: {p}")
    try:
        base = Path(os.path.commonpath([str(p) for p in paths]))
    except ValueError as exc:
        raise InvalidPath(f"Paths share no common base: {exc}") from exc
    if base in paths and not base.is_dir():
        base = base.parent
    return base


def relative_to_base(path: Path, base: Path) -> str:
    """Return *path* relative to *base* as a POSIX string."""
    try:
        rel = path.relative_to(base)
    except ValueError:
        raise InvalidPath(f"{path} is not under {base}") from None
    if not rel.parts:
        raise InvalidPath(f"{path} is the base directory itself, not a file under it")
    return PurePosixPath(*rel.parts).as_posix()


def is_within(path: Path, directory: Path) -> bool:
    return path == directory or directory in path.parents


@dataclass
class RebasePlan:
    """Result of merging new candidates into an entry's base.

    *renames* maps each previously stored relative path whose expression
    changes to its new relative path; it is empty when the base is unchanged.
    """

    base: Path
    renames: dict[str, str] = field(default_factory=dict)

    @property
    def moved(self) -> bool:
        return bool(self.renames)


def rebase(entry: Entry, candidates: list[Path]) -> RebasePlan:
    """Compute the entry's base over its existing files plus *candidates*.

    Existing deployed paths are taken lexically as ``target_dir/rel``.  They
    are usually symlinks into storage, so resolving them would land in the
    config directory instead of the file's real location.
    """
    deployed: list[Path] = []
    if entry.target_dir is not None:
        deployed = [entry.target_dir / rel for rel in sorted(entry.files)]

    everything = deployed + list(candidates)
    if not everything:
        raise InvalidPath(f"Entry {entry.name!r} has no files to compute a base from")
    if deployed and not candidates:
        return RebasePlan(base=entry.target_dir)

    base = common_base(everything)
    if entry.target_dir is None or base == entry.target_dir:
        return RebasePlan(base=base)

    logger.debug("Entry {}: base moves from {} to {}", entry.name, entry.target_dir, base)
    renames = {}
    for rel, path in zip(sorted(entry.files), deployed):
        new_rel = relative_to_base(path, base)
        if new_rel != rel:
            renames[rel] = new_rel
    return RebasePlan(base=base, renames=renames)
