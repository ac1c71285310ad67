"""Copy files and directories into an entry's storage."""

from __future__ import annotations

import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator

from loguru import logger

from .config import ConfigContext, Entry
from .exceptions import CorruptState, IngestError, InvalidPath
from .paths import canonicalize, is_within, rebase, relative_to_base


@dataclass
class IngestResult:
    """The updated entry plus the relative paths copied into storage."""

    entry: Entry
    added: set[str] = field(default_factory=set)


def ingest(ctx: ConfigContext, entry: Entry, candidates) -> IngestResult:
    """Copy *candidates* into storage for *entry*.

    The passed entry is left untouched; the caller decides whether to keep
    the returned one.  All candidates are validated before anything is
    written, so a missing or unresolvable path changes nothing.  A failure
    while copying is not rolled back: :class:`IngestError` lists the files
    already written.  The exception is a batch that moved the base: there
    the relocated storage is put back in its old layout and nothing new is
    kept, since the saved config still describes the old layout.
    """
    config_root = ctx.config_dir.resolve()
    resolved: list[Path] = []
    for candidate in candidates:
        path = canonicalize(candidate)
        if is_within(path, config_root):
            raise InvalidPath(
                f"{candidate} resolves to {path}, inside the config directory "
                f"(is it already tracked?)"
            )
        resolved.append(path)

    updated = Entry(name=entry.name, target_dir=entry.target_dir, files=set(entry.files))
    if not resolved:
        return IngestResult(entry=updated)

    plan = rebase(entry, resolved)
    if plan.moved:
        _relocate_storage(ctx, entry, plan.renames)
        updated.files = {plan.renames.get(rel, rel) for rel in entry.files}
    updated.target_dir = plan.base

    pairs = []
    for path in resolved:
        for source in _walk(path, config_root):
            pairs.append((source, relative_to_base(source, plan.base)))

    storage = ctx.storage_dir(entry.name)
    copied: set[str] = set()
    for source, rel in pairs:
        dest = storage / rel
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(source, dest)
        except OSError as exc:
            if plan.moved:
                _undo_relocation(ctx, entry, plan.renames)
                copied = set()
            raise IngestError(
                f"Could not copy {source} to {dest}: {exc}", copied=copied,
            ) from exc
        logger.debug("Copied {} -> {}", source, dest)
        copied.add(rel)

    updated.files |= copied
    return IngestResult(entry=updated, added=copied)


def _walk(path: Path, config_root: Path) -> Iterator[Path]:
    """Yield the regular files at or below *path*, skipping ``.git`` dirs."""
    if path.is_file():
        yield path
        return
    if not path.is_dir():
        logger.warning("Skipping {}: not a regular file or directory", path)
        return
    for child in sorted(path.iterdir()):
        if child.name == ".git":
            continue
        if child == config_root:
            logger.debug("Skipping the config directory {}", child)
            continue
        if child.is_symlink():
            if not child.exists():
                logger.warning("Skipping broken symlink {}", child)
            elif is_within(child.resolve(), config_root):
                logger.debug("Skipping {}: already deployed from storage", child)
            elif child.is_dir():
                logger.warning("Skipping symlinked directory {}", child)
            else:
                yield child
            continue
        yield from _walk(child, config_root)


def _relocate_storage(ctx: ConfigContext, entry: Entry, renames: dict[str, str]) -> None:
    """Move stored files so they match their re-expressed relative paths.

    The whole storage directory is first moved aside, so a new path can
    never collide with an old one that has not been moved yet.
    """
    storage = ctx.storage_dir(entry.name)
    missing = [rel for rel in entry.files if not (storage / rel).is_file()]
    if missing:
        raise CorruptState(
            f"Entry {entry.name!r} lists files missing from storage: "
            + ", ".join(sorted(missing))
        )

    staging = ctx.config_dir / f".{entry.name}.rebase"
    if staging.exists():
        shutil.rmtree(staging)
    os.replace(storage, staging)
    for rel in sorted(entry.files):
        new_rel = renames.get(rel, rel)
        dest = storage / new_rel
        dest.parent.mkdir(parents=True, exist_ok=True)
        os.replace(staging / rel, dest)
        logger.debug("Relocated {}/{} -> {}", entry.name, rel, new_rel)
    shutil.rmtree(staging)


def _undo_relocation(ctx: ConfigContext, entry: Entry, renames: dict[str, str]) -> None:
    """Move relocated storage back to *entry*'s layout, dropping new copies."""
    moved = Entry(name=entry.name, files={renames.get(rel, rel) for rel in entry.files})
    _relocate_storage(ctx, moved, {renames.get(rel, rel): rel for rel in entry.files})
    logger.warning("Moved the stored files of {} back to {}", entry.name, entry.target_dir)
