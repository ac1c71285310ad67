"""Symlink deployment of stored files.

Each tracked file is deployed as a symlink at ``target_dir/rel`` pointing
at ``<config_dir>/<entry>/rel``.  Only symlinks pointing exactly at the
storage path count as ours: anything else found at a deployed path is
replaced on deploy and left alone on undeploy.
"""

from __future__ import annotations

import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path

from loguru import logger

from .config import Config, ConfigContext, Entry
from .exceptions import CorruptState, DeployError, UndeployError
from .progress import NullProgress, ProgressSink


@dataclass(frozen=True)
class LinkPair:
    entry: str
    rel: str
    deployed: Path
    stored: Path

    def is_linked(self) -> bool:
        """True when the deployed path is a symlink to exactly our stored file."""
        if not self.deployed.is_symlink():
            return False
        try:
            return os.readlink(self.deployed) == str(self.stored)
        except OSError:
            return False


@dataclass
class DeployReport:
    linked: list[Path] = field(default_factory=list)
    replaced: list[Path] = field(default_factory=list)
    unchanged: list[Path] = field(default_factory=list)


@dataclass
class UndeployReport:
    removed: list[Path] = field(default_factory=list)
    skipped: list[Path] = field(default_factory=list)


def link_pairs(ctx: ConfigContext, entry: Entry) -> list[LinkPair]:
    if entry.target_dir is None:
        return []
    storage = ctx.storage_dir(entry.name)
    return [
        LinkPair(entry.name, rel, entry.deployed_path(rel), storage / rel)
        for rel in sorted(entry.files)
    ]


def _select(config: Config, name: str | None) -> list[Entry]:
    if name is not None:
        return [config.get(name)]
    return [config.entries[n] for n in sorted(config.entries)]


def _remove(path: Path) -> None:
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    else:
        path.unlink()


def deploy(ctx: ConfigContext, config: Config, name: str | None = None,
           progress: ProgressSink | None = None) -> DeployReport:
    """Make every deployed path a symlink to its stored file.

    Stored files are checked before anything is touched.  If a filesystem
    operation fails part way, every deployed path touched so far is turned
    back into a plain copy of its stored file and :class:`DeployError` is
    raised.
    """
    sink = progress or NullProgress()
    pairs = [p for entry in _select(config, name) for p in link_pairs(ctx, entry)]

    missing = [p for p in pairs if not p.stored.is_file()]
    if missing:
        raise CorruptState(
            "Tracked files are missing from storage: "
            + ", ".join(str(p.stored) for p in missing)
        )

    report = DeployReport()
    touched: list[LinkPair] = []
    for pair in pairs:
        if pair.is_linked():
            report.unchanged.append(pair.deployed)
            continue
        touched.append(pair)
        operation = "remove"
        try:
            if os.path.lexists(pair.deployed):
                _remove(pair.deployed)
                report.replaced.append(pair.deployed)
                logger.debug("Removed {} to make room for its symlink", pair.deployed)
            operation = "create the parent directory of"
            pair.deployed.parent.mkdir(parents=True, exist_ok=True)
            operation = "symlink"
            os.symlink(pair.stored, pair.deployed)
        except OSError as exc:
            restored, failures = _restore_copies(touched)
            raise DeployError(
                operation, pair.deployed, restored=restored, restore_failures=failures,
            ) from exc
        logger.debug("Linked {} -> {}", pair.deployed, pair.stored)
        sink.on_message(f"Linked {pair.deployed}")
        report.linked.append(pair.deployed)
    return report


def _restore_copies(pairs: list[LinkPair]) -> tuple[list[Path], list[tuple[Path, str]]]:
    """Put a plain copy of each stored file at its deployed path."""
    restored: list[Path] = []
    failures: list[tuple[Path, str]] = []
    for pair in pairs:
        try:
            if os.path.lexists(pair.deployed):
                _remove(pair.deployed)
            pair.deployed.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(pair.stored, pair.deployed)
        except OSError as exc:
            logger.warning("Could not restore {} from {}: {}", pair.deployed, pair.stored, exc)
            failures.append((pair.deployed, str(exc)))
        else:
            restored.append(pair.deployed)
    return restored, failures


def undeploy(ctx: ConfigContext, config: Config, name: str | None = None) -> UndeployReport:
    """Remove our symlinks.  Anything else at a deployed path is left alone.

    Failures do not stop the pass; they are collected and raised together
    as :class:`UndeployError` at the end.
    """
    report = UndeployReport()
    failures: list[tuple[str, str]] = []
    for entry in _select(config, name):
        for pair in link_pairs(ctx, entry):
            if not pair.is_linked():
                report.skipped.append(pair.deployed)
                continue
            try:
                pair.deployed.unlink()
            except OSError as exc:
                failures.append((str(pair.deployed), str(exc)))
                continue
            logger.debug("Unlinked {}", pair.deployed)
            report.removed.append(pair.deployed)
    if failures:
        raise UndeployError(failures)
    return report


def restore_files(ctx: ConfigContext, entry: Entry, files=None,
                  replace: bool = True) -> list[Path]:
    """Detach deployed files from storage before they stop being tracked.

    With *replace* each of our symlinks (or a missing deployed file) becomes
    a plain copy of the stored file; without it the symlink is just removed.
    Paths that are not our symlinks are never touched.
    """
    rels = sorted(entry.files if files is None else files)
    pairs = {p.rel: p for p in link_pairs(ctx, entry)}
    done: list[Path] = []
    for rel in rels:
        pair = pairs.get(rel)
        if pair is None:
            continue
        ours = pair.is_linked()
        if not ours and os.path.lexists(pair.deployed):
            logger.warning("Leaving {} alone: it is not a symlink into storage", pair.deployed)
            continue
        try:
            if ours:
                pair.deployed.unlink()
            if replace:
                if not pair.stored.is_file():
                    raise CorruptState(f"Tracked file is missing from storage: {pair.stored}")
                pair.deployed.parent.mkdir(parents=True, exist_ok=True)
                shutil.copy2(pair.stored, pair.deployed)
        except OSError as exc:
            raise DeployError("restore", pair.deployed, restored=done) from exc
        logger.debug("{} {}", "Restored" if replace else "Unlinked", pair.deployed)
        done.append(pair.deployed)
    return done
