"""Library-level implementations of the dotstore commands.

Every command that changes the config directory holds the config lock and
starts by fetching: if the local branch is behind the remote nothing is
touched and :class:`RemoteDivergence` is raised.
"""

from __future__ import annotations

import os
import shutil
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from loguru import logger

from ._lock import config_lock
from .config import (
    AUTH_FILE,
    AuthFile,
    Config,
    ConfigContext,
    Entry,
    Settings,
    validate_entry_name,
)
from .deploy import DeployReport, deploy, restore_files, undeploy
from .exceptions import (
    ConfigCorrupt,
    ConfigExists,
    ConfigMissing,
    DotstoreError,
    EntryAlreadyExists,
    MergeInProgress,
    NotTracked,
    PushRejected,
)
from .ingest import IngestResult, ingest
from .paths import is_within
from .progress import ProgressSink
from .repo import ConfigRepo
from .signature import resolve_signature
from .sync import (
    FetchState,
    RemoteChanges,
    UpdateResult,
    ensure_not_behind,
    fetch_and_classify,
    plan_update,
    remote_changes,
    render_diff,
    split_point,
)

GITIGNORE = f"{AUTH_FILE}\n.*.rebase/\n"
INITIAL_MESSAGE = "Initial dotstore commit"


def open_repo(ctx: ConfigContext) -> ConfigRepo:
    auth = AuthFile.load(ctx)
    return ConfigRepo.open(
        ctx.config_dir, branch=ctx.branch, remote=ctx.remote,
        token=auth.token if auth else None,
    )


@contextmanager
def _locked_repo(ctx: ConfigContext):
    with config_lock(ctx.config_dir):
        with open_repo(ctx) as repo:
            yield repo


def _ensure_no_pending_merge(repo: ConfigRepo) -> None:
    """Refuse to commit while conflict markers from a stopped update are on disk."""
    theirs = repo.merge_head()
    if theirs is None:
        return
    head = repo.head()
    if head is not None and theirs in repo.object_store and repo.is_ancestor(theirs, head):
        logger.debug("Merge of {} was committed outside dotstore", theirs.decode()[:7])
        repo.clear_merge_head()
        return
    raise MergeInProgress(repo.worktree_changes())


def _push(repo: ConfigRepo, progress: ProgressSink | None) -> None:
    try:
        repo.push(progress=progress)
    except PushRejected as exc:
        raise PushRejected(
            f"{exc} (the commit was made locally; run `dotstore push` to retry)",
            local_advanced=True,
        ) from exc


def _file_list(paths) -> str:
    return "\n".join(sorted(paths))


# ---------------------------------------------------------------------------
# init
# ---------------------------------------------------------------------------

def init(ctx: ConfigContext, *, remote_url: str | None = None,
         clone_url: str | None = None, force: bool = False,
         settings: Settings | None = None, signature=None,
         progress: ProgressSink | None = None) -> ConfigRepo:
    """Set up the config directory.

    With *clone_url* an existing dotstore repository is cloned and all of
    its entries deployed.  Otherwise a fresh repository is created on the
    ``main`` branch with *remote_url* as ``origin``, an empty config is
    committed and pushed.
    """
    if ctx.config_path.exists() and not force:
        raise ConfigExists(
            f"Config file {ctx.config_path} already exists. Use --force to overwrite."
        )

    if clone_url is not None:
        if ctx.config_dir.exists() and any(ctx.config_dir.iterdir()):
            raise ConfigExists(f"Cannot clone into non-empty directory {ctx.config_dir}")
        repo = ConfigRepo.clone(clone_url, ctx.config_dir, progress=progress,
                                branch=ctx.branch, remote=ctx.remote)
        config = Config.load(ctx)
        deploy(ctx, config, progress=progress)
        logger.debug("Cloned {} into {}", clone_url, ctx.config_dir)
        return repo

    if remote_url is None:
        raise ValueError("init needs either remote_url or clone_url")

    config = Config(settings=settings or Settings())
    signature = signature or resolve_signature(ctx, config)
    if (ctx.config_dir / ".git").is_dir():
        repo = open_repo(ctx)
    else:
        repo = ConfigRepo.init(ctx.config_dir, branch=ctx.branch, remote=ctx.remote)
    repo.add_remote(remote_url)
    config.save(ctx)
    (ctx.config_dir / ".gitignore").write_text(GITIGNORE, encoding="utf-8")
    repo.commit_all(INITIAL_MESSAGE, signature)
    _push(repo, progress)
    return repo


# ---------------------------------------------------------------------------
# Entries
# ---------------------------------------------------------------------------

def new_entry(ctx: ConfigContext, name: str, files=(), *, push: bool = False,
              signature=None, progress: ProgressSink | None = None) -> IngestResult:
    validate_entry_name(name)
    with _locked_repo(ctx) as repo:
        _ensure_no_pending_merge(repo)
        ensure_not_behind(repo, progress)
        config = Config.load(ctx)
        if name in config.entries:
            raise EntryAlreadyExists(name)
        signature = signature or resolve_signature(ctx, config)

        result = ingest(ctx, Entry(name=name), files)
        config.entries[name] = result.entry
        config.save(ctx)

        message = f"Added configs for `{name}`"
        if result.added:
            message += f" with {len(result.added)} files"
        message += f"\n\nNew files:\n{_file_list(result.added)}"
        repo.commit_all(message, signature)
        deploy(ctx, config, name, progress)
        if push:
            _push(repo, progress)
        return result


def add_files(ctx: ConfigContext, name: str, files, *, push: bool = False,
              signature=None, progress: ProgressSink | None = None) -> IngestResult:
    with _locked_repo(ctx) as repo:
        _ensure_no_pending_merge(repo)
        ensure_not_behind(repo, progress)
        config = Config.load(ctx)
        entry = config.get(name)
        signature = signature or resolve_signature(ctx, config)

        result = ingest(ctx, entry, files)
        config.entries[name] = result.entry
        config.save(ctx)

        repo.commit_all(
            f"Added {len(result.added)} files to `{name}`\n\n"
            f"New files:\n{_file_list(result.added)}",
            signature,
        )
        deploy(ctx, config, name, progress)
        if push:
            _push(repo, progress)
        return result


def tracked_path(ctx: ConfigContext, entry: Entry, path) -> str:
    """Map a deployed path or a storage path to the entry's relative path."""
    p = Path(path).expanduser().absolute()
    storage = ctx.storage_dir(entry.name)
    candidates = [p]
    if os.path.lexists(p):
        candidates.append(p.resolve())
    for c in candidates:
        for base in (storage, storage.resolve(), entry.target_dir):
            if base is None or not is_within(c, base) or c == base:
                continue
            rel = c.relative_to(base).as_posix()
            if rel in entry.files:
                return rel
    raise NotTracked(f"File {path} is not tracked in entry `{entry.name}`")


def remove_files(ctx: ConfigContext, name: str, files, *, replace_files: bool = True,
                 push: bool = False, signature=None,
                 progress: ProgressSink | None = None) -> list[str]:
    """Stop tracking *files*; by default a plain copy is left at each deployed path."""
    with _locked_repo(ctx) as repo:
        _ensure_no_pending_merge(repo)
        config = Config.load(ctx)
        entry = config.get(name)
        rels = sorted({tracked_path(ctx, entry, f) for f in files})

        ensure_not_behind(repo, progress)
        signature = signature or resolve_signature(ctx, config)

        undeploy(ctx, config, name)
        restore_files(ctx, entry, rels, replace=replace_files)
        storage = ctx.storage_dir(name)
        entry.files -= set(rels)
        for rel in rels:
            stored = storage / rel
            stored.unlink(missing_ok=True)
            _prune_empty_parents(stored.parent, storage)
            logger.debug("Deleted stored copy {}", stored)
        config.save(ctx)

        repo.commit_all(
            f"Deleted {len(rels)} files from `{name}`\n\nDeleted files:\n{_file_list(rels)}",
            signature,
        )
        deploy(ctx, config, name, progress)
        if push:
            _push(repo, progress)
        return rels


def _prune_empty_parents(directory: Path, stop: Path) -> None:
    while directory != stop and stop in directory.parents:
        try:
            directory.rmdir()
        except OSError:
            return
        directory = directory.parent


def delete_entry(ctx: ConfigContext, name: str, *, replace_files: bool = True,
                 push: bool = False, signature=None,
                 progress: ProgressSink | None = None) -> Entry:
    with _locked_repo(ctx) as repo:
        _ensure_no_pending_merge(repo)
        ensure_not_behind(repo, progress)
        config = Config.load(ctx)
        entry = config.get(name)
        signature = signature or resolve_signature(ctx, config)

        restore_files(ctx, entry, replace=replace_files)
        storage = ctx.storage_dir(name)
        if storage.exists():
            shutil.rmtree(storage)
        del config.entries[name]
        config.save(ctx)

        repo.commit_all(
            f"Deleted entry `{name}`\n\nDeleted files:\n{_file_list(entry.files)}",
            signature,
        )
        if push:
            _push(repo, progress)
        return entry


def list_entries(ctx: ConfigContext) -> list[Entry]:
    config = Config.load(ctx)
    return [config.entries[n] for n in sorted(config.entries)]


def show_entry(ctx: ConfigContext, name: str) -> Entry:
    return Config.load(ctx).get(name)


def format_tree(entry: Entry) -> list[str]:
    """Draw the entry's files as a directory tree, one line per node."""
    root: dict = {}
    for rel in sorted(entry.files):
        node = root
        for part in rel.split("/"):
            node = node.setdefault(part, {})

    where = entry.target_dir if entry.target_dir is not None else "(no files)"
    lines = [f"{entry.name} in {where}"]

    def _walk(node, prefix):
        names = sorted(node)
        for i, name in enumerate(names):
            last = i == len(names) - 1
            child = node[name]
            label = f"{name}/" if child else name
            lines.append(f"{prefix}{'└── ' if last else '├── '}{label}")
            _walk(child, prefix + ("    " if last else "│   "))

    _walk(root, "")
    return lines


# ---------------------------------------------------------------------------
# Remote
# ---------------------------------------------------------------------------

@dataclass
class CheckResult:
    state: FetchState
    changes: RemoteChanges
    diff: str | None = None

    @property
    def up_to_date(self) -> bool:
        return not self.state.behind


def check(ctx: ConfigContext, name: str | None = None, *, print_diff: bool = False,
          color: bool = True, progress: ProgressSink | None = None) -> CheckResult:
    """Fetch and report what the remote has that local does not."""
    with _locked_repo(ctx) as repo:
        config = Config.load(ctx)
        if name is not None:
            config.get(name)
        state = fetch_and_classify(repo, progress)
        changes = remote_changes(repo, config, state)
        if name is not None:
            changes.entries = {k: v for k, v in changes.entries.items() if k == name}
        diff = None
        if print_diff and state.behind:
            diff = render_diff(repo, repo.tree_of(split_point(repo, state)),
                               repo.tree_of(state.remote), color=color)
        return CheckResult(state, changes, diff)


def _commit_edits(repo: ConfigRepo, signature) -> list[str]:
    """Commit files changed in place, usually edited through their symlinks."""
    changed = repo.worktree_changes()
    if changed:
        repo.commit_all(
            f"Updated {len(changed)} files\n\nChanged files:\n{_file_list(changed)}",
            signature,
        )
    return changed


def push(ctx: ConfigContext, *, signature=None,
         progress: ProgressSink | None = None) -> list[str]:
    """Commit edits made through the symlinks, then push.

    Returns the paths that were committed.
    """
    with _locked_repo(ctx) as repo:
        _ensure_no_pending_merge(repo)
        changed = []
        if repo.worktree_changes():
            ensure_not_behind(repo, progress)
            signature = signature or resolve_signature(ctx, Config.load(ctx))
            changed = _commit_edits(repo, signature)
        repo.push(progress=progress)
        return changed


def update(ctx: ConfigContext, *, signature=None,
           progress: ProgressSink | None = None) -> UpdateResult:
    """Undeploy, pull the remote branch in, and redeploy from the new config.

    Local edits that were never committed are committed first so the
    merge sees them.  Redeploying also happens when the update fails, as
    long as the config on disk can still be read.  While conflict markers
    from an earlier update are on disk nothing is committed and
    :class:`MergeInProgress` is raised.
    """
    with _locked_repo(ctx) as repo:
        _ensure_no_pending_merge(repo)
        config = Config.load(ctx)
        signature = signature or resolve_signature(ctx, config)
        _commit_edits(repo, signature)
        undeploy(ctx, config)
        try:
            result = plan_update(repo, config, signature, progress)
        except Exception:
            _redeploy_after_failure(ctx, progress)
            raise
        deploy(ctx, Config.load(ctx), progress=progress)
        return result


def abort_update(ctx: ConfigContext, progress: ProgressSink | None = None) -> bool:
    """Drop the conflict markers of a stopped update and redeploy the branch tip.

    Returns False when there was no unfinished merge to abort.
    """
    with _locked_repo(ctx) as repo:
        if repo.merge_head() is None:
            return False
        try:
            undeploy(ctx, Config.load(ctx))
        except ConfigCorrupt as exc:
            logger.warning("Not undeploying, the conflicted config is unreadable: {}", exc)
        repo.abort_merge()
        deploy(ctx, Config.load(ctx), progress=progress)
        return True


def _redeploy_after_failure(ctx: ConfigContext, progress) -> None:
    try:
        deploy(ctx, Config.load(ctx), progress=progress)
    except (ConfigCorrupt, ConfigMissing) as exc:
        logger.warning("Not redeploying, config is unreadable: {}", exc)
    except DotstoreError as exc:
        logger.warning("Redeploy after failed update did not complete: {}", exc)


def redeploy(ctx: ConfigContext, progress: ProgressSink | None = None) -> DeployReport:
    with config_lock(ctx.config_dir):
        config = Config.load(ctx)
        undeploy(ctx, config)
        return deploy(ctx, config, progress=progress)
