"""Deciding what to do with the remote branch.

Every command that writes starts with :func:`ensure_not_behind`; ``update``
goes through :func:`plan_update`, which moves through the states
``FETCHING -> CLASSIFIED -> (MERGING) -> APPLYING -> DONE`` and ends in
``CONFLICT_ABORTED`` or ``FAILED`` when it cannot finish.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field

import click
from loguru import logger

from .config import CONFIG_FILE, Config
from .exceptions import (
    ConfigCorrupt,
    MergeConflict,
    OrphanedFile,
    PushRejected,
    RemoteDivergence,
)
from .merge import merge_trees
from .progress import ProgressSink
from .repo import ConfigRepo
from .tree import build_tree


class MergeAnalysis(enum.Enum):
    NONE = "none"
    UP_TO_DATE = "up-to-date"
    UNBORN = "unborn"
    FAST_FORWARD = "fast-forward"
    NORMAL = "normal"


class UpdateState(enum.Enum):
    FETCHING = "fetching"
    CLASSIFIED = "classified"
    MERGING = "merging"
    APPLYING = "applying"
    DONE = "done"
    CONFLICT_ABORTED = "conflict-aborted"
    FAILED = "failed"


@dataclass
class FetchState:
    analysis: MergeAnalysis
    local: bytes | None
    remote: bytes | None

    @property
    def behind(self) -> bool:
        return self.analysis not in (MergeAnalysis.UP_TO_DATE, MergeAnalysis.NONE)


@dataclass
class RemoteChanges:
    """Changed paths grouped by the entry they belong to."""

    entries: dict[str, set[str]] = field(default_factory=dict)
    config_changed: bool = False

    @property
    def empty(self) -> bool:
        return not self.entries and not self.config_changed


@dataclass
class UpdateResult:
    state: UpdateState
    analysis: MergeAnalysis
    changes: RemoteChanges = field(default_factory=RemoteChanges)
    merge_commit: bytes | None = None


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

def analyze(repo: ConfigRepo, local: bytes | None, remote: bytes | None) -> MergeAnalysis:
    if remote is None:
        return MergeAnalysis.NONE
    if local is None:
        return MergeAnalysis.UNBORN
    if repo.is_ancestor(remote, local):
        return MergeAnalysis.UP_TO_DATE
    if repo.is_ancestor(local, remote):
        return MergeAnalysis.FAST_FORWARD
    return MergeAnalysis.NORMAL


def fetch_and_classify(repo: ConfigRepo, progress: ProgressSink | None = None) -> FetchState:
    remote = repo.fetch(progress=progress)
    local = repo.head()
    analysis = analyze(repo, local, remote)
    logger.debug("Merge analysis against {}/{}: {}", repo.remote, repo.branch, analysis.value)
    return FetchState(analysis, local, remote)


def ensure_not_behind(repo: ConfigRepo, progress: ProgressSink | None = None) -> FetchState:
    """Fetch, then refuse to go on unless local is equal to or ahead of the remote."""
    state = fetch_and_classify(repo, progress)
    if state.behind:
        raise RemoteDivergence(
            f"Local config is behind {repo.remote}/{repo.branch} "
            f"({state.analysis.value}); run `dotstore update` first"
        )
    return state


def known_entries(repo: ConfigRepo, config: Config, remote: bytes | None) -> set[str]:
    """Entry names from the local config plus those in the fetched config."""
    names = set(config.entries)
    if remote is None:
        return names
    try:
        text = repo.read_file(repo.tree_of(remote), CONFIG_FILE)
    except FileNotFoundError:
        return names
    try:
        names |= set(Config.from_toml(text.decode("utf-8")).entries)
    except (ConfigCorrupt, UnicodeDecodeError) as exc:
        raise ConfigCorrupt(f"Remote {CONFIG_FILE} is invalid: {exc}") from exc
    return names


def classify_changes(paths, known: set[str]) -> RemoteChanges:
    """Group changed repository paths by entry.

    The root ``config.toml`` sets ``config_changed``; other root files such
    as ``.gitignore`` are not interesting.  A path below a directory that is
    not a known entry raises :class:`OrphanedFile`.
    """
    changes = RemoteChanges()
    for path in sorted(paths):
        head, sep, _rest = path.partition("/")
        if not sep:
            if head == CONFIG_FILE:
                changes.config_changed = True
            continue
        if head not in known:
            raise OrphanedFile(path)
        changes.entries.setdefault(head, set()).add(path)
    return changes


def split_point(repo: ConfigRepo, state: FetchState) -> bytes | None:
    """The commit the remote branch moved on from: local itself, or the merge base."""
    if state.analysis is MergeAnalysis.NORMAL:
        return repo.merge_base(state.local, state.remote)
    return state.local


def remote_changes(repo: ConfigRepo, config: Config, state: FetchState) -> RemoteChanges:
    """What the remote changed since the histories split, grouped by entry.

    Commits that only exist locally are not remote changes, so a local
    branch that is equal to or ahead of the remote has none.
    """
    if not state.behind:
        return RemoteChanges()
    since = split_point(repo, state)
    paths = repo.diff_paths(repo.tree_of(since), repo.tree_of(state.remote))
    return classify_changes(paths, known_entries(repo, config, state.remote))


# ---------------------------------------------------------------------------
# Update
# ---------------------------------------------------------------------------

def merge_message(remote: bytes, local: bytes, changes: RemoteChanges) -> str:
    lines = [f"Merge {remote.decode()} into {local.decode()}", "", "Files changed:"]
    if changes.config_changed:
        lines.append(CONFIG_FILE)
    for name in sorted(changes.entries):
        lines.append(f"{name}:")
        lines.extend(f"    {p}" for p in sorted(changes.entries[name]))
    return "\n".join(lines)


def plan_update(repo: ConfigRepo, config: Config, signature,
                progress: ProgressSink | None = None) -> UpdateResult:
    """Bring the local branch up to date with the remote one.

    A fast-forward moves the branch and checks out the new tree.  Diverged
    histories get a path-level three-way merge: a conflict leaves the marker
    files in the working tree, makes no commit and raises
    :class:`MergeConflict`; a clean merge is committed and pushed.
    The caller is responsible for undeploying before and redeploying after.
    """
    state = UpdateState.FETCHING
    logger.debug("update: {}", state.value)
    fetched = fetch_and_classify(repo, progress)
    changes = remote_changes(repo, config, fetched)
    state = UpdateState.CLASSIFIED
    logger.debug("update: {} as {}", state.value, fetched.analysis.value)

    result = UpdateResult(state, fetched.analysis, changes)
    if fetched.analysis in (MergeAnalysis.UP_TO_DATE, MergeAnalysis.UNBORN, MergeAnalysis.NONE):
        result.state = UpdateState.DONE
        return result

    local, remote = fetched.local, fetched.remote
    try:
        if fetched.analysis is MergeAnalysis.FAST_FORWARD:
            state = UpdateState.APPLYING
            repo.set_head(remote)
            repo.checkout(repo.tree_of(remote))
            logger.debug("Fast-forwarded {} to {}", repo.branch, remote.decode()[:7])
            result.state = UpdateState.DONE
            return result

        state = UpdateState.MERGING
        base = repo.merge_base(local, remote)
        merged = merge_trees(
            repo.flatten(repo.tree_of(base)),
            repo.flatten(repo.tree_of(local)),
            repo.flatten(repo.tree_of(remote)),
        )
        if not merged.clean:
            repo.checkout_conflicted(merged, remote)
            state = UpdateState.CONFLICT_ABORTED
            raise MergeConflict(merged.conflict_paths)

        state = UpdateState.APPLYING
        tree_id = build_tree(repo.object_store, merged.entries)
        commit = repo.commit_tree(
            tree_id, [local, remote], merge_message(remote, local, changes), signature,
        )
        result.merge_commit = commit
        repo.checkout(tree_id)
        try:
            repo.push(progress=progress)
        except PushRejected as exc:
            raise PushRejected(
                f"Merged locally but could not push: {exc}", local_advanced=True,
            ) from exc
    except MergeConflict:
        logger.debug("update: {}", state.value)
        raise
    except Exception:
        logger.debug("update: {} (from {})", UpdateState.FAILED.value, state.value)
        raise

    result.state = UpdateState.DONE
    return result


# ---------------------------------------------------------------------------
# Diff rendering
# ---------------------------------------------------------------------------

def render_diff(repo: ConfigRepo, old_tree: bytes | None, new_tree: bytes | None,
                color: bool = True) -> str:
    """Patch text between two trees, colored the way ``git diff`` does."""
    text = repo.diff_patch(old_tree, new_tree).decode("utf-8", "replace")
    if not color:
        return text
    out = []
    for line in text.splitlines():
        if line.startswith(("diff --git", "index ", "--- ", "+++ ", "new file", "deleted file")):
            out.append(click.style(line, bold=True))
        elif line.startswith("@@"):
            out.append(click.style(line, fg="cyan"))
        elif line.startswith("+"):
            out.append(click.style(line, fg="green"))
        elif line.startswith("-"):
            out.append(click.style(line, fg="red"))
        else:
            out.append(line)
    return "\n".join(out) + ("\n" if out else "")
