"""The config directory as a git repository, on top of dulwich.

:class:`ConfigRepo` holds exactly the primitives the sync logic needs:
one branch, one remote, whole-tree commits and forced checkouts.
"""

from __future__ import annotations

import io
import os
import shutil
import time
from pathlib import Path
from urllib.parse import quote, urlparse, urlunparse

from dulwich.client import get_transport_and_path
from dulwich.errors import GitProtocolError, NotGitRepository
from dulwich.graph import find_merge_base
from dulwich.ignore import IgnoreFilterManager
from dulwich.index import index_entry_from_stat
from dulwich.objects import Commit
from dulwich.patch import write_tree_diff
from dulwich.protocol import ZERO_SHA
from dulwich.repo import Repo
from loguru import logger

from .config import DEFAULT_BRANCH, DEFAULT_REMOTE
from .exceptions import (
    PushRejected,
    RemoteNotConfigured,
    RemoteUnavailable,
    RepositoryNotFound,
)
from .merge import MergeResult, conflicted_tree, merge_trees
from .progress import NullProgress, ProgressSink, progress_callback
from .tree import (
    GIT_FILEMODE_BLOB_EXECUTABLE,
    GIT_FILEMODE_LINK,
    FlatTree,
    blob_from_disk,
    build_tree,
    changed_paths,
    flatten_tree,
    read_blob_at_path,
)


def _sha(b: bytes | None) -> str | None:
    return b.decode() if b is not None else None


class ConfigRepo:
    """A non-bare repository tracking one branch of one remote."""

    def __init__(self, repo: Repo, *, branch: str = DEFAULT_BRANCH,
                 remote: str = DEFAULT_REMOTE, token: str | None = None):
        self._repo = repo
        self.branch = branch
        self.remote = remote
        self.token = token

    # -- construction -------------------------------------------------------

    @classmethod
    def init(cls, path, *, branch: str = DEFAULT_BRANCH, **kwargs) -> ConfigRepo:
        path = Path(path)
        path.mkdir(parents=True, exist_ok=True)
        repo = Repo.init(str(path))
        repo.refs.set_symbolic_ref(b"HEAD", f"refs/heads/{branch}".encode())
        logger.debug("Initialized repository in {} on branch {}", path, branch)
        return cls(repo, branch=branch, **kwargs)

    @classmethod
    def open(cls, path, **kwargs) -> ConfigRepo:
        try:
            repo = Repo(str(path))
        except NotGitRepository:
            raise RepositoryNotFound(
                f"{path} is not a git repository. Run `dotstore init` first."
            ) from None
        if repo.bare:
            raise RepositoryNotFound(f"{path} is a bare repository")
        return cls(repo, **kwargs)

    @classmethod
    def clone(cls, url: str, path, *, progress: ProgressSink | None = None,
              **kwargs) -> ConfigRepo:
        """Initialize *path*, add *url* as the remote and check out its branch."""
        repo = cls.init(path, **kwargs)
        repo.add_remote(url)
        sha = repo.fetch(progress=progress)
        if sha is None:
            logger.warning("Remote {} has no branch {!r}; cloned an empty repository",
                           url, repo.branch)
            return repo
        repo._repo.refs[repo.branch_ref] = sha
        repo.checkout(repo.tree_of(sha))
        return repo

    def close(self) -> None:
        self._repo.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    # -- refs and remotes ---------------------------------------------------

    @property
    def path(self) -> Path:
        return Path(self._repo.path)

    @property
    def object_store(self):
        return self._repo.object_store

    @property
    def branch_ref(self) -> bytes:
        return f"refs/heads/{self.branch}".encode()

    @property
    def remote_ref(self) -> bytes:
        return f"refs/remotes/{self.remote}/{self.branch}".encode()

    def _ref(self, name: bytes) -> bytes | None:
        try:
            return self._repo.refs[name]
        except KeyError:
            return None

    def head(self) -> bytes | None:
        """Tip of the local branch, or None while it is unborn."""
        return self._ref(self.branch_ref)

    def remote_head(self) -> bytes | None:
        """Tip of the remote branch as of the last fetch."""
        return self._ref(self.remote_ref)

    def set_head(self, sha: bytes) -> None:
        self._repo.refs[self.branch_ref] = sha

    def add_remote(self, url: str) -> None:
        config = self._repo.get_config()
        section = (b"remote", self.remote.encode())
        config.set(section, b"url", url.encode())
        config.set(
            section, b"fetch",
            f"+refs/heads/*:refs/remotes/{self.remote}/*".encode(),
        )
        config.write_to_path()
        logger.debug("Remote {} -> {}", self.remote, url)

    def remote_url(self) -> str:
        try:
            url = self._repo.get_config().get((b"remote", self.remote.encode()), b"url")
        except KeyError:
            raise RemoteNotConfigured(
                f"Repository has no remote named {self.remote!r}"
            ) from None
        return url.decode()

    def _client(self):
        url = resolve_credentials(self.remote_url(), token=self.token)
        return get_transport_and_path(url)

    # -- network ------------------------------------------------------------

    def fetch(self, *, progress: ProgressSink | None = None) -> bytes | None:
        """Fetch the remote branch into :attr:`remote_ref`.

        Returns the fetched commit, or None when the remote has no such
        branch yet.
        """
        sink = progress or NullProgress()
        client, path = self._client()
        try:
            result = client.fetch(path, self._repo, progress=progress_callback(sink))
        except (GitProtocolError, NotGitRepository, OSError) as exc:
            raise RemoteUnavailable(
                f"Failed to fetch from remote {self.remote!r}: {exc}"
            ) from exc
        refs = result.refs if hasattr(result, "refs") else result
        sha = refs.get(self.branch_ref)
        if sha is None:
            logger.debug("Remote {} has no {}", self.remote, self.branch_ref.decode())
            return None
        old = self.remote_head()
        if old != sha:
            self._repo.refs[self.remote_ref] = sha
            sink.on_ref_update(self.remote_ref.decode(), _sha(old), _sha(sha))
        return sha

    def push(self, *, progress: ProgressSink | None = None) -> None:
        """Push the local branch; anything but a fast-forward is refused."""
        sink = progress or NullProgress()
        head = self.head()
        if head is None:
            raise PushRejected(f"Branch {self.branch!r} has no commits to push")
        client, path = self._client()
        branch_ref = self.branch_ref

        def update_refs(remote_refs):
            theirs = remote_refs.get(branch_ref, ZERO_SHA)
            if theirs not in (ZERO_SHA, head):
                if theirs not in self._repo.object_store or not self.is_ancestor(theirs, head):
                    raise PushRejected(
                        f"Remote branch {self.branch!r} has commits that are not "
                        f"present locally; run `dotstore update` first"
                    )
            return {branch_ref: head}

        def gen_pack(have, want, *, ofs_delta=False, progress=None):
            return self._repo.object_store.generate_pack_data(
                have, want, ofs_delta=ofs_delta, progress=progress,
            )

        try:
            result = client.send_pack(
                path, update_refs, gen_pack, progress=progress_callback(sink),
            )
        except (GitProtocolError, NotGitRepository, OSError) as exc:
            raise PushRejected(
                f"Failed to push to remote {self.remote!r}: {exc}"
            ) from exc

        status = getattr(result, "ref_status", None) or {}
        error = status.get(branch_ref)
        if error:
            raise PushRejected(f"Remote rejected {branch_ref.decode()}: {error}")

        old = self.remote_head()
        self._repo.refs[self.remote_ref] = head
        sink.on_ref_update(self.remote_ref.decode(), _sha(old), _sha(head))
        logger.debug("Pushed {} to {}", head.decode()[:7], self.remote)

    # -- history ------------------------------------------------------------

    def merge_base(self, a: bytes, b: bytes) -> bytes | None:
        bases = find_merge_base(self._repo, [a, b])
        return bases[0] if bases else None

    def is_ancestor(self, ancestor: bytes, descendant: bytes) -> bool:
        if ancestor == descendant:
            return True
        return ancestor in find_merge_base(self._repo, [ancestor, descendant])

    def tree_of(self, commit: bytes | None) -> bytes | None:
        if commit is None:
            return None
        return self._repo[commit].tree

    def flatten(self, tree_id: bytes | None) -> FlatTree:
        return flatten_tree(self._repo.object_store, tree_id)

    def read_file(self, tree_id: bytes, path: str) -> bytes:
        return read_blob_at_path(self._repo.object_store, tree_id, path)

    def diff_paths(self, old_tree: bytes | None, new_tree: bytes | None) -> list[str]:
        return sorted(changed_paths(self.flatten(old_tree), self.flatten(new_tree)))

    def diff_patch(self, old_tree: bytes | None, new_tree: bytes | None) -> bytes:
        out = io.BytesIO()
        write_tree_diff(out, self._repo.object_store, old_tree, new_tree)
        return out.getvalue()

    # -- commits ------------------------------------------------------------

    def commit_tree(self, tree_id: bytes, parents: list[bytes], message: str,
                    signature) -> bytes:
        """Create a commit and advance the branch to it."""
        c = Commit()
        c.tree = tree_id
        c.parents = list(parents)
        c.author = c.committer = signature.identity
        now = int(time.time())
        c.author_time = c.commit_time = now
        c.author_timezone = c.commit_timezone = 0
        msg = message.encode()
        if not msg.endswith(b"\n"):
            msg += b"\n"
        c.message = msg
        c.encoding = b"UTF-8"
        self._repo.object_store.add_object(c)
        self._repo.refs[self.branch_ref] = c.id
        logger.debug("Committed {}: {}", c.id.decode()[:7], message.splitlines()[0])
        return c.id

    def commit_all(self, message: str, signature) -> bytes:
        """Commit the whole working tree on top of the current branch tip.

        Deleted files drop out of the tree, git-ignored files are never
        included.  Returns the new commit, or the current one when the
        tree did not change.
        """
        files = self._scan_worktree()
        tree_id = build_tree(self._repo.object_store, files)
        head = self.head()
        if head is not None and self.tree_of(head) == tree_id:
            logger.debug("Nothing to commit")
            return head
        sha = self.commit_tree(tree_id, [head] if head is not None else [], message, signature)
        self._write_index(files)
        return sha

    def worktree_changes(self) -> list[str]:
        """Paths whose working tree content differs from the branch tip."""
        return sorted(changed_paths(self.flatten(self.tree_of(self.head())),
                                    self._scan_worktree()))

    def _scan_worktree(self) -> FlatTree:
        ignore = IgnoreFilterManager.from_repo(self._repo)
        root = str(self.path)
        files: FlatTree = {}
        for dirpath, dirnames, filenames in os.walk(root):
            rel_dir = os.path.relpath(dirpath, root)
            rel_dir = "" if rel_dir == "." else rel_dir.replace(os.sep, "/")
            keep = []
            for name in sorted(dirnames):
                rel = f"{rel_dir}/{name}" if rel_dir else name
                if name == ".git" or ignore.is_ignored(rel + "/") is True:
                    continue
                if os.path.islink(os.path.join(dirpath, name)):
                    files[rel] = blob_from_disk(self._repo.object_store,
                                                os.path.join(dirpath, name))
                    continue
                keep.append(name)
            dirnames[:] = keep
            for name in sorted(filenames):
                rel = f"{rel_dir}/{name}" if rel_dir else name
                if ignore.is_ignored(rel) is True:
                    continue
                files[rel] = blob_from_disk(self._repo.object_store,
                                            os.path.join(dirpath, name))
        return files

    def _write_index(self, files: FlatTree) -> None:
        index = self._repo.open_index()
        wanted = {os.fsencode(p) for p in files}
        for path in list(index):
            if path not in wanted:
                del index[path]
        for path, (mode, sha) in files.items():
            st = os.lstat(self.path / path)
            index[os.fsencode(path)] = index_entry_from_stat(st, sha, mode=mode)
        index.write()

    def _tracked_paths(self) -> set[str]:
        return {os.fsdecode(p) for p in self._repo.open_index()}

    # -- working tree -------------------------------------------------------

    def checkout(self, tree_id: bytes | None) -> None:
        """Force the working tree and index to match *tree_id*.

        Tracked files missing from the tree are deleted; untracked and
        ignored files are left alone.
        """
        files = self.flatten(tree_id)
        self._materialize(files)
        self._write_index(files)

    def checkout_conflicted(self, result: MergeResult, theirs: bytes) -> None:
        """Write a merge result with conflict markers; the index is untouched.

        *theirs* is recorded in ``MERGE_HEAD`` the way git records an
        unfinished merge, so ``git commit`` makes the merge commit and
        :meth:`merge_head` reports the merge as pending until then.
        """
        files = conflicted_tree(self._repo.object_store, result, "local", self.remote)
        self._materialize(files)
        self._merge_head_path().write_bytes(theirs + b"\n")

    def _merge_head_path(self) -> Path:
        return Path(self._repo.controldir()) / "MERGE_HEAD"

    def merge_head(self) -> bytes | None:
        """The remote commit of an unfinished merge, or None."""
        try:
            return self._merge_head_path().read_bytes().strip() or None
        except FileNotFoundError:
            return None

    def clear_merge_head(self) -> None:
        self._merge_head_path().unlink(missing_ok=True)

    def abort_merge(self) -> None:
        """Throw away an unfinished merge and check out the branch tip again.

        Files the merge wrote that the branch tip does not have are removed
        as well; other untracked files are left alone.
        """
        head, theirs = self.head(), self.merge_head()
        files = self.flatten(self.tree_of(head))
        if head is not None and theirs is not None and theirs in self._repo.object_store:
            merged = merge_trees(
                self.flatten(self.tree_of(self.merge_base(head, theirs))),
                files,
                self.flatten(self.tree_of(theirs)),
            )
            written = conflicted_tree(self._repo.object_store, merged, "local", self.remote)
            for rel in sorted(written.keys() - files.keys()):
                out = self.path / rel
                if out.is_symlink() or out.is_file():
                    out.unlink()
                    logger.debug("Removed {}", out)
                self._prune_empty_parents(out.parent)
        self.checkout(self.tree_of(head))
        self.clear_merge_head()
        logger.debug("Aborted the unfinished merge on {}", self.branch)

    def _materialize(self, files: FlatTree) -> None:
        root = self.path
        for rel in sorted(self._tracked_paths() - files.keys()):
            out = root / rel
            if out.is_symlink() or out.is_file():
                out.unlink()
                logger.debug("Removed {}", out)
            self._prune_empty_parents(out.parent)

        for rel, (mode, sha) in sorted(files.items()):
            out = root / rel
            for parent in out.parents:
                if parent == root:
                    break
                if parent.is_symlink() or (parent.exists() and not parent.is_dir()):
                    parent.unlink()
                    break
            if out.is_dir() and not out.is_symlink():
                shutil.rmtree(out)
            out.parent.mkdir(parents=True, exist_ok=True)
            if out.exists() or out.is_symlink():
                out.unlink()
            data = self._repo.object_store[sha].data
            if mode == GIT_FILEMODE_LINK:
                out.symlink_to(os.fsdecode(data))
            else:
                out.write_bytes(data)
                if mode == GIT_FILEMODE_BLOB_EXECUTABLE:
                    os.chmod(out, 0o755)

    def _prune_empty_parents(self, directory: Path) -> None:
        root = self.path
        while directory != root and root in directory.parents:
            try:
                directory.rmdir()
            except OSError:
                return
            directory = directory.parent


# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------

def resolve_credentials(url: str, token: str | None = None) -> str:
    """Inject credentials into an HTTPS URL if available.

    Tries ``git credential fill`` first (works with any configured helper),
    then falls back to *token*, the cached GitHub OAuth token.  Non-HTTPS
    URLs and URLs that already contain credentials are returned unchanged.
    """
    if not url.startswith("https://"):
        return url

    parsed = urlparse(url)
    if parsed.username:
        return url

    import subprocess

    def _with(netloc_user: str) -> str:
        netloc = f"{netloc_user}@{parsed.hostname}"
        if parsed.port:
            netloc += f":{parsed.port}"
        return urlunparse(parsed._replace(netloc=netloc))

    try:
        stdin = f"protocol={parsed.scheme}\nhost={parsed.hostname}\n\n"
        proc = subprocess.run(
            ["git", "credential", "fill"],
            input=stdin, capture_output=True, text=True, timeout=5,
            env={**os.environ, "GIT_TERMINAL_PROMPT": "0"},
        )
        if proc.returncode == 0:
            creds = {}
            for line in proc.stdout.strip().splitlines():
                if "=" in line:
                    k, _, v = line.partition("=")
                    creds[k] = v
            username = creds.get("username")
            password = creds.get("password")
            if username and password:
                return _with(f"{quote(username, safe='')}:{quote(password, safe='')}")
    except (FileNotFoundError, subprocess.TimeoutExpired):
        logger.debug("git credential fill unavailable for {}", parsed.hostname)

    if token:
        return _with(f"x-access-token:{quote(token, safe='')}")
    return url
