"""Exceptions for dotstore."""

from __future__ import annotations


class DotstoreError(Exception):
    """Base class for every error dotstore reports to the user."""


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

class ConfigMissing(DotstoreError):
    """No config file; the user has to run ``dotstore init`` first."""


class ConfigExists(DotstoreError):
    """``init`` was asked to overwrite an existing config without --force."""


class ConfigCorrupt(DotstoreError):
    """The config file could not be parsed or does not match the schema."""


class ConfigLocked(DotstoreError):
    """Another dotstore process kept the config lock past the timeout."""

    def __init__(self, path, pid: int | None = None):
        self.path = path
        self.pid = pid
        holder = f"process {pid}" if pid is not None else "another process"
        super().__init__(
            f"The config directory is locked by {holder} ({path}); "
            f"try again once it has finished"
        )


class InvalidEntryName(DotstoreError):
    """An entry name cannot be used as a TOML table and storage directory."""


class EntryNotFound(DotstoreError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"No entry named {name!r}")


class EntryAlreadyExists(DotstoreError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(
            f"Entry named {name!r} already exists; use 'entry add-files' "
            f"or 'entry remove-files' to change it"
        )


class NotTracked(DotstoreError):
    """A file passed to remove-files is not part of the entry."""


# ---------------------------------------------------------------------------
# Paths and ingestion
# ---------------------------------------------------------------------------

class FileNotFound(DotstoreError):
    def __init__(self, path):
        self.path = path
        super().__init__(f"File does not exist: {path}")


class InvalidPath(DotstoreError):
    """Canonicalization failed, or a path does not fall under a common base."""


class IngestError(DotstoreError):
    """Copying into storage failed part way through a batch.

    *copied* lists the relative paths that had already been written to
    storage when the failure happened; they are not rolled back.
    """

    def __init__(self, message: str, copied: set[str] | None = None):
        self.copied = set(copied or ())
        super().__init__(message)


# ---------------------------------------------------------------------------
# Deployment
# ---------------------------------------------------------------------------

class CorruptState(DotstoreError):
    """A tracked file is listed in the config but missing from storage."""


class DeployError(DotstoreError):
    """A symlink operation failed; touched paths were restored to plain files.

    The original exception is chained as ``__cause__``.
    """

    def __init__(self, operation: str, path, *, restored=None, restore_failures=None):
        self.operation = operation
        self.path = path
        self.restored = list(restored or [])
        self.restore_failures = list(restore_failures or [])
        super().__init__(f"Could not {operation} {path}")


class UndeployError(DotstoreError):
    """One or more symlinks could not be removed.

    *failures* is a list of ``(path, error_message)`` tuples.
    """

    def __init__(self, failures: list[tuple[str, str]]):
        self.failures = failures
        lines = "\n".join(f"  {p}: {e}" for p, e in failures)
        super().__init__(f"Could not remove {len(failures)} symlink(s):\n{lines}")


# ---------------------------------------------------------------------------
# Repository and remote
# ---------------------------------------------------------------------------

class RepositoryNotFound(DotstoreError):
    """The config directory is not a git repository."""


class RemoteNotConfigured(DotstoreError):
    """The repository has no ``origin`` remote."""


class RemoteUnavailable(DotstoreError):
    """The remote could not be reached or is not a git repository."""


class RemoteDivergence(DotstoreError):
    """Local history is behind the remote; nothing was changed."""


class MergeConflict(DotstoreError):
    """A three-way merge produced conflicts; no commit was created."""

    def __init__(self, paths: list[str]):
        self.paths = sorted(paths)
        listing = "\n".join(f"  {p}" for p in self.paths)
        super().__init__(
            f"Merge conflicts in {len(self.paths)} file(s), aborting:\n{listing}\n"
            f"Resolve them in the config directory and commit manually."
        )


class MergeInProgress(DotstoreError):
    """An earlier update stopped on conflicts that are still in the working tree."""

    def __init__(self, paths: list[str]):
        self.paths = sorted(paths)
        listing = "\n".join(f"  {p}" for p in self.paths)
        super().__init__(
            f"An earlier update stopped on merge conflicts; the config directory "
            f"still holds {len(self.paths)} unmerged file(s):\n{listing}\n"
            f"Commit the resolved files with git, or run `dotstore update --abort`."
        )


class PushRejected(DotstoreError):
    """Pushing to the remote failed.

    *local_advanced* is True when a local commit or merge had already been
    made, leaving the local branch ahead of the remote until the push is
    retried.
    """

    def __init__(self, message: str, *, local_advanced: bool = False):
        self.local_advanced = local_advanced
        super().__init__(message)


class OrphanedFile(DotstoreError):
    """A changed path does not belong to any known entry."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Found file that does not belong to any entry: {path}")


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------

class SignatureUnavailable(DotstoreError):
    """No commit author name/email could be determined."""


class GitHubError(DotstoreError):
    """The GitHub API returned an error or an unexpected response."""
