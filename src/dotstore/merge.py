"""Path-level three-way merge of flattened trees.

No content-level merging is attempted: a path that both sides changed in
different ways is a conflict, even when the edits touch different lines.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from dulwich.objects import Blob

from .tree import GIT_FILEMODE_BLOB, FlatTree

_Side = tuple[int, bytes] | None


@dataclass
class Conflict:
    path: str
    base: _Side
    ours: _Side
    theirs: _Side


@dataclass
class MergeResult:
    """Cleanly merged entries plus the paths that could not be merged."""

    entries: FlatTree = field(default_factory=dict)
    conflicts: list[Conflict] = field(default_factory=list)

    @property
    def clean(self) -> bool:
        return not self.conflicts

    @property
    def conflict_paths(self) -> list[str]:
        return sorted(c.path for c in self.conflicts)


def merge_trees(base: FlatTree, ours: FlatTree, theirs: FlatTree) -> MergeResult:
    result = MergeResult()
    for path in sorted(base.keys() | ours.keys() | theirs.keys()):
        b, o, t = base.get(path), ours.get(path), theirs.get(path)
        if o == t:
            merged = o
        elif o == b:
            merged = t
        elif t == b:
            merged = o
        else:
            result.conflicts.append(Conflict(path, b, o, t))
            continue
        if merged is not None:
            result.entries[path] = merged

    # A file on one side where the other side now has a directory
    for path in list(result.entries):
        parent = path.rpartition("/")[0]
        while parent:
            if parent in result.entries:
                del result.entries[parent]
                result.conflicts.append(
                    Conflict(parent, base.get(parent), ours.get(parent), theirs.get(parent))
                )
            parent = parent.rpartition("/")[0]
    return result


def conflict_markers(ours: bytes | None, theirs: bytes | None,
                     ours_label: str = "ours", theirs_label: str = "theirs") -> bytes:
    """Render both versions of a file between git-style conflict markers."""
    def _section(data):
        if not data:
            return b""
        return data if data.endswith(b"\n") else data + b"\n"

    return (
        f"<<<<<<< {ours_label}\n".encode()
        + _section(ours)
        + b"=======\n"
        + _section(theirs)
        + f">>>>>>> {theirs_label}\n".encode()
    )


def conflicted_tree(object_store, result: MergeResult,
                    ours_label: str = "ours", theirs_label: str = "theirs") -> FlatTree:
    """The merged entries plus a marker file for every conflicted path.

    Paths that turned into directories on one side keep that side's
    contents and get no marker file.
    """
    def _data(side):
        if side is None:
            return None
        return object_store[side[1]].data

    files = dict(result.entries)
    for c in result.conflicts:
        if any(p.startswith(c.path + "/") for p in files):
            continue
        blob = Blob.from_string(
            conflict_markers(_data(c.ours), _data(c.theirs), ours_label, theirs_label)
        )
        object_store.add_object(blob)
        mode = (c.ours or c.theirs or (GIT_FILEMODE_BLOB, b""))[0]
        files[c.path] = (mode, blob.id)
    return files
