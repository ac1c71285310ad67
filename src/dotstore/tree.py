"""Low-level tree helpers on top of dulwich objects.

Trees are handled in two shapes: dulwich ``Tree`` objects in the object
store, and flat ``{path: (mode, sha)}`` mappings that are easy to compare
and merge.
"""

from __future__ import annotations

import os
import stat
from collections import defaultdict

from dulwich.objects import Blob, Tree

GIT_FILEMODE_TREE = 0o040000
GIT_FILEMODE_BLOB = 0o100644
GIT_FILEMODE_BLOB_EXECUTABLE = 0o100755
GIT_FILEMODE_LINK = 0o120000

FlatTree = dict[str, tuple[int, bytes]]


def mode_from_disk(local_path: str | os.PathLike[str]) -> int:
    """Return git filemode based on the file's type and executable bit."""
    st = os.lstat(local_path)
    if stat.S_ISLNK(st.st_mode):
        return GIT_FILEMODE_LINK
    if stat.S_ISDIR(st.st_mode):
        raise IsADirectoryError(local_path)
    if st.st_mode & 0o111:
        return GIT_FILEMODE_BLOB_EXECUTABLE
    return GIT_FILEMODE_BLOB


def normalize_path(path: str | os.PathLike[str]) -> str:
    """Normalize a path: strip leading/trailing slashes, reject bad segments."""
    path = os.fspath(path)
    if os.name == "nt":
        path = path.replace("\\", "/")
    path = path.strip("/")
    if not path:
        raise ValueError("Path must not be empty")
    segments = path.split("/")
    for seg in segments:
        if not seg:
            raise ValueError(f"Empty segment in path: {path!r}")
        if seg in (".", ".."):
            raise ValueError(f"Invalid path segment: {seg!r}")
    return "/".join(segments)


def blob_from_disk(object_store, local_path) -> tuple[int, bytes]:
    """Store the file at *local_path* as a blob; return ``(mode, sha)``."""
    mode = mode_from_disk(local_path)
    if mode == GIT_FILEMODE_LINK:
        data = os.fsencode(os.readlink(local_path))
    else:
        with open(local_path, "rb") as f:
            data = f.read()
    blob = Blob.from_string(data)
    object_store.add_object(blob)
    return mode, blob.id


def build_tree(object_store, files: FlatTree) -> bytes:
    """Write nested trees for a flat ``{path: (mode, sha)}`` mapping.

    Returns the sha of the root tree.  Empty directories cannot exist in
    the result; an empty mapping gives the empty tree.
    """
    leaves: dict[str, tuple[int, bytes]] = {}
    subdirs: dict[str, FlatTree] = defaultdict(dict)
    for path, entry in files.items():
        head, sep, rest = path.partition("/")
        if sep:
            subdirs[head][rest] = entry
        else:
            leaves[head] = entry

    tree = Tree()
    for name, (mode, sha) in leaves.items():
        if name in subdirs:
            raise ValueError(f"{name!r} is both a file and a directory")
        tree.add(name.encode(), mode, sha)
    for name, children in subdirs.items():
        tree.add(name.encode(), GIT_FILEMODE_TREE, build_tree(object_store, children))
    object_store.add_object(tree)
    return tree.id


def flatten_tree(object_store, tree_id: bytes | None, prefix: str = "") -> FlatTree:
    """Return every non-tree entry below *tree_id* keyed by its full path."""
    result: FlatTree = {}
    if tree_id is None:
        return result
    tree = object_store[tree_id]
    for entry in tree.iteritems():
        name = entry.path.decode("utf-8", "surrogateescape")
        path = f"{prefix}/{name}" if prefix else name
        if entry.mode == GIT_FILEMODE_TREE:
            result.update(flatten_tree(object_store, entry.sha, path))
        else:
            result[path] = (entry.mode, entry.sha)
    return result


def read_blob_at_path(object_store, tree_id: bytes, path: str) -> bytes:
    """Read the blob at *path* in the tree; raise FileNotFoundError if absent."""
    path = normalize_path(path)
    obj = object_store[tree_id]
    for seg in path.split("/"):
        if not isinstance(obj, Tree):
            raise NotADirectoryError(path)
        try:
            _mode, sha = obj[seg.encode()]
        except KeyError:
            raise FileNotFoundError(path) from None
        obj = object_store[sha]
    if isinstance(obj, Tree):
        raise IsADirectoryError(path)
    return obj.data


def changed_paths(old: FlatTree, new: FlatTree) -> set[str]:
    """Paths added, removed, or modified between two flat trees."""
    return {p for p in old.keys() | new.keys() if old.get(p) != new.get(p)}
