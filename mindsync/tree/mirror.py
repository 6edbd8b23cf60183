"""
Make a working tree an exact image of a freshly exported directory.

Mirroring is split into a pure planning step over two listings and an
apply step that touches the filesystem, so planning can be tested on
plain dictionaries.
"""

import hashlib
import logging
import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional


GIT_DIR = ".git"

# relative posix path -> content digest, or None for a directory
Listing = Dict[str, Optional[str]]


@dataclass
class MirrorPlan:
    to_delete: List[str] = field(default_factory=list)
    to_mkdir: List[str] = field(default_factory=list)
    to_copy: List[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.to_delete or self.to_mkdir or self.to_copy)


def _digest(path: Path) -> str:
    if path.is_symlink():
        return "symlink:" + os.readlink(path)
    h = hashlib.sha1()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(65536), b""):
            h.update(chunk)
    return h.hexdigest()


def scan_tree(root: Path) -> Listing:
    """List every entry under ``root`` except git metadata directories."""
    root = Path(root)
    listing: Listing = {}
    if not root.is_dir():
        return listing

    for current, dirs, files in os.walk(root):
        dirs[:] = sorted(d for d in dirs if d != GIT_DIR)
        rel_dir = Path(current).relative_to(root)
        for name in list(dirs):
            full = Path(current) / name
            rel = (rel_dir / name).as_posix()
            if full.is_symlink():
                # os.walk does not descend into symlinked directories
                listing[rel] = _digest(full)
                dirs.remove(name)
            else:
                listing[rel] = None
        for name in files:
            listing[(rel_dir / name).as_posix()] = _digest(Path(current) / name)
    return listing


def _has_ancestor_in(path: str, paths: set) -> bool:
    parts = path.split("/")
    return any("/".join(parts[:i]) in paths for i in range(1, len(parts)))


def plan_mirror(source: Listing, dest: Listing) -> MirrorPlan:
    """
    Compute the operations that turn ``dest`` into ``source``.

    Entries only in ``dest``, or whose kind differs, are deleted (top-most
    path only); directories missing in ``dest`` are created; files that are
    new or differ are copied. Equal listings give an empty plan.
    """
    stale = {
        path for path, digest in dest.items()
        if path not in source or (digest is None) != (source[path] is None)
    }
    to_delete = sorted(p for p in stale if not _has_ancestor_in(p, stale))

    remaining = {p: d for p, d in dest.items() if p not in stale and not _has_ancestor_in(p, stale)}
    to_mkdir = sorted(p for p, d in source.items() if d is None and p not in remaining)
    to_copy = sorted(p for p, d in source.items() if d is not None and remaining.get(p) != d)

    return MirrorPlan(to_delete=to_delete, to_mkdir=to_mkdir, to_copy=to_copy)


def apply_mirror_plan(plan: MirrorPlan, source_dir: Path, dest_dir: Path) -> None:
    source_dir, dest_dir = Path(source_dir), Path(dest_dir)
    dest_dir.mkdir(parents=True, exist_ok=True)

    for rel in plan.to_delete:
        target = dest_dir / rel
        if target.is_dir() and not target.is_symlink():
            shutil.rmtree(target)
        else:
            target.unlink(missing_ok=True)

    for rel in plan.to_mkdir:
        (dest_dir / rel).mkdir(parents=True, exist_ok=True)

    for rel in plan.to_copy:
        target = dest_dir / rel
        target.parent.mkdir(parents=True, exist_ok=True)
        if target.is_symlink():
            target.unlink()
        shutil.copyfile(source_dir / rel, target)


def mirror_tree(source_dir: Path, dest_dir: Path) -> MirrorPlan:
    """Mirror ``source_dir`` onto ``dest_dir``, leaving ``dest_dir/.git`` alone."""
    logger = logging.getLogger('mindsync.tree')
    plan = plan_mirror(scan_tree(source_dir), scan_tree(dest_dir))
    if plan.is_empty:
        logger.debug(f"Working tree {dest_dir} already matches export")
        return plan

    apply_mirror_plan(plan, source_dir, dest_dir)
    logger.debug(
        f"Mirrored export onto {dest_dir}: {len(plan.to_delete)} deleted, "
        f"{len(plan.to_mkdir)} created, {len(plan.to_copy)} copied"
    )
    return plan
