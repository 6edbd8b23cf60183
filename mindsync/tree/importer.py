"""Rebuild a mindmap branch from a directory tree."""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from ..errors import ImportParseError
from ..mindmap.models import BranchSnapshot, Edge, Node, new_id
from .exporter import CARD_SUFFIX, README_NAME
from .sanitize import sanitize


LEVEL_SPACING = 200
ROOT_TEXT = "Root"
EDGE_TYPE = "bezier"


@dataclass
class CardDraft:
    """A card read from disk, not yet stored."""
    node_id: str
    title: str
    content: str
    order: int


@dataclass
class ImportedTree:
    snapshot: BranchSnapshot
    cards: List[CardDraft] = field(default_factory=list)
    root_id: Optional[str] = None


def _read_text(path: Path) -> str:
    try:
        with open(path, "r", encoding="utf-8", newline="") as f:
            return f.read()
    except (OSError, UnicodeDecodeError) as e:
        raise ImportParseError(f"Cannot read {path.name}: {e}", path=str(path)) from e


def _list_dir(path: Path) -> List[os.DirEntry]:
    try:
        with os.scandir(path) as it:
            return sorted(it, key=lambda entry: entry.name)
    except OSError as e:
        raise ImportParseError(f"Cannot list directory {path}: {e}", path=str(path)) from e


def is_card_file(name: str) -> bool:
    lowered = name.lower()
    return lowered.endswith(CARD_SUFFIX) and lowered != README_NAME.lower()


class TreeImporter:
    """
    Directory tree -> graph.

    A fresh hidden root node stands for the document; every directory
    becomes a node linked to its parent directory's node and every
    non-README markdown file becomes a card of its directory's node.
    Node ids are new on every import and positions come from depth only.
    """

    def __init__(self):
        self.logger = logging.getLogger('mindsync.tree')

    def import_tree(self, local_dir: Path) -> ImportedTree:
        local_dir = Path(local_dir)
        if not local_dir.is_dir():
            raise ImportParseError(f"Import source is not a directory: {local_dir}", path=str(local_dir))

        root = Node(
            id=new_id("root"),
            text=ROOT_TEXT,
            x=0,
            y=0,
            data={},
            style={"display": "none"},
        )
        tree = ImportedTree(snapshot=BranchSnapshot(nodes=[root]), root_id=root.id)

        self._import_children(root.id, local_dir, 1, tree)
        self.logger.info(
            f"Imported {len(tree.snapshot.nodes) - 1} node(s) and {len(tree.cards)} card(s) from {local_dir}"
        )
        return tree

    def _import_children(self, parent_id: str, dir_path: Path, level: int, tree: ImportedTree) -> None:
        order = 0
        for entry in _list_dir(dir_path):
            if entry.is_symlink():
                self.logger.warning(f"Skipping symlink during import: {entry.path}")
                continue
            if not entry.is_dir() or entry.name == ".git":
                continue

            node = Node(
                id=new_id("node"),
                text=sanitize(entry.name),
                x=level * LEVEL_SPACING,
                y=0,
                order=order,
                parent_id=parent_id,
                data={},
            )
            order += 1
            tree.snapshot.nodes.append(node)
            tree.snapshot.edges.append(Edge(id=new_id("edge"), source=parent_id, target=node.id, type=EDGE_TYPE))

            self._import_cards(node.id, Path(entry.path), tree)
            self._import_children(node.id, Path(entry.path), level + 1, tree)

    def _import_cards(self, node_id: str, dir_path: Path, tree: ImportedTree) -> None:
        card_order = 0
        for entry in _list_dir(dir_path):
            if entry.is_symlink() or not entry.is_file() or not is_card_file(entry.name):
                continue
            title = sanitize(entry.name[:-len(CARD_SUFFIX)])
            tree.cards.append(CardDraft(
                node_id=node_id,
                title=title,
                content=_read_text(Path(entry.path)),
                order=card_order,
            ))
            card_order += 1


def import_tree(local_dir: Path) -> ImportedTree:
    return TreeImporter().import_tree(local_dir)


def read_readme(local_dir: Path) -> str:
    """Document content stored in README.md, or "" when there is none."""
    path = Path(local_dir) / README_NAME
    if not path.is_file():
        return ""
    return _read_text(path)
