"""Write one branch of a mindmap as a directory tree of markdown files."""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Set

from ..mindmap.editing import find_roots
from ..mindmap.models import BranchSnapshot, Card, Node
from .sanitize import disambiguate, sanitize


README_NAME = "README.md"
KEEP_NAME = ".keep"
CARD_SUFFIX = ".md"

# Entry names no node or card may take, compared casefolded
_RESERVED_EVERYWHERE = {README_NAME.casefold(), KEEP_NAME.casefold(), ".git"}


@dataclass
class ExportReport:
    """What an export wrote and what it had to change or leave out."""
    directories: List[str] = field(default_factory=list)
    files: List[str] = field(default_factory=list)
    renamed: Dict[str, str] = field(default_factory=dict)
    extra_roots: List[str] = field(default_factory=list)
    unreachable_nodes: List[str] = field(default_factory=list)


def _write_text(path: Path, text: str) -> None:
    with open(path, "w", encoding="utf-8", newline="") as f:
        f.write(text)


def _ordered_children(snapshot: BranchSnapshot, by_id: Dict[str, Node]) -> Dict[str, List[Node]]:
    """Children per node, sorted by (order, edge position)."""
    children: Dict[str, List[tuple]] = defaultdict(list)
    for position, edge in enumerate(snapshot.edges):
        child = by_id.get(edge.target)
        if child is None or edge.source not in by_id:
            continue
        order = child.order if child.order is not None else float("inf")
        children[edge.source].append((order, position, child))
    return {
        source: [child for _, _, child in sorted(entries, key=lambda e: (e[0], e[1]))]
        for source, entries in children.items()
    }


class TreeExporter:
    """
    Graph -> directory tree.

    Every node reachable from the root (the root itself excluded) becomes a
    directory named after its sanitized text. Each attached card becomes
    ``<sanitized title>.md``; a node without cards gets an empty ``.keep``.
    """

    def __init__(self):
        self.logger = logging.getLogger('mindsync.tree')

    def export(self, snapshot: BranchSnapshot, content: str, cards: Iterable[Card],
               output_dir: Path) -> ExportReport:
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)
        report = ExportReport()

        _write_text(output_dir / README_NAME, content or "")
        report.files.append(README_NAME)

        by_id = {node.id: node for node in snapshot.nodes}
        children = _ordered_children(snapshot, by_id)

        cards_by_node: Dict[str, List[Card]] = defaultdict(list)
        for card in cards:
            cards_by_node[card.node_id].append(card)
        for node_cards in cards_by_node.values():
            node_cards.sort(key=Card.sort_key)

        roots = find_roots(snapshot)
        visited: Set[str] = set()
        taken = set(_RESERVED_EVERYWHERE)

        if roots:
            primary = roots[0]
            visited.add(primary.id)
            top_level = list(children.get(primary.id, []))
            # Disconnected nodes are exported beside the primary root's children
            for extra in roots[1:]:
                report.extra_roots.append(extra.id)
                top_level.append(extra)
            if report.extra_roots:
                self.logger.warning(
                    f"Branch has {len(roots)} roots; exporting {len(report.extra_roots)} extra root(s) as top-level directories"
                )
            for child in top_level:
                self._export_node(child, output_dir, "", children, cards_by_node, visited, taken, report)

        report.unreachable_nodes = [node.id for node in snapshot.nodes if node.id not in visited]
        if report.unreachable_nodes:
            self.logger.warning(f"{len(report.unreachable_nodes)} node(s) are unreachable from the root (cycle) and were not exported")

        return report

    def _export_node(self, node: Node, parent_dir: Path, parent_rel: str,
                     children: Dict[str, List[Node]], cards_by_node: Dict[str, List[Card]],
                     visited: Set[str], taken: Set[str], report: ExportReport) -> None:
        if node.id in visited:
            self.logger.warning(f"Skipping node {node.id}: already exported (cycle in edges)")
            return
        visited.add(node.id)

        base = sanitize(node.text)
        name = disambiguate(base, taken)
        rel = f"{parent_rel}{name}"
        if name != base or base != node.text:
            report.renamed[rel] = node.text
        node_dir = parent_dir / name
        node_dir.mkdir(parents=True, exist_ok=True)
        report.directories.append(rel)

        # Subdirectories and card files share one namespace per directory
        local_taken = set(_RESERVED_EVERYWHERE)
        node_cards = cards_by_node.get(node.id, [])
        for card in node_cards:
            base_title = sanitize(card.title)
            file_name = disambiguate(base_title, local_taken, CARD_SUFFIX)
            card_rel = f"{rel}/{file_name}"
            if file_name != f"{base_title}{CARD_SUFFIX}" or base_title != card.title:
                report.renamed[card_rel] = card.title
            _write_text(node_dir / file_name, card.content or "")
            report.files.append(card_rel)

        if not node_cards:
            _write_text(node_dir / KEEP_NAME, "")
            report.files.append(f"{rel}/{KEEP_NAME}")

        for child in children.get(node.id, []):
            self._export_node(child, node_dir, f"{rel}/", children, cards_by_node, visited, local_taken, report)


def export_mindmap(snapshot: BranchSnapshot, content: str, cards: Iterable[Card],
                   output_dir: Path) -> ExportReport:
    return TreeExporter().export(snapshot, content, cards, output_dir)
