"""Decide whether a save changed anything the file tree can see."""

from typing import List, Optional, Set, Tuple

from .models import BranchSnapshot, Edge, Node


# Position and viewport fields are excluded: they never reach the file tree.
SUBSTANTIVE_NODE_FIELDS = ("text", "color", "background_color", "font_size", "expanded", "shape")


def _edge_pairs(edges: List[Edge]) -> Set[Tuple[str, str]]:
    return {(edge.source, edge.target) for edge in edges}


def is_substantive(old: BranchSnapshot, new_nodes: Optional[List[Node]] = None,
                   new_edges: Optional[List[Edge]] = None) -> bool:
    """
    True when the update is worth a filesystem and git round trip.

    ``None`` for either list means that part was not part of the update.
    Drag-to-reposition saves return False.
    """
    if new_nodes is not None:
        if len(new_nodes) != len(old.nodes):
            return True
        previous = {node.id: node for node in old.nodes}
        for node in new_nodes:
            before = previous.get(node.id)
            if before is None:
                # Same count but a different id set
                return True
            for name in SUBSTANTIVE_NODE_FIELDS:
                if getattr(before, name) != getattr(node, name):
                    return True

    if new_edges is not None:
        if len(new_edges) != len(old.edges):
            return True
        if _edge_pairs(new_edges) != _edge_pairs(old.edges):
            return True

    return False
