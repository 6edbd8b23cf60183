"""Targeted graph edits on one branch of a mindmap document."""

from collections import defaultdict
from typing import Dict, List, Optional, Set, Tuple

from ..errors import NotFoundError, ValidationError
from .branches import get_branch_data, set_branch_data
from .models import BranchSnapshot, Edge, MindMapDoc, Node, NodeUpdate, new_id


def build_children(snapshot: BranchSnapshot) -> Dict[str, List[str]]:
    """Map each node id to its child ids in edge order."""
    children: Dict[str, List[str]] = defaultdict(list)
    for edge in snapshot.edges:
        children[edge.source].append(edge.target)
    return children


def find_roots(snapshot: BranchSnapshot) -> List[Node]:
    """Nodes with no incoming edge, in document order."""
    targets = {edge.target for edge in snapshot.edges}
    return [node for node in snapshot.nodes if node.id not in targets]


def find_root(snapshot: BranchSnapshot) -> Optional[Node]:
    roots = find_roots(snapshot)
    return roots[0] if roots else None


def validate_forest(snapshot: BranchSnapshot) -> List[str]:
    """Describe structural problems: extra roots, dangling edges, multiple parents and cycles."""
    problems = []
    node_ids = {node.id for node in snapshot.nodes}

    roots = find_roots(snapshot)
    if not roots and snapshot.nodes:
        problems.append("no root: every node has an incoming edge")
    elif len(roots) > 1:
        problems.append(f"{len(roots)} roots: {', '.join(n.id for n in roots)}")

    parents: Dict[str, int] = defaultdict(int)
    for edge in snapshot.edges:
        if edge.source not in node_ids or edge.target not in node_ids:
            problems.append(f"edge {edge.id} references a missing node")
        parents[edge.target] += 1
    for node_id, count in parents.items():
        if count > 1:
            problems.append(f"node {node_id} has {count} parents")

    children = build_children(snapshot)
    state: Dict[str, int] = {}
    for start in node_ids:
        if start in state:
            continue
        stack = [(start, iter(children.get(start, [])))]
        state[start] = 1
        while stack:
            current, it = stack[-1]
            child = next(it, None)
            if child is None:
                state[current] = 2
                stack.pop()
            elif state.get(child) == 1:
                problems.append(f"cycle through node {child}")
            elif child not in state:
                state[child] = 1
                stack.append((child, iter(children.get(child, []))))
    return problems


def _find_node(snapshot: BranchSnapshot, node_id: str) -> Node:
    for node in snapshot.nodes:
        if node.id == node_id:
            return node
    raise NotFoundError(f"Node '{node_id}' not found", error_code="NODE_NOT_FOUND")


def _is_ancestor(children: Dict[str, List[str]], ancestor: str, node_id: str) -> bool:
    seen: Set[str] = set()
    stack = [ancestor]
    while stack:
        current = stack.pop()
        if current == node_id:
            return True
        if current in seen:
            continue
        seen.add(current)
        stack.extend(children.get(current, []))
    return False


def add_node(doc: MindMapDoc, branch: str, text: str, parent_id: Optional[str] = None,
             **attributes) -> Node:
    """Append a node; with ``parent_id`` it is linked as the parent's last child."""
    snapshot = get_branch_data(doc, branch)
    node = Node(id=new_id("node"), text=text, **attributes)

    if parent_id is not None:
        _find_node(snapshot, parent_id)
        siblings = build_children(snapshot).get(parent_id, [])
        node.parent_id = parent_id
        if node.order is None:
            node.order = len(siblings)
        snapshot.edges.append(Edge(id=new_id("edge"), source=parent_id, target=node.id))

    snapshot.nodes.append(node)
    set_branch_data(doc, branch, snapshot)
    return node


def update_node(doc: MindMapDoc, branch: str, node_id: str, update: NodeUpdate) -> Node:
    snapshot = get_branch_data(doc, branch)
    node = _find_node(snapshot, node_id)
    update.apply(node)
    set_branch_data(doc, branch, snapshot)
    return node


def delete_node(doc: MindMapDoc, branch: str, node_id: str) -> Set[str]:
    """Delete a node, every descendant and every edge touching them. Returns the deleted ids."""
    snapshot = get_branch_data(doc, branch)
    _find_node(snapshot, node_id)
    children = build_children(snapshot)

    doomed: Set[str] = set()
    stack = [node_id]
    while stack:
        current = stack.pop()
        if current in doomed:
            continue
        doomed.add(current)
        stack.extend(children.get(current, []))

    snapshot.nodes = [n for n in snapshot.nodes if n.id not in doomed]
    snapshot.edges = [e for e in snapshot.edges if e.source not in doomed and e.target not in doomed]
    set_branch_data(doc, branch, snapshot)
    return doomed


def add_edge(doc: MindMapDoc, branch: str, source: str, target: str,
             label: Optional[str] = None) -> Edge:
    """
    Link ``source`` -> ``target``.

    Raises:
        NotFoundError: either endpoint is missing
        ValidationError: duplicate edge, second parent, or the edge would close a cycle
    """
    snapshot = get_branch_data(doc, branch)
    _find_node(snapshot, source)
    _find_node(snapshot, target)

    pairs: Set[Tuple[str, str]] = {(e.source, e.target) for e in snapshot.edges}
    if (source, target) in pairs:
        raise ValidationError("Edge already exists", error_code="EDGE_EXISTS")
    if any(e.target == target for e in snapshot.edges):
        raise ValidationError(f"Node '{target}' already has a parent", error_code="EDGE_SECOND_PARENT")
    if _is_ancestor(build_children(snapshot), target, source):
        raise ValidationError("Edge would create a cycle", error_code="EDGE_CYCLE")

    edge = Edge(id=new_id("edge"), source=source, target=target, label=label)
    snapshot.edges.append(edge)
    for node in snapshot.nodes:
        if node.id == target:
            node.parent_id = source
    set_branch_data(doc, branch, snapshot)
    return edge


def delete_edge(doc: MindMapDoc, branch: str, edge_id: str) -> None:
    snapshot = get_branch_data(doc, branch)
    removed = [e for e in snapshot.edges if e.id == edge_id]
    if not removed:
        raise NotFoundError(f"Edge '{edge_id}' not found", error_code="EDGE_NOT_FOUND")
    snapshot.edges = [e for e in snapshot.edges if e.id != edge_id]
    for node in snapshot.nodes:
        if node.id == removed[0].target and node.parent_id == removed[0].source:
            node.parent_id = None
    set_branch_data(doc, branch, snapshot)
