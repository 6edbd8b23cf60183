"""Data model for mindmap documents, their branches, cards and history."""

import copy
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional


MAIN_BRANCH = "main"

# snake_case attribute -> camelCase key used in persisted documents
_NODE_KEYS = {
    "id": "id",
    "text": "text",
    "x": "x",
    "y": "y",
    "color": "color",
    "background_color": "backgroundColor",
    "font_size": "fontSize",
    "shape": "shape",
    "order": "order",
    "expanded": "expanded",
    "parent_id": "parentId",
    "style": "style",
    "data": "data",
}

_EDGE_KEYS = {
    "id": "id",
    "source": "source",
    "target": "target",
    "label": "label",
    "type": "type",
}


def now_iso() -> str:
    return datetime.now().isoformat()


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


def _to_wire(obj: Any, keys: Dict[str, str], extra: Dict[str, Any]) -> Dict[str, Any]:
    result = dict(extra)
    for attr, key in keys.items():
        value = getattr(obj, attr)
        if value is not None:
            result[key] = copy.deepcopy(value)
    return result


def _from_wire(data: Dict[str, Any], keys: Dict[str, str]) -> Dict[str, Any]:
    known = set(keys.values())
    kwargs = {attr: copy.deepcopy(data[key]) for attr, key in keys.items() if key in data}
    kwargs["extra"] = {k: copy.deepcopy(v) for k, v in data.items() if k not in known}
    return kwargs


@dataclass
class Node:
    """A mindmap node. Only text and the tree structure reach the file tree."""
    id: str
    text: str = ""
    x: Optional[float] = None
    y: Optional[float] = None
    color: Optional[str] = None
    background_color: Optional[str] = None
    font_size: Optional[int] = None
    shape: Optional[str] = None
    order: Optional[int] = None
    expanded: Optional[bool] = None
    parent_id: Optional[str] = None
    style: Optional[Dict[str, Any]] = None
    data: Optional[Dict[str, Any]] = None
    # Keys written by other clients are kept verbatim
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return _to_wire(self, _NODE_KEYS, self.extra)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Node":
        if "id" not in data:
            raise ValueError("node is missing an id")
        return cls(**_from_wire(data, _NODE_KEYS))


@dataclass
class Edge:
    """A directed parent -> child link."""
    id: str
    source: str
    target: str
    label: Optional[str] = None
    type: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return _to_wire(self, _EDGE_KEYS, self.extra)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Edge":
        for key in ("id", "source", "target"):
            if key not in data:
                raise ValueError(f"edge is missing '{key}'")
        return cls(**_from_wire(data, _EDGE_KEYS))


@dataclass
class Card:
    """A markdown document attached to exactly one node."""
    doc_id: str
    domain_id: str
    mmid: int
    node_id: str
    cid: int
    title: str
    content: str = ""
    order: Optional[int] = None
    owner: Optional[int] = None
    created_at: str = field(default_factory=now_iso)
    update_at: str = field(default_factory=now_iso)

    def sort_key(self):
        # Cards without an order go after ordered ones
        return (self.order if self.order is not None else float("inf"), self.cid)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "docId": self.doc_id,
            "domainId": self.domain_id,
            "mmid": self.mmid,
            "nodeId": self.node_id,
            "cid": self.cid,
            "title": self.title,
            "content": self.content,
            "order": self.order,
            "owner": self.owner,
            "createdAt": self.created_at,
            "updateAt": self.update_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Card":
        return cls(
            doc_id=data["docId"],
            domain_id=data["domainId"],
            mmid=int(data["mmid"]),
            node_id=data["nodeId"],
            cid=int(data["cid"]),
            title=data.get("title", ""),
            content=data.get("content", ""),
            order=data.get("order"),
            owner=data.get("owner"),
            created_at=data.get("createdAt") or now_iso(),
            update_at=data.get("updateAt") or now_iso(),
        )


@dataclass
class BranchSnapshot:
    """The {nodes, edges} pair of one branch."""
    nodes: List[Node] = field(default_factory=list)
    edges: List[Edge] = field(default_factory=list)

    def deep_copy(self) -> "BranchSnapshot":
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "nodes": [n.to_dict() for n in self.nodes],
            "edges": [e.to_dict() for e in self.edges],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BranchSnapshot":
        return cls(
            nodes=[Node.from_dict(n) for n in data.get("nodes") or []],
            edges=[Edge.from_dict(e) for e in data.get("edges") or []],
        )


@dataclass
class HistoryEntry:
    id: str
    kind: str
    timestamp: str
    user_id: Optional[int]
    username: Optional[str]
    description: str
    nodes: List[Node] = field(default_factory=list)
    edges: List[Edge] = field(default_factory=list)
    viewport: Optional[Dict[str, Any]] = None

    @staticmethod
    def make_id() -> str:
        return f"hist_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.kind,
            "timestamp": self.timestamp,
            "userId": self.user_id,
            "username": self.username,
            "description": self.description,
            "snapshot": {
                "nodes": [n.to_dict() for n in self.nodes],
                "edges": [e.to_dict() for e in self.edges],
                "viewport": copy.deepcopy(self.viewport),
            },
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HistoryEntry":
        snapshot = data.get("snapshot") or {}
        return cls(
            id=data["id"],
            kind=data.get("type", "save"),
            timestamp=data.get("timestamp") or now_iso(),
            user_id=data.get("userId"),
            username=data.get("username"),
            description=data.get("description", ""),
            nodes=[Node.from_dict(n) for n in snapshot.get("nodes") or []],
            edges=[Edge.from_dict(e) for e in snapshot.get("edges") or []],
            viewport=copy.deepcopy(snapshot.get("viewport")),
        )


@dataclass
class MindMapDoc:
    """
    A persisted mindmap.

    ``nodes``/``edges`` mirror ``branch_data["main"]`` and must be written
    together with it (see mindmap.branches).
    """
    domain_id: str
    mmid: int
    title: str = ""
    content: str = ""
    owner: Optional[int] = None
    nodes: List[Node] = field(default_factory=list)
    edges: List[Edge] = field(default_factory=list)
    branches: List[str] = field(default_factory=lambda: [MAIN_BRANCH])
    branch_data: Dict[str, BranchSnapshot] = field(default_factory=dict)
    current_branch: str = MAIN_BRANCH
    github_repo: Optional[str] = None
    viewport: Optional[Dict[str, Any]] = None
    layout: Optional[Dict[str, Any]] = None
    theme: Optional[Dict[str, Any]] = None
    history: List[HistoryEntry] = field(default_factory=list)
    created_at: str = field(default_factory=now_iso)
    update_at: str = field(default_factory=now_iso)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "domainId": self.domain_id,
            "mmid": self.mmid,
            "title": self.title,
            "content": self.content,
            "owner": self.owner,
            "nodes": [n.to_dict() for n in self.nodes],
            "edges": [e.to_dict() for e in self.edges],
            "branches": list(self.branches),
            "branchData": {name: snap.to_dict() for name, snap in self.branch_data.items()},
            "currentBranch": self.current_branch,
            "githubRepo": self.github_repo,
            "viewport": copy.deepcopy(self.viewport),
            "layout": copy.deepcopy(self.layout),
            "theme": copy.deepcopy(self.theme),
            "history": [h.to_dict() for h in self.history],
            "createdAt": self.created_at,
            "updateAt": self.update_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MindMapDoc":
        return cls(
            domain_id=data["domainId"],
            mmid=int(data["mmid"]),
            title=data.get("title", ""),
            content=data.get("content", ""),
            owner=data.get("owner"),
            nodes=[Node.from_dict(n) for n in data.get("nodes") or []],
            edges=[Edge.from_dict(e) for e in data.get("edges") or []],
            branches=list(data.get("branches") or [MAIN_BRANCH]),
            branch_data={
                name: BranchSnapshot.from_dict(snap)
                for name, snap in (data.get("branchData") or {}).items()
            },
            current_branch=data.get("currentBranch") or MAIN_BRANCH,
            github_repo=data.get("githubRepo"),
            viewport=copy.deepcopy(data.get("viewport")),
            layout=copy.deepcopy(data.get("layout")),
            theme=copy.deepcopy(data.get("theme")),
            history=[HistoryEntry.from_dict(h) for h in data.get("history") or []],
            created_at=data.get("createdAt") or now_iso(),
            update_at=data.get("updateAt") or now_iso(),
        )


@dataclass(frozen=True)
class Actor:
    """The user on whose behalf an operation runs."""
    user_id: int
    username: Optional[str] = None

    @property
    def display_name(self) -> str:
        return self.username or "unknown"


@dataclass
class NodeUpdate:
    """Fields of a node that a targeted update may change. None means unchanged."""
    text: Optional[str] = None
    x: Optional[float] = None
    y: Optional[float] = None
    color: Optional[str] = None
    background_color: Optional[str] = None
    font_size: Optional[int] = None
    shape: Optional[str] = None
    order: Optional[int] = None
    expanded: Optional[bool] = None
    style: Optional[Dict[str, Any]] = None

    def apply(self, node: Node) -> None:
        for name in self.__dataclass_fields__:
            value = getattr(self, name)
            if value is not None:
                setattr(node, name, copy.deepcopy(value))


@dataclass
class CardUpdate:
    title: Optional[str] = None
    content: Optional[str] = None
    order: Optional[int] = None


@dataclass
class FullStateUpdate:
    """A full overwrite of one branch as sent by the editor on save."""
    nodes: Optional[List[Node]] = None
    edges: Optional[List[Edge]] = None
    branch: Optional[str] = None
    viewport: Optional[Dict[str, Any]] = None
    layout: Optional[Dict[str, Any]] = None
    theme: Optional[Dict[str, Any]] = None
    description: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FullStateUpdate":
        return cls(
            nodes=[Node.from_dict(n) for n in data["nodes"]] if data.get("nodes") is not None else None,
            edges=[Edge.from_dict(e) for e in data["edges"]] if data.get("edges") is not None else None,
            branch=data.get("branch"),
            viewport=data.get("viewport"),
            layout=data.get("layout"),
            theme=data.get("theme"),
            description=data.get("operationDescription") or data.get("description"),
        )
