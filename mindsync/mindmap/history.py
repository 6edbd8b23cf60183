"""Bounded undo log stored on the mindmap document."""

import copy
import logging
from typing import Any, Dict, List, Optional

from ..errors import NotFoundError
from .branches import set_branch_data
from .models import Actor, BranchSnapshot, HistoryEntry, MindMapDoc, now_iso


DEFAULT_HISTORY_LIMIT = 50


def make_history_entry(kind: str, snapshot: BranchSnapshot, actor: Optional[Actor],
                       description: str, viewport: Optional[Dict[str, Any]] = None) -> HistoryEntry:
    """Build an entry holding a deep copy of the given state."""
    frozen = snapshot.deep_copy()
    return HistoryEntry(
        id=HistoryEntry.make_id(),
        kind=kind,
        timestamp=now_iso(),
        user_id=actor.user_id if actor else None,
        username=actor.username if actor else None,
        description=description,
        nodes=frozen.nodes,
        edges=frozen.edges,
        viewport=copy.deepcopy(viewport),
    )


class HistoryLog:
    """Newest-first list of HistoryEntry, truncated to ``limit``."""

    def __init__(self, doc: MindMapDoc, limit: int = DEFAULT_HISTORY_LIMIT):
        self.doc = doc
        self.limit = limit
        self.logger = logging.getLogger('mindsync.history')

    @property
    def entries(self) -> List[HistoryEntry]:
        return self.doc.history

    def record(self, entry: HistoryEntry) -> HistoryEntry:
        self.doc.history.insert(0, entry)
        dropped = len(self.doc.history) - self.limit
        if dropped > 0:
            del self.doc.history[self.limit:]
            self.logger.debug(f"History for {self.doc.domain_id}/{self.doc.mmid} truncated by {dropped}")
        return entry

    def find(self, history_id: str) -> HistoryEntry:
        for entry in self.doc.history:
            if entry.id == history_id:
                return entry
        raise NotFoundError(f"History entry '{history_id}' not found", error_code="HISTORY_NOT_FOUND")

    def restore(self, history_id: str, branch: Optional[str] = None) -> HistoryEntry:
        """
        Replace the branch's nodes/edges and the viewport with the entry's snapshot.

        Neither a commit nor a new history entry is created.
        """
        entry = self.find(history_id)
        branch = branch or self.doc.current_branch
        restored = BranchSnapshot(nodes=entry.nodes, edges=entry.edges).deep_copy()
        set_branch_data(self.doc, branch, restored)
        if entry.viewport is not None:
            self.doc.viewport = copy.deepcopy(entry.viewport)
        self.logger.info(f"Restored {self.doc.domain_id}/{self.doc.mmid}@{branch} to {history_id}")
        return entry

    def summaries(self) -> List[Dict[str, Any]]:
        return [
            {
                "id": entry.id,
                "type": entry.kind,
                "timestamp": entry.timestamp,
                "username": entry.username,
                "description": entry.description,
                "nodeCount": len(entry.nodes),
                "edgeCount": len(entry.edges),
            }
            for entry in self.doc.history
        ]
