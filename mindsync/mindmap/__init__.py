"""Mindmap documents: data model, branches, editing, history and storage."""

from .models import (
    MAIN_BRANCH, Actor, BranchSnapshot, Card, CardUpdate, Edge, FullStateUpdate,
    HistoryEntry, MindMapDoc, Node, NodeUpdate,
)
from .branches import create_branch, get_branch_data, set_branch_data, switch_branch
from .changes import is_substantive
from .history import HistoryLog, make_history_entry
from .store import DocumentStore, LocalDocumentStore

__all__ = [
    'MAIN_BRANCH',
    'Actor',
    'BranchSnapshot',
    'Card',
    'CardUpdate',
    'Edge',
    'FullStateUpdate',
    'HistoryEntry',
    'MindMapDoc',
    'Node',
    'NodeUpdate',
    'create_branch',
    'get_branch_data',
    'set_branch_data',
    'switch_branch',
    'is_substantive',
    'HistoryLog',
    'make_history_entry',
    'DocumentStore',
    'LocalDocumentStore',
]
