"""Git synchronization functionality for MindSync."""

from .manager import MindMapSyncManager, get_sync_manager
from .utils import SyncResult, create_sync_result, failed_sync_result
from .repository import GitRepository, format_commit_message
from .repository_info import GitRepoState, ChangeSet
from .state import RepositoryState, RepositoryStateManager

__all__ = [
    'MindMapSyncManager',
    'get_sync_manager',
    'SyncResult',
    'create_sync_result',
    'failed_sync_result',
    'GitRepository',
    'format_commit_message',
    'GitRepoState',
    'ChangeSet',
    'RepositoryState',
    'RepositoryStateManager'
]
