"""Sync orchestrator tying the document store, the tree codec and git together."""

import functools
import inspect
import logging
import shutil
import tempfile
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import quote

from ..config import Config
from ..errors import GitOperationError, MindSyncError, NotFoundError, ValidationError
from ..file_lock import sync_lock
from ..mindmap import editing
from ..mindmap.branches import (
    create_branch as create_doc_branch, get_branch_data, set_branch_data, switch_branch as switch_doc_branch,
    validate_branch_name,
)
from ..mindmap.changes import is_substantive
from ..mindmap.history import HistoryLog, make_history_entry
from ..mindmap.models import (
    MAIN_BRANCH, Actor, BranchSnapshot, CardUpdate, FullStateUpdate, MindMapDoc, Node, NodeUpdate, new_id,
)
from ..mindmap.store import DocumentStore, LocalDocumentStore, new_card
from ..tree.exporter import TreeExporter
from ..tree.importer import TreeImporter, read_readme
from ..tree.mirror import MirrorPlan, mirror_tree
from .remote_utils import build_remote_url, normalize_remote, require_token
from .repository import GitRepository, format_commit_message
from .repository_info import GitRepoState
from .utils import SyncResult, create_sync_result, failed_sync_result


# Lock key guarding read-modify-write of the mindmap document itself.
# ':' cannot appear in a branch name, so it never collides with a branch lock.
DOCUMENT_LOCK = ":document"

ANONYMOUS = Actor(user_id=0)


def sync_operation(operation: str):
    """
    Run a flow and turn any exception it raises into a failed SyncResult.

    The ``branch`` argument of the wrapped call, when given, is carried
    into the failure result.
    """
    def decorator(func: Callable[..., SyncResult]) -> Callable[..., SyncResult]:
        signature = inspect.signature(func)

        @functools.wraps(func)
        def wrapper(self, *args, **kwargs) -> SyncResult:
            try:
                return func(self, *args, **kwargs)
            except MindSyncError as e:
                error = e
            except OSError as e:
                error = GitOperationError(f"{operation} failed: {e}", error_code="FILE_IO_ERROR", raw=str(e))
            except Exception as e:
                self.logger.error(f"Unexpected error in {operation}: {e}", exc_info=True)
                error = GitOperationError(f"{operation} failed unexpectedly: {e}",
                                          error_code="UNEXPECTED_ERROR", raw=str(e))

            branch = signature.bind_partial(self, *args, **kwargs).arguments.get("branch")
            self.logger.warning(
                f"❌ {operation} failed: {error.message}",
                extra={'operation': operation, 'error_code': error.error_code}
            )
            return failed_sync_result(operation, error, branch=branch)
        return wrapper
    return decorator


class MindMapSyncManager:
    """
    Entry point for every operation on a mindmap and its git mirror.

    Each (domain, mindmap, branch) owns a working directory under
    ``config.repos_dir``; all work on it runs under that triple's lock.
    Mutating flows return SyncResult; ``git_status`` never fails.
    """

    def __init__(self, config: Config, store: Optional[DocumentStore] = None):
        self.config = config
        self.store = store or LocalDocumentStore(config.documents_dir)
        self.exporter = TreeExporter()
        self.importer = TreeImporter()
        self.logger = logging.getLogger('mindsync.sync')

    # Paths and handles

    def workdir(self, domain: str, mmid: int, branch: str) -> Path:
        return (self.config.repos_dir / quote(domain, safe='') / "mindmap"
                / str(int(mmid)) / quote(branch, safe=''))

    def repository(self, domain: str, mmid: int, branch: str) -> GitRepository:
        return GitRepository(self.workdir(domain, mmid, branch), self.config)

    def _load(self, domain: str, mmid: int) -> MindMapDoc:
        doc = self.store.get_mindmap(domain, mmid)
        if doc is None:
            raise NotFoundError(f"Mindmap {domain}/{mmid} not found", error_code="MINDMAP_NOT_FOUND")
        return doc

    def _target_branch(self, domain: str, mmid: int, branch: Optional[str]) -> str:
        if branch:
            return validate_branch_name(branch)
        return self._load(domain, mmid).current_branch

    def _auth_url(self, doc: MindMapDoc) -> Optional[str]:
        if not doc.github_repo:
            return None
        return build_remote_url(doc.github_repo, self.config.github_token)

    def _require_remote(self, doc: MindMapDoc) -> str:
        if not doc.github_repo:
            raise ValidationError(
                f"Mindmap {doc.domain_id}/{doc.mmid} has no GitHub repository configured",
                error_code="REMOTE_NOT_CONFIGURED"
            )
        clean_url = normalize_remote(doc.github_repo)
        require_token(clean_url, self.config.github_token)
        return clean_url

    @contextmanager
    def _editing(self, domain: str, mmid: int):
        """Load the document, yield it for changes and save it if the block succeeds."""
        with sync_lock(self.config, domain, mmid, DOCUMENT_LOCK):
            doc = self._load(domain, mmid)
            yield doc
            self.store.save_mindmap(doc)

    # Filesystem sync

    def _export_to(self, doc: MindMapDoc, branch: str, repo: GitRepository) -> MirrorPlan:
        """
        Export ``branch`` into a scratch directory and mirror it onto the
        working directory, leaving ``.git`` alone.
        """
        self.config.temp_dir.mkdir(parents=True, exist_ok=True)
        scratch = Path(tempfile.mkdtemp(prefix="export-", dir=self.config.temp_dir))
        try:
            snapshot = get_branch_data(doc, branch)
            cards = self.store.list_cards(doc.domain_id, doc.mmid)
            self.exporter.export(snapshot, doc.content, cards, scratch)
            plan = mirror_tree(scratch, repo.path)
            self.logger.debug(
                f"Synced {doc.domain_id}/{doc.mmid}@{branch}: "
                f"{len(plan.to_copy)} written, {len(plan.to_delete)} removed"
            )
            return plan
        finally:
            try:
                shutil.rmtree(scratch)
            except OSError as e:
                self.logger.warning(f"Failed to remove export directory {scratch}: {e}")

    def _sync_quietly(self, doc: MindMapDoc, branch: str) -> bool:
        """Mirror the branch onto an existing working directory; failures are logged only."""
        repo = self.repository(doc.domain_id, doc.mmid, branch)
        if not repo.exists():
            return False
        try:
            self._export_to(doc, branch, repo)
            return True
        except (MindSyncError, OSError) as e:
            self.logger.error(f"Background sync of {doc.domain_id}/{doc.mmid}@{branch} failed: {e}")
            return False

    @sync_operation("sync")
    def sync_without_commit(self, domain: str, mmid: int, branch: Optional[str] = None) -> SyncResult:
        """Write the current document state into the working directory without committing."""
        branch = self._target_branch(domain, mmid, branch)
        with sync_lock(self.config, domain, mmid, branch):
            doc = self._load(domain, mmid)
            repo = self.repository(domain, mmid, branch)
            if not repo.exists():
                return create_sync_result("sync", "No git repository yet; nothing to sync", branch, synced=False)

            plan = self._export_to(doc, branch, repo)
            return create_sync_result(
                "sync", f"Synced '{branch}' to {repo.path}", branch,
                synced=True, written=len(plan.to_copy), removed=len(plan.to_delete),
            )

    # Git flows

    def _commit(self, doc: MindMapDoc, branch: str, repo: GitRepository, message: Optional[str],
                actor: Actor) -> Optional[str]:
        """Prepare the repository, sync the branch and commit. Returns the new sha, if any."""
        repo.ensure(doc.github_repo)
        auth_url = self._auth_url(doc)
        if auth_url:
            try:
                repo.fetch(auth_url)
            except MindSyncError as e:
                self.logger.warning(f"Fetch before commit failed, continuing offline: {e.message}")

        repo.resolve_branch(branch)
        self._export_to(doc, branch, repo)
        return repo.commit_if_dirty(message or "", self._author_prefix(doc, actor))

    @staticmethod
    def _author_prefix(doc: MindMapDoc, actor: Actor) -> str:
        return f"{doc.domain_id}/{actor.user_id}/{actor.display_name}"

    def _record_commit(self, domain: str, mmid: int, branch: str, actor: Actor, description: str) -> None:
        with self._editing(domain, mmid) as doc:
            HistoryLog(doc, self.config.history_limit).record(
                make_history_entry("commit", get_branch_data(doc, branch), actor, description, doc.viewport)
            )

    @sync_operation("commit")
    def commit_changes(self, domain: str, mmid: int, branch: Optional[str] = None,
                       message: Optional[str] = None, actor: Optional[Actor] = None) -> SyncResult:
        """Sync ``branch`` and commit whatever changed, creating the repository on first use."""
        actor = actor or ANONYMOUS
        branch = self._target_branch(domain, mmid, branch)
        with sync_lock(self.config, domain, mmid, branch):
            doc = self._load(domain, mmid)
            sha = self._commit(doc, branch, self.repository(domain, mmid, branch), message, actor)
            if sha is None:
                return create_sync_result("commit", "Nothing to commit", branch, committed=False, commit=None)

            self._record_commit(domain, mmid, branch, actor,
                                format_commit_message(self._author_prefix(doc, actor), message))
            self.logger.info(f"✅ Committed {domain}/{mmid}@{branch} as {sha[:8]}")
            return create_sync_result("commit", f"Committed {sha[:8]}", branch, committed=True, commit=sha)

    @sync_operation("push")
    def push(self, domain: str, mmid: int, branch: Optional[str] = None,
             message: Optional[str] = None, actor: Optional[Actor] = None) -> SyncResult:
        """Commit pending changes of ``branch`` and push it to the configured remote."""
        actor = actor or ANONYMOUS
        branch = self._target_branch(domain, mmid, branch)
        with sync_lock(self.config, domain, mmid, branch):
            doc = self._load(domain, mmid)
            self._require_remote(doc)
            repo = self.repository(domain, mmid, branch)

            message = message or f"Update mindmap {mmid}"
            sha = self._commit(doc, branch, repo, message, actor)
            if sha is not None:
                self._record_commit(domain, mmid, branch, actor,
                                    format_commit_message(self._author_prefix(doc, actor), message))

            repo.push(branch, self._auth_url(doc))
            self.logger.info(f"✅ Pushed {domain}/{mmid}@{branch}")
            return create_sync_result("push", f"Pushed '{branch}'", branch, committed=sha is not None, commit=sha)

    @sync_operation("pull")
    def pull(self, domain: str, mmid: int, branch: Optional[str] = None) -> SyncResult:
        """
        Reset ``branch`` to its remote tip and rebuild the document from the tree.

        The tree is parsed before anything is replaced, so an unreadable
        tree leaves the stored nodes, edges and cards untouched. On success
        every card of the mindmap is replaced by the imported ones.
        """
        branch = self._target_branch(domain, mmid, branch)
        with sync_lock(self.config, domain, mmid, branch):
            doc = self._load(domain, mmid)
            self._require_remote(doc)
            repo = self.repository(domain, mmid, branch)
            repo.ensure(doc.github_repo)
            sha = repo.pull_reset(branch, self._auth_url(doc))

            imported = self.importer.import_tree(repo.path)
            content = read_readme(repo.path)

            with self._editing(domain, mmid) as fresh:
                cards = []
                for draft in imported.cards:
                    cards.append(new_card(cards, domain, mmid, draft.node_id, draft.title,
                                          draft.content, draft.order, fresh.owner))
                self.store.replace_cards(domain, mmid, cards)
                set_branch_data(fresh, branch, imported.snapshot)
                fresh.content = content

            self.logger.info(
                f"✅ Pulled {domain}/{mmid}@{branch} at {sha[:8]}: "
                f"{len(imported.snapshot.nodes) - 1} node(s), {len(cards)} card(s)"
            )
            return create_sync_result(
                "pull", f"Pulled '{branch}' at {sha[:8]}", branch,
                commit=sha, nodes=len(imported.snapshot.nodes), cards=len(cards),
            )

    def git_status(self, domain: str, mmid: int, branch: Optional[str] = None) -> GitRepoState:
        """
        Report the state of the branch's working directory.

        The working directory is refreshed first when it exists; it is
        never created here. Any failure yields the all-default status.
        """
        try:
            branch = self._target_branch(domain, mmid, branch)
            with sync_lock(self.config, domain, mmid, branch):
                doc = self._load(domain, mmid)
                repo = self.repository(domain, mmid, branch)
                if not repo.exists():
                    return GitRepoState()

                if doc.github_repo:
                    try:
                        repo.set_origin(normalize_remote(doc.github_repo))
                    except MindSyncError as e:
                        self.logger.warning(f"Could not configure origin for status: {e.message}")
                try:
                    self._export_to(doc, branch, repo)
                except (MindSyncError, OSError) as e:
                    self.logger.warning(f"Sync before status failed: {e}")

                return repo.compute_status(branch, self._auth_url(doc), fetch=self.config.fetch_on_status)
        except Exception as e:
            self.logger.warning(f"Status of {domain}/{mmid} unavailable: {e}")
            return GitRepoState()

    # Document flows

    @sync_operation("save")
    def save(self, domain: str, mmid: int, update: FullStateUpdate,
             actor: Optional[Actor] = None) -> SyncResult:
        """
        Overwrite a branch with the editor's full state and record a history entry.

        Only substantive changes are mirrored to the working directory; a
        failed mirror is logged and does not fail the save.
        """
        actor = actor or ANONYMOUS
        branch = self._target_branch(domain, mmid, update.branch)
        with sync_lock(self.config, domain, mmid, branch):
            with self._editing(domain, mmid) as doc:
                old = get_branch_data(doc, branch)
                substantive = is_substantive(old, update.nodes, update.edges)
                new = BranchSnapshot(
                    nodes=update.nodes if update.nodes is not None else old.nodes,
                    edges=update.edges if update.edges is not None else old.edges,
                )
                if update.viewport is not None:
                    doc.viewport = update.viewport
                if update.layout is not None:
                    doc.layout = update.layout
                if update.theme is not None:
                    doc.theme = update.theme

                HistoryLog(doc, self.config.history_limit).record(
                    make_history_entry("save", new, actor, update.description or "auto save", doc.viewport)
                )
                set_branch_data(doc, branch, new)

            synced = self._sync_quietly(doc, branch) if substantive else False
            return create_sync_result(
                "save", "Saved", branch, hasNonPositionChanges=substantive, synced=synced,
            )

    @sync_operation("create_branch")
    def create_branch(self, domain: str, mmid: int, name: str) -> SyncResult:
        """
        Copy ``main`` into a new branch and make it current.

        When ``main`` already has a working directory the new branch's
        repository starts at main's tip; otherwise it is created on first commit.
        """
        name = validate_branch_name(name)
        with sync_lock(self.config, domain, mmid, MAIN_BRANCH, name):
            with self._editing(domain, mmid) as doc:
                create_doc_branch(doc, name)

            main_repo = self.repository(domain, mmid, MAIN_BRANCH)
            if main_repo.exists():
                repo = self.repository(domain, mmid, name)
                repo.ensure(doc.github_repo)
                repo.branch_from(name, main_repo.path, MAIN_BRANCH)
                self._export_to(doc, name, repo)

            self.logger.info(f"Created branch '{name}' of {domain}/{mmid}")
            return create_sync_result(
                "create_branch", f"Created branch '{name}'", name, branches=list(doc.branches),
            )

    @sync_operation("restore")
    def restore_history(self, domain: str, mmid: int, history_id: str,
                        branch: Optional[str] = None) -> SyncResult:
        """Roll a branch back to a history entry; no commit and no new entry are made."""
        branch = self._target_branch(domain, mmid, branch)
        with sync_lock(self.config, domain, mmid, branch):
            with self._editing(domain, mmid) as doc:
                entry = HistoryLog(doc, self.config.history_limit).restore(history_id, branch)

            synced = self._sync_quietly(doc, branch)
            return create_sync_result(
                "restore", f"Restored '{branch}' to {entry.id}", branch,
                historyId=entry.id, description=entry.description, synced=synced,
            )

    def list_history(self, domain: str, mmid: int) -> List[Dict[str, Any]]:
        doc = self.store.get_mindmap(domain, mmid)
        if doc is None:
            return []
        return HistoryLog(doc, self.config.history_limit).summaries()

    @sync_operation("create_mindmap")
    def create_mindmap(self, domain: str, title: str, owner: Optional[int] = None,
                       content: str = "", github_repo: Optional[str] = None) -> SyncResult:
        """Create a mindmap whose main branch holds a single root node titled like the map."""
        if github_repo:
            normalize_remote(github_repo)
        doc = self.store.create_mindmap(domain, title, owner=owner, content=content, github_repo=github_repo)
        root = Node(id=new_id("root"), text=doc.title, x=0, y=0, data={})
        with self._editing(domain, doc.mmid) as fresh:
            set_branch_data(fresh, MAIN_BRANCH, BranchSnapshot(nodes=[root]))
        return create_sync_result("create_mindmap", f"Created mindmap {doc.mmid}", MAIN_BRANCH,
                                  mmid=doc.mmid, rootId=root.id)

    @sync_operation("update_mindmap")
    def update_mindmap(self, domain: str, mmid: int, title: Optional[str] = None,
                       content: Optional[str] = None, github_repo: Optional[str] = None) -> SyncResult:
        if github_repo:
            normalize_remote(github_repo)
        branch = self._target_branch(domain, mmid, None)
        with sync_lock(self.config, domain, mmid, branch):
            with self._editing(domain, mmid) as doc:
                if title is not None:
                    if not title.strip():
                        raise ValidationError("Mindmap title is required", error_code="TITLE_REQUIRED")
                    doc.title = title.strip()
                if content is not None:
                    doc.content = content
                if github_repo is not None:
                    doc.github_repo = github_repo or None

            synced = self._sync_quietly(doc, branch) if content is not None else False
        return create_sync_result("update_mindmap", "Mindmap updated", branch, synced=synced)

    @sync_operation("switch_branch")
    def switch_branch(self, domain: str, mmid: int, name: str) -> SyncResult:
        """Make ``name`` the current branch; later calls without a branch act on it."""
        name = validate_branch_name(name)
        with self._editing(domain, mmid) as doc:
            switch_doc_branch(doc, name)
        self.logger.info(f"Switched {domain}/{mmid} to branch '{name}'")
        return create_sync_result("switch_branch", f"Switched to branch '{name}'", name,
                                  currentBranch=name)

    # Graph editing

    def _edit_graph(self, operation: str, domain: str, mmid: int, branch: Optional[str],
                    edit: Callable[[MindMapDoc, str], Any]) -> SyncResult:
        branch = self._target_branch(domain, mmid, branch)
        with sync_lock(self.config, domain, mmid, branch):
            with self._editing(domain, mmid) as doc:
                outcome = edit(doc, branch)
            synced = self._sync_quietly(doc, branch)
        return create_sync_result(operation, f"{operation} applied to '{branch}'", branch,
                                  synced=synced, **(outcome or {}))

    @sync_operation("node_add")
    def add_node(self, domain: str, mmid: int, text: str, parent_id: Optional[str] = None,
                 branch: Optional[str] = None) -> SyncResult:
        return self._edit_graph("node_add", domain, mmid, branch, lambda doc, b: {
            "node": editing.add_node(doc, b, text, parent_id).to_dict()
        })

    @sync_operation("node_update")
    def update_node(self, domain: str, mmid: int, node_id: str, update: NodeUpdate,
                    branch: Optional[str] = None) -> SyncResult:
        return self._edit_graph("node_update", domain, mmid, branch, lambda doc, b: {
            "node": editing.update_node(doc, b, node_id, update).to_dict()
        })

    @sync_operation("node_delete")
    def delete_node(self, domain: str, mmid: int, node_id: str,
                    branch: Optional[str] = None) -> SyncResult:
        return self._edit_graph("node_delete", domain, mmid, branch, lambda doc, b: {
            "deleted": sorted(editing.delete_node(doc, b, node_id))
        })

    @sync_operation("edge_add")
    def add_edge(self, domain: str, mmid: int, source: str, target: str,
                 branch: Optional[str] = None) -> SyncResult:
        return self._edit_graph("edge_add", domain, mmid, branch, lambda doc, b: {
            "edge": editing.add_edge(doc, b, source, target).to_dict()
        })

    @sync_operation("edge_delete")
    def delete_edge(self, domain: str, mmid: int, edge_id: str,
                    branch: Optional[str] = None) -> SyncResult:
        return self._edit_graph("edge_delete", domain, mmid, branch,
                                lambda doc, b: editing.delete_edge(doc, b, edge_id))

    # Cards

    @sync_operation("card_create")
    def create_card(self, domain: str, mmid: int, node_id: str, title: str, content: str = "",
                    order: Optional[int] = None, owner: Optional[int] = None,
                    branch: Optional[str] = None) -> SyncResult:
        branch = self._target_branch(domain, mmid, branch)
        with sync_lock(self.config, domain, mmid, branch):
            doc = self._load(domain, mmid)
            if not any(node.id == node_id for node in get_branch_data(doc, branch).nodes):
                raise NotFoundError(f"Node '{node_id}' not found on '{branch}'", error_code="NODE_NOT_FOUND")
            card = self.store.create_card(domain, mmid, node_id, title, content, order, owner)
            synced = self._sync_quietly(doc, branch)
        return create_sync_result("card_create", f"Created card '{card.title}'", branch,
                                  card=card.to_dict(), synced=synced)

    @sync_operation("card_update")
    def update_card(self, domain: str, mmid: int, doc_id: str, update: CardUpdate,
                    branch: Optional[str] = None) -> SyncResult:
        branch = self._target_branch(domain, mmid, branch)
        with sync_lock(self.config, domain, mmid, branch):
            doc = self._load(domain, mmid)
            card = self.store.update_card(domain, mmid, doc_id, update)
            synced = self._sync_quietly(doc, branch)
        return create_sync_result("card_update", f"Updated card '{card.title}'", branch,
                                  card=card.to_dict(), synced=synced)

    @sync_operation("card_delete")
    def delete_card(self, domain: str, mmid: int, doc_id: str,
                    branch: Optional[str] = None) -> SyncResult:
        branch = self._target_branch(domain, mmid, branch)
        with sync_lock(self.config, domain, mmid, branch):
            doc = self._load(domain, mmid)
            self.store.delete_card(domain, mmid, doc_id)
            synced = self._sync_quietly(doc, branch)
        return create_sync_result("card_delete", f"Deleted card {doc_id}", branch, docId=doc_id, synced=synced)


# Global sync manager instance
_sync_manager: Optional[MindMapSyncManager] = None
_sync_manager_lock = threading.Lock()


def get_sync_manager(config: Config) -> MindMapSyncManager:
    """
    Get or create the global sync manager instance.

    Args:
        config: Server configuration

    Returns:
        MindMapSyncManager instance
    """
    global _sync_manager

    with _sync_manager_lock:
        if _sync_manager is None:
            _sync_manager = MindMapSyncManager(config)
        return _sync_manager
