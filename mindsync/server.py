"""Main server implementation for the MindSync MCP server."""

import logging
import sys
from typing import Any, Callable, Dict, List, Optional

from mcp.server.fastmcp import FastMCP

from .config import Config, load_configuration, validate_configuration
from .errors import error_handler
from .file_lock import cleanup_stale_locks
from .git_sync import MindMapSyncManager, get_sync_manager
from .mindmap.models import Actor, CardUpdate, FullStateUpdate, NodeUpdate


LOGGERS = [
    'mindsync.init',
    'mindsync.server',
    'mindsync.sync',
    'mindsync.git_sync',
    'mindsync.tree',
    'mindsync.store',
    'mindsync.history',
    'mindsync.branches',
    'mindsync.config',
    'mindsync.locks',
    'mindsync.error_handler',
]


def setup_logging(config: Config) -> None:
    """Setup logging with the structured formatter on every mindsync logger."""
    class StructuredFormatter(logging.Formatter):
        def format(self, record):
            # Prefix the operation name when the record carries one
            if hasattr(record, 'operation'):
                record.msg = f"[{record.operation}] {record.msg}"
            return super().format(record)

    logging.basicConfig(
        level=getattr(logging, config.log_level),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    formatter = StructuredFormatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    for logger_name in LOGGERS:
        logger = logging.getLogger(logger_name)
        logger.setLevel(getattr(logging, config.log_level))

        # stdout belongs to the stdio transport; log to stderr only
        if not logger.handlers:
            handler = logging.StreamHandler(sys.stderr)
            handler.setFormatter(formatter)
            logger.addHandler(handler)
            logger.propagate = False


def _run(operation: str, func: Callable[[], Any], context: Dict[str, Any]) -> Dict[str, Any]:
    """Call a manager flow and turn its outcome into the tool's response dict."""
    try:
        result = func()
    except Exception as e:
        return error_handler.handle(e, operation, context).to_dict()
    if hasattr(result, "to_dict"):
        return result.to_dict()
    return error_handler.create_success_response(operation, result, context)


def _actor(user_id: int, username: Optional[str]) -> Actor:
    return Actor(user_id=user_id, username=username)


def register_tools(server: FastMCP, manager: MindMapSyncManager) -> None:
    """Register MCP tools with the server instance."""

    @server.tool()
    def mindmap_create(domain: str, title: str, owner: Optional[int] = None, content: str = "",
                       github_repo: Optional[str] = None) -> dict:
        """
        Create a new mindmap with a single root node.

        Args:
            domain: Domain (workspace) the mindmap belongs to
            title: Title of the mindmap, also the text of its root node
            owner: User id of the owner
            content: Markdown document of the mindmap, exported as README.md
            github_repo: Remote repository as "org/repo", an HTTPS/SSH URL or a local path

        Returns:
            Result with the new mindmap id (mmid) and root node id
        """
        return _run("mindmap_create",
                    lambda: manager.create_mindmap(domain, title, owner, content, github_repo),
                    {"domain": domain})

    @server.tool()
    def mindmap_update(domain: str, mmid: int, title: Optional[str] = None, content: Optional[str] = None,
                       github_repo: Optional[str] = None) -> dict:
        """Change the title, README content or remote repository of a mindmap."""
        return _run("mindmap_update",
                    lambda: manager.update_mindmap(domain, mmid, title, content, github_repo),
                    {"domain": domain, "mmid": mmid})

    @server.tool()
    def mindmap_status(domain: str, mmid: int, branch: Optional[str] = None) -> dict:
        """
        Report the git state of a mindmap branch.

        The working directory is refreshed from the document first. A branch
        without a repository reports hasLocalRepo=false; this never fails.
        """
        return _run("mindmap_status",
                    lambda: manager.git_status(domain, mmid, branch).to_dict(),
                    {"domain": domain, "mmid": mmid, "branch": branch})

    @server.tool()
    def mindmap_save(domain: str, mmid: int, state: dict, user_id: int = 0,
                     username: Optional[str] = None) -> dict:
        """
        Save the full editor state of one branch.

        Args:
            state: {"nodes", "edges", "branch", "viewport", "layout", "theme", "operationDescription"}
            user_id: Acting user id, recorded in history
            username: Acting user name, recorded in history

        Returns:
            Result with hasNonPositionChanges telling whether the tree was re-synced
        """
        return _run("mindmap_save",
                    lambda: manager.save(domain, mmid, FullStateUpdate.from_dict(state), _actor(user_id, username)),
                    {"domain": domain, "mmid": mmid})

    @server.tool()
    def mindmap_commit(domain: str, mmid: int, branch: Optional[str] = None, message: Optional[str] = None,
                       user_id: int = 0, username: Optional[str] = None) -> dict:
        """Sync a branch to its working directory and commit pending changes."""
        return _run("mindmap_commit",
                    lambda: manager.commit_changes(domain, mmid, branch, message, _actor(user_id, username)),
                    {"domain": domain, "mmid": mmid, "branch": branch})

    @server.tool()
    def mindmap_push(domain: str, mmid: int, branch: Optional[str] = None, message: Optional[str] = None,
                     user_id: int = 0, username: Optional[str] = None) -> dict:
        """Commit pending changes of a branch and push it to the mindmap's remote."""
        return _run("mindmap_push",
                    lambda: manager.push(domain, mmid, branch, message, _actor(user_id, username)),
                    {"domain": domain, "mmid": mmid, "branch": branch})

    @server.tool()
    def mindmap_pull(domain: str, mmid: int, branch: Optional[str] = None) -> dict:
        """
        Replace a branch with the remote tree.

        Local uncommitted changes are discarded and every card of the
        mindmap is rebuilt from the pulled markdown files.
        """
        return _run("mindmap_pull",
                    lambda: manager.pull(domain, mmid, branch),
                    {"domain": domain, "mmid": mmid, "branch": branch})

    @server.tool()
    def mindmap_create_branch(domain: str, mmid: int, name: str) -> dict:
        """Copy main into a new branch and switch to it. Only allowed while main is current."""
        return _run("mindmap_create_branch",
                    lambda: manager.create_branch(domain, mmid, name),
                    {"domain": domain, "mmid": mmid})

    @server.tool()
    def mindmap_switch_branch(domain: str, mmid: int, name: str) -> dict:
        """Make an existing branch current; calls without a branch argument then act on it."""
        return _run("mindmap_switch_branch",
                    lambda: manager.switch_branch(domain, mmid, name),
                    {"domain": domain, "mmid": mmid})

    @server.tool()
    def mindmap_history(domain: str, mmid: int) -> dict:
        """List history entries, newest first."""
        return _run("mindmap_history",
                    lambda: {"entries": manager.list_history(domain, mmid)},
                    {"domain": domain, "mmid": mmid})

    @server.tool()
    def mindmap_restore(domain: str, mmid: int, history_id: str, branch: Optional[str] = None) -> dict:
        """Restore a branch to a history entry without committing."""
        return _run("mindmap_restore",
                    lambda: manager.restore_history(domain, mmid, history_id, branch),
                    {"domain": domain, "mmid": mmid, "history_id": history_id})

    @server.tool()
    def node_add(domain: str, mmid: int, text: str, parent_id: Optional[str] = None,
                 branch: Optional[str] = None) -> dict:
        """Add a node, optionally as the last child of parent_id."""
        return _run("node_add",
                    lambda: manager.add_node(domain, mmid, text, parent_id, branch),
                    {"domain": domain, "mmid": mmid})

    @server.tool()
    def node_update(domain: str, mmid: int, node_id: str, changes: dict,
                    branch: Optional[str] = None) -> dict:
        """
        Update fields of one node.

        Args:
            changes: Any of text, x, y, color, backgroundColor, fontSize, shape, order, expanded, style
        """
        def update():
            return manager.update_node(domain, mmid, node_id, NodeUpdate(
                text=changes.get("text"),
                x=changes.get("x"),
                y=changes.get("y"),
                color=changes.get("color"),
                background_color=changes.get("backgroundColor"),
                font_size=changes.get("fontSize"),
                shape=changes.get("shape"),
                order=changes.get("order"),
                expanded=changes.get("expanded"),
                style=changes.get("style"),
            ), branch)

        return _run("node_update", update, {"domain": domain, "mmid": mmid, "node_id": node_id})

    @server.tool()
    def node_delete(domain: str, mmid: int, node_id: str, branch: Optional[str] = None) -> dict:
        """Delete a node together with its whole subtree."""
        return _run("node_delete",
                    lambda: manager.delete_node(domain, mmid, node_id, branch),
                    {"domain": domain, "mmid": mmid, "node_id": node_id})

    @server.tool()
    def edge_add(domain: str, mmid: int, source: str, target: str, branch: Optional[str] = None) -> dict:
        """Make target a child of source. Rejected if target already has a parent or a cycle would form."""
        return _run("edge_add",
                    lambda: manager.add_edge(domain, mmid, source, target, branch),
                    {"domain": domain, "mmid": mmid})

    @server.tool()
    def edge_delete(domain: str, mmid: int, edge_id: str, branch: Optional[str] = None) -> dict:
        """Remove one edge."""
        return _run("edge_delete",
                    lambda: manager.delete_edge(domain, mmid, edge_id, branch),
                    {"domain": domain, "mmid": mmid, "edge_id": edge_id})

    @server.tool()
    def card_create(domain: str, mmid: int, node_id: str, title: str, content: str = "",
                    order: Optional[int] = None, user_id: Optional[int] = None,
                    branch: Optional[str] = None) -> dict:
        """Attach a markdown card to a node. It is exported as <title>.md in the node's directory."""
        return _run("card_create",
                    lambda: manager.create_card(domain, mmid, node_id, title, content, order, user_id, branch),
                    {"domain": domain, "mmid": mmid, "node_id": node_id})

    @server.tool()
    def card_update(domain: str, mmid: int, doc_id: str, title: Optional[str] = None,
                    content: Optional[str] = None, order: Optional[int] = None,
                    branch: Optional[str] = None) -> dict:
        """Change the title, content or order of a card."""
        return _run("card_update",
                    lambda: manager.update_card(domain, mmid, doc_id, CardUpdate(title, content, order), branch),
                    {"domain": domain, "mmid": mmid, "doc_id": doc_id})

    @server.tool()
    def card_delete(domain: str, mmid: int, doc_id: str, branch: Optional[str] = None) -> dict:
        """Delete a card."""
        return _run("card_delete",
                    lambda: manager.delete_card(domain, mmid, doc_id, branch),
                    {"domain": domain, "mmid": mmid, "doc_id": doc_id})

    init_logger = logging.getLogger('mindsync.init')
    init_logger.info("MCP tools registered successfully")


def _report_issues(issues: List[str], logger: logging.Logger) -> int:
    """Log configuration issues and return how many are errors."""
    error_count = 0
    for issue in issues:
        if issue.startswith("ERROR:"):
            logger.error(issue[7:])
            error_count += 1
        elif issue.startswith("WARNING:"):
            logger.warning(issue[9:])
    return error_count


def initialize_server(server_config: Optional[Config] = None) -> FastMCP:
    """Initialize MCP server with stdio transport for local-only operation."""
    server_config = server_config or load_configuration()
    setup_logging(server_config)
    init_logger = logging.getLogger('mindsync.init')

    error_count = _report_issues(validate_configuration(server_config), init_logger)
    if error_count > 0:
        init_logger.critical(f"Server startup failed due to {error_count} configuration error(s)")
        sys.exit(1)
    init_logger.info("Configuration loaded successfully")

    for directory in (server_config.repos_dir, server_config.documents_dir,
                      server_config.lock_dir, server_config.temp_dir):
        directory.mkdir(parents=True, exist_ok=True)

    cleaned = cleanup_stale_locks(server_config)
    if cleaned:
        init_logger.info(f"Cleaned up {cleaned} stale lock file(s)")

    manager = get_sync_manager(server_config)

    init_logger.info("Initializing MCP server with stdio transport")
    server = FastMCP(
        "MindSync",
        log_level=server_config.log_level.upper()
    )
    register_tools(server, manager)
    init_logger.info("MindSync MCP server initialized successfully")
    return server


def main():
    """Main entry point for the MindSync server with stdio transport."""
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    startup_logger = logging.getLogger('mindsync.server')

    try:
        startup_logger.info("=" * 60)
        startup_logger.info("MindSync MCP Server")
        startup_logger.info("Version: 1.0.0")
        startup_logger.info("=" * 60)

        server = initialize_server()

        startup_logger.info("Ready to accept MCP connections via stdio transport")
        server.run(transport="stdio")

    except KeyboardInterrupt:
        startup_logger.info("Server stopped by user (Ctrl+C)")
    except SystemExit:
        raise
    except Exception as e:
        startup_logger.critical(f"Server failed to start: {e}", exc_info=True)
        sys.exit(1)
