"""GitRepository: lifecycle operations on one mindmap branch working directory."""

import logging
from pathlib import Path
from typing import Callable, Optional, TypeVar

from git import Repo, GitCommandError

from ..config import Config
from ..errors import GitOperationError, MindSyncError, NotFoundError, ErrorKind
from .error_strategies import GIT_REF_NOT_FOUND
from .operations import Lookup, execute_git_operation_with_retry, init_repo, probe_ref, run_git
from .remote_utils import authenticated_remote, normalize_remote, redact_credentials
from .repository_info import ChangeSet, GitRepoState
from .state import RepositoryState, RepositoryStateManager, open_repo


T = TypeVar("T")

# Failures a tracking push cannot fix
_NO_PUSH_FALLBACK = {ErrorKind.REMOTE_AUTH_FAILURE, ErrorKind.TIMEOUT}


def format_commit_message(author_prefix: str, message: Optional[str]) -> str:
    """``<domain>/<userId>/<username>: <message>``, or just the prefix for an empty message."""
    if message and message.strip():
        return f"{author_prefix}: {message.strip()}"
    return author_prefix


def parse_porcelain_z(output: str) -> ChangeSet:
    """Classify ``git status --porcelain -z`` output into added/modified/deleted paths."""
    changes = ChangeSet()
    entries = output.split("\0")
    i = 0
    while i < len(entries):
        entry = entries[i]
        i += 1
        if len(entry) < 4:
            continue
        code, path = entry[:2], entry[3:]

        if code[0] in "RC":
            # Renames and copies are followed by their source path
            source = entries[i] if i < len(entries) else ""
            i += 1
            changes.added.append(path)
            if code[0] == "R" and source:
                changes.deleted.append(source)
        elif code == "??" or "A" in code:
            changes.added.append(path)
        elif "D" in code:
            changes.deleted.append(path)
        elif any(c in code for c in "MTU"):
            changes.modified.append(path)
    return changes


class GitRepository:
    """
    Handle on the git working directory of one (domain, mindmap, branch).

    Every git invocation goes through ``run_git`` so it is bounded by a
    timeout and failures arrive as typed MindSyncError subclasses.
    """

    def __init__(self, path: Path, config: Config):
        self.path = Path(path)
        self.config = config
        self.logger = logging.getLogger('mindsync.git_sync')
        self.state_manager = RepositoryStateManager(config, self.path)
        self._repo: Optional[Repo] = None

    # Repository handle

    def exists(self) -> bool:
        return (self.path / ".git").exists()

    @property
    def repo(self) -> Repo:
        if self._repo is None:
            repo = open_repo(self.path)
            if repo is None:
                raise NotFoundError(f"No git repository at {self.path}", error_code="GIT_REPO_NOT_FOUND")
            # Never block on a credential prompt
            repo.git.update_environment(GIT_TERMINAL_PROMPT="0")
            self._repo = repo
        return self._repo

    def _git(self, *args: str, network: bool = False) -> str:
        return run_git(self.repo, self.config, *args, network=network)

    # Setup

    def ensure(self, remote_url: Optional[str] = None) -> bool:
        """
        Create the directory and repository if needed, set the bot identity
        and point ``origin`` at the token-free form of ``remote_url``.

        Returns:
            True when a new repository was initialized
        """
        created = False
        self.path.mkdir(parents=True, exist_ok=True)
        if not self.exists():
            init_repo(self.path)
            self._repo = None
            created = True
            self.logger.info(f"Initialized git repository at {self.path}")

        self.configure_identity()
        if remote_url:
            self.set_origin(normalize_remote(remote_url))
        return created

    def configure_identity(self) -> None:
        with self.repo.config_writer() as writer:
            writer.set_value("user", "name", self.config.bot_name)
            writer.set_value("user", "email", self.config.bot_email)

    def remote_url(self) -> Optional[str]:
        if not self.exists():
            return None
        for remote in self.repo.remotes:
            if remote.name == "origin":
                return remote.url
        return None

    def set_origin(self, clean_url: str) -> None:
        current = self.remote_url()
        if current is None:
            self._git("remote", "add", "origin", clean_url)
            self.logger.debug(f"Added origin {redact_credentials(clean_url)}")
        elif current != clean_url:
            self._git("remote", "set-url", "origin", clean_url)
            self.logger.debug(f"Updated origin to {redact_credentials(clean_url)}")

    # Branches

    def resolve_branch(self, branch: str) -> RepositoryState:
        state = self.state_manager.resolve_branch(branch)
        self._repo = None
        return state

    def has_commits(self) -> bool:
        return self.exists() and probe_ref(self.repo, self.config, "HEAD").found

    def branch_from(self, branch: str, source_path: Path, source_branch: str) -> None:
        """
        Start ``branch`` in this (already ensured) repository at the tip of
        ``source_branch`` in another local working directory.

        A source without commits leaves ``branch`` unborn.
        """
        source = open_repo(source_path)
        if source is None or not probe_ref(source, self.config, f"refs/heads/{source_branch}").found:
            self.resolve_branch(branch)
            return

        self._git("fetch", str(Path(source_path).resolve()), source_branch)
        self._git("checkout", "-f", "-B", branch, "FETCH_HEAD")
        self._repo = None
        self.logger.info(f"Branched '{branch}' from '{source_branch}' at {source_path}")

    # Network

    def _with_origin(self, auth_url: Optional[str], operation: str, func: Callable[[], T]) -> T:
        clean_url = self.remote_url()
        if clean_url is None:
            raise GitOperationError("No 'origin' remote is configured", error_code="GIT_NO_REMOTE")
        with authenticated_remote(self.repo, clean_url, auth_url or clean_url):
            return execute_git_operation_with_retry(func, operation, self.config)

    def fetch(self, auth_url: Optional[str] = None) -> None:
        self._with_origin(auth_url, "fetch", lambda: self._git("fetch", "--prune", "origin", network=True))

    def push(self, branch: str, auth_url: Optional[str] = None) -> None:
        """
        Push ``branch`` to origin.

        Without a resolvable HEAD the push sets upstream tracking directly;
        otherwise a plain push is tried first and a tracking push is the
        fallback (no upstream yet).
        """
        head = probe_ref(self.repo, self.config, "HEAD")
        if head.status is Lookup.ERROR:
            raise head.error

        def tracking_push():
            return self._git("push", "-u", "origin", branch, network=True)

        def plain_push():
            try:
                return self._git("push", "origin", branch, network=True)
            except GitOperationError as e:
                if e.kind in _NO_PUSH_FALLBACK or e.error_code == "GIT_NON_FAST_FORWARD":
                    raise
                self.logger.info(f"Plain push of '{branch}' failed ({e.error_code}); retrying with upstream tracking")
                return tracking_push()

        self._with_origin(auth_url, "push", tracking_push if head.status is Lookup.NOT_FOUND else plain_push)
        self.logger.info(f"Pushed '{branch}' from {self.path}")

    def pull_reset(self, branch: str, auth_url: Optional[str] = None) -> str:
        """
        Fetch and hard-reset ``branch`` to ``origin/<branch>``, discarding local changes.

        Returns:
            The commit the branch now points at
        """
        self.fetch(auth_url)
        remote = probe_ref(self.repo, self.config, f"refs/remotes/origin/{branch}")
        if remote.status is Lookup.ERROR:
            raise remote.error
        if remote.status is Lookup.NOT_FOUND:
            raise NotFoundError(f"Remote branch 'origin/{branch}' does not exist", error_code=GIT_REF_NOT_FOUND)

        self.resolve_branch(branch)
        self._git("reset", "--hard", f"origin/{branch}")
        self._git("clean", "-fd")
        self.logger.info(f"Reset '{branch}' to origin/{branch} ({remote.sha[:8]})")
        return remote.sha

    # Commits

    def commit_if_dirty(self, message: str, author_prefix: str) -> Optional[str]:
        """
        Stage everything and commit when the tree differs from HEAD.

        Returns:
            The new commit sha, or None when there was nothing to commit
        """
        self._git("add", "-A")
        if not self._git("status", "--porcelain"):
            self.logger.debug(f"Nothing to commit in {self.path}")
            return None

        full_message = format_commit_message(author_prefix, message)
        self._git("commit", "-m", full_message)
        sha = self._git("rev-parse", "HEAD")
        self.logger.info(f"Committed {sha[:8]} in {self.path}: {full_message}")
        return sha

    # Status

    def _guarded(self, field_name: str, func: Callable[[], T], default: T) -> T:
        try:
            return func()
        except (MindSyncError, GitCommandError, OSError, ValueError) as e:
            self.logger.debug(f"Status field '{field_name}' degraded to default: {redact_credentials(str(e))}")
            return default

    def compute_status(self, branch: str, auth_url: Optional[str] = None, fetch: bool = True) -> GitRepoState:
        """Derive GitRepoState for ``branch``; failures degrade single fields, never raise."""
        status = GitRepoState()
        if not self._guarded("hasLocalRepo", self.exists, False):
            return status
        try:
            self.repo
        except MindSyncError:
            return status
        status.has_local_repo = True

        status.current_branch = self._guarded(
            "currentBranch", lambda: self._git("symbolic-ref", "--short", "-q", "HEAD") or None, None)

        local = self._guarded("hasLocalBranch", lambda: probe_ref(self.repo, self.config, f"refs/heads/{branch}"), None)
        status.has_local_branch = bool(local and local.found)
        if status.has_local_branch:
            status.local_commits = self._guarded("localCommits", lambda: int(self._git("rev-list", "--count", branch)), 0)
            status.last_commit = local.sha
            log_line = self._guarded(
                "lastCommitMessage", lambda: self._git("log", "-1", "--format=%s%x00%ci", branch), "")
            if log_line:
                subject, _, when = log_line.partition("\0")
                status.last_commit_message = subject.strip() or None
                status.last_commit_time = when.strip() or None

        porcelain = self._guarded("changes", lambda: self._git("status", "--porcelain", "-z", "-uall"), "")
        status.changes = parse_porcelain_z(porcelain)
        status.uncommitted_changes = bool(porcelain.strip("\0").strip())

        status.has_remote = self._guarded("hasRemote", lambda: self.remote_url() is not None, False)
        if status.has_remote:
            if fetch:
                self._guarded("fetch", lambda: self.fetch(auth_url), None)
            remote = self._guarded(
                "hasRemoteBranch", lambda: probe_ref(self.repo, self.config, f"refs/remotes/origin/{branch}"), None)
            status.has_remote_branch = bool(remote and remote.found)
            if status.has_remote_branch:
                status.remote_commits = self._guarded(
                    "remoteCommits", lambda: int(self._git("rev-list", "--count", f"origin/{branch}")), 0)
                if status.has_local_branch:
                    counts = self._guarded(
                        "aheadBehind",
                        lambda: self._git("rev-list", "--left-right", "--count", f"origin/{branch}...{branch}"), "")
                    parts = counts.split()
                    if len(parts) >= 2:
                        status.behind = self._guarded("behind", lambda: int(parts[0]), 0)
                        status.ahead = self._guarded("ahead", lambda: int(parts[1]), 0)

        return status
