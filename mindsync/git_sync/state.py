"""Repository state detection and branch resolution for one working directory."""

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

from git import Repo, InvalidGitRepositoryError, NoSuchPathError

from ..config import Config
from ..errors import GitOperationError
from .operations import Lookup, init_repo, probe_ref, run_git


class RepositoryState(Enum):
    """What the working directory holds with respect to the target branch."""
    UNINITIALIZED = "uninitialized"             # No .git at all
    EMPTY_REPO = "empty_repo"                   # Repository without any commit
    HAS_DEFAULT_BRANCH = "has_default_branch"   # HEAD has history, target branch missing everywhere
    HAS_REMOTE_BRANCH = "has_remote_branch"     # Only origin/<branch> exists
    HAS_TARGET_BRANCH = "has_target_branch"     # Local <branch> exists


class BranchAction(Enum):
    """The single action taken for each RepositoryState."""
    INIT_UNBORN = "init_unborn"
    SET_UNBORN_HEAD = "set_unborn_head"
    BRANCH_FROM_HEAD = "branch_from_head"
    TRACK_REMOTE = "track_remote"
    CHECKOUT_EXISTING = "checkout_existing"


ACTION_FOR_STATE = {
    RepositoryState.UNINITIALIZED: BranchAction.INIT_UNBORN,
    RepositoryState.EMPTY_REPO: BranchAction.SET_UNBORN_HEAD,
    RepositoryState.HAS_DEFAULT_BRANCH: BranchAction.BRANCH_FROM_HEAD,
    RepositoryState.HAS_REMOTE_BRANCH: BranchAction.TRACK_REMOTE,
    RepositoryState.HAS_TARGET_BRANCH: BranchAction.CHECKOUT_EXISTING,
}


@dataclass
class RepositoryProbe:
    """Results of the cheap probes that decide the repository state."""
    has_repo: bool
    head: Lookup = Lookup.NOT_FOUND
    local_branch: Lookup = Lookup.NOT_FOUND
    remote_branch: Lookup = Lookup.NOT_FOUND
    current_branch: Optional[str] = None


def determine_state(probe: RepositoryProbe) -> RepositoryState:
    """Pure mapping from probe results to a state. ERROR lookups must be handled by the caller."""
    if not probe.has_repo:
        return RepositoryState.UNINITIALIZED
    if probe.local_branch is Lookup.FOUND:
        return RepositoryState.HAS_TARGET_BRANCH
    if probe.remote_branch is Lookup.FOUND:
        return RepositoryState.HAS_REMOTE_BRANCH
    if probe.head is Lookup.FOUND:
        return RepositoryState.HAS_DEFAULT_BRANCH
    return RepositoryState.EMPTY_REPO


def open_repo(path: Path) -> Optional[Repo]:
    """Open the repository rooted exactly at ``path``, or None when there is none."""
    if not (Path(path) / ".git").exists():
        return None
    try:
        return Repo(path)
    except (InvalidGitRepositoryError, NoSuchPathError):
        return None


class RepositoryStateManager:
    """
    Probes a working directory and moves it onto the target branch.

    Exactly one action is taken per detected state, so the outcome never
    depends on which fallback happened to succeed.
    """

    def __init__(self, config: Config, repo_path: Path):
        self.config = config
        self.repo_path = Path(repo_path)
        self.logger = logging.getLogger('mindsync.git_sync.state')

    def probe(self, branch: str) -> RepositoryProbe:
        repo = open_repo(self.repo_path)
        if repo is None:
            return RepositoryProbe(has_repo=False)

        lookups = {
            "head": probe_ref(repo, self.config, "HEAD"),
            "local_branch": probe_ref(repo, self.config, f"refs/heads/{branch}"),
            "remote_branch": probe_ref(repo, self.config, f"refs/remotes/origin/{branch}"),
        }
        for lookup in lookups.values():
            if lookup.status is Lookup.ERROR:
                raise lookup.error

        current = None
        try:
            current = run_git(repo, self.config, "symbolic-ref", "--short", "-q", "HEAD") or None
        except GitOperationError as e:
            # Detached HEAD; harmless for state detection
            self.logger.debug(f"HEAD is not a symbolic ref: {e}")

        return RepositoryProbe(
            has_repo=True,
            head=lookups["head"].status,
            local_branch=lookups["local_branch"].status,
            remote_branch=lookups["remote_branch"].status,
            current_branch=current,
        )

    def detect_repository_state(self, branch: str) -> RepositoryState:
        return determine_state(self.probe(branch))

    def resolve_branch(self, branch: str) -> RepositoryState:
        """
        Put the working directory on ``branch`` and return the state it was found in.

        Raises:
            GitOperationError: a probe or the chosen action failed
        """
        probe = self.probe(branch)
        state = determine_state(probe)
        action = ACTION_FOR_STATE[state]
        self.logger.debug(f"{self.repo_path}: state {state.value} -> {action.value} for '{branch}'")

        if action is BranchAction.INIT_UNBORN:
            self.repo_path.mkdir(parents=True, exist_ok=True)
            repo = init_repo(self.repo_path)
            run_git(repo, self.config, "symbolic-ref", "HEAD", f"refs/heads/{branch}")
            return state

        repo = Repo(self.repo_path)
        if action is BranchAction.SET_UNBORN_HEAD:
            run_git(repo, self.config, "symbolic-ref", "HEAD", f"refs/heads/{branch}")
        elif action is BranchAction.TRACK_REMOTE:
            run_git(repo, self.config, "checkout", "-f", "-B", branch, "--track", f"origin/{branch}")
        elif action is BranchAction.BRANCH_FROM_HEAD:
            run_git(repo, self.config, "checkout", "-b", branch)
        elif action is BranchAction.CHECKOUT_EXISTING and probe.current_branch != branch:
            run_git(repo, self.config, "checkout", "-f", branch)

        return state
