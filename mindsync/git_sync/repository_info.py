"""Status report of a mindmap working directory."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class ChangeSet:
    added: List[str] = field(default_factory=list)
    modified: List[str] = field(default_factory=list)
    deleted: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, List[str]]:
        return {"added": list(self.added), "modified": list(self.modified), "deleted": list(self.deleted)}


@dataclass
class GitRepoState:
    """Recomputed on every status query, never persisted."""
    has_local_repo: bool = False
    has_local_branch: bool = False
    has_remote: bool = False
    has_remote_branch: bool = False
    local_commits: int = 0
    remote_commits: int = 0
    ahead: int = 0
    behind: int = 0
    uncommitted_changes: bool = False
    current_branch: Optional[str] = None
    last_commit: Optional[str] = None
    last_commit_message: Optional[str] = None
    last_commit_time: Optional[str] = None
    changes: ChangeSet = field(default_factory=ChangeSet)

    @property
    def last_commit_short(self) -> Optional[str]:
        return self.last_commit[:8] if self.last_commit else None

    @property
    def last_commit_message_short(self) -> Optional[str]:
        return self.last_commit_message[:50] if self.last_commit_message else None

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "hasLocalRepo": self.has_local_repo,
            "hasLocalBranch": self.has_local_branch,
            "hasRemote": self.has_remote,
            "hasRemoteBranch": self.has_remote_branch,
            "localCommits": self.local_commits,
            "remoteCommits": self.remote_commits,
            "ahead": self.ahead,
            "behind": self.behind,
            "uncommittedChanges": self.uncommitted_changes,
            "changes": self.changes.to_dict(),
        }
        optional = {
            "currentBranch": self.current_branch,
            "lastCommit": self.last_commit,
            "lastCommitShort": self.last_commit_short,
            "lastCommitMessage": self.last_commit_message,
            "lastCommitMessageShort": self.last_commit_message_short,
            "lastCommitTime": self.last_commit_time,
        }
        result.update({key: value for key, value in optional.items() if value is not None})
        return result
