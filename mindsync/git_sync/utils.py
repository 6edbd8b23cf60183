"""Result type shared by every mutating sync flow."""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from ..errors import ErrorKind, MindSyncError


@dataclass
class SyncResult:
    """Outcome of a mutating flow; flows return this instead of raising."""
    success: bool
    operation: str
    message: str
    branch: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    error_code: Optional[str] = None
    raw_error: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "ok": self.success,
            "operation": self.operation,
            "branch": self.branch,
            "message": self.message,
        }
        if not self.success:
            result["error"] = self.raw_error or self.message
            result["errorKind"] = self.error_kind.value if self.error_kind else None
            result["errorCode"] = self.error_code
        result.update(self.data)
        return result


def create_sync_result(operation: str, message: str, branch: Optional[str] = None,
                       **data) -> SyncResult:
    return SyncResult(success=True, operation=operation, message=message, branch=branch, data=data)


def failed_sync_result(operation: str, error: MindSyncError, branch: Optional[str] = None) -> SyncResult:
    """Map a raised MindSyncError to a failure result carrying kind, code and raw output."""
    return SyncResult(
        success=False,
        operation=operation,
        message=error.message,
        branch=branch,
        error_kind=error.kind,
        error_code=error.error_code,
        raw_error=error.raw,
    )
