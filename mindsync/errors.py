"""Error taxonomy and error handling framework for MindSync."""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Dict, Any, Optional


class ErrorKind(Enum):
    """Kinds of failures surfaced to callers."""
    NOT_FOUND = "not_found"
    VALIDATION = "validation"
    FORBIDDEN = "forbidden"
    GIT_OPERATION_FAILURE = "git_operation_failure"
    REMOTE_AUTH_FAILURE = "remote_auth_failure"
    IMPORT_PARSE_FAILURE = "import_parse_failure"
    TIMEOUT = "timeout"


class MindSyncError(Exception):
    """Base class for every error raised by the engine."""

    default_kind = ErrorKind.GIT_OPERATION_FAILURE
    default_code = "MINDSYNC_ERROR"

    def __init__(self, message: str, kind: Optional[ErrorKind] = None,
                 error_code: Optional[str] = None, raw: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.kind = kind or self.default_kind
        self.error_code = error_code or self.default_code
        # Raw output of the underlying tool, already redacted
        self.raw = raw


class NotFoundError(MindSyncError):
    default_kind = ErrorKind.NOT_FOUND
    default_code = "NOT_FOUND"


class ValidationError(MindSyncError):
    default_kind = ErrorKind.VALIDATION
    default_code = "VALIDATION_FAILED"


class ForbiddenError(MindSyncError):
    default_kind = ErrorKind.FORBIDDEN
    default_code = "FORBIDDEN"


class GitOperationError(MindSyncError):
    """A git subcommand exited non-zero."""

    default_kind = ErrorKind.GIT_OPERATION_FAILURE
    default_code = "GIT_COMMAND_FAILED"

    def __init__(self, message: str, command: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.command = command


class RemoteAuthError(GitOperationError):
    default_kind = ErrorKind.REMOTE_AUTH_FAILURE
    default_code = "GIT_AUTH_FAILED"


class GitTimeoutError(GitOperationError):
    default_kind = ErrorKind.TIMEOUT
    default_code = "GIT_TIMEOUT"


class ImportParseError(MindSyncError):
    default_kind = ErrorKind.IMPORT_PARSE_FAILURE
    default_code = "IMPORT_UNREADABLE_FILE"

    def __init__(self, message: str, path: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.path = path


class DocumentCorruptError(MindSyncError):
    """A stored document or card file cannot be decoded."""

    default_kind = ErrorKind.IMPORT_PARSE_FAILURE
    default_code = "DOCUMENT_CORRUPT"

    def __init__(self, message: str, path: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.path = path


class LockTimeoutError(MindSyncError):
    default_kind = ErrorKind.TIMEOUT
    default_code = "LOCK_TIMEOUT"


@dataclass
class ErrorResponse:
    """Standardized error response format for tool calls."""
    error: str
    error_code: str
    message: str
    timestamp: str
    kind: str
    raw: Optional[str] = None
    context: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert error response to dictionary format."""
        result = {
            "ok": False,
            "error": self.error,
            "error_code": self.error_code,
            "message": self.message,
            "timestamp": self.timestamp,
            "kind": self.kind,
        }
        if self.raw:
            result["raw"] = self.raw
        if self.context:
            result["context"] = self.context
        return result


class ErrorHandler:
    """Maps exceptions raised by operations to ErrorResponse objects."""

    def __init__(self):
        self.logger = logging.getLogger('mindsync.error_handler')

    def handle(self, error: Exception, operation: str, context: Dict[str, Any] = None) -> ErrorResponse:
        """Handle any error raised while running an operation."""
        context = context or {}

        if isinstance(error, MindSyncError):
            return self._respond(
                error=f"{operation} failed",
                error_code=error.error_code,
                message=error.message,
                kind=error.kind,
                raw=error.raw,
                operation=operation,
                context=context,
            )

        if isinstance(error, FileNotFoundError):
            error_code = "FILE_NOT_FOUND"
            kind = ErrorKind.NOT_FOUND
            message = f"File not found: {context.get('file_path', error.filename or 'unknown')}"
        elif isinstance(error, PermissionError):
            error_code = "FILE_PERMISSION_DENIED"
            kind = ErrorKind.FORBIDDEN
            message = "Permission denied accessing file"
        elif isinstance(error, (ValueError, TypeError, KeyError)):
            error_code = "VALIDATION_GENERAL_ERROR"
            kind = ErrorKind.VALIDATION
            message = f"Input validation failed: {error}"
        elif isinstance(error, OSError):
            error_code = "FILE_IO_ERROR"
            kind = ErrorKind.GIT_OPERATION_FAILURE
            message = f"File system error: {error}"
        else:
            error_code = "GENERAL_ERROR"
            kind = ErrorKind.GIT_OPERATION_FAILURE
            message = f"{operation} failed: {error}"

        return self._respond(
            error=f"{operation} failed",
            error_code=error_code,
            message=message,
            kind=kind,
            raw=None,
            operation=operation,
            context=context,
        )

    def _respond(self, error: str, error_code: str, message: str, kind: ErrorKind,
                 raw: Optional[str], operation: str, context: Dict[str, Any]) -> ErrorResponse:
        response = ErrorResponse(
            error=error,
            error_code=error_code,
            message=message,
            timestamp=datetime.now().isoformat(),
            kind=kind.value,
            raw=raw,
            context=context or None,
        )

        # Expected user errors are warnings; tool failures are errors
        level = logging.WARNING if kind in (ErrorKind.NOT_FOUND, ErrorKind.VALIDATION, ErrorKind.FORBIDDEN) else logging.ERROR
        self.logger.log(
            level,
            f"{message}",
            extra={'operation': operation, 'error_code': error_code}
        )
        return response

    def create_success_response(self, operation: str, data: Dict[str, Any], context: Dict[str, Any] = None) -> Dict[str, Any]:
        """Create a standardized success response."""
        response = {
            "ok": True,
            "operation": operation,
            "timestamp": datetime.now().isoformat(),
            "data": data
        }

        if context:
            response["context"] = context

        return response


# Initialize global error handler
error_handler = ErrorHandler()
