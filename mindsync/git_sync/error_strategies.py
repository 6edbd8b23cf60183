"""Classification of git failure output into error kinds."""

from typing import List, Tuple

from ..errors import ErrorKind


GIT_TIMEOUT = "GIT_TIMEOUT"
GIT_AUTH_FAILED = "GIT_AUTH_FAILED"
GIT_NON_FAST_FORWARD = "GIT_NON_FAST_FORWARD"
GIT_REPOSITORY_NOT_FOUND = "GIT_REPOSITORY_NOT_FOUND"
GIT_REF_NOT_FOUND = "GIT_REF_NOT_FOUND"
GIT_NETWORK = "GIT_NETWORK"
GIT_NOT_REPOSITORY = "GIT_NOT_REPOSITORY"
GIT_MERGE_CONFLICT = "GIT_MERGE_CONFLICT"
GIT_REPOSITORY_CORRUPT = "GIT_REPOSITORY_CORRUPT"
GIT_COMMAND_FAILED = "GIT_COMMAND_FAILED"

# Codes worth another attempt after a backoff
RETRYABLE_CODES = {GIT_NETWORK}


def build_error_patterns() -> List[Tuple[str, ErrorKind, str]]:
    """
    Ordered (substring, kind, code) table; the first match wins.

    Matching is done on lower-cased output.
    """
    return [
        # Timeouts (GitPython's kill_after_timeout message first)
        ("did not complete in", ErrorKind.TIMEOUT, GIT_TIMEOUT),
        ("timed out", ErrorKind.TIMEOUT, GIT_TIMEOUT),

        # Authentication
        ("authentication failed", ErrorKind.REMOTE_AUTH_FAILURE, GIT_AUTH_FAILED),
        ("could not read username", ErrorKind.REMOTE_AUTH_FAILURE, GIT_AUTH_FAILED),
        ("could not read password", ErrorKind.REMOTE_AUTH_FAILURE, GIT_AUTH_FAILED),
        ("invalid username or password", ErrorKind.REMOTE_AUTH_FAILURE, GIT_AUTH_FAILED),
        ("permission denied (publickey", ErrorKind.REMOTE_AUTH_FAILURE, GIT_AUTH_FAILED),
        ("permission to", ErrorKind.REMOTE_AUTH_FAILURE, GIT_AUTH_FAILED),
        ("the requested url returned error: 401", ErrorKind.REMOTE_AUTH_FAILURE, GIT_AUTH_FAILED),
        ("the requested url returned error: 403", ErrorKind.REMOTE_AUTH_FAILURE, GIT_AUTH_FAILED),
        ("terminal prompts disabled", ErrorKind.REMOTE_AUTH_FAILURE, GIT_AUTH_FAILED),

        # Rejected pushes
        ("non-fast-forward", ErrorKind.GIT_OPERATION_FAILURE, GIT_NON_FAST_FORWARD),
        ("fetch first", ErrorKind.GIT_OPERATION_FAILURE, GIT_NON_FAST_FORWARD),
        ("[rejected]", ErrorKind.GIT_OPERATION_FAILURE, GIT_NON_FAST_FORWARD),

        # Missing remote objects
        ("repository not found", ErrorKind.NOT_FOUND, GIT_REPOSITORY_NOT_FOUND),
        ("does not appear to be a git repository", ErrorKind.NOT_FOUND, GIT_REPOSITORY_NOT_FOUND),
        ("couldn't find remote ref", ErrorKind.NOT_FOUND, GIT_REF_NOT_FOUND),
        ("unknown revision", ErrorKind.NOT_FOUND, GIT_REF_NOT_FOUND),

        # Network
        ("could not resolve host", ErrorKind.GIT_OPERATION_FAILURE, GIT_NETWORK),
        ("connection refused", ErrorKind.GIT_OPERATION_FAILURE, GIT_NETWORK),
        ("network is unreachable", ErrorKind.GIT_OPERATION_FAILURE, GIT_NETWORK),
        ("no route to host", ErrorKind.GIT_OPERATION_FAILURE, GIT_NETWORK),
        ("temporary failure in name resolution", ErrorKind.GIT_OPERATION_FAILURE, GIT_NETWORK),
        ("connection reset", ErrorKind.GIT_OPERATION_FAILURE, GIT_NETWORK),
        ("the remote end hung up unexpectedly", ErrorKind.GIT_OPERATION_FAILURE, GIT_NETWORK),

        # Local repository problems
        ("not a git repository", ErrorKind.GIT_OPERATION_FAILURE, GIT_NOT_REPOSITORY),
        ("merge conflict", ErrorKind.GIT_OPERATION_FAILURE, GIT_MERGE_CONFLICT),
        ("unmerged paths", ErrorKind.GIT_OPERATION_FAILURE, GIT_MERGE_CONFLICT),
        ("corrupt", ErrorKind.GIT_OPERATION_FAILURE, GIT_REPOSITORY_CORRUPT),
        ("bad object", ErrorKind.GIT_OPERATION_FAILURE, GIT_REPOSITORY_CORRUPT),
    ]


_PATTERNS = build_error_patterns()


def classify_git_error(output: str) -> Tuple[ErrorKind, str]:
    """Map git stderr (or an exception message) to (ErrorKind, error code)."""
    lowered = (output or "").lower()
    for pattern, kind, code in _PATTERNS:
        if pattern in lowered:
            return kind, code
    return ErrorKind.GIT_OPERATION_FAILURE, GIT_COMMAND_FAILED


def is_retryable(code: str) -> bool:
    return code in RETRYABLE_CODES
