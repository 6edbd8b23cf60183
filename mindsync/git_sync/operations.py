"""Git command execution through GitPython with timeouts, classification and retry."""

import logging
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Optional, TypeVar

from git import Repo, GitCommandError
from git.exc import GitCommandNotFound

from ..config import Config
from ..errors import GitOperationError, GitTimeoutError, MindSyncError, RemoteAuthError, ErrorKind
from .error_strategies import classify_git_error, is_retryable
from .remote_utils import redact_credentials


T = TypeVar("T")


_STDERR_PREFIX = "stderr: '"


def _error_output(error: GitCommandError) -> str:
    # GitPython decorates stderr as "\n  stderr: '<text>'"
    stderr = (error.stderr if isinstance(error.stderr, str) else "").strip()
    if stderr.startswith(_STDERR_PREFIX) and stderr.endswith("'"):
        stderr = stderr[len(_STDERR_PREFIX):-1]
    return stderr.strip() or str(error)


def to_mindsync_error(error: GitCommandError, command: str) -> GitOperationError:
    """Turn a GitCommandError into the typed error for its classified kind."""
    raw = redact_credentials(_error_output(error))
    kind, code = classify_git_error(raw)
    message = f"git {command} failed: {raw.splitlines()[-1] if raw else 'unknown error'}"

    if kind is ErrorKind.TIMEOUT:
        return GitTimeoutError(message, command=command, error_code=code, raw=raw)
    if kind is ErrorKind.REMOTE_AUTH_FAILURE:
        return RemoteAuthError(message, command=command, error_code=code, raw=raw)
    return GitOperationError(message, command=command, kind=kind, error_code=code, raw=raw)


def init_repo(path: Path) -> Repo:
    """``git init`` at ``path``, failing with a typed error like every other git call."""
    try:
        return Repo.init(path)
    except GitCommandNotFound as e:
        raise GitOperationError("git executable not found", command="init",
                                error_code="GIT_NOT_INSTALLED", raw=str(e)) from e
    except GitCommandError as e:
        raise to_mindsync_error(e, "init") from e


def run_git(repo: Repo, config: Config, *args: str, network: bool = False) -> str:
    """
    Run ``git <args>`` in ``repo`` and return stripped stdout.

    Local subcommands are bounded by ``config.git_timeout``, network ones
    by ``config.git_network_timeout``.

    Raises:
        GitTimeoutError, RemoteAuthError, GitOperationError
    """
    logger = logging.getLogger('mindsync.git_sync')
    command, rest = args[0], args[1:]
    timeout = config.git_network_timeout if network else config.git_timeout

    logger.debug(f"git {redact_credentials(' '.join(args))}")
    try:
        return getattr(repo.git, command.replace("-", "_"))(*rest, kill_after_timeout=timeout)
    except GitCommandNotFound as e:
        raise GitOperationError("git executable not found", command=command,
                                error_code="GIT_NOT_INSTALLED", raw=str(e)) from e
    except GitCommandError as e:
        raise to_mindsync_error(e, command) from e


def execute_git_operation_with_retry(operation_func: Callable[[], T], operation: str,
                                     config: Config) -> T:
    """
    Call ``operation_func``, retrying network failures with exponential backoff.

    Non-retryable failures and the last failed attempt are re-raised.
    """
    logger = logging.getLogger('mindsync.git_sync')
    max_attempts = config.git_retry_attempts
    base_delay = config.git_retry_delay

    for attempt in range(1, max_attempts + 1):
        try:
            result = operation_func()
            if attempt > 1:
                logger.info(f"{operation} succeeded on attempt {attempt}/{max_attempts}")
            return result
        except MindSyncError as e:
            if attempt == max_attempts or not is_retryable(e.error_code):
                raise
            delay = base_delay * (2 ** (attempt - 1))
            logger.warning(f"{operation} failed (attempt {attempt}/{max_attempts}): {e.message}, retrying in {delay:.1f}s")
            time.sleep(delay)

    raise AssertionError("unreachable")


class Lookup(Enum):
    """Outcome of an existence probe."""
    FOUND = "found"
    NOT_FOUND = "not_found"
    ERROR = "error"


@dataclass
class RefLookup:
    status: Lookup
    sha: Optional[str] = None
    error: Optional[GitOperationError] = None

    @property
    def found(self) -> bool:
        return self.status is Lookup.FOUND


def probe_ref(repo: Repo, config: Config, ref: str) -> RefLookup:
    """
    Resolve ``ref`` to a commit without treating absence as a failure.

    ``rev-parse --verify --quiet`` exits 1 with no output for a missing ref;
    any other failure is reported as ERROR with the typed error attached.
    """
    try:
        sha = repo.git.rev_parse("--verify", "--quiet", f"{ref}^{{commit}}",
                                 kill_after_timeout=config.git_timeout)
    except GitCommandNotFound as e:
        return RefLookup(Lookup.ERROR, error=GitOperationError(
            "git executable not found", command="rev-parse", error_code="GIT_NOT_INSTALLED", raw=str(e)))
    except GitCommandError as e:
        if e.status == 1 and not _error_output_is_fatal(e):
            return RefLookup(Lookup.NOT_FOUND)
        return RefLookup(Lookup.ERROR, error=to_mindsync_error(e, "rev-parse"))
    return RefLookup(Lookup.FOUND, sha=sha.strip())


def _error_output_is_fatal(error: GitCommandError) -> bool:
    stderr = error.stderr if isinstance(error.stderr, str) else ""
    return "fatal" in stderr.lower()
