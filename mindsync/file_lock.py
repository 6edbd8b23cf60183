"""
Locking utilities for MindSync.

Every orchestrator entry point runs under a lock keyed by
(domain, mindmap id, branch). The key is held by an in-process
threading lock and by a lock file so that two server processes sharing
a data directory cannot interleave git operations on one working tree.
"""

import os
import time
import logging
import threading
from pathlib import Path
from typing import Dict, Iterable, List, Tuple
from contextlib import contextmanager, ExitStack
from urllib.parse import quote

from .config import Config
from .errors import LockTimeoutError


STALE_LOCK_AGE = 300


class FileLock:
    """
    Exclusive lock backed by an O_EXCL lock file.

    Lock files left behind by dead processes, or older than
    STALE_LOCK_AGE seconds, are removed on the next acquisition attempt.
    """

    def __init__(self, lock_file_path: Path, timeout: float = 30.0):
        """
        Initialize file lock.

        Args:
            lock_file_path: Path to the lock file
            timeout: Maximum time to wait for lock acquisition (seconds)
        """
        self.lock_file_path = lock_file_path
        self.timeout = timeout
        self.logger = logging.getLogger('mindsync.locks')
        self._lock_acquired = False

    def acquire(self) -> bool:
        """
        Acquire the file lock.

        Returns:
            True if lock was acquired, False if timeout occurred
        """
        start_time = time.time()

        while time.time() - start_time < self.timeout:
            self.lock_file_path.parent.mkdir(parents=True, exist_ok=True)

            if self._try_create():
                self._lock_acquired = True
                self.logger.debug(f"Acquired lock: {self.lock_file_path}")
                return True

            time.sleep(0.05)

        self.logger.warning(f"Failed to acquire lock {self.lock_file_path} within {self.timeout}s")
        return False

    def _try_create(self) -> bool:
        try:
            fd = os.open(
                self.lock_file_path,
                os.O_CREAT | os.O_EXCL | os.O_WRONLY,
                0o644
            )
        except FileExistsError:
            return self._check_and_cleanup_stale_lock()

        with os.fdopen(fd, 'w') as f:
            f.write(f"locked_by_pid_{os.getpid()}_thread_{threading.get_ident()}")
        return True

    def _check_and_cleanup_stale_lock(self) -> bool:
        """
        Remove the existing lock file if it is stale.

        Returns:
            True if a stale lock was removed, False otherwise
        """
        try:
            lock_age = time.time() - self.lock_file_path.stat().st_mtime
            lock_content = self.lock_file_path.read_text()
        except FileNotFoundError:
            # Released between our create attempt and the check
            return False

        if lock_age > STALE_LOCK_AGE:
            self.logger.warning(f"Cleaning up stale lock file: {self.lock_file_path}")
            self._unlink_quietly()
            return False

        try:
            pid = int(lock_content.split("locked_by_pid_")[1].split("_")[0])
        except (ValueError, IndexError):
            # A writer may not have flushed its content yet
            return False

        if not _is_process_running(pid):
            self.logger.warning(f"Cleaning up lock from dead process {pid}: {self.lock_file_path}")
            self._unlink_quietly()
        return False

    def _unlink_quietly(self) -> None:
        try:
            self.lock_file_path.unlink()
        except FileNotFoundError:
            pass

    def release(self) -> bool:
        """
        Release the file lock.

        Returns:
            True if lock was released, False otherwise
        """
        if not self._lock_acquired:
            return True

        try:
            self._unlink_quietly()
            self.logger.debug(f"Released lock: {self.lock_file_path}")
            self._lock_acquired = False
            return True
        except OSError as e:
            self.logger.error(f"Error releasing lock {self.lock_file_path}: {e}")
            return False

    def is_locked(self) -> bool:
        """Check if the lock is currently held by this instance."""
        return self._lock_acquired

    def __enter__(self):
        if not self.acquire():
            raise LockTimeoutError(f"Could not acquire lock {self.lock_file_path} within {self.timeout}s")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()


def _is_process_running(pid: int) -> bool:
    try:
        os.kill(pid, 0)
        return True
    except ProcessLookupError:
        return False
    except PermissionError:
        # Process exists but belongs to another user
        return True


class KeyedLockRegistry:
    """In-process registry handing out one threading.Lock per key."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[Tuple[str, ...], threading.Lock] = {}

    def get(self, key: Tuple[str, ...]) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock


_registry = KeyedLockRegistry()


def lock_order(branches: Iterable[str], default_branch: str = "main") -> List[str]:
    """Deterministic acquisition order: the default branch first, then by name."""
    unique = sorted(set(branches))
    if default_branch in unique:
        unique.remove(default_branch)
        unique.insert(0, default_branch)
    return unique


def lock_file_for(config: Config, domain: str, mmid: int, branch: str) -> Path:
    name = "__".join(quote(str(part), safe='') for part in (domain, mmid, branch))
    return config.lock_dir / f"{name}.lock"


@contextmanager
def sync_lock(config: Config, domain: str, mmid: int, *branches: str,
              registry: KeyedLockRegistry = None):
    """
    Hold the (domain, mindmap, branch) lock for every given branch.

    Raises:
        LockTimeoutError: If a lock cannot be acquired within config.lock_timeout
    """
    registry = registry or _registry
    logger = logging.getLogger('mindsync.locks')

    with ExitStack() as stack:
        for branch in lock_order(branches, config.default_branch):
            key = (str(domain), str(mmid), branch)
            thread_lock = registry.get(key)
            if not thread_lock.acquire(timeout=config.lock_timeout):
                raise LockTimeoutError(f"Timed out waiting for {domain}/{mmid}/{branch}")
            stack.callback(thread_lock.release)

            stack.enter_context(FileLock(lock_file_for(config, domain, mmid, branch), config.lock_timeout))
            logger.debug(f"Holding sync lock for {domain}/{mmid}/{branch}")
        yield


def cleanup_stale_locks(config: Config, max_age_seconds: float = STALE_LOCK_AGE) -> int:
    """
    Remove lock files older than max_age_seconds.

    Returns:
        Number of stale locks cleaned up
    """
    logger = logging.getLogger('mindsync.locks')
    lock_dir = config.lock_dir
    if not lock_dir.exists():
        return 0

    cleaned_count = 0
    now = time.time()
    for lock_file in lock_dir.glob("*.lock"):
        try:
            if now - lock_file.stat().st_mtime > max_age_seconds:
                lock_file.unlink()
                cleaned_count += 1
        except FileNotFoundError:
            continue
        except OSError as e:
            logger.warning(f"Error processing lock file {lock_file}: {e}")

    if cleaned_count > 0:
        logger.info(f"Cleaned up {cleaned_count} stale lock files")
    return cleaned_count
